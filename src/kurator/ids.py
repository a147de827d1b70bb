"""
Identifier parsing.

Record ids arrive from paths, query strings and JSON bodies. A malformed,
non-positive or out-of-range id in a path cannot name an existing row, so it
is reported the same way as a missing row instead of as a validation or
server error. Id fields of request bodies are bounded by `RecordId`.
"""

from typing import Annotated, Any, Optional

from pydantic import Field

# Primary keys are signed 64-bit integers
MAX_ID = 2**63 - 1

# Id field for request bodies
RecordId = Annotated[int, Field(gt=0, le=MAX_ID)]


def parse_id(value: Any) -> Optional[int]:
    """
    Parse a record id.

    Returns:
        The id as a positive int within the key range, or None if the value
        cannot be one
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        text = value.strip()
        if not (text.isdecimal() and text.isascii()):
            return None
        value = int(text)
    if isinstance(value, int) and 0 < value <= MAX_ID:
        return value
    return None
