"""Run the Kurator API with uvicorn: python -m kurator"""

import uvicorn

from kurator.config import settings


if __name__ == "__main__":
    uvicorn.run(
        "kurator.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
