"""
Kurator - curator and contact relationship management.
"""

__version__ = "0.1.0"
