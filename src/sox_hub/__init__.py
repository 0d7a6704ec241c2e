"""
sox_hub

Top-level package for the SOX Hub compliance-tracking service.

Responsibilities:
- Expose package version metadata.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"


# --- Module Notes -----------------------------------------------------------
# Imported by alembic, uvicorn and tests alike; nothing here may touch settings or I/O.
