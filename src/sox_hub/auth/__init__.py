"""
sox_hub.auth

Authentication/authorization package.

Responsibilities:
- Session token signing and verification.
- FastAPI auth dependencies (Principal + RBAC).
"""

# Package marker.
