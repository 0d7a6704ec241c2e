"""
sox_hub.db

Persistence package (SQLAlchemy async).

Responsibilities:
- Provide ORM models, engine/session setup, demo seeding and repositories.
"""

# Package marker.
