"""
sox_hub.api

HTTP layer (FastAPI).

Responsibilities:
- Compose the ASGI application (`app.create_app`).
- Expose routers for the registry, change requests, history, access and directory.
"""
