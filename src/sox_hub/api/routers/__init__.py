"""
sox_hub.api.routers

Router package.

Responsibilities:
- Group FastAPI routers by capability.
"""
