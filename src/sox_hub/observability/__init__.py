"""
sox_hub.observability

Logging and request-context helpers.

Responsibilities:
- structlog configuration.
- HTTP middleware binding request metadata into log context.
"""

# Package marker.
