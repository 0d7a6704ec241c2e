"""
sox_hub.observability.logging

structlog setup for the service.

Responsibilities:
- Route structlog events through stdlib logging as one JSON object per line.
- Stamp every event with the service name, level, logger and UTC timestamp.
- Bind the acting user so audit-relevant lines name who triggered them.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.typing import EventDict, Processor


def _service_stamp(service_name: str) -> Processor:
    def stamp(_logger: Any, _method: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", service_name)
        return event_dict

    return stamp


def configure_logging(*, service_name: str, level: str) -> None:
    root_level = logging.getLevelName(level.upper())
    if not isinstance(root_level, int):
        root_level = logging.INFO
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=root_level, force=True)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        _service_stamp(service_name),
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.dict_tracebacks,
        structlog.processors.JSONRenderer(),
    ]
    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_actor(*, actor_id: str, actor_name: str) -> None:
    structlog.contextvars.bind_contextvars(actor_id=actor_id, actor_name=actor_name)


# --- Module Notes -----------------------------------------------------------
# The request id, method and path are bound by `observability.middleware`; the actor
# is bound by `auth.deps.get_principal` once the bearer token has been verified.
