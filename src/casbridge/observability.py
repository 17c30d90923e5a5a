"""
casbridge Logging Configuration

Structured logging setup for hosts embedding the realm.

casbridge modules log through structlog.get_logger() with event-style
names (authenticate_start, tgt_released, ...). Passwords and tickets are
never passed to the logger.
"""

from __future__ import annotations

import logging
import sys
from typing import Any, Dict

import structlog


def configure_logging(*, level: str = "INFO", json: bool = False, component: str = "casbridge") -> None:
    """
    Route structlog through stdlib logging.

    Args:
        level: Log level name
        json: Render JSON lines instead of console output
        component: Value of the "component" field added to every event
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _add_component(component),
            structlog.processors.dict_tracebacks,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _add_component(component: str):
    def processor(_: Any, __: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict.setdefault("component", component)
        return event_dict

    return processor
