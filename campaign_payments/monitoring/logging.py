"""
Logging for campaign runs.

Every event is a single JSON line on stdout. A processing pass binds
`campaign_id` (and `kind`) through structlog.contextvars, so batch and
item events can be grouped per campaign without passing ids around.
"""
import logging
import sys
from typing import Any, Dict, List, Optional

import structlog
from pythonjsonlogger import jsonlogger
from structlog.types import EventDict, Processor

from campaign_payments.config import Settings, get_settings

# Third-party loggers that would drown campaign events at DEBUG.
QUIET_LOGGERS: Dict[str, int] = {
    "stripe": logging.WARNING,
    "aiosqlite": logging.WARNING,
    "asyncio": logging.WARNING,
}

_STDLIB_FIELDS = "%(asctime)s %(levelname)s %(name)s %(message)s"


def app_context(settings: Settings) -> Processor:
    """Processor stamping the service name and environment on each event."""
    service = {"app_name": settings.app_name, "app_env": settings.app_env}

    def stamp(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        for key, value in service.items():
            event_dict.setdefault(key, value)
        return event_dict

    return stamp


def _processors(settings: Settings) -> List[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        app_context(settings),
        structlog.processors.JSONRenderer(),
    ]


def _json_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            _STDLIB_FIELDS,
            rename_fields={"asctime": "@timestamp", "levelname": "level", "name": "logger"},
        )
    )
    return handler


def setup_logging(settings: Optional[Settings] = None) -> None:
    """
    Route structlog and stdlib logging to one JSON handler.

    Safe to call again: the root handlers are replaced, not stacked.
    """
    settings = settings or get_settings()

    structlog.configure(
        processors=_processors(settings),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(_json_handler())
    root.setLevel(settings.log_level)

    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database_echo else logging.WARNING
    )

    structlog.get_logger(__name__).info(
        "logging_configured",
        log_level=settings.log_level,
        quiet_loggers=sorted(QUIET_LOGGERS),
    )
