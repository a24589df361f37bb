"""
Logging configuration

Modules log through ``logging.getLogger(__name__)`` and attach structured
error details with ``extra={"error_context": exc.to_dict()}``. The handler
installed here renders that context after the message so failed chunks,
feed errors and cursor problems are debuggable from plain stdout.
"""

import json
import logging
import sys
from core.config import settings

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Loggers that are chatty at INFO
QUIET_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "httpx", "httpcore", "apscheduler")


class ErrorContextFormatter(logging.Formatter):
    """Append ``error_context`` (when present) as compact JSON."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        context = getattr(record, "error_context", None)
        if not context:
            return message
        try:
            rendered = json.dumps(context, default=str, sort_keys=True)
        except (TypeError, ValueError):
            rendered = repr(context)
        return f"{message} | context={rendered}"


def setup_logging(level: str = None):
    """Configure application logging"""
    level_name = (level or settings.LOG_LEVEL).upper()
    log_level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ErrorContextFormatter(LOG_FORMAT, datefmt=DATE_FORMAT))

    logging.basicConfig(level=log_level, handlers=[handler])

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured at {level_name} level (environment={settings.ENVIRONMENT})")
