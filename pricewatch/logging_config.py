"""Structured logging for the price watch service.

Records go to stdout in plain text and to ``logs/app.log`` as one JSON
object per line; errors are duplicated into ``logs/error.log``. Money
values (Decimal), timestamps and enum members passed through ``extra``
are serialized as strings so a price like ``19.90`` keeps its two
decimals in the JSON output.
"""

import logging
import sys
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from pathlib import Path

from pythonjsonlogger import jsonlogger

from pricewatch.config import settings

SERVICE_NAME = "pricewatch"

# Chatty libraries that only earn their INFO lines while debugging
QUIET_LOGGERS = ("apscheduler", "httpx", "httpcore", "sqlalchemy.engine", "aiosqlite")


def _json_default(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return str(value)


class PriceWatchJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter stamping service, level and source location."""

    def __init__(self, *args, **kwargs):
        kwargs.setdefault("json_default", _json_default)
        super().__init__(*args, **kwargs)

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record['timestamp'] = datetime.now(timezone.utc).isoformat()
        log_record['service'] = SERVICE_NAME
        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        log_record['source'] = f"{record.filename}:{record.lineno}"


def setup_logging(base_dir: str | Path | None = None):
    """Configure logging for the service.

    Args:
        base_dir: Directory that holds the logs/ folder (defaults to the
                  current working directory)
    """
    logs_dir = (Path(base_dir) if base_dir else Path.cwd()) / "logs"
    logs_dir.mkdir(exist_ok=True)

    level = logging.DEBUG if settings.debug else getattr(logging, settings.log_level.upper())
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    root_logger.addHandler(console_handler)

    json_formatter = PriceWatchJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
    json_handler = logging.FileHandler(logs_dir / "app.log")
    json_handler.setFormatter(json_formatter)
    root_logger.addHandler(json_handler)

    error_handler = logging.FileHandler(logs_dir / "error.log")
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(json_formatter)
    root_logger.addHandler(error_handler)

    if not settings.debug:
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger


class ContextLogger(logging.LoggerAdapter):
    """Adapter that adds bound fields (alert_id, product_id, ...) to every record.

    Fields given in ``extra`` at the call site win over bound ones.
    """

    def process(self, msg, kwargs):
        kwargs['extra'] = {**self.extra, **kwargs.get('extra', {})}
        return msg, kwargs

    def bind(self, **context) -> "ContextLogger":
        """New adapter with additional bound fields."""
        return ContextLogger(self.logger, {**self.extra, **context})


def get_logger(name: str, **context) -> ContextLogger:
    """
    Get a logger with bound context fields.

    Args:
        name: Logger name (usually __name__)
        **context: Fields added to every record (e.g. alert_id=12)
    """
    return ContextLogger(logging.getLogger(name), context)
