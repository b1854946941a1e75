"""
Application Logger

Every engine module logs through a child of the ``lms`` logger. The parent is
configured once at import from the ``LOG_LEVEL``, ``LOG_JSON`` and
``LOG_FILE`` settings, so children inherit its level and handlers.
"""

import sys
import json
import time
import asyncio
import logging
import datetime
import functools
from typing import Any, Callable, Dict, List, Optional, TypeVar, Union

from lms_backend.config import settings

APP_LOGGER_NAME = "lms"
TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-30s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

F = TypeVar('F', bound=Callable[..., Any])

__all__ = [
    'JsonFormatter',
    'LoggerAdapter',
    'app_logger',
    'configure_logger',
    'get_logger',
    'log_execution_time'
]


class JsonFormatter(logging.Formatter):
    """
    Renders each record as a single JSON line.

    Context attached by ``LoggerAdapter`` travels on the record's ``data``
    attribute and is merged into the top level of the object.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "line": record.lineno
        }

        data = getattr(record, "data", None)
        if isinstance(data, dict):
            payload.update(data)

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


def _handlers(use_json: bool, log_file: Optional[str]) -> List[logging.Handler]:
    formatter = JsonFormatter() if use_json else logging.Formatter(TEXT_FORMAT, DATE_FORMAT)

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def configure_logger(
    level: Union[str, int] = logging.INFO,
    use_json: bool = False,
    log_file: Optional[str] = None
) -> logging.Logger:
    """
    Replace the handlers of the application logger.

    Args:
        level: Level name or number
        use_json: Emit JSON lines instead of the text format
        log_file: Also write to this file when given

    Returns:
        The application logger
    """
    logger = logging.getLogger(APP_LOGGER_NAME)
    logger.setLevel(level.upper() if isinstance(level, str) else level)

    try:
        logger.handlers = _handlers(use_json, log_file)
    except OSError as e:
        logger.handlers = _handlers(use_json, None)
        logger.warning(f"Could not open log file {log_file}: {e}")

    return logger


def get_logger(name: str) -> logging.Logger:
    """Logger for ``name`` under the application logger."""
    return logging.getLogger(APP_LOGGER_NAME).getChild(name)


class LoggerAdapter(logging.LoggerAdapter):
    """
    Adds fixed context, such as attempt and student identifiers, to every
    message it emits.
    """

    def __init__(self, logger: logging.Logger, context: Optional[Dict[str, Any]] = None):
        super().__init__(logger, context or {})

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = dict(kwargs.get('extra') or {})
        data = dict(self.extra)
        data.update(extra.get('data') or {})
        extra['data'] = data
        return msg, dict(kwargs, extra=extra)


def log_execution_time(logger: Optional[logging.Logger] = None) -> Callable[[F], F]:
    """
    Decorator logging how long a function took, at DEBUG on success and at
    ERROR when it raises. Works for plain and coroutine functions.
    """
    def decorator(func: F) -> F:
        target = logger or app_logger

        def report(start: float, error: Optional[Exception] = None) -> None:
            elapsed = time.perf_counter() - start
            if error is None:
                target.debug(f"{func.__name__} executed in {elapsed:.3f} seconds")
            else:
                target.error(f"{func.__name__} failed after {elapsed:.3f} seconds: {error}")

        if asyncio.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                start = time.perf_counter()
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    report(start, e)
                    raise
                report(start)
                return result
            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                report(start, e)
                raise
            report(start)
            return result
        return wrapper

    return decorator


app_logger = configure_logger(settings.LOG_LEVEL, settings.LOG_JSON, settings.LOG_FILE)
