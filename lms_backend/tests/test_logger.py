"""
Tests for the application logger helpers.
"""

import json
import logging

import pytest

from lms_backend.common import error_handling
from lms_backend.common.logger import (
    APP_LOGGER_NAME,
    JsonFormatter,
    LoggerAdapter,
    get_logger,
    log_execution_time
)
from lms_backend.assessments import memory_repository


class CollectingHandler(logging.Handler):
    def __init__(self):
        super().__init__(logging.DEBUG)
        self.records = []

    def emit(self, record):
        self.records.append(record)


@pytest.fixture
def collected():
    handler = CollectingHandler()
    logger = get_logger("test_logger")
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    yield logger, handler.records
    logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)


def test_engine_loggers_share_the_application_hierarchy():
    for logger in (get_logger("controller"), memory_repository.logger, error_handling.logger):
        assert logger.name.startswith(f"{APP_LOGGER_NAME}.")


def test_adapter_context_is_merged_into_json(collected):
    logger, records = collected

    LoggerAdapter(logger, {"attempt_id": "attempt-1"}).info("Attempt submitted", extra={"data": {"score": 3}})

    payload = json.loads(JsonFormatter().format(records[0]))
    assert payload["message"] == "Attempt submitted"
    assert payload["logger"] == f"{APP_LOGGER_NAME}.test_logger"
    assert payload["attempt_id"] == "attempt-1"
    assert payload["score"] == 3


def test_log_execution_time_sync(collected):
    logger, records = collected

    @log_execution_time(logger)
    def add(a, b):
        return a + b

    assert add(2, 3) == 5
    assert records[-1].levelno == logging.DEBUG
    assert "add executed in" in records[-1].getMessage()


@pytest.mark.asyncio
async def test_log_execution_time_async_reraises(collected):
    logger, records = collected

    @log_execution_time(logger)
    async def fail():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        await fail()
    assert records[-1].levelno == logging.ERROR
    assert "fail failed after" in records[-1].getMessage()
