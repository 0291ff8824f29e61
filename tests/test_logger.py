"""Tests for the loguru setup."""

import typing as t

import pytest
from loguru import logger

from docsource.adapters.nosql._base import StoreCollection
from docsource.logger import LoggerSettings, configure_logging, get_logger
from docsource.scheduler import BatchScheduler


class TestLoggerSettings:
    @pytest.mark.unit
    def test_defaults(self) -> None:
        settings = LoggerSettings()
        assert settings.log_level == "INFO"
        assert settings.serialize is False
        assert settings.level_per_module == {}
        assert "{message}" in settings.format_string

    @pytest.mark.unit
    def test_format_string_joins_parts(self) -> None:
        settings = LoggerSettings(format={"level": "{level}", "message": " {message}"})
        assert settings.format_string == "{level} {message}"


class TestLogging:
    @pytest.mark.unit
    def test_get_logger_binds_short_module_name(self) -> None:
        records: list[dict[str, t.Any]] = []
        sink_id = logger.add(lambda message: records.append(message.record))
        try:
            get_logger("docsource.scheduler").info("hello")
        finally:
            logger.remove(sink_id)

        assert records[0]["extra"]["mod_name"] == "scheduler"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_per_module_levels(
        self,
        users: StoreCollection,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        settings = LoggerSettings(
            log_level="WARNING",
            colorize=False,
            format={"name": "{extra[mod_name]}", "message": " {message}"},
            level_per_module={"scheduler": "DEBUG"},
        )
        sink_id = configure_logging(settings)
        try:
            await BatchScheduler(users).load_many({"status": "A"})
        finally:
            logger.remove(sink_id)

        err = capsys.readouterr().err
        assert "scheduler Dispatching 1 key(s) through find" in err
        assert "Coalesced" not in err

    @pytest.mark.unit
    def test_ignores_records_from_other_packages(
        self,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        sink_id = configure_logging(LoggerSettings(colorize=False))
        try:
            logger.warning("outside message")
        finally:
            logger.remove(sink_id)

        assert "outside message" not in capsys.readouterr().err
