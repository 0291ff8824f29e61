"""Loguru logging for docsource.

Library modules log through ``logger``; nothing is printed until the host
application adds a sink, either its own or the one installed by
``configure_logging``.
"""

import sys

import typing as t
from loguru import logger as _logger

from .config import Settings

__all__ = ["LoggerSettings", "configure_logging", "get_logger", "logger"]


class LoggerSettings(Settings):
    """Logging configuration for the stderr sink."""

    log_level: str = "INFO"
    serialize: bool = False
    colorize: bool = True
    backtrace: bool = False
    diagnose: bool = False

    format: dict[str, str] = {
        "time": "<b><e>[</e> <w>{time:YYYY-MM-DD HH:mm:ss.SSS}</w> <e>]</e></b>",
        "level": " <level>{level:>8}</level>",
        "sep": " <b><w>in</w></b> ",
        "name": "<b>{extra[mod_name]:>20}</b>",
        "line": "<b><e>[</e><w>{line:^5}</w><e>]</e></b>",
        "message": "  <level>{message}</level>",
    }

    # e.g. {"scheduler": "DEBUG"} to trace batch dispatches only
    level_per_module: dict[str, str] = {}

    @property
    def format_string(self) -> str:
        return "".join(self.format.values())


logger = _logger.bind(mod_name="docsource")


def get_logger(name: str) -> t.Any:
    """Return the package logger bound to a short module name."""
    return _logger.bind(mod_name=name.rsplit(".", maxsplit=1)[-1])


def _level_no(level: str) -> int:
    return int(_logger.level(level.upper()).no)


def configure_logging(settings: LoggerSettings | None = None) -> int:
    """Install a stderr sink for docsource records and return its id."""
    settings = settings or LoggerSettings()
    default_level = _level_no(settings.log_level)
    module_levels = {
        name: _level_no(level) for name, level in settings.level_per_module.items()
    }

    def _filter(record: dict[str, t.Any]) -> bool:
        if not record["name"].startswith("docsource"):
            return False
        record["extra"].setdefault("mod_name", record["name"])
        mod_name = record["extra"]["mod_name"]
        return record["level"].no >= module_levels.get(mod_name, default_level)

    return _logger.add(
        sys.stderr,
        level=0,
        format=settings.format_string,
        filter=t.cast("t.Any", _filter),
        colorize=settings.colorize,
        serialize=settings.serialize,
        backtrace=settings.backtrace,
        diagnose=settings.diagnose,
    )
