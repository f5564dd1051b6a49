from __future__ import annotations

import structlog

from capability_router.core.logging import configure_logging_from_settings, get_logger, truncate_for_log

from tests.helpers.stubs import make_settings


def test_configure_logging_from_settings_sets_level_and_renderer() -> None:
    settings = make_settings(observability={"log_level": "DEBUG", "log_json": False})

    configure_logging_from_settings(settings)

    processors = structlog.get_config()["processors"]
    assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)


def test_get_logger_binds_context() -> None:
    logger = get_logger(name="tests.logging", keyword="weather")

    assert logger is not None


def test_truncate_for_log() -> None:
    assert truncate_for_log(None) == ""
    assert truncate_for_log("short") == "short"
    assert truncate_for_log("x" * 20, max_len=5) == "xxxxx... (truncated)"
