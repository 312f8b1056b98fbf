"""Tests for logging helpers."""

import builtins
import logging

import pytest
from structlog.dev import ConsoleRenderer
from structlog.processors import JSONRenderer

from case_portal import logger as logger_module


def test_build_otlp_logs_endpoint_adds_suffix() -> None:
    assert (
        logger_module._build_otlp_logs_endpoint("http://collector:4318/")
        == "http://collector:4318/v1/logs"
    )


def test_build_otlp_logs_endpoint_preserves_logs_path() -> None:
    assert (
        logger_module._build_otlp_logs_endpoint("http://collector:4318/v1/logs")
        == "http://collector:4318/v1/logs"
    )


def test_select_renderer_uses_console_in_debug(monkeypatch) -> None:
    monkeypatch.setattr(logger_module.settings, "debug", True)
    assert isinstance(logger_module._select_renderer(), ConsoleRenderer)


def test_select_renderer_uses_json_in_production(monkeypatch) -> None:
    monkeypatch.setattr(logger_module.settings, "debug", False)
    assert isinstance(logger_module._select_renderer(), JSONRenderer)


def test_configure_otel_logging_missing_dependency_warns(monkeypatch, caplog) -> None:
    monkeypatch.setattr(
        logger_module.settings,
        "otel_exporter_otlp_endpoint",
        "http://collector:4318",
    )
    original_import = builtins.__import__

    def blocked_import(name, globals=None, locals=None, fromlist=(), level=0):
        if name.startswith("opentelemetry"):
            raise ImportError("opentelemetry not installed")
        return original_import(name, globals, locals, fromlist, level)

    monkeypatch.setattr(builtins, "__import__", blocked_import)

    with caplog.at_level(logging.WARNING):
        logger_module._configure_otel_logging()

    assert "OTEL log exporter not available" in caplog.text


def test_log_timing_reports_context(caplog) -> None:
    with caplog.at_level(logging.INFO):
        with logger_module.log_timing("load_providers", path="/etc/dms.yaml") as ctx:
            ctx["provider_count"] = 3

    assert "load_providers completed" in caplog.text
    assert "provider_count" in caplog.text
    assert "duration_ms" in ctx


@pytest.mark.asyncio
async def test_log_external_api_logs_failures(caplog) -> None:
    @logger_module.log_external_api("dms")
    async def upload() -> None:
        raise RuntimeError("connection reset")

    with caplog.at_level(logging.INFO):
        with pytest.raises(RuntimeError):
            await upload()

    assert "External API call to dms failed" in caplog.text
    assert "connection reset" in caplog.text


def test_log_external_api_wraps_sync_functions(caplog) -> None:
    @logger_module.log_external_api("token_endpoint", log_args=True)
    def fetch(name: str, *, scope: str) -> str:
        return f"{name}:{scope}"

    with caplog.at_level(logging.INFO):
        assert fetch("sp", scope="default") == "sp:default"

    assert "kwargs_keys" in caplog.text


def test_log_exception_includes_error_type(caplog) -> None:
    log = logger_module.get_logger("test")

    with caplog.at_level(logging.WARNING):
        logger_module.log_exception(
            log, ValueError("bad key"), "Failed to sign", level="warning", include_traceback=False
        )

    assert "Failed to sign" in caplog.text
    assert "ValueError" in caplog.text
