"""Tests for the optional logfire reporting hooks."""

import sys
from unittest.mock import MagicMock, patch

import pytest

from filecrab.config import LogfireConfig, Settings
from filecrab.lib import observability


@pytest.fixture
def fresh_state():
    """Start every test with reporting switched off and restore it afterwards."""
    with patch.object(observability, "_logfire", None), \
         patch.object(observability, "_configured", False):
        yield


@pytest.fixture
def stub_logfire(fresh_state):
    module = MagicMock()
    with patch.dict(sys.modules, {"logfire": module}):
        yield module


class TestConfigure:
    def test_disabled_by_default(self, stub_logfire):
        assert observability.configure(Settings()) is False
        assert observability.is_available() is False
        stub_logfire.configure.assert_not_called()

    def test_enabled_with_module(self, stub_logfire):
        settings = Settings(
            logfire=LogfireConfig(enabled=True, environment="staging", sample_rate=0.25, console=True)
        )

        assert observability.configure(settings) is True

        assert observability.is_available() is True
        stub_logfire.configure.assert_called_once_with(
            service_name="filecrab",
            send_to_logfire="if-token-present",
            environment="staging",
            trace_sample_rate=0.25,
            console=stub_logfire.ConsoleOptions.return_value,
        )

    def test_enabled_without_module(self, fresh_state):
        with patch.dict(sys.modules, {"logfire": None}):
            assert observability.configure(Settings(logfire=LogfireConfig(enabled=True))) is False
        assert observability.is_available() is False


class TestHooksWhenOff:
    def test_span_yields_none(self, fresh_state):
        with observability.span("filecrab.sweep") as current:
            assert current is None

    def test_exception_asks_caller_to_log(self, fresh_state):
        assert observability.exception("boom") is False

    def test_app_is_returned_unchanged(self, fresh_state):
        app = object()
        assert observability.instrument_app(app) is app


class TestHooksWhenOn:
    @pytest.fixture
    def enabled(self, stub_logfire):
        observability.configure(Settings(logfire=LogfireConfig(enabled=True)))
        return stub_logfire

    def test_span_opens_logfire_span(self, enabled):
        with observability.span("filecrab.upload", memo_id="a_b_c_d") as current:
            assert current is enabled.span.return_value.__enter__.return_value
        enabled.span.assert_called_once_with("filecrab.upload", memo_id="a_b_c_d")

    def test_exception_is_reported(self, enabled):
        assert observability.exception("failed on {path}", path="/api/upload") is True
        enabled.exception.assert_called_once_with("failed on {path}", path="/api/upload")

    def test_instrumentation(self, enabled):
        app, engine = object(), object()

        assert observability.instrument_app(app) is enabled.instrument_asgi.return_value
        observability.instrument_sqlalchemy(engine)

        enabled.instrument_asgi.assert_called_once_with(app)
        enabled.instrument_sqlalchemy.assert_called_once_with(engine=engine)
