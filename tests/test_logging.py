"""Tests for structured logging formatters and the rate-limit wiring."""

import json
import logging

from flask import g

from diligence.middleware.logging_config import (
    HANDLER_NAME,
    JSONFormatter,
    ReadableFormatter,
    RequestContextFilter,
    configure_logging,
)
from diligence.middleware.rate_limiter import MUTATING_BLUEPRINTS


def _record(msg="Template applied", **extra):
    record = logging.LogRecord("diligence.test", logging.INFO, __file__, 10, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:

    def test_deal_and_template_go_under_scope(self):
        payload = json.loads(JSONFormatter().format(
            _record(deal_id=7, template_id=3, created_count=2, failed_count=1)
        ))

        assert payload["message"] == "Template applied"
        assert payload["level"] == "INFO"
        assert payload["service"] == "diligence"
        assert payload["scope"] == {"deal_id": 7, "template_id": 3,
                                    "created_count": 2, "failed_count": 1}
        assert "request" not in payload

    def test_request_fields_are_grouped(self):
        payload = json.loads(JSONFormatter(service="dd-api").format(
            _record(request_id="abc123", method="POST", status=201, namespace="phase")
        ))

        assert payload["service"] == "dd-api"
        assert payload["request"] == {"request_id": "abc123", "method": "POST", "status": 201}
        assert payload["scope"] == {"namespace": "phase"}


class TestReadableFormatter:

    def test_appends_scope_duration_and_request_id(self):
        line = ReadableFormatter(use_color=False).format(
            _record(deal_id=7, template_id=3, failed_count=1, duration_ms=12.4,
                    request_id="abc123")
        )

        assert line.endswith(
            "INFO     diligence.test: Template applied deal=7 template=3 failed=1 [12ms] (abc123)"
        )

    def test_colour_wraps_level_only(self):
        line = ReadableFormatter(use_color=True).format(_record())

        assert "\033[32mINFO    \033[0m diligence.test: Template applied" in line


class TestRequestContextFilter:

    def test_stamps_request_id_inside_a_request(self, app):
        record = _record()
        with app.test_request_context("/api/v1/deals"):
            g.request_id = "req-42"
            assert RequestContextFilter().filter(record) is True

        assert record.request_id == "req-42"

    def test_keeps_an_explicit_request_id(self, app):
        record = _record(request_id="from-timing")
        with app.test_request_context("/api/v1/deals"):
            g.request_id = "req-42"
            RequestContextFilter().filter(record)

        assert record.request_id == "from-timing"

    def test_leaves_records_alone_outside_a_request(self):
        record = _record()

        RequestContextFilter().filter(record)

        assert not hasattr(record, "request_id")


def test_configure_logging_replaces_only_its_own_handler(app):
    root = logging.getLogger()
    foreign = logging.NullHandler()
    root.addHandler(foreign)
    try:
        configure_logging(app)
        handler = configure_logging(app)

        ours = [h for h in root.handlers if h.get_name() == HANDLER_NAME]
        assert ours == [handler]
        assert foreign in root.handlers
        assert isinstance(handler.formatter, ReadableFormatter)
    finally:
        root.removeHandler(foreign)


def test_configure_logging_honours_configured_format(app, monkeypatch):
    monkeypatch.setitem(app.config, "LOG_FORMAT", "json")
    monkeypatch.setitem(app.config, "LOG_LEVEL", "warning")
    try:
        handler = configure_logging(app)

        assert isinstance(handler.formatter, JSONFormatter)
        assert logging.getLogger().level == logging.WARNING
    finally:
        monkeypatch.undo()
        configure_logging(app)


def test_rate_limits_cover_every_mutating_blueprint(app):
    assert set(MUTATING_BLUEPRINTS) <= set(app.blueprints)
