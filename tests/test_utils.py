import json
import logging
import sys
from unittest.mock import patch

from dispatchkit.utils import tracing
from dispatchkit.utils.logging import ConsoleFormatter, JSONFormatter, get_logger, setup_logging
from dispatchkit.utils.metrics import MetricsManager


def _record(msg="hello", exc_info=None):
    return logging.LogRecord("dispatchkit.test", logging.INFO, __file__, 10, msg, None, exc_info)


def test_json_formatter_fields():
    out = json.loads(JSONFormatter().format(_record()))
    assert out["level"] == "INFO"
    assert out["logger"] == "dispatchkit.test"
    assert out["message"] == "hello"
    assert out["timestamp"].endswith("Z")


def test_formatters_include_exception():
    try:
        raise ValueError("boom")
    except ValueError:
        exc_info = sys.exc_info()

    assert "ValueError: boom" in json.loads(JSONFormatter().format(_record(exc_info=exc_info)))["exception"]
    assert "ValueError: boom" in ConsoleFormatter().format(_record(exc_info=exc_info))


def test_setup_logging_picks_formatter():
    setup_logging(level=logging.DEBUG, log_format="json")
    root = logging.getLogger()
    assert len(root.handlers) == 1
    assert isinstance(root.handlers[0].formatter, JSONFormatter)

    setup_logging(log_format="text")
    assert isinstance(logging.getLogger().handlers[0].formatter, ConsoleFormatter)
    assert get_logger("Ledger").name == "dispatchkit.Ledger"


def test_metrics_manager_is_shared():
    counter = MetricsManager().counter("test_shared_total")
    before = MetricsManager().get_all()["test_shared_total"]
    counter.inc()
    assert MetricsManager().get_all()["test_shared_total"] == before + 1
    assert b"test_shared_total" in MetricsManager().exposition()


def test_tracer_disabled_by_default():
    with patch.object(tracing.settings, "OTEL_ENABLED", False), \
            patch.object(tracing, "_initialized", False):
        assert tracing.init_tracer("dispatchkit-test") is False


def test_spans_work_without_sdk():
    with tracing.get_tracer().start_as_current_span("probe") as span:
        span.set_attribute("order.id", "o1")
    assert not span.is_recording()
