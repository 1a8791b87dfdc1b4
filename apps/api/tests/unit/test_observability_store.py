import json
import logging

from greendrop.observability import JsonFormatter, metrics_store, observe_timing


def test_metrics_store_reset_clears_counters_and_timings():
    metrics_store.increment("change_events_total")
    metrics_store.observe("health_check_seconds", 0.25)

    metrics_store.reset()

    snapshot = metrics_store.snapshot()
    assert snapshot.counters == {}
    assert snapshot.timings == {}


def test_metrics_store_summarizes_timings():
    metrics_store.observe("metrics_aggregation_seconds", 0.1)
    metrics_store.observe("metrics_aggregation_seconds", 0.3)
    metrics_store.increment("alerts_sent_total", 2)

    snapshot = metrics_store.snapshot()

    assert snapshot.counters == {"alerts_sent_total": 2}
    stats = snapshot.timings["metrics_aggregation_seconds"]
    assert stats["count"] == 2.0
    assert stats["max_s"] == 0.3
    assert abs(stats["avg_s"] - 0.2) < 1e-9


def test_observe_timing_records_even_when_block_raises():
    try:
        with observe_timing("change_event_orders_seconds"):
            raise ValueError("boom")
    except ValueError:
        pass

    assert metrics_store.snapshot().timings["change_event_orders_seconds"]["count"] == 1.0


def test_json_formatter_includes_correlation_fields():
    record = logging.LogRecord(
        name="greendrop.orchestrator",
        level=logging.WARNING,
        pathname=__file__,
        lineno=1,
        msg="driver_release_skipped_reassigned",
        args=(),
        exc_info=None,
    )
    record.order_id = "order-1"
    record.driver_id = "d1"
    record.request_id = "req-1"

    payload = json.loads(JsonFormatter().format(record))

    assert payload["level"] == "WARNING"
    assert payload["message"] == "driver_release_skipped_reassigned"
    assert payload["order_id"] == "order-1"
    assert payload["driver_id"] == "d1"
    assert payload["request_id"] == "req-1"
    assert payload["alert_id"] is None
