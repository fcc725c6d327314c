import json
import logging
from decimal import Decimal
from unittest.mock import MagicMock

from parts_pricing.engine.catalog.models import Category
from parts_pricing.util.logging import get_logger, log_event
from parts_pricing.util.metrics import CloudWatchMetrics


def test_log_event_emits_json(caplog) -> None:
    logger = get_logger("parts_pricing.test")
    with caplog.at_level(logging.INFO, logger="parts_pricing.test"):
        log_event(logger, "lot_applied", lot_id="lot-1", value=Decimal("1.50"))
    payload = json.loads(caplog.records[-1].getMessage())
    assert payload["event"] == "lot_applied"
    assert payload["lot_id"] == "lot-1"
    assert payload["value"] == "1.50"
    assert payload["service"] == "parts-pricing"
    assert "timestamp" in payload


def test_log_event_severity_and_structured_values(caplog) -> None:
    logger = get_logger("parts_pricing.test")
    with caplog.at_level(logging.INFO, logger="parts_pricing.test"):
        log_event(
            logger,
            "lot_apply_failed",
            level=logging.WARNING,
            categories=frozenset({Category.MOTOR, Category.FRENOS}),
        )
    record = caplog.records[-1]
    assert record.levelno == logging.WARNING
    assert json.loads(record.getMessage())["categories"] == ["FRENOS", "MOTOR"]


def test_disabled_metrics_do_nothing() -> None:
    metrics = CloudWatchMetrics.from_env()
    assert metrics.enabled is False
    assert metrics.client is None
    metrics.record_lot_applied(affected_count=3)


def test_lot_failure_metric_payload() -> None:
    metrics = CloudWatchMetrics(namespace="PartsPricing", enabled=False)
    metrics.enabled = True
    metrics.client = MagicMock()

    metrics.record_lot_failure(operation="apply", error_type="conflict")

    calls = metrics.client.put_metric_data.call_args_list
    assert len(calls) == 2
    dimensioned = calls[0].kwargs["MetricData"][0]
    assert dimensioned["MetricName"] == "LotOperationFailed"
    assert {"Name": "operation", "Value": "apply"} in dimensioned["Dimensions"]
    assert "Dimensions" not in calls[1].kwargs["MetricData"][0]
    assert calls[0].kwargs["Namespace"] == "PartsPricing"
