from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Iterable, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from parts_pricing.util.logging import get_logger


@dataclass(frozen=True)
class MetricDimension:
    name: str
    value: str


class CloudWatchMetrics:
    def __init__(self, *, namespace: str, enabled: bool) -> None:
        self.namespace = namespace
        self.enabled = enabled
        self.client = boto3.client("cloudwatch") if enabled else None
        self.logger = get_logger(self.__class__.__name__)

    @classmethod
    def from_env(cls) -> "CloudWatchMetrics":
        enabled = os.getenv("CLOUDWATCH_METRICS_ENABLED", "false").lower() == "true"
        namespace = os.getenv("CLOUDWATCH_METRICS_NAMESPACE", "PartsPricing")
        return cls(namespace=namespace, enabled=enabled)

    def _put_metric(
        self,
        *,
        name: str,
        value: float,
        unit: str = "Count",
        dimensions: Optional[Iterable[MetricDimension]] = None,
    ) -> None:
        if not self.enabled or not self.client:
            return
        payload = {
            "MetricName": name,
            "Value": value,
            "Unit": unit,
        }
        if dimensions:
            payload["Dimensions"] = [
                {"Name": dimension.name, "Value": dimension.value} for dimension in dimensions
            ]
        try:
            self.client.put_metric_data(
                Namespace=self.namespace,
                MetricData=[payload],
            )
        except (BotoCoreError, ClientError) as exc:
            self.logger.warning("cloudwatch_metric_failed", extra={"error": str(exc), "metric": name})

    def record_lot_applied(self, *, affected_count: int) -> None:
        self._put_metric(name="LotApplied", value=1.0)
        self._put_metric(name="LotItemsRepriced", value=float(affected_count))

    def record_lot_reverted(self, *, restored_count: int) -> None:
        self._put_metric(name="LotReverted", value=1.0)
        self._put_metric(name="LotItemsRestored", value=float(restored_count))

    def record_lot_failure(self, *, operation: str, error_type: str) -> None:
        self._put_metric(
            name="LotOperationFailed",
            value=1.0,
            dimensions=[
                MetricDimension(name="operation", value=operation),
                MetricDimension(name="error_type", value=error_type),
            ],
        )
        self._put_metric(name="LotOperationFailed", value=1.0)

    def record_unpriced_items(self, *, count: int) -> None:
        self._put_metric(name="UnpricedItems", value=float(count))
