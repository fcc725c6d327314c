from __future__ import annotations

import argparse
from typing import Optional

import boto3


def _alarm_name(prefix: str, name: str) -> str:
    return f"{prefix}-{name}"


def _alarm_actions(topic_arn: Optional[str]) -> list[str]:
    if not topic_arn:
        return []
    return [topic_arn]


def main() -> None:
    parser = argparse.ArgumentParser(description="Create CloudWatch alarms for Parts Pricing")
    parser.add_argument("--alarm-prefix", default="parts-pricing", help="Alarm name prefix")
    parser.add_argument(
        "--namespace",
        default="PartsPricing",
        help="CloudWatch namespace for custom metrics",
    )
    parser.add_argument("--sns-topic-arn", help="SNS topic ARN for alarm actions")
    parser.add_argument(
        "--lot-failure-threshold",
        type=int,
        default=1,
        help="Failed apply/revert count that triggers the alarm",
    )
    parser.add_argument(
        "--lot-failure-period",
        type=int,
        default=300,
        help="Period in seconds for the lot failure alarm",
    )
    parser.add_argument(
        "--unpriced-items-threshold",
        type=int,
        default=50,
        help="Unpriced item count reported by the dashboard that triggers the alarm",
    )
    parser.add_argument(
        "--unpriced-items-period",
        type=int,
        default=3600,
        help="Period in seconds for the unpriced items alarm",
    )

    args = parser.parse_args()

    cloudwatch = boto3.client("cloudwatch")
    alarm_actions = _alarm_actions(args.sns_topic_arn)

    cloudwatch.put_metric_alarm(
        AlarmName=_alarm_name(args.alarm_prefix, "lot-operation-failures"),
        AlarmDescription=(
            "Triggers when repricing lot apply or revert fails. "
            "A failed lot leaves prices untouched; check the lot state before retrying."
        ),
        Namespace=args.namespace,
        MetricName="LotOperationFailed",
        Dimensions=[],
        Statistic="Sum",
        Period=args.lot_failure_period,
        EvaluationPeriods=1,
        DatapointsToAlarm=1,
        Threshold=args.lot_failure_threshold,
        ComparisonOperator="GreaterThanOrEqualToThreshold",
        TreatMissingData="notBreaching",
        AlarmActions=alarm_actions,
        OKActions=alarm_actions,
    )

    cloudwatch.put_metric_alarm(
        AlarmName=_alarm_name(args.alarm_prefix, "unpriced-items"),
        AlarmDescription="Triggers when active items cannot be priced (no markup, list or explicit price).",
        Namespace=args.namespace,
        MetricName="UnpricedItems",
        Dimensions=[],
        Statistic="Maximum",
        Period=args.unpriced_items_period,
        EvaluationPeriods=1,
        DatapointsToAlarm=1,
        Threshold=args.unpriced_items_threshold,
        ComparisonOperator="GreaterThanOrEqualToThreshold",
        TreatMissingData="notBreaching",
        AlarmActions=alarm_actions,
        OKActions=alarm_actions,
    )


if __name__ == "__main__":
    main()
