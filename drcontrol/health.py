"""Health checks for the table service, the backup bucket and replication.

The service works with any client objects that offer the low-level
DynamoDB, S3 and CloudWatch call shapes used here: ``list_tables``,
``get_item``, ``list_objects_v2`` and ``put_metric_data`` with keyword
arguments.
"""

from __future__ import annotations

import logging
import os
import re
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any

from drcontrol.failover import _ensure_mapping, _field, _now_rfc3339

logger = logging.getLogger(__name__)

METRIC_NAMESPACE = "DisasterRecovery"
SENTINEL_TABLE = "dr-sentinel-table"
SENTINEL_ID = "sentinel"
DEFAULT_REGION = "us-east-1"

_INTEGER = re.compile(r"[+-]?\d+")


@dataclass
class Request:
    """A health-check request, optionally naming the region to report."""

    region: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> Request:
        data = _ensure_mapping(data)
        return cls(region=_field(data, "region", str, optional=True))


@dataclass
class ServiceStatus:
    """Health of each checked service and the measured replication lag."""

    dynamodb: bool
    s3: bool
    replication_lag: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @property
    def healthy(self) -> bool:
        return self.dynamodb and self.s3


@dataclass
class Response:
    """The outcome of a health check."""

    status: str
    region: str
    timestamp: str
    services: ServiceStatus

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class HealthCheckService:
    """Checks service health and publishes the results as metrics."""

    def __init__(self, dynamo_client: Any, s3_client: Any, cloudwatch_client: Any, region: str):
        self.dynamo_client = dynamo_client
        self.s3_client = s3_client
        self.cloudwatch_client = cloudwatch_client
        self.region = region

    @classmethod
    def from_env(
        cls,
        dynamo_client: Any,
        s3_client: Any,
        cloudwatch_client: Any,
        region: str | None = None,
    ) -> HealthCheckService:
        """Build a service; without a region, use ``AWS_REGION`` or the default."""
        if region is None:
            region = os.environ.get("AWS_REGION", DEFAULT_REGION)
        return cls(dynamo_client, s3_client, cloudwatch_client, region)

    def _with_region(self, region: str) -> HealthCheckService:
        return type(self)(self.dynamo_client, self.s3_client, self.cloudwatch_client, region)

    def check_dynamodb_health(self) -> bool:
        """Return whether the table service answers a listing."""
        try:
            self.dynamo_client.list_tables(Limit=1)
        except Exception:
            return False
        return True

    def check_s3_health(self) -> bool:
        """Return whether the backup bucket can be listed."""
        bucket = os.environ.get("BACKUP_BUCKET", f"dr-demo-backup-bucket-{self.region}")
        try:
            self.s3_client.list_objects_v2(Bucket=bucket, MaxKeys=1)
        except Exception:
            return False
        return True

    def check_replication_lag(self) -> int | None:
        """Seconds since the sentinel record was last updated, if known."""
        try:
            response = self.dynamo_client.get_item(
                TableName=SENTINEL_TABLE, Key={"id": {"S": SENTINEL_ID}}
            )
        except Exception:
            return None
        item = response.get("Item") if response else None
        if not item:
            return None
        attribute = item.get("last_updated")
        if not isinstance(attribute, dict):
            return None
        text = attribute.get("N")
        if not isinstance(text, str) or not _INTEGER.fullmatch(text):
            return None
        return int(time.time()) - int(text)

    def publish_metrics(self, status: ServiceStatus) -> None:
        """Send the health metrics in a single call; failures are re-raised."""
        timestamp = datetime.now(timezone.utc)
        metrics = [
            {
                "MetricName": "DynamoDBHealth",
                "Value": 1.0 if status.dynamodb else 0.0,
                "Unit": "None",
                "Timestamp": timestamp,
            },
            {
                "MetricName": "S3Health",
                "Value": 1.0 if status.s3 else 0.0,
                "Unit": "None",
                "Timestamp": timestamp,
            },
        ]
        if status.replication_lag is not None:
            metrics.append(
                {
                    "MetricName": "ReplicationLag",
                    "Value": float(status.replication_lag),
                    "Unit": "Seconds",
                    "Timestamp": timestamp,
                }
            )

        logger.info("Publishing %d metrics to CloudWatch", len(metrics))
        try:
            self.cloudwatch_client.put_metric_data(Namespace=METRIC_NAMESPACE, MetricData=metrics)
        except Exception as exc:
            logger.error("Failed to publish metrics: %s", exc)
            raise

    def run_health_check(self) -> Response:
        """Check every service, publish metrics and report overall health."""
        status = ServiceStatus(
            dynamodb=self.check_dynamodb_health(),
            s3=self.check_s3_health(),
            replication_lag=self.check_replication_lag(),
        )
        try:
            self.publish_metrics(status)
        except Exception as exc:
            logger.error("Failed to publish metrics: %s", exc)

        return Response(
            status="healthy" if status.healthy else "unhealthy",
            region=self.region,
            timestamp=_now_rfc3339(),
            services=status,
        )


def handler(event: Any, service: HealthCheckService) -> dict[str, Any]:
    """Handle one invocation event and return the JSON-ready response."""
    request = Request.from_dict(event)
    if request.region is not None:
        service = service._with_region(request.region)
    return service.run_health_check().to_dict()