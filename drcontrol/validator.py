"""Cross-region data validation: item counts, sampled items, replication lag
and backup freshness, with metrics and recommendations.

The service works with any client objects that offer the low-level
DynamoDB and CloudWatch call shapes used here: ``describe_table``,
``scan``, ``get_item``, ``put_item``, ``delete_item`` and
``put_metric_data`` with keyword arguments.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from drcontrol.failover import _ensure_mapping, _field, _now_rfc3339

logger = logging.getLogger(__name__)

METRIC_NAMESPACE = "DisasterRecovery"
SENTINEL_TABLE = "dr-sentinel-table"
METADATA_TABLE = "dr-backup-metadata"
DEFAULT_TABLES = ("dr-application-table", "dr-sentinel-table")
DEFAULT_SOURCE_REGION = "us-east-1"
DEFAULT_TARGET_REGION = "us-west-2"
DEFAULT_VALIDATION_TYPE = "incremental"
DEFAULT_ACTION = "validate"

CONSISTENCY_THRESHOLD = 95.0
LAG_THRESHOLD_SECONDS = 60
BACKUP_AGE_THRESHOLD_HOURS = 24.0
BACKUP_RETENTION_THRESHOLD_DAYS = 30.0

SAMPLE_SIZE = 10
LAG_POLL_ATTEMPTS = 10
HEALTHY_MESSAGE = "All validation checks passed. System is healthy."

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1
_INTEGER = re.compile(r"[+-]?\d+")


def _parse_int64(text: Any) -> int | None:
    if not isinstance(text, str) or not _INTEGER.fullmatch(text):
        return None
    value = int(text)
    if not _INT64_MIN <= value <= _INT64_MAX:
        return None
    return value


@dataclass
class Request:
    """A validation request; every field is optional."""

    validation_type: str | None = None
    table_name: str | None = None
    source_region: str | None = None
    target_region: str | None = None
    action: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> Request:
        data = _ensure_mapping(data)
        return cls(
            validation_type=_field(data, "validation_type", str, optional=True),
            table_name=_field(data, "table_name", str, optional=True),
            source_region=_field(data, "source_region", str, optional=True),
            target_region=_field(data, "target_region", str, optional=True),
            action=_field(data, "action", str, optional=True),
        )


@dataclass
class BackupStatus:
    """Freshness and count of the recorded backups."""

    last_backup_age_hours: float | None = None
    backup_count: int = 0
    oldest_backup_days: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ValidationResults:
    """Totals gathered over all validated tables."""

    tables_validated: int
    records_checked: int
    mismatches_found: int
    replication_lag_seconds: int | None
    backup_status: BackupStatus
    consistency_score: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Response:
    """The outcome of a validation run."""

    status: str
    validation_type: str
    timestamp: str
    results: ValidationResults
    recommendations: list[str]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class TableValidation:
    """Counts and sampled mismatches for one table."""

    table_name: str
    primary_count: int
    dr_count: int
    sample_mismatches: list[str] = field(default_factory=list)

    @property
    def mismatches(self) -> int:
        return abs(self.primary_count - self.dr_count) + len(self.sample_mismatches)


class DataValidatorService:
    """Compares the primary and DR regions and reports data consistency."""

    def __init__(
        self,
        primary_dynamo: Any,
        dr_dynamo: Any,
        s3_client: Any,
        cloudwatch_client: Any,
        source_region: str = DEFAULT_SOURCE_REGION,
        target_region: str = DEFAULT_TARGET_REGION,
        sleep: Callable[[float], Any] = time.sleep,
    ):
        self.primary_dynamo = primary_dynamo
        self.dr_dynamo = dr_dynamo
        self.s3_client = s3_client
        self.cloudwatch_client = cloudwatch_client
        self.source_region = source_region
        self.target_region = target_region
        self.sleep = sleep

    def get_table_item_count(self, client: Any, table_name: str) -> int:
        """The item count the table service reports, or 0 if unknown."""
        response = client.describe_table(TableName=table_name)
        table = response.get("Table") if response else None
        if not table:
            return 0
        return int(table.get("ItemCount") or 0)

    def validate_table_data(self, table_name: str) -> TableValidation:
        """Compare item counts and check that sampled items exist in DR."""
        logger.info("Validating table: %s", table_name)
        primary_count = self.get_table_item_count(self.primary_dynamo, table_name)
        dr_count = self.get_table_item_count(self.dr_dynamo, table_name)

        mismatches: list[str] = []
        page = self.primary_dynamo.scan(TableName=table_name, Limit=SAMPLE_SIZE)
        for item in page.get("Items") or []:
            id_attr = item.get("id")
            if not isinstance(id_attr, dict) or not isinstance(id_attr.get("S"), str):
                continue
            item_id = id_attr["S"]
            try:
                found = self.dr_dynamo.get_item(TableName=table_name, Key={"id": {"S": item_id}})
            except Exception as exc:
                logger.warning("Error checking item %s in DR: %s", item_id, exc)
                continue
            if not (found and found.get("Item")):
                mismatches.append(f"Item {item_id} not found in DR")

        return TableValidation(table_name, primary_count, dr_count, mismatches)

    def check_replication_lag(self) -> int | None:
        """Write a probe record to primary and time its arrival in DR.

        Returns whole seconds, or None if it never arrived.
        """
        test_id = f"lag-test-{int(time.time() * 1000)}"
        self.primary_dynamo.put_item(
            TableName=SENTINEL_TABLE,
            Item={
                "id": {"S": test_id},
                "timestamp": {"N": str(int(time.time()))},
                "source": {"S": "validator"},
            },
        )

        self.sleep(2)
        start = time.time()
        lag = None
        for _ in range(LAG_POLL_ATTEMPTS):
            try:
                response = self.dr_dynamo.get_item(
                    TableName=SENTINEL_TABLE, Key={"id": {"S": test_id}}
                )
            except Exception:
                response = None
            if response and response.get("Item"):
                lag = int(time.time() - start)
                break
            self.sleep(1)

        try:
            self.primary_dynamo.delete_item(TableName=SENTINEL_TABLE, Key={"id": {"S": test_id}})
        except Exception:
            pass
        return lag

    def validate_backups(self) -> BackupStatus:
        """Summarise the backup records in the metadata table."""
        page = self.primary_dynamo.scan(TableName=METADATA_TABLE)
        items = page.get("Items")
        backup_count = len(items) if items is not None else 0

        timestamps = []
        for item in items or []:
            attribute = item.get("timestamp")
            if isinstance(attribute, dict):
                value = _parse_int64(attribute.get("N"))
                if value is not None:
                    timestamps.append(value)

        last = max([0, *timestamps])
        oldest = min([_INT64_MAX, *timestamps])
        now = int(time.time())
        return BackupStatus(
            last_backup_age_hours=(now - last) / 3600.0 if last > 0 else None,
            backup_count=backup_count,
            oldest_backup_days=(now - oldest) / 86400.0 if oldest < _INT64_MAX else None,
        )

    def sync_missing_items(self, table_name: str, validation: TableValidation) -> int:
        """Report how many items the DR table lacks; nothing is copied."""
        missing = validation.primary_count - validation.dr_count
        if missing <= 0:
            return 0
        logger.info("Syncing %d missing items", missing)
        logger.warning("Sync operation would sync %d items to DR region", missing)
        return missing

    def publish_single_metric(
        self, namespace: str, metric_name: str, value: float, unit: str
    ) -> None:
        """Publish one metric; failures are logged and re-raised."""
        datum = {
            "MetricName": metric_name,
            "Value": float(value),
            "Unit": unit,
            "Timestamp": datetime.now(timezone.utc),
        }
        try:
            self.cloudwatch_client.put_metric_data(Namespace=namespace, MetricData=[datum])
        except Exception as exc:
            logger.error("Failed to publish metric %s: %s", metric_name, exc)
            raise

    def publish_validation_metrics(self, results: ValidationResults) -> None:
        """Publish the consistency score and mismatch count; failures are logged."""
        metrics = (
            ("ValidationConsistencyScore", results.consistency_score, "Percent", "consistency score"),
            ("ValidationMismatches", float(results.mismatches_found), "Count", "mismatches"),
        )
        for name, value, unit, label in metrics:
            try:
                self.publish_single_metric(METRIC_NAMESPACE, name, value, unit)
            except Exception as exc:
                logger.error("Failed to publish %s metric: %s", label, exc)

    def generate_recommendations(self, results: ValidationResults) -> list[str]:
        """Advice for every threshold the results cross."""
        recommendations = []
        if results.consistency_score < CONSISTENCY_THRESHOLD:
            recommendations.append(
                f"Data consistency is below 95% ({results.consistency_score:.1f}%). "
                "Investigate mismatches immediately."
            )
        lag = results.replication_lag_seconds
        if lag is not None and lag > LAG_THRESHOLD_SECONDS:
            recommendations.append(
                f"Replication lag is {lag} seconds. "
                "Consider investigating DynamoDB Global Tables health."
            )
        age = results.backup_status.last_backup_age_hours
        if age is not None and age > BACKUP_AGE_THRESHOLD_HOURS:
            recommendations.append(
                f"Last backup is {age:.1f} hours old. Consider running a manual backup."
            )
        oldest = results.backup_status.oldest_backup_days
        if oldest is not None and oldest > BACKUP_RETENTION_THRESHOLD_DAYS:
            recommendations.append(
                f"Oldest backup is {oldest:.0f} days old. Consider reviewing retention policy."
            )
        return recommendations or [HEALTHY_MESSAGE]

    def run_validation(
        self, validation_type: str, table_name: str | None, action: str
    ) -> Response:
        """Validate the named table, or the default tables, and report."""
        tables = [table_name] if table_name is not None else list(DEFAULT_TABLES)

        total_records = 0
        total_mismatches = 0
        validations: list[TableValidation] = []
        for name in tables:
            try:
                validation = self.validate_table_data(name)
            except Exception as exc:
                logger.error("Failed to validate table %s: %s", name, exc)
                continue
            total_records += validation.primary_count
            mismatches = validation.mismatches
            total_mismatches += mismatches
            if action == "sync" and mismatches > 0:
                try:
                    synced = self.sync_missing_items(name, validation)
                except Exception:
                    pass
                else:
                    logger.info("Synced %d items for table %s", synced, name)
            validations.append(validation)

        try:
            replication_lag = self.check_replication_lag()
        except Exception:
            replication_lag = None

        try:
            backup_status = self.validate_backups()
        except Exception:
            backup_status = BackupStatus()

        if total_records > 0:
            consistency_score = (total_records - total_mismatches) / total_records * 100.0
        else:
            consistency_score = 100.0

        results = ValidationResults(
            tables_validated=len(validations),
            records_checked=total_records,
            mismatches_found=total_mismatches,
            replication_lag_seconds=replication_lag,
            backup_status=backup_status,
            consistency_score=consistency_score,
        )

        try:
            self.publish_validation_metrics(results)
        except Exception as exc:
            logger.error("Failed to publish metrics: %s", exc)

        recommendations = self.generate_recommendations(results)
        logger.info(
            "Validation complete: %d tables, %d records, %.1f%% consistency",
            results.tables_validated,
            results.records_checked,
            results.consistency_score,
        )
        for validation in validations:
            if validation.sample_mismatches:
                logger.warning(
                    "Table %s has mismatches: %s",
                    validation.table_name,
                    validation.sample_mismatches,
                )

        return Response(
            status="healthy" if consistency_score >= CONSISTENCY_THRESHOLD else "degraded",
            validation_type=validation_type,
            timestamp=_now_rfc3339(),
            results=results,
            recommendations=recommendations,
        )


def handler(
    event: Any, service_factory: Callable[[str, str], DataValidatorService]
) -> dict[str, Any]:
    """Handle one invocation event and return the JSON-ready response.

    ``service_factory`` receives the source and target regions.
    """
    request = Request.from_dict(event)
    validation_type = (
        request.validation_type if request.validation_type is not None else DEFAULT_VALIDATION_TYPE
    )
    action = request.action if request.action is not None else DEFAULT_ACTION
    source = request.source_region if request.source_region is not None else DEFAULT_SOURCE_REGION
    target = request.target_region if request.target_region is not None else DEFAULT_TARGET_REGION
    service = service_factory(source, target)
    return service.run_validation(validation_type, request.table_name, action).to_dict()