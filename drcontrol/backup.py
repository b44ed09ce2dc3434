"""Table backups to object storage, with a metadata record per backup.

The service works with any client objects that offer the low-level
DynamoDB and S3 call shapes used here: ``scan``, ``put_item`` and
``put_object`` with keyword arguments, and items made of typed
attribute values such as ``{"S": "text"}`` or ``{"N": "42"}``.
"""

from __future__ import annotations

import json
import logging
import os
import time
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_BACKUP_BUCKET = "dr-demo-backup-bucket-primary"
DEFAULT_METADATA_TABLE = "dr-backup-metadata"
DEFAULT_BACKUP_TYPE = "full"


def _now_rfc3339() -> str:
    return datetime.now(timezone.utc).isoformat()


def _field(data: Mapping[str, Any], name: str, kind: type, *, optional: bool = False) -> Any:
    if name not in data or data[name] is None:
        if optional:
            return None
        raise ValueError(f"missing field '{name}'")
    value = data[name]
    if kind is int and isinstance(value, bool):
        raise ValueError(f"field '{name}' must be {kind.__name__}")
    if not isinstance(value, kind):
        raise ValueError(f"field '{name}' must be {kind.__name__}")
    if kind is int and value < 0:
        raise ValueError(f"field '{name}' must not be negative")
    return value


def _ensure_mapping(data: Any) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise ValueError("expected a JSON object")
    return data


def _parse_number(text: str) -> int | float:
    try:
        return int(text)
    except ValueError:
        return float(text)


def _from_attribute(value: Mapping[str, Any]) -> Any:
    """Turn one typed attribute value into a plain JSON-style value."""
    if len(value) != 1:
        raise ValueError(f"malformed attribute value: {value!r}")
    (kind, payload), = value.items()
    if kind == "S":
        return payload
    if kind == "N":
        return _parse_number(payload)
    if kind == "BOOL":
        return bool(payload)
    if kind == "NULL":
        return None
    if kind == "B":
        return list(payload)
    if kind == "SS":
        return list(payload)
    if kind == "NS":
        return [_parse_number(n) for n in payload]
    if kind == "BS":
        return [list(b) for b in payload]
    if kind == "L":
        return [_from_attribute(v) for v in payload]
    if kind == "M":
        return {k: _from_attribute(v) for k, v in payload.items()}
    raise ValueError(f"unsupported attribute type: {kind}")


def _to_attribute(value: Any) -> dict[str, Any]:
    """Turn a plain value into a typed attribute value."""
    if value is None:
        return {"NULL": True}
    if isinstance(value, bool):
        return {"BOOL": value}
    if isinstance(value, (int, float)):
        return {"N": str(value)}
    if isinstance(value, str):
        return {"S": value}
    if isinstance(value, (bytes, bytearray)):
        return {"B": bytes(value)}
    if isinstance(value, Mapping):
        return {"M": {str(k): _to_attribute(v) for k, v in value.items()}}
    if isinstance(value, (list, tuple)):
        return {"L": [_to_attribute(v) for v in value]}
    raise ValueError(f"cannot store value of type {type(value).__name__}")


@dataclass
class Request:
    """A backup request: the table to back up and the kind of backup."""

    table_name: str
    backup_type: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> Request:
        data = _ensure_mapping(data)
        return cls(
            table_name=_field(data, "table_name", str),
            backup_type=_field(data, "backup_type", str, optional=True),
        )


@dataclass
class Response:
    """The outcome of a completed backup."""

    status: str
    backup_id: str
    timestamp: str
    items_backed_up: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class BackupMetadata:
    """The record kept in the metadata table for each backup."""

    backup_id: str
    table_name: str
    timestamp: str
    items_count: int
    status: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> BackupMetadata:
        data = _ensure_mapping(data)
        return cls(
            backup_id=_field(data, "backup_id", str),
            table_name=_field(data, "table_name", str),
            timestamp=_field(data, "timestamp", str),
            items_count=_field(data, "items_count", int),
            status=_field(data, "status", str),
        )


@dataclass
class GenericItem:
    """A table item with arbitrary attributes, serialised flat."""

    attributes: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return dict(self.attributes)

    @classmethod
    def from_dict(cls, data: Any) -> GenericItem:
        return cls(attributes=dict(_ensure_mapping(data)))

    @classmethod
    def _from_dynamo(cls, item: Mapping[str, Any]) -> GenericItem:
        return cls({name: _from_attribute(value) for name, value in item.items()})


def generate_backup_id(table_name: str, backup_type: str, timestamp: int) -> str:
    """Build the identifier ``<table>-<type>-<unix seconds>``."""
    return f"{table_name}-{backup_type}-{timestamp}"


class BackupManagerService:
    """Scans a table, stores its items as JSON and records the backup."""

    def __init__(self, dynamo_client: Any, s3_client: Any, backup_bucket: str, metadata_table: str):
        self.dynamo_client = dynamo_client
        self.s3_client = s3_client
        self.backup_bucket = backup_bucket
        self.metadata_table = metadata_table

    @classmethod
    def from_env(cls, dynamo_client: Any, s3_client: Any) -> BackupManagerService:
        """Build a service with bucket and table names from the environment."""
        return cls(
            dynamo_client,
            s3_client,
            os.environ.get("BACKUP_BUCKET", DEFAULT_BACKUP_BUCKET),
            os.environ.get("METADATA_TABLE", DEFAULT_METADATA_TABLE),
        )

    def _scan_all(self, table_name: str):
        start_key = None
        while True:
            params: dict[str, Any] = {"TableName": table_name}
            if start_key is not None:
                params["ExclusiveStartKey"] = start_key
            page = self.dynamo_client.scan(**params)
            for item in page.get("Items") or []:
                yield GenericItem._from_dynamo(item)
            start_key = page.get("LastEvaluatedKey")
            if start_key is None:
                return

    def create_backup(self, table_name: str, backup_type: str) -> tuple[str, int]:
        """Copy every item of the table to the backup bucket.

        Returns the backup id and the number of items written.
        """
        backup_id = generate_backup_id(table_name, backup_type, int(time.time()))
        items = [item.to_dict() for item in self._scan_all(table_name)]

        body = json.dumps(items, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        key = f"backups/{table_name}/{backup_id}.json"
        self.s3_client.put_object(Bucket=self.backup_bucket, Key=key, Body=body)

        logger.info("Created backup %s with %d items", backup_id, len(items))
        return backup_id, len(items)

    def update_backup_metadata(self, backup_id: str, table_name: str, items_count: int) -> None:
        """Write a completed-backup record to the metadata table."""
        metadata = BackupMetadata(
            backup_id=backup_id,
            table_name=table_name,
            timestamp=str(int(time.time())),
            items_count=items_count,
            status="completed",
        )
        item = {name: _to_attribute(value) for name, value in metadata.to_dict().items()}
        self.dynamo_client.put_item(TableName=self.metadata_table, Item=item)

    def run_backup(self, table_name: str, backup_type: str) -> Response:
        """Back up the table, record it and report the result."""
        backup_id, items_count = self.create_backup(table_name, backup_type)
        self.update_backup_metadata(backup_id, table_name, items_count)
        return Response(
            status="success",
            backup_id=backup_id,
            timestamp=_now_rfc3339(),
            items_backed_up=items_count,
        )


def handler(event: Any, service: BackupManagerService) -> dict[str, Any]:
    """Handle one invocation event and return the JSON-ready response."""
    request = Request.from_dict(event)
    backup_type = request.backup_type if request.backup_type is not None else DEFAULT_BACKUP_TYPE
    return service.run_backup(request.table_name, backup_type).to_dict()