"""Failover and failback between regions, recorded in the metadata table.

The service takes a DynamoDB-style client for its own region and a
factory that returns such a client for any other region.
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable, Mapping
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)

STATUS_TABLE = "dr-backup-metadata"
VALID_ACTIONS = frozenset({"failover", "failback"})


class ConfigurationError(RuntimeError):
    """Raised when required configuration is missing."""


def _now_rfc3339() -> str:
    return datetime.now(timezone.utc).isoformat()


def _ensure_mapping(data: Any) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise ValueError("expected a JSON object")
    return data


def _field(data: Mapping[str, Any], name: str, kind: type, *, optional: bool = False) -> Any:
    if name not in data or data[name] is None:
        if optional:
            return None
        raise ValueError(f"missing field '{name}'")
    value = data[name]
    if kind is int and isinstance(value, bool) or not isinstance(value, kind):
        raise ValueError(f"field '{name}' must be {kind.__name__}")
    return value


def validate_action(action: str) -> bool:
    """Return whether the action is ``failover`` or ``failback``."""
    return action in VALID_ACTIONS


def validate_region(region: str) -> bool:
    """Return whether the region looks like a region name."""
    return bool(region) and "-" in region


@dataclass
class Request:
    """A request to move traffic to a region."""

    action: str
    target_region: str
    force: bool | None = None

    @classmethod
    def from_dict(cls, data: Any) -> Request:
        data = _ensure_mapping(data)
        return cls(
            action=_field(data, "action", str),
            target_region=_field(data, "target_region", str),
            force=_field(data, "force", bool, optional=True),
        )


@dataclass
class Response:
    """The outcome of a failover or failback request."""

    status: str
    message: str
    action: str
    timestamp: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> Response:
        data = _ensure_mapping(data)
        return cls(
            status=_field(data, "status", str),
            message=_field(data, "message", str),
            action=_field(data, "action", str),
            timestamp=_field(data, "timestamp", str),
        )


@dataclass
class FailoverStatus:
    """A record of a completed failover or failback."""

    id: str
    timestamp: int
    action: str
    source_region: str
    target_region: str
    status: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class FailoverService:
    """Checks region health and records failover and failback operations."""

    def __init__(
        self,
        dynamo_client: Any,
        current_region: str,
        client_factory: Callable[[str], Any],
    ):
        self.dynamo_client = dynamo_client
        self.current_region = current_region
        self.client_factory = client_factory

    @classmethod
    def from_env(cls, dynamo_client: Any, client_factory: Callable[[str], Any]) -> FailoverService:
        """Build a service for the region named by ``AWS_REGION``."""
        try:
            region = os.environ["AWS_REGION"]
        except KeyError:
            raise ConfigurationError("environment variable AWS_REGION is not set") from None
        return cls(dynamo_client, region, client_factory)

    def check_health(self, region: str) -> bool:
        """Return whether the region's table service answers a listing."""
        client = self.dynamo_client if region == self.current_region else self.client_factory(region)
        try:
            client.list_tables(Limit=1)
        except Exception:
            return False
        return True

    def update_failover_status(self, to_region: str, action: str) -> None:
        """Record a completed operation in the status table."""
        self.dynamo_client.put_item(
            TableName=STATUS_TABLE,
            Item={
                "backup_id": {"S": "failover_status"},
                "timestamp": {"N": str(int(time.time()))},
                "action": {"S": action},
                "source_region": {"S": self.current_region},
                "target_region": {"S": to_region},
                "status": {"S": "completed"},
            },
        )

    def _execute(self, action: str, target_region: str, force: bool) -> Response:
        logger.info("Executing %s to region: %s", action, target_region)
        if not force and not self.check_health(target_region):
            logger.warning(
                "Target region %s is not healthy. Use force=true to override.", target_region
            )
            return Response(
                status="failed",
                message=f"Target region {target_region} is not healthy",
                action=action,
                timestamp=_now_rfc3339(),
            )

        self.update_failover_status(target_region, action)
        return Response(
            status="success",
            message=f"{action.capitalize()} to region {target_region} completed",
            action=action,
            timestamp=_now_rfc3339(),
        )

    def execute_failover(self, target_region: str, force: bool) -> Response:
        """Fail over to the target region unless it is unhealthy and not forced."""
        return self._execute("failover", target_region, force)

    def execute_failback(self, target_region: str, force: bool) -> Response:
        """Fail back to the target region unless it is unhealthy and not forced."""
        return self._execute("failback", target_region, force)

    def handle_request(self, action: str, target_region: str, force: bool) -> Response:
        """Dispatch on the action; unknown actions give a failed response."""
        if action == "failover":
            return self.execute_failover(target_region, force)
        if action == "failback":
            return self.execute_failback(target_region, force)
        logger.error("Invalid action: %s", action)
        return Response(
            status="failed",
            message=f"Invalid action: {action}",
            action=action,
            timestamp=_now_rfc3339(),
        )


def handler(event: Any, service: FailoverService) -> dict[str, Any]:
    """Handle one invocation event and return the JSON-ready response."""
    request = Request.from_dict(event)
    force = request.force if request.force is not None else False
    return service.handle_request(request.action, request.target_region, force).to_dict()