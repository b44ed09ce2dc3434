import json
from unittest import mock

import pytest

from drcontrol.failover import (
    ConfigurationError,
    FailoverService,
    FailoverStatus,
    Request,
    Response,
    handler,
    validate_action,
    validate_region,
)


class FakeDynamo:
    def __init__(self, healthy=True):
        self.healthy = healthy
        self.listings = 0
        self.puts = []

    def list_tables(self, **kwargs):
        self.listings += 1
        if not self.healthy:
            raise ConnectionError("unreachable")
        return {"TableNames": []}

    def put_item(self, **kwargs):
        self.puts.append(kwargs)


def make_service(remote_healthy=True, local_healthy=True):
    local = FakeDynamo(local_healthy)
    remotes = {}

    def factory(region):
        remotes[region] = FakeDynamo(remote_healthy)
        return remotes[region]

    return FailoverService(local, "us-east-1", factory), local, remotes


def test_request_parsing():
    request = Request.from_dict({"action": "failover", "target_region": "us-west-2", "force": True})
    assert (request.action, request.target_region, request.force) == ("failover", "us-west-2", True)

    no_force = Request.from_dict({"action": "failback", "target_region": "eu-west-1"})
    assert (no_force.action, no_force.target_region, no_force.force) == ("failback", "eu-west-1", None)


def test_request_missing_field():
    with pytest.raises(ValueError):
        Request.from_dict({"action": "failover"})


def test_request_force_must_be_bool():
    with pytest.raises(ValueError):
        Request.from_dict({"action": "failover", "target_region": "us-west-2", "force": "yes"})


def test_response_structure():
    response = Response("success", "Failover to region us-west-2 completed", "failover", "2025-01-06T12:00:00Z")
    data = response.to_dict()
    assert data["status"] == "success"
    assert data["message"] == "Failover to region us-west-2 completed"
    assert data["action"] == "failover"
    assert data["timestamp"] == "2025-01-06T12:00:00Z"


def test_special_characters_in_message_round_trip():
    response = Response(
        "failed",
        "Region 'us-west-2' check failed: Connection timeout @ 15:30:45 UTC",
        "failover",
        "2025-01-06T15:30:45Z",
    )
    restored = Response.from_dict(json.loads(json.dumps(response.to_dict())))
    assert restored == response


def test_failover_status_serialisation():
    status = FailoverStatus("failover_status", 1704556800, "failover", "us-east-1", "us-west-2", "completed")
    text = json.dumps(status.to_dict())
    for part in ("failover_status", "1704556800", "us-east-1", "us-west-2"):
        assert part in text


def test_action_validation():
    assert validate_action("failover")
    assert validate_action("failback")
    assert not validate_action("rollback")
    assert not validate_action("restart")
    assert not validate_action("")
    assert not validate_action("FAILOVER")
    assert not validate_action("invalid-action")


@pytest.mark.parametrize(
    "region",
    ["us-east-1", "us-west-2", "eu-west-1", "ap-southeast-1", "ca-central-1", "ap-southeast-2", "eu-central-1", "sa-east-1"],
)
def test_valid_regions(region):
    assert validate_region(region) is True


@pytest.mark.parametrize("region", ["invalid", "useast1", "", "us"])
def test_invalid_regions(region):
    assert validate_region(region) is False


@pytest.mark.parametrize(
    "action,region,expected",
    [
        ("failover", "us-west-2", True),
        ("failback", "us-east-1", True),
        ("invalid", "us-west-2", False),
        ("failover", "", False),
    ],
)
def test_multiple_failover_scenarios(action, region, expected):
    assert (validate_action(action) and validate_region(region)) == expected


def test_failover_to_healthy_region_records_status():
    service, local, remotes = make_service()
    with mock.patch("time.time", return_value=1704556800.0):
        response = service.execute_failover("us-west-2", False)
    assert response.status == "success"
    assert response.message == "Failover to region us-west-2 completed"
    assert response.action == "failover"
    assert remotes["us-west-2"].listings == 1
    assert local.puts == [
        {
            "TableName": "dr-backup-metadata",
            "Item": {
                "backup_id": {"S": "failover_status"},
                "timestamp": {"N": "1704556800"},
                "action": {"S": "failover"},
                "source_region": {"S": "us-east-1"},
                "target_region": {"S": "us-west-2"},
                "status": {"S": "completed"},
            },
        }
    ]


def test_failover_to_unhealthy_region_fails_without_force():
    service, local, _ = make_service(remote_healthy=False)
    response = service.execute_failover("us-west-2", False)
    assert response.status == "failed"
    assert response.message == "Target region us-west-2 is not healthy"
    assert local.puts == []


def test_force_skips_health_check():
    service, local, remotes = make_service(remote_healthy=False)
    response = service.execute_failback("us-west-2", True)
    assert response.status == "success"
    assert response.message == "Failback to region us-west-2 completed"
    assert remotes == {}
    assert local.puts[0]["Item"]["action"] == {"S": "failback"}


def test_check_health_uses_own_client_for_current_region():
    service, local, remotes = make_service(local_healthy=False)
    assert service.check_health("us-east-1") is False
    assert local.listings == 1
    assert remotes == {}


def test_invalid_action_response():
    service, local, _ = make_service()
    response = service.handle_request("invalid-action", "us-west-2", False)
    assert response.status == "failed"
    assert response.message == "Invalid action: invalid-action"
    assert response.action == "invalid-action"
    assert local.puts == []


def test_handler_defaults_force_to_false():
    service, _, _ = make_service(remote_healthy=False)
    result = handler({"action": "failback", "target_region": "eu-west-1"}, service)
    assert result["status"] == "failed"
    assert result["action"] == "failback"


def test_from_env_reads_region(monkeypatch):
    monkeypatch.setenv("AWS_REGION", "us-east-1")
    service = FailoverService.from_env(FakeDynamo(), lambda region: FakeDynamo())
    assert service.current_region == "us-east-1"


def test_from_env_requires_region(monkeypatch):
    monkeypatch.delenv("AWS_REGION", raising=False)
    with pytest.raises(ConfigurationError):
        FailoverService.from_env(FakeDynamo(), lambda region: FakeDynamo())