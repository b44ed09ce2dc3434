# drcontrol

Event handlers for disaster recovery across two regions of a key-value
table store, with object storage for backups and a metrics service. The
package has four modules. Each one provides a service class and a plain
`handler(event, ...)` function. The handler takes a JSON-style dict and
returns a JSON-ready dict.

- `drcontrol.backup` scans a table and writes its items as one JSON document
  to a backup bucket. It then records a metadata item for the backup.
- `drcontrol.failover` checks that a target region is healthy, then records
  a failover or failback.
- `drcontrol.health` checks the table store and the backup bucket. It
  measures replication lag from a sentinel record and publishes health
  metrics.
- `drcontrol.validator` compares item counts and sampled items between the
  primary and DR regions. It measures replication lag, reviews backup age,
  and produces a consistency score and recommendations.

None of the services creates its own clients. You pass in client objects
that accept the low-level calls with keyword arguments, in the style of the
DynamoDB, S3 and CloudWatch APIs. The calls are `scan`, `put_item`,
`get_item`, `delete_item`, `describe_table`, `list_tables`, `put_object`,
`list_objects_v2` and `put_metric_data`. Items use typed attribute values
such as `{"S": "text"}` or `{"N": "42"}`. This means the handlers work with
any SDK client of that shape, with a local emulator, or with in-memory
fakes.

The package has no dependencies outside the standard library.

## Installation

```
pip install .
```

To also install the test dependencies and run the tests:

```
pip install ".[test]"
pytest
```

## Request parsing

Each module has a `Request` dataclass with a `from_dict` classmethod.
`from_dict` raises `ValueError` in these cases:

- the event is not a mapping;
- a required field is missing;
- a field has the wrong type.

A field that is present but `null` counts as missing.

## Backups

```python
from drcontrol.backup import BackupManagerService, handler

service = BackupManagerService.from_env(dynamo_client, s3_client)
result = handler({"table_name": "users-table"}, service)
# {'status': 'success', 'backup_id': 'users-table-full-...', 'timestamp': '...', 'items_backed_up': 3}
```

`from_env` reads two environment variables:

| Variable | Setting | Fallback |
| --- | --- | --- |
| `BACKUP_BUCKET` | backup bucket | `dr-demo-backup-bucket-primary` |
| `METADATA_TABLE` | metadata table | `dr-backup-metadata` |

If the request has no `backup_type`, the handler uses `"full"`.

`run_backup` works in three steps:

1. It scans the whole table and follows `LastEvaluatedKey` across pages.
2. It converts every typed attribute value to a plain JSON value.
3. It stores the list under `backups/<table>/<backup_id>.json`.

After that it writes a `BackupMetadata` item with status `"completed"` to
the metadata table.

Backup ids have the form `<table>-<type>-<unix seconds>`:

```python
from drcontrol.backup import generate_backup_id

generate_backup_id("users-table", "full", 1704556800)
# 'users-table-full-1704556800'
```

`GenericItem` and `BackupMetadata` convert to and from plain dicts with
`to_dict` and `from_dict`.

## Failover and failback

```python
from drcontrol.failover import FailoverService, handler

service = FailoverService.from_env(dynamo_client, client_factory)
result = handler({"action": "failover", "target_region": "us-west-2"}, service)
```

`from_env` reads the current region from `AWS_REGION`. It raises
`drcontrol.failover.ConfigurationError` if that variable is not set.

The health check sends `list_tables(Limit=1)` to the target region's client:

- For the current region, that is the service's own client.
- For any other region, it is `client_factory(region)`.

The region counts as healthy if the call does not raise.

Unless `force` is true, an unhealthy target gives a `"failed"` response and
nothing is recorded. Otherwise the service writes a `failover_status` item
to `dr-backup-metadata` and returns `"success"`. An action other than
`failover` or `failback` gives a `"failed"` response with the message
`Invalid action: <action>`.

`validate_action` and `validate_region` give quick checks on input:

```python
from drcontrol.failover import validate_action, validate_region

validate_action("failback")   # True
validate_action("FAILOVER")   # False
validate_region("us-east-1")  # True
validate_region("useast1")    # False (a region name needs a dash)
```

## Health checks

```python
from drcontrol.health import HealthCheckService, handler

service = HealthCheckService.from_env(dynamo_client, s3_client, cloudwatch_client, None)
result = handler({"region": "us-east-1"}, service)
```

If you pass no region, `from_env` uses `AWS_REGION`, and falls back to
`us-east-1`. A `region` in the event replaces the service's region in the
report.

The S3 check lists one object from the bucket named by `BACKUP_BUCKET`. If
that variable is not set, it uses `dr-demo-backup-bucket-<region>`.

Replication lag is the number of seconds since the `last_updated` number on
the `sentinel` item in `dr-sentinel-table`. If that item or field cannot be
read, the lag is `None`.

The checks produce the metrics `DynamoDBHealth`, `S3Health` and, if known,
`ReplicationLag`. All of them are published in one call to the
`DisasterRecovery` namespace. A publishing failure is logged and does not
change the result. The overall status is `"healthy"` when both the table
store and the bucket respond, and `"unhealthy"` otherwise.

## Data validation

```python
from drcontrol.validator import DataValidatorService, handler

def service_factory(source_region, target_region):
    return DataValidatorService(primary_client, dr_client, s3_client, cloudwatch_client,
                                source_region, target_region)

result = handler({"validation_type": "full", "action": "validate"}, service_factory)
```

The handler applies these defaults:

| Field | Default |
| --- | --- |
| validation type | `incremental` |
| action | `validate` |
| source region | `us-east-1` |
| target region | `us-west-2` |

Without a `table_name`, the service validates two tables:
`dr-application-table` and `dr-sentinel-table`.

For each table, the service compares the reported item counts. It also
checks that up to 10 sampled primary items, identified by `id`, exist in DR.

Replication lag is measured with a probe record in `dr-sentinel-table`:

1. The service writes the probe on the primary.
2. It waits 2 seconds.
3. It polls the DR table up to 10 times, once a second.
4. It deletes the probe.

Pass a different `sleep` callable to the service to change how it waits.

Backup freshness comes from the timestamps in `dr-backup-metadata`.

The consistency score is
`(records - mismatches) / records * 100`. It is 100 when there are no
records. A score of at least 95 gives `"healthy"`; a lower score gives
`"degraded"`.

`generate_recommendations` returns advice when any of these holds:

- the score is below 95;
- the lag is above 60 seconds;
- the last backup is over 24 hours old;
- the oldest backup is over 30 days old.

If none of them holds, it returns a single "all checks passed" message.

## What the package does not do

- It does not create or configure SDK clients, and it does not read
  credentials. You supply the clients.
- It has no command-line program and no runtime loop of its own. You call
  the handlers from whatever runtime delivers the events.
- Failover and failback only check health and record the operation. They
  do not change DNS or promote or scale resources.
- The validator's `sync` action only reports how many items the DR table
  lacks, through `sync_missing_items`. It copies nothing.