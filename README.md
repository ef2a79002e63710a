# trendstream

trendstream counts search queries over a sliding time window and serves
the most popular ones as JSON over HTTP.

Incoming search events are validated, normalized (trimmed, lower-cased,
white space collapsed, control characters dropped), screened for personal
data such as e-mail addresses, card-like numbers and phone numbers,
checked against an editable stop-list, and then counted in a sharded,
bucketed window. A snapshot of the top queries, with its JSON bodies
rendered ahead of time, is rebuilt on a background thread (every second by
default) and handed to readers through a `Publisher`.

The only runtime dependency is `werkzeug`.

## What is inside

| Module | Purpose |
| --- | --- |
| `trendstream.normalize` | `normalize_query` turns raw user input into a canonical query, or `None` |
| `trendstream.privacy` | `inspect` and `contains_sensitive_data` detect personal data in a query |
| `trendstream.contract` | `SearchEvent`, `validate`, `validate_at` and `ValidationError` |
| `trendstream.broker` | `ConsumerConfig` and `decode_search_event` for JSON event payloads |
| `trendstream.hashing` | `string64` (FNV-1a) and `index`, used to pick a shard |
| `trendstream.window` | `Window`, a bucketed sliding window with cardinality and per-actor limits |
| `trendstream.aggregator` | `Aggregator`, lock-protected `Shard`s keyed by query hash |
| `trendstream.stoplist` | `StopList` and the JSON-backed `FileStore` |
| `trendstream.stoplist_service` | `StopListService`, which saves every change before publishing it |
| `trendstream.ingest` | `Processor` and `HTTPProcessor`, from a `SearchEvent` to a counted query |
| `trendstream.snapshot` | `Snapshot`, `build_snapshot` and `Publisher` |
| `trendstream.metrics` | `Metrics`, counters, gauges and histograms in the Prometheus text format |
| `trendstream.logsetup` | `new_logger`, JSON log lines on standard output |
| `trendstream.auth` | `TokenAuth`, bearer-token protection for admin handlers |
| `trendstream.api`, `trendstream.admin` | routing and handlers for the public and admin endpoints |
| `trendstream.httpserver` | `create_server`, a threaded WSGI server with error recovery |
| `trendstream.app` | `build_public_app`, `build_admin_app` and `SnapshotRefresher` |

## Normalizing and screening queries

```python
from trendstream.normalize import normalize_query
from trendstream.privacy import contains_sensitive_data, inspect

normalize_query("  IPhone   15 PRO ")        # "iphone 15 pro"
normalize_query(" \t\n ")                     # None
contains_sensitive_data("user@example.com")   # True
contains_sensitive_data("iphone 15 pro")      # False
inspect("123456789").rule                     # Rule.LONG_DIGIT_RUN
```

## Counting queries in a window

By default the window is five minutes long and split into one-second
buckets. Events older than the window are dropped as `too_old`; events
more than ten seconds in the future are dropped as `from_future`; one
actor may add the same query at most three times per window. Limits on
the number of distinct queries, overall and per bucket, are set in
`WindowConfig`.

```python
from datetime import datetime, timedelta, timezone

from trendstream.window import Event, Window, WindowConfig

now = datetime(2026, 5, 23, 9, 0, tzinfo=timezone.utc)
window = Window(WindowConfig())

window.add_at(Event(query="iphone 15", occurred_at=now - timedelta(seconds=1)), now)
window.add_at(Event(query="iphone 15", occurred_at=now - timedelta(seconds=2)), now)
window.add_at(Event(query="ноутбук", occurred_at=now - timedelta(seconds=1)), now)

for item in window.top_at(10, now):
    print(item.query, item.count)
# iphone 15 2
# ноутбук 1
```

`Aggregator` offers the same operations spread across shards (32 by
default), so that writers for different queries do not contend for one
lock. Results are ordered by count, highest first, and then by query.

## Stop-list

A single-word stop-list term hides every query that contains that word;
a multi-word term hides only that exact phrase.

```python
from trendstream.stoplist import FileStore, StopList
from trendstream.stoplist_service import StopListService

stop_list = StopList(["casino", "manual iphone 15"])
stop_list.contains("best casino online")   # True
stop_list.contains("iphone case")          # False

service = StopListService(FileStore("data/stoplist.json"))
service.add(" Casino   Online ")           # ("casino online", True)
```

`FileStore` writes `{"terms": [...]}` with the terms normalized, sorted
and de-duplicated, through a temporary file that replaces the old one.

## Processing events

```python
from trendstream.aggregator import Aggregator
from trendstream.broker import decode_search_event
from trendstream.ingest import Processor

processor = Processor(Aggregator(), service)
event = decode_search_event(
    b'{"schema_version": 1, "event_id": "event-1",'
    b' "occurred_at": "2026-05-23T12:00:00Z", "query": "iphone 15"}'
)
result = processor.process(event)   # Result(accepted=..., reason=..., query=..., count=...)
```

A dropped event carries a `Reason` such as `invalid_event`,
`privacy_filter`, `stoplist`, `bot`, `too_old` or `actor_query_limit`.

## HTTP endpoints

The public application serves:

* `GET /healthz`, `GET /readyz` — liveness and readiness
* `GET /v1/trends?limit=N` — the current top queries; `limit` defaults
  to 20 and must lie between 1 and 100

The admin application serves the health endpoints as well and, behind a
bearer token (`Authorization: Bearer token`):

* `GET /admin/stop-list`, `POST /admin/stop-list` with `{"term": ...}`
  (201 when the list changed, 200 otherwise),
  `DELETE /admin/stop-list/{term}` — view and edit the stop-list
* `POST /admin/events` — submit one search event (202 when counted,
  200 when dropped, 400 when invalid)
* `GET /metrics` — service metrics in the Prometheus text format

Both are plain WSGI applications built by `build_public_app` and
`build_admin_app` in `trendstream.app`. They can be hosted by any WSGI
server, or by `create_server`:

```python
from datetime import datetime, timezone

from trendstream.aggregator import Aggregator
from trendstream.app import SnapshotRefresher, build_admin_app, build_public_app
from trendstream.auth import TokenAuth
from trendstream.httpserver import ServerConfig, create_server
from trendstream.ingest import HTTPProcessor, Processor
from trendstream.logsetup import new_logger
from trendstream.metrics import Metrics
from trendstream.snapshot import Publisher
from trendstream.stoplist import FileStore
from trendstream.stoplist_service import StopListService

aggregator = Aggregator()
stop_list_service = StopListService(FileStore("data/stoplist.json"))
metrics = Metrics()
processor = Processor(aggregator, stop_list_service, metrics)
publisher = Publisher()
started_at = datetime.now(timezone.utc)

public_app = build_public_app("trendstream", started_at, publisher, metrics)
admin_app = build_admin_app(
    "trendstream", started_at, stop_list_service,
    HTTPProcessor(processor), TokenAuth("token"), metrics,
)

logger = new_logger("info")
with SnapshotRefresher(aggregator, stop_list_service, publisher, metrics, logger):
    server = create_server(ServerConfig(addr="127.0.0.1:8080", name="public"), public_app, logger)
    server.serve_forever()
```

## What the package does not do

* There is no command-line program. Nothing reads settings from the
  environment or starts the public and admin servers together; wire the
  pieces up yourself as shown above.
* There is no message-broker client. `trendstream.broker` only checks
  consumer settings and decodes JSON payloads; reading from a broker and
  committing offsets is left to the caller, who passes each decoded
  event to `Processor.process`.
* There are no profiling endpoints and no load-generating tool.

## Search event format

```json
{
  "schema_version": 1,
  "event_id": "event-1",
  "occurred_at": "2026-05-23T12:00:00Z",
  "query": "iphone 15",
  "user_id_hash": "user-1"
}
```

Optional fields are `session_id`, `device_id_hash`, `ip_hash`,
`user_agent_hash`, `region`, `locale`, `platform` and `is_bot`. The
first non-empty of `user_id_hash`, `device_id_hash`, `ip_hash` and
`session_id` identifies the actor for per-actor limits. Queries may be
at most 256 characters long.

## Tests

```
pip install -e ".[test]"
pytest
```