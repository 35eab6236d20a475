# zipline

`zipline` is the routing core of a stream function network. Sources write
tagged data frames to a zipper server; the server negotiates the protocol
version, authenticates clients, and forwards each data frame to the stream
functions that observe its tag, optionally narrowed to a wanted target. Every
data frame is also dispatched to any downstream zippers that have been added,
except frames that arrived from an upstream zipper.

## Installing

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Modules

- `zipline.frame`: the frame classes `DataFrame`, `HandshakeFrame`,
  `HandshakeAckFrame`, `RejectedFrame`, `GoawayFrame` and `ConnectToFrame`;
  the `FrameType` enum; `new_frame(frame_type)`, which makes an empty frame
  of a given type and raises `ValueError` for an unknown one; and
  `check_reserved_tag(tag)`, which raises `ReservedTagError` for tags in
  `0xF000`–`0xFFFF`. It also defines `ConnClosedError` and the protocols
  `FrameWriter`, `FrameConn` and `Listener` that a transport implements.
- `zipline.metadata`: `Metadata`, a `dict` of strings whose `set` ignores
  empty keys, with `clone`, `encode` (msgpack; empty metadata encodes to
  `b""`) and `Metadata.decode`. `new_metadata(*mappings)` merges mappings,
  later ones winning. The reserved keys are constants such as `TARGET_KEY`
  (`"yomo-target"`) and `WANTED_TARGET_KEY` (`"yomo-wanted-target"`).
- `zipline.router`: the `Router` interface and `DefaultRouter`, which maps
  observed tags to connection ids. When a frame's metadata carries a target,
  only connections that registered the same wanted target receive it.
- `zipline.version`: `VERSION`, `default_version_negotiate`, which raises
  `RejectedError` when client and server versions differ, and
  `ConnectToError`, which a negotiation function raises to send the client
  elsewhere.
- `zipline.auth`: `Credential.from_payload("name:payload")` (without a colon
  the credential is named `none`), the `Authentication` base class, the
  `TokenAuth` strategy (registered as `token`), `register`, `get_auth`, and
  `authenticate(auths, handshake)`, which accepts every client when no
  strategies are configured and raises `AuthenticationError` otherwise on
  failure.
- `zipline.ylog`: structured logging. `LogConfig.from_env()` reads
  `YOMO_LOG_LEVEL`, `YOMO_LOG_FORMAT` (`text`, `json`, or a coloured console
  format by default), `YOMO_LOG_OUTPUT`, `YOMO_LOG_ERROR_OUTPUT`,
  `YOMO_LOG_VERBOSE` and the file-rotation settings `YOMO_LOG_MAX_SIZE`,
  `YOMO_LOG_MAX_BACKUPS`, `YOMO_LOG_MAX_AGE`, `YOMO_LOG_LOCAL_TIME` and
  `YOMO_LOG_COMPRESS`. Error records go to the error output, the rest to the
  regular output. `new_logger`, `default_logger`, `set_default` and the
  module-level `debug`, `info`, `warn` and `error` complete it; a `Logger`
  can `bind` key/value pairs or nest them `with_group`.
- `zipline.connection`: `ClientType` (`SOURCE`, `UPSTREAM_ZIPPER`,
  `STREAM_FUNCTION`), the `Connection` dataclass, `next_connection_id`, and
  the helpers `new_yomo_metadata`, `get_tid` and `set_metadata_target`.
- `zipline.connector`: `Connector`, a thread-safe store of connections by id
  with `store`, `remove`, `get` (returns `None` when absent), `find`,
  `snapshot` and `close`. After `close`, every call except `snapshot` raises
  `ConnectorClosedError`.
- `zipline.context`: `FrameContext`, the per-frame state handed to frame
  middleware: the frame, its metadata merged with the connection's, a logger
  bound to the transaction id, and `set`/`get` for handler-scoped values.
- `zipline.serverless`: `ServerlessContext` and `CronContext`, which stream
  function handlers use to `write` results, or `write_with_target` to reach
  only functions that want a given target.
- `zipline.tzconvert`: `convert_timezone`, which converts a
  `YYYY-MM-DD HH:MM:SS` time between IANA time zones.
- `zipline.server`: `Server`, with `serve(listener)`, `handshake`,
  `handle_conn`, `handle_frame`, `add_downstream`, `downstreams`,
  `stats_functions`, `stats_counter` and `close`. `with_auth(name, *args)`
  enables a registered authentication strategy; connection and frame
  middleware are passed as `conn_middlewares` and `frame_middlewares` and are
  composed with `compose_conn_handler` and `compose_frame_handler`, the first
  middleware running outermost.

## Examples

```python
from zipline.metadata import new_metadata
from zipline.router import DefaultRouter

router = DefaultRouter()
router.add(1, [0x33], new_metadata())
router.add(2, [0x33], new_metadata({"yomo-wanted-target": "alice"}))

router.route(0x33, new_metadata())                           # [1, 2] in any order
router.route(0x33, new_metadata({"yomo-target": "alice"}))   # [2]
```

```python
from zipline.auth import Credential

Credential.from_payload("token:token")   # Credential(name='token', payload='token')
```

```python
from zipline.server import Server, with_auth

server = Server("zipper", with_auth("token", "token"))
# server.serve(listener) accepts frame connections until server.close()
```

```python
from zipline.tzconvert import convert_timezone

convert_timezone("2023-02-16 00:00:00", "America/New_York", "Asia/Singapore")
# '2023-02-16 13:00:00'
```

## What it does not do

The package has no network transport and no wire encoding for frames:
`Server.serve` works over any object that follows the `Listener` protocol,
and each accepted connection must follow `FrameConn`, so the application
supplies both. There is no client side either — no source or stream
function runtime that dials a zipper, reconnects, or schedules cron
handlers — and no command-line program.