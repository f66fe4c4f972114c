# weir

Building blocks for a proxy that speaks the MySQL client/server protocol.
It has no dependencies beyond the standard library.

## What is inside

- `weir.protocol`: length-encoded integers and strings
  (`dump_length_encoded_int`, `parse_length_encoded_int`,
  `dump_length_encoded_string`, `parse_length_encoded_bytes`,
  `length_encoded_int_size`), fixed-width little-endian integers
  (`dump_uint16`, `dump_uint32`, `dump_uint64`), `parse_null_term_string`,
  binary TIME and DATE/DATETIME encodings (`dump_binary_time`,
  `dump_binary_datetime`), binary and text row encoding (`dump_binary_row`,
  `dump_text_row`), where `None` stands for NULL, and MySQL-style float
  formatting (`format_float`). It also defines the `FieldType` and
  `ColumnFlag` enums. A value that cannot be encoded for its column type
  raises `InvalidTypeError`.
- `weir.column`: `ColumnInfo`, whose `dump()` returns a column-definition
  payload. Names longer than 256 bytes are cut to 256. The module also has
  `dump_flag` and `dump_type`, which report SET and ENUM columns as STRING.
- `weir.packetio`: `PacketIO`, which reads and writes sequence-numbered
  packets over any object with `read(n)` and `write(data)`. It splits and
  joins payloads of 16 MiB − 1 bytes and more. A wrong sequence number
  raises `InvalidSequenceError`, and a failed write raises
  `BadConnectionError`. Written packets are buffered until `flush()`.
- `weir.handshake`: `build_initial_handshake` builds the server greeting.
  For the client's reply, `parse_handshake_response_header` and
  `parse_handshake_response_body` handle protocol 4.1, while
  `parse_old_handshake_response_header` and
  `parse_old_handshake_response_body` handle protocol 3.20. The results
  are `HandshakeResponse` values. `parse_attrs` reads connection
  attributes. The module also defines the `Capability` flags. A packet
  that is too short raises `MalformedPacketError`.
- `weir.packets`: payloads for OK, error, EOF and LOCAL INFILE packets
  (`build_ok_packet`, `build_error_packet`, `build_eof_packet`,
  `build_local_infile_request`). It also sends column definitions and whole
  text result sets through a `PacketIO` (`write_column_info`,
  `write_text_resultset`).
- `weir.tokenlimiter`: `TokenLimiter` hands out `Token`s from a fixed
  pool. `get()` blocks until a token is free.
- `weir.ratelimit`: `NamespaceRateLimiter` allows each key a number of
  calls in any one-second window. A threshold of zero or less turns the
  limit off. Calls over the limit raise `RateLimitExceeded`.
- `weir.namespace`: the classes here map users to namespaces and hold the
  namespace objects.
  - `FrontendNamespace` holds the allowed databases and the SQL black and
    white lists.
  - `UserNamespaceMapper` maps users to namespaces. A user listed twice
    raises `DuplicatedUserError`.
  - `NamespaceHolder` holds the built namespace objects.
  - `NamespaceManager` keeps two generations of both and reloads
    namespaces in two steps: `prepare_reload_namespace`, then
    `commit_reload_namespaces`.
  - `NamespaceManager.auth(username)` returns a `NamespaceWrapper` that
    always reaches the current version of the user's namespace.
- `weir.metrics`: in-process `Counter`, `Gauge` and `Histogram` metrics
  and labelled `MetricVec` families. `register_proxy_metrics(cluster)`
  returns a `ProxyMetrics` with every family's cluster label fixed. The
  module also has `exponential_buckets`, `ret_label`, `StmtType` and
  `stmt_type_name`.

## Installing

```
pip install .
```

## Examples

Encoding values and framing packets:

```python
import io

from weir.packetio import PacketIO
from weir.protocol import dump_length_encoded_int, parse_length_encoded_int

encoded = dump_length_encoded_int(513)          # b"\xfc\x01\x02"
value, is_null, size = parse_length_encoded_int(encoded)   # (513, False, 3)

stream = io.BytesIO()
packets = PacketIO(stream)
packets.write_packet(b"\x01\x02\x03")
packets.flush()
stream.getvalue()                               # b"\x03\x00\x00\x00\x01\x02\x03"
```

Rate limiting per key:

```python
from weir.ratelimit import NamespaceRateLimiter, RateLimitExceeded

limiter = NamespaceRateLimiter("namespace", 2)
limiter.limit("hello")
limiter.limit("hello")
try:
    limiter.limit("hello")
except RateLimitExceeded:
    pass
```

Namespaces. The `build` and `close` callables are yours; whatever `build`
returns is what a `NamespaceWrapper` forwards its calls to:

```python
from weir.namespace import (
    FrontendConfig,
    FrontendNamespace,
    NamespaceConfig,
    NamespaceManager,
)

configs = [NamespaceConfig("ns1", FrontendConfig(users=["alice"], allowed_dbs=["db1"]))]
manager = NamespaceManager.create(
    configs,
    build=lambda cfg: FrontendNamespace(allowed_dbs=cfg.frontend.allowed_dbs),
    close=lambda ns: None,
)
handle = manager.auth("alice")
handle.is_database_allowed("db1")               # True
```

Metrics:

```python
from weir.metrics import register_proxy_metrics

metrics = register_proxy_metrics("cluster1")
metrics.conn_gauge.with_label_values().set(3)
metrics.query_total_counter.with_label_values("Query", "OK").inc()
```

## What it does not do

This is a library of parts, not a running proxy. It has no command-line
program and does not listen for client connections. It opens no
connections to backend databases, and it does not check passwords. It
does not parse or route SQL. Metrics stay in memory and are not exported
over HTTP. There is no helper that turns the last command packet into a
log line.

## Running the tests

```
pip install .[test]
pytest
```