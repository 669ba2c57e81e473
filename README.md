# cablegate

Building blocks for a WebSocket server that speaks the Action Cable
protocol (`actioncable-v1-json`). The package holds the parts of such a
server that do not depend on a particular network stack:

- **Protocol messages** (`cablegate.common`): `SessionEnv` with
  connection and channel state, `ConnectResult` / `CommandResult`,
  `StreamMessage`, `Reply`, `PingMessage`, `DisconnectMessage`,
  `pubsub_message_from_json`, `confirmation_message` and
  `rejection_message`.
- **Encoders** (`cablegate.encoders`): `JSONEncoder`, producing text
  `SentFrame`s and decoding client commands into `Message`, plus
  `EncodingCache` / `CachedEncodedMessage`, so a broadcast is serialized
  once per encoder no matter how many sessions receive it.
- **Hub** (`cablegate.hub`): `Hub`, the registry of sessions, their
  identifiers and their stream subscriptions. `Hub.run()` processes queued
  broadcasts, remote disconnects and delayed removals in order; delivery
  to sessions happens on a thread pool.
- **Identification** (`cablegate.identity`): `IdentifiableController`,
  which lets an identifier authenticate connections before the wrapped
  controller, and `JWTIdentifier`, which reads an HMAC-signed token from
  the `x-<param>` header or the `<param>` query parameter (default
  `jid`) and takes the identifiers from its `ext` claim.
- **Metrics** (`cablegate.counter`, `cablegate.gauge`, `cablegate.metrics`,
  `cablegate.metrics_config`, `cablegate.printer`, `cablegate.statsd`):
  counters with per-interval deltas, gauges, Prometheus text output (and
  an optional HTTP endpoint serving it while `Metrics.run()` is active),
  `BasePrinter` for logging snapshots, and `StatsdWriter` sending UDP
  packets with DataDog, InfluxDB or Graphite tag styles.
- **Configuration** (`cablegate.config`, `cablegate.cli`): `Config` with
  its defaults, Fly and Heroku presets detected from the environment, and
  `new_config_from_cli` for command-line and environment variable parsing.
- **Benchmarking helpers** (`cablegate.gobench`, `cablegate.stats`):
  `BenchController`, which answers echo and broadcast actions without any
  backend, and `ResultAggregate` for latency min/max/percentiles.

## Requirements

Python 3.10 or newer. The only runtime dependency is `pyjwt`.

## Examples

Protocol helpers:

```python
from cablegate.common import confirmation_message, pubsub_message_from_json

confirmation_message("test_channel")
# '{"type":"confirm_subscription","identifier":"test_channel"}'

msg = pubsub_message_from_json(b'{"stream":"chat_42","data":"hello"}')
msg.stream  # 'chat_42'
```

Metrics in Prometheus format:

```python
from cablegate.metrics import Metrics
from cablegate.metrics_config import MetricsConfig

metrics = Metrics.from_config(MetricsConfig())
metrics.register_counter("messages_total", "Total number of messages")
metrics.counter("messages_total").inc()

print(metrics.prometheus())
# # HELP anycable_go_messages_total Total number of messages
# # TYPE anycable_go_messages_total counter
# anycable_go_messages_total 1
```

Configuration from arguments and environment:

```python
from cablegate.cli import name_to_env_var_name, new_config_from_cli, parse_tags

config, shown = new_config_from_cli(["prog", "--port=3334", "--path=/cable,/ws"])
config.port   # 3334
config.path   # ['/cable', '/ws']
shown         # False; True when --help or --version was printed instead

name_to_env_var_name("max-conn")  # 'ANYCABLE_MAX_CONN'
parse_tags("env:dev,rev:1.1")     # {'env': 'dev', 'rev': '1.1'}
```

A flag given on the command line wins; otherwise it is read from an
environment variable named after it with the `ANYCABLE_` prefix, for
example `--rpc_host` from `ANYCABLE_RPC_HOST` (the port is also read
from `PORT`). Invalid input raises `ValueError`.

## What the package does not do

There is no command to start, and no WebSocket server: nothing here
accepts client connections or runs sessions, and `Hub` only talks to
session objects you supply. There is no RPC client and no Redis, HTTP or
NATS pub/sub subscriber, and no embedded NATS server; the related
`Config` fields (`rpc_host`, `broadcast_adapter`, `nats_servers`,
`embedded_nats`) are plain settings that nothing in the package acts on.
Custom metrics log formatters are not supported: `Metrics.from_config`
raises `UnsupportedFormatterError` when one is configured.

## Running the tests

Install the `test` extra and run `pytest` from the project root.