"""Command-line and environment configuration of the server."""

from __future__ import annotations

import re
import sys
from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import Any, Callable, TextIO

from .config import DEFAULT_NATS_URL, Config

ENV_PREFIX = "ANYCABLE_"
DEFAULT_VERSION = "0.1.0"

SERVER_CATEGORY = "ANYCABLE-GO SERVER:"
BROADCAST_CATEGORY = "BROADCASTING:"
NATS_CATEGORY = "NATS:"
RPC_CATEGORY = "RPC:"
DISCONNECTOR_CATEGORY = "DISCONNECTOR:"
LOG_CATEGORY = "LOG:"
METRICS_CATEGORY = "METRICS:"
WS_CATEGORY = "WEBSOCKETS:"
JWT_CATEGORY = "JWT:"
SIGNED_STREAMS_CATEGORY = "SIGNED STREAMS:"
STATSD_CATEGORY = "STATSD:"
EMBEDDED_NATS_CATEGORY = "EMBEDDED NATS:"
MISC_CATEGORY = "MISC:"

_SPLIT_FLAG_NAME = re.compile("[_-]")
_TRUE_VALUES = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE_VALUES = {"0", "f", "F", "FALSE", "false", "False"}
_HELP_NAMES = ("h", "help")
_VERSION_NAMES = ("v", "version")


def _parse_bool(text: str) -> bool:
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ValueError(f"invalid boolean value: {text!r}")


@dataclass
class Flag:
    """A command-line option, read from arguments or environment variables."""

    name: str
    usage: str = ""
    kind: type = str
    default: Any = None
    env_vars: list[str] = field(default_factory=list)
    category: str = ""
    destination: Callable[[Any], None] | None = None

    def convert(self, text: str) -> Any:
        """Turn the textual value into the flag's type."""
        if self.kind is bool:
            return _parse_bool(text)
        if self.kind is int:
            return int(text, 0)
        return text


@dataclass
class _App:
    name: str = "anycable-go"
    version: str = DEFAULT_VERSION
    usage: str = "AnyCable-Go, The WebSocket server for https://anycable.io"
    flags: list[Flag] = field(default_factory=list)
    writer: TextIO | None = None

    def out(self) -> TextIO:
        return self.writer if self.writer is not None else sys.stdout


CLIOption = Callable[[_App], None]


def with_cli_name(name: str) -> CLIOption:
    def apply(app: _App) -> None:
        app.name = name

    return apply


def with_cli_version(version: str) -> CLIOption:
    def apply(app: _App) -> None:
        app.version = version

    return apply


def with_cli_usage_header(desc: str) -> CLIOption:
    def apply(app: _App) -> None:
        app.usage = desc

    return apply


def with_cli_custom_options(factory: Callable[[], list[Flag]]) -> CLIOption:
    """Add the flags produced by factory to the command line."""

    def apply(app: _App) -> None:
        app.flags.extend(factory())

    return apply


def name_to_env_var_name(name: str) -> str:
    """Return the environment variable that backs a flag."""
    return ENV_PREFIX + "_".join(part.upper() for part in _SPLIT_FLAG_NAME.split(name))


def parse_tags(text: str) -> dict[str, str]:
    """Parse "key:value,key:value" into a mapping."""
    result: dict[str, str] = {}
    for item in text.split(","):
        parts = item.split(":")
        if len(parts) < 2:
            raise ValueError(f"Invalid tag, expected key:value: {item!r}")
        result[parts[0]] = parts[1]
    return result


def _setter(obj: Any, attr: str) -> Callable[[Any], None]:
    return lambda value: setattr(obj, attr, value)


def _flag(
    name: str,
    usage: str,
    kind: type,
    obj: Any,
    attr: str,
    env_vars: list[str] | None = None,
) -> Flag:
    return Flag(
        name=name,
        usage=usage,
        kind=kind,
        default=getattr(obj, attr),
        env_vars=list(env_vars or []),
        destination=_setter(obj, attr),
    )


def _with_defaults(category: str, flags: list[Flag]) -> list[Flag]:
    for flag in flags:
        flag.category = category
        if not flag.env_vars:
            flag.env_vars = [name_to_env_var_name(flag.name)]
    return flags


def _build_flags(c: Config, raw: SimpleNamespace) -> list[Flag]:
    m = c.metrics
    nats = c.embedded_nats
    flags: list[Flag] = []

    flags += _with_defaults(SERVER_CATEGORY, [
        _flag("host", "Server host", str, c, "host"),
        _flag("port", "Server port", int, c, "port", [ENV_PREFIX + "PORT", "PORT"]),
        _flag("max-conn", "Limit simultaneous server connections (0 – without limit)",
              int, c, "max_conn"),
        _flag("path", "WebSocket endpoint path (you can specify multiple paths using comma as separator)",
              str, raw, "path"),
        _flag("health-path", "HTTP health endpoint path", str, c, "health_path"),
    ])
    flags += _with_defaults(BROADCAST_CATEGORY, [
        _flag("broadcast_adapter", "Broadcasting adapter to use (redis, http or nats)",
              str, c, "broadcast_adapter"),
    ])
    flags += _with_defaults(NATS_CATEGORY, [
        _flag("nats_servers", "Comma separated list of NATS cluster servers",
              str, c, "nats_servers"),
    ])
    flags += _with_defaults(RPC_CATEGORY, [
        _flag("rpc_host", "RPC service address", str, c, "rpc_host"),
        _flag("headers", "List of headers to proxy to RPC", str, raw, "headers"),
        _flag("proxy-cookies", "Cookie keys to send to RPC, default is all",
              str, raw, "cookies"),
    ])
    flags += _with_defaults(DISCONNECTOR_CATEGORY, [
        _flag("disable_disconnect", "Disable calling Disconnect callback",
              bool, c, "disconnector_disabled"),
    ])
    flags += _with_defaults(LOG_CATEGORY, [
        _flag("log_level", "Set logging level (debug/info/warn/error/fatal)",
              str, c, "log_level"),
        _flag("log_format", "Set logging format (text/json)", str, c, "log_format"),
        _flag("debug", "Enable debug mode (more verbose logging)", bool, c, "debug"),
    ])
    flags += _with_defaults(METRICS_CATEGORY, [
        _flag("metrics_log", "Enable metrics logging (with info level)", bool, m, "log"),
        _flag("metrics_rotate_interval",
              "Specify how often flush metrics to writers (logs, statsd) (in seconds)",
              int, m, "rotate_interval"),
        _flag("metrics_log_interval",
              "DEPRECATED. Specify how often flush metrics logs (in seconds)",
              int, m, "log_interval"),
        _flag("metrics_log_filter",
              "Specify list of metrics to print to log (to reduce the output)",
              str, raw, "metrics_filter"),
        _flag("metrics_log_formatter",
              "Specify the path to custom Ruby formatter script (only supported on MacOS and Linux)",
              str, m, "log_formatter"),
        _flag("metrics_http", "Enable HTTP metrics endpoint at the specified path",
              str, m, "http"),
        _flag("metrics_host", "Server host for metrics endpoint", str, m, "host"),
        _flag("metrics_port",
              "Server port for metrics endpoint, the same as for main server by default",
              int, m, "port"),
        _flag("metrics_tags",
              "Comma-separated list of default (global) tags to add to every metric",
              str, raw, "metrics_tags"),
    ])
    flags += _with_defaults(WS_CATEGORY, [
        _flag("max_message_size", "Maximum size of a message in bytes",
              int, c, "max_message_size"),
    ])
    flags += _with_defaults(JWT_CATEGORY, [
        _flag("jwt_id_key", "The encryption key used to verify JWT tokens",
              str, c.jwt, "secret"),
        _flag("jwt_id_param",
              "The name of a query string param or an HTTP header carrying a token",
              str, c.jwt, "param"),
        _flag("jwt_id_enforce", "Whether to enforce token presence for all connections",
              bool, c.jwt, "force"),
    ])
    flags += _with_defaults(SIGNED_STREAMS_CATEGORY, [
        _flag("turbo_rails_key",
              "Enable Turbo Streams fastlane with the specified signing key",
              str, c.rails, "turbo_rails_key"),
        _flag("cable_ready_key",
              "Enable CableReady fastlane with the specified signing key",
              str, c.rails, "cable_ready_key"),
    ])
    flags += _with_defaults(STATSD_CATEGORY, [
        _flag("statsd_host",
              "Server host for metrics sent to statsd server in the format <host>:<port>",
              str, m.statsd, "host"),
        _flag("statsd_prefix", "Statsd metrics prefix", str, m.statsd, "prefix"),
        _flag("statsd_max_packet_size", "Statsd client maximum UDP packet size",
              int, m.statsd, "max_packet_size"),
        _flag("statsd_tags_format", 'One of "datadog", "influxdb", or "graphite"',
              str, m.statsd, "tag_format"),
    ])
    flags += _with_defaults(EMBEDDED_NATS_CATEGORY, [
        _flag("embed_nats", "Enable embedded NATS server and use it for pub/sub",
              bool, c, "embed_nats"),
        _flag("enats_addr", "NATS server bind address", str, nats, "service_addr"),
        _flag("enats_cluster", "NATS cluster service bind address",
              str, nats, "cluster_addr"),
        _flag("enats_cluster_name", "NATS cluster name", str, nats, "cluster_name"),
        _flag("enats_cluster_routes", "Comma-separated list of known cluster addresses",
              str, raw, "enats_routes"),
        _flag("enats_gateway", "NATS gateway bind address", str, nats, "gateway_addr"),
        _flag("enats_gateways",
              "Semicolon-separated list of known gateway configurations: "
              "name_a:gateway_1,gateway_2;name_b:gateway_4",
              str, raw, "enats_gateways"),
        _flag("enats_debug", "Enable NATS server logs", bool, nats, "debug"),
        _flag("enats_trace", "Enable NATS server protocol trace logs",
              bool, nats, "trace"),
    ])
    flags += _with_defaults(MISC_CATEGORY, [
        _flag("presets",
              "Configuration presets, comma-separated (none, fly, heroku). Inferred automatically",
              str, raw, "presets"),
    ])
    return flags


def _print_help(app: _App) -> None:
    lines = [
        "NAME:",
        f"   {app.name} - {app.usage}",
        "",
        "USAGE:",
        f"   {app.name} [global options]",
        "",
        "VERSION:",
        f"   {app.version}",
        "",
        "GLOBAL OPTIONS:",
    ]
    categories: dict[str, list[Flag]] = {}
    for flag in app.flags:
        categories.setdefault(flag.category, []).append(flag)

    for category, flags in categories.items():
        if category:
            lines.append("")
            lines.append(f"   {category}")
            lines.append("")
        for flag in flags:
            dashes = "-" if len(flag.name) == 1 else "--"
            spec = f"{dashes}{flag.name}" if flag.kind is bool else f"{dashes}{flag.name} value"
            text = f"   {spec}\t{flag.usage}"
            if flag.kind is not bool and flag.default not in (None, "", 0):
                text += f' (default: {flag.default!r})' if flag.kind is str else f" (default: {flag.default})"
            if flag.env_vars:
                text += " [" + ", ".join(f"${env}" for env in flag.env_vars) + "]"
            lines.append(text)

    lines.append("")
    lines.append("   --help, -h     show help")
    lines.append("   --version, -v  print the version")
    print("\n".join(lines), file=app.out())


def _parse_arguments(app: _App, argv: list[str]) -> tuple[dict[str, Any], str | None]:
    """Parse flags; return values given and "help"/"version" if requested."""
    by_name = {flag.name: flag for flag in app.flags}
    values: dict[str, Any] = {}
    special: str | None = None
    args = list(argv)

    while args:
        arg = args.pop(0)
        if arg == "--" or len(arg) < 2 or not arg.startswith("-"):
            break

        body = arg[2:] if arg.startswith("--") else arg[1:]
        if not body or body[0] in "-=":
            raise ValueError(f"bad flag syntax: {arg}")

        name, has_value, text = body.partition("=")
        flag = by_name.get(name)

        if flag is None:
            if name in _HELP_NAMES:
                return values, "help"
            if name in _VERSION_NAMES:
                if has_value and not _parse_bool(text):
                    continue
                special = special or "version"
                continue
            raise ValueError(f"flag provided but not defined: -{name}")

        if flag.kind is bool:
            try:
                values[name] = _parse_bool(text) if has_value else True
            except ValueError:
                raise ValueError(f'invalid boolean value "{text}" for -{name}') from None
            continue

        if not has_value:
            if not args:
                raise ValueError(f"flag needs an argument: -{name}")
            text = args.pop(0)
        try:
            values[name] = flag.convert(text)
        except ValueError:
            raise ValueError(f'invalid value "{text}" for flag -{name}: parse error') from None

    return values, special


def _resolve(flag: Flag, values: dict[str, Any]) -> Any:
    if flag.name in values:
        return values[flag.name]

    environ = __import_environ()
    for env in flag.env_vars:
        text = environ.get(env, "")
        if text == "":
            continue
        try:
            return flag.convert(text.strip() if flag.kind is not str else text)
        except ValueError:
            raise ValueError(
                f'could not parse "{text}" as {flag.kind.__name__} value '
                f"from env {env} for flag {flag.name}"
            ) from None
    return flag.default


def __import_environ() -> Any:
    import os

    return os.environ


def new_config_from_cli(args: list[str], *opts: CLIOption) -> tuple[Config, bool]:
    """Build a Config from the arguments (args[0] is the program name) and environment.

    Returns the config and whether help or version was shown instead, in which case
    the caller has nothing more to do. Invalid input raises ValueError.
    """
    c = Config()
    raw = SimpleNamespace(
        path=",".join(c.path),
        headers=",".join(c.headers),
        cookies="",
        metrics_filter="",
        metrics_tags="",
        enats_routes="",
        enats_gateways="",
        presets="",
    )

    app = _App(flags=_build_flags(c, raw))
    for option in opts:
        option(app)

    values, special = _parse_arguments(app, list(args[1:]))

    if special == "help":
        _print_help(app)
        return Config(), True

    for flag in app.flags:
        value = _resolve(flag, values)
        if value is not None and flag.destination is not None:
            flag.destination(value)

    if special == "version":
        print(app.version, file=app.out())
        return Config(), True

    if raw.path:
        c.path = raw.path.split(",")

    c.headers = raw.headers.lower().split(",")

    if raw.cookies:
        c.cookies = raw.cookies.split(",")

    if c.debug:
        c.log_level = "debug"
        c.log_format = "text"

    if c.metrics.port == 0:
        c.metrics.port = c.port

    if raw.metrics_tags:
        c.metrics.tags = parse_tags(raw.metrics_tags)

    if c.metrics.log_interval > 0:
        print(
            "DEPRECATION WARNING: metrics_log_interval option is deprecated\n"
            "and will be deleted in the next major release of anycable-go.\n"
            "Use metrics_rotate_interval instead."
        )
        if c.metrics.rotate_interval == 0:
            c.metrics.rotate_interval = c.metrics.log_interval

    if raw.metrics_filter:
        c.metrics.log_filter = raw.metrics_filter.split(",")

    if raw.enats_routes:
        c.embedded_nats.routes = raw.enats_routes.split(",")

    if raw.enats_gateways:
        c.embedded_nats.gateways = raw.enats_gateways.split(";")

    if raw.presets:
        c.user_presets = raw.presets.split(",")

    if c.embed_nats and c.nats_servers == DEFAULT_NATS_URL:
        c.nats_servers = c.embedded_nats.service_addr

    return c, False