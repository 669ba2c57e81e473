"""Main server configuration and platform presets."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

from .identity import JWTConfig
from .metrics_config import MetricsConfig

DEFAULT_NATS_URL = "nats://127.0.0.1:4222"
DEFAULT_RPC_HOST = "localhost:50051"

_log = logging.getLogger("cablegate.config")


@dataclass
class EmbeddedNatsConfig:
    """Settings of the embedded NATS server."""

    debug: bool = False
    trace: bool = False
    service_addr: str = DEFAULT_NATS_URL
    cluster_addr: str = ""
    cluster_name: str = "anycable-cluster"
    gateway_addr: str = ""
    gateways: list[str] | None = None
    routes: list[str] | None = None


@dataclass
class RailsConfig:
    """Signing keys of the Rails signed-streams fastlanes."""

    turbo_rails_key: str = ""
    cable_ready_key: str = ""


@dataclass
class Config:
    """Main application configuration."""

    host: str = "localhost"
    port: int = 8080
    max_conn: int = 0
    broadcast_adapter: str = "redis"
    path: list[str] = field(default_factory=lambda: ["/cable"])
    health_path: str = "/health"
    headers: list[str] = field(default_factory=lambda: ["cookie"])
    cookies: list[str] | None = None
    max_message_size: int = 0
    disconnector_disabled: bool = False
    log_level: str = "info"
    log_format: str = "text"
    debug: bool = False
    rpc_host: str = DEFAULT_RPC_HOST
    nats_servers: str = DEFAULT_NATS_URL
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    jwt: JWTConfig = field(default_factory=JWTConfig)
    rails: RailsConfig = field(default_factory=RailsConfig)
    embed_nats: bool = False
    embedded_nats: EmbeddedNatsConfig = field(default_factory=EmbeddedNatsConfig)
    user_presets: list[str] | None = None

    def presets(self) -> list[str]:
        """Return the explicitly chosen presets, or those detected from the environment."""
        if self.user_presets is not None:
            return self.user_presets
        return detect_presets_from_env()

    def load_presets(self) -> None:
        """Apply every preset, changing only settings still at their defaults."""
        presets = self.presets()
        if not presets:
            return

        _log.info("Load presets: %s", ",".join(presets))

        defaults = Config()
        for preset in presets:
            if preset == "fly":
                self._load_fly_preset(defaults)
            elif preset == "heroku":
                self._load_heroku_preset(defaults)

    def _load_fly_preset(self, defaults: Config) -> None:
        if self.host == defaults.host:
            self.host = "0.0.0.0"

        region = os.environ.get("FLY_REGION")
        if region is None:
            raise RuntimeError("FLY_REGION env is missing")

        app_name = os.environ.get("FLY_APP_NAME")
        if app_name is None:
            raise RuntimeError("FLY_APP_NAME env is missing")

        nats = self.embedded_nats
        nats_defaults = defaults.embedded_nats

        if nats.service_addr == nats_defaults.service_addr:
            nats.service_addr = "nats://0.0.0.0:4222"

        if nats.cluster_addr == nats_defaults.cluster_addr:
            nats.cluster_addr = "nats://0.0.0.0:5222"

        if nats.cluster_name == nats_defaults.cluster_name:
            nats.cluster_name = f"{app_name}-{region}-cluster"

        if nats.routes is None:
            nats.routes = [f"nats://{region}.{app_name}.internal:5222"]

        rpc_name = os.environ.get("ANYCABLE_FLY_RPC_APP_NAME")
        if rpc_name is not None and self.rpc_host == defaults.rpc_host:
            self.rpc_host = f"dns:///{region}.{rpc_name}.internal:50051"

    def _load_heroku_preset(self, defaults: Config) -> None:
        if self.host == defaults.host:
            self.host = "0.0.0.0"


def _all_set(*names: str) -> bool:
    return all(name in os.environ for name in names)


def detect_presets_from_env() -> list[str]:
    """Return the presets whose platform environment variables are present."""
    presets = []
    if _all_set("FLY_APP_NAME", "FLY_ALLOC_ID", "FLY_REGION"):
        presets.append("fly")
    if _all_set("HEROKU_APP_ID", "HEROKU_DYNO_ID"):
        presets.append("heroku")
    return presets