from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

DEFAULT_MAX_BODY_BYTES = 50 * 1024 * 1024
PRODUCTION_ENVIRONMENTS = {"production", "prod"}


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 3001
    environment: str = "development"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES
    ws_ping_interval: float = 25.0
    ws_ping_timeout: float = 60.0
    shutdown_timeout: float = 10.0
    outbox_size: int = 64
    log_level: str = "info"
    log_file: Optional[str] = None

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() in PRODUCTION_ENVIRONMENTS

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ServerConfig":
        env = os.environ if environ is None else environ
        cfg = cls()
        cfg.host = env.get("HOST", cfg.host) or cfg.host
        cfg.port = _as_port(env.get("PORT"), default=cfg.port)
        cfg.environment = env.get("STUDIOSYNC_ENV", cfg.environment) or cfg.environment
        origins = env.get("STUDIOSYNC_CORS_ORIGINS")
        if origins:
            cfg.cors_origins = parse_origins(origins)
        cfg.log_level = env.get("STUDIOSYNC_LOG_LEVEL", cfg.log_level) or cfg.log_level
        cfg.log_file = env.get("STUDIOSYNC_LOG_FILE") or None
        return cfg

    def apply_args(self, args) -> "ServerConfig":
        for name in (
            "host",
            "port",
            "environment",
            "max_body_bytes",
            "ws_ping_interval",
            "ws_ping_timeout",
            "shutdown_timeout",
            "log_level",
            "log_file",
        ):
            value = getattr(args, name, None)
            if value is not None:
                setattr(self, name, value)
        raw_origins = getattr(args, "cors_origins", None)
        if raw_origins:
            self.cors_origins = parse_origins(raw_origins)
        self.port = _as_port(self.port, default=3001)
        return self


def parse_origins(raw: str) -> List[str]:
    origins = [item.strip() for item in str(raw).split(",") if item.strip()]
    return origins or ["*"]


def _as_port(value, *, default: int) -> int:
    try:
        port = int(value)
    except (TypeError, ValueError):
        return default
    return port if 0 < port < 65536 else default
