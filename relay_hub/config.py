"""Configuration helpers for the relay hub runtime."""

from __future__ import annotations

import os
from dataclasses import dataclass

_FLAG_VALUES = {
    "1": True,
    "true": True,
    "yes": True,
    "on": True,
    "0": False,
    "false": False,
    "no": False,
    "off": False,
}


def _env(name: str) -> str | None:
    value = os.getenv(name, "").strip()
    return value or None


def env_bool(name: str, *, default: bool = False) -> bool:
    """Read a yes/no flag; unrecognised spellings keep ``default``."""
    raw = _env(name)
    if raw is None:
        return default
    return _FLAG_VALUES.get(raw.lower(), default)


def env_int(name: str, *, default: int | None = None) -> int | None:
    raw = _env(name)
    if raw is None or not raw.lstrip("-").isdigit():
        return default
    return int(raw)


@dataclass(frozen=True)
class HubConfig:
    discord_token: str
    table_name: str
    aws_region: str
    host: str
    port: int
    socket_path: str
    verification_ttl_minutes: int
    heartbeat_seconds: int
    console_enabled: bool

    @classmethod
    def load(cls) -> "HubConfig":
        required = {name: _env(name) for name in ("DISCORD_TOKEN", "DDB_TABLE_NAME")}
        missing = sorted(name for name, value in required.items() if value is None)
        if missing:
            raise RuntimeError("Missing env vars: " + ", ".join(missing))

        socket_path = "/" + (_env("HUB_SOCKET_PATH") or "socket").lstrip("/")

        return cls(
            discord_token=required["DISCORD_TOKEN"],
            table_name=required["DDB_TABLE_NAME"],
            aws_region=_env("AWS_REGION") or "us-east-1",
            host=_env("HUB_HOST") or "0.0.0.0",
            port=env_int("HUB_PORT", default=8080),
            socket_path=socket_path,
            verification_ttl_minutes=env_int("VERIFICATION_TTL_MINUTES", default=15),
            heartbeat_seconds=env_int("HUB_HEARTBEAT_SECONDS", default=30),
            console_enabled=env_bool("HUB_CONSOLE", default=True),
        )


__all__ = ["HubConfig", "env_bool", "env_int"]
