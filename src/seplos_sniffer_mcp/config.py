"""Runtime settings for the bus sniffer."""

from __future__ import annotations

import os
from dataclasses import dataclass

from .transport.connection import DEFAULT_BAUDRATE, parse_adapter

DEFAULT_ADAPTER = "/dev/ttyS0"

ENV_ADAPTER = "SEPLOS_ADAPTER"
ENV_UPDATE_INTERVAL = "SEPLOS_UPDATE_INTERVAL"
ENV_LINK_TIMEOUT = "SEPLOS_LINK_TIMEOUT"


@dataclass
class SnifferConfig:
    """Listener settings. Durations are in seconds."""

    adapter: str = DEFAULT_ADAPTER
    update_interval: float = 5.0
    link_timeout: float = 10.0
    baudrate: int = DEFAULT_BAUDRATE
    read_timeout: float = 1.0
    min_reconnect_delay: float = 5.0
    max_reconnect_delay: float = 120.0

    def validate(self) -> SnifferConfig:
        """Raise ``ValueError`` on an invalid setting; return self."""
        parse_adapter(self.adapter)
        if self.update_interval < 0:
            raise ValueError(f"update_interval must be >= 0, got {self.update_interval}")
        for name in ("link_timeout", "read_timeout", "min_reconnect_delay"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0, got {getattr(self, name)}")
        if self.max_reconnect_delay < self.min_reconnect_delay:
            raise ValueError("max_reconnect_delay must be >= min_reconnect_delay")
        return self

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> SnifferConfig:
        """Build settings from ``SEPLOS_*`` environment variables."""
        env = os.environ if environ is None else environ
        config = cls()
        if env.get(ENV_ADAPTER):
            config.adapter = env[ENV_ADAPTER].strip()
        if env.get(ENV_UPDATE_INTERVAL):
            config.update_interval = _float(env, ENV_UPDATE_INTERVAL)
        if env.get(ENV_LINK_TIMEOUT):
            config.link_timeout = _float(env, ENV_LINK_TIMEOUT)
        return config.validate()

    def to_dict(self) -> dict:
        return {
            "adapter": self.adapter,
            "update_interval": self.update_interval,
            "link_timeout": self.link_timeout,
            "baudrate": self.baudrate,
        }


def _float(env, name: str) -> float:
    try:
        return float(env[name])
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {env[name]!r}") from e
