"""
Service configuration.

All settings come from environment variables with development defaults;
command-line flags (see `service.main`) override them. Secrets are only
ever read from the environment or the command line, never from defaults.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

from .errors import ConfigError
from .mqtt_topics import DEFAULT_NAMESPACE
from .session import POLICY_DOWNGRADE, POLICY_REJECT


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e


@dataclass
class Settings:
    mqtt_host: str = "127.0.0.1"
    mqtt_port: int = 1883
    namespace: str = DEFAULT_NAMESPACE

    redis_url: str = "redis://localhost:6379/0"
    key_prefix: str = "callsys"

    admin_token: str | None = None
    jwt_secret: str | None = None
    auth_policy: str = POLICY_DOWNGRADE

    recent_capacity: int = 5
    admin_log_capacity: int = 50
    workers: int = 8

    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if env is None else env
        return cls(
            mqtt_host=env.get("MQTT_HOST", cls.mqtt_host),
            mqtt_port=_int(env, "MQTT_PORT", cls.mqtt_port),
            namespace=env.get("TICKET_NAMESPACE", cls.namespace),
            redis_url=env.get("REDIS_URL", cls.redis_url),
            key_prefix=env.get("KEY_PREFIX", cls.key_prefix),
            admin_token=env.get("ADMIN_TOKEN") or None,
            jwt_secret=env.get("JWT_SECRET") or None,
            auth_policy=env.get("AUTH_POLICY", cls.auth_policy),
            recent_capacity=_int(env, "RECENT_CAPACITY", cls.recent_capacity),
            admin_log_capacity=_int(env, "ADMIN_LOG_CAPACITY", cls.admin_log_capacity),
            workers=_int(env, "WORKERS", cls.workers),
            log_level=env.get("LOG_LEVEL", cls.log_level),
        )

    def validate(self) -> None:
        """Raise ConfigError if the service cannot start with these settings."""
        if not self.admin_token and not self.jwt_secret:
            raise ConfigError("set ADMIN_TOKEN and/or JWT_SECRET, operators could not authenticate")
        if self.auth_policy not in (POLICY_DOWNGRADE, POLICY_REJECT):
            raise ConfigError(f"AUTH_POLICY must be {POLICY_DOWNGRADE!r} or {POLICY_REJECT!r}")
        if self.recent_capacity <= 0:
            raise ConfigError("RECENT_CAPACITY must be > 0")
        if self.admin_log_capacity <= 0:
            raise ConfigError("ADMIN_LOG_CAPACITY must be > 0")
        if self.workers <= 0:
            raise ConfigError("WORKERS must be > 0")
