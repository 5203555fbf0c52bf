from dataclasses import dataclass, field
import logging
import os
from typing import Optional

from dotenv import find_dotenv, load_dotenv

from .auth import CredentialStore


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class Config:
    listen_host: str = "0.0.0.0"
    listen_port: int = 7547
    idle_timeout: float = 30.0
    auth_username: Optional[str] = None
    auth_password: Optional[str] = field(default=None, repr=False)
    max_sessions: int = 0
    log_level: str = "DEBUG"
    log_path: str = "gate.log"

    def credentials(self) -> CredentialStore:
        return CredentialStore(self.auth_username, self.auth_password)


def _flag(name: str) -> bool:
    return os.getenv(name, "false").strip().lower() in ("1", "true", "yes", "on")


def _number(name: str, default, cast):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None


def load_config(env_file: Optional[str] = None) -> Config:
    load_dotenv(env_file or find_dotenv(usecwd=True), override=True)

    port = _number("GATE_LISTEN_PORT", 7547, int)
    if not 0 <= port <= 65535:
        raise ConfigError(f"GATE_LISTEN_PORT out of range: {port}")

    timeout = _number("GATE_IDLE_TIMEOUT", 30.0, float)
    if timeout <= 0:
        raise ConfigError(f"GATE_IDLE_TIMEOUT must be positive: {timeout}")

    max_sessions = _number("GATE_MAX_SESSIONS", 0, int)
    if max_sessions < 0:
        raise ConfigError(f"GATE_MAX_SESSIONS must be >= 0: {max_sessions}")

    username = os.getenv("GATE_AUTH_USERNAME")
    password = os.getenv("GATE_AUTH_PASSWORD")
    if _flag("GATE_AUTH_ENABLED") or username is not None or password is not None:
        # no fallback credentials: an auth section must name both fields
        if not username or password is None:
            raise ConfigError("auth enabled but GATE_AUTH_USERNAME/GATE_AUTH_PASSWORD not both set")

    log_level = os.getenv("GATE_LOG_LEVEL", "DEBUG").upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise ConfigError(f"GATE_LOG_LEVEL is not a log level: {log_level!r}")

    return Config(
        listen_host=os.getenv("GATE_LISTEN_HOST", "0.0.0.0"),
        listen_port=port,
        idle_timeout=timeout,
        auth_username=username,
        auth_password=password,
        max_sessions=max_sessions,
        log_level=log_level,
        log_path=os.getenv("GATE_LOG_PATH", "gate.log"),
    )
