"""Configuration helpers for environment-driven settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


def _getenv_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "yes", "on"}


def _getenv_float(name: str, default: float) -> float:
    v = (os.getenv(name) or "").strip()
    if not v:
        return default
    try:
        return float(v)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a number, got {v!r}") from exc


@dataclass(frozen=True)
class Config:
    # All fields are passed explicitly by Config.load(); no per-field defaults.
    tv_host: str
    tv_mac: Optional[str]
    tv_username: str
    tv_password_file: Optional[str]
    api_version: int

    poll_interval: float
    initial_poll_delay: float
    long_poll: bool

    api_host: str
    api_port: int

    debug_api: bool

    @staticmethod
    def load() -> "Config":
        """Build a Config from environment (compose env)."""
        tv_host = (os.getenv("TV_HOST") or "").strip()
        if not tv_host:
            raise RuntimeError("TV_HOST is required")

        tv_mac           = (os.getenv("TV_MAC") or "").strip() or None
        tv_username      = (os.getenv("TV_USERNAME") or "").strip()
        tv_password_file = (os.getenv("TV_PASSWORD_FILE") or "").strip() or None
        api_version      = int(_getenv_float("TV_API_VERSION", 6))

        poll_interval      = _getenv_float("POLL_INTERVAL", 10.0)
        initial_poll_delay = _getenv_float("INITIAL_POLL_DELAY", 5.0)
        long_poll          = _getenv_bool("LONG_POLL", True)

        api_host = os.getenv("API_HOST", "0.0.0.0")
        api_port = int(_getenv_float("PORT", 8000))

        debug_api = _getenv_bool("DEBUG_API", False)

        if poll_interval <= 0:
            raise RuntimeError("POLL_INTERVAL must be positive")

        return Config(
            tv_host=tv_host,
            tv_mac=tv_mac,
            tv_username=tv_username,
            tv_password_file=tv_password_file,
            api_version=api_version,
            poll_interval=poll_interval,
            initial_poll_delay=initial_poll_delay,
            long_poll=long_poll,
            api_host=api_host,
            api_port=api_port,
            debug_api=debug_api,
        )

    def load_password(self) -> str:
        """Return the Digest password (auth key from pairing) from env or file."""
        # 1) explicit env wins
        env_pw = (os.getenv("TV_PASSWORD") or "").strip()
        if env_pw:
            return env_pw

        # 2) fall back to file
        path = (self.tv_password_file or "").strip()
        if not path:
            raise RuntimeError("TV password unavailable: set TV_PASSWORD or provide TV_PASSWORD_FILE")

        try:
            with open(path, "r", encoding="utf-8") as f:
                password = f.read().strip()
        except FileNotFoundError as exc:
            raise RuntimeError(f"TV password file not found: {path}") from exc
        except OSError as exc:
            raise RuntimeError(f"Failed to read TV password file {path}: {exc}") from exc

        if not password:
            raise RuntimeError(f"TV password file {path} is empty")

        return password
