"""
qaboard.config — YAML + Environment Configuration Loader
=========================================================

Soft settings (backend toggle, storage directory, timings) come from
``config.yaml``.  Remote backend credentials are secrets and come from the
environment only (``.env`` is loaded by :mod:`qaboard.bootstrap`).

Usage::

    from qaboard.config import load_config

    cfg = load_config()              # reads ./config.yaml by default
    print(cfg.force_local)           # False
    print(cfg.remote_configured)     # True when URL and key are both set
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import yaml

from qaboard.constants import (
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_SESSION_TTL_HOURS,
)

REMOTE_URL_ENV = "QABOARD_REMOTE_URL"
REMOTE_KEY_ENV = "QABOARD_REMOTE_KEY"
FORCE_LOCAL_ENV = "QABOARD_FORCE_LOCAL"

_TRUTHY = frozenset({"1", "true", "yes", "on"})


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class BoardConfig:
    """Immutable configuration, read once at process start."""

    # Backend selection
    force_local: bool = False
    remote_url: str | None = None
    remote_key: str | None = None

    # Local document location
    local_store_dir: str = ".qaboard"

    # Timing
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    session_ttl_hours: int = DEFAULT_SESSION_TTL_HOURS

    @property
    def remote_configured(self) -> bool:
        return bool(self.remote_url) and bool(self.remote_key)


def _env_flag(value: str | None) -> bool | None:
    if value is None or not value.strip():
        return None
    return value.strip().lower() in _TRUTHY


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(
    path: str | Path = "config.yaml",
    environ: dict[str, str] | None = None,
) -> BoardConfig:
    """Read *path* and the environment and return a :class:`BoardConfig`.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
    environ:
        Mapping to read secrets from.  Defaults to ``os.environ``.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    env = os.environ if environ is None else environ

    force_local = bool(raw.get("force_local", False))
    env_force = _env_flag(env.get(FORCE_LOCAL_ENV))
    if env_force is not None:
        force_local = env_force

    return BoardConfig(
        force_local=force_local,
        remote_url=env.get(REMOTE_URL_ENV) or None,
        remote_key=env.get(REMOTE_KEY_ENV) or None,
        local_store_dir=str(raw.get("local_store_dir", ".qaboard")),
        poll_interval_seconds=float(
            raw.get("poll_interval_seconds", DEFAULT_POLL_INTERVAL_SECONDS)
        ),
        request_timeout_seconds=float(
            raw.get("request_timeout_seconds", DEFAULT_REQUEST_TIMEOUT_SECONDS)
        ),
        session_ttl_hours=int(raw.get("session_ttl_hours", DEFAULT_SESSION_TTL_HOURS)),
    )
