"""
ardor.config — YAML Configuration Loader
=========================================

Reads ``config.yaml`` for **infrastructure-only** settings (service
identity, refresh cadence, timeouts, issuance endpoints).  Scoring tuning
values (economic cap, stale-pending window) live in the ``settings``
database table, and per-tenant rank thresholds live in
``rank_thresholds``.

Usage::

    from ardor.config import load_config

    cfg = load_config()              # reads ./config.yaml by default
    print(cfg.poll_interval_seconds) # 5.0
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml


# ---------------------------------------------------------------------------
# Typed settings object — infrastructure only.
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ArdorConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    service_name: str

    # HTTP
    api_port: int

    # Issuance collaborators
    badge_service_url: str
    artifact_service_url: str

    # Refresh cadence
    poll_interval_seconds: float = 5.0
    evaluation_timeout_seconds: float = 10.0
    issuance_timeout_seconds: float = 15.0

    # Worker: subjects with activity this recent are watched; the rest are
    # detached every idle_sweep_seconds
    watch_recent_hours: int = 24
    idle_sweep_seconds: float = 300.0


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> ArdorConfig:
    """Read *path* and return an :class:`ArdorConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    ValueError
        If a timing value is not strictly positive.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    cfg = ArdorConfig(
        service_name=raw["service_name"],
        api_port=int(raw["api_port"]),
        badge_service_url=str(raw["badge_service_url"]).rstrip("/"),
        artifact_service_url=str(raw["artifact_service_url"]).rstrip("/"),
        poll_interval_seconds=float(raw.get("poll_interval_seconds", 5.0)),
        evaluation_timeout_seconds=float(raw.get("evaluation_timeout_seconds", 10.0)),
        issuance_timeout_seconds=float(raw.get("issuance_timeout_seconds", 15.0)),
        watch_recent_hours=int(raw.get("watch_recent_hours", 24)),
        idle_sweep_seconds=float(raw.get("idle_sweep_seconds", 300.0)),
    )

    for name in (
        "poll_interval_seconds",
        "evaluation_timeout_seconds",
        "issuance_timeout_seconds",
        "idle_sweep_seconds",
    ):
        if getattr(cfg, name) <= 0:
            raise ValueError(f"{name} must be > 0 (got {getattr(cfg, name)})")

    return cfg
