"""
ardor.engine.cache — In-Memory Config Cache with PG LISTEN/NOTIFY
===================================================================

Tenant threshold tables, per-rank rewards, and tuning settings are
cached in memory.  Operator edits send ``NOTIFY config_changed, '<table>'``
and the listener thread reloads that partition.

The same listener also carries activity change notifications on the
``ardor_events`` channel (installed as a trigger on ``activity_records``),
which it hands to registered async callbacks on the worker's loop.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import select as _select
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy import select, text
from sqlalchemy.orm import Session

from ardor.constants import DEFAULT_RANK_THRESHOLDS
from ardor.database.models import RankReward, RankThreshold, ScoreAxis, Setting

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

# The PG channel name used for config invalidation
NOTIFY_CHANNEL = "config_changed"

# PG channel for activity change notifications
EVENT_NOTIFY_CHANNEL = "ardor_events"

# Allowlist of table names accepted by notify_before_commit()
ALLOWED_NOTIFY_TABLES: frozenset[str] = frozenset({
    "rank_thresholds",
    "rank_rewards",
    "settings",
})


@dataclass(frozen=True, slots=True)
class RankRewardConfig:
    """Detached view of a ``rank_rewards`` row."""

    rank_level: int
    artifact_id: str | None
    label: str | None
    icon: str | None


class ConfigCache:
    """Thread-safe in-memory cache for thresholds, rank rewards, and settings.

    Usage:
        cache = ConfigCache(engine)
        cache.load_all()
        cache.start_listener()

        table = cache.get_thresholds("creator-1", "composite")
        reward = cache.get_rank_reward("creator-1", 3)
        cap = cache.get_float("scoring.economic_cap", default=7000.0)
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._lock = threading.Lock()

        # (tenant_id, axis) → {rank_level: min_score}
        self._thresholds: dict[tuple[str, str], dict[int, float]] = {}
        # (tenant_id, rank_level) → RankRewardConfig
        self._rank_rewards: dict[tuple[str, int], RankRewardConfig] = {}
        # key → parsed JSON value
        self._settings: dict[str, Any] = {}

        self._listener_healthy: bool = False
        self._listener_failed: bool = False
        self._listener_thread: threading.Thread | None = None
        self._shutdown_event = threading.Event()

        # Event notification callbacks: event_type → async callable
        self._event_callbacks: dict[str, Any] = {}
        self._event_loop: asyncio.AbstractEventLoop | None = None

    # -------------------------------------------------------------------
    # Cache loading (synchronous — called via run_db or directly)
    # -------------------------------------------------------------------
    def load_all(self) -> None:
        """Load all config caches from DB. Call on startup."""
        self._load_thresholds()
        self._load_rank_rewards()
        self._load_settings()
        logger.info(
            "ConfigCache loaded: %d threshold tables, %d rank rewards, %d settings",
            len(self._thresholds),
            len(self._rank_rewards),
            len(self._settings),
        )

    def _load_thresholds(self) -> None:
        with Session(self._engine) as session:
            rows = session.scalars(select(RankThreshold)).all()
            tables: dict[tuple[str, str], dict[int, float]] = {}
            for row in rows:
                key = (row.tenant_id, row.axis)
                tables.setdefault(key, {})[row.rank_level] = float(row.min_score)
        with self._lock:
            self._thresholds = tables

    def _load_rank_rewards(self) -> None:
        with Session(self._engine) as session:
            rows = session.scalars(select(RankReward)).all()
            rewards: dict[tuple[str, int], RankRewardConfig] = {}
            for row in rows:
                rewards[(row.tenant_id, row.rank_level)] = RankRewardConfig(
                    rank_level=row.rank_level,
                    artifact_id=row.artifact_id,
                    label=row.label,
                    icon=row.icon,
                )
        with self._lock:
            self._rank_rewards = rewards

    def _load_settings(self) -> None:
        with Session(self._engine) as session:
            rows = session.scalars(select(Setting)).all()
            parsed: dict[str, Any] = {}
            for row in rows:
                try:
                    parsed[row.key] = json.loads(row.value_json)
                except (json.JSONDecodeError, TypeError):
                    parsed[row.key] = row.value_json

        with self._lock:
            self._settings = parsed

    # -------------------------------------------------------------------
    # Cache reads (thread-safe)
    # -------------------------------------------------------------------
    def get_thresholds(
        self, tenant_id: str, axis: str = ScoreAxis.COMPOSITE,
    ) -> dict[int, float]:
        """Return a copy of the tenant's table for *axis*.

        Falls back to :data:`DEFAULT_RANK_THRESHOLDS` when the tenant has
        no rows for that axis.  The table is returned as stored; callers
        validate it.
        """
        with self._lock:
            table = self._thresholds.get((tenant_id, str(axis)))
            if table is None:
                return dict(DEFAULT_RANK_THRESHOLDS)
            return dict(table)

    def has_custom_thresholds(self, tenant_id: str, axis: str = ScoreAxis.COMPOSITE) -> bool:
        with self._lock:
            return (tenant_id, str(axis)) in self._thresholds

    def get_rank_reward(self, tenant_id: str, rank_level: int) -> RankRewardConfig | None:
        with self._lock:
            return self._rank_rewards.get((tenant_id, rank_level))

    # -------------------------------------------------------------------
    # Typed setting accessors (thread-safe)
    # -------------------------------------------------------------------
    def get_setting(self, key: str, default: Any = None) -> Any:
        """Return the parsed JSON value for *key*, or *default*."""
        with self._lock:
            return self._settings.get(key, default)

    def get_int(self, key: str, default: int = 0) -> int:
        val = self.get_setting(key)
        if val is None:
            return default
        try:
            return int(val)
        except (TypeError, ValueError):
            return default

    def get_float(self, key: str, default: float = 0.0) -> float:
        val = self.get_setting(key)
        if val is None:
            return default
        try:
            return float(val)
        except (TypeError, ValueError):
            return default

    # -------------------------------------------------------------------
    # Cache invalidation via NOTIFY
    # -------------------------------------------------------------------
    def handle_notify(self, table_name: str) -> None:
        """Reload the relevant cache partition when a NOTIFY arrives."""
        table_name = table_name.strip().lower()
        logger.info("Config cache invalidation for table: %s", table_name)

        if table_name == "rank_thresholds":
            self._load_thresholds()
        elif table_name == "rank_rewards":
            self._load_rank_rewards()
        elif table_name == "settings":
            self._load_settings()
        else:
            logger.warning("Unknown table in NOTIFY: %s — ignoring", table_name)

    @property
    def listener_healthy(self) -> bool:
        """Return True if the LISTEN thread is alive and connected."""
        return self._listener_healthy and not self._listener_failed

    @property
    def listener_failed(self) -> bool:
        """Return True if the listener exhausted reconnect attempts."""
        return self._listener_failed

    def stop_listener(self) -> None:
        """Signal the listener thread to stop and wait for it to exit."""
        self._shutdown_event.set()
        if self._listener_thread is not None and self._listener_thread.is_alive():
            self._listener_thread.join(timeout=5)
            logger.info("PG NOTIFY listener thread stopped")

    def start_listener(self) -> None:
        """Start a background thread that LISTENs on both PG channels.

        The thread uses a raw psycopg2 connection + select() so it never
        blocks the asyncio event loop, and reconnects with exponential
        backoff + jitter if the connection drops.  When notifications are
        unavailable the coordinator's poll loop still refreshes subjects.
        """
        import psycopg2

        max_backoff = 60.0
        base_backoff = 1.0
        max_reconnect_attempts = 10

        def _listen_thread() -> None:
            # str(engine.url) masks the password; psycopg2 needs the real one.
            raw_url = self._engine.url.render_as_string(hide_password=False)
            dsn = raw_url.replace("postgresql+psycopg2://", "postgresql://")
            attempt = 0

            while not self._shutdown_event.is_set():
                conn = None
                try:
                    conn = psycopg2.connect(dsn)
                    conn.set_isolation_level(0)  # autocommit
                    cur = conn.cursor()
                    cur.execute(f"LISTEN {NOTIFY_CHANNEL};")
                    cur.execute(f"LISTEN {EVENT_NOTIFY_CHANNEL};")
                    logger.info(
                        "PG LISTEN started on channels '%s', '%s'",
                        NOTIFY_CHANNEL, EVENT_NOTIFY_CHANNEL,
                    )

                    attempt = 0
                    self._listener_healthy = True

                    while not self._shutdown_event.is_set():
                        if _select.select([conn], [], [], 5.0) == ([], [], []):
                            continue
                        conn.poll()
                        while conn.notifies:
                            notify = conn.notifies.pop(0)
                            self._route(notify.channel, notify.payload or "")

                except Exception:
                    self._listener_healthy = False
                    attempt += 1

                    if attempt >= max_reconnect_attempts:
                        logger.critical(
                            "PG LISTEN exhausted %d retries. "
                            "Falling back to polling only.",
                            max_reconnect_attempts,
                        )
                        self._listener_failed = True
                        break

                    backoff = min(base_backoff * (2 ** (attempt - 1)), max_backoff)
                    wait = backoff + random.uniform(0, backoff * 0.5)
                    logger.exception(
                        "PG LISTEN connection lost (attempt %d/%d). "
                        "Reconnecting in %.1fs…",
                        attempt, max_reconnect_attempts, wait,
                    )
                    if self._shutdown_event.wait(timeout=wait):
                        break
                finally:
                    if conn is not None:
                        try:
                            conn.close()
                        except Exception:
                            logger.debug("Error closing LISTEN connection", exc_info=True)

        thread = threading.Thread(target=_listen_thread, daemon=True, name="pg-notify-listener")
        self._listener_thread = thread
        thread.start()
        logger.info("PG NOTIFY listener thread started")

    def _route(self, channel: str, payload: str) -> None:
        logger.debug("NOTIFY received on '%s': %s", channel, payload)
        try:
            if channel == EVENT_NOTIFY_CHANNEL:
                self._dispatch_event(payload)
            else:
                self.handle_notify(payload)
        except Exception:
            logger.exception("Error handling NOTIFY on '%s': %s", channel, payload)

    def register_event_callback(
        self,
        event_type: str,
        callback: Any,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        """Register an async callback for a specific event type.

        Parameters
        ----------
        event_type : str
            Event type key (e.g. ``"activity_changed"``).
        callback : coroutine function
            Async callable invoked with the parsed JSON payload dict.
        loop : asyncio.AbstractEventLoop, optional
            Event loop on which to schedule the callback.  Stored once.
        """
        self._event_callbacks[event_type] = callback
        if loop is not None:
            self._event_loop = loop
        logger.info("Registered event callback for '%s'", event_type)

    def _dispatch_event(self, raw_payload: str) -> None:
        """Parse a JSON event payload and dispatch to the registered callback."""
        try:
            data = json.loads(raw_payload)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Invalid event payload (not JSON): %s", raw_payload)
            return

        event_type = data.get("type") if isinstance(data, dict) else None
        if not event_type:
            logger.warning("Event payload missing 'type' key: %s", raw_payload)
            return

        callback = self._event_callbacks.get(event_type)
        if callback is None:
            logger.debug("No callback registered for event type '%s'", event_type)
            return

        loop = self._event_loop
        if loop is None or loop.is_closed():
            logger.warning(
                "Cannot dispatch event '%s' — no event loop available", event_type,
            )
            return

        asyncio.run_coroutine_threadsafe(callback(data), loop)


def _check_table(table_name: str) -> None:
    if table_name not in ALLOWED_NOTIFY_TABLES:
        raise ValueError(
            f"Invalid table name for NOTIFY: '{table_name}'. "
            f"Allowed: {sorted(ALLOWED_NOTIFY_TABLES)}"
        )


def notify_before_commit(session: Session, table_name: str) -> None:
    """Execute NOTIFY within the current transaction (fires atomically on commit).

    Parameters
    ----------
    session : Session
        The active SQLAlchemy session (must not yet be committed).
    table_name : str
        Must be in :data:`ALLOWED_NOTIFY_TABLES`.
    """
    _check_table(table_name)
    session.execute(text(f"NOTIFY {NOTIFY_CHANNEL}, '{table_name}'"))


def send_event_notify(engine: Engine, payload: dict) -> None:
    """Send a NOTIFY on the ardor_events channel with a JSON payload.

    Used by collaborators that write activity outside the database
    trigger path, e.g. ``{"type": "activity_changed", "tenant_id": ...,
    "user_id": ...}``.
    """
    if "type" not in payload:
        raise ValueError("Event payload must include a 'type' key")
    raw = json.dumps(payload, default=str)
    with engine.connect() as conn:
        conn.execute(
            text("SELECT pg_notify(:channel, :payload)"),
            {"channel": EVENT_NOTIFY_CHANNEL, "payload": raw},
        )
        conn.commit()
