"""
ardor.worker.__main__ — Entry point for ``python -m ardor.worker``
==================================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml (infrastructure settings).
3. Create the SQLAlchemy engine, ensure tables exist, seed default settings.
4. Build and warm the ConfigCache (thresholds, rank rewards, settings).
5. Start the PG LISTEN/NOTIFY background listener.
6. Build the evaluator and the refresh coordinator.
7. Watch every subject with recent activity; new subjects are picked up
   on their first ``activity_changed`` notification.
   Every ``idle_sweep_seconds`` the monitors of subjects with no activity
   inside ``watch_recent_hours`` are detached.
8. Run until SIGINT/SIGTERM, then stop every poll loop.

Run with::

    uv run python -m ardor.worker
"""

from __future__ import annotations

import asyncio
import logging
import signal
from datetime import timedelta

from dotenv import load_dotenv

from ardor.config import ArdorConfig, load_config
from ardor.database.engine import create_db_engine, init_db, run_db
from ardor.engine.cache import ConfigCache
from ardor.engine.transitions import Subject
from ardor.services.activity_source import SqlActivitySource
from ardor.services.evaluation_service import RankUpNotification, build_evaluator
from ardor.services.refresh_coordinator import RefreshCoordinator

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("ardor")


async def _log_rank_up(subject: Subject, notification: RankUpNotification) -> None:
    logger.info(
        "%s %s reached %s (badge=%s, artifact=%s)",
        notification.icon, subject, notification.label,
        notification.badge_reference_id, notification.artifact_reference_id,
    )


async def sweep_idle_subjects(
    coordinator: RefreshCoordinator,
    source: SqlActivitySource,
    window: timedelta,
) -> list[Subject]:
    """Detach every watched subject with no settled activity inside *window*."""
    watched = set(coordinator.subjects)
    active = set(await run_db(source.list_recent_subjects, window))
    # subjects attached while the query ran are newer than its result
    return coordinator.detach_idle(active | (set(coordinator.subjects) - watched))


async def _sweep_loop(
    coordinator: RefreshCoordinator,
    source: SqlActivitySource,
    window: timedelta,
    interval: float,
) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await sweep_idle_subjects(coordinator, source, window)
        except Exception:
            logger.exception("Idle subject sweep failed; retrying in %.0fs", interval)


async def run_worker(cfg: ArdorConfig, engine, cache: ConfigCache) -> None:
    loop = asyncio.get_running_loop()
    coordinator = RefreshCoordinator(
        build_evaluator(engine, cache, cfg),
        poll_interval=cfg.poll_interval_seconds,
    )
    coordinator.add_rank_up_listener(_log_rank_up)

    async def on_activity_changed(payload: dict) -> None:
        tenant_id = payload.get("tenant_id")
        user_id = payload.get("user_id")
        if not tenant_id or not user_id:
            logger.warning("activity_changed payload missing subject: %s", payload)
            return
        subject = Subject.of(str(tenant_id), str(user_id))
        if coordinator.is_watching(subject):
            coordinator.notify(subject.tenant_id, subject.user_id)
        else:
            coordinator.attach(subject)

    cache.register_event_callback("activity_changed", on_activity_changed, loop=loop)

    source = SqlActivitySource(engine)
    window = timedelta(hours=cfg.watch_recent_hours)
    subjects = await run_db(source.list_recent_subjects, window)
    for subject in subjects:
        coordinator.attach(subject)
    logger.info("Watching %d subjects with recent activity", len(subjects))

    stop = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C still
            # raises KeyboardInterrupt in main().
            pass

    sweeper = asyncio.create_task(
        _sweep_loop(coordinator, source, window, cfg.idle_sweep_seconds),
        name="ardor-idle-sweep",
    )
    try:
        await stop.wait()
    finally:
        sweeper.cancel()
        await asyncio.gather(sweeper, return_exceptions=True)
        await coordinator.shutdown()


def main() -> None:
    """Bootstrap and run the Ardor refresh worker."""

    # 1. Environment variables (secrets).
    load_dotenv()

    # 2. Infrastructure configuration.
    cfg = load_config()
    logger.info("Config loaded — %s", cfg.service_name)

    # 3. Database.
    engine = create_db_engine()
    init_db(engine)

    # 4. Build and warm the ConfigCache.
    cache = ConfigCache(engine)
    cache.load_all()

    # 5. Start PG LISTEN/NOTIFY background thread.
    cache.start_listener()

    # 6–8. Run (blocks until Ctrl+C or SIGTERM).
    logger.info("Starting Ardor worker (poll every %.1fs)…", cfg.poll_interval_seconds)
    try:
        asyncio.run(run_worker(cfg, engine, cache))
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully…")
    finally:
        cache.stop_listener()


if __name__ == "__main__":
    main()
