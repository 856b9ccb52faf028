"""
ardor.database.engine — Database Connection & Async Helper
===========================================================

The refresh coordinator and the API run on an ``asyncio`` event loop,
while SQLAlchemy + psycopg2 is **synchronous**.  Every DB-touching call
from async code is shipped to a worker thread with :func:`run_db`, so
one slow query never stalls evaluations for other subjects.

Usage::

    from ardor.database.engine import create_db_engine, init_db, run_db

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS …

    records = await run_db(list_activity, engine, tenant_id, user_id)
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine

from ardor.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine() -> Engine:
    """Build a SQLAlchemy :class:`Engine` from the ``DATABASE_URL`` env var.

    Pool sizing: five persistent connections, up to ten overflow, fail
    after 10 s when exhausted, recycle after one hour.

    Raises
    ------
    RuntimeError
        If ``DATABASE_URL`` is not set.
    """
    url = os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )

    engine = create_engine(
        url,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_timeout=10,
        pool_recycle=3600,
    )
    logger.info("Database engine created → %s", engine.url.host)
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables defined in :mod:`ardor.database.models` and seed
    default settings.

    .. note::

        In production the schema is managed by Alembic (``alembic upgrade
        head``), which also installs the activity NOTIFY trigger.
        ``create_all`` is a safety net for dev/test environments.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")

    from ardor.database.seed import seed_default_settings

    seed_default_settings(engine)


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a **synchronous** database function on a background thread.

    Under the hood this is :func:`asyncio.to_thread`, so the event loop
    keeps serving other subjects while the query runs.
    """
    return await asyncio.to_thread(func, *args, **kwargs)
