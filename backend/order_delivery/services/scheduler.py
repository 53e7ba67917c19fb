"""Background purge of abandoned registration sessions.

Uses FastAPI's lifespan context to start/stop an asyncio loop that
deletes sessions untouched for `registration_session_ttl_hours`, every
`session_purge_interval_minutes`. Set the interval to 0 to disable it
(the CLI `purge-stale-sessions` command does the same job on demand).
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI

from order_delivery.auth.otp import otp_gate
from order_delivery.config import settings
from order_delivery.models.mixins import utcnow
from order_delivery.services.registration import RegistrationStateMachine
from order_delivery.unit_of_work import UnitOfWork

logger = logging.getLogger("order_delivery.scheduler")


async def purge_stale_sessions(ttl_hours: int = settings.registration_session_ttl_hours) -> int:
    cutoff = utcnow() - timedelta(hours=ttl_hours)
    async with UnitOfWork() as uow:
        return await RegistrationStateMachine(uow, otp_gate).purge_stale_sessions(cutoff)


async def _purge_loop(interval_seconds: int) -> None:
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await purge_stale_sessions()
        except Exception:
            logger.exception("Stale session purge failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the purge loop on startup, cancel it on shutdown."""
    interval = settings.session_purge_interval_minutes * 60
    if interval <= 0:
        yield
        return

    task = asyncio.create_task(_purge_loop(interval))
    logger.info("Session purge scheduled every %d minute(s)", settings.session_purge_interval_minutes)
    try:
        yield
    finally:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Session purge stopped")
