"""Transaction boundary over one AsyncSession.

A UnitOfWork owns a single session, hands out one cached repository per
entity type, and is the only thing allowed to commit. Repositories it
returned become unusable once the current scope ends (commit, rollback
or close); ask the unit of work for a new one.

Usage in routes (dependency injection, mirrors ``get_db``):

    @router.post("/complete")
    async def complete(..., uow: UnitOfWork = Depends(get_unit_of_work)):
        ...

Usage in services:

    async def _work():
        repo = uow.repository(RegistrationSession)
        ...
    result = await uow.execute_in_transaction(_work)
"""

import logging
from typing import AsyncIterator, Awaitable, Callable, TypeVar

from fastapi import Depends
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from order_delivery.database import async_session
from order_delivery.repositories.generic import Repository

logger = logging.getLogger(__name__)

T = TypeVar("T")
ModelT = TypeVar("ModelT")

# serialization_failure, deadlock_detected, lock_not_available
TRANSIENT_SQLSTATES = frozenset({"40001", "40P01", "55P03"})


class TransactionStateError(RuntimeError):
    pass


def is_transient_failure(exc: BaseException) -> bool:
    """True for write conflicts that are worth one retry."""
    if not isinstance(exc, DBAPIError):
        return False
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in TRANSIENT_SQLSTATES:
        return True
    # SQLite writer contention
    return "database is locked" in str(orig).lower()


class UnitOfWork:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession] = async_session):
        self._session_factory = session_factory
        self._session: AsyncSession | None = None
        self._repositories: dict[type, Repository] = {}
        self._in_transaction = False
        self._closed = False
        self.scope = 0

    async def __aenter__(self) -> "UnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def session(self) -> AsyncSession:
        if self._closed:
            raise TransactionStateError("Unit of work is closed")
        if self._session is None:
            self._session = self._session_factory()
        return self._session

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    def repository(self, model: type[ModelT]) -> Repository[ModelT]:
        repo = self._repositories.get(model)
        if repo is None:
            repo = Repository(self, model)
            self._repositories[model] = repo
        return repo

    # ── Transaction control ─────────────────────────────────

    async def begin_transaction(self) -> None:
        if self._in_transaction:
            raise TransactionStateError("A transaction is already in progress")
        session = self.session
        # Reads issued before begin autobegin a transaction; adopt it
        if not session.in_transaction():
            await session.begin()
        self._in_transaction = True

    async def commit(self) -> None:
        if not self._in_transaction:
            raise TransactionStateError("No transaction in progress")
        try:
            await self.session.commit()
        except BaseException:
            logger.exception("Commit failed, rolling back")
            await self._rollback_session()
            raise
        finally:
            self._end_scope()

    async def rollback(self) -> None:
        try:
            await self._rollback_session()
        finally:
            self._end_scope()

    async def save_changes(self) -> int:
        """Flush pending writes without committing; returns the entity count."""
        session = self.session
        pending = len(session.new) + len(session.dirty) + len(session.deleted)
        await session.flush()
        return pending

    async def execute_in_transaction(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` atomically.

        Inside an already-open transaction the call joins it and the outer
        scope decides the outcome. Any exception, cancellation included,
        rolls the transaction back and propagates unchanged.
        """
        if self._in_transaction:
            return await operation()

        await self.begin_transaction()
        try:
            result = await operation()
        except BaseException:
            await self.rollback()
            raise
        await self.commit()
        return result

    # ── Health / lifecycle ──────────────────────────────────

    async def can_connect(self) -> bool:
        try:
            async with self._session_factory() as session:
                await session.execute(text("SELECT 1"))
            return True
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("Database connectivity check failed: %s", exc)
            return False

    async def close(self) -> None:
        """Release the session.

        An explicit transaction still open here is rolled back, which
        expires what it loaded. Entities read outside one stay readable
        (detached) after close.
        """
        if self._closed:
            return
        try:
            if self._session is not None:
                if self._in_transaction:
                    logger.warning("Unit of work closed with an open transaction, rolling back")
                    await self._rollback_session()
                await self._session.close()
        finally:
            self._end_scope()
            self._session = None
            self._closed = True

    # ── Helpers ─────────────────────────────────────────────

    async def _rollback_session(self) -> None:
        if self._session is not None and self._session.in_transaction():
            await self._session.rollback()

    def _end_scope(self) -> None:
        self._in_transaction = False
        self._repositories.clear()
        self.scope += 1


def get_uow_factory() -> Callable[[], UnitOfWork]:
    """FastAPI dependency for code that needs several independent units of work."""
    return UnitOfWork


async def get_unit_of_work(
    uow_factory: Callable[[], UnitOfWork] = Depends(get_uow_factory),
) -> AsyncIterator[UnitOfWork]:
    """FastAPI dependency: one unit of work per request, always closed."""
    async with uow_factory() as uow:
        yield uow
