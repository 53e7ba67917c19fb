"""UnitOfWork transaction boundaries, scoping and disposal."""

import asyncio

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from order_delivery.models import RegistrationSession
from order_delivery.repositories.generic import StaleRepositoryError
from order_delivery.unit_of_work import (
    TransactionStateError,
    UnitOfWork,
    is_transient_failure,
)


def _session(phone: str) -> RegistrationSession:
    return RegistrationSession(phone_number=phone)


async def _count_sessions(uow_factory) -> int:
    async with uow_factory() as uow:
        return await uow.repository(RegistrationSession).count()


@pytest.mark.unit
@pytest.mark.asyncio
class TestTransactions:

    async def test_commit_persists_writes(self, uow, uow_factory):
        await uow.begin_transaction()
        await uow.repository(RegistrationSession).add(_session("+15550000001"))
        await uow.commit()

        assert await _count_sessions(uow_factory) == 1

    async def test_rollback_discards_writes(self, uow, uow_factory):
        await uow.begin_transaction()
        await uow.repository(RegistrationSession).add(_session("+15550000001"))
        await uow.save_changes()
        await uow.rollback()

        assert await _count_sessions(uow_factory) == 0

    async def test_begin_twice_raises(self, uow):
        await uow.begin_transaction()
        with pytest.raises(TransactionStateError):
            await uow.begin_transaction()

    async def test_commit_without_transaction_raises(self, uow):
        with pytest.raises(TransactionStateError):
            await uow.commit()

    async def test_begin_after_read_adopts_autobegun_transaction(self, uow, uow_factory):
        await uow.repository(RegistrationSession).count()
        await uow.begin_transaction()
        await uow.repository(RegistrationSession).add(_session("+15550000001"))
        await uow.commit()

        assert await _count_sessions(uow_factory) == 1

    async def test_save_changes_returns_pending_count(self, uow):
        repo = uow.repository(RegistrationSession)
        await repo.add_range([_session("+15550000001"), _session("+15550000002")])

        assert await uow.save_changes() == 2
        assert await uow.save_changes() == 0


@pytest.mark.unit
@pytest.mark.asyncio
class TestExecuteInTransaction:

    async def test_returns_operation_result_and_commits(self, uow, uow_factory):
        async def _work():
            await uow.repository(RegistrationSession).add(_session("+15550000001"))
            return "done"

        assert await uow.execute_in_transaction(_work) == "done"
        assert not uow.in_transaction
        assert await _count_sessions(uow_factory) == 1

    async def test_exception_rolls_back_and_propagates(self, uow, uow_factory):
        async def _work():
            await uow.repository(RegistrationSession).add(_session("+15550000001"))
            await uow.save_changes()
            raise ValueError("boom")

        with pytest.raises(ValueError, match="boom"):
            await uow.execute_in_transaction(_work)

        assert not uow.in_transaction
        assert await _count_sessions(uow_factory) == 0

    async def test_cancellation_rolls_back(self, uow, uow_factory):
        async def _work():
            await uow.repository(RegistrationSession).add(_session("+15550000001"))
            await uow.save_changes()
            raise asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            await uow.execute_in_transaction(_work)

        assert await _count_sessions(uow_factory) == 0

    async def test_nested_calls_join_the_outer_transaction(self, uow, uow_factory):
        async def _inner():
            await uow.repository(RegistrationSession).add(_session("+15550000002"))
            return uow.in_transaction

        async def _outer():
            await uow.repository(RegistrationSession).add(_session("+15550000001"))
            return await uow.execute_in_transaction(_inner)

        assert await uow.execute_in_transaction(_outer) is True
        assert await _count_sessions(uow_factory) == 2

    async def test_failure_after_nested_success_rolls_back_both(self, uow, uow_factory):
        async def _inner():
            await uow.repository(RegistrationSession).add(_session("+15550000002"))

        async def _outer():
            await uow.repository(RegistrationSession).add(_session("+15550000001"))
            await uow.execute_in_transaction(_inner)
            await uow.save_changes()
            raise RuntimeError("outer failed")

        with pytest.raises(RuntimeError):
            await uow.execute_in_transaction(_outer)

        assert await _count_sessions(uow_factory) == 0


@pytest.mark.unit
@pytest.mark.asyncio
class TestRepositoryScope:

    async def test_repository_is_cached_within_a_scope(self, uow):
        assert uow.repository(RegistrationSession) is uow.repository(RegistrationSession)

    async def test_repository_is_stale_after_commit(self, uow):
        repo = uow.repository(RegistrationSession)
        await uow.execute_in_transaction(lambda: repo.count())

        with pytest.raises(StaleRepositoryError):
            await repo.count()
        assert uow.repository(RegistrationSession) is not repo
        assert await uow.repository(RegistrationSession).count() == 0

    async def test_repository_is_stale_after_rollback(self, uow):
        repo = uow.repository(RegistrationSession)
        await uow.begin_transaction()
        await uow.rollback()

        with pytest.raises(StaleRepositoryError):
            await repo.any()


@pytest.mark.unit
@pytest.mark.asyncio
class TestLifecycle:

    async def test_close_rolls_back_open_transaction(self, uow_factory):
        uow = uow_factory()
        await uow.begin_transaction()
        await uow.repository(RegistrationSession).add(_session("+15550000001"))
        await uow.save_changes()
        await uow.close()

        assert await _count_sessions(uow_factory) == 0

    async def test_entities_read_outside_a_transaction_survive_close(self, uow, uow_factory):
        await uow.execute_in_transaction(
            lambda: uow.repository(RegistrationSession).add(_session("+15550000001"))
        )

        async with uow_factory() as reader:
            loaded = await reader.repository(RegistrationSession).first(
                RegistrationSession.phone_number == "+15550000001"
            )

        assert loaded.phone_number == "+15550000001"
        assert loaded.is_phone_verified is False

    async def test_closed_unit_of_work_rejects_use(self, uow_factory):
        async with uow_factory() as uow:
            repo = uow.repository(RegistrationSession)

        with pytest.raises(StaleRepositoryError):
            await repo.count()
        with pytest.raises(TransactionStateError):
            uow.session

    async def test_close_is_idempotent(self, uow_factory):
        uow = uow_factory()
        await uow.close()
        await uow.close()

    async def test_can_connect(self, uow):
        assert await uow.can_connect() is True

    async def test_can_connect_reports_unreachable_database(self, tmp_path):
        engine = create_async_engine(
            f"sqlite+aiosqlite:///{tmp_path / 'missing-dir' / 'db.sqlite'}"
        )
        factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        try:
            async with UnitOfWork(factory) as uow:
                assert await uow.can_connect() is False
        finally:
            await engine.dispose()


class _DriverError(Exception):
    def __init__(self, message: str, sqlstate: str | None = None):
        super().__init__(message)
        self.sqlstate = sqlstate


@pytest.mark.unit
class TestTransientFailureDetection:

    def test_serialization_failure_is_transient(self):
        exc = OperationalError("UPDATE x", {}, _DriverError("could not serialize", "40001"))
        assert is_transient_failure(exc)

    def test_deadlock_is_transient(self):
        exc = OperationalError("UPDATE x", {}, _DriverError("deadlock detected", "40P01"))
        assert is_transient_failure(exc)

    def test_sqlite_lock_is_transient(self):
        exc = OperationalError("INSERT", {}, _DriverError("database is locked"))
        assert is_transient_failure(exc)

    def test_other_errors_are_not_transient(self):
        assert not is_transient_failure(
            OperationalError("SELECT 1", {}, _DriverError("no such table", "42P01"))
        )
        assert not is_transient_failure(ValueError("nope"))
