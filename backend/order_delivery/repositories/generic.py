"""Generic async repository over one mapped entity.

Predicates are plain SQLAlchemy column expressions:

    repo = uow.repository(RegistrationSession)
    session = await repo.first(RegistrationSession.phone_number == phone)
    page = await repo.get_paged(
        1, 20,
        RegistrationSession.is_phone_verified == True,  # noqa: E712
        order_by=RegistrationSession.created_at,
        ascending=False,
    )

Related rows are only ever loaded eagerly through `includes=`; the
models declare their relationships with lazy="raise".

A repository has no commit authority. Writes are buffered in the owning
UnitOfWork's session and take effect when that unit of work commits.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, Iterable, Sequence, TypeVar

from sqlalchemy import delete, func, select, text
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import QueryableAttribute, selectinload

if TYPE_CHECKING:
    from order_delivery.unit_of_work import UnitOfWork

ModelT = TypeVar("ModelT")


class StaleRepositoryError(RuntimeError):
    """Repository used after its unit of work committed, rolled back or closed."""
    pass


@dataclass
class Page(Generic[ModelT]):
    items: list[ModelT]
    total_count: int
    page_number: int
    page_size: int

    @property
    def has_next(self) -> bool:
        return self.page_number * self.page_size < self.total_count


class Repository(Generic[ModelT]):
    def __init__(self, uow: UnitOfWork, model: type[ModelT]):
        self._uow = uow
        self._scope = uow.scope
        self.model = model

    @property
    def session(self) -> AsyncSession:
        if self._scope != self._uow.scope:
            raise StaleRepositoryError(
                f"{self.model.__name__} repository belongs to a finished unit-of-work scope"
            )
        return self._uow.session

    # ── Statement building ──────────────────────────────────

    def _select(
        self,
        criteria: Sequence[Any] = (),
        includes: Iterable[Any] = (),
        order_by: Any = None,
        ascending: bool = True,
    ):
        stmt = select(self.model).where(*criteria)
        for include in includes:
            if isinstance(include, QueryableAttribute):
                include = selectinload(include)
            stmt = stmt.options(include)
        if order_by is not None:
            stmt = stmt.order_by(order_by.asc() if ascending else order_by.desc())
        return stmt

    # ── Queries ─────────────────────────────────────────────

    async def get_by_id(self, id: Any, includes: Iterable[Any] = ()) -> ModelT | None:
        options = [
            selectinload(i) if isinstance(i, QueryableAttribute) else i
            for i in includes
        ]
        return await self.session.get(self.model, id, options=options or None)

    async def get_all(self, includes: Iterable[Any] = ()) -> list[ModelT]:
        result = await self.session.execute(self._select(includes=includes))
        return list(result.scalars().all())

    async def find(
        self,
        *criteria: Any,
        includes: Iterable[Any] = (),
        order_by: Any = None,
        ascending: bool = True,
    ) -> list[ModelT]:
        stmt = self._select(criteria, includes, order_by, ascending)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def first(
        self,
        *criteria: Any,
        includes: Iterable[Any] = (),
        refresh: bool = False,
        for_update: bool = False,
    ) -> ModelT | None:
        """First match or None.

        refresh=True overwrites any copy already in the identity map with
        the row as the database sees it now; for_update=True takes a row
        lock where the backend supports it.
        """
        stmt = self._select(criteria, includes).limit(1)
        if for_update:
            stmt = stmt.with_for_update()
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def any(self, *criteria: Any) -> bool:
        stmt = select(select(self.model).where(*criteria).exists())
        return bool(await self.session.scalar(stmt))

    async def count(self, *criteria: Any) -> int:
        stmt = select(func.count()).select_from(self.model).where(*criteria)
        return int(await self.session.scalar(stmt) or 0)

    async def get_paged(
        self,
        page_number: int,
        page_size: int,
        *criteria: Any,
        order_by: Any = None,
        ascending: bool = True,
        includes: Iterable[Any] = (),
    ) -> Page[ModelT]:
        if page_number < 1 or page_size < 1:
            raise ValueError("page_number and page_size must be positive")

        total = await self.count(*criteria)
        stmt = (
            self._select(criteria, includes, order_by, ascending)
            .offset((page_number - 1) * page_size)
            .limit(page_size)
        )
        result = await self.session.execute(stmt)
        return Page(
            items=list(result.scalars().all()),
            total_count=total,
            page_number=page_number,
            page_size=page_size,
        )

    # ── Writes (buffered until commit) ──────────────────────

    async def add(self, entity: ModelT) -> ModelT:
        if entity is None:
            raise ValueError("entity is required")
        self.session.add(entity)
        return entity

    async def add_range(self, entities: Iterable[ModelT]) -> list[ModelT]:
        items = list(entities)
        self.session.add_all(items)
        return items

    def update(self, entity: ModelT) -> None:
        """Attach the entity so in-place changes are flushed at commit."""
        if entity is None:
            raise ValueError("entity is required")
        self.session.add(entity)

    def update_range(self, entities: Iterable[ModelT]) -> None:
        self.session.add_all(list(entities))

    async def remove(self, entity: ModelT) -> None:
        if entity is None:
            raise ValueError("entity is required")
        await self.session.delete(entity)

    async def remove_range(self, entities: Iterable[ModelT]) -> None:
        for entity in list(entities):
            await self.session.delete(entity)

    async def remove_where(self, *criteria: Any) -> list[ModelT]:
        """Delete every row matching `criteria` in one statement; returns them.

        Unlike the buffered writes this runs immediately, and the database
        evaluates the predicate at delete time.
        """
        stmt = delete(self.model).where(*criteria).returning(self.model)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # ── Raw SQL (bound parameters only) ─────────────────────

    async def from_sql(self, sql: str, **params: Any) -> list[ModelT]:
        stmt = select(self.model).from_statement(text(sql))
        result = await self.session.execute(stmt, params)
        return list(result.scalars().all())

    async def execute_sql(self, sql: str, **params: Any) -> int:
        result = await self.session.execute(text(sql), params)
        return result.rowcount
