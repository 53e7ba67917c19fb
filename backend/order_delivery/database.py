"""Database engine, session factory, and declarative base.

One DeclarativeBase for every table (staging sessions and permanent
accounts live in the same schema so finalization can touch both inside a
single transaction).

Request handlers do not use sessions directly; they get a UnitOfWork from
`get_unit_of_work()` (see order_delivery.unit_of_work) which owns the
session.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase

from order_delivery.config import settings


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine; pool sizing only applies to server databases."""
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=echo)
    return create_async_engine(
        url,
        echo=echo,
        pool_size=20,
        max_overflow=10,
        pool_pre_ping=True,
    )


engine = build_engine(settings.database_url, echo=settings.debug)

async_session = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


class Base(DeclarativeBase):
    """Base class for all mapped tables."""
    pass
