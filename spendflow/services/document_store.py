"""
Document store for SpendFlow.

Thin record-oriented layer over an async SQLAlchemy engine:

- get / query / create / update / delete on any model
- compare_and_set: conditional UPDATE that reports whether it applied
- transaction(): atomic scope, everything inside commits or nothing does
- subscribe(): push listeners invoked with each change after commit

Driver failures are translated into the StoreError hierarchy so callers
never depend on SQLAlchemy exception types.

Usage:
    store = DocumentStore.from_url("sqlite+aiosqlite:///./spendflow.db")
    await store.init_schema()

    async with store.transaction() as tx:
        applied = await tx.compare_and_set(
            RecurringExpense, expense_id, condition, last_processed=today
        )
        await tx.create(Transaction, user_id=user_id, amount=amount, ...)
"""

from __future__ import annotations

import inspect
import logging
from collections import defaultdict
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, TypeVar

from sqlalchemy import delete, select, update
from sqlalchemy.exc import DisconnectionError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql import ColumnElement

from spendflow.lib.circuit_breaker import is_quota_error
from spendflow.lib.exceptions import (
    NotFoundError,
    QuotaExceededError,
    StoreError,
    TransientStoreError,
)
from spendflow.models import Base

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=Base)
ChangeListener = Callable[["StoreChange"], Awaitable[None] | None]


@dataclass(frozen=True)
class StoreChange:
    """A committed change to one record."""

    model: type[Base]
    entity_id: str
    operation: str  # created | updated | deleted
    values: dict[str, Any] = field(default_factory=dict)


def translate_error(exc: SQLAlchemyError) -> StoreError:
    """Map a SQLAlchemy/driver error onto the StoreError hierarchy."""
    if is_quota_error(exc):
        return QuotaExceededError(str(exc))
    if isinstance(exc, (OperationalError, DisconnectionError, PoolTimeoutError)):
        return TransientStoreError(str(exc))
    return StoreError(str(exc))


class StoreTransaction:
    """Operations bound to one open database transaction."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.changes: list[StoreChange] = []

    async def get(self, model: type[ModelT], entity_id: str) -> ModelT | None:
        return await self.session.get(model, entity_id)

    async def query(
        self,
        model: type[ModelT],
        *conditions: ColumnElement[bool],
        order_by: Any = None,
        limit: int | None = None,
        **equals: Any,
    ) -> list[ModelT]:
        """Select records matching every ``field=value`` pair and extra conditions."""
        stmt = select(model).filter_by(**equals)
        if conditions:
            stmt = stmt.where(*conditions)
        if order_by is not None:
            stmt = stmt.order_by(order_by)
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def create(self, model: type[ModelT], **values: Any) -> ModelT:
        record = model(**values)
        self.session.add(record)
        await self.session.flush()
        self.changes.append(StoreChange(model, record.id, "created", record.to_dict()))
        return record

    async def update(self, model: type[ModelT], entity_id: str, **values: Any) -> ModelT:
        """Partial update. Raises NotFoundError if the record does not exist."""
        record = await self.session.get(model, entity_id)
        if record is None:
            raise NotFoundError(model.__name__, entity_id)
        for key, value in values.items():
            setattr(record, key, value)
        await self.session.flush()
        self.changes.append(StoreChange(model, entity_id, "updated", record.to_dict()))
        return record

    async def delete(self, model: type[ModelT], entity_id: str) -> bool:
        result = await self.session.execute(delete(model).where(model.id == entity_id))
        if result.rowcount:
            self.changes.append(StoreChange(model, entity_id, "deleted"))
            return True
        return False

    async def compare_and_set(
        self,
        model: type[ModelT],
        entity_id: str,
        condition: ColumnElement[bool],
        **values: Any,
    ) -> bool:
        """
        Apply ``values`` only if ``condition`` still holds for the stored row.

        Runs as a single conditional UPDATE, so two concurrent callers can
        never both see True for the same transition.
        """
        stmt = (
            update(model)
            .where(model.id == entity_id, condition)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            return False
        self.changes.append(StoreChange(model, entity_id, "updated", dict(values)))
        return True


class DocumentStore:
    """
    Record store over an async SQLAlchemy engine.

    Records returned from the store stay readable after their transaction
    closes (sessions are created with ``expire_on_commit=False``).
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine
        self._session_factory = async_sessionmaker(engine, expire_on_commit=False)
        self._listeners: dict[type[Base], list[ChangeListener]] = defaultdict(list)

    @classmethod
    def from_url(cls, database_url: str, **engine_kwargs: Any) -> DocumentStore:
        """Build a store for ``database_url``. In-memory SQLite shares one connection."""
        if database_url.startswith("sqlite") and ":memory:" in database_url:
            engine_kwargs.setdefault("poolclass", StaticPool)
            engine_kwargs.setdefault("connect_args", {"check_same_thread": False})
        return cls(create_async_engine(database_url, **engine_kwargs))

    async def init_schema(self) -> None:
        """Create all tables that do not exist yet."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("store_schema_ready tables=%d", len(Base.metadata.tables))

    async def dispose(self) -> None:
        await self.engine.dispose()

    async def ping(self) -> None:
        """Round-trip a trivial statement. Raises StoreError on failure."""
        try:
            async with self.engine.connect() as conn:
                await conn.exec_driver_sql("SELECT 1")
        except SQLAlchemyError as exc:
            raise translate_error(exc) from exc

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, model: type[Base], listener: ChangeListener) -> Callable[[], None]:
        """
        Register a listener for committed changes to ``model``.

        Returns:
            Callable that removes the listener
        """
        self._listeners[model].append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners[model]:
                self._listeners[model].remove(listener)

        return unsubscribe

    async def _publish(self, changes: list[StoreChange]) -> None:
        for change in changes:
            for listener in list(self._listeners.get(change.model, ())):
                try:
                    result = listener(change)
                    if inspect.isawaitable(result):
                        await result
                except Exception:
                    # a broken listener must not undo a committed write
                    logger.exception(
                        "store_listener_failed model=%s entity_id=%s",
                        change.model.__name__,
                        change.entity_id,
                    )

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StoreTransaction]:
        """
        Atomic scope: commits on normal exit, rolls back on any exception.

        Raises:
            StoreError: Translated driver failure (rolled back)
        """
        session = self._session_factory()
        tx = StoreTransaction(session)
        try:
            async with session.begin():
                yield tx
        except SQLAlchemyError as exc:
            raise translate_error(exc) from exc
        finally:
            await session.close()
        await self._publish(tx.changes)

    # ------------------------------------------------------------------
    # Single-operation helpers (one transaction each)
    # ------------------------------------------------------------------

    async def get(self, model: type[ModelT], entity_id: str) -> ModelT | None:
        async with self.transaction() as tx:
            return await tx.get(model, entity_id)

    async def get_owned(self, model: type[ModelT], entity_id: str, user_id: str) -> ModelT:
        """Fetch a record owned by ``user_id``. Raises NotFoundError otherwise."""
        record = await self.get(model, entity_id)
        if record is None or getattr(record, "user_id", None) != user_id:
            raise NotFoundError(model.__name__, entity_id)
        return record

    async def query(
        self,
        model: type[ModelT],
        *conditions: ColumnElement[bool],
        order_by: Any = None,
        limit: int | None = None,
        **equals: Any,
    ) -> list[ModelT]:
        async with self.transaction() as tx:
            return await tx.query(model, *conditions, order_by=order_by, limit=limit, **equals)

    async def create(self, model: type[ModelT], **values: Any) -> ModelT:
        async with self.transaction() as tx:
            return await tx.create(model, **values)

    async def update(self, model: type[ModelT], entity_id: str, **values: Any) -> ModelT:
        async with self.transaction() as tx:
            return await tx.update(model, entity_id, **values)

    async def delete(self, model: type[ModelT], entity_id: str) -> bool:
        async with self.transaction() as tx:
            return await tx.delete(model, entity_id)

    async def compare_and_set(
        self,
        model: type[ModelT],
        entity_id: str,
        condition: ColumnElement[bool],
        **values: Any,
    ) -> bool:
        async with self.transaction() as tx:
            return await tx.compare_and_set(model, entity_id, condition, **values)
