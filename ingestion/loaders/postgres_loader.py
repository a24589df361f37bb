"""
Load mapped feed records into PostgreSQL with upsert logic (idempotency)
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import settings
from core.exceptions import DatabaseConnectionError, DatabaseError, SyncException
from ingestion.resilience.circuit_breaker import CircuitBreaker
from ingestion.resilience.retry import RetryPolicy, with_retry
import logging

logger = logging.getLogger(__name__)

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


@dataclass
class UpsertResult:
    table: str
    successful: int = 0
    failed: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    committed_keys: List[str] = field(default_factory=list)
    failed_chunks: List[int] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed == 0


class PostgresLoader:
    """
    Chunked, idempotent writer for the replicated tables.

    Ensures:
    - INSERT ... ON CONFLICT DO UPDATE, so replays converge to the same rows
    - One transaction per chunk; a failing chunk does not stop the others
    - Every chunk write is retried and guarded by the sink's circuit breaker
    """

    def __init__(
        self,
        session_maker: async_sessionmaker,
        circuit_breaker: Optional[CircuitBreaker] = None,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.session_maker = session_maker
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            "sink",
            failure_threshold=settings.CIRCUIT_FAILURE_THRESHOLD,
            recovery_timeout=settings.CIRCUIT_RECOVERY_TIMEOUT,
            half_open_max_calls=settings.CIRCUIT_HALF_OPEN_MAX_CALLS,
        )
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self._sleep = sleep

    async def upsert(
        self,
        model,
        records: List[Dict[str, Any]],
        conflict_key: str,
        chunk_size: Optional[int] = None,
    ) -> UpsertResult:
        """
        Upsert rows into ``model``'s table in chunks.

        Args:
            model: ORM model class
            records: Mapped rows (column name -> value)
            conflict_key: Unique column for ON CONFLICT
            chunk_size: Rows per transaction

        Returns:
            UpsertResult with the keys that were actually committed
        """
        table = model.__tablename__
        result = UpsertResult(table=table)
        if not records:
            return result

        # Last occurrence wins; ON CONFLICT cannot touch one row twice per statement
        deduped: Dict[Any, Dict[str, Any]] = {}
        for row in records:
            deduped[row[conflict_key]] = row
        rows = list(deduped.values())

        chunk_size = chunk_size or settings.DB_CHUNK_SIZE

        for index, start in enumerate(range(0, len(rows), chunk_size)):
            chunk = rows[start:start + chunk_size]

            async def write(chunk=chunk) -> None:
                await self._write_chunk(model, chunk, conflict_key)

            async def retried(write=write) -> None:
                await with_retry(write, self.retry_policy, description=f"upsert {table}", sleep=self._sleep)

            try:
                await self.circuit_breaker.call(retried)
            except SyncException as e:
                result.failed += len(chunk)
                result.failed_chunks.append(index)
                result.errors.append(e.to_dict())
                logger.error(
                    f"Chunk {index + 1} of {table} failed ({len(chunk)} rows): {e.message}",
                    extra={"error_context": e.to_dict()}
                )
                continue

            result.successful += len(chunk)
            result.committed_keys.extend(str(row[conflict_key]) for row in chunk)

        logger.info(f"Upserted {result.successful}/{len(rows)} rows into {table} ({result.failed} failed)")
        return result

    def _insert_for(self, session: AsyncSession):
        dialect = session.bind.dialect.name
        try:
            return _INSERTS[dialect]
        except KeyError:
            raise DatabaseError(
                f"Upsert not supported for dialect '{dialect}'",
                context={"operation": "UPSERT", "dialect": dialect}
            )

    async def _write_chunk(self, model, rows: List[Dict[str, Any]], conflict_key: str) -> None:
        table = model.__tablename__
        async with self.session_maker() as session:
            try:
                stmt = self._insert_for(session)(model).values(rows)

                columns = {name for row in rows for name in row.keys()}
                set_ = {name: stmt.excluded[name] for name in columns if name != conflict_key}
                if "synced_at" in model.__table__.c:
                    set_["synced_at"] = func.now()

                stmt = stmt.on_conflict_do_update(index_elements=[conflict_key], set_=set_)
                await session.execute(stmt)
                await session.commit()
            except (OperationalError, InterfaceError, OSError) as e:
                await session.rollback()
                raise DatabaseConnectionError(
                    f"Database connection failed during upsert into {table}",
                    context={"operation": "UPSERT", "table_name": table, "rows": len(rows)},
                    original_exception=e
                )
            except SQLAlchemyError as e:
                await session.rollback()
                raise DatabaseError(
                    f"Upsert into {table} failed",
                    context={"operation": "UPSERT", "table_name": table, "rows": len(rows)},
                    original_exception=e
                )

    async def count(self, model) -> int:
        async with self.session_maker() as session:
            result = await session.execute(select(func.count()).select_from(model))
            return int(result.scalar_one())

    async def read_keys(self, model, key_column: str, after: Optional[str], limit: int) -> List[str]:
        """
        Read up to ``limit`` keys greater than ``after``, in key order.

        Raises:
            DatabaseError: If the read fails
        """
        column = getattr(model, key_column)
        stmt = select(column).order_by(column).limit(limit)
        if after is not None:
            stmt = stmt.where(column > after)

        try:
            async with self.session_maker() as session:
                result = await session.execute(stmt)
                return [str(key) for key in result.scalars().all()]
        except (OSError, SQLAlchemyError) as e:
            raise DatabaseError(
                f"Failed to read keys from {model.__tablename__}",
                context={"operation": "SELECT", "table_name": model.__tablename__, "after": after},
                original_exception=e
            )
