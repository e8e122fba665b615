"""
Audit store.

Single-row inserts on the write path; point lookups, filtered searches,
trails, exports and statistics on the read path. The engine's connection
pool is shared by both paths and relies on the database's own isolation.
"""

import logging
import uuid
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import and_, asc, case, desc, func, select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from ..exceptions import PersistenceError, QueryError
from .models import AuditLogRecord, Base
from .pagination import calculate_pagination, page_for_offset
from .schemas import (
    AuditLogCreate,
    AuditLogEntry,
    AuditSearchParams,
    AuditSearchResult,
    AuditStatistics,
    CountBucket,
    Severity,
    SortField,
    SortOrder,
    TimeRange,
)

logger = logging.getLogger(__name__)

STATISTICS_TOP_N = 10

SEVERITY_RANK = case(
    {severity.value: severity.rank for severity in Severity},
    value=AuditLogRecord.severity,
    else_=-1,
)

_SORT_COLUMNS = {
    SortField.OCCURRED_AT: AuditLogRecord.occurred_at,
    SortField.SERVICE_NAME: AuditLogRecord.service_name,
    SortField.SEVERITY: SEVERITY_RANK,
}


def create_engine(database_url: str, pool_size: int = 10, echo: bool = False) -> AsyncEngine:
    """Create the async engine; SQLite gets its default pool."""
    options: dict[str, Any] = {"echo": echo}
    if not database_url.startswith("sqlite"):
        options.update(pool_size=pool_size, pool_pre_ping=True)
    return create_async_engine(database_url, **options)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditStore:
    """Persists and queries audit entries."""

    def __init__(
        self,
        engine: AsyncEngine,
        retention_days: int = 2555,
        export_max_rows: int = 10000,
        clock: Callable[[], datetime] = _utcnow,
    ):
        if retention_days < 1:
            raise ValueError("retention_days must be at least 1")
        self.engine = engine
        self.retention_days = retention_days
        self.export_max_rows = export_max_rows
        self._clock = clock
        self._session_factory = async_sessionmaker(engine, expire_on_commit=False)

    @classmethod
    def from_settings(cls, settings: Any) -> "AuditStore":
        engine = create_engine(
            settings.database_url,
            pool_size=settings.database_pool_size,
            echo=settings.database_echo,
        )
        return cls(
            engine,
            retention_days=settings.retention_days,
            export_max_rows=settings.export_max_rows,
        )

    async def create_tables(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Audit tables ready")

    async def dispose(self) -> None:
        await self.engine.dispose()

    async def health_check(self) -> bool:
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Audit store health check failed: {e}")
            return False
        return True

    # Write path

    async def record(self, entry: AuditLogCreate) -> AuditLogEntry:
        """Insert one entry; a redelivered event_id returns the existing row."""
        now = self._clock()
        row = AuditLogRecord(
            id=str(uuid.uuid4()),
            event_id=entry.event_id,
            event_type=entry.event_type,
            action_type=entry.action_type,
            service_name=entry.service_name,
            user_id=entry.user_id,
            user_type=entry.user_type.value,
            session_id=entry.session_id,
            resource_type=entry.resource_type,
            resource_id=entry.resource_id,
            correlation_id=entry.correlation_id,
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
            event_data=entry.event_data,
            severity=entry.severity.value,
            compliance_tags=list(entry.compliance_tags),
            success=entry.success,
            error_message=entry.error_message,
            occurred_at=entry.occurred_at,
            retention_until=now + timedelta(days=self.retention_days),
            created_at=now,
            updated_at=now,
        )

        try:
            async with self._session_factory() as session:
                session.add(row)
                await session.commit()
        except IntegrityError as e:
            existing = await self._existing_for(entry, e)
            logger.info(f"Event {entry.event_id} already recorded as {existing.id}, skipping")
            return existing
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError(
                f"Failed to persist audit entry: {e}", event_id=entry.event_id, cause=e
            ) from e

        return AuditLogEntry.model_validate(row)

    async def _existing_for(self, entry: AuditLogCreate, error: IntegrityError) -> AuditLogEntry:
        existing = None
        if entry.event_id:
            try:
                async with self._session_factory() as session:
                    existing = await session.scalar(
                        select(AuditLogRecord).where(AuditLogRecord.event_id == entry.event_id)
                    )
            except (SQLAlchemyError, OSError) as e:
                raise PersistenceError(
                    f"Failed to look up duplicate event: {e}", event_id=entry.event_id, cause=e
                ) from e
        if existing is None:
            raise PersistenceError(
                f"Integrity error persisting audit entry: {error}",
                event_id=entry.event_id,
                cause=error,
            ) from error
        return AuditLogEntry.model_validate(existing)

    # Read paths

    async def get_by_id(self, entry_id: str) -> AuditLogEntry | None:
        try:
            async with self._session_factory() as session:
                row = await session.get(AuditLogRecord, entry_id)
        except (SQLAlchemyError, OSError) as e:
            raise QueryError(f"Failed to load audit entry {entry_id}: {e}", cause=e) from e
        return AuditLogEntry.model_validate(row) if row is not None else None

    async def search(self, params: AuditSearchParams) -> AuditSearchResult:
        conditions = _conditions(params)
        count_stmt = _filtered(select(func.count()).select_from(AuditLogRecord), conditions)
        rows_stmt = (
            _filtered(select(AuditLogRecord), conditions)
            .order_by(*_ordering(params.sort_by, params.sort_order))
            .limit(params.limit)
            .offset(params.offset)
        )

        try:
            async with self._session_factory() as session:
                total = await session.scalar(count_stmt) or 0
                rows = (await session.scalars(rows_stmt)).all()
        except (SQLAlchemyError, OSError) as e:
            raise QueryError(f"Audit search failed: {e}", cause=e) from e

        pagination = calculate_pagination(
            page_for_offset(params.offset, params.limit), params.limit, total
        )
        return AuditSearchResult(
            entries=[AuditLogEntry.model_validate(row) for row in rows],
            total=total,
            limit=params.limit,
            offset=params.offset,
            page=pagination.page,
            total_pages=pagination.total_pages,
            has_more=pagination.has_more,
        )

    async def resource_trail(
        self,
        resource_type: str,
        resource_id: str,
        sort_order: SortOrder = SortOrder.ASC,
        limit: int = 100,
        offset: int = 0,
    ) -> AuditSearchResult:
        params = AuditSearchParams(
            resource_type=resource_type,
            resource_id=resource_id,
            sort_by=SortField.OCCURRED_AT,
            sort_order=sort_order,
            limit=limit,
            offset=offset,
        )
        return await self.search(params)

    async def correlation_trail(self, correlation_id: str) -> list[AuditLogEntry]:
        """Every entry of one causal chain, oldest first."""
        stmt = (
            select(AuditLogRecord)
            .where(AuditLogRecord.correlation_id == correlation_id)
            .order_by(
                asc(AuditLogRecord.occurred_at),
                asc(AuditLogRecord.created_at),
                asc(AuditLogRecord.id),
            )
        )
        return await self._fetch(stmt, f"correlation trail {correlation_id}")

    async def export_entries(self, params: AuditSearchParams) -> list[AuditLogEntry]:
        """Search filters and ordering, ignoring paging, capped at export_max_rows."""
        stmt = (
            _filtered(select(AuditLogRecord), _conditions(params))
            .order_by(*_ordering(params.sort_by, params.sort_order))
            .limit(self.export_max_rows)
        )
        return await self._fetch(stmt, "export")

    async def recent_failures(self, hours: int = 24, limit: int = 100) -> list[AuditLogEntry]:
        since = self._clock() - timedelta(hours=hours)
        stmt = (
            select(AuditLogRecord)
            .where(AuditLogRecord.success.is_(False), AuditLogRecord.occurred_at >= since)
            .order_by(desc(AuditLogRecord.occurred_at), desc(AuditLogRecord.id))
            .limit(limit)
        )
        return await self._fetch(stmt, "recent failures")

    async def statistics(self, days: int = 30) -> AuditStatistics:
        end = self._clock()
        start = end - timedelta(days=days)
        window = AuditLogRecord.occurred_at >= start
        count = func.count(AuditLogRecord.id).label("count")

        try:
            async with self._session_factory() as session:
                total = await session.scalar(
                    select(func.count(AuditLogRecord.id)).where(window)
                ) or 0
                successful = await session.scalar(
                    select(func.count(AuditLogRecord.id)).where(
                        window, AuditLogRecord.success.is_(True)
                    )
                ) or 0
                services = await session.execute(
                    select(AuditLogRecord.service_name, count)
                    .where(window)
                    .group_by(AuditLogRecord.service_name)
                    .order_by(count.desc(), AuditLogRecord.service_name)
                    .limit(STATISTICS_TOP_N)
                )
                actions = await session.execute(
                    select(AuditLogRecord.action_type, count)
                    .where(window)
                    .group_by(AuditLogRecord.action_type)
                    .order_by(count.desc(), AuditLogRecord.action_type)
                    .limit(STATISTICS_TOP_N)
                )
                severities = await session.execute(
                    select(AuditLogRecord.severity, count)
                    .where(window)
                    .group_by(AuditLogRecord.severity)
                )
        except (SQLAlchemyError, OSError) as e:
            raise QueryError(f"Failed to compute audit statistics: {e}", cause=e) from e

        breakdown = {severity.value: 0 for severity in Severity}
        for severity, value in severities:
            breakdown[severity] = value

        return AuditStatistics(
            total_logs=total,
            successful=successful,
            failed=total - successful,
            top_services=[CountBucket(name=name, count=value) for name, value in services],
            top_actions=[CountBucket(name=name, count=value) for name, value in actions],
            severity_breakdown=breakdown,
            time_range=TimeRange(start=start, end=end, days=days),
        )

    async def _fetch(self, stmt: Any, description: str) -> list[AuditLogEntry]:
        try:
            async with self._session_factory() as session:
                rows = (await session.scalars(stmt)).all()
        except (SQLAlchemyError, OSError) as e:
            raise QueryError(f"Failed to load {description}: {e}", cause=e) from e
        return [AuditLogEntry.model_validate(row) for row in rows]


def _conditions(params: AuditSearchParams) -> list[Any]:
    record = AuditLogRecord
    equality = [
        (record.service_name, params.service_name),
        (record.action_type, params.action_type),
        (record.event_type, params.event_type),
        (record.user_id, params.user_id),
        (record.resource_type, params.resource_type),
        (record.resource_id, params.resource_id),
        (record.correlation_id, params.correlation_id),
        (record.user_type, params.user_type.value if params.user_type else None),
        (record.severity, params.severity.value if params.severity else None),
    ]
    conditions = [column == value for column, value in equality if value is not None]
    if params.success is not None:
        conditions.append(record.success.is_(params.success))
    if params.from_date is not None:
        conditions.append(record.occurred_at >= params.from_date)
    if params.to_date is not None:
        conditions.append(record.occurred_at <= params.to_date)
    return conditions


def _filtered(stmt: Any, conditions: Sequence[Any]) -> Any:
    return stmt.where(and_(*conditions)) if conditions else stmt


def _ordering(sort_by: SortField, sort_order: SortOrder) -> list[Any]:
    """Primary key column plus occurrence time and id as tiebreaks, all one direction."""
    direction = asc if sort_order is SortOrder.ASC else desc
    ordering = [direction(_SORT_COLUMNS[sort_by])]
    if sort_by is not SortField.OCCURRED_AT:
        ordering.append(direction(AuditLogRecord.occurred_at))
    ordering.append(direction(AuditLogRecord.id))
    return ordering
