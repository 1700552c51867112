from __future__ import annotations

from typing import Any, Iterable, Protocol

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.sql import func

from app.models.delivery import DeliveryRecord
from app.services.delivery_state import IN_TRANSIT


class RecordStore(Protocol):
    async def upsert(self, *, delivery_id: str, callback: str, pharmacist: str | None) -> DeliveryRecord:
        """Create an in_transit record, or refresh pre-delivery fields of an in_transit one."""
        ...

    async def get_by_id(self, delivery_id: str) -> DeliveryRecord | None:
        ...

    async def update_partial(
        self,
        delivery_id: str,
        fields: dict[str, Any],
        *,
        expected_statuses: Iterable[str] | None = None,
    ) -> bool:
        """
        Apply all fields in one statement. When expected_statuses is given the write
        only lands if the current status is one of them. Returns False if nothing was updated.
        """
        ...

    async def list_by_status(self, status: str) -> list[DeliveryRecord]:
        ...


class SqlRecordStore:
    """Postgres-backed store. Each call runs in its own short transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def upsert(self, *, delivery_id: str, callback: str, pharmacist: str | None) -> DeliveryRecord:
        stmt = (
            insert(DeliveryRecord)
            .values(id=delivery_id, callback=callback, pharmacist=pharmacist, status=IN_TRANSIT, attempts=0)
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[DeliveryRecord.id],
            set_={"pharmacist": stmt.excluded.pharmacist, "updated_at": func.now()},
            where=DeliveryRecord.status == IN_TRANSIT,
        )
        async with self._session_factory() as db:
            await db.execute(stmt)
            await db.commit()
            # conflicting rows past in_transit are not returned by RETURNING, so read back
            row = (await db.execute(select(DeliveryRecord).where(DeliveryRecord.id == delivery_id))).scalar_one()
            return row

    async def get_by_id(self, delivery_id: str) -> DeliveryRecord | None:
        async with self._session_factory() as db:
            return (await db.execute(select(DeliveryRecord).where(DeliveryRecord.id == delivery_id))).scalar_one_or_none()

    async def update_partial(
        self,
        delivery_id: str,
        fields: dict[str, Any],
        *,
        expected_statuses: Iterable[str] | None = None,
    ) -> bool:
        stmt = update(DeliveryRecord).where(DeliveryRecord.id == delivery_id)
        if expected_statuses is not None:
            stmt = stmt.where(DeliveryRecord.status.in_(list(expected_statuses)))
        stmt = stmt.values(**fields, updated_at=func.now()).execution_options(synchronize_session=False)

        async with self._session_factory() as db:
            result = await db.execute(stmt)
            await db.commit()
        return int(result.rowcount or 0) > 0

    async def list_by_status(self, status: str) -> list[DeliveryRecord]:
        async with self._session_factory() as db:
            stmt = select(DeliveryRecord).where(DeliveryRecord.status == status).order_by(DeliveryRecord.created_at.asc())
            return list((await db.execute(stmt)).scalars().all())
