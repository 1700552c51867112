from __future__ import annotations

import asyncio
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Iterable

from app.ledger.base import LedgerResult
from app.models.delivery import DeliveryRecord
from app.services.confirmation import DeliverySignal, parse_delivery_signal
from app.services.delivery_state import IN_TRANSIT, status_rank


_COLUMNS = [c.name for c in DeliveryRecord.__table__.columns]


class InMemoryRecordStore:
    """
    RecordStore with the same guarded-update semantics as SqlRecordStore.
    Every call yields to the event loop once, like a real round trip.
    """

    def __init__(self) -> None:
        self.rows: dict[str, dict[str, Any]] = {}
        self.status_history: dict[str, list[str]] = defaultdict(list)

    def _snapshot(self, delivery_id: str) -> DeliveryRecord:
        return DeliveryRecord(**self.rows[delivery_id])

    def seed(self, **fields: Any) -> None:
        row = {name: None for name in _COLUMNS}
        row.update(status=IN_TRANSIT, attempts=0)
        row.update(fields)
        self.rows[row["id"]] = row
        self.status_history[row["id"]].append(row["status"])

    async def upsert(self, *, delivery_id: str, callback: str, pharmacist: str | None) -> DeliveryRecord:
        await asyncio.sleep(0)
        row = self.rows.get(delivery_id)
        if row is None:
            self.seed(id=delivery_id, callback=callback, pharmacist=pharmacist)
        elif row["status"] == IN_TRANSIT:
            row["pharmacist"] = pharmacist
        return self._snapshot(delivery_id)

    async def get_by_id(self, delivery_id: str) -> DeliveryRecord | None:
        await asyncio.sleep(0)
        if delivery_id not in self.rows:
            return None
        return self._snapshot(delivery_id)

    async def update_partial(
        self,
        delivery_id: str,
        fields: dict[str, Any],
        *,
        expected_statuses: Iterable[str] | None = None,
    ) -> bool:
        await asyncio.sleep(0)
        row = self.rows.get(delivery_id)
        if row is None:
            return False
        if expected_statuses is not None and row["status"] not in set(expected_statuses):
            return False
        row.update(fields)
        if "status" in fields:
            self.status_history[delivery_id].append(fields["status"])
        return True

    async def list_by_status(self, status: str) -> list[DeliveryRecord]:
        await asyncio.sleep(0)
        return [self._snapshot(k) for k, row in self.rows.items() if row["status"] == status]


class ScriptedConfirmationSource:
    """
    Replays one scripted response per check(): a payload dict, or an exception to raise.
    The last entry repeats once the script runs out.
    """

    def __init__(self, *responses: dict[str, Any] | BaseException):
        self._responses = list(responses) or [{"status": "in_transit"}]
        self.calls: list[tuple[str, str]] = []

    async def check(self, endpoint: str, *, delivery_id: str) -> DeliverySignal | None:
        self.calls.append((endpoint, delivery_id))
        idx = min(len(self.calls), len(self._responses)) - 1
        response = self._responses[idx]
        await asyncio.sleep(0)
        if isinstance(response, BaseException):
            raise response
        return parse_delivery_signal(response)


class HangingConfirmationSource:
    def __init__(self) -> None:
        self.calls = 0

    async def check(self, endpoint: str, *, delivery_id: str) -> DeliverySignal | None:
        self.calls += 1
        await asyncio.Event().wait()
        return None


class FakeLedgerClient:
    backend = "fake"

    def __init__(
        self,
        result: LedgerResult | None = None,
        *,
        blocked: bool = False,
        hang: bool = False,
        error: BaseException | None = None,
    ):
        self.result = result or LedgerResult.success("0x" + "ab" * 32)
        self.error = error
        self.calls: list[dict[str, Any]] = []
        self._gate = asyncio.Event()
        if not blocked:
            self._gate.set()
        self._hang = hang

    def release(self) -> None:
        self._gate.set()

    async def submit(self, *, record_hash: str, timestamp: int, pharmacist: str) -> LedgerResult:
        self.calls.append({"record_hash": record_hash, "timestamp": timestamp, "pharmacist": pharmacist})
        if self._hang:
            await asyncio.Event().wait()
        await self._gate.wait()
        if self.error is not None:
            raise self.error
        return self.result

    async def aclose(self) -> None:
        return None


FIXED_NOW = datetime(2026, 10, 19, 9, 30, 0, tzinfo=timezone.utc)


async def instant_sleep(seconds: float) -> None:
    # keeps the poll loop cooperative without waiting on the wall clock
    await asyncio.sleep(0)


async def drain(reconciler, *, max_spins: int = 10_000) -> None:
    """Run the loop until every poller has finished."""
    for _ in range(max_spins):
        if not reconciler.active_pollers:
            return
        await asyncio.sleep(0)
    raise AssertionError(f"pollers still running: {reconciler.active_pollers}")


async def spin_until(predicate, *, max_spins: int = 10_000) -> None:
    for _ in range(max_spins):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


def assert_monotonic(store: InMemoryRecordStore, delivery_id: str) -> None:
    ranks = [status_rank(s) for s in store.status_history[delivery_id]]
    assert ranks == sorted(ranks), store.status_history[delivery_id]
