from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request

from app.core.config import Settings
from app.core.db import SessionLocal
from app.ledger.base import LedgerClient
from app.ledger.registry import get_ledger_client
from app.services.confirmation import HttpConfirmationSource
from app.services.http_client import JsonHttpClient
from app.services.reconciler import DeliveryReconciler, ReconcilerConfig
from app.services.record_store import SqlRecordStore


@dataclass
class Runtime:
    reconciler: DeliveryReconciler
    confirmation_source: HttpConfirmationSource
    ledger: LedgerClient

    async def aclose(self) -> None:
        await self.reconciler.shutdown()
        await self.confirmation_source.aclose()
        await self.ledger.aclose()


def build_runtime(settings: Settings) -> Runtime:
    confirmation_source = HttpConfirmationSource(
        JsonHttpClient(timeout_seconds=settings.confirmation_timeout_seconds)
    )
    ledger = get_ledger_client(settings)
    reconciler = DeliveryReconciler(
        store=SqlRecordStore(SessionLocal),
        confirmation_source=confirmation_source,
        ledger=ledger,
        config=ReconcilerConfig.from_settings(settings),
    )
    return Runtime(reconciler=reconciler, confirmation_source=confirmation_source, ledger=ledger)


async def get_reconciler(request: Request) -> DeliveryReconciler:
    return request.app.state.runtime.reconciler
