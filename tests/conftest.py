import os

os.environ.setdefault("TELEMETRY_ENABLED", "false")
os.environ.setdefault("LEDGER_BACKEND", "mock")

import httpx
import pytest

from app.main import app
from app.services.reconciler import DeliveryReconciler, ReconcilerConfig
from app.services.runtime import get_reconciler

from tests.fakes import FIXED_NOW, FakeLedgerClient, InMemoryRecordStore, ScriptedConfirmationSource, instant_sleep


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def ledger() -> FakeLedgerClient:
    return FakeLedgerClient()


@pytest.fixture
def source() -> ScriptedConfirmationSource:
    return ScriptedConfirmationSource({"status": "in_transit"})


@pytest.fixture
async def make_reconciler(store, ledger, source):
    created: list[DeliveryReconciler] = []

    def _make(**overrides) -> DeliveryReconciler:
        config = overrides.pop("config", None) or ReconcilerConfig(
            max_attempts=overrides.pop("max_attempts", 1_000),
            poll_interval_seconds=60.0,
            confirmation_timeout_seconds=overrides.pop("confirmation_timeout_seconds", 5.0),
            ledger_timeout_seconds=overrides.pop("ledger_timeout_seconds", 120.0),
            shutdown_grace_seconds=1.0,
        )
        reconciler = DeliveryReconciler(
            store=overrides.pop("store", store),
            confirmation_source=overrides.pop("confirmation_source", source),
            ledger=overrides.pop("ledger", ledger),
            config=config,
            sleep=overrides.pop("sleep", instant_sleep),
            clock=overrides.pop("clock", lambda: FIXED_NOW),
        )
        created.append(reconciler)
        return reconciler

    yield _make

    for reconciler in created:
        await reconciler.shutdown(grace_seconds=0)


@pytest.fixture
def reconciler(make_reconciler) -> DeliveryReconciler:
    return make_reconciler()


@pytest.fixture
async def client(reconciler):
    """
    HTTP client wired to a reconciler backed by in-memory fakes.
    """
    async def _override_get_reconciler():
        return reconciler

    app.dependency_overrides[get_reconciler] = _override_get_reconciler

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
