from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from opentelemetry import trace
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import Settings
from app.ledger.base import LedgerClient, LedgerResult
from app.models.delivery import DeliveryRecord
from app.services.confirmation import ConfirmationSource, DeliverySignal
from app.services.delivery_state import (
    DELIVERED,
    DELIVERED_ONCHAIN_FAILED,
    IN_TRANSIT,
    ONCHAIN_RECORDED,
    TIMEOUT,
    allowed_predecessors,
)
from app.services.errors import (
    AlreadyConfirmed,
    DeliveryError,
    DeliveryTimeout,
    InvalidInput,
    LedgerSubmissionError,
    NotFound,
    TransientPollError,
)
from app.services.hashing import derive_record_hash
from app.services.record_store import RecordStore
from app.services.supervisor import TaskSupervisor


log = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso_utc(dt: datetime) -> str:
    # 2026-10-19T09:30:00.000Z
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class ReconcilerConfig:
    max_attempts: int = 60
    poll_interval_seconds: float = 60.0
    confirmation_timeout_seconds: float = 5.0
    ledger_timeout_seconds: float = 120.0
    shutdown_grace_seconds: float = 30.0

    @classmethod
    def from_settings(cls, settings: Settings) -> ReconcilerConfig:
        return cls(
            max_attempts=settings.max_attempts,
            poll_interval_seconds=settings.poll_interval_seconds,
            confirmation_timeout_seconds=settings.confirmation_timeout_seconds,
            ledger_timeout_seconds=settings.ledger_timeout_seconds,
            shutdown_grace_seconds=settings.shutdown_grace_seconds,
        )


@dataclass(frozen=True)
class RegisterResult:
    ok: bool
    id: str
    status: str
    poller_started: bool


@dataclass(frozen=True)
class ConfirmResult:
    ok: bool
    id: str
    onchain_tx: str
    record_hash: str


def _present(value: str | None) -> bool:
    return value is not None and value.strip() != ""


class DeliveryReconciler:
    """
    Drives each delivery from in_transit to a terminal status.

    One poller task per in_transit delivery checks its confirmation endpoint every
    poll interval. Once delivery is confirmed (polled, or pushed via confirm_delivery)
    the record hash is anchored on the ledger exactly once. Whoever claims a
    delivery's ledger step owns every write from `delivered` onwards.
    """

    def __init__(
        self,
        *,
        store: RecordStore,
        confirmation_source: ConfirmationSource,
        ledger: LedgerClient,
        config: ReconcilerConfig | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = utc_now,
    ):
        self._store = store
        self._confirmations = confirmation_source
        self._ledger = ledger
        self._config = config or ReconcilerConfig()
        self._sleep = sleep
        self._clock = clock

        self._pollers = TaskSupervisor("poller")
        self._ledger_claims: set[str] = set()
        self._closing = False

    @property
    def active_pollers(self) -> list[str]:
        return self._pollers.active()

    @property
    def closing(self) -> bool:
        return self._closing

    # registration

    async def register_delivery(
        self,
        delivery_id: str | None,
        confirmation_endpoint: str | None,
        pharmacist: str | None = None,
    ) -> RegisterResult:
        if not _present(delivery_id) or not _present(confirmation_endpoint):
            raise InvalidInput("deliveryId & callback required")

        record = await self._store.upsert(delivery_id=delivery_id, callback=confirmation_endpoint, pharmacist=pharmacist or None)

        started = False
        if record.status == IN_TRANSIT and not self._closing:
            started = self._start_poller(record.id, record.attempts)
        if started:
            log.info("register: delivery_id=%s poller started", delivery_id)
        else:
            log.info("register: delivery_id=%s status=%s, no new poller", delivery_id, record.status)

        return RegisterResult(ok=True, id=record.id, status=record.status, poller_started=started)

    def _start_poller(self, delivery_id: str, attempts: int) -> bool:
        return self._pollers.start(delivery_id, lambda: self._run_poller(delivery_id, attempts))

    async def resume(self) -> int:
        """Re-attach pollers to deliveries left in_transit by a previous process."""
        started = 0
        for record in await self._store.list_by_status(IN_TRANSIT):
            if self._start_poller(record.id, record.attempts):
                started += 1

        # delivered without a ledger outcome: the submission may or may not have
        # landed, so these are left for manual remediation
        for record in await self._store.list_by_status(DELIVERED):
            log.warning("resume: delivery_id=%s stuck in delivered, ledger outcome unknown", record.id)

        log.info("resume: %d pollers re-attached", started)
        return started

    # polling

    async def _run_poller(self, delivery_id: str, attempts: int) -> None:
        try:
            await self._poll_until_settled(delivery_id, attempts)
        except DeliveryTimeout as e:
            log.warning("poller: %s", e.detail)

    async def _poll_until_settled(self, delivery_id: str, attempts: int) -> None:
        while True:
            await self._sleep(self._config.poll_interval_seconds)
            attempts += 1
            with tracer.start_as_current_span("delivery.poll") as span:
                span.set_attribute("delivery.id", delivery_id)
                span.set_attribute("delivery.attempt", attempts)
                try:
                    done = await self._poll_once(delivery_id, attempts)
                except (SQLAlchemyError, OSError) as e:
                    # store hiccup: the cycle still counts against max_attempts
                    log.warning("poller: delivery_id=%s attempt=%d store error: %s", delivery_id, attempts, e)
                    done = await self._expire_if_exhausted(delivery_id, attempts)
                if done:
                    return

    async def _poll_once(self, delivery_id: str, attempts: int) -> bool:
        """One poll cycle. Returns True when the poller should stop."""
        record = await self._store.get_by_id(delivery_id)
        if record is None:
            log.info("poller: delivery_id=%s no longer exists, stopping", delivery_id)
            return True
        if record.status != IN_TRANSIT:
            log.info("poller: delivery_id=%s already %s, stopping", delivery_id, record.status)
            return True

        if not await self._store.update_partial(delivery_id, {"attempts": attempts}, expected_statuses=[IN_TRANSIT]):
            log.info("poller: delivery_id=%s moved on concurrently, stopping", delivery_id)
            return True

        signal = await self._check_confirmation(record, attempts)
        if signal is not None:
            await self._settle_polled_delivery(record, signal)
            return True

        return await self._expire_if_exhausted(delivery_id, attempts)

    async def _expire_if_exhausted(self, delivery_id: str, attempts: int) -> bool:
        if attempts < self._config.max_attempts:
            return False
        try:
            expired = await self._store.update_partial(
                delivery_id, {"status": TIMEOUT}, expected_statuses=allowed_predecessors(TIMEOUT)
            )
        except (SQLAlchemyError, OSError):
            # left in_transit, resume() picks it up on the next start
            log.exception("poller: delivery_id=%s could not be expired after %d attempts", delivery_id, attempts)
            return True
        if expired:
            raise DeliveryTimeout(f"delivery_id={delivery_id} not confirmed after {attempts} attempts")
        return True

    async def _check_confirmation(self, record: DeliveryRecord, attempts: int) -> DeliverySignal | None:
        try:
            return await asyncio.wait_for(
                self._confirmations.check(record.callback, delivery_id=record.id),
                timeout=self._config.confirmation_timeout_seconds,
            )
        except TransientPollError as e:
            log.warning("poller: delivery_id=%s attempt=%d confirmation unavailable: %s", record.id, attempts, e.detail)
        except asyncio.TimeoutError:
            log.warning("poller: delivery_id=%s attempt=%d confirmation timed out", record.id, attempts)
        return None

    async def _settle_polled_delivery(self, record: DeliveryRecord, signal: DeliverySignal) -> None:
        if self._closing:
            # left in_transit, resume() picks it up on the next start
            log.info("poller: delivery_id=%s confirmed during shutdown, deferring", record.id)
            return
        if not self._claim(record.id):
            log.info("poller: delivery_id=%s is being confirmed directly, stopping", record.id)
            return

        try:
            delivered = {
                "status": DELIVERED,
                "recipient_name": signal.recipient_name,
                "recipient_signature": signal.signature,
                "delivered_at": signal.timestamp or iso_utc(self._clock()),
                "pharmacist_reply": signal.pharmacist or record.pharmacist,
            }
            # durable before the ledger is touched
            if not await self._store.update_partial(record.id, delivered, expected_statuses=[IN_TRANSIT]):
                log.info("poller: delivery_id=%s moved on concurrently, not recording", record.id)
                return
            log.info("poller: delivery_id=%s delivered to %s", record.id, signal.recipient_name)

            await self._record_on_ledger(
                record.id,
                {
                    "id": record.id,
                    "pharmacist": record.pharmacist,
                    "recipient": delivered["recipient_name"],
                    "delivered_at": delivered["delivered_at"],
                    "pharmacist_reply": delivered["pharmacist_reply"],
                },
                pharmacist=record.pharmacist,
            )
        finally:
            self._release(record.id)

    # ledger

    def _claim(self, delivery_id: str) -> bool:
        if delivery_id in self._ledger_claims:
            return False
        self._ledger_claims.add(delivery_id)
        return True

    def _release(self, delivery_id: str) -> None:
        self._ledger_claims.discard(delivery_id)

    async def _record_on_ledger(
        self,
        delivery_id: str,
        hash_fields: dict[str, Any],
        *,
        pharmacist: str | None,
    ) -> tuple[str, LedgerResult]:
        record_hash = derive_record_hash(hash_fields)
        timestamp = int(self._clock().timestamp())

        with tracer.start_as_current_span("delivery.ledger_submit") as span:
            span.set_attribute("delivery.id", delivery_id)
            span.set_attribute("ledger.backend", self._ledger.backend)
            try:
                result = await asyncio.wait_for(
                    self._ledger.submit(record_hash=record_hash, timestamp=timestamp, pharmacist=pharmacist or ""),
                    timeout=self._config.ledger_timeout_seconds,
                )
            except asyncio.TimeoutError:
                result = LedgerResult.failure(
                    "LEDGER_TIMEOUT", f"no ledger outcome within {self._config.ledger_timeout_seconds}s"
                )
            except Exception as e:
                log.exception("ledger: delivery_id=%s submit raised", delivery_id)
                result = LedgerResult.failure("LEDGER_ERROR", f"{type(e).__name__}: {e}")
            span.set_attribute("ledger.ok", result.ok)

        if result.ok:
            await self._store.update_partial(
                delivery_id,
                {"status": ONCHAIN_RECORDED, "onchain_hash": record_hash, "onchain_txhash": result.tx_ref},
                expected_statuses=allowed_predecessors(ONCHAIN_RECORDED),
            )
            log.info("ledger: delivery_id=%s recorded hash=%s tx=%s", delivery_id, record_hash, result.tx_ref)
        else:
            await self._store.update_partial(
                delivery_id,
                {"status": DELIVERED_ONCHAIN_FAILED, "onchain_error": result.describe()},
                expected_statuses=allowed_predecessors(DELIVERED_ONCHAIN_FAILED),
            )
            log.error("ledger: delivery_id=%s submission failed: %s", delivery_id, result.describe())

        return record_hash, result

    # direct confirmation

    async def confirm_delivery(self, delivery_id: str | None, name: str | None, signature: str | None = None) -> ConfirmResult:
        if not _present(delivery_id) or not _present(name):
            raise InvalidInput("deliveryId & name required")
        if self._closing:
            raise DeliveryError("Service is shutting down", status_code=503)

        record = await self._store.get_by_id(delivery_id)
        if record is None:
            raise NotFound("Delivery not found")
        # no await between the status check and the claim
        if record.status != IN_TRANSIT:
            raise AlreadyConfirmed(f"Delivery already {record.status}")
        if not self._claim(delivery_id):
            raise AlreadyConfirmed("Delivery is already being confirmed")

        try:
            await self._pollers.cancel(delivery_id)

            delivered_at = iso_utc(self._clock())
            delivered = {
                "status": DELIVERED,
                "recipient_name": name,
                "recipient_signature": signature or None,
                "delivered_at": delivered_at,
            }
            if not await self._store.update_partial(delivery_id, delivered, expected_statuses=[IN_TRANSIT]):
                current = await self._store.get_by_id(delivery_id)
                if current is None:
                    raise NotFound("Delivery not found")
                raise AlreadyConfirmed(f"Delivery already {current.status}")
            log.info("confirm: delivery_id=%s delivered to %s", delivery_id, name)

            record_hash, result = await self._record_on_ledger(
                delivery_id,
                {"id": delivery_id, "pharmacist": record.pharmacist, "recipient": name, "delivered_at": delivered_at},
                pharmacist=record.pharmacist,
            )
        finally:
            self._release(delivery_id)

        if not result.ok:
            raise LedgerSubmissionError(result)
        return ConfirmResult(ok=True, id=delivery_id, onchain_tx=result.tx_ref, record_hash=record_hash)

    # lookup / lifecycle

    async def get_delivery(self, delivery_id: str) -> DeliveryRecord:
        record = await self._store.get_by_id(delivery_id)
        if record is None:
            raise NotFound("Delivery not found")
        return record

    async def cancel(self, delivery_id: str) -> bool:
        """Stop the poller for delivery_id. A poller inside its ledger step is left to finish."""
        if delivery_id in self._ledger_claims:
            return False
        return await self._pollers.cancel(delivery_id)

    async def shutdown(self, grace_seconds: float | None = None) -> None:
        self._closing = True
        grace = self._config.shutdown_grace_seconds if grace_seconds is None else grace_seconds

        submitting = [k for k in self._pollers.active() if k in self._ledger_claims]
        for key in self._pollers.active():
            if key not in self._ledger_claims:
                await self._pollers.cancel(key)

        if submitting:
            log.info("shutdown: waiting up to %.1fs for %d ledger submissions", grace, len(submitting))
            for key in await self._pollers.wait(submitting, timeout=grace):
                log.warning("shutdown: delivery_id=%s abandoned mid-submission, left in delivered", key)
                await self._pollers.cancel(key)
