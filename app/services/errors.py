from __future__ import annotations
from typing import Any, TYPE_CHECKING

if TYPE_CHECKING:
    from app.ledger.base import LedgerResult


class DeliveryError(Exception):
    status_code: int = 500

    def __init__(self, detail: Any, *, status_code: int | None = None):
        super().__init__(str(detail))
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code


class InvalidInput(DeliveryError):
    status_code = 400


class NotFound(DeliveryError):
    status_code = 404


class AlreadyConfirmed(DeliveryError):
    status_code = 409


class TransientPollError(DeliveryError):
    """Confirmation endpoint could not be read this cycle. Never leaves the poll loop."""

    status_code = 503

    def __init__(self, detail: Any, *, error_code: str | None = None):
        super().__init__(detail)
        self.error_code = error_code


class LedgerSubmissionError(DeliveryError):
    status_code = 502

    def __init__(self, result: LedgerResult):
        super().__init__({"error": "On-chain error", "details": result.describe()})
        self.result = result


class DeliveryTimeout(DeliveryError):
    status_code = 504
