from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class LedgerResult:
    ok: bool
    tx_ref: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    detail: dict[str, Any] | None = None

    @classmethod
    def success(cls, tx_ref: str, **detail: Any) -> LedgerResult:
        return cls(ok=True, tx_ref=tx_ref, detail=detail or None)

    @classmethod
    def failure(cls, error_code: str, error_message: str, *, tx_ref: str | None = None) -> LedgerResult:
        return cls(ok=False, tx_ref=tx_ref, error_code=error_code, error_message=error_message)

    def describe(self) -> str:
        if self.ok:
            return f"recorded in {self.tx_ref}"
        text = f"{self.error_code}: {self.error_message}"
        if self.tx_ref:
            text += f" (tx {self.tx_ref})"
        return text


@runtime_checkable
class LedgerClient(Protocol):
    """
    Anchors a record hash on the ledger.

    submit() returns once the transaction is included (or has definitely failed).
    Failures are reported as LedgerResult(ok=False), never raised.
    """

    backend: str

    async def submit(self, *, record_hash: str, timestamp: int, pharmacist: str) -> LedgerResult:
        ...

    async def aclose(self) -> None:
        ...
