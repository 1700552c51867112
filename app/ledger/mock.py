from __future__ import annotations

from dataclasses import dataclass

from app.ledger.base import LedgerResult
from app.services.hashing import keccak_hex


@dataclass(frozen=True)
class MockLedgerEntry:
    record_hash: str
    timestamp: int
    pharmacist: str
    tx_ref: str


class MockLedgerClient:
    """In-process ledger for local development; keeps entries in memory."""

    backend = "mock"

    def __init__(self) -> None:
        self.entries: list[MockLedgerEntry] = []

    async def submit(self, *, record_hash: str, timestamp: int, pharmacist: str) -> LedgerResult:
        if not record_hash.startswith("0x") or len(record_hash) != 66:
            return LedgerResult.failure("INVALID_HASH", f"expected bytes32 hex, got {record_hash!r}")

        tx_ref = keccak_hex(f"{len(self.entries)}:{record_hash}:{timestamp}:{pharmacist}")
        self.entries.append(MockLedgerEntry(record_hash=record_hash, timestamp=timestamp, pharmacist=pharmacist, tx_ref=tx_ref))
        return LedgerResult.success(tx_ref, block_number=len(self.entries))

    async def aclose(self) -> None:
        return None
