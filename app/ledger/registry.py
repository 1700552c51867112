from app.core.config import Settings
from app.ledger.base import LedgerClient
from app.ledger.mock import MockLedgerClient
from app.ledger.web3_client import Web3LedgerClient


def _web3_client(settings: Settings) -> LedgerClient:
    return Web3LedgerClient(
        rpc_url=settings.rpc_url,
        contract_address=settings.contract_address,
        private_key=settings.deployer_private_key.get_secret_value(),
        chain_id=settings.chain_id,
        receipt_timeout_seconds=settings.ledger_timeout_seconds,
    )


LEDGER_BACKENDS = {
    "web3": _web3_client,
    "mock": lambda settings: MockLedgerClient(),
}


def get_ledger_client(settings: Settings) -> LedgerClient:
    if settings.ledger_backend not in LEDGER_BACKENDS:
        raise KeyError(f"Unknown ledger backend: {settings.ledger_backend}")
    return LEDGER_BACKENDS[settings.ledger_backend](settings)
