from __future__ import annotations

import asyncio
import logging

import aiohttp
from web3 import AsyncWeb3, Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from app.ledger.base import LedgerResult


log = logging.getLogger(__name__)

DELIVERY_REGISTRY_ABI = [
    {
        "type": "function",
        "name": "recordDelivery",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "recordHash", "type": "bytes32"},
            {"name": "timestamp", "type": "uint256"},
            {"name": "pharmacist", "type": "string"},
        ],
        "outputs": [],
    },
    {
        "type": "event",
        "name": "DeliveryRecorded",
        "anonymous": False,
        "inputs": [
            {"name": "recordHash", "type": "bytes32", "indexed": True},
            {"name": "timestamp", "type": "uint256", "indexed": False},
            {"name": "recorder", "type": "address", "indexed": True},
            {"name": "pharmacist", "type": "string", "indexed": False},
        ],
    },
]


class Web3LedgerClient:
    """
    Records delivery hashes through the DeliveryRegistry contract.

    Transactions are signed locally with the deployer key. Sends are serialized
    so concurrent deliveries never race for the same nonce; waiting for the
    receipt happens outside the lock.
    """

    backend = "web3"

    def __init__(
        self,
        *,
        rpc_url: str,
        contract_address: str,
        private_key: str,
        chain_id: int | None = None,
        receipt_timeout_seconds: float = 120.0,
        poll_latency_seconds: float = 1.0,
        w3: AsyncWeb3 | None = None,
    ):
        self._w3 = w3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))
        self._account = self._w3.eth.account.from_key(private_key)
        self._contract = self._w3.eth.contract(address=Web3.to_checksum_address(contract_address), abi=DELIVERY_REGISTRY_ABI)
        self._chain_id = chain_id
        self._receipt_timeout = receipt_timeout_seconds
        self._poll_latency = poll_latency_seconds
        self._send_lock = asyncio.Lock()

    @property
    def address(self) -> str:
        return self._account.address

    async def _send(self, *, record_hash: str, timestamp: int, pharmacist: str) -> str:
        async with self._send_lock:
            if self._chain_id is None:
                self._chain_id = await self._w3.eth.chain_id

            nonce = await self._w3.eth.get_transaction_count(self._account.address, "pending")
            call = self._contract.functions.recordDelivery(Web3.to_bytes(hexstr=record_hash), timestamp, pharmacist)
            tx = await call.build_transaction({
                "from": self._account.address,
                "nonce": nonce,
                "chainId": self._chain_id,
            })
            signed = self._account.sign_transaction(tx)
            tx_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)
        return Web3.to_hex(tx_hash)

    async def submit(self, *, record_hash: str, timestamp: int, pharmacist: str) -> LedgerResult:
        try:
            tx_ref = await self._send(record_hash=record_hash, timestamp=timestamp, pharmacist=pharmacist)
        except ContractLogicError as e:
            return LedgerResult.failure("REJECTED", str(e))
        except Web3Exception as e:
            return LedgerResult.failure("RPC_ERROR", f"{type(e).__name__}: {e}")
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
            return LedgerResult.failure("NETWORK_ERROR", f"{type(e).__name__}: {e}")
        except ValueError as e:
            # malformed hash or node-side JSON-RPC error payloads
            return LedgerResult.failure("INVALID_REQUEST", str(e))

        log.info("ledger: sent tx=%s hash=%s from=%s", tx_ref, record_hash, self.address)

        try:
            receipt = await self._w3.eth.wait_for_transaction_receipt(
                tx_ref, timeout=self._receipt_timeout, poll_latency=self._poll_latency
            )
        except TimeExhausted as e:
            return LedgerResult.failure("NOT_INCLUDED", str(e), tx_ref=tx_ref)
        except Web3Exception as e:
            return LedgerResult.failure("RPC_ERROR", f"{type(e).__name__}: {e}", tx_ref=tx_ref)
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
            return LedgerResult.failure("NETWORK_ERROR", f"{type(e).__name__}: {e}", tx_ref=tx_ref)

        if receipt["status"] != 1:
            return LedgerResult.failure("REVERTED", f"transaction reverted in block {receipt['blockNumber']}", tx_ref=tx_ref)

        return LedgerResult.success(tx_ref, block_number=receipt["blockNumber"])

    async def aclose(self) -> None:
        # only persistent-session providers expose disconnect()
        disconnect = getattr(self._w3.provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()
