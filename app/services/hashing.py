from __future__ import annotations
import json
from typing import Any, Mapping

from web3 import Web3

# Key order is part of the commitment: the digest anchored on-chain is computed
# over exactly this serialization.
HASHED_FIELDS = ("id", "pharmacist", "recipient", "delivered_at")
OPTIONAL_HASHED_FIELDS = ("pharmacist_reply",)


def canonical_record(fields: Mapping[str, Any]) -> dict[str, Any]:
    record = {key: fields.get(key) for key in HASHED_FIELDS}
    # present-but-null is hashed as null, absent is left out
    for key in OPTIONAL_HASHED_FIELDS:
        if key in fields:
            record[key] = fields[key]
    return record


def canonical_json(fields: Mapping[str, Any]) -> str:
    return json.dumps(canonical_record(fields), separators=(",", ":"), ensure_ascii=False)


def keccak_hex(text: str) -> str:
    return Web3.to_hex(Web3.keccak(text=text))


def derive_record_hash(fields: Mapping[str, Any]) -> str:
    return keccak_hex(canonical_json(fields))


def hash_fields_from_record(record: Any, *, include_reply: bool) -> dict[str, Any]:
    fields = {
        "id": record.id,
        "pharmacist": record.pharmacist,
        "recipient": record.recipient_name,
        "delivered_at": record.delivered_at,
    }
    if include_reply:
        fields["pharmacist_reply"] = record.pharmacist_reply
    return fields


def verify_record_hash(record: Any) -> bool:
    """
    Recompute the digest of a persisted record and compare it with the anchored one.

    Records confirmed through the polling path carry ``pharmacist_reply`` in the
    hashed payload, records confirmed directly do not, so both shapes are tried.
    """
    if not record.onchain_hash:
        return False
    expected = record.onchain_hash.lower()
    for include_reply in (True, False):
        if derive_record_hash(hash_fields_from_record(record, include_reply=include_reply)) == expected:
            return True
    return False
