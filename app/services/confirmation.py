from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from app.services.delivery_state import DELIVERED_SIGNALS
from app.services.errors import TransientPollError
from app.services.http_client import JsonHttpClient


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliverySignal:
    recipient_name: str | None
    signature: str | None
    timestamp: str | None
    pharmacist: str | None


class ConfirmationSource(Protocol):
    async def check(self, endpoint: str, *, delivery_id: str) -> DeliverySignal | None:
        """
        Returns a DeliverySignal once the endpoint reports the delivery as done,
        None while it is still pending. Raises TransientPollError when the
        endpoint could not be read.
        """
        ...


def _text(value: Any) -> str | None:
    # empty values fall through to the next candidate
    if value is None or value == "":
        return None
    return value if isinstance(value, str) else str(value)


def parse_delivery_signal(payload: dict[str, Any]) -> DeliverySignal | None:
    if payload.get("status") not in DELIVERED_SIGNALS:
        return None
    return DeliverySignal(
        recipient_name=_text(payload.get("recipientName")) or _text(payload.get("name")),
        signature=_text(payload.get("signature")),
        timestamp=_text(payload.get("timestamp")),
        pharmacist=_text(payload.get("pharmacist")),
    )


class HttpConfirmationSource:
    def __init__(self, client: JsonHttpClient):
        self._client = client

    async def check(self, endpoint: str, *, delivery_id: str) -> DeliverySignal | None:
        result = await self._client.get_json(url=endpoint, request_id=delivery_id)
        if not result.ok:
            raise TransientPollError(
                result.error_message or "confirmation endpoint unavailable",
                error_code=result.error_code,
            )
        signal = parse_delivery_signal(result.detail)
        if signal is None:
            log.debug("confirmation: delivery_id=%s still pending (status=%r)", delivery_id, result.detail.get("status"))
        return signal

    async def aclose(self) -> None:
        await self._client.aclose()
