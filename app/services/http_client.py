from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

import httpx


@dataclass(frozen=True)
class HttpResult:
    ok: bool
    status_code: int | None
    detail: dict[str, Any]

    error_code: str | None = None
    error_message: str | None = None

    elapsed_ms: int | None = None


def _cap_text(s: str, *, max_chars: int) -> str:
    if len(s) <= max_chars:
        return s
    return s[:max_chars] + f"...(truncated, {len(s)} chars)"


class JsonHttpClient:
    """
    Shared HTTP client for confirmation endpoints.

    - Uses one AsyncClient instance (connection pooling).
    - Every call is bounded by the client timeout.
    - Bodies are parsed as JSON whatever the declared content-type.
    - Never raises for transport errors; returns a structured result instead.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = 5.0,
        max_response_body_chars: int = 4_000,
        default_headers: Mapping[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._timeout = httpx.Timeout(timeout_seconds)
        self._max_body = max_response_body_chars
        self._default_headers = dict(default_headers or {})
        self._client = httpx.AsyncClient(timeout=self._timeout, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get_json(
        self,
        *,
        url: str,
        headers: Mapping[str, str] | None = None,
        request_id: str | None = None,
    ) -> HttpResult:
        # Merge headers (caller wins)
        h = dict(self._default_headers)
        if headers:
            h.update(dict(headers))
        if request_id and "X-Request-Id" not in h:
            h["X-Request-Id"] = request_id

        try:
            resp = await self._client.get(url, headers=h)
        except httpx.TimeoutException as e:
            return HttpResult(
                ok=False,
                status_code=None,
                detail={"error": "timeout"},
                error_code="TIMEOUT",
                error_message=str(e) or "timed out",
            )
        except httpx.RequestError as e:
            # DNS errors, connection refused, TLS, etc.
            return HttpResult(
                ok=False,
                status_code=None,
                detail={"error": "request_error"},
                error_code="REQUEST_ERROR",
                error_message=str(e) or type(e).__name__,
            )
        except httpx.InvalidURL as e:
            return HttpResult(
                ok=False,
                status_code=None,
                detail={"error": "invalid_url"},
                error_code="INVALID_URL",
                error_message=str(e),
            )

        detail: dict[str, Any]
        try:
            # couriers often send JSON as text/plain
            parsed = resp.json()
            detail = parsed if isinstance(parsed, dict) else {"data": parsed}
        except ValueError:
            detail = {
                "raw": _cap_text(resp.text, max_chars=self._max_body),
                "content_type": resp.headers.get("content-type"),
            }

        elapsed_ms = int(resp.elapsed.total_seconds() * 1000) if resp.elapsed else None

        if 200 <= resp.status_code < 300:
            return HttpResult(ok=True, status_code=resp.status_code, detail=detail, elapsed_ms=elapsed_ms)

        return HttpResult(
            ok=False,
            status_code=resp.status_code,
            detail=detail,
            error_code=f"HTTP_{resp.status_code}",
            error_message=f"HTTP {resp.status_code}",
            elapsed_ms=elapsed_ms,
        )
