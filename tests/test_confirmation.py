import httpx
import pytest

from app.services.confirmation import HttpConfirmationSource, parse_delivery_signal
from app.services.errors import TransientPollError
from app.services.http_client import JsonHttpClient


ENDPOINT = "https://courier.example/deliveries/D1"


@pytest.mark.parametrize("status", ["delivered", "confirmed"])
def test_delivered_statuses_are_recognized(status):
    signal = parse_delivery_signal({"status": status, "name": "Alice"})

    assert signal is not None
    assert signal.recipient_name == "Alice"


@pytest.mark.parametrize("payload", [{}, {"status": "in_transit"}, {"status": "Delivered"}, {"name": "Alice"}])
def test_other_payloads_are_pending(payload):
    assert parse_delivery_signal(payload) is None


def test_recipient_name_falls_back_to_name():
    assert parse_delivery_signal({"status": "delivered", "recipientName": "Bob", "name": "Alice"}).recipient_name == "Bob"
    assert parse_delivery_signal({"status": "delivered", "recipientName": "", "name": "Alice"}).recipient_name == "Alice"
    assert parse_delivery_signal({"status": "delivered"}).recipient_name is None


def test_optional_fields_are_extracted():
    signal = parse_delivery_signal({
        "status": "delivered",
        "name": "Alice",
        "signature": "sig1",
        "timestamp": 1760866200,
        "pharmacist": "note",
    })

    assert signal.signature == "sig1"
    assert signal.timestamp == "1760866200"
    assert signal.pharmacist == "note"


def _source(handler) -> HttpConfirmationSource:
    return HttpConfirmationSource(JsonHttpClient(timeout_seconds=1.0, transport=httpx.MockTransport(handler)))


@pytest.mark.asyncio
async def test_http_source_returns_signal():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["request_id"] = request.headers.get("X-Request-Id")
        return httpx.Response(200, json={"status": "delivered", "name": "Alice", "signature": "sig1"})

    source = _source(handler)
    signal = await source.check(ENDPOINT, delivery_id="D1")
    await source.aclose()

    assert signal.recipient_name == "Alice"
    assert signal.signature == "sig1"
    assert seen == {"url": ENDPOINT, "request_id": "D1"}


@pytest.mark.asyncio
async def test_http_source_pending_and_non_json():
    responses = iter([
        httpx.Response(200, json={"status": "in_transit"}),
        httpx.Response(200, text="<html>ok</html>", headers={"content-type": "text/html"}),
    ])
    source = _source(lambda request: next(responses))

    assert await source.check(ENDPOINT, delivery_id="D1") is None
    assert await source.check(ENDPOINT, delivery_id="D1") is None
    await source.aclose()


@pytest.mark.asyncio
@pytest.mark.parametrize("content_type", ["text/plain", "text/html; charset=utf-8", None])
async def test_http_source_parses_json_sent_with_other_content_type(content_type):
    body = '{"status":"delivered","recipientName":"Alice","signature":"sig1"}'
    headers = {"content-type": content_type} if content_type else {}
    source = _source(lambda request: httpx.Response(200, content=body.encode(), headers=headers))

    signal = await source.check(ENDPOINT, delivery_id="D1")
    await source.aclose()

    assert signal is not None
    assert signal.recipient_name == "Alice"
    assert signal.signature == "sig1"


@pytest.mark.asyncio
async def test_client_keeps_raw_body_when_not_json():
    client = JsonHttpClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(200, text="ok", headers={"content-type": "text/plain"}))
    )

    result = await client.get_json(url=ENDPOINT)
    await client.aclose()

    assert result.ok is True
    assert result.detail == {"raw": "ok", "content_type": "text/plain"}


@pytest.mark.asyncio
async def test_http_source_server_error_is_transient():
    source = _source(lambda request: httpx.Response(503, json={"error": "busy"}))

    with pytest.raises(TransientPollError) as exc:
        await source.check(ENDPOINT, delivery_id="D1")
    await source.aclose()

    assert exc.value.error_code == "HTTP_503"


@pytest.mark.asyncio
async def test_http_source_connection_error_is_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    source = _source(handler)
    with pytest.raises(TransientPollError) as exc:
        await source.check(ENDPOINT, delivery_id="D1")
    await source.aclose()

    assert exc.value.error_code == "REQUEST_ERROR"


@pytest.mark.asyncio
async def test_http_source_timeout_is_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    source = _source(handler)
    with pytest.raises(TransientPollError) as exc:
        await source.check(ENDPOINT, delivery_id="D1")
    await source.aclose()

    assert exc.value.error_code == "TIMEOUT"
