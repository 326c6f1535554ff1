import base64
import json

import httpx
import pytest
from jose import jwt

from chain_relay.services.consensus_log import (
    ConsensusLogClient,
    ConsensusLogConfig,
    normalize_topic_id,
)
from chain_relay.services.errors import ConsensusLogError

SECRET = "test-shared-secret"


def make_config(**overrides) -> ConsensusLogConfig:
    values = {
        "base_url": "http://gateway.test",
        "instance_id": "relay-test",
        "shared_secret": SECRET,
        "audience": "consensus-log",
        "token_ttl_seconds": 60,
        "timeout_seconds": 1.0,
    }
    values.update(overrides)
    return ConsensusLogConfig(**values)


def make_client(handler, **overrides) -> ConsensusLogClient:
    return ConsensusLogClient(make_config(**overrides), transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_submit_posts_signed_message() -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json={"status": "success", "sequence_number": 17})

    client = make_client(handler)
    receipt = await client.submit("4242", b'{"eventHash":"0xabc"}', 1.0, idempotency_key="0xabc")
    await client.close()

    assert receipt.succeeded
    assert receipt.sequence_number == 17
    assert receipt.topic_id == "0.0.4242"

    [request] = captured
    assert request.url.path == "/api/v1/topics/0.0.4242/messages"
    assert request.headers["Idempotency-Key"] == "0xabc"
    assert request.headers["X-Relay-Instance-Id"] == "relay-test"
    body = json.loads(request.content)
    assert base64.b64decode(body["message"]) == b'{"eventHash":"0xabc"}'

    token = request.headers["Authorization"].removeprefix("Bearer ")
    claims = jwt.decode(token, SECRET, algorithms=["HS256"], audience="consensus-log")
    assert claims["iss"] == "relay-test"
    assert claims["exp"] > claims["iat"]


@pytest.mark.asyncio
async def test_no_authorization_header_without_secret() -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json={"status": "SUCCESS", "topicSequenceNumber": "3"})

    client = make_client(handler, shared_secret=None)
    receipt = await client.submit("0.0.9", b"{}", 1.0)
    await client.close()

    assert receipt.sequence_number == 3
    assert "Authorization" not in captured[0].headers
    assert "Idempotency-Key" not in captured[0].headers


@pytest.mark.asyncio
async def test_rejection_is_returned_as_unsuccessful_receipt() -> None:
    client = make_client(lambda request: httpx.Response(200, json={"status": "INVALID_TOPIC_ID"}))

    receipt = await client.submit("1", b"{}", 1.0)
    await client.close()

    assert not receipt.succeeded
    assert receipt.status == "INVALID_TOPIC_ID"


@pytest.mark.asyncio
async def test_success_without_sequence_number_is_not_success() -> None:
    client = make_client(lambda request: httpx.Response(200, json={"status": "SUCCESS"}))

    receipt = await client.submit("1", b"{}", 1.0)
    await client.close()

    assert not receipt.succeeded


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(503, text="unavailable"),
        httpx.Response(200, text="<html>"),
        httpx.Response(200, json=[]),
        httpx.Response(200, json=None),
        httpx.Response(200, json="SUCCESS"),
    ],
)
async def test_bad_responses_raise(response: httpx.Response) -> None:
    client = make_client(lambda request: response)

    with pytest.raises(ConsensusLogError):
        await client.submit("1", b"{}", 1.0)
    await client.close()


@pytest.mark.asyncio
async def test_transport_error_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(handler)

    with pytest.raises(ConsensusLogError, match="failed"):
        await client.submit("1", b"{}", 1.0)
    await client.close()


@pytest.mark.asyncio
async def test_disabled_client_refuses_to_submit() -> None:
    client = ConsensusLogClient(make_config(base_url=None))

    assert not client.enabled
    assert await client.health_check() == {"status": "disabled", "enabled": False}
    with pytest.raises(ConsensusLogError):
        await client.submit("1", b"{}", 1.0)


@pytest.mark.asyncio
async def test_health_check() -> None:
    client = make_client(lambda request: httpx.Response(200, json={"ok": True}))

    result = await client.health_check()
    await client.close()

    assert result["status"] == "healthy"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("42", "0.0.42"), (" 7 ", "0.0.7"), ("0.0.1234", "0.0.1234"), ("1.2.3", "1.2.3")],
)
def test_normalize_topic_id(raw: str, expected: str) -> None:
    assert normalize_topic_id(raw) == expected


@pytest.mark.parametrize("raw", ["", "  ", "topic"])
def test_normalize_topic_id_rejects_garbage(raw: str) -> None:
    with pytest.raises(ValueError):
        normalize_topic_id(raw)
