import base64
import json

import httpx
import pytest

from chain_relay.services.errors import MirrorNodeError
from chain_relay.services.mirror import MirrorNodeClient


def encoded(message: object) -> str:
    return base64.b64encode(json.dumps(message).encode()).decode()


def make_client(routes: dict[str, tuple[int, object]]) -> MirrorNodeClient:
    """Serve `path -> (status, json body)`; unknown paths are 404."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path not in routes:
            return httpx.Response(404)
        status, body = routes[request.url.path]
        return httpx.Response(status, json=body)

    return MirrorNodeClient("http://mirror.test", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_verify_submission_matches_fingerprint() -> None:
    client = make_client({
        "/api/v1/topics/0.0.5/messages/3": (
            200, {"sequence_number": 3, "message": encoded({"eventHash": "0xabc"})}
        ),
    })

    assert await client.verify_submission("5", 3, "0xabc") is True
    assert await client.verify_submission("5", 3, "0xdef") is False
    assert await client.verify_submission("5", 4, "0xabc") is False
    await client.close()


@pytest.mark.asyncio
async def test_undecodable_message_is_not_verified() -> None:
    client = make_client({
        "/api/v1/topics/0.0.5/messages/1": (200, {"message": "%%%"}),
        "/api/v1/topics/0.0.5/messages/2": (200, {"message": encoded([1, 2])}),
        "/api/v1/topics/0.0.5/messages/3": (200, {"sequence_number": 3}),
    })

    assert await client.verify_submission("5", 1, "0xabc") is False
    assert await client.verify_submission("5", 2, "0xabc") is False
    assert await client.verify_submission("5", 3, "0xabc") is False
    await client.close()


@pytest.mark.asyncio
async def test_server_errors_raise() -> None:
    client = make_client({"/api/v1/topics/0.0.5": (500, {"error": "boom"})})

    with pytest.raises(MirrorNodeError):
        await client.get_topic_info("5")
    await client.close()


@pytest.mark.asyncio
async def test_get_topic_messages() -> None:
    client = make_client({
        "/api/v1/topics/0.0.5/messages": (
            200, {"messages": [{"sequence_number": 2}, {"sequence_number": 1}]}
        ),
    })

    messages = await client.get_topic_messages("0.0.5", limit=2)
    await client.close()

    assert [m["sequence_number"] for m in messages] == [2, 1]


@pytest.mark.asyncio
async def test_get_recent_events_merges_topics_newest_first() -> None:
    client = make_client({
        "/api/v1/topics/0.0.5/messages": (
            200,
            {
                "messages": [
                    {
                        "sequence_number": 2,
                        "consensus_timestamp": "1700000020.000000001",
                        "message": encoded({"eventHash": "0xb", "timestamp": 20}),
                    },
                    {"sequence_number": 1, "message": "%%%"},
                ]
            },
        ),
        "/api/v1/topics/0.0.6/messages": (
            200,
            {
                "messages": [
                    {"sequence_number": 9, "message": encoded({"eventHash": "0xc", "timestamp": 30})},
                    {"sequence_number": 8, "message": encoded({"eventHash": "0xa", "timestamp": 10})},
                    {"sequence_number": 7, "message": encoded("not a relay message")},
                ]
            },
        ),
    })

    events = await client.get_recent_events(["5", "6"], limit=2)
    await client.close()

    assert [e["eventHash"] for e in events] == ["0xc", "0xb"]
    assert events[0]["topicId"] == "6"
    assert events[0]["sequenceNumber"] == 9
    assert events[1]["consensusTimestamp"] == "1700000020.000000001"


@pytest.mark.asyncio
async def test_get_recent_events_for_unknown_topic_is_empty() -> None:
    client = make_client({})

    assert await client.get_recent_events(["5"]) == []
    await client.close()


@pytest.mark.asyncio
async def test_get_topic_stats() -> None:
    client = make_client({
        "/api/v1/topics/0.0.5": (
            200,
            {
                "topic_id": "0.0.5",
                "memo": "supply events",
                "submit_key": {"_type": "ED25519", "key": "ab"},
                "created_timestamp": "1700000000.000000000",
                "sequence_number": 42,
            },
        ),
        "/api/v1/topics/0.0.6": (200, {"topic_id": "0.0.6"}),
    })

    stats = await client.get_topic_stats("5")
    fresh = await client.get_topic_stats("6")
    missing = await client.get_topic_stats("7")
    await client.close()

    assert stats == {
        "topicId": "0.0.5",
        "memo": "supply events",
        "submitKey": {"_type": "ED25519", "key": "ab"},
        "createdTimestamp": "1700000000.000000000",
        "totalMessages": 42,
    }
    assert fresh["totalMessages"] == 0
    assert missing is None
