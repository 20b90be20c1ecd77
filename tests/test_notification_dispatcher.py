"""Tests for push notification hand-off and delivery."""

import json
from datetime import datetime, timedelta

import httpx
import pytest

from chathub.adapters.push_client import PushClient, build_multicast_body
from chathub.infra.circuit_breaker import CircuitBreaker, CircuitOpenError, CircuitState
from chathub.infra.errors import UpstreamUnavailable
from chathub.services.notification_dispatcher import (
    NotificationDispatcher,
    PushNotification,
    chunk_tokens,
)


def notification(author_id="user-a"):
    return PushNotification(
        title="A",
        body="hello",
        author_id=author_id,
        data={"type": "chat_message", "messageId": "m-1", "channel": "general"},
    )


def fixed_tokens(tokens):
    return lambda author_id: list(tokens)


class TestDispatch:

    def test_chunk_tokens(self):
        assert chunk_tokens(["a", "b", "c", "d", "e"], 2) == [["a", "b"], ["c", "d"], ["e"]]
        assert chunk_tokens([], 2) == []

    def test_dispatch_is_non_blocking(self, dispatcher):
        assert dispatcher.dispatch(notification()) is True
        assert dispatcher.pending == 1

    def test_full_queue_drops(self, push_client):
        dispatcher = NotificationDispatcher(push_client, fixed_tokens(["t1"]), queue_size=1)

        assert dispatcher.dispatch(notification()) is True
        assert dispatcher.dispatch(notification()) is False
        assert dispatcher.pending == 1

    def test_external_queue(self, push_client):
        enqueued = []

        def enqueue(payload):
            enqueued.append(payload)
            return "job-1"

        dispatcher = NotificationDispatcher(push_client, fixed_tokens([]), enqueue_external=enqueue)

        assert dispatcher.dispatch(notification()) is True
        assert dispatcher.pending == 0
        assert PushNotification.from_dict(enqueued[0]) == notification()

    def test_external_queue_failure_drops(self, push_client):
        def enqueue(payload):
            raise ConnectionError("redis down")

        dispatcher = NotificationDispatcher(push_client, fixed_tokens([]), enqueue_external=enqueue)

        assert dispatcher.dispatch(notification()) is False


class TestDeliver:

    @pytest.mark.asyncio
    async def test_batches_tokens(self, push_client):
        dispatcher = NotificationDispatcher(
            push_client,
            fixed_tokens(["t1", "t2", "t3", "t4", "t5"]),
            breaker=CircuitBreaker(service="push-test"),
            batch_size=2,
        )

        result = await dispatcher.deliver(notification())

        assert [call["tokens"] for call in push_client.calls] == [["t1", "t2"], ["t3", "t4"], ["t5"]]
        assert result.success_count == 5
        assert result.failure_count == 0

    @pytest.mark.asyncio
    async def test_provider_failure_is_swallowed(self, failing_push_client):
        client = failing_push_client
        dispatcher = NotificationDispatcher(
            client,
            fixed_tokens(["t1", "t2", "t3"]),
            breaker=CircuitBreaker(service="push-test", failure_threshold=10),
            batch_size=2,
        )

        result = await dispatcher.deliver(notification())

        assert result.success_count == 0
        assert result.failure_count == 3

    @pytest.mark.asyncio
    async def test_recipient_lookup_failure_is_swallowed(self, push_client):
        def broken(author_id):
            raise RuntimeError("directory down")

        dispatcher = NotificationDispatcher(push_client, broken)

        result = await dispatcher.deliver(notification())

        assert result.success_count == 0
        assert push_client.calls == []

    @pytest.mark.asyncio
    async def test_circuit_opens_after_repeated_failures(self, failing_push_client):
        client = failing_push_client
        breaker = CircuitBreaker(service="push-test", failure_threshold=2, recovery_timeout=60)
        dispatcher = NotificationDispatcher(client, fixed_tokens(["t1"]), breaker=breaker, batch_size=1)

        await dispatcher.deliver(notification())
        await dispatcher.deliver(notification())
        await dispatcher.deliver(notification())

        assert breaker.state == CircuitState.OPEN
        assert len(client.calls) == 2

    @pytest.mark.asyncio
    async def test_worker_processes_queue(self, dispatcher, push_client):
        dispatcher.dispatch(notification())
        dispatcher.start()
        try:
            await dispatcher.drain()
        finally:
            await dispatcher.stop()

        assert len(push_client.calls) == 1
        assert push_client.closed is True


class TestCircuitBreaker:

    def test_half_open_then_closed(self):
        now = [0]

        def clock():
            return datetime(2026, 1, 1) + timedelta(seconds=now[0])

        breaker = CircuitBreaker(service="test", failure_threshold=1, recovery_timeout=10, clock=clock)

        def fail():
            raise UpstreamUnavailable("down")

        with pytest.raises(UpstreamUnavailable):
            breaker.call(fail)
        with pytest.raises(CircuitOpenError):
            breaker.call(lambda: "ok")

        now[0] = 11
        assert breaker.call(lambda: "ok") == "ok"
        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.call(lambda: "ok") == "ok"
        assert breaker.state == CircuitState.CLOSED


class TestPushClient:

    def test_multicast_body_stringifies_data(self):
        body = build_multicast_body("A", "hi", ["t1"], {"count": 2, "channel": "general"})

        assert body == {
            "notification": {"title": "A", "body": "hi"},
            "data": {"count": "2", "channel": "general"},
            "tokens": ["t1"],
        }

    @pytest.mark.asyncio
    async def test_send_multicast(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["auth"] = request.headers.get("Authorization")
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"successCount": 1, "failureCount": 1})

        client = PushClient(
            base_url="https://push.example.com/send",
            api_key="secret",
            transport=httpx.MockTransport(handler),
        )
        try:
            result = await client.send_multicast("A", "hi", ["t1", "t2"], {"messageId": "m-1"})
        finally:
            await client.close()

        assert result.success_count == 1
        assert result.failure_count == 1
        assert captured["auth"] == "Bearer secret"
        assert captured["body"]["tokens"] == ["t1", "t2"]

    @pytest.mark.asyncio
    async def test_provider_error_raises_upstream_unavailable(self):
        client = PushClient(
            base_url="https://push.example.com/send",
            transport=httpx.MockTransport(lambda request: httpx.Response(503)),
        )
        try:
            with pytest.raises(UpstreamUnavailable):
                await client.send_multicast("A", "hi", ["t1"])
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_unconfigured_client_skips(self):
        client = PushClient(base_url="")

        result = await client.send_multicast("A", "hi", ["t1", "t2"])

        assert result.success_count == 0
        assert result.failure_count == 2

    @pytest.mark.asyncio
    async def test_no_tokens(self):
        client = PushClient(base_url="https://push.example.com/send")
        result = await client.send_multicast("A", "hi", [])
        assert (result.success_count, result.failure_count) == (0, 0)
