"""
Tests for the server-sent events stream and the /events route.
"""

import asyncio
import json
from uuid import uuid4

import pytest

from src.infrastructure.realtime.notifier import HEARTBEAT_FRAME, RealtimeNotifier
from src.interfaces.http.events import stream_events


class FakeRequest:
    """Reports a disconnect once `disconnect_after` checks have been made."""

    def __init__(self, disconnect_after: int = 1000):
        self.checks = 0
        self.disconnect_after = disconnect_after

    async def is_disconnected(self) -> bool:
        self.checks += 1
        return self.checks > self.disconnect_after


class TestStreamEvents:
    @pytest.mark.asyncio
    async def test_starts_with_connected_event(self):
        notifier = RealtimeNotifier()
        channel = notifier.register(uuid4())
        stream = stream_events(notifier, channel, FakeRequest(), heartbeat_interval=30)

        first = await stream.__anext__()
        await stream.aclose()

        assert first.startswith("event: connected\n")
        data = json.loads(first.split("data: ", 1)[1])
        assert data["channel_id"] == channel.id

    @pytest.mark.asyncio
    async def test_forwards_published_events(self):
        notifier = RealtimeNotifier()
        merchant_id = uuid4()
        channel = notifier.register(merchant_id)
        stream = stream_events(notifier, channel, FakeRequest(), heartbeat_interval=30)
        await stream.__anext__()

        notifier.publish(merchant_id, "payment_update", {"status": "paid"})
        frame = await asyncio.wait_for(stream.__anext__(), timeout=2)
        await stream.aclose()

        assert frame.startswith("event: payment_update\n")

    @pytest.mark.asyncio
    async def test_sends_heartbeats_on_schedule(self):
        notifier = RealtimeNotifier()
        channel = notifier.register(uuid4())
        stream = stream_events(notifier, channel, FakeRequest(), heartbeat_interval=0.05)
        await stream.__anext__()

        frame = await asyncio.wait_for(stream.__anext__(), timeout=2)
        await stream.aclose()

        assert frame == HEARTBEAT_FRAME

    @pytest.mark.asyncio
    async def test_client_disconnect_unregisters_channel(self):
        notifier = RealtimeNotifier()
        merchant_id = uuid4()
        channel = notifier.register(merchant_id)
        stream = stream_events(
            notifier, channel, FakeRequest(disconnect_after=0), heartbeat_interval=30
        )

        frames = [frame async for frame in stream]

        assert len(frames) == 1
        assert channel.closed
        assert notifier.stats()["total_channels"] == 0

    @pytest.mark.asyncio
    async def test_closing_the_stream_unregisters_channel(self):
        notifier = RealtimeNotifier()
        channel = notifier.register(uuid4())
        stream = stream_events(notifier, channel, FakeRequest(), heartbeat_interval=30)
        await stream.__anext__()

        await stream.aclose()

        assert notifier.stats()["total_channels"] == 0


class TestEventsRoute:
    def test_requires_token(self, client):
        response = client.get("/events")
        assert response.status_code == 401

    def test_rejects_invalid_query_token(self, client):
        response = client.get("/events", params={"token": "not-a-jwt"})
        assert response.status_code == 401
