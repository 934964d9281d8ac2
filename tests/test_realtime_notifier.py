"""
Tests for the in-memory realtime channel registry.
"""

import json
from uuid import uuid4

import pytest

from src.infrastructure.realtime.notifier import (
    HEARTBEAT_FRAME,
    ChannelClosedError,
    RealtimeNotifier,
    format_event,
)


def test_format_event_renders_sse_frame():
    frame = format_event("payment_update", {"status": "paid", "amount": "25.99"})
    assert frame.startswith("event: payment_update\ndata: ")
    assert frame.endswith("\n\n")
    data = frame.split("data: ", 1)[1].strip()
    assert json.loads(data) == {"status": "paid", "amount": "25.99"}


class TestRegistry:
    def test_register_and_stats(self):
        notifier = RealtimeNotifier()
        merchant_a, merchant_b = uuid4(), uuid4()

        notifier.register(merchant_a)
        notifier.register(merchant_a)
        notifier.register(merchant_b)

        stats = notifier.stats()
        assert stats["merchant_count"] == 2
        assert stats["total_channels"] == 3
        assert stats["per_merchant_counts"] == {str(merchant_a): 2, str(merchant_b): 1}

    def test_unregister_last_channel_drops_merchant(self):
        notifier = RealtimeNotifier()
        merchant_id = uuid4()
        first = notifier.register(merchant_id)
        second = notifier.register(merchant_id)

        notifier.unregister(merchant_id, first)
        assert notifier.stats()["per_merchant_counts"] == {str(merchant_id): 1}

        notifier.unregister(merchant_id, second)
        assert notifier.stats() == {
            "merchant_count": 0,
            "total_channels": 0,
            "per_merchant_counts": {},
            "queued_frames": 0,
        }

    def test_unregister_twice_is_harmless(self):
        notifier = RealtimeNotifier()
        merchant_id = uuid4()
        channel = notifier.register(merchant_id)

        notifier.unregister(merchant_id, channel)
        notifier.unregister(merchant_id, channel)

        assert notifier.stats()["total_channels"] == 0


class TestPublish:
    @pytest.mark.asyncio
    async def test_fans_out_to_every_channel_of_the_merchant(self):
        notifier = RealtimeNotifier()
        merchant_id, other_id = uuid4(), uuid4()
        tabs = [notifier.register(merchant_id), notifier.register(merchant_id)]
        other = notifier.register(other_id)

        delivered = notifier.publish(merchant_id, "payment_completed", {"link_id": "l1"})

        assert delivered == 2
        for channel in tabs:
            frame = await channel.next_frame(timeout=0.1)
            assert frame.startswith("event: payment_completed")
        assert await other.next_frame(timeout=0.01) is None

    def test_publish_without_channels_delivers_nothing(self):
        assert RealtimeNotifier().publish(uuid4(), "payment_update", {}) == 0

    def test_dead_channels_are_pruned(self):
        notifier = RealtimeNotifier()
        merchant_id = uuid4()
        alive = notifier.register(merchant_id)
        dead = notifier.register(merchant_id)
        dead.close()

        delivered = notifier.publish(merchant_id, "payment_update", {"status": "paid"})

        assert delivered == 1
        assert notifier.stats()["per_merchant_counts"] == {str(merchant_id): 1}
        assert alive.pending() == 1
        assert notifier.stats()["queued_frames"] == 1

    def test_closed_channel_rejects_writes(self):
        channel = RealtimeNotifier().register(uuid4())
        channel.close()
        with pytest.raises(ChannelClosedError):
            channel.send("event: x\ndata: {}\n\n")

    @pytest.mark.asyncio
    async def test_stats_count_undelivered_frames(self):
        notifier = RealtimeNotifier()
        merchant_id = uuid4()
        channel = notifier.register(merchant_id)

        notifier.publish(merchant_id, "payment_update", {"status": "paid"})
        notifier.publish(merchant_id, "payment_completed", {"status": "paid"})
        assert notifier.stats()["queued_frames"] == 2

        await channel.next_frame(timeout=1)
        assert notifier.stats()["queued_frames"] == 1


class TestHeartbeat:
    @pytest.mark.asyncio
    async def test_heartbeat_queues_comment_frame(self):
        notifier = RealtimeNotifier()
        channel = notifier.register(uuid4())

        assert notifier.heartbeat(channel) is True
        assert await channel.next_frame(timeout=0.1) == HEARTBEAT_FRAME

    def test_heartbeat_on_dead_channel_unregisters_it(self):
        notifier = RealtimeNotifier()
        merchant_id = uuid4()
        channel = notifier.register(merchant_id)
        channel.close()

        assert notifier.heartbeat(channel) is False
        assert notifier.stats()["total_channels"] == 0
