"""
Realtime Notifier

In-memory registry of server-sent event channels, keyed by merchant.
A merchant can hold many channels at once (one per open dashboard tab).
State is process-local: after a restart clients reconnect on their own.
"""

import asyncio
import json
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

from shared.libs.observability.metrics import REALTIME_CHANNELS
from src.config.logger_config import log

HEARTBEAT_FRAME = ":heartbeat\n\n"


def format_event(event_name: str, payload: Dict[str, Any]) -> str:
    """Render one SSE frame."""
    data = json.dumps(payload, default=str)
    return f"event: {event_name}\ndata: {data}\n\n"


class ChannelClosedError(Exception):
    """Raised when writing to a channel whose consumer has gone away."""


class Channel:
    """
    One live push connection. Frames are queued without a size limit and
    drained by the HTTP response that owns the channel.
    """

    def __init__(self, merchant_id: str):
        self.id = uuid4().hex
        self.merchant_id = merchant_id
        self.created_at = datetime.now(timezone.utc)
        self.closed = False
        self._queue: asyncio.Queue = asyncio.Queue()

    def send(self, frame: str) -> None:
        if self.closed:
            raise ChannelClosedError(f"Channel {self.id} is closed")
        self._queue.put_nowait(frame)

    def close(self) -> None:
        self.closed = True

    async def next_frame(self, timeout: float) -> Optional[str]:
        """Wait up to `timeout` seconds for a frame; None when nothing arrived."""
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    def pending(self) -> int:
        return self._queue.qsize()


class RealtimeNotifier:
    """
    Fan-out of payment events to every channel a merchant has open.

    Delivery is fire-and-forget: a channel that fails on write is treated
    as dead and dropped, never retried.
    """

    def __init__(self) -> None:
        self._channels: Dict[str, Dict[str, Channel]] = {}
        self._lock = threading.Lock()

    def register(self, merchant_id) -> Channel:
        key = str(merchant_id)
        channel = Channel(key)
        with self._lock:
            self._channels.setdefault(key, {})[channel.id] = channel
            merchant_total = len(self._channels[key])
        REALTIME_CHANNELS.inc()
        log.info(
            "Realtime channel registered",
            merchant_id=key,
            channel_id=channel.id,
            merchant_channels=merchant_total,
        )
        return channel

    def unregister(self, merchant_id, channel: Channel) -> None:
        key = str(merchant_id)
        channel.close()
        with self._lock:
            merchant_channels = self._channels.get(key)
            if not merchant_channels or channel.id not in merchant_channels:
                return
            del merchant_channels[channel.id]
            if not merchant_channels:
                del self._channels[key]
        REALTIME_CHANNELS.dec()
        log.info("Realtime channel removed", merchant_id=key, channel_id=channel.id)

    def publish(self, merchant_id, event_name: str, payload: Dict[str, Any]) -> int:
        """
        Deliver an event to all of a merchant's channels.

        Returns:
            Number of channels the frame was written to.
        """
        key = str(merchant_id)
        with self._lock:
            targets = list(self._channels.get(key, {}).values())

        if not targets:
            log.debug("No realtime channels for merchant", merchant_id=key)
            return 0

        frame = format_event(event_name, payload)
        delivered = 0
        dead = []
        for channel in targets:
            try:
                channel.send(frame)
                delivered += 1
            except Exception as e:
                log.warning(
                    "Realtime delivery failed, dropping channel",
                    merchant_id=key,
                    channel_id=channel.id,
                    error=str(e),
                )
                dead.append(channel)

        for channel in dead:
            self.unregister(key, channel)

        log.debug(
            "Realtime event published",
            merchant_id=key,
            event=event_name,
            delivered=delivered,
        )
        return delivered

    def heartbeat(self, channel: Channel) -> bool:
        """Queue a keepalive comment; a failing channel is unregistered."""
        try:
            channel.send(HEARTBEAT_FRAME)
            return True
        except Exception as e:
            log.debug(
                "Heartbeat failed, dropping channel",
                channel_id=channel.id,
                error=str(e),
            )
            self.unregister(channel.merchant_id, channel)
            return False

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            per_merchant = {
                merchant_id: len(channels)
                for merchant_id, channels in self._channels.items()
            }
            queued = sum(
                channel.pending()
                for channels in self._channels.values()
                for channel in channels.values()
            )
        return {
            "merchant_count": len(per_merchant),
            "total_channels": sum(per_merchant.values()),
            "per_merchant_counts": per_merchant,
            "queued_frames": queued,
        }
