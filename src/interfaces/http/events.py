import asyncio
from typing import AsyncIterator
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from src.config.config import config
from src.config.logger_config import log
from src.infrastructure.realtime.notifier import (
    Channel,
    RealtimeNotifier,
    format_event,
)
from src.interfaces.http.dependencies import get_current_merchant_id, get_notifier

router = APIRouter(tags=["events"])

# Upper bound on how long a closed connection can go unnoticed
DISCONNECT_POLL_SECONDS = 1.0


async def stream_events(
    notifier: RealtimeNotifier,
    channel: Channel,
    request: Request,
    heartbeat_interval: float,
) -> AsyncIterator[str]:
    """
    Drain a channel as server-sent event frames.

    Sends `connected` first, then every queued frame. Heartbeats are queued
    on a fixed schedule regardless of traffic. The channel is unregistered
    when the client goes away or the generator is closed.
    """
    loop = asyncio.get_running_loop()
    try:
        yield format_event(
            "connected",
            {"channel_id": channel.id, "merchant_id": channel.merchant_id},
        )
        next_heartbeat = loop.time() + heartbeat_interval

        while not channel.closed:
            if await request.is_disconnected():
                log.info("Event stream client disconnected", channel_id=channel.id)
                break

            now = loop.time()
            if now >= next_heartbeat:
                notifier.heartbeat(channel)
                next_heartbeat += heartbeat_interval
                continue

            wait = min(next_heartbeat - now, DISCONNECT_POLL_SECONDS)
            frame = await channel.next_frame(timeout=wait)
            if frame is not None:
                yield frame
    finally:
        notifier.unregister(channel.merchant_id, channel)


@router.get("/events")
async def events(
    request: Request,
    merchant_id: UUID = Depends(get_current_merchant_id),
    notifier: RealtimeNotifier = Depends(get_notifier),
):
    """
    Realtime channel for the dashboard (text/event-stream).
    Emits `connected`, `payment_update` and `payment_completed`.
    """
    channel = notifier.register(merchant_id)
    return StreamingResponse(
        stream_events(notifier, channel, request, config.SSE_HEARTBEAT_SECONDS),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
