"""
Notification websocket: streams suggestion, job and connection events.
"""

import asyncio
import logging

from fastapi import APIRouter, WebSocket
from fastapi.encoders import jsonable_encoder

logger = logging.getLogger(__name__)
router = APIRouter()


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


@router.websocket("/events")
async def events(websocket: WebSocket):
    bus = websocket.app.state.services.bus
    # Subscribe before accepting so nothing published after the handshake is missed
    queue = bus.subscribe()
    await websocket.accept()
    logger.info(f"Event subscriber connected ({bus.subscriber_count} total)")

    disconnected = asyncio.create_task(_wait_for_disconnect(websocket))
    try:
        while True:
            next_message = asyncio.create_task(queue.get())
            done, _ = await asyncio.wait(
                {next_message, disconnected}, return_when=asyncio.FIRST_COMPLETED
            )
            if disconnected in done:
                next_message.cancel()
                break
            await websocket.send_json(jsonable_encoder(next_message.result()))
    finally:
        disconnected.cancel()
        bus.unsubscribe(queue)
        logger.info("Event subscriber disconnected")
