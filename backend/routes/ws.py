import asyncio
import logging

from fastapi import APIRouter, WebSocket

from connection_manager import Connection
from protocol import SessionHandler

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


async def _receive_loop(handler: SessionHandler, connection: Connection) -> None:
    websocket = connection.websocket
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return
        text = message.get("text")
        if text is None:
            continue
        await handler.handle_text(connection, text)


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await websocket.accept()
    handler: SessionHandler = websocket.app.state.handler
    settings = websocket.app.state.settings

    connection = Connection(websocket)
    logger.info("New client connected: %r", connection)

    receiver = asyncio.create_task(_receive_loop(handler, connection))
    heartbeat = asyncio.create_task(
        handler.heartbeat(connection, settings.heartbeat_interval)
    )
    try:
        # Either the peer went away or a ping could not be delivered
        done, _ = await asyncio.wait({receiver, heartbeat}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (receiver, heartbeat):
            task.cancel()
        await asyncio.gather(receiver, heartbeat, return_exceptions=True)
        await handler.leave(connection)
        logger.info("Client disconnected: %r", connection)

    if heartbeat in done:
        await connection.close(code=1001)
    for task in done:
        if not task.cancelled() and task.exception() is not None:
            raise task.exception()
