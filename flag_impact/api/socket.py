"""
WebSocket channel: chat, anomaly subscription, prediction listing and live
broadcasts of flag and anomaly events.
"""

import asyncio
import uuid

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from .dependencies import get_agent
from .schemas import StreamMessage
from ..agents.orchestrator import FeatureFlagAgent
from ..util.logging import logger

router = APIRouter()

SEND_TIMEOUT_SEC = 5
INVALID_FORMAT = "Invalid message format"
WELCOME = "Connected to Feature Flag Impact Analyzer"


class WebSocketChannel:
    """
    Outbound handle for one socket.

    Agent operations run in worker threads; their broadcasts are handed back
    to the event loop that owns the socket.
    """

    def __init__(self, websocket: WebSocket, loop: asyncio.AbstractEventLoop):
        self.websocket = websocket
        self.loop = loop

    def send(self, text: str) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is self.loop:
            self.loop.create_task(self.websocket.send_text(text))
            return

        future = asyncio.run_coroutine_threadsafe(self.websocket.send_text(text), self.loop)
        future.result(timeout=SEND_TIMEOUT_SEC)


async def _send_error(websocket: WebSocket, message: str = INVALID_FORMAT):
    await websocket.send_json({"type": "error", "payload": {"message": message}})


async def handle_stream_message(agent: FeatureFlagAgent, websocket: WebSocket,
                                session_id: str, raw: str) -> None:
    """Dispatch one inbound frame. Malformed frames get an error event; the socket stays open."""
    try:
        message = StreamMessage.model_validate_json(raw)
    except ValidationError:
        await _send_error(websocket)
        return

    payload = message.payload or {}

    if message.type == "chat":
        text = payload.get("message") or ""
        response = await asyncio.to_thread(agent.chat, str(text), session_id)
        await websocket.send_json({"type": "chat_response", "payload": response})

    elif message.type == "subscribe_anomalies":
        anomalies = await asyncio.to_thread(agent.list_anomalies)
        await websocket.send_json({
            "type": "subscribed",
            "payload": {
                "channel": "anomalies",
                "anomalies": [a.to_json_dict() for a in anomalies],
            },
        })

    elif message.type == "get_predictions":
        predictions = await asyncio.to_thread(agent.list_predictions)
        await websocket.send_json({
            "type": "predictions",
            "payload": [p.to_json_dict() for p in predictions],
        })

    else:
        await _send_error(websocket)


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, agent: FeatureFlagAgent = Depends(get_agent)):
    await websocket.accept()

    session_id = str(uuid.uuid4())
    await websocket.send_json({
        "type": "connected",
        "payload": {"sessionId": session_id, "message": WELCOME},
    })

    channel = WebSocketChannel(websocket, asyncio.get_running_loop())
    await asyncio.to_thread(agent.connect, channel, session_id)

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                break

            raw = frame.get("text")
            if raw is None:
                await _send_error(websocket)
                continue

            await handle_stream_message(agent, websocket, session_id, raw)
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.log_operation("session.stream", "error", {"session_id": session_id, "error": str(e)[:100]})
        raise
    finally:
        await asyncio.to_thread(agent.disconnect, session_id)
