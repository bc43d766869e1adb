"""
Registry of live streaming sessions used for best-effort broadcast.
"""

import json
import uuid
from typing import Any, Dict, Optional, Protocol

from ..util.logging import logger


class OutboundChannel(Protocol):
    """Anything that can push one text frame to a subscriber."""

    def send(self, text: str) -> None:
        ...


class SessionRegistry:
    """
    Maps session id to an outbound channel.

    Membership changes only on connect/disconnect. The owning agent serializes
    access, so the registry itself holds no lock.
    """

    def __init__(self):
        self._sessions: Dict[str, OutboundChannel] = {}

    def register(self, channel: OutboundChannel, session_id: Optional[str] = None) -> str:
        session_id = session_id or str(uuid.uuid4())
        self._sessions[session_id] = channel
        logger.log_session_event("connected", session_id, len(self._sessions))
        return session_id

    def unregister(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is not None:
            logger.log_session_event("disconnected", session_id, len(self._sessions))

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def broadcast(self, event_type: str, payload: Any) -> int:
        """
        Send one event to every live session.

        A failing channel is logged and skipped; it never affects delivery to
        the others or the operation that triggered the broadcast.

        Returns:
            Number of channels the event was delivered to
        """
        text = json.dumps({"type": event_type, "payload": payload})
        delivered = 0
        for session_id, channel in list(self._sessions.items()):
            try:
                channel.send(text)
                delivered += 1
            except Exception as e:
                logger.log_operation("session.broadcast", "failed", {
                    "session_id": session_id,
                    "event": event_type,
                    "error": str(e)[:100]
                })
        return delivered
