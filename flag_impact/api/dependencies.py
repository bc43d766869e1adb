"""Shared agent instance for the HTTP and WebSocket routes."""

import threading
from typing import Optional

from ..agents.orchestrator import FeatureFlagAgent

_agent: Optional[FeatureFlagAgent] = None
_agent_lock = threading.Lock()


def get_agent() -> FeatureFlagAgent:
    """Return the deployment's single agent, creating it on first use."""
    global _agent
    with _agent_lock:
        if _agent is None:
            _agent = FeatureFlagAgent()
        return _agent
