"""
Conversational assistant.

Keeps a per-session message log, injects a live summary of flags, anomalies
and predictions into the system prompt, and relays the model reply.
"""

from typing import Any, Dict, List

from .llm import BaseLLMClient, LLMMessage
from ..core import dao
from ..core.config import CHAT_MAX_TOKENS, CHAT_TEMPERATURE
from ..core.exceptions import LLMUnavailableError
from ..core.schema import Anomaly, ConversationMessage, FeatureFlag, ImpactPrediction, MessageRole
from ..util.logging import logger

HISTORY_LIMIT = 10
SUMMARY_PREDICTIONS = 3

EMPTY_REPLY = "I apologize, but I encountered an issue processing your request. Please try again."
ERROR_REPLY = "I encountered an error processing your request. Please try again."


def _fmt_percent(value: float) -> str:
    return f"{value:g}"


def build_system_prompt(flags: List[FeatureFlag], anomalies: List[Anomaly],
                        predictions: List[ImpactPrediction]) -> str:
    """System instruction carrying the current state of the deployment."""
    flag_lines = ", ".join(
        f"{f.name} ({'enabled' if f.enabled else 'disabled'}, {_fmt_percent(f.rollout_percentage)}% rollout)"
        for f in flags
    ) or "None"
    prediction_lines = ", ".join(
        f"{p.flag_name}: {p.risk_level} risk" for p in predictions[:SUMMARY_PREDICTIONS]
    ) or "None"

    anomaly_block = ""
    if anomalies:
        anomaly_block = "\nActive Anomalies:\n" + "\n".join(
            f"- {a.flag_name}: {a.message} ({a.severity})" for a in anomalies
        )

    return f"""You are an AI assistant for Feature Flag Impact Analysis. You help users understand:
- Current feature flag states and their configurations
- Impact predictions for flag changes
- Active anomalies and recommended actions
- Historical patterns and insights

Current System State:
- Active Flags: {len(flags)}
- Flags: {flag_lines}
- Active Anomalies: {len(anomalies)}
- Recent Predictions: {prediction_lines}
{anomaly_block}

Be concise, helpful, and proactive in suggesting actions. If users ask about specific flags, provide detailed analysis."""


class ConversationalAssistant:
    """Answers questions about the monitored flags using the shared model client."""

    def __init__(self, llm: BaseLLMClient,
                 max_tokens: int = CHAT_MAX_TOKENS,
                 temperature: float = CHAT_TEMPERATURE):
        self.llm = llm
        self.max_tokens = max_tokens
        self.temperature = temperature

    def chat(self, message: str, session_id: str) -> Dict[str, Any]:
        """
        Process one user message for a session.

        Returns:
            dict with message, sessionId and (on success) context counts
        """
        user_message = dao.add_message(
            ConversationMessage(session_id=session_id, role=MessageRole.USER, content=message)
        )

        # The new message goes last, so it is dropped from the replayed history
        history = dao.list_session_messages(session_id, HISTORY_LIMIT)

        flags = dao.list_flags()
        predictions = dao.list_predictions()
        anomalies = dao.list_anomalies(unresolved_only=True)

        messages = [LLMMessage(role="system", content=build_system_prompt(flags, anomalies, predictions))]
        messages.extend(
            LLMMessage(role=h.role, content=h.content)
            for h in history
            if h.id != user_message.id and h.role in (MessageRole.USER.value, MessageRole.ASSISTANT.value)
        )
        messages.append(LLMMessage(role="user", content=message))

        try:
            reply = self.llm.complete(messages, max_tokens=self.max_tokens, temperature=self.temperature)
        except LLMUnavailableError as e:
            logger.log_chat(session_id, len(history), status="error", error=str(e))
            return {"message": ERROR_REPLY, "sessionId": session_id}

        reply = reply or EMPTY_REPLY
        dao.add_message(ConversationMessage(
            session_id=session_id,
            role=MessageRole.ASSISTANT,
            content=reply,
            metadata={"flagsDiscussed": [f.id for f in flags]},
        ))
        logger.log_chat(session_id, len(history))

        return {
            "message": reply,
            "sessionId": session_id,
            "context": {
                "flagCount": len(flags),
                "anomalyCount": len(anomalies),
                "predictionCount": len(predictions),
            },
        }
