"""
Conversational assistant tests.
"""

from unittest.mock import MagicMock

from flag_impact.agents.assistant import (
    EMPTY_REPLY,
    ERROR_REPLY,
    ConversationalAssistant,
    build_system_prompt,
)
from flag_impact.agents.llm import BaseLLMClient
from flag_impact.core import dao
from flag_impact.core.exceptions import LLMUnavailableError
from flag_impact.core.schema import ConversationMessage, FeatureFlag, ImpactPrediction

SESSION = "session-1"


def make_llm(reply="All flags look healthy."):
    llm = MagicMock(spec=BaseLLMClient)
    llm.complete.return_value = reply
    return llm


def seed_flags():
    dao.create_flag(FeatureFlag(id="f1", name="dark-mode", enabled=True, rollout_percentage=50))
    dao.create_flag(FeatureFlag(id="f2", name="new-checkout"))


def test_system_prompt_summarizes_state():
    flags = [FeatureFlag(id="f1", name="dark-mode", enabled=True, rollout_percentage=50)]
    predictions = [ImpactPrediction(flag_id="f1", flag_name="dark-mode", risk_level="high")]

    prompt = build_system_prompt(flags, [], predictions)

    assert "Active Flags: 1" in prompt
    assert "dark-mode (enabled, 50% rollout)" in prompt
    assert "Active Anomalies: 0" in prompt
    assert "dark-mode: high risk" in prompt


def test_system_prompt_with_nothing_monitored():
    prompt = build_system_prompt([], [], [])

    assert "Flags: None" in prompt
    assert "Recent Predictions: None" in prompt


def test_chat_returns_reply_and_context():
    seed_flags()
    llm = make_llm()
    assistant = ConversationalAssistant(llm, max_tokens=512, temperature=0.7)

    response = assistant.chat("How are my flags?", SESSION)

    assert response == {
        "message": "All flags look healthy.",
        "sessionId": SESSION,
        "context": {"flagCount": 2, "anomalyCount": 0, "predictionCount": 0},
    }
    assert llm.complete.call_args.kwargs == {"max_tokens": 512, "temperature": 0.7}


def test_chat_stores_both_turns_with_metadata():
    seed_flags()
    ConversationalAssistant(make_llm()).chat("How are my flags?", SESSION)

    stored = dao.list_session_messages(SESSION)

    assert [(m.role, m.content) for m in stored] == [
        ("user", "How are my flags?"),
        ("assistant", "All flags look healthy."),
    ]
    assert sorted(stored[1].metadata["flagsDiscussed"]) == ["f1", "f2"]


def test_user_message_sent_once_after_history():
    llm = make_llm()
    assistant = ConversationalAssistant(llm)

    assistant.chat("first question", SESSION)
    assistant.chat("second question", SESSION)

    messages = llm.complete.call_args.args[0]
    assert [(m.role, m.content) for m in messages[1:]] == [
        ("user", "first question"),
        ("assistant", "All flags look healthy."),
        ("user", "second question"),
    ]
    assert messages[0].role == "system"


def test_history_limited_to_recent_messages():
    for i in range(12):
        role = "user" if i % 2 == 0 else "assistant"
        dao.add_message(ConversationMessage(session_id=SESSION, role=role, content=f"m{i}"))
    llm = make_llm()

    ConversationalAssistant(llm).chat("latest", SESSION)

    messages = llm.complete.call_args.args[0]
    # system + 9 replayed + the new message
    assert len(messages) == 11
    assert messages[1].content == "m3"
    assert messages[-1].content == "latest"


def test_sessions_do_not_share_history():
    llm = make_llm()
    assistant = ConversationalAssistant(llm)

    assistant.chat("about session one", "s1")
    assistant.chat("about session two", "s2")

    messages = llm.complete.call_args.args[0]
    assert [m.content for m in messages[1:]] == ["about session two"]


def test_empty_reply_replaced_with_apology():
    response = ConversationalAssistant(make_llm("")).chat("hello", SESSION)

    assert response["message"] == EMPTY_REPLY
    assert dao.list_session_messages(SESSION)[-1].content == EMPTY_REPLY


def test_model_failure_returns_error_reply_without_storing_it():
    llm = MagicMock(spec=BaseLLMClient)
    llm.complete.side_effect = LLMUnavailableError("model offline")

    response = ConversationalAssistant(llm).chat("hello", SESSION)

    assert response == {"message": ERROR_REPLY, "sessionId": SESSION}
    stored = dao.list_session_messages(SESSION)
    assert [m.role for m in stored] == ["user"]
