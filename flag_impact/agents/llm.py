"""
Language model clients.

The analyzer needs a single capability from a model: take an ordered list of
role-tagged messages plus an output-length budget and a sampling temperature,
and return free text.
"""

import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List

import ollama

from ..core.config import OLLAMA_HOST, OLLAMA_MODEL, get_llm_provider
from ..core.exceptions import LLMUnavailableError
from ..util.logging import logger


@dataclass
class LLMMessage:
    """Message format sent to a language model."""
    role: str  # "user", "assistant", or "system"
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


class BaseLLMClient(ABC):
    """
    Abstract base class for language model completion backends.
    Implementations raise LLMUnavailableError when the call itself fails.
    """

    def __init__(self, model_name: str):
        self.model_name = model_name

    @abstractmethod
    def complete(self, messages: List[LLMMessage], max_tokens: int, temperature: float) -> str:
        """
        Run one completion.

        Args:
            messages: Ordered conversation, system instruction first
            max_tokens: Output length budget
            temperature: Sampling temperature

        Returns:
            The raw model text (may be empty)
        """
        pass

    def get_status(self) -> Dict[str, Any]:
        """Get current status of this client."""
        return {
            "provider": self.__class__.__name__,
            "model": self.model_name,
        }


class OllamaClient(BaseLLMClient):
    """Completion backend talking to an Ollama server."""

    def __init__(self, model_name: str = OLLAMA_MODEL, host: str = OLLAMA_HOST):
        super().__init__(model_name)
        self.host = host
        self.client = ollama.Client(host=host)

    def complete(self, messages: List[LLMMessage], max_tokens: int, temperature: float) -> str:
        start_time = time.perf_counter()
        try:
            response = self.client.chat(
                model=self.model_name,
                messages=[m.to_dict() for m in messages],
                options={
                    "temperature": temperature,
                    "num_predict": max_tokens,
                },
            )
        except ollama.ResponseError as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.log_llm_call("complete", self.model_name, duration_ms, status="error", error=str(e))
            raise LLMUnavailableError(f"Ollama model error: {e}") from e
        except Exception as e:
            # Connection refused, timeouts and transport errors from the client
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.log_llm_call("complete", self.model_name, duration_ms, status="error", error=str(e))
            raise LLMUnavailableError(f"Ollama unavailable: {e}") from e

        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.log_llm_call("complete", self.model_name, duration_ms)
        return response["message"]["content"] or ""

    def get_status(self) -> Dict[str, Any]:
        status = super().get_status()
        status.update({
            "host": self.host,
            "available": check_ollama_health(self.client),
        })
        return status


class MockLLMClient(BaseLLMClient):
    """
    Deterministic stand-in used for development and when no model server is available.
    Answers JSON-shaped requests with a fixed low-risk assessment and everything
    else with a short canned reply.
    """

    ASSESSMENT = {
        "riskLevel": "low",
        "riskScore": 20,
        "predictedImpact": {
            "errorRateChange": 0,
            "latencyChange": 0,
            "userImpactPercentage": 0,
        },
        "recommendations": ["Roll out gradually and watch error rates"],
        "reasoning": "Mock analysis: no model server configured.",
        "confidence": 0.6,
    }

    def __init__(self, model_name: str = "mock-model"):
        super().__init__(model_name)
        self.calls: List[List[LLMMessage]] = []

    def complete(self, messages: List[LLMMessage], max_tokens: int, temperature: float) -> str:
        self.calls.append(list(messages))
        system = messages[0].content if messages and messages[0].role == "system" else ""
        if "JSON" in system:
            return json.dumps(self.ASSESSMENT)

        question = messages[-1].content if messages else ""
        return (
            "I'm running in mock mode without a language model. "
            f"You asked: {question[:200]}"
        )


def check_ollama_health(client: ollama.Client = None) -> bool:
    """Check that the Ollama service answers."""
    try:
        (client or ollama.Client(host=OLLAMA_HOST)).list()
        return True
    except Exception:
        return False


def get_llm_client() -> BaseLLMClient:
    """Get the configured completion backend."""
    if get_llm_provider() == "mock":
        return MockLLMClient()
    return OllamaClient()
