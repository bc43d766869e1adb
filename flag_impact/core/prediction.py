"""
Impact prediction for flag changes.

Builds a prompt from the change, the flag's historical metrics and its recent
change history, asks the language model for a JSON risk assessment and stores
the result as the flag's current prediction. Every path yields a prediction:
malformed model output and model-call failures are replaced by fixed
fallbacks with distinct confidence values.
"""

import json
import math
import re
from typing import Any, Dict, List, Optional

from pydantic import ValidationError, ValidationInfo, field_validator

from . import dao
from .config import PREDICTION_MAX_TOKENS, PREDICTION_TEMPERATURE
from .exceptions import LLMUnavailableError
from .schema import (
    CamelModel,
    FeatureFlag,
    FlagChange,
    ImpactMetrics,
    ImpactPrediction,
    PredictedImpact,
    RiskLevel,
    snapshot_to_jsonable,
)
from ..agents.llm import BaseLLMClient, LLMMessage
from ..util.logging import logger

HISTORY_LIMIT = 100
RECENT_CHANGES_LIMIT = 20
PROMPT_CHANGE_COUNT = 5

SYSTEM_PROMPT = """You are an expert feature flag impact analyzer. Analyze feature flag changes and predict their impact on system performance and user experience.

Respond in JSON format with this structure:
{
  "riskLevel": "low" | "medium" | "high" | "critical",
  "riskScore": 0-100,
  "predictedImpact": {
    "errorRateChange": percentage change (can be negative),
    "latencyChange": percentage change in ms,
    "userImpactPercentage": percentage of users affected
  },
  "recommendations": ["recommendation 1", "recommendation 2"],
  "reasoning": "detailed explanation",
  "confidence": 0-1
}"""

PARSE_FALLBACK = {
    "risk_level": RiskLevel.MEDIUM,
    "risk_score": 50,
    "recommendations": ["Monitor closely after deployment"],
    "reasoning": "Unable to fully analyze - recommend manual review",
    "confidence": 0.5,
}

ERROR_FALLBACK = {
    "risk_level": RiskLevel.MEDIUM,
    "risk_score": 50,
    "recommendations": ["Manual review recommended due to analysis error"],
    "reasoning": "Automated analysis unavailable",
    "confidence": 0.3,
}

_JSON_SPAN = re.compile(r"\{.*\}", re.DOTALL)


DEFAULT_RISK_SCORE = 50.0
DEFAULT_CONFIDENCE = 0.7


def _finite_or(value: float, default: float) -> float:
    return value if math.isfinite(value) else default


class ModelImpact(CamelModel):
    """Impact block as the model returns it. Null or non-finite numbers read as zero."""
    error_rate_change: float = 0.0
    latency_change: float = 0.0
    user_impact_percentage: float = 0.0

    @field_validator("error_rate_change", "latency_change", "user_impact_percentage", mode="before")
    @classmethod
    def null_is_zero(cls, v):
        return 0.0 if v is None else v

    @field_validator("error_rate_change", "latency_change", "user_impact_percentage")
    @classmethod
    def finite_or_zero(cls, v):
        return _finite_or(v, 0.0)


class ModelAssessment(CamelModel):
    """
    The JSON object the model is asked to return.

    Missing or null fields take defaults and non-finite numbers are replaced,
    so one bad field never discards the rest of the assessment.
    """
    risk_level: Optional[str] = None
    risk_score: float = DEFAULT_RISK_SCORE
    predicted_impact: Optional[ModelImpact] = None
    recommendations: List[str] = []
    reasoning: str = ""
    confidence: float = DEFAULT_CONFIDENCE

    @field_validator("risk_score", "confidence", "reasoning", mode="before")
    @classmethod
    def null_takes_default(cls, v, info: ValidationInfo):
        if v is None:
            return cls.model_fields[info.field_name].get_default()
        return v

    @field_validator("recommendations", mode="before")
    @classmethod
    def drop_null_recommendations(cls, v):
        if v is None:
            return []
        if isinstance(v, list):
            return [item for item in v if item is not None]
        return v

    @field_validator("risk_level")
    @classmethod
    def known_level_or_medium(cls, v):
        if v is None:
            return None
        level = str(v).lower()
        return level if level in [r.value for r in RiskLevel] else RiskLevel.MEDIUM.value

    @field_validator("risk_score")
    @classmethod
    def clamp_score(cls, v):
        return min(max(_finite_or(v, DEFAULT_RISK_SCORE), 0.0), 100.0)

    @field_validator("confidence")
    @classmethod
    def clamp_confidence(cls, v):
        return min(max(_finite_or(v, DEFAULT_CONFIDENCE), 0.0), 1.0)


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _rollout_of(snapshot: Any) -> float:
    if isinstance(snapshot, FeatureFlag):
        return snapshot.rollout_percentage
    if isinstance(snapshot, dict):
        value = snapshot.get("rolloutPercentage", snapshot.get("rollout_percentage"))
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    return 0.0


def build_prediction_prompt(change: FlagChange, metrics: List[ImpactMetrics],
                            recent_changes: List[FlagChange]) -> str:
    """Render the change and its context as the user instruction."""
    avg_error_rate = _mean([m.error_rate for m in metrics])
    avg_latency = _mean([m.latency_p50 for m in metrics])
    total_requests = sum(m.request_count for m in metrics)

    history = "\n".join(
        f"- {c.change_type} at {c.changed_at}" for c in recent_changes[:PROMPT_CHANGE_COUNT]
    )

    return f"""
Analyze this feature flag change and predict its impact:

## Flag Change Details
- Flag Name: {change.flag_name}
- Change Type: {change.change_type}
- Previous Value: {json.dumps(snapshot_to_jsonable(change.previous_value))}
- New Value: {json.dumps(snapshot_to_jsonable(change.new_value))}
- Environment: {change.environment}
- Changed By: {change.changed_by}

## Historical Metrics (Last {len(metrics)} data points)
- Average Error Rate: {avg_error_rate:.2f}%
- Average Latency (P50): {avg_latency:.2f}ms
- Total Request Count: {total_requests}

## Recent Change History
{history}

Based on this information, predict the impact of this change on system performance and user experience.
Consider:
1. The type of change (enable/disable/rollout change)
2. Historical patterns and metrics
3. The target environment ({change.environment})
4. Rollout percentage impact

Provide your analysis in JSON format.
"""


def parse_model_response(text: str) -> Optional[ModelAssessment]:
    """Extract and validate the JSON assessment embedded in the model text."""
    match = _JSON_SPAN.search(text or "")
    if not match:
        return None

    try:
        return ModelAssessment.model_validate(json.loads(match.group(0)))
    except (json.JSONDecodeError, ValidationError, TypeError):
        return None


class PredictionEngine:
    """Turns a flag change into a stored ImpactPrediction."""

    def __init__(self, llm: BaseLLMClient,
                 max_tokens: int = PREDICTION_MAX_TOKENS,
                 temperature: float = PREDICTION_TEMPERATURE):
        self.llm = llm
        self.max_tokens = max_tokens
        self.temperature = temperature

    def predict(self, change: FlagChange,
                historical_metrics: Optional[List[ImpactMetrics]] = None,
                recent_changes: Optional[List[FlagChange]] = None) -> ImpactPrediction:
        """
        Generate, store and return the prediction for a change.

        History defaults to what the stores hold for the flag (up to 100
        samples and 20 changes).
        """
        if historical_metrics is None:
            historical_metrics = dao.list_metrics(change.flag_id, HISTORY_LIMIT)
        if recent_changes is None:
            recent_changes = dao.list_changes(change.flag_id, RECENT_CHANGES_LIMIT)

        prompt = build_prediction_prompt(
            change, historical_metrics[:HISTORY_LIMIT], recent_changes[:RECENT_CHANGES_LIMIT]
        )

        try:
            response_text = self.llm.complete(
                [
                    LLMMessage(role="system", content=SYSTEM_PROMPT),
                    LLMMessage(role="user", content=prompt),
                ],
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except LLMUnavailableError as e:
            prediction = self._fallback(change, ERROR_FALLBACK)
            logger.log_prediction(change.flag_id, prediction.risk_level, prediction.confidence,
                                  status="fallback", reason=str(e))
            return dao.upsert_prediction(prediction)

        assessment = parse_model_response(response_text)
        if assessment is None:
            prediction = self._fallback(change, PARSE_FALLBACK)
            logger.log_prediction(change.flag_id, prediction.risk_level, prediction.confidence,
                                  status="fallback", reason="unparseable model output")
            return dao.upsert_prediction(prediction)

        prediction = ImpactPrediction(
            flag_id=change.flag_id,
            flag_name=change.flag_name,
            risk_level=assessment.risk_level or RiskLevel.MEDIUM,
            risk_score=assessment.risk_score,
            predicted_impact=(
                PredictedImpact(**assessment.predicted_impact.model_dump())
                if assessment.predicted_impact is not None
                else PredictedImpact(user_impact_percentage=_rollout_of(change.new_value))
            ),
            recommendations=assessment.recommendations,
            reasoning=assessment.reasoning,
            confidence=assessment.confidence,
        )
        logger.log_prediction(prediction.flag_id, prediction.risk_level, prediction.confidence)
        return dao.upsert_prediction(prediction)

    @staticmethod
    def _fallback(change: FlagChange, fields: Dict[str, Any]) -> ImpactPrediction:
        return ImpactPrediction(
            flag_id=change.flag_id,
            flag_name=change.flag_name,
            predicted_impact=PredictedImpact(),
            **fields,
        )
