"""
Request and response models for the HTTP and WebSocket surfaces.
"""

from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator

from ..core.schema import (
    CamelModel,
    FeatureFlag,
    FlagChange,
    ImpactMetrics,
    ImpactPrediction,
    TargetEnvironment,
)


class FlagCreateRequest(CamelModel):
    id: Optional[str] = None
    name: str
    description: str = ""
    enabled: bool = False
    rollout_percentage: float = Field(default=0, ge=0, le=100)
    target_environment: TargetEnvironment = Field(default=TargetEnvironment.DEVELOPMENT, validate_default=True)
    owner: str = "system"
    tags: List[str] = Field(default_factory=list)

    @field_validator('name')
    @classmethod
    def name_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('name cannot be empty')
        return v


class ChangeResponse(CamelModel):
    change: FlagChange
    prediction: ImpactPrediction


class MetricsResponse(CamelModel):
    success: bool
    metrics: ImpactMetrics


class ChatRequest(CamelModel):
    message: str
    session_id: Optional[str] = None


class ChatContext(CamelModel):
    flag_count: int
    anomaly_count: int
    prediction_count: int


class ChatResponse(CamelModel):
    message: str
    session_id: str
    context: Optional[ChatContext] = None


class AnalyzeRequest(CamelModel):
    flag_id: str


class AnalyzeResponse(CamelModel):
    flag: FeatureFlag
    prediction: ImpactPrediction


class HealthResponse(CamelModel):
    status: str
    version: str
    db_health: bool
    flag_count: int
    active_sessions: int
    llm: Dict[str, Any]
    timestamp: str


class StreamMessage(CamelModel):
    """Inbound WebSocket frame."""
    type: str
    payload: Optional[Dict[str, Any]] = None
