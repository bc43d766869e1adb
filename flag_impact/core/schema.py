"""
Domain records for the feature flag impact analyzer.
All records serialize with camelCase field names and accept snake_case on input.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )

    def to_json_dict(self) -> Dict[str, Any]:
        """JSON-ready dict using the public camelCase field names."""
        return self.model_dump(mode="json", by_alias=True)


class TargetEnvironment(str, Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class ChangeType(str, Enum):
    CREATED = "created"
    ENABLED = "enabled"
    DISABLED = "disabled"
    ROLLOUT_CHANGED = "rollout_changed"
    DELETED = "deleted"


class RiskLevel(str, Enum):
    """Ordered low < medium < high < critical."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AnomalyType(str, Enum):
    ERROR_SPIKE = "error_spike"
    LATENCY_SPIKE = "latency_spike"
    CONVERSION_DROP = "conversion_drop"
    ROLLBACK_RECOMMENDED = "rollback_recommended"


class Severity(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class FeatureFlag(CamelModel):
    id: str
    name: str
    description: str = ""
    enabled: bool = False
    rollout_percentage: float = Field(default=0, ge=0, le=100)
    target_environment: TargetEnvironment = Field(default=TargetEnvironment.DEVELOPMENT, validate_default=True)
    owner: str = "system"
    tags: List[str] = Field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


# Known flag shape first, arbitrary caller document as the escape hatch
FlagSnapshot = Optional[Union[FeatureFlag, Dict[str, Any]]]


def snapshot_to_jsonable(snapshot: FlagSnapshot) -> Any:
    """Render a change snapshot as plain JSON data."""
    if isinstance(snapshot, BaseModel):
        return snapshot.model_dump(mode="json", by_alias=True)
    return snapshot


class FlagChange(CamelModel):
    id: str = Field(default_factory=new_id)
    flag_id: str
    flag_name: str = ""
    change_type: ChangeType
    previous_value: FlagSnapshot = Field(default=None, union_mode="left_to_right")
    new_value: FlagSnapshot = Field(default=None, union_mode="left_to_right")
    changed_by: str = "system"
    changed_at: Optional[str] = None
    environment: str = TargetEnvironment.DEVELOPMENT.value


class ImpactMetrics(CamelModel):
    flag_id: str
    timestamp: Optional[str] = None
    error_rate: float
    latency_p50: float
    latency_p99: float = 0.0
    request_count: int = Field(default=0, ge=0)
    conversion_rate: float = 0.0
    user_satisfaction_score: float = 0.0


class PredictedImpact(CamelModel):
    error_rate_change: float = 0.0
    latency_change: float = 0.0
    user_impact_percentage: float = 0.0


class ImpactPrediction(CamelModel):
    flag_id: str
    flag_name: str = ""
    risk_level: RiskLevel = Field(default=RiskLevel.MEDIUM, validate_default=True)
    risk_score: float = 50
    predicted_impact: PredictedImpact = Field(default_factory=PredictedImpact)
    recommendations: List[str] = Field(default_factory=list)
    reasoning: str = ""
    confidence: float = 0.7
    generated_at: str = Field(default_factory=utc_now_iso)


class Anomaly(CamelModel):
    id: str = Field(default_factory=new_id)
    flag_id: str
    flag_name: str
    type: AnomalyType
    severity: Severity
    detected_at: str = Field(default_factory=utc_now_iso)
    metrics: ImpactMetrics
    message: str
    resolved: bool = False


class ConversationMessage(CamelModel):
    id: str = Field(default_factory=new_id)
    session_id: str
    role: MessageRole
    content: str
    timestamp: str = Field(default_factory=utc_now_iso)
    metadata: Optional[Dict[str, Any]] = None
