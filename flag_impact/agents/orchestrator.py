"""
Feature flag agent - the single owner of all analyzer state.

Coordinates change recording -> impact prediction -> anomaly scan -> fan-out,
metrics ingestion -> anomaly scan, and chat. Every public operation runs to
completion under one lock, so at most one operation touches the stores at a
time; a slow model call delays later operations but cannot interleave with
them.
"""

import threading
from typing import Any, Dict, List, Optional, Tuple

from .assistant import ConversationalAssistant
from .llm import BaseLLMClient, get_llm_client
from ..core import dao
from ..core.detector import AnomalyDetector
from ..core.exceptions import AnomalyNotFoundError, FlagAlreadyExistsError, FlagNotFoundError
from ..core.prediction import PredictionEngine
from ..core.schema import (
    Anomaly,
    ChangeType,
    FeatureFlag,
    FlagChange,
    ImpactMetrics,
    ImpactPrediction,
    new_id,
    utc_now_iso,
)
from ..core.sessions import OutboundChannel, SessionRegistry
from ..util.logging import logger

ANALYSIS_ACTOR = "manual_analysis"


class FeatureFlagAgent:
    """
    One agent per deployment. Owns the detector, the prediction engine, the
    assistant and the registry of live sessions.
    """

    def __init__(self, llm: Optional[BaseLLMClient] = None):
        self.llm = llm or get_llm_client()
        self.sessions = SessionRegistry()
        self.detector = AnomalyDetector(on_anomaly=self._announce_anomaly)
        self.prediction_engine = PredictionEngine(self.llm)
        self.assistant = ConversationalAssistant(self.llm)
        self._lock = threading.RLock()

    # Sessions

    def connect(self, channel: OutboundChannel, session_id: Optional[str] = None) -> str:
        with self._lock:
            return self.sessions.register(channel, session_id)

    def disconnect(self, session_id: str) -> None:
        with self._lock:
            self.sessions.unregister(session_id)

    def broadcast(self, event_type: str, payload: Any) -> int:
        with self._lock:
            return self.sessions.broadcast(event_type, payload)

    def _announce_anomaly(self, anomaly: Anomaly) -> None:
        self.broadcast("anomaly_detected", anomaly.to_json_dict())

    # Flags

    def list_flags(self) -> List[FeatureFlag]:
        with self._lock:
            return dao.list_flags()

    def get_flag(self, flag_id: str) -> FeatureFlag:
        with self._lock:
            flag = dao.get_flag(flag_id)
            if flag is None:
                raise FlagNotFoundError(flag_id)
            return flag

    def create_flag(self, name: str, flag_id: Optional[str] = None, description: str = "",
                    enabled: bool = False, rollout_percentage: float = 0,
                    target_environment: str = "development", owner: str = "system",
                    tags: Optional[List[str]] = None) -> FeatureFlag:
        """Create a flag and log exactly one `created` change for it."""
        with self._lock:
            flag_id = flag_id or new_id()
            if dao.get_flag(flag_id) is not None:
                raise FlagAlreadyExistsError(flag_id)

            now = utc_now_iso()
            flag = FeatureFlag(
                id=flag_id,
                name=name,
                description=description or "",
                enabled=enabled,
                rollout_percentage=rollout_percentage or 0,
                target_environment=target_environment or "development",
                owner=owner or "system",
                tags=tags or [],
                created_at=now,
                updated_at=now,
            )
            dao.create_flag(flag)

            dao.add_change(FlagChange(
                flag_id=flag.id,
                flag_name=flag.name,
                change_type=ChangeType.CREATED,
                previous_value=None,
                new_value=flag,
                changed_by=flag.owner,
                changed_at=now,
                environment=flag.target_environment,
            ))
            logger.log_flag_operation("created", flag.id, flag.name)

            self.broadcast("flag_created", flag.to_json_dict())
            return flag

    def record_change(self, change: FlagChange) -> Tuple[FlagChange, ImpactPrediction]:
        """
        Log a change, apply it to the flag, predict its impact and rescan the
        flag's metrics. The declared change type is trusted as given.
        """
        with self._lock:
            change.id = change.id or new_id()
            change.changed_at = change.changed_at or utc_now_iso()

            dao.add_change(change)
            self._apply_change(change)
            logger.log_flag_operation("changed", change.flag_id, change.flag_name,
                                      details={"change_type": change.change_type, "changed_by": change.changed_by})

            prediction = self.prediction_engine.predict(change)
            self.detector.detect(change.flag_id)

            self.broadcast("flag_changed", {
                "change": change.to_json_dict(),
                "prediction": prediction.to_json_dict(),
            })
            return change, prediction

    def _apply_change(self, change: FlagChange) -> Optional[FeatureFlag]:
        """Mutate the stored flag to reflect a toggle or rollout change."""
        new_value = change.new_value
        if isinstance(new_value, FeatureFlag):
            new_value = new_value.model_dump(by_alias=True)

        enabled = None
        rollout = None
        if change.change_type == ChangeType.ENABLED.value:
            enabled = True
        elif change.change_type == ChangeType.DISABLED.value:
            enabled = False
        elif isinstance(new_value, dict) and isinstance(new_value.get("enabled"), bool):
            enabled = new_value["enabled"]

        if isinstance(new_value, dict):
            raw = new_value.get("rolloutPercentage", new_value.get("rollout_percentage"))
            if isinstance(raw, (int, float)) and not isinstance(raw, bool):
                rollout = min(max(float(raw), 0.0), 100.0)

        if enabled is None and rollout is None:
            return None
        return dao.update_flag_state(change.flag_id, enabled=enabled, rollout_percentage=rollout)

    # Metrics

    def record_metrics(self, metrics: ImpactMetrics) -> ImpactMetrics:
        with self._lock:
            metrics.timestamp = metrics.timestamp or utc_now_iso()
            dao.add_metrics(metrics)
            logger.log_metrics_ingest(metrics.flag_id, metrics.error_rate, metrics.latency_p50)

            self.detector.detect(metrics.flag_id)
            return metrics

    # Analysis

    def analyze_flag(self, flag_id: str) -> Tuple[FeatureFlag, ImpactPrediction]:
        """Run prediction and detection for a flag's current state as if it had just been enabled."""
        with self._lock:
            flag = dao.get_flag(flag_id)
            if flag is None:
                raise FlagNotFoundError(flag_id)

            change = FlagChange(
                flag_id=flag.id,
                flag_name=flag.name,
                change_type=ChangeType.ENABLED,
                previous_value=None,
                new_value=flag,
                changed_by=ANALYSIS_ACTOR,
                changed_at=utc_now_iso(),
                environment=flag.target_environment,
            )

            prediction = self.prediction_engine.predict(change)
            self.detector.detect(flag_id)
            logger.log_flag_operation("analyzed", flag.id, flag.name)

            return dao.get_flag(flag_id) or flag, prediction

    def list_anomalies(self) -> List[Anomaly]:
        with self._lock:
            return dao.list_anomalies(unresolved_only=True)

    def resolve_anomaly(self, anomaly_id: str) -> Anomaly:
        with self._lock:
            anomaly = dao.resolve_anomaly(anomaly_id)
            if anomaly is None:
                raise AnomalyNotFoundError(anomaly_id)
            logger.log_operation("anomaly.resolved", "success", {"anomaly_id": anomaly_id})
            return anomaly

    def list_predictions(self) -> List[ImpactPrediction]:
        with self._lock:
            return dao.list_predictions()

    # Chat

    def chat(self, message: str, session_id: Optional[str] = None) -> Dict[str, Any]:
        with self._lock:
            return self.assistant.chat(message, session_id or new_id())

    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "flag_count": dao.get_flag_count(),
                "active_sessions": len(self.sessions),
                "llm": self.llm.get_status(),
            }
