"""
Anomaly detection by rolling-window comparison.

The newest samples for a flag form the recent window, the older samples in the
fetched set form the baseline. Error-rate and P50-latency means are compared
against fixed ratio thresholds.
"""

from typing import Callable, Dict, List, Optional, Tuple

from . import dao
from .config import dedup_enabled
from .schema import Anomaly, AnomalyType, ImpactMetrics, Severity
from ..util.logging import logger

WINDOW_LIMIT = 50
RECENT_SIZE = 5

ERROR_SPIKE_RATIO = 1.5
ERROR_CRITICAL_RATIO = 2.0
ERROR_RATE_FLOOR = 1.0

LATENCY_SPIKE_RATIO = 2.0
LATENCY_CRITICAL_RATIO = 3.0


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _increase_message(prefix: str, recent: float, baseline: float, unit: str) -> str:
    if baseline > 0:
        return f"{prefix} increased by {(recent / baseline - 1) * 100:.1f}%"
    return f"{prefix} increased from 0.00{unit} to {recent:.2f}{unit}"


class AnomalyDetector:
    """
    Scans a flag's metrics window and emits error/latency spike anomalies.

    Every emitted anomaly is persisted and handed to `on_anomaly` (the
    broadcast hook). When duplicate suppression is on, a scan over the exact
    window evaluated last time for that flag emits nothing.
    """

    def __init__(self, on_anomaly: Optional[Callable[[Anomaly], None]] = None):
        self.on_anomaly = on_anomaly
        self._last_window: Dict[str, Tuple[int, ...]] = {}

    def detect(self, flag_id: str) -> List[Anomaly]:
        samples = dao.list_metrics_with_ids(flag_id, WINDOW_LIMIT)

        # Insufficient data is a no-op
        if len(samples) < RECENT_SIZE:
            return []

        recent = [metrics for _, metrics in samples[:RECENT_SIZE]]
        baseline = [metrics for _, metrics in samples[RECENT_SIZE:]]
        if not baseline:
            return []

        window = tuple(sample_id for sample_id, _ in samples)
        if dedup_enabled() and self._last_window.get(flag_id) == window:
            logger.log_operation("anomaly.scan", "skipped", {"flag_id": flag_id, "reason": "unchanged_window"})
            return []
        self._last_window[flag_id] = window

        flag = dao.get_flag(flag_id)
        flag_name = flag.name if flag else flag_id

        anomalies = []
        for anomaly in (
            self._check_error_spike(flag_id, flag_name, recent, baseline),
            self._check_latency_spike(flag_id, flag_name, recent, baseline),
        ):
            if anomaly is not None:
                anomalies.append(self._emit(anomaly))

        return anomalies

    def _check_error_spike(self, flag_id: str, flag_name: str,
                           recent: List[ImpactMetrics], baseline: List[ImpactMetrics]) -> Optional[Anomaly]:
        recent_error = _mean([m.error_rate for m in recent])
        baseline_error = _mean([m.error_rate for m in baseline])

        if not (recent_error > baseline_error * ERROR_SPIKE_RATIO and recent_error > ERROR_RATE_FLOOR):
            return None

        severity = Severity.CRITICAL if recent_error >= baseline_error * ERROR_CRITICAL_RATIO else Severity.WARNING
        message = _increase_message("Error rate", recent_error, baseline_error, "%") + " since flag change"

        return Anomaly(
            flag_id=flag_id,
            flag_name=flag_name,
            type=AnomalyType.ERROR_SPIKE,
            severity=severity,
            metrics=recent[0],
            message=message,
        )

    def _check_latency_spike(self, flag_id: str, flag_name: str,
                             recent: List[ImpactMetrics], baseline: List[ImpactMetrics]) -> Optional[Anomaly]:
        recent_latency = _mean([m.latency_p50 for m in recent])
        baseline_latency = _mean([m.latency_p50 for m in baseline])

        if not recent_latency > baseline_latency * LATENCY_SPIKE_RATIO:
            return None

        severity = Severity.CRITICAL if recent_latency > baseline_latency * LATENCY_CRITICAL_RATIO else Severity.WARNING

        return Anomaly(
            flag_id=flag_id,
            flag_name=flag_name,
            type=AnomalyType.LATENCY_SPIKE,
            severity=severity,
            metrics=recent[0],
            message=_increase_message("P50 latency", recent_latency, baseline_latency, "ms"),
        )

    def _emit(self, anomaly: Anomaly) -> Anomaly:
        dao.add_anomaly(anomaly)
        logger.log_anomaly(anomaly.type, anomaly.severity, anomaly.flag_id, anomaly.message)
        if self.on_anomaly is not None:
            self.on_anomaly(anomaly)
        return anomaly
