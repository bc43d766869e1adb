"""Structured logging utility for the feature flag impact analyzer."""

import logging
import sys
from typing import Dict, Any, Optional


class StructuredLogger:
    """Structured logger for flag, metrics, anomaly, prediction and chat operations."""

    def __init__(self, name: str = "flag_impact", level: int = logging.INFO):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setLevel(level)
            formatter = logging.Formatter(
                '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str = "success",
                      details: Optional[Dict[str, Any]] = None,
                      duration_ms: Optional[float] = None):
        """Log structured operation with status and optional timing."""
        message_parts = [f"operation={operation}", f"status={status}"]

        if duration_ms is not None:
            message_parts.append(f"duration_ms={duration_ms:.2f}")

        if details:
            detail_str = " ".join([f"{k}={v}" for k, v in details.items()])
            message_parts.append(detail_str)

        message = " | ".join(message_parts)

        if status in ("success", "detected", "fallback"):
            self.logger.info(message)
        elif status == "error":
            self.logger.error(message)
        else:
            self.logger.warning(message)

    def log_flag_operation(self, operation: str, flag_id: str, flag_name: str = None,
                           status: str = "success", details: Dict[str, Any] = None):
        """Log a flag lifecycle or change-log operation."""
        log_details = {"flag_id": flag_id}
        if flag_name:
            log_details["flag_name"] = flag_name
        if details:
            log_details.update(details)

        self.log_operation(f"flag.{operation}", status, log_details)

    def log_metrics_ingest(self, flag_id: str, error_rate: float, latency_p50: float):
        """Log a metrics sample ingestion."""
        self.log_operation("metrics.ingest", "success", {
            "flag_id": flag_id,
            "error_rate": error_rate,
            "latency_p50": latency_p50
        })

    def log_anomaly(self, anomaly_type: str, severity: str, flag_id: str, message: str):
        """Log an anomaly detection finding."""
        self.log_operation("anomaly.finding", "detected", {
            "type": anomaly_type,
            "severity": severity,
            "flag_id": flag_id,
            "message": message[:100]
        })

    def log_prediction(self, flag_id: str, risk_level: str, confidence: float,
                       status: str = "success", reason: str = None):
        """Log a stored impact prediction."""
        details = {
            "flag_id": flag_id,
            "risk_level": risk_level,
            "confidence": confidence
        }
        if reason:
            details["reason"] = reason[:100]

        self.log_operation("prediction.stored", status, details)

    def log_llm_call(self, purpose: str, model: str, duration_ms: float,
                     status: str = "success", error: str = None):
        """Log an external language model completion."""
        details = {"purpose": purpose, "model": model}
        if error:
            details["error"] = error[:100]

        self.log_operation("llm.complete", status, details, duration_ms)

    def log_chat(self, session_id: str, history_size: int, status: str = "success",
                 error: str = None):
        """Log a chat exchange."""
        details = {"session_id": session_id, "history_size": history_size}
        if error:
            details["error"] = error[:100]

        self.log_operation("chat.exchange", status, details)

    def log_session_event(self, event: str, session_id: str, active_sessions: int):
        """Log websocket session connect/disconnect."""
        self.log_operation(f"session.{event}", "success", {
            "session_id": session_id,
            "active_sessions": active_sessions
        })

    def info(self, message: str):
        """Log info message."""
        self.logger.info(message)

    def error(self, message: str):
        """Log error message."""
        self.logger.error(message)

    def warning(self, message: str):
        """Log warning message."""
        self.logger.warning(message)

    def debug(self, message: str):
        """Log debug message."""
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()
