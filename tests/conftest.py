"""
Shared fixtures: every test gets its own SQLite file and a mock language model.
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone
from typing import List

import pytest

# Import-time default only; fresh_db points each test at its own file
os.environ.setdefault("DB_PATH", os.path.join(tempfile.gettempdir(), "flag_impact_import.db"))
os.environ["LLM_PROVIDER"] = "mock"

from flag_impact.agents.llm import MockLLMClient
from flag_impact.core import dao
from flag_impact.core.db import init_db
from flag_impact.core.schema import ImpactMetrics


@pytest.fixture(autouse=True)
def fresh_db(tmp_path, monkeypatch):
    """Initialize an empty database for each test."""
    monkeypatch.setenv("DB_PATH", str(tmp_path / "flag_impact_test.db"))
    monkeypatch.delenv("ANOMALY_DEDUP_ENABLED", raising=False)
    init_db()
    yield


@pytest.fixture
def mock_llm():
    return MockLLMClient()


class FakeChannel:
    """Outbound channel that records frames."""

    def __init__(self, fail: bool = False):
        self.sent: List[str] = []
        self.fail = fail

    def send(self, text: str) -> None:
        if self.fail:
            raise ConnectionError("socket closed")
        self.sent.append(text)


@pytest.fixture
def channel():
    return FakeChannel()


BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def ingest(flag_id: str, error_rates: List[float], latencies: List[float] = None,
           start_minute: int = 0) -> List[ImpactMetrics]:
    """Append samples oldest to newest, one minute apart."""
    latencies = latencies or [50.0] * len(error_rates)
    samples = []
    for i, (error_rate, latency) in enumerate(zip(error_rates, latencies)):
        metrics = ImpactMetrics(
            flag_id=flag_id,
            timestamp=(BASE_TIME + timedelta(minutes=start_minute + i)).isoformat(),
            error_rate=error_rate,
            latency_p50=latency,
            latency_p99=latency * 3,
            request_count=100,
            conversion_rate=2.5,
            user_satisfaction_score=4.2,
        )
        dao.add_metrics(metrics)
        samples.append(metrics)
    return samples
