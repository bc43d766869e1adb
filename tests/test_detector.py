"""
Anomaly detector tests: window partitioning, thresholds, severities and
duplicate suppression.
"""

from unittest.mock import MagicMock

import pytest

from conftest import ingest
from flag_impact.core import dao
from flag_impact.core.detector import AnomalyDetector
from flag_impact.core.schema import FeatureFlag

FLAG = "flag-checkout"


@pytest.fixture
def detector():
    return AnomalyDetector()


@pytest.mark.parametrize("count", [0, 1, 4])
def test_fewer_than_five_samples_is_a_no_op(detector, count):
    ingest(FLAG, [50.0] * count)
    assert detector.detect(FLAG) == []


def test_exactly_five_samples_has_no_baseline(detector):
    ingest(FLAG, [90.0] * 5, [900.0] * 5)
    assert detector.detect(FLAG) == []
    assert dao.list_anomalies() == []


def test_error_ratio_exactly_two_is_critical(detector):
    ingest(FLAG, [1.0] * 3 + [2.0] * 5)

    anomalies = detector.detect(FLAG)

    assert len(anomalies) == 1
    assert anomalies[0].type == "error_spike"
    assert anomalies[0].severity == "critical"
    assert anomalies[0].message == "Error rate increased by 100.0% since flag change"


def test_error_ratio_just_under_two_is_warning(detector):
    ingest(FLAG, [1.0] * 3 + [1.99] * 5)

    anomalies = detector.detect(FLAG)

    assert len(anomalies) == 1
    assert anomalies[0].type == "error_spike"
    assert anomalies[0].severity == "warning"


def test_error_spike_needs_absolute_floor(detector):
    # Ratio 4.5 but recent mean 0.9 stays under the 1% floor
    ingest(FLAG, [0.2] * 3 + [0.9] * 5)
    assert detector.detect(FLAG) == []


def test_latency_ratio_below_two_is_ignored(detector):
    ingest(FLAG, [0.5] * 8, [50.0] * 3 + [95.0] * 5)
    assert detector.detect(FLAG) == []


def test_latency_ratio_above_three_is_critical(detector):
    ingest(FLAG, [0.5] * 8, [50.0] * 3 + [160.0] * 5)

    anomalies = detector.detect(FLAG)

    assert len(anomalies) == 1
    assert anomalies[0].type == "latency_spike"
    assert anomalies[0].severity == "critical"
    assert anomalies[0].message == "P50 latency increased by 220.0%"


def test_latency_ratio_between_two_and_three_is_warning(detector):
    ingest(FLAG, [0.5] * 8, [50.0] * 3 + [120.0] * 5)

    anomalies = detector.detect(FLAG)

    assert [(a.type, a.severity) for a in anomalies] == [("latency_spike", "warning")]


def test_both_rules_fire_from_one_scan(detector):
    ingest(FLAG, [1.0] * 3 + [5.0] * 5, [50.0] * 3 + [200.0] * 5)

    anomalies = detector.detect(FLAG)

    assert sorted(a.type for a in anomalies) == ["error_spike", "latency_spike"]
    assert len(dao.list_anomalies()) == 2


def test_single_newest_sample_is_evidence(detector):
    samples = ingest(FLAG, [1.0] * 3 + [3.0, 3.0, 3.0, 3.0, 4.0])

    anomaly = detector.detect(FLAG)[0]

    assert anomaly.metrics.timestamp == samples[-1].timestamp
    assert anomaly.metrics.error_rate == 4.0
    assert anomaly.resolved is False


def test_six_samples_end_to_end(detector):
    ingest(FLAG, [1, 1, 1, 1, 1, 5])

    anomalies = detector.detect(FLAG)

    # recent mean 1.8 over a baseline of 1.0
    assert len(anomalies) == 1
    assert anomalies[0].type == "error_spike"
    assert anomalies[0].severity == "warning"
    assert anomalies[0].message == "Error rate increased by 80.0% since flag change"


def test_window_is_capped_at_fifty_samples(detector):
    # The 15 oldest samples fall outside the window and never reach the baseline
    ingest(FLAG, [100.0] * 15 + [1.0] * 45 + [1.8] * 5)

    anomalies = detector.detect(FLAG)

    assert [a.severity for a in anomalies] == ["warning"]


def test_zero_baseline_reports_absolute_move(detector):
    ingest(FLAG, [0.0] * 3 + [3.0] * 5)

    anomalies = detector.detect(FLAG)

    assert len(anomalies) == 1
    assert anomalies[0].severity == "critical"
    assert "from 0.00% to 3.00%" in anomalies[0].message


def test_flag_name_comes_from_flag_store(detector):
    dao.create_flag(FeatureFlag(id=FLAG, name="new-checkout"))
    ingest(FLAG, [1.0] * 3 + [5.0] * 5)

    anomaly = detector.detect(FLAG)[0]

    assert anomaly.flag_name == "new-checkout"


def test_unknown_flag_name_falls_back_to_id(detector):
    ingest(FLAG, [1.0] * 3 + [5.0] * 5)
    assert detector.detect(FLAG)[0].flag_name == FLAG


def test_anomalies_are_persisted_and_announced():
    on_anomaly = MagicMock()
    detector = AnomalyDetector(on_anomaly=on_anomaly)
    ingest(FLAG, [1.0] * 3 + [5.0] * 5)

    anomalies = detector.detect(FLAG)

    on_anomaly.assert_called_once_with(anomalies[0])
    stored = dao.list_anomalies()
    assert [a.id for a in stored] == [anomalies[0].id]


def test_unchanged_window_is_not_reported_twice(detector):
    ingest(FLAG, [1.0] * 3 + [5.0] * 5)

    assert len(detector.detect(FLAG)) == 1
    assert detector.detect(FLAG) == []
    assert len(dao.list_anomalies()) == 1


def test_new_sample_reopens_the_window(detector):
    ingest(FLAG, [1.0] * 3 + [5.0] * 5)
    detector.detect(FLAG)

    ingest(FLAG, [5.0], start_minute=8)

    assert len(detector.detect(FLAG)) == 1


def test_duplicates_reemitted_when_suppression_disabled(detector, monkeypatch):
    monkeypatch.setenv("ANOMALY_DEDUP_ENABLED", "false")
    ingest(FLAG, [1.0] * 3 + [5.0] * 5)

    assert len(detector.detect(FLAG)) == 1
    assert len(detector.detect(FLAG)) == 1
    assert len(dao.list_anomalies()) == 2
