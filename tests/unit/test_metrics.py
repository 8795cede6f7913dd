"""
Unit tests for the metrics log and KPI aggregation.
"""

import json

import pytest

from assistant_memory.metrics.aggregate import compute_kpis, percentile
from assistant_memory.metrics.events import SaveEvent, parse_event
from assistant_memory.metrics.logger import MetricsLogger


@pytest.fixture
def logged(metrics):
    metrics.save("u1", "lieblingsfarbe", kind="auto", score=0.9)
    metrics.save("u1", "lieblingsfarbe", kind="user", score=0.7)
    metrics.ask("u1", "wohnort", score=0.6)
    metrics.reject("u1", "mag", reason="high_risk:mag", score=0.2)
    metrics.reject("u1", "*", reason="pii")
    metrics.retrieve("u1", "abc", returned=2, latency_ms=10.0)
    metrics.retrieve("u1", "def", returned=4, latency_ms=30.0)
    metrics.error("store.load", "boom")
    metrics.consolidate("u1", "merge", ["mem_1"])
    metrics.summarize("u1", cluster_size=3, archived=3)
    return metrics


# ============================================================================
# MetricsLogger
# ============================================================================


def test_events_are_ndjson_without_nulls(metrics, read_events):
    metrics.reject("u1", "*", reason="pii")

    events = read_events()
    assert len(events) == 1
    assert events[0]["type"] == "reject"
    assert "score" not in events[0]
    assert isinstance(events[0]["ts"], int)


def test_parse_event_dispatches_on_type():
    event = parse_event('{"type": "ask", "user_id": "u1", "ts": 1, "key": "wohnort", "score": 0.6}')
    assert event.type == "ask"
    assert event.key == "wohnort"


def test_logger_without_path_is_silent():
    metrics = MetricsLogger(None)
    metrics.save("u1", "k", kind="auto", score=1.0)


def test_write_failure_is_swallowed(tmp_path):
    # A directory cannot be opened for appending
    metrics = MetricsLogger(tmp_path)
    metrics.save("u1", "k", kind="auto", score=1.0)


def test_invalid_event_is_dropped(metrics, read_events):
    metrics.save("u1", "k", kind="bogus", score=1.0)
    assert read_events() == []


# ============================================================================
# KPIs
# ============================================================================


def test_compute_kpis(logged, metrics_path):
    kpis = compute_kpis(metrics_path)

    assert kpis.total_saved == 2
    assert kpis.auto_save_rate == pytest.approx(0.5)
    assert kpis.ask_rate == pytest.approx(0.2)
    assert kpis.reject_rate == pytest.approx(0.4)
    assert kpis.avg_score_saved == pytest.approx(0.8)
    assert kpis.avg_score_rejected == pytest.approx(0.2)
    assert kpis.retrievals == 2
    assert kpis.avg_relevant_count == pytest.approx(3.0)
    assert kpis.latency_p50 == 10.0
    assert kpis.errors == 1
    assert kpis.consolidations == 1
    assert kpis.summaries_created == 1
    assert kpis.memories_archived == 3
    assert kpis.top_keys[0].key == "lieblingsfarbe"
    assert kpis.top_keys[0].count == 2


def test_top_n(logged, metrics_path):
    assert len(compute_kpis(metrics_path, top_n=1).top_keys) == 1


def test_missing_file_gives_zeros(tmp_path):
    kpis = compute_kpis(tmp_path / "missing.ndjson")
    assert kpis.total_saved == 0
    assert kpis.top_keys == []


def test_malformed_lines_are_skipped(metrics, metrics_path):
    metrics.save("u1", "k", kind="auto", score=0.9)
    with open(metrics_path, "a", encoding="utf-8") as f:
        f.write("not json\n")
        f.write(json.dumps({"type": "unknown", "ts": 1}) + "\n")
        f.write("\n")

    assert compute_kpis(metrics_path).total_saved == 1


def test_undecodable_bytes_are_skipped(metrics, metrics_path):
    metrics.save("u1", "k", kind="auto", score=0.9)
    with open(metrics_path, "ab") as f:
        f.write(b"\xff\xfe garbage\n")

    assert compute_kpis(metrics_path).total_saved == 1


def test_time_window(metrics, metrics_path):
    metrics.log(SaveEvent(user_id="u1", key="a", kind="auto", score=0.9, ts=1000))
    metrics.log(SaveEvent(user_id="u1", key="b", kind="auto", score=0.9, ts=2000))
    metrics.log(SaveEvent(user_id="u1", key="c", kind="auto", score=0.9, ts=3000))

    assert compute_kpis(metrics_path, start=2000).total_saved == 2
    assert compute_kpis(metrics_path, end=2000).total_saved == 2
    assert compute_kpis(metrics_path, start=1500, end=2500).total_saved == 1


@pytest.mark.parametrize("values,q,expected", [
    ([], 0.5, 0.0),
    ([5.0], 0.95, 5.0),
    ([1.0, 2.0, 3.0, 4.0, 5.0], 0.5, 3.0),
    ([1.0, 2.0, 3.0, 4.0, 5.0], 0.95, 4.0),
])
def test_percentile(values, q, expected):
    assert percentile(values, q) == expected
