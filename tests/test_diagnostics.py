"""Tests for SearchDiagnostics."""
import threading

from vectrank.config import DecaySettings, PipelineOptions
from vectrank.models import SearchResult, SearchStats
from vectrank.trace import Trace


def result(mode="hybrid", hits=1, reason=None, error=None, warnings=(), trace=None, make_scored=None):
    stats = SearchStats(search_mode=mode, empty_reason=reason, retrieval_error=error,
                        warnings=list(warnings), duration_ms=1.5)
    results = [make_scored(f"c{i}", 0.9, i) for i in range(hits)] if make_scored else []
    return SearchResult(results=results, stats=stats, trace=trace)


def statuses(report):
    return {c["name"]: c["status"] for c in report["checks"]}


class TestRecordSearch:
    def test_hit_increments(self, diagnostics, make_scored):
        diagnostics.record_search(result(make_scored=make_scored))
        s = diagnostics.status
        assert s["searches_total"] == 1
        assert s["searches_hits"] == 1
        assert s["searches_misses"] == 0
        assert s["searches_by_mode"]["hybrid"] == 1

    def test_miss_counts_reason(self, diagnostics):
        diagnostics.record_search(result(mode="vector", reason="below_threshold"))
        diagnostics.record_search(result(mode="vector", reason="below_threshold"))
        s = diagnostics.status
        assert s["searches_misses"] == 2
        assert s["empty_reasons"] == {"below_threshold": 2}

    def test_retrieval_failure_tracked(self, diagnostics):
        diagnostics.record_search(result(reason="retrieval_failed", error="TimeoutError"))
        s = diagnostics.status
        assert s["retrieval_failures"] == 1
        assert s["last_retrieval_error"] == "TimeoutError"

    def test_last_search_fields(self, diagnostics, make_scored):
        assert diagnostics.status["last_search_at"] is None
        diagnostics.record_search(result(make_scored=make_scored, trace=Trace(query="q"),
                                         warnings=["w1", "w2"]))
        s = diagnostics.status
        assert s["last_search_at"] is not None
        assert s["last_search_ms"] == 1.5
        assert s["last_trace"]["query"] == "q"
        assert s["warnings_total"] == 2

    def test_status_is_a_copy(self, diagnostics):
        diagnostics.status["empty_reasons"]["x"] = 1
        assert diagnostics.status["empty_reasons"] == {}


class TestHealth:
    def test_healthy_before_any_search(self, diagnostics):
        assert diagnostics.is_healthy is True
        assert diagnostics.hit_rate is None

    def test_unhealthy_when_every_retrieval_fails(self, diagnostics):
        diagnostics.record_search(result(reason="retrieval_failed", error="down"))
        assert diagnostics.is_healthy is False

    def test_hit_rate(self, diagnostics, make_scored):
        diagnostics.record_search(result(make_scored=make_scored))
        diagnostics.record_search(result(reason="no_candidates"))
        assert diagnostics.hit_rate == 0.5
        assert diagnostics.is_healthy is True


class TestCheck:
    def test_defaults_healthy(self, diagnostics):
        report = diagnostics.check(PipelineOptions())
        assert report["overall"] == "healthy"
        assert statuses(report) == {"Score Threshold": "pass", "Score Weights": "pass"}

    def test_low_threshold_warns(self, diagnostics):
        report = diagnostics.check(PipelineOptions(threshold=0.05))
        assert statuses(report)["Score Threshold"] == "warning"
        assert report["overall"] == "warnings"

    def test_invalid_threshold_fails(self, diagnostics):
        report = diagnostics.check(PipelineOptions(threshold=1.5))
        assert statuses(report)["Score Threshold"] == "fail"
        assert report["overall"] == "issues"

    def test_zero_weights_fail(self, diagnostics):
        report = diagnostics.check(PipelineOptions(vector_weight=0, keyword_weight=0))
        assert statuses(report)["Score Weights"] == "fail"

    def test_decay_switch_mismatch(self, diagnostics):
        report = diagnostics.check(PipelineOptions(apply_decay=True, decay=DecaySettings(enabled=False)))
        assert statuses(report)["Temporal Decay"] == "warning"

    def test_collection_check(self, diagnostics, make_chunk):
        report = diagnostics.check(PipelineOptions(), [make_chunk("a"), make_chunk("a")])
        assert statuses(report)["Collection"] == "fail"

    def test_retrieval_check_after_failures(self, diagnostics, make_scored):
        diagnostics.record_search(result(make_scored=make_scored))
        diagnostics.record_search(result(reason="retrieval_failed", error="down"))
        report = diagnostics.check(PipelineOptions())
        assert statuses(report)["Retrieval"] == "warning"


class TestThreadSafety:
    def test_concurrent_search_recording(self, diagnostics, make_scored):
        """Verify no data corruption under concurrent writes."""
        hit = result(make_scored=make_scored)

        def record_many():
            for _ in range(100):
                diagnostics.record_search(hit)

        threads = [threading.Thread(target=record_many) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert diagnostics.status["searches_total"] == 1000
        assert diagnostics.status["searches_hits"] == 1000
