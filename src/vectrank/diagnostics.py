# Vectrank – Multi-signal retrieval ranking for conversational context
# Copyright (c) 2026 4rce.com Digital Technologies GmbH. All rights reserved.
# Non-commercial use only. Commercial licensing: info@4rce.com

"""
Search diagnostics – counters across pipeline runs plus configuration and
collection health checks.
Thread-safe, no external dependencies.
"""
import threading
from datetime import datetime, timezone
from typing import Optional

from .config import PipelineOptions
from .validation import CollectionValidator


class SearchDiagnostics:
    def __init__(self):
        self._lock = threading.Lock()
        self._data = {
            "started_at": datetime.now(timezone.utc).isoformat(),

            "searches_total": 0,
            "searches_hits": 0,
            "searches_misses": 0,
            "searches_by_mode": {"vector": 0, "keyword": 0, "hybrid": 0},
            "empty_reasons": {},
            "last_search_at": None,
            "last_search_ms": None,
            "last_trace": None,

            "retrieval_failures": 0,
            "last_retrieval_error": None,

            "warnings_total": 0,
            "skipped_duplicates_total": 0,
        }

    def record_search(self, result):
        stats = result.stats
        with self._lock:
            self._data["searches_total"] += 1
            if result.results:
                self._data["searches_hits"] += 1
            else:
                self._data["searches_misses"] += 1
            by_mode = self._data["searches_by_mode"]
            if stats.search_mode in by_mode:
                by_mode[stats.search_mode] += 1
            if stats.empty_reason:
                reasons = self._data["empty_reasons"]
                reasons[stats.empty_reason] = reasons.get(stats.empty_reason, 0) + 1
            if stats.retrieval_error:
                self._data["retrieval_failures"] += 1
                self._data["last_retrieval_error"] = stats.retrieval_error
            self._data["warnings_total"] += len(stats.warnings)
            self._data["skipped_duplicates_total"] += stats.skipped_duplicates
            self._data["last_search_at"] = datetime.now(timezone.utc).isoformat()
            self._data["last_search_ms"] = round(stats.duration_ms, 3)
            self._data["last_trace"] = result.trace.summary() if result.trace is not None else None

    @property
    def status(self) -> dict:
        with self._lock:
            data = dict(self._data)
            data["searches_by_mode"] = dict(data["searches_by_mode"])
            data["empty_reasons"] = dict(data["empty_reasons"])
            return data

    @property
    def hit_rate(self) -> Optional[float]:
        with self._lock:
            total = self._data["searches_total"]
            return self._data["searches_hits"] / total if total else None

    @property
    def is_healthy(self) -> bool:
        with self._lock:
            total = self._data["searches_total"]
            return total == 0 or self._data["retrieval_failures"] < total

    def check(self, options: PipelineOptions, chunks: Optional[list] = None) -> dict:
        """Configuration and collection checks, each pass / warning / fail."""
        checks = [_check_threshold(options), _check_weights(options)]
        if options.apply_decay or options.decay.enabled:
            checks.append(_check_decay(options))
        if chunks is not None:
            checks.append(_check_collection(chunks))
        status = self.status
        if status["searches_total"]:
            failures = status["retrieval_failures"]
            checks.append({
                "name": "Retrieval",
                "status": "fail" if failures == status["searches_total"]
                else "warning" if failures else "pass",
                "message": f"{failures} of {status['searches_total']} searches failed retrieval",
            })

        fail_count = sum(1 for c in checks if c["status"] == "fail")
        warn_count = sum(1 for c in checks if c["status"] == "warning")
        overall = "issues" if fail_count else "warnings" if warn_count else "healthy"
        return {
            "checks": checks,
            "overall": overall,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }


def _check_threshold(options: PipelineOptions) -> dict:
    threshold = options.threshold
    if not 0.0 <= threshold <= 1.0:
        return {"name": "Score Threshold", "status": "fail",
                "message": f"Invalid threshold ({threshold}). Must be 0.0-1.0"}
    if threshold < 0.1:
        return {"name": "Score Threshold", "status": "warning",
                "message": f"Very low threshold ({threshold}). May retrieve irrelevant results"}
    if threshold > 0.8:
        return {"name": "Score Threshold", "status": "warning",
                "message": f"Very high threshold ({threshold}). May retrieve nothing"}
    return {"name": "Score Threshold", "status": "pass", "message": f"{threshold}"}


def _check_weights(options: PipelineOptions) -> dict:
    if options.search_mode != "hybrid":
        return {"name": "Score Weights", "status": "pass",
                "message": f"{options.search_mode} mode ignores weights"}
    total = options.vector_weight + options.keyword_weight
    if total == 0:
        return {"name": "Score Weights", "status": "fail",
                "message": "Both weights are 0, every hybrid score is 0"}
    if total < options.threshold:
        return {"name": "Score Weights", "status": "warning",
                "message": f"Weights sum to {total}, below threshold {options.threshold}"}
    return {"name": "Score Weights", "status": "pass",
            "message": f"vector {options.vector_weight} / keyword {options.keyword_weight}"}


def _check_decay(options: PipelineOptions) -> dict:
    decay = options.decay
    if decay.mode == "exponential" and decay.half_life < 1:
        return {"name": "Temporal Decay", "status": "fail",
                "message": f"Invalid half-life ({decay.half_life}). Must be >= 1"}
    if decay.mode == "linear" and not 0 < decay.linear_rate <= 1:
        return {"name": "Temporal Decay", "status": "fail",
                "message": f"Invalid linear rate ({decay.linear_rate}). Must be 0.0-1.0"}
    if options.apply_decay != decay.enabled:
        return {"name": "Temporal Decay", "status": "warning",
                "message": "apply_decay and decay.enabled disagree, decay will not run"}
    if decay.mode == "exponential":
        message = f"Exponential, half-life {decay.half_life} messages"
    else:
        message = f"Linear, {decay.linear_rate} per message"
    return {"name": "Temporal Decay", "status": "pass", "message": message}


def _check_collection(chunks: list) -> dict:
    report = CollectionValidator().check_all(chunks)
    if report["critical"]:
        status = "fail"
    elif report["warnings"]:
        status = "warning"
    else:
        status = "pass"
    return {"name": "Collection", "status": status,
            "message": f"quality {report['score']}/100, {report['total_issues']} issues "
                       f"in {report['total_chunks']} chunks"}
