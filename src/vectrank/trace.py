# Vectrank – Multi-signal retrieval ranking for conversational context
# Copyright (c) 2026 4rce.com Digital Technologies GmbH. All rights reserved.
# Non-commercial use only. Commercial licensing: info@4rce.com

"""
Per-query trace: ordered stage snapshots, free-form entries and the fate of
every chunk the pipeline looked at. A Trace is returned with the result and
handed to an observer; nothing here is process-global.
"""
import time
from dataclasses import asdict, dataclass, field
from typing import Optional

FATES = ("passed", "dropped", "skipped", "injected")


@dataclass
class TraceEntry:
    stage: str
    message: str
    data: dict = field(default_factory=dict)
    at_ms: float = 0.0


@dataclass
class StageSnapshot:
    stage: str
    hashes: list[str]
    scores: list[float]

    @property
    def count(self) -> int:
        return len(self.hashes)


@dataclass
class ChunkFate:
    status: str
    stage: str
    reason: Optional[str] = None
    score: Optional[float] = None


@dataclass
class Trace:
    query: str = ""
    entries: list[TraceEntry] = field(default_factory=list)
    snapshots: list[StageSnapshot] = field(default_factory=list)
    fates: dict[str, ChunkFate] = field(default_factory=dict)
    _started: float = field(default_factory=time.perf_counter, repr=False)

    def add(self, stage: str, message: str, **data):
        elapsed = (time.perf_counter() - self._started) * 1000
        self.entries.append(TraceEntry(stage, message, data, round(elapsed, 3)))

    def snapshot(self, stage: str, scored: list):
        self.snapshots.append(StageSnapshot(
            stage=stage,
            hashes=[sc.hash for sc in scored],
            scores=[round(sc.score, 6) for sc in scored],
        ))

    def fate(self, chunk_hash: str, status: str, stage: str,
             reason: Optional[str] = None, score: Optional[float] = None):
        if status not in FATES:
            raise ValueError(f"unknown fate {status!r}")
        self.fates[chunk_hash] = ChunkFate(status, stage, reason, score)

    def fates_by_status(self, status: str) -> list[str]:
        return [h for h, f in self.fates.items() if f.status == status]

    def stage(self, name: str) -> Optional[StageSnapshot]:
        for snap in self.snapshots:
            if snap.stage == name:
                return snap
        return None

    @property
    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self._started) * 1000

    def summary(self) -> dict:
        counts = {status: 0 for status in FATES}
        for f in self.fates.values():
            counts[f.status] += 1
        return {
            "query": self.query,
            "stages": [(s.stage, s.count) for s in self.snapshots],
            "fates": counts,
        }

    def to_dict(self) -> dict:
        return {
            "query": self.query,
            "entries": [asdict(e) for e in self.entries],
            "snapshots": [asdict(s) for s in self.snapshots],
            "fates": {h: asdict(f) for h, f in self.fates.items()},
        }
