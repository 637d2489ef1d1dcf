# Vectrank – Multi-signal retrieval ranking for conversational context
# Copyright (c) 2026 4rce.com Digital Technologies GmbH. All rights reserved.
# Non-commercial use only. Commercial licensing: info@4rce.com

"""
Chunk stores: read-only providers of a collection's chunks.

The pipeline keeps one canonical ordered list and derives a hash index from
it; collection order is the tie-break for equal scores.
"""
import json
import threading
from pathlib import Path
from typing import Iterator, Optional, Protocol, Union, runtime_checkable

from .conditions import CompiledConditions, compile_conditions
from .errors import DataIntegrityError
from .models import Chunk
from .validation import CollectionValidator


@runtime_checkable
class ChunkStore(Protocol):
    def get(self, chunk_hash: str) -> Optional[Chunk]: ...

    def all(self) -> list[Chunk]: ...


class InMemoryChunkStore:
    """Validated, ordered chunk collection with a hash index."""

    def __init__(self, chunks=(), validate: bool = True, report_warnings: bool = True):
        parsed = []
        unreadable = []
        for i, record in enumerate(chunks):
            if isinstance(record, Chunk):
                parsed.append(record)
                continue
            try:
                parsed.append(Chunk.from_dict(record))
            except (TypeError, ValueError, AttributeError) as e:
                label = record.get("hash", f"#{i}") if isinstance(record, dict) else f"#{i}"
                unreadable.append({"severity": "critical", "hash": str(label),
                                   "message": f"Unreadable record: {e}"})
        if unreadable:
            raise DataIntegrityError(unreadable)
        self.report: Optional[dict] = None
        if validate:
            self.report = CollectionValidator().check_all(parsed)
            critical = [i for i in self.report["issues"] if i["severity"] == "critical"]
            if critical:
                raise DataIntegrityError(critical)
            if report_warnings:
                for issue in self.report["issues"]:
                    if issue["severity"] == "warning":
                        print(f"Warning: chunk {issue['hash']}: {issue['message']}")
        self._chunks = parsed
        self._index = {c.hash: c for c in parsed}
        self._compiled: dict[str, CompiledConditions] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_json(cls, path: Union[str, Path], validate: bool = True) -> "InMemoryChunkStore":
        """Load a JSON list of chunk records, {"chunks": [...]}, or a hash-keyed object."""
        data = json.loads(Path(path).read_text())
        if isinstance(data, dict):
            if "chunks" in data:
                data = data["chunks"]
            else:
                data = [{"hash": key, **record} for key, record in data.items()]
        return cls(data, validate=validate)

    def get(self, chunk_hash: str) -> Optional[Chunk]:
        return self._index.get(chunk_hash)

    def all(self) -> list[Chunk]:
        return list(self._chunks)

    def conditions_for(self, chunk: Chunk) -> CompiledConditions:
        """Compiled conditions, built once per chunk for the life of the store."""
        with self._lock:
            compiled = self._compiled.get(chunk.hash)
            if compiled is None:
                compiled = compile_conditions(chunk.conditions)
                self._compiled[chunk.hash] = compiled
            return compiled

    def __len__(self) -> int:
        return len(self._chunks)

    def __contains__(self, chunk_hash: str) -> bool:
        return chunk_hash in self._index

    def __iter__(self) -> Iterator[Chunk]:
        return iter(self._chunks)
