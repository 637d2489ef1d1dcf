# Vectrank – Multi-signal retrieval ranking for conversational context
# Copyright (c) 2026 4rce.com Digital Technologies GmbH. All rights reserved.
# Non-commercial use only. Commercial licensing: info@4rce.com

"""
Vector query services: the pipeline's only asynchronous collaborator.

A service answers query(text, collection_id, top_k) with [{hash, score}]
ordered best first. An item may carry a "warning" instead of a usable score
(dimension mismatch); the pipeline scores it 0 and reports the warning.
Failures are raised; retry policy belongs to the service, not the pipeline.
"""
import asyncio
import threading
from collections import OrderedDict
from typing import Callable, Optional, Protocol, Sequence, Union, runtime_checkable

import chromadb

from .errors import RetrievalFailure
from .models import Chunk
from .scoring import DimensionMismatch, cosine_similarity

EmbedFn = Callable[[list[str]], Sequence[Sequence[float]]]

UPSERT_BATCH_SIZE = 5000


@runtime_checkable
class VectorQueryService(Protocol):
    async def query(self, query_text: str, collection_id: str, top_k: int) -> list[dict]: ...


class EmbeddingCache:
    """Thread-safe LRU cache of query embeddings."""

    def __init__(self, capacity: int = 256):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._data: OrderedDict[str, tuple[float, ...]] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[tuple[float, ...]]:
        with self._lock:
            value = self._data.get(key)
            if value is None:
                self.misses += 1
                return None
            self._data.move_to_end(key)
            self.hits += 1
            return value

    def put(self, key: str, embedding: Sequence[float]):
        with self._lock:
            self._data[key] = tuple(float(x) for x in embedding)
            self._data.move_to_end(key)
            while len(self._data) > self.capacity:
                self._data.popitem(last=False)

    def clear(self):
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        return len(self._data)

    @property
    def stats(self) -> dict:
        return {"size": len(self._data), "capacity": self.capacity,
                "hits": self.hits, "misses": self.misses}


def _embed_query(text: str, embed_fn: EmbedFn, cache: Optional[EmbeddingCache]) -> tuple[float, ...]:
    if cache is not None:
        cached = cache.get(text)
        if cached is not None:
            return cached
    embedding = tuple(float(x) for x in embed_fn([text])[0])
    if cache is not None:
        cache.put(text, embedding)
    return embedding


class LocalQueryService:
    """In-process cosine search over the chunks' own embeddings."""

    def __init__(self, collections: Union[dict, object], embed_fn: EmbedFn,
                 cache: Optional[EmbeddingCache] = None):
        """
        collections: collection_id -> chunk list / ChunkStore, or a single
        chunk list / ChunkStore used for every collection id.
        """
        self.collections = collections
        self.embed_fn = embed_fn
        self.cache = cache

    def _chunks(self, collection_id: str) -> list[Chunk]:
        source = self.collections
        if isinstance(source, dict):
            source = source.get(collection_id, [])
        if hasattr(source, "all"):
            return source.all()
        return list(source)

    async def query(self, query_text: str, collection_id: str, top_k: int) -> list[dict]:
        try:
            embedding = await asyncio.to_thread(_embed_query, query_text, self.embed_fn, self.cache)
        except (RuntimeError, ValueError, TypeError, OSError) as e:
            raise RetrievalFailure(f"query embedding failed: {e}") from e
        return self.rank(embedding, self._chunks(collection_id), top_k)

    @staticmethod
    def rank(embedding: Sequence[float], chunks: list[Chunk], top_k: int) -> list[dict]:
        hits = []
        for order, chunk in enumerate(chunks):
            if chunk.disabled or not chunk.has_embedding:
                continue
            try:
                score = cosine_similarity(embedding, chunk.embedding, strict=True)
            except DimensionMismatch as e:
                hits.append((0.0, order, {"hash": chunk.hash, "score": 0.0,
                                          "warning": f"chunk {chunk.hash}: {e}"}))
                continue
            hits.append((score, order, {"hash": chunk.hash, "score": score}))
        hits.sort(key=lambda h: (-h[0], h[1]))
        return [item for _, _, item in hits[:top_k]]


class ChromaQueryService:
    """chromadb-backed service; one cosine-space collection per collection id."""

    def __init__(self, client=None, embedding_function=None, embed_fn: Optional[EmbedFn] = None,
                 cache: Optional[EmbeddingCache] = None, name_prefix: str = "vectrank_"):
        """
        embedding_function: chromadb embedding function for query_texts.
        embed_fn: plain callable used instead, sending query_embeddings.
        """
        self.chroma = client if client is not None else chromadb.EphemeralClient()
        self.ef = embedding_function
        self.embed_fn = embed_fn
        self.cache = cache
        self.name_prefix = name_prefix
        self._collections: dict = {}
        self._lock = threading.Lock()

    @classmethod
    def persistent(cls, path: str, **kwargs) -> "ChromaQueryService":
        return cls(client=chromadb.PersistentClient(path=path), **kwargs)

    def collection(self, collection_id: str):
        with self._lock:
            coll = self._collections.get(collection_id)
            if coll is None:
                kwargs = {"metadata": {"hnsw:space": "cosine"}}
                if self.ef is not None:
                    kwargs["embedding_function"] = self.ef
                coll = self.chroma.get_or_create_collection(
                    f"{self.name_prefix}{collection_id}", **kwargs
                )
                self._collections[collection_id] = coll
            return coll

    def upsert(self, chunks: list[Chunk], collection_id: str = "default") -> int:
        """Store chunks with their own embeddings; returns how many were written."""
        usable = [c for c in chunks if c.has_embedding and not c.disabled]
        coll = self.collection(collection_id)
        for i in range(0, len(usable), UPSERT_BATCH_SIZE):
            batch = usable[i: i + UPSERT_BATCH_SIZE]
            coll.upsert(
                ids=[c.hash for c in batch],
                embeddings=[list(c.embedding) for c in batch],
                documents=[c.text for c in batch],
                metadatas=[_chroma_metadata(c) for c in batch],
            )
        return len(usable)

    def delete(self, hashes: list[str], collection_id: str = "default"):
        coll = self.collection(collection_id)
        for i in range(0, len(hashes), UPSERT_BATCH_SIZE):
            coll.delete(ids=hashes[i: i + UPSERT_BATCH_SIZE])

    async def query(self, query_text: str, collection_id: str, top_k: int) -> list[dict]:
        return await asyncio.to_thread(self._query_sync, query_text, collection_id, top_k)

    def _query_sync(self, query_text: str, collection_id: str, top_k: int) -> list[dict]:
        coll = self.collection(collection_id)
        count = coll.count()
        if count == 0:
            return []
        kwargs: dict = {"n_results": min(top_k, count), "include": ["distances"]}
        if self.embed_fn is not None:
            kwargs["query_embeddings"] = [list(_embed_query(query_text, self.embed_fn, self.cache))]
        else:
            kwargs["query_texts"] = [query_text]
        try:
            results = coll.query(**kwargs)
        except Exception as e:
            raise RetrievalFailure(f"chroma query failed: {e}") from e
        if not results["ids"] or not results["ids"][0]:
            return []
        return [
            {"hash": cid, "score": max(-1.0, min(1.0, 1.0 - dist))}
            for cid, dist in zip(results["ids"][0], results["distances"][0])
        ]


def _chroma_metadata(chunk: Chunk) -> dict:
    meta = {
        "is_summary": chunk.is_summary_chunk,
        "importance": chunk.importance,
    }
    if chunk.parent_hash:
        meta["parent_hash"] = chunk.parent_hash
    if chunk.section:
        meta["section"] = chunk.section
    if chunk.chunk_group is not None:
        meta["group"] = chunk.chunk_group.name
    return meta
