"""Tests for the embedding cache and the bundled vector query services."""
import asyncio
import uuid

import chromadb
import pytest

from vectrank.errors import RetrievalFailure
from vectrank.retrieval import ChromaQueryService, EmbeddingCache, LocalQueryService, VectorQueryService

VECTORS = {
    "castle": (1.0, 0.0, 0.0),
    "forest": (0.0, 1.0, 0.0),
    "river": (0.0, 0.0, 1.0),
}


class CountingEmbedder:
    def __init__(self, vectors=None):
        self.vectors = vectors or VECTORS
        self.calls = 0

    def __call__(self, texts):
        self.calls += 1
        return [list(self.vectors.get(t, (0.6, 0.8, 0.0))) for t in texts]


@pytest.fixture
def embedded(make_chunk):
    return [
        make_chunk("castle", "the castle", embedding=VECTORS["castle"]),
        make_chunk("forest", "the forest", embedding=VECTORS["forest"]),
        make_chunk("river", "the river", embedding=VECTORS["river"]),
        make_chunk("bare", "no vector"),
        make_chunk("off", "disabled", embedding=VECTORS["castle"], disabled=True),
    ]


class TestEmbeddingCache:
    def test_hit_and_miss_counters(self):
        cache = EmbeddingCache(capacity=2)
        assert cache.get("a") is None
        cache.put("a", [1, 2])
        assert cache.get("a") == (1.0, 2.0)
        assert cache.stats == {"size": 1, "capacity": 2, "hits": 1, "misses": 1}

    def test_evicts_least_recently_used(self):
        cache = EmbeddingCache(capacity=2)
        cache.put("a", [1])
        cache.put("b", [2])
        cache.get("a")
        cache.put("c", [3])
        assert cache.get("b") is None
        assert cache.get("a") == (1.0,)
        assert len(cache) == 2

    def test_clear(self):
        cache = EmbeddingCache()
        cache.put("a", [1])
        cache.clear()
        assert len(cache) == 0

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            EmbeddingCache(capacity=0)


class TestLocalQueryService:
    def test_is_a_query_service(self, embedded):
        assert isinstance(LocalQueryService(embedded, CountingEmbedder()), VectorQueryService)

    def test_ranks_by_cosine(self, embedded):
        service = LocalQueryService(embedded, CountingEmbedder())
        hits = asyncio.run(service.query("castle", "default", 5))
        assert [h["hash"] for h in hits] == ["castle", "forest", "river"]
        assert hits[0]["score"] == pytest.approx(1.0)
        assert hits[1]["score"] == pytest.approx(0.0)

    def test_skips_disabled_and_unembedded(self, embedded):
        service = LocalQueryService(embedded, CountingEmbedder())
        hashes = [h["hash"] for h in asyncio.run(service.query("castle", "default", 10))]
        assert "off" not in hashes
        assert "bare" not in hashes

    def test_top_k(self, embedded):
        service = LocalQueryService(embedded, CountingEmbedder())
        assert len(asyncio.run(service.query("unknown", "default", 2))) == 2

    def test_collections_by_id(self, embedded):
        service = LocalQueryService({"lore": embedded[:1]}, CountingEmbedder())
        assert [h["hash"] for h in asyncio.run(service.query("castle", "lore", 5))] == ["castle"]
        assert asyncio.run(service.query("castle", "other", 5)) == []

    def test_dimension_mismatch_is_a_warning_item(self, make_chunk):
        chunks = [make_chunk("ok", embedding=(1.0, 0.0, 0.0)), make_chunk("short", embedding=(1.0, 0.0))]
        hits = asyncio.run(LocalQueryService(chunks, CountingEmbedder()).query("castle", "default", 5))
        by_hash = {h["hash"]: h for h in hits}
        assert by_hash["short"]["score"] == 0.0
        assert "dimension mismatch" in by_hash["short"]["warning"]
        assert "warning" not in by_hash["ok"]

    def test_cache_reused(self, embedded):
        embedder = CountingEmbedder()
        service = LocalQueryService(embedded, embedder, cache=EmbeddingCache())
        asyncio.run(service.query("castle", "default", 3))
        asyncio.run(service.query("castle", "default", 3))
        assert embedder.calls == 1
        assert service.cache.hits == 1

    def test_embedding_error_becomes_retrieval_failure(self, embedded):
        def broken(texts):
            raise RuntimeError("model not loaded")

        with pytest.raises(RetrievalFailure):
            asyncio.run(LocalQueryService(embedded, broken).query("castle", "default", 3))


class TestChromaQueryService:
    @pytest.fixture
    def service(self):
        return ChromaQueryService(
            client=chromadb.EphemeralClient(),
            embed_fn=CountingEmbedder(),
            name_prefix=f"test_{uuid.uuid4().hex[:8]}_",
        )

    def test_upsert_counts_usable_chunks(self, service, embedded):
        assert service.upsert(embedded) == 3
        assert service.collection("default").count() == 3

    def test_query_scores(self, service, embedded):
        service.upsert(embedded)
        hits = asyncio.run(service.query("castle", "default", 2))
        assert hits[0]["hash"] == "castle"
        assert hits[0]["score"] == pytest.approx(1.0, abs=1e-3)
        assert len(hits) == 2

    def test_top_k_larger_than_collection(self, service, embedded):
        service.upsert(embedded)
        assert len(asyncio.run(service.query("river", "default", 50))) == 3

    def test_empty_collection(self, service):
        assert asyncio.run(service.query("castle", "empty", 5)) == []

    def test_delete(self, service, embedded):
        service.upsert(embedded)
        service.delete(["castle"])
        hashes = [h["hash"] for h in asyncio.run(service.query("castle", "default", 5))]
        assert "castle" not in hashes

    def test_persistent_survives_new_client(self, tmp_path, embedded):
        path = str(tmp_path / "chroma")
        ChromaQueryService.persistent(path, embed_fn=CountingEmbedder()).upsert(embedded, "lore")
        reopened = ChromaQueryService.persistent(path, embed_fn=CountingEmbedder())
        hits = asyncio.run(reopened.query("forest", "lore", 1))
        assert [h["hash"] for h in hits] == ["forest"]

    def test_dimension_mismatch_raises(self, service, embedded):
        service.upsert(embedded)
        service.embed_fn = CountingEmbedder({"castle": (1.0, 0.0)})
        with pytest.raises(RetrievalFailure):
            asyncio.run(service.query("castle", "default", 2))
