import asyncio

import pytest

from vectrank.config import PipelineOptions
from vectrank.diagnostics import SearchDiagnostics
from vectrank.models import Chunk, ChunkGroup, ChunkLink, Message, ScoredChunk, SearchContext
from vectrank.validation import CollectionValidator


class FakeQueryService:
    """Returns canned [{hash, score}] lists; can fail or stall."""

    def __init__(self, hits=None, error=None, delay=0.0):
        self.hits = [h if isinstance(h, dict) else {"hash": h[0], "score": h[1]} for h in hits or []]
        self.error = error
        self.delay = delay
        self.calls = []

    async def query(self, query_text, collection_id, top_k):
        self.calls.append((query_text, collection_id, top_k))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return [dict(hit) for hit in self.hits[:top_k]]


@pytest.fixture
def make_chunk():
    def _make(chunk_hash, text=None, **kwargs):
        if "chunk_group" in kwargs and isinstance(kwargs["chunk_group"], dict):
            kwargs["chunk_group"] = ChunkGroup.from_dict(kwargs["chunk_group"])
        if "chunk_links" in kwargs:
            kwargs["chunk_links"] = tuple(
                link if isinstance(link, ChunkLink) else ChunkLink(*link)
                for link in kwargs["chunk_links"]
            )
        if "keywords" in kwargs:
            kwargs["keywords"] = tuple(kwargs["keywords"])
        return Chunk(hash=chunk_hash, text=text if text is not None else f"text of {chunk_hash}", **kwargs)
    return _make


@pytest.fixture
def make_scored(make_chunk):
    def _make(chunk_hash, score, order=0, **kwargs):
        chunk = kwargs.pop("chunk", None) or make_chunk(chunk_hash, **kwargs)
        return ScoredChunk(chunk=chunk, score=score, original_score=score, order=order)
    return _make


@pytest.fixture
def fake_service():
    return FakeQueryService


@pytest.fixture
def vector_options():
    return PipelineOptions(search_mode="vector", threshold=0.5)


@pytest.fixture
def keyword_options():
    return PipelineOptions(search_mode="keyword", threshold=0.1)


@pytest.fixture
def chat_context():
    return SearchContext(
        messages=(
            Message("We left the village at dawn.", speaker="Aria"),
            Message("The road to the castle is long.", speaker="User", is_user=True),
            Message("I am furious about the bridge toll!", speaker="Aria"),
        ),
        character_name="Aria",
        user_name="User",
    )


@pytest.fixture
def validator():
    return CollectionValidator()


@pytest.fixture
def diagnostics():
    return SearchDiagnostics()
