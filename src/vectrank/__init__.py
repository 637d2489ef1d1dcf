# Vectrank – Multi-signal retrieval ranking for conversational context
# Copyright (c) 2026 4rce.com Digital Technologies GmbH. All rights reserved.
# Non-commercial use only. Commercial licensing: info@4rce.com

__version__ = "1.0.0"

from .config import DecaySettings, PipelineOptions
from .diagnostics import SearchDiagnostics
from .errors import ConfigurationError, DataIntegrityError, RetrievalFailure
from .models import (
    Chunk, ChunkGroup, ChunkLink, ConditionRule, Conditions, Message, Scene,
    ScoredChunk, SearchContext, SearchResult, SearchStats, make_hash,
)
from .pipeline import batch_search, search, search_sync
from .retrieval import ChromaQueryService, EmbeddingCache, LocalQueryService, VectorQueryService
from .scoring import combine, cosine_similarity
from .selection import injection_text
from .store import ChunkStore, InMemoryChunkStore
from .trace import Trace
from .validation import CollectionValidator

__all__ = [
    "__version__",
    "Chunk", "ChunkGroup", "ChunkLink", "ChunkStore", "ChromaQueryService",
    "CollectionValidator", "ConditionRule", "Conditions", "ConfigurationError",
    "DataIntegrityError", "DecaySettings", "EmbeddingCache", "InMemoryChunkStore",
    "LocalQueryService", "Message", "PipelineOptions", "RetrievalFailure", "Scene",
    "ScoredChunk", "SearchContext", "SearchDiagnostics", "SearchResult", "SearchStats",
    "Trace", "VectorQueryService", "batch_search", "combine", "cosine_similarity",
    "injection_text", "make_hash", "search", "search_sync",
]
