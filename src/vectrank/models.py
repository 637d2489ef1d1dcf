# Vectrank – Multi-signal retrieval ranking for conversational context
# Copyright (c) 2026 4rce.com Digital Technologies GmbH. All rights reserved.
# Non-commercial use only. Commercial licensing: info@4rce.com

"""
Chunk records and the per-query values that flow through the pipeline.

Chunk is frozen: stages never touch a stored record, they derive ScoredChunk
copies that are thrown away once the query completes.

from_dict() accepts both snake_case and the camelCase record shape used by
existing collection exports (customWeights, chunkGroup.groupKeywords,
chunkLinks[].targetHash, isSummaryChunk, parentHash, messageId, ...).
"""
import hashlib
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from typing import Any, Optional

LINK_MODES = ("force", "soft")
CONDITION_LOGIC = ("AND", "OR")
MIN_IMPORTANCE = 0
MAX_IMPORTANCE = 200
NEUTRAL_IMPORTANCE = 100


def _pick(data: dict, *keys, default=None):
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def make_hash(text: str) -> str:
    """Content hash used for chunks and chat messages alike."""
    return hashlib.sha256(text.encode()).hexdigest()[:16]


@dataclass(frozen=True)
class ConditionRule:
    type: str = ""
    value: Any = None
    negate: bool = False
    settings: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "ConditionRule":
        return cls(
            type=str(data.get("type") or ""),
            value=data.get("value"),
            negate=bool(data.get("negate", False)),
            settings=dict(data.get("settings") or {}),
        )


@dataclass(frozen=True)
class Conditions:
    enabled: bool = False
    logic: str = "AND"
    rules: tuple[ConditionRule, ...] = ()

    @classmethod
    def from_dict(cls, data: dict) -> "Conditions":
        logic = str(_pick(data, "logic", "mode", default="AND")).upper()
        return cls(
            enabled=bool(data.get("enabled", False)),
            logic=logic,
            rules=tuple(ConditionRule.from_dict(r) for r in data.get("rules") or []),
        )


@dataclass(frozen=True)
class ChunkGroup:
    name: str
    group_keywords: tuple[str, ...] = ()
    requires_group_member: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> Optional["ChunkGroup"]:
        name = (data.get("name") or "").strip()
        if not name:
            return None
        keywords = _pick(data, "group_keywords", "groupKeywords", default=[])
        return cls(
            name=name,
            group_keywords=tuple(str(k).strip() for k in keywords if str(k).strip()),
            requires_group_member=bool(
                _pick(data, "requires_group_member", "requiresGroupMember", default=False)
            ),
        )


@dataclass(frozen=True)
class ChunkLink:
    target_hash: str
    mode: str = "soft"

    @classmethod
    def from_dict(cls, data: dict) -> "ChunkLink":
        target = _pick(data, "target_hash", "targetHash", "target", default="")
        return cls(target_hash=str(target), mode=str(data.get("mode") or "soft").lower())


@dataclass(frozen=True)
class Chunk:
    hash: str
    text: str = ""
    embedding: tuple[float, ...] = ()
    keywords: tuple[str, ...] = ()
    custom_weights: dict[str, float] = field(default_factory=dict)
    importance: int = NEUTRAL_IMPORTANCE
    conditions: Optional[Conditions] = None
    chunk_group: Optional[ChunkGroup] = None
    chunk_links: tuple[ChunkLink, ...] = ()
    is_summary_chunk: bool = False
    parent_hash: Optional[str] = None
    disabled: bool = False
    message_index: Optional[int] = None
    timestamp: Optional[str] = None
    temporally_blind: bool = False
    section: str = ""
    topic: str = ""
    metadata: dict = field(default_factory=dict)

    @property
    def has_embedding(self) -> bool:
        return len(self.embedding) > 0

    def weight_for(self, keyword: str) -> float:
        return float(self.custom_weights.get(keyword.lower(), self.custom_weights.get(keyword, 1.0)))

    @classmethod
    def from_dict(cls, data: dict) -> "Chunk":
        metadata = dict(data.get("metadata") or {})
        text = data.get("text") or ""
        raw_hash = _pick(data, "hash", "id")
        chunk_hash = str(raw_hash) if raw_hash is not None else make_hash(text)

        keywords: list[str] = []
        weights: dict[str, float] = {}
        for kw in list(data.get("keywords") or []) + list(data.get("customKeywords") or []):
            if isinstance(kw, dict):
                kw_text = str(kw.get("text") or "").strip()
                if kw_text and isinstance(kw.get("weight"), (int, float)):
                    weights[kw_text.lower()] = float(kw["weight"])
            else:
                kw_text = str(kw).strip()
            if kw_text and kw_text not in keywords:
                keywords.append(kw_text)
        for key, value in (_pick(data, "custom_weights", "customWeights", default={}) or {}).items():
            weights[str(key).lower()] = float(value)

        conditions = data.get("conditions")
        group = _pick(data, "chunk_group", "chunkGroup")
        links = _pick(data, "chunk_links", "chunkLinks", default=[]) or []
        message_index = _pick(
            data, "message_index", "messageIndex", "messageId",
            default=_pick(metadata, "messageId", "message_index"),
        )

        return cls(
            hash=chunk_hash,
            text=text,
            embedding=tuple(float(x) for x in data.get("embedding") or []),
            keywords=tuple(keywords),
            custom_weights=weights,
            importance=int(data.get("importance", NEUTRAL_IMPORTANCE)),
            conditions=Conditions.from_dict(conditions) if conditions else None,
            chunk_group=ChunkGroup.from_dict(group) if group else None,
            chunk_links=tuple(ChunkLink.from_dict(link) for link in links),
            is_summary_chunk=bool(_pick(data, "is_summary_chunk", "isSummaryChunk", default=False)),
            parent_hash=(
                str(_pick(data, "parent_hash", "parentHash"))
                if _pick(data, "parent_hash", "parentHash") is not None else None
            ),
            disabled=bool(data.get("disabled", False)),
            message_index=int(message_index) if message_index is not None else None,
            timestamp=data.get("timestamp"),
            temporally_blind=bool(
                _pick(data, "temporally_blind", "temporallyBlind", default=False)
            ),
            section=data.get("section") or "",
            topic=data.get("topic") or "",
            metadata=metadata,
        )


@dataclass
class ScoredChunk:
    """A Chunk plus everything the pipeline learned about it for one query."""
    chunk: Chunk
    score: float
    original_score: float
    order: int
    vector_score: float = 0.0
    keyword_score: float = 0.0
    keyword_boost: float = 1.0
    matched_keywords: tuple[str, ...] = ()
    importance_multiplier: float = 1.0
    group_boosted: bool = False
    decay_applied: bool = False
    decay_multiplier: float = 1.0
    effective_age: Optional[int] = None
    forced_by: Optional[str] = None

    @property
    def hash(self) -> str:
        return self.chunk.hash

    @property
    def text(self) -> str:
        return self.chunk.text

    def derive(self, **changes) -> "ScoredChunk":
        return replace(self, **changes)

    def to_dict(self) -> dict:
        d = asdict(self)
        chunk = d.pop("chunk")
        d.update({
            "hash": chunk["hash"],
            "text": chunk["text"],
            "importance": chunk["importance"],
            "is_summary_chunk": chunk["is_summary_chunk"],
            "parent_hash": chunk["parent_hash"],
            "group": chunk["chunk_group"]["name"] if chunk["chunk_group"] else None,
        })
        d["matched_keywords"] = list(self.matched_keywords)
        return d


@dataclass(frozen=True)
class Message:
    text: str
    speaker: str = ""
    is_user: bool = False
    hash: Optional[str] = None

    @property
    def content_hash(self) -> str:
        return self.hash or make_hash(self.text)

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        is_user = bool(data.get("is_user", False))
        speaker = data.get("speaker") or data.get("name") or ("User" if is_user else "Character")
        return cls(
            text=_pick(data, "text", "mes", default=""),
            speaker=speaker,
            is_user=is_user,
            hash=str(data["hash"]) if data.get("hash") is not None else None,
        )


@dataclass(frozen=True)
class Scene:
    start: int
    end: Optional[int] = None

    def contains(self, index: int) -> bool:
        return index >= self.start and (self.end is None or index <= self.end)


@dataclass(frozen=True)
class SearchContext:
    """Read-only state of the conversation at query time."""
    messages: tuple[Message, ...] = ()
    character_name: Optional[str] = None
    user_name: Optional[str] = None
    current_message_index: Optional[int] = None
    scenes: tuple[Scene, ...] = ()
    live_hashes: frozenset[str] = frozenset()
    generation_type: str = "normal"
    swipe_count: int = 0
    is_group_chat: bool = False
    active_chunk_hashes: frozenset[str] = frozenset()
    active_lorebook_entries: tuple[dict, ...] = ()
    message_count: Optional[int] = None
    now: Optional[datetime] = None
    seed: Optional[int] = None

    def recent_messages(self, window: int) -> tuple[Message, ...]:
        if window <= 0:
            return ()
        return self.messages[-window:]

    @property
    def last_speaker(self) -> str:
        return self.messages[-1].speaker if self.messages else ""

    @property
    def total_messages(self) -> int:
        return self.message_count if self.message_count is not None else len(self.messages)

    @property
    def position(self) -> Optional[int]:
        """Index of the message being generated against, if known."""
        if self.current_message_index is not None:
            return self.current_message_index
        return len(self.messages) - 1 if self.messages else None

    def context_hashes(self) -> frozenset[str]:
        """Hashes of everything already present in the live prompt."""
        return self.live_hashes | {m.content_hash for m in self.messages}

    @classmethod
    def from_dict(cls, data: dict) -> "SearchContext":
        scenes = tuple(
            Scene(start=int(s["start"]), end=int(s["end"]) if s.get("end") is not None else None)
            for s in data.get("scenes") or []
        )
        now = data.get("now")
        return cls(
            messages=tuple(Message.from_dict(m) for m in _pick(data, "messages", "chat", default=[])),
            character_name=_pick(data, "character_name", "characterName"),
            user_name=_pick(data, "user_name", "userName"),
            current_message_index=_pick(data, "current_message_index", "currentMessageId"),
            scenes=scenes,
            live_hashes=frozenset(str(h) for h in _pick(data, "live_hashes", "liveHashes", default=[])),
            generation_type=_pick(data, "generation_type", "generationType", default="normal"),
            swipe_count=int(_pick(data, "swipe_count", "swipeCount", default=0)),
            is_group_chat=bool(_pick(data, "is_group_chat", "isGroupChat", default=False)),
            active_chunk_hashes=frozenset(
                str(h) for h in _pick(data, "active_chunk_hashes", "activeChunks", default=[])
            ),
            active_lorebook_entries=tuple(
                _pick(data, "active_lorebook_entries", "activeLorebookEntries", default=[])
            ),
            message_count=_pick(data, "message_count", "messageCount"),
            now=datetime.fromisoformat(now) if isinstance(now, str) else now,
            seed=data.get("seed"),
        )


@dataclass
class SearchStats:
    search_mode: str = "hybrid"
    total_chunks: int = 0
    searchable_chunks: int = 0
    retrieved: int = 0
    after_threshold: int = 0
    after_conditions: int = 0
    after_decay: int = 0
    groups_triggered: list[str] = field(default_factory=list)
    forced_group_members: int = 0
    parents_inserted: int = 0
    links_added: int = 0
    skipped_duplicates: int = 0
    truncated: int = 0
    returned: int = 0
    empty_reason: Optional[str] = None
    retrieval_error: Optional[str] = None
    warnings: list[str] = field(default_factory=list)
    duration_ms: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class SearchResult:
    results: list[ScoredChunk]
    stats: SearchStats
    trace: Optional["Trace"] = None  # noqa: F821

    @property
    def hashes(self) -> list[str]:
        return [r.hash for r in self.results]

    def to_dict(self) -> dict:
        return {
            "results": [r.to_dict() for r in self.results],
            "stats": self.stats.to_dict(),
            "trace": self.trace.to_dict() if self.trace is not None else None,
        }
