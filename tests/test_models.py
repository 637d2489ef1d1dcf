"""Tests for record parsing and the per-query context."""
import pytest

from vectrank.models import (
    Chunk, ChunkGroup, ChunkLink, Conditions, Message, Scene, SearchContext, make_hash,
)
from vectrank.trace import Trace


class TestChunkFromDict:
    def test_keyword_objects_and_weights(self):
        chunk = Chunk.from_dict({
            "hash": "a",
            "keywords": ["Dragon", {"text": "Castle", "weight": 1.5}],
            "customKeywords": ["moat", "Dragon"],
            "customWeights": {"Moat": 3},
        })
        assert chunk.keywords == ("Dragon", "Castle", "moat")
        assert chunk.weight_for("castle") == 1.5
        assert chunk.weight_for("moat") == 3.0
        assert chunk.weight_for("dragon") == 1.0

    def test_message_index_from_metadata(self):
        chunk = Chunk.from_dict({"hash": "a", "metadata": {"messageId": 12}})
        assert chunk.message_index == 12

    def test_links_and_group(self):
        chunk = Chunk.from_dict({
            "hash": "a",
            "chunkLinks": [{"targetHash": "b", "mode": "FORCE"}, {"target": "c"}],
            "chunkGroup": {"name": " ", "groupKeywords": ["x"]},
        })
        assert chunk.chunk_links == (ChunkLink("b", "force"), ChunkLink("c", "soft"))
        assert chunk.chunk_group is None

    def test_conditions_mode_alias(self):
        chunk = Chunk.from_dict({"hash": "a", "conditions": {
            "enabled": True, "mode": "or", "rules": [{"type": "speaker", "value": "Aria"}]}})
        assert chunk.conditions.logic == "OR"
        assert chunk.conditions.rules[0].value == "Aria"

    def test_group_keywords_trimmed(self):
        group = ChunkGroup.from_dict({"name": "Castle", "groupKeywords": [" castle ", ""]})
        assert group.group_keywords == ("castle",)

    def test_hash_is_stable(self):
        assert make_hash("abc") == make_hash("abc")
        assert len(make_hash("abc")) == 16


class TestScoredChunk:
    def test_derive_leaves_original(self, make_scored):
        sc = make_scored("a", 0.5)
        boosted = sc.derive(score=0.9, group_boosted=True)
        assert sc.score == 0.5
        assert sc.group_boosted is False
        assert boosted.original_score == 0.5

    def test_to_dict(self, make_scored, make_chunk):
        sc = make_scored("a", 0.5, chunk=make_chunk("a", chunk_group=ChunkGroup("G")))
        data = sc.to_dict()
        assert data["hash"] == "a"
        assert data["group"] == "G"
        assert "chunk" not in data


class TestSearchContext:
    def test_recent_messages_window(self, chat_context):
        assert len(chat_context.recent_messages(2)) == 2
        assert chat_context.recent_messages(0) == ()
        assert chat_context.last_speaker == "Aria"

    def test_position(self, chat_context):
        assert chat_context.position == 2
        assert SearchContext().position is None
        assert SearchContext(current_message_index=7).position == 7

    def test_context_hashes(self, chat_context):
        hashes = SearchContext(messages=chat_context.messages, live_hashes=frozenset({"x"})).context_hashes()
        assert "x" in hashes
        assert make_hash("We left the village at dawn.") in hashes

    def test_explicit_message_hash(self):
        assert Message("hi", hash="abc").content_hash == "abc"

    def test_from_dict(self):
        context = SearchContext.from_dict({
            "chat": [{"mes": "Hello", "name": "Aria"}, {"mes": "Hi", "is_user": True}],
            "characterName": "Aria",
            "currentMessageId": 1,
            "scenes": [{"start": 0, "end": None}],
            "liveHashes": ["h1"],
            "now": "2024-05-01T21:30:00",
        })
        assert context.messages[0].speaker == "Aria"
        assert context.messages[1].speaker == "User"
        assert context.current_message_index == 1
        assert context.scenes == (Scene(0, None),)
        assert context.live_hashes == frozenset({"h1"})
        assert context.now.hour == 21

    def test_total_messages(self, chat_context):
        assert chat_context.total_messages == 3
        assert SearchContext(message_count=40).total_messages == 40


class TestTrace:
    def test_fate_status_checked(self):
        with pytest.raises(ValueError):
            Trace(query="q").fate("a", "vanished", "select")

    def test_summary_counts(self, make_scored):
        trace = Trace(query="q")
        trace.snapshot("retrieval", [make_scored("a", 0.9), make_scored("b", 0.1)])
        trace.fate("a", "injected", "select")
        trace.fate("b", "dropped", "threshold", "below_threshold")
        summary = trace.summary()
        assert summary["stages"] == [("retrieval", 2)]
        assert summary["fates"]["injected"] == 1
        assert summary["fates"]["dropped"] == 1

    def test_lookup_helpers(self, make_scored):
        trace = Trace(query="q")
        trace.snapshot("retrieval", [make_scored("a", 0.9), make_scored("b", 0.1)])
        trace.snapshot("threshold", [make_scored("a", 0.9)])
        trace.fate("a", "injected", "select")
        trace.fate("b", "dropped", "threshold", "below_threshold")
        trace.fate("c", "dropped", "conditions", "failed_conditions")
        assert trace.fates_by_status("dropped") == ["b", "c"]
        assert trace.fates_by_status("skipped") == []
        assert trace.stage("threshold").hashes == ["a"]
        assert trace.stage("decay") is None

    def test_disabled_conditions_default(self):
        assert Conditions().enabled is False
