# Vectrank – Multi-signal retrieval ranking for conversational context
# Copyright (c) 2026 4rce.com Digital Technologies GmbH. All rights reserved.
# Non-commercial use only. Commercial licensing: info@4rce.com

"""
Dual-vector and chunk-link resolution.

Ranked results are grouped into units: a chunk followed by everything it
drags in (a summary's parent, force-link targets, recursively). Selection
takes or skips a unit as a whole, so top-K truncation can never split a
summary from its parent. A dependency that already sits in an earlier unit
becomes a requirement instead of a copy.
"""
from dataclasses import dataclass, field


@dataclass
class Unit:
    items: list
    requires: set = field(default_factory=set)

    @property
    def hashes(self) -> list[str]:
        return [sc.hash for sc in self.items]


@dataclass
class Resolution:
    units: list = field(default_factory=list)
    parents_inserted: int = 0
    links_added: int = 0
    excluded: list = field(default_factory=list)  # (hash, reason)
    warnings: list = field(default_factory=list)


class LinkResolver:
    def __init__(self, chunk_map: dict, scored_lookup: dict, mode: str = "append"):
        """
        chunk_map: every chunk of the collection by hash.
        scored_lookup: this run's scored candidates by hash (pre-filter scores).
        """
        self.chunk_map = chunk_map
        self.scored_lookup = scored_lookup
        self.mode = mode
        self._ranked: dict = {}

    def _scored(self, chunk_hash: str, forced_by: str, template):
        if chunk_hash in self._ranked:
            return self._ranked[chunk_hash]
        known = self.scored_lookup.get(chunk_hash)
        if known is not None:
            return known.derive(score=known.original_score, forced_by=forced_by)
        chunk = self.chunk_map[chunk_hash]
        return template.derive(
            chunk=chunk, score=0.0, original_score=0.0, vector_score=0.0,
            keyword_score=0.0, keyword_boost=1.0, matched_keywords=(),
            importance_multiplier=1.0, group_boosted=False, decay_applied=False,
            decay_multiplier=1.0, effective_age=None, forced_by=forced_by,
        )

    def _usable(self, chunk_hash: str):
        chunk = self.chunk_map.get(chunk_hash)
        if chunk is None or chunk.disabled:
            return None
        return chunk

    def resolve(self, ranked: list) -> Resolution:
        res = Resolution()
        placed: set[str] = set()
        self._ranked = {sc.hash: sc for sc in ranked}
        in_results = set(self._ranked)

        for sc in ranked:
            if sc.hash in placed:
                continue
            unit = Unit(items=[])
            soft: list = []

            if sc.chunk.is_summary_chunk:
                parent_hash = sc.chunk.parent_hash
                parent = self._usable(parent_hash) if parent_hash else None
                if parent is None:
                    msg = f"orphaned summary {sc.hash}: parent {parent_hash!r} missing or disabled"
                    print(f"Warning: {msg}")
                    res.warnings.append(msg)
                    res.excluded.append((sc.hash, "orphaned_summary"))
                    continue
                if parent_hash in placed:
                    if self.mode == "replace":
                        res.excluded.append((sc.hash, "parent_already_selected"))
                        placed.add(sc.hash)
                        continue
                    unit.items.append(sc)
                    unit.requires.add(parent_hash)
                elif self.mode == "replace":
                    head = self._scored(parent_hash, "parent", sc).derive(score=sc.score)
                    unit.items.append(head)
                    placed.add(sc.hash)
                    res.parents_inserted += 1
                else:
                    unit.items.append(sc)
                    unit.items.append(self._scored(parent_hash, "parent", sc))
                    if parent_hash not in in_results:
                        res.parents_inserted += 1
            else:
                unit.items.append(sc)

            for item in unit.items:
                placed.add(item.hash)
            self._expand_links(unit, placed, soft, res, in_results)

            res.units.append(unit)
            for target in soft:
                res.units.append(Unit(items=[target]))
        return res

    def _expand_links(self, unit: Unit, placed: set, soft: list, res: Resolution, in_results: set):
        i = 0
        while i < len(unit.items):
            item = unit.items[i]
            i += 1
            for link in item.chunk.chunk_links:
                target_hash = link.target_hash
                if target_hash == item.hash:
                    continue
                if target_hash in placed:
                    if target_hash not in unit.hashes:
                        unit.requires.add(target_hash)
                    continue
                target = self._usable(target_hash)
                if target is None:
                    msg = f"link from {item.hash} to missing or disabled chunk {target_hash!r}"
                    print(f"Warning: {msg}")
                    res.warnings.append(msg)
                    continue
                if link.mode == "force":
                    added = self._scored(target_hash, "link", item)
                    unit.items.append(added)
                    placed.add(target_hash)
                    if target_hash not in in_results:
                        res.links_added += 1
                    if target.is_summary_chunk and target.parent_hash:
                        self._attach_parent(unit, target, placed, res, in_results, item)
                elif link.mode == "soft" and target_hash not in in_results:
                    known = self.scored_lookup.get(target_hash)
                    if known is not None and known.original_score > 0 and not target.is_summary_chunk:
                        soft.append(known.derive(score=known.original_score, forced_by="link"))
                        placed.add(target_hash)
                        res.links_added += 1

    def _attach_parent(self, unit, summary, placed, res, in_results, template):
        parent_hash = summary.parent_hash
        if parent_hash in placed:
            if parent_hash not in unit.hashes:
                unit.requires.add(parent_hash)
            return
        if self._usable(parent_hash) is None:
            unit.items = [sc for sc in unit.items if sc.hash != summary.hash]
            placed.discard(summary.hash)
            msg = f"orphaned summary {summary.hash}: parent {parent_hash!r} missing or disabled"
            print(f"Warning: {msg}")
            res.warnings.append(msg)
            res.excluded.append((summary.hash, "orphaned_summary"))
            return
        unit.items.append(self._scored(parent_hash, "parent", template))
        placed.add(parent_hash)
        if parent_hash not in in_results:
            res.parents_inserted += 1
