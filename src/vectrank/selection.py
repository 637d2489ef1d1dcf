# Vectrank – Multi-signal retrieval ranking for conversational context
# Copyright (c) 2026 4rce.com Digital Technologies GmbH. All rights reserved.
# Non-commercial use only. Commercial licensing: info@4rce.com

"""Top-K selection with live-context deduplication, and injection rendering."""
from dataclasses import dataclass, field

DEFAULT_TEMPLATE = "{text}"
DEFAULT_SEPARATOR = "\n\n"


@dataclass
class Selection:
    results: list = field(default_factory=list)
    skipped_duplicates: int = 0
    truncated: int = 0
    skipped: list = field(default_factory=list)  # (hash, reason)


def select(units: list, top_k: int, live_hashes) -> Selection:
    """
    Walk units in rank order and take each one whole. Items already in the
    live context are removed first; a summary whose parent is live goes with
    it. A unit that no longer fits is skipped and smaller ones after it may
    still be taken. len(results) <= top_k always holds.
    """
    sel = Selection()
    chosen: set[str] = set()

    for unit in units:
        items = []
        for sc in unit.items:
            if sc.hash in live_hashes or sc.hash in chosen:
                sel.skipped_duplicates += 1
                sel.skipped.append((sc.hash, "already_in_context"))
            elif sc.chunk.is_summary_chunk and sc.chunk.parent_hash in live_hashes:
                sel.skipped_duplicates += 1
                sel.skipped.append((sc.hash, "parent_in_context"))
            else:
                items.append(sc)
        if not items:
            continue

        missing = [h for h in unit.requires if h not in chosen and h not in live_hashes]
        if missing:
            for sc in items:
                sel.skipped.append((sc.hash, "dependency_not_selected"))
            continue

        if len(sel.results) + len(items) > top_k:
            sel.truncated += len(items)
            for sc in items:
                sel.skipped.append((sc.hash, "top_k"))
            continue

        sel.results.extend(items)
        chosen.update(sc.hash for sc in items)
    return sel


def injection_text(results: list, chunk_map: dict = None,
                   template: str = DEFAULT_TEMPLATE, separator: str = DEFAULT_SEPARATOR) -> str:
    """
    Render selected chunks for prompt injection. A summary stands in for its
    parent's full text; each parent is rendered once.
    """
    chunk_map = chunk_map or {}
    by_hash = {sc.hash: sc.chunk for sc in results}
    emitted = set()
    blocks = []
    for sc in results:
        chunk = sc.chunk
        if chunk.is_summary_chunk and chunk.parent_hash:
            chunk = by_hash.get(chunk.parent_hash) or chunk_map.get(chunk.parent_hash) or chunk
        if chunk.hash in emitted:
            continue
        emitted.add(chunk.hash)
        blocks.append(template.format(
            text=chunk.text, hash=chunk.hash, score=sc.score,
            section=chunk.section, topic=chunk.topic,
        ))
    return separator.join(blocks)
