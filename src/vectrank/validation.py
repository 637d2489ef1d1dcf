# Vectrank – Multi-signal retrieval ranking for conversational context
# Copyright (c) 2026 4rce.com Digital Technologies GmbH. All rights reserved.
# Non-commercial use only. Commercial licensing: info@4rce.com

"""
Collection validator – checks chunk records for integrity problems before
they reach the pipeline.

Issues have severity levels: critical, warning, info.
Critical issues are rejected at ingestion (InMemoryChunkStore).
Quality score starts at 100 and decreases per issue.
"""
import re
from collections import Counter

from .conditions import compile_conditions
from .keywords import parse_regex_keyword
from .models import LINK_MODES, MAX_IMPORTANCE, MIN_IMPORTANCE

SEVERITY_PENALTY = {"critical": 10, "warning": 2, "info": 0}
MAX_DEDUCTION = {"critical": 60, "warning": 30, "info": 0}


class CollectionValidator:
    def check_all(self, chunks: list) -> dict:
        issues: list[dict] = []
        index = {}
        seen = Counter(c.hash for c in chunks)
        for chunk_hash, count in seen.items():
            if count > 1:
                issues.append(_issue("critical", chunk_hash, f"Duplicate hash ({count} chunks)"))
        for chunk in chunks:
            index.setdefault(chunk.hash, chunk)

        for chunk in chunks:
            issues.extend(self.check_chunk(chunk, index))
        issues.extend(self._check_dimensions(chunks))

        deductions: dict[str, int] = {}
        for issue in issues:
            sev = issue["severity"]
            deductions[sev] = deductions.get(sev, 0) + SEVERITY_PENALTY.get(sev, 0)

        score = 100
        for sev, total in deductions.items():
            score -= min(total, MAX_DEDUCTION.get(sev, 100))
        score = max(0, score)

        return {
            "score": score,
            "total_chunks": len(chunks),
            "total_issues": len(issues),
            "critical": sum(1 for i in issues if i["severity"] == "critical"),
            "warnings": sum(1 for i in issues if i["severity"] == "warning"),
            "info": sum(1 for i in issues if i["severity"] == "info"),
            "issues": issues,
        }

    def check_chunk(self, chunk, index: dict) -> list[dict]:
        """Check a single chunk against the rest of its collection."""
        issues: list[dict] = []
        h = chunk.hash

        if not h:
            issues.append(_issue("critical", h, "Chunk without hash"))
        if not MIN_IMPORTANCE <= chunk.importance <= MAX_IMPORTANCE:
            issues.append(_issue(
                "critical", h,
                f"Importance {chunk.importance} outside [{MIN_IMPORTANCE}, {MAX_IMPORTANCE}]",
            ))
        if chunk.conditions is not None and chunk.conditions.logic not in ("AND", "OR"):
            issues.append(_issue("critical", h, f"Invalid condition logic '{chunk.conditions.logic}'"))
        elif chunk.conditions is not None:
            for problem in compile_conditions(chunk.conditions).problems:
                issues.append(_issue("warning", h, f"Malformed rule: {problem}"))

        for link in chunk.chunk_links:
            if link.mode not in LINK_MODES:
                issues.append(_issue("critical", h, f"Unknown link mode '{link.mode}'"))
            if link.target_hash not in index:
                issues.append(_issue("warning", h, f"Link target '{link.target_hash}' not found"))

        if chunk.is_summary_chunk:
            if not chunk.parent_hash:
                issues.append(_issue("warning", h, "Summary chunk without parent_hash"))
            elif chunk.parent_hash not in index:
                issues.append(_issue("warning", h, f"Orphaned summary: parent '{chunk.parent_hash}' not found"))
            elif index[chunk.parent_hash].disabled:
                issues.append(_issue("warning", h, f"Orphaned summary: parent '{chunk.parent_hash}' is disabled"))

        for kw in chunk.keywords:
            parsed = parse_regex_keyword(kw)
            if parsed is None:
                continue
            try:
                re.compile(parsed[0], parsed[1])
            except re.error as e:
                issues.append(_issue("warning", h, f"Invalid regex keyword '{kw}': {e}"))

        if chunk.chunk_group is not None and chunk.chunk_group.requires_group_member \
                and not chunk.chunk_group.group_keywords:
            issues.append(_issue("info", h, f"Group '{chunk.chunk_group.name}' requires a member but has no trigger keywords"))
        if not chunk.text.strip():
            issues.append(_issue("info", h, "Empty text"))
        if not chunk.has_embedding:
            issues.append(_issue("info", h, "No embedding (keyword search only)"))
        return issues

    def _check_dimensions(self, chunks: list) -> list[dict]:
        dims = Counter(len(c.embedding) for c in chunks if c.has_embedding)
        if len(dims) <= 1:
            return []
        expected = dims.most_common(1)[0][0]
        return [
            _issue("warning", c.hash, f"Embedding dimension {len(c.embedding)} != collection dimension {expected}")
            for c in chunks if c.has_embedding and len(c.embedding) != expected
        ]


def _issue(severity: str, chunk_hash: str, message: str) -> dict:
    return {"severity": severity, "hash": chunk_hash, "message": message}
