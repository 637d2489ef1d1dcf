# Vectrank – Multi-signal retrieval ranking for conversational context
# Copyright (c) 2026 4rce.com Digital Technologies GmbH. All rights reserved.
# Non-commercial use only. Commercial licensing: info@4rce.com

"""
Chunk groups: a keyword-triggered boost for every member of a group, and an
enforcement pass that keeps grouped chunks together in the final answer.
"""
from collections import OrderedDict

from .keywords import QueryTerms, group_triggered


def group_index(chunks) -> "OrderedDict[str, dict]":
    """Group name -> {keywords, requires_member, members} in collection order."""
    groups: OrderedDict[str, dict] = OrderedDict()
    for chunk in chunks:
        group = chunk.chunk_group
        if group is None:
            continue
        entry = groups.setdefault(
            group.name, {"keywords": [], "requires_member": False, "members": []}
        )
        for kw in group.group_keywords:
            if kw.lower() not in (k.lower() for k in entry["keywords"]):
                entry["keywords"].append(kw)
        entry["requires_member"] = entry["requires_member"] or group.requires_group_member
        entry["members"].append(chunk.hash)
    return groups


def triggered_groups(groups: dict, terms: QueryTerms) -> list[str]:
    return [name for name, g in groups.items() if group_triggered(g["keywords"], terms)]


def boost(scored: list, triggered: list[str], multiplier: float) -> list:
    names = set(triggered)
    out = []
    for sc in scored:
        group = sc.chunk.chunk_group
        if group is not None and group.name in names:
            out.append(sc.derive(score=sc.score * multiplier, group_boosted=True))
        else:
            out.append(sc)
    return out


def enforce(results: list, pool: list, groups: dict, triggered: list[str],
            max_members: int) -> tuple[list, list]:
    """
    Append group mates of the chunks already in results, best pool score
    first, at most max_members per group. A triggered group flagged
    requires_member with no representative gets its best member.

    pool holds every eligible candidate (enabled, conditions passed) with
    its pre-filter score. Returns (results, forced).
    """
    if max_members <= 0:
        return results, []

    present = {sc.hash for sc in results}
    ranked_pool = sorted(pool, key=lambda sc: (-sc.original_score, sc.order))
    by_group: dict[str, list] = {}
    for sc in ranked_pool:
        if sc.chunk.chunk_group is not None:
            by_group.setdefault(sc.chunk.chunk_group.name, []).append(sc)

    represented = []
    for sc in results:
        group = sc.chunk.chunk_group
        if group is not None and group.name not in represented:
            represented.append(group.name)

    forced = []

    def pull(name, limit):
        added = 0
        for candidate in by_group.get(name, []):
            if added >= limit:
                break
            if candidate.hash in present:
                continue
            present.add(candidate.hash)
            forced.append(candidate.derive(score=candidate.original_score, forced_by="group"))
            added += 1

    for name in represented:
        pull(name, max_members)
    for name in triggered:
        if name not in represented and groups.get(name, {}).get("requires_member"):
            pull(name, 1)

    return results + forced, forced
