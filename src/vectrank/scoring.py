# Vectrank – Multi-signal retrieval ranking for conversational context
# Copyright (c) 2026 4rce.com Digital Technologies GmbH. All rights reserved.
# Non-commercial use only. Commercial licensing: info@4rce.com

"""Score combination, cosine similarity and importance weighting."""
import math
from typing import Sequence

from .models import NEUTRAL_IMPORTANCE


class DimensionMismatch(ValueError):
    pass


def cosine_similarity(a: Sequence[float], b: Sequence[float], strict: bool = False) -> float:
    """
    Cosine similarity clamped to [-1, 1].

    Empty or zero vectors give 0. Vectors of different length give 0, or
    raise DimensionMismatch when strict so the caller can report it.
    """
    if len(a) != len(b):
        if strict:
            raise DimensionMismatch(f"dimension mismatch: {len(a)} vs {len(b)}")
        return 0.0
    if not a:
        return 0.0
    dot = 0.0
    na = 0.0
    nb = 0.0
    for x, y in zip(a, b):
        dot += x * y
        na += x * x
        nb += y * y
    if na == 0.0 or nb == 0.0:
        return 0.0
    return max(-1.0, min(1.0, dot / math.sqrt(na * nb)))


def combine(vector_score: float, keyword_score: float,
            vector_weight: float, keyword_weight: float) -> float:
    """Weighted sum; the weights are not normalized."""
    return vector_score * vector_weight + keyword_score * keyword_weight


def mode_score(mode: str, vector_score: float, keyword_score: float,
               vector_weight: float, keyword_weight: float) -> float:
    if mode == "vector":
        return vector_score
    if mode == "keyword":
        return keyword_score
    return combine(vector_score, keyword_score, vector_weight, keyword_weight)


def importance_multiplier(importance: int) -> float:
    return importance / NEUTRAL_IMPORTANCE


def apply_importance(scored: list) -> list:
    out = []
    for sc in scored:
        mult = importance_multiplier(sc.chunk.importance)
        out.append(sc.derive(score=sc.score * mult, importance_multiplier=mult))
    return out


def threshold_filter(scored: list, threshold: float) -> tuple[list, list]:
    """Split into (kept, dropped) by score >= threshold."""
    kept, dropped = [], []
    for sc in scored:
        (kept if sc.score >= threshold else dropped).append(sc)
    return kept, dropped


def rerank(scored: list) -> list:
    """Descending score, ties broken by candidate order."""
    return sorted(scored, key=lambda sc: (-sc.score, sc.order))
