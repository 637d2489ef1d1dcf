# Vectrank – Multi-signal retrieval ranking for conversational context
# Copyright (c) 2026 4rce.com Digital Technologies GmbH. All rights reserved.
# Non-commercial use only. Commercial licensing: info@4rce.com

"""
Temporal decay.

Age is counted in messages. With scene-aware decay, a chunk that belongs to
a different scene than the current message ages from the start of its own
scene. Inside the current scene, or outside any scene, the plain distance
is used.
"""
from typing import Optional

from .config import DecaySettings
from .models import Scene


def multiplier_for_age(age: float, settings: DecaySettings) -> float:
    age = max(0.0, age)
    if settings.mode == "linear":
        mult = max(0.0, 1.0 - age * settings.linear_rate)
    else:
        mult = 0.5 ** (age / settings.half_life)
    return max(settings.min_relevance, mult)


def scene_of(index: int, scenes) -> Optional[Scene]:
    """The containing scene with the latest start."""
    best = None
    for scene in scenes:
        if scene.contains(index) and (best is None or scene.start > best.start):
            best = scene
    return best


def effective_age(message_index: int, current: int, scenes=(), scene_aware: bool = False) -> int:
    if scene_aware and scenes:
        chunk_scene = scene_of(message_index, scenes)
        current_scene = scene_of(current, scenes)
        if chunk_scene is not None and current_scene is not None and chunk_scene != current_scene:
            return max(0, current - chunk_scene.start)
    return max(0, current - message_index)


def apply_decay(scored: list, settings: DecaySettings, current: int, scenes=()) -> list:
    out = []
    for sc in scored:
        chunk = sc.chunk
        if chunk.temporally_blind or chunk.message_index is None:
            out.append(sc.derive(decay_applied=True, decay_multiplier=1.0))
            continue
        age = effective_age(chunk.message_index, current, scenes, settings.scene_aware)
        mult = multiplier_for_age(age, settings)
        out.append(sc.derive(score=sc.score * mult, decay_applied=True,
                             decay_multiplier=mult, effective_age=age))
    return out
