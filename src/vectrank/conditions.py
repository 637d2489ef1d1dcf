# Vectrank – Multi-signal retrieval ranking for conversational context
# Copyright (c) 2026 4rce.com Digital Technologies GmbH. All rights reserved.
# Non-commercial use only. Commercial licensing: info@4rce.com

"""
Conditional activation: rules compiled once into small typed nodes, then
evaluated by pure functions against the SearchContext.

Fail-closed: anything that cannot be compiled becomes an InvalidRule, which
always evaluates to False (negate does not flip it) and carries the reason.
"""
import random
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Union

from .keywords import compile_pattern, parse_regex_keyword
from .models import ConditionRule, Conditions, SearchContext

MATCH_MODES = ("contains", "exact", "startsWith", "endsWith")
COUNT_OPERATORS = ("eq", "gte", "lte", "between")

EMOTION_LEXICON = {
    "joy": ("happy", "glad", "joy", "delighted", "laugh", "smile", "cheerful", "excited"),
    "sadness": ("sad", "cry", "tears", "grief", "mourn", "sorrow", "lonely", "miss"),
    "anger": ("angry", "furious", "rage", "mad", "hate", "annoyed", "shout"),
    "fear": ("afraid", "scared", "fear", "terrified", "nervous", "panic", "dread"),
    "surprise": ("surprised", "shocked", "astonished", "unexpected", "sudden", "gasp"),
    "love": ("love", "adore", "kiss", "embrace", "darling", "affection", "tender"),
    "disgust": ("disgusted", "gross", "revolting", "sick", "vile", "nausea"),
}
_EMOTION_ALIASES = {"happy": "joy", "sad": "sadness", "angry": "anger", "scared": "fear"}


# ── Compiled rule nodes ──────────────────────────

@dataclass(frozen=True)
class KeywordRule:
    patterns: tuple
    match_mode: str = "contains"
    negate: bool = False


@dataclass(frozen=True)
class SpeakerRule:
    names: tuple[str, ...]
    match_all: bool = False
    negate: bool = False


@dataclass(frozen=True)
class CharacterPresentRule:
    names: tuple[str, ...]
    negate: bool = False


@dataclass(frozen=True)
class CountRule:
    source: str
    operator: str
    low: float
    high: Optional[float] = None
    negate: bool = False


@dataclass(frozen=True)
class GenerationTypeRule:
    types: tuple[str, ...]
    negate: bool = False


@dataclass(frozen=True)
class GroupChatRule:
    expected: bool
    negate: bool = False


@dataclass(frozen=True)
class ChunkActiveRule:
    keys: tuple[str, ...]
    negate: bool = False


@dataclass(frozen=True)
class LorebookActiveRule:
    keys: tuple[str, ...]
    negate: bool = False


@dataclass(frozen=True)
class TimeOfDayRule:
    start: int
    end: int
    negate: bool = False


@dataclass(frozen=True)
class EmotionRule:
    words: tuple[str, ...]
    negate: bool = False


@dataclass(frozen=True)
class RandomChanceRule:
    percent: float
    negate: bool = False


@dataclass(frozen=True)
class InvalidRule:
    reason: str
    negate: bool = False


CompiledRule = Union[
    KeywordRule, SpeakerRule, CharacterPresentRule, CountRule, GenerationTypeRule,
    GroupChatRule, ChunkActiveRule, LorebookActiveRule, TimeOfDayRule, EmotionRule,
    RandomChanceRule, InvalidRule,
]


@dataclass(frozen=True)
class CompiledConditions:
    enabled: bool
    logic: str
    rules: tuple = ()

    @property
    def problems(self) -> list[str]:
        return [r.reason for r in self.rules if isinstance(r, InvalidRule)]


@dataclass
class EvalEnv:
    """Everything a rule may look at for one query."""
    context: SearchContext
    context_window: int
    chunk_hash: str = ""
    active_keys: frozenset = frozenset()
    query: str = ""
    _window_text: Optional[list[str]] = field(default=None, repr=False)

    @property
    def window_texts(self) -> list[str]:
        if self._window_text is None:
            self._window_text = [
                m.text or "" for m in self.context.recent_messages(self.context_window)
            ]
        return self._window_text

    def for_chunk(self, chunk_hash: str) -> "EvalEnv":
        env = EvalEnv(self.context, self.context_window, chunk_hash, self.active_keys, self.query)
        env._window_text = self.window_texts
        return env


# ── Compilation ──────────────────────────────────

def _as_list(value) -> list:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set, frozenset)):
        return [v for v in value if v is not None and str(v).strip() != ""]
    text = str(value).strip()
    if not text:
        return []
    if parse_regex_keyword(text) is not None:
        return [text]
    return [part.strip() for part in text.split(",") if part.strip()]


def _parse_clock(text: str) -> int:
    hours, minutes = text.strip().split(":")
    h, m = int(hours), int(minutes)
    if not (0 <= h <= 23 and 0 <= m <= 59):
        raise ValueError(f"invalid time {text!r}")
    return h * 60 + m


def _compile_keyword(rule, values):
    mode = rule.settings.get("matchMode", rule.settings.get("match_mode", "contains"))
    if mode not in MATCH_MODES:
        return InvalidRule(f"keyword rule: unknown match mode {mode!r}")
    try:
        patterns = tuple(compile_pattern(str(v)) for v in values)
    except re.error as e:
        return InvalidRule(f"keyword rule: bad regex {values!r}: {e}")
    if mode != "contains":
        # anchored modes compare literal values
        patterns = tuple(
            p if parse_regex_keyword(str(v)) else str(v).lower()
            for p, v in zip(patterns, values)
        )
    return KeywordRule(patterns=patterns, match_mode=mode, negate=rule.negate)


def _compile_count(rule, source):
    operator = rule.settings.get("operator", "gte")
    if operator not in COUNT_OPERATORS:
        return InvalidRule(f"{rule.type} rule: unknown operator {operator!r}")
    try:
        value = rule.value
        if operator == "between":
            if isinstance(value, (list, tuple)) and len(value) == 2:
                low, high = float(value[0]), float(value[1])
            elif isinstance(value, str) and "-" in value:
                low_text, high_text = value.split("-", 1)
                low, high = float(low_text), float(high_text)
            else:
                low, high = float(value), float(rule.settings["max"])
            return CountRule(source, operator, min(low, high), max(low, high), rule.negate)
        return CountRule(source, operator, float(value), None, rule.negate)
    except (TypeError, ValueError, KeyError) as e:
        return InvalidRule(f"{rule.type} rule: unparsable number {rule.value!r} ({e})")


def _compile_time(rule):
    try:
        start_text, end_text = str(rule.value).split("-", 1)
        return TimeOfDayRule(_parse_clock(start_text), _parse_clock(end_text), rule.negate)
    except ValueError as e:
        return InvalidRule(f"timeOfDay rule: expected HH:MM-HH:MM, got {rule.value!r} ({e})")


def _compile_emotion(rule, values):
    words = []
    for value in values:
        name = str(value).lower()
        name = _EMOTION_ALIASES.get(name, name)
        if name not in EMOTION_LEXICON:
            return InvalidRule(f"emotion rule: unknown emotion {value!r}")
        words.extend(EMOTION_LEXICON[name])
    return EmotionRule(tuple(words), rule.negate)


def _compile_bool(value) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "yes", "1"):
        return True
    if text in ("false", "no", "0"):
        return False
    return None


def compile_rule(rule: ConditionRule) -> CompiledRule:
    if not rule.type:
        return InvalidRule("rule without type")
    if rule.value is None or (isinstance(rule.value, str) and not rule.value.strip()):
        return InvalidRule(f"{rule.type} rule without value")

    values = _as_list(rule.value)
    kind = rule.type
    if kind == "keyword":
        if not values:
            return InvalidRule("keyword rule without value")
        return _compile_keyword(rule, values)
    if kind == "speaker":
        match_all = rule.settings.get("matchType", rule.settings.get("match_type", "any")) == "all"
        return SpeakerRule(tuple(str(v).lower() for v in values), match_all, rule.negate)
    if kind == "characterPresent":
        return CharacterPresentRule(tuple(str(v).lower() for v in values), rule.negate)
    if kind == "messageCount":
        return _compile_count(rule, "message_count")
    if kind == "swipeCount":
        return _compile_count(rule, "swipe_count")
    if kind == "generationType":
        return GenerationTypeRule(tuple(str(v).lower() for v in values), rule.negate)
    if kind == "isGroupChat":
        expected = _compile_bool(rule.value)
        if expected is None:
            return InvalidRule(f"isGroupChat rule: expected boolean, got {rule.value!r}")
        return GroupChatRule(expected, rule.negate)
    if kind == "chunkActive":
        return ChunkActiveRule(tuple(str(v).lower() for v in values), rule.negate)
    if kind == "lorebookActive":
        return LorebookActiveRule(tuple(str(v).lower() for v in values), rule.negate)
    if kind == "timeOfDay":
        return _compile_time(rule)
    if kind == "emotion":
        return _compile_emotion(rule, values)
    if kind == "randomChance":
        try:
            percent = float(rule.value)
        except (TypeError, ValueError):
            return InvalidRule(f"randomChance rule: unparsable number {rule.value!r}")
        return RandomChanceRule(max(0.0, min(100.0, percent)), rule.negate)
    return InvalidRule(f"unknown rule type {kind!r}")


def compile_conditions(conditions: Optional[Conditions]) -> CompiledConditions:
    if conditions is None or not conditions.enabled:
        return CompiledConditions(enabled=False, logic="AND")
    rules = tuple(compile_rule(r) for r in conditions.rules)
    logic = conditions.logic.upper()
    if logic not in ("AND", "OR"):
        rules += (InvalidRule(f"unknown condition logic {conditions.logic!r}"),)
        logic = "AND"
    return CompiledConditions(enabled=True, logic=logic, rules=rules)


# ── Evaluation ───────────────────────────────────

def _eval_keyword(rule: KeywordRule, env: EvalEnv) -> bool:
    for text in env.window_texts:
        lowered = text.lower().strip()
        for pattern in rule.patterns:
            if isinstance(pattern, re.Pattern):
                if pattern.search(text):
                    return True
            elif rule.match_mode == "exact" and lowered == pattern:
                return True
            elif rule.match_mode == "startsWith" and lowered.startswith(pattern):
                return True
            elif rule.match_mode == "endsWith" and lowered.endswith(pattern):
                return True
    return False


def _eval_speaker(rule: SpeakerRule, env: EvalEnv) -> bool:
    if rule.match_all:
        speakers = {m.speaker.lower() for m in env.context.recent_messages(env.context_window)}
        return all(name in speakers for name in rule.names)
    return env.context.last_speaker.lower() in rule.names


def _eval_character_present(rule: CharacterPresentRule, env: EvalEnv) -> bool:
    present = {m.speaker.lower() for m in env.context.recent_messages(env.context_window)
               if not m.is_user}
    if env.context.character_name:
        present.add(env.context.character_name.lower())
    return any(name in present for name in rule.names)


def _eval_count(rule: CountRule, env: EvalEnv) -> bool:
    if rule.source == "swipe_count":
        actual = env.context.swipe_count
    else:
        actual = env.context.total_messages
    if rule.operator == "eq":
        return actual == rule.low
    if rule.operator == "gte":
        return actual >= rule.low
    if rule.operator == "lte":
        return actual <= rule.low
    return rule.low <= actual <= rule.high


def _eval_generation_type(rule: GenerationTypeRule, env: EvalEnv) -> bool:
    return (env.context.generation_type or "normal").lower() in rule.types


def _eval_group_chat(rule: GroupChatRule, env: EvalEnv) -> bool:
    return env.context.is_group_chat == rule.expected


def _eval_chunk_active(rule: ChunkActiveRule, env: EvalEnv) -> bool:
    return any(key in env.active_keys for key in rule.keys)


def _eval_lorebook_active(rule: LorebookActiveRule, env: EvalEnv) -> bool:
    for entry in env.context.active_lorebook_entries:
        names = {str(entry.get(k, "")).lower() for k in ("uid", "comment", "name")}
        for key in entry.get("key") or []:
            names.add(str(key).lower())
        if any(k in names for k in rule.keys):
            return True
    return False


def _eval_time_of_day(rule: TimeOfDayRule, env: EvalEnv) -> bool:
    now = env.context.now or datetime.now()
    minute = now.hour * 60 + now.minute
    if rule.start <= rule.end:
        return rule.start <= minute <= rule.end
    return minute >= rule.start or minute <= rule.end


def _eval_emotion(rule: EmotionRule, env: EvalEnv) -> bool:
    for text in env.window_texts:
        words = set(re.findall(r"\w+", text.lower()))
        if any(w in words for w in rule.words):
            return True
    return False


def _eval_random_chance(rule: RandomChanceRule, env: EvalEnv) -> bool:
    # unseeded rolls are keyed on the query text
    seed = env.context.seed if env.context.seed is not None else env.query
    roll = random.Random(f"{seed}:{env.chunk_hash}").random()
    return roll * 100 < rule.percent


_EVALUATORS = {
    KeywordRule: _eval_keyword,
    SpeakerRule: _eval_speaker,
    CharacterPresentRule: _eval_character_present,
    CountRule: _eval_count,
    GenerationTypeRule: _eval_generation_type,
    GroupChatRule: _eval_group_chat,
    ChunkActiveRule: _eval_chunk_active,
    LorebookActiveRule: _eval_lorebook_active,
    TimeOfDayRule: _eval_time_of_day,
    EmotionRule: _eval_emotion,
    RandomChanceRule: _eval_random_chance,
}


def evaluate_rule(rule: CompiledRule, env: EvalEnv) -> bool:
    if isinstance(rule, InvalidRule):
        return False
    result = _EVALUATORS[type(rule)](rule, env)
    return not result if rule.negate else result


def evaluate(compiled: CompiledConditions, env: EvalEnv) -> bool:
    """True when the chunk may activate in this context."""
    if not compiled.enabled or not compiled.rules:
        return True
    results = (evaluate_rule(rule, env) for rule in compiled.rules)
    if compiled.logic == "OR":
        return any(results)
    return all(results)
