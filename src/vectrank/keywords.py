# Vectrank – Multi-signal retrieval ranking for conversational context
# Copyright (c) 2026 4rce.com Digital Technologies GmbH. All rights reserved.
# Non-commercial use only. Commercial licensing: info@4rce.com

"""
Query keyword extraction and chunk keyword matching.

Chunk keywords come in three shapes:
  plain word      "castle"         equals an extracted query keyword
  phrase          "iron gate"      occurs as a phrase in the normalized query
  regex           "/iron\\w+/i"     searched in the raw query text
"""
import re
from dataclasses import dataclass, field
from typing import Optional

STOPWORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "as", "is", "was", "are", "were", "be",
    "been", "being", "have", "has", "had", "do", "does", "did", "will",
    "would", "should", "could", "may", "might", "must", "can", "this",
    "that", "these", "those", "i", "you", "he", "she", "it", "we", "they",
    "what", "which", "who", "when", "where", "why", "how",
})

MIN_KEYWORD_LENGTH = 2

_PUNCT_RE = re.compile(r"[^\w\s]", re.UNICODE)
_REGEX_KEYWORD_RE = re.compile(r"^/(.+)/([a-z]*)$", re.DOTALL)
_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "x": re.VERBOSE}


def normalize_text(text: str) -> str:
    """Lowercase, punctuation to spaces, whitespace collapsed."""
    return " ".join(_PUNCT_RE.sub(" ", (text or "").lower()).split())


def extract_keywords(text: str) -> list[str]:
    """Significant words of a query, lowercase, de-duplicated, in order."""
    seen = set()
    keywords = []
    for word in normalize_text(text).split():
        if len(word) < MIN_KEYWORD_LENGTH or word in STOPWORDS or word in seen:
            continue
        seen.add(word)
        keywords.append(word)
    return keywords


def parse_regex_keyword(keyword: str) -> Optional[tuple[str, int]]:
    """Return (pattern, flags) for a /pattern/flags keyword, None for a literal."""
    m = _REGEX_KEYWORD_RE.match(keyword.strip())
    if not m:
        return None
    flags = 0
    for ch in m.group(2):
        flags |= _REGEX_FLAGS.get(ch, 0)
    return m.group(1), flags


def compile_pattern(value: str) -> re.Pattern:
    """Compile a /pattern/flags string, or an escaped literal (case-insensitive)."""
    parsed = parse_regex_keyword(value)
    if parsed is None:
        return re.compile(re.escape(value), re.IGNORECASE)
    return re.compile(parsed[0], parsed[1])


@dataclass
class QueryTerms:
    """A query prepared once for every keyword test in one pipeline run."""
    raw: str
    keywords: list[str]
    normalized: str
    _keyword_set: set = field(default_factory=set, repr=False)

    @classmethod
    def from_text(cls, text: str) -> "QueryTerms":
        keywords = extract_keywords(text)
        return cls(raw=text, keywords=keywords, normalized=normalize_text(text),
                   _keyword_set=set(keywords))

    def matches(self, keyword: str) -> bool:
        """Literal or phrase match. Raises re.error for an invalid regex keyword."""
        parsed = parse_regex_keyword(keyword)
        if parsed is not None:
            return re.search(parsed[0], self.raw, parsed[1]) is not None
        kw = normalize_text(keyword)
        if not kw:
            return False
        if " " in kw:
            return f" {kw} " in f" {self.normalized} "
        return kw in self._keyword_set


@dataclass
class KeywordMatch:
    score: float = 0.0
    boost: float = 1.0
    matched: tuple[str, ...] = ()
    invalid: tuple[str, ...] = ()


def keyword_score(chunk, terms: QueryTerms, ceiling: float = 1.0) -> KeywordMatch:
    """
    Score = sum of matched keyword weights / number of query keywords,
    capped at ceiling. A weight of 1.0 is a plain match; anything above
    adds (weight - 1) / |Q| on top of the base ratio.
    """
    if not terms.keywords or not chunk.keywords:
        return KeywordMatch()

    matched = []
    invalid = []
    total = 0.0
    bonus = 0.0
    for kw in chunk.keywords:
        try:
            hit = terms.matches(kw)
        except re.error:
            invalid.append(kw)
            continue
        if hit:
            weight = chunk.weight_for(kw)
            matched.append(kw)
            total += weight
            bonus += weight - 1.0

    score = min(ceiling, max(0.0, total / len(terms.keywords)))
    return KeywordMatch(score=score, boost=1.0 + bonus, matched=tuple(matched),
                        invalid=tuple(invalid))


def group_triggered(group_keywords, terms: QueryTerms) -> bool:
    for kw in group_keywords:
        try:
            if terms.matches(kw):
                return True
        except re.error:
            continue
    return False
