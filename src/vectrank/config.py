# Vectrank – Multi-signal retrieval ranking for conversational context
# Copyright (c) 2026 4rce.com Digital Technologies GmbH. All rights reserved.
# Non-commercial use only. Commercial licensing: info@4rce.com

"""
Pipeline options – configurable via:
1. Environment variables (VECTRANK_ prefix, nested with __)
2. .env file
3. JSON overrides file (PipelineOptions.load)
4. Per-call dicts, snake_case or camelCase (PipelineOptions.from_dict)
"""
import json
import re
from pathlib import Path
from typing import Literal, Optional, Union

from pydantic import BaseModel, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

SEARCH_MODES = ("vector", "keyword", "hybrid")
DECAY_MODES = ("exponential", "linear")
DUAL_VECTOR_MODES = ("append", "replace")
VECTOR_SEARCH_TARGETS = ("full", "summary", "both")
MAX_TOP_K = 20
MAX_RETRIEVAL_TOP_K = 100

# camelCase names that don't follow the plain snake_case conversion
_KEY_ALIASES = {"decay_settings": "decay"}
_DECAY_KEY_ALIASES = {"type": "mode"}


class DecaySettings(BaseModel):
    enabled: bool = False
    mode: Literal["exponential", "linear"] = "exponential"
    half_life: float = 50
    linear_rate: float = 0.01
    min_relevance: float = 0.0
    scene_aware: bool = False


class PipelineOptions(BaseSettings):
    # ── Scoring ──────────────────────────────────
    search_mode: Literal["vector", "keyword", "hybrid"] = "hybrid"
    vector_weight: float = 0.7
    keyword_weight: float = 0.3
    keyword_score_ceiling: float = 1.0
    threshold: float = 0.6

    # ── Selection ────────────────────────────────
    top_k: int = 5
    retrieval_top_k: Optional[int] = None

    # ── Stages ───────────────────────────────────
    apply_importance: bool = True
    apply_conditions: bool = True
    apply_groups: bool = True
    apply_decay: bool = False

    # ── Groups ───────────────────────────────────
    group_boost_multiplier: float = 1.3
    max_forced_group_members: int = 5

    # ── Decay / Conditions ───────────────────────
    decay: DecaySettings = DecaySettings()
    context_window: int = 10

    # ── Dual-vector ──────────────────────────────
    dual_vector_mode: Literal["append", "replace"] = "append"
    vector_search_target: Literal["full", "summary", "both"] = "both"

    # ── Retrieval collaborator ───────────────────
    collection_id: str = "default"
    retrieval_timeout: Optional[float] = None

    model_config = SettingsConfigDict(
        env_prefix="VECTRANK_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @classmethod
    def load(cls, path: Optional[Union[str, Path]] = None) -> "PipelineOptions":
        """
        Load options: ENV -> .env -> JSON overrides file.

        An unreadable file is reported and skipped; values of the wrong type
        raise ConfigurationError.
        """
        options = cls()

        if path is None or not Path(path).exists():
            return options
        try:
            data = json.loads(Path(path).read_text())
            if not isinstance(data, dict):
                raise ValueError("expected a JSON object")
        except (OSError, ValueError) as e:
            print(f"Warning: Options file error: {e}")
            return options

        values = options.model_dump()
        for key, value in _normalize_keys(data).items():
            if key not in cls.model_fields or value == "":
                continue
            if key == "decay" and isinstance(value, dict):
                value = {**values["decay"], **value}
            values[key] = value
        return cls._validated(values)

    def save(self, path: Union[str, Path]):
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.model_dump(), indent=2, default=str))

    @classmethod
    def from_dict(cls, data: dict) -> "PipelineOptions":
        """Build options from a per-call dict; invalid values raise ConfigurationError."""
        return cls._validated(_normalize_keys(data))

    @classmethod
    def _validated(cls, values: dict) -> "PipelineOptions":
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigurationError(
                [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
            ) from e

    @property
    def effective_retrieval_top_k(self) -> int:
        if self.retrieval_top_k is not None:
            return self.retrieval_top_k
        return min(MAX_RETRIEVAL_TOP_K, max(10, self.top_k * 2))

    def validate_ranges(self) -> list[str]:
        """Every range problem in the current values (empty list = valid)."""
        problems = []
        if self.search_mode not in SEARCH_MODES:
            problems.append(f"unknown search_mode {self.search_mode!r}")
        if not 0.0 <= self.threshold <= 1.0:
            problems.append(f"threshold must be in [0, 1], got {self.threshold}")
        if not 1 <= self.top_k <= MAX_TOP_K:
            problems.append(f"top_k must be in [1, {MAX_TOP_K}], got {self.top_k}")
        for name in ("vector_weight", "keyword_weight"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                problems.append(f"{name} must be in [0, 1], got {value}")
        if self.keyword_score_ceiling <= 0:
            problems.append("keyword_score_ceiling must be positive")
        if self.group_boost_multiplier <= 0:
            problems.append("group_boost_multiplier must be positive")
        if self.max_forced_group_members < 0:
            problems.append("max_forced_group_members must be >= 0")
        if self.context_window < 0:
            problems.append("context_window must be >= 0")
        if self.retrieval_top_k is not None and self.retrieval_top_k < 1:
            problems.append("retrieval_top_k must be >= 1")
        if self.retrieval_timeout is not None and self.retrieval_timeout <= 0:
            problems.append("retrieval_timeout must be positive")
        if self.dual_vector_mode not in DUAL_VECTOR_MODES:
            problems.append(f"unknown dual_vector_mode {self.dual_vector_mode!r}")
        if self.vector_search_target not in VECTOR_SEARCH_TARGETS:
            problems.append(f"unknown vector_search_target {self.vector_search_target!r}")

        decay = self.decay
        if decay.mode not in DECAY_MODES:
            problems.append(f"unknown decay mode {decay.mode!r}")
        if decay.half_life <= 0:
            problems.append("decay.half_life must be positive")
        if decay.linear_rate < 0:
            problems.append("decay.linear_rate must be >= 0")
        if not 0.0 <= decay.min_relevance <= 1.0:
            problems.append("decay.min_relevance must be in [0, 1]")
        return problems


def _snake(key: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


def _normalize_keys(data: dict) -> dict:
    out = {}
    for key, value in data.items():
        name = _KEY_ALIASES.get(_snake(key), _snake(key))
        if name == "decay" and isinstance(value, dict):
            value = {
                _DECAY_KEY_ALIASES.get(_snake(k), _snake(k)): v for k, v in value.items()
            }
        out[name] = value
    return out


def coerce_options(options) -> PipelineOptions:
    """Accept None, a dict, or a PipelineOptions; always return a validated instance."""
    if options is None:
        options = PipelineOptions()
    elif isinstance(options, dict):
        options = PipelineOptions.from_dict(options)
    elif not isinstance(options, PipelineOptions):
        raise ConfigurationError(f"options must be a dict or PipelineOptions, got {type(options).__name__}")
    problems = options.validate_ranges()
    if problems:
        raise ConfigurationError(problems)
    return options
