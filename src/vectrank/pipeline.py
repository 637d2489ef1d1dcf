# Vectrank – Multi-signal retrieval ranking for conversational context
# Copyright (c) 2026 4rce.com Digital Technologies GmbH. All rights reserved.
# Non-commercial use only. Commercial licensing: info@4rce.com

"""
Search orchestrator.

Stage order:
  retrieval -> threshold -> conditions -> group boost -> importance ->
  decay -> re-rank -> group enforcement -> dual-vector/link resolution ->
  top-K selection

Retrieval is the only await. Everything after it is synchronous and works on
per-query ScoredChunk copies; stored chunks are never modified.
"""
import asyncio
import time
from typing import Optional, Union

from . import decay as decay_stage
from . import groups as group_stage
from .conditions import EvalEnv, evaluate
from .config import PipelineOptions, coerce_options
from .errors import ConfigurationError
from .keywords import QueryTerms, keyword_score
from .links import LinkResolver
from .models import ScoredChunk, SearchContext, SearchResult, SearchStats
from .retrieval import VectorQueryService
from .scoring import apply_importance, mode_score, rerank, threshold_filter
from .selection import select
from .store import InMemoryChunkStore
from .trace import Trace

EMPTY_REASONS = (
    "no_candidates",
    "below_threshold",
    "failed_conditions",
    "failed_decay",
    "already_in_context",
    "failed_integrity",
    "truncated",
    "retrieval_failed",
)


def _as_store(chunks) -> InMemoryChunkStore:
    if isinstance(chunks, InMemoryChunkStore):
        return chunks
    if hasattr(chunks, "all") and hasattr(chunks, "get"):
        chunks = chunks.all()
    return InMemoryChunkStore(chunks, validate=True, report_warnings=False)


def _as_context(context) -> SearchContext:
    if context is None:
        return SearchContext()
    if isinstance(context, dict):
        return SearchContext.from_dict(context)
    return context


def _warn(stats: SearchStats, trace: Trace, stage: str, message: str):
    if message not in stats.warnings:
        stats.warnings.append(message)
        trace.add(stage, message, level="warning")


def _finish(stats: SearchStats, trace: Trace, results: list, reason: Optional[str] = None,
            keep_trace: bool = True) -> SearchResult:
    stats.returned = len(results)
    stats.empty_reason = reason if not results else None
    stats.duration_ms = trace.elapsed_ms
    if reason and not results:
        trace.add("result", f"empty result: {reason}")
    return SearchResult(results=results, stats=stats, trace=trace if keep_trace else None)


async def _retrieve(query_text: str, options: PipelineOptions,
                    query_service: VectorQueryService) -> list:
    call = query_service.query(query_text, options.collection_id, options.effective_retrieval_top_k)
    if options.retrieval_timeout is not None:
        return await asyncio.wait_for(call, timeout=options.retrieval_timeout)
    return await call


def _vector_scores(items, searchable: dict, stats: SearchStats, trace: Trace) -> tuple[list, dict]:
    """Validate service output: ordered hashes and their scores."""
    order = []
    scores = {}
    for item in items or []:
        if not isinstance(item, dict) or "hash" not in item:
            _warn(stats, trace, "retrieval", f"malformed retrieval item {item!r}")
            continue
        h = str(item["hash"])
        if h not in searchable or h in scores:
            continue
        if item.get("warning"):
            _warn(stats, trace, "retrieval", str(item["warning"]))
            score = 0.0
        else:
            try:
                score = float(item.get("score", 0.0))
            except (TypeError, ValueError):
                _warn(stats, trace, "retrieval", f"chunk {h}: non-numeric score {item.get('score')!r}")
                score = 0.0
        order.append(h)
        scores[h] = score
    return order, scores


def _target_filter(chunk, target: str) -> bool:
    if target == "summary":
        return chunk.is_summary_chunk
    if target == "full":
        return not chunk.is_summary_chunk
    return True


def _zero_scored(chunk, order: int) -> ScoredChunk:
    return ScoredChunk(chunk=chunk, score=0.0, original_score=0.0, order=order)


async def search(query_text: str, chunks, options: Union[PipelineOptions, dict, None] = None,
                 context: Union[SearchContext, dict, None] = None,
                 query_service: Optional[VectorQueryService] = None,
                 trace: bool = True) -> SearchResult:
    """
    Rank chunks for query_text and return at most top_k of them.

    chunks: InMemoryChunkStore, any ChunkStore, or a list of Chunk / dict records.
    Raises ConfigurationError (before any stage runs) for invalid options,
    an empty query, invalid chunk records, or a vector/hybrid search without
    a query_service. Retrieval failures are reported in stats, never raised.
    """
    options = coerce_options(options)
    if not isinstance(query_text, str) or not query_text.strip():
        raise ConfigurationError("query text is empty")
    if options.search_mode != "keyword" and query_service is None:
        raise ConfigurationError(f"search_mode {options.search_mode!r} needs a query_service")
    store = _as_store(chunks)
    context = _as_context(context)

    tr = Trace(query=query_text)
    stats = SearchStats(search_mode=options.search_mode)
    all_chunks = store.all()
    chunk_map = {c.hash: c for c in all_chunks}
    searchable = {
        c.hash: c for c in all_chunks
        if not c.disabled and _target_filter(c, options.vector_search_target)
    }
    stats.total_chunks = len(all_chunks)
    stats.searchable_chunks = len(searchable)
    terms = QueryTerms.from_text(query_text)
    tr.add("query", "query prepared", keywords=terms.keywords, mode=options.search_mode)

    # ── 1. Candidate retrieval ───────────────────
    service_order: list[str] = []
    vector_scores: dict[str, float] = {}
    if options.search_mode != "keyword":
        try:
            items = await _retrieve(query_text, options, query_service)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if isinstance(e, asyncio.TimeoutError):
                message = f"retrieval timed out after {options.retrieval_timeout}s"
            else:
                message = f"{type(e).__name__}: {e}"
            print(f"Warning: retrieval failed: {message}")
            stats.retrieval_error = message
            tr.add("retrieval", "retrieval failed", error=message)
            return _finish(stats, tr, [], "retrieval_failed", trace)
        service_order, vector_scores = _vector_scores(items, searchable, stats, tr)

    keyword_matches = {}
    if options.search_mode != "vector":
        for h, chunk in searchable.items():
            km = keyword_score(chunk, terms, options.keyword_score_ceiling)
            for kw in km.invalid:
                _warn(stats, tr, "retrieval", f"chunk {h}: invalid regex keyword {kw!r}")
            if km.score > 0:
                keyword_matches[h] = km

    candidates = list(service_order)
    if options.search_mode != "vector":
        seen = set(candidates)
        candidates.extend(h for h in searchable if h in keyword_matches and h not in seen)

    scored = []
    for order, h in enumerate(candidates):
        chunk = searchable[h]
        km = keyword_matches.get(h) or keyword_score(chunk, terms, options.keyword_score_ceiling)
        v = vector_scores.get(h, 0.0)
        score = mode_score(options.search_mode, v, km.score,
                           options.vector_weight, options.keyword_weight)
        scored.append(ScoredChunk(
            chunk=chunk, score=score, original_score=score, order=order,
            vector_score=v, keyword_score=km.score, keyword_boost=km.boost,
            matched_keywords=km.matched,
        ))
    stats.retrieved = len(scored)
    tr.snapshot("retrieval", scored)
    if not scored:
        return _finish(stats, tr, [], "no_candidates", trace)
    scored_lookup = {sc.hash: sc for sc in scored}

    # ── 2. Threshold ─────────────────────────────
    current, dropped = threshold_filter(scored, options.threshold)
    for sc in dropped:
        tr.fate(sc.hash, "dropped", "threshold", "below_threshold", sc.score)
    for sc in current:
        tr.fate(sc.hash, "passed", "threshold", score=sc.score)
    stats.after_threshold = len(current)
    tr.snapshot("threshold", current)
    if not current:
        return _finish(stats, tr, [], "below_threshold", trace)

    # ── 3. Conditions ────────────────────────────
    env = EvalEnv(context, options.context_window,
                  active_keys=_active_keys(context, chunk_map), query=query_text)

    def passes(chunk) -> bool:
        if not options.apply_conditions:
            return True
        compiled = store.conditions_for(chunk)
        for problem in compiled.problems:
            msg = f"chunk {chunk.hash}: malformed rule: {problem}"
            if msg not in stats.warnings:
                print(f"Warning: {msg}")
            _warn(stats, tr, "conditions", msg)
        return evaluate(compiled, env.for_chunk(chunk.hash))

    if options.apply_conditions:
        kept = []
        for sc in current:
            if passes(sc.chunk):
                kept.append(sc)
            else:
                tr.fate(sc.hash, "dropped", "conditions", "failed_conditions", sc.score)
        current = kept
        tr.snapshot("conditions", current)
    stats.after_conditions = len(current)
    if not current:
        return _finish(stats, tr, [], "failed_conditions", trace)

    # ── 4. Group boost ───────────────────────────
    group_map = {}
    triggered: list[str] = []
    if options.apply_groups:
        group_map = group_stage.group_index(c for c in all_chunks if not c.disabled)
        triggered = group_stage.triggered_groups(group_map, terms)
        stats.groups_triggered = list(triggered)
        if triggered:
            current = group_stage.boost(current, triggered, options.group_boost_multiplier)
            tr.add("groups", "groups triggered", groups=triggered,
                   multiplier=options.group_boost_multiplier)
        tr.snapshot("group_boost", current)

    # ── 5. Importance ────────────────────────────
    if options.apply_importance:
        current = apply_importance(current)
        tr.snapshot("importance", current)

    # ── 6. Temporal decay ────────────────────────
    position = context.position
    if options.apply_decay and options.decay.enabled and position is not None:
        decayed = decay_stage.apply_decay(current, options.decay, position, context.scenes)
        kept = []
        # drop only chunks that decay itself pushed below the threshold
        for before, sc in zip(current, decayed):
            if sc.score < options.threshold <= before.score:
                tr.fate(sc.hash, "dropped", "decay", "decay", sc.score)
            else:
                kept.append(sc)
        current = kept
        tr.snapshot("decay", current)
        if not current:
            return _finish(stats, tr, [], "failed_decay", trace)
    stats.after_decay = len(current)

    # ── 7. Re-rank + group enforcement ───────────
    ranked = rerank(current)
    tr.snapshot("rerank", ranked)

    if options.apply_groups and group_map:
        pool = []
        offset = len(scored)
        for idx, chunk in enumerate(all_chunks):
            if chunk.chunk_group is None or chunk.hash not in searchable or not passes(chunk):
                continue
            pool.append(scored_lookup.get(chunk.hash) or _zero_scored(chunk, offset + idx))
        ranked, forced = group_stage.enforce(
            ranked, pool, group_map, triggered, options.max_forced_group_members
        )
        stats.forced_group_members = len(forced)
        for sc in forced:
            tr.fate(sc.hash, "passed", "group_enforcement", "forced_by_group", sc.score)
        tr.snapshot("group_enforcement", ranked)

    # ── 8. Dual-vector / link resolution ─────────
    resolver = LinkResolver(chunk_map, scored_lookup, options.dual_vector_mode)
    resolution = resolver.resolve(ranked)
    stats.parents_inserted = resolution.parents_inserted
    stats.links_added = resolution.links_added
    for msg in resolution.warnings:
        _warn(stats, tr, "resolve", msg)
    for h, reason in resolution.excluded:
        tr.fate(h, "dropped", "resolve", reason)
    tr.snapshot("resolve", [sc for unit in resolution.units for sc in unit.items])

    # ── 9. Top-K + dedup ─────────────────────────
    selection = select(resolution.units, options.top_k, context.context_hashes())
    stats.skipped_duplicates = selection.skipped_duplicates
    stats.truncated = selection.truncated
    for h, reason in selection.skipped:
        tr.fate(h, "skipped", "select", reason)
    for sc in selection.results:
        tr.fate(sc.hash, "injected", "select", sc.forced_by, sc.score)
    tr.snapshot("select", selection.results)

    reason = None
    if not selection.results:
        if selection.skipped_duplicates:
            reason = "already_in_context"
        elif selection.truncated:
            reason = "truncated"
        else:
            reason = "failed_integrity"
    return _finish(stats, tr, selection.results, reason, trace)


def _active_keys(context: SearchContext, chunk_map: dict) -> frozenset:
    keys = set()
    for h in context.active_chunk_hashes:
        keys.add(h.lower())
        chunk = chunk_map.get(h)
        if chunk is not None:
            if chunk.section:
                keys.add(chunk.section.lower())
            if chunk.topic:
                keys.add(chunk.topic.lower())
    return frozenset(keys)


def search_sync(query_text: str, chunks, options=None, context=None,
                query_service=None, trace: bool = True) -> SearchResult:
    """Blocking wrapper around search() for callers without an event loop."""
    return asyncio.run(search(query_text, chunks, options, context, query_service, trace))


async def batch_search(queries: list[str], chunks, options=None, context=None,
                       query_service=None, trace: bool = False) -> list[SearchResult]:
    """
    Run queries one after another against the same collection. Options and
    chunks are validated once; a bad query yields an empty result with
    empty_reason "invalid_query" instead of aborting the batch.
    """
    options = coerce_options(options)
    if options.search_mode != "keyword" and query_service is None:
        raise ConfigurationError(f"search_mode {options.search_mode!r} needs a query_service")
    store = _as_store(chunks)
    context = _as_context(context)
    results = []
    for query in queries:
        try:
            results.append(await search(query, store, options, context, query_service, trace))
        except ConfigurationError as e:
            stats = SearchStats(search_mode=options.search_mode, empty_reason="invalid_query",
                                warnings=[str(e)])
            results.append(SearchResult(results=[], stats=stats, trace=None))
    return results
