# Vectrank – Multi-signal retrieval ranking for conversational context
# Copyright (c) 2026 4rce.com Digital Technologies GmbH. All rights reserved.
# Non-commercial use only. Commercial licensing: info@4rce.com

"""
Command line entry point: python -m vectrank COLLECTION.json QUERY

Runs one search over a JSON chunk collection and prints the result as JSON.
Keyword mode needs nothing else; vector and hybrid modes embed the query
with a chromadb embedding function and rank the chunks' stored embeddings.
"""
import argparse
import json
import sys
from pathlib import Path

from chromadb.utils import embedding_functions

from .config import PipelineOptions
from .errors import ConfigurationError
from .models import SearchContext
from .pipeline import search_sync
from .retrieval import LocalQueryService
from .selection import injection_text
from .store import InMemoryChunkStore
from .validation import CollectionValidator


def _embedding_function(model: str | None):
    if model:
        return embedding_functions.SentenceTransformerEmbeddingFunction(model_name=model)
    return embedding_functions.DefaultEmbeddingFunction()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="vectrank", description="Rank chunks of a collection for a query")
    parser.add_argument("collection", help="JSON file with chunk records")
    parser.add_argument("query", nargs="?", default="", help="Query text")
    parser.add_argument("--options", help="JSON options file (overrides VECTRANK_ env values)")
    parser.add_argument("--mode", choices=["vector", "keyword", "hybrid"], help="Search mode")
    parser.add_argument("--top-k", type=int, help="Max results")
    parser.add_argument("--threshold", type=float, help="Minimum score")
    parser.add_argument("--context", help="JSON file with the conversation context")
    parser.add_argument("--model", help="sentence-transformers model for query embeddings")
    parser.add_argument("--trace", action="store_true", help="Include the stage trace")
    parser.add_argument("--inject", action="store_true", help="Print the injection text instead of JSON")
    parser.add_argument("--validate", action="store_true", help="Only validate the collection")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    if args.validate:
        store = InMemoryChunkStore.from_json(args.collection, validate=False)
        report = CollectionValidator().check_all(store.all())
        print(json.dumps(report, indent=2))
        return 1 if report["critical"] else 0

    context = None
    if args.context:
        context = SearchContext.from_dict(json.loads(Path(args.context).read_text()))

    try:
        options = PipelineOptions.load(args.options)
        if args.mode:
            options.search_mode = args.mode
        if args.top_k is not None:
            options.top_k = args.top_k
        if args.threshold is not None:
            options.threshold = args.threshold
        store = InMemoryChunkStore.from_json(args.collection)
        service = None
        if options.search_mode != "keyword":
            service = LocalQueryService(store, _embedding_function(args.model))
        result = search_sync(args.query, store, options, context, service, trace=args.trace)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    if args.inject:
        print(injection_text(result.results, {c.hash: c for c in store.all()}))
    else:
        print(json.dumps(result.to_dict(), indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
