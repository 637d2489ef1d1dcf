# Vectrank – Multi-signal retrieval ranking for conversational context
# Copyright (c) 2026 4rce.com Digital Technologies GmbH. All rights reserved.
# Non-commercial use only. Commercial licensing: info@4rce.com

"""
Error types raised across the pipeline boundary.

Only configuration and ingestion problems are raised. Retrieval failures and
per-chunk integrity problems are reported in SearchStats instead, so a single
bad chunk or a flaky vector backend never aborts the caller.
"""


class ConfigurationError(ValueError):
    """Options rejected before any pipeline stage runs."""

    def __init__(self, problems: list[str] | str):
        if isinstance(problems, str):
            problems = [problems]
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))


class DataIntegrityError(ConfigurationError):
    """Chunk records rejected at the ingestion boundary."""

    def __init__(self, issues: list[dict]):
        self.issues = issues
        super().__init__([f"{i['hash']}: {i['message']}" for i in issues])

    def __str__(self) -> str:
        summary = "; ".join(self.problems[:5])
        if len(self.problems) > 5:
            summary += f" (+{len(self.problems) - 5} more)"
        return summary


class RetrievalFailure(RuntimeError):
    """The vector query collaborator failed or timed out."""
