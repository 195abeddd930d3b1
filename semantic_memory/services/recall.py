"""
Multi-query recall: one task plus auxiliary context strings, searched
independently and merged into a single deduplicated ranking.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

import semantic_memory.config as config
from semantic_memory.errors import ValidationIssue
from semantic_memory.services import memory_shared
from semantic_memory.services.memory_store import ScoredMemory, search_memories
from semantic_memory.services.scoring import ScoringConfig
from semantic_memory.validators import validate_query


@dataclass
class RecallMatch:
    scored: ScoredMemory
    matched_query: str

    @property
    def memory_id(self) -> str:
        return self.scored.memory.id

    @property
    def hybrid_score(self) -> float:
        return self.scored.hybrid_score

    def to_payload(self) -> dict:
        payload = self.scored.to_payload()
        payload["matched_query"] = self.matched_query
        return payload


def per_query_limit(limit: int, query_count: int, slack: Optional[int] = None) -> int:
    slack = config.RECALL_CANDIDATE_SLACK if slack is None else slack
    return math.ceil(limit / max(query_count, 1)) + slack


def prepare_queries(task, context: Optional[Sequence[str]] = None) -> list[str]:
    """Task first, then at most RECALL_MAX_CONTEXT_ITEMS context strings."""
    queries = [validate_query(task, field="task")]
    if context is None:
        return queries
    if isinstance(context, str) or not isinstance(context, (list, tuple)):
        raise ValidationIssue("context must be a list of strings", field="context", error_type="invalid_type")
    # Extra items are dropped, not rejected.
    for item in list(context)[: config.RECALL_MAX_CONTEXT_ITEMS]:
        queries.append(validate_query(item, field="context"))
    return queries


def merge_ranked_results(
    result_sets: Sequence[tuple[str, Sequence[ScoredMemory]]],
    limit: int,
) -> list[RecallMatch]:
    """Keep each memory once at its best score, remembering which query won.

    Ties keep the earlier query.
    """
    best: dict[str, RecallMatch] = {}
    for query_text, results in result_sets:
        for item in results:
            current = best.get(item.memory.id)
            if current is None or item.hybrid_score > current.hybrid_score:
                best[item.memory.id] = RecallMatch(scored=item, matched_query=query_text)
    merged = sorted(best.values(), key=lambda match: match.hybrid_score, reverse=True)
    return merged[:limit]


def recall(
    db,
    queries: Sequence[str],
    *,
    limit: int,
    min_score: float,
    scoring: Optional[ScoringConfig] = None,
    searcher=None,
    now: Optional[datetime] = None,
) -> list[RecallMatch]:
    vectors = memory_shared.embed_texts_sync(queries)
    per_query = per_query_limit(limit, len(queries))
    result_sets = [
        (
            query_text,
            search_memories(
                db,
                vector,
                limit=per_query,
                min_score=min_score,
                scoring=scoring,
                searcher=searcher,
                now=now,
            ),
        )
        for query_text, vector in zip(queries, vectors)
    ]
    return merge_ranked_results(result_sets, limit)


__all__ = [
    "RecallMatch",
    "per_query_limit",
    "prepare_queries",
    "merge_ranked_results",
    "recall",
]
