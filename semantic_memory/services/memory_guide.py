"""
Self-documentation for agents.

Lets a connected agent discover the tools, relation types and importance
conventions without manual configuration.
"""

from __future__ import annotations

import semantic_memory.config as config

GUIDE_VERSION = "1.0.0"

# Recommended relation types; relation_type itself is free-form.
RELATION_TYPES = [
    "related_to",
    "derived_from",
    "supports",
    "contradicts",
    "supersedes",
    "references",
]

IMPORTANCE_GUIDE = {
    "0.9-1.0": "Core facts about the user or project that should almost always surface",
    "0.7-0.89": "Stable preferences and decisions",
    "0.4-0.69": "Useful working context (default 0.5)",
    "0.1-0.39": "Incidental details, likely to fade",
    "<0.1": "Effectively forgotten; kept only for history",
}

TOOLS = [
    "store_memory",
    "search_memory",
    "get_related",
    "recall_context",
    "forget",
    "reinforce",
    "delete_relation",
    "memory_access_history",
    "memory_stats",
    "memory_user_guide",
]

USER_GUIDE_SHORT = """# Semantic Memory Guide

**Version:** {guide_version}

## Purpose

Persistent memory for agents, searched by meaning. Results are ranked by a
hybrid score: semantic similarity and recency of access, multiplied by
importance (`0.5 + importance`). Memories you stop using fade; memories you
reinforce stay prominent.

## Core Workflow

1. **Before starting work**, gather context:
   `recall_context(task="...", context=["file.py", "error message"])`
2. **Look something up**: `search_memory(query="...", limit=5)`
3. **Store what you learn**:
   `store_memory(content="User prefers dark mode", tags=["preferences"], importance=0.8)`
4. **Confirm useful memories**: `reinforce(memory_id="...", boost=0.1)`
   Optionally link it: `relate_to_memory_id="...", relation_type="supports"`
5. **Explore connections**: `get_related(memory_id="...")`
6. **Clean up**: `forget(memory_id="...")` or `forget(tags=["temporary"])`

## Forgetting

- `mode="decay"` multiplies importance by `decay_factor` (floor {importance_floor});
  the memory stays searchable.
- `mode="soft_delete"` hides the memory from search, recall and related.
- `mode="hard_delete"` removes it with its relations.
- Without `mode`: `soft=false` hard-deletes; `soft=true` decays a single
  memory and soft-deletes criteria matches.

## Relation Types

{relation_types}

## Importance

{importance}

## Limits

- content up to {max_content} bytes, up to {max_tags} tags
  (lowercase letters, digits, `_`, `-`)
- search limit up to {max_search}, recall limit up to {max_recall},
  at most {max_context} context items per recall
"""


def memory_user_guide(format: str = "markdown", verbosity: str = "short") -> dict:
    """Usage guide plus structured metadata for agents."""
    relation_types_md = "\n".join(f"- `{rt}`" for rt in RELATION_TYPES)
    importance_md = "\n".join(f"- **{k}**: {v}" for k, v in IMPORTANCE_GUIDE.items())

    result = {
        "status": "ok",
        "guide_version": GUIDE_VERSION,
        "service_version": config.SERVICE_VERSION,
        "tools": TOOLS,
        "relation_types": RELATION_TYPES,
        "importance_guide": IMPORTANCE_GUIDE,
        "scoring": {
            "semantic_weight": config.SEMANTIC_WEIGHT,
            "recency_weight": config.RECENCY_WEIGHT,
            "recency_decay_days": config.RECENCY_DECAY_DAYS,
        },
    }

    if format == "markdown":
        guide = USER_GUIDE_SHORT.format(
            guide_version=GUIDE_VERSION,
            importance_floor=config.IMPORTANCE_FLOOR,
            relation_types=relation_types_md,
            importance=importance_md,
            max_content=config.MAX_CONTENT_BYTES,
            max_tags=config.MAX_TAG_ITEMS,
            max_search=config.MAX_SEARCH_LIMIT,
            max_recall=config.MAX_RECALL_LIMIT,
            max_context=config.RECALL_MAX_CONTEXT_ITEMS,
        )
        if verbosity == "verbose":
            guide += (
                "\n## Scoring Details\n\n"
                "`hybrid = (semantic_weight * similarity + recency_weight * "
                "exp(-days_since_access / decay_days)) * (0.5 + importance)`\n\n"
                "Every search, recall and reinforce refreshes `last_accessed`, "
                "which resets the recency term.\n"
            )
        result["guide"] = guide
    else:
        result["guide"] = {
            "purpose": "Semantic memory for agents with decay and reinforcement",
            "core_workflow": [
                "Gather context with recall_context() before starting a task",
                "Search with search_memory() before answering",
                "Store durable facts with store_memory()",
                "Reinforce memories that proved useful",
            ],
            "critical_invariants": [
                "Importance stays within [0.01, 1.0] after decay and reinforcement",
                "Soft-deleted and expired memories never appear in results",
                "A (source, target, type) relation exists at most once",
                "A memory cannot relate to itself",
            ],
        }
    return result


__all__ = ["RELATION_TYPES", "IMPORTANCE_GUIDE", "TOOLS", "memory_user_guide"]
