"""Substring retrieval over a scoped graph with one-hop expansion.

A node is a *direct hit* when its label contains the query. Labels and queries
written without spaces between words (Chinese, Japanese, Thai...) additionally
match on single shared characters, so "复仇计划" finds the node "复仇". The
matched nodes are then expanded by one hop along every edge that touches them.
"""

from __future__ import annotations

import unicodedata
from enum import Enum
from typing import Iterable

from scriptgen_kg.config import KG_CONTEXT_MAX_TRIPLES
from scriptgen_kg.models import KGEntity, KnowledgeGraph, RetrievalResult

CONTEXT_SEPARATOR = "；"

_UNSPACED_SCRIPTS = (
    "CJK UNIFIED IDEOGRAPH",
    "CJK COMPATIBILITY IDEOGRAPH",
    "HIRAGANA",
    "KATAKANA",
    "THAI",
    "LAO",
    "KHMER",
    "MYANMAR",
)


class MatchMode(str, Enum):
    # substring, or any query character in the label (legacy behaviour)
    FUZZY = "fuzzy"
    # substring only
    EXACT = "exact"
    # substring, plus character overlap for unspaced-script characters only
    AUTO = "auto"


def _is_unspaced_script(char: str) -> bool:
    return unicodedata.name(char, "").startswith(_UNSPACED_SCRIPTS)


def _overlap_chars(query: str, mode: MatchMode) -> set[str]:
    if mode is MatchMode.EXACT:
        return set()
    if mode is MatchMode.FUZZY:
        return set(query)
    return {char for char in query if _is_unspaced_script(char)}


def _direct_hits(
    nodes: Iterable[KGEntity], query: str, mode: MatchMode
) -> list[KGEntity]:
    needle = query.casefold()
    overlap = _overlap_chars(needle, mode)
    hits = []
    for node in nodes:
        label = node.label.casefold()
        if needle in label:
            hits.append(node)
        elif len(node.label) > 1 and overlap.intersection(label):
            hits.append(node)
    return hits


def find_relevant_subset(
    graph: KnowledgeGraph, query: str, mode: MatchMode = MatchMode.AUTO
) -> RetrievalResult:
    if not query or not query.strip():
        return RetrievalResult()

    hit_ids = {node.id for node in _direct_hits(graph.nodes, query, mode)}
    if not hit_ids:
        return RetrievalResult()

    result_ids = set(hit_ids)
    links = []
    for link in graph.links:
        if link.source in hit_ids:
            links.append(link)
            result_ids.add(link.target)
        elif link.target in hit_ids:
            links.append(link)
            result_ids.add(link.source)

    nodes = [node for node in graph.nodes if node.id in result_ids]
    return RetrievalResult(nodes=nodes, links=links)


def context_summary(
    graph: KnowledgeGraph,
    query: str,
    limit: int = KG_CONTEXT_MAX_TRIPLES,
    mode: MatchMode = MatchMode.AUTO,
) -> str:
    """Format matching edges as ``A --[rel]--> B`` triples; empty means no memory."""
    subset = find_relevant_subset(graph, query, mode)
    if not subset.links:
        return ""

    labels = graph.labels_by_id()
    triples = []
    for link in subset.links:
        source = labels.get(link.source)
        target = labels.get(link.target)
        if source and target:
            triples.append(f"{source} --[{link.label}]--> {target}")
    return CONTEXT_SEPARATOR.join(triples[:limit])


def format_context_block(summary: str) -> str:
    """Wrap a summary as the memory fragment appended to a generation prompt."""
    if not summary:
        return ""
    return (
        "\n\n[知识库记忆 (RAG Context)]: 基于当前剧本方案，我检索到了相关概念："
        f"{summary}。请确保设定一致性。"
    )


def highlight_ids(
    graph: KnowledgeGraph, query: str, mode: MatchMode = MatchMode.AUTO
) -> set[str]:
    return {node.id for node in find_relevant_subset(graph, query, mode).nodes}
