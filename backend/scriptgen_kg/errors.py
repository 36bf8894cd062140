from __future__ import annotations


class KnowledgeGraphError(RuntimeError):
    """Base error for knowledge graph failures."""


class ExtractionError(KnowledgeGraphError):
    """The extraction collaborator failed or returned an unusable payload.

    Callers treat it as "the graph did not grow this round", never as fatal.
    """
