"""Retrieval: fallback cascade of vector, keyword and reference-set strategies."""

from policyrag.retrieve.keywords import extract_keywords, tokenize
from policyrag.retrieve.reference import DEFAULT_REFERENCE_ENTRIES, ReferenceEntry, ReferenceSet
from policyrag.retrieve.retriever import VectorRetriever, apply_threshold
from policyrag.retrieve.strategies import (
    KeywordStrategy,
    PrimaryVectorStrategy,
    ReferenceSetStrategy,
    RetrievalStrategy,
    SearchRequest,
    SecondaryVectorStrategy,
    VectorSearchStrategy,
)

__all__ = [
    "DEFAULT_REFERENCE_ENTRIES",
    "KeywordStrategy",
    "PrimaryVectorStrategy",
    "ReferenceEntry",
    "ReferenceSet",
    "ReferenceSetStrategy",
    "RetrievalStrategy",
    "SearchRequest",
    "SecondaryVectorStrategy",
    "VectorRetriever",
    "VectorSearchStrategy",
    "apply_threshold",
    "extract_keywords",
    "tokenize",
]
