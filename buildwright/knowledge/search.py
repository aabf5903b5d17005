"""
Relevance scoring for knowledge search.

The default scorer is keyword overlap: the fraction of distinct query terms
present in the document path or serialized content. Any callable with the
same signature (for example an embedding similarity) can be substituted.
"""

from __future__ import annotations

import re
from collections.abc import Callable

from ..core.types import serialize_content
from .models import VersionedDocument

RelevanceScorer = Callable[[str, VersionedDocument], float]

_TOKEN_RE = re.compile(r"[a-z0-9]+")


def tokenize(text: str) -> set[str]:
    return set(_TOKEN_RE.findall(text.lower()))


def keyword_relevance(query: str, document: VersionedDocument) -> float:
    """Fraction of query terms found in the document."""
    terms = tokenize(query)
    if not terms:
        return 0.0
    haystack = tokenize(document.path) | tokenize(
        serialize_content(document.content).decode("utf-8", errors="ignore")
    )
    return len(terms & haystack) / len(terms)
