"""Web research capability."""

from .service import HttpResearchService, SearchCapability, SearchHit, html_to_text

__all__ = ["HttpResearchService", "SearchCapability", "SearchHit", "html_to_text"]
