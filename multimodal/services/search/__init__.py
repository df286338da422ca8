"""Search services for web results and stock photos."""

from .images import ImageSearchClient
from .web import WebSearchClient, format_search_results

__all__ = ["ImageSearchClient", "WebSearchClient", "format_search_results"]
