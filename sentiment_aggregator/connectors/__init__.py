"""Content fetch connectors."""

from .openrouter_search import OpenRouterSearchConnector, citations_to_items

__all__ = ["OpenRouterSearchConnector", "citations_to_items"]
