"""OpenRouter-backed phrase generation and content analysis."""

from .analysis import LLMContentAnalyzer, map_analysis_response
from .client import ChatMessage, ChatResponse, OpenRouterClient
from .phrases import SearchPhraseGenerator

__all__ = [
    "ChatMessage",
    "ChatResponse",
    "LLMContentAnalyzer",
    "OpenRouterClient",
    "SearchPhraseGenerator",
    "map_analysis_response",
]
