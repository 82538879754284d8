"""Search phrase generation from a topic."""

from __future__ import annotations

import structlog

from ..errors import AnalysisError
from .client import ChatMessage, OpenRouterClient


def build_system_prompt(count: int) -> str:
    return f"""You are a search query expert. Given a topic, generate exactly {count} diverse search phrases that will help find different opinions and perspectives on this topic.

Your search phrases should cover:
- General discussions and opinions
- Pro/con debates and controversies
- Specific aspects (cost, safety, ethics, effectiveness)
- Different community perspectives (experts, users, critics)
- Recent developments and reactions

Return JSON in this exact format:
{{
  "phrases": ["phrase 1", "phrase 2", ...]
}}

Make phrases specific and searchable. Avoid generic terms. Include terms like "opinions", "discussion", "debate", "review", "controversy" to surface sentiment-rich content."""


class SearchPhraseGenerator:
    """Ask the model for search phrases. Raises on failure; callers own the fallback."""

    def __init__(
        self,
        client: OpenRouterClient,
        count: int = 5,
        temperature: float = 0.7,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.client = client
        self.count = count
        self.temperature = temperature
        self.logger = logger or structlog.get_logger("sentiment_aggregator.phrases")

    async def generate_phrases(self, topic: str) -> list[str]:
        messages = [
            ChatMessage("system", build_system_prompt(self.count)),
            ChatMessage("user", f'Generate search phrases for: "{topic}"'),
        ]
        data, usage = await self.client.json_completion(
            messages, temperature=self.temperature, max_tokens=512
        )
        raw = data.get("phrases") if isinstance(data, dict) else None
        if not isinstance(raw, list):
            raise AnalysisError("phrase response did not contain a 'phrases' list")
        phrases = [phrase.strip() for phrase in raw if isinstance(phrase, str) and phrase.strip()]
        if not phrases:
            raise AnalysisError("phrase response was empty")
        self.logger.info("phrases_generated", count=len(phrases), tokens=usage.total_tokens)
        return phrases[: self.count]


__all__ = ["SearchPhraseGenerator", "build_system_prompt"]
