"""Web search through the OpenRouter web plugin, producing content items."""

from __future__ import annotations

import re
from typing import Any, Iterable, Mapping

import structlog

from ..config.models import OpenRouterConfig
from ..contracts import FetchOptions, FetchResult
from ..engine.canonical import extract_domain
from ..engine.items import ContentItem, SourceType
from ..llm.client import OpenRouterClient

MIN_RAW_CONTENT = 50
MIN_CLEANED_CONTENT = 100
MAX_CITATION_LENGTH = 6000

_NOISE_PATTERNS = tuple(
    re.compile(pattern, flags)
    for pattern, flags in (
        (r"^\s*\*\s*\[.{1,40}\]\s*$", re.MULTILINE),
        (r"(?:\[.{1,30}\]\s*){4,}", 0),
        (
            r"\*?\s*(?:Twitter|Facebook|WhatsApp|Reddit|Email|LinkedIn|Instagram|Share|Threads|Snapchat)\s*\n?",
            re.IGNORECASE,
        ),
        (r"Advertisement\s*\n?", re.IGNORECASE),
        (
            r"(?:Read\s*(?:More|Also|Next)|Related|Trending|Popular|You (?:May|Might) (?:Also )?Like"
            r"|Top Stories|Latest News|Most Popular)[:\s]?[^\n]*\n?",
            re.IGNORECASE,
        ),
        (
            r"(?:Follow\s*(?:Us|Me)|Subscribe|Newsletter|Get\s*App|Install\s*Now|Join\s*Us)[^\n]*\n?",
            re.IGNORECASE,
        ),
        (
            r"(?:Cookie|Consent|GDPR|Privacy\s*Policy|Terms\s*of\s*Service)[^\n]*\n?",
            re.IGNORECASE,
        ),
        (r"!\[\]\s*", 0),
        (r"\[\]\s*", 0),
        (
            r"\[(?:arrow-down|arrow-up|arrow-left|arrow-right|search|bell|close|menu)[^\]]*\]\s*",
            re.IGNORECASE,
        ),
        (r"(?:Download|Get)\s*(?:App|the App)[^\n]*\n?", re.IGNORECASE),
        (r"(?:More\s*Links|Featured|Follow\s*Us\s*On)[^\n]*$", re.IGNORECASE | re.MULTILINE),
        (r"^\s*\*\s*\[\n?\s*[A-Za-z]+\s*\]\s*$", re.MULTILINE),
        (r"!\[(?:image|photo|picture|thumbnail|logo|icon)[^\]]*\]\([^)]*\)", re.IGNORECASE),
    )
)
_MARKDOWN_LINK_LINE = re.compile(r"^\[.+\]\([^)]+\)$")
_SINGLE_WORD_BULLET = re.compile(r"^\*\s*\w{1,15}\s*$")


def _keep_line(line: str) -> bool:
    stripped = line.strip()
    if stripped.startswith("#"):
        return True
    if len(stripped) < 25 and stripped[:1] not in ("#", "*", "-"):
        return False
    if _MARKDOWN_LINK_LINE.match(stripped):
        return False
    return not _SINGLE_WORD_BULLET.match(stripped)


def clean_citation_content(raw: str) -> tuple[str, int, int]:
    """Remove navigation and promo noise; return ``(cleaned, original_words, cleaned_words)``."""

    if not raw:
        return "", 0, 0
    original_words = len(raw.split())
    content = raw
    for pattern in _NOISE_PATTERNS:
        content = pattern.sub(" ", content)
    content = "\n".join(line for line in content.split("\n") if _keep_line(line))
    content = re.sub(r"\n{3,}", "\n\n", content)
    content = re.sub(r"\s{3,}", " ", content).strip()

    if len(content) > MAX_CITATION_LENGTH:
        truncated = content[:MAX_CITATION_LENGTH]
        last_sentence = truncated.rfind(". ")
        if last_sentence > MAX_CITATION_LENGTH * 0.7:
            content = truncated[: last_sentence + 1]
        else:
            content = truncated + "..."
    return content, original_words, len(content.split())


def citations_to_items(
    annotations: Iterable[Mapping[str, Any]],
    logger: structlog.BoundLogger | None = None,
) -> list[ContentItem]:
    items: list[ContentItem] = []
    for annotation in annotations:
        if annotation.get("type") != "url_citation":
            continue
        citation = annotation.get("url_citation") or {}
        url = citation.get("url") or ""
        raw = citation.get("content") or ""
        if not url or len(raw) < MIN_RAW_CONTENT:
            continue
        cleaned, original_words, cleaned_words = clean_citation_content(raw)
        if len(cleaned) < MIN_CLEANED_CONTENT:
            continue
        domain = extract_domain(url)
        noise_reduction = round((1 - cleaned_words / original_words) * 100) if original_words else 0
        if logger is not None:
            logger.debug(
                "citation_cleaned",
                domain=domain,
                original_words=original_words,
                cleaned_words=cleaned_words,
            )
        items.append(
            ContentItem(
                source_type=SourceType.OPEN_WEB,
                source_name=domain,
                url=url,
                title=citation.get("title") or None,
                text=cleaned,
                raw_text=raw,
                meta={
                    "domain": domain,
                    "word_count": cleaned_words,
                    "original_word_count": original_words,
                    "noise_reduction": noise_reduction,
                },
            )
        )
    return items


def build_search_prompt(query: str) -> str:
    return (
        f'Search the web for diverse opinions and perspectives on: "{query}"\n\n'
        "Find articles, news, blog posts, and discussions that represent different "
        "viewpoints on this topic. Include both supporting and opposing perspectives."
    )


class OpenRouterSearchConnector:
    """One web-plugin completion per query; citations become content items.

    Issues a single HTTP call per :meth:`fetch_content`; retry and admission
    control belong to the caller's executor.
    """

    def __init__(
        self,
        client: OpenRouterClient,
        settings: OpenRouterConfig | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.client = client
        self.settings = settings or client.settings
        self.logger = logger or structlog.get_logger("sentiment_aggregator.search")

    async def fetch_content(self, query: str, options: FetchOptions) -> FetchResult:
        payload = {
            "model": self.settings.search_model,
            "plugins": [{"id": "web", "max_results": options.max_results, "engine": options.engine}],
            "web_search_options": {"search_context_size": options.search_context_size},
            "messages": [{"role": "user", "content": build_search_prompt(query)}],
            "temperature": 0.3,
            "max_tokens": 2048,
        }
        response = await self.client.send(payload)
        seen: set[str] = set()
        unique = []
        for annotation in response.annotations:
            url = (annotation.get("url_citation") or {}).get("url")
            if url in seen:
                continue
            seen.add(url)
            unique.append(annotation)
        items = citations_to_items(unique, self.logger)
        self.logger.info(
            "search_complete",
            query=query,
            citations=len(response.annotations),
            items=len(items),
            tokens=response.usage.total_tokens,
        )
        return FetchResult(items=items, usage=response.usage)


__all__ = [
    "OpenRouterSearchConnector",
    "build_search_prompt",
    "citations_to_items",
    "clean_citation_content",
]
