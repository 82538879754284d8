"""Text cleaning and item normalization before deduplication."""

from __future__ import annotations

import dataclasses
import re
from collections import Counter
from dataclasses import dataclass
from html import unescape
from typing import Callable, Sequence

import structlog

from ..contracts import NormalizationResult, NormalizationStats
from .items import ContentItem
from .language import LanguageDetection, detect_language, normalize_language

MAX_TEXT_LENGTH = 15000
HEAD_LENGTH = 10000
TAIL_LENGTH = 3000
TRUNCATION_SEPARATOR = "\n\n[...content truncated...]\n\n"
MAX_WARNINGS = 100

_HTML_TAG = re.compile(r"<[^>]*>")
_URL = re.compile(r"https?://\S+")
_EMAIL = re.compile(r"[\w.-]+@[\w.-]+\.\w+")
_WHITESPACE = re.compile(r"\s+")

_I = re.IGNORECASE
_IM = re.IGNORECASE | re.MULTILINE
BOILERPLATE_PATTERNS = tuple(
    re.compile(pattern, flags)
    for pattern, flags in (
        # cookie notices
        (r"we use cookies[^.]*\.", _I),
        (r"this (website|site) uses cookies[^.]*\.", _I),
        (r"by (continuing|using)[^.]*cookies[^.]*\.", _I),
        # newsletter prompts
        (r"sign up for (our )?newsletter[^.]*\.", _I),
        (r"subscribe to (our )?(newsletter|updates)[^.]*\.", _I),
        (r"enter your email[^.]*\.", _I),
        # social prompts
        (r"follow us on[^.]*\.", _I),
        (r"share (this|on)[^.]*\.", _I),
        (r"like us on facebook[^.]*\.", _I),
        # copyright
        (r"©\s*\d{4}[^.]*\.", _I),
        (r"all rights reserved[^.]*\.", _I),
        (r"copyright \d{4}[^.]*\.", _I),
        # navigation remnants
        (r"^\s*(home|about|contact|menu|search|login|signup)\s*$", _IM),
        (r"^\s*skip to (main )?content\s*$", _IM),
        (r"\[read more\]", _I),
        (r"\[continue reading\]", _I),
        (r"click here to read more[^.]*\.", _I),
        # ads
        (r"\[advertisement\]", _I),
        (r"sponsored content", _I),
        (r"^\s*ad\s*$", _IM),
        # comment sections
        (r"^\s*comments?\s*\(\d+\)\s*$", _IM),
        (r"^\s*leave a (comment|reply)\s*$", _IM),
        (r"about the author[:\s]*$", _IM),
    )
)


def clean_text(text: str) -> str:
    """Strip markup, mask URLs and emails, drop boilerplate, collapse whitespace."""

    if not text:
        return ""
    cleaned = _HTML_TAG.sub(" ", unescape(text))
    cleaned = _URL.sub("[URL]", cleaned)
    cleaned = _EMAIL.sub("[EMAIL]", cleaned)
    for pattern in BOILERPLATE_PATTERNS:
        cleaned = pattern.sub(" ", cleaned)
    cleaned = _WHITESPACE.sub(" ", cleaned).strip()
    # a lone short token is a menu remnant, not content
    if len(cleaned) < 3 or (" " not in cleaned and len(cleaned) < 20):
        return ""
    return cleaned


def truncate_text(
    text: str,
    max_length: int = MAX_TEXT_LENGTH,
    head_length: int = HEAD_LENGTH,
    tail_length: int = TAIL_LENGTH,
) -> tuple[str, bool]:
    """Keep the head and tail of long text; return ``(text, truncated)``."""

    if not text or len(text) <= max_length:
        return text, False
    effective_head = min(head_length, max_length - tail_length - len(TRUNCATION_SEPARATOR))
    if effective_head <= 0:
        return text[:max_length], True

    head = text[:effective_head]
    tail = text[-tail_length:]
    head_end = head.rfind(" ")
    if head_end > effective_head * 0.8:
        head = head[:head_end]
    tail_start = tail.find(" ")
    if 0 < tail_start < tail_length * 0.2:
        tail = tail[tail_start + 1 :]
    return head + TRUNCATION_SEPARATOR + tail, True


def count_words(text: str) -> int:
    return len(text.split()) if text else 0


def is_meaningful_content(text: str, min_length: int = 50) -> bool:
    """Heuristic: enough length, words and character variety, sane word lengths."""

    if not text or len(text) < min_length:
        return False
    word_count = count_words(text)
    if word_count < 10:
        return False
    if len(set(text.lower())) < 15:
        return False
    avg_word_length = len(text) / word_count
    return 2 <= avg_word_length <= 15


@dataclass(slots=True)
class ProcessedText:
    text: str
    truncated: bool
    word_count: int
    meaningful: bool


def process_text(text: str) -> ProcessedText:
    cleaned, truncated = truncate_text(clean_text(text))
    return ProcessedText(
        text=cleaned,
        truncated=truncated,
        word_count=count_words(cleaned),
        meaningful=is_meaningful_content(cleaned),
    )


class TextNormalizer:
    """Clean every item and filter out low-quality or off-language content.

    Items without a language code get one from ``language_detector`` when the
    detection is reliable; otherwise they stay unknown and pass any language
    filter.
    """

    def __init__(
        self,
        min_word_count: int = 10,
        filter_non_meaningful: bool = True,
        language_detector: Callable[[str], LanguageDetection] = detect_language,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.min_word_count = min_word_count
        self.filter_non_meaningful = filter_non_meaningful
        self.language_detector = language_detector
        self.logger = logger or structlog.get_logger("sentiment_aggregator.normalizer")

    def normalize(
        self, items: Sequence[ContentItem], allowed_languages: Sequence[str] | None = None
    ) -> NormalizationResult:
        allowed = {normalize_language(code) for code in allowed_languages or ()} - {None}
        stats = NormalizationStats(original_count=len(items))
        warnings: list[str] = []
        kept: list[ContentItem] = []
        languages: Counter[str] = Counter()
        total_words = 0

        for item in items:
            processed = process_text(item.text)
            language = normalize_language(item.language)
            if processed.truncated:
                warnings.append(
                    f"{item.url}: text truncated from {len(item.text)} to {len(processed.text)} characters"
                )
            if self.filter_non_meaningful and not processed.meaningful:
                stats.non_meaningful += 1
                continue
            if processed.word_count < self.min_word_count:
                stats.too_short += 1
                continue
            if language is None:
                detection = self.language_detector(processed.text)
                if detection.reliable:
                    language = detection.code
                else:
                    stats.undetected_language += 1
                    warnings.append(
                        f"{item.url}: language detection uncertain "
                        f"(confidence: {detection.confidence:.0%})"
                    )
            if allowed and language and language not in allowed:
                stats.wrong_language += 1
                continue

            meta = {**item.meta, "word_count": processed.word_count}
            kept.append(dataclasses.replace(item, text=processed.text, language=language, meta=meta))
            languages[language or "unknown"] += 1
            total_words += processed.word_count

        stats.normalized_count = len(kept)
        stats.filtered_count = stats.original_count - stats.normalized_count
        stats.language_distribution = dict(languages)
        stats.avg_word_count = round(total_words / len(kept), 1) if kept else 0.0
        self.logger.info(
            "normalize_complete",
            original=stats.original_count,
            kept=stats.normalized_count,
            non_meaningful=stats.non_meaningful,
            too_short=stats.too_short,
            wrong_language=stats.wrong_language,
            undetected_language=stats.undetected_language,
        )
        return NormalizationResult(items=kept, stats=stats, warnings=warnings[:MAX_WARNINGS])


__all__ = [
    "TextNormalizer",
    "clean_text",
    "count_words",
    "is_meaningful_content",
    "normalize_language",
    "process_text",
    "truncate_text",
]
