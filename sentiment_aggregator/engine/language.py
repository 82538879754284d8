"""Language detection for items that arrive without a language code."""

from __future__ import annotations

import re
from dataclasses import dataclass

from langdetect import DetectorFactory, detect_langs
from langdetect.lang_detect_exception import LangDetectException

MIN_TEXT_LENGTH = 50
CONFIDENCE_THRESHOLD = 0.8
# a runner-up this close to the top guess makes the result ambiguous
AMBIGUITY_MARGIN = 0.1
AMBIGUITY_PENALTY = 0.7

_URL = re.compile(r"https?://\S+")
_NON_LETTERS = re.compile(r"[\W\d_]+")

# langdetect is randomised; a fixed seed keeps results stable across runs
DetectorFactory.seed = 0


def normalize_language(code: str | None) -> str | None:
    """``"en-US"``, ``"EN_us"`` and ``"zh-cn"`` become ``"en"``, ``"en"`` and ``"zh"``."""

    if not code:
        return None
    base = re.split(r"[-_]", code.strip(), maxsplit=1)[0].lower()
    return base or None


@dataclass(slots=True)
class LanguageDetection:
    code: str | None
    confidence: float = 0.0

    @property
    def reliable(self) -> bool:
        return self.code is not None and self.confidence >= CONFIDENCE_THRESHOLD


UNDETECTED = LanguageDetection(code=None)


def _letters_only(text: str) -> str:
    return _NON_LETTERS.sub(" ", _URL.sub(" ", text)).strip()


def detect_language(text: str) -> LanguageDetection:
    """Guess the ISO 639-1 code of ``text``.

    Texts shorter than :data:`MIN_TEXT_LENGTH` characters, before or after
    stripping URLs, digits and punctuation, are not classified.
    """

    if not text or len(text) < MIN_TEXT_LENGTH:
        return UNDETECTED
    letters = _letters_only(text)
    if len(letters) < MIN_TEXT_LENGTH:
        return UNDETECTED
    try:
        candidates = detect_langs(letters)
    except LangDetectException:
        return UNDETECTED
    if not candidates:
        return UNDETECTED

    top = candidates[0]
    confidence = top.prob
    if len(candidates) > 1 and top.prob - candidates[1].prob < AMBIGUITY_MARGIN:
        confidence *= AMBIGUITY_PENALTY
    return LanguageDetection(code=normalize_language(top.lang), confidence=confidence)


__all__ = [
    "CONFIDENCE_THRESHOLD",
    "LanguageDetection",
    "MIN_TEXT_LENGTH",
    "detect_language",
    "normalize_language",
]
