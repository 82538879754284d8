"""Engine components: fingerprinting, canonical URLs, dedup, retries, fallbacks."""

from .cancellation import CancellationToken
from .canonical import canonicalize, domain_distribution, extract_domain, hash_url
from .dedup import DedupOptions, DeduplicationResult, Deduplicator, DuplicateGroup
from .fallbacks import Attempt, attempt, fallback_analysis, fallback_phrases
from .items import AnalysisResult, ContentItem, SourceType, Stance
from .language import LanguageDetection, detect_language, normalize_language
from .normalizer import TextNormalizer
from .rate_limiter import RateLimitedExecutor, is_rate_limit_error
from .simhash import compute_simhash, find_near_duplicate_groups, hamming_distance

__all__ = [
    "AnalysisResult",
    "Attempt",
    "CancellationToken",
    "ContentItem",
    "DedupOptions",
    "DeduplicationResult",
    "Deduplicator",
    "DuplicateGroup",
    "LanguageDetection",
    "RateLimitedExecutor",
    "SourceType",
    "Stance",
    "TextNormalizer",
    "attempt",
    "canonicalize",
    "compute_simhash",
    "detect_language",
    "domain_distribution",
    "extract_domain",
    "fallback_analysis",
    "fallback_phrases",
    "find_near_duplicate_groups",
    "hamming_distance",
    "hash_url",
    "is_rate_limit_error",
    "normalize_language",
]
