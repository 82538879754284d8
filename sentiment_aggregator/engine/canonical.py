"""URL canonicalization used as the exact-duplicate key."""

from __future__ import annotations

import hashlib
from collections import Counter
from typing import Iterable
from urllib.parse import parse_qsl, urlencode, urlsplit

from .items import percent_of

TRACKING_PARAMS = frozenset({"fbclid", "gclid", "ref", "source", "mc_cid", "mc_eid"})
TRACKING_PREFIXES = ("utm_",)
DEFAULT_PORTS = {"http": 80, "https": 443}
UNKNOWN_DOMAIN = "unknown"


def _is_tracking(key: str) -> bool:
    lowered = key.lower()
    return lowered in TRACKING_PARAMS or lowered.startswith(TRACKING_PREFIXES)


def _fallback(url: str) -> str:
    return url.strip().lower()


def canonicalize(url: str) -> str:
    """Return a stable, lower-cased form of ``url``.

    Tracking parameters, fragments, credentials and default ports are dropped,
    the remaining query parameters are sorted by key and a trailing slash is
    removed unless the path is the root. Never raises: unparseable input falls
    back to its trimmed, lower-cased text.
    """

    try:
        parts = urlsplit(url.strip())
        host = parts.hostname
        port = parts.port
    except ValueError:
        return _fallback(url)
    if not parts.scheme or not host:
        return _fallback(url)

    scheme = parts.scheme.lower()
    if ":" in host:
        host = f"[{host}]"
    netloc = host if port is None or DEFAULT_PORTS.get(scheme) == port else f"{host}:{port}"

    path = parts.path.rstrip("/") or "/"

    params = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if not _is_tracking(key)
    ]
    params.sort(key=lambda pair: pair[0].lower())
    query = urlencode(params)

    canonical = f"{scheme}://{netloc}{path}"
    if query:
        canonical = f"{canonical}?{query}"
    return canonical.lower()


def hash_url(url: str) -> str:
    """SHA-256 hex digest of the canonical form of ``url``."""

    return hashlib.sha256(canonicalize(url).encode("utf-8")).hexdigest()


def extract_domain(url: str) -> str:
    try:
        host = urlsplit(url.strip()).hostname
    except ValueError:
        return UNKNOWN_DOMAIN
    if not host:
        return UNKNOWN_DOMAIN
    return host.removeprefix("www.")


def domain_distribution(urls: Iterable[str]) -> list[dict[str, object]]:
    """Count URLs per domain, most frequent first, with one-decimal percentages."""

    counts = Counter(extract_domain(url) for url in urls)
    total = sum(counts.values())
    return [
        {"domain": domain, "count": count, "percent": percent_of(count, total)}
        for domain, count in counts.most_common()
    ]


__all__ = [
    "TRACKING_PARAMS",
    "canonicalize",
    "domain_distribution",
    "extract_domain",
    "hash_url",
]
