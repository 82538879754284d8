"""Opinion clustering of fetched content via the language model."""

from __future__ import annotations

from collections import Counter
from typing import Any, Mapping, Sequence

import structlog

from ..errors import AnalysisError, CancellationError
from ..engine.items import (
    ASPECT_TAGS,
    AnalysisConfidence,
    AnalysisResult,
    Cluster,
    ClusterBreakdown,
    ClusterConfidence,
    ClusterShare,
    ContentItem,
    Evidence,
    Stance,
    StanceDistributionEntry,
    percent_of,
    round_half_up,
)
from .client import ChatMessage, OpenRouterClient

PROMPT_TEXT_LIMIT = 800
MAX_EVIDENCE = 5
MAX_ASPECT_TAGS = 5
DEFAULT_CONFIDENCE = 0.7
FIXED_LIMITATIONS = (
    "Analysis based on web search results only",
    "Results may not represent all perspectives on this topic",
)

SYSTEM_PROMPT = """You are an expert sentiment analyst. Analyze web content about a given TOPIC and identify opinion clusters.

STANCE DEFINITION (always relative to the TOPIC):
- "support": the content is in favor of or positive toward the topic
- "oppose": the content is against or critical of the topic
- "mixed": the content presents both positive and negative views
- "unclear": the stance cannot be determined

Judge stance by what the content actually says about the topic, not by the themes it mentions.

TASK:
1. Determine each item's stance toward the TOPIC.
2. Create at most one cluster per stance (max 4 clusters) and put every item with that stance in it.
3. Label each cluster by summarizing the main arguments for that stance (max 100 characters).
4. Write notes capturing the sub-arguments (max 400 characters).
5. Select 2-4 direct-quote evidence excerpts per cluster (max 200 characters each).

Only use the provided content, never fabricate quotes, and reference items by their index number [N].

VALID ASPECT TAGS: """ + ", ".join(ASPECT_TAGS) + """

Return JSON:
{
  "clusters": [
    {
      "label": "Short descriptive label",
      "stance": "support|oppose|mixed|unclear",
      "aspect_tags": ["tag1", "tag2"],
      "item_indices": [0, 2, 5],
      "notes": "Main arguments of this cluster",
      "evidence_excerpts": [{"item_index": 0, "excerpt": "Direct quote..."}]
    }
  ],
  "stance_distribution": [
    {"stance": "support", "percent": 40},
    {"stance": "oppose", "percent": 35},
    {"stance": "mixed", "percent": 20},
    {"stance": "unclear", "percent": 5}
  ],
  "overall_confidence": 0.7,
  "limitations": ["Data quality issues or caveats"]
}"""


def truncate_for_prompt(text: str, max_length: int = PROMPT_TEXT_LIMIT) -> str:
    """Shorten text at a sentence boundary when possible, else at a word boundary."""

    if len(text) <= max_length:
        return text
    truncated = text[:max_length]
    last_sentence = truncated.rfind(". ")
    if last_sentence > max_length * 0.6:
        return truncated[: last_sentence + 1]
    last_space = truncated.rfind(" ")
    if last_space > 0:
        truncated = truncated[:last_space]
    return truncated + "..."


def build_user_prompt(
    topic: str,
    items: Sequence[ContentItem],
    min_cluster_size: int | None = None,
    max_clusters: int | None = None,
) -> str:
    lines = [f'Analyze the following {len(items)} items about "{topic}":', ""]
    for index, item in enumerate(items):
        date = item.published_at.date().isoformat() if item.published_at else "unknown"
        lines.append(f"[{index}] Source: {item.source_name} | Date: {date}")
        if item.title:
            lines.append(f"Title: {item.title}")
        lines.append(f'"{truncate_for_prompt(item.text)}"')
        lines.append("")
    if max_clusters is not None:
        lines.append(f"Return at most {max_clusters} clusters.")
    if min_cluster_size is not None:
        lines.append(
            f"A cluster needs at least {min_cluster_size} items; "
            "fold smaller groups into the closest stance or \"unclear\"."
        )
    lines.append("Identify opinion clusters and return the structured JSON analysis.")
    return "\n".join(lines)


def _coerce_stance(value: Any) -> Stance:
    try:
        return Stance(str(value).lower())
    except ValueError:
        return Stance.UNCLEAR


def _coerce_aspects(values: Any) -> list[str]:
    if not isinstance(values, list):
        return []
    tags = [str(tag).lower() for tag in values]
    return [tag for tag in tags if tag in ASPECT_TAGS][:MAX_ASPECT_TAGS]


def _valid_indices(values: Any, total: int) -> list[int]:
    if not isinstance(values, list):
        return []
    return [idx for idx in values if isinstance(idx, int) and 0 <= idx < total]


def _as_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _map_cluster(
    position: int, raw: Mapping[str, Any], items: Sequence[ContentItem], confidence: float
) -> Cluster | None:
    total = len(items)
    indices = _valid_indices(raw.get("item_indices"), total)

    evidence: list[Evidence] = []
    for excerpt in (raw.get("evidence_excerpts") or [])[:MAX_EVIDENCE]:
        if not isinstance(excerpt, Mapping):
            continue
        index = excerpt.get("item_index")
        if isinstance(index, int) and 0 <= index < total:
            evidence.append(Evidence.from_item(items[index], str(excerpt.get("excerpt") or "")))
    if not evidence and indices:
        first = items[indices[0]]
        evidence.append(Evidence.from_item(first, first.text or ""))
    if not evidence:
        return None

    source_types: Counter[str] = Counter(items[idx].source_type.value for idx in indices)
    languages: Counter[str] = Counter(items[idx].language for idx in indices if items[idx].language)
    return Cluster(
        id=f"cluster-{position + 1}",
        label=str(raw.get("label") or "")[:150],
        stance=_coerce_stance(raw.get("stance")),
        aspect_tags=_coerce_aspects(raw.get("aspect_tags")),
        share=ClusterShare(
            count=len(indices),
            percent=percent_of(len(indices), total),
        ),
        breakdown=ClusterBreakdown(
            by_source_type=[{"source_type": k, "count": v} for k, v in source_types.items()],
            by_language=[{"language": k, "count": v} for k, v in languages.items()],
        ),
        evidence=evidence,
        notes=str(raw.get("notes") or "")[:500],
        confidence=ClusterConfidence(score_0_1=confidence),
    )


def _map_distribution(raw: Any, total: int) -> list[StanceDistributionEntry]:
    percents: dict[Stance, float] = {stance: 0.0 for stance in Stance}
    for entry in raw if isinstance(raw, list) else []:
        if not isinstance(entry, Mapping):
            continue
        try:
            stance = Stance(str(entry.get("stance", "")).lower())
        except ValueError:
            continue
        if not percents[stance]:
            percents[stance] = _as_float(entry.get("percent"))

    sum_percent = sum(percents.values())
    if sum_percent > 0 and sum_percent != 100:
        factor = 100 / sum_percent
        percents = {stance: round_half_up(value * factor) for stance, value in percents.items()}
    return [
        StanceDistributionEntry(
            stance=stance, count=round_half_up(percent / 100 * total), percent=percent
        )
        for stance, percent in percents.items()
    ]


def map_analysis_response(
    payload: Any, items: Sequence[ContentItem], max_clusters: int | None = None
) -> AnalysisResult:
    """Turn the model's JSON into an :class:`AnalysisResult`, coercing bad fields.

    Clusters beyond ``max_clusters`` are dropped in the order the model listed them.
    """

    if not isinstance(payload, Mapping):
        raise AnalysisError("analysis response must be a JSON object")
    confidence = _as_float(payload.get("overall_confidence")) or DEFAULT_CONFIDENCE

    clusters: list[Cluster] = []
    for position, raw in enumerate(payload.get("clusters") or []):
        if not isinstance(raw, Mapping):
            continue
        cluster = _map_cluster(position, raw, items, confidence)
        if cluster is not None:
            clusters.append(cluster)
    if max_clusters is not None:
        clusters = clusters[:max_clusters]

    limitations = [str(item) for item in payload.get("limitations") or [] if item]
    return AnalysisResult(
        clusters=clusters,
        stance_distribution=_map_distribution(payload.get("stance_distribution"), len(items)),
        confidence=AnalysisConfidence(
            overall_score_0_1=confidence,
            limitations=[*limitations, *FIXED_LIMITATIONS],
        ),
    )


class LLMContentAnalyzer:
    def __init__(
        self,
        client: OpenRouterClient,
        temperature: float = 0.5,
        max_tokens: int = 4096,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.client = client
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.logger = logger or structlog.get_logger("sentiment_aggregator.analysis")

    async def analyze_content(
        self, topic: str, items: Sequence[ContentItem], meta: Mapping[str, Any]
    ) -> AnalysisResult:
        max_clusters = meta.get("max_clusters")
        prompt = build_user_prompt(topic, items, meta.get("min_cluster_size"), max_clusters)
        messages = [ChatMessage("system", SYSTEM_PROMPT), ChatMessage("user", prompt)]
        try:
            payload, usage = await self.client.json_completion(
                messages, temperature=self.temperature, max_tokens=self.max_tokens
            )
        except (AnalysisError, CancellationError):
            raise
        except Exception as exc:
            raise AnalysisError(f"analysis request failed: {exc}") from exc
        result = map_analysis_response(payload, items, max_clusters)
        self.logger.info(
            "analysis_complete",
            clusters=len(result.clusters),
            tokens=usage.total_tokens,
            **{key: value for key, value in meta.items() if key.startswith("n_")},
        )
        return result


__all__ = [
    "LLMContentAnalyzer",
    "SYSTEM_PROMPT",
    "build_user_prompt",
    "map_analysis_response",
    "truncate_for_prompt",
]
