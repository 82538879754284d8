from __future__ import annotations

from sentiment_aggregator.config.models import DeduplicationConfig
from sentiment_aggregator.engine.dedup import DedupOptions, Deduplicator, DuplicateType
from sentiment_aggregator.errors import PersistenceError

NO_CAPS = DedupOptions(check_cache=False, apply_domain_caps=False)


def test_url_duplicates_keep_first_occurrence(make_item) -> None:
    first = make_item(url="https://example.com/story?utm_source=feed")
    second = make_item(url="https://EXAMPLE.com/story/")
    result = Deduplicator().deduplicate([first, second], NO_CAPS)

    assert [item.id for item in result.items] == [first.id]
    assert result.stats.url_duplicates_removed == 1
    assert result.stats.final_count == 1
    group = result.duplicate_groups[0]
    assert group.type is DuplicateType.URL
    assert group.urls == [first.url, second.url]
    assert group.kept == first.url


def test_near_duplicates_keep_highest_engagement(make_item) -> None:
    text = "Identical syndicated article text about the new stadium funding vote in the city council."
    low = make_item(text=text, meta={"score": 1})
    high = make_item(text=text, meta={"upvotes": 5})
    mid = make_item(text=text, meta={"score": 3})
    result = Deduplicator().deduplicate([low, high, mid], NO_CAPS)

    assert [item.id for item in result.items] == [high.id]
    assert result.stats.near_duplicates_removed == 2
    group = result.duplicate_groups[0]
    assert group.type is DuplicateType.CONTENT
    assert group.urls == [low.url, high.url, mid.url]
    assert group.kept == high.url


def test_near_duplicate_tie_keeps_first(make_item) -> None:
    text = "Two outlets published the same wire story about rising grocery prices this winter season."
    first = make_item(text=text)
    second = make_item(text=text)
    result = Deduplicator().deduplicate([first, second], NO_CAPS)
    assert [item.id for item in result.items] == [first.id]


def test_domain_caps_limit_dominant_domain(make_item) -> None:
    items = [make_item(url=f"https://a.com/{index}") for index in range(4)]
    items.append(make_item(url="https://b.com/1"))
    result = Deduplicator().deduplicate(
        items, DedupOptions(check_cache=False, apply_domain_caps=True, domain_cap_percent=25)
    )

    assert [item.url for item in result.items] == ["https://a.com/0", "https://a.com/1", "https://b.com/1"]
    assert result.stats.domain_cap_applied is True
    assert result.stats.domains_capped == ["a.com"]
    assert result.stats.final_count == 3


def test_domain_caps_not_flagged_when_nothing_dropped(sample_items) -> None:
    result = Deduplicator().deduplicate(
        sample_items, DedupOptions(check_cache=False, domain_cap_percent=50)
    )
    assert len(result.items) == len(sample_items)
    assert result.stats.domain_cap_applied is False
    assert result.stats.domains_capped == []


def test_input_is_not_mutated(sample_items) -> None:
    snapshot = [(item.id, item.url, item.text) for item in sample_items]
    Deduplicator().deduplicate(sample_items + sample_items[:2], DedupOptions(check_cache=False))
    assert [(item.id, item.url, item.text) for item in sample_items] == snapshot


def test_result_is_deterministic(sample_items) -> None:
    options = DedupOptions(check_cache=False, domain_cap_percent=25)
    first = Deduplicator().deduplicate(sample_items, options)
    second = Deduplicator().deduplicate(sample_items, options)
    assert [item.id for item in first.items] == [item.id for item in second.items]


def test_empty_input() -> None:
    result = Deduplicator().deduplicate([], DedupOptions())
    assert result.items == []
    assert result.stats.original_count == 0
    assert result.stats.final_count == 0


def test_cache_remembers_survivors_across_runs(sample_items, dedup_cache) -> None:
    deduplicator = Deduplicator(cache=dedup_cache)
    first = deduplicator.deduplicate(sample_items, NO_CAPS)
    assert len(first.items) == len(sample_items)
    assert dedup_cache.stats().total_entries == len(sample_items)

    second = deduplicator.deduplicate(sample_items, DedupOptions(check_cache=True, apply_domain_caps=False))
    assert second.items == []
    assert second.stats.url_duplicates_removed == len(sample_items)
    assert second.duplicate_groups == []

    third = deduplicator.deduplicate(sample_items, NO_CAPS)
    assert len(third.items) == len(sample_items)
    assert dedup_cache.stats().total_entries == len(sample_items)


class BrokenCache:
    def __init__(self) -> None:
        self.writes = 0

    def exists_by_url_hash(self, url_hash: str) -> bool:
        raise PersistenceError("database is locked")

    def insert_if_absent(self, url_hash, simhash, source_url) -> bool:
        self.writes += 1
        raise PersistenceError("database is locked")

    def find_by_simhash(self, simhash, max_distance=3):
        return []


def test_cache_failures_do_not_change_decisions(sample_items) -> None:
    cache = BrokenCache()
    result = Deduplicator(cache=cache).deduplicate(
        sample_items, DedupOptions(check_cache=True, apply_domain_caps=False)
    )
    assert len(result.items) == len(sample_items)
    assert cache.writes == len(sample_items)


def test_result_to_dict(make_item) -> None:
    item = make_item()
    payload = Deduplicator().deduplicate([item, make_item(url=item.url)], NO_CAPS).to_dict()
    assert payload["stats"]["url_duplicates_removed"] == 1
    assert payload["duplicate_groups"][0]["type"] == "url"
    assert payload["items"][0]["url"] == item.url


def _letters(number: int) -> str:
    word = ""
    for _ in range(4):
        number, digit = divmod(number, 26)
        word += chr(ord("a") + digit)
    return word


def test_domain_cap_on_large_single_domain_batch(make_item) -> None:
    items = [
        make_item(
            url=f"https://x.example/{index}",
            text=" ".join(_letters(index * 40 + offset) for offset in range(40)),
        )
        for index in range(100)
    ]
    result = Deduplicator().deduplicate(
        items, DedupOptions(check_cache=False, apply_domain_caps=True, domain_cap_percent=25)
    )
    assert result.stats.near_duplicates_removed == 0
    assert len(result.items) == 25
    assert result.stats.domains_capped == ["x.example"]


REWRITTEN_STORY = (
    "The regional transit authority announced on Monday that it would raise bus and tram fares "
    "by twelve percent starting next spring, citing higher fuel costs, delayed federal grants and "
    "a maintenance backlog that has left dozens of vehicles parked in the depot for months. "
    "Commuter groups responded with {adjective} criticism, arguing that riders who depend on public "
    "transport to reach hospitals, schools and night shifts would be hit hardest while service on "
    "many suburban routes remains unreliable. Board members said discounted passes for students, "
    "pensioners and low income households would stay frozen at current prices, and promised a public "
    "hearing before the final vote. Several city councillors asked the authority to publish a detailed "
    "budget so residents can see where the additional revenue will actually be spent next year."
)


def test_reworded_copy_counts_as_near_duplicate(make_item) -> None:
    original = make_item(
        url="https://a.example/1",
        text=REWRITTEN_STORY.format(adjective="strong"),
        meta={"score": 1},
    )
    reworded = make_item(
        url="https://b.example/1",
        text=REWRITTEN_STORY.format(adjective="fierce"),
        meta={"score": 9},
    )
    options = DedupOptions(
        check_cache=False,
        apply_domain_caps=False,
        simhash_threshold=DeduplicationConfig().simhash_threshold,
    )
    result = Deduplicator().deduplicate([original, reworded], options)

    assert [item.url for item in result.items] == ["https://b.example/1"]
    assert result.stats.near_duplicates_removed == 1
    assert result.duplicate_groups[0].type is DuplicateType.CONTENT
