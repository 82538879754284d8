from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from sentiment_aggregator.app import AppState, app
from sentiment_aggregator.engine.dedup import Deduplicator
from sentiment_aggregator.engine.simhash import compute_simhash
from sentiment_aggregator.errors import PersistenceError
from sentiment_aggregator.infra import DedupCache, SQLiteManager
from sentiment_aggregator.orchestrator import PipelineOrchestrator

runner = CliRunner()


async def _no_sleep(_seconds: float) -> None:
    return None


class CancellingOrchestrator:
    """Trigger the run's token before delegating, as a Ctrl-C would."""

    def __init__(self, inner: PipelineOrchestrator) -> None:
        self.inner = inner

    async def run(self, request, token, on_progress=None, run_id=None):
        token.cancel("interrupted")
        return await self.inner.run(request, token, on_progress=on_progress, run_id=run_id)


class ExplodingNormalizer:
    def normalize(self, items, allowed_languages=None):
        raise RuntimeError("normalizer crashed")


@pytest.fixture
def cli_state(monkeypatch, tmp_path, temp_config_repository, quiet_config, stubs, sample_items):
    storage = SQLiteManager()
    cache = DedupCache(storage, tmp_path / "history" / "dedupe.db")
    fetcher = stubs.Fetcher({"alpha": sample_items})
    behaviour = {"mode": "ok"}

    def factory(config, cache, logger=None):
        kwargs = {}
        if behaviour["mode"] == "fail":
            kwargs["normalizer"] = ExplodingNormalizer()
        orchestrator = PipelineOrchestrator(
            stubs.PhraseGenerator(["alpha"]),
            fetcher,
            stubs.Analyzer(),
            deduplicator=Deduplicator(cache=cache),
            settings=config,
            logger=logger,
            sleep=_no_sleep,
            **kwargs,
        )
        if behaviour["mode"] == "cancel":
            return CancellingOrchestrator(orchestrator), None
        return orchestrator, None

    state = AppState(
        repository=temp_config_repository,
        config=quiet_config,
        storage=storage,
        cache=cache,
        log_dir=tmp_path / "logs",
        orchestrator_factory=factory,
    )
    state.behaviour = behaviour
    state.fetcher = fetcher
    monkeypatch.setattr("sentiment_aggregator.app.build_state", lambda verbose: state)
    yield state
    storage.close_all()


def _outputs(state, suffix: str):
    return sorted(state.repository.outputs_dir().glob(f"*.{suffix}"))


def test_cli_run_writes_analysis_document(cli_state) -> None:
    result = runner.invoke(app, ["run", "remote work", "--no-domain-caps", "--quiet"])
    assert result.exit_code == 0, result.output
    assert "Run summary" in result.output
    assert cli_state.fetcher.calls == ["alpha"]

    files = _outputs(cli_state, "json")
    assert len(files) == 1
    document = json.loads(files[0].read_text(encoding="utf-8"))
    assert document["status"] == "completed"
    assert document["query"]["topic"] == "remote work"
    assert document["sampling"]["n_raw"] == 6
    assert document["sampling"]["domain_caps_applied"] is False
    assert cli_state.cache.stats().total_entries == 6


def test_cli_run_jsonl_dumps_items(cli_state) -> None:
    result = runner.invoke(app, ["run", "remote work", "--no-domain-caps", "--format", "jsonl", "--quiet"])
    assert result.exit_code == 0, result.output
    files = _outputs(cli_state, "jsonl")
    lines = files[0].read_text(encoding="utf-8").splitlines()
    assert len(lines) == 6
    assert json.loads(lines[0])["url"].startswith("https://news.example/")


def test_cli_run_with_check_cache_skips_seen_urls(cli_state) -> None:
    first = runner.invoke(app, ["run", "remote work", "--no-domain-caps", "--quiet"])
    assert first.exit_code == 0, first.output
    for path in _outputs(cli_state, "json"):
        path.unlink()

    second = runner.invoke(app, ["run", "remote work", "--no-domain-caps", "--check-cache", "--quiet"])
    assert second.exit_code == 0, second.output
    document = json.loads(_outputs(cli_state, "json")[0].read_text(encoding="utf-8"))
    assert document["sampling"]["n_raw"] == 6
    assert document["sampling"]["n_after_dedupe"] == 0
    assert cli_state.config.deduplication.check_cache is False


def test_cli_run_rejects_invalid_topic(cli_state) -> None:
    result = runner.invoke(app, ["run", "x", "--quiet"])
    assert result.exit_code == 2
    assert "Invalid analysis request" in result.output
    assert cli_state.fetcher.calls == []


def test_cli_run_rejects_invalid_language(cli_state) -> None:
    result = runner.invoke(app, ["run", "remote work", "--languages", "english", "--quiet"])
    assert result.exit_code == 2
    assert cli_state.fetcher.calls == []


def test_cli_run_requires_topic_or_request(cli_state) -> None:
    result = runner.invoke(app, ["run", "--quiet"])
    assert result.exit_code == 2


def test_cli_run_rejects_unknown_format(cli_state) -> None:
    result = runner.invoke(app, ["run", "remote work", "--format", "xml", "--quiet"])
    assert result.exit_code == 2


def test_cli_run_cancelled_exit_code(cli_state) -> None:
    cli_state.behaviour["mode"] = "cancel"
    result = runner.invoke(app, ["run", "remote work", "--quiet"])
    assert result.exit_code == 130
    assert "cancelled" in result.output
    assert _outputs(cli_state, "json") == []


def test_cli_run_failure_exports_partial_state(cli_state) -> None:
    cli_state.behaviour["mode"] = "fail"
    result = runner.invoke(app, ["run", "remote work", "--quiet"])
    assert result.exit_code == 1
    document = json.loads(_outputs(cli_state, "json")[0].read_text(encoding="utf-8"))
    assert document["status"] == "failed"
    assert document["stage"] == "process"
    assert "normalizer crashed" in document["error"]


def test_cli_saved_request_round_trip(cli_state) -> None:
    saved = runner.invoke(
        app, ["run", "remote work", "--save-request", "Weekly Check", "--no-domain-caps", "--quiet"]
    )
    assert saved.exit_code == 0, saved.output
    path = cli_state.repository.request_path("Weekly Check")
    assert path.exists()

    replay = runner.invoke(app, ["run", "--request", str(path), "--quiet"])
    assert replay.exit_code == 0, replay.output
    assert cli_state.fetcher.calls == ["alpha", "alpha"]


def test_cli_cache_stats(cli_state) -> None:
    cli_state.cache.insert_if_absent("h1", compute_simhash("some cached text"), "https://a.com/1")
    cli_state.cache.insert_if_absent("h2", None, "https://a.com/2")
    result = runner.invoke(app, ["cache", "stats"])
    assert result.exit_code == 0, result.output
    assert "Dedup cache" in result.output
    assert "Entries" in result.output
    assert "2" in result.output


def test_cli_cache_similar(cli_state) -> None:
    text = "Commuters shared mixed feelings about the new congestion charge in the city."
    cli_state.cache.insert_if_absent("h1", compute_simhash(text), "https://a.com/congestion")
    result = runner.invoke(app, ["cache", "similar", text])
    assert result.exit_code == 0, result.output
    assert "https://a.com/congestion" in result.output


def test_cli_cache_prune(cli_state) -> None:
    cli_state.cache.insert_if_absent("h1", None, "https://a.com/1")
    result = runner.invoke(app, ["cache", "prune", "--days", "30"])
    assert result.exit_code == 0, result.output
    assert "Removed 0 cache entries older than 30 days." in result.output
    assert cli_state.cache.stats().total_entries == 1


def test_cli_cache_reset(cli_state) -> None:
    cli_state.cache.insert_if_absent("h1", None, "https://a.com/1")

    declined = runner.invoke(app, ["cache", "reset"], input="n\n")
    assert declined.exit_code == 0, declined.output
    assert cli_state.cache.stats().total_entries == 1

    result = runner.invoke(app, ["cache", "reset", "--yes"])
    assert result.exit_code == 0, result.output
    assert "Dedup cache cleared." in result.output
    assert cli_state.cache.stats().total_entries == 0


def test_cli_config_show(cli_state) -> None:
    result = runner.invoke(app, ["config", "show"])
    assert result.exit_code == 0, result.output
    assert "enable_progress_bar: true" in result.output
    assert "inter_request_delay: 0" in result.output


def test_cli_log_tail_and_list(cli_state) -> None:
    log_dir = cli_state.log_dir
    (log_dir / "runs").mkdir(parents=True, exist_ok=True)
    (log_dir / "pipeline.log").write_text("first line\nsecond line\n", encoding="utf-8")
    (log_dir / "runs" / "run-abc.log").write_text("run event\n", encoding="utf-8")

    tail = runner.invoke(app, ["log", "tail", "-n", "1"])
    assert tail.exit_code == 0, tail.output
    assert "second line" in tail.output
    assert "first line" not in tail.output

    run_tail = runner.invoke(app, ["log", "tail", "--run", "run-abc"])
    assert "run event" in run_tail.output

    missing = runner.invoke(app, ["log", "tail", "--run", "unknown"])
    assert "No log entries yet." in missing.output

    listing = runner.invoke(app, ["log", "list"])
    assert "run-abc.log" in listing.output


@pytest.mark.parametrize(
    ("method", "args"),
    [
        ("stats", ["cache", "stats"]),
        ("find_by_simhash", ["cache", "similar", "some cached text"]),
        ("prune", ["cache", "prune", "--days", "7"]),
        ("reset", ["cache", "reset", "--yes"]),
    ],
)
def test_cli_cache_commands_fail_cleanly_on_storage_errors(cli_state, monkeypatch, method, args) -> None:
    def locked(*_args, **_kwargs):
        raise PersistenceError("database is locked")

    monkeypatch.setattr(cli_state.cache, method, locked)
    result = runner.invoke(app, args)
    assert result.exit_code == 1
    assert "database is locked" in result.output
    assert "Traceback" not in result.output
