"""Typer CLI entrypoint for the sentiment aggregator."""

from __future__ import annotations

import asyncio
import signal
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Optional

import typer
import yaml
from pydantic import ValidationError
from rich import box
from rich.console import Console
from rich.table import Table

from .config import AnalysisRequest, ConfigRepository, GlobalConfig
from .engine.cancellation import CancellationToken
from .engine.exporter import SUPPORTED_FORMATS, FileExporter
from .engine.simhash import compute_simhash
from .errors import PersistenceError
from .infra import DedupCache, SQLiteManager
from .logging_conf import available_run_logs, configure_logging, default_log_dir, run_logger, tail_log
from .orchestrator import PipelineOutcome, RunStatus, create_default_orchestrator
from .ui import StageProgressReporter

EXIT_FAILED = 1
EXIT_INVALID_REQUEST = 2
EXIT_CANCELLED = 130

app = typer.Typer(
    help="Internet sentiment aggregator command line tool",
    no_args_is_help=True,
    rich_markup_mode=None,
)
cache_app = typer.Typer(name="cache", help="Dedup cache commands", no_args_is_help=True, rich_markup_mode=None)
log_app = typer.Typer(name="log", help="Log inspection commands", no_args_is_help=True, rich_markup_mode=None)
config_app = typer.Typer(name="config", help="Configuration commands", no_args_is_help=True, rich_markup_mode=None)

console = Console()


@dataclass
class AppState:
    repository: ConfigRepository
    config: GlobalConfig
    storage: SQLiteManager
    cache: DedupCache
    log_dir: Path
    orchestrator_factory: Callable[..., tuple[Any, Any]] = create_default_orchestrator


def build_state(verbose: bool) -> AppState:
    repository = ConfigRepository()
    global_config = repository.load_global_config()
    storage = SQLiteManager()
    cache = DedupCache(storage, repository.dedup_store_path())
    log_dir = repository.locator.logs_dir or default_log_dir()
    configure_logging(verbose=verbose, log_dir=log_dir)
    return AppState(
        repository=repository,
        config=global_config,
        storage=storage,
        cache=cache,
        log_dir=log_dir,
    )


def _get_state(ctx: typer.Context) -> AppState:
    state = ctx.obj
    if state is None:
        state = build_state(verbose=False)
        ctx.obj = state
    return state


def _progress_default_enabled() -> bool:
    return console.is_terminal


app.add_typer(cache_app, name="cache")
app.add_typer(log_app, name="log")
app.add_typer(config_app, name="config")


@app.callback()
def main(
    ctx: typer.Context, verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging", is_flag=True)
) -> None:
    ctx.obj = build_state(verbose)


# ----------------------------------------------------------------------
# run
# ----------------------------------------------------------------------
def _build_request(
    state: AppState,
    topic: Optional[str],
    request_file: Optional[Path],
    overrides: dict[str, Any],
) -> AnalysisRequest:
    if request_file is not None:
        base = state.repository.load_request(request_file).model_dump(mode="json")
    elif topic:
        base = {"topic": topic}
    else:
        raise typer.BadParameter("Provide a TOPIC argument or --request FILE.")
    if topic and request_file is not None:
        base["topic"] = topic
    options = {**base.get("options", {}), **overrides.pop("options", {})}
    base.update({key: value for key, value in overrides.items() if value is not None})
    if options:
        base["options"] = options
    return AnalysisRequest.model_validate(base)


async def _execute(
    state: AppState,
    request: AnalysisRequest,
    config: GlobalConfig,
    progress_enabled: bool,
) -> PipelineOutcome:
    run_id = str(uuid.uuid4())
    logger = run_logger(run_id, log_dir=state.log_dir)
    orchestrator, client = state.orchestrator_factory(config, state.cache, logger=logger)
    token = CancellationToken()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, token.cancel, "interrupted")
    except (NotImplementedError, RuntimeError):
        pass
    try:
        with StageProgressReporter(enabled=progress_enabled) as reporter:
            return await orchestrator.run(request, token, on_progress=reporter, run_id=run_id)
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass
        if client is not None:
            await client.aclose()


def _render_outcome(outcome: PipelineOutcome) -> Table:
    stats = outcome.stats
    table = Table(title="Run summary", box=box.SIMPLE_HEAD)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Run", outcome.run_id)
    table.add_row("Status", outcome.status.value)
    table.add_row("Phrases", str(len(stats.phrases)))
    table.add_row("Failed phrases", str(len(stats.failed_phrases)))
    table.add_row("Raw items", str(stats.n_raw))
    table.add_row("After dedup", str(stats.n_after_dedupe))
    table.add_row("Analyzed", str(stats.n_analyzed))
    table.add_row("Domains capped", ", ".join(stats.domains_capped) or "-")
    if outcome.output:
        table.add_row("Clusters", str(len(outcome.output["clusters"])))
        table.add_row("Confidence", str(outcome.output["confidence"]["overall_score_0_1"]))
    if outcome.error:
        table.add_row("Error", outcome.error)
    return table


def _export(state: AppState, request: AnalysisRequest, outcome: PipelineOutcome, fmt: str) -> Path:
    exporter = FileExporter(state.repository.outputs_dir(), request.topic, fmt)
    with exporter:
        if fmt == "jsonl":
            items = outcome.dedup.items if outcome.dedup else outcome.raw_items
            exporter.export_many(item.to_dict() for item in items)
        else:
            exporter.export(outcome.output or outcome.to_dict())
    return exporter.path


@app.command("run", help="Run the sentiment pipeline for a topic.")
def run(
    ctx: typer.Context,
    topic: Optional[str] = typer.Argument(None, help="Topic to analyze."),
    request_file: Optional[Path] = typer.Option(None, "--request", help="YAML/JSON analysis request file."),
    languages: Optional[str] = typer.Option(None, "--languages", help="Comma separated ISO 639-1 codes."),
    timeframe: Optional[str] = typer.Option(None, "--timeframe", help="last_24h, last_week, last_month, ..."),
    geo: Optional[str] = typer.Option(None, "--geo", help="Country code for geographic scope."),
    domain_cap: Optional[float] = typer.Option(None, "--domain-cap", help="Max percent of items per domain."),
    no_domain_caps: bool = typer.Option(False, "--no-domain-caps", is_flag=True),
    check_cache: bool = typer.Option(False, "--check-cache", is_flag=True, help="Skip URLs seen in earlier runs."),
    fmt: str = typer.Option("json", "--format", help="Output format: json or jsonl."),
    save_request: Optional[str] = typer.Option(None, "--save-request", help="Store the request under this name."),
    quiet: bool = typer.Option(False, "--quiet", is_flag=True, help="Disable the progress display."),
) -> None:
    state = _get_state(ctx)
    if fmt not in SUPPORTED_FORMATS:
        raise typer.BadParameter(f"--format must be one of {', '.join(SUPPORTED_FORMATS)}")

    options: dict[str, Any] = {}
    if domain_cap is not None:
        options["domain_cap_percent"] = domain_cap
    if no_domain_caps:
        options["apply_domain_caps"] = False
    overrides: dict[str, Any] = {
        "languages": [code for code in languages.split(",") if code.strip()] if languages else None,
        "timeframe": timeframe,
        "geo_scope": geo,
        "options": options,
    }
    try:
        request = _build_request(state, topic, request_file, overrides)
    except (ValidationError, ValueError) as exc:
        console.print(f"Invalid analysis request:\n{exc}", style="red")
        raise typer.Exit(code=EXIT_INVALID_REQUEST)
    if save_request:
        path = state.repository.save_request(save_request, request)
        console.print(f"Request saved to {path}", style="dim")

    config = state.config
    if check_cache:
        config = config.model_copy(
            update={"deduplication": config.deduplication.model_copy(update={"check_cache": True})}
        )
    progress_enabled = config.enable_progress_bar and not quiet and _progress_default_enabled()
    outcome = asyncio.run(_execute(state, request, config, progress_enabled))

    console.print(_render_outcome(outcome))
    if outcome.output is not None or outcome.raw_items:
        path = _export(state, request, outcome, fmt)
        console.print(f"Output written to {path}", style="green")
    if outcome.status is RunStatus.CANCELLED:
        raise typer.Exit(code=EXIT_CANCELLED)
    if outcome.status is RunStatus.FAILED:
        raise typer.Exit(code=EXIT_FAILED)


# ----------------------------------------------------------------------
# cache
# ----------------------------------------------------------------------
@cache_app.command("stats", help="Show dedup cache statistics.")
def cache_stats(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    try:
        stats = state.cache.stats()
    except PersistenceError as exc:
        console.print(str(exc), style="red")
        raise typer.Exit(code=EXIT_FAILED)
    table = Table(title="Dedup cache", box=box.SIMPLE_HEAD)
    table.add_column("Metric", style="cyan")
    table.add_column("Value")
    table.add_row("Entries", str(stats.total_entries))
    table.add_row("With fingerprint", str(stats.with_simhash))
    table.add_row("Oldest", stats.oldest or "-")
    table.add_row("Newest", stats.newest or "-")
    console.print(table)


@cache_app.command("similar", help="List cached URLs whose content resembles TEXT.")
def cache_similar(
    ctx: typer.Context,
    text: str = typer.Argument(..., help="Text to fingerprint."),
    max_distance: int = typer.Option(3, "--max-distance", min=0, max=64),
) -> None:
    state = _get_state(ctx)
    try:
        matches = state.cache.find_by_simhash(compute_simhash(text), max_distance)
    except PersistenceError as exc:
        console.print(str(exc), style="red")
        raise typer.Exit(code=EXIT_FAILED)
    if not matches:
        console.print("No similar content in cache.", style="dim")
        return
    for url in matches:
        console.print(url)


@cache_app.command("prune", help="Delete cache entries older than N days.")
def cache_prune(
    ctx: typer.Context,
    days: int = typer.Option(30, "--days", min=0, help="Retention window in days."),
) -> None:
    state = _get_state(ctx)
    cutoff = datetime.now(timezone.utc) - timedelta(days=days)
    try:
        removed = state.cache.prune(cutoff)
    except PersistenceError as exc:
        console.print(str(exc), style="red")
        raise typer.Exit(code=EXIT_FAILED)
    console.print(f"Removed {removed} cache entries older than {days} days.", style="green")


@cache_app.command("reset", help="Delete every dedup cache entry.")
def cache_reset(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", is_flag=True, help="Skip confirmation."),
) -> None:
    state = _get_state(ctx)
    if not yes and not typer.confirm("Delete all dedup cache entries?", default=False):
        console.print("Cancelled.", style="dim")
        return
    try:
        state.cache.reset()
    except PersistenceError as exc:
        console.print(str(exc), style="red")
        raise typer.Exit(code=EXIT_FAILED)
    console.print("Dedup cache cleared.", style="green")


# ----------------------------------------------------------------------
# log / config
# ----------------------------------------------------------------------
@log_app.command("list", help="List per-run log files.")
def log_list(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    logs = list(available_run_logs(state.log_dir))
    if not logs:
        console.print("No run logs yet.", style="dim")
        return
    table = Table(box=box.SIMPLE_HEAD)
    table.add_column("Run log", style="green")
    for path in logs:
        table.add_row(path.name)
    console.print(table)


@log_app.command("tail", help="Show the most recent log lines.")
def log_tail(
    ctx: typer.Context,
    run_id: Optional[str] = typer.Option(None, "--run", help="Run id (defaults to the pipeline log)."),
    lines: int = typer.Option(100, "--lines", "-n", min=1),
) -> None:
    state = _get_state(ctx)
    path = state.log_dir / "runs" / f"{run_id}.log" if run_id else state.log_dir / "pipeline.log"
    content = tail_log(path, lines)
    if not content:
        console.print("No log entries yet.", style="dim")
        return
    console.print(f"{path.name} · last {len(content)} lines", style="cyan")
    console.print("".join(content), markup=False, highlight=False)


@config_app.command("show", help="Print the effective global configuration.")
def config_show(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    payload = state.config.model_dump(mode="json")
    console.print(yaml.safe_dump(payload, allow_unicode=True, sort_keys=False), markup=False, highlight=False)


def cli() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    cli()
