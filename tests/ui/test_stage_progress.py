from __future__ import annotations

import io

from rich.console import Console

from sentiment_aggregator.orchestrator import PipelineProgress, Stage
from sentiment_aggregator.ui import StageProgressReporter


def _event(stage: Stage, progress: int, message: str = "") -> PipelineProgress:
    return PipelineProgress(stage=stage, progress=progress, message=message or stage.value)


def test_disabled_reporter_tracks_state() -> None:
    with StageProgressReporter(enabled=False) as reporter:
        reporter(_event(Stage.SEARCH_PHRASES, 0))
        reporter(_event(Stage.SEARCH_PHRASES, 100, "Generated 5 search phrases"))
        reporter(_event(Stage.FETCH, 40, "Searched 2/5 phrases"))

    assert reporter.state.events == 3
    assert reporter.summary() == {
        "completed_stages": ["search_phrases"],
        "last_stage": "fetch",
        "last_message": "Searched 2/5 phrases",
    }


def test_non_terminal_console_disables_live_display() -> None:
    console = Console(file=io.StringIO(), force_terminal=False)
    reporter = StageProgressReporter(enabled=True, console=console)
    with reporter:
        assert reporter.enabled is False
        reporter.update(_event(Stage.ANALYZE, 100))
    assert reporter.state.completed == [Stage.ANALYZE]
    assert console.file.getvalue() == ""


def test_terminal_console_renders_stage_rows() -> None:
    console = Console(file=io.StringIO(), force_terminal=True, width=120)
    with StageProgressReporter(enabled=True, console=console) as reporter:
        assert reporter.enabled is True
        for stage in Stage:
            reporter(_event(stage, 0))
            reporter(_event(stage, 100))
    assert reporter.summary()["completed_stages"] == [stage.value for stage in Stage]


def test_empty_summary() -> None:
    reporter = StageProgressReporter(enabled=False)
    assert reporter.summary() == {"completed_stages": [], "last_stage": None, "last_message": ""}
