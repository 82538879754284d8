"""Terminal progress for pipeline stages with Rich-based rendering."""

from __future__ import annotations

from dataclasses import dataclass, field

from rich.console import Console
from rich.errors import LiveError
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from ..orchestrator import PipelineProgress, Stage

STAGE_LABELS = {
    Stage.SEARCH_PHRASES: "Search phrases",
    Stage.FETCH: "Fetch",
    Stage.PROCESS: "Process",
    Stage.ANALYZE: "Analyze",
    Stage.ASSEMBLE: "Assemble",
}


@dataclass
class StageProgressState:
    current: Stage | None = None
    completed: list[Stage] = field(default_factory=list)
    last_message: str = ""
    events: int = 0


class StageProgressReporter:
    """Render one progress row per pipeline stage.

    Falls back to silent bookkeeping when stdout is not a terminal or another
    live display already owns the console.
    """

    def __init__(self, enabled: bool = True, console: Console | None = None) -> None:
        self.enabled = enabled
        self.state = StageProgressState()
        self._console = console
        self._progress: Progress | None = None
        self._tasks: dict[Stage, TaskID] = {}

    def start(self) -> None:
        if not self.enabled:
            return
        console = self._console or Console()
        if not console.is_terminal:
            self.enabled = False
            return
        self._progress = Progress(
            SpinnerColumn(style="cyan"),
            TextColumn("[bold blue]{task.fields[label]:<15}", justify="left"),
            BarColumn(bar_width=None, complete_style="green", finished_style="green"),
            TaskProgressColumn(show_speed=False),
            TimeElapsedColumn(),
            TextColumn("[dim]{task.fields[message]}", justify="left"),
            console=console,
            transient=True,
            expand=True,
        )
        try:
            self._progress.__enter__()
        except LiveError:
            self.enabled = False
            self._progress = None
            return
        for stage in Stage:
            self._tasks[stage] = self._progress.add_task(
                stage.value, total=100, label=STAGE_LABELS[stage], message="pending", start=False
            )

    def __call__(self, event: PipelineProgress) -> None:
        self.update(event)

    def update(self, event: PipelineProgress) -> None:
        self.state.events += 1
        self.state.current = event.stage
        self.state.last_message = event.message
        if event.progress >= 100 and event.stage not in self.state.completed:
            self.state.completed.append(event.stage)
        if self._progress is None:
            return
        task_id = self._tasks[event.stage]
        self._progress.start_task(task_id)
        self._progress.update(task_id, completed=event.progress, message=event.message)

    def close(self) -> None:
        if self._progress is not None:
            self._progress.stop()
            self._progress.__exit__(None, None, None)
            self._progress = None
        self._tasks.clear()

    def summary(self) -> dict[str, object]:
        return {
            "completed_stages": [stage.value for stage in self.state.completed],
            "last_stage": self.state.current.value if self.state.current else None,
            "last_message": self.state.last_message,
        }

    def __enter__(self) -> "StageProgressReporter":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = ["StageProgressReporter", "StageProgressState"]
