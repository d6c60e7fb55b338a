"""Terminal rendering of sync progress for ``curatorsync sync``."""

from __future__ import annotations

from types import TracebackType

from rich.console import Console
from rich.markup import escape
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TaskID, TextColumn

from curatorsync.sync.progress import SyncPhase, SyncProgress

_PHASE_STYLE = {
    SyncPhase.CURATORS: "cyan",
    SyncPhase.RESTAURANTS: "green",
    SyncPhase.EXPORT: "magenta",
}


class RichSyncProgress(SyncProgress):
    """One Rich bar per sync phase, with a running count of records that failed.

    The live display only runs inside the ``with`` block::

        with RichSyncProgress() as progress:
            context.engine.progress = progress
            await context.scheduler.perform_manual_sync()
    """

    def __init__(self, console: Console | None = None) -> None:
        self._progress = Progress(
            SpinnerColumn(finished_text="[green]done[/]"),
            TextColumn("{task.description:>12}"),
            BarColumn(bar_width=30),
            MofNCompleteColumn(),
            TextColumn("{task.fields[status]}"),
            console=console or Console(stderr=True),
        )
        self._tasks: dict[SyncPhase, TaskID] = {}
        self._failures: dict[SyncPhase, int] = {}

    def __enter__(self) -> RichSyncProgress:
        self._progress.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self._progress.stop()

    @property
    def failures(self) -> dict[SyncPhase, int]:
        return dict(self._failures)

    def phase_started(self, phase: SyncPhase, total: int | None = None) -> None:
        self._failures[phase] = 0
        self._tasks[phase] = self._progress.add_task(self._describe(phase), total=total, status="")

    def record_processed(self, phase: SyncPhase, *, failed: bool = False) -> None:
        task = self._tasks.get(phase)
        if task is None:
            return
        if failed:
            self._failures[phase] += 1
            self._progress.update(task, status=f"[yellow]{self._failures[phase]} failed[/]")
        self._progress.advance(task)

    def phase_finished(self, phase: SyncPhase) -> None:
        task = self._tasks.get(phase)
        if task is None:
            return
        total = self._progress.tasks[task].total
        if total is None:
            self._progress.update(task, total=1, completed=1)
        else:
            self._progress.update(task, completed=total)

    def phase_failed(self, phase: SyncPhase, error: BaseException) -> None:
        task = self._tasks.get(phase)
        if task is None:
            task = self._tasks[phase] = self._progress.add_task(self._describe(phase), total=1, status="")
        self._progress.update(task, status=f"[red]aborted: {escape(str(error))}[/]")
        self._progress.stop_task(task)

    @staticmethod
    def _describe(phase: SyncPhase) -> str:
        return f"[{_PHASE_STYLE[phase]}]{phase.label}[/]"
