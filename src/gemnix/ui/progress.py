"""rich progress display for the slow parts of a conversion."""

import sys
from contextlib import contextmanager
from typing import Iterator, Optional, Tuple

from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    ProgressColumn,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)

DESCRIPTION = "[progress.description]{task.description}"


class ProgressManager:
    """
    draws spinners and bars on a shared console, or nothing at all.

    by default progress is only drawn when stdout is a terminal, so piped
    output and CI logs stay clean. `enabled` forces it either way; the CLI
    passes False for --quiet.
    """

    def __init__(self, console: Optional[Console] = None, enabled: Optional[bool] = None):
        self.console = console or Console()
        self._enabled = self._is_interactive() if enabled is None else enabled

    @property
    def enabled(self) -> bool:
        return self._enabled

    @staticmethod
    def _is_interactive() -> bool:
        return not sys.stdout.closed and sys.stdout.isatty()

    def print(self, *args, **kwargs):
        self.console.print(*args, **kwargs)

    def _bar(self, *columns: ProgressColumn) -> Progress:
        return Progress(*columns, console=self.console, transient=True)

    @contextmanager
    def spinner(self, description: str) -> Iterator[Optional[TaskID]]:
        """spinner without a total, e.g. while bundler evaluates the Gemfile."""
        if not self._enabled:
            yield None
            return
        with self._bar(SpinnerColumn(), TextColumn(DESCRIPTION)) as progress:
            yield progress.add_task(description, total=None)

    @contextmanager
    def task_progress(self, description: str, total: int) -> Iterator[Tuple[object, Optional[TaskID]]]:
        """
        bar advanced once per finished unit of work.

        yields:
            (progress, task_id); task_id is None when nothing is drawn, and
            progress then accepts the same calls without effect
        """
        if not self._enabled or total <= 0:
            yield _DummyProgress(), None
            return
        bar = self._bar(
            SpinnerColumn(),
            TextColumn(DESCRIPTION),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
        )
        with bar as progress:
            yield progress, progress.add_task(description, total=total)


class _DummyProgress:
    """accepts what the assembler calls on a rich Progress, and ignores it."""

    def add_task(self, description: str, total: Optional[int] = None, **kwargs) -> TaskID:
        return TaskID(0)

    def update(self, task_id: TaskID, **kwargs):
        pass

    def advance(self, task_id: TaskID, advance: float = 1):
        pass
