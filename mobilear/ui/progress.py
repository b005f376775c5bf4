"""
Progress display for long-running operations.

Provides visual feedback while compositing environments and tracking
recorded sequences.
"""

import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional

from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table


@dataclass
class StageProgress:
    """Progress information for a single stage."""
    name: str
    current: int
    total: int
    started_at: float


class ProgressDisplay:
    """
    Display progress information in the terminal.
    """

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TimeElapsedColumn(),
            console=self.console
        )
        self.current_stage: Optional[StageProgress] = None
        self.task_id = None

    def start_stage(self, name: str, total: int = 1):
        """
        Start a new stage, finishing the current one.

        Args:
            name: Stage name
            total: Total steps in stage
        """
        if self.current_stage is not None:
            self.finish_stage()

        self.current_stage = StageProgress(name=name, current=0, total=total, started_at=time.time())
        self.task_id = self.progress.add_task(name, total=total)
        self.progress.start()

    def advance(self, amount: int = 1, message: Optional[str] = None):
        """
        Advance progress by amount.

        Args:
            amount: Steps to advance
            message: Optional status message
        """
        if self.current_stage is None:
            return
        stage = self.current_stage
        stage.current = min(stage.current + amount, stage.total)
        self.progress.update(self.task_id, completed=stage.current, description=message or stage.name)

    def finish_stage(self, success: bool = True):
        """
        Finish the current stage.

        Args:
            success: Whether the stage completed successfully
        """
        if self.current_stage is None:
            return

        stage = self.current_stage
        self.progress.update(self.task_id, completed=stage.total)
        self.progress.stop()
        elapsed = time.time() - stage.started_at
        status = "completed" if success else "FAILED"
        self.console.print(
            f"  {stage.name} [{status}] in {elapsed:.1f}s",
            style="green" if success else "red"
        )
        self.current_stage = None

    def print_metrics(self, metrics: Dict[str, object], title: str = "Metrics"):
        """
        Print metrics as a table.

        Args:
            metrics: Dictionary of metric names to values
            title: Table title
        """
        table = Table(title=title)
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="green")
        for name, value in metrics.items():
            table.add_row(name, f"{value:.6f}" if isinstance(value, float) else str(value))
        self.console.print(table)

    def print_table(self, title: str, columns: Iterable[str], rows: Iterable[Iterable[object]]):
        """Print rows under the given column headers."""
        table = Table(title=title)
        for column in columns:
            table.add_column(column)
        for row in rows:
            table.add_row(*[f"{v:.4f}" if isinstance(v, float) else str(v) for v in row])
        self.console.print(table)


def create_composite_callback(display: ProgressDisplay) -> Callable[[str], None]:
    """
    Adapt a display to the stage callback of EnvironmentBuilder.composite.

    Each notification finishes the previous stage and starts the next.
    Call display.finish_stage() once compositing returns.
    """
    def callback(stage: str):
        display.start_stage(stage)

    return callback
