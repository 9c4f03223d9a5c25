"""Console reporting of training progress and model statistics."""

from __future__ import annotations

import time
from collections.abc import Sequence

from loguru import logger
from rich import box
from rich.console import Console
from rich.table import Table
from torch import nn

from detection_training.types import TrainingProgress


class ProgressReporter:
    """Prints one ``Iteration | Loss | Elapsed`` row per reported iteration.

    Args:
        report_interval: Print every N-th iteration (the last one is always
            printed via :meth:`finish`).
        console: Rich console to print to.  Defaults to a new one.
    """

    def __init__(self, report_interval: int = 10, console: Console | None = None) -> None:
        if report_interval < 1:
            raise ValueError(f"report_interval must be positive, got {report_interval}")
        self.report_interval = report_interval
        self.console = console or Console()
        self._start: float | None = None
        self._last_printed: int | None = None

    def start(self, max_iterations: int) -> None:
        self._start = time.perf_counter()
        self._last_printed = None
        self.console.rule(f"Training for {max_iterations} iterations")
        self.console.print(f"{'Iteration':>10} | {'Loss':>12} | {'Elapsed':>10}")

    def report(self, progress: TrainingProgress) -> None:
        if progress.iteration_id % self.report_interval == 0:
            self._print_row(progress)

    def finish(self, history: Sequence[TrainingProgress]) -> None:
        """Print the final row if needed and a summary table."""
        if not history:
            self.console.print("No iterations were run.")
            return
        last = history[-1]
        if self._last_printed != last.iteration_id:
            self._print_row(last)

        table = Table(
            title="Training Summary",
            header_style="bold magenta",
            box=box.SQUARE,
            show_lines=True,
        )
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("Iterations", str(len(history)))
        table.add_row("Final Iteration", str(last.iteration_id))
        table.add_row("Final Smoothed Loss", f"{last.smoothed_loss:.4f}")
        table.add_row("Elapsed", f"{self._elapsed():.1f} s")
        self.console.print(table)

    def _elapsed(self) -> float:
        if self._start is None:
            return 0.0
        return time.perf_counter() - self._start

    def _print_row(self, progress: TrainingProgress) -> None:
        self._last_printed = progress.iteration_id
        self.console.print(
            f"{progress.iteration_id:>10} | {progress.smoothed_loss:>12.4f} | "
            f"{self._elapsed():>9.1f}s"
        )


def print_model_info(network: nn.Module, console: Console | None = None) -> None:
    """Display parameter counts and size of ``network`` as a rich table."""
    total_params = sum(p.numel() for p in network.parameters())
    trainable_params = sum(p.numel() for p in network.parameters() if p.requires_grad)
    size_bytes = sum(p.numel() * p.element_size() for p in network.parameters()) + sum(
        b.numel() * b.element_size() for b in network.buffers()
    )
    model_size_mb = size_bytes / (1024 * 1024)

    table = Table(
        title="Model Information",
        header_style="bold magenta",
        box=box.SQUARE,
        show_lines=True,
    )
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Model Class", type(network).__name__)
    table.add_row("Total Parameters", f"{total_params / 1e6:.2f} M")
    table.add_row("Trainable Parameters", f"{trainable_params / 1e6:.2f} M")
    table.add_row("Model Size", f"{model_size_mb:.2f} MB")
    (console or Console()).print(table)

    logger.info(
        f"Model: {type(network).__name__} | "
        f"Params: {total_params:,} ({trainable_params:,} trainable) | "
        f"Size: {model_size_mb:.2f} MB"
    )
