"""Parallel processing with joblib."""

import logging
import os
from collections.abc import Callable
from typing import Any

from joblib import Parallel, delayed
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

logger = logging.getLogger(__name__)


class ParallelProcessor:
    """Maps a function over work items with joblib, optionally showing progress."""

    def __init__(
        self,
        n_jobs: int = -1,
        backend: str = "threading",
        console: Console | None = None,
    ):
        """
        Initialize parallel processor.

        Args:
            n_jobs: Number of parallel jobs (-1 for all CPUs)
            backend: joblib backend ('threading', 'loky', 'multiprocessing', 'sequential')
            console: Console the progress bar renders to
        """
        self.n_jobs = n_jobs if n_jobs > 0 else (os.cpu_count() or 1)
        self.backend = backend
        self.console = console

    def map(
        self,
        func: Callable,
        items: list[Any],
        description: str = "Processing",
        show_progress: bool = True,
    ) -> list[Any]:
        """
        Map function over items in parallel.

        Results come back in input order.

        Args:
            func: Function to apply
            items: Items to process
            description: Description for progress bar
            show_progress: Whether to show progress bar

        Returns:
            List of results
        """
        logger.debug("Running %d items on %d %s workers", len(items), self.n_jobs, self.backend)

        if not show_progress:
            return Parallel(n_jobs=self.n_jobs, backend=self.backend)(
                delayed(func)(item) for item in items
            )

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=self.console,
        ) as progress:
            task = progress.add_task(f"[cyan]{description}...", total=len(items))

            results = []
            with Parallel(n_jobs=self.n_jobs, backend=self.backend, return_as="generator") as parallel:
                for result in parallel(delayed(func)(item) for item in items):
                    results.append(result)
                    progress.update(task, advance=1)

            return results
