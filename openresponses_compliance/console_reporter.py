"""Console reporter rendering live compliance progress."""

import json
import os
import sys
from typing import Optional, TextIO

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskID, TextColumn
from rich.table import Table
from rich.text import Text

from .models import RunSummary, TestResult, TestStatus
from .output_config import OutputFormat

STATUS_ICONS = {
    TestStatus.PASSED: ("✓", "green"),
    TestStatus.FAILED: ("✗", "red"),
    TestStatus.RUNNING: ("◉", "yellow"),
    TestStatus.PENDING: ("○", "dim"),
}


class ConsoleReporter:
    """
    Progress sink that adapts to the environment.

    Automatically detects:
    - Interactive terminals (rich live table with a progress bar)
    - CI/CD environments and pipes (plain text, one line per finished test)
    - JSON mode (silent; the caller prints the report document)
    """

    def __init__(
        self,
        output_format: OutputFormat = OutputFormat.AUTO,
        verbose: bool = False,
        stream: Optional[TextIO] = None,
    ):
        self.output_format = output_format
        self.verbose = verbose
        self.stream = stream or sys.stdout
        self._detect_environment()

        self.console = Console(file=self.stream) if self.use_rich else None
        self.progress: Optional[Progress] = None
        self.progress_task: Optional[TaskID] = None
        self.live: Optional[Live] = None
        self.results_table: Optional[Table] = None

    def _detect_environment(self) -> None:
        """Decide between rich, plain and silent output."""
        self.silent = self.output_format == OutputFormat.JSON
        if self.output_format == OutputFormat.RICH:
            self.use_rich = True
        elif self.output_format in (OutputFormat.PLAIN, OutputFormat.JSON):
            self.use_rich = False
        else:  # AUTO
            is_terminal = self.stream.isatty()
            is_ci = any(name in os.environ for name in ("CI", "JENKINS_HOME", "GITLAB_CI", "TRAVIS", "GITHUB_ACTIONS"))
            self.use_rich = is_terminal and not is_ci

    def _print(self, message: str = "") -> None:
        print(message, file=self.stream)

    def start_run(self, total_tests: int, base_url: str, model: str, filter_ids: Optional[list[str]] = None) -> None:
        """Initialize the run display."""
        if self.silent:
            return
        if self.use_rich:
            self.console.print(f"Running compliance tests against: [bold]{base_url}[/]")
            self.console.print(f"Model: [bold]{model}[/]")
            if filter_ids:
                self.console.print(f"Filter: {', '.join(filter_ids)}")
            self.results_table = Table(show_header=True, header_style="bold cyan")
            self.results_table.add_column("Test", width=32)
            self.results_table.add_column("Status", width=10)
            self.results_table.add_column("Duration", justify="right", width=10)
            self.results_table.add_column("Events", justify="right", width=8)
            self.progress = Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TextColumn("{task.completed}/{task.total}"),
                console=self.console,
            )
            self.progress_task = self.progress.add_task("[cyan]Running", total=total_tests)
            self.live = Live(
                Group(self.progress, self.results_table),
                console=self.console,
                refresh_per_second=4,
            )
            self.live.start()
        else:
            self._print(f"Running compliance tests against: {base_url}")
            self._print(f"Model: {model}")
            if filter_ids:
                self._print(f"Filter: {', '.join(filter_ids)}")
            self._print()

    def __call__(self, result: TestResult) -> None:
        self.report(result)

    def report(self, result: TestResult) -> None:
        """Render one progress snapshot."""
        if self.silent:
            return
        if result.status == TestStatus.RUNNING:
            if self.use_rich:
                self.progress.update(self.progress_task, description=f"[cyan]{result.name}")
            return
        if not result.status.is_terminal:
            return

        icon, color = STATUS_ICONS[result.status]
        duration = f"{result.duration_ms:.0f}ms" if result.duration_ms is not None else ""
        events = str(result.stream_events) if result.stream_events is not None else ""
        if self.use_rich:
            self.results_table.add_row(
                result.name,
                Text(f"{icon} {result.status.value.upper()}", style=color),
                duration,
                events,
            )
            for error in result.errors or []:
                self.results_table.add_row(Text(f"  {error}", style="red"), "", "", "")
            self.progress.update(self.progress_task, advance=1)
        else:
            suffix = f" ({duration})" if duration else ""
            if events:
                suffix += f" [{events} events]"
            self._print(f"{icon} {result.name}{suffix}")
            for error in result.errors or []:
                self._print(f"  ✗ {error}")
        if self.verbose and result.status == TestStatus.FAILED:
            self._print_exchange(result)

    def _print_exchange(self, result: TestResult) -> None:
        for label, payload in (("Request", result.request), ("Response", result.response)):
            if payload is None:
                continue
            rendered = payload if isinstance(payload, str) else json.dumps(payload, indent=2)
            indented = "\n".join(f"    {line}" for line in rendered.splitlines())
            if self.use_rich:
                self.console.print(f"  [dim]{label}:[/]")
                self.console.print(indented, markup=False, highlight=False)
            else:
                self._print(f"  {label}:")
                self._print(indented)

    def stop(self) -> None:
        """Release the live display; safe to call more than once."""
        if self.live is not None:
            self.live.stop()
            self.live = None

    def finish_run(self, summary: RunSummary, results: list[TestResult]) -> None:
        """Display the final summary."""
        if self.silent:
            return
        failed = [result for result in results if result.status == TestStatus.FAILED]
        self.stop()
        if self.use_rich:
            summary_text = Text()
            summary_text.append(f"Total: {summary.total}  ", style="bold")
            summary_text.append(f"Passed: {summary.passed}  ", style="bold green")
            summary_text.append(f"Failed: {summary.failed}", style="bold red" if summary.failed else "bold green")
            status = "✓ ALL TESTS PASSED" if not failed else "✗ SOME TESTS FAILED"
            self.console.print()
            self.console.print(
                Panel(
                    summary_text,
                    title=Text(status, style="bold green" if not failed else "bold red"),
                    border_style="green" if not failed else "red",
                )
            )
        else:
            self._print("=" * 50)
            self._print(f"Results: {summary.passed} passed, {summary.failed} failed, {summary.total} total")
            if not failed:
                self._print("✓ All tests passed!")
                return
            self._print("Failed tests:")
            for result in failed:
                self._print(f"{result.name}:")
                for error in result.errors or []:
                    self._print(f"  - {error}")

    def print_info(self, message: str) -> None:
        """Print an info message."""
        if self.use_rich:
            self.console.print(f"[cyan]{message}[/]")
        else:
            self._print(message)

