"""
Terminal Display
================
Banner, once-per-second live progress and the final summary, rendered with rich.
"""

from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, BarColumn, TextColumn, TimeRemainingColumn

from flux_config import RunConfig
from flux_metrics import LiveSnapshot, Summary

console = Console()


class TerminalUI:
    """Owns all formatting; reads LiveSnapshot and Summary values only."""

    def __init__(self, duration_secs: int, output: Optional[Console] = None):
        self.duration_secs = duration_secs
        self.console = output or console
        self._progress: Optional[Progress] = None
        self._task_id = None

    def display_banner(self, config: RunConfig):
        lines = []
        if config.target:
            lines.append(f"[yellow]{'Target':<14}[/yellow]: {config.target}")
        lines.append(f"[yellow]{'Concurrency':<14}[/yellow]: {config.concurrency} workers")
        lines.append(f"[yellow]{'Duration':<14}[/yellow]: {self.duration_secs}s")
        lines.append(f"[yellow]{'Mode':<14}[/yellow]: {config.mode.value.upper()}")
        if config.scenarios:
            chain = " → ".join(s.name for s in config.scenarios)
            lines.append(f"[yellow]{'Scenarios':<14}[/yellow]: {chain}")

        self.console.print(Panel(
            "\n".join(lines),
            title="⚡ Flux Load Test Started",
            border_style="bright_cyan",
        ))

    def start_progress(self):
        self._progress = Progress(
            SpinnerColumn(),
            BarColumn(bar_width=40),
            TextColumn("{task.completed:.0f}/{task.total:.0f}s"),
            TimeRemainingColumn(),
            TextColumn("{task.description}"),
            console=self.console,
        )
        self._progress.start()
        self._task_id = self._progress.add_task("Starting...", total=self.duration_secs)

    def update_progress(self, elapsed_secs: int, snapshot: LiveSnapshot):
        if self._progress is None:
            return
        message = (
            f"RPS: {snapshot.current_rps:.0f} | "
            f"Avg Latency: {snapshot.avg_latency_ms:.0f}ms | "
            f"Errors: {snapshot.error_count} ({snapshot.error_percent:.1f}%)"
        )
        self._progress.update(
            self._task_id,
            completed=min(elapsed_secs, self.duration_secs),
            description=message,
        )

    def finish_progress(self):
        if self._progress is None:
            return
        self._progress.update(self._task_id, description="Test completed")
        self._progress.stop()
        self._progress = None

    def display_summary(self, summary: Summary):
        s = summary
        failed_style = "red" if s.failed_requests > 0 else "green"
        error_style = "red" if s.error_rate > 5 else "green"

        self.console.print(Panel(
            f"""[bold green]Request Statistics:[/bold green]
  [white]{'Total Requests':<20}[/white]: [cyan]{s.total_requests:,}[/cyan]
  [white]{'Successful':<20}[/white]: [green]{s.successful_requests:,}[/green]
  [white]{'Failed':<20}[/white]: [{failed_style}]{s.failed_requests:,}[/{failed_style}]

[bold green]Performance Metrics:[/bold green]
  [white]{'Throughput':<20}[/white]: {s.throughput_rps:.2f} req/s
  [white]{'Error Rate':<20}[/white]: [{error_style}]{s.error_rate:.2f}%[/{error_style}]
  [white]{'Total Duration':<20}[/white]: {s.total_duration_secs:.2f}s

[bold green]Latency Percentiles:[/bold green]
  [white]{'Min':<20}[/white]: {s.min_latency_ms}ms
  [white]{'P50 (Median)':<20}[/white]: {s.p50_latency_ms}ms
  [white]{'P90':<20}[/white]: {s.p90_latency_ms}ms
  [white]{'P95':<20}[/white]: {s.p95_latency_ms}ms
  [white]{'P99':<20}[/white]: {s.p99_latency_ms}ms
  [white]{'Max':<20}[/white]: {s.max_latency_ms}ms
  [white]{'Mean':<20}[/white]: {s.mean_latency_ms:.2f}ms""",
            title="📊 Final Summary",
            border_style="green" if s.error_rate <= 5 else "red",
        ))

    def display_error(self, message: str):
        self.console.print(f"[bold red]❌ Error:[/bold red] {message}")

    def display_success(self, message: str):
        self.console.print(f"[green]✅ {message}[/green]")
