"""Rich-powered console output for SpecGraph."""

from __future__ import annotations

from rich.console import Console as RichConsole
from rich.panel import Panel
from rich.status import Status
from rich.table import Table
from rich.tree import Tree

from specgraph import __version__
from specgraph.models import DetailedSpecMatch, PersistResult, TestVerdict, VerdictStatus

_STATUS_STYLE = {
    VerdictStatus.BROKEN: "red",
    VerdictStatus.RISK: "yellow",
    VerdictStatus.OK: "green",
}


class Console:
    """Terminal output for SpecGraph using Rich."""

    def __init__(self, console: RichConsole | None = None) -> None:
        self.console = console or RichConsole()

    def banner(self) -> None:
        self.console.print(
            Panel(
                f"[bold cyan]SpecGraph[/bold cyan] [dim]v{__version__}[/dim]\n"
                "[dim]Which E2E specs does this diff touch?[/dim]",
                border_style="cyan",
                padding=(1, 2),
            )
        )

    def success(self, message: str) -> None:
        self.console.print(f"[green]✓[/green] {message}")

    def error(self, message: str) -> None:
        self.console.print(f"[red]✗[/red] {message}")

    def warning(self, message: str) -> None:
        self.console.print(f"[yellow]![/yellow] {message}")

    def info(self, message: str) -> None:
        self.console.print(f"[blue]i[/blue] {message}")

    def status(self, message: str) -> Status:
        """Spinner shown while awaiting an external service."""
        return self.console.status(message, spinner="dots")

    def show_matches(self, matches: list[DetailedSpecMatch]) -> None:
        """One table per changed chunk with its fused spec ranking."""
        if not matches:
            self.info("No matches (no code chunks or no specs)")
            return

        for match in matches:
            table = Table(title=f"[bold]{match.chunk.filename}[/bold]", border_style="cyan")
            table.add_column("#", justify="right", style="dim")
            table.add_column("Test", style="bold")
            table.add_column("Spec file", style="cyan")
            table.add_column("Cosine", justify="right")
            table.add_column("BM25", justify="right")
            table.add_column("RRF", justify="right", style="green")

            for spec in match.relevant_specs:
                table.add_row(
                    str(spec.rank),
                    spec.chunk.test_name,
                    spec.chunk.filename,
                    f"{spec.cosine_score:.3f}",
                    f"{spec.bm25_score:.3f}",
                    f"{spec.rrf_score:.4f}",
                )
            if match.chunk.summary:
                table.caption = match.chunk.summary
            self.console.print(table)

    def show_verdicts(self, verdicts: list[TestVerdict]) -> None:
        """Verdicts grouped by status as a tree."""
        tree = Tree(f"[bold]{len(verdicts)} verdict(s)[/bold]")
        for status in VerdictStatus:
            group = [v for v in verdicts if v.status == status]
            if not group:
                continue
            style = _STATUS_STYLE[status]
            branch = tree.add(f"[{style}]{status.value}[/{style}] ({len(group)})")
            for v in group:
                location = f" [cyan]{v.file}:{v.line}[/cyan]" if v.file else ""
                reason = f" [dim]{v.reason}[/dim]" if v.reason else ""
                branch.add(f"[bold]{v.test}[/bold]{location}{reason}")
        self.console.print(tree)

    def show_persist_result(self, result: PersistResult) -> None:
        self.success(f"Run persisted: {result.run_id}")
        self.console.print(f"  [dim]prediction[/dim] {result.prediction_id}")

    def show_stats(self, stats: dict) -> None:
        """Display graph statistics in a table."""
        table = Table(title="Analysis Graph", border_style="cyan")
        table.add_column("Metric", style="bold")
        table.add_column("Count", justify="right", style="cyan")

        table.add_row("Total Nodes", str(stats.get("total_nodes", 0)))
        table.add_row("Total Edges", str(stats.get("total_edges", 0)))

        node_types = stats.get("node_types", {})
        if node_types:
            table.add_section()
            for label, count in sorted(node_types.items(), key=lambda x: -x[1]):
                table.add_row(f"  {label}", str(count))

        edge_types = stats.get("edge_types", {})
        if edge_types:
            table.add_section()
            for kind, count in sorted(edge_types.items(), key=lambda x: -x[1]):
                table.add_row(f"  {kind} edges", str(count))

        self.console.print(table)
