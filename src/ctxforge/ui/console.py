"""Rich-powered console output for ctxforge."""

from __future__ import annotations

from rich.console import Console as RichConsole
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from ctxforge import __version__
from ctxforge.context.models import Composition, ScoredCandidate
from ctxforge.graph.models import GraphPath, GraphView
from ctxforge.models import Suggestion
from ctxforge.predict.models import PredictionResult, UsagePatterns

_SOURCE_STYLES = {
    "time": "magenta",
    "activity": "green",
    "sequential": "yellow",
    "frequency": "blue",
    "similarity": "cyan",
}


class Console:
    """Terminal output for ctxforge using Rich."""

    def __init__(self) -> None:
        self.console = RichConsole()

    def banner(self) -> None:
        self.console.print(
            Panel(
                f"[bold cyan]ctxforge[/bold cyan] [dim]v{__version__}[/dim]\n"
                "[dim]Relevant context, composed within budget[/dim]",
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

    def markdown(self, text: str) -> None:
        self.console.print(Markdown(text))

    def show_stats(self, stats: dict) -> None:
        """Display workspace counts in a table."""
        table = Table(title="Workspace Statistics", border_style="cyan")
        table.add_column("Metric", style="bold")
        table.add_column("Count", justify="right", style="cyan")

        table.add_row("Active fragments", str(stats.get("fragments", 0)))
        table.add_row("Inactive fragments", str(stats.get("inactive", 0)))
        table.add_row("Embedded", str(stats.get("embedded", 0)))
        table.add_row("Relationships", str(stats.get("relationships", 0)))
        table.add_row("Usage events", str(stats.get("events", 0)))

        self.console.print(table)

    def show_composition(self, composition: Composition, show_text: bool = False) -> None:
        if composition.is_empty:
            self.warning(composition.reason or "Nothing selected")
            return

        pct = composition.budget_used_pct
        color = "green" if pct <= 100 else "yellow"
        self.console.print(
            Panel(
                f"[bold]Goal:[/bold] {composition.goal_text or composition.source_fragment_id}\n"
                f"[bold]Tokens:[/bold] [{color}]{composition.total_tokens:,} / "
                f"{composition.token_budget:,} ({pct:.0f}%)[/{color}]\n"
                f"[bold]Quality:[/bold] {composition.quality_score:.2f}\n"
                f"[bold]Strategy:[/bold] {composition.strategy}",
                title="[bold]Composition[/bold]",
                border_style="cyan",
            )
        )

        self.show_candidates(composition.candidates, title="Selected fragments")

        for dep in composition.dependencies:
            marker = "[green]included[/green]" if dep.satisfied else "[yellow]not selected[/yellow]"
            self.console.print(
                f"  [dim]requires[/dim] [bold]{dep.target_name or dep.target_id}[/bold] "
                f"[dim]({dep.type.value})[/dim] {marker}"
            )
        for conflict in composition.conflicts:
            reason = f": {conflict.reason}" if conflict.reason else ""
            self.console.print(
                f"  [red]conflict[/red] {conflict.source_id} <-> {conflict.target_id}{reason}"
            )
        for note in composition.notes:
            self.console.print(f"  [dim]- {note}[/dim]")

        if show_text and composition.composed_text:
            self.console.print()
            self.markdown(composition.composed_text)

    def show_candidates(self, candidates: list[ScoredCandidate], title: str = "Candidates") -> None:
        table = Table(title=title, border_style="cyan")
        table.add_column("Fragment", style="bold")
        table.add_column("Type", style="dim")
        table.add_column("Score", justify="right", style="cyan")
        table.add_column("Sim", justify="right")
        table.add_column("Tokens", justify="right")
        table.add_column("Why")
        for cand in candidates:
            table.add_row(
                cand.name or cand.fragment_id,
                cand.type.value,
                f"{cand.composite_score:.2f}",
                f"{cand.similarity:.2f}",
                str(cand.token_count),
                cand.reason,
            )
        self.console.print(table)

    def show_graph(self, view: GraphView) -> None:
        if view.is_empty:
            self.warning(view.reason or "No graph")
            return

        meta = view.metadata
        self.info(
            f"{meta.get('total_nodes', len(view.nodes))} nodes, "
            f"{meta.get('total_edges', len(view.edges))} edges, "
            f"{meta.get('total_clusters', len(view.clusters))} clusters "
            f"[dim]({meta.get('generation_time_ms', 0)}ms)[/dim]"
        )

        labels = {n.id: n.label for n in view.nodes}
        tree = Tree("[bold cyan]Clusters[/bold cyan]")
        for cluster in view.clusters:
            branch = tree.add(f"[bold]{cluster.id}[/bold] [dim]({cluster.size} fragments)[/dim]")
            for node_id in cluster.nodes:
                branch.add(labels.get(node_id, node_id))
        self.console.print(tree)

        if view.edges:
            table = Table(title="Strongest edges", border_style="cyan")
            table.add_column("Source", style="bold")
            table.add_column("Target", style="bold")
            table.add_column("Similarity", justify="right", style="cyan")
            table.add_column("Strength", style="dim")
            for edge in view.edges[:20]:
                table.add_row(
                    labels.get(edge.source, edge.source),
                    labels.get(edge.target, edge.target),
                    f"{edge.weight:.2f}",
                    edge.strength,
                )
            self.console.print(table)

    def show_paths(self, paths: list[GraphPath], source: str, target: str) -> None:
        if not paths:
            self.warning(f"No path between '{source}' and '{target}'")
            return
        for i, path in enumerate(paths, 1):
            chain = " [dim]->[/dim] ".join(f"[bold]{s.name}[/bold]" for s in path.steps)
            self.console.print(
                f"  {i}. {chain} [dim]({path.length} hops, weakest {path.weakest_similarity:.2f})[/dim]"
            )

    def show_suggestions(self, suggestions: list[Suggestion]) -> None:
        if not suggestions:
            self.warning("No suggestions")
            return
        table = Table(border_style="cyan")
        table.add_column("Fragment", style="bold")
        table.add_column("Source")
        table.add_column("Confidence", justify="right", style="cyan")
        table.add_column("Reason")
        for s in suggestions:
            style = _SOURCE_STYLES.get(s.source.value, "white")
            table.add_row(
                s.name or s.fragment_id,
                f"[{style}]{s.source.value}[/{style}]",
                f"{s.confidence:.0%}",
                s.reason,
            )
        self.console.print(table)

    def show_predictions(self, result: PredictionResult) -> None:
        self.show_suggestions(result.predictions)
        fired = ", ".join(f"{k}={v}" for k, v in result.sources.items() if v)
        if fired:
            self.console.print(f"  [dim]sources: {fired}[/dim]")
        for name in result.omitted:
            self.warning(f"Strategy '{name}' was skipped (failed or timed out)")

    def show_patterns(self, patterns: UsagePatterns) -> None:
        table = Table(
            title=f"Usage by {patterns.group_by} (last {patterns.days_back} days)",
            border_style="cyan",
        )
        table.add_column(patterns.group_by, style="bold")
        table.add_column("Uses", justify="right", style="cyan")
        table.add_column("Fragments", justify="right")
        table.add_column("Success", justify="right")
        table.add_column("Avg duration", justify="right", style="dim")
        for bucket in patterns.buckets:
            table.add_row(
                bucket.label,
                str(bucket.usage_count),
                str(bucket.unique_fragments),
                f"{bucket.success_rate:.0%}",
                f"{bucket.avg_duration_s:.1f}s" if bucket.avg_duration_s is not None else "-",
            )
        self.console.print(table)

        if patterns.top_fragments:
            self.console.print("\n[bold]Top fragments:[/bold]")
            for top in patterns.top_fragments:
                self.console.print(
                    f"  [cyan]{top.name}[/cyan] {top.usage_count} uses, {top.success_rate:.0%} success"
                )
        if patterns.successful_combinations:
            self.console.print("\n[bold]Successful combinations:[/bold]")
            for combo in patterns.successful_combinations:
                self.console.print(
                    f"  {' + '.join(combo.fragment_ids)} [dim]x{combo.frequency}[/dim]"
                )
