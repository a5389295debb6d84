"""Command-line interface for ctxforge."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
import uuid
from pathlib import Path

import click
from rich.logging import RichHandler

from ctxforge import __version__
from ctxforge.config import (
    WORKSPACE_DB_FILE,
    ProjectConfig,
    find_project_root,
    get_ctxforge_dir,
    load_config,
    save_config,
    set_config_value,
)
from ctxforge.exceptions import CtxForgeError
from ctxforge.models import Fragment, FragmentType, RelationshipEdge, RelationType, UsageEvent
from ctxforge.ui.console import Console

console = Console()


def _get_project_root(path: str | None = None) -> Path:
    """Find the project root or error."""
    if path:
        root = Path(path).resolve()
        if not root.exists():
            console.error(f"Path does not exist: {path}")
            sys.exit(1)
        return root

    root = find_project_root()
    if root is None:
        console.error(
            "No ctxforge workspace found. Run 'ctxforge init' first, "
            "or specify a path with --path."
        )
        sys.exit(1)
    return root


def _load_config(root: Path) -> ProjectConfig:
    try:
        return load_config(root)
    except CtxForgeError as e:
        console.error(str(e))
        sys.exit(1)


def _open_store(root: Path):
    from ctxforge.store import WorkspaceStore

    db_path = get_ctxforge_dir(root) / WORKSPACE_DB_FILE
    if not db_path.exists():
        console.error("No workspace database found. Run 'ctxforge init' first.")
        sys.exit(1)
    return WorkspaceStore(db_path)


def _embedder(config: ProjectConfig):
    from ctxforge.providers.local import HashingEmbeddingProvider

    return HashingEmbeddingProvider(config.embedding.dimensions)


def _engine(config: ProjectConfig, store):
    from ctxforge.engine import ContextEngine

    return ContextEngine(
        fragments=store,
        relationships=store,
        events=store,
        similarity=store,
        embedder=_embedder(config),
        config=config,
    )


def _run(coro):
    """Run an engine coroutine, turning engine errors into a clean exit."""
    try:
        return asyncio.run(coro)
    except CtxForgeError as e:
        console.error(str(e))
        sys.exit(1)


def _resolve(store, owner_id: str, ref: str) -> Fragment:
    try:
        fragment = store.resolve_ref(owner_id, ref)
    except CtxForgeError as e:
        console.error(str(e))
        sys.exit(1)
    if fragment is None:
        console.error(f"Fragment not found: {ref}")
        sys.exit(1)
    return fragment


@click.group()
@click.version_option(version=__version__, prog_name="ctxforge")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def main(verbose: bool):
    """ctxforge - relevance-ranked, budget-aware context composition."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(name)s: %(message)s",
            handlers=[RichHandler(console=console.console, show_path=False)],
        )


@main.command()
@click.option("--path", "-p", default=None, help="Path to the workspace root.")
@click.option("--owner", default=None, help="Owner id for fragments created here.")
def init(path: str | None, owner: str | None):
    """Initialize a ctxforge workspace in a directory."""
    from ctxforge.store import WorkspaceStore

    root = Path(path or ".").resolve()
    if not root.exists():
        console.error(f"Path does not exist: {root}")
        sys.exit(1)

    console.banner()
    console.info(f"Initializing ctxforge workspace in: {root}")

    config = _load_config(root)
    config.name = root.name
    if owner:
        config.owner_id = owner
    save_config(root, config)
    console.success("Configuration saved")

    store = WorkspaceStore(get_ctxforge_dir(root) / WORKSPACE_DB_FILE)
    try:
        store.stats(config.owner_id)
    except CtxForgeError as e:
        console.error(str(e))
        sys.exit(1)
    finally:
        store.close()
    console.success(f"Workspace ready for owner '{config.owner_id}'")


@main.command()
@click.argument("name")
@click.option("--path", "-p", default=None, help="Path to the workspace root.")
@click.option("--text", "-t", default=None, help="Fragment text.")
@click.option("--file", "-f", "file_path", default=None, type=click.Path(exists=True, dir_okay=False),
              help="Read fragment text from a file.")
@click.option("--type", "fragment_type", type=click.Choice([t.value for t in FragmentType]),
              default="adhoc", help="Fragment type (default: adhoc).")
@click.option("--tag", "tags", multiple=True, help="Tag (can specify multiple).")
@click.option("--priority", default=0, type=click.IntRange(0, 10), help="Priority 0-10.")
@click.option("--description", "-d", default="", help="Short description.")
@click.option("--id", "fragment_id", default=None, help="Explicit fragment id.")
def add(
    name: str, path: str | None, text: str | None, file_path: str | None,
    fragment_type: str, tags: tuple[str, ...], priority: int, description: str,
    fragment_id: str | None,
):
    """Add a fragment to the workspace and embed it."""
    if file_path:
        text = Path(file_path).read_text()
    if not text:
        console.error("Provide fragment text with --text or --file")
        sys.exit(1)

    root = _get_project_root(path)
    config = _load_config(root)
    store = _open_store(root)

    fragment = Fragment(
        id=fragment_id or uuid.uuid4().hex[:12],
        owner_id=config.owner_id,
        name=name,
        description=description,
        type=FragmentType(fragment_type),
        text=text,
        tags=list(tags),
        priority=priority,
    )
    # Embed name, description and text together so short names still carry signal
    vector = _embedder(config).embed_sync(f"{name}\n{description}\n{text}")
    try:
        store.add_fragment(fragment, vector)
    except CtxForgeError as e:
        console.error(str(e))
        sys.exit(1)
    finally:
        store.close()
    console.success(f"Added '{name}' ({fragment.id}, ~{fragment.tokens} tokens)")


@main.command()
@click.argument("source")
@click.argument("target")
@click.option("--path", "-p", default=None, help="Path to the workspace root.")
@click.option("--type", "relation", type=click.Choice([t.value for t in RelationType]),
              default="depends_on", help="Relationship type (default: depends_on).")
@click.option("--reason", default="", help="Why the relationship exists.")
def link(source: str, target: str, path: str | None, relation: str, reason: str):
    """Record a typed relationship between two fragments."""
    root = _get_project_root(path)
    config = _load_config(root)
    store = _open_store(root)
    try:
        src = _resolve(store, config.owner_id, source)
        dst = _resolve(store, config.owner_id, target)
        if src.id == dst.id:
            console.error("A fragment cannot be linked to itself")
            sys.exit(1)

        store.add_relationship(
            RelationshipEdge(
                source_id=src.id,
                target_id=dst.id,
                type=RelationType(relation),
                metadata={"reason": reason} if reason else {},
            )
        )
    finally:
        store.close()
    console.success(f"{src.label} --{relation}--> {dst.label}")


@main.command()
@click.argument("fragments", nargs=-1, required=True)
@click.option("--path", "-p", default=None, help="Path to the workspace root.")
@click.option("--activity", "-a", default="general", help="What the fragments were used for.")
@click.option("--failed", is_flag=True, help="Mark the usage as unsuccessful.")
@click.option("--duration", default=None, type=float, help="Session duration in seconds.")
def track(fragments: tuple[str, ...], path: str | None, activity: str, failed: bool,
          duration: float | None):
    """Record that fragments were used together."""
    root = _get_project_root(path)
    config = _load_config(root)
    store = _open_store(root)
    try:
        resolved = [_resolve(store, config.owner_id, ref) for ref in fragments]
        ids = [f.id for f in resolved]
        for fragment in resolved:
            event = UsageEvent(
                user_id=config.owner_id,
                fragment_id=fragment.id,
                activity_type=activity,
                success=not failed,
                duration_s=duration,
                related_fragment_ids=[fid for fid in ids if fid != fragment.id],
            )
            _run(store.append(event))
    finally:
        store.close()
    console.success(f"Tracked {len(resolved)} fragment use(s) for '{activity}'")


@main.command()
@click.option("--path", "-p", default=None, help="Path to the workspace root.")
def status(path: str | None):
    """Show workspace statistics."""
    root = _get_project_root(path)
    config = _load_config(root)
    store = _open_store(root)
    try:
        console.banner()
        console.info(f"Workspace: {config.name or root.name} (owner '{config.owner_id}')")
        console.show_stats(store.stats(config.owner_id))
    finally:
        store.close()


# =========================================================================
# Composition
# =========================================================================

@main.command()
@click.argument("goal", required=False)
@click.option("--from", "source", default=None, help="Compose around an existing fragment.")
@click.option("--path", "-p", default=None, help="Path to the workspace root.")
@click.option("--budget", "-b", default=None, type=int, help="Token budget.")
@click.option("--max-items", "-n", default=None, type=int, help="Maximum fragments.")
@click.option("--min-similarity", "-s", default=None, type=float, help="Similarity floor.")
@click.option("--text", "show_text", is_flag=True, help="Print the composed text.")
@click.option("--json", "as_json", is_flag=True, help="Output JSON.")
def compose(
    goal: str | None, source: str | None, path: str | None, budget: int | None,
    max_items: int | None, min_similarity: float | None, show_text: bool, as_json: bool,
):
    """Select the most relevant fragments for a goal within a token budget."""
    root = _get_project_root(path)
    config = _load_config(root)
    store = _open_store(root)
    try:
        source_id = _resolve(store, config.owner_id, source).id if source else None
        composition = _run(
            _engine(config, store).score_and_select(
                config.owner_id,
                goal_text=goal,
                source_fragment_id=source_id,
                token_budget=budget,
                max_items=max_items,
                min_similarity=min_similarity,
            )
        )
    finally:
        store.close()

    if as_json:
        click.echo(composition.model_dump_json(indent=2))
    else:
        console.show_composition(composition, show_text=show_text)


@main.command()
@click.argument("prompt")
@click.option("--path", "-p", default=None, help="Path to the workspace root.")
@click.option("--limit", "-n", default=5, type=int, help="Number of recommendations.")
@click.option("--min-similarity", "-s", default=0.5, type=float, help="Similarity floor.")
def recommend(prompt: str, path: str | None, limit: int, min_similarity: float):
    """Rank fragments for a prompt without a token budget."""
    root = _get_project_root(path)
    config = _load_config(root)
    store = _open_store(root)
    try:
        candidates = _run(
            _engine(config, store).recommend(
                config.owner_id, prompt, limit=limit, min_similarity=min_similarity
            )
        )
    finally:
        store.close()

    if candidates:
        console.show_candidates(candidates, title="Recommendations")
    else:
        console.warning(f"No fragments match '{prompt}'")


# =========================================================================
# Graph
# =========================================================================

@main.command()
@click.option("--path", "-p", default=None, help="Path to the workspace root.")
@click.option("--min-similarity", "-s", default=None, type=float, help="Edge similarity floor.")
@click.option("--max-edges", "-e", default=None, type=int, help="Max edges per fragment.")
@click.option("--json", "as_json", is_flag=True, help="Output JSON.")
def graph(path: str | None, min_similarity: float | None, max_edges: int | None, as_json: bool):
    """Build the similarity graph over all active fragments."""
    root = _get_project_root(path)
    config = _load_config(root)
    store = _open_store(root)
    try:
        view = _run(
            _engine(config, store).build_graph(
                config.owner_id, min_similarity=min_similarity, max_edges_per_node=max_edges
            )
        )
    finally:
        store.close()

    if as_json:
        click.echo(view.model_dump_json(indent=2))
    else:
        console.show_graph(view)


@main.command()
@click.argument("source")
@click.argument("target")
@click.option("--path", "-p", default=None, help="Path to the workspace root.")
@click.option("--max-depth", "-d", default=None, type=int, help="Maximum hops.")
@click.option("--min-similarity", "-s", default=None, type=float, help="Edge similarity floor.")
def paths(source: str, target: str, path: str | None, max_depth: int | None,
          min_similarity: float | None):
    """Find chains of similar fragments between two fragments."""
    root = _get_project_root(path)
    config = _load_config(root)
    store = _open_store(root)
    try:
        src = _resolve(store, config.owner_id, source)
        dst = _resolve(store, config.owner_id, target)
        found = _run(
            _engine(config, store).find_paths(
                config.owner_id, src.id, dst.id, max_depth=max_depth, min_similarity=min_similarity
            )
        )
    finally:
        store.close()
    console.show_paths(found, src.label, dst.label)


@main.command()
@click.argument("fragment")
@click.option("--path", "-p", default=None, help="Path to the workspace root.")
@click.option("--limit", "-n", default=None, type=int, help="Number of neighbours.")
@click.option("--min-similarity", "-s", default=None, type=float, help="Similarity floor.")
def neighbors(fragment: str, path: str | None, limit: int | None, min_similarity: float | None):
    """Show the fragments most similar to one fragment."""
    root = _get_project_root(path)
    config = _load_config(root)
    store = _open_store(root)
    try:
        target = _resolve(store, config.owner_id, fragment)
        found = _run(
            _engine(config, store).get_neighbors(
                config.owner_id, target.id, min_similarity=min_similarity, limit=limit
            )
        )
    finally:
        store.close()
    console.show_suggestions(found)


# =========================================================================
# Predictions
# =========================================================================

@main.command()
@click.option("--path", "-p", default=None, help="Path to the workspace root.")
@click.option("--activity", "-a", default=None, help="What you are working on now.")
@click.option("--recent", "-r", multiple=True, help="Recently used fragment (can repeat).")
@click.option("--limit", "-n", default=None, type=int, help="Number of suggestions.")
@click.option("--hour", default=None, type=int, help="Hour of day (UTC) to predict for.")
@click.option("--day", default=None, type=int, help="Day of week, Sunday = 0.")
@click.option("--json", "as_json", is_flag=True, help="Output JSON.")
def predict(
    path: str | None, activity: str | None, recent: tuple[str, ...], limit: int | None,
    hour: int | None, day: int | None, as_json: bool,
):
    """Suggest fragments from your usage history."""
    root = _get_project_root(path)
    config = _load_config(root)
    store = _open_store(root)
    try:
        recent_ids = [_resolve(store, config.owner_id, ref).id for ref in recent]
        result = _run(
            _engine(config, store).get_predictions(
                config.owner_id,
                current_activity=activity,
                recent_fragment_ids=recent_ids,
                limit=limit,
                hour=hour,
                day=day,
            )
        )
    finally:
        store.close()

    if as_json:
        click.echo(result.model_dump_json(indent=2))
    else:
        console.show_predictions(result)


@main.command()
@click.option("--path", "-p", default=None, help="Path to the workspace root.")
@click.option("--days", default=30, type=int, help="Days of history to analyze.")
@click.option("--group-by", "-g", type=click.Choice(["hour", "day_of_week", "activity"]),
              default="activity", help="How to bucket usage (default: activity).")
def patterns(path: str | None, days: int, group_by: str):
    """Summarize when and how fragments get used."""
    root = _get_project_root(path)
    config = _load_config(root)
    store = _open_store(root)
    try:
        result = _run(
            _engine(config, store).usage_patterns(config.owner_id, days_back=days, group_by=group_by)
        )
    finally:
        store.close()
    console.show_patterns(result)


# =========================================================================
# Config Management
# =========================================================================

@main.command("config")
@click.argument("action", type=click.Choice(["set", "get", "show"]))
@click.argument("key", required=False)
@click.argument("value", required=False)
@click.option("--path", "-p", default=None, help="Path to the workspace root.")
def config_cmd(action: str, key: str | None, value: str | None, path: str | None):
    """Manage ctxforge configuration."""
    root = _get_project_root(path)
    config = _load_config(root)

    if action == "show":
        console.console.print_json(json.dumps(config.model_dump(), indent=2))
    elif action == "get":
        if not key:
            console.error("Usage: ctxforge config get <key>")
            sys.exit(1)
        data = config.model_dump()
        for part in key.split("."):
            if isinstance(data, dict) and part in data:
                data = data[part]
            else:
                console.error(f"Unknown key: {key}")
                sys.exit(1)
        console.console.print(f"{key} = {data}")
    elif action == "set":
        if not key or value is None:
            console.error("Usage: ctxforge config set <key> <value>")
            sys.exit(1)
        try:
            # Try to parse as JSON for non-string values
            try:
                parsed_value = json.loads(value)
            except json.JSONDecodeError:
                parsed_value = value

            config = set_config_value(config, key, parsed_value)
            save_config(root, config)
            console.success(f"Set {key} = {parsed_value}")
        except KeyError:
            console.error(f"Unknown config key: {key}")
            sys.exit(1)
        except CtxForgeError as e:
            console.error(str(e))
            sys.exit(1)


if __name__ == "__main__":
    main()
