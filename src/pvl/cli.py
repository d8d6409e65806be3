"""CLI entry point for Personal Video Library."""

import json
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from .config import DEFAULT_CONFIG, load_config
from .errors import PVLError

console = Console()


@click.group()
@click.option("--config", "-c", "config_path", default=None, help="Path to config file")
@click.option("--verbose", "-v", is_flag=True, help="Log debug output")
@click.pass_context
def cli(ctx, config_path, verbose):
    """Personal Video Library - semantic search and topic discovery for your videos."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose


def _get_config(ctx) -> dict:
    try:
        config = load_config(ctx.obj.get("config_path"))
    except PVLError as e:
        raise click.ClickException(str(e)) from e
    _setup_logging("DEBUG" if ctx.obj.get("verbose") else config.get("log_level", "INFO"))
    return config


def _setup_logging(level: str) -> None:
    from rich.logging import RichHandler

    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
        force=True,
    )


def _get_engine(ctx):
    from .engine import DiscoveryEngine

    config = _get_config(ctx)
    engine = DiscoveryEngine(config, auto_embed=False)
    engine.load_index()
    return engine


def _cluster_table(clusters, title: str = "Clusters") -> Table:
    table = Table(title=title)
    table.add_column("ID", style="dim")
    table.add_column("Label", style="cyan")
    table.add_column("Items", justify="right")
    table.add_column("Confidence", justify="right", style="green")
    for c in clusters:
        table.add_row(c.id, c.display_label, str(c.item_count), f"{c.confidence_score:.2f}")
    return table


@cli.command()
@click.option("--path", default=None, help="Custom base path (default: ~/.pvl)")
def init(path):
    """Create the library directory and a config file."""
    import copy

    import yaml

    base = Path(path).expanduser().resolve() if path else Path("~/.pvl").expanduser()
    library = base / "library"
    library.mkdir(parents=True, exist_ok=True)
    console.print(f"[bold green]Initializing PVL at {base}[/]")

    config_file = base / "config.yaml"
    if not config_file.exists():
        cfg = copy.deepcopy(DEFAULT_CONFIG)
        cfg["library_path"] = str(library)
        header = (
            "# Storage backend: json (library.json in library_path) or memory\n"
            "# Env overrides: PVL_LIBRARY_PATH, PVL_EMBEDDING_MODEL\n\n"
        )
        config_file.write_text(header + yaml.dump(cfg, default_flow_style=False, sort_keys=False))
        console.print(f"  Created config: {config_file}")

    console.print("[bold green]✓ PVL initialized![/]")
    console.print("  Run: pvl import videos.json")


@cli.command("import")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--no-embed", is_flag=True, help="Only store the items, embed later with 'pvl embed'")
@click.pass_context
def import_items(ctx, path, no_embed):
    """Import items from a JSON file (a list of items or {"items": [...]})."""
    from .models import Item

    data = json.loads(Path(path).read_text(encoding="utf-8"))
    raw_items = data.get("items", []) if isinstance(data, dict) else data
    try:
        items = [Item.from_dict(raw) for raw in raw_items]
    except (TypeError, ValueError) as e:
        raise click.ClickException(f"Invalid item in {path}: {e}") from e

    engine = _get_engine(ctx)
    try:
        with engine.store.batch():
            engine.store.add_items(items)
        console.print(f"[green]✓ Imported {len(items)} item(s)[/]")
        if not no_embed:
            count = engine.embed_items(show_progress=True)
            console.print(f"[green]✓ Embedded {count} item(s)[/]")
        engine.save_index()
    finally:
        engine.close()


@cli.command()
@click.pass_context
def embed(ctx):
    """Embed every item that has no embedding yet."""
    engine = _get_engine(ctx)
    try:
        count = engine.embed_items(show_progress=True)
        if count:
            engine.save_index()
        console.print(f"[green]✓ Embedded {count} new item(s)[/]")
    finally:
        engine.close()


@cli.command()
@click.pass_context
def index(ctx):
    """Rebuild the vector index from the library."""
    engine = _get_engine(ctx)
    try:
        size = engine.rebuild_index()
        path = engine.save_index()
        console.print(f"[green]✓ Indexed {size} item(s)[/] → {path}")
    finally:
        engine.close()


@cli.command()
@click.option("--if-needed", is_flag=True, help="Only run when the library grew enough since the last run")
@click.pass_context
def cluster(ctx, if_needed):
    """Group embedded items into topic clusters."""
    engine = _get_engine(ctx)
    try:
        console.print("[blue]Running clustering...[/]")
        clusters = engine.recluster_if_needed() if if_needed else engine.recluster()
        if clusters is None:
            console.print("[yellow]Clusters left unchanged.[/]")
            return
        if not clusters:
            console.print("[yellow]No clusters found. Have you run 'pvl embed'?[/]")
            return
        console.print(_cluster_table(clusters))
    finally:
        engine.close()


@cli.command()
@click.pass_context
def clusters(ctx):
    """List clusters."""
    engine = _get_engine(ctx)
    try:
        found = engine.list_clusters()
        if not found:
            console.print("[yellow]No clusters yet. Run 'pvl cluster'.[/]")
            return
        console.print(_cluster_table(found))
    finally:
        engine.close()


@cli.command()
@click.argument("query")
@click.option("--source", type=click.Choice(["youtube", "local"]), default=None, help="Only this source")
@click.option("--cluster", "cluster_id", default=None, help="Only items in this cluster")
@click.option("--min-duration", type=float, default=None, help="Minimum duration in seconds")
@click.option("--max-duration", type=float, default=None, help="Maximum duration in seconds")
@click.option("--n", "-n", default=10, help="Number of results")
@click.pass_context
def search(ctx, query, source, cluster_id, min_duration, max_duration, n):
    """Hybrid keyword and semantic search over the library."""
    from .models import SearchFilters

    filters = SearchFilters(
        min_duration=min_duration,
        max_duration=max_duration,
        source=source,
        cluster_id=cluster_id,
    )
    engine = _get_engine(ctx)
    try:
        results = engine.search_with_scores(query, filters)[:n]
    finally:
        engine.close()

    if not results:
        console.print("[yellow]No results found.[/]")
        return

    table = Table(title=f"Results for '{query}'")
    table.add_column("#", style="dim", width=3)
    table.add_column("Title", style="cyan")
    table.add_column("Score", justify="right", style="green")
    table.add_column("Match", style="dim")
    for i, r in enumerate(results, 1):
        paths = [name for name, rank in (("keyword", r.keyword_rank), ("vector", r.vector_rank)) if rank]
        table.add_row(str(i), r.item.title, f"{r.score:.4f}", "+".join(paths))
    console.print(table)


@cli.command()
@click.argument("target")
@click.argument("source")
@click.pass_context
def merge(ctx, target, source):
    """Merge cluster SOURCE into cluster TARGET."""
    engine = _get_engine(ctx)
    try:
        merged = engine.merge_clusters(target, source)
    except (PVLError, ValueError) as e:
        raise click.ClickException(str(e)) from e
    finally:
        engine.close()
    console.print(f"[green]✓ {merged.display_label}: {merged.item_count} item(s)[/]")


@cli.command()
@click.argument("cluster_id")
@click.pass_context
def split(ctx, cluster_id):
    """Split a cluster in two."""
    engine = _get_engine(ctx)
    try:
        pieces = engine.split_cluster(cluster_id)
    except (PVLError, ValueError) as e:
        raise click.ClickException(str(e)) from e
    finally:
        engine.close()
    console.print(_cluster_table(pieces, title=f"Split {cluster_id}"))


@cli.command()
@click.argument("cluster_id")
@click.argument("label", required=False)
@click.pass_context
def rename(ctx, cluster_id, label):
    """Give a cluster your own label (omit LABEL to reset it)."""
    engine = _get_engine(ctx)
    try:
        renamed = engine.rename_cluster(cluster_id, label)
    except PVLError as e:
        raise click.ClickException(str(e)) from e
    finally:
        engine.close()
    console.print(f"[green]✓ {renamed.id} → {renamed.display_label}[/]")


@cli.command()
@click.pass_context
def stats(ctx):
    """Show library statistics."""
    engine = _get_engine(ctx)
    try:
        s = engine.stats()
    finally:
        engine.close()

    console.print("\n[bold]📊 Library Statistics[/]")
    console.print(f"  Items: {s['items']}")
    console.print(f"  Embedded: {s['embedded']}")
    console.print(f"  Indexed: {s['indexed']} ({s['tombstones']} tombstone(s))")
    console.print(f"  Clusters: {s['clusters']} ({s['clustered']} item(s) clustered)")


if __name__ == "__main__":
    cli()
