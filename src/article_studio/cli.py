"""Command-line entry points for the article studio."""

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

import typer
from pydantic import ValidationError
from rich import print as rprint
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from .config import ProviderConfig, get_settings
from .errors import ArticleStudioError, BatchFailedError, ConfigurationError
from .export import copy_to_clipboard, export_markdown, render_article
from .images import resolve_images
from .models import Topic
from .pipeline import BatchOutcome, run_batch
from .providers import build_provider
from .store import ArticleNotFound, JsonStore
from .workflow import search_topics

STYLE_PRESETS = ("Professional", "Humorous", "Emotional", "Sharp", "Storytelling")
CATEGORY_PRESETS = (
    "Technology & AI",
    "Finance & Markets",
    "Lifestyle & Health",
    "Entertainment",
    "General",
)

app = typer.Typer(help="Research trending topics and turn them into styled, publish-ready articles.")
config_app = typer.Typer(help="View or change the provider configuration.")
app.add_typer(config_app, name="config")


def _store() -> JsonStore:
    return JsonStore(settings=get_settings())


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(show_path=False, rich_tracebacks=verbose)],
        force=True,
    )


def _parse_ids(raw: Optional[str]) -> List[int]:
    if not raw:
        return []
    try:
        return [int(part) for part in raw.replace(" ", "").split(",") if part]
    except ValueError as exc:
        raise typer.BadParameter("ids must be a comma separated list of integers.") from exc


def _select_topics(topics: List[Topic], ids: List[int], select_all: bool) -> List[Topic]:
    if select_all:
        return list(topics)
    wanted = set(ids)
    unknown = wanted - {topic.id for topic in topics}
    if unknown:
        raise typer.BadParameter(f"Unknown topic id(s): {', '.join(map(str, sorted(unknown)))}")
    # Keep search order, not the order ids were typed.
    return [topic for topic in topics if topic.id in wanted]


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
):
    _configure_logging(verbose)


@app.command("search")
def search_command(
    category: str = typer.Argument(
        ..., help=f"Category or free-form topic, e.g. {', '.join(CATEGORY_PRESETS[:2])}."
    ),
):
    """Find today's trending topics and remember them for `generate`."""
    store = _store()
    config = store.load_config()
    rprint(f"[cyan]Scanning today's news for “{category}”...[/cyan]")
    try:
        result = asyncio.run(search_topics(category, config))
    except ArticleStudioError as exc:
        rprint(f"[red]Topic search failed: {escape(str(exc))}[/red]")
        raise typer.Exit(code=1)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    store.save_search(category, result)
    if not result.topics:
        rprint("[yellow]No topics could be extracted; try again or refine the category.[/yellow]")
        return

    table = Table(title=f"Topics for {category}")
    table.add_column("ID", justify="right")
    table.add_column("Title")
    table.add_column("Description")
    for topic in result.topics:
        table.add_row(str(topic.id), topic.title, topic.description)
    rprint(table)
    for source in result.sources:
        rprint(f"[dim]- {source.title}: {source.uri}[/dim]")


@app.command("generate")
def generate_command(
    ids: Optional[str] = typer.Option(None, "--ids", help="Comma separated topic ids."),
    select_all: bool = typer.Option(False, "--all", help="Generate every topic from the last search."),
    style: str = typer.Option(
        "Professional", "--style", "-s", help=f"Writing style, e.g. {', '.join(STYLE_PRESETS)}."
    ),
    instructions: str = typer.Option("", "--instructions", "-i", help="Extra instructions."),
):
    """Run the editor -> writer -> visual -> image pipeline over selected topics."""
    store = _store()
    saved = store.load_search()
    if saved is None:
        raise typer.BadParameter("Run `search` first.")
    category, result = saved
    topics = _select_topics(result.topics, _parse_ids(ids), select_all)
    if not topics:
        raise typer.BadParameter("Select at least one topic (--ids 1,3 or --all).")

    config = store.load_config()
    try:
        batch = asyncio.run(
            run_batch(
                topics,
                style,
                instructions,
                config,
                category=category,
                progress=lambda label: rprint(f"[cyan]{escape(label)}[/cyan]"),
            )
        )
        batch.raise_for_outcome()
    except BatchFailedError as exc:
        for failure in exc.failures:
            rprint(f"[red]Failed “{escape(failure.topic.title)}” ({failure.stage.value}): {escape(failure.error)}[/red]")
        rprint(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=1)
    except (ConfigurationError, ValueError) as exc:
        raise typer.BadParameter(str(exc)) from exc

    path = store.append_articles(batch.articles)
    for article in batch.articles:
        rprint(f"[green]{article.id}  {escape(article.title)}[/green]")
    if batch.outcome is BatchOutcome.PARTIAL:
        for failure in batch.failures:
            rprint(f"[yellow]Skipped “{escape(failure.topic.title)}” ({failure.stage.value}): {escape(failure.error)}[/yellow]")
    rprint(
        f"[cyan]Generated {len(batch.articles)} of {batch.requested} article(s); "
        f"saved to {path}[/cyan]"
    )


@app.command("images")
def images_command(
    query: str = typer.Argument(..., help="Image search query."),
    exclude: Optional[str] = typer.Option(None, "--exclude", "-x", help="Terms to exclude."),
):
    """List cover image candidates for a query."""
    settings = get_settings()
    config = _store().load_config()
    try:
        client = build_provider(config, settings)
    except ConfigurationError as exc:
        rprint(f"[yellow]{escape(str(exc))} Using baseline candidates only.[/yellow]")
        client = None
    urls = asyncio.run(resolve_images(query, config, exclude, client=client, settings=settings))
    for url in urls:
        typer.echo(url)


@app.command("history")
def history_command():
    """List generated articles, newest first."""
    articles = _store().load_history()
    if not articles:
        rprint("[yellow]No articles yet.[/yellow]")
        return
    table = Table(title="History")
    table.add_column("ID", no_wrap=True)
    table.add_column("Created")
    table.add_column("Category")
    table.add_column("Style")
    table.add_column("Title")
    for article in reversed(articles):
        table.add_row(
            article.id,
            article.created_at.strftime("%Y-%m-%d %H:%M"),
            article.category,
            article.agent_log.style,
            article.title,
        )
    rprint(table)


@app.command("export")
def export_command(
    article_id: str = typer.Argument(..., help="Article id from `history`."),
    output_format: str = typer.Option(
        "html", "--format", "-f", help="html (styled) or md (plain markdown).", case_sensitive=False
    ),
    out: Optional[Path] = typer.Option(None, "--out", "-o", help="Write to a file instead of stdout."),
):
    """Export an article as styled HTML for the publishing editor, or as markdown."""
    fmt = output_format.lower()
    if fmt not in {"html", "md"}:
        raise typer.BadParameter("format must be 'html' or 'md'.")
    try:
        article = _store().get_article(article_id)
    except ArticleNotFound as exc:
        raise typer.BadParameter(f"No article with id {article_id}.") from exc

    markdown = export_markdown(article.title, article.summary, article.content)
    if fmt == "md":
        text = markdown
    else:
        settings = get_settings()
        text = render_article(article, author_label=settings.export_author_label)
        outcome = copy_to_clipboard(text, None, plain_text=markdown)
        if not outcome.copied:
            rprint(f"[yellow]{outcome.message}[/yellow]")

    if out:
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(text, encoding="utf-8")
        rprint(f"[cyan]Wrote {fmt} export to {out}[/cyan]")
    else:
        typer.echo(text)


@config_app.command("show")
def config_show():
    """Print the provider configuration (API key masked)."""
    config = _store().load_config()
    data = config.model_dump(mode="json", by_alias=True)
    if data.get("customApiKey"):
        data["customApiKey"] = data["customApiKey"][:4] + "..."
    for key, value in data.items():
        rprint(f"{key}: {value}")
    if config.provider.value == "custom":
        rprint(f"[dim]endpoint: {config.completions_url}[/dim]")


@config_app.command("set")
def config_set(
    key: str = typer.Argument(..., help="Field name, e.g. provider, creativity, globalRules."),
    value: str = typer.Argument(..., help="New value."),
):
    """Update one provider configuration field."""
    store = _store()
    current = store.load_config().model_dump(by_alias=True)
    aliases = {name: info.alias or name for name, info in ProviderConfig.model_fields.items()}
    field_key = aliases.get(key, key)
    if field_key not in current:
        raise typer.BadParameter(f"Unknown setting {key!r}. Known: {', '.join(sorted(current))}")
    try:
        updated = ProviderConfig.model_validate({**current, field_key: value})
    except ValidationError as exc:
        raise typer.BadParameter(str(exc)) from exc
    store.save_config(updated)
    rprint(f"[green]Saved {field_key}.[/green]")


def main():
    app()


if __name__ == "__main__":
    main()
