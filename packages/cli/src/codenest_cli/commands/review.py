"""review command: run an AI review of local changes."""

from __future__ import annotations

import asyncio
import logging

import click
from rich.console import Console

from codenest_core.config import PROVIDERS, ReviewSettings, apply_overrides, load_config
from codenest_core.embeddings import EmbeddingBatchProcessor
from codenest_core.events import EmbeddingProgress, FileProgress, PhaseChanged, ReviewCompleted, ReviewFailed
from codenest_core.git.changes import GitChangeDiscovery
from codenest_core.models import Phase, ReviewOptions
from codenest_core.orchestrator import ReviewOrchestrator
from codenest_core.rag import OpenAIEmbeddingClient, VectorIndex
from codenest_core.reviewer import FileReviewer, get_chat_provider
from codenest_core.workspace import LineWindowChunker, LocalFileStore, LocalWorkspaceResolver
from codenest_store.memory import MemoryStore

console = Console()
logger = logging.getLogger(__name__)

_PHASE_LABELS = {
    Phase.RESOLVING_WORKSPACE: "Resolving workspace...",
    Phase.SETTING_UP: "Discovering changed files...",
    Phase.PROCESSING_FILES: "Processing files...",
    Phase.GENERATING_EMBEDDINGS: "Generating embeddings...",
    Phase.ANALYZING_CODE: "Analyzing code...",
}
_SEVERITY_COLOR = {"critical": "red", "high": "yellow", "medium": "blue", "low": "dim"}


def build_orchestrator(settings: ReviewSettings, store) -> ReviewOrchestrator:
    """Wire the default local collaborators around the configured providers."""
    file_store = LocalFileStore()
    client = None
    if settings.openai_api_key:
        client = OpenAIEmbeddingClient(api_key=settings.openai_api_key, model=settings.embedding_model)
    else:
        logger.info("OPENAI_API_KEY not set; reviewing without related-code context")
    index = VectorIndex(client)
    return ReviewOrchestrator(
        resolver=LocalWorkspaceResolver(),
        discovery=GitChangeDiscovery(file_store, exclude=settings.exclude),
        file_store=file_store,
        chunker=LineWindowChunker(max_lines=settings.chunk_max_lines),
        embeddings=EmbeddingBatchProcessor(index, batch_size=settings.embedding_batch_size),
        reviewer=FileReviewer(get_chat_provider(settings), store, settings, search=index),
        store=store,
    )


def render_event(event) -> None:
    if isinstance(event, PhaseChanged):
        label = _PHASE_LABELS.get(event.phase)
        if label:
            console.print(f"[bold]{label}[/bold]")
    elif isinstance(event, FileProgress):
        verb = "Reviewed" if event.phase is Phase.ANALYZING_CODE else "Processed"
        if event.error:
            console.print(f"  [[{event.current}/{event.total}]] [red]{event.path}: {event.error}[/red]")
        else:
            console.print(f"  [[{event.current}/{event.total}]] {verb}: {event.path}")
    elif isinstance(event, EmbeddingProgress):
        status = f"[yellow]failed: {event.error}[/yellow]" if event.error else f"{event.embedded_chunks} chunk(s)"
        console.print(f"  Batch {event.batch}/{event.total_batches}: {status}")


def print_issues(event: ReviewCompleted) -> None:
    paths = {rf.file_id: rf.path for rf in event.files}
    if event.cancelled:
        console.print("[yellow]Review cancelled; showing partial results.[/yellow]")
    if not event.issues:
        console.print("\n[green]No issues found.[/green]")
    else:
        console.print(f"\n[bold]{len(event.issues)} issue(s) found[/bold]\n")
    for issue in event.issues:
        severity = issue.severity.value
        color = _SEVERITY_COLOR.get(severity, "white")
        lines = f"line {issue.line_start}" if issue.line_start else "line ?"
        if issue.line_end and issue.line_end != issue.line_start:
            lines = f"lines {issue.line_start}-{issue.line_end}"
        console.print(
            f"[bold cyan]{paths.get(issue.file_id, issue.file_id)}[/bold cyan]  {lines}  "
            f"[{color}]{severity.upper()}[/{color}] [dim]{issue.type.value}[/dim]"
        )
        console.print(f"  [bold]{issue.title}[/bold]")
        if issue.description:
            console.print(f"  {issue.description}")
        if issue.suggestion:
            console.print(f"  [green]Suggestion:[/green] {issue.suggestion}")
        console.print()

    if event.failed_files:
        console.print(f"[red]Could not review {len(event.failed_files)} file(s):[/red]")
        for path in event.failed_files:
            console.print(f"  - {path}")
    if event.completion_error:
        console.print(f"[yellow]Warning: {event.completion_error}[/yellow]")


async def _run(orchestrator: ReviewOrchestrator, options: ReviewOptions, store):
    try:
        return await orchestrator.run_review(options, on_event=render_event)
    finally:
        await orchestrator.reviewer.chat.close()
        await store.close()


@click.command("review")
@click.option("--path", "target_dir", default=".", show_default=True, help="Repository to review.")
@click.option("--staged", is_flag=True, help="Review staged changes (default when no mode is given).")
@click.option("--commit", "commit_hash", default=None, help="Review the changes introduced by a commit.")
@click.option("--branch", default=None, help="Review the changes of a branch against --base.")
@click.option("--base", "base_branch", default="main", show_default=True, help="Base branch for --branch.")
@click.option(
    "--provider",
    type=click.Choice(PROVIDERS),
    default=None,
    help="AI provider. Overrides config file.",
)
@click.option("--model", default=None, help="Model name. Overrides the provider default.")
@click.option("--concurrency", "max_concurrent_reviews", type=int, default=None, help="Files reviewed in parallel.")
@click.pass_context
def review_cmd(
    ctx,
    target_dir: str,
    staged: bool,
    commit_hash: str | None,
    branch: str | None,
    base_branch: str,
    provider: str | None,
    model: str | None,
    max_concurrent_reviews: int | None,
):
    """Review local changes with an AI model and list the issues found.

    \b
    Environment variables:
      ANTHROPIC_API_KEY    Required when using --provider anthropic
      OPENAI_API_KEY       Required when using --provider openai; enables related-code context
      GEMINI_API_KEY       Required when using --provider gemini
      OLLAMA_HOST          Ollama server address (default http://localhost:11434)
    """
    obj = ctx.obj or {}
    overrides = {"provider": provider, "model": model, "max_concurrent_reviews": max_concurrent_reviews}
    if obj.get("config") is not None:
        config = apply_overrides(dict(obj["config"]), overrides)
    else:
        config = load_config(obj.get("config_path", ".codenest.yml"), cli_overrides=overrides)

    if config["provider"] == "anthropic" and not config.get("anthropic_api_key"):
        raise click.UsageError("ANTHROPIC_API_KEY environment variable is not set.")
    if config["provider"] == "openai" and not config.get("openai_api_key"):
        raise click.UsageError("OPENAI_API_KEY environment variable is not set.")
    if config["provider"] == "gemini" and not config.get("gemini_api_key"):
        raise click.UsageError("GEMINI_API_KEY environment variable is not set.")

    try:
        settings = ReviewSettings.from_config(config)
    except ValueError as e:
        raise click.UsageError(str(e))

    options = ReviewOptions(
        target_dir=target_dir,
        staged=staged,
        commit_hash=commit_hash or "",
        branch=branch or "",
        base_branch=base_branch,
    )
    store = obj.get("store") or MemoryStore()
    orchestrator = build_orchestrator(settings, store)

    result = asyncio.run(_run(orchestrator, options, store))

    if isinstance(result, ReviewFailed):
        raise click.ClickException(result.error)
    print_issues(result)
