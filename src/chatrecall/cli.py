"""
chatrecall CLI - import chat history exports and search them semantically.
"""

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from chatrecall.logging_config import setup_logging

app = typer.Typer(
    name="chatrecall",
    help="chatrecall - Import, embed and search past chat conversations",
    no_args_is_help=True,
)

console = Console()


def _init_logging() -> None:
    # Fall back to console logging if the log directory is not writable
    try:
        setup_logging(context="cli")
    except PermissionError:
        import logging

        logging.basicConfig(level=logging.INFO)


def _embedding_service():
    from chatrecall.embeddings import EmbeddingService

    service = EmbeddingService()
    if not service.is_configured:
        console.print(
            "[bold red]Error:[/bold red] OPENAI_API_KEY not set in environment"
        )
        raise typer.Exit(1)
    return service


@app.command("init-db")
def init_db_command() -> None:
    """Create the database tables."""
    from chatrecall.config import settings
    from chatrecall.db.connection import init_db

    _init_logging()
    init_db()
    console.print(f"[green]✓ Database ready:[/green] {settings.database_url}")


@app.command("import")
def import_command(
    path: str = typer.Argument(..., help="Path to an export .zip or conversations.json"),
    embed: bool = typer.Option(
        False, "--embed/--no-embed", help="Embed new assistant messages after import"
    ),
) -> None:
    """
    Import a ChatGPT data export.

    Zip archives bring their images along; re-importing an archive adds images
    that are missing from earlier imports.
    """
    from chatrecall.db.connection import db_session, init_db
    from chatrecall.embeddings import EmbeddingScheduler
    from chatrecall.exceptions import ImportAbortedError
    from chatrecall.pipeline import ConversationImporter, ImportPhase, ImportProgress

    _init_logging()

    export_path = Path(path)
    if not export_path.exists():
        console.print(f"[bold red]Error:[/bold red] Path not found: {path}")
        raise typer.Exit(1)

    scheduler = EmbeddingScheduler(_embedding_service()) if embed else None

    console.print(f"[bold blue]Importing from:[/bold blue] {export_path}")
    console.print(f"  Embeddings: {embed}")
    console.print()

    def on_progress(progress: ImportProgress) -> None:
        if progress.phase == ImportPhase.IMPORTING and progress.processed % 50 == 0:
            console.print(
                f"  [cyan]{progress.processed}/{progress.total}[/cyan] {progress.current_title}"
            )
        elif progress.phase == ImportPhase.EMBEDDING:
            console.print("[cyan]Embedding new messages in the background...[/cyan]")

    init_db()
    try:
        with db_session() as session:
            importer = ConversationImporter(
                session, progress_callback=on_progress, embedding_scheduler=scheduler
            )
            if export_path.suffix.lower() == ".zip":
                result = importer.import_archive(export_path, generate_embeddings=embed)
            else:
                result = importer.import_file(export_path, generate_embeddings=embed)
    except ImportAbortedError as e:
        console.print(f"[bold red]Import failed:[/bold red] {e.reason}")
        raise typer.Exit(1)

    if scheduler is not None:
        scheduler.wait()
        final = scheduler.progress()
        console.print(
            f"  Embedded: {final.embedded}, failed: {final.failed} ({final.status.value})"
        )

    console.print()
    console.print("[bold]Summary:[/bold]")
    console.print(f"  Conversations imported: {result.conversations_imported}")
    console.print(f"  Conversations updated: {result.conversations_updated}")
    console.print(f"  Conversations skipped: {result.conversations_skipped}")
    console.print(f"  Empty conversations: {result.conversations_empty}")
    console.print(f"  Messages imported: {result.messages_imported}")
    console.print(f"  Images imported: {result.images_imported}")
    if result.unresolved_assets:
        console.print(
            f"  [yellow]Unresolved images: {len(result.unresolved_assets)}[/yellow]"
        )

    if result.errors:
        console.print(f"  [red]Errors: {len(result.errors)}[/red]")
        for error in result.errors:
            console.print(f"    [red]✗[/red] {error}")
        raise typer.Exit(1)


@app.command()
def embed() -> None:
    """Embed assistant messages that do not have an embedding yet."""
    from chatrecall.db.connection import db_session
    from chatrecall.db.repositories import MessageRepository
    from chatrecall.embeddings import EmbeddingScheduler

    _init_logging()
    service = _embedding_service()

    with db_session() as session:
        pending = MessageRepository(session).pending_embedding_ids()

    if not pending:
        console.print("[green]✓ Nothing to embed[/green]")
        return

    console.print(f"Embedding {len(pending)} messages...")
    final = EmbeddingScheduler(service).run(pending)
    console.print(
        f"[green]✓ Embedded {final.embedded}[/green], failed {final.failed} "
        f"({final.processed}/{final.total} processed)"
    )


@app.command()
def dedupe() -> None:
    """Remove duplicate copies of conversations."""
    from chatrecall.db.connection import db_session
    from chatrecall.pipeline import remove_duplicate_conversations

    _init_logging()
    with db_session() as session:
        result = remove_duplicate_conversations(session)

    console.print(
        f"[green]✓ Removed {result.duplicates_removed} duplicates[/green] "
        f"({result.conversations_kept} conversations kept)"
    )


@app.command("remove-imported")
def remove_imported(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Delete every conversation that was imported from an export."""
    from chatrecall.db.connection import db_session
    from chatrecall.pipeline import remove_all_imported_conversations

    _init_logging()
    if not yes and not typer.confirm("Delete all imported conversations?"):
        raise typer.Exit(0)

    with db_session() as session:
        removed = remove_all_imported_conversations(session)

    console.print(f"[green]✓ Removed {removed} imported conversations[/green]")


@app.command()
def search(
    query: str = typer.Argument(..., help="Search text"),
    limit: int = typer.Option(20, help="Maximum number of conversations"),
) -> None:
    """Find conversations semantically related to a query."""
    from chatrecall.db.connection import db_session
    from chatrecall.db.repositories import ConversationRepository
    from chatrecall.retrieval import ConversationSearchService

    _init_logging()
    service = ConversationSearchService(_embedding_service())

    with db_session() as session:
        matches = service.search(session, query, limit=limit)
        if not matches:
            console.print("[yellow]No matching conversations[/yellow]")
            return

        repo = ConversationRepository(session)
        table = Table(title=f"Conversations matching {query!r}")
        table.add_column("Score", justify="right")
        table.add_column("Title")
        table.add_column("Updated")
        for match in matches:
            conversation = repo.get(match.conversation_id)
            if conversation is None:
                continue
            table.add_row(
                f"{match.similarity:.3f}",
                conversation.title,
                conversation.updated_at.strftime("%Y-%m-%d"),
            )

    console.print(table)


@app.command()
def context(
    query: str = typer.Argument(..., help="Prompt to find past context for"),
    limit: int = typer.Option(5, help="Baseline number of results"),
) -> None:
    """Print the past-conversation context block for a prompt."""
    from chatrecall.db.connection import db_session
    from chatrecall.retrieval import RAGService, format_results_for_prompt

    _init_logging()
    service = RAGService(_embedding_service())

    with db_session() as session:
        results = service.retrieve(session, query, limit=limit)

    if not results:
        console.print("[yellow]No relevant past conversations[/yellow]")
        return

    console.print(format_results_for_prompt(results), markup=False, highlight=False)


if __name__ == "__main__":
    app()
