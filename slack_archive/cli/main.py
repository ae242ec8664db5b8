"""CLI interface for Slack Archive."""
import click
from rich.console import Console
from rich.table import Table

from ..config import Config
from ..database.db_manager import DatabaseManager
from ..slack.client import SlackClient, SlackCredential
from ..slack.coordinator import SyncCoordinator
from ..slack.importer import ImportSummary
from ..utils.circuit_breaker import CircuitOpenError
from ..utils.logger import setup_logging, get_logger
from ..utils.reporting import CollectingFailureReporter

console = Console()
logger = get_logger(__name__)


def get_credential() -> SlackCredential:
    return SlackCredential(Config.SLACK_BOT_TOKEN)


def build_coordinator(reporter: CollectingFailureReporter) -> SyncCoordinator:
    return SyncCoordinator(db_manager=DatabaseManager(), reporter=reporter)


def print_summary(summary: ImportSummary, reporter: CollectingFailureReporter, title: str = "Import Results"):
    table = Table(title=title)
    table.add_column("Category", style="cyan")
    table.add_column("Count", style="green", justify="right")

    table.add_row("Messages saved", str(summary.saved))
    table.add_row("Messages skipped", str(summary.skipped))
    table.add_row("Messages failed", str(summary.failed))
    table.add_row("Threads", str(summary.threads))
    table.add_row("Threads failed", str(summary.failed_threads))
    table.add_row("Pages", str(summary.pages))

    console.print(table)

    if not summary.complete:
        console.print("[yellow]⚠ Import incomplete, some pages could not be fetched[/yellow]")
    if reporter.errors:
        console.print(f"[yellow]⚠ {len(reporter.errors)} errors reported, see the log for details[/yellow]")


@click.group()
@click.option('--log-level', default=None, help='Logging level (defaults to LOG_LEVEL)')
def cli(log_level):
    """Slack Archive - Import Slack workspaces into a local database."""
    setup_logging(log_level=log_level)
    Config.create_directories()

    # Validate configuration
    try:
        Config.validate()
    except ValueError as e:
        console.print(f"[red]Configuration Error: {e}[/red]")
        console.print("[yellow]Please check your .env file[/yellow]")
        raise click.Abort()


@cli.command()
def init():
    """Initialize database and verify the Slack token."""
    console.print("[bold blue]Initializing Slack Archive...[/bold blue]")

    try:
        response = SlackClient().auth_test(get_credential())

        console.print("[green]✓ Connected to Slack[/green]")
        console.print(f"  Workspace: {response['team']}")
        console.print(f"  Team ID: {response['team_id']}")
        console.print(f"  Bot User ID: {response['user_id']}")

        DatabaseManager()
        console.print("[green]✓ Database initialized[/green]")

        console.print("[bold green]Initialization complete![/bold green]")

    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise


@cli.command()
@click.option('--incremental', is_flag=True, help='Only fetch messages newer than the last sync')
@click.option('--no-join', is_flag=True, help='Do not join public channels the bot is not a member of')
def sync(incremental, no_join):
    """Sync users, channels and messages of the whole workspace."""
    console.print("[bold blue]Syncing workspace...[/bold blue]")

    reporter = CollectingFailureReporter()
    coordinator = build_coordinator(reporter)

    try:
        results = coordinator.sync_workspace(get_credential(), incremental=incremental, join=not no_join)
    except CircuitOpenError as e:
        console.print(f"[red]Sync abandoned: {e}[/red]")
        raise click.Abort()

    console.print(f"[green]✓ {results['users']} new users, {results['channels']} channels[/green]")
    print_summary(results["summary"], reporter, title="Sync Results")


@cli.command()
def sync_users():
    """Import all members of the workspace."""
    reporter = CollectingFailureReporter()
    coordinator = build_coordinator(reporter)
    credential = get_credential()

    account = coordinator.sync_account(credential)
    count = coordinator.sync_users(credential, account.id)
    console.print(f"[green]✓ Imported {count} new users[/green]")


@cli.command()
@click.argument('channel_id')
@click.option('--incremental', is_flag=True, help='Only fetch messages newer than the last sync')
def sync_channel(channel_id, incremental):
    """Import the history of one channel."""
    console.print(f"[bold blue]Importing channel {channel_id}...[/bold blue]")

    reporter = CollectingFailureReporter()
    coordinator = build_coordinator(reporter)

    try:
        summary = coordinator.sync_channel(channel_id, get_credential(), incremental=incremental)
    except CircuitOpenError as e:
        console.print(f"[red]Import abandoned: {e}[/red]")
        raise click.Abort()

    print_summary(summary, reporter)


@cli.command()
@click.argument('channel_id')
@click.argument('ts')
@click.option('--thread-ts', default=None, help='Thread timestamp when the message is a reply')
def import_message(channel_id, ts, thread_ts):
    """Import a single message by its timestamp."""
    reporter = CollectingFailureReporter()
    coordinator = build_coordinator(reporter)

    summary = coordinator.import_message(channel_id, ts, get_credential(), thread_ts=thread_ts)
    print_summary(summary, reporter)


@cli.command()
@click.option('--limit', type=int, default=None, help='Maximum number of files to download')
def download_files(limit):
    """Download attachment files that are not stored locally yet."""
    reporter = CollectingFailureReporter()
    coordinator = build_coordinator(reporter)

    count = coordinator.download_attachments(get_credential(), limit=limit)
    console.print(f"[green]✓ Downloaded {count} files to {coordinator.files_dir}[/green]")
    if reporter.errors:
        console.print(f"[yellow]⚠ {len(reporter.errors)} downloads failed[/yellow]")


@cli.command()
def stats():
    """Show database statistics."""
    console.print("[bold blue]Database Statistics[/bold blue]")

    try:
        db = DatabaseManager()
        stats = db.get_statistics()

        table = Table(title="Slack Archive Statistics")
        table.add_column("Metric", style="cyan")
        table.add_column("Count", style="green")

        table.add_row("Accounts", str(stats.get("accounts", 0)))
        table.add_row("Users", str(stats.get("users", 0)))
        table.add_row("Channels", str(stats.get("channels", 0)))
        table.add_row("Threads", str(stats.get("threads", 0)))
        table.add_row("Messages", str(stats.get("messages", 0)))
        table.add_row("Reactions", str(stats.get("reactions", 0)))
        table.add_row("Attachments", str(stats.get("attachments", 0)))

        console.print(table)

    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise


if __name__ == "__main__":
    cli()
