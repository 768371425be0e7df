"""CLI entry point for QuantumWatch."""
import sqlite3

import click

from quantumwatch.config import get_database_path, get_project_dir, load_config
from quantumwatch.database import Database, format_timestamp
from quantumwatch.errors import ConfigError, OnDemandError
from quantumwatch.pipeline import STAGES

STAGE_NAMES = list(STAGES)


def get_config() -> dict:
    """Load configuration, exiting with a usage error if it is invalid."""
    try:
        return load_config()
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(2)


def get_db(config: dict) -> Database:
    """Get database instance."""
    return Database(get_database_path(config))


def init_logging(config: dict, verbose: bool = False) -> None:
    from quantumwatch.logging_config import setup_logging

    log_dir = get_project_dir() / "logs"
    setup_logging(
        log_dir,
        config["logging"]["retention_days"],
        verbose,
        config["logging"]["level"],
    )


def fail(error: OnDemandError):
    click.echo(f"Error: {error.message}", err=True)
    raise SystemExit(error.exit_code)


def echo_result(result) -> None:
    """Print one StageResult."""
    if result.disabled:
        click.echo(f"{result.stage}: disabled ({result.disabled})")
        return
    if result.aborted:
        click.echo(f"{result.stage}: aborted, store unavailable")
        return

    click.echo(
        f"{result.stage}: Processed: {result.processed}, "
        f"Skipped: {result.skipped}, Failed: {result.failed}"
    )
    for label, error in result.failures:
        click.echo(f"  ✗ {label}")
        click.echo(f"    Error: {error}")


@click.group()
def cli():
    """QuantumWatch - summarize quantum news feeds into podcasts and Telegram posts."""
    pass


# === Pipeline Commands ===


@cli.command()
@click.argument("stage", type=click.Choice(STAGE_NAMES + ["all"]))
@click.option("--limit", "-n", type=int, default=None, help="Limit number of items to process")
@click.option("--verbose", "-v", is_flag=True, help="Show detailed progress during execution")
@click.option("--force", is_flag=True, help="Override stage lock if another run is in progress")
def run(stage: str, limit: int | None, verbose: bool, force: bool):
    """Run one pipeline stage (or all of them, in order) once."""
    import logging

    from quantumwatch.pipeline import run_all, run_stage
    from quantumwatch.stage_runner import StageLockError

    config = get_config()
    init_logging(config, verbose)
    logger = logging.getLogger(__name__)
    logger.info(f"quantumwatch run {stage} starting")

    db = get_db(config)
    try:
        if stage == "all":
            results = run_all(db, config, limit=limit, force=force)
        else:
            results = [run_stage(stage, db, config, limit=limit, force=force)]
    except StageLockError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    except sqlite3.Error as e:
        click.echo(f"Error: store unavailable: {e}", err=True)
        raise SystemExit(1)
    finally:
        db.close()

    for result in results:
        echo_result(result)
    if any(result.aborted for result in results):
        raise SystemExit(1)


@cli.command()
@click.option("--verbose", "-v", is_flag=True, help="Log debug output to the console")
def serve(verbose: bool):
    """Run every stage on its cron schedule until interrupted."""
    from quantumwatch.scheduler import Scheduler

    config = get_config()
    init_logging(config, verbose)

    scheduler = Scheduler(config, lambda: get_db(config))
    click.echo(f"Scheduler running {len(scheduler.schedules)} stages (Ctrl+C to exit)")
    try:
        scheduler.serve()
    except KeyboardInterrupt:
        scheduler.stop()
        click.echo("\nScheduler stopped.")


@cli.command()
def status():
    """Show last run of each stage and the backlog waiting for each one."""
    config = get_config()
    tz_name = config["display"]["timezone"]
    db = get_db(config)

    last_runs = db.get_last_runs()
    click.echo("Stage runs:")
    for name in STAGE_NAMES:
        run_data = last_runs.get(name)
        if not run_data:
            click.echo(f"  {name:<11} never run")
            continue

        started = format_timestamp(run_data["started_at"], tz_name)
        line = f"  {name:<11} {run_data['status']:<9} started {started}"
        if run_data["completed_at"]:
            line += (
                f" | processed {run_data['items_processed']},"
                f" skipped {run_data['items_skipped']},"
                f" failed {run_data['items_failed']}"
            )
        click.echo(line)
    click.echo()

    counts = db.get_pipeline_counts()
    click.echo("Backlog:")
    click.echo(f"  Active feeds: {counts['feeds_active']}")
    click.echo(f"  Items: {counts['items']}")
    click.echo(f"  Awaiting summary: {counts['awaiting_summary']}")
    click.echo(f"  Awaiting podcast: {counts['awaiting_podcast']}")
    click.echo(f"  Awaiting dispatch: {counts['awaiting_dispatch']}")
    db.close()


# === Feed Management Commands ===


@cli.group()
def feeds():
    """Manage feed subscriptions."""
    pass


@feeds.command("add")
@click.argument("url")
@click.option("--title", "-t", default=None, help="Display title (defaults to the URL)")
@click.option("--description", default=None, help="Feed description")
@click.option("--language", default=None, help="Two-letter language code")
@click.option("--category", "-c", default=None, help="Free-form category")
def feeds_add(
    url: str,
    title: str | None,
    description: str | None,
    language: str | None,
    category: str | None,
):
    """Add a new feed subscription."""
    config = get_config()
    db = get_db(config)

    feed = db.add_feed(url, title or url, description, language, category)
    if feed is None:
        click.echo(f"Error: Feed URL already exists: {url}", err=True)
        raise SystemExit(2)
    click.echo(f"Added: [{feed.id}] {feed.title}")


@feeds.command("list")
@click.option("--active-only", is_flag=True, help="Only show active feeds")
def feeds_list(active_only: bool):
    """List all feed subscriptions."""
    config = get_config()
    db = get_db(config)

    for feed in db.list_feeds(active_only=active_only):
        state = "active" if feed.active else "inactive"
        fetched = feed.last_fetched.strftime("%Y-%m-%d %H:%M") if feed.last_fetched else "never"
        click.echo(f"[{feed.id}] {feed.title} ({state}, last fetched {fetched})")
        click.echo(f"    {feed.url}")


@feeds.command("refresh")
@click.argument("feed_id", type=int)
def feeds_refresh(feed_id: int):
    """Fetch one feed now, even if it is inactive."""
    from quantumwatch.ondemand import refresh_feed

    config = get_config()
    db = get_db(config)
    try:
        new_items = refresh_feed(db, config, feed_id)
    except OnDemandError as e:
        fail(e)
    click.echo(f"Fetched {new_items} new items")


def _set_feed_active(feed_id: int, active: bool):
    config = get_config()
    db = get_db(config)
    if not db.set_feed_active(feed_id, active):
        fail(OnDemandError(OnDemandError.NOT_FOUND, f"Feed {feed_id} not found"))
    click.echo(f"Feed {feed_id} {'activated' if active else 'deactivated'}")


@feeds.command("activate")
@click.argument("feed_id", type=int)
def feeds_activate(feed_id: int):
    """Resume polling a feed."""
    _set_feed_active(feed_id, True)


@feeds.command("deactivate")
@click.argument("feed_id", type=int)
def feeds_deactivate(feed_id: int):
    """Stop polling a feed; its articles are kept."""
    _set_feed_active(feed_id, False)


# === Article Commands ===


@cli.group()
def articles():
    """Browse articles and act on one."""
    pass


@articles.command("list")
@click.option("--feed", "feed_id", type=int, default=None, help="Only articles from this feed")
@click.option("--limit", "-n", type=int, default=20, help="Max articles to show")
def articles_list(feed_id: int | None, limit: int):
    """List articles, newest first. S = summarized, P = podcast, * = bookmarked."""
    config = get_config()
    db = get_db(config)

    for item in db.list_items(feed_id=feed_id, limit=limit):
        flags = "".join([
            "S" if item["has_summary"] else "-",
            "P" if item["has_podcast"] else "-",
            "*" if item["is_bookmarked"] else " ",
        ])
        read = " " if item["is_read"] else "•"
        click.echo(f"{read} [{item['id']}] {flags} {item['title']}")


@articles.command("show")
@click.argument("item_id", type=int)
def articles_show(item_id: int):
    """Show an article with its summary and podcast."""
    config = get_config()
    db = get_db(config)

    item = db.get_item(item_id)
    if item is None:
        fail(OnDemandError(OnDemandError.NOT_FOUND, f"Article {item_id} not found"))

    click.echo(item.title)
    click.echo(f"  Link: {item.link or 'N/A'}")
    if item.published_date:
        click.echo(f"  Published: {item.published_date.strftime('%Y-%m-%d %H:%M')}")
    if item.author:
        click.echo(f"  Author: {item.author}")

    summary = db.get_summary_for_item(item_id)
    if summary:
        click.echo()
        click.echo(f"Summary ({summary.language}):")
        click.echo(summary.summary_text)

    podcast = db.get_podcast_for_item(item_id)
    if podcast:
        click.echo()
        click.echo(f"Podcast: {podcast.audio_file_path} (~{podcast.duration}s)")


@articles.command("read")
@click.argument("item_id", type=int)
@click.option("--unread", is_flag=True, help="Mark as unread instead")
def articles_read(item_id: int, unread: bool):
    """Mark an article as read."""
    config = get_config()
    db = get_db(config)
    if not db.set_item_flag(item_id, "is_read", not unread):
        fail(OnDemandError(OnDemandError.NOT_FOUND, f"Article {item_id} not found"))
    click.echo(f"Article {item_id} marked as {'unread' if unread else 'read'}")


@articles.command("bookmark")
@click.argument("item_id", type=int)
@click.option("--remove", is_flag=True, help="Remove the bookmark instead")
def articles_bookmark(item_id: int, remove: bool):
    """Bookmark an article."""
    config = get_config()
    db = get_db(config)
    if not db.set_item_flag(item_id, "is_bookmarked", not remove):
        fail(OnDemandError(OnDemandError.NOT_FOUND, f"Article {item_id} not found"))
    click.echo(f"Article {item_id} {'unbookmarked' if remove else 'bookmarked'}")


@articles.command("summarize")
@click.argument("item_id", type=int)
def articles_summarize(item_id: int):
    """Summarize an article now (or show its existing summary)."""
    from quantumwatch.ondemand import summarize_item

    config = get_config()
    db = get_db(config)
    try:
        summary, created = summarize_item(db, config, item_id)
    except OnDemandError as e:
        fail(e)

    click.echo(f"{'Created' if created else 'Existing'} summary ({summary.language}):")
    click.echo(summary.summary_text)


@articles.command("podcast")
@click.argument("item_id", type=int)
def articles_podcast(item_id: int):
    """Generate the podcast for an article's summary now."""
    from quantumwatch.ondemand import generate_podcast

    config = get_config()
    db = get_db(config)
    try:
        podcast, created = generate_podcast(db, config, item_id)
    except OnDemandError as e:
        fail(e)

    click.echo(
        f"{'Created' if created else 'Existing'} podcast: "
        f"{podcast.audio_file_path} (~{podcast.duration}s)"
    )


@articles.command("send")
@click.argument("item_id", type=int)
def articles_send(item_id: int):
    """Send an article's summary and podcast to Telegram if not sent yet."""
    from quantumwatch.ondemand import send_item

    config = get_config()
    db = get_db(config)
    try:
        results = send_item(db, config, item_id)
    except OnDemandError as e:
        fail(e)

    for channel, sent in results.items():
        click.echo(f"  {channel}: {'sent' if sent else 'not sent'}")


if __name__ == "__main__":
    cli()
