"""User-triggered actions on a single feed or article.

These reuse the stage runners' handle() so an article summarized on demand
goes through exactly the same checks and writes as one summarized by the
scheduled stage. Failures are reported as OnDemandError with a kind the CLI
turns into an exit code.
"""
import logging
import sqlite3
from contextlib import contextmanager

import requests

from quantumwatch.database import Database
from quantumwatch.errors import CollaboratorError, OnDemandError
from quantumwatch.feed_fetcher import FeedFetcher
from quantumwatch.ingest import IngestStage
from quantumwatch.llm_client import LLMClient
from quantumwatch.models import Item, Podcast, Summary
from quantumwatch.notify import CHANNELS, NotifyStage
from quantumwatch.summarize import SummarizeStage
from quantumwatch.synthesize import SynthesizeStage
from quantumwatch.telegram_client import TelegramClient
from quantumwatch.tts_client import TTSClient

logger = logging.getLogger(__name__)


@contextmanager
def _classify_errors(action: str):
    """Translate collaborator and store failures into OnDemandError."""
    try:
        yield
    except (CollaboratorError, requests.RequestException) as e:
        logger.error(f"{action} failed: {e}")
        raise OnDemandError(OnDemandError.UPSTREAM_UNAVAILABLE, f"{action} failed: {e}")
    except (sqlite3.Error, OSError) as e:
        logger.error(f"{action} failed, storage error: {e}")
        raise OnDemandError(OnDemandError.INTERNAL, f"{action} failed: {e}")


def _require_item(db: Database, item_id: int) -> Item:
    item = db.get_item(item_id)
    if item is None:
        raise OnDemandError(OnDemandError.NOT_FOUND, f"Article {item_id} not found")
    return item


def summarize_item(
    db: Database, config: dict, item_id: int, llm: LLMClient | None = None
) -> tuple[Summary, bool]:
    """Summary for item_id, generating it if needed.

    Returns:
        (summary, created) where created is False for an existing summary
    """
    with _classify_errors(f"Summarizing article {item_id}"):
        item = _require_item(db, item_id)
        existing = db.get_summary_for_item(item_id)
        if existing is not None:
            return existing, False

        stage = SummarizeStage(db, config, llm=llm)
        if not stage.llm.configured:
            raise OnDemandError(
                OnDemandError.UPSTREAM_UNAVAILABLE, "Summary service is not configured"
            )
        summary = stage.handle(item)

        if summary is None:
            # Either nothing to summarize or a concurrent run got there first
            existing = db.get_summary_for_item(item_id)
            if existing is not None:
                return existing, False
            raise OnDemandError(
                OnDemandError.BAD_INPUT, f"Article {item_id} has no content to summarize"
            )
        return summary, True


def generate_podcast(
    db: Database, config: dict, item_id: int, tts: TTSClient | None = None
) -> tuple[Podcast, bool]:
    """Podcast for the summary of item_id, synthesizing it if needed."""
    with _classify_errors(f"Generating podcast for article {item_id}"):
        _require_item(db, item_id)
        existing = db.get_podcast_for_item(item_id)
        if existing is not None:
            return existing, False

        job = db.get_summary_job_for_item(item_id)
        if job is None:
            raise OnDemandError(
                OnDemandError.NOT_FOUND, f"Article {item_id} has no summary yet"
            )

        stage = SynthesizeStage(db, config, tts=tts)
        if not stage.tts.configured:
            raise OnDemandError(
                OnDemandError.UPSTREAM_UNAVAILABLE, "Text-to-speech service is not configured"
            )
        podcast = stage.handle(job)

        if podcast is None:
            podcast = db.get_podcast_for_item(item_id)
            if podcast is None:
                raise OnDemandError(
                    OnDemandError.INTERNAL, f"Podcast for article {item_id} was not recorded"
                )
            return podcast, False
        return podcast, True


def send_item(
    db: Database, config: dict, item_id: int, messenger: TelegramClient | None = None
) -> dict[str, bool]:
    """Send the article's summary and podcast if not dispatched yet.

    A failure on one channel is logged and reported as not sent; it does not
    prevent the other channel.

    Returns:
        {"summary": sent, "podcast": sent}
    """
    with _classify_errors(f"Sending article {item_id}"):
        _require_item(db, item_id)
        stage = NotifyStage(db, config, messenger=messenger)
        if not stage.messenger.configured:
            raise OnDemandError(
                OnDemandError.UPSTREAM_UNAVAILABLE, "Telegram service is not configured"
            )

        results = {}
        for channel in CHANNELS:
            results[channel] = False
            pending = db.get_pending_dispatches(channel, 1, item_id=item_id)
            if not pending:
                continue
            try:
                results[channel] = stage.handle(pending[0]) is not None
            except CollaboratorError as e:
                logger.error(f"Error sending {channel} for article {item_id}: {e}")
        return results


def refresh_feed(
    db: Database, config: dict, feed_id: int, fetcher: FeedFetcher | None = None
) -> int:
    """Ingest one feed now, active or not. Returns the number of new items."""
    with _classify_errors(f"Refreshing feed {feed_id}"):
        feed = db.get_feed(feed_id)
        if feed is None:
            raise OnDemandError(OnDemandError.NOT_FOUND, f"Feed {feed_id} not found")
        outcome = IngestStage(db, config, fetcher=fetcher).handle(feed)
        return outcome.new_items
