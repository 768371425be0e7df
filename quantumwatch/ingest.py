"""Ingest stage: poll active feeds and store entries not seen before."""
from dataclasses import dataclass

from quantumwatch.database import Database
from quantumwatch.feed_fetcher import FeedFetcher, normalize_entry
from quantumwatch.models import Feed
from quantumwatch.stage_runner import StageResult, StageRunner


@dataclass
class IngestOutcome:
    """Per-feed ingestion counts."""

    feed_id: int
    entries: int
    new_items: int
    failed_entries: int = 0


class IngestStage(StageRunner):
    name = "ingest"
    log_prefix = "[INGEST]"

    def __init__(self, db: Database, config: dict, fetcher: FeedFetcher | None = None, **kwargs):
        super().__init__(db, config, **kwargs)
        self.fetcher = fetcher or FeedFetcher(config)

    def select_pending(self, limit: int | None) -> list[Feed]:
        feeds = self.db.get_active_feeds()
        return feeds if limit is None else feeds[:limit]

    def describe(self, feed: Feed) -> str:
        return f"feed {feed.id} ({feed.title or feed.url})"

    def process_one(self, feed: Feed) -> list:
        self.logger.info(f"{self.log_prefix} Fetching feed: {feed.title} ({feed.url})")
        return self.fetcher.fetch_entries(feed.url)

    def persist_outcome(self, feed: Feed, entries: list) -> IngestOutcome:
        self.db.update_last_fetched(feed.id)
        outcome = IngestOutcome(feed_id=feed.id, entries=len(entries), new_items=0)

        for entry in entries:
            title = entry.get("title") or "?"
            try:
                new_item = normalize_entry(entry)
                if new_item is None:
                    self.logger.warning(
                        f"{self.log_prefix} Skipping entry without guid or link in feed {feed.id}: {title}"
                    )
                    continue
                if self.db.item_exists(feed.id, new_item.guid):
                    continue
                if self.db.insert_item(feed.id, new_item) is not None:
                    outcome.new_items += 1
                    self.logger.debug(f"{self.log_prefix} Added new item: {new_item.title}")
            except Exception as e:
                outcome.failed_entries += 1
                self.logger.error(
                    f"{self.log_prefix} Error processing item \"{title}\" for feed {feed.id}: {e}"
                )

        self.logger.info(
            f"{self.log_prefix} ✓ {feed.title or feed.url}: {outcome.new_items} new of {outcome.entries} entries"
        )
        return outcome


def new_items_by_feed(result: StageResult) -> dict[int, int]:
    """Count of newly inserted items per feed id for an ingest run."""
    return {outcome.feed_id: outcome.new_items for outcome in result.records}
