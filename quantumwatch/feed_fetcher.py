"""Download and parse RSS/Atom feeds, normalize entries for storage."""
import calendar
import logging
from datetime import datetime, timezone

import feedparser
import requests

from quantumwatch.errors import CollaboratorError
from quantumwatch.models import NewItem

logger = logging.getLogger(__name__)

NO_TITLE = "No Title"


class FeedFetcher:
    """Fetch feed documents over HTTP and hand them to feedparser."""

    def __init__(self, config: dict):
        self.timeout = config["http"]["timeout"]
        self.user_agent = config["http"]["user_agent"]

    def fetch_entries(self, url: str) -> list:
        """Return the parsed entries of the feed at url.

        Raises:
            CollaboratorError: network failure, non-2xx status, or a
                document feedparser could not make sense of
        """
        try:
            response = requests.get(
                url,
                timeout=self.timeout,
                headers={"User-Agent": self.user_agent},
            )
            response.raise_for_status()
        except requests.RequestException as e:
            status = getattr(getattr(e, "response", None), "status_code", None)
            raise CollaboratorError("feed", f"{url}: {e}", status=status)

        parsed = feedparser.parse(response.content)
        if parsed.bozo and not parsed.entries:
            raise CollaboratorError(
                "feed", f"{url}: unparseable document ({parsed.get('bozo_exception')})"
            )
        return parsed.entries


def _parse_date(entry) -> datetime:
    """Entry publication time in UTC, now when missing or unparseable."""
    for key in ("published_parsed", "updated_parsed"):
        parsed = entry.get(key)
        if parsed:
            try:
                return datetime.fromtimestamp(calendar.timegm(parsed), tz=timezone.utc)
            except (TypeError, ValueError, OverflowError):
                continue
    return datetime.now(timezone.utc)


def _entry_content(entry) -> str:
    content = entry.get("content")
    if content:
        # feedparser puts content:encoded and atom:content here
        return content[0].get("value") or ""
    return ""


def normalize_entry(entry) -> NewItem | None:
    """Map a feedparser entry to a NewItem.

    Returns None when the entry has neither a guid nor a link, since there
    is then nothing to deduplicate on.
    """
    link = entry.get("link") or None
    guid = entry.get("id") or link
    if not guid:
        return None

    categories = {t.get("term") for t in entry.get("tags") or [] if t.get("term")}

    return NewItem(
        guid=guid,
        title=entry.get("title") or NO_TITLE,
        link=link,
        description=entry.get("summary") or "",
        content=_entry_content(entry),
        author=entry.get("author") or None,
        published_date=_parse_date(entry),
        categories=categories,
    )
