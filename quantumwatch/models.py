"""Data models for the QuantumWatch pipeline."""
from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class Feed:
    """Feed subscription."""

    id: int
    url: str
    title: str | None
    active: bool = True
    last_fetched: datetime | None = None
    description: str | None = None
    language: str | None = None
    category: str | None = None


@dataclass
class Item:
    """Ingested feed entry."""

    id: int
    feed_id: int
    guid: str
    title: str
    link: str | None
    description: str
    content: str
    author: str | None
    published_date: datetime
    categories: set[str] = field(default_factory=set)
    is_read: bool = False
    is_bookmarked: bool = False


@dataclass
class NewItem:
    """Normalized feed entry waiting to be inserted."""

    guid: str
    title: str
    link: str | None
    description: str
    content: str
    author: str | None
    published_date: datetime
    categories: set[str] = field(default_factory=set)


@dataclass
class Summary:
    """Generated summary of an item."""

    id: int
    item_id: int
    summary_text: str
    language: str
    created_at: datetime | None = None


@dataclass
class Podcast:
    """Synthesized audio for a summary."""

    id: int
    item_id: int
    summary_id: int
    audio_file_path: str
    duration: int
    voice_id: str
    created_at: datetime | None = None


@dataclass
class SummaryJob:
    """Summary joined with its item and feed, as the synthesize stage sees it."""

    summary_id: int
    item_id: int
    summary_text: str
    language: str
    item_title: str | None
    feed_title: str | None


@dataclass
class Dispatch:
    """Summary or podcast waiting to be forwarded to the messaging channel.

    ``entity_id`` is the summary id for the ``summary`` channel and the
    podcast id for the ``podcast`` channel.
    """

    channel: str  # summary, podcast
    entity_id: int
    item_id: int
    item_title: str
    item_link: str | None
    feed_title: str | None
    summary_text: str | None = None
    audio_file_path: str | None = None
