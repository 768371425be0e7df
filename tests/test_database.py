"""Tests for database module."""
import tempfile
from datetime import datetime, timezone
from pathlib import Path


def _new_item(guid="guid-1", title="Qubit news", published=None):
    from quantumwatch.models import NewItem

    return NewItem(
        guid=guid,
        title=title,
        link=f"https://example.com/{guid}",
        description="desc",
        content="content",
        author=None,
        published_date=published or datetime(2024, 1, 1, tzinfo=timezone.utc),
        categories={"physics", "quantum"},
    )


def test_database_creates_tables():
    """Database should create all required tables on init."""
    from quantumwatch.database import Database

    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.db")

        tables = db.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
        table_names = {row[0] for row in tables}

        assert {"feeds", "items", "summaries", "podcasts", "dispatch_log", "stage_runs"} <= table_names


def test_add_feed_rejects_duplicate_url():
    from quantumwatch.database import Database

    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.db")

        feed = db.add_feed("https://example.com/feed", "Test Feed")
        assert feed is not None
        assert feed.active is True
        assert feed.last_fetched is None

        assert db.add_feed("https://example.com/feed", "Other title") is None
        assert len(db.list_feeds()) == 1


def test_inactive_feeds_not_returned_as_active():
    from quantumwatch.database import Database

    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.db")
        a = db.add_feed("https://a.example.com/rss", "A")
        b = db.add_feed("https://b.example.com/rss", "B")

        assert db.set_feed_active(b.id, False) is True
        assert [f.id for f in db.get_active_feeds()] == [a.id]
        assert db.set_feed_active(999, False) is False


def test_insert_item_unique_per_feed_and_guid():
    """The same guid can be inserted once per feed."""
    from quantumwatch.database import Database

    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.db")
        a = db.add_feed("https://a.example.com/rss", "A")
        b = db.add_feed("https://b.example.com/rss", "B")

        first = db.insert_item(a.id, _new_item())
        assert first is not None
        assert db.insert_item(a.id, _new_item()) is None
        assert db.insert_item(b.id, _new_item()) is not None

        assert db.item_exists(a.id, "guid-1") is True
        assert db.count_items() == 2

        item = db.get_item(first)
        assert item.categories == {"physics", "quantum"}
        assert item.published_date == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert item.is_read is False


def test_set_item_flag():
    from quantumwatch.database import Database

    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.db")
        feed = db.add_feed("https://a.example.com/rss", "A")
        item_id = db.insert_item(feed.id, _new_item())

        assert db.set_item_flag(item_id, "is_bookmarked", True) is True
        assert db.get_item(item_id).is_bookmarked is True
        assert db.set_item_flag(12345, "is_read", True) is False


def test_at_most_one_summary_per_item():
    from quantumwatch.database import Database

    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.db")
        feed = db.add_feed("https://a.example.com/rss", "A")
        item_id = db.insert_item(feed.id, _new_item())

        summary = db.insert_summary(item_id, "first", "en")
        assert summary is not None
        assert db.insert_summary(item_id, "second", "en") is None

        assert db.get_summary_for_item(item_id).summary_text == "first"
        count = db.execute("SELECT COUNT(*) FROM summaries").fetchone()[0]
        assert count == 1


def test_items_without_summary_newest_first():
    from quantumwatch.database import Database

    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.db")
        feed = db.add_feed("https://a.example.com/rss", "A")
        old = db.insert_item(feed.id, _new_item("old", published=datetime(2023, 1, 1, tzinfo=timezone.utc)))
        new = db.insert_item(feed.id, _new_item("new", published=datetime(2024, 6, 1, tzinfo=timezone.utc)))
        done = db.insert_item(feed.id, _new_item("done"))
        db.insert_summary(done, "text", "en")

        pending = db.get_items_without_summary(limit=10)

        assert [item.id for item in pending] == [new, old]
        assert len(db.get_items_without_summary(limit=1)) == 1


def test_at_most_one_podcast_per_summary():
    from quantumwatch.database import Database

    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.db")
        feed = db.add_feed("https://a.example.com/rss", "A")
        item_id = db.insert_item(feed.id, _new_item())
        summary = db.insert_summary(item_id, "text", "en")

        assert db.get_summaries_without_podcast(10)[0].summary_id == summary.id

        podcast = db.insert_podcast(item_id, summary.id, "/podcasts/a/x.mp3", 10, "voice")
        assert podcast is not None
        assert db.insert_podcast(item_id, summary.id, "/podcasts/a/y.mp3", 10, "voice") is None

        assert db.has_podcast(summary.id) is True
        assert db.get_summaries_without_podcast(10) == []
        assert db.get_podcast_for_item(item_id).audio_file_path == "/podcasts/a/x.mp3"


def test_dispatch_recorded_once_per_channel():
    from quantumwatch.database import Database

    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.db")
        feed = db.add_feed("https://a.example.com/rss", "A")
        item_id = db.insert_item(feed.id, _new_item())
        summary = db.insert_summary(item_id, "text", "en")
        podcast = db.insert_podcast(item_id, summary.id, "/podcasts/a/x.mp3", 10, "voice")

        pending = db.get_pending_dispatches("summary", 10)
        assert [d.entity_id for d in pending] == [summary.id]
        assert pending[0].summary_text == "text"
        assert pending[0].feed_title == "A"

        assert db.record_dispatch("summary", summary.id, item_id) is True
        assert db.record_dispatch("summary", summary.id, item_id) is False
        assert db.is_dispatched("summary", summary.id) is True
        assert db.get_pending_dispatches("summary", 10) == []

        # The podcast channel is tracked separately
        assert db.is_dispatched("podcast", podcast.id) is False
        podcasts = db.get_pending_dispatches("podcast", 10, item_id=item_id)
        assert [d.audio_file_path for d in podcasts] == ["/podcasts/a/x.mp3"]


def test_record_run_start_and_complete():
    """Stage run should be trackable from start to completion."""
    from quantumwatch.database import Database

    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.db")

        run_id = db.record_run_start("summarize")
        assert db.get_running_run("summarize", 60)["id"] == run_id
        assert db.get_running_run("ingest", 60) is None

        db.record_run_selected(run_id, 5)
        db.record_run_complete(run_id, processed=4, skipped=0, failed=1)

        assert db.get_running_run("summarize", 60) is None
        last = db.get_last_runs()["summarize"]
        assert last["status"] == "completed"
        assert last["items_selected"] == 5
        assert last["items_failed"] == 1
        assert db.get_last_successful_run("summarize") is not None


def test_record_run_start_marks_stale_runs_failed():
    from quantumwatch.database import Database

    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.db")

        stale = db.record_run_start("ingest")
        db.record_run_start("ingest")

        row = db.execute("SELECT status FROM stage_runs WHERE id = ?", (stale,)).fetchone()
        assert row["status"] == "failed"


def test_pipeline_counts():
    from quantumwatch.database import Database

    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.db")
        feed = db.add_feed("https://a.example.com/rss", "A")
        first = db.insert_item(feed.id, _new_item("one"))
        db.insert_item(feed.id, _new_item("two"))
        summary = db.insert_summary(first, "text", "en")

        counts = db.get_pipeline_counts()

        assert counts == {
            "feeds_active": 1,
            "items": 2,
            "awaiting_summary": 1,
            "awaiting_podcast": 1,
            "awaiting_dispatch": 1,
        }
        db.record_dispatch("summary", summary.id, first)
        assert db.get_pipeline_counts()["awaiting_dispatch"] == 0


def test_format_timestamp_converts_timezone():
    from quantumwatch.database import format_timestamp

    assert format_timestamp("2024-01-15 12:00:00") == "2024-01-15 12:00:00"
    assert format_timestamp("2024-01-15 12:00:00", "Europe/Paris") == "2024-01-15 13:00:00"
    assert format_timestamp(None) == "N/A"
