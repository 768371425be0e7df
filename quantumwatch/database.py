"""SQLite store for feeds, items, summaries, podcasts, dispatches and stage runs."""
import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from zoneinfo import ZoneInfo

from quantumwatch.models import Dispatch, Feed, Item, NewItem, Podcast, Summary, SummaryJob


def format_timestamp(utc_str: str | None, tz_name: str = "UTC") -> str:
    """Convert a UTC timestamp string from SQLite to local time for display.

    Args:
        utc_str: UTC timestamp as stored by CURRENT_TIMESTAMP
        tz_name: Target timezone

    Returns:
        Formatted string in local time: 'YYYY-MM-DD HH:MM:SS'
    """
    if not utc_str:
        return "N/A"

    utc_dt = datetime.fromisoformat(utc_str.replace(" ", "T"))
    if utc_dt.tzinfo is None:
        utc_dt = utc_dt.replace(tzinfo=ZoneInfo("UTC"))
    local_dt = utc_dt.astimezone(ZoneInfo(tz_name))

    return local_dt.strftime("%Y-%m-%d %H:%M:%S")


def _to_utc_iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="seconds")


def _parse_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    dt = datetime.fromisoformat(value.replace(" ", "T"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class Database:
    """SQLite database wrapper for pipeline state."""

    SCHEMA = """
    -- Feed subscriptions
    CREATE TABLE IF NOT EXISTS feeds (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        url TEXT UNIQUE NOT NULL,
        title TEXT,
        description TEXT,
        language TEXT,
        category TEXT,
        active BOOLEAN NOT NULL DEFAULT 1,
        last_fetched TIMESTAMP,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );

    -- Ingested entries, deduplicated per feed by guid (or link)
    CREATE TABLE IF NOT EXISTS items (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        feed_id INTEGER NOT NULL,
        guid TEXT NOT NULL,
        title TEXT NOT NULL,
        link TEXT,
        description TEXT NOT NULL DEFAULT '',
        content TEXT NOT NULL DEFAULT '',
        author TEXT,
        published_date TIMESTAMP NOT NULL,
        categories TEXT NOT NULL DEFAULT '[]',
        is_read BOOLEAN NOT NULL DEFAULT 0,
        is_bookmarked BOOLEAN NOT NULL DEFAULT 0,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (feed_id, guid),
        FOREIGN KEY (feed_id) REFERENCES feeds(id)
    );

    -- At most one summary per item
    CREATE TABLE IF NOT EXISTS summaries (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        item_id INTEGER UNIQUE NOT NULL,
        summary_text TEXT NOT NULL,
        language TEXT NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (item_id) REFERENCES items(id)
    );

    -- At most one podcast per summary
    CREATE TABLE IF NOT EXISTS podcasts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        item_id INTEGER NOT NULL,
        summary_id INTEGER UNIQUE NOT NULL,
        audio_file_path TEXT NOT NULL,
        duration INTEGER NOT NULL,
        voice_id TEXT NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (item_id) REFERENCES items(id),
        FOREIGN KEY (summary_id) REFERENCES summaries(id)
    );

    -- What has already been forwarded to the messaging channel
    CREATE TABLE IF NOT EXISTS dispatch_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        channel_type TEXT NOT NULL CHECK (channel_type IN ('summary', 'podcast')),
        summary_id INTEGER,
        podcast_id INTEGER,
        item_id INTEGER NOT NULL,
        sent_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (channel_type, summary_id),
        UNIQUE (channel_type, podcast_id),
        CHECK ((summary_id IS NULL) != (podcast_id IS NULL)),
        FOREIGN KEY (summary_id) REFERENCES summaries(id),
        FOREIGN KEY (podcast_id) REFERENCES podcasts(id),
        FOREIGN KEY (item_id) REFERENCES items(id)
    );

    -- Stage run history (also serves as the per-stage lock)
    CREATE TABLE IF NOT EXISTS stage_runs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        stage TEXT NOT NULL,
        started_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        completed_at TIMESTAMP,
        items_selected INTEGER DEFAULT 0,
        items_processed INTEGER DEFAULT 0,
        items_skipped INTEGER DEFAULT 0,
        items_failed INTEGER DEFAULT 0,
        status TEXT CHECK (status IN ('running', 'completed', 'failed'))
    );

    CREATE INDEX IF NOT EXISTS idx_items_published ON items(published_date);
    CREATE INDEX IF NOT EXISTS idx_summaries_created ON summaries(created_at);
    CREATE INDEX IF NOT EXISTS idx_podcasts_created ON podcasts(created_at);
    CREATE INDEX IF NOT EXISTS idx_stage_runs_stage ON stage_runs(stage, status);
    """

    def __init__(self, db_path: Path):
        """Initialize database, creating tables if needed."""
        self.db_path = db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(db_path, timeout=30)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self._init_schema()

    def _init_schema(self) -> None:
        """Create tables if they don't exist."""
        self.conn.executescript(self.SCHEMA)
        self.conn.commit()

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        """Execute SQL and return cursor."""
        return self.conn.execute(sql, params)

    def commit(self) -> None:
        """Commit current transaction."""
        self.conn.commit()

    def close(self) -> None:
        """Close database connection."""
        self.conn.close()

    def _insert(self, sql: str, params: tuple) -> int | None:
        """Run an ``ON CONFLICT DO NOTHING`` insert; return the new id or None."""
        try:
            cursor = self.execute(sql, params)
            self.commit()
        except sqlite3.Error:
            self.conn.rollback()
            raise
        if cursor.rowcount != 1:
            return None
        return cursor.lastrowid

    # === Feeds ===

    @staticmethod
    def _row_to_feed(row: sqlite3.Row) -> Feed:
        return Feed(
            id=row["id"],
            url=row["url"],
            title=row["title"],
            active=bool(row["active"]),
            last_fetched=_parse_ts(row["last_fetched"]),
            description=row["description"],
            language=row["language"],
            category=row["category"],
        )

    def add_feed(
        self,
        url: str,
        title: str | None = None,
        description: str | None = None,
        language: str | None = None,
        category: str | None = None,
    ) -> Feed | None:
        """Subscribe to a feed. Returns None if the URL is already subscribed."""
        feed_id = self._insert(
            """INSERT INTO feeds (url, title, description, language, category, active)
               VALUES (?, ?, ?, ?, ?, 1)
               ON CONFLICT (url) DO NOTHING""",
            (url, title, description, language, category),
        )
        if feed_id is None:
            return None
        return self.get_feed(feed_id)

    def get_feed(self, feed_id: int) -> Feed | None:
        row = self.execute("SELECT * FROM feeds WHERE id = ?", (feed_id,)).fetchone()
        return self._row_to_feed(row) if row else None

    def list_feeds(self, active_only: bool = False) -> list[Feed]:
        sql = "SELECT * FROM feeds"
        if active_only:
            sql += " WHERE active = 1"
        sql += " ORDER BY title ASC, id ASC"
        return [self._row_to_feed(row) for row in self.execute(sql).fetchall()]

    def get_active_feeds(self) -> list[Feed]:
        return self.list_feeds(active_only=True)

    def set_feed_active(self, feed_id: int, active: bool) -> bool:
        cursor = self.execute(
            "UPDATE feeds SET active = ? WHERE id = ?", (1 if active else 0, feed_id)
        )
        self.commit()
        return cursor.rowcount == 1

    def update_last_fetched(self, feed_id: int, when: datetime | None = None) -> None:
        when = when or datetime.now(timezone.utc)
        self.execute(
            "UPDATE feeds SET last_fetched = ? WHERE id = ?",
            (_to_utc_iso(when), feed_id),
        )
        self.commit()

    # === Items ===

    @staticmethod
    def _row_to_item(row: sqlite3.Row) -> Item:
        return Item(
            id=row["id"],
            feed_id=row["feed_id"],
            guid=row["guid"],
            title=row["title"],
            link=row["link"],
            description=row["description"],
            content=row["content"],
            author=row["author"],
            published_date=_parse_ts(row["published_date"]),
            categories=set(json.loads(row["categories"] or "[]")),
            is_read=bool(row["is_read"]),
            is_bookmarked=bool(row["is_bookmarked"]),
        )

    def item_exists(self, feed_id: int, guid: str) -> bool:
        """Check if an entry with this dedupe key was already ingested for the feed."""
        cursor = self.execute(
            "SELECT 1 FROM items WHERE feed_id = ? AND guid = ?", (feed_id, guid)
        )
        return cursor.fetchone() is not None

    def insert_item(self, feed_id: int, item: NewItem) -> int | None:
        """Insert a normalized entry. Returns None if (feed_id, guid) exists."""
        return self._insert(
            """INSERT INTO items
               (feed_id, guid, title, link, description, content, author,
                published_date, categories)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT (feed_id, guid) DO NOTHING""",
            (
                feed_id,
                item.guid,
                item.title,
                item.link,
                item.description,
                item.content,
                item.author,
                _to_utc_iso(item.published_date),
                json.dumps(sorted(item.categories)),
            ),
        )

    def get_item(self, item_id: int) -> Item | None:
        row = self.execute("SELECT * FROM items WHERE id = ?", (item_id,)).fetchone()
        return self._row_to_item(row) if row else None

    def count_items(self, feed_id: int | None = None) -> int:
        if feed_id is None:
            row = self.execute("SELECT COUNT(*) AS count FROM items").fetchone()
        else:
            row = self.execute(
                "SELECT COUNT(*) AS count FROM items WHERE feed_id = ?", (feed_id,)
            ).fetchone()
        return row["count"]

    def list_items(self, feed_id: int | None = None, limit: int | None = None) -> list[dict]:
        """List items newest first, with has_summary/has_podcast flags."""
        sql = """
            SELECT i.id, i.feed_id, i.title, i.link, i.author, i.published_date,
                   i.is_read, i.is_bookmarked,
                   EXISTS (SELECT 1 FROM summaries s WHERE s.item_id = i.id) AS has_summary,
                   EXISTS (SELECT 1 FROM podcasts p WHERE p.item_id = i.id) AS has_podcast
            FROM items i
        """
        params: list = []
        if feed_id is not None:
            sql += " WHERE i.feed_id = ?"
            params.append(feed_id)
        sql += " ORDER BY i.published_date DESC, i.id DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [dict(row) for row in self.execute(sql, tuple(params)).fetchall()]

    def set_item_flag(self, item_id: int, flag: str, value: bool) -> bool:
        """Set is_read or is_bookmarked. Returns False if the item doesn't exist."""
        if flag not in ("is_read", "is_bookmarked"):
            raise ValueError(f"Unknown item flag: {flag}")
        cursor = self.execute(
            f"UPDATE items SET {flag} = ? WHERE id = ?", (1 if value else 0, item_id)
        )
        self.commit()
        return cursor.rowcount == 1

    def get_items_without_summary(self, limit: int) -> list[Item]:
        """Items with no summary yet, most recently published first."""
        cursor = self.execute(
            """SELECT i.* FROM items i
               LEFT JOIN summaries s ON s.item_id = i.id
               WHERE s.id IS NULL
               ORDER BY i.published_date DESC, i.id DESC
               LIMIT ?""",
            (limit,),
        )
        return [self._row_to_item(row) for row in cursor.fetchall()]

    # === Summaries ===

    @staticmethod
    def _row_to_summary(row: sqlite3.Row) -> Summary:
        return Summary(
            id=row["id"],
            item_id=row["item_id"],
            summary_text=row["summary_text"],
            language=row["language"],
            created_at=_parse_ts(row["created_at"]),
        )

    def has_summary(self, item_id: int) -> bool:
        cursor = self.execute("SELECT 1 FROM summaries WHERE item_id = ?", (item_id,))
        return cursor.fetchone() is not None

    def get_summary_for_item(self, item_id: int) -> Summary | None:
        row = self.execute(
            "SELECT * FROM summaries WHERE item_id = ?", (item_id,)
        ).fetchone()
        return self._row_to_summary(row) if row else None

    def insert_summary(self, item_id: int, summary_text: str, language: str) -> Summary | None:
        """Insert a summary. Returns None if the item already has one."""
        summary_id = self._insert(
            """INSERT INTO summaries (item_id, summary_text, language)
               VALUES (?, ?, ?)
               ON CONFLICT (item_id) DO NOTHING""",
            (item_id, summary_text, language),
        )
        if summary_id is None:
            return None
        row = self.execute("SELECT * FROM summaries WHERE id = ?", (summary_id,)).fetchone()
        return self._row_to_summary(row)

    _SUMMARY_JOB_SQL = """
        SELECT s.id AS summary_id, s.item_id, s.summary_text, s.language,
               i.title AS item_title, f.title AS feed_title
        FROM summaries s
        JOIN items i ON s.item_id = i.id
        JOIN feeds f ON i.feed_id = f.id
    """

    @staticmethod
    def _row_to_summary_job(row: sqlite3.Row) -> SummaryJob:
        return SummaryJob(
            summary_id=row["summary_id"],
            item_id=row["item_id"],
            summary_text=row["summary_text"],
            language=row["language"],
            item_title=row["item_title"],
            feed_title=row["feed_title"],
        )

    def get_summaries_without_podcast(self, limit: int) -> list[SummaryJob]:
        """Summaries with no podcast yet, oldest first, with item/feed titles."""
        cursor = self.execute(
            self._SUMMARY_JOB_SQL
            + """ LEFT JOIN podcasts p ON p.summary_id = s.id
                  WHERE p.id IS NULL
                  ORDER BY s.created_at ASC, s.id ASC
                  LIMIT ?""",
            (limit,),
        )
        return [self._row_to_summary_job(row) for row in cursor.fetchall()]

    def get_summary_job_for_item(self, item_id: int) -> SummaryJob | None:
        row = self.execute(
            self._SUMMARY_JOB_SQL + " WHERE s.item_id = ?", (item_id,)
        ).fetchone()
        return self._row_to_summary_job(row) if row else None

    # === Podcasts ===

    @staticmethod
    def _row_to_podcast(row: sqlite3.Row) -> Podcast:
        return Podcast(
            id=row["id"],
            item_id=row["item_id"],
            summary_id=row["summary_id"],
            audio_file_path=row["audio_file_path"],
            duration=row["duration"],
            voice_id=row["voice_id"],
            created_at=_parse_ts(row["created_at"]),
        )

    def has_podcast(self, summary_id: int) -> bool:
        cursor = self.execute("SELECT 1 FROM podcasts WHERE summary_id = ?", (summary_id,))
        return cursor.fetchone() is not None

    def audio_path_in_use(self, audio_file_path: str) -> bool:
        cursor = self.execute(
            "SELECT 1 FROM podcasts WHERE audio_file_path = ?", (audio_file_path,)
        )
        return cursor.fetchone() is not None

    def get_podcast_for_item(self, item_id: int) -> Podcast | None:
        row = self.execute(
            "SELECT * FROM podcasts WHERE item_id = ? ORDER BY created_at DESC, id DESC LIMIT 1",
            (item_id,),
        ).fetchone()
        return self._row_to_podcast(row) if row else None

    def insert_podcast(
        self,
        item_id: int,
        summary_id: int,
        audio_file_path: str,
        duration: int,
        voice_id: str,
    ) -> Podcast | None:
        """Insert a podcast. Returns None if the summary already has one."""
        podcast_id = self._insert(
            """INSERT INTO podcasts (item_id, summary_id, audio_file_path, duration, voice_id)
               VALUES (?, ?, ?, ?, ?)
               ON CONFLICT (summary_id) DO NOTHING""",
            (item_id, summary_id, audio_file_path, duration, voice_id),
        )
        if podcast_id is None:
            return None
        row = self.execute("SELECT * FROM podcasts WHERE id = ?", (podcast_id,)).fetchone()
        return self._row_to_podcast(row)

    # === Dispatch log ===

    def get_pending_dispatches(
        self, channel: str, limit: int, item_id: int | None = None
    ) -> list[Dispatch]:
        """Summaries or podcasts not yet forwarded on channel, newest first."""
        if channel == "summary":
            sql = """
                SELECT s.id AS entity_id, s.summary_text, NULL AS audio_file_path,
                       i.id AS item_id, i.title AS item_title, i.link AS item_link,
                       f.title AS feed_title
                FROM summaries s
                JOIN items i ON s.item_id = i.id
                JOIN feeds f ON i.feed_id = f.id
                WHERE NOT EXISTS (
                    SELECT 1 FROM dispatch_log d
                    WHERE d.channel_type = 'summary' AND d.summary_id = s.id
                )
            """
            order = " ORDER BY s.created_at DESC, s.id DESC"
        elif channel == "podcast":
            sql = """
                SELECT p.id AS entity_id, NULL AS summary_text, p.audio_file_path,
                       i.id AS item_id, i.title AS item_title, i.link AS item_link,
                       f.title AS feed_title
                FROM podcasts p
                JOIN items i ON p.item_id = i.id
                JOIN feeds f ON i.feed_id = f.id
                WHERE NOT EXISTS (
                    SELECT 1 FROM dispatch_log d
                    WHERE d.channel_type = 'podcast' AND d.podcast_id = p.id
                )
            """
            order = " ORDER BY p.created_at DESC, p.id DESC"
        else:
            raise ValueError(f"Unknown dispatch channel: {channel}")

        params: list = []
        if item_id is not None:
            sql += " AND i.id = ?"
            params.append(item_id)
        sql += order + " LIMIT ?"
        params.append(limit)

        return [
            Dispatch(
                channel=channel,
                entity_id=row["entity_id"],
                item_id=row["item_id"],
                item_title=row["item_title"],
                item_link=row["item_link"],
                feed_title=row["feed_title"],
                summary_text=row["summary_text"],
                audio_file_path=row["audio_file_path"],
            )
            for row in self.execute(sql, tuple(params)).fetchall()
        ]

    def is_dispatched(self, channel: str, entity_id: int) -> bool:
        column = "summary_id" if channel == "summary" else "podcast_id"
        cursor = self.execute(
            f"SELECT 1 FROM dispatch_log WHERE channel_type = ? AND {column} = ?",
            (channel, entity_id),
        )
        return cursor.fetchone() is not None

    def record_dispatch(self, channel: str, entity_id: int, item_id: int) -> bool:
        """Log a successful dispatch. Returns False if it was already logged."""
        if channel == "summary":
            summary_id, podcast_id = entity_id, None
            conflict = "(channel_type, summary_id)"
        elif channel == "podcast":
            summary_id, podcast_id = None, entity_id
            conflict = "(channel_type, podcast_id)"
        else:
            raise ValueError(f"Unknown dispatch channel: {channel}")

        row_id = self._insert(
            f"""INSERT INTO dispatch_log (channel_type, summary_id, podcast_id, item_id)
                VALUES (?, ?, ?, ?)
                ON CONFLICT {conflict} DO NOTHING""",
            (channel, summary_id, podcast_id, item_id),
        )
        return row_id is not None

    # === Stage runs ===

    def get_running_run(self, stage: str, within_minutes: int) -> sqlite3.Row | None:
        """Most recent 'running' row for stage started within the lock window."""
        cursor = self.execute(
            """SELECT * FROM stage_runs
               WHERE stage = ? AND status = 'running'
                 AND started_at >= datetime('now', '-' || ? || ' minutes')
               ORDER BY id DESC LIMIT 1""",
            (stage, within_minutes),
        )
        return cursor.fetchone()

    def record_run_start(self, stage: str) -> int:
        """Start a new run of stage, return run_id.

        Also cleans up stale 'running' rows of the same stage left behind by
        interrupted executions.
        """
        self.execute(
            """UPDATE stage_runs
               SET status = 'failed',
                   completed_at = CURRENT_TIMESTAMP
               WHERE stage = ? AND status = 'running'""",
            (stage,),
        )

        cursor = self.execute(
            "INSERT INTO stage_runs (stage, status) VALUES (?, ?)",
            (stage, "running"),
        )
        self.commit()
        return cursor.lastrowid

    def record_run_selected(self, run_id: int, selected: int) -> None:
        self.execute(
            "UPDATE stage_runs SET items_selected = ? WHERE id = ?", (selected, run_id)
        )
        self.commit()

    def record_run_complete(
        self, run_id: int, processed: int, skipped: int, failed: int
    ) -> None:
        """Mark stage run as complete with stats."""
        self.execute(
            """UPDATE stage_runs
               SET completed_at = CURRENT_TIMESTAMP,
                   items_processed = ?,
                   items_skipped = ?,
                   items_failed = ?,
                   status = ?
               WHERE id = ?""",
            (processed, skipped, failed, "completed", run_id),
        )
        self.commit()

    def record_run_failed(self, run_id: int) -> None:
        self.execute(
            """UPDATE stage_runs
               SET completed_at = CURRENT_TIMESTAMP, status = 'failed'
               WHERE id = ?""",
            (run_id,),
        )
        self.commit()

    def get_last_runs(self) -> dict[str, dict]:
        """Most recent run of each stage, keyed by stage name."""
        cursor = self.execute(
            """SELECT * FROM stage_runs
               WHERE id IN (SELECT MAX(id) FROM stage_runs GROUP BY stage)
               ORDER BY stage"""
        )
        return {row["stage"]: dict(row) for row in cursor.fetchall()}

    def get_last_successful_run(self, stage: str) -> datetime | None:
        """Get timestamp of last completed run of stage."""
        cursor = self.execute(
            """SELECT completed_at FROM stage_runs
               WHERE stage = ? AND status = 'completed'
               ORDER BY completed_at DESC LIMIT 1""",
            (stage,),
        )
        row = cursor.fetchone()
        if row and row["completed_at"]:
            return datetime.fromisoformat(row["completed_at"])
        return None

    def get_pipeline_counts(self) -> dict[str, int]:
        """Backlog sizes for each stage."""
        return {
            "feeds_active": self.execute(
                "SELECT COUNT(*) FROM feeds WHERE active = 1"
            ).fetchone()[0],
            "items": self.execute("SELECT COUNT(*) FROM items").fetchone()[0],
            "awaiting_summary": self.execute(
                """SELECT COUNT(*) FROM items i
                   WHERE NOT EXISTS (SELECT 1 FROM summaries s WHERE s.item_id = i.id)"""
            ).fetchone()[0],
            "awaiting_podcast": self.execute(
                """SELECT COUNT(*) FROM summaries s
                   WHERE NOT EXISTS (SELECT 1 FROM podcasts p WHERE p.summary_id = s.id)"""
            ).fetchone()[0],
            "awaiting_dispatch": self.execute(
                """SELECT
                     (SELECT COUNT(*) FROM summaries s WHERE NOT EXISTS (
                        SELECT 1 FROM dispatch_log d
                        WHERE d.channel_type = 'summary' AND d.summary_id = s.id))
                   + (SELECT COUNT(*) FROM podcasts p WHERE NOT EXISTS (
                        SELECT 1 FROM dispatch_log d
                        WHERE d.channel_type = 'podcast' AND d.podcast_id = p.id))"""
            ).fetchone()[0],
        }
