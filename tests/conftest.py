"""Shared fixtures: a throwaway database and a config with no delays."""
import copy
from datetime import datetime, timezone

import pytest


@pytest.fixture
def config(tmp_path):
    from quantumwatch.config import DEFAULT_CONFIG

    cfg = copy.deepcopy(DEFAULT_CONFIG)
    cfg["database"]["url"] = f"sqlite:///{tmp_path / 'test.db'}"
    cfg["storage"]["public_root"] = str(tmp_path / "public")
    cfg["summarize"]["delay_seconds"] = 0
    cfg["synthesize"]["delay_seconds"] = 0
    cfg["notify"]["message_delay_seconds"] = 0
    cfg["notify"]["audio_delay_seconds"] = 0
    cfg["llm"]["api_key"] = "test-llm-key"
    cfg["tts"]["api_key"] = "test-tts-key"
    cfg["telegram"]["bot_token"] = "123:abc"
    cfg["telegram"]["chat_id"] = "@quantumwatch"
    return cfg


@pytest.fixture
def db(tmp_path):
    from quantumwatch.database import Database

    database = Database(tmp_path / "test.db")
    yield database
    database.close()


@pytest.fixture
def add_item(db):
    """Insert an item into db and return its id."""
    from quantumwatch.models import NewItem

    def _add(feed_id, guid, title="Quantum article", content="Some content", published=None):
        return db.insert_item(
            feed_id,
            NewItem(
                guid=guid,
                title=title,
                link=f"https://example.com/{guid}",
                description="",
                content=content,
                author=None,
                published_date=published or datetime(2024, 1, 1, tzinfo=timezone.utc),
            ),
        )

    return _add
