"""Notify stage: forward new summaries and podcasts to the Telegram channel once."""
from quantumwatch.config import get_public_root
from quantumwatch.database import Database
from quantumwatch.errors import ConfigError
from quantumwatch.models import Dispatch
from quantumwatch.stage_runner import StageRunner
from quantumwatch.telegram_client import (
    TelegramClient,
    format_podcast_caption,
    format_summary_message,
)
from quantumwatch.textutils import truncate

CHANNELS = ("summary", "podcast")


class NotifyStage(StageRunner):
    """Summaries first, then podcasts; each logged in the dispatch log once sent."""

    name = "notify"
    log_prefix = "[NOTIFY]"

    def __init__(self, db: Database, config: dict, messenger: TelegramClient | None = None, **kwargs):
        super().__init__(db, config, **kwargs)
        self.messenger = messenger or TelegramClient(config)
        self.public_root = get_public_root(config)
        self.max_message_length = config["telegram"]["max_message_length"]
        self.max_caption_length = config["telegram"]["max_caption_length"]

    def check_config(self) -> None:
        if not self.messenger.configured:
            raise ConfigError("Telegram bot token or chat id is not set")

    @property
    def batch_size(self) -> int:
        return self.config["notify"]["batch_size"]

    def delay_after(self, dispatch: Dispatch) -> float:
        if dispatch.channel == "podcast":
            return self.config["notify"]["audio_delay_seconds"]
        return self.config["notify"]["message_delay_seconds"]

    def select_pending(self, limit: int | None) -> list[Dispatch]:
        """Pending summaries then pending podcasts, up to limit of each."""
        limit = limit if limit is not None else self.batch_size
        pending = []
        for channel in CHANNELS:
            pending.extend(self.db.get_pending_dispatches(channel, limit))
        return pending

    def describe(self, dispatch: Dispatch) -> str:
        return f"{dispatch.channel} {dispatch.entity_id} ({dispatch.item_title})"

    def build_message(self, dispatch: Dispatch) -> str:
        message = format_summary_message(
            dispatch.item_title, dispatch.summary_text, dispatch.item_link, dispatch.feed_title
        )
        if len(message) > self.max_message_length:
            self.logger.warning(
                f"{self.log_prefix} Message for item {dispatch.item_id} truncated "
                f"from {len(message)} to {self.max_message_length} characters"
            )
        return truncate(message, self.max_message_length)

    def build_caption(self, dispatch: Dispatch) -> str:
        caption = format_podcast_caption(dispatch.item_title, dispatch.item_link, dispatch.feed_title)
        return truncate(caption, self.max_caption_length)

    def process_one(self, dispatch: Dispatch) -> bool | None:
        if self.db.is_dispatched(dispatch.channel, dispatch.entity_id):
            return None

        if dispatch.channel == "summary":
            self.messenger.send_message(self.build_message(dispatch))
        else:
            audio_path = self.public_root / dispatch.audio_file_path.lstrip("/")
            self.messenger.send_audio(audio_path, self.build_caption(dispatch))
        return True

    def persist_outcome(self, dispatch: Dispatch, sent: bool) -> Dispatch | None:
        if not self.db.record_dispatch(dispatch.channel, dispatch.entity_id, dispatch.item_id):
            self.logger.warning(
                f"{self.log_prefix} {dispatch.channel} {dispatch.entity_id} was also sent by another run"
            )
            return None
        self.logger.info(f"{self.log_prefix} ✓ Sent {dispatch.channel} for: {dispatch.item_title}")
        return dispatch
