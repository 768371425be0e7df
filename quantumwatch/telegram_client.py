"""Messaging collaborator (Telegram Bot API) and message templates."""
import logging
from pathlib import Path

import requests

from quantumwatch.errors import CollaboratorError
from quantumwatch.textutils import truncate

logger = logging.getLogger(__name__)


def format_summary_message(title: str, summary_text: str, source_url: str | None, feed_title: str | None) -> str:
    return (
        f"📰 *{title}*\n\n{summary_text}\n\n"
        f"🔍 _Source: {feed_title}_\n🔗 [Read original article]({source_url})"
    )


def format_podcast_caption(title: str, source_url: str | None, feed_title: str | None) -> str:
    return f"🎙️ *{title}*\n\n🔍 _Source: {feed_title}_\n🔗 [Read original article]({source_url})"


class TelegramClient:
    """Send text messages and audio files to one chat."""

    def __init__(self, config: dict):
        telegram = config["telegram"]
        self.bot_token = telegram["bot_token"]
        self.chat_id = telegram["chat_id"]
        self.api_url = f"{telegram['api_url'].rstrip('/')}/bot{self.bot_token}"
        self.max_message_length = telegram["max_message_length"]
        self.max_caption_length = telegram["max_caption_length"]
        self.timeout = config["http"]["timeout"]

    @property
    def configured(self) -> bool:
        return bool(self.bot_token and self.chat_id)

    def _check(self, response: requests.Response) -> dict:
        try:
            result = response.json()
        except ValueError:
            result = {}
        if not response.ok or not result.get("ok"):
            description = result.get("description") or f"HTTP {response.status_code}"
            raise CollaboratorError("telegram", description, status=response.status_code)
        return result

    def send_message(self, text: str) -> dict:
        """Send a Markdown message, truncated to the configured limit."""
        if len(text) > self.max_message_length:
            logger.warning(
                f"Telegram message truncated from {len(text)} to {self.max_message_length} characters"
            )
        payload = {
            "chat_id": self.chat_id,
            "text": truncate(text, self.max_message_length),
            "parse_mode": "Markdown",
            "disable_web_page_preview": True,
        }
        try:
            response = requests.post(
                f"{self.api_url}/sendMessage", json=payload, timeout=self.timeout
            )
        except requests.RequestException as e:
            raise CollaboratorError("telegram", str(e))
        return self._check(response)

    def send_audio(self, audio_path: Path, caption: str = "") -> dict:
        """Upload an audio file with an optional Markdown caption."""
        if not audio_path.exists():
            raise CollaboratorError("telegram", f"audio file not found: {audio_path}")

        data = {"chat_id": self.chat_id}
        if caption:
            data["caption"] = truncate(caption, self.max_caption_length)
            data["parse_mode"] = "Markdown"

        try:
            with audio_path.open("rb") as audio:
                response = requests.post(
                    f"{self.api_url}/sendAudio",
                    data=data,
                    files={"audio": (audio_path.name, audio, "audio/mpeg")},
                    timeout=self.timeout,
                )
        except requests.RequestException as e:
            raise CollaboratorError("telegram", str(e))
        return self._check(response)
