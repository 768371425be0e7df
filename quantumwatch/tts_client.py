"""Text-to-speech collaborator (ElevenLabs REST API)."""
import logging
from collections.abc import Iterator

import requests

from quantumwatch.errors import CollaboratorError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 8192


class TTSClient:
    """Stream synthesized speech for a text and voice."""

    def __init__(self, config: dict):
        tts = config["tts"]
        self.api_key = tts["api_key"]
        self.base_url = tts["base_url"].rstrip("/")
        self.model_id = tts["model_id"]
        self.voice_settings = {
            "stability": tts["stability"],
            "similarity_boost": tts["similarity_boost"],
        }
        self.voices = dict(tts["voices"])
        self.default_language = tts["default_language"]
        self.timeout = tts["timeout"]

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def voice_for(self, language: str | None) -> str:
        """Voice id for language, falling back to the default language voice."""
        voice = self.voices.get(language or "")
        if voice is None:
            voice = self.voices[self.default_language]
        return voice

    def synthesize(self, text: str, voice_id: str) -> Iterator[bytes]:
        """Yield audio/mpeg chunks.

        The request is sent when iteration starts; errors surface as
        CollaboratorError from the iterator.
        """
        try:
            with requests.post(
                f"{self.base_url}/{voice_id}",
                headers={
                    "Accept": "audio/mpeg",
                    "Content-Type": "application/json",
                    "xi-api-key": self.api_key,
                },
                json={
                    "text": text,
                    "model_id": self.model_id,
                    "voice_settings": self.voice_settings,
                },
                stream=True,
                timeout=self.timeout,
            ) as response:
                if not response.ok:
                    raise CollaboratorError(
                        "tts",
                        f"HTTP {response.status_code}: {response.text[:200]}",
                        status=response.status_code,
                    )
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        yield chunk
        except requests.RequestException as e:
            raise CollaboratorError("tts", str(e))
