"""Synthesize stage: turn summaries into podcast audio files."""
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from quantumwatch.config import get_audio_root
from quantumwatch.database import Database
from quantumwatch.errors import ConfigError
from quantumwatch.models import Podcast, SummaryJob
from quantumwatch.stage_runner import StageRunner
from quantumwatch.textutils import estimate_duration, sanitize_filename
from quantumwatch.tts_client import TTSClient

DEFAULT_FEED_DIR = "default-feed"


@dataclass
class PodcastAudio:
    """Audio written to disk, not yet recorded."""

    path: Path
    public_path: str
    duration: int
    voice_id: str


@contextmanager
def audio_destination(path: Path):
    """Open path for writing through a .part file.

    The final file only appears once the block completes; on any error the
    partial file is closed and deleted and the error re-raised.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    partial = path.with_name(path.name + ".part")
    try:
        with partial.open("wb") as fh:
            yield fh
        partial.replace(path)
    except BaseException:
        partial.unlink(missing_ok=True)
        raise


def speech_text(job: SummaryJob) -> str:
    return f"{job.item_title or ''}. {job.summary_text}"


def audio_location(job: SummaryJob, podcasts_dir: str, suffixed: bool = False) -> tuple[Path, str]:
    """Relative file path under the audio root and the public URL path.

    suffixed appends the summary id to the file name, for titles whose
    plain path is already taken by another podcast.
    """
    feed_dir = sanitize_filename(job.feed_title or "") or DEFAULT_FEED_DIR
    stem = sanitize_filename(job.item_title or "") or f"podcast-{job.summary_id}"
    if suffixed:
        stem = f"{stem}-{job.summary_id}"
    file_name = f"{stem}.mp3"
    return Path(feed_dir) / file_name, f"/{podcasts_dir}/{feed_dir}/{file_name}"


class SynthesizeStage(StageRunner):
    name = "synthesize"
    log_prefix = "[SYNTHESIZE]"

    def __init__(self, db: Database, config: dict, tts: TTSClient | None = None, **kwargs):
        super().__init__(db, config, **kwargs)
        self.tts = tts or TTSClient(config)
        self.audio_root = get_audio_root(config)
        self.podcasts_dir = config["storage"]["podcasts_dir"]

    def check_config(self) -> None:
        if not self.tts.configured:
            raise ConfigError("ElevenLabs API key is not set")

    @property
    def batch_size(self) -> int:
        return self.config["synthesize"]["batch_size"]

    @property
    def delay_seconds(self) -> float:
        return self.config["synthesize"]["delay_seconds"]

    def select_pending(self, limit: int | None) -> list[SummaryJob]:
        return self.db.get_summaries_without_podcast(limit if limit is not None else self.batch_size)

    def describe(self, job: SummaryJob) -> str:
        return f"summary {job.summary_id} ({job.item_title})"

    def process_one(self, job: SummaryJob) -> PodcastAudio | None:
        if self.db.has_podcast(job.summary_id):
            self.logger.info(f"{self.log_prefix} Summary {job.summary_id} already has a podcast")
            return None

        text = speech_text(job)
        voice_id = self.tts.voice_for(job.language)
        relative, public_path = audio_location(job, self.podcasts_dir)
        path = self.audio_root / relative
        if path.exists() or self.db.audio_path_in_use(public_path):
            relative, public_path = audio_location(job, self.podcasts_dir, suffixed=True)
            path = self.audio_root / relative
            self.logger.info(f"{self.log_prefix} Title path taken, using {public_path}")

        self.logger.info(
            f"{self.log_prefix} Generating podcast for summary {job.summary_id} (item {job.item_id})"
        )
        with audio_destination(path) as fh:
            for chunk in self.tts.synthesize(text, voice_id):
                fh.write(chunk)

        return PodcastAudio(
            path=path,
            public_path=public_path,
            duration=estimate_duration(text),
            voice_id=voice_id,
        )

    def persist_outcome(self, job: SummaryJob, audio: PodcastAudio) -> Podcast | None:
        try:
            podcast = self.db.insert_podcast(
                job.item_id, job.summary_id, audio.public_path, audio.duration, audio.voice_id
            )
        except sqlite3.Error:
            audio.path.unlink(missing_ok=True)
            raise

        if podcast is None:
            self.logger.info(f"{self.log_prefix} Summary {job.summary_id} got a podcast concurrently")
            existing = self.db.get_podcast_for_item(job.item_id)
            if existing is None or existing.audio_file_path != audio.public_path:
                audio.path.unlink(missing_ok=True)
            return None
        self.logger.info(
            f"{self.log_prefix} ✓ Podcast {podcast.id}: {audio.public_path} (~{audio.duration}s)"
        )
        return podcast
