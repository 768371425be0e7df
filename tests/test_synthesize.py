"""Tests for TTS client and the synthesize stage."""
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest


def _tts(chunks=(b"ID3", b"audio"), error=None):
    tts = MagicMock()
    tts.configured = True
    tts.voice_for.side_effect = lambda language: {"fr": "voice-fr"}.get(language, "voice-en")

    def synthesize(text, voice_id):
        for chunk in chunks:
            yield chunk
        if error is not None:
            raise error

    tts.synthesize.side_effect = synthesize
    return tts


def _summary(db, add_item, feed_title="Quantum Daily", item_title="Logical Qubits, Explained!"):
    feed = db.add_feed(f"https://example.com/{len(db.list_feeds())}", feed_title)
    item_id = add_item(feed.id, "guid-1", title=item_title)
    return db.insert_summary(item_id, "x" * 128, "en")


def test_voice_for_falls_back_to_default_language(config):
    from quantumwatch.tts_client import TTSClient

    client = TTSClient(config)

    assert client.voice_for("fr") == "EXAVITQu4vr4xnSDxMaL"
    assert client.voice_for("en") == "pNInz6obpgDQGcFmaJgB"
    assert client.voice_for("de") == "pNInz6obpgDQGcFmaJgB"
    assert client.voice_for(None) == "pNInz6obpgDQGcFmaJgB"


def test_voice_for_known_language_ignores_unvoiced_default(config):
    from quantumwatch.tts_client import TTSClient

    config["tts"]["default_language"] = "de"

    assert TTSClient(config).voice_for("fr") == "EXAVITQu4vr4xnSDxMaL"


def test_tts_synthesize_streams_chunks(config):
    from quantumwatch.tts_client import TTSClient

    response = MagicMock()
    response.ok = True
    response.iter_content.return_value = [b"ab", b"", b"cd"]
    response.__enter__.return_value = response
    response.__exit__.return_value = False

    with patch("quantumwatch.tts_client.requests.post", return_value=response) as mock_post:
        chunks = list(TTSClient(config).synthesize("Hello", "voice-1"))

    assert chunks == [b"ab", b"cd"]
    args, kwargs = mock_post.call_args
    assert args[0].endswith("/voice-1")
    assert kwargs["json"]["model_id"] == "eleven_multilingual_v2"
    assert kwargs["json"]["voice_settings"] == {"stability": 0.5, "similarity_boost": 0.75}
    assert kwargs["headers"]["xi-api-key"] == "test-tts-key"


def test_tts_error_status_is_collaborator_error(config):
    from quantumwatch.errors import CollaboratorError
    from quantumwatch.tts_client import TTSClient

    response = MagicMock()
    response.ok = False
    response.status_code = 401
    response.text = "invalid api key"
    response.__enter__.return_value = response
    response.__exit__.return_value = False

    with patch("quantumwatch.tts_client.requests.post", return_value=response):
        with pytest.raises(CollaboratorError, match="401"):
            list(TTSClient(config).synthesize("Hello", "voice-1"))


def test_audio_location_uses_sanitized_names():
    from quantumwatch.models import SummaryJob
    from quantumwatch.synthesize import audio_location

    job = SummaryJob(7, 3, "text", "en", "Logical Qubits, Explained!", "Quantum Daily")

    relative, public_path = audio_location(job, "podcasts")

    assert relative == Path("quantum-daily") / "logical-qubits-explained.mp3"
    assert public_path == "/podcasts/quantum-daily/logical-qubits-explained.mp3"


def test_audio_location_falls_back_when_names_sanitize_to_nothing():
    from quantumwatch.models import SummaryJob
    from quantumwatch.synthesize import audio_location

    job = SummaryJob(7, 3, "text", "en", "???", None)

    _, public_path = audio_location(job, "podcasts")

    assert public_path == "/podcasts/default-feed/podcast-7.mp3"


def test_synthesize_writes_file_and_records_podcast(config, db, add_item):
    from quantumwatch.config import get_public_root
    from quantumwatch.synthesize import SynthesizeStage

    summary = _summary(db, add_item)
    tts = _tts()

    result = SynthesizeStage(db, config, tts=tts).run()

    assert result.processed == 1
    podcast = result.records[0]
    assert podcast.audio_file_path == "/podcasts/quantum-daily/logical-qubits-explained.mp3"
    assert podcast.voice_id == "voice-en"
    # "Logical Qubits, Explained!. " + 128 chars = 156 chars -> 11 seconds
    assert podcast.duration == 11

    audio = get_public_root(config) / podcast.audio_file_path.lstrip("/")
    assert audio.read_bytes() == b"ID3audio"
    assert not audio.with_name(audio.name + ".part").exists()

    text, voice = tts.synthesize.call_args[0]
    assert text == f"Logical Qubits, Explained!. {'x' * 128}"
    assert db.has_podcast(summary.id)


def test_stream_failure_leaves_no_file_and_no_record(config, db, add_item):
    from quantumwatch.config import get_audio_root
    from quantumwatch.errors import CollaboratorError
    from quantumwatch.synthesize import SynthesizeStage

    summary = _summary(db, add_item)
    tts = _tts(error=CollaboratorError("tts", "connection reset"))

    result = SynthesizeStage(db, config, tts=tts).run()

    assert result.failed == 1
    assert db.has_podcast(summary.id) is False
    feed_dir = get_audio_root(config) / "quantum-daily"
    assert list(feed_dir.iterdir()) == []


def test_store_failure_deletes_written_file(config, db, add_item):
    import sqlite3

    from quantumwatch.config import get_audio_root
    from quantumwatch.synthesize import SynthesizeStage

    _summary(db, add_item)
    stage = SynthesizeStage(db, config, tts=_tts())
    db.insert_podcast = MagicMock(side_effect=sqlite3.OperationalError("disk I/O error"))

    result = stage.run()

    assert result.failed == 1
    assert list((get_audio_root(config) / "quantum-daily").iterdir()) == []


def test_synthesize_disabled_without_api_key(config, db, add_item):
    from quantumwatch.synthesize import SynthesizeStage

    _summary(db, add_item)
    config["tts"]["api_key"] = ""

    result = SynthesizeStage(db, config).run()

    assert "ElevenLabs API key" in result.disabled
    assert result.processed == 0


def test_summary_with_podcast_is_not_selected_again(config, db, add_item):
    from quantumwatch.synthesize import SynthesizeStage

    _summary(db, add_item)
    tts = _tts()
    SynthesizeStage(db, config, tts=tts).run()

    result = SynthesizeStage(db, config, tts=tts).run()

    assert result.selected == 0
    assert tts.synthesize.call_count == 1


def _weekly_digests(db, add_item):
    feed = db.add_feed("https://example.com/weekly", "Quantum Daily")
    first = add_item(feed.id, "week-1", title="Weekly Digest")
    second = add_item(feed.id, "week-2", title="Weekly Digest")
    return db.insert_summary(first, "First week.", "en"), db.insert_summary(second, "Second week.", "en")


def test_same_title_podcasts_get_separate_files(config, db, add_item):
    from quantumwatch.config import get_public_root
    from quantumwatch.synthesize import SynthesizeStage

    first, second = _weekly_digests(db, add_item)
    tts = _tts()
    audio = iter([b"AUDIO-ONE", b"AUDIO-TWO"])
    tts.synthesize.side_effect = lambda text, voice_id: iter([next(audio)])

    result = SynthesizeStage(db, config, tts=tts).run()

    assert result.processed == 2
    paths = {podcast.summary_id: podcast.audio_file_path for podcast in result.records}
    assert paths[first.id] == "/podcasts/quantum-daily/weekly-digest.mp3"
    assert paths[second.id] == f"/podcasts/quantum-daily/weekly-digest-{second.id}.mp3"
    public_root = get_public_root(config)
    assert (public_root / paths[first.id].lstrip("/")).read_bytes() == b"AUDIO-ONE"
    assert (public_root / paths[second.id].lstrip("/")).read_bytes() == b"AUDIO-TWO"


def test_existing_file_on_disk_is_not_overwritten(config, db, add_item):
    from quantumwatch.config import get_audio_root
    from quantumwatch.synthesize import SynthesizeStage

    summary = _summary(db, add_item)
    stray = get_audio_root(config) / "quantum-daily" / "logical-qubits-explained.mp3"
    stray.parent.mkdir(parents=True)
    stray.write_bytes(b"OLD")

    result = SynthesizeStage(db, config, tts=_tts()).run()

    assert result.records[0].audio_file_path == (
        f"/podcasts/quantum-daily/logical-qubits-explained-{summary.id}.mp3"
    )
    assert stray.read_bytes() == b"OLD"


def test_failed_insert_keeps_other_podcasts_file(config, db, add_item):
    import sqlite3

    from quantumwatch.config import get_audio_root
    from quantumwatch.synthesize import SynthesizeStage

    _weekly_digests(db, add_item)
    SynthesizeStage(db, config, tts=_tts()).run(limit=1)
    stage = SynthesizeStage(db, config, tts=_tts(chunks=(b"AUDIO-TWO",)))
    db.insert_podcast = MagicMock(side_effect=sqlite3.OperationalError("disk I/O error"))

    result = stage.run()

    assert result.failed == 1
    feed_dir = get_audio_root(config) / "quantum-daily"
    assert [path.name for path in feed_dir.iterdir()] == ["weekly-digest.mp3"]
    assert (feed_dir / "weekly-digest.mp3").read_bytes() == b"ID3audio"
