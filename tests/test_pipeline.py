"""Tests for the per-video orchestrator and the batch driver."""

import asyncio
import json
import math
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from subtitle_agent.config import PipelineConfig
from subtitle_agent.errors import (
    CompositingError,
    SegmentTranslationError,
    SubtitleTimingError,
    TranscriptionError,
    TranslationClientUnavailable,
    VideoProcessingError,
)
from subtitle_agent.pipeline import VideoSubtitleAgent, discover_videos
from subtitle_agent.transcription import BaseTranscriber
from subtitle_agent.translation import BaseTranslator
from subtitle_agent.types import Segment, Transcript

EXPECTED_DOCUMENT = (
    "1\n"
    "00:00:00,000 --> 00:00:01,200\n"
    "Hello\n"
    "\n"
    "2\n"
    "00:00:01,200 --> 00:00:03,500\n"
    "How are you?\n"
    "\n"
)


class MappingTranslator(BaseTranslator):
    def __init__(self, translations):
        self.translations = translations
        self.calls = []

    async def translate_text(self, text, source_language, target_language):
        self.calls.append((text, source_language, target_language))
        await asyncio.sleep(0)
        value = self.translations[text]
        if isinstance(value, BaseException):
            raise value
        return value


class StaticTranscriber(BaseTranscriber):
    """Returns canned segments per video, or raises a canned error."""

    def __init__(self, segments, error=None):
        self.segments = segments
        self.error = error
        self.calls = []

    async def transcribe(self, audio_path, language=None):
        self.calls.append((audio_path, audio_path.exists(), language))
        if self.error is not None:
            raise self.error
        return Transcript(segments=list(self.segments), language=language)


GERMAN_SEGMENTS = [Segment(0.0, 1.2, "Hallo"), Segment(1.2, 3.5, "Wie geht's?")]
ENGLISH = {"Hallo": "Hello", "Wie geht's?": "How are you?"}


@pytest.fixture
def config(tmp_path):
    return PipelineConfig(
        source_language="de",
        target_language="en",
        videos_dir=tmp_path / "videos",
        subtitles_dir=tmp_path / "subtitles",
        output_dir=tmp_path / "with-subtitles",
        work_dir=tmp_path / "work",
    )


@pytest.fixture
def make_video(config):
    def _make(name="clip.mp4"):
        config.videos_dir.mkdir(parents=True, exist_ok=True)
        path = config.videos_dir / name
        path.write_bytes(b"video")
        return path

    return _make


@pytest.fixture
def extracted(monkeypatch):
    """Replace moviepy audio extraction with a file write and record the paths."""
    paths = []

    def fake_extract(video_path, output_path, codec="libmp3lame"):
        output_path.write_bytes(b"audio")
        paths.append(output_path)
        return output_path

    monkeypatch.setattr("subtitle_agent.audio.extract_audio", fake_extract)
    return paths


@pytest.fixture
def burned(monkeypatch):
    """Replace ffmpeg compositing; names listed in ``fail_for`` raise CompositingError."""
    calls = []
    fail_for = set()

    async def fake_burn(video_path, subtitles_path, output_path, config=None):
        calls.append((video_path, subtitles_path, output_path))
        if video_path.name in fail_for:
            raise CompositingError("ffmpeg exploded")
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(b"burned")
        return output_path

    monkeypatch.setattr("subtitle_agent.pipeline.burn_subtitles", fake_burn)
    fake_burn.calls = calls
    fake_burn.fail_for = fail_for
    return fake_burn


class TestProcessVideo:
    """Tests for the single-video pipeline."""

    @pytest.mark.asyncio
    async def test_end_to_end(self, config, make_video, extracted, burned):
        """Test transcript to burned video with the expected subtitle document."""
        video = make_video()
        translator = MappingTranslator(ENGLISH)
        transcriber = StaticTranscriber(GERMAN_SEGMENTS)
        agent = VideoSubtitleAgent(config, translator=translator, transcriber=transcriber)

        result = await agent.process_video(video)

        subtitles_path = config.subtitles_dir.resolve() / "clip with subtitles.srt"
        output_path = config.output_dir.resolve() / "clip with subtitles.mp4"
        assert result.ok
        assert result.artifacts.subtitles_path == subtitles_path
        assert result.artifacts.video_path == output_path
        assert subtitles_path.read_text(encoding="utf-8") == EXPECTED_DOCUMENT
        assert burned.calls == [(video.resolve(), subtitles_path, output_path)]
        assert sorted(translator.calls) == [("Hallo", "de", "en"), ("Wie geht's?", "de", "en")]
        assert transcriber.calls[0][1] is True
        assert transcriber.calls[0][2] == "de"
        assert result.translation_failures == []

    @pytest.mark.asyncio
    async def test_audio_removed_after_success(self, config, make_video, extracted, burned):
        """Test the temporary audio does not outlive the video."""
        agent = VideoSubtitleAgent(config, translator=MappingTranslator(ENGLISH), transcriber=StaticTranscriber(GERMAN_SEGMENTS))

        await agent.process_video(make_video())

        assert len(extracted) == 1
        assert not extracted[0].exists()
        assert not extracted[0].parent.exists()

    @pytest.mark.asyncio
    async def test_audio_removed_after_failure(self, config, make_video, extracted, burned):
        """Test the temporary audio is removed when a stage fails."""
        transcriber = StaticTranscriber([], error=TranscriptionError("service down"))
        agent = VideoSubtitleAgent(config, translator=MappingTranslator({}), transcriber=transcriber)

        with pytest.raises(VideoProcessingError) as excinfo:
            await agent.process_video(make_video())

        assert excinfo.value.stage == "transcription"
        assert isinstance(excinfo.value.cause, TranscriptionError)
        assert not extracted[0].exists()
        assert burned.calls == []

    @pytest.mark.asyncio
    async def test_segment_failure_tolerated_with_fallback(self, config, make_video, extracted, burned):
        """Test a failed segment keeps its source text and is reported."""
        translator = MappingTranslator({"Hallo": "Hello", "Wie geht's?": RuntimeError("timeout")})
        agent = VideoSubtitleAgent(config, translator=translator, transcriber=StaticTranscriber(GERMAN_SEGMENTS))

        result = await agent.process_video(make_video())

        document = result.artifacts.subtitles_path.read_text(encoding="utf-8")
        assert "Hello" in document
        assert "2\n00:00:01,200 --> 00:00:03,500\nWie geht's?\n" in document
        assert [failure.segment_index for failure in result.translation_failures] == [1]

    @pytest.mark.asyncio
    async def test_segment_failure_can_abort_video(self, config, make_video, extracted, burned):
        """Test abort_on_segment_failure fails the video before writing subtitles."""
        config.abort_on_segment_failure = True
        translator = MappingTranslator({"Hallo": "Hello", "Wie geht's?": RuntimeError("timeout")})
        agent = VideoSubtitleAgent(config, translator=translator, transcriber=StaticTranscriber(GERMAN_SEGMENTS))

        with pytest.raises(VideoProcessingError) as excinfo:
            await agent.process_video(make_video())

        assert excinfo.value.stage == "translation"
        assert isinstance(excinfo.value.cause, SegmentTranslationError)
        assert not (config.subtitles_dir / "clip with subtitles.srt").exists()

    @pytest.mark.asyncio
    async def test_malformed_timing_writes_nothing(self, config, make_video, extracted, burned):
        """Test NaN timing fails the subtitle stage without writing a document."""
        transcriber = StaticTranscriber([Segment(0.0, 1.0, "Hallo"), Segment(math.nan, 2.0, "Wie geht's?")])
        agent = VideoSubtitleAgent(config, translator=MappingTranslator(ENGLISH), transcriber=transcriber)

        with pytest.raises(VideoProcessingError) as excinfo:
            await agent.process_video(make_video())

        assert excinfo.value.stage == "subtitle build"
        assert isinstance(excinfo.value.cause, SubtitleTimingError)
        assert not (config.subtitles_dir / "clip with subtitles.srt").exists()
        assert burned.calls == []

    @pytest.mark.asyncio
    async def test_empty_transcript(self, config, make_video, extracted, burned):
        """Test a silent video yields an empty subtitle file and no translation calls."""
        translator = MappingTranslator({})
        agent = VideoSubtitleAgent(config, translator=translator, transcriber=StaticTranscriber([]))

        result = await agent.process_video(make_video())

        assert result.artifacts.subtitles_path.read_text(encoding="utf-8") == ""
        assert translator.calls == []

    @pytest.mark.asyncio
    async def test_missing_video(self, config, extracted, burned):
        """Test a missing input fails at the input stage."""
        agent = VideoSubtitleAgent(config, translator=MappingTranslator({}), transcriber=StaticTranscriber([]))

        with pytest.raises(VideoProcessingError) as excinfo:
            await agent.process_video(config.videos_dir / "ghost.mp4")

        assert excinfo.value.stage == "input"
        assert extracted == []

    @pytest.mark.asyncio
    async def test_refuses_overwrite_when_disabled(self, config, make_video, extracted, burned):
        """Test overwrite=False keeps an existing output video."""
        config.overwrite = False
        config.output_dir.mkdir(parents=True)
        existing = config.output_dir / "clip with subtitles.mp4"
        existing.write_bytes(b"old")
        agent = VideoSubtitleAgent(config, translator=MappingTranslator(ENGLISH), transcriber=StaticTranscriber(GERMAN_SEGMENTS))

        with pytest.raises(VideoProcessingError) as excinfo:
            await agent.process_video(make_video())

        assert excinfo.value.stage == "output"
        assert existing.read_bytes() == b"old"

    @pytest.mark.asyncio
    async def test_transcript_json(self, config, make_video, extracted, burned):
        """Test the optional transcript JSON lists source and translated text."""
        config.write_transcript_json = True
        translator = MappingTranslator({"Hallo": "Hello", "Wie geht's?": RuntimeError("boom")})
        agent = VideoSubtitleAgent(config, translator=translator, transcriber=StaticTranscriber(GERMAN_SEGMENTS))

        result = await agent.process_video(make_video())

        payload = json.loads(result.artifacts.transcript_json.read_text(encoding="utf-8"))
        assert payload == [
            {"start": 0.0, "end": 1.2, "source_text": "Hallo", "text": "Hello", "failed": False},
            {"start": 1.2, "end": 3.5, "source_text": "Wie geht's?", "text": "Wie geht's?", "failed": True},
        ]


class TestRunBatch:
    """Tests for batch processing across videos."""

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_batch(self, config, make_video, extracted, burned):
        """Test a compositing failure is reported while later videos still run."""
        first = make_video("a.mp4")
        second = make_video("b.mov")
        burned.fail_for.add("a.mp4")
        agent = VideoSubtitleAgent(config, translator=MappingTranslator(ENGLISH), transcriber=StaticTranscriber(GERMAN_SEGMENTS))

        report = await agent.run_batch([first, second])

        assert [result.source_path.name for result in report.results] == ["a.mp4", "b.mov"]
        assert [result.source_path.name for result in report.failed] == ["a.mp4"]
        assert [result.source_path.name for result in report.succeeded] == ["b.mov"]
        assert report.failed[0].error.stage == "compositing"
        assert report.succeeded[0].artifacts.video_path.exists()
        assert all(not path.exists() for path in extracted)

    @pytest.mark.asyncio
    async def test_systemic_failure_mid_batch_is_per_video(self, config, make_video, extracted, burned):
        """Test a client outage during one video only fails that video."""

        class FlakyTranslator(MappingTranslator):
            def __init__(self):
                super().__init__(ENGLISH)
                self.down = True

            async def translate_text(self, text, source_language, target_language):
                if self.down:
                    self.down = False
                    raise TranslationClientUnavailable("quota exhausted")
                return await super().translate_text(text, source_language, target_language)

        agent = VideoSubtitleAgent(
            config,
            translator=FlakyTranslator(),
            transcriber=StaticTranscriber([Segment(0.0, 1.2, "Hallo")]),
        )

        report = await agent.run_batch([make_video("a.mp4"), make_video("b.mp4")])

        assert report.results[0].error.stage == "translation"
        assert isinstance(report.results[0].error.cause, TranslationClientUnavailable)
        assert report.results[1].ok

    @pytest.mark.asyncio
    async def test_unavailable_upfront_aborts_run(self, config, make_video, extracted, burned):
        """Test missing credentials stop the run before any video is touched."""
        translator = MappingTranslator(ENGLISH)
        translator.ensure_available = MagicMock(side_effect=TranslationClientUnavailable("no key"))
        transcriber = StaticTranscriber(GERMAN_SEGMENTS)
        agent = VideoSubtitleAgent(config, translator=translator, transcriber=transcriber)

        with pytest.raises(TranslationClientUnavailable):
            await agent.run_batch([make_video()])

        assert extracted == []
        assert transcriber.calls == []

    @pytest.mark.asyncio
    async def test_empty_batch(self, config):
        """Test an empty batch returns an empty report."""
        agent = VideoSubtitleAgent(config, translator=MappingTranslator({}), transcriber=StaticTranscriber([]))

        report = await agent.run_batch([])

        assert report.results == []

    @pytest.mark.asyncio
    async def test_run_directory(self, config, make_video, extracted, burned):
        """Test the configured folder is discovered and processed."""
        make_video("one.mp4")
        make_video("two.MKV")
        (config.videos_dir / "notes.txt").write_text("skip me")
        agent = VideoSubtitleAgent(config, translator=MappingTranslator(ENGLISH), transcriber=StaticTranscriber(GERMAN_SEGMENTS))

        report = await agent.run_directory()

        assert [result.source_path.name for result in report.succeeded] == ["one.mp4", "two.MKV"]


class TestDiscoverVideos:
    """Tests for video discovery."""

    def test_filters_and_sorts(self, tmp_path):
        """Test only known video extensions are returned, sorted by name."""
        for name in ["b.mov", "a.MP4", "c.avi", "d.mkv", "e.srt", "f.mp3"]:
            (tmp_path / name).write_bytes(b"x")
        (tmp_path / "folder.mp4").mkdir()

        videos = discover_videos(tmp_path)

        assert [path.name for path in videos] == ["a.MP4", "b.mov", "c.avi", "d.mkv"]

    def test_missing_directory(self, tmp_path):
        """Test a missing folder raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            discover_videos(Path(tmp_path / "absent"))
