from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from openai import AsyncOpenAI

from .audio import temporary_audio
from .config import PipelineConfig
from .errors import SegmentTranslationError, VideoProcessingError
from .subtitles import build_srt, write_srt
from .transcription import BaseTranscriber, build_transcriber
from .translation import BaseTranslator, SegmentTranslator, build_translator
from .types import BatchReport, TranslatedSegment, VideoArtifacts, VideoResult
from .video import burn_subtitles

logger = logging.getLogger(__name__)


def discover_videos(videos_dir: Path, extensions: Sequence[str] = (".mp4", ".mov", ".avi", ".mkv")) -> List[Path]:
    if not videos_dir.is_dir():
        raise FileNotFoundError(f"Videos directory not found: {videos_dir}")
    allowed = {extension.lower() for extension in extensions}
    return sorted(path for path in videos_dir.iterdir() if path.is_file() and path.suffix.lower() in allowed)


class VideoSubtitleAgent:
    """Orchestrator that extracts, transcribes, translates and burns subtitles, one video at a time."""

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        translator: Optional[BaseTranslator] = None,
        transcriber: Optional[BaseTranscriber] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.config = config or PipelineConfig()
        self.translator = translator or build_translator(self.config.translation, client=client)
        self.transcriber = transcriber or build_transcriber(self.config.transcription, client=client)
        self.segment_translator = SegmentTranslator(self.translator, self.config.translation)

    async def run_directory(self) -> BatchReport:
        videos = discover_videos(self.config.videos_dir, self.config.video_extensions)
        if not videos:
            logger.info("No video files found in %s", self.config.videos_dir)
        return await self.run_batch(videos)

    async def run_batch(self, video_paths: Iterable[Path]) -> BatchReport:
        """Process each video in turn; a failing video is recorded and the batch moves on.

        A translation backend that is unusable before any work starts (missing credentials)
        raises ``TranslationClientUnavailable`` here, since no video could succeed.
        """
        video_paths = list(video_paths)
        report = BatchReport()
        if not video_paths:
            return report

        self.translator.ensure_available()

        for position, video_path in enumerate(video_paths, start=1):
            logger.info("[%s/%s] Processing %s", position, len(video_paths), video_path.name)
            try:
                result = await self.process_video(video_path)
            except VideoProcessingError as exc:
                logger.error("Failed to process %s during %s: %s", video_path.name, exc.stage, exc.cause)
                report.results.append(VideoResult(source_path=video_path, error=exc))
                continue
            report.results.append(result)

        logger.info("Batch finished: %s succeeded, %s failed", len(report.succeeded), len(report.failed))
        return report

    async def process_video(self, video_path: Path) -> VideoResult:
        video_path = video_path.resolve()
        if not video_path.exists():
            raise VideoProcessingError(video_path, "input", FileNotFoundError(str(video_path)))

        name = f"{video_path.stem} with subtitles"
        subtitles_path = self.config.subtitles_dir.resolve() / f"{name}.srt"
        output_path = self.config.output_dir.resolve() / f"{name}.mp4"
        if output_path.exists() and not self.config.overwrite:
            raise VideoProcessingError(
                video_path, "output", FileExistsError(f"{output_path} already exists and overwrite=False")
            )

        stage = "audio extraction"
        try:
            async with temporary_audio(video_path, self.config.work_dir) as audio_path:
                stage = "transcription"
                logger.info("Step 1/4: Transcribing %s...", audio_path.name)
                transcript = await self.transcriber.transcribe(audio_path, language=self.config.source_language)

                stage = "translation"
                logger.info("Step 2/4: Translating %s segments...", len(transcript.segments))
                batch = await self.segment_translator.translate_segments(
                    transcript.segments,
                    self.config.source_language,
                    self.config.target_language,
                )
                for failure in batch.failures:
                    logger.warning("%s: %s", video_path.name, failure.describe())
                if batch.failures and self.config.abort_on_segment_failure:
                    raise SegmentTranslationError(batch.failures)

                stage = "subtitle build"
                logger.info("Step 3/4: Writing subtitles to %s", subtitles_path)
                document = build_srt(batch.segments)
                write_srt(document, subtitles_path)
                transcript_path = None
                if self.config.write_transcript_json:
                    transcript_path = self._write_transcript_json(batch.segments, subtitles_path.with_suffix(".json"))

                stage = "compositing"
                logger.info("Step 4/4: Burning subtitles into %s", output_path.name)
                await burn_subtitles(video_path, subtitles_path, output_path, self.config.compositing)
        except Exception as exc:
            raise VideoProcessingError(video_path, stage, exc) from exc

        artifacts = VideoArtifacts(video_path=output_path, subtitles_path=subtitles_path, transcript_json=transcript_path)
        logger.info("Finished %s. Artifacts: %s", video_path.name, artifacts)
        return VideoResult(source_path=video_path, artifacts=artifacts, translation_failures=batch.failures)

    def _write_transcript_json(self, segments: List[TranslatedSegment], output_path: Path) -> Path:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        payload = [
            {
                "start": segment.start,
                "end": segment.end,
                "source_text": segment.source_text,
                "text": segment.text,
                "failed": segment.failed,
            }
            for segment in segments
        ]
        output_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        return output_path
