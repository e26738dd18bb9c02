from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Iterable, Optional

import openai
from openai import AsyncOpenAI

from .config import TranscriptionConfig
from .errors import TranscriptionError
from .types import Segment, Transcript

logger = logging.getLogger(__name__)


class BaseTranscriber:
    async def transcribe(self, audio_path: Path, language: Optional[str] = None) -> Transcript:
        raise NotImplementedError


class OpenAITranscriber(BaseTranscriber):
    """Timestamped transcripts from the OpenAI audio transcription endpoint."""

    def __init__(self, config: TranscriptionConfig, client: Optional[AsyncOpenAI] = None):
        self.config = config
        if client is not None and config.api_base:
            logger.warning("Ignoring provided OpenAI client because custom api_base was supplied.")
            client = None
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            kwargs = {}
            if self.config.api_base:
                kwargs["base_url"] = self.config.api_base
            if self.config.api_key_env:
                api_key = os.getenv(self.config.api_key_env)
                if api_key:
                    kwargs["api_key"] = api_key
            self._client = AsyncOpenAI(**kwargs)
        return self._client

    async def transcribe(self, audio_path: Path, language: Optional[str] = None) -> Transcript:
        logger.info("Transcribing %s with %s (verbose_json)", audio_path.name, self.config.model)
        kwargs = {}
        if language:
            kwargs["language"] = language
        try:
            client = self._get_client()
            with audio_path.open("rb") as audio_file:
                response = await client.audio.transcriptions.create(
                    model=self.config.model,
                    file=audio_file,
                    response_format="verbose_json",
                    temperature=self.config.temperature,
                    **kwargs,
                )
        except openai.OpenAIError as exc:
            raise TranscriptionError(f"Transcription of {audio_path.name} failed: {exc}") from exc

        segments = [
            Segment(start=float(seg.start), end=float(seg.end), text=seg.text.strip())
            for seg in (response.segments or [])
        ]
        logger.info("Transcription complete: %s segments", len(segments))
        return Transcript(segments=segments, language=getattr(response, "language", None) or language)


class WhisperTranscriber(BaseTranscriber):
    """Wrapper around a local OpenAI Whisper model."""

    def __init__(self, config: TranscriptionConfig):
        self.config = config
        self._model = None

    def _load_model(self):
        if self._model is not None:
            return self._model
        # Optional dependency, installed with the "whisper" extra.
        import whisper

        logger.info("Loading Whisper model '%s' on device '%s'...", self.config.model_size, self.config.device or "default")
        self._model = whisper.load_model(self.config.model_size, device=self.config.device)
        return self._model

    async def transcribe(self, audio_path: Path, language: Optional[str] = None) -> Transcript:
        return await asyncio.to_thread(self._transcribe, audio_path, language)

    def _transcribe(self, audio_path: Path, language: Optional[str]) -> Transcript:
        model = self._load_model()
        logger.info("Transcribing audio from %s", audio_path)
        try:
            result = model.transcribe(
                str(audio_path),
                language=language,
                task="transcribe",
                condition_on_previous_text=False,
                word_timestamps=False,
            )
        except Exception as exc:
            raise TranscriptionError(f"Whisper transcription of {audio_path.name} failed: {exc}") from exc

        raw_segments: Iterable[dict] = result.get("segments", [])
        segments = [
            Segment(start=float(seg["start"]), end=float(seg["end"]), text=seg["text"].strip())
            for seg in raw_segments
        ]
        logger.info("Transcription complete: %s segments", len(segments))
        if logger.isEnabledFor(logging.DEBUG):
            for idx, seg in enumerate(segments, start=1):
                logger.debug("Segment %03d: %.2f-%.2f %s", idx, seg.start, seg.end, seg.text)
        return Transcript(segments=segments, language=result.get("language") or language)


def build_transcriber(config: TranscriptionConfig, client: Optional[AsyncOpenAI] = None) -> BaseTranscriber:
    provider = (config.provider or "openai").lower()
    if provider == "openai":
        return OpenAITranscriber(config=config, client=client)
    if provider == "whisper":
        return WhisperTranscriber(config=config)
    raise ValueError(f"Unsupported transcription provider: {config.provider}")
