from __future__ import annotations

from pathlib import Path


class SubtitleAgentError(Exception):
    """Base class for errors raised by the subtitle pipeline."""


class TranslationClientUnavailable(SubtitleAgentError):
    """The translation backend cannot serve any request (credentials, quota)."""


class MalformedTranslationResponse(SubtitleAgentError):
    """The translation backend answered without a usable message."""


class SubtitleTimingError(SubtitleAgentError, ValueError):
    """A segment carries a negative, NaN or infinite timestamp."""


class AudioExtractionError(SubtitleAgentError):
    pass


class TranscriptionError(SubtitleAgentError):
    pass


class CompositingError(SubtitleAgentError):
    pass


class SegmentTranslationError(SubtitleAgentError):
    """Raised when per-segment failures are configured to abort the video."""

    def __init__(self, failures):
        self.failures = list(failures)
        indices = ", ".join(str(failure.segment_index) for failure in self.failures)
        super().__init__(f"{len(self.failures)} segment(s) failed to translate: {indices}")


class VideoProcessingError(SubtitleAgentError):
    """Processing of one video stopped at ``stage`` because of ``cause``."""

    def __init__(self, video_path: Path, stage: str, cause: BaseException):
        self.video_path = video_path
        self.stage = stage
        self.cause = cause
        super().__init__(f"{video_path.name}: {stage} failed: {cause}")
