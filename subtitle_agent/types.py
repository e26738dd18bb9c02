from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional


@dataclass(frozen=True)
class Segment:
    """Single transcript segment with timing data."""

    start: float
    end: float
    text: str


@dataclass(frozen=True)
class TranslatedSegment:
    """Segment whose text has been replaced by the target-language translation."""

    start: float
    end: float
    text: str
    source_text: str = ""
    failed: bool = False


@dataclass(frozen=True)
class TranslationFailure:
    """A translation request that failed and was replaced by a fallback text."""

    segment_index: int
    cause: BaseException

    def describe(self) -> str:
        return f"segment {self.segment_index}: {type(self.cause).__name__}: {self.cause}"


@dataclass
class TranslationBatch:
    """Translated segments in input order plus the per-segment failures."""

    segments: List[TranslatedSegment]
    failures: List[TranslationFailure] = field(default_factory=list)

    @property
    def has_failures(self) -> bool:
        return bool(self.failures)


@dataclass
class Transcript:
    segments: List[Segment]
    language: Optional[str] = None


@dataclass
class VideoArtifacts:
    """Paths to the generated artifacts for one video."""

    video_path: Path
    subtitles_path: Path
    transcript_json: Optional[Path] = None


@dataclass
class VideoResult:
    source_path: Path
    artifacts: Optional[VideoArtifacts] = None
    error: Optional[BaseException] = None
    translation_failures: List[TranslationFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None and self.artifacts is not None


@dataclass
class BatchReport:
    """Outcome of a batch run, one result per attempted video."""

    results: List[VideoResult] = field(default_factory=list)

    @property
    def succeeded(self) -> List[VideoResult]:
        return [result for result in self.results if result.ok]

    @property
    def failed(self) -> List[VideoResult]:
        return [result for result in self.results if not result.ok]
