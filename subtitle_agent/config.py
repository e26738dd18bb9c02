from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple


@dataclass
class TranscriptionConfig:
    """Configuration for speech-to-text."""

    provider: str = "openai"  # "openai" (whisper-1 API) or "whisper" (local model)
    model: str = "whisper-1"
    temperature: float = 1.0
    model_size: str = "base"
    device: Optional[str] = None
    api_base: Optional[str] = None
    api_key_env: Optional[str] = "OPENAI_API_KEY"


@dataclass
class TranslationConfig:
    """Configuration for segment translation."""

    provider: str = "openai"
    model: str = "gpt-4"
    temperature: Optional[float] = None
    request_timeout: float = 60.0
    max_concurrency: Optional[int] = 8  # 0 or None: one request in flight per segment
    fallback: str = "source"  # "source" keeps the untranslated text, "marker" uses fallback_marker
    fallback_marker: str = "[translation unavailable]"
    api_base: Optional[str] = None
    api_key_env: Optional[str] = "OPENAI_API_KEY"


@dataclass
class CompositingConfig:
    """Configuration for burning subtitles into the video with ffmpeg."""

    ffmpeg_binary: str = "ffmpeg"
    video_codec: str = "libx264"
    force_style: Optional[str] = "Alignment=2,MarginV=40"


@dataclass
class PipelineConfig:
    """Run-scoped configuration shared read-only by every stage of a batch."""

    source_language: str = "en"
    target_language: str = "pt"
    transcription: TranscriptionConfig = field(default_factory=TranscriptionConfig)
    translation: TranslationConfig = field(default_factory=TranslationConfig)
    compositing: CompositingConfig = field(default_factory=CompositingConfig)
    videos_dir: Path = Path("videos")
    subtitles_dir: Path = Path("subtitles")
    output_dir: Path = Path("with-subtitles")
    work_dir: Optional[Path] = None
    video_extensions: Tuple[str, ...] = (".mp4", ".mov", ".avi", ".mkv")
    abort_on_segment_failure: bool = False
    write_transcript_json: bool = False
    overwrite: bool = True
