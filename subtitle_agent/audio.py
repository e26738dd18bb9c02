from __future__ import annotations

import asyncio
import logging
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from moviepy import VideoFileClip

from .errors import AudioExtractionError

logger = logging.getLogger(__name__)


def extract_audio(video_path: Path, output_path: Path, codec: str = "libmp3lame") -> Path:
    """Write the audio track of ``video_path`` to ``output_path`` as MP3."""

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with VideoFileClip(str(video_path)) as clip:
        if clip.audio is None:
            raise AudioExtractionError(f"{video_path} has no audio stream")
        logger.info("Extracting audio from %s", video_path.name)
        clip.audio.write_audiofile(str(output_path), codec=codec, logger=None)
    if not output_path.exists() or output_path.stat().st_size == 0:
        raise AudioExtractionError(f"Audio extraction produced no output for {video_path}")
    return output_path


@asynccontextmanager
async def temporary_audio(video_path: Path, work_dir: Optional[Path] = None) -> AsyncIterator[Path]:
    """Extract audio into a scratch directory that is removed when the block exits, on error too."""

    if work_dir is not None:
        work_dir.mkdir(parents=True, exist_ok=True)
    with tempfile.TemporaryDirectory(prefix="subtitle-agent-", dir=work_dir) as scratch:
        audio_path = Path(scratch) / f"{video_path.stem}.mp3"
        yield await asyncio.to_thread(extract_audio, video_path, audio_path)
