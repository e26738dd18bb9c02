from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

from .config import CompositingConfig
from .errors import CompositingError

logger = logging.getLogger(__name__)


def subtitles_filter(subtitles_path: Path, force_style: Optional[str] = None) -> str:
    """Build the ffmpeg ``subtitles`` video filter argument for ``subtitles_path``.

    The value is parsed twice by ffmpeg: the filter option parser unescapes ``\\:`` and
    ``\\'``, and the filtergraph parser strips the outer quotes. A quote inside the path
    therefore closes the quoted run, adds an escaped quote and reopens it.
    """
    path = str(subtitles_path.resolve()).replace("\\", "/")
    path = path.replace(":", "\\:").replace("'", "\\'")
    options = f"{path}:force_style={force_style}" if force_style else path
    return "subtitles='" + options.replace("'", "'\\''") + "'"


async def burn_subtitles(
    video_path: Path,
    subtitles_path: Path,
    output_path: Path,
    config: Optional[CompositingConfig] = None,
) -> Path:
    config = config or CompositingConfig()
    output_path.parent.mkdir(parents=True, exist_ok=True)
    cmd = [
        config.ffmpeg_binary,
        "-y",
        "-i", str(video_path),
        "-vf", subtitles_filter(subtitles_path, config.force_style),
        "-c:v", config.video_codec,
        "-c:a", "copy",
        str(output_path),
    ]

    logger.info("Burning subtitles into %s", output_path)
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        raise CompositingError(f"ffmpeg executable not found: {config.ffmpeg_binary}") from exc
    _, stderr = await proc.communicate()

    if proc.returncode != 0:
        raise CompositingError(f"ffmpeg subtitle burn failed: {stderr.decode(errors='replace')[-2000:]}")
    return output_path
