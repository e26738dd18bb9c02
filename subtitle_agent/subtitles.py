from __future__ import annotations

import datetime as dt
import math
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from pathlib import Path
from typing import Iterable

import srt

from .errors import SubtitleTimingError
from .types import TranslatedSegment

_MILLISECOND = Decimal("0.001")


def to_milliseconds(seconds: float) -> int:
    """Round a seconds value to whole milliseconds, half-up on its decimal form.

    ``3661.9995`` becomes ``3662000`` rather than ``3661999``: rounding happens on the
    shortest decimal representation of the float, so the half-millisecond boundary
    behaves the way the number reads.
    """
    value = float(seconds)
    if math.isnan(value) or math.isinf(value) or value < 0:
        raise SubtitleTimingError(f"Invalid subtitle timestamp: {seconds!r}")
    try:
        rounded = Decimal(repr(value)).quantize(_MILLISECOND, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise SubtitleTimingError(f"Subtitle timestamp out of range: {seconds!r}") from exc
    return int(rounded * 1000)


def to_timedelta(seconds: float) -> dt.timedelta:
    milliseconds = to_milliseconds(seconds)
    try:
        return dt.timedelta(milliseconds=milliseconds)
    except OverflowError as exc:
        raise SubtitleTimingError(f"Subtitle timestamp out of range: {seconds!r}") from exc


def format_timestamp(seconds: float) -> str:
    """Render seconds as ``HH:MM:SS,mmm``; hours grow past two digits instead of wrapping."""
    return srt.timedelta_to_srt_timestamp(to_timedelta(seconds))


def build_srt(segments: Iterable[TranslatedSegment]) -> str:
    """Compose an SRT document with cues numbered 1..N in the order given.

    All timestamps are validated before anything is composed; the input order is kept
    as-is and never re-sorted by time.
    """
    subtitles = []
    for idx, segment in enumerate(segments, start=1):
        try:
            start = to_timedelta(segment.start)
            end = to_timedelta(segment.end)
        except SubtitleTimingError as exc:
            raise SubtitleTimingError(f"Cue {idx}: {exc}") from exc
        subtitles.append(
            srt.Subtitle(
                index=idx,
                start=start,
                end=end,
                content=segment.text,
            )
        )
    return srt.compose(subtitles, reindex=False)


def write_srt(document: str, output_path: Path) -> Path:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(document, encoding="utf-8")
    return output_path
