"""Translate videos into burned-in subtitles in another language."""

from .config import PipelineConfig
from .pipeline import VideoSubtitleAgent

__all__ = ["VideoSubtitleAgent", "PipelineConfig"]
