import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from subtitle_agent import PipelineConfig, VideoSubtitleAgent
from subtitle_agent.config import CompositingConfig, TranscriptionConfig, TranslationConfig
from subtitle_agent.errors import TranslationClientUnavailable


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Translate every video in a folder into burned-in subtitles.")
    parser.add_argument("--videos-dir", type=Path, default=Path("videos"), help="Folder with the source videos.")
    parser.add_argument("--subtitles-dir", type=Path, default=Path("subtitles"), help="Folder for generated .srt files.")
    parser.add_argument("--output-dir", type=Path, default=Path("with-subtitles"), help="Folder for subtitled videos.")
    parser.add_argument("--work-dir", type=Path, help="Scratch folder for extracted audio (system temp by default).")
    parser.add_argument("--source-lang", type=str, help="Language spoken in the videos (e.g. de, en, pt, es).")
    parser.add_argument("--target-lang", type=str, help="Language of the subtitles (e.g. pt, en, es).")
    parser.add_argument("--transcription-provider", type=str, choices=["openai", "whisper"], default="openai", help="Speech-to-text backend.")
    parser.add_argument("--whisper-model", type=str, default="base", help="Local Whisper model size (tiny/base/small/medium/large).")
    parser.add_argument("--translation-provider", type=str, choices=["openai", "deepseek"], default="openai", help="Translation backend to use.")
    parser.add_argument("--translation-model", type=str, default="gpt-4", help="Model name for translation provider.")
    parser.add_argument("--translation-api-base", type=str, help="Custom base URL for translation API (optional).")
    parser.add_argument("--translation-api-key-env", type=str, help="Environment variable containing translation API key.")
    parser.add_argument("--max-concurrency", type=int, default=8, help="Translation requests in flight per video (0 = no limit).")
    parser.add_argument("--request-timeout", type=float, default=60.0, help="Seconds to wait for each translation request.")
    parser.add_argument("--fallback", type=str, choices=["source", "marker"], default="source", help="Text used for segments that fail to translate.")
    parser.add_argument("--abort-on-segment-failure", action="store_true", help="Fail the whole video if any segment fails to translate.")
    parser.add_argument("--transcript-json", action="store_true", help="Also write a JSON transcript next to each .srt file.")
    parser.add_argument("--no-overwrite", action="store_true", help="Refuse to replace an existing subtitled video; that video is reported as failed.")
    parser.add_argument("--log-level", type=str, default="INFO", help="Logging level (DEBUG, INFO, WARNING, ERROR).")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> PipelineConfig:
    source_language = args.source_lang or input("Source language of the video(s)? (e.g. de, en, pt, es): ").strip()
    target_language = args.target_lang or input("Translate subtitles into which language? (e.g. pt, en, es): ").strip()

    translation_model = args.translation_model
    if args.translation_provider == "deepseek" and translation_model == "gpt-4":
        translation_model = "deepseek-chat"
    translation_api_key_env = args.translation_api_key_env
    if not translation_api_key_env:
        translation_api_key_env = "OPENAI_API_KEY" if args.translation_provider == "openai" else "DEEPSEEK_API_KEY"

    translation = TranslationConfig(
        provider=args.translation_provider,
        model=translation_model,
        request_timeout=args.request_timeout,
        max_concurrency=args.max_concurrency or None,
        fallback=args.fallback,
        api_base=args.translation_api_base,
        api_key_env=translation_api_key_env,
    )

    return PipelineConfig(
        source_language=source_language,
        target_language=target_language,
        transcription=TranscriptionConfig(provider=args.transcription_provider, model_size=args.whisper_model),
        translation=translation,
        compositing=CompositingConfig(),
        videos_dir=args.videos_dir,
        subtitles_dir=args.subtitles_dir,
        output_dir=args.output_dir,
        work_dir=args.work_dir,
        abort_on_segment_failure=args.abort_on_segment_failure,
        write_transcript_json=args.transcript_json,
        overwrite=not args.no_overwrite,
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    load_dotenv()
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO))

    config = build_config(args)
    agent = VideoSubtitleAgent(config=config)

    try:
        report = asyncio.run(agent.run_directory())
    except TranslationClientUnavailable as exc:
        logging.error("Translation backend unavailable: %s", exc)
        return 2
    except FileNotFoundError as exc:
        logging.error("%s", exc)
        return 2

    for result in report.succeeded:
        logging.info("Subtitled video: %s", result.artifacts.video_path)
        if result.translation_failures:
            logging.warning(
                "  %s segment(s) kept fallback text: %s",
                len(result.translation_failures),
                ", ".join(str(failure.segment_index) for failure in result.translation_failures),
            )
    for result in report.failed:
        logging.error("Failed: %s (%s)", result.source_path.name, result.error)

    return 1 if report.failed else 0


if __name__ == "__main__":
    sys.exit(main())
