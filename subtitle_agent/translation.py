from __future__ import annotations

import asyncio
import logging
import os
from typing import List, Optional, Sequence, Tuple

import openai
import requests
from openai import AsyncOpenAI

from .config import TranslationConfig
from .errors import MalformedTranslationResponse, TranslationClientUnavailable
from .types import Segment, TranslatedSegment, TranslationBatch, TranslationFailure

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a translator that converts text from {source} to {target}. "
    "Reply only with the translation, without additional comments or formatting."
)


def build_messages(text: str, source_language: str, target_language: str) -> List[dict]:
    return [
        {"role": "system", "content": SYSTEM_PROMPT.format(source=source_language, target=target_language)},
        {"role": "user", "content": text},
    ]


class BaseTranslator:
    def ensure_available(self) -> None:
        """Raise ``TranslationClientUnavailable`` if no request can succeed."""

    async def translate_text(self, text: str, source_language: str, target_language: str) -> str:
        raise NotImplementedError


class OpenAITranslator(BaseTranslator):
    """Translate text with an OpenAI-compatible chat completions API."""

    def __init__(self, config: TranslationConfig, client: Optional[AsyncOpenAI] = None):
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
            try:
                self._client = AsyncOpenAI(**kwargs)
            except openai.OpenAIError as exc:
                raise TranslationClientUnavailable(str(exc)) from exc
        return self._client

    def ensure_available(self) -> None:
        # AsyncOpenAI refuses to construct without an API key.
        self._get_client()

    async def translate_text(self, text: str, source_language: str, target_language: str) -> str:
        client = self._get_client()
        kwargs = {}
        if self.config.temperature is not None:
            kwargs["temperature"] = self.config.temperature
        try:
            response = await client.chat.completions.create(
                model=self.config.model,
                messages=build_messages(text, source_language, target_language),
                **kwargs,
            )
        except (openai.AuthenticationError, openai.PermissionDeniedError) as exc:
            raise TranslationClientUnavailable(str(exc)) from exc
        except openai.RateLimitError as exc:
            if getattr(exc, "code", None) == "insufficient_quota":
                raise TranslationClientUnavailable(str(exc)) from exc
            raise

        if not response.choices:
            raise MalformedTranslationResponse("Translation response contained no choices")
        content = response.choices[0].message.content
        return (content or "").strip()


class DeepSeekTranslator(BaseTranslator):
    """Translate text via the DeepSeek REST API."""

    def __init__(self, config: TranslationConfig, session: Optional[requests.Session] = None):
        self.config = config
        # The OpenAI default key variable never applies to DeepSeek.
        if config.api_key_env and config.api_key_env != "OPENAI_API_KEY":
            self.api_key_env = config.api_key_env
        else:
            self.api_key_env = "DEEPSEEK_API_KEY"
        self.api_key = os.getenv(self.api_key_env)
        self.base_url = (config.api_base or "https://api.deepseek.com").rstrip("/")
        self.session = session or requests.Session()

    def ensure_available(self) -> None:
        if not self.api_key:
            raise TranslationClientUnavailable(
                f"DeepSeek API key not found. Please set environment variable '{self.api_key_env}'."
            )

    async def translate_text(self, text: str, source_language: str, target_language: str) -> str:
        self.ensure_available()
        return await asyncio.to_thread(self._post, text, source_language, target_language)

    def _post(self, text: str, source_language: str, target_language: str) -> str:
        url = f"{self.base_url}/v1/chat/completions"
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        payload = {
            "model": self.config.model or "deepseek-chat",
            "messages": build_messages(text, source_language, target_language),
        }
        if self.config.temperature is not None:
            payload["temperature"] = self.config.temperature
        response = self.session.post(url, headers=headers, json=payload, timeout=self.config.request_timeout)
        if response.status_code in (401, 403):
            raise TranslationClientUnavailable(f"DeepSeek rejected credentials (HTTP {response.status_code})")
        response.raise_for_status()
        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise MalformedTranslationResponse(f"Unexpected DeepSeek response: {response.text[:200]}") from exc
        return (content or "").strip()


class SegmentTranslator:
    """Translate every segment concurrently, keeping output slots aligned with input order.

    Each segment gets exactly one request. Results are written into a pre-sized list at
    the segment's own index, so completion order never affects the output. A failed
    request leaves a fallback text in its slot and is reported as a ``TranslationFailure``;
    ``TranslationClientUnavailable`` cancels the remaining requests and propagates.
    """

    def __init__(self, translator: BaseTranslator, config: TranslationConfig):
        if config.fallback not in ("source", "marker"):
            raise ValueError(f"Unsupported fallback policy: {config.fallback}")
        self.translator = translator
        self.config = config

    async def translate_segments(
        self,
        segments: Sequence[Segment],
        source_language: str,
        target_language: str,
    ) -> TranslationBatch:
        segments = list(segments)
        if not segments:
            return TranslationBatch(segments=[])

        self.translator.ensure_available()

        results: List[Optional[TranslatedSegment]] = [None] * len(segments)
        failures: List[Optional[TranslationFailure]] = [None] * len(segments)
        limit = self.config.max_concurrency
        semaphore = asyncio.Semaphore(limit) if limit else None

        async def run(index: int, segment: Segment) -> None:
            if semaphore is None:
                results[index], failures[index] = await self._translate_one(
                    index, segment, source_language, target_language
                )
                return
            async with semaphore:
                results[index], failures[index] = await self._translate_one(
                    index, segment, source_language, target_language
                )

        logger.info(
            "Translating %s segments %s -> %s (max in flight: %s)",
            len(segments),
            source_language,
            target_language,
            limit or len(segments),
        )
        tasks = [asyncio.ensure_future(run(index, segment)) for index, segment in enumerate(segments)]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        batch = TranslationBatch(
            segments=[segment for segment in results if segment is not None],
            failures=[failure for failure in failures if failure is not None],
        )
        if len(batch.segments) != len(segments):
            raise RuntimeError("Translation finished with unfilled segment slots")
        if batch.failures:
            logger.warning("%s of %s segments fell back to %s text", len(batch.failures), len(segments), self.config.fallback)
        return batch

    async def _translate_one(
        self,
        index: int,
        segment: Segment,
        source_language: str,
        target_language: str,
    ) -> Tuple[TranslatedSegment, Optional[TranslationFailure]]:
        try:
            text = await asyncio.wait_for(
                self.translator.translate_text(segment.text, source_language, target_language),
                timeout=self.config.request_timeout,
            )
        except TranslationClientUnavailable:
            raise
        except asyncio.TimeoutError as exc:
            logger.warning("Translation of segment %s timed out after %ss", index, self.config.request_timeout)
            return self._fallback(segment), TranslationFailure(segment_index=index, cause=exc)
        except Exception as exc:
            logger.warning("Translation of segment %s failed: %s", index, exc)
            return self._fallback(segment), TranslationFailure(segment_index=index, cause=exc)

        logger.debug("Segment %03d: %s -> %s", index, segment.text, text)
        return (
            TranslatedSegment(start=segment.start, end=segment.end, text=text, source_text=segment.text),
            None,
        )

    def _fallback(self, segment: Segment) -> TranslatedSegment:
        if self.config.fallback == "marker":
            text = self.config.fallback_marker
        else:
            text = segment.text
        return TranslatedSegment(
            start=segment.start,
            end=segment.end,
            text=text,
            source_text=segment.text,
            failed=True,
        )


def build_translator(config: TranslationConfig, client: Optional[AsyncOpenAI] = None) -> BaseTranslator:
    provider = (config.provider or "openai").lower()
    if provider == "openai":
        return OpenAITranslator(config=config, client=client)
    if provider == "deepseek":
        return DeepSeekTranslator(config=config)
    raise ValueError(f"Unsupported translation provider: {config.provider}")
