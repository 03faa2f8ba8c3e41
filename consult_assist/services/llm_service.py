"""
LLM Gateway: chat completions, streamed chat and audio transcription
"""
import json
import time
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Sequence

import httpx

from consult_assist.config import (
    DEFAULT_AUDIO_MODEL,
    DEFAULT_CHAT_MODEL,
    DEFAULT_LLM_BASE_URL,
    Settings,
)
from consult_assist.core import preferences as prefs
from consult_assist.core.errors import (
    ConfigurationError,
    ResponseFormatError,
    UpstreamNetworkError,
    UpstreamStatusError,
)
from consult_assist.core.logging import audit_logger, get_logger
from consult_assist.core.preferences import UserPreferences
from consult_assist.core.retry import DEFAULT_RETRY_POLICY, RetryPolicy, Sleep, retry_async
from consult_assist.models.chat import ChatMessage

logger = get_logger(__name__)

STREAM_DATA_PREFIX = "data:"
STREAM_DONE = "[DONE]"


@dataclass(frozen=True)
class LLMConfig:
    api_key: str
    base_url: str
    chat_model: str
    audio_model: str


def _first(*values: Optional[str]) -> str:
    for value in values:
        if value:
            return value
    return ""


def resolve_llm_config(
    settings: Settings,
    preferences: Optional[UserPreferences] = None,
    api_key: Optional[str] = None,
    base_url: Optional[str] = None,
    chat_model: Optional[str] = None,
) -> LLMConfig:
    """
    Resolve provider settings with call-site override, then user preference,
    then environment, then the hardcoded default.
    """
    stored = preferences.get if preferences is not None else (lambda key: None)
    return LLMConfig(
        api_key=_first(api_key, stored(prefs.OPENAI_API_KEY), settings.openai_api_key),
        base_url=_first(
            base_url, stored(prefs.LLM_BASE_URL), settings.llm_base_url, DEFAULT_LLM_BASE_URL
        ).rstrip("/"),
        chat_model=_first(chat_model, stored(prefs.LLM_MODEL), settings.llm_model, DEFAULT_CHAT_MODEL),
        audio_model=_first(stored(prefs.AUDIO_MODEL), settings.audio_model, DEFAULT_AUDIO_MODEL),
    )


def build_messages_payload(messages: Sequence[ChatMessage]) -> list:
    return [message.to_payload() for message in messages]


def decode_stream_record(data: str) -> Optional[str]:
    """Extract the text delta of one streamed record; raises on malformed input."""
    delta = json.loads(data)["choices"][0]["delta"].get("content")
    return delta if isinstance(delta, str) else None


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and isinstance(data.get("error"), dict):
        message = data["error"].get("message")
        if message:
            return str(message)
    return response.reason_phrase or response.text or "request failed"


class LLMService:
    """Gateway to the chat/completion and audio transcription provider."""

    def __init__(
        self,
        settings: Settings,
        preferences: Optional[UserPreferences] = None,
        client: Optional[httpx.AsyncClient] = None,
        retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        sleep: Optional[Sleep] = None,
    ):
        self.settings = settings
        self.preferences = preferences
        self.client = client or httpx.AsyncClient(timeout=settings.llm_timeout)
        self.retry_policy = retry_policy
        self._sleep = sleep

    async def aclose(self) -> None:
        await self.client.aclose()

    def resolve_config(self, api_key: Optional[str] = None) -> LLMConfig:
        config = resolve_llm_config(self.settings, self.preferences, api_key=api_key)
        if not config.api_key:
            raise ConfigurationError(
                "Missing API key. Set OPENAI_API_KEY in the environment or the OPENAI_API_KEY user preference."
            )
        return config

    @staticmethod
    def _headers(config: LLMConfig) -> dict:
        return {"Authorization": f"Bearer {config.api_key}"}

    async def _send(self, request: httpx.Request, stream: bool = False) -> httpx.Response:
        start = time.monotonic()
        try:
            response = await self.client.send(request, stream=stream)
        except httpx.TimeoutException as e:
            raise UpstreamNetworkError(f"Request timeout calling {request.url.path}: {e}") from e
        except httpx.TransportError as e:
            raise UpstreamNetworkError(f"Network error calling {request.url.path}: {e}") from e

        audit_logger.log_external_api_call(
            service="llm",
            endpoint=request.url.path,
            response_status=response.status_code,
            response_time_ms=int((time.monotonic() - start) * 1000),
        )
        if not response.is_success:
            if stream:
                await response.aread()
                await response.aclose()
            raise UpstreamStatusError(response.status_code, _error_message(response))
        return response

    @staticmethod
    def _json(response: httpx.Response) -> dict:
        try:
            data = response.json()
        except ValueError as e:
            raise ResponseFormatError(f"Provider returned a non-JSON body: {e}") from e
        if not isinstance(data, dict):
            raise ResponseFormatError("Provider returned an unexpected JSON body")
        return data

    async def chat(self, messages: Sequence[ChatMessage], api_key: Optional[str] = None) -> str:
        """Single request/response chat completion."""
        config = self.resolve_config(api_key)
        payload = {"model": config.chat_model, "messages": build_messages_payload(messages)}

        async def call() -> str:
            request = self.client.build_request(
                "POST", f"{config.base_url}/chat/completions", json=payload, headers=self._headers(config)
            )
            data = self._json(await self._send(request))
            try:
                content = data["choices"][0]["message"].get("content")
            except (KeyError, IndexError, TypeError, AttributeError):
                content = None
            return content if isinstance(content, str) else ""

        logger.info(f"Chat completion with model {config.chat_model}, {len(messages)} messages")
        return await retry_async(call, self.retry_policy, sleep=self._sleep, description="chat completion")

    async def chat_stream(
        self, messages: Sequence[ChatMessage], api_key: Optional[str] = None
    ) -> AsyncIterator[str]:
        """
        Stream a chat completion as text fragments, in arrival order.

        Only opening the stream is retried; once fragments flow, a failure
        ends the iteration with that error. Malformed records are skipped.
        """
        config = self.resolve_config(api_key)
        payload = {
            "model": config.chat_model,
            "messages": build_messages_payload(messages),
            "stream": True,
        }

        async def open_stream() -> httpx.Response:
            request = self.client.build_request(
                "POST", f"{config.base_url}/chat/completions", json=payload, headers=self._headers(config)
            )
            return await self._send(request, stream=True)

        response = await retry_async(
            open_stream, self.retry_policy, sleep=self._sleep, description="chat stream"
        )
        try:
            async for line in response.aiter_lines():
                line = line.strip()
                if not line.startswith(STREAM_DATA_PREFIX):
                    continue
                data = line[len(STREAM_DATA_PREFIX):].strip()
                if data == STREAM_DONE:
                    break
                try:
                    fragment = decode_stream_record(data)
                except (ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
                    logger.warning(f"Skipping malformed stream record: {e}", record=data[:200])
                    continue
                if fragment:
                    yield fragment
        except httpx.TransportError as e:
            raise UpstreamNetworkError(f"Stream interrupted: {e}") from e
        finally:
            await response.aclose()

    async def transcribe_audio(
        self,
        audio: bytes,
        api_key: Optional[str] = None,
        content_type: str = "audio/webm",
        filename: str = "audio.webm",
    ) -> str:
        """Multipart upload to the audio transcription endpoint."""
        config = self.resolve_config(api_key)

        async def call() -> str:
            request = self.client.build_request(
                "POST",
                f"{config.base_url}/audio/transcriptions",
                headers=self._headers(config),
                files={"file": (filename, audio, content_type)},
                data={"model": config.audio_model},
                timeout=self.settings.stt_timeout,
            )
            data = self._json(await self._send(request))
            text = data.get("text")
            return text if isinstance(text, str) else ""

        logger.info(f"Transcribing {len(audio)} bytes with {config.audio_model}")
        return await retry_async(call, self.retry_policy, sleep=self._sleep, description="audio transcription")
