"""
Speech-to-Text Service
Uses the proxied realtime recognizer as primary backend and falls back to
the LLM provider's audio transcription endpoint.
"""

import asyncio
import base64
import io
import time
import wave
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Protocol

import httpx

from consult_assist.config import Settings
from consult_assist.core import preferences as prefs
from consult_assist.core.errors import (
    ConfigurationError,
    TranscriptionError,
    UnsupportedAudioError,
    UpstreamNetworkError,
    UpstreamStatusError,
)
from consult_assist.core.logging import audit_logger, get_logger
from consult_assist.core.preferences import UserPreferences
from consult_assist.core.retry import TRANSCRIPTION_RETRY_POLICY, RetryPolicy, Sleep, retry_async
from consult_assist.services.llm_service import LLMService

logger = get_logger(__name__)

WAV_HEADER_BYTES = 44
WAV_CONTENT_TYPES = ("audio/wav", "audio/wave", "audio/x-wav")
RAW_PCM_CONTENT_TYPES = ("audio/pcm", "audio/l16")

# Canned consultation returned in test mode instead of calling any backend
TEST_MODE_SAMPLE_TEXT = """坐吧，先量个体温。什么时候开始发烧的？最高多少度？
昨天下午开始的，在家量是38.5℃，吃了对乙酰氨基酚，退了又烧起来。
除了发烧还有哪里不舒服？嗓子疼、咳嗽、浑身酸痛吗？
嗓子疼得厉害，干咳没有痰，全身没劲、关节酸，不流鼻涕也不拉肚子。
最近受凉了吗？接触过发烧的人吗？
前天淋雨着凉了，没接触过发烧的人，家里人都好好的。
张嘴看一下，扁桃体肿大、咽部充血。除了退烧药还吃过别的药吗？
没有，我对青霉素过敏。
过敏史记下了。测一下血氧，听听肺，血氧98%，肺部没有问题，不考虑肺炎。
是流感吗？要拍胸片吗？
更像普通上呼吸道感染，不用拍胸片，先查血常规和C反应蛋白，看看是细菌还是病毒感染。
好的，查完怎么用药？
病毒感染就对症处理、多休息、按时退烧；细菌感染就用阿奇霉素，你对它不过敏。
需要隔离吗？能上班吗？
不用强制隔离，建议在家休息3到5天，不烧了再上班。多喝水，饮食清淡，别熬夜。
体温超过39℃或者胸闷气短随时来复诊。
好的，谢谢医生。"""


@dataclass(frozen=True)
class AudioPayload:
    data: bytes
    content_type: str = "audio/wav"

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def media_type(self) -> str:
        return self.content_type.split(";", 1)[0].strip().lower()

    @property
    def is_wav(self) -> bool:
        return self.media_type in WAV_CONTENT_TYPES

    @property
    def is_pcm(self) -> bool:
        """True when the realtime recognizer can consume this payload."""
        return self.is_wav or self.media_type in RAW_PCM_CONTENT_TYPES

    @property
    def filename(self) -> str:
        if self.is_wav:
            return "audio.wav"
        subtype = self.media_type.rsplit("/", 1)[-1]
        if subtype.startswith("x-"):
            subtype = subtype[2:]
        return f"audio.{'mp3' if subtype == 'mpeg' else subtype or 'bin'}"

    def pcm_samples(self) -> bytes:
        """Raw samples for the realtime recognizer (WAV header stripped)."""
        if not self.is_pcm:
            raise UnsupportedAudioError(f"{self.media_type} audio cannot be sent as PCM")
        if self.is_wav and len(self.data) >= WAV_HEADER_BYTES:
            return self.data[WAV_HEADER_BYTES:]
        return self.data


def encode_wav(pcm: bytes, sample_rate: int = 16000, channels: int = 1, sample_width: int = 2) -> bytes:
    """Wrap 16-bit little-endian PCM in a canonical 44-byte-header WAV container."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(channels)
        wav.setsampwidth(sample_width)
        wav.setframerate(sample_rate)
        wav.writeframes(pcm)
    return buffer.getvalue()


class PrimaryTranscriber(Protocol):
    async def __call__(self, api_key: str, samples: bytes) -> str:
        ...


class SpeechProxyClient:
    """
    Reaches the local proxy that holds the authenticated recognizer
    connection. The proxy owns the recognizer wire protocol.
    """

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.base_url = settings.speech_proxy_url.rstrip("/")
        self.model = settings.speech_model
        self.sample_rate = settings.speech_sample_rate
        self.client = client or httpx.AsyncClient(timeout=settings.stt_timeout)

    async def __call__(self, api_key: str, samples: bytes) -> str:
        if not samples:
            raise ValueError("Audio data is empty")
        payload = {
            "api_key": api_key,
            "model": self.model,
            "format": "pcm",
            "sample_rate": self.sample_rate,
            "audio_data": base64.b64encode(samples).decode("ascii"),
        }
        start = time.monotonic()
        try:
            response = await self.client.post(f"{self.base_url}/transcribe", json=payload)
        except httpx.TimeoutException as e:
            raise UpstreamNetworkError(f"Speech proxy timeout: {e}") from e
        except httpx.TransportError as e:
            raise UpstreamNetworkError(f"Speech proxy unreachable: {e}") from e

        audit_logger.log_external_api_call(
            service="speech_proxy",
            endpoint="/transcribe",
            response_status=response.status_code,
            response_time_ms=int((time.monotonic() - start) * 1000),
        )
        if not response.is_success:
            raise UpstreamStatusError(response.status_code, response.text or response.reason_phrase)
        text = response.json().get("text")
        return text if isinstance(text, str) else ""

    async def aclose(self) -> None:
        await self.client.aclose()


def is_test_mode_enabled(settings: Settings, preferences: Optional[UserPreferences] = None) -> bool:
    if preferences is not None and preferences.get(prefs.SPEECH_TEST_MODE) == "true":
        return True
    return settings.speech_test_mode


def set_test_mode(preferences: UserPreferences, enabled: bool) -> None:
    if enabled:
        preferences.set(prefs.SPEECH_TEST_MODE, "true")
    else:
        preferences.remove(prefs.SPEECH_TEST_MODE)
    logger.info(f"Speech test mode {'ENABLED' if enabled else 'DISABLED'}")


def resolve_speech_api_key(
    settings: Settings, preferences: Optional[UserPreferences] = None, api_key: Optional[str] = None
) -> str:
    if api_key:
        return api_key
    stored = preferences.get(prefs.DASHSCOPE_API_KEY) if preferences is not None else None
    return stored or settings.dashscope_api_key


class SpeechTranscriptionService:
    """Resolves one audio payload into a transcript."""

    def __init__(
        self,
        settings: Settings,
        llm_service: LLMService,
        primary: PrimaryTranscriber,
        preferences: Optional[UserPreferences] = None,
        retry_policy: RetryPolicy = TRANSCRIPTION_RETRY_POLICY,
        sleep: Optional[Sleep] = None,
    ):
        self.settings = settings
        self.llm_service = llm_service
        self.primary = primary
        self.preferences = preferences
        self.retry_policy = retry_policy
        self._sleep = sleep or asyncio.sleep

    def api_key(self) -> str:
        return resolve_speech_api_key(self.settings, self.preferences)

    async def _transcribe_primary(self, payload: AudioPayload) -> str:
        api_key = self.api_key()
        if not api_key:
            raise ConfigurationError("DashScope API key is not configured.")
        samples = payload.pcm_samples()
        logger.info(f"Transcribing {len(samples)} bytes of PCM via the speech proxy")
        return await retry_async(
            lambda: self.primary(api_key, samples),
            self.retry_policy,
            sleep=self._sleep,
            description="realtime speech recognition",
        )

    def _fallback_available(self, payload: AudioPayload, allow_fallback: bool) -> bool:
        return allow_fallback and payload.size < self.settings.max_fallback_audio_bytes

    def _log_outcome(self, provider: str, payload: AudioPayload, outcome: str, start: float) -> None:
        audit_logger.log_transcription_event(
            provider=provider,
            audio_size_bytes=payload.size,
            outcome=outcome,
            processing_time_ms=int((time.monotonic() - start) * 1000),
        )

    async def _transcribe_fallback(self, payload: AudioPayload, primary_error: Exception, start: float) -> str:
        logger.warning("Falling back to the LLM provider's audio transcription")
        try:
            text = await self.llm_service.transcribe_audio(
                payload.data, content_type=payload.media_type, filename=payload.filename
            )
        except Exception as fallback_error:
            self._log_outcome("fallback", payload, "failed", start)
            raise TranscriptionError(primary_error, fallback_error) from fallback_error

        self._log_outcome("fallback", payload, "success", start)
        return text

    async def transcribe(self, payload: AudioPayload, allow_fallback: bool = True) -> str:
        if is_test_mode_enabled(self.settings, self.preferences):
            logger.info("TEST MODE: returning sample text instead of a real transcription")
            await self._sleep(self.settings.speech_test_mode_delay_seconds)
            return TEST_MODE_SAMPLE_TEXT

        start = time.monotonic()
        if not payload.is_pcm:
            unsupported = UnsupportedAudioError(
                f"{payload.media_type} audio is not PCM and can only be transcribed by the fallback"
            )
            if not self._fallback_available(payload, allow_fallback):
                raise unsupported
            logger.info(f"Skipping the realtime recognizer for {payload.media_type} audio")
            return await self._transcribe_fallback(payload, unsupported, start)

        try:
            text = await self._transcribe_primary(payload)
        except Exception as primary_error:
            logger.error(f"Primary speech recognition failed: {primary_error}")
            if not self._fallback_available(payload, allow_fallback):
                self._log_outcome("primary", payload, "failed", start)
                raise
            return await self._transcribe_fallback(payload, primary_error, start)

        self._log_outcome("primary", payload, "success", start)
        return text


class SessionState(str, Enum):
    IDLE = "idle"
    COLLECTING = "collecting"
    FINISHING = "finishing"


OnText = Callable[[str, bool], None]


class SpeechTranscriptionSession:
    """
    One recording session: collects PCM chunks, then resolves a transcript.
    Not shared between recordings.
    """

    def __init__(self, service: SpeechTranscriptionService):
        self.service = service
        self.state = SessionState.IDLE
        self._chunks: List[bytes] = []
        self._on_text: Optional[OnText] = None
        self._generation = 0

    @property
    def is_collecting(self) -> bool:
        return self.state == SessionState.COLLECTING

    def start(self, on_text: Optional[OnText] = None) -> None:
        if not self.service.api_key():
            raise ConfigurationError("DashScope API key is not configured.")
        self._generation += 1
        self._on_text = on_text
        self._chunks = []
        self.state = SessionState.COLLECTING
        logger.info("Speech session started (collecting audio)")

    def push_audio(self, chunk: bytes) -> None:
        if self.state != SessionState.COLLECTING:
            return
        self._chunks.append(bytes(chunk))

    async def finish(self, allow_fallback: bool = True) -> str:
        if self.state != SessionState.COLLECTING:
            return ""

        self.state = SessionState.FINISHING
        generation = self._generation
        try:
            pcm = b"".join(self._chunks)
            logger.info(f"Total audio collected: {len(pcm)} bytes")
            payload = AudioPayload(
                data=encode_wav(pcm, sample_rate=self.service.settings.speech_sample_rate),
                content_type="audio/wav",
            )
            text = await self.service.transcribe(payload, allow_fallback=allow_fallback)
            if generation != self._generation:
                logger.info("Speech session was closed while transcribing; dropping the result")
                return ""
            if self._on_text is not None:
                self._on_text(text, True)
            return text
        except Exception as e:
            if generation != self._generation:
                logger.info(f"Speech session was closed while transcribing; dropping error: {e}")
                return ""
            logger.error(f"Speech session finish failed: {e}")
            raise
        finally:
            if generation == self._generation:
                self._chunks = []
                self.state = SessionState.IDLE

    def close(self) -> None:
        """Cancel the session; an in-flight transcription result is discarded."""
        self._generation += 1
        self._chunks = []
        self.state = SessionState.IDLE
