"""
Central configuration for the Consult Assist Service
"""

from functools import lru_cache
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from enum import Enum

DEFAULT_LLM_BASE_URL = "https://api.openai.com/v1"
DEFAULT_CHAT_MODEL = "gpt-4o-mini"
DEFAULT_AUDIO_MODEL = "whisper-1"


class Environment(str, Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class SpeechModel(str, Enum):
    PARAFORMER_REALTIME_V2 = "paraformer-realtime-v2"
    WHISPER_1 = "whisper-1"


class Settings(BaseSettings):
    # Environment
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # API Configuration
    api_title: str = Field(default="Consult Assist API")
    api_description: str = Field(default="Consultation transcription, record drafting and fact checking")
    api_version: str = Field(default="1.0.0")
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=3001)

    # Chat / completion provider
    openai_api_key: str = Field(default="")
    llm_base_url: str = Field(default=DEFAULT_LLM_BASE_URL)
    llm_model: str = Field(default=DEFAULT_CHAT_MODEL)
    audio_model: str = Field(default=DEFAULT_AUDIO_MODEL)

    # Primary speech recognition (proxied)
    dashscope_api_key: str = Field(default="")
    speech_model: str = Field(default=SpeechModel.PARAFORMER_REALTIME_V2.value)
    speech_sample_rate: int = Field(default=16000)
    speech_proxy_url: str = Field(default="http://127.0.0.1:8765")
    speech_test_mode: bool = Field(default=False)
    speech_test_mode_delay_seconds: float = Field(default=0.5)

    # Timeouts and Retries
    stt_timeout: int = Field(default=60)
    llm_timeout: int = Field(default=60)
    max_retries: int = Field(default=3)
    stt_max_retries: int = Field(default=2)

    # Audio limits
    max_fallback_audio_mb: int = Field(default=25)

    # Reference data and local state
    catalog_dir: str = Field(default="data/catalog")
    preferences_path: str = Field(default="~/.consult_assist/preferences.json")

    # Session logging collaborator
    session_rpc_url: Optional[str] = Field(default=None)
    session_rpc_timeout: int = Field(default=10)

    # Rate Limiting
    rate_limit_requests: int = Field(default=10)
    rate_limit_window: int = Field(default=60)  # seconds

    # CORS Configuration
    cors_origins: List[str] = Field(
        default=[
            "http://localhost:1420",
            "http://localhost:5173",
            "tauri://localhost",
        ]
    )
    cors_allow_credentials: bool = Field(default=True)
    cors_allow_methods: List[str] = Field(default=["GET", "POST", "PUT"])
    cors_allow_headers: List[str] = Field(default=["*"])

    # Monitoring
    enable_metrics: bool = Field(default=True)
    metrics_path: str = Field(default="/metrics")

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    @property
    def max_fallback_audio_bytes(self) -> int:
        return self.max_fallback_audio_mb * 1024 * 1024


@lru_cache
def get_settings() -> Settings:
    """Settings for the composition root; services receive them explicitly."""
    return Settings()
