"""Pytest configuration and shared fixtures."""

from typing import Callable, List

import httpx
import pytest

from consult_assist.config import Settings
from consult_assist.core.preferences import UserPreferences
from consult_assist.models.catalog import MedicalCatalog
from consult_assist.services.entity_matcher import EntityMatcher
from consult_assist.services.llm_service import LLMService
from consult_assist.services.medical_catalog import load_catalog

LLM_BASE_URL = "https://llm.test/v1"


class RecordingSleep:
    """Stands in for asyncio.sleep and records every requested delay."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        openai_api_key="sk-test",
        llm_base_url=LLM_BASE_URL,
        llm_model="gpt-4o-mini",
        audio_model="whisper-1",
        dashscope_api_key="ds-test",
        speech_proxy_url="http://proxy.test",
        speech_test_mode=False,
        speech_test_mode_delay_seconds=0.5,
        catalog_dir=str(tmp_path / "catalog"),
        preferences_path=str(tmp_path / "preferences.json"),
        session_rpc_url=None,
    )


@pytest.fixture
def preferences() -> UserPreferences:
    return UserPreferences(values={})


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


CATALOG_TABLES = {
    "diagnoses": [
        {"id": "d1", "code": "J06", "name": "急性上呼吸道感染", "keywords": "上感|感冒"},
        {"id": "d2", "code": "J06.9", "name": "急性上呼吸道感染，未特指", "keywords": ""},
        {"id": "d3", "code": "J02.900", "name": "急性咽炎", "keywords": "嗓子疼"},
        {"id": "d4", "code": "I10.X00", "name": "原发性高血压", "keywords": "高血压"},
    ],
    "medicines": [
        {
            "id": "m1",
            "name": "阿莫西林胶囊",
            "genericName": "阿莫西林",
            "spec": "0.25g*6片/盒",
            "price": "12.5",
            "unit": "盒",
            "type": "西药",
            "keywords": "",
        },
        {
            "id": "m2",
            "name": "阿奇霉素片",
            "genericName": "阿奇霉素",
            "spec": "0.25g*6片",
            "price": "18",
            "unit": "盒",
            "type": "西药",
            "keywords": "希舒美",
        },
    ],
    "items": [
        {"id": "e1", "name": "血常规", "price": "20", "category": "检验", "keywords": "全血细胞计数"},
        {"id": "e2", "name": "C反应蛋白", "price": "30", "category": "检验", "keywords": "CRP"},
    ],
}


@pytest.fixture
def catalog() -> MedicalCatalog:
    return load_catalog(CATALOG_TABLES)


@pytest.fixture
def matcher(catalog) -> EntityMatcher:
    return EntityMatcher(catalog)


@pytest.fixture
def make_llm_service(settings, preferences, recording_sleep) -> Callable[..., LLMService]:
    """Build an LLMService whose provider is answered by ``handler``."""

    def factory(handler, **kwargs) -> LLMService:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        kwargs.setdefault("sleep", recording_sleep)
        return LLMService(settings, preferences, client=client, **kwargs)

    return factory


class ScriptedLLM:
    """LLM gateway double: returns (or raises) queued replies in order."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = []

    async def chat(self, messages, api_key=None):
        self.calls.append(list(messages))
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply


@pytest.fixture
def scripted_llm() -> Callable[..., ScriptedLLM]:
    return ScriptedLLM


class InterruptedStream(httpx.AsyncByteStream):
    """Response body that yields its chunks, then drops the connection."""

    def __init__(self, *chunks: bytes):
        self.chunks = chunks

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk
        raise httpx.ReadError("connection reset")


@pytest.fixture
def interrupted_stream() -> Callable[..., InterruptedStream]:
    return InterruptedStream
