"""Tests for the shared LLM pool and the LLM-backed worker."""
from __future__ import annotations

from types import SimpleNamespace
from typing import Any, Dict, List

import httpx
import openai
import pytest

from aiteam.agents.catalog import resolve_role
from aiteam.agents.llm_worker import LLMWorker
from aiteam.core.result import ErrorCode
from aiteam.services.llm_pool import LLMPool, build_llm_pool


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class FakeCompletions:
    def __init__(self, reply: str, fail: bool = False) -> None:
        self.reply = reply
        self.fail = fail
        self.calls: List[Dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        if self.fail:
            raise openai.APIConnectionError(request=httpx.Request("POST", "https://llm.invalid"))
        message = SimpleNamespace(content=self.reply)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _fake_client(reply: str, fail: bool = False) -> Any:
    return SimpleNamespace(chat=SimpleNamespace(completions=FakeCompletions(reply, fail)))


@pytest.mark.anyio
async def test_generate_sends_system_and_user_messages() -> None:
    pool = LLMPool()
    client = _fake_client("hello")
    pool.register_client("fake", client)

    result = await pool.generate("hi", system_prompt="be brief", temperature=0.1)

    assert result.success and result.data == "hello"
    call = client.chat.completions.calls[0]
    assert call["model"] == "fake"
    assert call["temperature"] == 0.1
    assert call["messages"] == [
        {"role": "system", "content": "be brief"},
        {"role": "user", "content": "hi"},
    ]


@pytest.mark.anyio
async def test_generate_reports_unregistered_model_and_api_errors() -> None:
    pool = LLMPool()
    missing = await pool.generate("hi")
    assert missing.error.code == ErrorCode.LLM_ERROR

    pool.register_client("flaky", _fake_client("", fail=True))
    failed = await pool.generate("hi")
    assert failed.error.code == ErrorCode.LLM_ERROR


@pytest.mark.anyio
async def test_llm_worker_parses_model_reply() -> None:
    pool = LLMPool()
    client = _fake_client('```json\n{"tests": ["login"]}\n```')
    pool.register_client("fake", client)
    worker = LLMWorker("qa-1", resolve_role("qa_engineer"), pool)

    result = await worker.execute("t1", {"prompt": "Plan tests for login"})

    assert result.success
    assert result.data == {"task_id": "t1", "agent_type": "qa_engineer", "output": {"tests": ["login"]}}
    messages = client.chat.completions.calls[0]["messages"]
    assert "QA Engineer" in messages[0]["content"]
    assert messages[1]["content"] == "Plan tests for login"


@pytest.mark.anyio
async def test_llm_worker_rejects_empty_input() -> None:
    pool = LLMPool()
    pool.register_client("fake", _fake_client("{}"))
    worker = LLMWorker("qa-1", resolve_role("qa_engineer"), pool)

    result = await worker.execute("t1", None)

    assert result.error.code == ErrorCode.TASK_EXECUTION_ERROR
    assert worker.error_count == 1


def test_build_llm_pool_without_config_is_empty() -> None:
    assert not build_llm_pool(None).has_model()
