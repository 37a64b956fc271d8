"""LLM client pool for shared model access with concurrency control."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from openai import AsyncAzureOpenAI, OpenAIError

from aiteam.config import AzureOpenAIConfig
from aiteam.core.result import ErrorCode, Result

logger = logging.getLogger(__name__)


class LLMPool:
    """Manages shared LLM clients with concurrency limiting."""

    def __init__(self, default_model: Optional[str] = None) -> None:
        self._clients: Dict[str, Any] = {}
        self._semaphores: Dict[str, asyncio.Semaphore] = {}
        self._initialized: Dict[str, bool] = {}
        self.default_model = default_model

    def register_azure_openai(self, name: str, config: AzureOpenAIConfig) -> None:
        """Register an Azure OpenAI model configuration."""
        self._clients[name] = config
        self._semaphores[name] = asyncio.Semaphore(config.max_concurrent)
        self._initialized[name] = False
        if self.default_model is None:
            self.default_model = name

    def register_client(self, name: str, client: Any, max_concurrent: int = 10) -> None:
        """Register an already-built client exposing ``chat.completions.create``."""
        self._clients[name] = client
        self._semaphores[name] = asyncio.Semaphore(max_concurrent)
        self._initialized[name] = True
        if self.default_model is None:
            self.default_model = name

    def has_model(self, name: Optional[str] = None) -> bool:
        return (name or self.default_model) in self._clients

    @asynccontextmanager
    async def acquire(self, model_name: str) -> AsyncIterator[Any]:
        """Acquire access to a model client with concurrency control."""
        if model_name not in self._clients:
            raise KeyError(f"Model '{model_name}' not registered in LLM pool")

        semaphore = self._semaphores[model_name]
        await semaphore.acquire()

        try:
            # Lazy initialization on first use
            if not self._initialized[model_name]:
                self._initialize_client(model_name)

            yield self._clients[model_name]
        finally:
            semaphore.release()

    async def generate(
        self,
        prompt: str,
        *,
        model: Optional[str] = None,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
    ) -> Result[str]:
        """Single-turn completion returning the assistant text."""
        model_name = model or self.default_model
        if model_name is None or model_name not in self._clients:
            return Result.fail(ErrorCode.LLM_ERROR, f"Model '{model_name}' not registered in LLM pool")

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        try:
            async with self.acquire(model_name) as client:
                response = await client.chat.completions.create(
                    model=model_name,
                    messages=messages,
                    temperature=temperature,
                )
        except OpenAIError as exc:
            logger.warning("LLM call to %s failed: %r", model_name, exc)
            return Result.fail(ErrorCode.LLM_ERROR, "LLM request failed", details=str(exc))

        content = response.choices[0].message.content
        return Result.ok(content or "")

    def _initialize_client(self, model_name: str) -> None:
        """Lazy initialization of the actual client."""
        config = self._clients[model_name]
        if isinstance(config, AzureOpenAIConfig):
            self._clients[model_name] = AsyncAzureOpenAI(
                api_key=config.api_key,
                api_version=config.api_version,
                azure_endpoint=config.endpoint,
            )
            logger.info("Initialized Azure OpenAI client for %s", model_name)
        self._initialized[model_name] = True


def build_llm_pool(config: Optional[AzureOpenAIConfig]) -> LLMPool:
    """Pool with the configured Azure deployment registered, or an empty one."""
    pool = LLMPool()
    if config is not None:
        pool.register_azure_openai(config.deployment_name, config)
    return pool
