"""LLM-powered worker that hands units of work to a language model."""
from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Optional

from aiteam.agents.base import AgentWorker
from aiteam.core.result import ErrorCode, Result

if TYPE_CHECKING:
    from aiteam.agents.catalog import AgentRole
    from aiteam.services.llm_pool import LLMPool


class LLMWorker(AgentWorker):
    """Worker that answers with the output of the configured model."""

    def __init__(
        self,
        agent_id: str,
        role: AgentRole,
        llm_pool: LLMPool,
        *,
        model: Optional[str] = None,
        temperature: float = 0.7,
    ) -> None:
        super().__init__(agent_id, role)
        self._llm_pool = llm_pool
        self.model_name = model
        self.temperature = temperature
        self.system_prompt = (
            f"You are the {role.title} in a multi-agent software delivery team. "
            "Respond with JSON only."
        )

    async def handle(self, task_id: str, payload: Any) -> Result[Any]:
        prompt = self._build_prompt(task_id, payload)
        if not prompt:
            return Result.fail(ErrorCode.TASK_EXECUTION_ERROR, f"Task {task_id} has no input")

        generated = await self._llm_pool.generate(
            prompt,
            model=self.model_name,
            system_prompt=self.system_prompt,
            temperature=self.temperature,
        )
        if not generated.success:
            return generated
        return Result.ok({"task_id": task_id, "agent_type": self.agent_type, "output": _parse_json(generated.data)})

    @staticmethod
    def _build_prompt(task_id: str, payload: Any) -> str:
        if payload is None:
            return ""
        if isinstance(payload, str):
            return payload
        if isinstance(payload, dict) and isinstance(payload.get("prompt"), str):
            return payload["prompt"]
        return f"Task {task_id}:\n{json.dumps(payload, indent=2, default=str)}"


def _parse_json(content: Optional[str]) -> Any:
    """Decode a JSON reply, tolerating markdown code fences."""
    if not content:
        return None
    text = content
    if "```json" in text:
        text = text.split("```json")[1].split("```")[0]
    elif "```" in text:
        text = text.split("```")[1].split("```")[0]
    try:
        return json.loads(text.strip())
    except (json.JSONDecodeError, IndexError):
        return content
