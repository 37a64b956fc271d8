"""CLI demonstration of supervised agent services and task coordination."""
from __future__ import annotations

import argparse
import asyncio
from typing import NoReturn

from aiteam.config import Config
from aiteam.core.models import AgentServiceConfig, TaskAssignmentRequest
from aiteam.main import configure_logging
from aiteam.runtime import build_runtime


async def main(agent_type: str = "qa_engineer", port: int = 3001) -> None:
    config = Config.from_env()
    configure_logging(config.log_level)
    runtime = build_runtime(config)
    await runtime.start()
    try:
        started = await runtime.orchestrator.start_agent_service(
            AgentServiceConfig(id="demo-1", name="Demo Agent", type=agent_type, port=port),
        )
        if not started.success:
            print(f"Could not start service: {started.error.as_dict()}")
            return
        instance = started.data
        print(f"Started service {instance.id} on port {instance.port} (pid {instance.pid})")

        # Give uvicorn a moment to bind before the first probe.
        await asyncio.sleep(2)
        healthy = await runtime.supervisor.health.check_health(instance.id)
        print(f"Health check passed: {healthy.data}")

        await runtime.coordination.create_task("Write a test plan", task_id="demo-task")
        outcome = await runtime.orchestrator.run_task(
            TaskAssignmentRequest(task_id="demo-task", context={"prompt": "Outline a test plan for login"}),
        )
        if outcome.success:
            print(f"Task result: {outcome.data}")
        else:
            print(f"Task failed: {outcome.error.as_dict()}")

        for event in runtime.coordination.get_coordination_events(10):
            print(f"  {event.timestamp.isoformat()} {event.type.value} agent={event.agent_id} task={event.task_id}")

        await runtime.orchestrator.stop_agent_service(instance.id)
        print("Service stopped")
    finally:
        await runtime.shutdown()


def run() -> NoReturn:
    parser = argparse.ArgumentParser(description="Start one agent service and run a task through it.")
    parser.add_argument("--type", default="qa_engineer")
    parser.add_argument("--port", type=int, default=3001)
    args = parser.parse_args()
    asyncio.run(main(args.type, args.port))
    raise SystemExit(0)


if __name__ == "__main__":
    run()
