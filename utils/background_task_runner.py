"""
BackgroundTaskRunner - tracked asyncio tasks for transfer and conversion lifecycles

Key Features:
- Each lifecycle runs as its own task, so a cancelled caller never cancels it
- Callers await the task through asyncio.shield and still receive its result
- drain() waits for every in-flight lifecycle (shutdown, tests)
"""

import asyncio
import logging
from typing import Any, Coroutine, Optional, Set

logger = logging.getLogger(__name__)


class BackgroundTaskRunner:
    """Owns the lifecycle tasks started by one orchestrator"""

    def __init__(self, name: str):
        self.name = name
        self._active_tasks: Set[asyncio.Task] = set()

    def start(self, coro: Coroutine[Any, Any, Any], task_name: Optional[str] = None) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=task_name)
        self._active_tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    async def run_shielded(self, coro: Coroutine[Any, Any, Any], task_name: Optional[str] = None) -> Any:
        """
        Start `coro` as a tracked task and wait for its result.

        If the awaiting caller is cancelled the task keeps running to completion.
        """
        task = self.start(coro, task_name)
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.done():
                logger.warning(
                    f"⚠️ CALLER_CANCELLED [{self.name}]: {task.get_name()} continues in background"
                )
            raise

    def _on_done(self, task: asyncio.Task) -> None:
        self._active_tasks.discard(task)
        if task.cancelled():
            logger.warning(f"⚠️ LIFECYCLE_CANCELLED [{self.name}]: {task.get_name()}")
            return
        # Retrieve the exception so a detached task never logs "exception was never retrieved"
        error = task.exception()
        if error is not None:
            logger.debug(f"LIFECYCLE_ENDED_WITH_ERROR [{self.name}]: {task.get_name()}: {error}")

    @property
    def active_count(self) -> int:
        return len(self._active_tasks)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight lifecycles; they settle on their own, errors are already reported"""
        while self._active_tasks:
            done, pending = await asyncio.wait(list(self._active_tasks), timeout=timeout)
            if pending:
                logger.warning(f"⚠️ DRAIN_TIMEOUT [{self.name}]: {len(pending)} lifecycles still running")
                return
        logger.debug(f"BackgroundTaskRunner [{self.name}] drained")

    async def cancel_all(self) -> None:
        """Cancel in-flight lifecycles; each compensates before finishing"""
        tasks = list(self._active_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"🛑 LIFECYCLES_CANCELLED [{self.name}]: {len(tasks)}")
