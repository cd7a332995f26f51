"""Background execution of task orchestrations."""

import asyncio
import logging
from typing import Coroutine

logger = logging.getLogger("kvas.runner")


class TaskRunner:
    """
    Runs each orchestration as its own asyncio task.

    `spawn` hands back the asyncio.Task, which doubles as the cancellation
    handle. Failures are re-raised by the orchestration and logged here once
    the task settles.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def spawn(self, coro: Coroutine, name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning(f"{task.get_name()} was cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.error(
                f"{task.get_name()} failed: {error}",
                exc_info=(type(error), error, error.__traceback__),
            )

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Wait for running tasks, cancelling whatever outlives the timeout."""
        if not self._tasks:
            return
        pending = set(self._tasks)
        logger.info(f"Waiting for {len(pending)} running tasks")
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        if still_running:
            logger.warning(f"{len(still_running)} tasks did not finish gracefully, cancelling")
            for task in still_running:
                task.cancel()
            await asyncio.gather(*still_running, return_exceptions=True)
