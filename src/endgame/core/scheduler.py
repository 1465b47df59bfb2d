"""
Single owner for every background task in the process.

Periodic jobs run with a fixed delay between the end of one run and the
start of the next. A failing run is logged and the job keeps its schedule.
``shutdown()`` cancels everything that is still pending.
"""
import asyncio
from typing import Any, Awaitable, Callable, Coroutine, Optional

import structlog

log = structlog.get_logger()

PeriodicJob = Callable[[], Awaitable[Any]]


class Scheduler:
    """Registry of named asyncio tasks.

    Usage:
        scheduler = Scheduler()
        scheduler.every("market_scan", 30.0, scanner.scan)
        scheduler.spawn("feed_consumer", detector.consume_feed())
        ...
        await scheduler.shutdown()
    """

    def __init__(self, sleep: Optional[Callable[[float], Awaitable[None]]] = None) -> None:
        self._tasks: dict[str, asyncio.Task] = {}
        self._sleep = sleep or asyncio.sleep
        self._closed = False
        self._log = log.bind(component="scheduler")

    @property
    def task_names(self) -> list[str]:
        return [name for name, task in self._tasks.items() if not task.done()]

    def is_scheduled(self, name: str) -> bool:
        task = self._tasks.get(name)
        return task is not None and not task.done()

    def every(
        self,
        name: str,
        interval: float,
        job: PeriodicJob,
        run_immediately: bool = False,
    ) -> asyncio.Task:
        """Run ``job`` repeatedly, sleeping ``interval`` seconds between runs."""
        return self.spawn(name, self._periodic(name, interval, job, run_immediately))

    def spawn(self, name: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Run a one-off or long-lived coroutine under ``name``.

        A task already registered under the same name is cancelled first.
        """
        if self._closed:
            coro.close()
            raise RuntimeError("Scheduler is shut down")

        self.cancel(name)
        task = asyncio.create_task(coro, name=name)
        self._tasks[name] = task
        task.add_done_callback(lambda t, n=name: self._on_done(n, t))
        return task

    def cancel(self, name: str) -> bool:
        task = self._tasks.pop(name, None)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    async def shutdown(self) -> None:
        """Cancel all tasks and wait for them to unwind."""
        self._closed = True
        tasks = [t for t in self._tasks.values() if not t.done()]
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._log.info("scheduler_shutdown", cancelled=len(tasks))

    async def _periodic(
        self,
        name: str,
        interval: float,
        job: PeriodicJob,
        run_immediately: bool,
    ) -> None:
        if not run_immediately:
            await self._sleep(interval)
        while True:
            try:
                await job()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._log.error("scheduled_job_failed", job=name, error=str(e))
            await self._sleep(interval)

    def _on_done(self, name: str, task: asyncio.Task) -> None:
        if self._tasks.get(name) is task:
            del self._tasks[name]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._log.error("task_crashed", task=name, error=str(exc))
