# launchsniper/scheduler.py
import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, List

Job = Callable[[], Awaitable[None]]


class PeriodicTask:
    """
    Runs a job every `interval` seconds on the event loop until cancelled.
    A failing run is logged and the schedule carries on.
    """
    def __init__(self, name: str, interval: float, job: Job, logger: logging.Logger):
        self.name = name
        self.interval = interval
        self.job = job
        self.logger = logger
        self.runs = 0
        self.failures = 0
        self._task = None

    def start(self):
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run_forever(), name=self.name)

    async def _run_forever(self):
        while True:
            start_tick = time.monotonic()
            try:
                await self.job()
                self.runs += 1
            except Exception as e:
                self.failures += 1
                self.logger.error(f"Task '{self.name}' failed: {e}")
            elapsed = time.monotonic() - start_tick
            await asyncio.sleep(max(0, self.interval - elapsed))

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def cancel(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None


class Scheduler:
    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self._tasks: Dict[str, PeriodicTask] = {}

    def every(self, name: str, interval: float, job: Job) -> PeriodicTask:
        if name in self._tasks:
            raise ValueError(f"Task '{name}' is already scheduled")
        task = PeriodicTask(name, interval, job, self.logger)
        self._tasks[name] = task
        task.start()
        return task

    async def cancel(self, name: str):
        task = self._tasks.pop(name, None)
        if task:
            await task.cancel()

    async def cancel_all(self):
        for name in list(self._tasks):
            await self.cancel(name)

    @property
    def running(self) -> List[str]:
        return [name for name, task in self._tasks.items() if task.running]
