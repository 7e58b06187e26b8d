"""Periodic execution of the deposit and withdrawal engines.

Each engine runs in its own asyncio task. A tick that is still running when
the next one is due is never re-entered, and stopping a task lets the tick
in progress finish before the task exits.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from custodex.container import ServiceContainer
from custodex.ledger.models import utcnow
from custodex.services.deposit_monitor import DepositMonitor
from custodex.services.withdrawal_processor import WithdrawalProcessor

logger = logging.getLogger(__name__)

DEPOSIT_TASK = "deposit_monitor"
WITHDRAWAL_TASK = "withdrawal_processor"


class PeriodicTask:
    """Runs an async function every ``interval`` seconds."""

    def __init__(
        self,
        name: str,
        func: Callable[[], Awaitable[Any]],
        interval: float,
        initial_delay: float = 0.0,
    ):
        self.name = name
        self.func = func
        self.interval = interval
        self.initial_delay = initial_delay
        self.runs = 0
        self.failures = 0
        self.last_run_at: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self._lock = asyncio.Lock()
        self._stopping = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def busy(self) -> bool:
        """True while a tick is executing."""
        return self._lock.locked()

    async def run_once(self) -> bool:
        """Run one tick unless one is already in flight.

        Returns:
            False if the tick was skipped
        """
        if self._lock.locked():
            logger.debug(f"{self.name}: previous tick still running, skipping")
            return False

        async with self._lock:
            try:
                await self.func()
                self.runs += 1
                self.last_error = None
            except Exception as e:
                self.failures += 1
                self.last_error = str(e) or type(e).__name__
                logger.exception(f"{self.name}: tick failed")
            finally:
                self.last_run_at = utcnow()
        return True

    async def _sleep(self, seconds: float) -> bool:
        """Wait for ``seconds`` or until stop is requested.

        Returns:
            True if stop was requested
        """
        if self._stopping.is_set():
            return True
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def _loop(self) -> None:
        logger.info(f"Starting {self.name} (interval: {self.interval}s)")
        if await self._sleep(self.initial_delay):
            return
        while not self._stopping.is_set():
            await self.run_once()
            if await self._sleep(self.interval):
                break
        logger.info(f"{self.name} stopped")

    def start(self) -> None:
        """Start the loop in the background."""
        if self.running:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._loop(), name=self.name)

    async def stop(self, timeout: Optional[float] = None) -> None:
        """Stop after the current tick, if any, completes."""
        self._stopping.set()
        if self._task is None:
            return
        try:
            await asyncio.wait_for(self._task, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{self.name}: tick did not finish within {timeout}s, cancelled")
        finally:
            self._task = None

    def status(self) -> dict:
        return {
            "running": self.running,
            "busy": self.busy,
            "runs": self.runs,
            "failures": self.failures,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_error": self.last_error,
        }


class Scheduler:
    """Owns the periodic tasks of the process."""

    def __init__(self):
        self.tasks: dict[str, PeriodicTask] = {}

    def add(self, task: PeriodicTask) -> PeriodicTask:
        self.tasks[task.name] = task
        return task

    def start(self) -> None:
        for task in self.tasks.values():
            task.start()

    async def stop(self, timeout: Optional[float] = None) -> None:
        await asyncio.gather(*(task.stop(timeout) for task in self.tasks.values()))

    def status(self) -> dict:
        return {name: task.status() for name, task in self.tasks.items()}

    @classmethod
    def for_container(cls, container: ServiceContainer) -> "Scheduler":
        """Scheduler with the deposit and withdrawal engines."""
        settings = container.settings
        monitor = DepositMonitor(container)
        processor = WithdrawalProcessor(container)

        scheduler = cls()
        scheduler.add(
            PeriodicTask(
                DEPOSIT_TASK,
                monitor.run_cycle,
                interval=settings.deposit_poll_interval,
                initial_delay=settings.deposit_start_delay,
            )
        )
        scheduler.add(
            PeriodicTask(
                WITHDRAWAL_TASK,
                processor.process_queue,
                interval=settings.withdrawal_poll_interval,
                initial_delay=settings.withdrawal_start_delay,
            )
        )
        return scheduler
