"""Supervision of the results poller: start, health check, restart with backoff, stop.

State machine::

    STOPPED --start()--> RUNNING --restart()--> RESTART_PENDING --spawn ok--> RUNNING
                            |                         |
                            |                         +--out of attempts---> FAILED
                            +------------stop()-------------------------------> STOPPED

Two asyncio tasks are owned by the supervisor: the poller task and the
health-check task. The health check restarts the poller when its task has
finished while the supervisor is running, or when no receive call has
completed for ``wait_time_seconds + 30`` seconds. Restarts are serialized by
a lock and back off linearly (``restart_delay_seconds * attempt``).
``restart_count`` counts consecutive failed restarts only; it returns to 0
once a fresh poller has been spawned. When it exceeds
``max_restart_attempts`` the supervisor enters FAILED and stays there until
an operator stops and starts it again.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from client_verification.config import Settings
from client_verification.constants import (
    HEALTH_CHECK_SHUTDOWN_TIMEOUT_SECONDS,
    POLLER_DISCARD_TIMEOUT_SECONDS,
    POLLER_SHUTDOWN_TIMEOUT_SECONDS,
    STALE_POLL_GRACE_SECONDS,
)
from client_verification.metrics import SUPERVISOR_RESTART_TOTAL, SUPERVISOR_STATUS
from client_verification.poller import Poller

logger = logging.getLogger(__name__)


PollerFactory = Callable[[Callable[[], None]], Awaitable[Poller]]


class SupervisorStatus(str, Enum):
    STOPPED = "STOPPED"
    RUNNING = "RUNNING"
    RESTART_PENDING = "RESTART_PENDING"
    FAILED = "FAILED"


@dataclass
class SupervisorState:
    running: bool = False
    status: SupervisorStatus = SupervisorStatus.STOPPED
    restart_count: int = 0
    last_successful_poll_time: float = 0.0


class PollingSupervisor:
    """Keep exactly one results poller alive for the lifetime of the process.

    ``poller_factory`` receives the liveness callback the poller must call
    after each receive, and returns a ready-to-run ``Poller`` (opening its
    queue connection). A factory error counts as a failed restart.

    Example:
    ```python
    supervisor = PollingSupervisor(create_poller, Settings())
    await supervisor.start()
    ...
    await supervisor.stop()
    ```
    """

    def __init__(
        self,
        poller_factory: PollerFactory,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._poller_factory = poller_factory
        self._settings = settings or Settings()
        self._clock = clock
        self._state = SupervisorState()
        self._lock = asyncio.Lock()
        self._stopping = asyncio.Event()
        self._poller: Optional[Poller] = None
        self._poller_task: Optional[asyncio.Task[None]] = None
        self._health_task: Optional[asyncio.Task[None]] = None
        self._generation = 0

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def status(self) -> SupervisorStatus:
        return self._state.status

    @property
    def poller_task(self) -> Optional[asyncio.Task[None]]:
        return self._poller_task

    def report_alive(self) -> None:
        """Record a completed receive call; passed to each poller as ``on_poll``."""
        self._state.last_successful_poll_time = self._clock()

    async def start(self) -> None:
        """STOPPED -> RUNNING: spawn the poller and the periodic health check."""
        if not self._settings.polling_enabled:
            logger.info("Verification results polling is disabled")
            return
        if self._state.running:
            logger.debug("Verification results polling already running")
            return

        logger.info("Starting verification results polling")
        self._state = SupervisorState(running=True, last_successful_poll_time=self._clock())
        self._set_status(SupervisorStatus.RUNNING)
        self._stopping = asyncio.Event()
        try:
            await self._spawn_poller()
        except Exception:  # noqa: BLE001
            # Left to the health check, which sees no poller task and restarts
            logger.exception("Failed to start the results poller")

        self._health_task = asyncio.create_task(self._health_loop(), name="verification-polling-health-check")
        logger.info("Verification results polling started with health check monitoring")

    async def stop(self) -> None:
        """RUNNING|FAILED -> STOPPED: stop the poller (graceful, then forced) and the health check."""
        logger.info("Stopping verification results polling")
        self._state.running = False
        self._stopping.set()

        health_task, self._health_task = self._health_task, None
        if health_task is not None and health_task is not asyncio.current_task():
            health_task.cancel()
            await asyncio.wait({health_task}, timeout=HEALTH_CHECK_SHUTDOWN_TIMEOUT_SECONDS)

        await self._discard_poller(graceful=True)
        self._set_status(SupervisorStatus.STOPPED)
        logger.info("Verification results polling stopped")

    async def check_health(self) -> bool:
        """Run one health check; return True if it triggered a restart."""
        state = self._state
        if not state.running or state.status is SupervisorStatus.FAILED:
            return False

        task = self._poller_task
        if task is None or task.done():
            if task is not None and not task.cancelled() and task.exception() is not None:
                logger.error("Polling task died with an error", exc_info=task.exception())
            logger.error("Polling task is not running. Attempting to restart...")
            await self.restart()
            return True

        idle = self._clock() - state.last_successful_poll_time
        max_idle = self._settings.wait_time_seconds + STALE_POLL_GRACE_SECONDS
        if idle > max_idle:
            logger.warning(
                "No successful poll for %d seconds. Polling task may be stuck. Attempting restart...", idle
            )
            await self.restart()
            return True

        logger.debug("Polling health check: OK (last poll %d seconds ago)", idle)
        return False

    async def restart(self) -> None:
        """Replace the poller after a linear backoff, or enter FAILED when out of attempts."""
        async with self._lock:
            state = self._state
            if not state.running:
                logger.info("Polling is shutting down, skipping restart")
                return
            if state.status is SupervisorStatus.FAILED:
                return

            state.restart_count += 1
            attempt = state.restart_count
            max_attempts = self._settings.max_restart_attempts
            if attempt > max_attempts:
                logger.error(
                    "Max restart attempts (%d) reached. Results polling will not be restarted. "
                    "Manual intervention required.",
                    max_attempts,
                )
                SUPERVISOR_RESTART_TOTAL.labels(result="exhausted").inc()
                self._set_status(SupervisorStatus.FAILED)
                await self._discard_poller(graceful=False)
                return

            self._set_status(SupervisorStatus.RESTART_PENDING)
            delay = self._settings.restart_delay_seconds * attempt
            logger.info("Attempting restart #%d of results polling in %d seconds", attempt, delay)
            if await self._wait_for_stop(delay):
                logger.info("Stop requested during restart backoff; abandoning restart #%d", attempt)
                return

            await self._discard_poller(graceful=False)
            state.last_successful_poll_time = self._clock()
            try:
                await self._spawn_poller()
            except Exception:  # noqa: BLE001
                SUPERVISOR_RESTART_TOTAL.labels(result="error").inc()
                logger.exception("Failed to restart results polling (attempt #%d)", attempt)
                return

            SUPERVISOR_RESTART_TOTAL.labels(result="ok").inc()
            state.restart_count = 0
            self._set_status(SupervisorStatus.RUNNING)
            logger.info("Results polling successfully restarted (attempt #%d)", attempt)

    async def _spawn_poller(self) -> None:
        poller = await self._poller_factory(self.report_alive)
        self._generation += 1
        self._poller = poller
        self._poller_task = asyncio.create_task(
            poller.run(), name=f"verification-results-polling-{self._generation}"
        )

    async def _discard_poller(self, *, graceful: bool) -> None:
        """Stop the current poller; graceful waits before cancelling, otherwise cancel at once."""
        poller, task = self._poller, self._poller_task
        self._poller, self._poller_task = None, None
        if poller is not None:
            poller.stop()
        if task is None or task.done():
            return

        if graceful:
            done, _ = await asyncio.wait({task}, timeout=POLLER_SHUTDOWN_TIMEOUT_SECONDS)
            if done:
                return
            logger.warning("Polling task did not stop within %s seconds; cancelling", POLLER_SHUTDOWN_TIMEOUT_SECONDS)

        task.cancel()
        done, _ = await asyncio.wait({task}, timeout=POLLER_DISCARD_TIMEOUT_SECONDS)
        if not done:
            logger.error("Polling task did not exit after cancellation; abandoning it")

    async def _health_loop(self) -> None:
        interval = self._settings.health_check_interval_seconds
        while not self._stopping.is_set():
            if await self._wait_for_stop(interval):
                return
            try:
                await self.check_health()
            except Exception:  # noqa: BLE001
                logger.exception("Error during polling health check")

    async def _wait_for_stop(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return True if ``stop()`` was called meanwhile."""
        if seconds <= 0:
            return self._stopping.is_set()
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    def _set_status(self, status: SupervisorStatus) -> None:
        self._state.status = status
        for candidate in SupervisorStatus:
            SUPERVISOR_STATUS.labels(status=candidate.value).set(1 if candidate is status else 0)
