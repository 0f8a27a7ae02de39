"""Phased startup retry around language server discovery."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from agquota.client import mask_token
from agquota.config import ConfigStore
from agquota.events import Subscribers
from agquota.models import (
    FAST_PHASE_ATTEMPTS,
    MAX_ATTEMPTS,
    LifecycleEvent,
    LifecycleKind,
    RetryPhase,
    RetryState,
)
from agquota.poller import QuotaPoller
from agquota.resolver import ConnectionResolver

logger = logging.getLogger(__name__)

FAST_DELAY = 5.0
SLOW_DELAY = 60.0


def delay_after(attempt: int) -> float | None:
    """Delay before the attempt following ``attempt``, or None to stop retrying."""
    if attempt < FAST_PHASE_ATTEMPTS:
        return FAST_DELAY
    if attempt < MAX_ATTEMPTS:
        return SLOW_DELAY
    return None


class StartupRetryController:
    """
    Keeps calling the resolver until it finds the language server.

    Twelve attempts 5 seconds apart, then nine attempts a minute apart, then
    a silent waiting state that only reconnect() leaves. Only one run exists
    at a time; the next attempt is scheduled after the previous one settles.
    """

    def __init__(
        self,
        resolver: ConnectionResolver,
        poller: QuotaPoller,
        config: ConfigStore,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._resolver = resolver
        self._poller = poller
        self._config = config
        self._sleep = sleep
        self._state = RetryState()
        self._connected = False
        self._task: asyncio.Task | None = None
        self._lifecycle: Subscribers[LifecycleEvent] = Subscribers("lifecycle")
        self._poller.on_error(lambda message: self._emit(LifecycleKind.ERROR, message))

    @property
    def state(self) -> RetryState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def on_lifecycle(self, callback: Callable[[LifecycleEvent], None]) -> Callable[[], None]:
        return self._lifecycle.add(callback)

    def start(self) -> None:
        """Begin discovery unless a run is active, connected, or parked."""
        if self.is_running or self._connected:
            logger.debug("Retry controller already running or connected, skipping")
            return
        if self._state.phase is RetryPhase.WAITING:
            logger.debug("Retry controller is waiting for a manual reconnect")
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(self._state.attempt), name="StartupRetry"
        )

    def reconnect(self) -> None:
        """Drop the current connection and restart discovery from attempt 0."""
        logger.info("Reconnect requested")
        self.stop()
        self._poller.stop_polling()
        self._connected = False
        self._state = RetryState()
        self.start()

    def stop(self) -> None:
        """Cancel any pending attempt."""
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def join(self) -> None:
        """Wait until the current run connects, parks, or is cancelled."""
        task = self._task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            if not task.cancelled():
                raise

    async def _run(self, attempt: int) -> None:
        while True:
            self._state = RetryState.for_attempt(attempt)
            if self._state.phase is RetryPhase.WAITING:
                # Silent: the IDE often has not started its server yet
                logger.info("Antigravity not found. Waiting for manual reconnect.")
                self._emit(LifecycleKind.WAITING)
                return

            annotation = f"({attempt}/{MAX_ATTEMPTS})" if attempt > 0 else None
            self._emit(LifecycleKind.LOADING, annotation)

            if await self._attempt(attempt):
                return

            delay = delay_after(attempt)
            attempt += 1
            logger.debug(
                "Retry %d in %.0fs (%s phase)",
                attempt,
                delay,
                RetryState.for_attempt(attempt).phase.value,
            )
            await self._sleep(delay)

    async def _attempt(self, attempt: int) -> bool:
        logger.info("Detecting Antigravity process... (attempt %d/%d)", attempt + 1, MAX_ATTEMPTS)
        try:
            connection = await self._resolver.detect_process_info()
        except Exception:
            logger.exception("Detection failed with exception")
            return False

        if connection is None:
            return False

        logger.info(
            "Process found: pid=%s extension_port=%s connect_port=%d token=%s",
            connection.pid,
            connection.extension_port,
            connection.connect_port,
            mask_token(connection.csrf_token),
        )
        self._poller.install(connection)
        config = self._config.get_config()
        if config.enabled:
            self._poller.start_polling(config.polling_interval)
        self._connected = True
        self._emit(LifecycleKind.ACTIVE)
        return True

    def _emit(self, kind: LifecycleKind, message: str | None = None) -> None:
        self._lifecycle.publish(LifecycleEvent(kind=kind, message=message))
