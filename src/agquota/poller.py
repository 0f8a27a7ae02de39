"""Recurring quota polling against the resolved language server."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

import aiohttp

from agquota.client import GET_USER_STATUS, USER_STATUS_BODY, LanguageServerClient, mask_token
from agquota.errors import FetchFailure
from agquota.events import Subscribers
from agquota.models import QuotaSnapshot, ResolvedConnection
from agquota.schema import parse_user_status

logger = logging.getLogger(__name__)


class QuotaPoller:
    """
    Polls GetUserStatus on a timer and publishes snapshots.

    At most one timer task and at most one request exist at any time: a
    fetch requested while another is in flight joins the running one. Fetch
    failures go to error subscribers and never stop the timer.
    """

    def __init__(
        self,
        client: LanguageServerClient | None = None,
        timeout: float = 10.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the QuotaPoller.

        Args:
            client: Client used for requests. Defaults to plain HTTP on localhost.
            timeout: Total timeout of a single quota request (seconds).
            sleep: Coroutine used to wait between ticks.
        """
        self._client = client or LanguageServerClient()
        self._timeout = timeout
        self._sleep = sleep
        self._connection: ResolvedConnection | None = None
        self._timer: asyncio.Task | None = None
        self._in_flight: asyncio.Task | None = None
        self._interval: float | None = None
        self._last_snapshot: QuotaSnapshot | None = None
        self._updates: Subscribers[QuotaSnapshot] = Subscribers("quota update")
        self._errors: Subscribers[str] = Subscribers("quota error")

    @property
    def connection(self) -> ResolvedConnection | None:
        return self._connection

    @property
    def last_snapshot(self) -> QuotaSnapshot | None:
        return self._last_snapshot

    @property
    def interval(self) -> float | None:
        return self._interval

    @property
    def is_polling(self) -> bool:
        """Check if the polling timer is running."""
        return self._timer is not None and not self._timer.done()

    def init(self, connect_port: int, csrf_token: str | None) -> None:
        """Replace the active connection with a new port and token."""
        self.install(ResolvedConnection(connect_port=connect_port, csrf_token=csrf_token))

    def install(self, connection: ResolvedConnection) -> None:
        self._connection = connection
        logger.info(
            "Quota poller using port %d (token %s)",
            connection.connect_port,
            mask_token(connection.csrf_token),
        )

    def on_update(self, callback: Callable[[QuotaSnapshot], None]) -> Callable[[], None]:
        return self._updates.add(callback)

    def on_error(self, callback: Callable[[str], None]) -> Callable[[], None]:
        return self._errors.add(callback)

    def start_polling(self, interval: float) -> None:
        """
        Fetch now and then every ``interval`` seconds.

        Calling this while already polling replaces the running timer.
        Must be called from within the event loop.
        """
        if interval <= 0:
            raise ValueError("polling interval must be positive")
        self.stop_polling()
        self._interval = interval
        self._timer = asyncio.get_running_loop().create_task(
            self._poll_loop(interval), name="QuotaPoller"
        )
        logger.debug("Polling started, interval %.1fs", interval)

    def stop_polling(self) -> None:
        """Cancel the timer and any fetch it started. Safe to call repeatedly."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
            logger.debug("Polling stopped")
        if self._in_flight is not None and not self._in_flight.done():
            self._in_flight.cancel()
        self._in_flight = None

    async def fetch_quota(self) -> QuotaSnapshot | None:
        """
        Fetch and publish one snapshot.

        Returns the snapshot, or None when the fetch failed (the failure is
        published to error subscribers) or was cancelled by stop_polling().
        """
        if self._in_flight is None or self._in_flight.done():
            connection = self._connection
            if connection is None:
                message = "Not connected to the Antigravity language server"
                logger.warning(message)
                self._errors.publish(message)
                return None
            self._in_flight = asyncio.get_running_loop().create_task(
                self._fetch_once(connection), name="QuotaFetch"
            )
        else:
            logger.debug("Fetch already in flight, joining it")

        task = self._in_flight
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if task.cancelled() and (current is None or not current.cancelling()):
                return None
            raise

    async def _poll_loop(self, interval: float) -> None:
        while True:
            try:
                await self.fetch_quota()
            except asyncio.CancelledError:
                raise
            except Exception:
                # Keep the timer alive whatever a single tick does
                logger.exception("Unexpected error during quota poll")
            await self._sleep(interval)

    async def _fetch_once(self, connection: ResolvedConnection) -> QuotaSnapshot | None:
        try:
            snapshot = await self._request(connection)
        except FetchFailure as exc:
            logger.warning("Quota fetch failed: %s", exc)
            self._errors.publish(str(exc))
            return None

        self._last_snapshot = snapshot
        logger.debug("Quota update: %d model(s)", len(snapshot.models))
        self._updates.publish(snapshot)
        return snapshot

    async def _request(self, connection: ResolvedConnection) -> QuotaSnapshot:
        try:
            response = await self._client.call(
                connection.connect_port,
                GET_USER_STATUS,
                USER_STATUS_BODY,
                connection.csrf_token,
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise FetchFailure(f"quota request timed out after {self._timeout:.0f}s") from exc
        except (aiohttp.ClientError, OSError) as exc:
            raise FetchFailure(f"quota request failed: {exc}") from exc

        if response.status != 200:
            raise FetchFailure(f"quota request returned HTTP {response.status}")
        return parse_user_status(response.payload)
