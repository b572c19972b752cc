"""
Long-poll client for the JointSpace /notifychange endpoint.

POSTs the set of resources we care about and blocks until the TV reports a
change to at least one of them. Runs beside the CommandQueue with its own
Digest cache, so a call parked for a minute never holds up short calls.
"""
from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx

from .channel import RequestChannel
from .constants import (
    API_VERSION,
    HTTP_PORT,
    HTTPS_PORT,
    LONG_POLL_TIMEOUT,
    MAX_CONSECUTIVE_FAILURES,
    MAX_RECONNECT_DELAY,
    MIN_POLL_INTERVAL,
    RECONNECT_DELAY,
    SUBSCRIBED_RESOURCES,
)
from .digest import AuthCache
from .errors import JointSpaceError, LongPollError

log = logging.getLogger(__name__)

OnNotification = Callable[[Dict[str, Any]], Awaitable[None]]
OnFailed = Callable[[], Awaitable[None]]


class NotifierState(enum.Enum):
    IDLE = "idle"
    POLLING = "polling"
    BACKOFF = "backoff"
    FAILED = "failed"


class ChangeNotifier:
    # probe order: TLS first, plaintext as fallback
    TRANSPORTS: Tuple[Tuple[str, int], ...] = (("https", HTTPS_PORT), ("http", HTTP_PORT))

    def __init__(
        self,
        host: str,
        username: str,
        password: str,
        *,
        api_version: int = API_VERSION,
        long_poll_timeout: float = LONG_POLL_TIMEOUT,
        base_delay: float = RECONNECT_DELAY,
        max_delay: float = MAX_RECONNECT_DELAY,
        max_failures: int = MAX_CONSECUTIVE_FAILURES,
        min_interval: float = MIN_POLL_INTERVAL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._host = host
        self._api_version = api_version
        self._timeout = long_poll_timeout
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._max_failures = max_failures
        self._min_interval = min_interval
        self._transport = transport

        self._auth = AuthCache(username, password)
        self._task: Optional[asyncio.Task] = None
        self._cancelled: Optional[asyncio.Task] = None
        self._state = NotifierState.IDLE

        self.working_transport: Optional[str] = None
        self.consecutive_failures = 0
        self.backoff_delay = base_delay

        self.on_notification: Optional[OnNotification] = None
        self.on_failed: Optional[OnFailed] = None

    @property
    def state(self) -> NotifierState:
        return self._state

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ---------- lifecycle ----------

    def start(self) -> None:
        if self.running:
            return
        self.consecutive_failures = 0
        self.backoff_delay = self._base_delay
        self._state = NotifierState.POLLING
        self._task = asyncio.create_task(self._run(), name="jointspace_notifychange")

    def stop(self) -> None:
        """Abort any in-flight long-poll right away. aclose() waits for it to unwind."""
        task, self._task = self._task, None
        if task and not task.done():
            task.cancel()
            self._cancelled = task
        if self._state is not NotifierState.FAILED:
            self._state = NotifierState.IDLE

    async def aclose(self) -> None:
        self.stop()
        task, self._cancelled = self._cancelled, None
        if task:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    # ---------- loop ----------

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        http = httpx.AsyncClient(verify=False, transport=self._transport)
        try:
            channels = self._channels(http)
            while True:
                started = loop.time()
                try:
                    payload = await self._long_poll(channels)
                except JointSpaceError as exc:
                    self.consecutive_failures += 1
                    log.debug(
                        "notifychange failed (%d/%d): %s",
                        self.consecutive_failures, self._max_failures, exc,
                    )
                    if self.consecutive_failures >= self._max_failures:
                        log.warning("notifychange: %d consecutive failures, giving up", self.consecutive_failures)
                        self._state = NotifierState.FAILED
                        self._task = None
                        await self._emit_failed()
                        return
                    self._state = NotifierState.BACKOFF
                    await asyncio.sleep(self.backoff_delay)
                    self.backoff_delay = min(self.backoff_delay * 2, self._max_delay)
                    self._state = NotifierState.POLLING
                    continue

                self.consecutive_failures = 0
                self.backoff_delay = self._base_delay
                await self._emit_notification(payload)

                # the TV sometimes answers instantly with stale data
                await asyncio.sleep(max(0.0, self._min_interval - (loop.time() - started)))
        finally:
            await http.aclose()

    def _channels(self, http: httpx.AsyncClient) -> List[Tuple[str, RequestChannel]]:
        return [
            (scheme, RequestChannel(
                http,
                self._auth,
                base_url=f"{scheme}://{self._host}:{port}",
                api_version=self._api_version,
            ))
            for scheme, port in self.TRANSPORTS
        ]

    async def _long_poll(self, channels: List[Tuple[str, RequestChannel]]) -> Dict[str, Any]:
        body = {"notification": dict(SUBSCRIBED_RESOURCES)}
        if self.working_transport:
            attempts = [c for c in channels if c[0] == self.working_transport]
        else:
            attempts = channels

        errors: List[str] = []
        for scheme, channel in attempts:
            try:
                resp = await channel.execute("POST", "/notifychange", body, timeout=self._timeout)
            except JointSpaceError as exc:
                errors.append(f"{scheme}: {exc}")
                continue
            payload = self._parse(resp)
            if payload is None:
                errors.append(f"{scheme}: unusable body")
                continue
            if self.working_transport != scheme:
                log.info("notifychange: %s confirmed working", scheme)
            self.working_transport = scheme
            return payload

        if self.working_transport:
            # firmware can flip which port answers across reboots; re-probe both
            log.debug("notifychange: %s stopped working, will re-probe", self.working_transport)
            self.working_transport = None
            self._auth.invalidate()
        raise LongPollError("; ".join(errors) or "no transport attempted")

    @staticmethod
    def _parse(resp: httpx.Response) -> Optional[Dict[str, Any]]:
        if not resp.content:
            return None
        try:
            data = resp.json()
        except ValueError:
            log.debug("notifychange: unparseable body %r", resp.text[:200])
            return None
        return data if isinstance(data, dict) else None

    # ---------- events ----------

    async def _emit_notification(self, payload: Dict[str, Any]) -> None:
        if not self.on_notification:
            return
        try:
            await self.on_notification(payload)
        except Exception:
            log.exception("notification handler failed")

    async def _emit_failed(self) -> None:
        if not self.on_failed:
            return
        try:
            await self.on_failed()
        except Exception:
            log.exception("failed handler raised")
