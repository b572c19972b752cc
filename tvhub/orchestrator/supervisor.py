"""
Keeps a DeviceSnapshot in sync with one TV.

Interval polling is the baseline. A ChangeNotifier long-poll runs next to it
while the TV is on; once a notification proves the long-poll delivers real
changes, interval polling is stopped. Any long-poll failure or power flip
brings interval polling back.
"""
from __future__ import annotations

import asyncio
import contextlib
import enum
import functools
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from ..jointspace.client import JointSpaceClient
from ..jointspace.constants import NOISE_RESOURCES
from ..jointspace.notify import ChangeNotifier
from .state import DeviceSnapshot

log = logging.getLogger(__name__)

DEFAULT_POLLING_INTERVAL = 10.0
INITIAL_POLL_DELAY = 5.0
LONG_POLL_RETRY_DELAY = 60.0

NotifierFactory = Callable[[], ChangeNotifier]


class SyncMode(enum.Enum):
    IDLE = "idle"
    STARTING = "starting"
    INTERVAL = "interval"
    HYBRID = "hybrid"          # interval + unconfirmed long-poll
    LONG_POLL = "long_poll"
    STOPPED = "stopped"


def _onoff(v: bool) -> str:
    return "on" if v else "off"


class SyncSupervisor:
    def __init__(
        self,
        client: JointSpaceClient,
        *,
        notifier_factory: Optional[NotifierFactory] = None,
        polling_interval: float = DEFAULT_POLLING_INTERVAL,
        initial_delay: float = INITIAL_POLL_DELAY,
        retry_delay: float = LONG_POLL_RETRY_DELAY,
    ) -> None:
        self._client = client
        self._notifier_factory = notifier_factory
        self._interval = polling_interval
        self._initial_delay = initial_delay
        self._retry_delay = retry_delay

        self.snapshot = DeviceSnapshot()

        self._running = False
        self._ever_started = False
        self._ready = False
        self._startup_task: Optional[asyncio.Task] = None
        self._interval_task: Optional[asyncio.Task] = None
        self._retry_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self._poll_lock = asyncio.Lock()

        self._notifier: Optional[ChangeNotifier] = None
        self._notifier_generation = 0
        self._long_poll_confirmed = False

        self.on_power_change: Optional[Callable[[bool], Awaitable[None]]] = None
        self.on_ambilight_update: Optional[Callable[[Optional[Dict[str, Any]], bool], Awaitable[None]]] = None
        self.on_volume_update: Optional[Callable[[bool], Awaitable[None]]] = None
        self.on_input_update: Optional[Callable[[Optional[str]], Awaitable[None]]] = None
        self.on_ready: Optional[Callable[[], Awaitable[None]]] = None
        self.on_change: Optional[Callable[[DeviceSnapshot], Awaitable[None]]] = None

    # ---------- introspection ----------

    @property
    def mode(self) -> SyncMode:
        if not self._running:
            return SyncMode.STOPPED if self._ever_started else SyncMode.IDLE
        if not self._ready:
            return SyncMode.STARTING
        if self._notifier is None:
            return SyncMode.INTERVAL
        if self._long_poll_confirmed and not self.interval_polling:
            return SyncMode.LONG_POLL
        return SyncMode.HYBRID

    @property
    def interval_polling(self) -> bool:
        return self._interval_task is not None and not self._interval_task.done()

    @property
    def notifier(self) -> Optional[ChangeNotifier]:
        return self._notifier

    @property
    def long_poll_confirmed(self) -> bool:
        return self._long_poll_confirmed

    # ---------- lifecycle ----------

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._ever_started = True
        self._ready = False
        self._startup_task = asyncio.create_task(self._startup(), name="tv_sync_startup")
        log.debug("Polling will start in %.1fs, then every %.1fs", self._initial_delay, self._interval)

    async def stop(self) -> None:
        """Cancel everything. Safe to call more than once."""
        self._running = False
        self._ready = False
        tasks = [self._startup_task, self._interval_task, self._retry_task, *self._tasks]
        self._startup_task = self._interval_task = self._retry_task = None
        self._tasks.clear()
        notifier = self._drop_notifier()
        self._long_poll_confirmed = False

        current = asyncio.current_task()
        pending = [t for t in tasks if t is not None and t is not current]
        for t in pending:
            t.cancel()
        for t in pending:
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await t
        if notifier is not None:
            await notifier.aclose()

    def refresh(self) -> None:
        """Schedule one full poll, e.g. after a command changed the TV."""
        if self._running:
            self._spawn(self._safe_poll())

    async def _startup(self) -> None:
        await asyncio.sleep(self._initial_delay)
        await self._safe_poll()
        self._ready = True
        await self._call(self.on_ready)
        self._start_interval_polling()
        if self.snapshot.powered_on:
            self._ensure_notifier()

    # ---------- interval polling ----------

    def _start_interval_polling(self) -> None:
        if not self._running or self.interval_polling:
            return
        self._interval_task = asyncio.create_task(self._interval_loop(), name="tv_sync_interval")

    def _stop_interval_polling(self) -> None:
        task, self._interval_task = self._interval_task, None
        if task and task is not asyncio.current_task():
            task.cancel()

    async def _interval_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            await self._safe_poll()

    # ---------- full poll ----------

    async def _safe_poll(self) -> None:
        try:
            await self.poll_state()
        except asyncio.CancelledError:
            raise
        except Exception:
            log.exception("State poll failed")

    async def poll_state(self) -> None:
        """Power first; everything else only while the TV is on."""
        async with self._poll_lock:
            # standby TVs often don't answer at all; unknown counts as off
            is_on = bool(await self._client.get_power_state())
            changed = await self._apply_power(is_on)
            if is_on:
                changed = await self._poll_ambilight() or changed
                changed = await self._poll_volume() or changed
                changed = await self._poll_input() or changed
            if changed:
                await self._call(self.on_change, self.snapshot)

    async def _apply_power(self, is_on: bool) -> bool:
        was_on = self.snapshot.powered_on
        if is_on == was_on:
            return False
        self.snapshot.powered_on = is_on
        log.info("TV power: %s → %s", _onoff(was_on), _onoff(is_on))

        if self._ready:
            if is_on:
                self._ensure_notifier()
            else:
                # notifychange is only served while the TV is on
                self._drop_notifier()
                self._long_poll_confirmed = False
                self._cancel_retry()
            self._start_interval_polling()

        await self._call(self.on_power_change, is_on)
        return True

    async def _poll_ambilight(self) -> bool:
        snap = self.snapshot
        style = await self._client.get_ambilight_style()
        power: Optional[bool] = None
        if style is None:
            power = await self._client.get_ambilight_power()
            if power is None:
                # neither call answered; keep the last-known value
                return False
        if style == snap.ambilight_style and power == snap.ambilight_power:
            return False
        snap.ambilight_style = style
        snap.ambilight_power = power
        await self._call(self.on_ambilight_update, style, bool(power))
        return True

    async def _poll_volume(self) -> bool:
        snap = self.snapshot
        vol = await self._client.get_volume()
        if vol is None:
            return False
        changed = vol.current != snap.volume_level
        snap.volume_level = vol.current
        if vol.muted != snap.muted:
            snap.muted = vol.muted
            changed = True
            await self._call(self.on_volume_update, vol.muted)
        return changed

    async def _poll_input(self) -> bool:
        app = await self._client.get_current_activity()
        if app is None or app == self.snapshot.active_input:
            return False
        self.snapshot.active_input = app
        await self._call(self.on_input_update, app)
        return True

    # ---------- long-poll ----------

    def _ensure_notifier(self) -> None:
        if self._notifier is not None or self._notifier_factory is None or not self._running:
            return
        self._notifier_generation += 1
        self._long_poll_confirmed = False
        notifier = self._notifier_factory()
        notifier.on_notification = functools.partial(self._on_notification, notifier)
        notifier.on_failed = functools.partial(self._on_notifier_failed, notifier)
        self._notifier = notifier
        notifier.start()
        log.info("Long-poll started (generation %d)", self._notifier_generation)

    def _drop_notifier(self) -> Optional[ChangeNotifier]:
        notifier, self._notifier = self._notifier, None
        if notifier is None:
            return None
        notifier.on_notification = None
        notifier.on_failed = None
        notifier.stop()
        log.debug("Long-poll stopped")
        return notifier

    async def _on_notification(self, notifier: ChangeNotifier, resources: Dict[str, Any]) -> None:
        if notifier is not self._notifier:
            return
        actionable = set(resources) - NOISE_RESOURCES
        if actionable and not self._long_poll_confirmed:
            self._long_poll_confirmed = True
            self._stop_interval_polling()
            log.info("Long-poll confirmed working, stopped interval polling")
        # the payload only names what changed; fetch the details. Spawned so a
        # power-off found by this poll can stop the notifier that called us.
        self._spawn(self._safe_poll())

    async def _on_notifier_failed(self, notifier: ChangeNotifier) -> None:
        if notifier is not self._notifier:
            return
        self._notifier = None
        self._long_poll_confirmed = False
        self._start_interval_polling()
        if not self.snapshot.powered_on:
            log.debug("Long-poll failed while TV is off, not retrying")
            return
        log.warning("Long-poll failed while TV is on, will retry")
        self._schedule_retry()

    def _schedule_retry(self) -> None:
        self._cancel_retry()
        self._retry_task = asyncio.create_task(
            self._retry_after(self._notifier_generation), name="tv_sync_longpoll_retry"
        )

    def _cancel_retry(self) -> None:
        task, self._retry_task = self._retry_task, None
        if task and task is not asyncio.current_task():
            task.cancel()

    async def _retry_after(self, generation: int) -> None:
        await asyncio.sleep(self._retry_delay)
        self._retry_task = None
        if (
            generation != self._notifier_generation
            or self._notifier is not None
            or not self.snapshot.powered_on
        ):
            log.debug("Long-poll retry skipped, superseded")
            return
        self._ensure_notifier()

    # ---------- helpers ----------

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _call(self, cb: Optional[Callable[..., Awaitable[None]]], *args: Any) -> None:
        if cb is None:
            return
        try:
            await cb(*args)
        except Exception:
            log.exception("Sync callback failed")
