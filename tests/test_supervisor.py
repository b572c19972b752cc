from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from conftest import wait_for
from tvhub.jointspace.client import VolumeState
from tvhub.orchestrator.supervisor import SyncMode, SyncSupervisor


class FakeClient:
    def __init__(self) -> None:
        self.power: Optional[bool] = False
        self.style: Optional[Dict[str, Any]] = {"styleName": "FOLLOW_VIDEO", "algorithm": "STANDARD"}
        self.ambilight_power: Optional[bool] = True
        self.volume: Optional[VolumeState] = VolumeState(current=12, muted=False)
        self.app: Optional[str] = "org.droidtv.playtv"
        self.power_polls = 0
        self.detail_polls = 0

    async def get_power_state(self) -> Optional[bool]:
        self.power_polls += 1
        return self.power

    async def get_ambilight_style(self) -> Optional[Dict[str, Any]]:
        self.detail_polls += 1
        return self.style

    async def get_ambilight_power(self) -> Optional[bool]:
        return self.ambilight_power

    async def get_volume(self) -> Optional[VolumeState]:
        return self.volume

    async def get_current_activity(self) -> Optional[str]:
        return self.app


class FakeNotifier:
    def __init__(self) -> None:
        self.starts = 0
        self.stops = 0
        self.closed = 0
        self.on_notification = None
        self.on_failed = None

    def start(self) -> None:
        self.starts += 1

    def stop(self) -> None:
        self.stops += 1

    async def aclose(self) -> None:
        self.closed += 1


class Harness:
    def __init__(self, **kw: Any) -> None:
        self.client = FakeClient()
        self.notifiers: List[FakeNotifier] = []
        opts = dict(polling_interval=0.02, initial_delay=0, retry_delay=0.05)
        opts.update(kw)
        self.sup = SyncSupervisor(self.client, notifier_factory=self._make, **opts)
        self.events: List[tuple] = []
        self.sup.on_power_change = self._record("power")
        self.sup.on_ambilight_update = self._record("ambilight")
        self.sup.on_volume_update = self._record("volume")
        self.sup.on_input_update = self._record("input")
        self.sup.on_ready = self._record("ready")

    def _make(self) -> FakeNotifier:
        n = FakeNotifier()
        self.notifiers.append(n)
        return n

    def _record(self, kind: str):
        async def cb(*args: Any) -> None:
            self.events.append((kind, *args))
        return cb

    def count(self, kind: str) -> int:
        return sum(1 for e in self.events if e[0] == kind)

    async def started(self) -> SyncSupervisor:
        self.sup.start()
        await wait_for(lambda: self.count("ready") == 1)
        return self.sup


@pytest.mark.asyncio
async def test_tv_off_at_startup_polls_power_only():
    h = Harness()
    sup = await h.started()
    polls = h.client.power_polls
    await wait_for(lambda: h.client.power_polls >= polls + 2)

    assert sup.mode is SyncMode.INTERVAL
    assert h.client.detail_polls == 0
    assert h.count("power") == 0
    assert h.count("ambilight") == h.count("volume") == h.count("input") == 0
    assert h.notifiers == []
    await sup.stop()


@pytest.mark.asyncio
async def test_tv_on_at_startup_reports_once_and_starts_long_poll():
    h = Harness()
    h.client.power = True
    sup = await h.started()
    polls = h.client.power_polls
    await wait_for(lambda: h.client.power_polls >= polls + 3)

    assert h.events[0] == ("power", True)
    assert h.count("ambilight") == 1
    assert h.count("volume") == 1
    assert h.count("input") == 1
    assert ("input", "org.droidtv.playtv") in h.events
    assert len(h.notifiers) == 1 and h.notifiers[0].starts == 1
    assert sup.mode is SyncMode.HYBRID
    assert sup.snapshot.volume_level == 12
    await sup.stop()


@pytest.mark.asyncio
async def test_volume_callback_only_on_mute_change():
    h = Harness()
    h.client.power = True
    sup = await h.started()

    h.client.volume = VolumeState(current=30, muted=False)
    await sup.poll_state()
    assert h.count("volume") == 1
    assert sup.snapshot.volume_level == 30

    h.client.volume = VolumeState(current=30, muted=True)
    await sup.poll_state()
    assert h.events[-1] == ("volume", True)
    await sup.stop()


@pytest.mark.asyncio
async def test_ambilight_falls_back_to_power_when_style_unknown():
    h = Harness()
    h.client.power = True
    h.client.style = None
    sup = await h.started()

    assert ("ambilight", None, True) in h.events
    assert sup.snapshot.ambilight_power is True
    await sup.stop()


@pytest.mark.asyncio
async def test_unknown_power_counts_as_off():
    h = Harness()
    h.client.power = True
    sup = await h.started()

    h.client.power = None
    await sup.poll_state()
    assert sup.snapshot.powered_on is False
    assert h.events[-1] == ("power", False)
    await sup.stop()


@pytest.mark.asyncio
async def test_unanswered_input_keeps_last_known_value():
    h = Harness(polling_interval=10)
    h.client.power = True
    sup = await h.started()

    h.client.app = None
    await sup.poll_state()
    h.client.app = "org.droidtv.playtv"
    await sup.poll_state()

    assert [e for e in h.events if e[0] == "input"] == [("input", "org.droidtv.playtv")]
    assert sup.snapshot.active_input == "org.droidtv.playtv"
    await sup.stop()


@pytest.mark.asyncio
async def test_unanswered_ambilight_keeps_last_known_value():
    h = Harness(polling_interval=10)
    h.client.power = True
    sup = await h.started()
    style = sup.snapshot.ambilight_style

    h.client.style = None
    h.client.ambilight_power = None
    await sup.poll_state()

    assert h.count("ambilight") == 1
    assert ("ambilight", None, False) not in h.events
    assert sup.snapshot.ambilight_style == style
    await sup.stop()


@pytest.mark.asyncio
async def test_actionable_notification_stops_interval_polling():
    h = Harness()
    h.client.power = True
    sup = await h.started()
    notifier = h.notifiers[0]
    assert sup.interval_polling

    before = h.client.power_polls
    await notifier.on_notification({"audio/volume": {"current": 13}, "activities/tv": {}})

    assert sup.long_poll_confirmed
    assert not sup.interval_polling
    assert sup.mode is SyncMode.LONG_POLL
    # the notification triggers exactly one poll of its own
    await wait_for(lambda: h.client.power_polls == before + 1)
    await asyncio.sleep(0.1)  # five interval periods
    assert h.client.power_polls == before + 1
    await sup.stop()


@pytest.mark.asyncio
async def test_noise_only_notification_does_not_confirm():
    h = Harness()
    h.client.power = True
    sup = await h.started()

    await h.notifiers[0].on_notification({"activities/tv": {"channel": {}}})

    assert not sup.long_poll_confirmed
    assert sup.interval_polling
    assert sup.mode is SyncMode.HYBRID
    await sup.stop()


@pytest.mark.asyncio
async def test_long_poll_failure_while_on_restarts_interval_and_retries():
    h = Harness()
    h.client.power = True
    sup = await h.started()
    first = h.notifiers[0]
    await first.on_notification({"powerstate": {"powerstate": "On"}})
    assert not sup.interval_polling

    await first.on_failed()
    assert sup.interval_polling
    assert sup.notifier is None
    assert sup.mode is SyncMode.INTERVAL

    await wait_for(lambda: len(h.notifiers) == 2)
    assert h.notifiers[1].starts == 1
    assert sup.notifier is h.notifiers[1]
    assert not sup.long_poll_confirmed
    await sup.stop()


@pytest.mark.asyncio
async def test_power_off_drops_long_poll_and_cancels_retry():
    h = Harness(polling_interval=10)
    h.client.power = True
    sup = await h.started()
    first = h.notifiers[0]

    h.client.power = False
    await sup.poll_state()
    assert first.stops == 1
    assert sup.notifier is None
    assert sup.interval_polling

    h.client.power = True
    await sup.poll_state()
    second = h.notifiers[1]
    assert sup.notifier is second

    await second.on_failed()  # retry scheduled...
    h.client.power = False
    await sup.poll_state()    # ...and cancelled by the power-off
    await asyncio.sleep(0.1)

    assert len(h.notifiers) == 2
    assert sup.notifier is None
    assert sup.mode is SyncMode.INTERVAL
    await sup.stop()


@pytest.mark.asyncio
async def test_callbacks_from_replaced_notifier_are_ignored():
    h = Harness(polling_interval=10)
    h.client.power = True
    sup = await h.started()
    stale = h.notifiers[0]
    stale_notify, stale_failed = stale.on_notification, stale.on_failed

    h.client.power = False
    await sup.poll_state()
    h.client.power = True
    await sup.poll_state()
    current = h.notifiers[1]

    await stale_notify({"powerstate": {"powerstate": "On"}})
    await stale_failed()
    await asyncio.sleep(0.1)

    assert not sup.long_poll_confirmed
    assert sup.notifier is current
    assert len(h.notifiers) == 2
    await sup.stop()


@pytest.mark.asyncio
async def test_stop_is_idempotent_and_final():
    h = Harness()
    h.client.power = True
    sup = await h.started()
    notifier = h.notifiers[0]

    await sup.stop()
    await sup.stop()
    polls = h.client.power_polls
    await asyncio.sleep(0.08)

    assert h.client.power_polls == polls
    assert notifier.stops == 1
    assert notifier.closed == 1
    assert sup.mode is SyncMode.STOPPED
    assert not sup.interval_polling
    sup.refresh()
    await asyncio.sleep(0.02)
    assert h.client.power_polls == polls


@pytest.mark.asyncio
async def test_no_long_poll_without_factory():
    client = FakeClient()
    client.power = True
    sup = SyncSupervisor(client, polling_interval=0.02, initial_delay=0)
    sup.start()
    await wait_for(lambda: sup.mode is SyncMode.INTERVAL)
    assert sup.notifier is None
    await sup.stop()
