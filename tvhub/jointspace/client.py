from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
from wakeonlan import send_magic_packet

from .channel import RequestChannel
from .constants import (
    AMBILIGHT_BRIGHTNESS_NODE_ID,
    AMBILIGHT_LOUNGE_PRESETS,
    AMBILIGHT_SATURATION_NODE_ID,
    AMBILIGHT_SETTING_MAX,
    AMBILIGHT_SETTING_MIN,
    API_VERSION,
    CHANNEL_LIST_ID,
    DEFAULT_LOUNGE_PRESET,
    HDMI_SOURCES,
    HTTPS_PORT,
    INTER_REQUEST_DELAY,
    PLAYTV_COMPONENT,
    SOURCE_SELECT_ACTION,
    WATCH_TV_URI,
    WOL_WAKE_DELAY,
)
from .digest import AuthCache
from .queue import CommandQueue

log = logging.getLogger(__name__)


@dataclass
class VolumeState:
    current: int = 0
    min: int = 0
    max: int = 60
    muted: bool = False

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "VolumeState":
        return cls(
            current=int(data.get("current") or 0),
            min=int(data.get("min") or 0),
            max=int(data.get("max") or 60),
            muted=bool(data.get("muted") or False),
        )


@dataclass(frozen=True)
class TVSource:
    id: str
    name: str


@dataclass(frozen=True)
class TVChannel:
    ccid: int
    name: str
    preset: Optional[str] = None


def _json(resp: Optional[httpx.Response]) -> Any:
    """Decoded body, or None for no response / empty / malformed body."""
    if resp is None or not resp.content:
        return None
    try:
        return resp.json()
    except ValueError:
        log.debug("Unparseable JSON from TV: %r", resp.text[:200])
        return None


class JointSpaceClient:
    """
    Typed JointSpace v6 API for one TV. All calls go through a CommandQueue;
    getters return None (unknown) when the TV did not answer.
    """

    def __init__(self, queue: CommandQueue, *, mac: Optional[str] = None) -> None:
        self._queue = queue
        self._mac = mac
        self._http: Optional[httpx.AsyncClient] = None

    @classmethod
    def create(
        cls,
        host: str,
        username: str,
        password: str,
        *,
        mac: Optional[str] = None,
        api_version: int = API_VERSION,
        spacing: float = INTER_REQUEST_DELAY,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "JointSpaceClient":
        # Self-signed certificate on every set; validation must be off.
        http = httpx.AsyncClient(
            base_url=f"https://{host}:{HTTPS_PORT}",
            verify=False,
            transport=transport,
        )
        channel = RequestChannel(http, AuthCache(username, password), api_version=api_version)
        client = cls(CommandQueue(channel, spacing=spacing), mac=mac)
        client._http = http
        return client

    async def close(self) -> None:
        await self._queue.close()
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def _get(self, path: str) -> Any:
        return _json(await self._queue.get(path))

    async def _post(self, path: str, body: Any) -> bool:
        return await self._queue.post(path, body) is not None

    # ---------- power ----------

    async def get_power_state(self) -> Optional[bool]:
        data = await self._get("/powerstate")
        if not isinstance(data, dict):
            return None
        return data.get("powerstate") == "On"

    async def set_power_state(self, on: bool) -> bool:
        if on:
            await self.wake()
        return await self._post("/powerstate", {"powerstate": "On" if on else "Standby"})

    async def wake(self) -> None:
        """Best-effort Wake-on-LAN; deep standby drops the API until woken."""
        if not self._mac:
            return
        try:
            await asyncio.to_thread(send_magic_packet, self._mac)
        except (OSError, ValueError) as exc:
            log.warning("Wake-on-LAN to %s failed: %s", self._mac, exc)
            return
        await asyncio.sleep(WOL_WAKE_DELAY)

    # ---------- volume ----------

    async def get_volume(self) -> Optional[VolumeState]:
        data = await self._get("/audio/volume")
        return VolumeState.from_json(data) if isinstance(data, dict) else None

    async def set_volume(self, level: int) -> bool:
        return await self._post("/audio/volume", {"current": int(level), "muted": False})

    async def set_muted(self, muted: bool) -> bool:
        return await self._post("/audio/volume", {"muted": bool(muted)})

    # ---------- sources ----------

    async def get_sources(self) -> List[TVSource]:
        data = await self._get("/sources")
        sources = data.get("sources") if isinstance(data, dict) else None
        if sources:
            return [TVSource(id=str(s.get("id")), name=str(s.get("name") or s.get("id"))) for s in sources]
        return self.built_in_sources()

    @staticmethod
    def built_in_sources() -> List[TVSource]:
        return [TVSource(WATCH_TV_URI, "Watch TV")] + [TVSource(uri, name) for uri, name in HDMI_SOURCES.items()]

    async def set_source(self, uri: str) -> bool:
        return await self._launch_intent({
            "extras": {"uri": uri},
            "action": SOURCE_SELECT_ACTION,
            "component": dict(PLAYTV_COMPONENT),
        })

    # ---------- channels ----------

    async def get_channels(self) -> List[TVChannel]:
        data = await self._get("/channeldb/tv/channelLists/all")
        channels = data.get("Channel") if isinstance(data, dict) else None
        return [
            TVChannel(ccid=int(c["ccid"]), name=str(c.get("name") or ""), preset=c.get("preset"))
            for c in channels or []
            if isinstance(c, dict) and c.get("ccid") is not None
        ]

    async def set_channel(self, ccid: int) -> bool:
        return await self._post("/activities/tv", {
            "channel": {"ccid": int(ccid)},
            "channelList": {"id": CHANNEL_LIST_ID},
        })

    # ---------- applications ----------

    async def get_applications(self) -> List[Dict[str, Any]]:
        data = await self._get("/applications")
        if isinstance(data, dict):
            return list(data.get("applications") or [])
        return []

    async def launch_application(self, package: str) -> bool:
        return await self._launch_intent({
            "component": {"packageName": package, "className": "MainActivity"},
            "action": "Intent.ACTION_MAIN",
        })

    async def get_current_activity(self) -> Optional[str]:
        data = await self._get("/activities/current")
        if not isinstance(data, dict):
            return None
        return (data.get("component") or {}).get("packageName") or None

    async def _launch_intent(self, intent: Dict[str, Any]) -> bool:
        return await self._post("/activities/launch", {"intent": intent})

    # ---------- remote / system ----------

    async def send_key(self, key: str) -> bool:
        return await self._post("/input/key", {"key": key})

    async def get_system_info(self) -> Optional[Dict[str, Any]]:
        data = await self._get("/system")
        return data if isinstance(data, dict) else None

    async def is_reachable(self) -> bool:
        return await self.get_system_info() is not None

    # ---------- ambilight ----------

    async def get_ambilight_power(self) -> Optional[bool]:
        data = await self._get("/ambilight/power")
        if not isinstance(data, dict):
            return None
        return data.get("power") == "On"

    async def set_ambilight_power(self, on: bool) -> bool:
        return await self._post("/ambilight/power", {"power": "On" if on else "Off"})

    async def get_ambilight_style(self) -> Optional[Dict[str, Any]]:
        data = await self._get("/ambilight/currentconfiguration")
        return data if isinstance(data, dict) and data else None

    async def set_ambilight_style(self, style: str, algorithm: Optional[str] = None) -> bool:
        config: Dict[str, Any] = {"styleName": style, "isExpert": False}
        if algorithm:
            config["algorithm"] = algorithm
            config["isExpert"] = True
        return await self._post("/ambilight/currentconfiguration", config)

    async def set_ambilight_follow_video(self, style: str = "STANDARD") -> bool:
        return await self.set_ambilight_style("FOLLOW_VIDEO", style)

    async def set_ambilight_follow_audio(self, algorithm: str = "ENERGY_ADAPTIVE_BRIGHTNESS") -> bool:
        return await self.set_ambilight_style("FOLLOW_AUDIO", algorithm)

    async def set_ambilight_follow_color(self, color: Dict[str, int], speed: int = 0) -> bool:
        return await self._post("/ambilight/currentconfiguration", {
            "styleName": "FOLLOW_COLOR",
            "isExpert": True,
            "algorithm": "AUTOMATIC_HUE" if speed > 0 else "MANUAL_HUE",
            "speed": speed,
            "colorSettings": {
                "color": color,
                "colorDelta": {"hue": 0, "saturation": 0, "brightness": 0},
                "speed": speed,
            },
        })

    async def set_ambilight_lounge(self, preset: str = DEFAULT_LOUNGE_PRESET) -> bool:
        color = AMBILIGHT_LOUNGE_PRESETS.get(preset) or AMBILIGHT_LOUNGE_PRESETS[DEFAULT_LOUNGE_PRESET]
        return await self.set_ambilight_follow_color(dict(color), 0)

    async def set_ambilight_off(self) -> bool:
        return await self.set_ambilight_style("OFF")

    async def get_ambilight_topology(self) -> Optional[Dict[str, Any]]:
        """LED count per side (left/top/right/bottom) and layer count."""
        data = await self._get("/ambilight/topology")
        return data if isinstance(data, dict) else None

    async def set_ambilight_brightness(self, level: int) -> bool:
        return await self._set_menu_value(AMBILIGHT_BRIGHTNESS_NODE_ID, level)

    async def set_ambilight_saturation(self, level: int) -> bool:
        return await self._set_menu_value(AMBILIGHT_SATURATION_NODE_ID, level)

    async def _set_menu_value(self, node_id: int, value: int) -> bool:
        clamped = max(AMBILIGHT_SETTING_MIN, min(AMBILIGHT_SETTING_MAX, int(value)))
        return await self._post("/menuitems/settings/update", {
            "values": [{"value": {"Nodeid": node_id, "data": {"value": clamped}}}],
        })
