from __future__ import annotations
import json, logging
from dataclasses import asdict
from typing import Any, Awaitable, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from ..jointspace.client import JointSpaceClient
from ..jointspace.constants import AMBILIGHT_LOUNGE_PRESETS
from .eventbus import EventBus
from .supervisor import SyncSupervisor

log = logging.getLogger(__name__)

VOLUME_STEP = 2

class PowerBody(BaseModel):
    on: bool

class VolumeBody(BaseModel):
    change: str
    level: Optional[int] = Field(default=None, ge=0)

class MuteBody(BaseModel):
    muted: bool

class ColorBody(BaseModel):
    hue: int = Field(ge=0, le=255)
    saturation: int = Field(ge=0, le=255)
    brightness: int = Field(ge=0, le=255)

class AmbilightBody(BaseModel):
    style: Optional[str] = None
    algorithm: Optional[str] = None
    power: Optional[bool] = None
    lounge: Optional[str] = None
    color: Optional[ColorBody] = None
    speed: int = Field(default=0, ge=0, le=255)
    brightness: Optional[int] = None
    saturation: Optional[int] = None

class ChannelBody(BaseModel):
    ccid: int

class AppBody(BaseModel):
    package: str

class SourceBody(BaseModel):
    uri: str

class KeyBody(BaseModel):
    key: str

def _bad(error: str) -> JSONResponse:
    return JSONResponse({"ok": False, "error": error}, status_code=400)

def make_app(bus: EventBus, supervisor: SyncSupervisor, client: JointSpaceClient) -> FastAPI:
    app = FastAPI(title="tvhub")

    def state() -> Dict[str, Any]:
        return {"mode": supervisor.mode.value, "tv": supervisor.snapshot.to_dict()}

    async def command(what: str, op: Awaitable[bool]) -> Any:
        # the queue already turned every failure into False
        if not await op:
            log.warning("Command %s failed", what)
            return JSONResponse({"ok": False, "error": f"TV did not accept {what}"}, status_code=502)
        supervisor.refresh()
        return {"ok": True}

    @app.get("/healthz")
    async def healthz():
        return {"ok": True}

    @app.get("/api/state")
    async def get_state():
        return state()

    @app.post("/api/power")
    async def post_power(body: PowerBody):
        return await command("power", client.set_power_state(body.on))

    @app.post("/api/volume")
    async def post_volume(body: VolumeBody):
        current = supervisor.snapshot.volume_level
        if body.change == "set" and body.level is not None:
            target = body.level
        elif body.change in {"up", "down"}:
            if current is None:
                vol = await client.get_volume()
                if vol is None:
                    return JSONResponse({"ok": False, "error": "volume unknown"}, status_code=502)
                current = vol.current
            target = max(0, current + (VOLUME_STEP if body.change == "up" else -VOLUME_STEP))
        else:
            return _bad("invalid volume change")
        return await command("volume", client.set_volume(target))

    @app.post("/api/mute")
    async def post_mute(body: MuteBody):
        return await command("mute", client.set_muted(body.muted))

    @app.post("/api/ambilight")
    async def post_ambilight(body: AmbilightBody):
        # one change per request, most specific first
        if body.lounge:
            if body.lounge not in AMBILIGHT_LOUNGE_PRESETS:
                return _bad(f"unknown lounge preset {body.lounge!r}")
            return await command("ambilight lounge", client.set_ambilight_lounge(body.lounge))
        if body.color is not None:
            return await command("ambilight color", client.set_ambilight_follow_color(body.color.model_dump(), body.speed))
        if body.style:
            style = body.style.upper()
            if style == "OFF":
                return await command("ambilight off", client.set_ambilight_off())
            return await command("ambilight style", client.set_ambilight_style(style, body.algorithm))
        if body.brightness is not None:
            return await command("ambilight brightness", client.set_ambilight_brightness(body.brightness))
        if body.saturation is not None:
            return await command("ambilight saturation", client.set_ambilight_saturation(body.saturation))
        if body.power is not None:
            return await command("ambilight power", client.set_ambilight_power(body.power))
        return _bad("style, lounge, color, brightness, saturation or power required")

    @app.get("/api/ambilight/topology")
    async def get_ambilight_topology():
        topology = await client.get_ambilight_topology()
        if topology is None:
            return JSONResponse({"ok": False, "error": "topology unavailable"}, status_code=502)
        return topology

    @app.post("/api/app")
    async def post_app(body: AppBody):
        return await command("app launch", client.launch_application(body.package))

    @app.post("/api/source")
    async def post_source(body: SourceBody):
        return await command("source", client.set_source(body.uri))

    @app.post("/api/channel")
    async def post_channel(body: ChannelBody):
        return await command("channel", client.set_channel(body.ccid))

    @app.post("/api/key")
    async def post_key(body: KeyBody):
        return await command("key", client.send_key(body.key))

    @app.get("/api/sources")
    async def get_sources():
        return [asdict(s) for s in await client.get_sources()]

    @app.get("/api/channels")
    async def get_channels():
        return [asdict(c) for c in await client.get_channels()]

    @app.get("/api/applications")
    async def get_applications():
        return await client.get_applications()

    @app.get("/events")
    async def sse(req: Request):
        async def gen():
            yield f"event: state\ndata: {json.dumps(state())}\n\n"
            async for ev in bus.subscribe():
                if await req.is_disconnected():
                    break
                yield f"event: {ev.get('type','state')}\ndata: {json.dumps(ev.get('data'))}\n\n"
        return StreamingResponse(gen(), media_type="text/event-stream")

    return app
