from __future__ import annotations
import asyncio, logging
from typing import Any, Dict, Optional

import uvicorn

from ..config import Config
from ..jointspace.client import JointSpaceClient
from ..jointspace.notify import ChangeNotifier
from .eventbus import EventBus
from .http_api import make_app
from .state import DeviceSnapshot
from .supervisor import SyncSupervisor

log = logging.getLogger(__name__)

def build(cfg: Config, password: str) -> tuple[JointSpaceClient, SyncSupervisor, EventBus]:
    """Wire one TV: client + queue, supervisor, and the bus the API listens on."""
    client = JointSpaceClient.create(
        cfg.tv_host, cfg.tv_username, password,
        mac=cfg.tv_mac, api_version=cfg.api_version,
    )

    def new_notifier() -> ChangeNotifier:
        return ChangeNotifier(cfg.tv_host, cfg.tv_username, password, api_version=cfg.api_version)

    supervisor = SyncSupervisor(
        client,
        notifier_factory=new_notifier if cfg.long_poll else None,
        polling_interval=cfg.poll_interval,
        initial_delay=cfg.initial_poll_delay,
    )
    bus = EventBus()

    async def on_change(snap: DeviceSnapshot) -> None:
        bus.publish("state", {"mode": supervisor.mode.value, "tv": snap.to_dict()})

    async def on_power(on: bool) -> None:
        bus.publish("power", {"on": on})

    async def on_ambilight(style: Optional[Dict[str, Any]], power: bool) -> None:
        bus.publish("ambilight", {"style": style, "power": power})

    async def on_volume(muted: bool) -> None:
        bus.publish("volume", {"muted": muted, "level": supervisor.snapshot.volume_level})

    async def on_input(app_id: Optional[str]) -> None:
        bus.publish("input", {"app": app_id})

    async def on_ready() -> None:
        log.info("Initial state: %s", supervisor.snapshot.to_dict())
        bus.publish("ready", {"mode": supervisor.mode.value})

    supervisor.on_change = on_change
    supervisor.on_power_change = on_power
    supervisor.on_ambilight_update = on_ambilight
    supervisor.on_volume_update = on_volume
    supervisor.on_input_update = on_input
    supervisor.on_ready = on_ready
    return client, supervisor, bus

async def main(cfg: Config, stop: asyncio.Event) -> None:
    client, supervisor, bus = build(cfg, cfg.load_password())
    app = make_app(bus, supervisor, client)

    # Uvicorn inside this process
    config = uvicorn.Config(app=app, host=cfg.api_host, port=cfg.api_port, log_level="info", loop="asyncio")
    server = uvicorn.Server(config)
    server_task = asyncio.create_task(server.serve(), name="uvicorn")

    supervisor.start()
    log.info("Syncing TV at %s (long-poll %s)", cfg.tv_host, "on" if cfg.long_poll else "off")
    try:
        await stop.wait()
    finally:
        server.should_exit = True
        await supervisor.stop()
        await client.close()
        await asyncio.gather(server_task, return_exceptions=True)
