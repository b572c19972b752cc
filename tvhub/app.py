"""tvhub entry: keep one TV's state in sync and serve it over HTTP."""
from __future__ import annotations
import asyncio, logging, os
import contextlib
import signal

try:
    import uvloop as _uvloop  # type: ignore
    _uvloop.install()
except Exception:
    pass

from .config import Config
from .orchestrator.app import main as orchestrator_main

logger = logging.getLogger(__name__)

async def main() -> None:
    logging.basicConfig(level=os.environ.get("LOG_LEVEL","INFO"))
    cfg = Config.load()
    logger.info("Starting tvhub for TV at %s", cfg.tv_host)
    if cfg.debug_api:
        logging.getLogger("tvhub.jointspace").setLevel(logging.DEBUG)

    stop = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(Exception):
            asyncio.get_running_loop().add_signal_handler(sig, stop.set)
    await orchestrator_main(cfg, stop)

def run() -> None:
    asyncio.run(main())

if __name__ == "__main__":
    run()
