from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from .channel import RequestChannel
from .constants import DEFAULT_TIMEOUT, INTER_REQUEST_DELAY
from .errors import DeviceRequestError, JointSpaceError

log = logging.getLogger(__name__)


@dataclass
class PendingRequest:
    method: str
    path: str
    body: Any
    timeout: float
    future: "asyncio.Future[Optional[httpx.Response]]"


class CommandQueue:
    """
    Serializes every short call to one TV.
    The JointSpace server is single-threaded; overlapping requests make it
    stall or drop connections, so exactly one exchange is in flight and each
    is followed by a short pause. Failures come back as None.
    """

    def __init__(
        self,
        channel: RequestChannel,
        *,
        spacing: float = INTER_REQUEST_DELAY,
        default_timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._channel = channel
        self._spacing = spacing
        self._default_timeout = default_timeout
        self._pending: "asyncio.Queue[PendingRequest]" = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._closed = False

    async def enqueue(
        self,
        method: str,
        path: str,
        body: Any = None,
        *,
        timeout: Optional[float] = None,
    ) -> Optional[httpx.Response]:
        if self._closed:
            return None
        fut: "asyncio.Future[Optional[httpx.Response]]" = asyncio.get_running_loop().create_future()
        self._pending.put_nowait(PendingRequest(
            method=method.upper(),
            path=path,
            body=body,
            timeout=timeout if timeout is not None else self._default_timeout,
            future=fut,
        ))
        self._ensure_worker()
        return await fut

    async def get(self, path: str, *, timeout: Optional[float] = None) -> Optional[httpx.Response]:
        return await self.enqueue("GET", path, timeout=timeout)

    async def post(self, path: str, body: Any, *, timeout: Optional[float] = None) -> Optional[httpx.Response]:
        return await self.enqueue("POST", path, body, timeout=timeout)

    async def close(self) -> None:
        self._closed = True
        if self._worker:
            self._worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker
            self._worker = None
        while not self._pending.empty():
            req = self._pending.get_nowait()
            if not req.future.done():
                req.future.set_result(None)

    # ---------- worker ----------

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name="jointspace_queue")

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            req = await self._pending.get()
            if req.future.done():
                # caller gave up before dispatch
                continue
            start = loop.time()
            log.debug("API %s %s", req.method, req.path)
            result: Optional[httpx.Response] = None
            try:
                result = await self._channel.execute(req.method, req.path, req.body, timeout=req.timeout)
                log.debug("API %s %s → OK (%dms)", req.method, req.path, (loop.time() - start) * 1000)
            except DeviceRequestError as exc:
                log.warning("API %s %s → %s: %s", req.method, req.path, exc.status, exc.message)
            except JointSpaceError as exc:
                log.debug("API %s %s → FAIL (%dms): %s", req.method, req.path, (loop.time() - start) * 1000, exc)
            except Exception:
                log.exception("API %s %s → unexpected error", req.method, req.path)
            finally:
                if not req.future.done():
                    req.future.set_result(result)
            await asyncio.sleep(self._spacing)
