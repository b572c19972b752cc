from __future__ import annotations
import asyncio
import contextlib
from typing import Any, AsyncIterator, Dict, List

Event = Dict[str, Any]

class EventBus:
    """In-process fan-out of TV state events to SSE listeners."""

    def __init__(self, maxsize: int = 50) -> None:
        self._maxsize = maxsize
        self._subscribers: List["asyncio.Queue[Event]"] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, kind: str, data: Any) -> None:
        event = {"type": kind, "data": data}
        for q in list(self._subscribers):
            if q.full():
                # slow listener: drop its oldest event, state is always re-sent whole
                with contextlib.suppress(asyncio.QueueEmpty):
                    q.get_nowait()
            q.put_nowait(event)

    async def subscribe(self) -> AsyncIterator[Event]:
        q: "asyncio.Queue[Event]" = asyncio.Queue(maxsize=self._maxsize)
        self._subscribers.append(q)
        try:
            while True:
                yield await q.get()
        finally:
            with contextlib.suppress(ValueError):
                self._subscribers.remove(q)
