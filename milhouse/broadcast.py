import asyncio
from uuid import uuid4

from milhouse.logging import get_logger

_logger = get_logger(__name__)

_CLOSED = object()


class Subscription:
    """Async iterable of log lines for one observer.

    Seeded with the broadcaster's backlog at creation, then fed live lines.
    Iteration ends once the subscription is closed and the queued lines are
    consumed.
    """

    def __init__(self, sub_id: str, backlog: list[str]):
        self.id = sub_id
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        for line in backlog:
            self._queue.put_nowait(line)

    def deliver(self, line: str) -> None:
        if not self._closed:
            self._queue.put_nowait(line)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    @property
    def closed(self) -> bool:
        return self._closed

    def drain(self) -> list[str]:
        lines = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is _CLOSED:
                break
            lines.append(item)
        return lines

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item


class LogBroadcaster:
    """Fan-out of run log lines with backlog replay.

    - subscribe() registers an observer and replays the whole buffer into it.
    - publish(line) appends to the buffer and delivers to every observer.
    - reset() clears the buffer; only called when a new run starts.

    All methods are synchronous and run on the event loop thread, so replay and
    live delivery can not interleave: observers see a gap-free prefix.
    """

    def __init__(self) -> None:
        self._lines: list[str] = []
        self._subscribers: dict[str, Subscription] = {}

    @property
    def lines(self) -> list[str]:
        return list(self._lines)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        sub = Subscription(uuid4().hex, self._lines)
        self._subscribers[sub.id] = sub
        _logger.debug("Observer subscribed", subscriber=sub.id, replayed=len(self._lines))
        return sub

    def unsubscribe(self, sub_id: str) -> None:
        sub = self._subscribers.pop(sub_id, None)
        if sub:
            sub.close()
            _logger.debug("Observer unsubscribed", subscriber=sub_id)

    def publish(self, line: str) -> None:
        self._lines.append(line)
        for sub in list(self._subscribers.values()):
            sub.deliver(line)

    def reset(self) -> None:
        self._lines = []

    def close(self) -> None:
        for sub_id in list(self._subscribers):
            self.unsubscribe(sub_id)
