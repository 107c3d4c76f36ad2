"""
Channel object connecting jobs to the external renderer.

Requests are published to every attached sink (a websocket connection to
the GUI's content process, or the in-process local renderer). Responses
come back through `deliver`, which fans out to subscribers of the response
channel. One bus is created per application and passed into each job.
"""
import asyncio
import functools
import inspect
import logging
import threading
from collections import defaultdict
from typing import Any, Callable, Dict, List, Set

logger = logging.getLogger(__name__)

GEN_TEXT_IMG = "gen-text-img"
GEN_MAIN_IMG_SHADOW = "gen-main-img-shadow"
PROGRESS = "progress"

RESULT_SUFFIX = ":result"

Handler = Callable[[Dict[str, Any]], None]
Sink = Callable[[str, Dict[str, Any]], Any]


def result_channel(channel: str) -> str:
    return f"{channel}{RESULT_SUFFIX}"


class RendererBus:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: Dict[str, List[Handler]] = defaultdict(list)
        self._sinks: List[Sink] = []
        # Strong references to in-flight async sink calls
        self._tasks: Set[asyncio.Task] = set()

    def attach(self, sink: Sink) -> None:
        """Register a request consumer."""
        with self._lock:
            if sink not in self._sinks:
                self._sinks.append(sink)

    def detach(self, sink: Sink) -> None:
        with self._lock:
            if sink in self._sinks:
                self._sinks.remove(sink)

    @property
    def sink_count(self) -> int:
        return len(self._sinks)

    def publish(self, channel: str, payload: Dict[str, Any]) -> None:
        """Send a request (or event) to every attached sink."""
        with self._lock:
            sinks = list(self._sinks)
        if not sinks and channel != PROGRESS:
            logger.warning("no renderer attached for %s; request %s will wait", channel, payload.get("id"))
        for sink in sinks:
            try:
                result = sink(channel, payload)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._tasks.add(task)
                    task.add_done_callback(functools.partial(self._sink_done, channel))
            except Exception:
                logger.exception("renderer sink failed on %s", channel)

    def _sink_done(self, channel: str, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("renderer sink failed on %s", channel, exc_info=exc)

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    def subscribe(self, channel: str, handler: Handler) -> None:
        with self._lock:
            self._subscribers[channel].append(handler)

    def unsubscribe(self, channel: str, handler: Handler) -> bool:
        with self._lock:
            handlers = self._subscribers.get(channel)
            if not handlers or handler not in handlers:
                return False
            handlers.remove(handler)
            if not handlers:
                del self._subscribers[channel]
            return True

    def listener_count(self, channel: str) -> int:
        with self._lock:
            return len(self._subscribers.get(channel, ()))

    def deliver(self, channel: str, payload: Dict[str, Any]) -> int:
        """Hand a response to the subscribers of `channel`. Returns how many got it."""
        with self._lock:
            handlers = list(self._subscribers.get(channel, ()))
        for handler in handlers:
            handler(payload)
        if not handlers:
            logger.debug("dropping %s response for %s: no listener", channel, payload.get("id"))
        return len(handlers)
