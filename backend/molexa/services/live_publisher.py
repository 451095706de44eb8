"""
Live analytics publisher.

Fans analytics snapshots out to subscribed streams:
  - WebSocket clients  (``WebSocketSubscriber``)
  - SSE responses      (``QueueSubscriber`` feeding a streaming body)

Pushes happen on every tracked request and on a fixed heartbeat tick.
A failed write drops only the subscriber that failed.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Set

from fastapi import WebSocket
from starlette.websockets import WebSocketState

logger = logging.getLogger("molexa.live")

SnapshotFn = Callable[[], Dict[str, Any]]

_ids = itertools.count(1)


class SubscriberGone(Exception):
    """Raised by a subscriber that can no longer receive."""


class Subscriber:
    """Base subscriber. ``send`` raises when the channel is dead."""

    kind = "base"

    def __init__(self, subscriber_id: Optional[str] = None) -> None:
        self.subscriber_id = subscriber_id or f"{self.kind}-{next(_ids)}"
        self.connected_at = time.time()
        self.messages_sent = 0
        self.closed = False

    async def send(self, payload: Dict[str, Any]) -> None:
        raise NotImplementedError


class WebSocketSubscriber(Subscriber):
    kind = "ws"

    def __init__(self, websocket: WebSocket, subscriber_id: Optional[str] = None) -> None:
        super().__init__(subscriber_id)
        self.websocket = websocket

    async def send(self, payload: Dict[str, Any]) -> None:
        if self.websocket.client_state != WebSocketState.CONNECTED:
            raise SubscriberGone(self.subscriber_id)
        await self.websocket.send_json(payload)
        self.messages_sent += 1


class QueueSubscriber(Subscriber):
    """Buffers payloads for a streaming response. A full queue is a dead reader."""

    kind = "sse"

    def __init__(self, maxsize: int = 100, subscriber_id: Optional[str] = None) -> None:
        super().__init__(subscriber_id)
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)

    async def send(self, payload: Dict[str, Any]) -> None:
        try:
            self.queue.put_nowait(payload)
        except asyncio.QueueFull:
            raise SubscriberGone(self.subscriber_id)
        self.messages_sent += 1

    async def get(self) -> Dict[str, Any]:
        return await self.queue.get()


class LivePublisher:
    """Manages subscribers and broadcasts analytics snapshots."""

    def __init__(self, snapshot: SnapshotFn, interval_seconds: float = 30.0) -> None:
        self._snapshot = snapshot
        self.interval_seconds = interval_seconds
        self._subscribers: Dict[str, Subscriber] = {}
        self._lock = asyncio.Lock()
        self._tick_task: Optional[asyncio.Task] = None
        self._pending: Set[asyncio.Task] = set()
        self._total_sent = 0

    # ─── Subscribe / Unsubscribe ───

    async def subscribe(self, subscriber: Subscriber) -> bool:
        """Register and push the initial snapshot. False if that first write fails."""
        async with self._lock:
            self._subscribers[subscriber.subscriber_id] = subscriber
        logger.info("Subscriber connected: %s  (total: %d)", subscriber.subscriber_id, len(self._subscribers))
        return await self._send(subscriber, self._payload("initial"))

    async def unsubscribe(self, subscriber_id: str) -> None:
        async with self._lock:
            removed = self._subscribers.pop(subscriber_id, None)
        if removed is not None:
            removed.closed = True
            logger.info("Subscriber disconnected: %s  (total: %d)", subscriber_id, len(self._subscribers))

    # ─── Broadcasting ───

    def _payload(self, kind: str) -> Dict[str, Any]:
        data = self._snapshot()
        data["type"] = kind
        data.setdefault("ts", time.time())
        return data

    async def publish(self, kind: str = "update") -> int:
        """Push one snapshot to every subscriber. Returns delivered count."""
        async with self._lock:
            targets: List[Subscriber] = list(self._subscribers.values())
        if not targets:
            return 0

        payload = self._payload(kind)
        sent = 0
        for sub in targets:
            if await self._send(sub, payload):
                sent += 1
        return sent

    def notify(self, kind: str = "new_request") -> None:
        """Schedule a publish without waiting for it."""
        if not self._subscribers:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self.publish(kind))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _send(self, sub: Subscriber, payload: Dict[str, Any]) -> bool:
        try:
            await sub.send(payload)
            self._total_sent += 1
            return True
        except Exception as exc:
            logger.debug("Send failed for %s (%s), dropping subscriber", sub.subscriber_id, exc)
            await self.unsubscribe(sub.subscriber_id)
        return False

    # ─── Heartbeat ───

    def start(self) -> None:
        if self._tick_task is not None:
            return
        self._tick_task = asyncio.get_running_loop().create_task(self._tick_loop())
        logger.info("Live publisher started (tick every %ss)", self.interval_seconds)

    async def stop(self) -> None:
        task, self._tick_task = self._tick_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        for pending in list(self._pending):
            pending.cancel()
        self._pending.clear()
        async with self._lock:
            for sub in self._subscribers.values():
                sub.closed = True
            self._subscribers.clear()
        logger.info("Live publisher stopped")

    async def _tick_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.publish("heartbeat")
            except Exception:
                logger.exception("Heartbeat publish failed")

    # ─── Stats ───

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def stats(self) -> Dict[str, Any]:
        return {
            "subscribers": len(self._subscribers),
            "by_kind": {
                kind: sum(1 for s in self._subscribers.values() if s.kind == kind)
                for kind in ("ws", "sse")
            },
            "total_messages_sent": self._total_sent,
        }
