"""Progress events of running merges, fanned out to any number of subscribers."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING, Any

from cmsync.domain.model import ProgressStatus

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

log = getLogger(__name__)

DEFAULT_BUFFER_SIZE = 256


@dataclass(frozen=True, slots=True, kw_only=True)
class SyncProgressUpdate:
    merge_request_id: int
    total_items: int
    processed_items: int
    status: ProgressStatus
    current_item: str | None = None
    current_item_type: str | None = None
    current_operation: str | None = None
    message: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "mergeRequestId": self.merge_request_id,
            "totalItems": self.total_items,
            "processedItems": self.processed_items,
            "currentItem": self.current_item,
            "currentItemType": self.current_item_type,
            "currentOperation": self.current_operation,
            "status": str(self.status),
        }
        if self.message is not None:
            payload["message"] = self.message
        return payload


@dataclass(eq=False)
class Subscription:
    """Bounded buffer of updates for one subscriber.

    Closing puts an end marker on the queue so a pending iteration wakes up and stops.
    """

    merge_request_id: int
    queue: asyncio.Queue[SyncProgressUpdate | None] = field(repr=False)
    dropped: int = 0
    closed: bool = False

    def offer(self, update: SyncProgressUpdate) -> None:
        if not self.closed:
            self._put(update)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._put(None)

    def drain(self) -> list[SyncProgressUpdate]:
        updates: list[SyncProgressUpdate] = []
        while not self.queue.empty():
            update = self.queue.get_nowait()
            if update is not None:
                updates.append(update)
        return updates

    async def __aiter__(self) -> AsyncIterator[SyncProgressUpdate]:
        while True:
            update = await self.queue.get()
            if update is None:
                return
            yield update
            if update.status in {ProgressStatus.COMPLETED, ProgressStatus.ERROR}:
                return

    def _put(self, update: SyncProgressUpdate | None) -> None:
        while True:
            try:
                self.queue.put_nowait(update)
            except asyncio.QueueFull:
                try:
                    self.queue.get_nowait()
                except asyncio.QueueEmpty:
                    continue
                self.dropped += 1
                continue
            return


class ProgressBroker:
    """Registry of subscriptions per merge request.

    ``publish`` never blocks: a full subscription drops its oldest buffered update.
    """

    def __init__(self, buffer_size: int = DEFAULT_BUFFER_SIZE) -> None:
        self._buffer_size = buffer_size
        self._subscriptions: dict[int, list[Subscription]] = {}

    def register(self, merge_request_id: int) -> Subscription:
        subscription = Subscription(
            merge_request_id=merge_request_id,
            queue=asyncio.Queue(maxsize=self._buffer_size),
        )
        self._subscriptions.setdefault(merge_request_id, []).append(subscription)
        return subscription

    def unregister(self, subscription: Subscription) -> None:
        subscription.close()
        subscriptions = self._subscriptions.get(subscription.merge_request_id, [])
        if subscription in subscriptions:
            subscriptions.remove(subscription)
        if not subscriptions:
            self._subscriptions.pop(subscription.merge_request_id, None)

    def subscriber_count(self, merge_request_id: int) -> int:
        return len(self._subscriptions.get(merge_request_id, []))

    def publish(self, update: SyncProgressUpdate) -> None:
        log.debug(
            f"Merge {update.merge_request_id}: {update.status} "
            f"{update.processed_items}/{update.total_items} {update.current_item or ''}"
        )
        for subscription in list(self._subscriptions.get(update.merge_request_id, [])):
            subscription.offer(update)
