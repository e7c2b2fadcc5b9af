"""
Live dashboard feed.

Cards (suggestion, factcheck, claim, topic, transcript) are kept in a bounded
history that is replayed to every new subscriber and then pushed live to each
subscriber queue. A subscriber that stops reading loses its oldest cards; it never
blocks publish().
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional

from logging_setup import get_logger, Component

MAX_ITEMS = 100

CARD_TYPES = ("suggestion", "factcheck", "claim", "topic", "transcript")


class LiveFeed:
    def __init__(
        self,
        *,
        max_items: int = MAX_ITEMS,
        queue_size: int = MAX_ITEMS,
        now_ms: Callable[[], int] = lambda: int(time.time() * 1000),
        session_id: Optional[str] = None,
    ) -> None:
        self._items: Deque[Dict[str, Any]] = deque(maxlen=max_items)
        self._subscribers: List[asyncio.Queue] = []
        self._queue_size = queue_size
        self._now_ms = now_ms
        self.logger = get_logger(Component.DASHBOARD, session_id=session_id)

    def publish(self, card_type: str, text: Optional[str], **fields: Any) -> Optional[Dict[str, Any]]:
        """Add a card; blank text is ignored."""
        text = (text or "").strip()
        if not text:
            return None
        if card_type not in CARD_TYPES:
            raise ValueError(f"unknown card type: {card_type}")
        card = {"type": card_type, "text": text, "at": self._now_ms(), **fields}
        self._items.append(card)
        for queue in list(self._subscribers):
            self._offer(queue, card)
        return card

    def recent(self) -> List[Dict[str, Any]]:
        return [dict(item) for item in self._items]

    def subscribe(self) -> asyncio.Queue:
        """New subscriber queue, pre-filled with the current history."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        for card in self._items:
            self._offer(queue, card)
        self._subscribers.append(queue)
        self.logger.debug("Feed subscriber added", subscribers=len(self._subscribers))
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)
            self.logger.debug("Feed subscriber removed", subscribers=len(self._subscribers))

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def clear(self) -> None:
        self._items.clear()

    @staticmethod
    def _offer(queue: asyncio.Queue, card: Dict[str, Any]) -> None:
        if queue.full():
            queue.get_nowait()
        queue.put_nowait(card)
