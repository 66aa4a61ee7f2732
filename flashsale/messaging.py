"""An in-process message queue and the flash-sale message codec on top of it."""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Callable, Deque, Union

from flashsale.models import SeckillMessage, message_from_json

logger = logging.getLogger(__name__)

Payload = Union[str, bytes, bytearray]


class MessageQueue:
    """A first-in first-out queue of byte messages."""

    def __init__(self) -> None:
        self._messages: Deque[bytes] = deque()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)

    def send(self, payload: Payload) -> None:
        """Append a message; text is sent as UTF-8."""
        data = payload.encode("utf-8") if isinstance(payload, str) else bytes(payload)
        with self._lock:
            self._messages.append(data)

    def _pop(self):
        with self._lock:
            return self._messages.popleft() if self._messages else None

    def consume(self, handler: Callable[[bytes], object]) -> int:
        """Hand every pending message to ``handler`` in order.

        A handler failure is logged and the next message is processed.
        Returns the number of messages the handler accepted.
        """
        handled = 0
        while True:
            message = self._pop()
            if message is None:
                return handled
            try:
                handler(message)
            except Exception as exc:
                logger.error("message handler error: %s", exc)
            else:
                handled += 1


class SecKillMessenger:
    """Encodes flash-sale messages onto a queue and decodes them back."""

    def __init__(self, queue: MessageQueue) -> None:
        self.queue = queue

    def send(self, message: SeckillMessage) -> None:
        self.queue.send(message.to_json().encode("utf-8"))

    def decode(self, raw: Payload) -> SeckillMessage:
        """Decode a queued message; raises ValueError on malformed input."""
        return message_from_json(raw)