"""Per-client publish/subscribe registry.

Topics are plain strings and may be built at runtime (``secret:<address>``).
Delivery is synchronous and in subscription order, on whatever task called
``emit``.  Nothing is queued: a topic with no subscribers simply drops the
payload.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable

logger = logging.getLogger(__name__)

Handler = Callable[[Any], None]

TOPIC_ERROR = "error"
TOPIC_LOGIN_ERROR = "error:login"
SECRET_TOPIC_PREFIX = "secret:"

_ERROR_TOPICS = frozenset([TOPIC_ERROR, TOPIC_LOGIN_ERROR])


def secret_topic(address: str) -> str:
    """Return the topic emitted when the secret at *address* is (re)fetched."""
    return f"{SECRET_TOPIC_PREFIX}{address}"


class EventBus:
    """Mapping from topic to an ordered list of handlers."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, topic: str, handler: Handler) -> Callable[[], None]:
        """Register *handler* for *topic* and return a callable that removes it."""
        self._handlers[topic].append(handler)
        return lambda: self.unsubscribe(topic, handler)

    def unsubscribe(self, topic: str, handler: Handler) -> None:
        handlers = self._handlers.get(topic)
        if not handlers or handler not in handlers:
            return
        handlers.remove(handler)
        if not handlers:
            del self._handlers[topic]

    def has_subscribers(self, topic: str) -> bool:
        return bool(self._handlers.get(topic))

    def emit(self, topic: str, payload: Any = None) -> int:
        """Deliver *payload* to every handler of *topic*; return how many ran.

        A handler that raises is logged and does not stop delivery to the
        handlers after it.
        """
        # Copy so handlers may unsubscribe themselves during delivery.
        handlers = list(self._handlers.get(topic, ()))
        if not handlers:
            if topic in _ERROR_TOPICS:
                logger.warning("Dropped '%s' event with no subscribers: %s", topic, payload)
            return 0

        for handler in handlers:
            try:
                handler(payload)
            except Exception:
                logger.exception("Handler %r for topic '%s' raised", handler, topic)
        return len(handlers)
