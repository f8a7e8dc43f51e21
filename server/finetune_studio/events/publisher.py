from __future__ import annotations

import threading
from collections.abc import Callable

import redis
from redis.exceptions import RedisError

from ..core.infra.redis_utils import publish_with_retry
from ..core.logging.service import LoggingService
from .trainer import Event, encode_event

Subscriber = Callable[[Event], None]


class EventPublisher:
    """Fans run events out to in-process subscribers and, optionally, a Redis channel.

    Delivery is best effort: a failing subscriber or an unreachable Redis is logged
    and never propagates into the run.
    """

    def __init__(
        self: EventPublisher,
        *,
        redis_client: redis.Redis[str] | None = None,
        channel: str = "trainer:events",
    ) -> None:
        self._redis = redis_client
        self._channel = channel
        self._subs: list[Subscriber] = []
        self._lock = threading.Lock()
        self._logger = LoggingService.create().adapter(category="events", service="publisher")

    def subscribe(self: EventPublisher, fn: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subs.append(fn)

        def _unsubscribe() -> None:
            with self._lock:
                if fn in self._subs:
                    self._subs.remove(fn)

        return _unsubscribe

    def publish(self: EventPublisher, ev: Event) -> None:
        with self._lock:
            subs = list(self._subs)
        for fn in subs:
            try:
                fn(ev)
            except (RuntimeError, ValueError, TypeError, KeyError, AttributeError, OSError):
                self._logger.exception(
                    "event subscriber failed", extra={"event": "subscriber_failed"}
                )
        if self._redis is None:
            return
        try:
            publish_with_retry(self._redis, self._channel, encode_event(ev))
        except (RedisError, OSError, ValueError) as e:
            self._logger.warning(
                "event publish failed", extra={"event": "publish_failed", "reason": str(e)}
            )
