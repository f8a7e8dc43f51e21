from __future__ import annotations

import time
from typing import Protocol

from redis.exceptions import RedisError


class _RedisPublishProto(Protocol):
    def publish(self: _RedisPublishProto, channel: str, message: str) -> object: ...


def publish_with_retry(
    client: _RedisPublishProto, channel: str, message: str, *, attempts: int = 3
) -> None:
    delay = 0.01
    for i in range(attempts):
        try:
            client.publish(channel, message)
            return
        except RedisError:
            if i == attempts - 1:
                raise
            time.sleep(delay)
            delay *= 2
