from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import fakeredis
import pytest
import redis
from fastapi import FastAPI
from finetune_studio.api.routes import health
from finetune_studio.api.schemas.health import ReadyzResponse
from finetune_studio.core.config.settings import Settings
from finetune_studio.core.services.container import ServiceContainer
from pytest import MonkeyPatch
from starlette.testclient import TestClient


@pytest.fixture
def fake_redis() -> fakeredis.FakeRedis:
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def container(settings: Settings, fake_redis: fakeredis.FakeRedis) -> Iterator[ServiceContainer]:
    c = ServiceContainer.from_settings(settings, redis_client=fake_redis)
    yield c
    c.shutdown()


def _client(container: ServiceContainer) -> TestClient:
    app = FastAPI()
    app.include_router(health.build_router(container))
    return TestClient(app)


def _readyz(client: TestClient) -> tuple[int, ReadyzResponse]:
    res = client.get("/readyz")
    return res.status_code, ReadyzResponse.model_validate_json(res.text)


def test_readyz_ready_with_redis(container: ServiceContainer) -> None:
    container.studio.probe()
    code, body = _readyz(_client(container))
    assert code == 200 and body.status == "ready"


def test_readyz_redis_no_pong(
    container: ServiceContainer, fake_redis: fakeredis.FakeRedis, monkeypatch: MonkeyPatch
) -> None:
    def _no_pong() -> bool:
        return False

    monkeypatch.setattr(fake_redis, "ping", _no_pong)
    container.studio.probe()
    code, body = _readyz(_client(container))
    assert code == 200
    assert body.status == "degraded" and body.reason == "redis no-pong"


def test_readyz_redis_error(
    container: ServiceContainer, fake_redis: fakeredis.FakeRedis, monkeypatch: MonkeyPatch
) -> None:
    class _E(redis.exceptions.RedisError):
        pass

    def _raise() -> bool:
        raise _E()

    monkeypatch.setattr(fake_redis, "ping", _raise)
    container.studio.probe()
    code, body = _readyz(_client(container))
    assert code == 200
    assert body.status == "degraded" and body.reason == "redis error"


def test_readyz_degraded_without_cache(settings: Settings, tmp_path: Path) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("x", encoding="utf-8")
    settings.app.cache_candidates = [str(blocker / "hub")]
    c = ServiceContainer.from_settings(settings)
    try:
        c.studio.probe()
        code, body = _readyz(_client(c))
        assert code == 200
        assert body.status == "degraded" and body.reason == "environment"
    finally:
        c.shutdown()
