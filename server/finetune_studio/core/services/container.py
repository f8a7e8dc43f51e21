from __future__ import annotations

from dataclasses import dataclass

import redis
from huggingface_hub.utils import disable_progress_bars

from ...events.publisher import EventPublisher
from ...orchestrators.studio_orchestrator import StudioOrchestrator
from ...orchestrators.training_orchestrator import TrainingOrchestrator
from ..config.settings import Settings
from ..logging.service import LoggingService
from ..services.registries import TrainerRegistry
from .data.hub_client import HubClient
from .data.model_downloader import ModelDownloader
from .environment.prober import EnvironmentProber
from .inventory.model_inventory import ModelInventory
from .training.mlx_lora_backend import MLXLoraBackend


@dataclass
class ServiceContainer:
    settings: Settings
    redis: redis.Redis[str] | None
    publisher: EventPublisher
    prober: EnvironmentProber
    inventory: ModelInventory
    downloader: ModelDownloader
    trainer_registry: TrainerRegistry
    training_orchestrator: TrainingOrchestrator
    studio: StudioOrchestrator
    logging: LoggingService

    @classmethod
    def from_settings(
        cls: type[ServiceContainer],
        settings: Settings,
        *,
        trainer_registry: TrainerRegistry | None = None,
        redis_client: redis.Redis[str] | None = None,
    ) -> ServiceContainer:
        r = redis_client
        if r is None and settings.redis.enabled:
            r = redis.from_url(settings.redis.url, decode_responses=True)
        publisher = EventPublisher(redis_client=r, channel=settings.redis.channel)
        prober = EnvironmentProber(settings)
        inventory = ModelInventory(revision=settings.hub.revision)
        registry = trainer_registry or _create_trainer_registry(settings)

        # The studio is built last but the downloader and orchestrator read the
        # probed cache directory and environment through it.
        holder: list[StudioOrchestrator] = []

        def _cache_dir() -> str:
            return holder[0].cache_directory() if holder else ""

        downloader = ModelDownloader(
            inventory=inventory,
            cache_dir=_cache_dir,
            hub=_create_hub_client(settings),
            revision=settings.hub.revision,
            allow_patterns=settings.hub.allow_patterns,
            max_workers=settings.hub.max_concurrent,
        )
        training = TrainingOrchestrator(
            settings=settings,
            inventory=inventory,
            registry=registry,
            publisher=publisher,
            environment=lambda: holder[0].environment() if holder else None,
        )
        studio = StudioOrchestrator(
            prober=prober, inventory=inventory, downloader=downloader, training=training
        )
        holder.append(studio)
        return cls(
            settings=settings,
            redis=r,
            publisher=publisher,
            prober=prober,
            inventory=inventory,
            downloader=downloader,
            trainer_registry=registry,
            training_orchestrator=training,
            studio=studio,
            logging=LoggingService.create(),
        )

    def shutdown(self: ServiceContainer) -> None:
        self.training_orchestrator.shutdown()
        self.downloader.shutdown()


def _create_trainer_registry(settings: Settings) -> TrainerRegistry:
    return TrainerRegistry(backends={"mlx-lora": MLXLoraBackend(settings.app.python_executable)})


def _create_hub_client(settings: Settings) -> HubClient:
    disable_progress_bars()
    return HubClient(
        settings.hub.base_url,
        settings.hub.token,
        timeout_seconds=settings.hub.timeout_sec,
        retries=settings.hub.retries,
    )
