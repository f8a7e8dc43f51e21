from __future__ import annotations

import pytest
from finetune_studio.core.services.registries import TrainerRegistry
from finetune_studio.core.services.training.mlx_lora_backend import MLXLoraBackend


def test_trainer_registry_get_and_names() -> None:
    backend = MLXLoraBackend("python3")
    reg = TrainerRegistry(backends={"mlx-lora": backend})
    assert reg.get("mlx-lora") is backend
    assert reg.names() == ["mlx-lora"]
    with pytest.raises(KeyError):
        reg.get("gpt2")
