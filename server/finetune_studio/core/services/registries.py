from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from ..contracts.trainer import TrainerBackend


@dataclass
class TrainerRegistry:
    backends: Mapping[str, TrainerBackend]

    def get(self: TrainerRegistry, name: str) -> TrainerBackend:
        if name not in self.backends:
            raise KeyError(f"Unknown trainer backend: {name}")
        return self.backends[name]

    def names(self: TrainerRegistry) -> list[str]:
        return sorted(self.backends)
