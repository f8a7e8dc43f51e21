from __future__ import annotations

from pydantic import BaseModel

HUB_REPO_PREFIX = "models--"


def repo_dir_name(model_id: str) -> str:
    """Hub cache folder name for a repo id: ``org/name`` -> ``models--org--name``."""
    return HUB_REPO_PREFIX + model_id.replace("/", "--")


def repo_id_from_dir(folder_name: str) -> str | None:
    if not folder_name.startswith(HUB_REPO_PREFIX):
        return None
    parts = folder_name.split("--")
    if len(parts) < 3 or parts[1] == "" or parts[2] == "":
        return None
    owner = parts[1]
    model = "--".join(parts[2:])
    return f"{owner}/{model}"


def display_name_for(model_id: str) -> str:
    return model_id.rsplit("/", 1)[-1].replace("-", " ").replace("_", " ")


def human_size(size_bytes: int) -> str:
    value = float(size_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024.0:
            return f"{int(value)} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024.0
    return f"{value:.1f} TB"


class ModelArtifact(BaseModel):
    id: str
    display_name: str
    size_bytes: int
    storage_path: str
    downloaded: bool
    # Directory holding the weights (hub snapshot); falls back to storage_path.
    snapshot_path: str | None = None

    model_config = {"extra": "forbid", "frozen": True}

    @property
    def size(self: ModelArtifact) -> str:
        return human_size(self.size_bytes)

    @property
    def weights_path(self: ModelArtifact) -> str:
        return self.snapshot_path or self.storage_path
