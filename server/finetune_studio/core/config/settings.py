from __future__ import annotations

import logging
import os
import tomllib
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource


def _load_toml_settings() -> dict[str, object]:
    # Load from a TOML config if available.
    # Search: APP_CONFIG_FILE env, then ./server/config/app.toml, then ./config/app.toml
    candidates: list[str] = []
    env_path = os.getenv("APP_CONFIG_FILE")
    if env_path:
        candidates.append(env_path)
    candidates.append(os.path.join(os.getcwd(), "server", "config", "app.toml"))
    candidates.append(os.path.join(os.getcwd(), "config", "app.toml"))
    for p in candidates:
        try:
            if os.path.exists(p):
                with open(p, "rb") as f:
                    raw = tomllib.load(f)
                if isinstance(raw, dict):
                    out: dict[str, object] = {}
                    for k, v in raw.items():
                        out[k] = v
                    return out
        except (OSError, tomllib.TOMLDecodeError):
            logging.getLogger(__name__).warning("Failed to read config file %s", p)
            return {}
    return {}


# Ordered by preference; the last entry is created when none of them exist.
DEFAULT_CACHE_CANDIDATES: list[str] = [
    "~/Library/Caches/huggingface/hub",
    "~/.cache/huggingface",
    "~/Documents/huggingface_cache",
    "~/.cache/huggingface/hub",
]


class LoggingConfig(BaseModel):
    level: str = "INFO"

    model_config = {"extra": "forbid", "validate_assignment": True}


class RedisConfig(BaseModel):
    enabled: bool = False
    url: str = "redis://localhost:6379/0"
    channel: str = "trainer:events"

    model_config = {"extra": "forbid", "validate_assignment": True}


class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8000

    model_config = {"extra": "forbid", "validate_assignment": True}


class SecurityConfig(BaseModel):
    api_key: str = ""

    model_config = {"extra": "forbid", "validate_assignment": True}


class HubConfig(BaseModel):
    base_url: str = "https://huggingface.co"
    token: str = ""
    revision: str = "main"
    timeout_sec: float = 600.0
    retries: int = 3
    allow_patterns: list[str] = Field(
        default_factory=lambda: [
            "*.json", "*.safetensors", "*.model", "*.tiktoken", "*.txt", "*.jinja"
        ]
    )
    max_concurrent: int = Field(default=2, ge=1)

    model_config = {"extra": "forbid", "validate_assignment": True}


class AppConfig(BaseModel):
    python_executable: str = "python3"
    ml_runtime_module: str = "mlx.core"
    probe_timeout_sec: float = 5.0
    cache_candidates: list[str] = Field(default_factory=lambda: list(DEFAULT_CACHE_CANDIDATES))
    runs_root: str = "~/.finetune_studio/runs"
    outputs_root: str = "~/.finetune_studio/outputs"
    trainer_backend: str = "mlx-lora"
    stage_timeout_sec: float = 600.0
    run_timeout_sec: float = 7 * 86_400
    stop_grace_sec: float = 5.0
    log_capacity: int = Field(default=20, ge=1)
    holdout_fraction: float = Field(default=0.1, ge=0.0, lt=1.0)
    seed: int = 42
    test_prompt: str = "Hello! Who are you?"
    test_max_tokens: int = 128
    test_timeout_sec: float = 300.0

    model_config = {"extra": "forbid", "validate_assignment": True}


class Settings(BaseSettings):
    app_env: Literal["dev", "prod"] = "dev"
    logging: LoggingConfig = LoggingConfig()
    redis: RedisConfig = RedisConfig()
    server: ServerConfig = ServerConfig()
    security: SecurityConfig = SecurityConfig()
    hub: HubConfig = HubConfig()
    app: AppConfig = AppConfig()

    model_config = {
        "env_file": ".env",
        "case_sensitive": False,
        "extra": "forbid",
        "env_nested_delimiter": "__",
    }

    @classmethod
    def settings_customise_sources(
        cls: type[Settings],
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        class TomlSettingsSource(PydanticBaseSettingsSource):
            def __init__(self: TomlSettingsSource, s_cls: type[BaseSettings]) -> None:
                super().__init__(s_cls)

            def __call__(self: TomlSettingsSource) -> dict[str, object]:
                return _load_toml_settings()

            def get_field_value(
                self: TomlSettingsSource, field: object, field_name: str
            ) -> tuple[object, str, bool]:
                data = self()
                if field_name in data:
                    return data[field_name], field_name, True
                return None, field_name, False

        # Precedence: init kwargs, env vars, .env file, TOML file, file secrets (unused)
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlSettingsSource(settings_cls),
            file_secret_settings,
        )
