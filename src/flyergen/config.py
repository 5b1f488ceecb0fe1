from __future__ import annotations

from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .gen.capabilities import KNOWN_PROVIDERS

CONFIG_FILENAME = "flyergen.toml"

DEFAULT_BASE_PROMPT = (
    "no text unless otherwise specified, no gibberish text, no fake letters, "
    "no strange characters, only real readable words if text is included, "
    "no blur, no distortion, high quality, professional event flyer design"
)

DEFAULT_API_KEY_ENVS = {
    "ideogram": "IDEOGRAM_API_KEY",
    "huggingface": "HF_TOKEN",
    "stability": "STABILITY_API_KEY",
    "fal-qwen": "FAL_KEY",
    "fal-ideogram": "FAL_KEY",
}


class ProviderSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")
    enabled: bool = True
    api_key_env: Optional[str] = None
    priority: Optional[int] = None
    base_url: Optional[str] = None
    timeout: float = Field(default=60.0, gt=0)
    model: Optional[str] = None


def _default_providers() -> dict[str, ProviderSettings]:
    return {
        "ideogram": ProviderSettings(api_key_env="IDEOGRAM_API_KEY"),
        "huggingface": ProviderSettings(api_key_env="HF_TOKEN"),
        "stability": ProviderSettings(api_key_env="STABILITY_API_KEY", enabled=False),
        "fal-qwen": ProviderSettings(api_key_env="FAL_KEY"),
        "fal-ideogram": ProviderSettings(api_key_env="FAL_KEY"),
    }


class GenerationSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")
    base_prompt: str = DEFAULT_BASE_PROMPT
    default_quality: Literal["fast", "standard", "high"] = "standard"
    compensation_factor: float = Field(default=1.5, ge=1.0)
    compensation_threshold: float = Field(default=1.3, ge=1.0)


class PromptSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")
    fragments_file: Optional[Path] = None
    use_default_fragments: bool = True


class StorageSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")
    account_id: Optional[str] = None
    bucket: Optional[str] = None
    endpoint_url: Optional[str] = None
    region: str = "auto"
    access_key_env: str = "R2_ACCESS_KEY_ID"
    secret_key_env: str = "R2_SECRET_ACCESS_KEY"


class CacheSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")
    ttl_seconds: int = Field(default=50 * 60, gt=0)
    sweep_interval_seconds: int = Field(default=5 * 60, gt=0)


class FlyerGenConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    default_provider: Optional[str] = None
    providers: dict[str, ProviderSettings] = Field(default_factory=_default_providers)
    generation: GenerationSettings = GenerationSettings()
    prompts: PromptSettings = PromptSettings()
    storage: StorageSettings = StorageSettings()
    cache: CacheSettings = CacheSettings()

    @field_validator("providers")
    @classmethod
    def validate_provider_ids(cls, v: dict[str, ProviderSettings]) -> dict[str, ProviderSettings]:
        unknown = sorted(set(v) - set(KNOWN_PROVIDERS))
        if unknown:
            raise ValueError(
                f"Unknown providers: {unknown}. Available providers: {sorted(KNOWN_PROVIDERS)}"
            )
        for name, settings in v.items():
            if settings.api_key_env is None:
                settings.api_key_env = DEFAULT_API_KEY_ENVS[name]
        return v

    @model_validator(mode="after")
    def check_default_provider_exists(self) -> "FlyerGenConfig":
        if self.default_provider is None:
            return self
        if self.default_provider not in self.providers:
            raise ValueError(
                f"default_provider '{self.default_provider}' is not configured. "
                f"Available providers: {sorted(self.providers)}"
            )
        return self


class ConfigError(Exception):
    def __init__(self, message: str, path: Optional[Path] = None, line: Optional[int] = None):
        self.path = path
        self.line = line
        if path:
            loc = f"{path}"
            if line:
                loc += f":{line}"
            message = f"{loc}: {message}"
        super().__init__(message)


def load_config(config_path: Path) -> FlyerGenConfig:
    if not config_path.exists():
        raise ConfigError(
            f"Config file not found: {config_path}\n"
            f"Create {CONFIG_FILENAME} or run without --config to use defaults",
            path=config_path,
        )

    try:
        import tomllib
    except ImportError:
        import tomli as tomllib  # type: ignore

    try:
        text = config_path.read_text()
        data = tomllib.loads(text)
    except Exception as e:
        raise ConfigError(f"Failed to parse TOML: {e}", path=config_path) from e

    try:
        config = FlyerGenConfig.model_validate(data)
    except Exception as e:
        raise ConfigError(f"Invalid configuration: {e}", path=config_path) from e

    fragments_file = config.prompts.fragments_file
    if fragments_file is not None and not fragments_file.is_absolute():
        config.prompts.fragments_file = config_path.parent / fragments_file
    return config


def find_config(start_dir: Optional[Path] = None) -> Path:
    if start_dir is None:
        start_dir = Path.cwd()

    current = start_dir.resolve()
    while current != current.parent:
        candidate = current / CONFIG_FILENAME
        if candidate.exists():
            return candidate
        current = current.parent

    return start_dir / CONFIG_FILENAME


def load_settings(config_path: Optional[Path] = None) -> FlyerGenConfig:
    """Load an explicit config file, or the nearest one, or fall back to defaults."""
    if config_path is not None:
        return load_config(config_path)
    found = find_config()
    if found.exists():
        return load_config(found)
    return FlyerGenConfig()
