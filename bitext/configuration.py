"""Layered configuration loader for bitext."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional, Sequence

import yaml
from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import ProviderConfigurationError

APP_NAME = "bitext"
PROVIDERS = ("openai", "azure_openai", "anthropic", "echo")


class BitextConfig(BaseModel):
    """Schema describing all supported configuration options."""

    model_config = ConfigDict(extra="ignore")

    LLM_PROVIDER: Literal["openai", "azure_openai", "anthropic", "echo"] = Field(
        default="openai",
        description="Large language model provider selection.",
    )
    OPENAI_API_KEY: Optional[str] = Field(default=None, repr=False)
    AZURE_OPENAI_API_KEY: Optional[str] = Field(default=None, repr=False)
    AZURE_OPENAI_ENDPOINT: Optional[str] = Field(default=None)
    AZURE_OPENAI_API_VERSION: Optional[str] = Field(default=None)
    AZURE_OPENAI_DEPLOYMENT_NAME: Optional[str] = Field(default=None)
    ANTHROPIC_API_KEY: Optional[str] = Field(default=None, repr=False)
    BITEXT_MODEL: Optional[str] = Field(
        default=None,
        description="Model identifier; each provider has its own default.",
    )
    BITEXT_TARGET_LANGUAGE: Optional[str] = Field(default=None)
    BITEXT_SYSTEM_PROMPT: Optional[str] = Field(
        default=None,
        description="Extra instructions appended to the translation system prompt.",
    )
    BITEXT_FONTS_DIR: Optional[Path] = Field(
        default=None,
        description="Directory holding Noto fonts used for PDF export.",
    )
    BITEXT_PROVIDER_DEBUG: bool = Field(default=False)

    @model_validator(mode="before")
    @classmethod
    def _normalise_provider(cls, data: Any) -> Any:
        if isinstance(data, dict):
            raw_value = data.get("LLM_PROVIDER")
            if isinstance(raw_value, str):
                normalized = normalise_provider_name(raw_value)
                if normalized not in PROVIDERS:
                    normalized = "openai"
                data["LLM_PROVIDER"] = normalized
        return data


def normalise_provider_name(value: Optional[str]) -> str:
    normalized = (value or "openai").strip().lower().replace("-", "_")
    synonyms = {
        "azure_open_ai": "azure_openai",
        "azureopenai": "azure_openai",
        "claude": "anthropic",
        "gpt": "openai",
        "mock": "echo",
        "noop": "echo",
    }
    return synonyms.get(normalized, normalized)


def _discover_yaml_paths(app_dir: Path) -> List[Path]:
    """Return existing YAML files, lowest precedence first."""

    candidates = [
        Path.home() / ".config" / APP_NAME / "config.yaml",
        app_dir / f"{APP_NAME}.yaml",
    ]
    return [path for path in candidates if path.is_file()]


def _load_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            parsed = yaml.safe_load(handle)
    except (OSError, yaml.YAMLError) as exc:
        raise ProviderConfigurationError(
            f"Configuration file {path} could not be read: {exc}"
        ) from exc
    if parsed is None:
        return {}
    if not isinstance(parsed, Mapping):
        raise ProviderConfigurationError(
            f"Invalid configuration file {path}: expected a mapping at the root."
        )
    return dict(parsed)


def _merge_env_sources(target: Dict[str, Any], *, app_dir: Path) -> None:
    """Merge .env and process environment variables into the target mapping."""

    allowed = set(BitextConfig.model_fields.keys())

    def merge_values(values: Mapping[str, Optional[str]]) -> None:
        for key, value in sorted(values.items()):
            if value is None or key not in allowed:
                continue
            target[key] = value

    dotenv_path = app_dir / ".env"
    if dotenv_path.exists():
        merge_values(dotenv_values(dotenv_path))

    merge_values({k: v for k, v in os.environ.items() if isinstance(v, str)})


@lru_cache(maxsize=4)
def _load_settings(app_dir: Optional[Path] = None) -> BitextConfig:
    """Load configuration layers once and cache the validated model."""

    base_dir = app_dir or Path.cwd()
    combined: Dict[str, Any] = {}
    for path in _discover_yaml_paths(base_dir):
        combined.update(_load_yaml(path))
    _merge_env_sources(combined, app_dir=base_dir)

    try:
        return BitextConfig.model_validate(combined)
    except ValidationError as exc:
        raise ProviderConfigurationError(
            _format_validation_errors(exc.errors())
        ) from exc


def _format_validation_errors(entries: Sequence[Mapping[str, Any]]) -> str:
    details: List[str] = []
    for entry in entries:
        location = ".".join(str(part) for part in entry.get("loc") or () if part != "")
        message = str(entry.get("msg") or "Invalid value")
        prefix = f"{location}: " if location else ""
        details.append(f"- {prefix}{message}")
    return "Configuration validation errors detected:\n" + "\n".join(details)


def require_provider_settings(
    settings: BitextConfig,
    provider: Optional[str] = None,
) -> str:
    """Check the credentials needed by ``provider`` and return its name."""

    name = normalise_provider_name(provider or settings.LLM_PROVIDER)
    errors: List[str] = []

    if name == "openai":
        if not settings.OPENAI_API_KEY:
            errors.append("OPENAI_API_KEY is required when LLM_PROVIDER is 'openai'.")
    elif name == "anthropic":
        if not settings.ANTHROPIC_API_KEY:
            errors.append(
                "ANTHROPIC_API_KEY is required when LLM_PROVIDER is 'anthropic'."
            )
    elif name == "azure_openai":
        missing = [
            key
            for key, value in {
                "AZURE_OPENAI_API_KEY": settings.AZURE_OPENAI_API_KEY,
                "AZURE_OPENAI_ENDPOINT": settings.AZURE_OPENAI_ENDPOINT,
                "AZURE_OPENAI_API_VERSION": settings.AZURE_OPENAI_API_VERSION,
                "AZURE_OPENAI_DEPLOYMENT_NAME": settings.AZURE_OPENAI_DEPLOYMENT_NAME,
            }.items()
            if not value
        ]
        if missing:
            errors.append(
                "The following Azure OpenAI settings must be provided when "
                f"LLM_PROVIDER is 'azure_openai': {', '.join(missing)}."
            )
    elif name not in PROVIDERS:
        errors.append(
            f"Unknown translation provider '{provider}'. "
            f"Choose one of: {', '.join(PROVIDERS)}."
        )

    if errors:
        bullet_list = "\n".join(f"- {message}" for message in errors)
        raise ProviderConfigurationError(
            "Configuration validation errors detected:\n" + bullet_list
        )
    return name


def get_settings(app_dir: Optional[Path] = None) -> BitextConfig:
    """Return the validated configuration model."""

    return _load_settings(app_dir=app_dir)


def clear_settings_cache() -> None:
    _load_settings.cache_clear()
