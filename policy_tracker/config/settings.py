"""Application settings with Pydantic Settings validation.

Secrets (API keys) are loaded from the environment or a .env file.
Non-sensitive configuration is loaded from config/*.yaml files, merged and
validated against JSON schemas in config/schemas/.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Literal

import yaml
from jsonschema import ValidationError as JSONSchemaValidationError
from jsonschema import validate
from pydantic import Field, SecretStr, ValidationInfo, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from policy_tracker.config.logging_config import get_logger
from policy_tracker.domain.exceptions import ConfigurationError
from policy_tracker.domain.task_queue import (
    CoordinatorConfig,
    QueueName,
    QueueOptions,
    default_queue_profiles,
)

logger = get_logger(__name__)


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries.

    Args:
        base: Base dictionary
        override: Dictionary to merge into base (takes precedence)

    Returns:
        Merged dictionary
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_schema(schema_name: str) -> dict[str, Any]:
    """Load JSON Schema from config/schemas/, or an empty dict when absent."""

    schema_path = Path("config/schemas") / f"{schema_name}.schema.json"
    if not schema_path.exists():
        return {}

    try:
        with open(schema_path, encoding="utf-8") as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("config_schema_load_failed", schema=schema_name, error=str(e))
        return {}


def validate_config_section(
    config: dict[str, Any], schema_name: str, file_path: str = ""
) -> None:
    """Validate a config section against its JSON Schema.

    Raises:
        ValueError: If validation fails
    """
    schema = load_schema(schema_name)
    if not schema:
        return

    try:
        validate(instance=config, schema=schema)
        logger.debug("config_validation_succeeded", schema=schema_name)
    except JSONSchemaValidationError as e:
        error_msg = f"Config validation failed for {schema_name}"
        if file_path:
            error_msg += f" (file: {file_path})"
        error_msg += f": {e.message}"
        raise ValueError(error_msg) from e


def load_all_configs() -> dict[str, Any]:
    """Load and merge all YAML configs from the config/ directory.

    config/main.yaml loads first; every other config/*.yaml is merged on top
    in alphabetical order. Each file is validated against the schema named
    after its stem when one exists.
    """
    merged_config: dict[str, Any] = {}
    config_dir = Path("config")
    if not config_dir.is_dir():
        logger.info("config_load_complete", file_count=0)
        return merged_config

    main_path = config_dir / "main.yaml"
    yaml_files = sorted(f for f in config_dir.glob("*.yaml") if f.name != "main.yaml")
    ordered = ([main_path] if main_path.exists() else []) + yaml_files

    for yaml_file in ordered:
        schema_name = yaml_file.stem
        try:
            with open(yaml_file, encoding="utf-8") as f:
                file_config = yaml.safe_load(f) or {}
        except (yaml.YAMLError, OSError) as e:
            logger.warning("config_file_load_failed", path=str(yaml_file), error=str(e))
            continue

        try:
            validate_config_section(file_config, schema_name, str(yaml_file))
        except ValueError as e:
            logger.error(
                "config_validation_failed",
                path=str(yaml_file),
                schema=schema_name,
                error=str(e),
            )
            raise

        merged_config = deep_merge(merged_config, file_config)
        logger.debug("config_file_loaded", path=str(yaml_file), schema=schema_name)

    logger.info("config_load_complete", file_count=len(ordered))
    return merged_config


class Settings(BaseSettings):
    """Application settings.

    Environment values win over YAML, which wins over field defaults.
    """

    model_config = SettingsConfigDict(
        env_file=".env" if Path(".env").exists() else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === SECRETS (from environment / .env) ===

    openai_api_key: SecretStr = Field(..., description="OpenAI API key (from .env)")

    # === NON-SENSITIVE CONFIG (from config/*.yaml or defaults) ===

    llm_model: str = Field(default="gpt-4o-mini", description="OpenAI model to use")
    llm_temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    llm_timeout_seconds: int = Field(default=60, ge=1, description="Request timeout")
    llm_prompt_file: str = Field(
        default="config/prompts/analysis.yaml",
        description="YAML system prompt for analysis requests",
    )

    db_path: str = Field(
        default="data/policy_documents.db", description="SQLite database path"
    )

    queue_state_dir: str = Field(
        default="data/queue_state", description="Directory for queue snapshots"
    )
    queue_profiles: dict[str, dict[str, Any]] = Field(
        default_factory=dict,
        description="Per-queue overrides of the built-in workload profiles",
    )
    write_back_results: bool = Field(
        default=True,
        description="Persist completed analyses to the document store",
    )

    export_dir: str = Field(default="data/exports", description="Export directory")

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    log_json: bool = Field(default=False, description="Render logs as JSON")
    metrics_port: int | None = Field(
        default=None, description="Prometheus exporter port (None = disabled)"
    )

    @field_validator("openai_api_key", mode="before")
    @classmethod
    def _ensure_secret(cls, value: SecretStr | str | None, info: ValidationInfo) -> SecretStr:
        if value is None:
            raise ValueError(f"{info.field_name} must be provided")

        secret_value = (
            value.get_secret_value() if isinstance(value, SecretStr) else str(value)
        )
        if not secret_value.strip():
            raise ValueError(f"{info.field_name} must not be empty")

        return value if isinstance(value, SecretStr) else SecretStr(secret_value)

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value

    def __init__(self, **data: Any):
        """Initialize settings with auto-loaded configs from all YAML files."""
        config = load_all_configs()

        super().__init__(**data)
        self._apply_yaml_defaults(config)

    def _apply_yaml_defaults(self, config: dict[str, Any]) -> None:
        """Apply YAML-sourced defaults without overriding env-provided values."""

        fields_from_env = set(self.model_fields_set)

        def _assign(field_name: str, value: Any) -> None:
            if value is None:
                return
            if field_name in fields_from_env:
                return

            object.__setattr__(self, field_name, value)
            self.model_fields_set.add(field_name)

        llm_config = config.get("llm") or {}
        _assign("llm_model", llm_config.get("model"))
        _assign("llm_temperature", llm_config.get("temperature"))
        _assign("llm_timeout_seconds", llm_config.get("timeout_seconds"))
        _assign("llm_prompt_file", llm_config.get("prompt_file"))

        database_config = config.get("database") or {}
        _assign("db_path", database_config.get("path"))

        queues_config = config.get("queues") or {}
        _assign("queue_state_dir", queues_config.get("state_dir"))
        _assign("write_back_results", queues_config.get("write_back_results"))
        _assign("queue_profiles", queues_config.get("profiles"))

        export_config = config.get("export") or {}
        _assign("export_dir", export_config.get("dir"))

        logging_config = config.get("logging") or {}
        level = logging_config.get("level")
        _assign("log_level", level.upper() if isinstance(level, str) else None)
        _assign("log_json", logging_config.get("json"))

        metrics_config = config.get("metrics") or {}
        _assign("metrics_port", metrics_config.get("port"))

    def coordinator_config(self) -> CoordinatorConfig:
        """Build the queue coordinator configuration.

        Raises:
            ConfigurationError: For an unknown queue name or invalid profile
        """
        profiles = default_queue_profiles()
        for raw_name, overrides in self.queue_profiles.items():
            try:
                name = QueueName(raw_name)
                merged = {
                    **profiles[name].model_dump(),
                    **(overrides or {}),
                    "name": name.value,
                }
                profiles[name] = QueueOptions.model_validate(merged)
            except (ValueError, PydanticValidationError) as exc:
                raise ConfigurationError(
                    f"Invalid queue profile '{raw_name}': {exc}"
                ) from exc

        return CoordinatorConfig(
            state_dir=Path(self.queue_state_dir),
            export_dir=Path(self.export_dir),
            queues=profiles,
            write_back_results=self.write_back_results,
        )


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""

    global _settings
    if _settings is None:
        _settings = Settings()  # type: ignore[call-arg]
    return _settings


__all__ = [
    "Settings",
    "deep_merge",
    "get_settings",
    "load_all_configs",
    "load_schema",
    "validate_config_section",
]
