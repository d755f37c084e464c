"""Application settings with Pydantic Settings validation.

Secrets (API keys) are loaded from the .env file or the environment.
Non-sensitive configuration is loaded from config/main.yaml and any other
config/*.yaml files. All configs are merged and validated against JSON
schemas from config/schemas/ when one exists.
"""

import json
from pathlib import Path
from typing import Any, Final, cast

import pytz
import yaml
from jsonschema import ValidationError as JSONSchemaValidationError
from jsonschema import validate
from pydantic import AliasChoices, Field, SecretStr, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from event_relay.config.logging_config import get_logger
from event_relay.domain.intake_constants import (
    CREATED_EVENTS_FILENAME,
    CREATED_EVENTS_RETENTION_DAYS,
    GROUP_CACHE_FILENAME,
    GROUP_CACHE_FLUSH_INTERVAL_SECONDS,
    GROUP_CACHE_MAX_PERSISTED_AGE_SECONDS,
    GROUP_CACHE_TTL_SECONDS,
    GROUP_FETCH_BASE_BACKOFF_SECONDS,
    GROUP_FETCH_MAX_ATTEMPTS,
    MESSAGE_HISTORY_LENGTH,
    PHOTO_FLOOD_MIN_IMAGES,
    PHOTO_FLOOD_NO_CAPTION_RATIO,
    PHOTO_FLOOD_WINDOW_SECONDS,
)

DEFAULT_CONFIG_DIR: Final[Path] = Path("config")
DEFAULT_SESSION_DIR: Final[str] = ".baileys_auth"
DEFAULT_BRIDGE_URL: Final[str] = "http://localhost:3001"
DEFAULT_TARGET_GROUP_NAME: Final[str] = "אני"
DEFAULT_TIMEZONE: Final[str] = "Asia/Jerusalem"

LLM_MODEL_DEFAULT: Final[str] = "gpt-4o"
LLM_TEMPERATURE_DEFAULT: Final[float] = 0.3
LLM_MAX_TOKENS_DEFAULT: Final[int] = 1500
LLM_TIMEOUT_SECONDS_DEFAULT: Final[int] = 60
LLM_PROMPT_FILE_DEFAULT: Final[str] = "config/prompts/whatsapp.yaml"

METRICS_PORT_DEFAULT: Final[int] = 9000

logger = cast(Any, get_logger(__name__))


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


def load_schema(schema_name: str, config_dir: Path = DEFAULT_CONFIG_DIR) -> dict[str, Any]:
    """Load JSON Schema from <config_dir>/schemas/.

    Args:
        schema_name: Schema name without extension (e.g., "main")
        config_dir: Configuration directory

    Returns:
        JSON Schema dictionary or empty dict if not found
    """
    schema_path = config_dir / "schemas" / f"{schema_name}.schema.json"
    if not schema_path.exists():
        return {}

    try:
        with open(schema_path, encoding="utf-8") as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(
            "config_schema_load_failed",
            schema=schema_name,
            error=str(e),
        )
        return {}


def validate_config_section(
    config: dict[str, Any],
    schema_name: str,
    file_path: str = "",
    config_dir: Path = DEFAULT_CONFIG_DIR,
) -> None:
    """Validate config section against JSON Schema.

    Raises:
        ValueError: If validation fails
    """
    schema = load_schema(schema_name, config_dir)
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


def load_all_configs(config_dir: Path = DEFAULT_CONFIG_DIR) -> dict[str, Any]:
    """Load and merge all YAML configs from the config directory.

    Loading order (later overrides earlier):
    1. main.yaml
    2. All other *.yaml files (sorted alphabetically)

    Each file is validated against the schema named after its stem.

    Returns:
        Merged configuration dictionary
    """
    if not config_dir.is_dir():
        logger.debug("config_dir_missing", path=str(config_dir))
        return {}

    main_path = config_dir / "main.yaml"
    yaml_files = [main_path] if main_path.exists() else []
    yaml_files += sorted(f for f in config_dir.glob("*.yaml") if f.name != "main.yaml")

    merged_config: dict[str, Any] = {}
    for yaml_file in yaml_files:
        schema_name = yaml_file.stem
        try:
            with open(yaml_file, encoding="utf-8") as f:
                file_config = yaml.safe_load(f) or {}
        except (yaml.YAMLError, OSError) as e:
            logger.warning(
                "config_file_load_failed",
                path=str(yaml_file),
                error=str(e),
            )
            continue

        try:
            validate_config_section(file_config, schema_name, str(yaml_file), config_dir)
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

    logger.info("config_load_complete", file_count=len(yaml_files))
    return merged_config


class Settings(BaseSettings):
    """Application settings.

    Secrets are loaded from the .env file.
    Non-sensitive config is loaded from config/*.yaml with fallback to defaults.
    """

    model_config = SettingsConfigDict(
        env_file=".env" if Path(".env").exists() else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # === SECRETS (from .env) ===

    openai_api_key: SecretStr = Field(..., description="OpenAI API key (from .env)")

    @field_validator("openai_api_key", mode="before")
    @classmethod
    def _ensure_secret(
        cls, value: SecretStr | str | None, info: ValidationInfo
    ) -> SecretStr:
        if value is None:
            raise ValueError(f"{info.field_name} must be provided")

        if isinstance(value, SecretStr):
            secret_value = value.get_secret_value()
        else:
            secret_value = str(value)

        if not secret_value.strip():
            raise ValueError(f"{info.field_name} must not be empty")

        return value if isinstance(value, SecretStr) else SecretStr(secret_value)

    # === NON-SENSITIVE CONFIG (from config/*.yaml or defaults) ===

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

        whatsapp_config = config.get("whatsapp") or {}
        _assign("session_dir", whatsapp_config.get("session_dir"))
        _assign("bridge_url", whatsapp_config.get("bridge_url"))
        _assign("target_group_id", whatsapp_config.get("target_group_id"))
        _assign("target_group_name", whatsapp_config.get("target_group_name"))
        _assign("allowed_chat_names", whatsapp_config.get("allowed_chat_names"))
        _assign(
            "monitor_all_group_chats", whatsapp_config.get("monitor_all_group_chats")
        )

        cache_config = config.get("group_cache") or {}
        _assign("group_cache_ttl_seconds", cache_config.get("ttl_seconds"))
        _assign(
            "group_cache_max_persisted_age_seconds",
            cache_config.get("max_persisted_age_seconds"),
        )
        _assign(
            "group_cache_flush_interval_seconds",
            cache_config.get("flush_interval_seconds"),
        )
        _assign("group_cache_max_fetch_attempts", cache_config.get("max_fetch_attempts"))
        _assign(
            "group_cache_base_backoff_seconds", cache_config.get("base_backoff_seconds")
        )

        flood_config = config.get("photo_flood") or {}
        _assign("photo_flood_window_seconds", flood_config.get("window_seconds"))
        _assign("photo_flood_min_images", flood_config.get("min_images"))
        _assign("photo_flood_no_caption_ratio", flood_config.get("no_caption_ratio"))

        dedupe_config = config.get("deduplication") or {}
        _assign("dedup_retention_days", dedupe_config.get("retention_days"))

        llm_config = config.get("llm") or {}
        _assign("llm_model", llm_config.get("model"))
        _assign("llm_temperature", llm_config.get("temperature"))
        _assign("llm_max_tokens", llm_config.get("max_tokens"))
        _assign("llm_timeout_seconds", llm_config.get("timeout_seconds"))
        _assign("llm_history_length", llm_config.get("history_length"))
        _assign("llm_prompt_file", llm_config.get("prompt_file"))
        _assign("llm_focused_instructions", llm_config.get("focused_instructions"))

        formatting_config = config.get("formatting") or {}
        _assign("tz_default", formatting_config.get("timezone"))

        logging_config = config.get("logging") or {}
        _assign("log_level", logging_config.get("level"))
        _assign("log_json", logging_config.get("json"))

        metrics_config = config.get("metrics") or {}
        _assign("metrics_enabled", metrics_config.get("enabled"))
        _assign("metrics_port", metrics_config.get("port"))

    # WhatsApp connection
    session_dir: str = Field(
        default=DEFAULT_SESSION_DIR,
        validation_alias=AliasChoices("session_dir", "baileys_auth_dir"),
        description="Directory holding the auth session and persisted state files",
    )
    bridge_url: str = Field(
        default=DEFAULT_BRIDGE_URL,
        validation_alias=AliasChoices("bridge_url", "whatsapp_bridge_url"),
        description="Base URL of the local WhatsApp bridge service",
    )
    target_group_id: str = Field(
        default="", description="Group that receives detected events (JID)"
    )
    target_group_name: str = Field(
        default=DEFAULT_TARGET_GROUP_NAME,
        description="Display name used to find the target group when no id is set",
    )
    allowed_chat_names: list[str] = Field(
        default_factory=list,
        description="Only analyze chats whose name contains one of these (empty = all)",
    )
    monitor_all_group_chats: bool = Field(
        default=False, description="Ignore allowed_chat_names and analyze every group"
    )

    # Group metadata cache
    group_cache_ttl_seconds: float = Field(
        default=GROUP_CACHE_TTL_SECONDS, gt=0, description="In-memory entry lifetime"
    )
    group_cache_max_persisted_age_seconds: float = Field(
        default=GROUP_CACHE_MAX_PERSISTED_AGE_SECONDS,
        gt=0,
        description="Persisted entries older than this are dropped on restore",
    )
    group_cache_flush_interval_seconds: float = Field(
        default=GROUP_CACHE_FLUSH_INTERVAL_SECONDS,
        gt=0,
        description="Interval between periodic flushes of persisted state",
    )
    group_cache_max_fetch_attempts: int = Field(
        default=GROUP_FETCH_MAX_ATTEMPTS, ge=1, description="Fetch attempts per miss"
    )
    group_cache_base_backoff_seconds: float = Field(
        default=GROUP_FETCH_BASE_BACKOFF_SECONDS,
        gt=0,
        description="First rate-limit backoff delay; doubles per attempt",
    )

    # Photo flood detection
    photo_flood_window_seconds: float = Field(
        default=PHOTO_FLOOD_WINDOW_SECONDS, gt=0, description="Sliding window size"
    )
    photo_flood_min_images: int = Field(
        default=PHOTO_FLOOD_MIN_IMAGES, ge=1, description="Minimum images for a flood"
    )
    photo_flood_no_caption_ratio: float = Field(
        default=PHOTO_FLOOD_NO_CAPTION_RATIO,
        gt=0,
        le=1,
        description="Share of caption-less images that makes a flood",
    )

    # Deduplication
    dedup_retention_days: int = Field(
        default=CREATED_EVENTS_RETENTION_DAYS,
        ge=1,
        description="How long dispatched event fingerprints are remembered",
    )

    # LLM configuration
    llm_model: str = Field(default=LLM_MODEL_DEFAULT, description="OpenAI model name")
    llm_temperature: float = Field(
        default=LLM_TEMPERATURE_DEFAULT, ge=0.0, le=2.0, description="LLM temperature"
    )
    llm_max_tokens: int = Field(
        default=LLM_MAX_TOKENS_DEFAULT, ge=1, description="Response token limit"
    )
    llm_timeout_seconds: int = Field(
        default=LLM_TIMEOUT_SECONDS_DEFAULT, ge=1, description="LLM request timeout"
    )
    llm_history_length: int = Field(
        default=MESSAGE_HISTORY_LENGTH,
        ge=1,
        description="Messages of chat history passed as context",
    )
    llm_prompt_file: str = Field(
        default=LLM_PROMPT_FILE_DEFAULT, description="YAML file with the system prompt"
    )
    llm_focused_instructions: str = Field(
        default="", description="Extra instructions appended to every analysis"
    )

    # Formatting
    tz_default: str = Field(
        default=DEFAULT_TIMEZONE, description="Timezone used to display event times"
    )

    # Observability
    log_level: str = Field(default="INFO", description="Logging level")
    log_json: bool = Field(default=False, description="Render logs as JSON")
    metrics_enabled: bool = Field(
        default=False, description="Expose Prometheus metrics over HTTP"
    )
    metrics_port: int = Field(
        default=METRICS_PORT_DEFAULT, description="Prometheus exporter port"
    )

    @field_validator("tz_default")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Reject timezone names pytz does not know."""
        try:
            pytz.timezone(v)
        except pytz.UnknownTimeZoneError as exc:
            raise ValueError(f"Unknown timezone: {v}") from exc
        return v

    @field_validator("allowed_chat_names")
    @classmethod
    def strip_chat_names(cls, v: list[str]) -> list[str]:
        return [name.strip() for name in v if name and name.strip()]

    @property
    def group_cache_path(self) -> Path:
        return Path(self.session_dir) / GROUP_CACHE_FILENAME

    @property
    def created_events_path(self) -> Path:
        return Path(self.session_dir) / CREATED_EVENTS_FILENAME


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create global settings instance.

    Returns:
        Settings instance
    """
    global _settings
    if _settings is None:
        _settings = Settings()  # type: ignore[call-arg]
    return _settings
