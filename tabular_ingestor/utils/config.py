"""Configuration loader and settings helpers for tabular_ingestor."""

import base64
import json
import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any

import yaml
from boto3.session import Session
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic import (
    ValidationError as PydanticValidationError,
)
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from ..exceptions import ConfigurationError
from .retry import RetryConfig

logger = logging.getLogger(__name__)

ENV_PREFIX = "TABULAR_"


def load_yaml_config(config_path: str | Path) -> dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Configuration dictionary

    Raises:
        ConfigurationError: If file not found or invalid YAML
    """
    try:
        with open(config_path) as f:
            config = yaml.safe_load(f)
            return config if config else {}
    except FileNotFoundError:
        raise ConfigurationError(f"Configuration file not found: {config_path}")
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}")


def _split_extensions(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        items = value.replace(";", ",").split(",")
    elif isinstance(value, list | tuple | set):
        items = [str(item) for item in value]
    else:
        raise ValueError("extensions must be a comma-separated string or list")

    normalized: list[str] = []
    for item in items:
        ext = item.strip().lower()
        if not ext:
            continue
        if not ext.startswith("."):
            ext = f".{ext}"
        if ext not in normalized:
            normalized.append(ext)
    return normalized


class AWSSettings(BaseModel):
    """AWS-specific configuration options derived from global settings."""

    model_config = ConfigDict(extra="forbid")

    region: str | None = None


class DatabasePoolSettings(BaseModel):
    """Connection pooling configuration for the SQLAlchemy engine."""

    model_config = ConfigDict(extra="forbid")

    pool_size: int = Field(default=5, ge=1)
    max_overflow: int = Field(default=10, ge=0)
    timeout: float = Field(default=30.0, gt=0)
    recycle_seconds: int = Field(default=1800, ge=0)
    pre_ping: bool = True


class SecretsManagerSettings(BaseModel):
    """AWS Secrets Manager integration settings."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = False
    secret_name: str | None = None
    region: str | None = None
    profile: str | None = None
    endpoint_url: str | None = None
    overwrite_env: bool = False
    required_env: list[str] = Field(default_factory=list)


class IngestionSettings(BaseModel):
    """Scan cycle, staging and batching defaults."""

    model_config = ConfigDict(extra="forbid")

    staging_dir: Path = Path("uploads/ingest-staging")
    stable_seconds: int = Field(default=60, ge=0)
    poll_seconds: int = Field(default=60, ge=1)
    drain_limit: int = Field(default=3, ge=1)
    default_poll_interval_minutes: int = Field(default=5, ge=1)
    default_max_depth: int = Field(default=6, ge=0)
    default_max_files: int = Field(default=5000, ge=1)
    allowed_extensions: list[str] = Field(default_factory=lambda: [".csv", ".xlsx", ".xls"])
    write_batch_size: int = Field(default=500, ge=1)
    checksum_chunk_bytes: int = Field(default=1024 * 1024, ge=1024)

    @field_validator("allowed_extensions", mode="before")
    @classmethod
    def _parse_extensions(cls, value: Any) -> list[str]:
        return _split_extensions(value)

    @field_validator("staging_dir", mode="before")
    @classmethod
    def _expand_staging_dir(cls, value: Any) -> Any:
        if isinstance(value, str):
            return Path(value).expanduser()
        return value


class UploadLimits(BaseModel):
    """Guardrails applied to every file before it reaches the row writer."""

    model_config = ConfigDict(extra="forbid")

    max_file_size_mb: int = Field(default=25, ge=1)
    max_rows: int = Field(default=200_000, ge=1)
    max_columns: int = Field(default=200, ge=1)
    max_cell_length: int = Field(default=5000, ge=1)

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024


class MalwareScanSettings(BaseModel):
    """External command-line malware scanner options."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    command: str = "clamscan"
    allow_missing: bool | None = None
    timeout_seconds: float = Field(default=60.0, gt=0)


class DriveSettings(BaseModel):
    """Service-account credentials and endpoints for the cloud drive connector."""

    model_config = ConfigDict(extra="forbid")

    service_account_json: str | None = None
    service_account_file: Path | None = None
    client_email: str | None = None
    private_key: str | None = None
    token_uri: str = "https://oauth2.googleapis.com/token"
    api_base: str = "https://www.googleapis.com/drive/v3"
    scope: str = "https://www.googleapis.com/auth/drive.readonly"
    timeout_seconds: float = Field(default=30.0, gt=0)
    retry: RetryConfig = Field(
        default_factory=lambda: RetryConfig(enabled=True, max_attempts=3)
    )

    @field_validator("private_key", mode="before")
    @classmethod
    def _unescape_private_key(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.replace("\\n", "\n")
        return value


class ServiceConfiguration(BaseModel):
    """Validated runtime configuration merged from base and environment overrides."""

    version: int = Field(default=1, ge=1)
    environment: str = "development"
    required_env: list[str] = Field(default_factory=list)
    secrets_manager: SecretsManagerSettings = Field(default_factory=SecretsManagerSettings)

    @field_validator("environment")
    @classmethod
    def _normalize_environment(cls, value: str) -> str:
        return value.lower()


class GlobalSettings(BaseSettings):
    """Global application settings sourced from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_nested_delimiter="__",
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: str = "development"
    config_profile: str | None = None
    log_level: str = "INFO"
    redis_url: str | None = None
    database_url: str | None = None
    database: DatabasePoolSettings = DatabasePoolSettings()
    config_dir: Path = Path("config")
    aws: AWSSettings = AWSSettings()
    secrets_manager: SecretsManagerSettings = SecretsManagerSettings()
    # Raw env text reaches the validator, which accepts CSV as well as JSON.
    api_keys: Annotated[list[str], NoDecode] = Field(default_factory=list)
    data_encryption_key: str | None = None
    ingestion: IngestionSettings = IngestionSettings()
    uploads: UploadLimits = UploadLimits()
    malware_scan: MalwareScanSettings = MalwareScanSettings()
    drive: DriveSettings = DriveSettings()

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        """Ensure log level values are uppercase for logging config."""

        return value.upper()

    @field_validator("environment")
    @classmethod
    def _normalize_environment(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("api_keys", mode="before")
    @classmethod
    def _parse_api_keys(cls, value: Any) -> list[str]:
        """Support comma-separated strings, JSON lists or iterables for API key configuration."""

        if value is None:
            return []
        if isinstance(value, str) and value.lstrip().startswith("["):
            try:
                value = json.loads(value)
            except json.JSONDecodeError as exc:
                raise ValueError("api_keys is not a valid JSON list") from exc
        if isinstance(value, str):
            keys = [item.strip() for item in value.split(",")]
            return [key for key in keys if key]
        if isinstance(value, list | tuple | set):
            return [str(item) for item in value if str(item).strip()]
        raise ValueError("api_keys must be a comma-separated string or iterable of strings")

    @field_validator("data_encryption_key", mode="before")
    @classmethod
    def _blank_key_is_unset(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("config_dir", mode="before")
    @classmethod
    def _expand_paths(cls, value: Any) -> Any:
        """Allow string paths and expand user markers."""

        if isinstance(value, Path):
            return value
        if isinstance(value, str):
            return Path(value).expanduser()
        return value

    @field_validator("config_profile", mode="before")
    @classmethod
    def _normalize_config_profile(cls, value: Any) -> Any:
        if value is None:
            return value
        if not isinstance(value, str) or not value.strip():
            raise ValueError("config_profile must be a non-empty string if provided")
        return value.strip().lower()

    @model_validator(mode="after")
    def _resolve_malware_policy(self) -> "GlobalSettings":
        # A missing scanner binary is tolerated everywhere except production.
        if self.malware_scan.allow_missing is None:
            self.malware_scan.allow_missing = self.environment != "production"
        return self


def _merge_mappings(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _merge_mappings(current, value)
        else:
            merged[key] = value
    return merged


@lru_cache(maxsize=8)
def _read_service_templates(config_dir: str, profile: str) -> ServiceConfiguration:
    """Merge ``settings.base.yaml`` with the optional ``settings.<profile>.yaml``."""

    directory = Path(config_dir)
    base_path = directory / "settings.base.yaml"
    if not base_path.is_file():
        raise ConfigurationError(
            f"Missing base configuration template at '{base_path}'. "
            "Every deployment needs one, even if it only lists required_env."
        )

    merged = load_yaml_config(base_path)
    override_path = directory / f"settings.{profile}.yaml"
    if override_path.is_file():
        merged = _merge_mappings(merged, load_yaml_config(override_path))
    merged.setdefault("environment", profile)

    try:
        return ServiceConfiguration.model_validate(merged)
    except PydanticValidationError as exc:
        raise ConfigurationError(
            f"Invalid service template for profile '{profile}': {exc}"
        ) from exc


def get_service_configuration(
    settings: GlobalSettings | None = None,
    *,
    reload: bool = False,
) -> ServiceConfiguration:
    """Return the service templates merged for the active profile."""

    settings = settings or get_settings()
    if reload:
        _read_service_templates.cache_clear()
    profile = (settings.config_profile or settings.environment).lower()
    return _read_service_templates(str(settings.config_dir), profile)


def _effective_secrets_settings(
    settings: GlobalSettings,
    service_config: ServiceConfiguration,
) -> SecretsManagerSettings:
    """Environment-provided secrets settings win over the service template field by field."""

    from_env = settings.secrets_manager
    from_template = service_config.secrets_manager
    return SecretsManagerSettings(
        enabled=from_env.enabled or from_template.enabled,
        secret_name=from_env.secret_name or from_template.secret_name,
        region=from_env.region or from_template.region or settings.aws.region,
        profile=from_env.profile or from_template.profile,
        endpoint_url=from_env.endpoint_url or from_template.endpoint_url,
        overwrite_env=from_env.overwrite_env or from_template.overwrite_env,
        required_env=[*from_template.required_env, *from_env.required_env],
    )


def _decode_secret_payload(response: dict[str, Any], secret_name: str) -> dict[str, str]:
    raw = response.get("SecretString")
    if raw is None and response.get("SecretBinary") is not None:
        raw = base64.b64decode(response["SecretBinary"]).decode("utf-8")
    if raw is None:
        return {}

    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Secret '{secret_name}' is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise ConfigurationError(f"Secret '{secret_name}' must be a JSON object of variables")

    # Non-string values (lists of API keys, numbers) are passed on as JSON text.
    return {
        str(key): value if isinstance(value, str) else json.dumps(value)
        for key, value in payload.items()
        if value is not None
    }


def fetch_secrets(config: SecretsManagerSettings) -> dict[str, str]:
    """Read the configured secret from AWS Secrets Manager as environment variables."""

    if not config.secret_name:
        raise ConfigurationError(
            "Secrets Manager integration enabled but no secret_name configured"
        )

    session_kwargs: dict[str, Any] = {}
    if config.region:
        session_kwargs["region_name"] = config.region
    if config.profile:
        session_kwargs["profile_name"] = config.profile
    client = Session(**session_kwargs).client("secretsmanager", endpoint_url=config.endpoint_url)

    try:
        response = client.get_secret_value(SecretId=config.secret_name)
    except (BotoCoreError, ClientError) as exc:
        raise ConfigurationError(
            f"Unable to read secret '{config.secret_name}' from AWS Secrets Manager: {exc}"
        ) from exc
    return _decode_secret_payload(response, config.secret_name)


def export_secrets(secrets: dict[str, str], *, overwrite: bool) -> list[str]:
    """Copy ``TABULAR_*`` secrets into ``os.environ`` and return the names written."""

    written: list[str] = []
    for key, value in secrets.items():
        name = key.upper()
        if not name.startswith(ENV_PREFIX):
            logger.debug("Ignoring secret '%s' without the %s prefix", name, ENV_PREFIX)
            continue
        if name in os.environ and not overwrite:
            continue
        os.environ[name] = value
        written.append(name)
    return written


def ensure_runtime_configuration(settings: GlobalSettings | None = None) -> GlobalSettings:
    """Validate service templates, import secrets and check required variables.

    Returns the settings object to use from here on; it is rebuilt when
    secrets changed the environment.
    """

    settings = settings or get_settings()
    service_config = get_service_configuration(settings=settings, reload=True)
    secrets_config = _effective_secrets_settings(settings, service_config)

    if secrets_config.enabled:
        secrets = fetch_secrets(secrets_config)
        written = export_secrets(secrets, overwrite=secrets_config.overwrite_env)
        if written:
            logger.info("Exported %d variable(s) from AWS Secrets Manager", len(written))
            settings = get_settings(reload=True)

    required = {
        f"{ENV_PREFIX}DATABASE_URL",
        *service_config.required_env,
        *secrets_config.required_env,
    }
    missing = sorted(name for name in required if not os.environ.get(name))
    if missing:
        raise ConfigurationError(
            f"Missing required environment variables: {', '.join(missing)}. "
            "Set them in the environment, a .env file, or the configured secret."
        )

    if settings.data_encryption_key is None and settings.environment == "production":
        logger.warning("No data encryption key configured; imported rows are stored in clear")

    return settings


@lru_cache(maxsize=1)
def _get_settings_cached() -> GlobalSettings:
    return GlobalSettings()


def get_settings(*, reload: bool = False) -> GlobalSettings:
    """Return cached settings, optionally forcing a reload."""

    if reload:
        _get_settings_cached.cache_clear()
    return _get_settings_cached()

