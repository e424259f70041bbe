"""Configuration loader for the backup/restore job using Pydantic settings."""

from __future__ import annotations

import os
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

ENV_VAR_NAME = "AZSEARCH_BACKUP_ENV"
DEFAULT_ENV = "local"
PROJECT_ROOT = Path(__file__).resolve().parents[3]
CONFIG_DIR = PROJECT_ROOT / "config"
DEFAULT_CONFIG_FILE = CONFIG_DIR / "settings.default.toml"
LOCAL_CONFIG_FILE = CONFIG_DIR / "settings.local.toml"
SETTINGS_FILE_ENV_VAR = "AZSEARCH_BACKUP_SETTINGS_FILE"

MAX_PAGE_SIZE = 1000


class ConfigurationError(ValueError):
    """Raised when required configuration values are missing or invalid."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = list(missing)
        super().__init__("Missing required configuration: " + ", ".join(self.missing))


def _resolve_env(explicit_env: str | None = None) -> str:
    """Return the active environment name, falling back to ``DEFAULT_ENV``."""

    env = explicit_env or os.getenv(ENV_VAR_NAME) or DEFAULT_ENV
    return env.strip()


def _env_file_candidates(env: str) -> list[Path]:
    """List candidate ``.env`` files used during settings resolution.

    Args:
        env: Active environment name (for example, ``local`` or ``prod``).

    Returns:
        Ordered list of paths that should be considered when loading
        environment variables from disk.
    """

    return [
        PROJECT_ROOT / ".env",
        PROJECT_ROOT / f".env.{env}",
        PROJECT_ROOT / ".env.local",
    ]


def _resolve_config_path(raw_path: str | None) -> Path | None:
    """Return an absolute config path from user input."""

    if not raw_path:
        return None
    candidate = Path(raw_path).expanduser()
    if not candidate.is_absolute():
        candidate = (PROJECT_ROOT / candidate).resolve()
    return candidate


def _config_file_priority() -> tuple[Path, ...]:
    """Return existing config files in descending precedence order."""

    ordered: list[Path] = []
    env_override = _resolve_config_path(os.getenv(SETTINGS_FILE_ENV_VAR))
    if env_override:
        ordered.append(env_override)
    ordered.append(LOCAL_CONFIG_FILE)
    ordered.append(DEFAULT_CONFIG_FILE)
    return tuple(path for path in ordered if path.exists())


class TomlConfigSettingsSource(PydanticBaseSettingsSource):
    """Pydantic settings source that loads values from a TOML file."""

    def __init__(self, settings_cls: type[BaseSettings], path: Path) -> None:
        super().__init__(settings_cls)
        self.path = path
        self._data: dict[str, Any] | None = None

    def _load(self) -> dict[str, Any]:
        if self._data is not None:
            return self._data
        if not self.path.exists():
            self._data = {}
            return self._data
        try:
            with self.path.open("rb") as handle:
                self._data = tomllib.load(handle)
        except tomllib.TOMLDecodeError as exc:  # pragma: no cover - invalid files surface immediately
            raise ValueError(f"Invalid TOML syntax in {self.path}") from exc
        return self._data

    def __call__(self) -> dict[str, Any]:  # pragma: no cover - trivial wrapper
        return self._load()

    def get_field_value(self, field_name: str, field):  # pragma: no cover - passthrough helper
        data = self._load()
        return data.get(field_name), field_name in data


def _read_env_value(*keys: str) -> str | None:
    """Return the first present environment variable from ``keys``."""

    for key in keys:
        value = os.getenv(key)
        if value is not None:
            return value
    return None


def _env_alias_updates(section: BaseSettings) -> dict[str, str]:
    """Collect env values for every field of ``section`` declared with ``AliasChoices``."""

    updates: dict[str, str] = {}
    for name, field in type(section).model_fields.items():
        alias = field.validation_alias
        if not isinstance(alias, AliasChoices):
            continue
        value = _read_env_value(*(choice for choice in alias.choices if isinstance(choice, str)))
        if value is not None:
            updates[name] = value
    return updates


class RuntimeSettings(BaseSettings):
    """Process-level runtime controls."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    log_level: str = Field(
        default="INFO",
        validation_alias=AliasChoices("LOG_LEVEL", "RUNTIME__LOG_LEVEL"),
    )


class SearchServiceSettings(BaseSettings):
    """Connection details for one search service and the index used on it."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    service_name: str | None = None
    api_key: str | None = None
    index_name: str | None = None
    api_version: str = "2023-11-01"

    @property
    def endpoint(self) -> str | None:
        """str | None: Service URL derived from ``service_name``.

        A bare service name resolves to ``https://<name>.search.windows.net``;
        anything that already looks like a URL is used as-is.
        """

        if not self.service_name:
            return None
        name = self.service_name.strip().rstrip("/")
        if "://" in name:
            return name
        return f"https://{name}.search.windows.net"


class SourceSettings(SearchServiceSettings):
    """Search service holding the index being backed up."""

    service_name: str | None = Field(
        default=None,
        validation_alias=AliasChoices("SourceSearchServiceName", "SOURCE_SERVICE_NAME", "SOURCE__SERVICE_NAME"),
    )
    api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("SourceAPIKey", "SOURCE_API_KEY", "SOURCE__API_KEY"),
    )
    index_name: str | None = Field(
        default=None,
        validation_alias=AliasChoices("SourceIndexName", "SOURCE_INDEX_NAME", "SOURCE__INDEX_NAME"),
    )


class TargetSettings(SearchServiceSettings):
    """Search service that receives the restored index."""

    service_name: str | None = Field(
        default=None,
        validation_alias=AliasChoices("TargetSearchServiceName", "TARGET_SERVICE_NAME", "TARGET__SERVICE_NAME"),
    )
    api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("TargetAPIKey", "TARGET_API_KEY", "TARGET__API_KEY"),
    )
    index_name: str | None = Field(
        default=None,
        validation_alias=AliasChoices("TargetIndexName", "TARGET_INDEX_NAME", "TARGET__INDEX_NAME"),
    )


class StorageSettings(BaseSettings):
    """Where the intermediate batch files are kept."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    backend: Literal["azure_blob", "local"] = Field(
        default="azure_blob",
        validation_alias=AliasChoices("STORAGE_BACKEND", "STORAGE__BACKEND"),
    )
    connection_string: str | None = Field(
        default=None,
        validation_alias=AliasChoices("AZURE_STORAGE_CONNECTION_STRING", "STORAGE__CONNECTION_STRING"),
    )
    container: str | None = Field(
        default=None,
        validation_alias=AliasChoices("STORAGE_CONTAINER", "STORAGE__CONTAINER"),
    )
    container_sas_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("BlobContainerLRWDSASUri", "STORAGE_CONTAINER_SAS_URL", "STORAGE__CONTAINER_SAS_URL"),
    )
    local_dir: Path = Field(
        default=PROJECT_ROOT / "data" / "index_copies",
        validation_alias=AliasChoices("STORAGE_LOCAL_DIR", "STORAGE__LOCAL_DIR"),
    )


class TransferSettings(BaseSettings):
    """Batching, parallelism and retry knobs for the export/import stages."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    page_size: int = Field(
        default=500,
        validation_alias=AliasChoices("TRANSFER_PAGE_SIZE", "TRANSFER__PAGE_SIZE"),
    )
    parallelism: int = Field(
        default=10,
        validation_alias=AliasChoices("TRANSFER_PARALLELISM", "TRANSFER__PARALLELISM"),
    )
    max_attempts: int = Field(
        default=4,
        validation_alias=AliasChoices("TRANSFER_MAX_ATTEMPTS", "TRANSFER__MAX_ATTEMPTS"),
    )
    backoff_min_seconds: float = Field(
        default=1.0,
        validation_alias=AliasChoices("TRANSFER_BACKOFF_MIN_SECONDS", "TRANSFER__BACKOFF_MIN_SECONDS"),
    )
    backoff_max_seconds: float = Field(
        default=20.0,
        validation_alias=AliasChoices("TRANSFER_BACKOFF_MAX_SECONDS", "TRANSFER__BACKOFF_MAX_SECONDS"),
    )
    request_timeout_seconds: float = Field(
        default=120.0,
        validation_alias=AliasChoices("TRANSFER_REQUEST_TIMEOUT", "TRANSFER__REQUEST_TIMEOUT_SECONDS"),
    )

    @field_validator("page_size")
    @classmethod
    def _check_page_size(cls, value: int) -> int:
        if value < 1 or value > MAX_PAGE_SIZE:
            raise ValueError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")
        return value

    @field_validator("parallelism", "max_attempts")
    @classmethod
    def _check_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("value must be at least 1")
        return value


class SettleSettings(BaseSettings):
    """Polling used while the remote service catches up with deletes and uploads."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    poll_interval_seconds: float = Field(
        default=2.0,
        validation_alias=AliasChoices("SETTLE_POLL_INTERVAL", "SETTLE__POLL_INTERVAL_SECONDS"),
    )
    delete_timeout_seconds: float = Field(
        default=60.0,
        validation_alias=AliasChoices("SETTLE_DELETE_TIMEOUT", "SETTLE__DELETE_TIMEOUT_SECONDS"),
    )
    indexing_timeout_seconds: float = Field(
        default=300.0,
        validation_alias=AliasChoices("SETTLE_INDEXING_TIMEOUT", "SETTLE__INDEXING_TIMEOUT_SECONDS"),
    )
    stable_polls: int = Field(
        default=5,
        validation_alias=AliasChoices("SETTLE_STABLE_POLLS", "SETTLE__STABLE_POLLS"),
    )


class ObservabilitySettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    structured_logging: bool = Field(
        default=False,
        validation_alias=AliasChoices("OBS_STRUCTURED_LOGGING", "OBSERVABILITY__STRUCTURED_LOGGING"),
    )


_ALIASED_SECTIONS = ("runtime", "source", "target", "storage", "transfer", "settle", "observability")


class Settings(BaseSettings):
    """Top-level configuration model with nested sections for each subsystem."""

    env: str = Field(
        default_factory=lambda: _resolve_env(),
        validation_alias=AliasChoices("ENV", "ENVIRONMENT", "RUNTIME__ENV"),
    )
    project_root: Path = Field(default=PROJECT_ROOT)
    runtime: RuntimeSettings = Field(default_factory=RuntimeSettings)
    source: SourceSettings = Field(default_factory=SourceSettings)
    target: TargetSettings = Field(default_factory=TargetSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    transfer: TransferSettings = Field(default_factory=TransferSettings)
    settle: SettleSettings = Field(default_factory=SettleSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)
    env_files: tuple[Path, ...] = Field(default_factory=tuple, exclude=True)
    config_files: tuple[Path, ...] = Field(default_factory=tuple, exclude=True)

    model_config = SettingsConfigDict(
        env_prefix="AZSEARCH_BACKUP_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        """Extend settings sources with TOML-based config files."""

        config_sources = [TomlConfigSettingsSource(settings_cls, path) for path in _config_file_priority()]
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            *config_sources,
            file_secret_settings,
        )

    @model_validator(mode="after")
    def _apply_section_env_aliases(self) -> "Settings":
        """Honor unprefixed env aliases for sections that came from a config file.

        Nested sections only read the environment when they are built from
        their defaults, so values coming from TOML would otherwise shadow
        variables such as ``SOURCE_API_KEY``.
        """

        for section_name in _ALIASED_SECTIONS:
            section = getattr(self, section_name)
            updates = _env_alias_updates(section)
            if updates:
                merged = type(section).model_validate({**section.model_dump(), **updates})
                object.__setattr__(self, section_name, merged)
        return self

    @model_validator(mode="after")
    def _resolve_paths(self) -> "Settings":
        """Normalize relative paths once the model is initialised."""

        if not self.storage.local_dir.is_absolute():
            resolved = self.resolve_path(self.storage.local_dir)
            object.__setattr__(self, "storage", self.storage.model_copy(update={"local_dir": resolved}))
        return self

    def resolve_path(self, path: Path) -> Path:
        """Anchor a relative ``path`` at ``project_root``."""

        path = Path(path)
        return path if path.is_absolute() else (self.project_root / path).resolve()

    def missing_required(self, *, mode: str = "full") -> list[str]:
        """Return dotted names of required values that are not set.

        Args:
            mode: ``backup`` needs only the source side, ``restore`` only the
                target side (plus the source index name that prefixes the
                batch files), ``full`` needs both.
        """

        missing: list[str] = []
        if mode in {"full", "backup"}:
            for name in ("service_name", "api_key", "index_name"):
                if not getattr(self.source, name):
                    missing.append(f"source.{name}")
        elif not self.source.index_name:
            missing.append("source.index_name")
        if mode in {"full", "restore"}:
            for name in ("service_name", "api_key", "index_name"):
                if not getattr(self.target, name):
                    missing.append(f"target.{name}")
        if self.storage.backend == "azure_blob":
            has_connection = bool(self.storage.connection_string and self.storage.container)
            if not has_connection and not self.storage.container_sas_url:
                missing.append("storage.connection_string+container or storage.container_sas_url")
        return missing

    def validate_required(self, *, mode: str = "full") -> None:
        """Raise :class:`ConfigurationError` when required values are missing."""

        missing = self.missing_required(mode=mode)
        if missing:
            raise ConfigurationError(missing)

    @property
    def log_level(self) -> str:
        """str: Effective logging level for the running process."""

        return self.runtime.log_level

    @property
    def is_local(self) -> bool:
        """bool: True when the active environment is ``local``."""

        return self.env.lower() == "local"


def _load_settings(env: str | None = None) -> Settings:
    """Load settings with optional environment override.

    Args:
        env: Environment name supplied programmatically.

    Returns:
        Fully parsed :class:`Settings` instance with env files applied.
    """

    resolved_env = _resolve_env(env)
    candidate_files = [path for path in _env_file_candidates(resolved_env) if path.exists()]
    config_files = _config_file_priority()
    return Settings(
        _env_file=[str(path) for path in candidate_files],
        _env_file_encoding="utf-8",
        env=resolved_env,
        env_files=tuple(candidate_files),
        config_files=config_files,
    )


@lru_cache(maxsize=1)
def get_settings(env: str | None = None) -> Settings:
    """Return cached settings for the requested environment."""

    return _load_settings(env)


def reload_settings(env: str | None = None) -> Settings:
    """Clear the cached settings and reload from disk."""

    get_settings.cache_clear()
    return get_settings(env)


__all__ = [
    "ConfigurationError",
    "Settings",
    "get_settings",
    "reload_settings",
    "PROJECT_ROOT",
    "ENV_VAR_NAME",
]
