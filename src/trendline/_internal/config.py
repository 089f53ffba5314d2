"""Configuration management for trendline.

Handles project settings storage, resolution, and project management.
Configuration is stored in TOML format at ~/.trendline/config.toml by default.
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import tomli_w
from pydantic import BaseModel, ConfigDict, SecretStr, ValidationError, field_validator

from trendline.exceptions import (
    ConfigError,
    ProjectExistsError,
    ProjectNotFoundError,
)

DEFAULT_QUERY_TIMEOUT = 30.0
DEFAULT_TRANSLATOR_URL = "https://api.openai.com/v1"
DEFAULT_TRANSLATOR_MODEL = "gpt-4o-mini"


class ProjectSettings(BaseModel):
    """Immutable settings for one analytics project.

    This is a frozen Pydantic model that ensures:
    - All fields are validated on construction
    - The translator API key is never exposed in repr/str output
    - The object cannot be modified after creation
    """

    model_config = ConfigDict(frozen=True)

    project_id: str
    """Tenant identifier scoping every stored row and every query."""

    database: Path
    """DuckDB database file holding the project's events and people."""

    timezone: str = "UTC"
    """Default IANA timezone for time bucketing."""

    query_timeout: float | None = DEFAULT_QUERY_TIMEOUT
    """Seconds before a running query is interrupted (None or 0 disables)."""

    translator_url: str = DEFAULT_TRANSLATOR_URL
    """Base URL of the OpenAI-compatible chat completions API."""

    translator_model: str = DEFAULT_TRANSLATOR_MODEL
    """Model name sent to the translator endpoint."""

    translator_api_key: SecretStr | None = None
    """Bearer token for the translator endpoint (redacted in output)."""

    @field_validator("project_id")
    @classmethod
    def validate_non_empty(cls, v: str) -> str:
        """Validate the project id is non-empty."""
        if not v or not v.strip():
            raise ValueError("Field cannot be empty")
        return v

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Validate the timezone is a known IANA name."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @field_validator("query_timeout")
    @classmethod
    def validate_timeout(cls, v: float | None) -> float | None:
        """Validate the timeout is not negative; 0 disables it."""
        if v is not None and v < 0:
            raise ValueError("query_timeout must not be negative")
        return v or None

    @field_validator("database", mode="before")
    @classmethod
    def expand_database(cls, v: Any) -> Any:
        """Expand '~' in database paths."""
        if isinstance(v, str):
            return Path(v).expanduser()
        if isinstance(v, Path):
            return v.expanduser()
        return v

    def __repr__(self) -> str:
        """Return string representation with redacted API key."""
        key = "***" if self.translator_api_key is not None else None
        return (
            f"ProjectSettings(project_id={self.project_id!r}, "
            f"database={str(self.database)!r}, timezone={self.timezone!r}, "
            f"translator_api_key={key})"
        )

    def __str__(self) -> str:
        """Return string representation with redacted API key."""
        return self.__repr__()


@dataclass(frozen=True)
class ProjectInfo:
    """Information about a configured project (without secrets)."""

    name: str
    """Project display name."""

    project_id: str
    """Tenant identifier."""

    database: str
    """Database file path."""

    timezone: str
    """Default timezone."""

    is_default: bool
    """Whether this is the default project."""

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON output."""
        return {
            "name": self.name,
            "project_id": self.project_id,
            "database": self.database,
            "timezone": self.timezone,
            "is_default": self.is_default,
        }


class ConfigManager:
    """Manages trendline project configuration.

    Handles:
    - Adding, removing, and listing projects
    - Setting the default project
    - Resolving settings from environment variables or config file

    Config file location (in priority order):
    1. Explicit config_path parameter
    2. TRENDLINE_CONFIG_PATH environment variable
    3. Default: ~/.trendline/config.toml
    """

    DEFAULT_CONFIG_PATH = Path.home() / ".trendline" / "config.toml"

    def __init__(self, config_path: Path | None = None) -> None:
        """Initialize ConfigManager.

        Args:
            config_path: Override config file location.
                         Default: ~/.trendline/config.toml
        """
        if config_path is not None:
            self._config_path = config_path
        elif "TRENDLINE_CONFIG_PATH" in os.environ:
            self._config_path = Path(os.environ["TRENDLINE_CONFIG_PATH"])
        else:
            self._config_path = self.DEFAULT_CONFIG_PATH

    @property
    def config_path(self) -> Path:
        """Return the config file path."""
        return self._config_path

    def _read_config(self) -> dict[str, Any]:
        """Read and parse the config file.

        Returns:
            Parsed config dictionary, or empty dict if file doesn't exist.
        """
        if not self._config_path.exists():
            return {}

        try:
            with self._config_path.open("rb") as f:
                return dict(tomllib.load(f))
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(
                f"Invalid TOML in config file: {e}",
                details={"path": str(self._config_path)},
            ) from e

    def _write_config(self, config: dict[str, Any]) -> None:
        """Write config to file, creating directory if needed."""
        self._config_path.parent.mkdir(parents=True, exist_ok=True)
        with self._config_path.open("wb") as f:
            tomli_w.dump(config, f)

    def resolve_settings(self, project: str | None = None) -> ProjectSettings:
        """Resolve project settings using priority order.

        Resolution order:
        1. Environment variables (TRENDLINE_PROJECT_ID and TRENDLINE_DATABASE,
           plus optional TRENDLINE_TIMEZONE, TRENDLINE_QUERY_TIMEOUT,
           TRENDLINE_TRANSLATOR_URL, TRENDLINE_TRANSLATOR_MODEL,
           TRENDLINE_TRANSLATOR_API_KEY)
        2. Named project from config file (if project parameter provided)
        3. Default project from config file
        4. First configured project

        Args:
            project: Optional project name to use instead of default.

        Returns:
            Immutable ProjectSettings object.

        Raises:
            ConfigError: If no settings can be resolved or they are invalid.
            ProjectNotFoundError: If named project doesn't exist.
        """
        env_settings = self._resolve_from_env()
        if env_settings is not None:
            return env_settings

        config = self._read_config()
        projects = config.get("projects", {})

        if not projects:
            raise ConfigError(
                "No project configured. "
                "Set TRENDLINE_PROJECT_ID and TRENDLINE_DATABASE environment "
                "variables, or add a project with 'trendline project add'."
            )

        project_name: str
        if project is not None:
            project_name = project
        else:
            default_project = config.get("default")
            if default_project is not None and isinstance(default_project, str):
                project_name = default_project
            else:
                project_name = next(iter(projects.keys()))

        if project_name not in projects:
            raise ProjectNotFoundError(
                project_name,
                available_projects=list(projects.keys()),
            )

        return self._build_settings(projects[project_name], source=project_name)

    def _resolve_from_env(self) -> ProjectSettings | None:
        """Attempt to resolve settings from environment variables.

        Returns:
            ProjectSettings if the required env vars are set, None otherwise.
        """
        project_id = os.environ.get("TRENDLINE_PROJECT_ID")
        database = os.environ.get("TRENDLINE_DATABASE")
        if not (project_id and database):
            return None

        data: dict[str, Any] = {"project_id": project_id, "database": database}
        optional = {
            "timezone": "TRENDLINE_TIMEZONE",
            "query_timeout": "TRENDLINE_QUERY_TIMEOUT",
            "translator_url": "TRENDLINE_TRANSLATOR_URL",
            "translator_model": "TRENDLINE_TRANSLATOR_MODEL",
            "translator_api_key": "TRENDLINE_TRANSLATOR_API_KEY",
        }
        for key, env_name in optional.items():
            value = os.environ.get(env_name)
            if value:
                data[key] = value
        return self._build_settings(data, source="environment")

    def _build_settings(self, data: dict[str, Any], source: str) -> ProjectSettings:
        try:
            return ProjectSettings(**data)
        except ValidationError as e:
            raise ConfigError(
                f"Invalid settings for {source}: {e.errors()[0]['msg']}",
                details={
                    "source": source,
                    "errors": [err["msg"] for err in e.errors()],
                },
            ) from e

    def _info(self, name: str, data: dict[str, Any], default_name: Any) -> ProjectInfo:
        return ProjectInfo(
            name=name,
            project_id=data.get("project_id", ""),
            database=data.get("database", ""),
            timezone=data.get("timezone", "UTC"),
            is_default=(name == default_name),
        )

    def list_projects(self) -> list[ProjectInfo]:
        """List all configured projects.

        Returns:
            List of ProjectInfo objects (secrets not included).
        """
        config = self._read_config()
        projects = config.get("projects", {})
        default_name = config.get("default")
        return [self._info(name, data, default_name) for name, data in projects.items()]

    def add_project(
        self,
        name: str,
        project_id: str,
        database: Path,
        *,
        timezone: str = "UTC",
        query_timeout: float | None = DEFAULT_QUERY_TIMEOUT,
        translator_api_key: str | None = None,
    ) -> None:
        """Add a new project configuration.

        Args:
            name: Display name for the project.
            project_id: Tenant identifier.
            database: DuckDB database file path.
            timezone: Default IANA timezone.
            query_timeout: Query timeout in seconds (None or 0 disables).
            translator_api_key: Optional translator API key.

        Raises:
            ProjectExistsError: If project name already exists.
            ConfigError: If the settings are invalid.
        """
        entry: dict[str, Any] = {
            "project_id": project_id,
            "database": str(database),
            "timezone": timezone,
            # TOML has no null; 0 disables the timeout
            "query_timeout": query_timeout or 0,
        }
        if translator_api_key:
            entry["translator_api_key"] = translator_api_key
        # validate before touching the file
        self._build_settings(entry, source=name)

        config = self._read_config()
        projects = config.setdefault("projects", {})

        if name in projects:
            raise ProjectExistsError(name)

        projects[name] = entry

        if "default" not in config:
            config["default"] = name

        self._write_config(config)

    def remove_project(self, name: str) -> None:
        """Remove a project configuration.

        Raises:
            ProjectNotFoundError: If project doesn't exist.
        """
        config = self._read_config()
        projects = config.get("projects", {})

        if name not in projects:
            raise ProjectNotFoundError(name, available_projects=list(projects.keys()))

        del projects[name]

        if config.get("default") == name:
            if projects:
                config["default"] = next(iter(projects.keys()))
            else:
                config.pop("default", None)

        self._write_config(config)

    def set_default(self, name: str) -> None:
        """Set the default project.

        Raises:
            ProjectNotFoundError: If project doesn't exist.
        """
        config = self._read_config()
        projects = config.get("projects", {})

        if name not in projects:
            raise ProjectNotFoundError(name, available_projects=list(projects.keys()))

        config["default"] = name
        self._write_config(config)

    def get_project(self, name: str) -> ProjectInfo:
        """Get information about a specific project.

        Raises:
            ProjectNotFoundError: If project doesn't exist.
        """
        config = self._read_config()
        projects = config.get("projects", {})

        if name not in projects:
            raise ProjectNotFoundError(name, available_projects=list(projects.keys()))

        return self._info(name, projects[name], config.get("default"))
