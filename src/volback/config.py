"""Configuration models and loading with Pydantic validation.

Settings come from a YAML file, from CLI flags / environment variables, or
both (flags win). YAML values may reference the environment:

- ``${VAR}`` is replaced with VAR (error if unset)
- ``${VAR:-default}`` falls back to ``default`` when VAR is unset or empty
- ``$$`` is a literal ``$``
"""

import json
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .exceptions import ConfigurationError
from .retention import RetentionPolicy
from .upload import MIB


class ContainerConfig(BaseModel):
    """One container to back up."""

    container: str = Field(..., min_length=1, description="Container name or id")
    backup_id: Optional[str] = Field(None, description="Remote folder name (default: container)")
    stop: bool = Field(False, description="Stop the container while archiving")
    depends_on: List[str] = Field(default_factory=list, description="Containers to back up first")

    @model_validator(mode="after")
    def default_backup_id(self) -> "ContainerConfig":
        if not self.backup_id:
            self.backup_id = self.container
        return self


class DropboxConfig(BaseModel):
    """Dropbox app credentials."""

    refresh_token: str = Field(..., min_length=1)
    client_id: str = Field(..., min_length=1)
    client_secret: str = Field(..., min_length=1)


class RetentionConfig(BaseModel):
    """Retention counts per tier; all zero disables pruning."""

    keep_daily: int = Field(0, ge=0)
    keep_weekly: int = Field(0, ge=0)
    keep_monthly: int = Field(0, ge=0)
    keep_yearly: int = Field(0, ge=0)

    def to_policy(self) -> RetentionPolicy:
        return RetentionPolicy(
            keep_daily=self.keep_daily,
            keep_weekly=self.keep_weekly,
            keep_monthly=self.keep_monthly,
            keep_yearly=self.keep_yearly,
        )


class VolbackConfig(BaseModel):
    """Root configuration model."""

    containers: List[ContainerConfig] = Field(..., min_length=1)
    dropbox: Optional[DropboxConfig] = None
    local_path: Optional[str] = Field(None, description="Local directory used instead of Dropbox")
    destination_path: str = Field("/", description="Remote path prefix")
    retention: RetentionConfig = Field(default_factory=RetentionConfig)
    chunk_size_mb: int = Field(150, gt=0)
    temp_root: str = "/tmp"
    fail_on_retention_error: bool = False

    @field_validator("containers")
    @classmethod
    def validate_unique_containers(cls, v: List[ContainerConfig]) -> List[ContainerConfig]:
        names = [c.container for c in v]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"containers configured more than once: {duplicates}")
        return v

    @model_validator(mode="after")
    def validate_storage(self) -> "VolbackConfig":
        if self.dropbox is None and not self.local_path:
            raise ValueError("either dropbox credentials or local_path is required")
        if self.dropbox is not None and self.local_path:
            raise ValueError("dropbox and local_path are mutually exclusive")
        return self

    @property
    def chunk_size(self) -> int:
        return self.chunk_size_mb * MIB


def parse_containers_json(raw: str) -> List[Dict[str, Any]]:
    """Parse the CONTAINERS JSON array.

    Raises:
        ConfigurationError: If the value is not a JSON array
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Failed to parse container configurations: {e}") from e
    if not isinstance(data, list):
        raise ConfigurationError("Container configurations must be a JSON array")
    return data


class ConfigLoader:
    """Load and validate volback configuration."""

    def _substitute_env_vars(self, value: Any) -> Any:
        """Recursively substitute environment variables in configuration values.

        Raises:
            ConfigurationError: If a required environment variable is not set
        """
        if isinstance(value, str):
            result = value.replace("$$", "\x00")

            def replace_var(match: re.Match) -> str:
                expression = match.group(1)
                if ":-" in expression:
                    var_name, default_value = expression.split(":-", 1)
                    env_value = os.environ.get(var_name)
                    if env_value is None or env_value == "":
                        return default_value
                    return env_value

                env_value = os.environ.get(expression)
                if env_value is None:
                    raise ConfigurationError(
                        f"Required environment variable '{expression}' is not set"
                    )
                return env_value

            result = re.sub(r"\$\{([^}]+)\}", replace_var, result)
            return result.replace("\x00", "$")

        elif isinstance(value, dict):
            return {k: self._substitute_env_vars(v) for k, v in value.items()}

        elif isinstance(value, list):
            return [self._substitute_env_vars(item) for item in value]

        return value

    def validate(self, data: Dict[str, Any]) -> VolbackConfig:
        try:
            return VolbackConfig(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed: {e}") from e

    def load_raw(self, file_path: str) -> Dict[str, Any]:
        """Read a YAML file and substitute environment variables, without validating.

        Raises:
            FileNotFoundError: If the file does not exist
            ConfigurationError: If the YAML is invalid or not a mapping
        """
        config_path = Path(file_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {file_path}")

        try:
            with open(config_path, "r") as f:
                raw_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {file_path}: {e}") from e

        if not isinstance(raw_config, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {file_path}")

        substituted: Dict[str, Any] = self._substitute_env_vars(raw_config)
        return substituted

    def load_from_file(self, file_path: str) -> VolbackConfig:
        """Load and validate a YAML configuration file."""
        return self.validate(self.load_raw(file_path))

    def from_values(
        self,
        base: Optional[Dict[str, Any]] = None,
        containers_json: Optional[str] = None,
        refresh_token: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        destination_path: Optional[str] = None,
        local_path: Optional[str] = None,
        keep_daily: Optional[int] = None,
        keep_weekly: Optional[int] = None,
        keep_monthly: Optional[int] = None,
        keep_yearly: Optional[int] = None,
        chunk_size_mb: Optional[int] = None,
    ) -> VolbackConfig:
        """Overlay flag / environment values on ``base`` and validate.

        ``None`` means "not given" and leaves the base value in place.
        """
        data: Dict[str, Any] = dict(base or {})

        if containers_json:
            data["containers"] = parse_containers_json(containers_json)

        credentials = {
            key: value
            for key, value in (
                ("refresh_token", refresh_token),
                ("client_id", client_id),
                ("client_secret", client_secret),
            )
            if value
        }
        if credentials:
            data["dropbox"] = {**(data.get("dropbox") or {}), **credentials}

        if destination_path:
            data["destination_path"] = destination_path
        if local_path:
            data["local_path"] = local_path
        if chunk_size_mb is not None:
            data["chunk_size_mb"] = chunk_size_mb

        retention = dict(data.get("retention") or {})
        for key, value in (
            ("keep_daily", keep_daily),
            ("keep_weekly", keep_weekly),
            ("keep_monthly", keep_monthly),
            ("keep_yearly", keep_yearly),
        ):
            if value is not None:
                retention[key] = value
        data["retention"] = retention

        return self.validate(data)
