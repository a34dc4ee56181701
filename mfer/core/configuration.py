"""
Configuration management for mfer.

This module handles loading, validation and saving of the YAML configuration
file that lists micro frontend groups and internal libraries. The loaded
MferConfig is passed explicitly to the commands; nothing here keeps global
state.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigurationError
from ..utils.file_management import FileManager

logger = logging.getLogger(__name__)

CONFIG_ENV = "MFER_CONFIG"
DEFAULT_CONFIG_PATH = Path.home() / ".mfer" / "config.yaml"

EDIT_WARNING = "# This file is whitespace sensitive. Tabs are two spaces, and file must be valid YAML."


class MferConfig(BaseModel):
    """Validated contents of config.yaml."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    mfe_directory: str = Field(validation_alias=AliasChoices("mfe_directory", "base_directory"))
    groups: Dict[str, Any] = Field(default_factory=dict)
    base_github_url: Optional[str] = None
    lib_directory: Optional[str] = None
    libs: Optional[List[str]] = None

    @field_validator("mfe_directory", "lib_directory")
    @classmethod
    def expand_dir(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return os.path.expanduser(str(v))

    @field_validator("groups", mode="before")
    @classmethod
    def groups_mapping(cls, v):
        if v is None:
            return {}
        if not isinstance(v, dict):
            raise ValueError("groups must be a mapping of group name to a list of repositories")
        # malformed or empty groups survive loading; resolving them is an error later
        return {str(k): items for k, items in v.items()}

    @field_validator("base_github_url")
    @classmethod
    def strip_url(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return v.rstrip("/") or None

    @property
    def base_directory(self) -> str:
        return self.mfe_directory

    @property
    def has_libraries(self) -> bool:
        return bool(self.lib_directory) and self.libs is not None

    def to_yaml(self) -> str:
        data = self.model_dump(exclude_none=True)
        return yaml.safe_dump(data, sort_keys=False, default_flow_style=False)


def template_config() -> MferConfig:
    return MferConfig(
        mfe_directory="path/to/folder/containing/microfrontends",
        groups={
            "all": ["repo_name_1", "repo_name_2", "repo_name_3"],
            "customGroup1": ["repo_name_2", "repo_name_3"],
        },
    )


def default_config_path() -> Path:
    env = os.environ.get(CONFIG_ENV)
    if env:
        return Path(env).expanduser()
    return DEFAULT_CONFIG_PATH


class ConfigurationLoader:
    """Load and save mfer configuration files."""

    def __init__(self, config_file: Optional[Path] = None):
        self.config_file = Path(config_file) if config_file else default_config_path()

    def exists(self) -> bool:
        return self.config_file.exists()

    def load(self) -> MferConfig:
        """
        Load and validate the configuration file.

        Returns:
            MferConfig

        Raises:
            ConfigurationError: file missing, unreadable, not YAML, or invalid schema
        """
        if not self.config_file.exists():
            raise ConfigurationError(
                "No configuration file detected",
                hint="Please run 'mfer init' to create one",
            )
        try:
            raw = yaml.safe_load(self.config_file.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {self.config_file}: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Cannot read {self.config_file}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigurationError(f"Configuration in {self.config_file} must be a mapping")
        try:
            config = MferConfig.model_validate(raw)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration in {self.config_file}: {e}") from e
        logger.debug("Loaded configuration from %s (%d groups)", self.config_file, len(config.groups))
        return config

    def save(self, config: MferConfig) -> Path:
        FileManager.ensure_directory(self.config_file.parent)
        self.config_file.write_text(config.to_yaml(), encoding="utf-8")
        logger.info("Saved configuration to %s", self.config_file)
        return self.config_file
