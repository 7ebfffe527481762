"""Configuration management for Seen Store."""

import json
import logging
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

CONFIG_DIR_NAME = ".seen-store"
CONFIG_FILE_NAME = "config.json"


class StoreConfig(BaseModel):
    """Main configuration for a seen store."""

    storage_dir: Path = Field(
        default=Path(CONFIG_DIR_NAME) / "records",
        description="Directory holding index and chunk records",
    )
    backend: Literal["filesystem", "memory"] = Field(
        default="filesystem", description="Record backend provider"
    )
    chunk_size: int = Field(
        default=5000, description="Maximum number of identifiers per chunk record"
    )
    max_import_ids: int = Field(
        default=5_000_000,
        description="Maximum number of identifiers accepted in one import payload",
    )
    record_format: Literal["json", "msgpack"] = Field(
        default="json", description="On-disk encoding for filesystem records"
    )
    temp_file_max_age: int = Field(
        default=3600,
        description="Age in seconds after which leftover .tmp files are swept",
    )

    @field_validator("storage_dir", mode="before")
    @classmethod
    def convert_path(cls, v: Any) -> Path:
        """Convert string paths to Path objects."""
        if isinstance(v, str):
            return Path(v)
        if isinstance(v, Path):
            return v
        raise ValueError(f"Expected str or Path, got {type(v)}")

    @field_validator("chunk_size", "max_import_ids")
    @classmethod
    def require_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"Expected a positive integer, got {v}")
        return v


class ConfigManager:
    """Manages configuration loading, saving, and validation."""

    DEFAULT_CONFIG_PATH = Path(CONFIG_DIR_NAME) / CONFIG_FILE_NAME

    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = Path(config_path or self.DEFAULT_CONFIG_PATH)
        self._config: Optional[StoreConfig] = None

    @property
    def project_root(self) -> Path:
        """Directory containing the .seen-store/ folder."""
        return self.config_path.parent.parent

    def load(self) -> StoreConfig:
        """Load configuration from file or fall back to defaults."""
        if self.config_path.exists():
            try:
                with open(self.config_path, "r") as f:
                    data = json.load(f)

                if "storage_dir" in data:
                    data["storage_dir"] = str(
                        self._resolve_relative_path(data["storage_dir"])
                    )

                self._config = StoreConfig(**data)
            except Exception as e:
                raise ValueError(f"Failed to load config from {self.config_path}: {e}")
        else:
            self._config = StoreConfig(
                storage_dir=self._resolve_relative_path(
                    str(StoreConfig().storage_dir)
                )
            )

        return self._config

    def save(self, config: Optional[StoreConfig] = None) -> None:
        """Save configuration to file with storage_dir relative to the project root."""
        if config is None:
            config = self._config

        if config is None:
            raise ValueError("No configuration to save")

        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        config_dict = config.model_dump()
        config_dict["storage_dir"] = self._make_relative_to_config(config.storage_dir)

        with open(self.config_path, "w") as f:
            json.dump(config_dict, f, indent=2)

        self._config = config

    def get_config(self) -> StoreConfig:
        """Get current configuration, loading if necessary."""
        if self._config is None:
            self.load()
        if self._config is None:
            raise RuntimeError("Failed to load configuration")
        return self._config

    def create_default_config(self) -> StoreConfig:
        """Create and persist a default configuration."""
        config = StoreConfig(
            storage_dir=self._resolve_relative_path(str(StoreConfig().storage_dir))
        )
        self.save(config)
        return config

    def update_config(self, **kwargs: Any) -> StoreConfig:
        """Update configuration with new values."""
        config = self.get_config()

        config_dict = config.model_dump()
        config_dict.update(kwargs)

        new_config = StoreConfig(**config_dict)
        self.save(new_config)
        return new_config

    @staticmethod
    def find_config_path(start_dir: Optional[Path] = None) -> Optional[Path]:
        """Find .seen-store/config.json by walking up the directory tree.

        Args:
            start_dir: Directory to start searching from (default: current directory)

        Returns:
            Path to config.json if found, None otherwise
        """
        current = start_dir or Path.cwd()

        for path in [current] + list(current.parents):
            config_path = path / CONFIG_DIR_NAME / CONFIG_FILE_NAME
            if config_path.exists():
                return config_path

        return None

    @classmethod
    def create_with_backtrack(cls, start_dir: Optional[Path] = None) -> "ConfigManager":
        """Create ConfigManager by finding config through directory backtracking.

        Falls back to ``<start_dir>/.seen-store/config.json`` when no config
        exists anywhere above the start directory.
        """
        config_path = cls.find_config_path(start_dir)
        if config_path is None:
            start = start_dir or Path.cwd()
            config_path = start / CONFIG_DIR_NAME / CONFIG_FILE_NAME
        return cls(config_path)

    def _make_relative_to_config(self, path: Path) -> str:
        """Convert an absolute path to a path relative to the project root."""
        if not path.is_absolute():
            return str(path)

        try:
            return str(path.resolve().relative_to(self.project_root.resolve()))
        except ValueError:
            # Outside the project, keep absolute
            return str(path.resolve())

    def _resolve_relative_path(self, path_str: str) -> Path:
        """Resolve a potentially relative path from config to absolute path."""
        path = Path(path_str)
        if path.is_absolute():
            return path
        return (self.project_root / path).resolve()
