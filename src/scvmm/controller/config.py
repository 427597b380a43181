"""Configuration loading for the controller agent."""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from pydantic import ValidationError
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from scvmm.models.config import ControllerConfig


logger = logging.getLogger(__name__)

CONFIG_FILE = "config.yaml"

_TRUE_VALUES = ("1", "true", "yes", "on")


class ConfigManager:
    """Loads ``config.yaml`` and applies environment overrides."""

    def __init__(self, config_dir: Path, environ: Optional[Mapping[str, str]] = None):
        self.config_dir = Path(config_dir)
        self.environ = os.environ if environ is None else environ
        self.yaml = YAML()
        self.yaml.preserve_quotes = True
        self.config: Optional[ControllerConfig] = None

    @property
    def config_file(self) -> Path:
        return self.config_dir / CONFIG_FILE

    def _read_yaml(self, file_path: Path) -> Dict[str, Any]:
        data = self.yaml.load(file_path.read_text())
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValueError(f"{file_path} must contain a mapping")
        return data

    def load(self) -> ControllerConfig:
        """Load the configuration; a missing file means defaults."""
        data: Dict[str, Any] = {}
        if self.config_file.exists():
            logger.info(f"Loading configuration from {self.config_file}")
            try:
                data = self._read_yaml(self.config_file)
            except (OSError, YAMLError) as e:
                logger.error(f"Error reading {self.config_file}: {e}")
                raise
        else:
            logger.info(f"No {CONFIG_FILE} in {self.config_dir}, using defaults")

        try:
            config = ControllerConfig(**data)
        except ValidationError as e:
            logger.error(f"Invalid main config: {e}")
            raise

        script_dir = self.environ.get("SCRIPT_DIR")
        if script_dir:
            config.agent.script_dir = script_dir
        extra_debug = self.environ.get("EXTRA_DEBUG")
        if extra_debug:
            config.agent.extra_debug = extra_debug.lower() in _TRUE_VALUES

        self.config = config
        return config
