from __future__ import annotations
from dataclasses import dataclass
import logging
import yaml
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class PortConfig:
    """modelport configuration: conversion, inference and reporting settings."""
    # Conversion
    model: str = ""
    output_dir: str = "out"
    artifact_suffix: str = ".mpk"

    # Config file
    config_file: str = ""

    # Inference
    vocabulary: str = ""
    input_layout: str = "NCHW"  # NCHW (channels first) or NHWC
    pixel_scale: float = 255.0
    top_k: int = 1

    # Reporting
    report_dir: str = ""
    log_level: str = "INFO"

    def __post_init__(self):
        if self.artifact_suffix and not self.artifact_suffix.startswith("."):
            self.artifact_suffix = "." + self.artifact_suffix
        if self.input_layout not in ("NCHW", "NHWC"):
            raise ValueError(f"input_layout must be NCHW or NHWC, got '{self.input_layout}'")
        if self.top_k < 1:
            raise ValueError(f"top_k must be positive, got {self.top_k}")

    def artifact_name(self, source: str) -> str:
        """Artifact file name derived from a source model path."""
        return Path(source).stem + self.artifact_suffix

    def update_from_yaml(self, yaml_path: str):
        """Updates config fields from a YAML file."""
        with open(yaml_path, 'r') as f:
            yaml_config = yaml.safe_load(f) or {}
        for key, value in yaml_config.items():
            if hasattr(self, key):
                setattr(self, key, value)
            else:
                logger.warning("Ignoring unknown config key '%s' in %s", key, yaml_path)

    @classmethod
    def from_args(cls, args) -> PortConfig:
        """Factory method to create a PortConfig from parsed argparse arguments."""
        config = cls()

        # 1. Load from YAML config file if provided
        if hasattr(args, 'config') and args.config:
            config.config_file = args.config
            if Path(config.config_file).exists():
                config.update_from_yaml(config.config_file)
            else:
                logger.warning("Config file %s not found.", config.config_file)

        # 2. Override with command-line arguments
        arg_dict = vars(args)
        for key, value in arg_dict.items():
            if value is not None and hasattr(config, key) and key != "config_file":
                setattr(config, key, value)

        config.__post_init__()
        return config
