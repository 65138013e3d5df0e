"""
Configuration management for multihic

This module provides configuration loading, validation, and management
for the multihic analysis pipeline.
"""

from .config import (Config, get_default_config, load_config, save_config,
                     validate_config)
from .sample_config import SampleConfig, SampleInfo

__all__ = [
    "Config",
    "load_config",
    "save_config",
    "validate_config",
    "get_default_config",
    "SampleConfig",
    "SampleInfo",
]
