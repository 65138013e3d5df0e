"""
Core configuration management for multihic
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

NORMALIZATION_METHODS = ("cyclic_loess", "fastlo", "none")
DIFFERENTIAL_TESTS = ("exact", "glm")


@dataclass
class Config:
    """Main configuration class for a multihic analysis"""

    # General settings
    project_name: str = "MultiHiC_Analysis"
    resolution: Optional[int] = None
    n_threads: int = 4
    parallel: bool = False

    # Input/Output paths
    input_file: Optional[str] = None
    output_dir: Optional[str] = None

    # Sample configuration: {name: {"group": ..., <covariate>: ...}}
    samples: Dict[str, Any] = field(default_factory=dict)

    # Analysis parameters
    normalization: Dict[str, Any] = field(default_factory=dict)
    differential: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Fill in defaults for any missing analysis parameters"""
        self.normalization = {
            **self._get_default_normalization(),
            **(self.normalization or {}),
        }
        user_differential = dict(self.differential or {})
        defaults = self._get_default_differential()
        # a contrast replaces the default coefficient
        if user_differential.get("contrast") is not None and "coef" not in user_differential:
            defaults["coef"] = None
        self.differential = {**defaults, **user_differential}

    def _get_default_normalization(self) -> Dict[str, Any]:
        """Default normalization configuration"""
        return {
            "method": "cyclic_loess",
            "iterations": 3,
            "span": "auto",
            "max_pool": 0.7,
            "tolerance": None,
            "verbose": False,
        }

    def _get_default_differential(self) -> Dict[str, Any]:
        """Default differential analysis configuration"""
        return {
            "test": "exact",
            "method": "QLFTest",
            "lfc": 1.0,
            "design": "~ group",
            "coef": 1,
            "contrast": None,
            "p_adjust": "fdr",
            "max_pool": 0.7,
            "library_size": "equal",
            "fdr_threshold": 0.05,
            "logfc_threshold": 0.0,
        }


def load_config(config_file: Union[str, Path]) -> Config:
    """Load configuration from YAML or JSON file"""
    config_path = Path(config_file)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    logger.info(f"Loading configuration from {config_path}")

    with open(config_path, "r") as f:
        if config_path.suffix.lower() in [".yaml", ".yml"]:
            config_dict = yaml.safe_load(f)
        elif config_path.suffix.lower() == ".json":
            config_dict = json.load(f)
        else:
            raise ConfigurationError(
                f"Unsupported config file format: {config_path.suffix}"
            )

    config_dict = config_dict or {}
    unknown = set(config_dict) - set(Config.__dataclass_fields__)
    if unknown:
        raise ConfigurationError(f"Unknown configuration keys: {sorted(unknown)}")

    return Config(**config_dict)


def save_config(config: Config, output_file: Union[str, Path]) -> None:
    """Save configuration to a YAML (or JSON, by suffix) file"""
    output_path = Path(output_file)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    config_dict = asdict(config)

    with open(output_path, "w") as f:
        if output_path.suffix.lower() == ".json":
            json.dump(config_dict, f, indent=2)
        else:
            yaml.dump(config_dict, f, default_flow_style=False, indent=2, sort_keys=False)

    logger.info(f"Configuration saved to {output_path}")


def validate_config(config: Config) -> List[str]:
    """Validate configuration and return list of issues"""
    from ..differential.models import TEST_METHODS
    from ..differential.results import P_ADJUST_METHODS
    from ..utils.validation import validate_span

    issues = []

    # Check required paths exist
    if config.input_file and not Path(config.input_file).exists():
        issues.append(f"Input file does not exist: {config.input_file}")

    if config.output_dir:
        try:
            Path(config.output_dir).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            issues.append(f"Cannot create output directory {config.output_dir}: {e}")

    if config.resolution is not None and config.resolution <= 0:
        issues.append("Resolution must be positive")

    if config.n_threads <= 0:
        issues.append("Number of threads must be positive")

    # Samples
    if len(config.samples) < 2:
        issues.append("At least two samples must be specified")
    for name, info in config.samples.items():
        if not isinstance(info, dict) or "group" not in info:
            issues.append(f"Sample {name} has no group")

    # Normalization
    norm = config.normalization
    if norm.get("method") not in NORMALIZATION_METHODS:
        issues.append(
            f"normalization.method must be one of {NORMALIZATION_METHODS}"
        )
    iterations = norm.get("iterations")
    if not isinstance(iterations, int) or isinstance(iterations, bool) or iterations < 1:
        issues.append("normalization.iterations must be a positive integer")
    try:
        validate_span(norm.get("span"))
    except ConfigurationError as e:
        issues.append(f"normalization.span: {e}")
    for section, params in (("normalization", norm), ("differential", config.differential)):
        max_pool = params.get("max_pool")
        if not isinstance(max_pool, (int, float)) or not 0 < max_pool <= 1:
            issues.append(f"{section}.max_pool must be in (0, 1]")

    # Differential analysis
    diff = config.differential
    if diff.get("test") not in DIFFERENTIAL_TESTS:
        issues.append(f"differential.test must be one of {DIFFERENTIAL_TESTS}")
    if diff.get("method") not in TEST_METHODS:
        issues.append(f"differential.method must be one of {TEST_METHODS}")
    if diff.get("p_adjust") not in P_ADJUST_METHODS:
        issues.append(
            f"differential.p_adjust must be one of {sorted(P_ADJUST_METHODS)}"
        )
    if diff.get("library_size") not in ("equal", "pool"):
        issues.append("differential.library_size must be 'equal' or 'pool'")
    if diff.get("test") == "glm" and (diff.get("coef") is None) == (diff.get("contrast") is None):
        issues.append("differential: give exactly one of coef and contrast")
    if diff.get("test") == "exact":
        groups = {
            str(info.get("group")) for info in config.samples.values() if isinstance(info, dict)
        }
        if config.samples and len(groups) != 2:
            issues.append(
                f"The exact test needs exactly 2 groups, found {len(groups)}"
            )

    return issues


def get_default_config() -> Config:
    """Get default configuration object"""
    return Config()
