"""
Sample configuration for multihic
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import pandas as pd

from ..data.models import SampleSet

logger = logging.getLogger(__name__)


@dataclass
class SampleInfo:
    """One sample: its group label and any covariates"""

    name: str
    group: Any
    covariates: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SampleConfig:
    """Configuration for sample management"""

    samples: Dict[str, SampleInfo] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, samples: Dict[str, Dict[str, Any]]) -> "SampleConfig":
        """Build from the ``samples`` section of a Config"""
        config = cls()
        for name, info in samples.items():
            info = dict(info)
            if "group" not in info:
                raise ValueError(f"Sample {name} has no group")
            group = info.pop("group")
            config.add_sample(name, group, **info)
        return config

    def add_sample(self, name: str, group: Any, **covariates) -> None:
        """Add a sample to the configuration"""
        self.samples[str(name)] = SampleInfo(
            name=str(name), group=group, covariates=covariates
        )

    def get_sample(self, name: str) -> Optional[SampleInfo]:
        return self.samples.get(name)

    def list_samples(self) -> List[str]:
        """Sample names in configuration order"""
        return list(self.samples.keys())

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        return {
            name: {"group": info.group, **info.covariates}
            for name, info in self.samples.items()
        }

    def to_sample_set(self) -> SampleSet:
        """Build the SampleSet used by the analysis functions"""
        names = self.list_samples()
        groups = [self.samples[name].group for name in names]

        covariates = None
        if any(info.covariates for info in self.samples.values()):
            covariates = pd.DataFrame(
                [self.samples[name].covariates for name in names],
                index=pd.Index(names),
            )

        return SampleSet(names=names, groups=groups, covariates=covariates)
