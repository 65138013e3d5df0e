"""
Core data structures for interaction tables, samples and comparison results
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import patsy

from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

STATIC_COLUMNS = ["chr", "region1", "region2", "D"]

RESULT_COLUMNS = [
    "chromosome",
    "region1",
    "region2",
    "distance",
    "logFC",
    "logCPM",
    "p_value",
    "p_adjusted",
]


class NormalizationState(Enum):
    """Whether the interaction frequencies of a table have been normalized"""

    RAW = "raw"
    NORMALIZED = "normalized"


@dataclass(frozen=True)
class UnitFailure:
    """A failed unit of work (one chromosome or one chromosome/pool pair)"""

    unit: str
    error: str

    def __str__(self) -> str:
        return f"{self.unit}: {self.error}"


@dataclass
class InteractionTable:
    """
    Interaction frequencies for one or more chromosomes

    The frame holds the static columns ``chr, region1, region2, D`` followed by
    one interaction frequency column per sample. Tables are treated as
    immutable: transforms return new tables.
    """

    frame: pd.DataFrame
    state: NormalizationState = NormalizationState.RAW
    failures: Tuple[UnitFailure, ...] = ()

    @classmethod
    def from_frame(
        cls,
        frame: pd.DataFrame,
        samples: Optional[Sequence[str]] = None,
        state: NormalizationState = NormalizationState.RAW,
        resolution: Optional[int] = None,
    ) -> "InteractionTable":
        """
        Validate a raw DataFrame and build an interaction table

        Args:
            frame: DataFrame with ``chr, region1, region2`` (and optionally
                ``D``) plus one column per sample
            samples: Sample columns to keep, in order. Defaults to every
                non-static column
            state: Normalization state of the supplied frequencies
            resolution: Bin size used to derive ``D`` when it is missing

        Returns:
            InteractionTable
        """
        frame = frame.copy()

        missing = [col for col in ["chr", "region1", "region2"] if col not in frame]
        if missing:
            raise ValueError(f"Interaction table is missing columns: {missing}")

        derived = "D" not in frame.columns
        if derived:
            if resolution is None:
                resolution = infer_resolution(frame)
            frame["D"] = (frame["region2"] - frame["region1"]) // resolution

        if samples is None:
            samples = [col for col in frame.columns if col not in STATIC_COLUMNS]
        else:
            samples = list(samples)
            absent = [name for name in samples if name not in frame.columns]
            if absent:
                raise ValueError(f"Sample columns not found in table: {absent}")

        if len(samples) < 2:
            raise ValueError("An interaction table needs at least 2 sample columns")

        frame = frame[STATIC_COLUMNS + samples].copy()
        frame["chr"] = frame["chr"].astype(str)

        if (frame["region2"] < frame["region1"]).any():
            raise ValueError("Only upper-triangular records (region2 >= region1) are allowed")

        if (frame["D"] < 0).any():
            raise ValueError("Distances must be non-negative")

        if not derived:
            check_distances(frame, resolution)

        if frame.duplicated(["chr", "region1", "region2"]).any():
            raise ValueError("Records must be unique on (chr, region1, region2)")

        values = frame[samples].to_numpy(dtype=float)
        if not np.all(np.isfinite(values)):
            raise ValueError("Interaction frequencies must be finite")
        if (values < 0).any():
            raise ValueError("Interaction frequencies must be non-negative")

        frame = frame.reset_index(drop=True)

        logger.debug(
            f"Built interaction table: {len(frame)} records, {len(samples)} samples, "
            f"{frame['chr'].nunique()} chromosomes"
        )

        return cls(frame=frame, state=state)

    @property
    def samples(self) -> List[str]:
        """Sample column names in table order"""
        return [col for col in self.frame.columns if col not in STATIC_COLUMNS]

    @property
    def is_normalized(self) -> bool:
        return self.state is NormalizationState.NORMALIZED

    @property
    def chromosomes(self) -> List[str]:
        return sorted(self.frame["chr"].unique())

    def __len__(self) -> int:
        return len(self.frame)

    def if_matrix(self) -> np.ndarray:
        """Interaction frequencies as a (records x samples) float array"""
        return self.frame[self.samples].to_numpy(dtype=float)

    def split_by_chromosome(self) -> Dict[str, pd.DataFrame]:
        """Split the table into per-chromosome frames, keyed in sorted order"""
        return {
            chrom: sub.reset_index(drop=True)
            for chrom, sub in self.frame.groupby("chr", sort=True)
        }

    def sorted(self) -> "InteractionTable":
        frame = self.frame.sort_values(["chr", "region1", "region2"], kind="mergesort")
        return self.with_frame(frame.reset_index(drop=True))

    def with_frame(
        self,
        frame: pd.DataFrame,
        state: Optional[NormalizationState] = None,
        failures: Optional[Sequence[UnitFailure]] = None,
    ) -> "InteractionTable":
        """Return a new table sharing this table's metadata"""
        return InteractionTable(
            frame=frame,
            state=self.state if state is None else state,
            failures=self.failures if failures is None else tuple(failures),
        )

    def with_state(self, state: NormalizationState) -> "InteractionTable":
        return self.with_frame(self.frame.copy(), state=state)


def check_distances(frame: pd.DataFrame, resolution: Optional[int] = None) -> None:
    """
    Check that ``D`` is the region spacing in bins

    Without a resolution, the bin size is taken from the records with a
    positive distance and must be shared by every record.

    Raises:
        ValueError: If any record's ``D`` disagrees with its regions
    """
    span = (frame["region2"] - frame["region1"]).to_numpy(dtype=float)
    distance = frame["D"].to_numpy(dtype=float)

    if resolution is None:
        binned = (distance > 0) & (span > 0)
        resolution = float((span[binned] / distance[binned]).min()) if binned.any() else 1.0
    elif resolution <= 0:
        raise ValueError(f"Resolution must be positive, got {resolution}")

    mismatched = ~np.isclose(span, distance * resolution, rtol=0, atol=0.5)
    if mismatched.any():
        first = frame.loc[mismatched].iloc[0]
        raise ValueError(
            f"D does not match (region2 - region1) / {resolution:g} for "
            f"{int(mismatched.sum())} records, e.g. {first['chr']}:"
            f"{first['region1']}-{first['region2']} with D={first['D']}"
        )


def infer_resolution(frame: pd.DataFrame) -> int:
    """Smallest positive spacing between region starts, or 1"""
    starts = np.unique(
        np.concatenate([frame["region1"].to_numpy(), frame["region2"].to_numpy()])
    )
    gaps = np.diff(starts)
    gaps = gaps[gaps > 0]
    if len(gaps) == 0:
        return 1
    return int(gaps.min())


@dataclass
class SampleSet:
    """Ordered samples with group labels and optional covariates"""

    names: List[str]
    groups: List[Any]
    covariates: Optional[pd.DataFrame] = None

    def __post_init__(self):
        self.names = [str(name) for name in self.names]
        self.groups = list(self.groups)

        if len(self.names) != len(self.groups):
            raise ValueError(
                f"Got {len(self.names)} sample names but {len(self.groups)} group labels"
            )
        if len(set(self.names)) != len(self.names):
            raise ValueError("Sample names must be unique")

        if self.covariates is not None:
            covariates = self.covariates.copy()
            covariates.index = covariates.index.astype(str)
            missing = [name for name in self.names if name not in covariates.index]
            if missing:
                raise ValueError(f"Covariates missing for samples: {missing}")
            self.covariates = covariates.loc[self.names]

    @property
    def n_samples(self) -> int:
        return len(self.names)

    @property
    def levels(self) -> List[Any]:
        return list(pd.Categorical(self.groups).categories)

    @property
    def n_groups(self) -> int:
        return len(self.levels)

    @property
    def has_replicates(self) -> bool:
        """True when at least one group holds more than one sample"""
        return self.n_samples > self.n_groups

    def group_codes(self) -> np.ndarray:
        """Integer group codes following the sorted level order"""
        return np.asarray(pd.Categorical(self.groups).codes)

    def metadata(self) -> pd.DataFrame:
        meta = pd.DataFrame(
            {"group": pd.Categorical(self.groups)}, index=pd.Index(self.names)
        )
        if self.covariates is not None:
            for column in self.covariates.columns:
                if column != "group":
                    meta[column] = self.covariates[column].to_numpy()
        return meta

    def design(self, formula: str = "~ group") -> pd.DataFrame:
        """Build a design matrix from a patsy formula over the sample metadata"""
        try:
            design = patsy.dmatrix(formula, self.metadata(), return_type="dataframe")
        except patsy.PatsyError as e:
            raise ConfigurationError(f"Invalid design formula {formula!r}: {e}") from e
        design.index = pd.Index(self.names)
        return design


@dataclass
class ComparisonResult:
    """Genome-ordered table of differential test results"""

    table: pd.DataFrame
    method: str
    p_adjust_method: str
    failures: Tuple[UnitFailure, ...] = field(default_factory=tuple)

    @property
    def n_tested(self) -> int:
        return len(self.table)

    def summary(
        self, fdr_threshold: float = 0.05, logfc_threshold: float = 0.0
    ) -> Dict[str, Any]:
        from ..differential.results import summarize_results

        stats = summarize_results(self.table, fdr_threshold, logfc_threshold)
        stats["n_failed_units"] = len(self.failures)
        return stats
