"""
Reading and writing of interaction tables and sample sheets
"""

import logging
from pathlib import Path
from typing import Optional, Sequence, Union

import pandas as pd

from ..data.models import InteractionTable, NormalizationState, SampleSet
from .validation import validate_file_exists

logger = logging.getLogger(__name__)


def _separator(path: Path) -> str:
    return "," if path.suffix.lower() == ".csv" else "\t"


def standardize_chromosomes(
    frame: pd.DataFrame, column: str = "chr", add_prefix: bool = True
) -> pd.DataFrame:
    """Make chromosome names consistently carry (or drop) the 'chr' prefix"""
    frame = frame.copy()
    names = frame[column].astype(str).str.replace(r"^chr", "", regex=True)
    frame[column] = "chr" + names if add_prefix else names
    return frame


def load_hic_table(
    file_path: Union[str, Path],
    samples: Optional[Sequence[str]] = None,
    resolution: Optional[int] = None,
    normalized: bool = False,
) -> InteractionTable:
    """
    Load an interaction table from a delimited text file

    The file must hold ``chr, region1, region2`` (``D`` optional) followed by
    one interaction frequency column per sample. Tab-separated unless the
    file ends in ``.csv``.
    """
    path = Path(file_path)
    if not validate_file_exists(path, "Interaction table"):
        raise FileNotFoundError(f"Interaction table not found: {path}")

    frame = pd.read_csv(path, sep=_separator(path))
    logger.info(f"Loaded {len(frame)} records from {path}")

    state = NormalizationState.NORMALIZED if normalized else NormalizationState.RAW
    return InteractionTable.from_frame(
        frame, samples=samples, state=state, resolution=resolution
    )


def save_table(frame: pd.DataFrame, file_path: Union[str, Path]) -> Path:
    """Write a table as delimited text, creating parent directories"""
    path = Path(file_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    frame.to_csv(path, sep=_separator(path), index=False)
    logger.info(f"Saved {len(frame)} rows to {path}")
    return path


def load_sample_sheet(
    file_path: Union[str, Path], group_column: str = "group"
) -> SampleSet:
    """
    Load samples from a sheet with a ``sample`` column, a group column and
    optional covariate columns
    """
    path = Path(file_path)
    if not validate_file_exists(path, "Sample sheet"):
        raise FileNotFoundError(f"Sample sheet not found: {path}")
    sheet = pd.read_csv(path, sep=_separator(path))

    for column in ["sample", group_column]:
        if column not in sheet.columns:
            raise ValueError(f"Sample sheet {path} has no '{column}' column")

    covariate_columns = [
        col for col in sheet.columns if col not in ("sample", group_column)
    ]
    covariates = None
    if covariate_columns:
        covariates = sheet.set_index("sample")[covariate_columns]

    return SampleSet(
        names=sheet["sample"].tolist(),
        groups=sheet[group_column].tolist(),
        covariates=covariates,
    )
