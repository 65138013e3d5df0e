"""
Assembly, multiple-testing correction and summaries of comparison results
"""

import logging
from typing import Any, Dict, Mapping

import numpy as np
import pandas as pd
from statsmodels.stats.multitest import multipletests

from ..data.models import RESULT_COLUMNS
from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# p.adjust style names -> statsmodels methods
P_ADJUST_METHODS = {
    "holm": "holm",
    "hochberg": "simes-hochberg",
    "hommel": "hommel",
    "bonferroni": "bonferroni",
    "BH": "fdr_bh",
    "fdr": "fdr_bh",
    "BY": "fdr_by",
    "none": None,
}


def check_p_adjust(method: str) -> str:
    if method not in P_ADJUST_METHODS:
        raise ConfigurationError(
            f"Unknown p-value adjustment method {method!r}; "
            f"choose one of {sorted(P_ADJUST_METHODS)}"
        )
    return method


def adjust_pvalues(p_values, method: str = "fdr") -> np.ndarray:
    """
    Adjust p-values for multiple testing

    Args:
        p_values: Raw p-values (NaN entries are left as NaN)
        method: ``holm``, ``hochberg``, ``hommel``, ``bonferroni``, ``BH``,
            ``fdr``, ``BY`` or ``none``

    Returns:
        Adjusted p-values aligned with the input
    """
    check_p_adjust(method)
    p_values = np.asarray(p_values, dtype=float)
    adjusted = p_values.copy()

    statsmodels_method = P_ADJUST_METHODS[method]
    valid = np.isfinite(p_values)
    if statsmodels_method is None or not valid.any():
        return adjusted

    _, corrected, _, _ = multipletests(p_values[valid], method=statsmodels_method)
    adjusted[valid] = corrected
    return adjusted


def assemble_results(unit_outputs: Mapping[str, pd.DataFrame], p_adjust: str = "fdr") -> pd.DataFrame:
    """
    Join per-unit test output into one comparison table

    Each unit frame carries ``chr, region1, region2, D, logFC, logCPM,
    p_value`` with ``logFC`` on the natural log scale. The correction is
    applied once over all units.

    Returns:
        DataFrame with the comparison result columns, sorted by chromosome
        and regions
    """
    check_p_adjust(p_adjust)

    frames = [unit_outputs[key] for key in sorted(unit_outputs)]
    if not frames:
        return pd.DataFrame(columns=RESULT_COLUMNS)

    combined = pd.concat(frames, ignore_index=True)
    result = pd.DataFrame(
        {
            "chromosome": combined["chr"].astype(str).to_numpy(),
            "region1": combined["region1"].to_numpy(),
            "region2": combined["region2"].to_numpy(),
            "distance": combined["D"].to_numpy(),
            "logFC": combined["logFC"].to_numpy(dtype=float) / np.log(2),
            "logCPM": combined["logCPM"].to_numpy(dtype=float),
            "p_value": combined["p_value"].to_numpy(dtype=float),
        }
    )
    result = result.sort_values(
        ["chromosome", "region1", "region2"], kind="mergesort"
    ).reset_index(drop=True)
    result["p_adjusted"] = adjust_pvalues(result["p_value"].to_numpy(), p_adjust)

    return result[RESULT_COLUMNS]


def classify_results(
    frame: pd.DataFrame, fdr_threshold: float = 0.05, logfc_threshold: float = 0.0
) -> pd.Series:
    """Label every interaction as up, down or not significant"""
    significant = frame["p_adjusted"] <= fdr_threshold
    labels = pd.Series("Not Significant", index=frame.index)
    labels[significant & (frame["logFC"] > logfc_threshold)] = "Up"
    labels[significant & (frame["logFC"] < -logfc_threshold)] = "Down"
    return labels


def summarize_results(
    frame: pd.DataFrame, fdr_threshold: float = 0.05, logfc_threshold: float = 0.0
) -> Dict[str, Any]:
    """Calculate summary statistics of a comparison table"""
    labels = classify_results(frame, fdr_threshold, logfc_threshold)

    stats = {
        "n_tested": len(frame),
        "n_up": int((labels == "Up").sum()),
        "n_down": int((labels == "Down").sum()),
        "min_p_adjusted": float(frame["p_adjusted"].min()) if len(frame) > 0 else None,
        "max_abs_logfc": (
            float(np.abs(frame["logFC"]).max()) if len(frame) > 0 else None
        ),
        "n_chromosomes": int(frame["chromosome"].nunique()),
        "fdr_threshold": fdr_threshold,
        "logfc_threshold": logfc_threshold,
    }

    stats["n_significant"] = int((frame["p_adjusted"] <= fdr_threshold).sum())

    return stats
