"""
Shared fixtures for the multihic test suite
"""

import numpy as np
import pandas as pd
import pytest

from multihic.data.models import InteractionTable, NormalizationState, SampleSet


@pytest.fixture
def rng():
    return np.random.default_rng(20240611)


def _frame(chrom, region1, region2, distance, values):
    frame = pd.DataFrame(
        {"chr": chrom, "region1": region1, "region2": region2, "D": distance}
    )
    for name, column in values.items():
        frame[name] = column
    return frame


@pytest.fixture
def contact_table(rng):
    """
    Factory for upper-triangular contact tables

    Every chromosome gets ``n_bins`` bins and all records with a distance
    below ``max_distance``. Counts decay with distance; ``scales`` multiplies
    the mean of each sample.
    """

    def build(
        chromosomes=("chr1", "chr2"),
        n_bins=25,
        max_distance=8,
        scales=(1.0, 1.0, 1.0, 1.0),
        names=None,
        resolution=10000,
    ):
        names = names or [f"S{i + 1}" for i in range(len(scales))]
        frames = []
        for chrom in chromosomes:
            region1, region2, distance = [], [], []
            for start in range(n_bins):
                for d in range(max_distance):
                    if start + d >= n_bins:
                        break
                    region1.append(start * resolution)
                    region2.append((start + d) * resolution)
                    distance.append(d)
            distance = np.asarray(distance)
            base = 400.0 / (1 + distance) ** 1.2
            values = {
                name: rng.poisson(base * scale).astype(float)
                for name, scale in zip(names, scales)
            }
            frames.append(_frame(chrom, region1, region2, distance, values))
        return InteractionTable.from_frame(pd.concat(frames, ignore_index=True))

    return build


@pytest.fixture
def two_pool_table(rng):
    """
    Normalized table with one chromosome and two distance pools

    Distance 0 holds 50 records where group B has twice the mean of group A;
    distance 1 holds 50 records with equal means.
    """
    n = 50
    lam = rng.uniform(100, 300, size=n)
    starts = np.arange(n) * 1000

    near = _frame(
        "chr1",
        starts,
        starts,
        0,
        {
            "A1": rng.poisson(lam),
            "A2": rng.poisson(lam),
            "B1": rng.poisson(2 * lam),
            "B2": rng.poisson(2 * lam),
        },
    )
    far = _frame(
        "chr1",
        starts,
        starts + 1000,
        1,
        {name: rng.poisson(lam) for name in ["A1", "A2", "B1", "B2"]},
    )
    frame = pd.concat([near, far], ignore_index=True).astype(
        {name: float for name in ["A1", "A2", "B1", "B2"]}
    )
    return InteractionTable.from_frame(frame, state=NormalizationState.NORMALIZED)


@pytest.fixture
def two_groups():
    return SampleSet(names=["A1", "A2", "B1", "B2"], groups=["A", "A", "B", "B"])
