import numpy as np
import pytest

from multihic.exceptions import ConfigurationError
from multihic.normalization.pooling import (assign_pools, pool_units,
                                            progressive_pools, split_pools)


def test_progressive_pool_boundaries():
    distances = np.arange(21)
    pools = assign_pools(distances, max_pool=0.7)
    expected = [0] + [1] * 2 + [2] * 3 + [3] * 4 + [4] * 5 + [5] * 6
    np.testing.assert_array_equal(pools, expected)


def test_pools_follow_distance_order_for_unsorted_input():
    distances = np.array([9, 0, 4, 4, 15, 1])
    pools = assign_pools(distances, max_pool=0.5)
    order = np.argsort(distances, kind="stable")
    assert np.all(np.diff(pools[order]) >= 0)
    assert pools[1] == 0


def test_pool_ids_are_contiguous_when_pools_are_empty():
    distances = np.array([0, 0, 6, 7, 20])
    pools = assign_pools(distances, max_pool=0.7)
    assert sorted(np.unique(pools)) == list(range(len(np.unique(pools))))


def test_two_distances_give_two_pools():
    pools = assign_pools([0, 1, 0, 1], max_pool=0.7)
    np.testing.assert_array_equal(pools, [0, 1, 0, 1])


def test_single_distance_is_one_pool():
    np.testing.assert_array_equal(assign_pools([3, 3, 3]), [0, 0, 0])
    assert assign_pools([]).size == 0


def test_full_pooling_fraction_has_no_terminal_pool():
    distances = np.arange(10)
    pools = assign_pools(distances, max_pool=1.0)
    # 0 | 1-2 | 3-5 | 6-9
    np.testing.assert_array_equal(pools, [0, 1, 1, 2, 2, 2, 3, 3, 3, 3])


@pytest.mark.parametrize("max_pool", [0, -0.1, 1.5])
def test_invalid_max_pool(max_pool):
    with pytest.raises(ConfigurationError):
        assign_pools([0, 1, 2], max_pool=max_pool)


def test_progressive_pools_mapping():
    mapping = progressive_pools([0, 1, 2, 3, 2, 1])
    assert mapping[0.0] == 0
    assert mapping[1.0] == mapping[2.0]


def test_split_pools_keeps_every_record(contact_table):
    frame = contact_table(chromosomes=("chr1",)).frame
    parts = split_pools(frame)
    assert sum(len(part) for part in parts.values()) == len(frame)
    assert list(parts) == sorted(parts)


def test_pool_units_keys(contact_table):
    table = contact_table(chromosomes=("chr2", "chr1"))
    units = pool_units(table)
    chromosomes = [key.split(":")[0] for key in units]
    assert chromosomes == sorted(chromosomes)
    assert all(key.split(":")[1].startswith("pool") for key in units)
    assert sum(len(unit) for unit in units.values()) == len(table)
