import numpy as np
import pytest

from column_pool import ColumnPool, sorted_membership


def test_membership_is_sorted_by_insertion():
    assert sorted_membership([7, 0, 12, 3]) == (0, 3, 7, 12)


def test_membership_rejects_duplicates():
    with pytest.raises(ValueError, match='Duplicate constraint id 3'):
        sorted_membership([3, 1, 3])


def test_pool_assigns_sequence_numbers_per_flow():
    pool = ColumnPool(n_flows=2)
    a = pool.add(0, 10.0, [0, 4], np.array([1, 0, 0]), [0])
    b = pool.add(1, 12.0, [1, 4], np.array([1, 0, 0]), [0])
    c = pool.add(0, 8.0, [5, 0], np.array([0, 1, 1]), [1], {1: [0]})

    assert [a.key, b.key, c.key] == [(0, 0), (1, 0), (0, 1)]
    assert c.membership == (0, 5)
    assert c.wavelengths == {1: (0,)}
    assert pool.n_flow_columns == {0: 2, 1: 1}
    assert len(pool) == 3 and pool[1] is b
    assert pool.get((0, 1)) is c
    assert pool.position(c) == 2
    assert pool.columns_of(0) == [a, c]
    assert pool.columns_of(0, start=1) == [c]
    assert c.name == 'lmbda[0,1]'


def test_column_incidence_is_read_only():
    pool = ColumnPool(n_flows=1)
    column = pool.add(0, 1.0, [0], [0, 1, 0], [1])
    assert column.incidence.dtype == np.int8
    assert column.bit(1) == 1
    with pytest.raises(ValueError):
        column.incidence[0] = 1


def test_iteration_uses_a_snapshot():
    pool = ColumnPool(n_flows=1)
    pool.add(0, 1.0, [0], [1], [0])
    seen = []
    for column in pool:
        seen.append(column.key)
        if len(pool) < 3:
            pool.add(0, 1.0, [0], [1], [0])
    assert seen == [(0, 0)]
    assert pool.size == 2
