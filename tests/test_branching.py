import gurobipy as gu
import numpy as np
import pytest

from branching_constraints import (ZeroOneBranching, ZERO, ONE, CUTOFF, REDUCED, DID_NOT_FIND,
                                   find_path_conflict, is_fractional, select_branching_candidate)
from column_pool import ColumnPool
from network_data import Flow, Link, Node, NetworkData


def bits(n, ones):
    incidence = np.zeros(n, dtype=np.int8)
    incidence[list(ones)] = 1
    return incidence


def add_route(context, flow, links):
    data = context.data
    incidence = bits(data.n_original_vars, [data.x_index(l) for l in links])
    membership = context.master.membership_for(flow, links, {})
    return context.master.add_column(flow, data.route_cost(flow, links), membership, incidence, links)


# ---------------------------------------------------------------------------
# Candidate selection
# ---------------------------------------------------------------------------

def test_select_first_fractional_aggregate_usage():
    pool = ColumnPool(n_flows=2)
    a = pool.add(0, 1.0, [0], bits(5, [0, 1]), [0, 1])
    b = pool.add(0, 1.0, [0], bits(5, [0, 2]), [0, 2])
    c = pool.add(1, 1.0, [1], bits(5, [0]), [0])
    d = pool.add(1, 1.0, [1], bits(5, [3]), [3])
    lambdas = {a.key: 0.5, b.key: 0.5, c.key: 0.5, d.key: 0.5}

    # variable 0 is used with total weight 1 by flow 0; variable 1 is the first split
    assert select_branching_candidate(pool, lambdas, n_flows=2) == {'flow': 0, 'var_index': 1, 'value': 0.5}


def test_integral_flows_are_skipped():
    pool = ColumnPool(n_flows=2)
    a = pool.add(0, 1.0, [0], bits(4, [0]), [0])
    b = pool.add(1, 1.0, [1], bits(4, [1, 2]), [1, 2])
    c = pool.add(1, 1.0, [1], bits(4, [1, 3]), [1, 3])
    lambdas = {a.key: 1.0, b.key: 0.25, c.key: 0.75}

    candidate = select_branching_candidate(pool, lambdas, n_flows=2)
    assert (candidate['flow'], candidate['var_index']) == (1, 2)
    assert candidate['value'] == pytest.approx(0.25)


def test_no_candidate_for_integral_solution():
    pool = ColumnPool(n_flows=1)
    a = pool.add(0, 1.0, [0], bits(3, [0]), [0])
    b = pool.add(0, 1.0, [0], bits(3, [1]), [1])
    assert select_branching_candidate(pool, {a.key: 1.0, b.key: 0.0}, n_flows=1) is None
    assert select_branching_candidate(pool, {a.key: 1.0 - 1e-9, b.key: 1e-9}, n_flows=1) is None


def test_is_fractional():
    assert is_fractional(0.5, 1e-6)
    assert not is_fractional(1.0 - 1e-8, 1e-6)
    assert not is_fractional(3.0, 1e-6)


def split_links():
    """Flow 0 (bw 200) has two cheap links of capacity 100 each; flow 1 has its own link back."""
    nodes = [Node(0, 0.0, 0.0, 0.0, False, links=[0, 1, 2]),
             Node(1, 0.0, 0.0, 0.0, False, links=[0, 1, 2])]
    links = [Link(0, 100, 1.0, 1.0, False, 0, 1),
             Link(1, 100, 2.0, 1.0, False, 0, 1),
             Link(2, 1000, 1.0, 1.0, False, 1, 0)]
    flows = [Flow(0, 0, 1, 1.0, 200, 1.0, 1.0),
             Flow(1, 1, 0, 1.0, 100, 1.0, 1.0)]
    return NetworkData('split_links', nodes, links, flows, n_wavelengths=2, wavelength_bandwidth=100)


def test_lp_split_selects_first_split_link(context_factory):
    data = split_links()
    context = context_factory(data)
    a = add_route(context, 0, [0])
    b = add_route(context, 0, [1])
    c = add_route(context, 1, [2])

    assert context.master.solRelModel() == gu.GRB.OPTIMAL
    lambdas = context.master.getLambdaValues()
    # each link fits half of flow 0; the fallback is far more expensive
    assert lambdas[a.key] == pytest.approx(0.5)
    assert lambdas[b.key] == pytest.approx(0.5)
    assert lambdas[c.key] == pytest.approx(1.0)

    candidate = select_branching_candidate(context.pool, lambdas, n_flows=data.n_flows)
    assert (candidate['flow'], candidate['var_index']) == (0, data.x_index(0))
    assert candidate['value'] == pytest.approx(0.5)


# ---------------------------------------------------------------------------
# Constraint semantics
# ---------------------------------------------------------------------------

def test_children_partition_the_columns_of_the_flow():
    pool = ColumnPool(n_flows=1)
    columns = [pool.add(0, 1.0, [0], bits(4, ones), [0]) for ones in ([0], [0, 1], [2], [1, 3])]
    zero = ZeroOneBranching(0, 1, ZERO, node_id=1)
    one = ZeroOneBranching(0, 1, ONE, node_id=2)

    zero_set = {c.key for c in columns if zero.is_column_compatible(c)}
    one_set = {c.key for c in columns if one.is_column_compatible(c)}
    assert zero_set.isdisjoint(one_set)
    assert zero_set | one_set == {c.key for c in columns}
    assert one_set == {(0, 1), (0, 3)}


def test_find_path_conflict():
    a = ZeroOneBranching(0, 4, ZERO, node_id=1)
    b = ZeroOneBranching(1, 4, ONE, node_id=2)
    c = ZeroOneBranching(0, 4, ONE, node_id=3)
    assert find_path_conflict([a, b]) is None
    assert find_path_conflict([a, b, c]) == (a, c)
    assert a.conflicts_with(c) and not a.conflicts_with(b)


def test_unknown_polarity():
    with pytest.raises(ValueError):
        ZeroOneBranching(0, 0, 'maybe', node_id=1)


# ---------------------------------------------------------------------------
# Propagation on the master
# ---------------------------------------------------------------------------

def test_zero_constraint_fixes_incompatible_columns(scenario_b, context_factory):
    context = context_factory(scenario_b)
    master, pool = context.master, context.pool
    shared = add_route(context, 0, [0])
    other = add_route(context, 1, [0])

    constraint = ZeroOneBranching(0, scenario_b.x_index(0), ZERO, node_id=1)
    assert constraint.activate(master, pool) == REDUCED
    assert constraint.fixed_columns == [shared.key]
    assert constraint.n_propagated == pool.size
    assert master.is_fixed_to_zero(shared)
    assert not master.is_fixed_to_zero(other)
    assert not master.is_fixed_to_zero(pool.get((0, 0)))

    # nothing new to scan, but earlier fixings are re-applied
    master.reset_branching_bounds()
    assert constraint.apply_to_master(master, pool) == REDUCED
    assert master.is_fixed_to_zero(shared)


def test_one_constraint_fixes_fallback_column(scenario_b, context_factory):
    context = context_factory(scenario_b)
    master, pool = context.master, context.pool
    shared = add_route(context, 1, [0])

    constraint = ZeroOneBranching(1, scenario_b.x_index(0), ONE, node_id=2)
    constraint.activate(master, pool)
    master.solRelModel()
    values = master.getLambdaValues()
    assert values[(1, 0)] == pytest.approx(0.0)
    assert values[shared.key] == pytest.approx(1.0)


def test_new_columns_are_scanned_incrementally(scenario_b, context_factory):
    context = context_factory(scenario_b)
    master, pool = context.master, context.pool
    constraint = ZeroOneBranching(0, scenario_b.x_index(0), ZERO, node_id=1)
    assert constraint.activate(master, pool) == DID_NOT_FIND
    mark = constraint.n_propagated

    late = add_route(context, 0, [0])
    assert pool.position(late) >= mark
    assert constraint.apply_to_master(master, pool) == REDUCED
    assert master.is_fixed_to_zero(late)


def test_propagation_cutoff_on_forced_column(scenario_b, context_factory):
    context = context_factory(scenario_b)
    master, pool = context.master, context.pool
    column = add_route(context, 0, [0])
    master.lmbda[column.key].LB = 1.0
    master.Model.update()

    constraint = ZeroOneBranching(0, scenario_b.x_index(0), ZERO, node_id=1)
    assert constraint.activate(master, pool) == CUTOFF


def test_deactivate_records_mark_and_checks_tally(scenario_b, context_factory):
    context = context_factory(scenario_b)
    master, pool = context.master, context.pool
    constraint = ZeroOneBranching(0, scenario_b.x_index(0), ZERO, node_id=1)
    constraint.activate(master, pool)

    # added while the constraint is inactive: picked up at deactivation of the next visit
    constraint.deactivate(master, pool)
    late = add_route(context, 0, [0])
    assert not constraint.active
    constraint.deactivate(master, pool)
    assert late.key in constraint.fixed_columns
    assert constraint.n_propagated == pool.size


def test_deactivate_detects_unfixed_scanned_column(scenario_b, context_factory):
    context = context_factory(scenario_b)
    master, pool = context.master, context.pool
    add_route(context, 0, [0])
    constraint = ZeroOneBranching(0, scenario_b.x_index(0), ZERO, node_id=1)
    # pretend the pool was scanned without fixing anything
    constraint.n_propagated = pool.size
    with pytest.raises(AssertionError, match='never fixed'):
        constraint.deactivate(master, pool)
    constraint.deactivate(master, pool, debug_checks=False)
