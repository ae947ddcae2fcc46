import gurobipy as gu
import pytest

from CG import ColumnGeneration, _pricing_worker
from branching_constraints import ZeroOneBranching, ZERO
from masterproblem import InfeasibleRelaxationError
from subproblem import Subproblem


def test_single_optical_column(scenario_a, context_factory):
    context = context_factory(scenario_a)
    cg = ColumnGeneration(context)
    result = cg.solve_node(node_id=0)

    assert result['status'] == 'optimal'
    assert result['converged']
    assert result['columns_added'] == 1
    assert context.pool.size == 2

    column = context.pool.get((0, 1))
    assert not column.is_fallback
    assert column.links == (0,)
    assert column.cost == pytest.approx(1.0 * (200 * (1.0 + 2.0 + 0.0 + 0.0) + 500 * 0.5 + 400 * 1.0))
    assert result['lambdas'][(0, 1)] == pytest.approx(1.0)
    assert result['lambdas'][(0, 0)] == pytest.approx(0.0)
    assert result['lp_obj'] == pytest.approx(column.cost)


def test_added_columns_have_negative_reduced_cost(hybrid, context_factory):
    context = context_factory(hybrid)
    cg = ColumnGeneration(context)
    result = cg.solve_node(node_id=0)

    assert result['converged']
    assert cg.added_columns
    assert all(entry['reduced_cost'] < 0 for entry in cg.added_columns)
    history = cg.lp_obj_history
    assert all(later <= earlier + 1e-6 for earlier, later in zip(history, history[1:]))
    assert history[-1] == pytest.approx(result['lp_obj'])
    assert [s['Iteration'] for s in cg.iteration_stats] == list(range(1, result['iterations'] + 1))
    assert context.state.stats['pricing_calls'] == hybrid.n_flows * result['iterations']


def test_parallel_pricing_reaches_the_same_bound(context_factory, hybrid_factory):
    sequential = ColumnGeneration(context_factory(hybrid_factory())).solve_node()
    parallel_context = context_factory(hybrid_factory(), use_parallel_pricing=True, n_pricing_workers=3)
    parallel = ColumnGeneration(parallel_context).solve_node()
    assert parallel['lp_obj'] == pytest.approx(sequential['lp_obj'])


def test_active_constraint_is_respected_by_new_columns(scenario_a, context_factory):
    context = context_factory(scenario_a)
    constraint = ZeroOneBranching(0, scenario_a.x_index(0), ZERO, node_id=1)
    constraint.activate(context.master, context.pool)
    result = ColumnGeneration(context).solve_node(node_id=1, branching_constraints=[constraint])

    assert result['columns_added'] == 0
    assert result['lambdas'] == pytest.approx({(0, 0): 1.0})


def test_iteration_cap_leaves_node_unconverged(hybrid, context_factory):
    context = context_factory(hybrid, max_cg_iterations=1)
    result = ColumnGeneration(context).solve_node()
    assert result['status'] == 'optimal'
    assert not result['converged']
    assert result['iterations'] == 1


def test_infeasible_master_is_raised_with_context(scenario_b, context_factory):
    context = context_factory(scenario_b)
    context.master.fix_column_to_zero(context.pool.get((1, 0)))
    context.master.Model.update()
    constraint = ZeroOneBranching(1, 0, ZERO, node_id=7)

    with pytest.raises(InfeasibleRelaxationError) as excinfo:
        ColumnGeneration(context).solve_node(node_id=7, branching_constraints=[constraint])
    assert excinfo.value.node_id == 7
    assert excinfo.value.branching_constraints == [constraint]


def _out_of_memory(self):
    raise gu.GurobiError(10001, 'Out of memory')


def test_solver_error_in_pricing_yields_no_column(scenario_a, context_factory, monkeypatch):
    context = context_factory(scenario_a)
    context.master.solRelModel()
    monkeypatch.setattr(Subproblem, 'solModel', _out_of_memory)

    flow, candidates, hit_limit, _ = _pricing_worker(context, 0, context.master.getDuals(), (), 10, 0)
    assert (flow, candidates, hit_limit) == (0, [], True)
    assert context.state.stats['pricing_limit_hits'] == 1


def test_solver_error_leaves_node_unconverged(scenario_a, context_factory, monkeypatch):
    context = context_factory(scenario_a)
    monkeypatch.setattr(Subproblem, 'solModel', _out_of_memory)

    result = ColumnGeneration(context).solve_node(node_id=0)
    assert result['status'] == 'optimal'
    assert not result['converged']
    assert result['columns_added'] == 0
    assert context.pool.size == 1
