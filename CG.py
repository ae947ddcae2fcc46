import time
import logging
from multiprocessing.pool import ThreadPool

import gurobipy as gu

from branching_constraints import CUTOFF
from masterproblem import InfeasibleRelaxationError
from subproblem import Subproblem

logger = logging.getLogger(__name__)


def _pricing_worker(context, flow, duals, branching_constraints, time_limit, node_id):
    """
    Price one flow against a fixed dual snapshot.

    Only reads shared data; the returned candidates are added to the master by
    the caller once all flows are priced.

    Returns:
        Tuple of (flow, candidates, hit_limit, runtime)
    """
    settings = context.settings
    start = time.time()
    subproblem = Subproblem(context.data, context.master, flow, duals,
                            branching_constraints=branching_constraints,
                            max_columns=settings['max_columns_per_flow'],
                            threshold=settings['reduced_cost_threshold'],
                            time_limit=time_limit,
                            memory_limit=settings['pricing_memory_limit'],
                            deterministic=settings['deterministic'],
                            node_id=node_id)
    try:
        subproblem.buildModel()
        subproblem.solModel()
        candidates = subproblem.getColumns()
    except gu.GurobiError as e:
        # Solver failures such as out of memory yield no column for this flow
        logger.warning(f"Pricing for flow {flow} failed at node {node_id}: {e}; no column this iteration")
        subproblem.hit_limit = True
        candidates = []
    finally:
        subproblem.dispose()

    runtime = time.time() - start
    context.state.increment_stat('pricing_calls')
    context.state.add_timing('time_in_sp', runtime)
    if subproblem.hit_limit:
        context.state.increment_stat('pricing_limit_hits')
    if subproblem.n_discarded:
        context.state.increment_stat('columns_discarded', subproblem.n_discarded)
    return flow, candidates, subproblem.hit_limit, runtime


class ColumnGeneration:
    """
    Column generation at one search node.

    solve_node() alternates LP solves and per-flow pricing until no flow
    yields an improving column.
    """

    def __init__(self, context, max_itr=None, threshold=None, verbose=None,
                 use_parallel_pricing=None, n_pricing_workers=None, callback_after_iteration=None):
        settings = context.settings
        self.context = context
        self.data = context.data
        self.master = context.master
        self.pool = context.pool
        self.max_itr = max_itr if max_itr is not None else settings['max_cg_iterations']
        self.threshold = threshold if threshold is not None else settings['reduced_cost_threshold']
        self.verbose = verbose if verbose is not None else settings['verbose']
        self.use_parallel_pricing = (use_parallel_pricing if use_parallel_pricing is not None
                                     else settings['use_parallel_pricing'])
        self.n_pricing_workers = n_pricing_workers if n_pricing_workers is not None else settings['n_pricing_workers']
        self.pricing_time_limit = settings['pricing_time_limit']
        self.callback_after_iteration = callback_after_iteration

        # Results storage
        self.iteration_stats = []
        self.lp_obj_history = []
        self.added_columns = []
        self.num_iterations = 0

    def solve_node(self, node_id=0, branching_constraints=(), deadline=None):
        """
        Run column generation with the given branching constraints active.

        Args:
            node_id: Node ID (for logs and error context)
            branching_constraints: Active ZeroOneBranching constraints
            deadline: Absolute time.time() value after which pricing is skipped

        Returns:
            dict with status ('optimal', 'cutoff', 'time_limit'), lp_obj, lambdas,
            iterations, converged, columns_added

        Raises:
            InfeasibleRelaxationError: The restricted master LP is infeasible
        """
        constraints = list(branching_constraints)
        converged = True
        columns_added = 0
        itr = 0

        while True:
            if itr >= self.max_itr:
                logger.warning(f"Node {node_id}: column generation stopped after {itr} iterations "
                               f"without convergence")
                converged = False
                if self.master.solRelModel(time_limit=None) != gu.GRB.OPTIMAL:
                    return self._result('time_limit', None, None, itr, False, columns_added)
                break
            itr += 1
            iter_start_time = time.time()

            master_start_time = time.time()
            status = self.master.solRelModel(time_limit=self._remaining(deadline))
            master_time = time.time() - master_start_time
            self.context.state.add_timing('time_in_mp', master_time)

            if status in (gu.GRB.INFEASIBLE, gu.GRB.INF_OR_UNBD):
                raise InfeasibleRelaxationError(
                    f"Restricted master LP infeasible at node {node_id} with active constraints "
                    f"{constraints}; Farkas pricing is not available",
                    node_id=node_id, branching_constraints=constraints)
            if status != gu.GRB.OPTIMAL:
                logger.warning(f"Node {node_id}: master LP stopped with status {status}")
                return self._result('time_limit', None, None, itr, False, columns_added)

            current_lp_obj = self.master.objective
            self.lp_obj_history.append(current_lp_obj)
            duals = self.master.getDuals()

            pricing_start_time = time.time()
            results = self._price_all_flows(duals, constraints, node_id, deadline)
            subproblem_time = time.time() - pricing_start_time

            new_cols = 0
            for flow, candidates, hit_limit, _ in results:
                if hit_limit:
                    converged = False
                for candidate in candidates:
                    self._add_candidate(candidate, node_id, itr)
                    new_cols += 1
            columns_added += new_cols

            if new_cols:
                for constraint in constraints:
                    if constraint.apply_to_master(self.master, self.pool) == CUTOFF:
                        return self._result('cutoff', None, None, itr, converged, columns_added)

            self.iteration_stats.append({
                'Node': node_id,
                'Iteration': itr,
                'LP Objective': round(current_lp_obj, 6),
                'Total Time (s)': round(time.time() - iter_start_time, 3),
                'Master Time (s)': round(master_time, 3),
                'Subproblems Time (s)': round(subproblem_time, 3),
                'Columns Added': new_cols,
            })
            if self.verbose:
                logger.info(f"[CG] node {node_id} itr {itr}: LP {current_lp_obj:.6f}, "
                            f"{new_cols} new columns, pool size {self.pool.size}")

            if self.callback_after_iteration:
                self.callback_after_iteration(itr, self)

            if not new_cols:
                break

            if deadline is not None and time.time() >= deadline:
                logger.warning(f"Node {node_id}: time budget exhausted during column generation")
                converged = False
                status = self.master.solRelModel(time_limit=None)
                if status != gu.GRB.OPTIMAL:
                    return self._result('time_limit', None, None, itr, False, columns_added)
                break

        self.num_iterations += itr
        return self._result('optimal', self.master.objective, self.master.getLambdaValues(),
                            itr, converged, columns_added)

    def _result(self, status, lp_obj, lambdas, iterations, converged, columns_added):
        return {
            'status': status,
            'lp_obj': lp_obj,
            'lambdas': lambdas,
            'iterations': iterations,
            'converged': converged,
            'columns_added': columns_added,
        }

    def _remaining(self, deadline):
        if deadline is None:
            return None
        return max(deadline - time.time(), 0.0)

    def _price_all_flows(self, duals, constraints, node_id, deadline):
        time_limit = self.pricing_time_limit
        remaining = self._remaining(deadline)
        if remaining is not None:
            time_limit = min(time_limit, remaining)

        args = [(self.context, k, duals, constraints, time_limit, node_id) for k in range(self.data.n_flows)]
        if self.use_parallel_pricing and self.n_pricing_workers > 1 and len(args) > 1:
            with ThreadPool(processes=min(self.n_pricing_workers, len(args))) as pricing_pool:
                results = pricing_pool.starmap(_pricing_worker, args)
        else:
            results = [_pricing_worker(*a) for a in args]
        return sorted(results, key=lambda r: r[0])

    def _add_candidate(self, candidate, node_id, itr):
        column = self.master.add_column(candidate.flow, candidate.cost, candidate.membership,
                                        candidate.incidence, candidate.links, candidate.wavelengths)
        self.added_columns.append({
            'key': column.key,
            'node': node_id,
            'iteration': itr,
            'reduced_cost': candidate.reduced_cost,
            'pricing_objective': candidate.objective,
        })
        if candidate.reduced_cost >= 0:
            logger.error(f"Column {column.key} added with non-negative reduced cost {candidate.reduced_cost}")
        logger.debug(f"Added {column!r} (rc={candidate.reduced_cost:.6f}, rank={candidate.rank})")
        return column
