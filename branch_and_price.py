import math
import time
import logging

import pandas as pd

from bnp_node import BnPNode
from branching_constraints import (ZeroOneBranching, ZERO, ONE, CUTOFF,
                                   find_path_conflict, is_fractional, select_branching_candidate)
from CG import ColumnGeneration
from masterproblem import InfeasibleRelaxationError
from Utils.feasability_checker import check_solution


class BranchAndPrice:
    """
    Branch-and-Price Algorithm

    The master LP and the column pool are shared by the whole tree. Entering a
    node resets the node-local column bounds and re-activates the branching
    constraints on the node's path; leaving it deactivates them again.

    Attributes:
        nodes: Dictionary of all nodes {node_id -> BnPNode}
        node_counter: Counter for unique node IDs
        state: ThreadSafeSharedState (open nodes, incumbent, bounds, stats)
        cg_solver: ColumnGeneration used at every node
    """

    def __init__(self, context, cg_solver=None, search_strategy=None, verbose=None,
                 ip_heuristic_frequency=None, infeasible_node_policy=None):
        """
        Args:
            context: SolverContext (data, settings, pool, master, state)
            cg_solver: ColumnGeneration object (created from context if None)
            search_strategy: 'dfs' for Depth-First-Search or 'bfs' for Best-Bound-Search
            verbose: If True, log every node in detail
            ip_heuristic_frequency: Solve the RMP as IP at the root and every N nodes
                                    (0 = root only, negative = never)
            infeasible_node_policy: 'raise' or 'prune' for LP-infeasible nodes
        """
        settings = context.settings
        self.logger = logging.getLogger(__name__)
        self.context = context
        self.data = context.data
        self.master = context.master
        self.pool = context.pool
        self.state = context.state
        self.cg_solver = cg_solver if cg_solver is not None else ColumnGeneration(context)

        self.nodes = {}
        self.node_counter = 0

        self.search_strategy = search_strategy or settings['search_strategy']
        self.state.search_strategy = self.search_strategy
        self.verbose = verbose if verbose is not None else settings['verbose']
        self.ip_heuristic_frequency = (ip_heuristic_frequency if ip_heuristic_frequency is not None
                                       else settings['ip_heuristic_frequency'])
        self.infeasible_node_policy = infeasible_node_policy or settings['infeasible_node_policy']
        if self.infeasible_node_policy not in ('raise', 'prune'):
            raise ValueError(f"Unknown infeasible_node_policy {self.infeasible_node_policy!r}")
        self.integrality_tol = settings['integrality_tol']
        self.debug_checks = settings['debug_checks']

        self.state.stats.update({
            'nodes_explored': 0,
            'nodes_fathomed': 0,
            'nodes_branched': 0,
            'nodes_pruned': 0,
            'nodes_cutoff': 0,
            'total_cg_iterations': 0,
            'incumbent_updates': 0,
            'ip_solves': 0,
            'integer_solutions_found': 0,
            'unverified_infeasible_prunes': 0,
            'unconverged_nodes': 0,
            'nodes_without_candidate': 0,
            'node_processing_order': [],
            'max_tree_depth': 0,
            'tree_complete': False,
            'total_time': 0.0,
            'time_in_mp': 0.0,
            'time_in_sp': 0.0,
            'time_in_ip_heuristic': 0.0,
            'time_to_first_incumbent': None,
        })
        self.stats = self.state.stats

        self.start_time = None

        self.logger.info("=" * 100)
        self.logger.info(" BRANCH-AND-PRICE INITIALIZED ".center(100, "="))
        self.logger.info("=" * 100)
        self.logger.info(f"Instance: {self.data!r}")
        self.logger.info(f"Search strategy: {'Depth-First (DFS)' if self.search_strategy == 'dfs' else 'Best-Bound (BFS)'}")
        self.logger.info(f"Infeasible node policy: {self.infeasible_node_policy}")
        self.logger.info("=" * 100)

    # ============================================================================
    # TREE
    # ============================================================================

    def create_root_node(self):
        root = BnPNode(node_id=0)
        self.nodes[0] = root
        self.node_counter = 1
        self.state.add_node(0, -float('inf'))
        return root

    def solve(self, time_limit=3600, max_nodes=10000):
        """
        Explore the search tree.

        Returns:
            dict: Results (see _get_results_dict)

        Raises:
            InfeasibleRelaxationError: A node LP became infeasible and the
                                       policy is 'raise'
        """
        self.start_time = time.time()
        deadline = self.start_time + time_limit

        self.logger.info("=" * 100)
        self.logger.info(" BRANCH-AND-PRICE SOLVE ".center(100, "="))
        self.logger.info("=" * 100)
        self.logger.info(f"Time limit: {time_limit}s, max nodes: {max_nodes}")

        if not self.nodes:
            self.create_root_node()

        stopped = False
        try:
            while self.state.get_queue_size():
                if self.stats['nodes_explored'] >= max_nodes:
                    self.logger.info(f"Node limit reached: {max_nodes}")
                    stopped = True
                    break
                if time.time() >= deadline:
                    self.logger.info(f"Time limit reached: {time_limit}s")
                    stopped = True
                    break

                node = self.nodes[self.state.get_next_node()]
                if self.process_node(node, deadline) == 'time_limit':
                    stopped = True
                    break

                explored = self.stats['nodes_explored']
                if node.node_id == 0 and self.ip_heuristic_frequency >= 0:
                    self._run_ip_heuristic(node.node_id)
                elif self.ip_heuristic_frequency > 0 and explored % self.ip_heuristic_frequency == 0:
                    self._run_ip_heuristic(node.node_id)

                self._update_lower_bound()
                if self.verbose or explored % 10 == 0:
                    snapshot = self.state.get_state_snapshot()
                    self.logger.info(f"[Progress] nodes {snapshot['nodes_explored']}, open {snapshot['queue_size']}, "
                                     f"LB {snapshot['best_lp_bound']:.4f}, UB {snapshot['incumbent']:.4f}, "
                                     f"gap {snapshot['gap']:.4%}")
        finally:
            self.stats['total_time'] = time.time() - self.start_time

        self.stats['tree_complete'] = not stopped and self.state.get_queue_size() == 0
        self._update_lower_bound()
        self._print_final_results()
        return self._get_results_dict()

    def process_node(self, node, deadline=None):
        """
        Run column generation at a node and fathom or branch it.

        Returns:
            str: Final node status, or 'time_limit' if the node was put back
        """
        self.stats['nodes_explored'] += 1
        self.stats['node_processing_order'].append(node.node_id)
        self.stats['max_tree_depth'] = max(self.stats['max_tree_depth'], node.depth)

        if self.verbose:
            self.logger.info(f"{'-' * 100}")
            self.logger.info(f"Processing {node!r}")
            for c in node.branching_constraints:
                self.logger.info(f"   {c!r}: {self.data.describe_original_var(c.var_index)}")

        if node.parent_bound >= self.state.incumbent - 1e-6:
            return self._fathom(node, 'bound')

        conflict = find_path_conflict(node.branching_constraints)
        if conflict is not None:
            self.logger.info(f"Cutoff at node {node.node_id}: {conflict[0]!r} conflicts with {conflict[1]!r}")
            self.stats['nodes_cutoff'] += 1
            return self._fathom(node, 'cutoff')

        self.master.reset_branching_bounds()
        try:
            for constraint in node.branching_constraints:
                if constraint.activate(self.master, self.pool) == CUTOFF:
                    self.stats['nodes_cutoff'] += 1
                    return self._fathom(node, 'cutoff')

            try:
                result = self.cg_solver.solve_node(node.node_id, node.branching_constraints, deadline)
            except InfeasibleRelaxationError as exc:
                if self.infeasible_node_policy == 'raise':
                    raise
                self.logger.warning(f"Node {node.node_id}: {exc}. Pruning without proof of infeasibility.")
                self.stats['unverified_infeasible_prunes'] += 1
                return self._fathom(node, 'infeasible')
        finally:
            for constraint in node.branching_constraints:
                constraint.deactivate(self.master, self.pool, debug_checks=self.debug_checks)

        self.stats['total_cg_iterations'] += result['iterations']
        node.cg_iterations = result['iterations']

        if result['status'] == 'cutoff':
            self.stats['nodes_cutoff'] += 1
            return self._fathom(node, 'cutoff')
        if result['status'] == 'time_limit':
            self.stats['nodes_explored'] -= 1
            self.state.add_node(node.node_id, node.parent_bound)
            return 'time_limit'

        node.lp_bound = result['lp_obj']
        node.master_solution = result['lambdas']
        node.cg_converged = result['converged']
        node.status = 'solved'
        if not node.cg_converged:
            self.stats['unconverged_nodes'] += 1

        # An unconverged LP value is no lower bound; fall back to the parent's
        bound = node.lp_bound if node.cg_converged else node.parent_bound

        node.is_integral = all(not is_fractional(v, self.integrality_tol) for v in node.master_solution.values())
        if node.is_integral:
            self._accept_integral(node)
            return self._fathom(node, 'integral')

        if bound >= self.state.incumbent - 1e-6:
            return self._fathom(node, 'bound')

        candidate = select_branching_candidate(self.pool, node.master_solution, self.data.n_flows,
                                               self.integrality_tol)
        if candidate is None:
            self.logger.warning(f"Node {node.node_id}: fractional LP but no fractional aggregate usage")
            self.stats['nodes_without_candidate'] += 1
            return self._fathom(node, 'no_candidate')

        node.branching_candidate = candidate
        self.branch_on_original_variable(node, candidate, bound)
        return node.status

    def _fathom(self, node, reason):
        node.status = 'fathomed'
        node.fathom_reason = reason
        self.stats['nodes_fathomed'] += 1
        if reason in ('bound', 'cutoff', 'infeasible'):
            self.stats['nodes_pruned'] += 1
        if self.verbose:
            self.logger.info(f"   Node {node.node_id} fathomed: {reason}")
        return node.status

    def branch_on_original_variable(self, parent, candidate, bound):
        """
        Create the ZERO and ONE children of a node.

        Returns:
            tuple: (zero_child, one_child)
        """
        k, j = candidate['flow'], candidate['var_index']
        self.logger.info(f"Branching at node {parent.node_id} on flow {k}, "
                         f"{self.data.describe_original_var(j)} (usage {candidate['value']:.4f})")

        children = []
        for polarity, suffix in ((ZERO, '0'), (ONE, '1')):
            child = BnPNode(node_id=self.node_counter, parent_id=parent.node_id,
                            depth=parent.depth + 1, path=parent.path + suffix, parent_bound=bound)
            self.node_counter += 1
            child.branching_constraints = parent.branching_constraints + [
                ZeroOneBranching(k, j, polarity, child.node_id)]
            self.nodes[child.node_id] = child
            children.append(child)

        # DFS pops the ZERO child first
        zero_child, one_child = children
        self.state.add_node(one_child.node_id, bound)
        self.state.add_node(zero_child.node_id, bound)

        parent.status = 'branched'
        self.stats['nodes_branched'] += 1
        return zero_child, one_child

    def _accept_integral(self, node):
        lambdas = node.master_solution
        self.stats['integer_solutions_found'] += 1
        self._try_incumbent(node.lp_bound, lambdas, node.node_id)

    def _try_incumbent(self, objective, lambdas, node_id):
        """Re-check an integral master solution and offer it as incumbent."""
        if self.debug_checks:
            feasible, issues = check_solution(self.data, self.master, lambdas, self.integrality_tol)
            if not feasible:
                self.logger.error(f"Integral solution of node {node_id} rejected: {issues}")
                return False
        selection = {key[0]: key for key, v in lambdas.items() if v > 0.5}
        active = {key: v for key, v in lambdas.items() if v > self.integrality_tol}
        return self.state.try_update_incumbent(objective, selection, active, node_id,
                                               time_elapsed=time.time() - self.start_time)

    def _run_ip_heuristic(self, node_id):
        """Solve the restricted master over all columns as an IP."""
        start = time.time()
        self.master.reset_branching_bounds()
        solution = self.master.solve_as_ip(time_limit=self.context.settings['pricing_time_limit'])
        self.stats['ip_solves'] += 1
        self.stats['time_in_ip_heuristic'] += time.time() - start
        if solution is None:
            return False
        objective, lambdas = solution
        improved = self._try_incumbent(objective, lambdas, node_id)
        if improved:
            self.logger.info(f"IP heuristic after node {node_id}: incumbent {objective:.6f}")
        return improved

    def _update_lower_bound(self):
        open_ids = self.state.open_node_ids()
        if open_ids:
            self.state.set_best_lb(min(self.nodes[i].parent_bound for i in open_ids))
        elif self.state.incumbent < float('inf'):
            self.state.set_best_lb(self.state.incumbent)

    # ============================================================================
    # RESULTS
    # ============================================================================

    @property
    def incumbent(self):
        return self.state.incumbent

    @property
    def optimality_certified(self):
        return (self.stats['tree_complete'] and self.state.incumbent < float('inf')
                and self.stats['unverified_infeasible_prunes'] == 0
                and self.stats['unconverged_nodes'] == 0
                and self.stats['nodes_without_candidate'] == 0)

    def extract_solution(self):
        """
        Selected column of every flow in the incumbent.

        Returns:
            dict {flow: {'column', 'links', 'wavelengths', 'cost', 'is_fallback'}}
        """
        if self.state.incumbent_solution is None:
            return {}
        solution = {}
        for k in range(self.data.n_flows):
            column = self.pool.get(self.state.incumbent_solution[k])
            solution[k] = {
                'column': column.key,
                'links': list(column.links),
                'wavelengths': {l: list(ws) for l, ws in column.wavelengths.items()},
                'cost': column.cost,
                'is_fallback': column.is_fallback,
            }
        return solution

    def solution_dataframe(self):
        rows = []
        for k, info in self.extract_solution().items():
            flow = self.data.flows[k]
            rows.append({
                'flow': k,
                'source': flow.source,
                'destination': flow.destination,
                'bandwidth': flow.bandwidth,
                'column': info['column'][1],
                'links': ' '.join(str(l) for l in info['links']),
                'wavelengths': '; '.join(f"{l}:{','.join(str(w) for w in ws)}"
                                         for l, ws in info['wavelengths'].items()),
                'cost': info['cost'],
                'fallback': info['is_fallback'],
            })
        return pd.DataFrame(rows, columns=['flow', 'source', 'destination', 'bandwidth', 'column',
                                           'links', 'wavelengths', 'cost', 'fallback'])

    def _get_results_dict(self):
        incumbent = self.state.incumbent
        gap = self.state.gap
        root = self.nodes.get(0)
        return {
            'lp_bound': self.state.best_lp_bound,
            'root_lp': root.lp_bound if root is not None else None,
            'incumbent': incumbent if incumbent < float('inf') else None,
            'gap': gap if gap < float('inf') else None,
            'root_integral': root.is_integral if root is not None else False,
            'nodes_explored': self.stats['nodes_explored'],
            'nodes_fathomed': self.stats['nodes_fathomed'],
            'nodes_branched': self.stats['nodes_branched'],
            'nodes_pruned': self.stats['nodes_pruned'],
            'total_nodes': len(self.nodes),
            'max_tree_depth': self.stats['max_tree_depth'],
            'cg_iterations': self.stats['total_cg_iterations'],
            'total_columns': self.pool.size,
            'ip_solves': self.stats['ip_solves'],
            'incumbent_updates': self.stats['incumbent_updates'],
            'incumbent_node_id': self.stats.get('incumbent_node_id'),
            'tree_complete': self.stats['tree_complete'],
            'optimality_certified': self.optimality_certified,
            'unverified_infeasible_prunes': self.stats['unverified_infeasible_prunes'],
            'total_time': self.stats['total_time'],
            'time_in_mp': self.stats.get('time_in_mp', 0.0),
            'time_in_sp': self.stats.get('time_in_sp', 0.0),
            'time_in_ip_heuristic': self.stats['time_in_ip_heuristic'],
            'time_to_first_incumbent': self.stats['time_to_first_incumbent'],
            'solution': self.extract_solution(),
        }

    def _print_final_results(self):
        incumbent = self.state.incumbent
        self.logger.info("=" * 100)
        self.logger.info(" BRANCH-AND-PRICE RESULTS ".center(100, "="))
        self.logger.info("=" * 100)
        self.logger.info(f"  LP Bound (LB):  {self.state.best_lp_bound:.6f}")
        self.logger.info(f"  Incumbent (UB): {incumbent:.6f}" if incumbent < float('inf')
                         else "  Incumbent (UB): None")
        self.logger.info(f"  Gap:            {self.state.gap:.4%}" if math.isfinite(self.state.gap)
                         else "  Gap:            inf")
        self.logger.info(f"  Nodes Explored: {self.stats['nodes_explored']}")
        self.logger.info(f"  Nodes Fathomed: {self.stats['nodes_fathomed']}")
        self.logger.info(f"  Nodes Pruned:   {self.stats['nodes_pruned']}")
        self.logger.info(f"  Max Tree Depth: {self.stats['max_tree_depth']}")
        self.logger.info(f"  CG Iterations:  {self.stats['total_cg_iterations']}")
        self.logger.info(f"  Columns:        {self.pool.size}")
        self.logger.info(f"  Total Time:     {self.stats['total_time']:.2f}s")
        if self.stats['unverified_infeasible_prunes']:
            self.logger.warning(f"  {self.stats['unverified_infeasible_prunes']} node(s) pruned as LP-infeasible "
                                f"without Farkas pricing; optimality is not certified")
        self.logger.info("=" * 100)
