"""
Thread-safe shared state of the branch-and-price search.

Pricing runs in worker threads and reports statistics here; the tree driver
keeps its open-node queue, incumbent and bounds here.
"""

import threading
import logging
from typing import Optional, List, Dict, Any


class ThreadSafeSharedState:
    """
    Shared search state guarded by a re-entrant lock.

    Attributes:
        lock: Re-entrant lock for thread-safe operations
        incumbent: Best integral objective found (upper bound)
        incumbent_solution: {flow: column key} of the incumbent
        incumbent_lambdas: Lambda values of the incumbent
        best_lp_bound: Best lower bound
        gap: Optimality gap (UB - LB) / |UB|
        search_strategy: 'dfs' or 'bfs'
        open_nodes: DFS stack of node ids, or BFS list of (bound, node_id)
        stats: Statistics dictionary
    """

    def __init__(self, search_strategy: str = 'dfs', initial_stats: Optional[dict] = None):
        self.lock = threading.RLock()
        self.logger = logging.getLogger(__name__)

        self.incumbent = float('inf')
        self.incumbent_solution = None
        self.incumbent_lambdas = None
        self.best_lp_bound = -float('inf')
        self.gap = float('inf')

        self.search_strategy = search_strategy
        self.open_nodes = []

        self.stats = dict(initial_stats or {})

    def get_next_node(self) -> Optional[int]:
        """
        Node selection.

        For BFS: node with the lowest bound; ties go to the lower node id.
        For DFS: most recently added node.
        """
        with self.lock:
            if not self.open_nodes:
                return None

            if self.search_strategy == 'bfs':
                entry = min(self.open_nodes, key=lambda x: (round(x[0], 6), x[1]))
                self.open_nodes.remove(entry)
                self.logger.debug(f"[BFS] Selected Node {entry[1]} with bound {entry[0]:.6f}")
                return entry[1]

            node_id = self.open_nodes.pop()
            self.logger.debug(f"[DFS] Selected Node {node_id}")
            return node_id

    def add_node(self, node_id: int, bound: float) -> None:
        with self.lock:
            if self.search_strategy == 'bfs':
                self.open_nodes.append((bound, node_id))
            else:
                self.open_nodes.append(node_id)

    def open_node_ids(self) -> List[int]:
        with self.lock:
            if self.search_strategy == 'bfs':
                return [node_id for _, node_id in self.open_nodes]
            return list(self.open_nodes)

    def try_update_incumbent(self, new_incumbent: float, new_solution: Dict[int, Any],
                             new_lambdas: Dict[Any, float], node_id: int,
                             time_elapsed: float = None) -> bool:
        """
        Replace the incumbent if new_incumbent is strictly better.

        Returns:
            True if the incumbent was updated
        """
        with self.lock:
            if new_incumbent < self.incumbent - 1e-9:
                old_incumbent = self.incumbent
                self.incumbent = new_incumbent
                self.incumbent_solution = new_solution
                self.incumbent_lambdas = new_lambdas
                self.stats['incumbent_updates'] = self.stats.get('incumbent_updates', 0) + 1
                self.stats['incumbent_node_id'] = node_id
                if time_elapsed is not None and self.stats.get('time_to_first_incumbent') is None:
                    self.stats['time_to_first_incumbent'] = time_elapsed
                self._update_gap()
                self.logger.info(f"NEW INCUMBENT: {new_incumbent:.6f} (previous: {old_incumbent:.6f}, "
                                 f"node {node_id})")
                return True
            return False

    def set_best_lb(self, new_lb: float) -> None:
        with self.lock:
            self.best_lp_bound = min(new_lb, self.incumbent)
            self._update_gap()

    def _update_gap(self) -> None:
        """Gap = (UB - LB) / |UB|; must be called with lock held."""
        if self.incumbent < float('inf') and self.best_lp_bound > -float('inf'):
            if abs(self.incumbent) > 1e-10:
                self.gap = (self.incumbent - self.best_lp_bound) / abs(self.incumbent)
            else:
                self.gap = abs(self.incumbent - self.best_lp_bound)
        else:
            self.gap = float('inf')

    def get_queue_size(self) -> int:
        with self.lock:
            return len(self.open_nodes)

    def get_state_snapshot(self) -> Dict[str, Any]:
        with self.lock:
            return {
                'incumbent': self.incumbent,
                'best_lp_bound': self.best_lp_bound,
                'gap': self.gap,
                'queue_size': len(self.open_nodes),
                'nodes_explored': self.stats.get('nodes_explored', 0),
                'nodes_fathomed': self.stats.get('nodes_fathomed', 0),
                'nodes_branched': self.stats.get('nodes_branched', 0),
            }

    def increment_stat(self, stat_name: str, amount: int = 1) -> None:
        with self.lock:
            self.stats[stat_name] = self.stats.get(stat_name, 0) + amount

    def add_timing(self, timing_name: str, duration: float) -> None:
        with self.lock:
            self.stats[timing_name] = self.stats.get(timing_name, 0.0) + duration
