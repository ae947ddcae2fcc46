import math
import logging
from abc import ABC, abstractmethod

import numpy as np

ZERO = 'zero'
ONE = 'one'

# Propagation results
CUTOFF = 'cutoff'
REDUCED = 'reduced'
DID_NOT_FIND = 'did_not_find'

logger = logging.getLogger(__name__)


class BranchingConstraint(ABC):
    """
    Base class for branching constraints.

    Each branching constraint must define how it affects:
    1. The master problem (fixing columns that violate it)
    2. The pricing subproblem (restricting which columns can be generated)
    3. Column compatibility (checking whether an existing column satisfies it)
    """

    @abstractmethod
    def apply_to_master(self, master, pool):
        """
        Propagate this constraint on the restricted master.

        Returns:
            str: CUTOFF, REDUCED or DID_NOT_FIND
        """

    @abstractmethod
    def apply_to_subproblem(self, subproblem):
        pass

    @abstractmethod
    def is_column_compatible(self, column):
        pass


class ZeroOneBranching(BranchingConstraint):
    """
    Branching on an original variable of one flow.

    ZERO: every column of the flow must have bit var_index = 0.
    ONE:  every column of the flow must have bit var_index = 1.

    Attributes:
        flow: Flow index
        var_index: Original variable index
        polarity: ZERO or ONE
        node_id: Node that owns this constraint
        n_propagated: Pool size already scanned for this constraint
        fixed_columns: Keys of the columns this constraint fixed to zero
        active: True while the owning node's subtree is being processed
    """

    def __init__(self, flow, var_index, polarity, node_id):
        if polarity not in (ZERO, ONE):
            raise ValueError(f"Unknown polarity {polarity!r}")
        self.flow = flow
        self.var_index = var_index
        self.polarity = polarity
        self.node_id = node_id
        self.n_propagated = 0
        self.fixed_columns = []
        self.active = False

    @property
    def required_bit(self):
        return 1 if self.polarity == ONE else 0

    def is_column_compatible(self, column):
        """Accepts a Column or a bare incidence vector."""
        incidence = getattr(column, 'incidence', column)
        return int(incidence[self.var_index]) == self.required_bit

    def activate(self, master, pool):
        self.active = True
        return self.apply_to_master(master, pool)

    def apply_to_master(self, master, pool):
        result = DID_NOT_FIND

        # Fixings are node-local bounds; restore the ones made on earlier visits
        for key in self.fixed_columns:
            if not master.fix_column_to_zero(pool.get(key)):
                logger.info(f"Cutoff at node {self.node_id}: column {key} of flow {self.flow} "
                            f"has lower bound 1 but violates {self!r}")
                return CUTOFF
            result = REDUCED

        size = pool.size
        for column in pool.columns_of(self.flow, start=self.n_propagated):
            if pool.position(column) >= size:
                break
            if self.is_column_compatible(column):
                continue
            if not master.fix_column_to_zero(column):
                logger.info(f"Cutoff at node {self.node_id}: column {column.key} of flow {self.flow} "
                            f"has lower bound 1 but violates {self!r}")
                return CUTOFF
            self.fixed_columns.append(column.key)
            result = REDUCED
        self.n_propagated = size
        master.Model.update()
        return result

    def apply_to_subproblem(self, subproblem):
        """Tighten the bound of the branched variable in the pricing MIP of this flow."""
        if subproblem.flow != self.flow:
            return
        var = subproblem.original_var(self.var_index)
        if self.polarity == ZERO:
            var.UB = 0
        else:
            var.LB = 1
        subproblem.Model.update()

    def deactivate(self, master, pool, debug_checks=True):
        """
        Backtrack past this constraint and mark the pool as scanned.

        Columns beyond the last scan (left over after a cutoff) are recorded in
        fixed_columns so the next activation re-applies them with the rest.
        """
        self.active = False
        fixed = set(self.fixed_columns)
        for column in pool.columns_of(self.flow):
            if self.is_column_compatible(column) or column.key in fixed:
                continue
            if debug_checks:
                assert pool.position(column) >= self.n_propagated, \
                    f"{column!r} violates {self!r} but was never fixed"
            self.fixed_columns.append(column.key)
        self.n_propagated = pool.size

    def conflicts_with(self, other):
        return (self.flow == other.flow and self.var_index == other.var_index
                and self.polarity != other.polarity)

    def __repr__(self):
        return (f"ZeroOneBranch(flow={self.flow}, var={self.var_index}, "
                f"{self.polarity.upper()}, node={self.node_id})")


def find_path_conflict(constraints):
    """
    Return the first pair of constraints on a path that fix the same
    (flow, variable) to opposite values, or None.
    """
    seen = {}
    for constraint in constraints:
        key = (constraint.flow, constraint.var_index)
        other = seen.get(key)
        if other is not None and other.polarity != constraint.polarity:
            return other, constraint
        seen.setdefault(key, constraint)
    return None


def is_fractional(value, tol):
    return min(value - math.floor(value), math.ceil(value) - value) > tol


def select_branching_candidate(pool, lambdas, n_flows, tol=1e-6):
    """
    First (flow, original variable) whose aggregated usage is fractional.

    Flows are scanned in index order. For each flow, the fractional columns
    contribute lambda * incidence to a per-variable sum; the first variable
    whose sum is not within tol of 0 or 1 is returned.

    Args:
        pool: ColumnPool
        lambdas: Dict {column key: LP value}
        n_flows: Number of flows
        tol: Integrality tolerance

    Returns:
        dict with 'flow', 'var_index', 'value' or None
    """
    for k in range(n_flows):
        fractional = [(column, lambdas[column.key]) for column in pool.columns_of(k)
                      if column.key in lambdas and is_fractional(lambdas[column.key], tol)]
        if not fractional:
            continue

        usage = np.zeros(len(fractional[0][0].incidence))
        for column, value in fractional:
            usage += value * column.incidence

        candidates = np.flatnonzero((usage > tol) & (usage < 1 - tol))
        if candidates.size:
            j = int(candidates[0])
            return {'flow': k, 'var_index': j, 'value': float(usage[j])}
    return None
