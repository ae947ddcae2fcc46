import logging

import gurobipy as gu
import numpy as np

from network_data import DataConsistencyError

PARTITION = 'partition'
CAPACITY = 'capacity'
EXCLUSIVITY = 'exclusivity'


class InfeasibleRelaxationError(RuntimeError):
    """
    The restricted master LP became infeasible.

    Farkas pricing is not available, so the node cannot be repaired by new
    columns and cannot be safely pruned either.
    """

    def __init__(self, message, node_id=None, branching_constraints=None):
        super().__init__(message)
        self.node_id = node_id
        self.branching_constraints = list(branching_constraints or [])


class MasterProblem:
    """
    Restricted master LP over the generated columns.

    Constraint ids form one flat index space fixed by buildModel():
        [0, n_flows)                      partition, one per flow
        next n_electronic ids             capacity, one per electronic link (link order)
        next n_optical * W ids            exclusivity, (optical link, wavelength), link-major
    """

    def __init__(self, data, pool, verbose=False, deterministic=False, use_warmstart=True):
        self.data = data
        self.pool = pool
        self.logger = logging.getLogger(__name__)
        self._solve_counter = 0

        # Create Gurobi environment with suppressed output
        env = gu.Env(empty=True)
        env.setParam('OutputFlag', 0)
        env.start()
        self.env = env
        self.Model = gu.Model("MasterProblem", env=env)
        self.Model.Params.Seed = 0
        self.deterministic = deterministic
        if self.deterministic:
            self.Model.Params.Threads = 1

        self.verbose = verbose
        self.use_warmstart = use_warmstart

        self.cons_partition = {}
        self.cons_capacity = {}
        self.cons_exclusivity = {}
        self.constraints = []
        self._kind = []
        self.capacity_id = {}
        self.exclusivity_id = {}
        self.lmbda = {}
        self.branching_bounds = {}

    def buildModel(self):
        self.genCons()
        self.genObj()
        self.Model.update()

    def genCons(self):
        for k, flow in enumerate(self.data.flows):
            constr = self.Model.addLConstr(gu.LinExpr(), gu.GRB.EQUAL, 1, name=f"partition({k})")
            self.cons_partition[k] = constr
            self._register(constr, (PARTITION, k))

        for l in self.data.electronic_links:
            link = self.data.links[l]
            constr = self.Model.addLConstr(gu.LinExpr(), gu.GRB.LESS_EQUAL, link.capacity, name=f"capacity({l})")
            self.cons_capacity[l] = constr
            self.capacity_id[l] = self._register(constr, (CAPACITY, l))

        for l in self.data.optical_links:
            for w in range(self.data.n_wavelengths):
                constr = self.Model.addLConstr(gu.LinExpr(), gu.GRB.LESS_EQUAL, 1, name=f"exclusivity({l},{w})")
                self.cons_exclusivity[l, w] = constr
                self.exclusivity_id[l, w] = self._register(constr, (EXCLUSIVITY, l, w))

    def _register(self, constr, kind):
        self.constraints.append(constr)
        self._kind.append(kind)
        return len(self.constraints) - 1

    def genObj(self):
        self.Model.ModelSense = gu.GRB.MINIMIZE

    @property
    def n_constraints(self):
        return len(self.constraints)

    # ------------------------------------------------------------------
    # Membership queries
    # ------------------------------------------------------------------

    def partition_id(self, k):
        return k

    def constraint_kind(self, cid):
        """Return ('partition', flow), ('capacity', link) or ('exclusivity', link, wavelength)."""
        return self._kind[cid]

    def coefficient(self, flow, cid):
        if self._kind[cid][0] == CAPACITY:
            return self.data.flows[flow].bandwidth
        return 1

    def membership_for(self, flow, links, wavelengths):
        """Constraint ids of a route: partition, electronic capacities, occupied slots."""
        members = [self.partition_id(flow)]
        members.extend(self.capacity_id[l] for l in links if l in self.capacity_id)
        for l, slots in wavelengths.items():
            members.extend(self.exclusivity_id[l, w] for w in slots)
        return members

    # ------------------------------------------------------------------
    # Columns
    # ------------------------------------------------------------------

    def add_column(self, flow, cost, membership, incidence, links, wavelengths=None, is_fallback=False):
        """
        Add a column to the pool and the LP.

        Returns:
            Column: Stable handle of the new column
        """
        column = self.pool.add(flow, cost, membership, incidence, links, wavelengths, is_fallback)
        coeffs = [self.coefficient(flow, cid) for cid in column.membership]
        constrs = [self.constraints[cid] for cid in column.membership]
        self.lmbda[column.key] = self.Model.addVar(obj=cost, lb=0.0, ub=gu.GRB.INFINITY,
                                                   vtype=gu.GRB.CONTINUOUS,
                                                   column=gu.Column(coeffs, constrs),
                                                   name=column.name)
        self.Model.update()
        return column

    def add_initial_columns(self):
        """One fallback column per flow, using only that flow's fallback link."""
        columns = []
        for k, flow in enumerate(self.data.flows):
            l = self.data.fallback_link(k)
            link = self.data.links[l]
            if link.capacity != flow.bandwidth:
                raise DataConsistencyError(
                    f"Fallback link {l} of flow {k} has capacity {link.capacity}, "
                    f"expected the flow bandwidth {flow.bandwidth}")
            incidence = np.zeros(self.data.n_original_vars, dtype=np.int8)
            incidence[self.data.x_index(l)] = 1
            cost = self.data.route_cost(k, [l])
            members = [self.partition_id(k), self.capacity_id[l]]
            columns.append(self.add_column(k, cost, members, incidence, [l], {}, is_fallback=True))
        self.Model.update()
        self.logger.info(f"Master initialized: {self.n_constraints} constraints, {len(columns)} fallback columns")
        return columns

    # ------------------------------------------------------------------
    # Solving
    # ------------------------------------------------------------------

    def solRelModel(self, time_limit=None):
        """Solve the LP relaxation and return the Gurobi status code."""
        self._solve_counter += 1
        self.Model.Params.OutputFlag = 0
        self.Model.Params.TimeLimit = gu.GRB.INFINITY if time_limit is None else max(time_limit, 0.0)

        # First solve with barrier, then dual simplex on top of the last basis
        if self.use_warmstart and self._solve_counter > 1:
            self.Model.Params.Method = 1
            self.Model.Params.LPWarmStart = 2
        elif self.deterministic:
            self.Model.Params.Method = 1
        else:
            self.Model.Params.Method = 2

        self.Model.optimize()
        status = self.Model.Status

        if self.verbose and status == gu.GRB.INFEASIBLE:
            self.Model.computeIIS()
            self.logger.debug('The following constraints and variables are in the IIS:')
            for c in self.Model.getConstrs():
                if c.IISConstr:
                    self.logger.debug(f'\t{c.ConstrName}: {c.Sense} {c.RHS}')
            for v in self.Model.getVars():
                if v.IISUB:
                    self.logger.debug(f'\t{v.VarName} <= {v.UB}')
        return status

    @property
    def objective(self):
        return self.Model.ObjVal

    def getDuals(self):
        alpha = {l: c.Pi for l, c in self.cons_capacity.items()}
        beta = {key: c.Pi for key, c in self.cons_exclusivity.items()}
        gamma = {k: c.Pi for k, c in self.cons_partition.items()}
        return alpha, beta, gamma

    def getLambdaValues(self):
        return {key: var.X for key, var in self.lmbda.items()}

    def solve_as_ip(self, time_limit=None):
        """
        Solve the restricted master with binary columns.

        Returns:
            tuple: (objective, lambda values) or None when no solution was found
        """
        for var in self.lmbda.values():
            var.VType = gu.GRB.BINARY
        self.Model.Params.TimeLimit = gu.GRB.INFINITY if time_limit is None else max(time_limit, 0.0)
        try:
            self.Model.optimize()
            if self.Model.SolCount == 0:
                self.logger.debug(f"RMP as IP: no solution (status {self.Model.Status})")
                return None
            return self.Model.ObjVal, {key: var.X for key, var in self.lmbda.items()}
        finally:
            for var in self.lmbda.values():
                var.VType = gu.GRB.CONTINUOUS
            self.Model.update()

    # ------------------------------------------------------------------
    # Node-local bounds
    # ------------------------------------------------------------------

    def fix_column_to_zero(self, column):
        """
        Set the column's upper bound to zero.

        Returns:
            bool: False if the column's lower bound already forces it to 1 (cutoff)
        """
        var = self.lmbda[column.key]
        if var.LB > 0.5:
            return False
        if column.key not in self.branching_bounds:
            self.branching_bounds[column.key] = var.UB
        var.UB = 0.0
        return True

    def is_fixed_to_zero(self, column):
        return column.key in self.branching_bounds

    def reset_branching_bounds(self):
        for key, ub in self.branching_bounds.items():
            self.lmbda[key].UB = ub
        self.branching_bounds = {}
        self.Model.update()
