import logging

import gurobipy as gu
import numpy as np

# Any other status means the pricing MIP stopped before proving optimality
FINAL_STATUSES = (gu.GRB.OPTIMAL, gu.GRB.INFEASIBLE, gu.GRB.INF_OR_UNBD)


class PricingCandidate:
    """Improving route found by the pricing MIP, not yet added to the master."""

    def __init__(self, flow, cost, links, wavelengths, incidence, membership, objective, reduced_cost, rank):
        self.flow = flow
        self.cost = cost
        self.links = links
        self.wavelengths = wavelengths
        self.incidence = incidence
        self.membership = membership
        self.objective = objective
        self.reduced_cost = reduced_cost
        self.rank = rank

    def __repr__(self):
        return (f"PricingCandidate(flow={self.flow}, rank={self.rank}, links={self.links}, "
                f"rc={self.reduced_cost:.6f})")


class Subproblem:
    """
    Routing and wavelength assignment subproblem for one flow.

    Variables:
        x[l]     link l is on the route
        y[l, w]  wavelength w is taken on optical link l
        z[l, w]  conjunction of x[l] and y[l, w]; conserved per wavelength
                 through intermediate optical nodes

    The objective is the negated reduced cost without the partition dual, so a
    solution is profitable iff its objective exceeds -gamma_k.
    """

    def __init__(self, data, master, flow, duals, branching_constraints=(), max_columns=3,
                 threshold=1e-6, time_limit=60, memory_limit=None, deterministic=False, node_id=None):
        self.data = data
        self.master = master
        self.flow = flow
        self.alpha, self.beta, self.gamma = duals
        self.branching_constraints = [c for c in branching_constraints if c.flow == flow]
        self.max_columns = max_columns
        self.threshold = threshold
        self.time_limit = time_limit
        self.memory_limit = memory_limit
        self.node_id = node_id
        self.logger = logging.getLogger(__name__)

        self.status = None
        self.hit_limit = False
        self.n_discarded = 0

        env = gu.Env(empty=True)
        env.setParam('OutputFlag', 0)
        env.start()
        self.env = env
        self.Model = gu.Model(f"Pricing_{flow}", env=env)
        self.Model.Params.Seed = 0
        if deterministic:
            self.Model.Params.Threads = 1

    def buildModel(self):
        self.Model.Params.OutputFlag = 0
        self.Model.Params.TimeLimit = max(self.time_limit, 0.0)
        if self.memory_limit is not None:
            self.Model.Params.SoftMemLimit = self.memory_limit
        self.Model.Params.PoolSearchMode = 2
        self.Model.Params.PoolSolutions = self.max_columns
        self.Model.Params.MIPGap = 0.0
        self.Model.Params.IntFeasTol = 1e-6
        self.genVars()
        self.genCons()
        self.genObj()
        self.Model.update()
        for constraint in self.branching_constraints:
            constraint.apply_to_subproblem(self)

    def genVars(self):
        W = range(self.data.n_wavelengths)
        links = range(self.data.n_links)
        optical = self.data.optical_links
        self.x = self.Model.addVars(links, vtype=gu.GRB.BINARY, name="x")
        self.y = self.Model.addVars(optical, W, vtype=gu.GRB.BINARY, name="y")
        self.z = self.Model.addVars(optical, W, vtype=gu.GRB.BINARY, name="z")

    def genCons(self):
        flow = self.data.flows[self.flow]
        self._add_degree_constraints(flow)
        self._add_conservation_constraints(flow)
        self._add_wavelength_constraints()
        self._add_conjunction_constraints()
        self._add_continuity_constraints(flow)

    def _add_degree_constraints(self, flow):
        out_src = [l.index for l in self.data.links if l.head == flow.source]
        in_src = [l.index for l in self.data.links if l.tail == flow.source]
        in_dst = [l.index for l in self.data.links if l.tail == flow.destination]
        out_dst = [l.index for l in self.data.links if l.head == flow.destination]

        self.Model.addLConstr(gu.quicksum(self.x[l] for l in out_src) == 1, name='leave_source')
        self.Model.addLConstr(gu.quicksum(self.x[l] for l in in_dst) == 1, name='enter_destination')
        for l in in_src:
            self.x[l].UB = 0
        for l in out_dst:
            self.x[l].UB = 0

    def _add_conservation_constraints(self, flow):
        for node in self.data.nodes:
            n = node.index
            if n in (flow.source, flow.destination):
                continue
            outflow = gu.quicksum(self.x[l.index] for l in self.data.links if l.head == n)
            inflow = gu.quicksum(self.x[l.index] for l in self.data.links if l.tail == n)
            self.Model.addLConstr(outflow - inflow == 0, name=f'conservation_{n}')

    def _add_wavelength_constraints(self):
        """A used optical link carries exactly the number of slots the flow needs."""
        needed = self.data.required_wavelengths(self.flow)
        for l in self.data.optical_links:
            if needed > self.data.n_wavelengths:
                self.x[l].UB = 0
            self.Model.addLConstr(
                gu.quicksum(self.y[l, w] for w in range(self.data.n_wavelengths)) == needed * self.x[l],
                name=f'wavelength_count_{l}')

    def _add_conjunction_constraints(self):
        for l in self.data.optical_links:
            for w in range(self.data.n_wavelengths):
                self.Model.addLConstr(self.x[l] + self.y[l, w] - 2 * self.z[l, w] >= 0,
                                      name=f'conjunction_upper_{l}_{w}')
                self.Model.addLConstr(self.z[l, w] - self.x[l] - self.y[l, w] >= -1,
                                      name=f'conjunction_lower_{l}_{w}')

    def _add_continuity_constraints(self, flow):
        """
        Wavelength continuity through intermediate optical nodes.

        Between two optical hops the z variables are conserved per wavelength.
        An electronic link into or out of the node relaxes the row by one,
        which lets the lightpath end or start there.
        """
        data = self.data
        for node in data.nodes:
            n = node.index
            if not node.is_optical or n in (flow.source, flow.destination):
                continue
            opt_in = [l for l in data.optical_links if data.links[l].tail == n]
            opt_out = [l for l in data.optical_links if data.links[l].head == n]
            if not opt_in and not opt_out:
                continue
            e_in = gu.quicksum(self.x[l] for l in data.electronic_links if data.links[l].tail == n)
            e_out = gu.quicksum(self.x[l] for l in data.electronic_links if data.links[l].head == n)
            for w in range(data.n_wavelengths):
                z_in = gu.quicksum(self.z[l, w] for l in opt_in)
                z_out = gu.quicksum(self.z[l, w] for l in opt_out)
                self.Model.addLConstr(z_in - z_out - e_out <= 0, name=f'continuity_in_{n}_{w}')
                self.Model.addLConstr(z_out - z_in - e_in <= 0, name=f'continuity_out_{n}_{w}')

    def genObj(self):
        bw = self.data.flows[self.flow].bandwidth
        obj = gu.LinExpr()
        for l in range(self.data.n_links):
            coef = -self.data.link_cost(self.flow, l)
            if l in self.alpha:
                coef += self.alpha[l] * bw
            obj.addTerms(coef, self.x[l])
        for (l, w), var in self.y.items():
            obj.addTerms(self.beta.get((l, w), 0.0), var)
        self.Model.setObjective(obj, gu.GRB.MAXIMIZE)

    def original_var(self, j):
        """Subproblem variable for original variable index j."""
        kind = self.data.original_var(j)
        if kind[0] == 'x':
            return self.x[kind[1]]
        if kind[0] == 'y':
            return self.y[kind[1], kind[2]]
        return self.z[kind[1], kind[2]]

    # ------------------------------------------------------------------
    # Solving
    # ------------------------------------------------------------------

    def solModel(self):
        if self.time_limit <= 0:
            return self.record_status(gu.GRB.TIME_LIMIT)
        self.Model.optimize()
        return self.record_status(self.Model.Status)

    def record_status(self, status):
        """Store the final MIP status; anything short of a proof counts as a limit."""
        self.status = status
        self.hit_limit = status not in FINAL_STATUSES
        if status != gu.GRB.OPTIMAL and not self.hit_limit:
            self.logger.debug(f"Pricing for flow {self.flow} infeasible at node {self.node_id}")
        elif self.hit_limit:
            self.logger.warning(f"Pricing for flow {self.flow} stopped by limit (status {self.status}) "
                                f"at node {self.node_id}; no column this iteration")
        return self.status

    def getColumns(self):
        """
        Read up to max_columns improving routes from the solution pool.

        Returns:
            list: PricingCandidate objects in non-increasing objective order
        """
        if self.status != gu.GRB.OPTIMAL:
            return []

        gamma = self.gamma[self.flow]
        candidates = []
        previous = float('inf')
        for s in range(min(self.Model.SolCount, self.max_columns)):
            self.Model.Params.SolutionNumber = s
            objective = self.Model.PoolObjVal
            assert objective <= previous + 1e-6 * max(1.0, abs(previous)), \
                f"Solution pool of flow {self.flow} out of order: {objective} after {previous}"
            previous = objective

            if objective <= -gamma + self.threshold:
                break

            incidence = np.zeros(self.data.n_original_vars, dtype=np.int8)
            for l, var in self.x.items():
                if var.Xn > 0.5:
                    incidence[self.data.x_index(l)] = 1
            for (l, w), var in self.y.items():
                if var.Xn > 0.5:
                    incidence[self.data.y_index(l, w)] = 1
            for (l, w), var in self.z.items():
                if var.Xn > 0.5:
                    incidence[self.data.z_index(l, w)] = 1

            ok, reason = self.check_route(incidence)
            if not ok:
                self.n_discarded += 1
                self.logger.warning(f"Discarding pricing solution {s} of flow {self.flow} "
                                    f"at node {self.node_id}: {reason}")
                continue

            candidates.append(self._make_candidate(incidence, objective, s))
        return candidates

    def _make_candidate(self, incidence, objective, rank):
        links = [l for l in range(self.data.n_links) if incidence[self.data.x_index(l)]]
        wavelengths = {}
        for l in links:
            if self.data.links[l].is_optical:
                wavelengths[l] = [w for w in range(self.data.n_wavelengths) if incidence[self.data.y_index(l, w)]]
        membership = self.master.membership_for(self.flow, links, wavelengths)
        cost = self.data.route_cost(self.flow, links)
        return PricingCandidate(self.flow, cost, links, wavelengths, incidence, membership, objective,
                                self.reduced_cost(cost, links, wavelengths), rank)

    def reduced_cost(self, cost, links, wavelengths):
        bw = self.data.flows[self.flow].bandwidth
        rc = cost - self.gamma[self.flow]
        rc -= sum(self.alpha[l] * bw for l in links if l in self.alpha)
        rc -= sum(self.beta[l, w] for l, slots in wavelengths.items() for w in slots)
        return rc

    def check_route(self, incidence):
        """
        Re-check a 0/1 assignment against the original subproblem constraints
        and the active branching decisions.

        Returns:
            tuple: (ok, reason)
        """
        data = self.data
        flow = data.flows[self.flow]
        x = {l: int(incidence[data.x_index(l)]) for l in range(data.n_links)}

        out_deg = {n: 0 for n in range(data.n_nodes)}
        in_deg = {n: 0 for n in range(data.n_nodes)}
        for l, used in x.items():
            if used:
                out_deg[data.links[l].head] += 1
                in_deg[data.links[l].tail] += 1

        if out_deg[flow.source] != 1 or in_deg[flow.destination] != 1:
            return False, "source/destination degree violated"
        if in_deg[flow.source] or out_deg[flow.destination]:
            return False, "route re-enters source or leaves destination"
        for n in range(data.n_nodes):
            if n not in (flow.source, flow.destination) and out_deg[n] != in_deg[n]:
                return False, f"flow conservation violated at node {n}"

        needed = data.required_wavelengths(self.flow)
        for l in data.optical_links:
            ys = [int(incidence[data.y_index(l, w)]) for w in range(data.n_wavelengths)]
            zs = [int(incidence[data.z_index(l, w)]) for w in range(data.n_wavelengths)]
            if sum(ys) != needed * x[l]:
                return False, f"wavelength count on link {l} is {sum(ys)}"
            if any(z != (x[l] & y) for y, z in zip(ys, zs)):
                return False, f"conjunction variables inconsistent on link {l}"

        links = [l for l, used in x.items() if used]
        lit = {l: [w for w in range(data.n_wavelengths) if incidence[data.z_index(l, w)]]
               for l in data.optical_links}
        broken = data.wavelength_continuity_violations(self.flow, links, lit)
        if broken:
            n, w = broken[0]
            return False, f"wavelength {w} not continuous through node {n}"

        for constraint in self.branching_constraints:
            if not constraint.is_column_compatible(incidence):
                return False, f"violates {constraint!r}"
        return True, ""

    def dispose(self):
        self.Model.dispose()
        self.env.dispose()
