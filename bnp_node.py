class BnPNode:
    """
    Represents a node in the Branch-and-Price search tree.

    Attributes:
        node_id: Unique node ID
        parent_id: Parent node ID (None for root)
        depth: Depth in search tree (root = 0)
        path: Path encoding (e.g., '01' for ZERO-child then ONE-child)
        lp_bound: LP value after column generation at this node
        parent_bound: LP bound of the parent (used to order and prune open nodes)
        cg_converged: False if column generation stopped on a limit
        is_integral: Boolean - is the LP solution integral?
        branching_constraints: All ZeroOneBranching constraints on the path from the root
        status: Node status in the search tree
            - 'open': Created, not processed yet
            - 'solved': Column generation finished, ready to be branched
            - 'branched': Two children were created (closed)
            - 'fathomed': Closed due to bound/cutoff/infeasibility/integrality
        fathom_reason: 'integral', 'bound', 'cutoff', 'infeasible', 'no_candidate'
    """

    def __init__(self, node_id, parent_id=None, depth=0, path='', parent_bound=-float('inf')):
        # Tree position
        self.node_id = node_id
        self.parent_id = parent_id
        self.depth = depth
        self.path = path

        # Bounds and status
        self.lp_bound = float('inf')
        self.parent_bound = parent_bound
        self.cg_converged = True
        self.cg_iterations = 0
        self.is_integral = False

        # Branching
        self.branching_constraints = []
        self.branching_candidate = None

        self.status = 'open'
        self.fathom_reason = None

        # LP solution {column key: value}
        self.master_solution = None

    def __str__(self):
        """Detailed string representation."""
        info = [
            f"Node {self.node_id}:",
            f"  Depth: {self.depth}",
            f"  Parent: {self.parent_id}",
            f"  Status: {self.status}",
            f"  LP Bound: {self.lp_bound:.6f}",
            f"  Is Integral: {self.is_integral}",
            f"  Branching Constraints: {len(self.branching_constraints)}",
        ]
        if self.branching_candidate:
            info.append(f"  Branching Candidate: flow {self.branching_candidate['flow']}, "
                        f"var {self.branching_candidate['var_index']}")
        if self.fathom_reason:
            info.append(f"  Fathom Reason: {self.fathom_reason}")
        return "\n".join(info)

    def __repr__(self):
        path_str = f"'{self.path}'" if self.path else "'root'"
        return (f"Node(id={self.node_id}, path={path_str}, depth={self.depth}, "
                f"status={self.status}, bound={self.lp_bound:.2f})")
