from collections import defaultdict
import logging

logger = logging.getLogger(__name__)


def check_solution(data, master, lambdas, tol=1e-6, verbose=False):
    """
    Check an integral master solution against the original constraints.

    Checks performed:
    1. Every lambda is integral and every flow selects exactly one column
    2. Every selected route is a source-destination path with consistent cost
    3. Electronic link capacities
    4. Wavelength exclusivity and per-link wavelength counts on optical links

    Parameters:
    - data (NetworkData): Fallback-augmented network data
    - master (MasterProblem): Master whose pool holds the columns
    - lambdas (dict): {column key: value}
    - tol (float): Integrality and capacity tolerance
    - verbose (bool): If True, log every issue at INFO level

    Returns:
    - is_feasible (bool): True if no issue was found
    - issues (list): Human-readable description of every violation
    """
    pool = master.pool
    issues = []

    # ========================================================================
    # CHECK 1: Partition
    # ========================================================================
    selected = defaultdict(list)
    for key, value in lambdas.items():
        if min(abs(value), abs(value - 1)) > tol:
            issues.append(f"Column {key} has fractional value {value:.6f}")
        elif value > 0.5:
            selected[key[0]].append(pool.get(key))

    for k in range(data.n_flows):
        if len(selected[k]) != 1:
            issues.append(f"Flow {k} selects {len(selected[k])} columns, expected exactly 1")

    # ========================================================================
    # CHECK 2: Routes
    # ========================================================================
    for k, columns in selected.items():
        for column in columns:
            issues.extend(_check_route(data, k, column, tol))

    # ========================================================================
    # CHECK 3: Capacity
    # ========================================================================
    load = defaultdict(float)
    for k, columns in selected.items():
        for column in columns:
            for l in column.links:
                if not data.links[l].is_optical:
                    load[l] += data.flows[k].bandwidth
    for l, used in sorted(load.items()):
        capacity = data.links[l].capacity
        if used > capacity + tol:
            issues.append(f"Link {l} carries {used:g}, capacity is {capacity:g}")

    # ========================================================================
    # CHECK 4: Wavelength exclusivity
    # ========================================================================
    owners = defaultdict(list)
    for k, columns in selected.items():
        for column in columns:
            for l, slots in column.wavelengths.items():
                for w in slots:
                    owners[l, w].append(column.key)
    for (l, w), keys in sorted(owners.items()):
        if len(keys) > 1:
            issues.append(f"Wavelength {w} on link {l} used by {keys}")

    is_feasible = not issues
    for issue in issues:
        if verbose:
            logger.info(f"❌ {issue}")
        else:
            logger.debug(issue)
    return is_feasible, issues


def _check_route(data, k, column, tol):
    flow = data.flows[k]
    issues = []
    if not column.links:
        return [f"Column {column.key} has no links"]

    # Follow the links from the source; the route must be a simple path
    succ = {}
    for l in column.links:
        link = data.links[l]
        if link.head in succ:
            issues.append(f"Column {column.key} leaves node {link.head} twice")
        succ[link.head] = link.tail
    node, visited = flow.source, {flow.source}
    while node in succ:
        node = succ[node]
        if node in visited:
            issues.append(f"Column {column.key} contains a cycle through node {node}")
            break
        visited.add(node)
    if node != flow.destination or len(visited) != len(column.links) + 1:
        issues.append(f"Column {column.key} is not a path from {flow.source} to {flow.destination}")

    needed = data.required_wavelengths(k)
    for l in column.links:
        if data.links[l].is_optical and len(column.wavelengths.get(l, ())) != needed:
            issues.append(f"Column {column.key} uses {len(column.wavelengths.get(l, ()))} wavelengths "
                          f"on link {l}, expected {needed}")
    for l in column.wavelengths:
        if l not in column.links:
            issues.append(f"Column {column.key} assigns wavelengths on unused link {l}")
    for n, w in data.wavelength_continuity_violations(k, column.links, column.wavelengths):
        issues.append(f"Column {column.key} changes wavelength {w} at optical node {n}")

    expected = data.route_cost(k, column.links)
    if abs(expected - column.cost) > tol * max(1.0, abs(expected)):
        issues.append(f"Column {column.key} has cost {column.cost:.6f}, route cost is {expected:.6f}")
    return issues


def check_instance_feasibility(data, verbose=True):
    """
    Pre-check before optimization: flows that cannot use any optical link
    and flows without any non-fallback route.

    Returns:
    - results (dict): {'warnings': [...], 'unroutable_flows': [...]}
    """
    results = {"warnings": [], "unroutable_flows": []}

    for k, flow in enumerate(data.flows):
        if data.optical_links and data.required_wavelengths(k) > data.n_wavelengths:
            results["warnings"].append(
                f"Flow {k} needs {data.required_wavelengths(k)} wavelengths, only "
                f"{data.n_wavelengths} exist; it cannot use optical links")

        # Reachability over non-fallback links
        reached, frontier = {flow.source}, [flow.source]
        while frontier:
            node = frontier.pop()
            for link in data.links[:data.n_base_links]:
                if link.head == node and link.tail not in reached:
                    reached.add(link.tail)
                    frontier.append(link.tail)
        if flow.destination not in reached:
            results["unroutable_flows"].append(k)
            results["warnings"].append(f"Flow {k} can only be routed over its fallback link")

    if verbose:
        for warning in results["warnings"]:
            logger.warning(warning)
    return results
