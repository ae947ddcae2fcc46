import argparse
import math
import sys

from CG import ColumnGeneration
from branch_and_price import BranchAndPrice
from logging_config import setup_multi_level_logging, get_logger
from masterproblem import InfeasibleRelaxationError
from network_data import DataConsistencyError
from solver_context import SolverContext
from solver_settings import build_settings
from Utils.instance_reader import read_instance
from Utils.feasability_checker import check_instance_feasibility
from Utils.Generell.utils import boxed_print, format_route
from Utils.Generell.plots import plot_cg_convergence

logger = get_logger(__name__)


def build_parser():
    parser = argparse.ArgumentParser(
        description='Branch-and-price for routing and wavelength assignment in hybrid optical/electronic networks')
    parser.add_argument('instance', help='Dataset file')
    parser.add_argument('--wavelengths', type=int, dest='n_wavelengths', help='Wavelength slots per optical link')
    parser.add_argument('--wavelength-bandwidth', type=float, dest='wavelength_bandwidth',
                        help='Bandwidth carried by one wavelength slot')
    parser.add_argument('--columns-per-flow', type=int, dest='max_columns_per_flow',
                        help='Best pricing solutions added per flow and iteration')
    parser.add_argument('--search', choices=['dfs', 'bfs'], dest='search_strategy', help='Node selection')
    parser.add_argument('--pricing-workers', type=int, dest='n_pricing_workers',
                        help='Price flows in a thread pool with this many workers')
    parser.add_argument('--pricing-time-limit', type=float, dest='pricing_time_limit',
                        help='Seconds per pricing MIP')
    parser.add_argument('--pricing-memory-limit', type=float, dest='pricing_memory_limit',
                        help='Soft memory limit per pricing MIP in GB')
    parser.add_argument('--ip-heuristic-frequency', type=int, dest='ip_heuristic_frequency',
                        help='Solve the restricted master as IP every N nodes (0 = root only, -1 = never)')
    parser.add_argument('--infeasible-node-policy', choices=['raise', 'prune'], dest='infeasible_node_policy',
                        help="What to do with a node whose LP is infeasible")
    parser.add_argument('--deterministic', action='store_true', default=None, help='Single-threaded Gurobi')
    parser.add_argument('--no-debug-checks', action='store_false', dest='debug_checks', default=None,
                        help='Skip propagation and incumbent re-checks')
    parser.add_argument('--time-limit', type=float, default=3600, help='Global time limit in seconds')
    parser.add_argument('--max-nodes', type=int, default=10000, help='Maximum number of explored nodes')
    parser.add_argument('--csv', help='Write the per-flow routing table to this CSV file')
    parser.add_argument('--plot', help='Write the CG convergence plot to this image file')
    parser.add_argument('--log-dir', help='Write per-level log files below this directory')
    parser.add_argument('--verbose', action='store_true', default=None, help='Show all log levels on the console')
    return parser


def settings_from_args(args):
    keys = ['n_wavelengths', 'wavelength_bandwidth', 'max_columns_per_flow', 'search_strategy',
            'pricing_time_limit', 'pricing_memory_limit', 'ip_heuristic_frequency',
            'infeasible_node_policy', 'deterministic', 'debug_checks', 'verbose']
    overrides = {key: getattr(args, key) for key in keys if getattr(args, key) is not None}
    if args.n_pricing_workers is not None:
        overrides['n_pricing_workers'] = args.n_pricing_workers
        overrides['use_parallel_pricing'] = args.n_pricing_workers > 1
    return build_settings(overrides)


def results_table(bnp, data):
    df = bnp.solution_dataframe()
    if df.empty:
        return df
    solution = bnp.extract_solution()
    df['route'] = [format_route(data, solution[k]) for k in df['flow']]
    return df


def _fmt(v):
    return 'None' if v is None or (isinstance(v, float) and math.isinf(v)) else f"{v:.4f}"


def print_summary(results, data, df):
    gap = results['gap']
    boxed_print(
        f"Instance: {data.name}",
        f"Nodes: {data.n_nodes}, links: {data.n_base_links} (+{data.n_links - data.n_base_links} fallback), "
        f"flows: {data.n_flows}, wavelengths: {data.n_wavelengths}",
        f"Objective (UB): {_fmt(results['incumbent'])}    LP bound (LB): {_fmt(results['lp_bound'])}    "
        f"Gap: {'None' if gap is None else f'{gap:.4%}'}",
        f"Root LP: {_fmt(results['root_lp'])}    Nodes: {results['nodes_explored']}    "
        f"CG iterations: {results['cg_iterations']}    Columns: {results['total_columns']}",
        f"Optimality certified: {results['optimality_certified']}    Time: {results['total_time']:.2f}s",
        width=100
    )
    if not df.empty:
        print(df[['flow', 'source', 'destination', 'bandwidth', 'cost', 'route']].to_string(index=False))


def main(argv=None):
    """
    Run branch-and-price on one dataset.

    Returns:
        int: Exit code (0 = solved, 1 = data or infeasibility error, 2 = no solution)
    """
    args = build_parser().parse_args(argv)
    try:
        settings = settings_from_args(args)
    except ValueError as exc:
        print(f"Invalid settings: {exc}", file=sys.stderr)
        return 1

    setup_multi_level_logging(base_log_dir=args.log_dir, enable_console=True,
                              print_all_logs=settings['verbose'])

    logger.info("=" * 100)
    logger.info("STARTING BRANCH-AND-PRICE SOLVER")
    logger.info("=" * 100)

    try:
        data = read_instance(args.instance, settings['n_wavelengths'], settings['wavelength_bandwidth'])
        check_instance_feasibility(data)
        context = SolverContext.build(data, settings)
    except (DataConsistencyError, OSError) as exc:
        logger.error(f"Could not load {args.instance}: {exc}")
        logger.print(f"Error: {exc}")
        return 1

    cg_solver = ColumnGeneration(context)
    bnp = BranchAndPrice(context, cg_solver)
    try:
        results = bnp.solve(time_limit=args.time_limit, max_nodes=args.max_nodes)
    except InfeasibleRelaxationError as exc:
        logger.error(str(exc))
        logger.print(f"Error: {exc}\nRe-run with --infeasible-node-policy prune to prune such nodes "
                     f"(optimality is then not certified).")
        return 1

    df = results_table(bnp, data)
    print_summary(results, data, df)

    if args.csv and not df.empty:
        df.to_csv(args.csv, index=False)
        logger.print(f"Routing table written to {args.csv}")
    if args.plot:
        plot_cg_convergence(cg_solver.lp_obj_history, filename=args.plot)
        logger.print(f"Convergence plot written to {args.plot}")

    return 0 if results['incumbent'] is not None else 2


if __name__ == "__main__":
    sys.exit(main())
