import logging

from column_pool import ColumnPool
from masterproblem import MasterProblem
from solver_settings import build_settings
from thread_safe_state import ThreadSafeSharedState

logger = logging.getLogger(__name__)


class SolverContext:
    """
    Everything one branch-and-price run works on: network data, settings,
    column pool, master LP and shared search state. Components receive it
    explicitly.
    """

    def __init__(self, data, settings=None):
        self.data = data
        self.settings = settings if settings is not None else build_settings()
        self.pool = ColumnPool(data.n_flows)
        self.state = ThreadSafeSharedState(search_strategy=self.settings['search_strategy'])
        self.master = MasterProblem(data, self.pool,
                                    verbose=self.settings['verbose'],
                                    deterministic=self.settings['deterministic'],
                                    use_warmstart=self.settings['use_warmstart'])

    @classmethod
    def build(cls, data, settings=None):
        """
        Add fallback links, build the master and add the fallback columns.

        Raises:
            DataConsistencyError: Invalid data or fallback capacity mismatch
        """
        settings = settings if settings is not None else build_settings()
        data.validate()
        if not data.fallback_augmented:
            data.augment_with_fallback_links(settings['max_prop_delay'], settings['max_band_cost'])
        context = cls(data, settings)
        context.master.buildModel()
        context.master.add_initial_columns()
        logger.info(f"Context ready for {data!r}")
        return context
