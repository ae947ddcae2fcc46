import copy


DEFAULT_SETTINGS = {
    # Problem parameters
    'n_wavelengths': 8,
    'wavelength_bandwidth': 100,
    'max_prop_delay': 1e4,
    'max_band_cost': 1e4,

    # Column generation
    'max_columns_per_flow': 3,
    'reduced_cost_threshold': 1e-6,
    'integrality_tol': 1e-6,
    'max_cg_iterations': 1000,
    'pricing_time_limit': 60,
    'pricing_memory_limit': None,
    'use_parallel_pricing': False,
    'n_pricing_workers': 1,

    # Tree search
    'search_strategy': 'dfs',
    'ip_heuristic_frequency': 10,
    'infeasible_node_policy': 'raise',

    # Solver behaviour
    'use_warmstart': True,
    'deterministic': False,
    'debug_checks': True,
    'verbose': False,
}

_CHOICES = {
    'search_strategy': ('dfs', 'bfs'),
    'infeasible_node_policy': ('raise', 'prune'),
}


def build_settings(overrides=None):
    """
    Merge user overrides into a copy of DEFAULT_SETTINGS.

    Args:
        overrides: Optional dict of setting -> value

    Returns:
        dict: Complete settings dictionary

    Raises:
        ValueError: Unknown key or invalid value
    """
    settings = copy.deepcopy(DEFAULT_SETTINGS)
    if not overrides:
        return settings

    unknown = sorted(set(overrides) - set(DEFAULT_SETTINGS))
    if unknown:
        raise ValueError(f"Unknown setting(s): {', '.join(unknown)}")

    settings.update(overrides)

    for key, allowed in _CHOICES.items():
        if settings[key] not in allowed:
            raise ValueError(f"Setting '{key}' must be one of {allowed}, got {settings[key]!r}")

    if settings['n_wavelengths'] < 1:
        raise ValueError("Setting 'n_wavelengths' must be >= 1")
    if settings['wavelength_bandwidth'] <= 0:
        raise ValueError("Setting 'wavelength_bandwidth' must be > 0")
    if settings['max_columns_per_flow'] < 1:
        raise ValueError("Setting 'max_columns_per_flow' must be >= 1")
    if settings['n_pricing_workers'] < 1:
        raise ValueError("Setting 'n_pricing_workers' must be >= 1")
    if settings['pricing_memory_limit'] is not None and settings['pricing_memory_limit'] <= 0:
        raise ValueError("Setting 'pricing_memory_limit' must be > 0 (GB) or None")

    return settings
