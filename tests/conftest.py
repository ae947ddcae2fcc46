import logging
import os

import pytest

from network_data import Flow, Link, Node, NetworkData
from solver_context import SolverContext
from solver_settings import build_settings

DATA_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'data')


def make_context(data, **overrides):
    settings = build_settings(dict({'n_wavelengths': data.n_wavelengths,
                                    'wavelength_bandwidth': data.wavelength_bandwidth,
                                    'deterministic': True}, **overrides))
    return SolverContext.build(data, settings)


def two_node_optical():
    """One optical link 0 -> 1 and one flow of bandwidth 400 (one wavelength of 1000)."""
    nodes = [Node(0, 1.0, 2.0, 0.5, True, links=[0]),
             Node(1, 1.0, 2.0, 0.5, True, links=[0])]
    links = [Link(0, capacity=1000, prop_delay=0.0, band_cost=1.0, is_optical=True, head=0, tail=1)]
    flows = [Flow(0, source=0, destination=1, priority=1, bandwidth=400, delay_price=200, jitter_price=500)]
    return NetworkData('scenario_a', nodes, links, flows, n_wavelengths=1, wavelength_bandwidth=1000)


def shared_electronic_link():
    """Two flows of 600 that both want the same electronic link of capacity 1000."""
    nodes = [Node(0, 1.0, 1.0, 1.0, False, links=[0]),
             Node(1, 1.0, 1.0, 1.0, False, links=[0])]
    links = [Link(0, capacity=1000, prop_delay=1.0, band_cost=1.0, is_optical=False, head=0, tail=1)]
    flows = [Flow(k, source=0, destination=1, priority=1, bandwidth=600, delay_price=1, jitter_price=1)
             for k in range(2)]
    return NetworkData('scenario_b', nodes, links, flows, n_wavelengths=2, wavelength_bandwidth=100)


def small_hybrid():
    """
    0 --e0--> 1 ==o1==> 2 --e2--> 3, plus direct electronic links 0 -> 3 (e3, e4)
    and a second optical link 1 ==o5==> 2.
    """
    nodes = [Node(0, 1.0, 2.0, 0.5, False, links=[0, 3, 4]),
             Node(1, 0.5, 0.5, 0.1, True, links=[0, 1, 5]),
             Node(2, 0.5, 0.5, 0.1, True, links=[1, 2, 5]),
             Node(3, 1.0, 2.0, 0.5, False, links=[2, 3, 4])]
    links = [Link(0, 1000, 1.0, 1.0, False, 0, 1),
             Link(1, 1000, 5.0, 0.5, True, 1, 2),
             Link(2, 1000, 1.0, 1.0, False, 2, 3),
             Link(3, 300, 20.0, 2.0, False, 0, 3),
             Link(4, 500, 2.0, 1.0, False, 0, 3),
             Link(5, 1000, 6.0, 0.5, True, 1, 2)]
    flows = [Flow(0, 0, 3, 1.0, 200, 1.0, 1.0),
             Flow(1, 0, 3, 2.0, 250, 1.0, 0.5),
             Flow(2, 1, 3, 1.0, 300, 0.5, 1.0)]
    return NetworkData('small_hybrid', nodes, links, flows, n_wavelengths=4, wavelength_bandwidth=100)


def optical_chain():
    """0 ==o0==> 1 ==o1==> 2, all optical, two wavelengths, one flow 0 -> 2 needing one slot."""
    nodes = [Node(0, 0.1, 0.1, 0.1, True, links=[0]),
             Node(1, 0.1, 0.1, 0.1, True, links=[0, 1]),
             Node(2, 0.1, 0.1, 0.1, True, links=[1])]
    links = [Link(0, 1000, 1.0, 1.0, True, 0, 1),
             Link(1, 1000, 1.0, 1.0, True, 1, 2)]
    flows = [Flow(0, 0, 2, 1.0, 100, 1.0, 1.0)]
    return NetworkData('optical_chain', nodes, links, flows, n_wavelengths=2, wavelength_bandwidth=100)


@pytest.fixture
def scenario_a():
    return two_node_optical()


@pytest.fixture
def scenario_b():
    return shared_electronic_link()


@pytest.fixture
def hybrid():
    return small_hybrid()


@pytest.fixture
def chain():
    return optical_chain()


@pytest.fixture
def sample_path():
    return os.path.join(DATA_DIR, 'sample.oaar')


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
        if handler not in handlers:
            handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


@pytest.fixture
def context_factory():
    return make_context


@pytest.fixture
def hybrid_factory():
    return small_hybrid
