"""
Reader for routing datasets.

Line-oriented format; blank lines and lines starting with '#' are ignored:

    <problem name>
    nNodes nOpticalNodes nLinks nOpticalLinks nFlows
    per node:  procDelay queueDelay jitter isOptical
               count link_1 ... link_count
    per link:  capacity propDelay bandCost isOptical
               head tail
    per flow:  source destination priority bandwidth delayPrice jitterPrice
"""

import logging

from network_data import DataConsistencyError, Flow, Link, Node, NetworkData

logger = logging.getLogger(__name__)


class _LineReader:
    def __init__(self, text, source):
        self.source = source
        self.lines = [(i, line.strip()) for i, line in enumerate(text.splitlines(), start=1)
                      if line.strip() and not line.strip().startswith('#')]
        self.pos = 0

    def next_line(self, what):
        if self.pos >= len(self.lines):
            raise DataConsistencyError(f"{self.source}: unexpected end of file while reading {what}")
        lineno, line = self.lines[self.pos]
        self.pos += 1
        return lineno, line

    def record(self, what, types, variable_tail=False):
        """Parse one line into the given types; with variable_tail, extra ints follow."""
        lineno, line = self.next_line(what)
        tokens = line.split()
        if len(tokens) < len(types) or (not variable_tail and len(tokens) != len(types)):
            raise DataConsistencyError(
                f"{self.source}, line {lineno}: {what} expects {len(types)} values, got {len(tokens)}: '{line}'")
        values = []
        for i, token in enumerate(tokens):
            cast = types[i] if i < len(types) else int
            try:
                values.append(cast(token))
            except ValueError:
                raise DataConsistencyError(
                    f"{self.source}, line {lineno}: invalid value '{token}' in {what}") from None
        return lineno, values

    def expect_end(self):
        if self.pos < len(self.lines):
            lineno, line = self.lines[self.pos]
            raise DataConsistencyError(f"{self.source}, line {lineno}: unexpected trailing data '{line}'")


def _flag(lineno, value, source, what):
    if value not in (0, 1):
        raise DataConsistencyError(f"{source}, line {lineno}: {what} flag must be 0 or 1, got {value}")
    return bool(value)


def parse_instance(text, n_wavelengths=8, wavelength_bandwidth=100, source='<string>'):
    """
    Parse a dataset from a string.

    Returns:
        NetworkData: Validated data without fallback links

    Raises:
        DataConsistencyError: Malformed line, count mismatch or invalid data
    """
    reader = _LineReader(text, source)

    _, name = reader.next_line('problem name')
    lineno, counts = reader.record('counts', (int, int, int, int, int))
    n_nodes, n_optical_nodes, n_links, n_optical_links, n_flows = counts
    if min(counts) < 0:
        raise DataConsistencyError(f"{source}, line {lineno}: negative count in {counts}")

    nodes = []
    for i in range(n_nodes):
        lineno, (proc, queue, jitter, optical) = reader.record(f'node {i}', (float, float, float, int))
        is_optical = _flag(lineno, optical, source, f'node {i} optical')
        lineno, adjacency = reader.record(f'adjacency of node {i}', (int,), variable_tail=True)
        count, links = adjacency[0], adjacency[1:]
        if count != len(links):
            raise DataConsistencyError(
                f"{source}, line {lineno}: node {i} declares {count} links but lists {len(links)}")
        nodes.append(Node(i, proc, queue, jitter, is_optical, links))

    links = []
    for i in range(n_links):
        lineno, (capacity, prop, band_cost, optical) = reader.record(f'link {i}', (int, float, float, int))
        is_optical = _flag(lineno, optical, source, f'link {i} optical')
        lineno, (head, tail) = reader.record(f'endpoints of link {i}', (int, int))
        links.append(Link(i, capacity, prop, band_cost, is_optical, head, tail))

    flows = []
    for k in range(n_flows):
        _, (src, dst, priority, bandwidth, delay_price, jitter_price) = reader.record(
            f'flow {k}', (int, int, float, int, float, float))
        flows.append(Flow(k, src, dst, priority, bandwidth, delay_price, jitter_price))

    reader.expect_end()

    data = NetworkData(name, nodes, links, flows, n_wavelengths=n_wavelengths,
                       wavelength_bandwidth=wavelength_bandwidth,
                       declared_optical=(n_optical_nodes, n_optical_links))
    try:
        data.validate()
    except DataConsistencyError as e:
        raise DataConsistencyError(f"{source}: {e}") from e
    logger.info(f"Read {data!r} from {source}")
    return data


def read_instance(path, n_wavelengths=8, wavelength_bandwidth=100):
    with open(path, 'r') as f:
        text = f.read()
    return parse_instance(text, n_wavelengths, wavelength_bandwidth, source=str(path))
