import logging
import math

PACKET_SIZE_BITS = 1500 * 8

logger = logging.getLogger(__name__)


class DataConsistencyError(ValueError):
    """Raised when a dataset or the derived model data is inconsistent."""


class Node:
    """
    Network node.

    Attributes:
        index: Node index
        proc_delay: Processing delay
        queue_delay: Queueing delay
        jitter: Jitter
        is_optical: True for optical nodes
        links: Tuple of connected link indices (adjacency list)
    """

    def __init__(self, index, proc_delay, queue_delay, jitter, is_optical, links=()):
        self.index = index
        self.proc_delay = float(proc_delay)
        self.queue_delay = float(queue_delay)
        self.jitter = float(jitter)
        self.is_optical = bool(is_optical)
        self.links = tuple(links)

    def __repr__(self):
        kind = 'optical' if self.is_optical else 'electronic'
        return f"Node({self.index}, {kind}, links={list(self.links)})"


class Link:
    """
    Directed link from head to tail.

    The transmission delay is derived: 0 for optical links and
    PACKET_SIZE_BITS / capacity for electronic links.
    """

    def __init__(self, index, capacity, prop_delay, band_cost, is_optical, head, tail, is_fallback=False):
        self.index = index
        self.capacity = capacity
        self.prop_delay = float(prop_delay)
        self.band_cost = float(band_cost)
        self.is_optical = bool(is_optical)
        self.head = head
        self.tail = tail
        self.is_fallback = is_fallback

    @property
    def trans_delay(self):
        if self.is_optical:
            return 0.0
        return PACKET_SIZE_BITS / self.capacity

    def __repr__(self):
        kind = 'optical' if self.is_optical else 'electronic'
        tag = ', fallback' if self.is_fallback else ''
        return f"Link({self.index}, {self.head}->{self.tail}, {kind}, cap={self.capacity}{tag})"


class Flow:
    def __init__(self, index, source, destination, priority, bandwidth, delay_price, jitter_price):
        self.index = index
        self.source = source
        self.destination = destination
        self.priority = float(priority)
        self.bandwidth = bandwidth
        self.delay_price = float(delay_price)
        self.jitter_price = float(jitter_price)

    def __repr__(self):
        return f"Flow({self.index}, {self.source}->{self.destination}, bw={self.bandwidth})"


class NetworkData:
    """
    Topology and demand model.

    Links keep the order in which they were loaded; fallback links are appended
    behind them, one per flow, by augment_with_fallback_links().

    Original decision variables (used for incidence vectors and branching) are
    indexed as:
        x[link]  -> link
        y[l, w]  -> n_links + pos(l) * W + w
        z[l, w]  -> n_links + n_optical * W + pos(l) * W + w
    where pos(l) is the rank of optical link l among all optical links.
    """

    def __init__(self, name, nodes, links, flows, n_wavelengths=8, wavelength_bandwidth=100,
                 declared_optical=None):
        self.name = name
        self.nodes = list(nodes)
        self.links = list(links)
        self.flows = list(flows)
        self.n_wavelengths = n_wavelengths
        self.wavelength_bandwidth = wavelength_bandwidth
        # (optical nodes, optical links) as stated by the dataset header, if any
        self.declared_optical = declared_optical
        self.fallback_augmented = False
        self.n_base_links = len(self.links)
        self._fallback_links = {}
        self._reindex()

    def _reindex(self):
        self.optical_links = [link.index for link in self.links if link.is_optical]
        self.electronic_links = [link.index for link in self.links if not link.is_optical]
        self._optical_pos = {l: pos for pos, l in enumerate(self.optical_links)}

    @property
    def n_nodes(self):
        return len(self.nodes)

    @property
    def n_links(self):
        return len(self.links)

    @property
    def n_flows(self):
        return len(self.flows)

    # ------------------------------------------------------------------
    # Validation and augmentation
    # ------------------------------------------------------------------

    def validate(self):
        """Raise DataConsistencyError on structural problems."""
        for i, node in enumerate(self.nodes):
            if node.index != i:
                raise DataConsistencyError(f"Node at position {i} carries index {node.index}")
            for l in node.links:
                if not 0 <= l < self.n_links:
                    raise DataConsistencyError(f"Node {i} lists unknown link {l}")

        for i, link in enumerate(self.links):
            if link.index != i:
                raise DataConsistencyError(f"Link at position {i} carries index {link.index}")
            if not (0 <= link.head < self.n_nodes and 0 <= link.tail < self.n_nodes):
                raise DataConsistencyError(f"Link {i} has endpoint outside 0..{self.n_nodes - 1}")
            if link.capacity <= 0:
                raise DataConsistencyError(f"Link {i} has non-positive capacity {link.capacity}")

        for k, flow in enumerate(self.flows):
            if flow.index != k:
                raise DataConsistencyError(f"Flow at position {k} carries index {flow.index}")
            if not (0 <= flow.source < self.n_nodes and 0 <= flow.destination < self.n_nodes):
                raise DataConsistencyError(f"Flow {k} has endpoint outside 0..{self.n_nodes - 1}")
            if flow.source == flow.destination:
                raise DataConsistencyError(f"Flow {k} has identical source and destination {flow.source}")
            if flow.bandwidth <= 0:
                raise DataConsistencyError(f"Flow {k} has non-positive bandwidth {flow.bandwidth}")

        if self.declared_optical is not None:
            n_opt_nodes, n_opt_links = self.declared_optical
            flagged = sum(node.is_optical for node in self.nodes)
            if flagged != n_opt_nodes:
                raise DataConsistencyError(f"{n_opt_nodes} optical nodes declared, {flagged} flagged")
            flagged = sum(link.is_optical for link in self.links)
            if flagged != n_opt_links:
                raise DataConsistencyError(f"{n_opt_links} optical links declared, {flagged} flagged")

    def augment_with_fallback_links(self, max_prop_delay, max_band_cost):
        """
        Append one electronic fallback link per flow (source -> destination,
        capacity = flow bandwidth, sentinel delay and cost).

        Single-shot: a second call raises DataConsistencyError.
        """
        if self.fallback_augmented:
            raise DataConsistencyError(
                f"Fallback links were already added to '{self.name}' "
                f"({self.n_links - self.n_base_links} links)")

        for flow in self.flows:
            link = Link(index=self.n_links,
                        capacity=flow.bandwidth,
                        prop_delay=max_prop_delay,
                        band_cost=max_band_cost,
                        is_optical=False,
                        head=flow.source,
                        tail=flow.destination,
                        is_fallback=True)
            self.links.append(link)
            self._fallback_links[flow.index] = link.index

        self.fallback_augmented = True
        self._reindex()
        logger.debug(f"Added {self.n_flows} fallback links to '{self.name}' ({self.n_links} links total)")

    def fallback_link(self, flow):
        if not self.fallback_augmented:
            raise DataConsistencyError("Fallback links have not been added yet")
        return self._fallback_links[flow]

    # ------------------------------------------------------------------
    # Route attributes
    # ------------------------------------------------------------------

    def link_delay(self, l):
        link = self.links[l]
        head = self.nodes[link.head]
        return head.proc_delay + head.queue_delay + link.prop_delay + link.trans_delay

    def link_jitter(self, l):
        return self.nodes[self.links[l].head].jitter

    def link_cost(self, k, l):
        """Weighted delay + jitter + bandwidth cost of flow k on link l."""
        flow = self.flows[k]
        return flow.priority * (flow.delay_price * self.link_delay(l)
                                + flow.jitter_price * self.link_jitter(l)
                                + flow.bandwidth * self.links[l].band_cost)

    def route_cost(self, k, links):
        return sum(self.link_cost(k, l) for l in links)

    def required_wavelengths(self, k):
        """Number of wavelength slots flow k occupies on every optical link it uses."""
        return math.ceil(self.flows[k].bandwidth / self.wavelength_bandwidth)

    def wavelength_continuity_violations(self, k, links, wavelengths):
        """
        Intermediate optical nodes where a lightpath changes its wavelengths.

        A lightpath passing an optical node transparently (optical link in,
        optical link out) keeps its wavelength set. An electronic link into or
        out of the node terminates the lightpath there, so wavelengths may then
        be dropped or added. Same rule as the continuity rows of the pricing
        model.

        Returns:
            list: Sorted (node, wavelength) pairs that break continuity
        """
        flow = self.flows[k]
        violations = []
        for node in self.nodes:
            n = node.index
            if not node.is_optical or n in (flow.source, flow.destination):
                continue
            into = [l for l in links if self.links[l].tail == n]
            out = [l for l in links if self.links[l].head == n]
            if not into and not out:
                continue
            e_in = sum(1 for l in into if not self.links[l].is_optical)
            e_out = sum(1 for l in out if not self.links[l].is_optical)
            for w in range(self.n_wavelengths):
                z_in = sum(1 for l in into if w in wavelengths.get(l, ()))
                z_out = sum(1 for l in out if w in wavelengths.get(l, ()))
                if z_in - z_out > e_out or z_out - z_in > e_in:
                    violations.append((n, w))
        return violations

    # ------------------------------------------------------------------
    # Original variable index space
    # ------------------------------------------------------------------

    @property
    def n_original_vars(self):
        return self.n_links + 2 * len(self.optical_links) * self.n_wavelengths

    def x_index(self, l):
        return l

    def y_index(self, l, w):
        return self.n_links + self._optical_pos[l] * self.n_wavelengths + w

    def z_index(self, l, w):
        n_opt = len(self.optical_links)
        return self.n_links + (n_opt + self._optical_pos[l]) * self.n_wavelengths + w

    def original_var(self, j):
        """Decode index j into ('x', link), ('y', link, w) or ('z', link, w)."""
        if not 0 <= j < self.n_original_vars:
            raise IndexError(f"Original variable index {j} outside 0..{self.n_original_vars - 1}")
        if j < self.n_links:
            return ('x', j)
        offset = j - self.n_links
        block = len(self.optical_links) * self.n_wavelengths
        kind = 'y' if offset < block else 'z'
        offset %= block
        pos, w = divmod(offset, self.n_wavelengths)
        return (kind, self.optical_links[pos], w)

    def describe_original_var(self, j):
        var = self.original_var(j)
        if var[0] == 'x':
            return f"x[link {var[1]}]"
        return f"{var[0]}[link {var[1]}, wl {var[2]}]"

    def __repr__(self):
        return (f"NetworkData('{self.name}', nodes={self.n_nodes}, links={self.n_links}, "
                f"optical_links={len(self.optical_links)}, flows={self.n_flows})")
