import bisect
import threading
import logging

import numpy as np


def sorted_membership(constraint_ids):
    """
    Build a membership tuple by ordered insertion.

    Raises:
        ValueError: If a constraint id appears twice
    """
    members = []
    for cid in constraint_ids:
        pos = bisect.bisect_left(members, cid)
        if pos < len(members) and members[pos] == cid:
            raise ValueError(f"Duplicate constraint id {cid} in column membership")
        members.insert(pos, cid)
        assert all(members[i] < members[i + 1] for i in range(max(pos - 1, 0), min(pos + 1, len(members) - 1)))
    return tuple(members)


class Column:
    """
    Generated master variable: one path plus wavelength assignment for a flow.

    Columns are created by the pool only and never change afterwards.

    Attributes:
        flow: Owning flow index
        seq: Sequence number within the flow (0 = fallback column)
        cost: Objective coefficient
        membership: Sorted tuple of constraint ids
        incidence: Read-only int8 vector over the original decision variables
        links: Tuple of chosen link indices
        wavelengths: Dict {optical link: tuple of wavelength slots}
        is_fallback: True for the initial fallback column
    """

    def __init__(self, flow, seq, cost, membership, incidence, links, wavelengths=None, is_fallback=False):
        self.flow = flow
        self.seq = seq
        self.cost = cost
        self.membership = sorted_membership(membership)
        incidence = np.array(incidence, dtype=np.int8)
        incidence.setflags(write=False)
        self.incidence = incidence
        self.links = tuple(links)
        self.wavelengths = {l: tuple(ws) for l, ws in (wavelengths or {}).items()}
        self.is_fallback = is_fallback

    @property
    def key(self):
        return (self.flow, self.seq)

    @property
    def name(self):
        return f"lmbda[{self.flow},{self.seq}]"

    def bit(self, j):
        return int(self.incidence[j])

    def __repr__(self):
        tag = ', fallback' if self.is_fallback else ''
        return f"Column({self.flow},{self.seq}, cost={self.cost:.4f}, links={list(self.links)}{tag})"


class ColumnPool:
    """
    Append-only pool of all columns generated during the search.

    The pool position of a column never changes, so branching constraints can
    remember how far they have scanned.
    """

    def __init__(self, n_flows):
        self.lock = threading.RLock()
        self.logger = logging.getLogger(__name__)
        self._columns = []
        self._by_key = {}
        self._by_flow = {k: [] for k in range(n_flows)}
        self.n_flow_columns = {k: 0 for k in range(n_flows)}

    def add(self, flow, cost, membership, incidence, links, wavelengths=None, is_fallback=False):
        """Append a new column and return it."""
        with self.lock:
            column = Column(flow, self.n_flow_columns[flow], cost, membership, incidence,
                            links, wavelengths, is_fallback)
            self._by_key[column.key] = len(self._columns)
            self._by_flow[flow].append(len(self._columns))
            self._columns.append(column)
            self.n_flow_columns[flow] += 1
            self.logger.debug(f"Pool: added {column!r} at position {len(self._columns) - 1}")
            return column

    @property
    def size(self):
        with self.lock:
            return len(self._columns)

    def __len__(self):
        return self.size

    def __getitem__(self, position):
        return self._columns[position]

    def __iter__(self):
        with self.lock:
            snapshot = list(self._columns)
        return iter(snapshot)

    def get(self, key):
        return self._columns[self._by_key[key]]

    def columns_of(self, flow, start=0):
        """Columns of a flow whose pool position is >= start."""
        with self.lock:
            return [self._columns[pos] for pos in self._by_flow[flow] if pos >= start]

    def position(self, column):
        return self._by_key[column.key]
