import hashlib
from typing import Dict, Iterable, List, Mapping, Optional

from networkx.utils import UnionFind


def generate_cluster_id(members: Iterable[str], prefix: str = 'cluster_') -> str:
    """Deterministic cluster ID from the member addresses."""
    combined = ''.join(sorted(members))
    return prefix + hashlib.sha256(combined.encode()).hexdigest()[:16]


class AddressPartition:
    """
    Disjoint address sets backed by a union-find.

    Merges are transitive and order independent. Addresses remember the order
    in which they were first added so that exported clusters are stable.
    """

    def __init__(self, addresses: Optional[Iterable[str]] = None):
        self._sets = UnionFind()
        self._order: Dict[str, int] = {}
        # Root -> id prefix, for clusters formed by a specific heuristic
        self._labels: Dict[str, str] = {}
        for address in addresses or ():
            self.add(address)

    def __len__(self) -> int:
        return len(self._order)

    def add(self, address: str) -> None:
        if address not in self._order:
            self._order[address] = len(self._order)
            self._sets[address]

    def find(self, address: str) -> str:
        self.add(address)
        return self._sets[address]

    def union(self, *addresses: str) -> str:
        """Merge the sets of all given addresses; returns the new root."""
        for address in addresses:
            self.add(address)
        roots = {self._sets[a] for a in addresses}
        labels = {self._labels.pop(root, None) for root in roots}
        self._sets.union(*addresses)
        root = self._sets[addresses[0]] if addresses else None
        if root is not None and len(labels) == 1 and None not in labels:
            # A merged set keeps a label only if every part carried it
            self._labels[root] = labels.pop()
        return root

    def label(self, address: str, prefix: str) -> None:
        self._labels[self.find(address)] = prefix

    def groups(self) -> List[List[str]]:
        """Member lists, each in first-seen order, ordered by their first member."""
        by_root: Dict[str, List[str]] = {}
        for address in self._order:
            by_root.setdefault(self._sets[address], []).append(address)
        return list(by_root.values())

    def clusters(self, prefix: str = 'cluster_') -> Dict[str, List[str]]:
        """Export as ``cluster_id -> members``."""
        result = {}
        for members in self.groups():
            label = self._labels.get(self._sets[members[0]], prefix)
            result[generate_cluster_id(members, label)] = members
        return result

    @classmethod
    def from_clusters(cls, clusters: Mapping[str, Iterable[str]]) -> 'AddressPartition':
        partition = cls()
        for cluster_id, members in clusters.items():
            members = list(members)
            if not members:
                continue
            partition.union(*members)
            if cluster_id.startswith('behavioral_cluster_'):
                partition.label(members[0], 'behavioral_cluster_')
        return partition
