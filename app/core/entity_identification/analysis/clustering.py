import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from app.core.entity_identification.analysis.address_partition import AddressPartition
from app.core.entity_identification.analysis.behavioral_features import (
    BehavioralProfile,
    build_profile,
    profile_similarity,
)
from app.core.entity_identification.blockchain.transaction_normalizer import (
    RawTransaction,
    extract_unique_addresses,
    get_input_addresses,
    get_output_addresses,
    normalize_transactions,
)
from app.core.entity_identification.config import ClusteringConfig
from app.core.entity_identification.models.transaction import Transaction, normalize_address

logger = logging.getLogger(__name__)

Clusters = Dict[str, List[str]]


class AddressClusteringService:
    """
    Groups addresses that are likely controlled by the same actor.

    Heuristics, in order of strength:
    - Common-input ownership: co-spent inputs share one controller
    - Change address: the single never-seen output of a transaction
      belongs to the sender
    - Behavioral similarity: fallback for addresses neither of the above
      could place

    Every heuristic takes an optional existing cluster mapping and returns a
    new one; the mapping passed in is never modified.
    """

    def __init__(self, config: Optional[ClusteringConfig] = None):
        self.config = config or ClusteringConfig()

    # ------------------------------------------------------------------
    # Public heuristics
    # ------------------------------------------------------------------

    def common_input_clustering(
        self,
        transactions: Iterable[RawTransaction],
        clusters: Optional[Mapping[str, Sequence[str]]] = None,
    ) -> Clusters:
        partition = self._partition_from(clusters)
        self._apply_common_inputs(partition, normalize_transactions(transactions))
        return partition.clusters()

    def change_address_identification(
        self,
        transactions: Iterable[RawTransaction],
        clusters: Optional[Mapping[str, Sequence[str]]] = None,
    ) -> Clusters:
        partition = self._partition_from(clusters)
        self._apply_change_addresses(partition, normalize_transactions(transactions))
        return partition.clusters()

    def behavioral_clustering(
        self,
        addresses: Iterable[str],
        transactions: Iterable[RawTransaction],
        clusters: Optional[Mapping[str, Sequence[str]]] = None,
    ) -> Clusters:
        """
        Cluster ``addresses`` by behavioral similarity.

        Addresses that already belong to a multi-address cluster in
        ``clusters`` are left where they are.
        """
        partition = self._partition_from(clusters)
        residual = self._residual(partition, addresses)
        self._apply_behavioral(partition, residual, normalize_transactions(transactions))
        return partition.clusters()

    def combined_clustering(
        self,
        transactions: Iterable[RawTransaction],
        addresses: Optional[Iterable[str]] = None,
    ) -> Clusters:
        """
        Run all heuristics over one transaction set.

        Args:
            transactions: Raw or parsed transactions
            addresses: Addresses that must appear in the output; defaults to
                every address the transactions touch

        Returns:
            Disjoint clusters ``cluster_id -> [addresses]`` covering every
            supplied address
        """
        txs = normalize_transactions(transactions)
        if addresses is None:
            targets = extract_unique_addresses(txs)
        else:
            targets = [a for a in (normalize_address(x) for x in addresses) if a]

        partition = AddressPartition()
        self._apply_common_inputs(partition, txs)
        self._apply_change_addresses(partition, txs)

        residual = self._residual(partition, targets)
        self._apply_behavioral(partition, residual, txs)

        result = partition.clusters()
        logger.info(
            f"✅ Clustered {len(partition)} addresses into {len(result)} clusters "
            f"({len(txs)} transactions, {len(residual)} residual)"
        )
        return result

    # ------------------------------------------------------------------
    # Heuristic passes over a partition
    # ------------------------------------------------------------------

    def _apply_common_inputs(self, partition: AddressPartition, txs: List[Transaction]) -> None:
        merged = 0
        for tx in txs:
            inputs = get_input_addresses(tx)
            if len(inputs) >= 2:
                partition.union(*inputs)
                merged += 1
        logger.debug(f"Common-input heuristic applied to {merged} transactions")

    def _apply_change_addresses(self, partition: AddressPartition, txs: List[Transaction]) -> None:
        seen = set()
        linked = 0

        for tx in self._chronological(txs):
            inputs = get_input_addresses(tx)
            outputs = get_output_addresses(tx)

            novel = [o for o in outputs if o not in seen]
            if inputs and len(novel) == 1:
                partition.union(*inputs, novel[0])
                linked += 1

            seen.update(inputs)
            seen.update(outputs)

        logger.debug(f"Change-address heuristic linked {linked} addresses")

    def _apply_behavioral(
        self,
        partition: AddressPartition,
        residual: List[str],
        txs: List[Transaction],
    ) -> None:
        if not residual:
            return

        by_address = self._index_by_address(txs, residual)
        profiles: Dict[str, BehavioralProfile] = {
            address: build_profile(address, by_address[address], self.config.plain_transfer_gas)
            for address in residual
        }

        eligible = [
            a for a in residual
            if profiles[a].transaction_count >= self.config.min_behavioral_transactions
        ]
        assigned = set()

        for i, seed in enumerate(eligible):
            if seed in assigned:
                continue
            assigned.add(seed)
            for candidate in eligible[i + 1:]:
                if candidate in assigned:
                    continue
                similarity = profile_similarity(
                    profiles[seed], profiles[candidate], self.config.similarity_weights
                )
                if similarity >= self.config.behavioral_similarity_threshold:
                    partition.union(seed, candidate)
                    partition.label(seed, 'behavioral_cluster_')
                    assigned.add(candidate)

        for address in residual:
            partition.add(address)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _partition_from(clusters: Optional[Mapping[str, Sequence[str]]]) -> AddressPartition:
        if not clusters:
            return AddressPartition()
        return AddressPartition.from_clusters(clusters)

    @staticmethod
    def _residual(partition: AddressPartition, addresses: Iterable[str]) -> List[str]:
        """Addresses not yet placed in a multi-address cluster."""
        clustered = {a for group in partition.groups() if len(group) > 1 for a in group}
        residual = []
        for address in addresses:
            address = normalize_address(address)
            if not address or address in clustered:
                continue
            clustered.add(address)
            residual.append(address)
        return residual

    @staticmethod
    def _chronological(txs: List[Transaction]) -> List[Transaction]:
        """Timestamp order when every transaction has one, else given order."""
        if txs and all(tx.timestamp is not None for tx in txs):
            return sorted(txs, key=lambda tx: tx.timestamp)
        return txs

    @staticmethod
    def _index_by_address(txs: List[Transaction], addresses: List[str]) -> Dict[str, List[Transaction]]:
        wanted = set(addresses)
        index = defaultdict(list)
        for tx in txs:
            for address in set(get_input_addresses(tx)) | set(get_output_addresses(tx)):
                if address in wanted:
                    index[address].append(tx)
        return index
