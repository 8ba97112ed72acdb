from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, Optional, Tuple

import numpy as np

from app.core.entity_identification.blockchain.transaction_normalizer import (
    counterparties_for,
    involves_address,
)
from app.core.entity_identification.models.transaction import Transaction
from app.core.entity_identification.utils.calculations import (
    clamp,
    cosine_similarity,
    jaccard_similarity,
    relative_similarity,
)


@dataclass(frozen=True)
class BehavioralProfile:
    """Behavioral feature vector of one address"""
    address: str
    transaction_count: int
    mean_value: float
    hour_histogram: Tuple[float, ...] = (0.0,) * 24
    mean_gas_price: Optional[float] = None
    contract_interactions: FrozenSet[str] = frozenset()


def build_profile(
    address: str,
    transactions: Iterable[Transaction],
    plain_transfer_gas: int = 21000,
) -> BehavioralProfile:
    """Feature vector over the transactions that involve ``address``."""
    own = [tx for tx in transactions if involves_address(address, tx)]

    hours = np.zeros(24)
    gas_prices = []
    contracts = set()
    for tx in own:
        if tx.timestamp is not None:
            hours[tx.timestamp.hour] += 1
        if tx.gas_price is not None:
            gas_prices.append(tx.gas_price)
        if tx.gas_used is not None and tx.gas_used > plain_transfer_gas:
            contracts.update(counterparties_for(address, tx))

    return BehavioralProfile(
        address=address,
        transaction_count=len(own),
        mean_value=float(np.mean([tx.value for tx in own])) if own else 0.0,
        hour_histogram=tuple(hours.tolist()),
        mean_gas_price=float(np.mean(gas_prices)) if gas_prices else None,
        contract_interactions=frozenset(contracts),
    )


def _gas_similarity(gas_a: Optional[float], gas_b: Optional[float]) -> float:
    if gas_a is None and gas_b is None:
        return 1.0
    if gas_a is None or gas_b is None:
        return 0.0
    return relative_similarity(gas_a, gas_b)


def profile_similarity(
    profile_a: BehavioralProfile,
    profile_b: BehavioralProfile,
    weights: Dict[str, float],
) -> float:
    """
    Weighted behavioral similarity of two addresses.

    Returns: Similarity score 0-1
    """
    components = {
        'transaction_count': relative_similarity(
            profile_a.transaction_count, profile_b.transaction_count
        ),
        'mean_value': relative_similarity(profile_a.mean_value, profile_b.mean_value),
        'hour_histogram': cosine_similarity(profile_a.hour_histogram, profile_b.hour_histogram),
        'mean_gas_price': _gas_similarity(profile_a.mean_gas_price, profile_b.mean_gas_price),
        'contract_interactions': jaccard_similarity(
            set(profile_a.contract_interactions), set(profile_b.contract_interactions)
        ),
    }

    total_weight = sum(weights.get(name, 0.0) for name in components)
    if total_weight == 0:
        return 0.0

    score = sum(value * weights.get(name, 0.0) for name, value in components.items())
    return clamp(score / total_weight)
