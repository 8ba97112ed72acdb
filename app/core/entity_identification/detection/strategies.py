"""
Pluggable detectors.

Detection that needs outside intelligence (mixer and darknet address lists,
hop analysis, counterparty reputation, entity behavior models) sits behind
small interfaces. The defaults report nothing, so a deployment can swap in
real detectors without touching the scoring pipeline.
"""

from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Sequence

from app.core.entity_identification.blockchain.transaction_normalizer import counterparties_for
from app.core.entity_identification.models.entity import Entity
from app.core.entity_identification.models.pattern import Anomaly
from app.core.entity_identification.models.transaction import Transaction, normalize_address


class InteractionDetector(ABC):
    """Decides whether an address interacted with a class of counterparties"""

    @abstractmethod
    def detect(self, address: str, transactions: Sequence[Transaction]) -> bool:
        pass


class NullInteractionDetector(InteractionDetector):
    """Never reports an interaction"""

    def detect(self, address: str, transactions: Sequence[Transaction]) -> bool:
        return False


class AddressListInteractionDetector(InteractionDetector):
    """Reports an interaction when any counterparty is on a known address list"""

    def __init__(self, addresses: Iterable[str]):
        self.addresses = {a for a in (normalize_address(x) for x in addresses) if a}

    def detect(self, address: str, transactions: Sequence[Transaction]) -> bool:
        return any(
            counterparty in self.addresses
            for tx in transactions
            for counterparty in counterparties_for(address, tx)
        )


class CounterpartyRiskDetector(ABC):
    """Produces ``counterparty_risk`` anomalies for an address"""

    @abstractmethod
    def detect(self, address: str, transactions: Sequence[Transaction]) -> List[Anomaly]:
        pass


class NullCounterpartyRiskDetector(CounterpartyRiskDetector):
    def detect(self, address: str, transactions: Sequence[Transaction]) -> List[Anomaly]:
        return []


class FlaggedCounterpartyDetector(CounterpartyRiskDetector):
    """Flags every transaction with a counterparty from a watch list"""

    def __init__(self, flagged_addresses: Iterable[str], severity: float = 0.8):
        self.flagged = {a for a in (normalize_address(x) for x in flagged_addresses) if a}
        self.severity = severity

    def detect(self, address: str, transactions: Sequence[Transaction]) -> List[Anomaly]:
        anomalies = []
        for tx in transactions:
            hits = [c for c in counterparties_for(address, tx) if c in self.flagged]
            if hits:
                anomalies.append(Anomaly(
                    type='counterparty_risk',
                    description=f"Transaction with flagged counterparty {hits[0]}",
                    severity=self.severity,
                    timestamp=tx.timestamp,
                    hash=tx.hash,
                    details={'counterparties': hits},
                ))
        return anomalies


class PatternSimilarityScorer(ABC):
    """Similarity (0-1) of an address's behavior to an entity's known behavior"""

    @abstractmethod
    def score(
        self,
        address: str,
        transactions: Sequence[Transaction],
        entity: Optional[Entity] = None,
    ) -> float:
        pass


class ConstantPatternSimilarity(PatternSimilarityScorer):
    def __init__(self, value: float = 0.3):
        self.value = value

    def score(
        self,
        address: str,
        transactions: Sequence[Transaction],
        entity: Optional[Entity] = None,
    ) -> float:
        return self.value
