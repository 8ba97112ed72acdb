"""
Risk factor detectors.

Each detector inspects an address's entity attribution and transaction
history and either emits its factor (with the configured weight) or
nothing. The scorer runs a list of detectors; ``default_detectors`` builds
the standard catalogue.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

from app.core.entity_identification.blockchain.transaction_normalizer import is_incoming, is_outgoing
from app.core.entity_identification.config import RiskConfig
from app.core.entity_identification.detection.pattern_detection import PatternDetectionService
from app.core.entity_identification.detection.strategies import (
    InteractionDetector,
    NullInteractionDetector,
)
from app.core.entity_identification.models.risk import RiskFactor
from app.core.entity_identification.models.transaction import Transaction


@dataclass
class RiskContext:
    """Everything a detector may look at for one address"""
    address: str
    transactions: Sequence[Transaction]
    entity_type: str = 'Unknown'
    entity_confidence: float = 0.0
    now: Optional[datetime] = None
    weights: Dict[str, float] = field(default_factory=dict)


class RiskFactorDetector(ABC):
    factor_type: str = ''
    description: str = ''

    @abstractmethod
    def triggered(self, context: RiskContext) -> bool:
        pass

    def evaluate(self, context: RiskContext) -> Optional[RiskFactor]:
        if not self.triggered(context):
            return None
        return RiskFactor(
            type=self.factor_type,
            score=context.weights.get(self.factor_type, 0.0),
            description=self.description,
        )


class EntityTypeDetector(RiskFactorDetector):
    """Fires for a given entity type, or when the interaction strategy reports one"""

    def __init__(
        self,
        factor_type: str,
        entity_type: str,
        description: str,
        interaction: Optional[InteractionDetector] = None,
    ):
        self.factor_type = factor_type
        self.entity_type = entity_type
        self.description = description
        self.interaction = interaction or NullInteractionDetector()

    def triggered(self, context: RiskContext) -> bool:
        if context.entity_type == self.entity_type:
            return True
        return self.interaction.detect(context.address, context.transactions)


class InteractionFactorDetector(RiskFactorDetector):
    """Delegates entirely to an interaction strategy"""

    def __init__(self, factor_type: str, description: str, interaction: Optional[InteractionDetector] = None):
        self.factor_type = factor_type
        self.description = description
        self.interaction = interaction or NullInteractionDetector()

    def triggered(self, context: RiskContext) -> bool:
        return self.interaction.detect(context.address, context.transactions)


class UnusualActivityDetector(RiskFactorDetector):
    factor_type = 'unusualActivityPattern'
    description = 'Unusual transaction patterns detected'

    def __init__(self, anomaly_detector: PatternDetectionService, min_severity: float = 0.7):
        self.anomaly_detector = anomaly_detector
        self.min_severity = min_severity

    def triggered(self, context: RiskContext) -> bool:
        report = self.anomaly_detector.detect_anomalies(context.address, context.transactions)
        return any(a.severity >= self.min_severity for a in report.anomalies)


class NewAddressDetector(RiskFactorDetector):
    factor_type = 'newAddress'
    description = 'Recently created address with limited history'

    def __init__(self, max_age_days: int = 30):
        self.max_age_days = max_age_days

    def triggered(self, context: RiskContext) -> bool:
        timestamps = [tx.timestamp for tx in context.transactions if tx.timestamp is not None]
        if not timestamps:
            return True
        now = context.now or datetime.now(timezone.utc)
        return now - min(timestamps) < timedelta(days=self.max_age_days)


class HighValueTransferDetector(RiskFactorDetector):
    factor_type = 'highValueTransfers'
    description = 'High-value transfers detected'

    def __init__(self, threshold: float = 100.0):
        self.threshold = threshold

    def triggered(self, context: RiskContext) -> bool:
        return any(tx.value >= self.threshold for tx in context.transactions)


class RapidFundMovementDetector(RiskFactorDetector):
    """Incoming funds forwarded almost entirely within a short window"""
    factor_type = 'rapidFundMovement'
    description = 'Rapid movement of funds through multiple addresses'

    def __init__(self, window_hours: float = 1.0, forward_ratio: float = 0.9):
        self.window = timedelta(hours=window_hours)
        self.forward_ratio = forward_ratio

    def triggered(self, context: RiskContext) -> bool:
        dated = [tx for tx in context.transactions if tx.timestamp is not None]
        incoming = [tx for tx in dated if is_incoming(context.address, tx) and tx.value > 0]
        outgoing = [tx for tx in dated if is_outgoing(context.address, tx)]

        for received in incoming:
            for sent in outgoing:
                delay = sent.timestamp - received.timestamp
                if timedelta(0) <= delay <= self.window and sent.value >= received.value * self.forward_ratio:
                    return True
        return False


class LowTransparencyDetector(RiskFactorDetector):
    factor_type = 'lowTransparencyEntity'
    description = 'Associated with entity having low transparency'

    def __init__(self, min_confidence: float = 0.3):
        self.min_confidence = min_confidence

    def triggered(self, context: RiskContext) -> bool:
        return context.entity_type == 'Unknown' or context.entity_confidence < self.min_confidence


def default_detectors(
    config: Optional[RiskConfig] = None,
    anomaly_detector: Optional[PatternDetectionService] = None,
    mixer_interaction: Optional[InteractionDetector] = None,
    darknet_interaction: Optional[InteractionDetector] = None,
    hop_analysis: Optional[InteractionDetector] = None,
) -> List[RiskFactorDetector]:
    """Standard detector catalogue, in reporting order."""
    config = config or RiskConfig()
    return [
        EntityTypeDetector(
            'mixerInteraction', 'Mixer',
            'Interaction with cryptocurrency mixing services detected',
            mixer_interaction,
        ),
        EntityTypeDetector(
            'sanctionedEntity', 'Sanctioned',
            'Address belongs to a sanctioned entity',
        ),
        EntityTypeDetector(
            'darknetInteraction', 'DarknetMarket',
            'Interaction with darknet markets detected',
            darknet_interaction,
        ),
        EntityTypeDetector(
            'highRiskExchange', 'HighRiskExchange',
            'Address belongs to a high-risk exchange with weak KYC',
        ),
        UnusualActivityDetector(
            anomaly_detector or PatternDetectionService(),
            config.unusual_activity_min_severity,
        ),
        NewAddressDetector(config.new_address_days),
        HighValueTransferDetector(config.high_value_threshold),
        RapidFundMovementDetector(config.rapid_movement_window_hours, config.rapid_movement_ratio),
        InteractionFactorDetector(
            'manyHops',
            'Funds moving through many hops in short timeframe',
            hop_analysis,
        ),
        LowTransparencyDetector(config.low_transparency_confidence),
    ]
