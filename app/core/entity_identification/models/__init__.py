from app.core.entity_identification.models.transaction import (
    Transaction,
    TransactionEndpoint,
    normalize_address,
)
from app.core.entity_identification.models.entity import Entity
from app.core.entity_identification.models.attribution import (
    AddressAttribution,
    AddressIdentification,
    AttributionMethod,
    ClusterAttribution,
    EntityCreation,
    EntityHit,
    EntityUpdate,
    EntityUpdateReport,
    IdentificationResult,
    SkippedCluster,
    SkipReason,
)
from app.core.entity_identification.models.risk import (
    BatchItemFailure,
    BulkRiskResult,
    RiskAssessment,
    RiskFactor,
    RiskLevel,
)
from app.core.entity_identification.models.pattern import (
    AddressBehaviorReport,
    BulkPatternResult,
    Anomaly,
    AnomalyReport,
    Pattern,
    PatternReport,
)

__all__ = [
    'Transaction',
    'TransactionEndpoint',
    'normalize_address',
    'Entity',
    'AddressAttribution',
    'AddressIdentification',
    'AttributionMethod',
    'ClusterAttribution',
    'EntityCreation',
    'EntityHit',
    'EntityUpdate',
    'EntityUpdateReport',
    'IdentificationResult',
    'SkippedCluster',
    'SkipReason',
    'BatchItemFailure',
    'BulkRiskResult',
    'RiskAssessment',
    'RiskFactor',
    'RiskLevel',
    'AddressBehaviorReport',
    'BulkPatternResult',
    'Anomaly',
    'AnomalyReport',
    'Pattern',
    'PatternReport',
]
