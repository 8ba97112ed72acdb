"""
Entity Identification Package

Groups blockchain addresses into clusters controlled by one actor, attributes
the clusters to known entities, scores addresses for risk and surfaces
transaction patterns and anomalies.
"""

from app.core.entity_identification.analysis.clustering import AddressClusteringService
from app.core.entity_identification.config import IdentificationSettings
from app.core.entity_identification.data_sources.entity_store import (
    EntityStore,
    InMemoryEntityStore,
    known_entities,
)
from app.core.entity_identification.data_sources.transaction_source import (
    InMemoryTransactionSource,
    TransactionSource,
)
from app.core.entity_identification.detection.entity_attribution import EntityAttributionService
from app.core.entity_identification.detection.pattern_detection import PatternDetectionService
from app.core.entity_identification.detection.risk_scoring import RiskScoringService
from app.core.entity_identification.services.identification import IdentificationOrchestrator

__version__ = "0.1.0"

__all__ = [
    "AddressClusteringService",
    "EntityAttributionService",
    "EntityStore",
    "IdentificationOrchestrator",
    "IdentificationSettings",
    "InMemoryEntityStore",
    "InMemoryTransactionSource",
    "PatternDetectionService",
    "RiskScoringService",
    "TransactionSource",
    "known_entities",
]
