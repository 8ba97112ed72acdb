from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

UNKNOWN_ENTITY_NAME = 'Unknown'
UNKNOWN_ENTITY_TYPE = 'Unknown'


class AttributionMethod(str, Enum):
    EXISTING_ENTRY = "existing_entry"
    DIRECT_MATCH = "direct_match"
    CLUSTER_ANALYSIS = "cluster_analysis"
    BEHAVIORAL_ANALYSIS = "behavioral_analysis"
    NONE = "none"


class SkipReason(str, Enum):
    LOW_CONFIDENCE = "low_confidence"
    NO_NEW_ADDRESSES = "no_new_addresses"
    SMALL_UNATTRIBUTED_CLUSTER = "small_unattributed_cluster"
    UPDATE_ERROR = "update_error"
    CREATION_ERROR = "creation_error"


class EntityHit(BaseModel):
    """One store match for a cluster member"""
    entity_id: str
    entity_name: str
    entity_type: str
    matched_address: str
    confidence_base: float


class ClusterAttribution(BaseModel):
    """Consensus attribution of one cluster"""
    entity_id: Optional[str] = Field(None, description="Best entity, None if unattributed")
    entity_name: str = Field(UNKNOWN_ENTITY_NAME)
    entity_type: str = Field(UNKNOWN_ENTITY_TYPE)
    confidence: float = Field(0.0, ge=0.0, le=0.99)
    addresses: List[str] = Field(default_factory=list, description="All cluster members")
    matched_addresses: List[str] = Field(default_factory=list, description="Members found in the store")


class AddressAttribution(BaseModel):
    """Attribution of a single address through the fallback chain"""
    entity_id: Optional[str] = None
    entity_name: str = UNKNOWN_ENTITY_NAME
    entity_type: str = UNKNOWN_ENTITY_TYPE
    confidence: float = Field(0.0, ge=0.0, le=0.99)
    attribution_method: AttributionMethod = AttributionMethod.NONE
    related_addresses: List[str] = Field(default_factory=list)
    matched_addresses: List[str] = Field(default_factory=list)


class AddressIdentification(BaseModel):
    """Result of the orchestrator's single-address identification"""
    address: str
    entity_id: Optional[str] = None
    entity_name: str = UNKNOWN_ENTITY_NAME
    entity_type: str = UNKNOWN_ENTITY_TYPE
    confidence: float = 0.0
    method: AttributionMethod = AttributionMethod.NONE
    analysis_performed: bool = False
    transactions_analyzed: int = 0
    related_addresses: List[str] = Field(default_factory=list)
    matched_addresses: List[str] = Field(default_factory=list)


class EntityUpdate(BaseModel):
    cluster_id: str
    entity_id: str
    entity_name: str
    addresses_added: List[str]


class EntityCreation(BaseModel):
    cluster_id: str
    entity_id: str
    entity_name: str
    address_count: int


class SkippedCluster(BaseModel):
    cluster_id: str
    reason: SkipReason
    entity_id: Optional[str] = None
    confidence: Optional[float] = None
    address_count: Optional[int] = None
    error: Optional[str] = None


class EntityUpdateReport(BaseModel):
    updated: List[EntityUpdate] = Field(default_factory=list)
    created: List[EntityCreation] = Field(default_factory=list)
    skipped: List[SkippedCluster] = Field(default_factory=list)


class IdentificationResult(BaseModel):
    """Output of one identification pipeline run"""
    transaction_count: int
    address_count: int
    cluster_count: int
    clusters: Dict[str, List[str]]
    attributions: Dict[str, ClusterAttribution]
    updates: Optional[EntityUpdateReport] = None
