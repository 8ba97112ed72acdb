from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from app.core.entity_identification.models.entity import utcnow


class RiskLevel(str, Enum):
    VERY_HIGH = "Very High"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"
    VERY_LOW = "Very Low"

    @classmethod
    def from_score(cls, score: float) -> 'RiskLevel':
        if score >= 0.8:
            return cls.VERY_HIGH
        if score >= 0.6:
            return cls.HIGH
        if score >= 0.4:
            return cls.MEDIUM
        if score >= 0.2:
            return cls.LOW
        return cls.VERY_LOW


class RiskFactor(BaseModel):
    """Named, weighted piece of risk evidence"""
    type: str = Field(..., description="Factor key, e.g. 'mixerInteraction'")
    score: float = Field(..., ge=0.0, le=1.0)
    description: str


class RiskAssessment(BaseModel):
    address: str
    entity_id: Optional[str] = None
    entity_name: str = 'Unknown'
    entity_type: str = 'Unknown'
    risk_score: float = Field(..., ge=0.0, le=0.95)
    risk_level: RiskLevel
    risk_factors: List[RiskFactor] = Field(default_factory=list)
    transaction_count: int = 0
    last_updated: datetime = Field(default_factory=utcnow)


class BatchItemFailure(BaseModel):
    address: str
    error: str


class BulkRiskResult(BaseModel):
    results: Dict[str, RiskAssessment] = Field(default_factory=dict)
    errors: List[BatchItemFailure] = Field(default_factory=list)
    total_processed: int = 0
    success_count: int = 0
    error_count: int = 0
