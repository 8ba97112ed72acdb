from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from app.core.entity_identification.models.entity import utcnow
from app.core.entity_identification.models.risk import BatchItemFailure


class Pattern(BaseModel):
    """Behavioral regularity detected in an address's history"""
    type: str
    description: str
    confidence: float = Field(..., ge=0.0, le=0.95)
    details: Dict[str, Any] = Field(default_factory=dict)


class Anomaly(BaseModel):
    """Deviation from an address's own baseline"""
    type: str
    description: str
    severity: float = Field(..., ge=0.0, le=1.0)
    timestamp: Optional[datetime] = None
    hash: Optional[str] = Field(None, description="Triggering transaction, if any")
    details: Dict[str, Any] = Field(default_factory=dict)


class PatternReport(BaseModel):
    address: str
    pattern_count: int = 0
    patterns: Dict[str, Dict[str, Pattern]] = Field(default_factory=dict)
    message: Optional[str] = None
    last_updated: datetime = Field(default_factory=utcnow)


class AnomalyReport(BaseModel):
    address: str
    anomaly_count: int = 0
    anomalies: List[Anomaly] = Field(default_factory=list)
    message: Optional[str] = None
    last_updated: datetime = Field(default_factory=utcnow)


class AddressBehaviorReport(BaseModel):
    """Pattern and anomaly results for one address of a bulk run"""
    address: str
    patterns: PatternReport
    anomalies: AnomalyReport


class BulkPatternResult(BaseModel):
    results: Dict[str, AddressBehaviorReport] = Field(default_factory=dict)
    errors: List[BatchItemFailure] = Field(default_factory=list)
    total_processed: int = 0
    success_count: int = 0
    error_count: int = 0
