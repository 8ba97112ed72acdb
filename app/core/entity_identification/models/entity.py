from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Entity(BaseModel):
    """Known real-world actor owning a set of addresses"""
    id: str = Field(..., description="Entity identifier")
    name: str = Field(..., description="Display name, e.g. 'Binance'")
    type: str = Field('Unknown', description="Entity type (Exchange/Mixer/DeFi Protocol/...)")
    description: Optional[str] = Field(None, description="Free-text description")
    addresses: List[str] = Field(default_factory=list, description="Controlled addresses")
    confidence_score: float = Field(0.5, ge=0.0, le=1.0, description="Label confidence (0-1)")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def has_address(self, address: str) -> bool:
        target = address.lower()
        return any(addr.lower() == target for addr in self.addresses)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "1",
                "name": "Binance",
                "type": "Exchange",
                "description": "Major cryptocurrency exchange",
                "addresses": ["0x3f5ce5fbfe3e9af3971dd833d26ba9b5c936f0be"],
                "confidence_score": 0.95,
            }
        }
    )
