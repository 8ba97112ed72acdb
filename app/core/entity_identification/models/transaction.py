"""
Transaction model shared by every stage of the pipeline.

Raw records come from heterogeneous sources: account-model transfers with a
single ``from``/``to`` pair and UTXO-style transactions with explicit
``inputs``/``outputs`` lists. Parsing is lenient on value fields and strict
on the overall shape; records that cannot be parsed at all are rejected by
the normalizer and skipped.
"""

from datetime import datetime, timezone
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.core.entity_identification.utils.calculations import parse_numeric


def normalize_address(value: Any) -> Optional[str]:
    """Case-fold an address; anything that is not a non-empty string becomes None."""
    if not isinstance(value, str):
        return None
    address = value.strip().lower()
    return address or None


class TransactionEndpoint(BaseModel):
    """One input or output of a UTXO-style transaction"""
    model_config = ConfigDict(frozen=True, extra='ignore')

    address: Optional[str] = None
    value: float = 0.0

    @field_validator('address', mode='before')
    @classmethod
    def _normalize_address(cls, value: Any) -> Optional[str]:
        return normalize_address(value)

    @field_validator('value', mode='before')
    @classmethod
    def _parse_value(cls, value: Any) -> float:
        parsed = parse_numeric(value)
        return parsed if parsed is not None else 0.0


class Transaction(BaseModel):
    """Immutable transaction record"""
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra='ignore')

    hash: Optional[str] = Field(None, description="Transaction hash")
    timestamp: Optional[datetime] = Field(None, description="Block time (UTC)")
    from_address: Optional[str] = Field(None, alias='from')
    to_address: Optional[str] = Field(None, alias='to')
    value: float = Field(0.0, description="Transferred value in native units")
    gas_price: Optional[float] = Field(None, alias='gasPrice')
    gas_used: Optional[float] = Field(None, alias='gasUsed')
    inputs: Optional[List[TransactionEndpoint]] = None
    outputs: Optional[List[TransactionEndpoint]] = None

    @field_validator('from_address', 'to_address', mode='before')
    @classmethod
    def _normalize_addresses(cls, value: Any) -> Optional[str]:
        return normalize_address(value)

    @field_validator('value', mode='before')
    @classmethod
    def _parse_value(cls, value: Any) -> float:
        parsed = parse_numeric(value)
        return parsed if parsed is not None else 0.0

    @field_validator('gas_price', 'gas_used', mode='before')
    @classmethod
    def _parse_gas(cls, value: Any) -> Optional[float]:
        return parse_numeric(value)

    @field_validator('hash', mode='before')
    @classmethod
    def _stringify_hash(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        return str(value)

    @field_validator('timestamp', mode='before')
    @classmethod
    def _parse_timestamp(cls, value: Any) -> Any:
        if value is None or value == '':
            return None
        if isinstance(value, str) and value.strip().isdigit():
            value = int(value.strip())
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            try:
                return datetime.fromtimestamp(value, tz=timezone.utc)
            except (OverflowError, OSError) as e:
                raise ValueError(f"Timestamp out of range: {value}") from e
        return value

    @field_validator('timestamp')
    @classmethod
    def _ensure_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @field_validator('inputs', 'outputs', mode='before')
    @classmethod
    def _coerce_endpoints(cls, value: Any) -> Any:
        if value is None:
            return None
        if not isinstance(value, (list, tuple)):
            return None
        endpoints = []
        for item in value:
            if isinstance(item, str):
                endpoints.append({'address': item})
            elif isinstance(item, (dict, TransactionEndpoint)):
                endpoints.append(item)
        return endpoints
