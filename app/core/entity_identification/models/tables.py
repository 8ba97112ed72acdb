from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow():
    return datetime.now(timezone.utc)


class EntityRecord(Base):
    __tablename__ = 'entities'

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False, index=True)
    type = Column(String(50), nullable=False, default='Unknown', index=True)  # Exchange, Mixer, ...
    description = Column(Text, nullable=True)
    confidence_score = Column(Float, nullable=False, default=0.5)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f"<Entity {self.id} {self.name} ({self.type}) confidence:{self.confidence_score:.2f}>"


class EntityAddressRecord(Base):
    """Reverse index address -> entity; one owner per address"""
    __tablename__ = 'entity_addresses'

    address = Column(String(128), primary_key=True)  # lowercased
    entity_id = Column(String(64), ForeignKey('entities.id', ondelete='CASCADE'), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)  # order within the entity's address list

    def __repr__(self):
        return f"<EntityAddress {self.address[:10]}... -> {self.entity_id}>"
