"""
Entity store interface and the in-memory adapter.

The store owns entities and the address -> entity reverse index. Lookups are
case-insensitive on the address. Stores are injected into the services; there
is no process-wide instance.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

from app.core.entity_identification.models.entity import Entity, utcnow
from app.core.entity_identification.utils.error_handling import EntityNotFoundError

logger = logging.getLogger(__name__)

_MUTABLE_FIELDS = ('name', 'type', 'description', 'addresses', 'confidence_score')


class EntityStore(ABC):
    """Async interface every entity store adapter implements"""

    @abstractmethod
    async def get_entities(self, filters: Optional[Mapping[str, Any]] = None) -> List[Entity]:
        """All entities, optionally filtered by field equality (e.g. ``{'type': 'Exchange'}``)."""

    @abstractmethod
    async def get_entity_by_id(self, entity_id: str) -> Entity:
        """
        Raises:
            EntityNotFoundError: unknown id
        """

    @abstractmethod
    async def find_entity_for_address(self, address: str) -> Optional[Entity]:
        """Entity owning ``address`` (case-insensitive), or None."""

    @abstractmethod
    async def create_entity(self, entity_data: Mapping[str, Any]) -> Entity:
        """Create an entity with a fresh id; ``confidence_score`` defaults to 0.5."""

    @abstractmethod
    async def update_entity(self, entity_id: str, changes: Mapping[str, Any]) -> Entity:
        """
        Apply field changes; a new ``addresses`` list replaces the old one.

        Raises:
            EntityNotFoundError: unknown id
        """

    async def check_connection(self) -> bool:
        """Probe the store; raises whatever the backend raises when unreachable."""
        await self.get_entities()
        return True


def _matches(entity: Entity, filters: Optional[Mapping[str, Any]]) -> bool:
    if not filters:
        return True
    return all(getattr(entity, key, None) == value for key, value in filters.items())


def new_entity_id() -> str:
    return str(uuid.uuid4())


def pick_entity_fields(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Known mutable fields of an entity payload; unknown keys are dropped."""
    fields = {key: data[key] for key in _MUTABLE_FIELDS if key in data and data[key] is not None}
    if 'addresses' in fields:
        fields['addresses'] = list(fields['addresses'])
    return fields


class InMemoryEntityStore(EntityStore):
    """
    Entity store held in process memory.

    Keeps the entity list plus a lowercased address -> entity id index.
    Returned entities are copies; mutate through ``update_entity``.
    """

    def __init__(self, entities: Optional[Iterable[Entity]] = None):
        self._entities: Dict[str, Entity] = {}
        self._address_index: Dict[str, str] = {}
        for entity in entities or ():
            self._entities[entity.id] = entity.model_copy(deep=True)
            self._index(entity)

    def _index(self, entity: Entity) -> None:
        for address in entity.addresses:
            self._address_index[address.lower()] = entity.id

    def _unindex(self, entity_id: str) -> None:
        stale = [addr for addr, owner in self._address_index.items() if owner == entity_id]
        for address in stale:
            del self._address_index[address]

    async def get_entities(self, filters: Optional[Mapping[str, Any]] = None) -> List[Entity]:
        return [
            entity.model_copy(deep=True)
            for entity in self._entities.values()
            if _matches(entity, filters)
        ]

    async def get_entity_by_id(self, entity_id: str) -> Entity:
        entity = self._entities.get(entity_id)
        if entity is None:
            raise EntityNotFoundError(f"Entity with ID {entity_id} not found")
        return entity.model_copy(deep=True)

    async def find_entity_for_address(self, address: str) -> Optional[Entity]:
        entity_id = self._address_index.get(address.lower())
        if entity_id is None:
            return None
        return await self.get_entity_by_id(entity_id)

    async def create_entity(self, entity_data: Mapping[str, Any]) -> Entity:
        fields = pick_entity_fields(entity_data)
        now = utcnow()
        entity = Entity(
            id=new_entity_id(),
            name=fields.pop('name', 'Unnamed entity'),
            created_at=now,
            updated_at=now,
            **fields,
        )
        self._entities[entity.id] = entity
        self._index(entity)
        logger.info(f"✅ Created entity {entity.id} ({entity.name}, {len(entity.addresses)} addresses)")
        return entity.model_copy(deep=True)

    async def update_entity(self, entity_id: str, changes: Mapping[str, Any]) -> Entity:
        current = self._entities.get(entity_id)
        if current is None:
            raise EntityNotFoundError(f"Entity with ID {entity_id} not found")

        fields = pick_entity_fields(changes)
        updated = Entity.model_validate({**current.model_dump(), **fields, 'updated_at': utcnow()})
        self._entities[entity_id] = updated

        if 'addresses' in fields:
            self._unindex(entity_id)
            self._index(updated)

        logger.debug(f"Updated entity {entity_id}: {sorted(fields)}")
        return updated.model_copy(deep=True)


_REFERENCE_TIMESTAMP = datetime(2023, 1, 1, tzinfo=timezone.utc)


def known_entities() -> List[Entity]:
    """
    Reference entities for seeding a store.
    In production these come from the entity database.
    """
    return [
        Entity(
            id='1',
            name='Binance',
            type='Exchange',
            description='Major cryptocurrency exchange',
            addresses=[
                '0x3f5ce5fbfe3e9af3971dd833d26ba9b5c936f0be',
                '0xd551234ae421e3bcba99a0da6d736074f22192ff',
            ],
            confidence_score=0.95,
            created_at=_REFERENCE_TIMESTAMP,
            updated_at=_REFERENCE_TIMESTAMP,
        ),
        Entity(
            id='2',
            name='Coinbase',
            type='Exchange',
            description='US-based cryptocurrency exchange',
            addresses=[
                '0x71660c4005ba85c37ccec55d0c4493e66fe775d3',
                '0x503828976d22510aad0201ac7ec88293211d23da',
            ],
            confidence_score=0.98,
            created_at=_REFERENCE_TIMESTAMP,
            updated_at=_REFERENCE_TIMESTAMP,
        ),
        Entity(
            id='3',
            name='Uniswap',
            type='DeFi Protocol',
            description='Decentralized exchange protocol',
            addresses=[
                '0x1f9840a85d5af5bf1d1762f925bdaddc4201f984',
                '0x7a250d5630b4cf539739df2c5dacb4c659f2488d',
            ],
            confidence_score=0.92,
            created_at=_REFERENCE_TIMESTAMP,
            updated_at=_REFERENCE_TIMESTAMP,
        ),
    ]
