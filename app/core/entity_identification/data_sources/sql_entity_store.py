# app/core/entity_identification/data_sources/sql_entity_store.py
import asyncio
import logging
from datetime import timezone
from typing import Any, Callable, List, Mapping, Optional, TypeVar

from sqlalchemy import create_engine, delete, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.core.entity_identification.config import StoreConfig
from app.core.entity_identification.data_sources.entity_store import (
    EntityStore,
    new_entity_id,
    pick_entity_fields,
)
from app.core.entity_identification.models.entity import Entity, utcnow
from app.core.entity_identification.models.tables import Base, EntityAddressRecord, EntityRecord
from app.core.entity_identification.utils.error_handling import (
    EntityNotFoundError,
    SourceUnavailableError,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')


def _as_utc(value):
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlEntityStore(EntityStore):
    """
    Entity store on a relational database (SQLAlchemy).

    Tables: ``entities`` plus the ``entity_addresses`` reverse index. The
    sessions are synchronous; every call runs in a worker thread so the
    event loop is never blocked.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    @classmethod
    def from_config(cls, config: Optional[StoreConfig] = None) -> 'SqlEntityStore':
        config = config or StoreConfig.from_env()
        engine = create_engine(config.database_url, pool_pre_ping=True, echo=config.echo)
        return cls(sessionmaker(bind=engine, autoflush=False, expire_on_commit=False))

    def init_schema(self) -> None:
        """Create the tables if missing (tests and local runs; production uses alembic)."""
        with self.session_factory() as session:
            Base.metadata.create_all(bind=session.get_bind())
        logger.info("✅ Entity tables ready")

    async def _run(self, func: Callable[[Session], T]) -> T:
        def work() -> T:
            with self.session_factory() as session:
                try:
                    result = func(session)
                    session.commit()
                    return result
                except Exception:
                    session.rollback()
                    raise
        return await asyncio.to_thread(work)

    # ------------------------------------------------------------------
    # Row <-> model
    # ------------------------------------------------------------------

    @staticmethod
    def _addresses_of(session: Session, entity_id: str) -> List[str]:
        rows = session.execute(
            select(EntityAddressRecord.address)
            .where(EntityAddressRecord.entity_id == entity_id)
            .order_by(EntityAddressRecord.position)
        )
        return [row[0] for row in rows]

    def _to_entity(self, session: Session, record: EntityRecord) -> Entity:
        return Entity(
            id=record.id,
            name=record.name,
            type=record.type,
            description=record.description,
            addresses=self._addresses_of(session, record.id),
            confidence_score=record.confidence_score,
            created_at=_as_utc(record.created_at),
            updated_at=_as_utc(record.updated_at),
        )

    @staticmethod
    def _replace_addresses(session: Session, entity_id: str, addresses: List[str]) -> None:
        lowered = []
        for address in addresses:
            address = address.lower()
            if address not in lowered:
                lowered.append(address)

        session.execute(delete(EntityAddressRecord).where(EntityAddressRecord.entity_id == entity_id))
        if lowered:
            # An address has one owner; take it over from any other entity
            session.execute(delete(EntityAddressRecord).where(EntityAddressRecord.address.in_(lowered)))
        session.add_all(
            EntityAddressRecord(address=address, entity_id=entity_id, position=i)
            for i, address in enumerate(lowered)
        )

    # ------------------------------------------------------------------
    # EntityStore
    # ------------------------------------------------------------------

    async def get_entities(self, filters: Optional[Mapping[str, Any]] = None) -> List[Entity]:
        def query(session: Session) -> List[Entity]:
            stmt = select(EntityRecord).order_by(EntityRecord.created_at, EntityRecord.id)
            for key, value in (filters or {}).items():
                column = getattr(EntityRecord, key, None)
                if column is None:
                    raise ValueError(f"Unknown entity filter: {key}")
                stmt = stmt.where(column == value)
            return [self._to_entity(session, r) for r in session.scalars(stmt)]
        return await self._run(query)

    async def get_entity_by_id(self, entity_id: str) -> Entity:
        def query(session: Session) -> Entity:
            record = session.get(EntityRecord, entity_id)
            if record is None:
                raise EntityNotFoundError(f"Entity with ID {entity_id} not found")
            return self._to_entity(session, record)
        return await self._run(query)

    async def find_entity_for_address(self, address: str) -> Optional[Entity]:
        def query(session: Session) -> Optional[Entity]:
            link = session.get(EntityAddressRecord, address.lower())
            if link is None:
                return None
            record = session.get(EntityRecord, link.entity_id)
            return self._to_entity(session, record) if record is not None else None
        return await self._run(query)

    async def create_entity(self, entity_data: Mapping[str, Any]) -> Entity:
        fields = pick_entity_fields(entity_data)
        # Validate before touching the database
        now = utcnow()
        entity = Entity(
            id=new_entity_id(),
            name=fields.pop('name', 'Unnamed entity'),
            created_at=now,
            updated_at=now,
            **fields,
        )

        def insert(session: Session) -> Entity:
            session.add(EntityRecord(
                id=entity.id,
                name=entity.name,
                type=entity.type,
                description=entity.description,
                confidence_score=entity.confidence_score,
                created_at=entity.created_at,
                updated_at=entity.updated_at,
            ))
            session.flush()
            self._replace_addresses(session, entity.id, entity.addresses)
            session.flush()
            return self._to_entity(session, session.get(EntityRecord, entity.id))

        created = await self._run(insert)
        logger.info(f"✅ Created entity {created.id} ({created.name}, {len(created.addresses)} addresses)")
        return created

    async def update_entity(self, entity_id: str, changes: Mapping[str, Any]) -> Entity:
        fields = pick_entity_fields(changes)

        def update(session: Session) -> Entity:
            record = session.get(EntityRecord, entity_id)
            if record is None:
                raise EntityNotFoundError(f"Entity with ID {entity_id} not found")

            merged = Entity.model_validate({
                **self._to_entity(session, record).model_dump(),
                **fields,
                'updated_at': utcnow(),
            })
            record.name = merged.name
            record.type = merged.type
            record.description = merged.description
            record.confidence_score = merged.confidence_score
            record.updated_at = merged.updated_at

            if 'addresses' in fields:
                self._replace_addresses(session, entity_id, merged.addresses)
            session.flush()
            return self._to_entity(session, record)

        return await self._run(update)

    async def check_connection(self) -> bool:
        def ping(session: Session) -> bool:
            session.execute(text("SELECT 1"))
            return True
        try:
            return await self._run(ping)
        except SQLAlchemyError as e:
            logger.error(f"❌ Entity database unreachable: {e}")
            raise SourceUnavailableError(f"Entity database unreachable: {e}") from e
