import logging
from typing import Iterable, Optional

from app.core.entity_identification.analysis.clustering import AddressClusteringService
from app.core.entity_identification.blockchain.transaction_normalizer import (
    RawTransaction,
    extract_unique_addresses,
    normalize_transactions,
)
from app.core.entity_identification.config import IdentificationSettings
from app.core.entity_identification.data_sources.entity_store import EntityStore
from app.core.entity_identification.data_sources.transaction_source import TransactionSource
from app.core.entity_identification.detection.entity_attribution import EntityAttributionService
from app.core.entity_identification.detection.strategies import PatternSimilarityScorer
from app.core.entity_identification.models.attribution import (
    AddressIdentification,
    AttributionMethod,
    IdentificationResult,
)
from app.core.entity_identification.models.transaction import normalize_address
from app.core.entity_identification.utils.error_handling import (
    EntityLookupError,
    SourceUnavailableError,
)

logger = logging.getLogger(__name__)


class IdentificationOrchestrator:
    """
    Entity identification pipeline.

    transactions -> unique addresses -> clusters -> attributions -> store updates

    The entity store (and optionally a transaction source) are injected; the
    orchestrator itself keeps no state between runs.
    """

    def __init__(
        self,
        store: EntityStore,
        transaction_source: Optional[TransactionSource] = None,
        settings: Optional[IdentificationSettings] = None,
        clustering: Optional[AddressClusteringService] = None,
        attribution: Optional[EntityAttributionService] = None,
        pattern_similarity: Optional[PatternSimilarityScorer] = None,
    ):
        self.store = store
        self.transaction_source = transaction_source
        self.settings = settings or IdentificationSettings()
        self.clustering = clustering or AddressClusteringService(self.settings.clustering)
        self.attribution = attribution or EntityAttributionService(
            store,
            clustering=self.clustering,
            pattern_similarity=pattern_similarity,
            config=self.settings.attribution,
        )

    async def _ensure_store_available(self) -> None:
        try:
            await self.store.check_connection()
        except SourceUnavailableError:
            raise
        except Exception as e:
            logger.error(f"❌ Entity store unavailable: {e}")
            raise SourceUnavailableError(f"Entity store unavailable: {e}") from e

    async def identify_entities_from_transactions(
        self,
        transactions: Iterable[RawTransaction],
        update_entities: bool = True,
        confidence_threshold: Optional[float] = None,
    ) -> IdentificationResult:
        """
        Run the full identification pipeline over a transaction batch.

        Args:
            transactions: Raw records or ``Transaction`` models; records that
                cannot be parsed are skipped
            update_entities: Apply the attribution results to the store
            confidence_threshold: Minimum attribution confidence for growing
                known entities (default from settings, 0.8)

        Raises:
            SourceUnavailableError: the entity store cannot be reached
        """
        await self._ensure_store_available()

        raw = list(transactions)
        txs = normalize_transactions(raw)
        addresses = extract_unique_addresses(txs)
        logger.info(f"Extracted {len(addresses)} unique addresses from {len(raw)} transactions")

        clusters = self.clustering.combined_clustering(txs, addresses)
        logger.info(f"Identified {len(clusters)} address clusters")

        attributions = await self.attribution.attribute_clusters(clusters)

        updates = None
        if update_entities:
            updates = await self.attribution.update_entities_with_attributions(
                attributions, confidence_threshold
            )

        return IdentificationResult(
            transaction_count=len(raw),
            address_count=len(addresses),
            cluster_count=len(clusters),
            clusters=clusters,
            attributions=attributions,
            updates=updates,
        )

    async def identify_address_entity(
        self,
        address: str,
        perform_analysis: bool = True,
    ) -> AddressIdentification:
        """
        Identify the entity behind one address.

        A store hit is returned as ``existing_entry``; otherwise, with
        analysis enabled, the address's history (from the transaction source,
        if configured) runs through the attribution fallback chain.

        Raises:
            EntityLookupError: the store lookup failed
        """
        address = normalize_address(address) or address

        try:
            known = await self.store.find_entity_for_address(address)
        except Exception as e:
            raise EntityLookupError(f"Entity lookup failed for {address}: {e}") from e

        if known is not None:
            return AddressIdentification(
                address=address,
                entity_id=known.id,
                entity_name=known.name,
                entity_type=known.type,
                confidence=min(self.attribution.config.max_confidence, known.confidence_score),
                method=AttributionMethod.EXISTING_ENTRY,
            )

        if not perform_analysis:
            return AddressIdentification(address=address)

        transactions = []
        if self.transaction_source is not None:
            transactions = await self.transaction_source.get_address_transactions(address)

        attribution = await self.attribution.attribute_address(address, transactions)
        return AddressIdentification(
            address=address,
            entity_id=attribution.entity_id,
            entity_name=attribution.entity_name,
            entity_type=attribution.entity_type,
            confidence=attribution.confidence,
            method=attribution.attribution_method,
            analysis_performed=True,
            transactions_analyzed=len(transactions),
            related_addresses=attribution.related_addresses,
            matched_addresses=attribution.matched_addresses,
        )
