"""
Entity Attribution.

Maps address clusters to known entities with a confidence score:
- Consensus over store matches inside a cluster
- Fallback chain for single addresses: direct match, cluster analysis,
  behavioral analysis
- Update plan that grows known entities and creates entities for large
  unattributed clusters
"""

import asyncio
import logging
from typing import Dict, List, Mapping, Optional, Sequence

from app.core.entity_identification.analysis.clustering import AddressClusteringService
from app.core.entity_identification.blockchain.transaction_normalizer import (
    RawTransaction,
    counterparties_for,
    involves_address,
    normalize_transactions,
)
from app.core.entity_identification.config import AttributionConfig
from app.core.entity_identification.data_sources.entity_store import EntityStore
from app.core.entity_identification.detection.strategies import (
    ConstantPatternSimilarity,
    PatternSimilarityScorer,
)
from app.core.entity_identification.models.attribution import (
    UNKNOWN_ENTITY_TYPE,
    AddressAttribution,
    AttributionMethod,
    ClusterAttribution,
    EntityCreation,
    EntityHit,
    EntityUpdate,
    EntityUpdateReport,
    SkippedCluster,
    SkipReason,
)
from app.core.entity_identification.models.entity import Entity
from app.core.entity_identification.models.transaction import Transaction, normalize_address
from app.core.entity_identification.utils.calculations import unique_in_order
from app.core.entity_identification.utils.error_handling import (
    EntityLookupError,
    UpdateError,
    retry_async,
)

logger = logging.getLogger(__name__)


def calculate_consensus_attribution(hits: Sequence[EntityHit], total_addresses: int) -> Dict:
    """
    Consensus attribution from store matches.

    Confidence = 0.3 * coverage + 0.4 * entity base confidence + 0.3 * consensus,
    capped at 0.99, where coverage is the best entity's share of the
    addresses and consensus its share of all matches. Ties go to the entity
    matched first.
    """
    groups: Dict[str, List[EntityHit]] = {}
    for hit in hits:
        groups.setdefault(hit.entity_id, []).append(hit)

    best_id = None
    best_count = 0
    for entity_id, group in groups.items():
        if len(group) > best_count:
            best_id = entity_id
            best_count = len(group)

    best = groups[best_id][0]
    coverage = best_count / total_addresses if total_addresses else 0.0
    consensus = best_count / len(hits)
    confidence = coverage * 0.3 + best.confidence_base * 0.4 + consensus * 0.3

    return {
        'entity_id': best.entity_id,
        'entity_name': best.entity_name,
        'entity_type': best.entity_type,
        'confidence': min(0.99, confidence),
        'matched_addresses': unique_in_order(hit.matched_address for hit in hits),
    }


class EntityAttributionService:
    """Attributes clusters and single addresses to entities of an injected store"""

    def __init__(
        self,
        store: EntityStore,
        clustering: Optional[AddressClusteringService] = None,
        pattern_similarity: Optional[PatternSimilarityScorer] = None,
        config: Optional[AttributionConfig] = None,
    ):
        self.store = store
        self.clustering = clustering or AddressClusteringService()
        self.pattern_similarity = pattern_similarity or ConstantPatternSimilarity()
        self.config = config or AttributionConfig()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def _find_entity(self, address: str) -> Optional[Entity]:
        try:
            return await self.store.find_entity_for_address(address)
        except Exception as e:
            raise EntityLookupError(f"Entity lookup failed for {address}: {e}") from e

    async def _collect_hits(self, addresses: Sequence[str]) -> List[EntityHit]:
        """Store matches for ``addresses``; failed lookups count as misses."""
        results = await asyncio.gather(
            *(self._find_entity(address) for address in addresses),
            return_exceptions=True,
        )

        hits = []
        for address, result in zip(addresses, results):
            if isinstance(result, EntityLookupError):
                logger.warning(f"⚠️ {result}")
                continue
            if isinstance(result, BaseException):
                raise result
            if result is not None:
                hits.append(EntityHit(
                    entity_id=result.id,
                    entity_name=result.name,
                    entity_type=result.type,
                    matched_address=address,
                    confidence_base=result.confidence_score,
                ))
        return hits

    # ------------------------------------------------------------------
    # Clusters
    # ------------------------------------------------------------------

    async def attribute_clusters(
        self, clusters: Mapping[str, Sequence[str]]
    ) -> Dict[str, ClusterAttribution]:
        """
        Attribute every cluster to its consensus entity.

        Clusters without any store match come back as Unknown with
        confidence 0. Lookup failures are logged and treated as misses.
        """
        results = {}

        for cluster_id, addresses in clusters.items():
            addresses = list(addresses)
            hits = await self._collect_hits(addresses)

            if hits:
                consensus = calculate_consensus_attribution(hits, len(addresses))
                results[cluster_id] = ClusterAttribution(addresses=addresses, **consensus)
            else:
                results[cluster_id] = ClusterAttribution(addresses=addresses)

        attributed = sum(1 for a in results.values() if a.entity_id is not None)
        logger.info(f"Attributed {attributed}/{len(results)} clusters to known entities")
        return results

    # ------------------------------------------------------------------
    # Single address
    # ------------------------------------------------------------------

    async def attribute_address(
        self,
        address: str,
        transactions: Optional[Sequence[RawTransaction]] = None,
    ) -> AddressAttribution:
        """
        Attribute one address: direct match, then cluster analysis, then
        behavioral analysis.

        Raises:
            EntityLookupError: the direct store lookup failed
        """
        address = normalize_address(address) or address

        known = await self._find_entity(address)
        if known is not None:
            return AddressAttribution(
                entity_id=known.id,
                entity_name=known.name,
                entity_type=known.type,
                confidence=min(self.config.max_confidence, known.confidence_score),
                attribution_method=AttributionMethod.DIRECT_MATCH,
            )

        txs = normalize_transactions(transactions or [])

        related = self._related_addresses(address, txs)
        if related:
            hits = await self._collect_hits(related)
            if hits:
                consensus = calculate_consensus_attribution(hits, len(related))
                return AddressAttribution(
                    attribution_method=AttributionMethod.CLUSTER_ANALYSIS,
                    related_addresses=related,
                    **consensus,
                )

        behavioral = await self.attribute_by_behavior(address, txs)
        if behavioral is not None:
            return behavioral

        return AddressAttribution(related_addresses=related)

    def _related_addresses(self, address: str, txs: List[Transaction]) -> List[str]:
        """Other members of the address's cluster within its own transactions."""
        if not txs:
            return []
        clusters = self.clustering.combined_clustering(txs)
        for members in clusters.values():
            if address in members:
                return [a for a in members if a != address]
        return []

    def calculate_interaction_score(
        self,
        address: str,
        entity_addresses: Sequence[str],
        transactions: Sequence[Transaction],
    ) -> float:
        """Share of the address's transactions with the entity, scaled by 1.5 and capped."""
        own = [tx for tx in transactions if involves_address(address, tx)]
        if not own:
            return 0.0

        targets = {a.lower() for a in entity_addresses}
        interactions = sum(
            1 for tx in own
            if any(c in targets for c in counterparties_for(address, tx))
        )
        ratio = interactions / len(own)
        return min(self.config.max_interaction_score, ratio * self.config.interaction_scale)

    async def attribute_by_behavior(
        self, address: str, transactions: Sequence[Transaction]
    ) -> Optional[AddressAttribution]:
        """Best entity by interaction and pattern similarity, if it scores above 0.5."""
        try:
            entities = await self.store.get_entities()
        except Exception as e:
            raise EntityLookupError(f"Entity listing failed: {e}") from e

        best_entity = None
        best_score = 0.0
        for entity in entities:
            if not entity.addresses:
                continue

            interaction = self.calculate_interaction_score(address, entity.addresses, transactions)
            pattern = self.pattern_similarity.score(address, transactions, entity)
            score = interaction * 0.7 + pattern * 0.3

            if score > best_score and score > self.config.behavioral_acceptance_score:
                best_score = score
                best_entity = entity

        if best_entity is None:
            return None

        return AddressAttribution(
            entity_id=best_entity.id,
            entity_name=best_entity.name,
            entity_type=best_entity.type,
            confidence=min(self.config.max_confidence, best_score),
            attribution_method=AttributionMethod.BEHAVIORAL_ANALYSIS,
        )

    # ------------------------------------------------------------------
    # Store update plan
    # ------------------------------------------------------------------

    async def update_entities_with_attributions(
        self,
        attributions: Mapping[str, ClusterAttribution],
        confidence_threshold: Optional[float] = None,
    ) -> EntityUpdateReport:
        """
        Apply attributions to the store.

        - Attributed at or above the threshold: append the cluster addresses
          the entity does not have yet
        - Unattributed with at least 3 addresses: create an Unknown entity
          named after the cluster
        - Everything else is skipped with a reason code

        Each cluster is written independently; store writes are retried and
        a failure is recorded as ``update_error``/``creation_error`` without
        stopping the remaining clusters.
        """
        threshold = self.config.confidence_threshold if confidence_threshold is None else confidence_threshold
        report = EntityUpdateReport()

        for cluster_id, attribution in attributions.items():
            if attribution.entity_id is not None:
                if attribution.confidence < threshold:
                    report.skipped.append(SkippedCluster(
                        cluster_id=cluster_id,
                        reason=SkipReason.LOW_CONFIDENCE,
                        entity_id=attribution.entity_id,
                        confidence=attribution.confidence,
                    ))
                    continue
                await self._extend_entity(cluster_id, attribution, report)

            elif len(attribution.addresses) >= self.config.min_cluster_size_for_entity:
                await self._create_cluster_entity(cluster_id, attribution, report)

            else:
                report.skipped.append(SkippedCluster(
                    cluster_id=cluster_id,
                    reason=SkipReason.SMALL_UNATTRIBUTED_CLUSTER,
                    address_count=len(attribution.addresses),
                ))

        logger.info(
            f"✅ Entity update: {len(report.updated)} updated, {len(report.created)} created, "
            f"{len(report.skipped)} skipped"
        )
        return report

    async def _write(self, func, *args):
        """Store write with retries; the final failure surfaces as UpdateError."""
        try:
            return await retry_async(
                max_retries=self.config.write_retries,
                delay=self.config.write_retry_delay,
            )(func)(*args)
        except Exception as e:
            raise UpdateError(str(e)) from e

    async def _extend_entity(
        self, cluster_id: str, attribution: ClusterAttribution, report: EntityUpdateReport
    ) -> None:
        async def append_addresses() -> Optional[EntityUpdate]:
            entity = await self.store.get_entity_by_id(attribution.entity_id)

            new_addresses = [a for a in unique_in_order(attribution.addresses) if not entity.has_address(a)]
            if not new_addresses:
                return None

            updated = await self.store.update_entity(
                entity.id, {'addresses': entity.addresses + new_addresses}
            )
            return EntityUpdate(
                cluster_id=cluster_id,
                entity_id=updated.id,
                entity_name=updated.name,
                addresses_added=new_addresses,
            )

        try:
            update = await self._write(append_addresses)
        except UpdateError as e:
            logger.error(f"❌ Error updating entity {attribution.entity_id}: {e}")
            report.skipped.append(SkippedCluster(
                cluster_id=cluster_id,
                reason=SkipReason.UPDATE_ERROR,
                entity_id=attribution.entity_id,
                error=str(e),
            ))
            return

        if update is None:
            report.skipped.append(SkippedCluster(
                cluster_id=cluster_id,
                reason=SkipReason.NO_NEW_ADDRESSES,
                entity_id=attribution.entity_id,
            ))
        else:
            report.updated.append(update)

    async def _create_cluster_entity(
        self, cluster_id: str, attribution: ClusterAttribution, report: EntityUpdateReport
    ) -> None:
        payload = {
            'name': f"Cluster {cluster_id}",
            'type': UNKNOWN_ENTITY_TYPE,
            'description': 'Automatically identified address cluster',
            'addresses': list(attribution.addresses),
            'confidence_score': self.config.new_entity_confidence,
        }

        try:
            entity = await self._write(self.store.create_entity, payload)
        except UpdateError as e:
            logger.error(f"❌ Error creating entity for cluster {cluster_id}: {e}")
            report.skipped.append(SkippedCluster(
                cluster_id=cluster_id,
                reason=SkipReason.CREATION_ERROR,
                address_count=len(attribution.addresses),
                error=str(e),
            ))
            return

        report.created.append(EntityCreation(
            cluster_id=cluster_id,
            entity_id=entity.id,
            entity_name=entity.name,
            address_count=len(attribution.addresses),
        ))
