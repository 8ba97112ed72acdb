"""
Risk Scoring System.

Score = entity base + (1 - entity base) * normalized factor score

Entity base: entity type risk x attribution confidence, capped at 0.7.
Normalized factor score: 0.7 x mean + 0.3 x max of the triggered factor
weights. The total is capped at 0.95 so that no single signal saturates it.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence

from app.core.entity_identification.config import RiskConfig
from app.core.entity_identification.data_sources.transaction_source import TransactionSource
from app.core.entity_identification.detection.risk_factors import (
    RiskContext,
    RiskFactorDetector,
    default_detectors,
)
from app.core.entity_identification.models.attribution import AddressIdentification
from app.core.entity_identification.models.risk import (
    BatchItemFailure,
    BulkRiskResult,
    RiskAssessment,
    RiskFactor,
    RiskLevel,
)
from app.core.entity_identification.models.transaction import Transaction, normalize_address
from app.core.entity_identification.utils.batching import run_in_batches

logger = logging.getLogger(__name__)


def risk_level_from_score(score: float) -> RiskLevel:
    return RiskLevel.from_score(score)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RiskScoringService:
    """
    Scores addresses for illicit-activity risk.

    Needs an identifier exposing ``identify_address_entity`` (the
    identification orchestrator) and, optionally, a transaction source for
    the address history.
    """

    def __init__(
        self,
        identifier,
        transaction_source: Optional[TransactionSource] = None,
        detectors: Optional[Sequence[RiskFactorDetector]] = None,
        config: Optional[RiskConfig] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.identifier = identifier
        self.transaction_source = transaction_source
        self.config = config or RiskConfig()
        self.detectors = list(detectors) if detectors is not None else default_detectors(self.config)
        self.clock = clock

    def entity_type_risk(self, entity_type: Optional[str]) -> float:
        table = self.config.entity_type_risk
        return table.get(entity_type or 'Unknown', table['Unknown'])

    def calculate_risk_score(
        self,
        factors: List[RiskFactor],
        entity_type: Optional[str],
        entity_confidence: float,
    ) -> float:
        entity_base = min(self.config.max_entity_base, self.entity_type_risk(entity_type) * entity_confidence)

        if factors:
            scores = [f.score for f in factors]
            normalized = (sum(scores) / len(scores)) * 0.7 + max(scores) * 0.3
        else:
            normalized = 0.0

        score = entity_base + (1 - entity_base) * normalized
        return min(self.config.max_score, score)

    def detect_risk_factors(
        self,
        address: str,
        transactions: Sequence[Transaction],
        entity_type: str,
        entity_confidence: float,
    ) -> List[RiskFactor]:
        context = RiskContext(
            address=address,
            transactions=transactions,
            entity_type=entity_type,
            entity_confidence=entity_confidence,
            now=self.clock(),
            weights=self.config.weights,
        )
        factors = [f for f in (d.evaluate(context) for d in self.detectors) if f is not None]
        return sorted(factors, key=lambda f: f.score, reverse=True)

    async def _identify(self, address: str) -> AddressIdentification:
        try:
            return await self.identifier.identify_address_entity(address, perform_analysis=True)
        except Exception as e:
            logger.warning(f"⚠️ Entity identification failed for address {address}: {e}")
            return AddressIdentification(address=address)

    async def calculate_address_risk(self, address: str) -> RiskAssessment:
        """
        Risk assessment for one address.

        Entity identification failures degrade to an Unknown entity with
        confidence 0; a failing transaction source propagates.
        """
        normalized = normalize_address(address) or address
        identification = await self._identify(normalized)

        transactions: List[Transaction] = []
        if self.transaction_source is not None:
            transactions = await self.transaction_source.get_address_transactions(normalized)

        factors = self.detect_risk_factors(
            normalized, transactions, identification.entity_type, identification.confidence
        )
        score = self.calculate_risk_score(factors, identification.entity_type, identification.confidence)

        return RiskAssessment(
            address=normalized,
            entity_id=identification.entity_id,
            entity_name=identification.entity_name,
            entity_type=identification.entity_type,
            risk_score=score,
            risk_level=risk_level_from_score(score),
            risk_factors=factors,
            transaction_count=len(transactions),
            last_updated=self.clock(),
        )

    async def calculate_bulk_address_risk(
        self,
        addresses: Sequence[str],
        batch_size: Optional[int] = None,
    ) -> BulkRiskResult:
        """
        Score many addresses in fixed-size batches.

        Addresses inside a batch are scored concurrently; a failing address
        is recorded in ``errors`` and the rest of the batch continues.
        """
        addresses = list(addresses)
        results, failures = await run_in_batches(
            addresses, batch_size or self.config.batch_size, self.calculate_address_risk
        )

        for failure in failures:
            logger.error(f"❌ Risk scoring failed for {failure.address}: {failure.cause}")

        result = BulkRiskResult(
            results=results,
            errors=[BatchItemFailure(address=f.address, error=str(f.cause)) for f in failures],
            total_processed=len(addresses),
            success_count=len(results),
            error_count=len(failures),
        )
        logger.info(
            f"✅ Risk scoring: {result.success_count}/{result.total_processed} addresses, "
            f"{result.error_count} errors"
        )
        return result

    def summarize(self, assessments: Dict[str, RiskAssessment]) -> Dict[str, int]:
        """Count of assessments per risk level."""
        counts = {level.value: 0 for level in RiskLevel}
        for assessment in assessments.values():
            counts[assessment.risk_level.value] += 1
        return counts
