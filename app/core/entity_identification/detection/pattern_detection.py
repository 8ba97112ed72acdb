"""
Pattern & Anomaly Detection.

Statistical view of one address's transaction history:
- Patterns: timing, value distribution, counterparties, periodicity, gas
- Anomalies: deviations from the address's own baseline
"""

import asyncio
import logging
from collections import Counter
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from app.core.entity_identification.blockchain.transaction_normalizer import (
    RawTransaction,
    counterparties_for,
    normalize_transactions,
)
from app.core.entity_identification.config import PatternConfig
from app.core.entity_identification.detection.strategies import (
    CounterpartyRiskDetector,
    NullCounterpartyRiskDetector,
)
from app.core.entity_identification.models.pattern import (
    AddressBehaviorReport,
    Anomaly,
    AnomalyReport,
    BulkPatternResult,
    Pattern,
    PatternReport,
)
from app.core.entity_identification.models.risk import BatchItemFailure
from app.core.entity_identification.models.transaction import Transaction, normalize_address
from app.core.entity_identification.utils.batching import run_in_batches
from app.core.entity_identification.utils.calculations import (
    calculate_z_score,
    coefficient_of_variation,
    distribution_statistics,
    jaccard_similarity,
    pattern_confidence,
    peak_bins,
)

logger = logging.getLogger(__name__)

# Sunday first
DAY_NAMES = ['Sunday', 'Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday']

# (name, min hours, max hours, min count, min share of intervals)
PERIODS = [
    ('dailyActivity', 23, 25, 3, 0.3),
    ('weeklyActivity', 163, 173, 3, 0.2),
    ('monthlyActivity', 696, 744, 2, 0.15),
]

# Reported ratio when the first period has no value at all
MAX_VALUE_CHANGE_RATIO = 1000.0


def _day_index(timestamp: datetime) -> int:
    return (timestamp.weekday() + 1) % 7


def _dated(transactions: Sequence[Transaction]) -> List[Transaction]:
    return sorted((tx for tx in transactions if tx.timestamp is not None), key=lambda tx: tx.timestamp)


def _intervals(dated: Sequence[Transaction]) -> List[Tuple[float, Transaction]]:
    """Hours between consecutive transactions, paired with the later one."""
    return [
        ((curr.timestamp - prev.timestamp).total_seconds() / 3600, curr)
        for prev, curr in zip(dated, dated[1:])
    ]


class PatternDetectionService:
    """
    Detects behavioral patterns and anomalies for addresses.

    Detection is synchronous and stateless per call; the bulk entry point
    fans addresses out to worker threads in bounded batches.
    """

    def __init__(
        self,
        config: Optional[PatternConfig] = None,
        counterparty_risk: Optional[CounterpartyRiskDetector] = None,
    ):
        self.config = config or PatternConfig()
        self.counterparty_risk = counterparty_risk or NullCounterpartyRiskDetector()

    # ------------------------------------------------------------------
    # Patterns
    # ------------------------------------------------------------------

    def detect_address_patterns(
        self, address: str, transactions: Sequence[RawTransaction]
    ) -> PatternReport:
        address = normalize_address(address) or address
        txs = normalize_transactions(transactions or [])

        if len(txs) < self.config.min_pattern_transactions:
            return PatternReport(
                address=address,
                message='Insufficient transaction history for pattern detection',
            )

        categories = {
            'activityTiming': self._activity_timing_patterns(txs),
            'valueDistribution': self._value_distribution_patterns(txs),
            'counterparties': self._counterparty_patterns(address, txs),
            'periodicActivity': self._periodic_patterns(txs),
            'gasUsage': self._gas_usage_patterns(txs),
        }
        significant = {name: found for name, found in categories.items() if found}

        return PatternReport(
            address=address,
            pattern_count=sum(len(found) for found in significant.values()),
            patterns=significant,
        )

    def _activity_timing_patterns(self, txs: List[Transaction]) -> Dict[str, Pattern]:
        patterns = {}
        dated = _dated(txs)
        if not dated:
            return patterns

        hours = np.zeros(24)
        days = np.zeros(7)
        for tx in dated:
            hours[tx.timestamp.hour] += 1
            days[_day_index(tx.timestamp)] += 1

        peak_hours = peak_bins(hours, sigma=2)
        if peak_hours:
            patterns['peakHours'] = Pattern(
                type='peakHours',
                description=f"Activity concentrated during hours: {', '.join(map(str, peak_hours))}",
                confidence=pattern_confidence(len(peak_hours), len(dated)),
                details={'hours': peak_hours},
            )

        active_days = [DAY_NAMES[i] for i in peak_bins(days, sigma=1.5)]
        if active_days:
            patterns['activeDays'] = Pattern(
                type='activeDays',
                description=f"Activity concentrated on days: {', '.join(active_days)}",
                confidence=pattern_confidence(len(active_days), len(dated)),
                details={'days': active_days},
            )

        return patterns

    def _value_distribution_patterns(self, txs: List[Transaction]) -> Dict[str, Pattern]:
        patterns = {}
        values = [tx.value for tx in txs]
        total = len(values)

        round_counts = Counter(v for v in values if float(v).is_integer())
        round_values = [
            {'value': value, 'count': count, 'percentage': count / total * 100}
            for value, count in round_counts.most_common()
            if count >= 3
        ]
        if round_values:
            patterns['roundValues'] = Pattern(
                type='roundValues',
                description='Frequent round-value transactions detected',
                confidence=pattern_confidence(len(round_values), total),
                details={'values': round_values},
            )

        exact_counts = Counter(f"{v:.8f}" for v in values if not float(v).is_integer())
        recurring_values = [
            {'value': float(key), 'count': count, 'percentage': count / total * 100}
            for key, count in exact_counts.most_common()
            if count >= 3
        ]
        if recurring_values:
            patterns['recurringValues'] = Pattern(
                type='recurringValues',
                description='Recurring exact-value transactions detected',
                confidence=pattern_confidence(len(recurring_values), total),
                details={'values': recurring_values},
            )

        low, high = min(values), max(values)
        if low > 0 and high > low * 100:
            ratio = high / low
            patterns['wideValueRange'] = Pattern(
                type='wideValueRange',
                description=f"Wide range of transaction values ({low:.2f} to {high:.2f})",
                confidence=pattern_confidence(float(np.log10(ratio)), total),
                details={'min': low, 'max': high, 'ratio': ratio},
            )

        return patterns

    def _counterparty_patterns(self, address: str, txs: List[Transaction]) -> Dict[str, Pattern]:
        patterns = {}
        counts = Counter(c for tx in txs for c in counterparties_for(address, tx))
        if not counts:
            return patterns

        frequent = [
            {'address': counterparty, 'count': count, 'percentage': count / len(txs) * 100}
            for counterparty, count in counts.most_common()
            if count >= 3
        ][:5]
        if frequent:
            patterns['frequentCounterparties'] = Pattern(
                type='frequentCounterparties',
                description=f"Regular interactions with {len(frequent)} addresses",
                confidence=pattern_confidence(len(frequent), len(txs)),
                details={'counterparties': frequent},
            )

        one_time = sum(1 for count in counts.values() if count == 1)
        one_time_percentage = one_time / len(counts) * 100
        if one_time_percentage > 80 and len(counts) > 10:
            patterns['manyOneTimeInteractions'] = Pattern(
                type='manyOneTimeInteractions',
                description=f"High percentage ({one_time_percentage:.1f}%) of one-time interactions",
                confidence=pattern_confidence(one_time, len(counts)),
                details={'count': one_time, 'percentage': one_time_percentage},
            )

        return patterns

    def _periodic_patterns(self, txs: List[Transaction]) -> Dict[str, Pattern]:
        patterns = {}
        intervals = [hours for hours, _ in _intervals(_dated(txs))]
        if len(intervals) < 5:
            return patterns

        for name, low, high, min_count, min_share in PERIODS:
            matching = [i for i in intervals if low <= i <= high]
            if len(matching) >= min_count and len(matching) / len(intervals) >= min_share:
                label = name.replace('Activity', '')
                patterns[name] = Pattern(
                    type=name,
                    description=f"Regular {label} transaction pattern detected",
                    confidence=pattern_confidence(len(matching), len(intervals)),
                    details={'count': len(matching), 'intervals': len(intervals)},
                )

        return patterns

    def _gas_usage_patterns(self, txs: List[Transaction]) -> Dict[str, Pattern]:
        patterns = {}
        with_gas = [tx for tx in txs if tx.gas_price and tx.gas_used]
        if len(with_gas) < 5:
            return patterns

        prices = [tx.gas_price for tx in with_gas]
        stats = distribution_statistics(prices)
        variability = coefficient_of_variation(prices)

        if variability is not None and variability < 0.1 and len(with_gas) >= 10:
            patterns['consistentGasPrice'] = Pattern(
                type='consistentGasPrice',
                description='Consistently uses similar gas price across transactions',
                confidence=pattern_confidence(len(with_gas), len(with_gas)),
                details={'mean': stats['mean'], 'std_dev': stats['std'], 'variability': variability},
            )

        market_ratio = stats['mean'] / self.config.market_gas_price
        details = {'avg_price': stats['mean'], 'market_ratio': market_ratio}
        if market_ratio > 1.5:
            patterns['highGasPricePreference'] = Pattern(
                type='highGasPricePreference',
                description='Consistently uses above-market gas prices',
                confidence=pattern_confidence(len(with_gas), len(txs)),
                details=details,
            )
        elif market_ratio < 0.75:
            patterns['lowGasPricePreference'] = Pattern(
                type='lowGasPricePreference',
                description='Consistently uses below-market gas prices',
                confidence=pattern_confidence(len(with_gas), len(txs)),
                details=details,
            )

        return patterns

    # ------------------------------------------------------------------
    # Anomalies
    # ------------------------------------------------------------------

    def detect_anomalies(self, address: str, transactions: Sequence[RawTransaction]) -> AnomalyReport:
        address = normalize_address(address) or address
        txs = normalize_transactions(transactions or [])

        if len(txs) < self.config.min_anomaly_transactions:
            return AnomalyReport(
                address=address,
                message='Insufficient transaction history for anomaly detection',
            )

        anomalies = []
        anomalies.extend(self._value_anomalies(txs))
        anomalies.extend(self._timing_anomalies(txs))
        anomalies.extend(self._behavior_change_anomalies(address, txs))
        anomalies.extend(self.counterparty_risk.detect(address, txs))

        anomalies.sort(key=lambda a: a.severity, reverse=True)
        return AnomalyReport(address=address, anomaly_count=len(anomalies), anomalies=anomalies)

    def _value_anomalies(self, txs: List[Transaction]) -> List[Anomaly]:
        stats = distribution_statistics([tx.value for tx in txs])
        anomalies = []

        for tx in txs:
            z_score = calculate_z_score(tx.value, stats['mean'], stats['std'])
            if z_score > 3:
                anomalies.append(Anomaly(
                    type='large_value',
                    description=f"Unusually large transaction value ({tx.value:.2f})",
                    severity=min(0.9, 0.5 + (z_score - 3) / 10),
                    timestamp=tx.timestamp,
                    hash=tx.hash,
                    details={'value': tx.value, 'z_score': z_score},
                ))

        return anomalies

    def _timing_anomalies(self, txs: List[Transaction]) -> List[Anomaly]:
        intervals = _intervals(_dated(txs))
        if len(intervals) < 5:
            return []

        mean = distribution_statistics([hours for hours, _ in intervals])['mean']
        anomalies = []

        for hours, tx in intervals:
            if hours < mean / 5 and hours < 1:
                # Zero gap: same-block burst, maximum severity
                severity = 0.8 if hours == 0 else min(0.8, 0.4 + (mean / hours) / 20)
                anomalies.append(Anomaly(
                    type='activity_burst',
                    description=f"Unusually rapid transaction ({hours:.2f} hours after previous)",
                    severity=severity,
                    timestamp=tx.timestamp,
                    hash=tx.hash,
                    details={'interval_hours': hours, 'mean_interval_hours': mean},
                ))

        return anomalies

    def _behavior_change_anomalies(self, address: str, txs: List[Transaction]) -> List[Anomaly]:
        if len(txs) < self.config.min_behavior_change_transactions:
            return []

        dated = _dated(txs)
        ordered = dated if len(dated) == len(txs) else txs
        midpoint = len(ordered) // 2
        first, second = ordered[:midpoint], ordered[midpoint:]
        change_date = ordered[midpoint].timestamp
        anomalies = []

        first_mean = distribution_statistics([tx.value for tx in first])['mean']
        second_mean = distribution_statistics([tx.value for tx in second])['mean']
        if first_mean > 0:
            ratio = second_mean / first_mean
        elif second_mean > 0:
            ratio = MAX_VALUE_CHANGE_RATIO
        else:
            ratio = 1.0
        if ratio > 5 or ratio < 0.2:
            anomalies.append(Anomaly(
                type='value_behavior_change',
                description=(
                    "Significant change in transaction value patterns "
                    f"({'increase' if ratio > 1 else 'decrease'})"
                ),
                severity=0.6,
                timestamp=change_date,
                details={
                    'first_period_mean': first_mean,
                    'second_period_mean': second_mean,
                    'ratio': ratio,
                },
            ))

        first_parties = {c for tx in first for c in counterparties_for(address, tx)}
        second_parties = {c for tx in second for c in counterparties_for(address, tx)}
        similarity = jaccard_similarity(first_parties, second_parties)
        if similarity < 0.1 and len(first_parties) >= 5 and len(second_parties) >= 5:
            anomalies.append(Anomaly(
                type='counterparty_behavior_change',
                description='Significant change in transaction counterparties',
                severity=0.7,
                timestamp=change_date,
                details={
                    'first_period_counterparties': len(first_parties),
                    'second_period_counterparties': len(second_parties),
                    'similarity': similarity,
                },
            ))

        return anomalies

    # ------------------------------------------------------------------
    # Bulk
    # ------------------------------------------------------------------

    def analyze_address(self, address: str, transactions: Sequence[RawTransaction]) -> AddressBehaviorReport:
        return AddressBehaviorReport(
            address=address,
            patterns=self.detect_address_patterns(address, transactions),
            anomalies=self.detect_anomalies(address, transactions),
        )

    async def detect_bulk_patterns(
        self,
        address_transactions: Mapping[str, Sequence[RawTransaction]],
        batch_size: Optional[int] = None,
    ) -> BulkPatternResult:
        """
        Pattern and anomaly detection for many addresses.

        Addresses are processed in batches of ``batch_size``; inside a batch
        each address runs in a worker thread. A failing address is recorded
        in ``errors`` and does not affect the others.
        """
        addresses = list(address_transactions)

        def analyze(address: str):
            return asyncio.to_thread(self.analyze_address, address, address_transactions[address])

        results, failures = await run_in_batches(addresses, batch_size or self.config.batch_size, analyze)

        for failure in failures:
            logger.error(f"❌ Pattern detection failed for {failure.address}: {failure.cause}")

        result = BulkPatternResult(
            results=results,
            errors=[BatchItemFailure(address=f.address, error=str(f.cause)) for f in failures],
            total_processed=len(addresses),
            success_count=len(results),
            error_count=len(failures),
        )
        logger.info(
            f"✅ Pattern detection: {result.success_count}/{result.total_processed} addresses, "
            f"{result.error_count} errors"
        )
        return result
