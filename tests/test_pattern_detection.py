"""Tests for pattern and anomaly detection."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from app.core.entity_identification.config import PatternConfig
from app.core.entity_identification.detection.pattern_detection import (
    MAX_VALUE_CHANGE_RATIO,
    PatternDetectionService,
)
from app.core.entity_identification.detection.strategies import FlaggedCounterpartyDetector

START = datetime(2024, 1, 1, 14, 0, tzinfo=timezone.utc)

ADDR = '0x00000000000000000000000000000000000000a1'
PEER = '0x00000000000000000000000000000000000000b1'
EVIL = '0x00000000000000000000000000000000000000e6'


def _daily(count, value=1.0, receiver=PEER, **extra):
    """One outgoing transfer per day at 14:00 UTC."""
    return [
        {
            'hash': f"0x{i:04d}",
            'from': ADDR,
            'to': receiver,
            'value': value,
            'timestamp': (START + timedelta(days=i)).isoformat(),
            **extra,
        }
        for i in range(count)
    ]


class TestPatterns:

    def test_insufficient_history(self):
        report = PatternDetectionService().detect_address_patterns(ADDR, _daily(2))
        assert report.pattern_count == 0
        assert report.patterns == {}
        assert report.message == 'Insufficient transaction history for pattern detection'

    def test_round_values(self):
        report = PatternDetectionService().detect_address_patterns(ADDR, _daily(5, value=1.0))
        pattern = report.patterns['valueDistribution']['roundValues']
        assert pattern.details['values'][0]['count'] == 5
        assert pattern.details['values'][0]['percentage'] == 100.0

    def test_recurring_exact_values(self):
        report = PatternDetectionService().detect_address_patterns(ADDR, _daily(4, value=0.125))
        assert 'recurringValues' in report.patterns['valueDistribution']

    def test_peak_hour_and_daily_rhythm(self):
        report = PatternDetectionService().detect_address_patterns(ADDR, _daily(10, value=0.5))

        peak = report.patterns['activityTiming']['peakHours']
        assert peak.details['hours'] == [14]
        assert peak.confidence == pytest.approx(0.34)

        daily = report.patterns['periodicActivity']['dailyActivity']
        assert daily.details == {'count': 9, 'intervals': 9}

    def test_frequent_counterparty(self):
        report = PatternDetectionService().detect_address_patterns(ADDR, _daily(6))
        frequent = report.patterns['counterparties']['frequentCounterparties']
        assert frequent.details['counterparties'][0]['address'] == PEER

    def test_gas_preferences(self):
        txs = _daily(10, gasPrice=50, gasUsed=21000)
        report = PatternDetectionService(PatternConfig(market_gas_price=20.0)).detect_address_patterns(ADDR, txs)

        gas = report.patterns['gasUsage']
        assert 'consistentGasPrice' in gas
        assert gas['highGasPricePreference'].details['market_ratio'] == pytest.approx(2.5)

    def test_wide_value_range(self):
        txs = _daily(3, value=0.5) + [{'from': ADDR, 'to': PEER, 'value': 500.5}]
        report = PatternDetectionService().detect_address_patterns(ADDR, txs)
        wide = report.patterns['valueDistribution']['wideValueRange']
        assert wide.details['ratio'] == pytest.approx(1001.0)

    def test_pattern_count_matches(self):
        report = PatternDetectionService().detect_address_patterns(ADDR, _daily(10))
        assert report.pattern_count == sum(len(p) for p in report.patterns.values())
        assert all(p for p in report.patterns.values())


class TestAnomalies:

    def test_insufficient_history(self):
        report = PatternDetectionService().detect_anomalies(ADDR, _daily(5))
        assert report.anomaly_count == 0
        assert report.message == 'Insufficient transaction history for anomaly detection'

    def test_large_value(self):
        txs = _daily(15)
        txs[7]['value'] = 100.0
        report = PatternDetectionService().detect_anomalies(ADDR, txs)

        assert [a.type for a in report.anomalies] == ['large_value']
        anomaly = report.anomalies[0]
        assert anomaly.hash == '0x0007'
        assert anomaly.details['z_score'] > 3
        assert 0.5 < anomaly.severity <= 0.9

    def test_activity_burst(self):
        txs = _daily(9)
        txs.append({
            'hash': '0xburst',
            'from': ADDR,
            'to': PEER,
            'value': 1.0,
            'timestamp': (START + timedelta(days=8, minutes=10)).isoformat(),
        })
        report = PatternDetectionService().detect_anomalies(ADDR, txs)

        bursts = [a for a in report.anomalies if a.type == 'activity_burst']
        assert [a.hash for a in bursts] == ['0xburst']
        assert bursts[0].severity == 0.8

    def test_value_behavior_change(self):
        txs = _daily(20)
        for tx in txs[10:]:
            tx['value'] = 10.0
        report = PatternDetectionService().detect_anomalies(ADDR, txs)

        change = [a for a in report.anomalies if a.type == 'value_behavior_change']
        assert len(change) == 1
        assert change[0].details['ratio'] == pytest.approx(10.0)

    def test_value_change_from_zero_is_flagged(self):
        txs = _daily(20, value=0)
        for tx in txs[10:]:
            tx['value'] = 3.0
        report = PatternDetectionService().detect_anomalies(ADDR, txs)

        change = [a for a in report.anomalies if a.type == 'value_behavior_change']
        assert len(change) == 1
        assert change[0].details['ratio'] == MAX_VALUE_CHANGE_RATIO
        assert 'increase' in change[0].description

    def test_all_zero_values_not_flagged(self):
        report = PatternDetectionService().detect_anomalies(ADDR, _daily(20, value=0))
        assert not [a for a in report.anomalies if a.type == 'value_behavior_change']

    def test_counterparty_behavior_change(self):
        txs = []
        for i in range(20):
            peer = f"0x{('a' if i < 10 else 'b') * 39}{i % 10}"
            txs.append({
                'from': ADDR,
                'to': peer,
                'value': 1.0,
                'timestamp': (START + timedelta(days=i)).isoformat(),
            })
        report = PatternDetectionService().detect_anomalies(ADDR, txs)
        assert 'counterparty_behavior_change' in [a.type for a in report.anomalies]

    def test_flagged_counterparty_detector(self):
        txs = _daily(9)
        txs.append({
            'hash': '0xdirty',
            'from': ADDR,
            'to': EVIL,
            'value': 1.0,
            'timestamp': (START + timedelta(days=9)).isoformat(),
        })
        service = PatternDetectionService(counterparty_risk=FlaggedCounterpartyDetector([EVIL.upper()]))
        report = service.detect_anomalies(ADDR, txs)

        assert [a.type for a in report.anomalies] == ['counterparty_risk']
        assert report.anomalies[0].hash == '0xdirty'
        assert report.anomalies[0].severity == 0.8

    def test_sorted_by_severity(self):
        txs = _daily(15)
        txs[3]['value'] = 100.0
        txs.append({
            'from': ADDR,
            'to': PEER,
            'value': 1.0,
            'timestamp': (START + timedelta(days=14, minutes=5)).isoformat(),
        })
        report = PatternDetectionService().detect_anomalies(ADDR, txs)
        severities = [a.severity for a in report.anomalies]
        assert len(severities) >= 2
        assert severities == sorted(severities, reverse=True)


class TestBulk:

    def test_results_and_errors(self):
        class PickyDetector(PatternDetectionService):
            def analyze_address(self, address, transactions):
                if address == 'broken':
                    raise ValueError("cannot analyze")
                return super().analyze_address(address, transactions)

        histories = {ADDR: _daily(12), PEER: _daily(3), 'broken': []}
        result = asyncio.run(PickyDetector().detect_bulk_patterns(histories, batch_size=2))

        assert result.total_processed == 3
        assert result.success_count == 2
        assert result.error_count == 1
        assert result.errors[0].address == 'broken'
        assert result.results[ADDR].patterns.pattern_count > 0
        assert result.results[PEER].anomalies.message is not None
