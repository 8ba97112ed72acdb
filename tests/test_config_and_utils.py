"""Tests for settings loading, numeric helpers and the retry decorator."""

import asyncio

import pytest

from app.core.entity_identification.config import (
    AttributionConfig,
    IdentificationSettings,
    RiskConfig,
    StoreConfig,
)
from app.core.entity_identification.utils.calculations import (
    chunk_list,
    coefficient_of_variation,
    jaccard_similarity,
    parse_numeric,
    pattern_confidence,
    peak_bins,
    relative_similarity,
    unique_in_order,
)
from app.core.entity_identification.utils.error_handling import (
    EntityNotFoundError,
    retry_async,
)


class TestSettings:

    def test_defaults(self):
        settings = IdentificationSettings()
        assert settings.attribution.confidence_threshold == 0.8
        assert settings.clustering.behavioral_similarity_threshold == 0.85
        assert settings.risk.batch_size == 10
        assert settings.risk.weights['sanctionedEntity'] == 0.9
        assert settings.risk.entity_type_risk['Mixer'] == 0.9

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv('ENTITY_ID_CONFIDENCE_THRESHOLD', '0.7')
        monkeypatch.setenv('ENTITY_ID_BATCH_SIZE', '25')
        monkeypatch.setenv('ENTITY_ID_NEW_ADDRESS_DAYS', '')

        settings = IdentificationSettings.from_env()

        assert settings.attribution.confidence_threshold == 0.7
        assert settings.risk.batch_size == 25
        assert settings.patterns.batch_size == 25
        assert settings.risk.new_address_days == 30

    def test_weights_are_per_instance(self):
        first = RiskConfig()
        first.weights['newAddress'] = 0.0
        assert RiskConfig().weights['newAddress'] == 0.4

    def test_database_url(self, monkeypatch):
        monkeypatch.delenv('ENTITY_ID_DATABASE_URL', raising=False)
        monkeypatch.setenv('DATABASE_URL', 'postgres://user:pw@db/entities')
        assert StoreConfig.from_env().database_url == 'postgresql://user:pw@db/entities'

    def test_database_url_default(self, monkeypatch):
        monkeypatch.delenv('ENTITY_ID_DATABASE_URL', raising=False)
        monkeypatch.delenv('DATABASE_URL', raising=False)
        assert StoreConfig.from_env().database_url == 'sqlite:///entities.db'

    def test_bad_number_raises(self, monkeypatch):
        monkeypatch.setenv('ENTITY_ID_WRITE_RETRIES', 'three')
        with pytest.raises(ValueError):
            AttributionConfig.from_env()


class TestCalculations:

    @pytest.mark.parametrize('raw, expected', [
        (5, 5.0),
        ('2.5', 2.5),
        ('10.5 ETH', 10.5),
        ('n/a', None),
        (None, None),
        (True, None),
        (float('nan'), None),
    ])
    def test_parse_numeric(self, raw, expected):
        assert parse_numeric(raw) == expected

    def test_pattern_confidence_bounds(self):
        assert pattern_confidence(100, 1000) == 0.95
        assert pattern_confidence(0, 0) == 0.0
        assert pattern_confidence(5, 10) == pytest.approx(0.5)

    def test_similarity_helpers(self):
        assert jaccard_similarity(set(), set()) == 1.0
        assert jaccard_similarity({'a', 'b'}, {'b', 'c'}) == pytest.approx(1 / 3)
        assert relative_similarity(10, 10) == 1.0
        assert relative_similarity(0, 100) == 0.0

    def test_coefficient_of_variation(self):
        assert coefficient_of_variation([0, 0]) is None
        assert coefficient_of_variation([5, 5, 5]) == 0.0

    def test_peak_bins(self):
        counts = [0] * 24
        counts[3] = 10
        assert peak_bins(counts, sigma=2) == [3]
        assert peak_bins([0] * 24, sigma=2) == []

    def test_chunk_list(self):
        assert chunk_list(list(range(5)), 2) == [[0, 1], [2, 3], [4]]
        with pytest.raises(ValueError):
            chunk_list([1], 0)

    def test_unique_in_order(self):
        assert unique_in_order(['b', 'a', 'b', 'c', 'a']) == ['b', 'a', 'c']


class TestRetry:

    def test_retries_until_success(self):
        calls = []

        @retry_async(max_retries=3, delay=0)
        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ConnectionError("try again")
            return 'ok'

        assert asyncio.run(flaky()) == 'ok'
        assert len(calls) == 3

    def test_gives_up_with_last_error(self):
        calls = []

        @retry_async(max_retries=2, delay=0)
        async def broken():
            calls.append(1)
            raise ConnectionError(f"attempt {len(calls)}")

        with pytest.raises(ConnectionError, match='attempt 2'):
            asyncio.run(broken())

    def test_not_found_is_not_retried(self):
        calls = []

        @retry_async(max_retries=3, delay=0)
        async def missing():
            calls.append(1)
            raise EntityNotFoundError("gone")

        with pytest.raises(EntityNotFoundError):
            asyncio.run(missing())
        assert len(calls) == 1

    def test_zero_retries_still_calls_once(self):
        calls = []

        @retry_async(max_retries=0, delay=0)
        async def write():
            calls.append(1)
            return 'ok'

        assert asyncio.run(write()) == 'ok'
        assert len(calls) == 1
