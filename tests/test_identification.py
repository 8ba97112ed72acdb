"""Tests for the identification pipeline orchestrator."""

import asyncio

import pytest

from app.core.entity_identification.data_sources.entity_store import InMemoryEntityStore, known_entities
from app.core.entity_identification.data_sources.transaction_source import InMemoryTransactionSource
from app.core.entity_identification.models.attribution import AttributionMethod, SkipReason
from app.core.entity_identification.services.identification import IdentificationOrchestrator
from app.core.entity_identification.utils.error_handling import (
    EntityLookupError,
    SourceUnavailableError,
)

BINANCE = '0x3f5ce5fbfe3e9af3971dd833d26ba9b5c936f0be'
U1 = '0x00000000000000000000000000000000000000a1'
U2 = '0x00000000000000000000000000000000000000a2'
V1 = '0x00000000000000000000000000000000000000b1'
V2 = '0x00000000000000000000000000000000000000b2'
V3 = '0x00000000000000000000000000000000000000b3'

TRANSACTIONS = [
    {'hash': '0x01', 'inputs': [BINANCE, U1], 'outputs': [U2]},
    {'hash': '0x02', 'inputs': [V1, V2], 'outputs': [V3]},
]


class UnreachableStore(InMemoryEntityStore):
    async def get_entities(self, filters=None):
        raise ConnectionError("connection refused")


class LookupFailingStore(InMemoryEntityStore):
    async def find_entity_for_address(self, address):
        raise TimeoutError("lookup timed out")


def _cluster_of(result, address):
    return next(cid for cid, members in result.clusters.items() if address in members)


class TestPipeline:

    def test_result_shape(self, store):
        orchestrator = IdentificationOrchestrator(store)
        result = asyncio.run(orchestrator.identify_entities_from_transactions(TRANSACTIONS))

        assert result.transaction_count == 2
        assert result.address_count == 6
        assert result.cluster_count == 2
        assert set(result.attributions) == set(result.clusters)

        binance_cluster = _cluster_of(result, BINANCE)
        assert result.attributions[binance_cluster].entity_name == 'Binance'
        assert result.attributions[binance_cluster].confidence == pytest.approx(0.78)

        updates = result.updates
        assert [s.reason for s in updates.skipped] == [SkipReason.LOW_CONFIDENCE]
        assert updates.created[0].cluster_id == _cluster_of(result, V1)
        assert updates.created[0].address_count == 3

    def test_lower_threshold_extends_known_entity(self, store):
        orchestrator = IdentificationOrchestrator(store)
        result = asyncio.run(orchestrator.identify_entities_from_transactions(TRANSACTIONS, confidence_threshold=0.7))

        assert result.updates.updated[0].entity_name == 'Binance'
        assert sorted(result.updates.updated[0].addresses_added) == [U1, U2]

    def test_second_run_changes_nothing(self, store):
        orchestrator = IdentificationOrchestrator(store)
        asyncio.run(orchestrator.identify_entities_from_transactions(TRANSACTIONS))
        entities_after_first = asyncio.run(store.get_entities())

        result = asyncio.run(orchestrator.identify_entities_from_transactions(TRANSACTIONS))

        assert result.updates.created == []
        assert result.updates.updated == []
        assert {s.reason for s in result.updates.skipped} == {
            SkipReason.LOW_CONFIDENCE, SkipReason.NO_NEW_ADDRESSES,
        }
        created_cluster = result.attributions[_cluster_of(result, V1)]
        assert created_cluster.confidence == pytest.approx(0.84)
        assert [e.addresses for e in asyncio.run(store.get_entities())] == \
            [e.addresses for e in entities_after_first]

    def test_read_only_run(self, store):
        orchestrator = IdentificationOrchestrator(store)
        result = asyncio.run(orchestrator.identify_entities_from_transactions(TRANSACTIONS, update_entities=False))

        assert result.updates is None
        assert len(asyncio.run(store.get_entities())) == len(known_entities())

    def test_read_only_run_is_repeatable(self, store):
        orchestrator = IdentificationOrchestrator(store)
        first = asyncio.run(orchestrator.identify_entities_from_transactions(TRANSACTIONS, update_entities=False))
        second = asyncio.run(orchestrator.identify_entities_from_transactions(TRANSACTIONS, update_entities=False))

        assert second.clusters == first.clusters
        assert second.attributions == first.attributions

    def test_malformed_records_skipped(self, store):
        orchestrator = IdentificationOrchestrator(store)
        result = asyncio.run(orchestrator.identify_entities_from_transactions(
            TRANSACTIONS + ['garbage', {'timestamp': 'not-a-date'}],
            update_entities=False,
        ))
        assert result.transaction_count == 4
        assert result.address_count == 6

    def test_empty_batch(self, store):
        orchestrator = IdentificationOrchestrator(store)
        result = asyncio.run(orchestrator.identify_entities_from_transactions([]))
        assert result.cluster_count == 0
        assert result.updates.skipped == []

    def test_unreachable_store(self):
        orchestrator = IdentificationOrchestrator(UnreachableStore())
        with pytest.raises(SourceUnavailableError):
            asyncio.run(orchestrator.identify_entities_from_transactions(TRANSACTIONS))


class TestSingleAddress:

    def test_existing_entry(self, store):
        orchestrator = IdentificationOrchestrator(store)
        result = asyncio.run(orchestrator.identify_address_entity(BINANCE.upper()))

        assert result.method == AttributionMethod.EXISTING_ENTRY
        assert result.entity_id == '1'
        assert result.confidence == 0.95
        assert result.analysis_performed is False

    def test_existing_entry_confidence_capped(self):
        store = InMemoryEntityStore()
        asyncio.run(store.create_entity({
            'name': 'Certain Exchange',
            'type': 'Exchange',
            'addresses': [U1],
            'confidence_score': 1.0,
        }))
        result = asyncio.run(IdentificationOrchestrator(store).identify_address_entity(U1))

        assert result.method == AttributionMethod.EXISTING_ENTRY
        assert result.confidence == 0.99

    def test_unknown_without_analysis(self, store):
        orchestrator = IdentificationOrchestrator(store)
        result = asyncio.run(orchestrator.identify_address_entity(U1, perform_analysis=False))

        assert result.method == AttributionMethod.NONE
        assert result.entity_name == 'Unknown'
        assert result.analysis_performed is False

    def test_analysis_uses_transaction_source(self, store):
        source = InMemoryTransactionSource(TRANSACTIONS)
        orchestrator = IdentificationOrchestrator(store, transaction_source=source)
        result = asyncio.run(orchestrator.identify_address_entity(U1))

        assert result.method == AttributionMethod.CLUSTER_ANALYSIS
        assert result.entity_name == 'Binance'
        assert result.analysis_performed is True
        assert result.transactions_analyzed == 1
        assert result.related_addresses == [BINANCE, U2]

    def test_analysis_without_source(self, store):
        orchestrator = IdentificationOrchestrator(store)
        result = asyncio.run(orchestrator.identify_address_entity(V1))

        assert result.method == AttributionMethod.NONE
        assert result.analysis_performed is True
        assert result.transactions_analyzed == 0

    def test_lookup_failure(self):
        orchestrator = IdentificationOrchestrator(LookupFailingStore(known_entities()))
        with pytest.raises(EntityLookupError):
            asyncio.run(orchestrator.identify_address_entity(BINANCE))
