"""Tests for the address partition and the clustering heuristics."""

import copy
from datetime import datetime, timedelta, timezone

import pytest

from app.core.entity_identification.analysis.address_partition import (
    AddressPartition,
    generate_cluster_id,
)
from app.core.entity_identification.analysis.behavioral_features import (
    build_profile,
    profile_similarity,
)
from app.core.entity_identification.analysis.clustering import AddressClusteringService
from app.core.entity_identification.blockchain.transaction_normalizer import (
    extract_unique_addresses,
    normalize_transactions,
)
from app.core.entity_identification.config import ClusteringConfig

START = datetime(2024, 3, 1, tzinfo=timezone.utc)


def _utxo(inputs, outputs, **extra):
    return {'inputs': list(inputs), 'outputs': list(outputs), **extra}


def _series(sender, receiver, count, hour, value, gas_price, gas_used=21000):
    """One transfer per day at a fixed hour."""
    return [
        {
            'hash': f"{sender}-{i}",
            'from': sender,
            'to': receiver,
            'value': value,
            'gasPrice': gas_price,
            'gasUsed': gas_used,
            'timestamp': (START + timedelta(days=i, hours=hour)).isoformat(),
        }
        for i in range(count)
    ]


def _as_sets(clusters):
    return {frozenset(members) for members in clusters.values()}


class TestAddressPartition:

    def test_transitive_merge(self):
        partition = AddressPartition()
        partition.union('a', 'b')
        partition.union('c', 'd')
        partition.union('b', 'c')
        assert list(partition.clusters().values()) == [['a', 'b', 'c', 'd']]

    def test_merge_order_does_not_matter(self):
        forward = AddressPartition()
        forward.union('a', 'b')
        forward.union('b', 'c')

        backward = AddressPartition()
        backward.union('b', 'c')
        backward.union('a', 'b')

        assert set(forward.clusters()) == set(backward.clusters())
        assert _as_sets(forward.clusters()) == _as_sets(backward.clusters()) == {frozenset('abc')}


    def test_behavioral_label_survives_import(self):
        partition = AddressPartition.from_clusters({'behavioral_cluster_x': ['a', 'b'], 'cluster_y': ['c']})
        ids = sorted(partition.clusters())
        assert ids[0].startswith('behavioral_cluster_')
        assert ids[1].startswith('cluster_')

    def test_merge_with_unlabelled_set_drops_behavioral_label(self):
        partition = AddressPartition.from_clusters({'behavioral_cluster_x': ['a', 'b']})
        partition.union('b', 'c')
        (cluster_id,) = partition.clusters()
        assert cluster_id.startswith('cluster_')


class TestClusterIds:

    def test_deterministic_and_order_independent(self):
        assert generate_cluster_id(['0xb', '0xa']) == generate_cluster_id(['0xa', '0xb'])

    def test_shape(self):
        cluster_id = generate_cluster_id(['0xa'])
        assert cluster_id.startswith('cluster_')
        assert len(cluster_id) == len('cluster_') + 16

    def test_prefix(self):
        assert generate_cluster_id(['0xa'], 'behavioral_cluster_').startswith('behavioral_cluster_')


class TestCommonInput:

    def test_co_spent_inputs_cluster(self):
        service = AddressClusteringService()
        clusters = service.common_input_clustering([_utxo(['a', 'b'], ['c'])])
        assert _as_sets(clusters) == {frozenset('ab')}

    def test_merge_independent_of_transaction_order(self):
        service = AddressClusteringService()
        txs = [_utxo(['a', 'b'], ['x']), _utxo(['b', 'c'], ['y'])]

        forward = service.common_input_clustering(txs)
        backward = service.common_input_clustering(list(reversed(txs)))

        assert set(forward) == set(backward)
        assert _as_sets(forward) == {frozenset('abc')}

    def test_existing_clusters_not_mutated(self):
        service = AddressClusteringService()
        existing = {'cluster_seed': ['p', 'q']}
        snapshot = copy.deepcopy(existing)

        clusters = service.common_input_clustering([_utxo(['q', 'r'], ['s'])], existing)

        assert existing == snapshot
        assert _as_sets(clusters) == {frozenset('pqr')}


class TestChangeAddress:

    def test_single_novel_output_joins_sender(self):
        service = AddressClusteringService()
        txs = [
            _utxo(['z'], ['b', 'y'], timestamp=1000),
            _utxo(['a'], ['b', 'c'], timestamp=2000),
        ]
        clusters = service.change_address_identification(txs)
        # First transaction is ambiguous (two novel outputs)
        assert _as_sets(clusters) == {frozenset('ac')}

    def test_timestamp_order_used_when_complete(self):
        service = AddressClusteringService()
        txs = [
            _utxo(['a'], ['b', 'c'], timestamp=2000),
            _utxo(['z'], ['b', 'y'], timestamp=1000),
        ]
        assert _as_sets(service.change_address_identification(txs)) == {frozenset('ac')}

    def test_output_echoing_input_counts_as_novel_on_first_sight(self):
        service = AddressClusteringService()
        clusters = service.change_address_identification([_utxo(['a'], ['a', 'b'])])
        assert clusters == {}

    def test_output_seen_in_earlier_transaction_is_not_novel(self):
        service = AddressClusteringService()
        txs = [
            _utxo(['x'], ['a', 'y']),
            _utxo(['a'], ['a', 'b']),
        ]
        assert _as_sets(service.change_address_identification(txs)) == {frozenset('ab')}


class TestCombined:

    def test_simple_co_spend(self):
        service = AddressClusteringService()
        clusters = service.combined_clustering([_utxo(['a', 'b'], ['c'])])
        assert list(clusters.values()) == [['a', 'b', 'c']]

    def test_partition_covers_every_address_once(self):
        raws = [
            _utxo(['a', 'b'], ['c', 'd']),
            _utxo(['e'], ['a', 'f']),
            {'from': 'g', 'to': 'h'},
            _utxo(['i', 'j'], ['k']),
            {'from': 'k', 'to': 'a'},
        ]
        service = AddressClusteringService()
        clusters = service.combined_clustering(raws)

        members = [a for group in clusters.values() for a in group]
        assert len(members) == len(set(members))
        assert set(members) == set(extract_unique_addresses(normalize_transactions(raws)))

    def test_requested_addresses_always_present(self):
        service = AddressClusteringService()
        clusters = service.combined_clustering([_utxo(['a', 'b'], ['c'])], addresses=['a', 'B', 'lonely'])
        assert _as_sets(clusters) == {frozenset('abc'), frozenset(['lonely'])}

    def test_repeatable(self):
        raws = [_utxo(['a', 'b'], ['c']), {'from': 'd', 'to': 'e'}]
        service = AddressClusteringService()
        assert service.combined_clustering(raws) == service.combined_clustering(raws)


class TestBehavioral:

    def _history(self):
        return (
            _series('u1', 'r', 5, hour=10, value=2.0, gas_price=30)
            + _series('u2', 'r', 5, hour=10, value=2.0, gas_price=30)
            + _series('u3', 'r', 5, hour=22, value=500.0, gas_price=90)
        )

    def test_similar_addresses_grouped(self):
        service = AddressClusteringService()
        clusters = service.behavioral_clustering(['u1', 'u2', 'u3'], self._history())

        behavioral = {cid: m for cid, m in clusters.items() if cid.startswith('behavioral_cluster_')}
        assert list(behavioral.values()) == [['u1', 'u2']]
        assert frozenset(['u3']) in _as_sets(clusters)

    def test_short_histories_stay_alone(self):
        service = AddressClusteringService()
        history = _series('u1', 'r', 2, hour=10, value=2.0, gas_price=30) \
            + _series('u2', 'r', 2, hour=10, value=2.0, gas_price=30)
        clusters = service.behavioral_clustering(['u1', 'u2'], history)
        assert _as_sets(clusters) == {frozenset(['u1']), frozenset(['u2'])}

    def test_clustered_addresses_left_in_place(self):
        service = AddressClusteringService()
        existing = {'cluster_seed': ['u1', 'z']}
        clusters = service.behavioral_clustering(['u1', 'u2', 'u3'], self._history(), existing)

        assert frozenset(['u1', 'z']) in _as_sets(clusters)
        assert not any(cid.startswith('behavioral_cluster_') for cid in clusters)

    def test_threshold_from_config(self):
        service = AddressClusteringService(ClusteringConfig(behavioral_similarity_threshold=0.3))
        clusters = service.behavioral_clustering(['u1', 'u2', 'u3'], self._history())
        assert _as_sets(clusters) == {frozenset(['u1', 'u2', 'u3'])}


class TestProfiles:

    def test_profile_features(self):
        txs = normalize_transactions(
            _series('u1', 'r', 4, hour=10, value=2.0, gas_price=30)
            + [{'from': 'u1', 'to': 'pool', 'value': 0, 'gasUsed': 120000, 'gasPrice': 30,
                'timestamp': START.isoformat()}]
        )
        profile = build_profile('u1', txs)
        assert profile.transaction_count == 5
        assert profile.mean_value == 8.0 / 5
        assert profile.hour_histogram[10] == 4
        assert profile.contract_interactions == frozenset(['pool'])

    def test_identical_profiles_score_one(self):
        txs = normalize_transactions(_series('u1', 'r', 5, hour=10, value=2.0, gas_price=30))
        profile = build_profile('u1', txs)
        weights = ClusteringConfig().similarity_weights
        assert profile_similarity(profile, profile, weights) == pytest.approx(1.0)
