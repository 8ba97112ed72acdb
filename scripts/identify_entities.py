#!/usr/bin/env python3
"""
Entity Identification CLI

Runs the identification pipeline over a JSON transaction dump and prints the
result as JSON.

Usage:
    python scripts/identify_entities.py transactions.json --seed
    python scripts/identify_entities.py transactions.json --risk 0xabc... --patterns 0xabc...
    python scripts/identify_entities.py transactions.json --database-url sqlite:///entities.db
"""

import argparse
import asyncio
import json
import logging
import os
import sys

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

from app.core.entity_identification.config import IdentificationSettings, StoreConfig
from app.core.entity_identification.data_sources.entity_store import InMemoryEntityStore, known_entities
from app.core.entity_identification.data_sources.sql_entity_store import SqlEntityStore
from app.core.entity_identification.data_sources.transaction_source import InMemoryTransactionSource
from app.core.entity_identification.detection.pattern_detection import PatternDetectionService
from app.core.entity_identification.detection.risk_factors import default_detectors
from app.core.entity_identification.detection.risk_scoring import RiskScoringService
from app.core.entity_identification.services.identification import IdentificationOrchestrator
from app.core.entity_identification.utils.error_handling import IdentificationError
from app.core.entity_identification.utils.logger import configure_logging

logger = logging.getLogger(__name__)


def load_transactions(path):
    """Transaction list from a JSON file (a list, or an object with 'transactions')."""
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get('transactions', [])
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a list of transactions")
    return data


def build_store(args, settings):
    if args.database_url:
        store = SqlEntityStore.from_config(StoreConfig(database_url=args.database_url, echo=settings.store.echo))
        store.init_schema()
        return store
    return InMemoryEntityStore(known_entities() if args.seed else None)


async def run(args):
    settings = IdentificationSettings.from_env()
    transactions = load_transactions(args.input)

    store = build_store(args, settings)
    source = InMemoryTransactionSource(transactions)
    orchestrator = IdentificationOrchestrator(store, transaction_source=source, settings=settings)

    result = await orchestrator.identify_entities_from_transactions(
        transactions,
        update_entities=not args.no_update,
        confidence_threshold=args.threshold,
    )
    output = {'identification': result.model_dump(mode='json')}

    pattern_detector = PatternDetectionService(settings.patterns)

    if args.risk:
        scorer = RiskScoringService(
            orchestrator,
            transaction_source=source,
            detectors=default_detectors(settings.risk, anomaly_detector=pattern_detector),
            config=settings.risk,
        )
        bulk = await scorer.calculate_bulk_address_risk(args.risk)
        output['risk'] = bulk.model_dump(mode='json')
        output['risk']['levels'] = scorer.summarize(bulk.results)

    if args.patterns:
        histories = {
            address: await source.get_address_transactions(address)
            for address in args.patterns
        }
        bulk = await pattern_detector.detect_bulk_patterns(histories)
        output['patterns'] = bulk.model_dump(mode='json')

    return output


def main():
    """CLI entry point"""
    parser = argparse.ArgumentParser(description="Identify entities behind blockchain addresses")
    parser.add_argument("input", help="JSON file with a list of transactions")
    parser.add_argument("--seed", action="store_true", help="Seed the in-memory store with reference entities")
    parser.add_argument("--database-url", help="Use a SQL entity store instead of the in-memory one")
    parser.add_argument("--no-update", action="store_true", help="Do not write attributions to the store")
    parser.add_argument("--threshold", type=float, default=None, help="Confidence threshold for entity updates")
    parser.add_argument("--risk", action="append", default=[], metavar="ADDRESS", help="Score an address (repeatable)")
    parser.add_argument("--patterns", action="append", default=[], metavar="ADDRESS",
                        help="Detect patterns and anomalies for an address (repeatable)")
    parser.add_argument("--log-level", default=None, help="Logging level (default: LOG_LEVEL or INFO)")
    args = parser.parse_args()

    configure_logging(args.log_level)

    try:
        output = asyncio.run(run(args))
    except (IdentificationError, ValueError, OSError) as e:
        logger.error(f"❌ Identification failed: {e}")
        sys.exit(1)

    print(json.dumps(output, indent=2))
    sys.exit(0)


if __name__ == "__main__":
    main()
