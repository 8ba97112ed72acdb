# app/core/entity_identification/config.py
import os
from dataclasses import dataclass, field
from typing import Dict


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw not in (None, '') else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw not in (None, '') else default


# Risk factor weights
RISK_WEIGHTS: Dict[str, float] = {
    'mixerInteraction': 0.8,
    'sanctionedEntity': 0.9,
    'darknetInteraction': 0.7,
    'highRiskExchange': 0.6,
    'unusualActivityPattern': 0.5,
    'newAddress': 0.4,
    'highValueTransfers': 0.5,
    'rapidFundMovement': 0.6,
    'manyHops': 0.4,
    'lowTransparencyEntity': 0.5,
}

# Entity type risk levels (0 to 1, 1 = highest risk)
ENTITY_TYPE_RISK: Dict[str, float] = {
    'Mixer': 0.9,
    'DarknetMarket': 0.9,
    'Sanctioned': 1.0,
    'HighRiskExchange': 0.7,
    'Exchange': 0.2,
    'DeFi Protocol': 0.3,
    'Token': 0.2,
    'Wallet': 0.2,
    'Unknown': 0.5,
}


@dataclass
class ClusteringConfig:
    behavioral_similarity_threshold: float = 0.85
    min_behavioral_transactions: int = 3
    # gas_used above a plain value transfer marks a contract interaction
    plain_transfer_gas: int = 21000
    similarity_weights: Dict[str, float] = field(default_factory=lambda: {
        'transaction_count': 0.20,
        'mean_value': 0.25,
        'hour_histogram': 0.25,
        'mean_gas_price': 0.15,
        'contract_interactions': 0.15,
    })

    @classmethod
    def from_env(cls) -> 'ClusteringConfig':
        return cls(
            behavioral_similarity_threshold=_env_float(
                'ENTITY_ID_BEHAVIORAL_THRESHOLD', 0.85
            ),
            min_behavioral_transactions=_env_int('ENTITY_ID_MIN_BEHAVIORAL_TXS', 3),
        )


@dataclass
class AttributionConfig:
    confidence_threshold: float = 0.8
    max_confidence: float = 0.99
    new_entity_confidence: float = 0.6
    min_cluster_size_for_entity: int = 3
    behavioral_acceptance_score: float = 0.5
    interaction_scale: float = 1.5
    max_interaction_score: float = 0.95
    write_retries: int = 3
    write_retry_delay: float = 0.5

    @classmethod
    def from_env(cls) -> 'AttributionConfig':
        return cls(
            confidence_threshold=_env_float('ENTITY_ID_CONFIDENCE_THRESHOLD', 0.8),
            new_entity_confidence=_env_float('ENTITY_ID_NEW_ENTITY_CONFIDENCE', 0.6),
            write_retries=_env_int('ENTITY_ID_WRITE_RETRIES', 3),
            write_retry_delay=_env_float('ENTITY_ID_WRITE_RETRY_DELAY', 0.5),
        )


@dataclass
class RiskConfig:
    batch_size: int = 10
    max_entity_base: float = 0.7
    max_score: float = 0.95
    new_address_days: int = 30
    high_value_threshold: float = 100.0
    rapid_movement_window_hours: float = 1.0
    rapid_movement_ratio: float = 0.9
    unusual_activity_min_severity: float = 0.7
    low_transparency_confidence: float = 0.3
    weights: Dict[str, float] = field(default_factory=lambda: dict(RISK_WEIGHTS))
    entity_type_risk: Dict[str, float] = field(default_factory=lambda: dict(ENTITY_TYPE_RISK))

    @classmethod
    def from_env(cls) -> 'RiskConfig':
        return cls(
            batch_size=_env_int('ENTITY_ID_BATCH_SIZE', 10),
            new_address_days=_env_int('ENTITY_ID_NEW_ADDRESS_DAYS', 30),
            high_value_threshold=_env_float('ENTITY_ID_HIGH_VALUE_THRESHOLD', 100.0),
        )


@dataclass
class PatternConfig:
    min_pattern_transactions: int = 3
    min_anomaly_transactions: int = 10
    min_behavior_change_transactions: int = 20
    market_gas_price: float = 20.0
    batch_size: int = 10

    @classmethod
    def from_env(cls) -> 'PatternConfig':
        return cls(
            market_gas_price=_env_float('ENTITY_ID_MARKET_GAS_PRICE', 20.0),
            batch_size=_env_int('ENTITY_ID_BATCH_SIZE', 10),
        )


@dataclass
class StoreConfig:
    database_url: str = 'sqlite:///entities.db'
    echo: bool = False

    @classmethod
    def from_env(cls) -> 'StoreConfig':
        database_url = os.getenv('ENTITY_ID_DATABASE_URL') or os.getenv('DATABASE_URL')
        if database_url and database_url.startswith('postgres://'):
            database_url = database_url.replace('postgres://', 'postgresql://', 1)
        return cls(
            database_url=database_url or 'sqlite:///entities.db',
            echo=os.getenv('DB_ECHO', 'false').lower() == 'true',
        )


@dataclass
class IdentificationSettings:
    clustering: ClusteringConfig = field(default_factory=ClusteringConfig)
    attribution: AttributionConfig = field(default_factory=AttributionConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)
    patterns: PatternConfig = field(default_factory=PatternConfig)
    store: StoreConfig = field(default_factory=StoreConfig)

    @classmethod
    def from_env(cls) -> 'IdentificationSettings':
        return cls(
            clustering=ClusteringConfig.from_env(),
            attribution=AttributionConfig.from_env(),
            risk=RiskConfig.from_env(),
            patterns=PatternConfig.from_env(),
            store=StoreConfig.from_env(),
        )
