import logging
from abc import ABC, abstractmethod
from typing import Iterable, List

from app.core.entity_identification.blockchain.transaction_normalizer import (
    RawTransaction,
    involves_address,
    normalize_transactions,
)
from app.core.entity_identification.models.transaction import Transaction

logger = logging.getLogger(__name__)


class TransactionSource(ABC):
    """Provides the transaction history of an address (node adapter, indexer, ...)"""

    @abstractmethod
    async def get_address_transactions(self, address: str) -> List[Transaction]:
        """All known transactions in which ``address`` is a sender or receiver."""


class InMemoryTransactionSource(TransactionSource):
    """History served from a materialized transaction list"""

    def __init__(self, transactions: Iterable[RawTransaction] = ()):
        self.transactions = normalize_transactions(transactions)

    def add(self, transactions: Iterable[RawTransaction]) -> None:
        self.transactions.extend(normalize_transactions(transactions))

    async def get_address_transactions(self, address: str) -> List[Transaction]:
        history = [tx for tx in self.transactions if involves_address(address, tx)]
        logger.debug(f"Found {len(history)} transactions for {address[:10]}...")
        return history
