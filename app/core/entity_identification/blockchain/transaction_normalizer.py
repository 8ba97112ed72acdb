"""
Transaction normalization.

Turns raw transaction records into ``Transaction`` models and exposes the
input/output address view every clustering heuristic works on. UTXO-style
``inputs``/``outputs`` lists take precedence over the account-model
``from``/``to`` pair.
"""

import logging
from typing import Any, Iterable, List, Mapping, Tuple, Union

from pydantic import ValidationError

from app.core.entity_identification.models.transaction import Transaction, normalize_address
from app.core.entity_identification.utils.calculations import unique_in_order
from app.core.entity_identification.utils.error_handling import DataError

logger = logging.getLogger(__name__)

RawTransaction = Union[Transaction, Mapping[str, Any]]


def coerce_transaction(raw: RawTransaction) -> Transaction:
    """
    Parse one raw record.

    Raises:
        DataError: record is not a mapping or fails validation
    """
    if isinstance(raw, Transaction):
        return raw
    if not isinstance(raw, Mapping):
        raise DataError(f"Unsupported transaction record type: {type(raw).__name__}")
    try:
        return Transaction.model_validate(dict(raw))
    except ValidationError as e:
        raise DataError(f"Invalid transaction {raw.get('hash')}: {e.error_count()} field error(s)") from e


def normalize_transactions(raws: Iterable[RawTransaction]) -> List[Transaction]:
    """Parse a batch; unparseable records are skipped with a warning."""
    transactions = []
    skipped = 0

    for raw in raws:
        try:
            transactions.append(coerce_transaction(raw))
        except DataError as e:
            skipped += 1
            logger.warning(f"⚠️ Skipping transaction: {e}")

    if skipped:
        logger.info(f"Normalized {len(transactions)} transactions, skipped {skipped}")
    return transactions


def get_input_addresses(tx: Transaction) -> List[str]:
    """Sending addresses: explicit inputs if present, else ``from``."""
    if tx.inputs is not None:
        return unique_in_order(e.address for e in tx.inputs if e.address)
    return [tx.from_address] if tx.from_address else []


def get_output_addresses(tx: Transaction) -> List[str]:
    """Receiving addresses: explicit outputs if present, else ``to``."""
    if tx.outputs is not None:
        return unique_in_order(e.address for e in tx.outputs if e.address)
    return [tx.to_address] if tx.to_address else []


def normalize_transaction(tx: RawTransaction) -> Tuple[List[str], List[str]]:
    """
    Input and output address lists of a transaction.

    Never raises: a malformed record yields two empty lists.
    """
    try:
        parsed = coerce_transaction(tx)
    except DataError as e:
        logger.debug(f"Malformed transaction ignored: {e}")
        return [], []
    return get_input_addresses(parsed), get_output_addresses(parsed)


def extract_unique_addresses(transactions: Iterable[Transaction]) -> List[str]:
    """Every address touched by the transactions, first-seen order."""
    addresses = []
    for tx in transactions:
        if tx.from_address:
            addresses.append(tx.from_address)
        if tx.to_address:
            addresses.append(tx.to_address)
        addresses.extend(get_input_addresses(tx))
        addresses.extend(get_output_addresses(tx))
    return unique_in_order(addresses)


def involves_address(address: str, tx: Transaction) -> bool:
    target = normalize_address(address)
    return target in get_input_addresses(tx) or target in get_output_addresses(tx)


def counterparties_for(address: str, tx: Transaction) -> List[str]:
    """
    The other side of ``tx`` as seen from ``address``.

    Outputs when the address sends, inputs when it receives; empty when the
    address is not part of the transaction.
    """
    target = normalize_address(address)
    inputs = get_input_addresses(tx)
    outputs = get_output_addresses(tx)

    if target in inputs:
        return [a for a in outputs if a != target]
    if target in outputs:
        return [a for a in inputs if a != target]
    return []


def is_outgoing(address: str, tx: Transaction) -> bool:
    return normalize_address(address) in get_input_addresses(tx)


def is_incoming(address: str, tx: Transaction) -> bool:
    return normalize_address(address) in get_output_addresses(tx)
