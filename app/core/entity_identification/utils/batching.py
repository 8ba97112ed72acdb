import asyncio
from typing import Awaitable, Callable, Dict, Iterable, List, Tuple, TypeVar

from app.core.entity_identification.utils.calculations import chunk_list
from app.core.entity_identification.utils.error_handling import BatchItemError

T = TypeVar('T')


async def run_in_batches(
    addresses: Iterable[str],
    batch_size: int,
    worker: Callable[[str], Awaitable[T]],
) -> Tuple[Dict[str, T], List[BatchItemError]]:
    """
    Run ``worker`` for every address, ``batch_size`` addresses at a time.

    Addresses inside a batch run concurrently. A failing address becomes a
    ``BatchItemError`` and does not affect the others; cancellation is
    propagated.

    Returns:
        (results by address, failures) with results in input order
    """
    results: Dict[str, T] = {}
    failures: List[BatchItemError] = []

    for batch in chunk_list(list(addresses), batch_size):
        outcomes = await asyncio.gather(*(worker(address) for address in batch), return_exceptions=True)
        for address, outcome in zip(batch, outcomes):
            if isinstance(outcome, Exception):
                failures.append(BatchItemError(address, outcome))
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                results[address] = outcome

    return results, failures
