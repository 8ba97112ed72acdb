# entity_identification/utils/error_handling.py
import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


class IdentificationError(Exception):
    """Base error for the entity identification pipeline"""
    pass


class DataError(IdentificationError):
    """Malformed transaction or address record; the record is skipped"""
    pass


class EntityLookupError(IdentificationError):
    """Entity store lookup failed; callers degrade to an Unknown entity"""
    pass


class EntityNotFoundError(IdentificationError):
    """Requested entity id does not exist in the store"""
    pass


class UpdateError(IdentificationError):
    """A single entity create/update failed"""
    pass


class SourceUnavailableError(IdentificationError):
    """Entity store or transaction source unreachable at pipeline start"""
    pass


class BatchItemError(IdentificationError):
    """One address failed inside a bulk computation"""

    def __init__(self, address: str, cause: Exception):
        self.address = address
        self.cause = cause
        super().__init__(f"{address}: {cause}")


def retry_async(
    max_retries: int = 3,
    delay: float = 0.5,
    backoff: float = 2.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    no_retry_on: Tuple[Type[BaseException], ...] = (EntityNotFoundError,),
) -> Callable:
    """
    Decorator to retry an async store call on failure.

    Gives entity store writes at-least-once semantics: the call is repeated
    until it succeeds or the attempts are exhausted, then the last error is
    raised to the caller.
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            attempts = max(1, max_retries)
            last_exception: Optional[BaseException] = None
            current_delay = delay

            for attempt in range(attempts):
                try:
                    return await func(*args, **kwargs)
                except no_retry_on:
                    raise
                except retry_on as e:
                    last_exception = e
                    logger.warning(
                        f"Attempt {attempt + 1}/{attempts} of {func.__name__} failed: {e}"
                    )
                    if attempt < attempts - 1 and current_delay > 0:
                        await asyncio.sleep(current_delay)
                        current_delay *= backoff

            raise last_exception
        return wrapper
    return decorator
