"""
Fetch-mutate-write with bounded retry on version conflicts.

Writes guarded by a resource version fail with ConflictError when another
writer got there first. The remedy is always the same: wait, read the
object again, re-apply the change and write once more.
"""

import asyncio
from typing import Awaitable, Callable, TypeVar

from lector.errors import ClusterError, ConflictError, RetryExhaustedError
from lector.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


async def update_with_conflict_retry(
    obj: T,
    mutate: Callable[[T], T],
    write: Callable[[T], Awaitable[T]],
    fetch: Callable[[T], Awaitable[T]],
    max_retries: int = 5,
    interval: float = 1.0,
    operation_name: str = "update",
) -> T:
    """
    Apply a change and persist it, retrying on version conflicts.
    
    The first write uses obj as given. Each retry sleeps for interval,
    re-fetches the object, re-applies mutate and writes again.
    
    Args:
        obj: Object as last read
        mutate: Returns a copy of its argument with the change applied
        write: Persists an object; raises ConflictError on version mismatch
        fetch: Reads the latest version of an object
        max_retries: Retries after the first conflicting write
        interval: Seconds to sleep before each retry
        operation_name: Name for logs and error messages
    
    Returns:
        The written object
    
    Raises:
        RetryExhaustedError: If every retry conflicted
        ClusterError: On any non-conflict write failure
    """
    try:
        return await write(mutate(obj))
    except ConflictError as e:
        last_conflict = e
    except ClusterError as e:
        raise ClusterError(f"{operation_name}: {e}", status=e.status) from e
    
    for attempt in range(1, max_retries + 1):
        logger.warning(
            f"{operation_name} conflicted, retrying",
            attempt=attempt,
            max_retries=max_retries,
            error=str(last_conflict),
        )
        
        await asyncio.sleep(interval)
        
        obj = await fetch(obj)
        
        try:
            result = await write(mutate(obj))
        except ConflictError as e:
            last_conflict = e
            continue
        except ClusterError as e:
            raise ClusterError(f"{operation_name} retry: {e}", status=e.status) from e
        
        logger.info(f"{operation_name} succeeded after retry", attempt=attempt)
        
        return result
    
    logger.error(
        f"{operation_name} failed after all retries",
        attempts=max_retries + 1,
    )
    
    raise RetryExhaustedError(
        f"{operation_name} failed after {max_retries} retries",
        attempts=max_retries + 1,
    ) from last_conflict
