# src/utils/retry.py

import asyncio
import logging
from typing import Any, Awaitable, Callable, Tuple, Type

import httpx

LOGGER = logging.getLogger(__name__)


class ServerSideError(httpx.HTTPStatusError):
    """A 5xx answer from an upstream read; the same request may succeed later."""


# Transport failures and 5xx answers; a 4xx answer is final
RETRYABLE_HTTP_ERRORS = (httpx.TransportError, ServerSideError)


def raise_for_status(response: httpx.Response) -> httpx.Response:
    """`response.raise_for_status()`, with 5xx raised as ServerSideError."""
    if response.is_server_error:
        raise ServerSideError(
            f"Server error '{response.status_code} {response.reason_phrase}' for url '{response.url}'",
            request=response.request,
            response=response,
        )
    response.raise_for_status()
    return response


async def retry_with_backoff(
    func: Callable[..., Awaitable[Any]],
    *args,
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    **kwargs
) -> Any:
    """
    Await `func(*args, **kwargs)` with exponential backoff between attempts.

    Only used for read-only upstream calls; writes to the backend or the ledger
    are never retried.

    Args:
        func: Coroutine function to execute
        max_retries: Maximum number of attempts (at least one is always made)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay in seconds
        retry_on: Exception types that trigger another attempt
        *args, **kwargs: Arguments to pass to func

    Returns:
        Result from func or raises the last exception
    """
    attempts = max(1, max_retries)
    last_exception = None

    for attempt in range(attempts):
        try:
            LOGGER.debug(f"Attempt {attempt + 1}/{attempts}")
            return await func(*args, **kwargs)

        except retry_on as e:
            last_exception = e

            if attempt < attempts - 1:
                delay = min(base_delay * (2 ** attempt), max_delay)
                LOGGER.warning(f"Attempt {attempt + 1} failed: {str(e)}. Retrying in {delay}s...")
                await asyncio.sleep(delay)
            else:
                LOGGER.error(f"All {attempts} attempts failed: {str(e)}")

    raise last_exception
