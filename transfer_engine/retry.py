import asyncio
import logging

from .coordinator import TransferCoordinator
from .models import TransferRequest, TransferResponse

logger = logging.getLogger(__name__)


async def transfer_with_retry(coordinator: TransferCoordinator, request: TransferRequest,
                              max_retries: int = 5, base_delay: float = 0.01) -> TransferResponse:
    """Re-issue ``request`` while the result is retryable.

    Backoff doubles per attempt (0.01s, 0.02s, 0.04s ...) so a burst of
    conflicting callers spreads out. Returns the last response either way.
    """
    response = await coordinator.transfer(request)
    for attempt in range(max_retries):
        if not response.result.retryable:
            return response
        delay = base_delay * (2 ** attempt)
        logger.info("retrying %s transfer after %s (attempt %d, backoff %.3fs)",
                    coordinator.strategy.name, response.result.value, attempt + 1, delay)
        await asyncio.sleep(delay)
        response = await coordinator.transfer(request)
    return response
