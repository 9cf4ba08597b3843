"""Translation of storage-layer outages into ``StorageUnavailableError``."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from pymongo.errors import ConnectionFailure

from squares.errors import StorageUnavailableError

logger = logging.getLogger("squares.services.storage")


@asynccontextmanager
async def storage_errors(operation: str) -> AsyncIterator[None]:
    """Re-raise MongoDB connection failures as ``StorageUnavailableError``.

    Compensating actions must run inside the block (before the exception
    leaves it) so the caller only ever sees a fully rolled-back operation.
    """
    try:
        yield
    except ConnectionFailure as e:
        logger.error("Storage unavailable during %s: %s", operation, str(e))
        raise StorageUnavailableError(
            f"Storage unavailable during {operation}; no changes were applied"
        ) from e
