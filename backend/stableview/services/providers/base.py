"""Base class for external data provider clients."""

import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp

from ..errors import ProviderHTTPError
from ..results import Failed

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0

# Exceptions that mean "the provider could not be reached or answered badly".
PROVIDER_ERRORS = (ProviderHTTPError, aiohttp.ClientError, asyncio.TimeoutError, ValueError)


class BaseProviderClient:
    """Thin aiohttp wrapper shared by the provider clients.

    Every request carries a bounded timeout. Subclasses convert raised
    provider errors into ``Failed`` results via ``_failure``.
    """

    name = "provider"

    def __init__(self, base_url: str, timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    async def _get_json(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """GET ``url`` and decode the JSON body.

        Raises:
            ProviderHTTPError: On a non-2xx status.
            aiohttp.ClientError: On connection problems.
            asyncio.TimeoutError: When the timeout elapses.
        """
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(url, params=params, headers=headers) as resp:
                if not 200 <= resp.status < 300:
                    raise ProviderHTTPError(resp.status, resp.reason or "")
                return await resp.json(content_type=None)

    def _failure(self, context: str, error: BaseException) -> Failed:
        """Log a provider error and wrap it in a ``Failed`` result."""
        if isinstance(error, asyncio.TimeoutError):
            message = f"{self.name} request timed out after {self.timeout_seconds}s"
        else:
            message = f"{self.name} error: {error}"
        logger.error(f"{context}: {message}")
        return Failed(message)
