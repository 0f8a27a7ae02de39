"""Port validation for discovered language server candidates."""

import asyncio
import logging

import aiohttp

from agquota.client import GET_UNLEASH_DATA, UNLEASH_BODY, LanguageServerClient, mask_token
from agquota.errors import ProbeFailure
from agquota.models import ResolvedConnection

logger = logging.getLogger(__name__)


class PortProber:
    """
    Confirms that a port belongs to the language server.

    A probe is one request and never retries; the resolver decides what to
    try next.
    """

    def __init__(
        self,
        client: LanguageServerClient | None = None,
        timeout: float = 3.0,
    ) -> None:
        self._client = client or LanguageServerClient()
        self._timeout = timeout

    async def probe(self, port: int, token: str | None = None) -> ResolvedConnection:
        """
        Probe ``port`` and return the verified connection.

        The returned connect_port is the port that actually answered, which
        differs from ``port`` when the server redirected the request.

        Raises:
            ProbeFailure: Port closed, timed out, or not the language server.
        """
        logger.debug("Probing port %d (token %s)", port, mask_token(token))
        try:
            response = await self._client.call(
                port,
                GET_UNLEASH_DATA,
                UNLEASH_BODY,
                token,
                timeout=self._timeout,
            )
        except aiohttp.TooManyRedirects as exc:
            raise ProbeFailure(port, "redirect loop") from exc
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            raise ProbeFailure(port, f"unreachable ({exc.__class__.__name__})") from exc

        if response.status != 200:
            raise ProbeFailure(port, f"HTTP {response.status}")
        if not isinstance(response.payload, dict):
            raise ProbeFailure(port, "response is not a JSON object")

        if response.port != port:
            logger.info("Port %d redirected to connect port %d", port, response.port)
        return ResolvedConnection(connect_port=response.port, csrf_token=token)
