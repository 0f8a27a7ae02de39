"""Connect-RPC client for the local language server."""

import json
import logging
from dataclasses import dataclass
from typing import Any

import aiohttp

logger = logging.getLogger(__name__)

SERVICE_PATH = "exa.language_server_pb.LanguageServerService"
GET_USER_STATUS = "GetUserStatus"
GET_UNLEASH_DATA = "GetUnleashData"

USER_STATUS_BODY = {
    "metadata": {
        "ideName": "antigravity",
        "extensionName": "antigravity",
        "locale": "en",
    }
}
UNLEASH_BODY = {
    "context": {
        "properties": {
            "devMode": "false",
            "ide": "antigravity",
            "language": "UNSPECIFIED",
        }
    }
}


@dataclass(slots=True, frozen=True)
class RpcResponse:
    """Outcome of one RPC call."""

    status: int
    port: int  # Port that served the final response, after redirects
    payload: Any  # Decoded JSON, or None when the body was not JSON
    text: str


def mask_token(token: str | None) -> str:
    """Shorten a token for log output."""
    if not token:
        return "<none>"
    return f"{token[:8]}..."


class LanguageServerClient:
    """
    Issues single Connect-RPC calls to ``localhost:<port>``.

    Each call opens its own short-lived session, so nothing stays connected
    between polls.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        use_tls: bool = False,
        max_redirects: int = 3,
    ) -> None:
        self.host = host
        self.use_tls = use_tls
        self.max_redirects = max_redirects

    def url(self, port: int, method: str) -> str:
        scheme = "https" if self.use_tls else "http"
        return f"{scheme}://{self.host}:{port}/{SERVICE_PATH}/{method}"

    @staticmethod
    def headers(token: str | None) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Connect-Protocol-Version": "1",
        }
        if token:
            headers["X-Codeium-Csrf-Token"] = token
        return headers

    async def call(
        self,
        port: int,
        method: str,
        body: dict,
        token: str | None,
        timeout: float,
    ) -> RpcResponse:
        """
        POST ``body`` to ``method`` and decode the reply.

        Network errors propagate as aiohttp.ClientError or
        asyncio.TimeoutError; the caller decides what they mean.
        """
        # Self-signed certificate on the TLS listener
        connector = aiohttp.TCPConnector(ssl=False) if self.use_tls else None
        async with aiohttp.ClientSession(connector=connector) as session:
            async with session.post(
                self.url(port, method),
                headers=self.headers(token),
                json=body,
                max_redirects=self.max_redirects,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as response:
                # Whatever owns the port may answer with arbitrary bytes
                text = (await response.read()).decode("utf-8", errors="replace")
                try:
                    payload = json.loads(text) if text else None
                except json.JSONDecodeError:
                    payload = None
                served_port = response.url.port or port
                logger.debug(
                    "%s on port %d -> HTTP %d (%d bytes, served by %d)",
                    method,
                    port,
                    response.status,
                    len(text),
                    served_port,
                )
                return RpcResponse(
                    status=response.status,
                    port=served_port,
                    payload=payload,
                    text=text,
                )
