import logging
from typing import Any, Dict, Optional

import httpx

from config.settings import settings

from .cancel import CancelToken
from .errors import NetworkError

logger = logging.getLogger(__name__)


class TransportClient:
    """
    HTTP access to the provider API, either directly or through the CORS relay.

    Endpoints are logical names relative to ``/v1`` ("images/generations",
    "tasks/{id}"). Status codes are returned as-is; only transport failures
    and cancellation are turned into errors here.
    """

    def __init__(
        self,
        relay_mode: bool = settings.RELAY_MODE,
        relay_base: Optional[str] = None,
        provider_base: str = settings.PROVIDER_BASE_URL,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = settings.REQUEST_TIMEOUT,
    ):
        self.relay_mode = relay_mode
        self.relay_base = (relay_base or settings.RELAY_BASE).rstrip("/")
        self.provider_base = provider_base.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def resolve(self, endpoint: str) -> str:
        base = self.relay_base if self.relay_mode else self.provider_base
        return f"{base}/v1/{endpoint.lstrip('/')}"

    @staticmethod
    def build_headers(secret: str, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {secret}",
            "Content-Type": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    async def request(
        self,
        method: str,
        endpoint: str,
        secret: str,
        cancel_token: Optional[CancelToken] = None,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        url = self.resolve(endpoint)
        call =self._client.request(method, url, json=json, headers=self.build_headers(secret, headers))
        try:
            if cancel_token is None:
                return await call
            return await cancel_token.race(call)
        except httpx.TransportError as e:
            logger.warning("[Transport] %s %s failed: %r", method, url, e)
            raise NetworkError(f"Network error calling {endpoint}: {e.__class__.__name__}") from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "TransportClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
