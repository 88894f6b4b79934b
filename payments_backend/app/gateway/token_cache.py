"""
M-Pesa OAuth token cache.

Holds one short-lived bearer token per gateway client. A valid cached token
is returned without locking or I/O; refreshes are serialised by an
asyncio.Lock, and a caller that waited on the lock re-checks the cache
before fetching again.
"""

import time
import asyncio
import logging
from typing import Callable, Optional

import httpx

from payments_backend.app.core.exceptions import GatewayError

logger = logging.getLogger(__name__)

TOKEN_PATH = "/oauth/v1/generate"


class MpesaTokenCache:

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        consumer_key: str,
        consumer_secret: str,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._http = http_client
        self._consumer_key = consumer_key
        self._consumer_secret = consumer_secret
        self._clock = clock
        self._token: Optional[str] = None
        self._expiry: float = 0.0
        self._refresh_lock = asyncio.Lock()

    def _cached(self) -> Optional[str]:
        if self._token and self._clock() < self._expiry:
            return self._token
        return None

    def invalidate(self) -> None:
        self._token = None
        self._expiry = 0.0

    async def get_token(self) -> str:
        token = self._cached()
        if token:
            return token

        async with self._refresh_lock:
            token = self._cached()
            if token:
                return token
            return await self._refresh()

    async def _refresh(self) -> str:
        try:
            response = await self._http.get(
                TOKEN_PATH,
                params={"grant_type": "client_credentials"},
                auth=(self._consumer_key, self._consumer_secret),
            )
        except httpx.HTTPError as e:
            raise GatewayError(f"failed to get access token: {e}")

        if response.status_code >= 400:
            raise GatewayError(
                "access token request rejected",
                details={"status_code": response.status_code}
            )

        try:
            data = response.json()
            access_token = data["access_token"]
            expires_in = int(data["expires_in"])
        except (ValueError, KeyError, TypeError) as e:
            raise GatewayError(f"failed to parse token response: {e}")

        if not access_token or not isinstance(access_token, str):
            raise GatewayError("token response carried no access_token")

        self._token = access_token
        self._expiry = self._clock() + expires_in
        logger.info("Obtained M-Pesa access token valid for %ss", expires_in)
        return access_token
