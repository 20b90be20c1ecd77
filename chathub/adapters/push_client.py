"""Push notification provider client (multicast over HTTP)."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from chathub.infra.config import config
from chathub.infra.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)


@dataclass
class MulticastResult:
    success_count: int
    failure_count: int


def build_multicast_body(
    title: str,
    body: str,
    tokens: List[str],
    data: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Request body for the provider's multicast endpoint."""
    return {
        "notification": {"title": title, "body": body},
        # Provider data payloads only carry string values
        "data": {key: str(value) for key, value in (data or {}).items()},
        "tokens": tokens,
    }


def parse_multicast_response(response: httpx.Response, token_count: int) -> MulticastResult:
    payload = response.json() if response.content else {}
    return MulticastResult(
        success_count=int(payload.get("successCount", token_count)),
        failure_count=int(payload.get("failureCount", 0)),
    )


class PushClient:
    """Async client for ``sendMulticast``-style push delivery."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url if base_url is not None else config.PUSH_PROVIDER_URL
        self.api_key = api_key if api_key is not None else config.PUSH_PROVIDER_KEY
        self.timeout = timeout or config.PUSH_TIMEOUT_SECONDS
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers=self._headers(),
                transport=self._transport,
            )
        return self._client

    async def send_multicast(
        self,
        title: str,
        body: str,
        tokens: List[str],
        data: Optional[Dict[str, Any]] = None,
    ) -> MulticastResult:
        """
        Send one notification to many device tokens.

        Raises:
            UpstreamUnavailable: If the provider cannot be reached or rejects the call
        """
        if not tokens:
            return MulticastResult(success_count=0, failure_count=0)
        if not self.configured:
            logger.debug("Push provider not configured; skipping multicast")
            return MulticastResult(success_count=0, failure_count=len(tokens))

        try:
            response = await self._get_client().post(
                self.base_url,
                json=build_multicast_body(title, body, tokens, data),
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"Push provider error: {e}") from e

        return parse_multicast_response(response, len(tokens))

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def send_multicast_sync(
    title: str,
    body: str,
    tokens: List[str],
    data: Optional[Dict[str, Any]] = None,
) -> MulticastResult:
    """Blocking variant used by the RQ worker process."""
    if not tokens:
        return MulticastResult(success_count=0, failure_count=0)
    if not config.PUSH_PROVIDER_URL:
        logger.debug("Push provider not configured; skipping multicast")
        return MulticastResult(success_count=0, failure_count=len(tokens))

    headers = {"Content-Type": "application/json"}
    if config.PUSH_PROVIDER_KEY:
        headers["Authorization"] = f"Bearer {config.PUSH_PROVIDER_KEY}"

    try:
        with httpx.Client(timeout=config.PUSH_TIMEOUT_SECONDS, headers=headers) as client:
            response = client.post(
                config.PUSH_PROVIDER_URL,
                json=build_multicast_body(title, body, tokens, data),
            )
            response.raise_for_status()
    except httpx.HTTPError as e:
        raise UpstreamUnavailable(f"Push provider error: {e}") from e

    return parse_multicast_response(response, len(tokens))
