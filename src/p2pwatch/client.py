"""HTTP client for the Bybit fiat P2P online-items endpoint."""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import Any, Dict, List, Mapping, Optional

import httpx

from .feeds import Listing
from .state import RefreshToken

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://www.bybit.com"
ONLINE_ITEMS_PATH = "/x-api/fiat/otc/item/online"
DEFAULT_TIMEOUT_SECONDS = 10.0
UPSTREAM_FALLBACK_MESSAGE = "Unexpected response from Bybit"

# USDT bought for RUB, from 10 000 RUB, single payment method, overall ranking.
REQUEST_BODY_BASE: Dict[str, Any] = {
    "userId": "",
    "tokenId": "USDT",
    "currencyId": "RUB",
    "payment": ["582"],
    "side": "1",
    "size": "10",
    "page": "1",
    "amount": "10000",
    "vaMaker": False,
    "bulkMaker": False,
    "canTrade": False,
    "verificationFilter": 0,
    "sortType": "OVERALL_RANKING",
    "paymentPeriod": [],
    "itemRegion": 1,
}

REQUEST_HEADERS = {
    "content-type": "application/json;charset=UTF-8",
    "accept": "application/json",
}


class FetchError(RuntimeError):
    """Base class for failures surfaced to the snapshot's error field."""


class TransportError(FetchError):
    """Non-success HTTP status, or the request never got a response."""

    def __init__(self, status_code: Optional[int], reason: str) -> None:
        self.status_code = status_code
        self.reason = reason
        if status_code is None:
            message = reason or "Network request failed"
        else:
            message = f"HTTP {status_code} - {reason}".rstrip(" -")
        super().__init__(message)


class UpstreamError(FetchError):
    """The envelope came back but reported a failure or carried no result."""

    def __init__(self, message: str, ret_code: Optional[int] = None) -> None:
        self.ret_code = ret_code
        super().__init__(message or UPSTREAM_FALLBACK_MESSAGE)


def build_request_body(page: int) -> Dict[str, Any]:
    if page < 1:
        raise ValueError(f"Page numbers are 1-based, got {page}")
    body = copy.deepcopy(REQUEST_BODY_BASE)
    body["page"] = str(page)
    return body


class P2PClient:
    """
    Fetch single result pages of P2P listings.

    An ``httpx.AsyncClient`` can be injected (tests, shared pools); otherwise
    the client owns one and closes it in ``aclose()``.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        path: str = ONLINE_ITEMS_PATH,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.url = f"{base_url.rstrip('/')}/{path.lstrip('/')}"
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self) -> "P2PClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def fetch_page(self, page: int, token: Optional[RefreshToken] = None) -> List[Listing]:
        """
        Fetch one page of listings.

        Args:
            page: 1-based page number.
            token: Optional refresh token; a cancelled token short-circuits
                the call with ``asyncio.CancelledError``.

        Returns:
            Listings in upstream order, empty when the envelope has no items.

        Raises:
            TransportError: network failure or non-2xx status.
            UpstreamError: malformed body, ``ret_code != 0`` or missing result.
            asyncio.CancelledError: the token was cancelled.
        """
        if token is not None:
            token.raise_if_cancelled()

        body = build_request_body(page)
        try:
            response = await self._client.post(self.url, json=body, headers=REQUEST_HEADERS)
        except httpx.HTTPError as exc:
            logger.debug("Page %d request failed: %s", page, exc)
            raise TransportError(None, str(exc) or type(exc).__name__) from exc

        if token is not None:
            token.raise_if_cancelled()

        if not response.is_success:
            raise TransportError(response.status_code, response.reason_phrase)

        try:
            envelope = response.json()
        except ValueError as exc:
            raise UpstreamError("Malformed response from Bybit") from exc
        if not isinstance(envelope, Mapping):
            raise UpstreamError("Malformed response from Bybit")

        ret_code = envelope.get("ret_code")
        result = envelope.get("result")
        succeeded = isinstance(ret_code, int) and not isinstance(ret_code, bool) and ret_code == 0
        if not succeeded or result is None:
            raise UpstreamError(str(envelope.get("ret_msg") or ""), ret_code=ret_code)

        items = result.get("items") if isinstance(result, Mapping) else None
        if not isinstance(items, list):
            return []

        listings = [Listing.from_payload(item) for item in items if isinstance(item, Mapping)]
        logger.debug("Fetched page %d: %d listings", page, len(listings))
        return listings


__all__ = [
    "FetchError",
    "P2PClient",
    "REQUEST_BODY_BASE",
    "REQUEST_HEADERS",
    "TransportError",
    "UpstreamError",
    "build_request_body",
]
