"""
Shopify GraphQL Admin API client.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

RateLimitHook = Callable[[float], Awaitable[None]]


class ShopifyClientError(Exception):
    """Any failure talking to the Admin API."""
    pass


class ShopifyAuthError(ShopifyClientError):
    """Token missing, revoked or lacking scopes."""
    pass


class ShopifyRateLimitError(ShopifyClientError):
    """Throttled by the leaky-bucket limiter. Transient."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class ShopifyServerError(ShopifyClientError):
    """5xx response from Shopify. Transient."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


class ShopifyUserError(ShopifyClientError):
    """Mutation rejected with userErrors. Terminal for the item."""

    def __init__(self, operation: str, errors: List[Dict[str, Any]]):
        messages = [e.get("message", str(e)) for e in errors]
        super().__init__(f"{operation} failed: {'; '.join(messages)}")
        self.operation = operation
        self.errors = errors


TRANSIENT_ERRORS = (ShopifyRateLimitError, ShopifyServerError)


def raise_for_user_errors(operation: str, payload: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Return the mutation payload or raise if it carries userErrors.

    Args:
        operation: Mutation name, used in the error message
        payload: The mutation's portion of the response data

    Returns:
        The payload itself (empty dict when missing)
    """
    payload = payload or {}
    user_errors = payload.get("userErrors") or payload.get("mediaUserErrors") or []
    if user_errors:
        raise ShopifyUserError(operation, user_errors)
    return payload


def normalize_domain(shop_domain: str) -> str:
    """Strip scheme and trailing slash from a shop domain."""
    domain = shop_domain.strip()
    if domain.startswith("https://"):
        domain = domain[8:]
    elif domain.startswith("http://"):
        domain = domain[7:]
    return domain.rstrip("/")


class ShopifyClient:
    """
    Admin GraphQL client for one shop.

    Throttling (HTTP 429 or a THROTTLED GraphQL error), 5xx answers and
    transport errors are retried with exponential backoff. Every throttle
    backoff is awaited on ``on_rate_limit`` first so connection health can
    show it.
    """

    API_VERSION = "2025-01"
    MAX_RETRIES = 5
    BASE_RETRY_DELAY = 1.0  # seconds
    LOW_POINTS_THRESHOLD = 100

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        *,
        api_version: Optional[str] = None,
        timeout: float = 30.0,
        on_rate_limit: Optional[RateLimitHook] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            shop_domain: "mystore.myshopify.com", with or without scheme
            access_token: Admin API access token for the shop
            api_version: Admin API version, defaults to API_VERSION
            timeout: Per-request timeout in seconds
            on_rate_limit: Awaited with the backoff delay before each throttled retry
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.shop_domain = normalize_domain(shop_domain)
        self.access_token = access_token
        self.api_version = api_version or self.API_VERSION
        self.graphql_url = f"https://{self.shop_domain}/admin/api/{self.api_version}/graphql.json"
        self.timeout = timeout
        self.on_rate_limit = on_rate_limit
        self.transport = transport

        self._client: Optional[httpx.AsyncClient] = None

    def _timeout(self) -> httpx.Timeout:
        return httpx.Timeout(self.timeout, connect=10.0)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self._timeout(),
                headers={
                    "Content-Type": "application/json",
                    "X-Shopify-Access-Token": self.access_token,
                },
                transport=self.transport,
            )
        return self._client

    def new_http_client(self, **kwargs) -> httpx.AsyncClient:
        """Unauthenticated client for CDN downloads and staged uploads."""
        kwargs.setdefault("timeout", self._timeout())
        return httpx.AsyncClient(transport=self.transport, **kwargs)

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def _backoff(self, attempt: int) -> float:
        return self.BASE_RETRY_DELAY * (2 ** attempt)

    def _check_status(self, response: httpx.Response) -> None:
        if response.status_code == 401:
            raise ShopifyAuthError(f"Access token rejected by {self.shop_domain}")

        if response.status_code == 429:
            retry_after = float(response.headers.get("Retry-After", self.BASE_RETRY_DELAY))
            raise ShopifyRateLimitError(f"HTTP 429 from {self.shop_domain}", retry_after=retry_after)

        if response.status_code >= 500:
            raise ShopifyServerError(
                f"Shopify returned {response.status_code}",
                status_code=response.status_code,
            )

        response.raise_for_status()

    def _check_errors(self, result: Dict[str, Any]) -> None:
        errors = result.get("errors")
        if not errors:
            return
        if isinstance(errors, str):
            errors = [{"message": errors}]

        messages = [e.get("message", str(e)) for e in errors]
        codes = [(e.get("extensions") or {}).get("code", "") for e in errors]
        if "THROTTLED" in codes or any("throttl" in m.lower() for m in messages):
            raise ShopifyRateLimitError(f"GraphQL throttled: {messages}")
        raise ShopifyClientError(f"GraphQL errors: {messages}")

    def _log_cost(self, result: Dict[str, Any]) -> None:
        throttle = (result.get("extensions") or {}).get("cost", {}).get("throttleStatus")
        if not throttle:
            return
        available = throttle.get("currentlyAvailable", 0)
        if available < self.LOW_POINTS_THRESHOLD:
            logger.warning(f"{self.shop_domain} down to {available} query cost points")

    async def execute(
        self,
        query: str,
        variables: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Run a GraphQL query or mutation and return its ``data``.

        Raises:
            ShopifyAuthError: Token rejected (never retried)
            ShopifyRateLimitError: Still throttled after MAX_RETRIES
            ShopifyServerError: Shopify kept answering 5xx
            ShopifyClientError: GraphQL errors and anything else
        """
        client = await self._get_client()
        payload: Dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables

        last_error: Optional[Exception] = None

        for attempt in range(self.MAX_RETRIES):
            try:
                response = await client.post(self.graphql_url, json=payload)
                self._check_status(response)
                result = response.json()
                self._check_errors(result)
                self._log_cost(result)
                return result.get("data") or {}

            except ShopifyRateLimitError as e:
                last_error = e
                delay = e.retry_after or self._backoff(attempt)
                logger.warning(
                    f"Throttled by {self.shop_domain}, backing off {delay:.1f}s "
                    f"({attempt + 1}/{self.MAX_RETRIES})"
                )
                if self.on_rate_limit is not None:
                    await self.on_rate_limit(delay)
                await asyncio.sleep(delay)

            except ShopifyServerError as e:
                last_error = e
                delay = self._backoff(attempt)
                logger.warning(f"{e} for {self.shop_domain}, retrying in {delay:.1f}s")
                await asyncio.sleep(delay)

            except httpx.RequestError as e:
                last_error = ShopifyClientError(f"Transport error talking to {self.shop_domain}: {e}")
                delay = self._backoff(attempt)
                logger.warning(f"{last_error}, retrying in {delay:.1f}s")
                await asyncio.sleep(delay)

            except ShopifyClientError:
                raise

            except Exception as e:
                logger.error(f"Unexpected failure calling {self.shop_domain}: {e}")
                raise ShopifyClientError(f"Unexpected error: {e}") from e

        raise last_error or ShopifyClientError("Max retries exceeded")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
