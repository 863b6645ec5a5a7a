"""
Async client for the Shopify Admin GraphQL order feed.

Fetches one cursor page of orders (with embedded transactions) per call.
The client never retries: every failure surfaces as a FeedError subclass
and the orchestrator decides what happens next.
"""
from typing import Dict, Any, Optional

import httpx

from ordersync.config import config
from ordersync.exceptions import (
    FeedAPIError,
    FeedConnectionError,
    FeedDataError,
    ValidationError,
)
from ordersync.models import FeedPage
from ordersync.observability import get_logger, get_correlation_id, Timer

logger = get_logger(__name__)

_MONEY = "presentmentMoney { amount currencyCode }"

ORDERS_PAGE_QUERY = f"""
query SyncOrders($first: Int!, $after: String, $query: String) {{
  orders(first: $first, after: $after, query: $query, sortKey: UPDATED_AT) {{
    pageInfo {{ hasNextPage endCursor }}
    edges {{
      node {{
        id
        name
        createdAt
        processedAt
        updatedAt
        displayFinancialStatus
        sourceName
        test
        channelInformation {{ channelId displayName }}
        subtotalPriceSet {{ {_MONEY} }}
        totalPriceSet {{ {_MONEY} }}
        totalTaxSet {{ {_MONEY} }}
        totalDiscountsSet {{ {_MONEY} }}
        totalShippingPriceSet {{ {_MONEY} }}
        transactions {{
          id
          kind
          status
          gateway
          createdAt
          processedAt
          amountSet {{ {_MONEY} }}
        }}
      }}
    }}
  }}
}}
"""


class ShopifyFeedClient:
    """
    Shopify order feed client.

    Usage:
        async with ShopifyFeedClient() as client:
            page = await client.fetch_page(None, "updated_at:>='2024-01-01T00:00:00Z'")
    """

    def __init__(
        self,
        store_domain: str = None,
        access_token: str = None,
        api_version: str = None,
        timeout: float = None,
    ):
        self.store_domain = store_domain or config.shopify.store_domain
        self.access_token = access_token or config.shopify.access_token
        self.api_version = api_version or config.shopify.api_version
        self.timeout = timeout or config.shopify.request_timeout
        self._client: Optional[httpx.AsyncClient] = None

        if not self.store_domain:
            raise ValueError("SHOPIFY_STORE_DOMAIN is required")
        if not self.access_token:
            raise ValueError("SHOPIFY_API_ACCESS_TOKEN is required")

    @property
    def endpoint(self) -> str:
        return f"https://{self.store_domain}/admin/api/{self.api_version}/graphql.json"

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "X-Shopify-Access-Token": self.access_token,
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    async def connect(self) -> None:
        """Create the pooled HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(headers=self.headers, timeout=self.timeout)

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ShopifyFeedClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Send one GraphQL request and return the decoded body."""
        if not self._client:
            await self.connect()

        request_headers = {}
        correlation_id = get_correlation_id()
        if correlation_id:
            request_headers["X-Request-ID"] = correlation_id

        try:
            with Timer("shopify_orders_page", logger):
                response = await self._client.post(
                    self.endpoint,
                    json=payload,
                    headers=request_headers or None,
                )
        except httpx.TimeoutException as e:
            logger.error(
                "Shopify request timeout",
                extra={"endpoint": self.endpoint, "timeout": self.timeout},
            )
            raise FeedConnectionError(f"Request timeout after {self.timeout}s") from e
        except httpx.RequestError as e:
            logger.error(f"Shopify request failed: {e}", extra={"endpoint": self.endpoint})
            raise FeedConnectionError("Request failed", details=str(e)) from e

        if response.status_code >= 400:
            error_text = response.text[:500]
            logger.error(
                f"Shopify API error {response.status_code}",
                extra={"status_code": response.status_code, "body": error_text},
            )
            raise FeedAPIError(
                f"API returned {response.status_code}",
                details=error_text,
                status_code=response.status_code,
                error_code="THROTTLED" if response.status_code == 429 else None,
            )

        try:
            return response.json()
        except ValueError as e:
            raise FeedDataError(
                "Response is not valid JSON", details=response.text[:200], expected="JSON object"
            ) from e

    async def fetch_page(
        self,
        cursor: Optional[str],
        filter_query: Optional[str],
        page_size: int = None,
    ) -> FeedPage:
        """
        Fetch one page of orders.

        Args:
            cursor: `endCursor` of the previous page, or None for the first page
            filter_query: Shopify search predicate, passed through untouched
            page_size: Orders per page (at most the upstream maximum of 250)

        Returns:
            FeedPage with raw order nodes, next cursor and has_more flag

        Raises:
            ValidationError: page_size out of range
            FeedConnectionError / FeedAPIError / FeedDataError
        """
        if page_size is None:
            page_size = config.shopify.page_size
        max_size = config.shopify.max_page_size
        if not 1 <= page_size <= max_size:
            raise ValidationError("page_size", f"Must be between 1 and {max_size}", page_size)

        body = await self._post({
            "query": ORDERS_PAGE_QUERY,
            "variables": {"first": page_size, "after": cursor, "query": filter_query},
        })

        errors = body.get("errors") if isinstance(body, dict) else None
        if errors:
            first = errors[0] if isinstance(errors, list) and errors else {}
            code = (first.get("extensions") or {}).get("code") if isinstance(first, dict) else None
            message = "; ".join(
                e.get("message", "unknown error") for e in errors if isinstance(e, dict)
            ) or str(errors)
            logger.error("Shopify GraphQL errors", extra={"error_code": code, "errors": message})
            raise FeedAPIError("GraphQL query failed", details=message, error_code=code)

        orders = ((body or {}).get("data") or {}).get("orders")
        if not isinstance(orders, dict):
            raise FeedDataError(
                "Response is missing data.orders",
                expected="data.orders",
                got=str(body)[:200],
            )

        page_info = orders.get("pageInfo") or {}
        edges = orders.get("edges")
        if edges is None or not isinstance(edges, list):
            raise FeedDataError("Response is missing orders.edges", expected="edges list", got=type(edges).__name__)

        records = [edge["node"] for edge in edges if isinstance(edge, dict) and edge.get("node")]

        return FeedPage(
            records=records,
            next_cursor=page_info.get("endCursor"),
            has_more=bool(page_info.get("hasNextPage")),
        )


# ═══════════════════════════════════════════════════════════════════════════════
# SINGLETON INSTANCE
# ═══════════════════════════════════════════════════════════════════════════════

_client_instance: Optional[ShopifyFeedClient] = None


def get_feed_client() -> ShopifyFeedClient:
    """Get singleton feed client instance."""
    global _client_instance
    if _client_instance is None:
        _client_instance = ShopifyFeedClient()
    return _client_instance


async def close_feed_client() -> None:
    """Close the singleton client's HTTP pool."""
    global _client_instance
    if _client_instance:
        await _client_instance.close()
        _client_instance = None
