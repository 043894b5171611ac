"""Toast POS client (Standard API Access, machine client credentials).

Uses httpx for async HTTP calls to the Toast REST API:
- POST /authentication/v1/authentication/login for an access token
- GET /restaurants/v1/restaurants/{guid} for location metadata
- GET /orders/v2/ordersBulk by business date or paginated timestamp range

Integration credentials are a JSON object:
``{"client_id", "client_secret", "restaurant_guid", "access_token"?, "access_token_expires_at"?}``.
Refreshed tokens are written back through the credentials callback.
"""

import inspect
import logging
import re
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import httpx

from barledger.core.config import settings
from barledger.services.business_day import business_dates_between
from barledger.services.pos.base import (
    CredentialsCallback,
    POSClient,
    POSClientError,
    POSClientFactory,
    POSLocation,
    POSSale,
    POSSaleItem,
)

logger = logging.getLogger(__name__)

ORDERS_PAGE_SIZE = 100
TOKEN_REFRESH_MARGIN = timedelta(seconds=60)
_COMPACT_OFFSET = re.compile(r"([+-]\d{2})(\d{2})$")


def parse_toast_datetime(value: str) -> datetime:
    """Parse Toast timestamps such as ``2024-03-01T18:04:05.123+0000``."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    text = _COMPACT_OFFSET.sub(r"\1:\2", text)
    moment = datetime.fromisoformat(text)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def format_toast_datetime(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}+0000"


def _money(value: Any) -> Decimal:
    return Decimal(str(value)) if value is not None else Decimal("0")


@POSClientFactory.register("toast")
class ToastClient(POSClient):
    """Toast REST API client."""

    def __init__(
        self,
        credentials: Dict[str, Any],
        on_credentials_update: Optional[CredentialsCallback] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.credentials = dict(credentials or {})
        self._on_credentials_update = on_credentials_update
        self._base_url = (base_url or settings.toast_api_base_url).rstrip("/")
        self._timeout = timeout or settings.pos_request_timeout_seconds
        self._transport = transport
        self._default_timezone = settings.default_pos_timezone
        self._default_closeout_hour = settings.default_closeout_hour

    @property
    def name(self) -> str:
        return "toast"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout, transport=self._transport)

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def _token_expired(self) -> bool:
        token = self.credentials.get("access_token")
        expires_at = self.credentials.get("access_token_expires_at")
        if not token or not expires_at:
            return True
        try:
            expiry = parse_toast_datetime(expires_at)
        except ValueError:
            return True
        return expiry - TOKEN_REFRESH_MARGIN <= datetime.now(timezone.utc)

    async def get_access_token(self) -> str:
        """Log in with the machine client credentials and persist the token."""
        client_id = self.credentials.get("client_id")
        client_secret = self.credentials.get("client_secret")
        if not client_id or not client_secret:
            raise POSClientError("Client ID and Client Secret are required for Toast API access")

        try:
            async with self._client() as client:
                response = await client.post(
                    "/authentication/v1/authentication/login",
                    json={
                        "clientId": client_id,
                        "clientSecret": client_secret,
                        "userAccessType": "TOAST_MACHINE_CLIENT",
                    },
                )
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPStatusError as e:
            raise POSClientError(
                f"Failed to get Toast access token: HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise POSClientError(f"Failed to get Toast access token: {e}") from e

        token = (payload or {}).get("token") or {}
        access_token = token.get("accessToken")
        if not access_token:
            raise POSClientError("No access token received from Toast authentication")

        self.credentials["access_token"] = access_token
        expires_in = token.get("expiresIn")
        if expires_in:
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))
            self.credentials["access_token_expires_at"] = expires_at.isoformat()

        if self._on_credentials_update:
            try:
                outcome = self._on_credentials_update(dict(self.credentials))
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                # Token refresh succeeded; only saving it failed
                logger.exception("Failed to save updated Toast credentials")

        return access_token

    async def _ensure_token(self) -> str:
        if self._token_expired():
            return await self.get_access_token()
        return self.credentials["access_token"]

    async def _headers(self, restaurant_guid: str) -> Dict[str, str]:
        token = await self._ensure_token()
        return {
            "Authorization": f"Bearer {token}",
            "Toast-Restaurant-External-ID": restaurant_guid,
        }

    async def _get(self, path: str, restaurant_guid: str, params: Optional[dict] = None) -> Any:
        headers = await self._headers(restaurant_guid)
        async with self._client() as client:
            response = await client.get(path, params=params, headers=headers)
            response.raise_for_status()
            if not response.content:
                return None
            try:
                return response.json()
            except ValueError as e:
                raise POSClientError(f"Invalid JSON from Toast {path}: {e}") from e

    # ------------------------------------------------------------------
    # Locations & orders
    # ------------------------------------------------------------------

    async def get_locations(self) -> List[POSLocation]:
        restaurant_guid = self.credentials.get("restaurant_guid")
        if not restaurant_guid:
            raise POSClientError("Restaurant GUID is required for Toast API access")

        try:
            data = await self._get(f"/restaurants/v1/restaurants/{restaurant_guid}", restaurant_guid)
        except httpx.HTTPStatusError as e:
            raise POSClientError(
                f"Failed to fetch restaurants: HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise POSClientError(f"Failed to fetch restaurants: {e}") from e

        if not data:
            return []
        general = data.get("general") or {}
        closeout_hour = general.get("closeoutHour")
        return [POSLocation(
            external_id=data.get("guid") or restaurant_guid,
            name=general.get("name") or restaurant_guid,
            timezone=general.get("timeZone") or self._default_timezone,
            closeout_hour=closeout_hour if closeout_hour is not None else self._default_closeout_hour,
        )]

    async def get_orders_by_business_date(self, location_id: str, business_date: str) -> List[Dict[str, Any]]:
        try:
            data = await self._get("/orders/v2/ordersBulk", location_id, params={"businessDate": business_date})
        except httpx.HTTPStatusError as e:
            raise POSClientError(
                f"Failed to fetch orders for business date {business_date}: HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise POSClientError(f"Failed to fetch orders for business date {business_date}: {e}") from e
        return data or []

    async def get_orders_by_business_date_range(
        self, location_id: str, start_business_date: str, end_business_date: str
    ) -> List[Dict[str, Any]]:
        orders: List[Dict[str, Any]] = []
        for business_date in business_dates_between(start_business_date, end_business_date):
            orders.extend(await self.get_orders_by_business_date(location_id, business_date))
        return orders

    async def get_orders(self, location_id: str, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        """Orders opened in ``[start, end]``, following pagination to the end."""
        orders: List[Dict[str, Any]] = []
        page = 1
        while True:
            params = {
                "startDate": format_toast_datetime(start),
                "endDate": format_toast_datetime(end),
                "page": page,
                "pageSize": ORDERS_PAGE_SIZE,
            }
            try:
                batch = await self._get("/orders/v2/ordersBulk", location_id, params=params) or []
            except httpx.HTTPStatusError as e:
                if e.response.status_code == 404:
                    break
                raise POSClientError(
                    f"Failed to fetch orders page {page}: HTTP {e.response.status_code}",
                    status_code=e.response.status_code,
                ) from e
            except httpx.HTTPError as e:
                raise POSClientError(f"Failed to fetch orders page {page}: {e}") from e

            if not batch:
                break
            orders.extend(batch)
            if len(batch) < ORDERS_PAGE_SIZE:
                break
            page += 1
        return orders

    # ------------------------------------------------------------------
    # Normalization
    # ------------------------------------------------------------------

    @staticmethod
    def _live_selections(check: Dict[str, Any]) -> List[Dict[str, Any]]:
        return [
            s for s in (check.get("selections") or [])
            if s.get("item") and not s.get("voided")
        ]

    def _convert_order(self, order: Dict[str, Any]) -> Optional[POSSale]:
        if not order.get("paidDate") or order.get("voided"):
            return None
        checks = [c for c in (order.get("checks") or []) if not c.get("voided")]
        if not any(self._live_selections(c) for c in checks):
            return None
        if not order.get("openedDate"):
            logger.warning(f"Toast order {order.get('guid')} has no openedDate, skipping")
            return None

        items = [
            POSSaleItem(
                product_id=selection["item"]["guid"],
                quantity=_money(selection.get("quantity", 1)),
                unit_price=_money(selection.get("receiptLinePrice")),
                total_price=_money(selection.get("price")),
                name=selection.get("displayName"),
            )
            for check in checks
            for selection in self._live_selections(check)
        ]
        return POSSale(
            external_id=order["guid"],
            timestamp=parse_toast_datetime(order["openedDate"]),
            total_amount=sum((_money(c.get("amount")) for c in checks), Decimal("0")),
            items=items,
        )

    def convert_to_pos_sales(self, orders: List[Dict[str, Any]]) -> List[POSSale]:
        """Keep paid, non-voided orders that still have at least one live selection.

        Malformed orders are logged and skipped; the rest of the batch converts.
        """
        sales = []
        for order in orders or []:
            try:
                sale = self._convert_order(order)
            except (KeyError, TypeError, ValueError, AttributeError, InvalidOperation) as e:
                guid = order.get("guid") if isinstance(order, dict) else None
                logger.warning(f"Skipping malformed Toast order {guid}: {e!r}")
                continue
            if sale is not None:
                sales.append(sale)
        return sales
