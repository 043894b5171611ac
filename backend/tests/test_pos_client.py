"""Tests for the Toast POS client, using httpx.MockTransport."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import httpx
import pytest

from barledger.services.pos import POSClientError, ToastClient, create_pos_client
from barledger.services.pos.toast import format_toast_datetime, parse_toast_datetime

BASE_URL = "https://toast.test"
CREDENTIALS = {"client_id": "client", "client_secret": "secret", "restaurant_guid": "rest-1"}


class FakeToast:
    """Records requests and answers like the Toast API."""

    def __init__(self, orders_pages=None, business_date_status=200, orders=None):
        self.requests = []
        self.orders_pages = orders_pages or []
        self.business_date_status = business_date_status
        self.orders = orders or []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/authentication/v1/authentication/login":
            return httpx.Response(200, json={"token": {"accessToken": "tok-1", "expiresIn": 3600}})
        if request.headers.get("Authorization") != "Bearer tok-1":
            return httpx.Response(401)
        if path == "/restaurants/v1/restaurants/rest-1":
            return httpx.Response(200, json={
                "guid": "rest-1",
                "general": {"name": "Downtown", "timeZone": "America/New_York", "closeoutHour": 4},
            })
        if path == "/orders/v2/ordersBulk":
            if "businessDate" in request.url.params:
                if self.business_date_status != 200:
                    return httpx.Response(self.business_date_status)
                return httpx.Response(200, json=self.orders)
            page = int(request.url.params["page"])
            if page > len(self.orders_pages):
                return httpx.Response(404)
            return httpx.Response(200, json=self.orders_pages[page - 1])
        return httpx.Response(404)

    def calls(self, path):
        return [r for r in self.requests if r.url.path == path]


def _client(fake, credentials=None, on_update=None):
    return ToastClient(
        dict(credentials or CREDENTIALS),
        on_credentials_update=on_update,
        base_url=BASE_URL,
        transport=httpx.MockTransport(fake),
    )


class TestToastAuthentication:
    @pytest.mark.asyncio
    async def test_token_is_fetched_once_and_saved(self):
        fake = FakeToast()
        saved = []
        client = _client(fake, on_update=saved.append)

        await client.get_locations()
        await client.get_orders_by_business_date("rest-1", "20240301")

        assert len(fake.calls("/authentication/v1/authentication/login")) == 1
        assert saved[0]["access_token"] == "tok-1"
        assert "access_token_expires_at" in saved[0]
        order_request = fake.calls("/orders/v2/ordersBulk")[0]
        assert order_request.headers["Toast-Restaurant-External-ID"] == "rest-1"

    @pytest.mark.asyncio
    async def test_async_credentials_callback(self):
        saved = []

        async def save(credentials):
            saved.append(credentials)

        await _client(FakeToast(), on_update=save).get_access_token()
        assert saved[0]["access_token"] == "tok-1"

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_fail_login(self):
        def save(credentials):
            raise RuntimeError("database down")

        assert await _client(FakeToast(), on_update=save).get_access_token() == "tok-1"

    @pytest.mark.asyncio
    async def test_valid_stored_token_is_reused(self):
        fake = FakeToast()
        expires = (datetime.now(timezone.utc) + timedelta(hours=1)).isoformat()
        client = _client(fake, {**CREDENTIALS, "access_token": "tok-1", "access_token_expires_at": expires})

        await client.get_locations()
        assert fake.calls("/authentication/v1/authentication/login") == []

    @pytest.mark.asyncio
    async def test_missing_client_secret(self):
        client = _client(FakeToast(), {"client_id": "client", "restaurant_guid": "rest-1"})
        with pytest.raises(POSClientError):
            await client.get_access_token()

    @pytest.mark.asyncio
    async def test_login_http_error(self):
        def handler(request):
            return httpx.Response(401)

        client = ToastClient(dict(CREDENTIALS), base_url=BASE_URL, transport=httpx.MockTransport(handler))
        with pytest.raises(POSClientError) as exc:
            await client.get_access_token()
        assert exc.value.status_code == 401


class TestToastFetching:
    @pytest.mark.asyncio
    async def test_get_locations(self):
        locations = await _client(FakeToast()).get_locations()
        assert len(locations) == 1
        assert locations[0].name == "Downtown"
        assert locations[0].timezone == "America/New_York"
        assert locations[0].closeout_hour == 4

    @pytest.mark.asyncio
    async def test_business_date_range_fetches_each_day(self):
        fake = FakeToast(orders=[{"guid": "o-1"}])
        orders = await _client(fake).get_orders_by_business_date_range("rest-1", "20240301", "20240303")

        assert len(orders) == 3
        dates = [r.url.params["businessDate"] for r in fake.calls("/orders/v2/ordersBulk")]
        assert dates == ["20240301", "20240302", "20240303"]

    @pytest.mark.asyncio
    async def test_business_date_failure_raises(self):
        client = _client(FakeToast(business_date_status=500))
        with pytest.raises(POSClientError) as exc:
            await client.get_orders_by_business_date("rest-1", "20240301")
        assert exc.value.status_code == 500

    @pytest.mark.asyncio
    async def test_non_json_body_is_a_client_error(self):
        def handler(request):
            if request.url.path == "/authentication/v1/authentication/login":
                return httpx.Response(200, json={"token": {"accessToken": "tok-1", "expiresIn": 3600}})
            return httpx.Response(200, text="<html>oops</html>")

        client = ToastClient(dict(CREDENTIALS), base_url=BASE_URL, transport=httpx.MockTransport(handler))
        with pytest.raises(POSClientError) as exc:
            await client.get_orders_by_business_date("rest-1", "20240301")
        assert "Invalid JSON" in str(exc.value)

    @pytest.mark.asyncio
    async def test_timestamp_range_follows_pages(self):
        full_page = [{"guid": f"o-{i}"} for i in range(100)]
        fake = FakeToast(orders_pages=[full_page, [{"guid": "o-100"}]])
        start = datetime(2024, 3, 1, tzinfo=timezone.utc)

        orders = await _client(fake).get_orders("rest-1", start, start + timedelta(days=1))

        assert len(orders) == 101
        pages = [r.url.params["page"] for r in fake.calls("/orders/v2/ordersBulk")]
        assert pages == ["1", "2"]

    @pytest.mark.asyncio
    async def test_timestamp_range_stops_on_404(self):
        full_page = [{"guid": f"o-{i}"} for i in range(100)]
        fake = FakeToast(orders_pages=[full_page])
        start = datetime(2024, 3, 1, tzinfo=timezone.utc)

        orders = await _client(fake).get_orders("rest-1", start, start + timedelta(days=1))
        assert len(orders) == 100


class TestToastConversion:
    def _selection(self, guid, quantity=1, price="5.00", voided=False):
        return {
            "item": {"guid": guid},
            "displayName": guid.title(),
            "quantity": quantity,
            "receiptLinePrice": price,
            "price": str(Decimal(price) * quantity),
            "voided": voided,
        }

    def test_filters_unpaid_voided_and_empty_orders(self):
        orders = [
            {
                "guid": "paid",
                "openedDate": "2024-03-01T18:04:05.123+0000",
                "paidDate": "2024-03-01T19:00:00.000+0000",
                "checks": [
                    {"amount": 10.0, "selections": [self._selection("beer", 2), self._selection("wine", voided=True)]},
                    {"amount": 7.0, "voided": True, "selections": [self._selection("gin")]},
                ],
            },
            {"guid": "unpaid", "openedDate": "2024-03-01T18:00:00.000+0000", "checks": [
                {"amount": 5.0, "selections": [self._selection("beer")]},
            ]},
            {"guid": "voided", "voided": True, "openedDate": "2024-03-01T18:00:00.000+0000",
             "paidDate": "2024-03-01T18:30:00.000+0000",
             "checks": [{"amount": 5.0, "selections": [self._selection("beer")]}]},
            {"guid": "empty", "openedDate": "2024-03-01T18:00:00.000+0000",
             "paidDate": "2024-03-01T18:30:00.000+0000",
             "checks": [{"amount": 0, "selections": [self._selection("beer", voided=True)]}]},
        ]

        sales = ToastClient(dict(CREDENTIALS)).convert_to_pos_sales(orders)

        assert [s.external_id for s in sales] == ["paid"]
        sale = sales[0]
        assert sale.total_amount == Decimal("10.0")
        assert [(i.product_id, i.quantity) for i in sale.items] == [("beer", Decimal("2"))]
        assert sale.items[0].total_price == Decimal("10.00")
        assert sale.timestamp == datetime(2024, 3, 1, 18, 4, 5, 123000, tzinfo=timezone.utc)

    def test_malformed_order_is_skipped(self):
        good = {
            "guid": "good",
            "openedDate": "2024-03-01T18:00:00.000+0000",
            "paidDate": "2024-03-01T19:00:00.000+0000",
            "checks": [{"amount": 5.0, "selections": [self._selection("beer")]}],
        }
        no_guid = {k: v for k, v in good.items() if k != "guid"}
        bad_date = {**good, "guid": "bad-date", "openedDate": "yesterday"}
        bad_item = {**good, "guid": "bad-item", "checks": [{"amount": 5.0, "selections": [{"item": {"name": "Beer"}}]}]}

        sales = ToastClient(dict(CREDENTIALS)).convert_to_pos_sales([no_guid, bad_date, bad_item, good])

        assert [s.external_id for s in sales] == ["good"]


class TestToastHelpers:
    def test_parse_compact_offset(self):
        parsed = parse_toast_datetime("2024-03-01T12:00:00.000-0600")
        assert parsed.astimezone(timezone.utc) == datetime(2024, 3, 1, 18, 0, tzinfo=timezone.utc)

    def test_parse_zulu(self):
        assert parse_toast_datetime("2024-03-01T18:00:00Z").tzinfo is not None

    def test_format(self):
        moment = datetime(2024, 3, 1, 18, 4, 5, 123456, tzinfo=timezone.utc)
        assert format_toast_datetime(moment) == "2024-03-01T18:04:05.123+0000"


class TestClientFactory:
    def test_creates_registered_client(self):
        assert isinstance(create_pos_client("toast", CREDENTIALS), ToastClient)

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            create_pos_client("square", {})
