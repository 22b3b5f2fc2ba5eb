"""Tests for the print vendor HTTP client and its token cache."""

from __future__ import annotations

import json
from decimal import Decimal

import httpx
import pytest

from inkwell_schemas import PrintJobLineItem, PrintJobRequest
from inkwell_schemas.exceptions import PermanentExternalError, TransientExternalError

from services.commerce.app.vendor import ExpiringValue, PrintVendorClient, TokenCache, VendorSettings
from tests.utils.fakes import shipping_address

pytestmark = pytest.mark.anyio("asyncio")

BASE_URL = "https://vendor.test"
TOKEN_URL = "https://vendor.test/auth/token"


@pytest.fixture
def anyio_backend():
    return "asyncio"


class VendorStub:
    """Routes requests to canned answers and records what was sent."""

    def __init__(self) -> None:
        self.token_calls = 0
        self.requests: list[httpx.Request] = []
        self.responses: dict[tuple[str, str], list[httpx.Response]] = {}

    def answer(self, method: str, path: str, *responses: httpx.Response) -> None:
        self.responses[(method, path)] = list(responses)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if str(request.url) == TOKEN_URL:
            self.token_calls += 1
            return httpx.Response(200, json={"access_token": f"token-{self.token_calls}", "expires_in": 3600})
        self.requests.append(request)
        queue = self.responses.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"detail": "not found"})
        return queue.pop(0) if len(queue) > 1 else queue[0]


@pytest.fixture
def stub() -> VendorStub:
    return VendorStub()


@pytest.fixture
async def client(stub: VendorStub):
    settings = VendorSettings(
        base_url=BASE_URL, client_key="key", client_secret="secret", token_url=TOKEN_URL
    )
    http = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(stub))
    vendor = PrintVendorClient(settings, token_cache=TokenCache(), http_client=http)
    yield vendor
    await vendor.aclose()


QUOTE_BODY = {
    "currency": "usd",
    "line_item_costs": [{"total_cost_incl_tax": "20.00"}],
    "shipping_options": [{"level": "MAIL", "total_cost_incl_tax": "4.99"}],
}


async def test_quote_parses_line_item_cost(client: PrintVendorClient, stub: VendorStub) -> None:
    stub.answer("POST", "/print-job-costs/", httpx.Response(200, json=QUOTE_BODY))

    quote = await client.quote_cost(sku="SKU", page_count=24, country_code="US")

    assert quote.total_cost_incl_tax == Decimal("20.00")
    assert quote.currency == "USD"
    assert quote.shipping_options[0].level == "MAIL"
    sent = json.loads(stub.requests[0].content)
    assert sent["line_items"][0] == {"pod_package_id": "SKU", "page_count": 24, "quantity": 1}
    assert sent["shipping_address"] == {"country_code": "US"}
    assert stub.requests[0].headers["Authorization"] == "Bearer token-1"


async def test_token_is_fetched_once_and_reused(client: PrintVendorClient, stub: VendorStub) -> None:
    stub.answer("POST", "/print-job-costs/", httpx.Response(200, json=QUOTE_BODY))

    await client.quote_cost(sku="SKU", page_count=24, country_code="US")
    await client.quote_cost(sku="SKU", page_count=30, country_code="US")

    assert stub.token_calls == 1


async def test_rejected_token_is_dropped(client: PrintVendorClient, stub: VendorStub) -> None:
    stub.answer(
        "POST",
        "/print-job-costs/",
        httpx.Response(401, json={"detail": "expired"}),
        httpx.Response(200, json=QUOTE_BODY),
    )

    with pytest.raises(TransientExternalError):
        await client.quote_cost(sku="SKU", page_count=24, country_code="US")
    await client.quote_cost(sku="SKU", page_count=24, country_code="US")

    assert stub.token_calls == 2
    assert stub.requests[-1].headers["Authorization"] == "Bearer token-2"


@pytest.mark.parametrize("status", [429, 500, 503])
async def test_server_errors_are_transient(client: PrintVendorClient, stub: VendorStub, status: int) -> None:
    stub.answer("POST", "/print-job-costs/", httpx.Response(status, text="busy"))

    with pytest.raises(TransientExternalError):
        await client.quote_cost(sku="SKU", page_count=24, country_code="US")


@pytest.mark.parametrize("status", [400, 403, 422])
async def test_client_errors_are_permanent(client: PrintVendorClient, stub: VendorStub, status: int) -> None:
    stub.answer("POST", "/print-job-costs/", httpx.Response(status, text="bad sku"))

    with pytest.raises(PermanentExternalError):
        await client.quote_cost(sku="SKU", page_count=24, country_code="US")


async def test_timeout_is_transient(stub: VendorStub) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if str(request.url) == TOKEN_URL:
            return stub(request)
        raise httpx.ReadTimeout("slow", request=request)

    settings = VendorSettings(base_url=BASE_URL, client_key="k", client_secret="s", token_url=TOKEN_URL)
    http = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    vendor = PrintVendorClient(settings, http_client=http)
    try:
        with pytest.raises(TransientExternalError):
            await vendor.cover_dimensions(sku="SKU", page_count=24)
    finally:
        await vendor.aclose()


@pytest.mark.parametrize(
    "body",
    [
        {"currency": "USD"},
        {"line_item_costs": []},
        {"line_item_costs": [{"total_cost_incl_tax": "0.00"}]},
    ],
)
async def test_unusable_quote_is_permanent(client: PrintVendorClient, stub: VendorStub, body: dict) -> None:
    stub.answer("POST", "/print-job-costs/", httpx.Response(200, json=body))

    with pytest.raises(PermanentExternalError):
        await client.quote_cost(sku="SKU", page_count=24, country_code="US")


async def test_quote_sends_full_address_when_known(client: PrintVendorClient, stub: VendorStub) -> None:
    stub.answer("POST", "/print-job-costs/", httpx.Response(200, json=QUOTE_BODY))
    address = shipping_address()

    await client.quote_cost(sku="SKU", page_count=24, country_code="US", shipping_address=address)

    sent = json.loads(stub.requests[0].content)
    assert sent["shipping_address"]["city"] == address.city
    assert sent["shipping_address"]["postcode"] == address.postcode


async def test_cover_dimensions_from_cover_pages(client: PrintVendorClient, stub: VendorStub) -> None:
    stub.answer(
        "POST",
        "/cover-dimensions/",
        httpx.Response(200, json={"cover_pages": [{"width": "620.5", "height": "230"}]}),
    )

    dims = await client.cover_dimensions(sku="SKU", page_count=24)

    assert (dims.width_mm, dims.height_mm) == (620.5, 230.0)


async def test_cover_dimensions_without_size_is_permanent(client: PrintVendorClient, stub: VendorStub) -> None:
    stub.answer("POST", "/cover-dimensions/", httpx.Response(200, json={"unit": "mm"}))

    with pytest.raises(PermanentExternalError):
        await client.cover_dimensions(sku="SKU", page_count=24)


async def test_print_job_submission(client: PrintVendorClient, stub: VendorStub) -> None:
    stub.answer("POST", "/print-jobs/", httpx.Response(201, json={"id": 9876, "status": {"name": "CREATED"}}))
    request = PrintJobRequest(
        external_id="inkwell-order-1",
        shipping_address=shipping_address(),
        line_items=[
            PrintJobLineItem(
                sku="SKU",
                page_count=24,
                cover_url="https://files.test/cover.pdf",
                interior_url="https://files.test/interior.pdf",
                title="Order 1",
            )
        ],
    )

    job = await client.create_print_job(request)

    assert (job.job_id, job.status) == ("9876", "CREATED")
    sent = json.loads(stub.requests[0].content)
    assert sent["external_id"] == "inkwell-order-1"
    assert sent["line_items"][0]["interior"] == {"source_url": "https://files.test/interior.pdf"}
    assert sent["line_items"][0]["pod_package_id"] == "SKU"
    assert sent["line_items"][0]["page_count"] == 24


async def test_print_job_status(client: PrintVendorClient, stub: VendorStub) -> None:
    stub.answer("GET", "/print-jobs/42/", httpx.Response(200, json={"id": 42, "status": {"name": "SHIPPED"}}))

    job = await client.get_print_job("42")

    assert job.status == "SHIPPED"


async def test_print_options_are_cached(client: PrintVendorClient, stub: VendorStub) -> None:
    stub.answer("GET", "/print-options/", httpx.Response(200, json={"results": [{"id": "opt"}]}))

    first = await client.print_options()
    second = await client.print_options()

    assert first == second == [{"id": "opt"}]
    assert len([r for r in stub.requests if r.url.path == "/print-options/"]) == 1


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


async def test_expiring_value_refreshes_inside_skew() -> None:
    clock = FakeClock()
    cache: ExpiringValue[str] = ExpiringValue(skew_seconds=60, clock=clock)
    fetched: list[str] = []

    async def fetch() -> tuple[str, float]:
        fetched.append(f"v{len(fetched) + 1}")
        return fetched[-1], 3600

    assert await cache.get(fetch) == "v1"
    clock.now += 3500
    assert await cache.get(fetch) == "v1"
    clock.now += 50
    assert await cache.get(fetch) == "v2"


async def test_invalidate_forces_refetch() -> None:
    cache = TokenCache(clock=FakeClock())
    calls = 0

    async def fetch() -> tuple[str, float]:
        nonlocal calls
        calls += 1
        return "token", 3600

    await cache.get(fetch)
    assert cache.peek() == "token"
    cache.invalidate()
    assert cache.peek() is None
    await cache.get(fetch)
    assert calls == 2
