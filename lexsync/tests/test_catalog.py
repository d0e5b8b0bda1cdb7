from unittest.mock import patch

import httpx
import pytest

from conftest import catalog_result, make_connector
from lexsync.core.catalog.courtlistener import BackoffPolicy, is_usable_url, parse_retry_after
from lexsync.core.errors import CatalogError, ConfigurationError
from lexsync.models.catalog import CatalogArtifact, CatalogFilters, CatalogItem

PDF_URL = "https://storage.courtlistener.com/pdf/2024/03/01/smith_v_jones.pdf"

def _item(url=PDF_URL):
    return CatalogItem(
        cluster_id=1,
        case_name="Smith v. Jones",
        artifacts=[CatalogArtifact(download_url=url, artifact_type="010combined")],
    )

def test_usable_url_rules():
    assert is_usable_url(PDF_URL)
    assert is_usable_url("https://www.supremecourt.gov/opinions/23-719", artifact_type="application/pdf")
    assert not is_usable_url("")
    assert not is_usable_url("   ")
    assert not is_usable_url(None)
    assert not is_usable_url("/pdf/relative/path.pdf")
    assert not is_usable_url("ftp://example.com/a.pdf")
    assert not is_usable_url("https://example.com/opinion.html")

def test_search_drops_items_without_usable_artifact():
    seen_params = {}

    def handler(request: httpx.Request):
        seen_params.update(dict(request.url.params))
        assert request.headers["Authorization"] == "Token test-key"
        return httpx.Response(200, json={
            "count": 3,
            "next": None,
            "results": [
                catalog_result(1, "Smith v. Jones", PDF_URL),
                catalog_result(2, "Doe v. Roe", ""),
                catalog_result(3, "Acme Corp. v. Widget LLC", "https://storage.courtlistener.com/pdf/acme.pdf"),
            ],
        })

    connector = make_connector(handler)
    items = connector.search(CatalogFilters(query="contract", court="ca9", date_filed_after="2024-01-01"))

    assert [i.cluster_id for i in items] == [1, 3]
    assert items[0].case_name == "Smith v. Jones"
    assert items[0].citations == ["1 F.4th 1"]
    assert items[0].primary_artifact.download_url == PDF_URL
    assert seen_params["q"] == "contract"
    assert seen_params["court"] == "ca9"
    assert seen_params["date_filed__gte"] == "2024-01-01"
    assert "date_filed__lte" not in seen_params

def test_search_follows_next_until_max_results():
    pages = {
        "1": {"next": "https://www.courtlistener.com/api/rest/v4/search/?cursor=2", "results": [catalog_result(1, "A v. B", PDF_URL)]},
        "2": {"next": "https://www.courtlistener.com/api/rest/v4/search/?cursor=3", "results": [catalog_result(2, "C v. D", PDF_URL)]},
        "3": {"next": None, "results": [catalog_result(3, "E v. F", PDF_URL)]},
    }

    def handler(request: httpx.Request):
        return httpx.Response(200, json=pages[request.url.params.get("cursor", "1")])

    items = make_connector(handler).search(CatalogFilters(max_results=2))
    assert [i.cluster_id for i in items] == [1, 2]

def test_search_without_key_fails_fast():
    handler = lambda request: pytest.fail("no request expected")
    with pytest.raises(ConfigurationError):
        make_connector(handler, api_key="").search(CatalogFilters())

def test_search_server_error_raises_catalog_error():
    connector = make_connector(lambda request: httpx.Response(500, text="boom"))
    with pytest.raises(CatalogError):
        connector.search(CatalogFilters())

def test_download_direct_with_token():
    def handler(request: httpx.Request):
        assert str(request.url) == PDF_URL
        assert request.headers["Authorization"] == "Token test-key"
        return httpx.Response(200, content=b"%PDF-1.7 fake")

    assert make_connector(handler).download(_item()) == b"%PDF-1.7 fake"

def test_download_through_proxy():
    def handler(request: httpx.Request):
        assert request.method == "POST"
        assert str(request.url) == "http://localhost:3001/download"
        body = request.read().decode()
        assert PDF_URL in body and "test-key" in body
        return httpx.Response(200, content=b"%PDF-1.7 proxied")

    connector = make_connector(handler, download_proxy_url="http://localhost:3001")
    assert connector.download(_item()) == b"%PDF-1.7 proxied"

def test_download_fatal_status_is_unavailable_without_retry():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(404)

    with patch("time.sleep") as sleep:
        assert make_connector(handler).download(_item()) is None
    assert len(calls) == 1
    sleep.assert_not_called()

def test_download_retries_transient_network_error():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            raise httpx.ConnectError("connection reset", request=request)
        return httpx.Response(200, content=b"%PDF ok")

    with patch("time.sleep"):
        assert make_connector(handler).download(_item()) == b"%PDF ok"
    assert len(calls) == 2

def test_rate_limited_delays_never_decrease():
    retry_after = iter(["5", None, "1"])
    calls = []

    def handler(request):
        calls.append(request)
        value = next(retry_after)
        headers = {"Retry-After": value} if value else {}
        return httpx.Response(429, headers=headers)

    with patch("time.sleep") as sleep:
        assert make_connector(handler).download(_item()) is None

    delays = [c.args[0] for c in sleep.call_args_list]
    print(f"429 delays: {delays}")
    assert len(calls) == 3                 # max_attempts
    assert len(delays) == 2
    assert delays == sorted(delays)
    assert delays[0] >= 5.0                # Retry-After honored

def test_backoff_policy_is_monotonic_and_longer_for_rate_limits():
    policy = BackoffPolicy(base_delay=1.0, max_delay=10.0, rate_limit_multiplier=2.0)
    previous = 0.0
    delays = []
    for attempt, limited in enumerate([True, False, True, False, False, True], start=1):
        previous = policy.delay(attempt, rate_limited=limited, previous=previous)
        delays.append(previous)
    assert delays == sorted(delays)
    assert policy.delay(1, rate_limited=True) > policy.delay(1)
    # Retry-After lengthens but never shortens
    assert policy.delay(3, retry_after=0.1) == 4.0
    assert policy.delay(1, retry_after=7.0) == 7.0

def test_parse_retry_after():
    assert parse_retry_after("3") == 3.0
    assert parse_retry_after(None) is None
    assert parse_retry_after("soon") is None
    assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") == 0.0

def test_recent_filters():
    filters = make_connector(lambda r: httpx.Response(200)).recent_filters(days=30, max_results=25)
    assert filters.date_filed_after is not None
    assert filters.max_results == 25

def test_list_courts():
    def handler(request):
        assert request.url.path.endswith("/courts/")
        return httpx.Response(200, json={"next": None, "results": [
            {"id": "scotus", "short_name": "SCOTUS", "full_name": "Supreme Court of the United States", "jurisdiction": "F"},
            {"short_name": "missing id"},
        ]})

    courts = make_connector(handler).list_courts()
    assert [c.id for c in courts] == ["scotus"]
