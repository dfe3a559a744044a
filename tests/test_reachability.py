import httpx
import pytest
from starlette.testclient import TestClient

from place_site.errors import DomainNetworkError, UnexpectedResponseError
from place_site.reachability import (
    REACHABILITY_MESSAGE,
    create_verifier,
    ensure_domains_are_reachable,
    response_preview,
)


def test_response_preview():
    assert response_preview("nope") == "nope"
    assert response_preview("<html>hi</html>") == "looks like HTML: <html>hi</html>"
    assert response_preview("x" * 101) == "response is too long to show"
    assert response_preview("<html>" + "x" * 100) == "response looks like HTML and is too long to show"


def test_verifier_answers_every_path():
    client = TestClient(create_verifier().app)
    assert client.get("/").text == REACHABILITY_MESSAGE
    assert client.get("/any/path/at/all").text == REACHABILITY_MESSAGE


async def check(domains, handler):
    await ensure_domains_are_reachable(domains, port=0, host="127.0.0.1", timeout=5,
                                       transport=httpx.MockTransport(handler))


async def test_reachable_domains_pass_in_order():
    requested = []

    def handler(request):
        requested.append(request.url.host)
        return httpx.Response(200, text=REACHABILITY_MESSAGE)

    await check(["example.test", "www.example.test"], handler)

    assert requested == ["example.test", "www.example.test"]


async def test_someone_else_answering_is_an_unexpected_response():
    def handler(request):
        return httpx.Response(200, text="<html><body>Welcome to nginx!</body></html>")

    with pytest.raises(UnexpectedResponseError) as info:
        await check(["example.test"], handler)

    assert info.value.domain == "example.test"
    assert "looks like HTML" in info.value.message


async def test_network_failure_stops_at_the_first_bad_domain():
    requested = []

    def handler(request):
        requested.append(request.url.host)
        raise httpx.ConnectError("Name or service not known", request=request)

    with pytest.raises(DomainNetworkError) as info:
        await check(["first.test", "second.test"], handler)

    assert requested == ["first.test"]
    assert info.value.domain == "first.test"
    assert "Name or service not known" in info.value.message


async def test_error_status_is_a_network_error():
    def handler(request):
        return httpx.Response(502, text="Bad gateway")

    with pytest.raises(DomainNetworkError, match="HTTP status 502"):
        await check(["example.test"], handler)
