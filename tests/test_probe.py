"""Test the connection probe heuristic and network failure policy."""
import base64

import httpx
import pytest

from conftest import FakeVendor
from core.integrations.descriptor import load_descriptor
from core.integrations.models import CredentialBundle
from core.integrations.probe import UNVERIFIED_WARNING, ConnectionProbe, NetworkFailurePolicy

DESCRIPTOR = load_descriptor({
    "id": "acme",
    "displayName": "Acme",
    "baseUrl": "https://api.acme.test",
    "endpoints": [],
})
BUNDLE = CredentialBundle(apiKey="abc123")


def _probe(handler, **kwargs):
    return ConnectionProbe(transport=httpx.MockTransport(handler), **kwargs)


@pytest.mark.asyncio
async def test_200_is_ok():
    vendor = FakeVendor({"/me": httpx.Response(200, json={"id": 1})})
    result = await _probe(vendor).probe(DESCRIPTOR, BUNDLE)
    assert result.ok
    assert result.warning is None
    assert result.status_code == 200
    assert vendor.requests[0].url == "https://api.acme.test/me"


@pytest.mark.asyncio
async def test_401_is_ok():
    vendor = FakeVendor({"/me": httpx.Response(401, json={"error": "unauthorized"})})
    result = await _probe(vendor).probe(DESCRIPTOR, BUNDLE)
    assert result.ok
    assert result.warning is None


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [403, 404, 500])
async def test_other_statuses_fail(status):
    vendor = FakeVendor({"/me": httpx.Response(status)})
    result = await _probe(vendor).probe(DESCRIPTOR, BUNDLE)
    assert not result.ok
    assert result.status_code == status
    assert f"status {status}" in result.error


@pytest.mark.asyncio
async def test_connection_refused_is_optimistic():
    def refuse(request):
        raise httpx.ConnectError("Connection refused", request=request)

    result = await _probe(refuse).probe(DESCRIPTOR, BUNDLE)
    assert result.ok
    assert result.warning == UNVERIFIED_WARNING


@pytest.mark.asyncio
async def test_timeout_is_optimistic():
    def slow(request):
        raise httpx.ReadTimeout("timed out", request=request)

    result = await _probe(slow).probe(DESCRIPTOR, BUNDLE)
    assert result.ok
    assert result.warning == UNVERIFIED_WARNING


@pytest.mark.asyncio
async def test_strict_policy_rejects_network_failure():
    def refuse(request):
        raise httpx.ConnectError("Connection refused", request=request)

    result = await _probe(refuse, network_policy=NetworkFailurePolicy.STRICT).probe(DESCRIPTOR, BUNDLE)
    assert not result.ok
    assert result.warning is None
    assert "Could not reach" in result.error


@pytest.mark.asyncio
async def test_bearer_for_lone_key():
    vendor = FakeVendor({"/me": httpx.Response(200)})
    await _probe(vendor).probe(DESCRIPTOR, BUNDLE)
    assert vendor.requests[0].headers["Authorization"] == "Bearer abc123"


@pytest.mark.asyncio
async def test_basic_when_secret_present():
    vendor = FakeVendor({"/me": httpx.Response(200)})
    await _probe(vendor).probe(DESCRIPTOR, CredentialBundle(apiKey="user", apiSecret="pass"))
    expected = base64.b64encode(b"user:pass").decode()
    assert vendor.requests[0].headers["Authorization"] == f"Basic {expected}"


@pytest.mark.asyncio
async def test_bundle_base_url_overrides_descriptor():
    vendor = FakeVendor({"/me": httpx.Response(200)})
    bundle = CredentialBundle(apiKey="k", baseUrl="https://eu.acme.test/")
    await _probe(vendor).probe(DESCRIPTOR, bundle)
    assert vendor.requests[0].url == "https://eu.acme.test/me"


def test_needs_an_endpoint():
    with pytest.raises(ValueError):
        ConnectionProbe(endpoints=())


@pytest.mark.asyncio
async def test_malformed_url_fails_without_a_request():
    vendor = FakeVendor({"/me": httpx.Response(200)})
    bundle = CredentialBundle(apiKey="k", baseUrl="http://a\nb")
    result = await _probe(vendor).probe(DESCRIPTOR, bundle)
    assert not result.ok
    assert result.warning is None
    assert "Invalid probe URL" in result.error
    assert vendor.requests == []
