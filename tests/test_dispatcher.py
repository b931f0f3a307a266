"""Test connect/execute orchestration end to end over a fake vendor."""
import asyncio
import contextlib

import httpx
import pytest

from conftest import OTHER_KEY, FakeVendor
from core.config import DispatchConfig
from core.integrations.adapter_base import IntegrationAdapter
from core.integrations.models import (
    ActionOutcome,
    ActionRequest,
    ActionResult,
    ConnectResult,
    CredentialBundle,
    InlineCredentials,
    StoredCredentials,
)
from core.integrations.probe import UNVERIFIED_WARNING
from core.integrations.registry import IntegrationRegistry
from core.integrations.vault import CredentialVault


def _weather(request):
    assert request.url.params["access_key"] == "abc123"
    return httpx.Response(200, json={
        "request": {"query": request.url.params["query"]},
        "location": {"name": "Paris"},
        "current": {"temperature": 18},
    })


class EchoAdapter(IntegrationAdapter):
    async def execute(self, action, params):
        return ActionOutcome(200, {"integration": self.descriptor.id, "action": action, "params": params})


class SlowAdapter(IntegrationAdapter):
    async def execute(self, action, params):
        await asyncio.sleep(10)


class BrokenAdapter(IntegrationAdapter):
    async def execute(self, action, params):
        raise KeyError("bug")


def _recording_factory(cls, log, name):
    def factory(config):
        log.append(name)
        return cls(config)
    return factory


def _doc(integration_id, actions=("ping",)):
    return {
        "id": integration_id,
        "displayName": integration_id.upper(),
        "baseUrl": f"https://{integration_id}.test",
        "endpoints": [{"id": a, "path": f"/{a}"} for a in actions],
    }


# ---------------------------------------------------------------------------
# connect
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_connect_then_execute_weatherstack(make_dispatcher, vendor, file_store, vault):
    vendor.routes["/current"] = _weather
    dispatcher = make_dispatcher()

    connected = await dispatcher.connect("demo-user", "weatherstack", {"apiKey": "abc123"})
    assert connected.success
    envelope = connected.to_envelope()
    assert envelope["success"] is True
    assert envelope["integration"]["connected"] is True
    assert envelope["integration"]["id"] == "weatherstack"
    assert "warning" not in envelope

    stored = await file_store.get("demo-user", "weatherstack")
    assert vault.decrypt(stored.credentials) == CredentialBundle(apiKey="abc123")
    assert stored.metadata.base_url == "http://api.weatherstack.com"

    result = await dispatcher.execute(
        "weatherstack", "getCurrentWeather", {"query": "Paris"}, StoredCredentials("demo-user")
    )
    assert result.success, result.error
    body = result.to_envelope()
    assert body["success"] is True
    assert body["integration"] == "Weatherstack"
    assert body["result"]["status"] == 200
    assert body["result"]["data"]["location"]["name"] == "Paris"
    assert vendor.paths() == ["/me", "/current"]


@pytest.mark.asyncio
async def test_connect_requires_api_key(make_dispatcher, vendor):
    result = await make_dispatcher().connect("demo-user", "weatherstack", {"apiSecret": "x"})
    assert not result.success
    assert result.status_code == 400
    assert vendor.requests == []


@pytest.mark.asyncio
async def test_connect_unknown_integration(make_dispatcher):
    result = await make_dispatcher().connect("demo-user", "nope", {"apiKey": "k"})
    assert result.status_code == 404


@pytest.mark.asyncio
async def test_probe_rejection_stores_nothing(make_dispatcher, vendor, file_store):
    vendor.routes["/me"] = httpx.Response(403)
    result = await make_dispatcher().connect("demo-user", "weatherstack", {"apiKey": "abc123"})
    assert not result.success
    assert result.status_code == 400
    assert result.to_envelope()["error"] == "Connection test failed"
    assert await file_store.get("demo-user", "weatherstack") is None


@pytest.mark.asyncio
async def test_unreachable_vendor_saves_with_warning(make_dispatcher, vendor, file_store):
    def refuse(request):
        raise httpx.ConnectError("refused", request=request)

    vendor.routes["/me"] = refuse
    result = await make_dispatcher().connect("demo-user", "weatherstack", {"apiKey": "abc123"})
    assert result.success
    assert result.to_envelope()["warning"] == UNVERIFIED_WARNING
    stored = await file_store.get("demo-user", "weatherstack")
    assert stored.metadata.warning == UNVERIFIED_WARNING


@pytest.mark.asyncio
async def test_reconnect_replaces_credentials(make_dispatcher, file_store, vault):
    dispatcher = make_dispatcher()
    first = await dispatcher.connect("demo-user", "weatherstack", {"apiKey": "first"})
    await dispatcher.connect("demo-user", "weatherstack", {"apiKey": "second"})

    connections = await file_store.list_for_user("demo-user")
    assert list(connections) == ["weatherstack"]
    current = connections["weatherstack"]
    assert vault.decrypt(current.credentials).api_key == "second"
    assert current.connected_at == first.connection.connected_at


@pytest.mark.asyncio
async def test_bulk_connect_continues_after_failure(make_dispatcher, vendor):
    vendor.routes["/data/2.5/me"] = httpx.Response(401)
    summary = await make_dispatcher().bulk_connect("demo-user", [
        {"integrationId": "weatherstack", "credentials": {"apiKey": "k"}},
        {"integrationId": "nope", "credentials": {"apiKey": "k"}},
        {"integrationId": "openweather", "credentials": {"apiKey": "k"}},
    ])
    assert summary["total"] == 3
    assert summary["succeeded"] == 2
    assert summary["failed"] == 1
    assert summary["success"] is False
    assert [r["success"] for r in summary["results"]] == [True, False, True]


BAD_BASE_URLS = ["http://a\nb", "http://a\x00b", "ftp://files.test", "not a url"]


@pytest.mark.asyncio
@pytest.mark.parametrize("base_url", BAD_BASE_URLS)
async def test_connect_rejects_bad_base_url(make_dispatcher, vendor, file_store, base_url):
    result = await make_dispatcher().connect("demo-user", "weatherstack", {"apiKey": "k", "baseUrl": base_url})
    assert not result.success
    assert result.status_code == 400
    assert result.error.code == "validation_failed"
    assert vendor.requests == []
    assert await file_store.get("demo-user", "weatherstack") is None


@pytest.mark.asyncio
@pytest.mark.parametrize("base_url", BAD_BASE_URLS)
async def test_test_connection_rejects_bad_base_url(make_dispatcher, vendor, base_url):
    result = await make_dispatcher().test_connection("weatherstack", {"apiKey": "k", "baseUrl": base_url})
    assert not result.ok
    assert "baseUrl" in result.error
    assert vendor.requests == []


@pytest.mark.asyncio
async def test_test_connection_never_raises(make_dispatcher):
    class BrokenProbe:
        async def probe(self, descriptor, bundle):
            raise RuntimeError("boom")

    result = await make_dispatcher(probe=BrokenProbe()).test_connection("weatherstack", {"apiKey": "k"})
    assert not result.ok
    assert "boom" in result.error


@pytest.mark.asyncio
async def test_test_connection_stores_nothing(make_dispatcher, file_store):
    probe = await make_dispatcher().test_connection("weatherstack", {"apiKey": "k"})
    assert probe.ok
    assert await file_store.list_for_user("demo-user") == {}


# ---------------------------------------------------------------------------
# connection management
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_disconnect_and_status(make_dispatcher):
    dispatcher = make_dispatcher()
    await dispatcher.connect("demo-user", "weatherstack", {"apiKey": "k"})

    status = await dispatcher.connection_status("demo-user", "weatherstack")
    assert status["connected"] is True
    assert status["status"] == "active"

    summaries = await dispatcher.list_connections("demo-user")
    assert [s["id"] for s in summaries] == ["weatherstack"]
    assert "credentials" not in summaries[0]

    assert await dispatcher.disconnect("demo-user", "weatherstack")
    assert not await dispatcher.disconnect("demo-user", "weatherstack")
    assert (await dispatcher.connection_status("demo-user", "weatherstack"))["connected"] is False


@pytest.mark.asyncio
async def test_revoked_connection_is_not_usable(make_dispatcher):
    dispatcher = make_dispatcher()
    await dispatcher.connect("demo-user", "weatherstack", {"apiKey": "abc123"})
    assert await dispatcher.revoke("demo-user", "weatherstack")

    result = await dispatcher.execute(
        "weatherstack", "getCurrentWeather", {"query": "Paris"}, StoredCredentials("demo-user")
    )
    assert result.status_code == 401
    assert (await dispatcher.connection_status("demo-user", "weatherstack"))["status"] == "revoked"


# ---------------------------------------------------------------------------
# execute
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_unknown_integration_instantiates_nothing(make_dispatcher):
    log = []
    registry = IntegrationRegistry()
    registry.register(_recording_factory(EchoAdapter, log, "a"), _doc("a"))
    result = await make_dispatcher(registry=registry).execute(
        "nope", "ping", {}, InlineCredentials(CredentialBundle(apiKey="k"))
    )
    assert not result.success
    assert result.status_code == 404
    assert result.error.code == "integration_not_found"
    assert log == []


@pytest.mark.asyncio
async def test_only_the_target_adapter_runs(make_dispatcher):
    log = []
    registry = IntegrationRegistry()
    registry.register(_recording_factory(EchoAdapter, log, "a"), _doc("a", ("ping", "shared")))
    registry.register(_recording_factory(EchoAdapter, log, "b"), _doc("b", ("ping", "shared")))
    dispatcher = make_dispatcher(registry=registry)

    result = await dispatcher.execute("a", "shared", {"x": 1}, InlineCredentials(CredentialBundle(apiKey="k")))
    assert result.success
    assert result.data == {"integration": "a", "action": "shared", "params": {"x": 1}}
    assert log == ["a"]


@pytest.mark.asyncio
async def test_not_connected(make_dispatcher):
    result = await make_dispatcher().execute(
        "weatherstack", "getCurrentWeather", {"query": "Paris"}, StoredCredentials("stranger")
    )
    assert result.status_code == 401
    assert result.to_envelope()["error"] == "Integration not connected. Please connect first."


@pytest.mark.asyncio
async def test_users_are_isolated(make_dispatcher, vendor):
    vendor.routes["/current"] = _weather
    dispatcher = make_dispatcher()
    await dispatcher.connect("alice", "weatherstack", {"apiKey": "abc123"})

    ok = await dispatcher.execute("weatherstack", "getCurrentWeather", {"query": "Rome"}, StoredCredentials("alice"))
    denied = await dispatcher.execute("weatherstack", "getCurrentWeather", {"query": "Rome"}, StoredCredentials("bob"))
    assert ok.success
    assert denied.status_code == 401


@pytest.mark.asyncio
async def test_unknown_endpoint(make_dispatcher):
    result = await make_dispatcher().execute(
        "jsonplaceholder", "dance", {}, InlineCredentials(CredentialBundle())
    )
    assert result.status_code == 404
    assert result.error.code == "endpoint_not_found"


@pytest.mark.asyncio
async def test_missing_action_is_validation_error(make_dispatcher):
    result = await make_dispatcher().execute("jsonplaceholder", "", {}, InlineCredentials(CredentialBundle()))
    assert result.status_code == 400


@pytest.mark.asyncio
async def test_inline_credentials_use_descriptor_endpoints(make_dispatcher, vendor):
    vendor.routes["/posts/1"] = httpx.Response(200, json={"id": 1, "title": "hello"})
    result = await make_dispatcher().execute(
        "jsonplaceholder", "getPost", {"postId": 1}, InlineCredentials(CredentialBundle())
    )
    assert result.success
    assert result.data["title"] == "hello"
    assert str(vendor.requests[0].url) == "https://jsonplaceholder.typicode.com/posts/1"


@pytest.mark.asyncio
async def test_inline_bad_base_url_is_validation_error(make_dispatcher, vendor):
    bundle = CredentialBundle(baseUrl="http://a\nb")
    result = await make_dispatcher().execute("jsonplaceholder", "getPosts", {}, InlineCredentials(bundle))
    assert not result.success
    assert result.status_code == 400
    assert vendor.requests == []


@pytest.mark.asyncio
async def test_execute_request(make_dispatcher, vendor):
    vendor.routes["/users/3"] = httpx.Response(200, json={"id": 3})
    request = ActionRequest(integration_id="jsonplaceholder", action="getUser", params={"userId": 3})
    result = await make_dispatcher().execute_request(request, InlineCredentials(CredentialBundle()))
    assert result.success
    assert result.endpoint_name
    assert result.data == {"id": 3}


@pytest.mark.asyncio
async def test_transient_failures_are_retried(make_dispatcher, vendor):
    responses = iter([httpx.Response(503), httpx.Response(502), httpx.Response(200, json=[])])
    vendor.routes["/posts"] = lambda request: next(responses)
    result = await make_dispatcher().execute("jsonplaceholder", "getPosts", {}, InlineCredentials(CredentialBundle()))
    assert result.success
    assert result.attempts == 3


@pytest.mark.asyncio
async def test_client_errors_are_not_retried(make_dispatcher, vendor):
    vendor.routes["/posts/9"] = httpx.Response(404, json={"message": "missing"})
    result = await make_dispatcher().execute(
        "jsonplaceholder", "getPost", {"postId": 9}, InlineCredentials(CredentialBundle())
    )
    assert not result.success
    assert result.attempts == 1
    assert result.status_code == 502
    details = result.to_envelope()["details"]
    assert details["vendor_status"] == 404
    assert details["vendor_body"] == {"message": "missing"}


@pytest.mark.asyncio
async def test_non_idempotent_actions_are_not_retried(make_dispatcher, vendor):
    vendor.routes[("POST", "/posts")] = httpx.Response(503)
    result = await make_dispatcher().execute(
        "jsonplaceholder", "createPost", {"title": "t", "body": "b"}, InlineCredentials(CredentialBundle())
    )
    assert not result.success
    assert result.attempts == 1


@pytest.mark.asyncio
async def test_retry_flag_allows_non_idempotent_retries(make_dispatcher, vendor):
    vendor.routes[("POST", "/posts")] = httpx.Response(503)
    dispatcher = make_dispatcher(retry_non_idempotent=True, max_retries=2)
    result = await dispatcher.execute(
        "jsonplaceholder", "createPost", {"title": "t", "body": "b"}, InlineCredentials(CredentialBundle())
    )
    assert result.attempts == 3


@pytest.mark.asyncio
async def test_execute_timeout(make_dispatcher):
    registry = IntegrationRegistry()
    registry.register(SlowAdapter, _doc("slow"))
    dispatcher = make_dispatcher(registry=registry, timeout=0.05, max_retries=1)
    result = await dispatcher.execute("slow", "ping", {}, InlineCredentials(CredentialBundle(apiKey="k")))
    assert result.status_code == 504
    assert result.error.code == "vendor_timeout"
    assert result.attempts == 2


@pytest.mark.asyncio
async def test_execute_deadline_bounds_retries(make_dispatcher):
    registry = IntegrationRegistry()
    registry.register(SlowAdapter, _doc("slow"))
    config = DispatchConfig(timeout=5.0, deadline=0.1, max_retries=3, retry_delay=0.05, retry_backoff_max=0.05)
    dispatcher = make_dispatcher(registry=registry, config=config)
    result = await dispatcher.execute("slow", "ping", {}, InlineCredentials(CredentialBundle(apiKey="k")))
    assert result.status_code == 504
    assert result.attempts == 1
    assert result.latency_ms < 1000


@pytest.mark.asyncio
async def test_adapter_bug_becomes_structured_error(make_dispatcher):
    registry = IntegrationRegistry()
    registry.register(BrokenAdapter, _doc("broken"))
    result = await make_dispatcher(registry=registry).execute(
        "broken", "ping", {}, InlineCredentials(CredentialBundle(apiKey="k"))
    )
    assert result.status_code == 500
    assert result.error.code == "adapter_error"


@pytest.mark.asyncio
async def test_wrong_key_is_a_decryption_error(make_dispatcher, file_store):
    await make_dispatcher().connect("demo-user", "weatherstack", {"apiKey": "abc123"})
    rotated = make_dispatcher(vault=CredentialVault(OTHER_KEY))
    result = await rotated.execute(
        "weatherstack", "getCurrentWeather", {"query": "Paris"}, StoredCredentials("demo-user")
    )
    assert result.status_code == 500
    assert result.error.code == "decryption_failed"


@pytest.mark.asyncio
async def test_stored_base_url_override(make_dispatcher):
    proxy = FakeVendor({"/me": httpx.Response(200), "/current": _weather})
    dispatcher = make_dispatcher()
    # Route everything through one transport; the override changes the host
    dispatcher.transport = proxy.transport
    dispatcher.probe._transport = proxy.transport

    await dispatcher.connect("demo-user", "weatherstack", {"apiKey": "abc123", "baseUrl": "https://proxy.test"})
    result = await dispatcher.execute(
        "weatherstack", "getCurrentWeather", {"query": "Paris"}, StoredCredentials("demo-user")
    )
    assert result.success
    assert [r.url.host for r in proxy.requests] == ["proxy.test", "proxy.test"]


@pytest.mark.asyncio
async def test_span_per_execute(make_dispatcher, vendor):
    class RecordingTracer:
        def __init__(self):
            self.spans = []

        def start_as_current_span(self, name, attributes=None):
            self.spans.append((name, attributes))
            return contextlib.nullcontext()

    vendor.routes["/posts"] = httpx.Response(200, json=[])
    dispatcher = make_dispatcher()
    dispatcher.tracer = RecordingTracer()
    await dispatcher.execute("jsonplaceholder", "getPosts", {}, InlineCredentials(CredentialBundle()))
    assert dispatcher.tracer.spans == [(
        "integration.jsonplaceholder.getPosts",
        {"integration.id": "jsonplaceholder", "integration.action": "getPosts"},
    )]


# ---------------------------------------------------------------------------
# envelopes
# ---------------------------------------------------------------------------

def test_failure_envelopes_without_error_detail():
    action = ActionResult(success=False, integration_id="jsonplaceholder", action="getPosts")
    assert action.to_envelope() == {"success": False, "error": "Action failed"}
    assert action.status_code == 500

    connect = ConnectResult(success=False, integration_id="weatherstack")
    assert connect.to_envelope() == {"success": False, "error": "Connection failed"}
    assert connect.status_code == 500
