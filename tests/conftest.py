"""Shared fixtures: a fixed vault key, a scripted vendor and a wired dispatcher."""
from __future__ import annotations
from typing import Any

import httpx
import pytest

from adapters import BUILTIN_ADAPTERS
from core.config import DispatchConfig
from core.integrations.dispatcher import ActionDispatcher
from core.integrations.probe import ConnectionProbe
from core.integrations.registry import IntegrationRegistry
from core.integrations.store import FileConnectionStore
from core.integrations.vault import CredentialVault

TEST_KEY = "7f3c9a1e5b2d4f6081a3c5e7092b4d6f8a1c3e5f7092b4d6f8a1c3e5f7092b4d"
OTHER_KEY = "0" * 64


class FakeVendor:
    """httpx.MockTransport handler answering from a (method, path) route table.

    Every request is recorded. Unknown routes answer 404.
    """

    def __init__(self, routes: dict[Any, Any] | None = None):
        self.routes: dict[Any, Any] = dict(routes or {})
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path), self.routes.get(request.url.path))
        if route is None:
            return httpx.Response(404, json={"error": "not found"})
        if callable(route):
            return route(request)
        return route

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]


@pytest.fixture
def vault():
    return CredentialVault(TEST_KEY)


@pytest.fixture
def vendor():
    return FakeVendor({"/me": httpx.Response(200, json={"id": "me"})})


@pytest.fixture
def registry():
    reg = IntegrationRegistry(BUILTIN_ADAPTERS)
    reg.load_all()
    return reg


@pytest.fixture
def file_store(tmp_path):
    return FileConnectionStore(tmp_path / "connections")


@pytest.fixture
def make_dispatcher(registry, vault, file_store, vendor):
    """Build a dispatcher over the fake vendor; retry delays are zero."""

    def _make(**overrides) -> ActionDispatcher:
        dispatch_config = overrides.pop("config", None) or DispatchConfig(
            timeout=overrides.pop("timeout", 5.0),
            deadline=overrides.pop("deadline", 30.0),
            max_retries=overrides.pop("max_retries", 3),
            retry_delay=0.0,
            retry_backoff_max=0.0,
            retry_non_idempotent=overrides.pop("retry_non_idempotent", False),
        )
        transport = vendor.transport
        return ActionDispatcher(
            registry=overrides.pop("registry", registry),
            vault=overrides.pop("vault", vault),
            store=overrides.pop("store", file_store),
            probe=overrides.pop("probe", ConnectionProbe(transport=transport)),
            config=dispatch_config,
            transport=transport,
        )

    return _make
