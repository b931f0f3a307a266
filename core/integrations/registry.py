"""
Integration Registry: explicit adapter registration + lookup.

Adapters are not discovered by scanning the filesystem. A registration
table (see adapters.BUILTIN_ADAPTERS) lists each unit as a factory plus a
descriptor document; load_all() validates and registers every unit:
- units missing a factory or a descriptor are skipped with a warning
- invalid descriptors are skipped with a warning
- duplicate ids: the last loaded unit wins (logged)

Each Registry is an owned object handed to the dispatcher; there is no
process-wide singleton.
"""
from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional
import logging

from core.errors import DescriptorError, IntegrationNotFound
from core.integrations.adapter_base import AdapterFactory
from core.integrations.descriptor import IntegrationDescriptor, load_descriptor

logger = logging.getLogger(__name__)

DescriptorSource = IntegrationDescriptor | dict | str | Path


@dataclass(frozen=True)
class AdapterRegistration:
    """One pluggable unit: executable definition + descriptor document."""
    factory: Optional[AdapterFactory]
    descriptor: Optional[DescriptorSource]
    name: str = ""


@dataclass(frozen=True)
class RegisteredIntegration:
    factory: AdapterFactory
    descriptor: IntegrationDescriptor


class IntegrationRegistry:
    """Central registry for all vendor integrations."""

    def __init__(
        self,
        registrations: Iterable[AdapterRegistration] = (),
        hot_reload: bool = False,
    ):
        self._registrations = list(registrations)
        self.hot_reload = hot_reload
        self._integrations: dict[str, RegisteredIntegration] = {}
        self._loaded = False

    # --- Loading ---

    def load_all(self) -> int:
        """Validate and register every unit of the registration table.

        Returns the number of integrations available afterwards.
        """
        loaded: dict[str, RegisteredIntegration] = {}
        skipped = 0
        for unit in self._registrations:
            label = unit.name or getattr(unit.factory, "__name__", "<unnamed>")
            if unit.factory is None or unit.descriptor is None:
                missing = "factory" if unit.factory is None else "descriptor"
                logger.warning("Skipping integration %s: missing %s", label, missing)
                skipped += 1
                continue
            try:
                descriptor = load_descriptor(unit.descriptor)
            except DescriptorError as exc:
                logger.warning("Skipping integration %s: %s", label, exc.message)
                skipped += 1
                continue
            if descriptor.id in loaded:
                logger.warning("Duplicate integration id %s: last registration wins", descriptor.id)
            loaded[descriptor.id] = RegisteredIntegration(unit.factory, descriptor)

        self._integrations = loaded
        self._loaded = True
        logger.info("Loaded %d integrations (%d skipped)", len(loaded), skipped)
        return len(loaded)

    def reload(self) -> bool:
        """Re-run discovery when hot reload is enabled. Returns whether it ran."""
        if not self.hot_reload:
            logger.debug("Registry reload requested but hot reload is disabled")
            return False
        self.load_all()
        return True

    def register(self, factory: AdapterFactory, descriptor: DescriptorSource) -> IntegrationDescriptor:
        """Register one integration directly. Invalid descriptors raise DescriptorError."""
        parsed = load_descriptor(descriptor)
        if parsed.id in self._integrations:
            logger.warning("Duplicate integration id %s: last registration wins", parsed.id)
        self._integrations[parsed.id] = RegisteredIntegration(factory, parsed)
        self._registrations.append(AdapterRegistration(factory, parsed, name=parsed.id))
        return parsed

    def deregister(self, integration_id: str) -> bool:
        return self._integrations.pop(integration_id, None) is not None

    # --- Lookup ---

    def get(self, integration_id: str) -> tuple[AdapterFactory, IntegrationDescriptor]:
        entry = self._integrations.get(integration_id)
        if entry is None:
            raise IntegrationNotFound(integration_id)
        return entry.factory, entry.descriptor

    def get_descriptor(self, integration_id: str) -> IntegrationDescriptor | None:
        entry = self._integrations.get(integration_id)
        return entry.descriptor if entry else None

    def has(self, integration_id: str) -> bool:
        return integration_id in self._integrations

    def ids(self) -> list[str]:
        return list(self._integrations)

    def list_all(self) -> list[IntegrationDescriptor]:
        return [entry.descriptor for entry in self._integrations.values()]

    def search(self, query: str) -> list[IntegrationDescriptor]:
        q = query.lower().strip()
        if not q:
            return self.list_all()
        return [
            d for d in self.list_all()
            if q in d.id.lower()
            or q in d.display_name.lower()
            or q in d.description.lower()
            or q in d.category.lower()
        ]

    def categories(self) -> dict[str, list[str]]:
        grouped: dict[str, list[str]] = {}
        for d in self.list_all():
            grouped.setdefault(d.category, []).append(d.id)
        return grouped

    def validate(self, integration_id: str) -> list[str]:
        """Return descriptor problems for a registered integration (empty if fine)."""
        descriptor = self.get_descriptor(integration_id)
        if descriptor is None:
            return ["Integration not found"]

        problems = []
        if not descriptor.endpoints:
            problems.append("No endpoints declared")
        seen: set[str] = set()
        for ep in descriptor.endpoints:
            if ep.id in seen:
                problems.append(f"Duplicate endpoint id: {ep.id}")
            seen.add(ep.id)
        if not descriptor.base_url.startswith(("http://", "https://")):
            problems.append("Base URL must be http(s)")
        return problems

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def count(self) -> int:
        return len(self._integrations)
