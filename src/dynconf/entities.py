"""Per-kind accessors layered on :class:`~dynconf.store.ConfigStore`.

Each mutating call performs a full load -> mutate -> save cycle. Nothing is
cached between calls and nothing is locked, so two concurrent writers race
and the last one to replace the file(s) wins.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any

from .models import (
    KINDS,
    MIDDLEWARE_TYPES,
    DocumentError,
    Middleware,
    Router,
    Service,
    parse_entity,
)
from .store import ConfigStore

_SINGULAR = {"routers": "Router", "services": "Service", "middlewares": "Middleware"}
_ENTITY_TYPES: dict[str, tuple[type, ...]] = {
    "routers": (Router,),
    "services": (Service,),
    "middlewares": tuple(MIDDLEWARE_TYPES.values()),
}


class EntityNotFoundError(LookupError):
    """Raised when a named router, service or middleware does not exist."""

    def __init__(self, kind: str, name: str) -> None:
        super().__init__(f"{_SINGULAR.get(kind, kind)} '{name}' not found.")
        self.kind = kind
        self.name = name


@dataclass(slots=True)
class EntityAccessor:
    """Get/set/delete entities of one kind (``routers``, ``services`` or ``middlewares``)."""

    store: ConfigStore
    kind: str

    def __post_init__(self) -> None:
        """Validate the entity kind."""
        if self.kind not in KINDS:
            raise ValueError(f"Unsupported entity kind '{self.kind}'.")

    @property
    def label(self) -> str:
        return _SINGULAR[self.kind]

    def get_all(self) -> dict[str, Any]:
        """Return every entity of this kind keyed by name."""
        return dict(self.store.load().section(self.kind))

    def get(self, name: str) -> Any:
        """Return the entity called *name* or raise :class:`EntityNotFoundError`."""
        normalized = _normalize_name(name, self.label)
        section = self.store.load().section(self.kind)
        if normalized not in section:
            raise EntityNotFoundError(self.kind, normalized)
        return section[normalized]

    def save(self, name: str, entity: Any) -> Any:
        """Create or fully replace *name* and return the stored entity."""
        normalized = _normalize_name(name, self.label)
        value = coerce_entity(self.kind, entity, normalized)
        doc = self.store.load()
        doc.section(self.kind)[normalized] = value
        self.store.save(doc)
        return value

    def delete(self, name: str) -> bool:
        """Remove *name*; return ``False`` (without error) when it was absent.

        Storage is only rewritten when something was actually removed.
        """
        normalized = _normalize_name(name, self.label)
        doc = self.store.load()
        if doc.section(self.kind).pop(normalized, None) is None:
            return False
        self.store.save(doc)
        return True


def routers(store: ConfigStore) -> EntityAccessor:
    """Return the router accessor for *store*."""
    return EntityAccessor(store, "routers")


def services(store: ConfigStore) -> EntityAccessor:
    """Return the service accessor for *store*."""
    return EntityAccessor(store, "services")


def middlewares(store: ConfigStore) -> EntityAccessor:
    """Return the middleware accessor for *store*."""
    return EntityAccessor(store, "middlewares")


def create_router_service(
    store: ConfigStore,
    router_name: str,
    router: Router | Mapping[str, Any],
    service_name: str,
    service: Service | Mapping[str, Any],
) -> tuple[Router, Service]:
    """Persist a router and the service it targets in one save.

    The router always points at *service_name*, whatever its payload says.
    """
    normalized_router = _normalize_name(router_name, "Router")
    normalized_service = _normalize_name(service_name, "Service")

    if isinstance(router, Mapping):
        # The payload's own service reference is irrelevant; fill it so parsing
        # does not reject a payload that omits it.
        router = {**router, "service": normalized_service}
    router_value = coerce_entity("routers", router, normalized_router)
    router_value = replace(router_value, service=normalized_service)
    service_value = coerce_entity("services", service, normalized_service)

    doc = store.load()
    doc.services[normalized_service] = service_value
    doc.routers[normalized_router] = router_value
    store.save(doc)
    return router_value, service_value


def coerce_entity(kind: str, entity: Any, name: str) -> Router | Service | Middleware:
    """Accept a model instance or its wire mapping and return the model."""
    if isinstance(entity, Mapping):
        return parse_entity(kind, entity, f"{kind}.{name}")
    if not isinstance(entity, _ENTITY_TYPES[kind]):
        raise DocumentError(f"{kind}.{name}", f"expected a {_SINGULAR[kind].lower()} definition.")
    return entity


def _normalize_name(name: str, label: str) -> str:
    """Return a normalised entity name."""
    normalized = name.strip() if isinstance(name, str) else ""
    if not normalized:
        raise DocumentError(label.lower(), f"{label} name must be a non-empty string.")
    return normalized


__all__ = [
    "EntityAccessor",
    "EntityNotFoundError",
    "coerce_entity",
    "create_router_service",
    "middlewares",
    "routers",
    "services",
]
