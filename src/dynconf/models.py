"""Typed model of the dynamic configuration document.

Every type converts from and to the wire shape used in the YAML files
(camelCase keys under an ``http`` envelope). ``to_dict`` omits absent
optional fields and re-emits unrecognised keys verbatim, so a well-formed
mapping survives ``from_dict(...).to_dict()`` unchanged.
"""
from __future__ import annotations

import copy
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, ClassVar

KINDS: tuple[str, ...] = ("routers", "services", "middlewares")
HTTP_KEYS = frozenset({*KINDS, "serversTransports"})


class DocumentError(RuntimeError):
    """Raised when a document or entity does not have the expected shape."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path


@dataclass(frozen=True)
class TLSOptions:
    """Router TLS block when given as a mapping."""

    cert_resolver: str | None = None
    extras: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: object, path: str = "tls") -> TLSOptions:
        mapping = _as_mapping(data, path)
        resolver = mapping.get("certResolver")
        return cls(
            cert_resolver=(
                None if resolver is None else _expect_str(resolver, f"{path}.certResolver")
            ),
            extras=_extras(mapping, {"certResolver"}),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.cert_resolver is not None:
            result["certResolver"] = self.cert_resolver
        result.update(self.extras)
        return result


@dataclass(frozen=True)
class Router:
    """Matches requests with ``rule`` and forwards them to ``service``."""

    entry_points: tuple[str, ...]
    rule: str
    service: str
    tls: bool | TLSOptions | None = None
    middlewares: tuple[str, ...] | None = None
    extras: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: object, path: str = "router") -> Router:
        mapping = _as_mapping(data, path)
        _require(mapping, ("entryPoints", "rule", "service"), path)

        tls_raw = mapping.get("tls")
        tls: bool | TLSOptions | None
        if tls_raw is None or isinstance(tls_raw, bool):
            tls = tls_raw
        else:
            tls = TLSOptions.from_dict(tls_raw, f"{path}.tls")

        middlewares_raw = mapping.get("middlewares")
        return cls(
            entry_points=_expect_str_list(mapping["entryPoints"], f"{path}.entryPoints"),
            rule=_expect_str(mapping["rule"], f"{path}.rule"),
            service=_expect_str(mapping["service"], f"{path}.service"),
            tls=tls,
            middlewares=(
                None
                if middlewares_raw is None
                else _expect_str_list(middlewares_raw, f"{path}.middlewares", allow_empty=True)
            ),
            extras=_extras(mapping, {"entryPoints", "rule", "service", "tls", "middlewares"}),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "entryPoints": list(self.entry_points),
            "rule": self.rule,
            "service": self.service,
        }
        if isinstance(self.tls, TLSOptions):
            result["tls"] = self.tls.to_dict()
        elif self.tls is not None:
            result["tls"] = self.tls
        if self.middlewares is not None:
            result["middlewares"] = list(self.middlewares)
        result.update(self.extras)
        return result


@dataclass(frozen=True)
class Server:
    """A single backend URL."""

    url: str
    extras: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: object, path: str = "server") -> Server:
        mapping = _as_mapping(data, path)
        _require(mapping, ("url",), path)
        return cls(url=_expect_str(mapping["url"], f"{path}.url"), extras=_extras(mapping, {"url"}))

    def to_dict(self) -> dict[str, Any]:
        return {"url": self.url, **self.extras}


@dataclass(frozen=True)
class HealthCheck:
    """Health check settings; durations are kept as opaque strings."""

    path: str | None = None
    interval: str | None = None
    timeout: str | None = None
    extras: Mapping[str, Any] = field(default_factory=dict)

    _FIELDS: ClassVar[tuple[str, ...]] = ("path", "interval", "timeout")

    @classmethod
    def from_dict(cls, data: object, path: str = "healthCheck") -> HealthCheck:
        mapping = _as_mapping(data, path)
        values = {
            key: _expect_str(mapping[key], f"{path}.{key}")
            for key in cls._FIELDS
            if mapping.get(key) is not None
        }
        return cls(**values, extras=_extras(mapping, set(cls._FIELDS)))

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for key in self._FIELDS:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        result.update(self.extras)
        return result


@dataclass(frozen=True)
class LoadBalancer:
    """Server pool of a service."""

    servers: tuple[Server, ...]
    health_check: HealthCheck | None = None
    servers_transport: str | None = None
    extras: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: object, path: str = "loadBalancer") -> LoadBalancer:
        mapping = _as_mapping(data, path)
        _require(mapping, ("servers",), path)
        raw_servers = mapping["servers"]
        if not isinstance(raw_servers, list) or not raw_servers:
            raise DocumentError(f"{path}.servers", "must be a non-empty list.")
        servers = tuple(
            Server.from_dict(item, f"{path}.servers[{index}]")
            for index, item in enumerate(raw_servers)
        )
        health_raw = mapping.get("healthCheck")
        transport_raw = mapping.get("serversTransport")
        return cls(
            servers=servers,
            health_check=(
                None
                if health_raw is None
                else HealthCheck.from_dict(health_raw, f"{path}.healthCheck")
            ),
            servers_transport=(
                None
                if transport_raw is None
                else _expect_str(transport_raw, f"{path}.serversTransport")
            ),
            extras=_extras(mapping, {"servers", "healthCheck", "serversTransport"}),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"servers": [server.to_dict() for server in self.servers]}
        if self.health_check is not None:
            result["healthCheck"] = self.health_check.to_dict()
        if self.servers_transport is not None:
            result["serversTransport"] = self.servers_transport
        result.update(self.extras)
        return result


@dataclass(frozen=True)
class Service:
    """Named backend definition."""

    load_balancer: LoadBalancer
    extras: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: object, path: str = "service") -> Service:
        mapping = _as_mapping(data, path)
        _require(mapping, ("loadBalancer",), path)
        return cls(
            load_balancer=LoadBalancer.from_dict(mapping["loadBalancer"], f"{path}.loadBalancer"),
            extras=_extras(mapping, {"loadBalancer"}),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"loadBalancer": self.load_balancer.to_dict(), **self.extras}


# ----------------------------------------------------------------------
# Middlewares
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class ErrorsMiddleware:
    """Serve an error page from another service for matching statuses."""

    KIND: ClassVar[str] = "errors"

    query: str
    service: str
    status: tuple[str | int, ...]
    extras: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_body(cls, body: Mapping[str, Any], path: str) -> ErrorsMiddleware:
        _require(body, ("query", "service", "status"), path)
        raw_status = body["status"]
        if not isinstance(raw_status, list):
            raise DocumentError(f"{path}.status", "must be a list.")
        # Traefik accepts both "500-599" ranges and bare codes; keep whichever was written.
        status: list[str | int] = []
        for index, item in enumerate(raw_status):
            if isinstance(item, bool) or not isinstance(item, (str, int)):
                raise DocumentError(f"{path}.status[{index}]", "must be a string or integer.")
            status.append(item)
        return cls(
            query=_expect_str(body["query"], f"{path}.query"),
            service=_expect_str(body["service"], f"{path}.service"),
            status=tuple(status),
            extras=_extras(body, {"query", "service", "status"}),
        )

    def to_dict(self) -> dict[str, Any]:
        body = {"query": self.query, "service": self.service, "status": list(self.status)}
        return {self.KIND: {**body, **self.extras}}


@dataclass(frozen=True)
class RateLimitMiddleware:
    """Token-bucket rate limiting."""

    KIND: ClassVar[str] = "rateLimit"

    average: int | float
    burst: int | float
    extras: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_body(cls, body: Mapping[str, Any], path: str) -> RateLimitMiddleware:
        _require(body, ("average", "burst"), path)
        return cls(
            average=_expect_positive_number(body["average"], f"{path}.average"),
            burst=_expect_positive_number(body["burst"], f"{path}.burst"),
            extras=_extras(body, {"average", "burst"}),
        )

    def to_dict(self) -> dict[str, Any]:
        return {self.KIND: {"average": self.average, "burst": self.burst, **self.extras}}


@dataclass(frozen=True)
class HeadersMiddleware:
    """Add custom request and/or response headers."""

    KIND: ClassVar[str] = "headers"

    custom_request_headers: Mapping[str, str] | None = None
    custom_response_headers: Mapping[str, str] | None = None
    extras: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_body(cls, body: Mapping[str, Any], path: str) -> HeadersMiddleware:
        request = body.get("customRequestHeaders")
        response = body.get("customResponseHeaders")
        return cls(
            custom_request_headers=(
                None
                if request is None
                else _expect_str_mapping(request, f"{path}.customRequestHeaders")
            ),
            custom_response_headers=(
                None
                if response is None
                else _expect_str_mapping(response, f"{path}.customResponseHeaders")
            ),
            extras=_extras(body, {"customRequestHeaders", "customResponseHeaders"}),
        )

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {}
        if self.custom_request_headers is not None:
            body["customRequestHeaders"] = dict(self.custom_request_headers)
        if self.custom_response_headers is not None:
            body["customResponseHeaders"] = dict(self.custom_response_headers)
        body.update(self.extras)
        return {self.KIND: body}


@dataclass(frozen=True)
class RedirectRegexMiddleware:
    """Rewrite the request URL and redirect."""

    KIND: ClassVar[str] = "redirectRegex"

    permanent: bool
    regex: str
    replacement: str
    extras: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_body(cls, body: Mapping[str, Any], path: str) -> RedirectRegexMiddleware:
        _require(body, ("permanent", "regex", "replacement"), path)
        permanent = body["permanent"]
        if not isinstance(permanent, bool):
            raise DocumentError(f"{path}.permanent", "must be a boolean.")
        return cls(
            permanent=permanent,
            regex=_expect_str(body["regex"], f"{path}.regex"),
            replacement=_expect_str(body["replacement"], f"{path}.replacement"),
            extras=_extras(body, {"permanent", "regex", "replacement"}),
        )

    def to_dict(self) -> dict[str, Any]:
        body = {"permanent": self.permanent, "regex": self.regex, "replacement": self.replacement}
        return {self.KIND: {**body, **self.extras}}


Middleware = ErrorsMiddleware | RateLimitMiddleware | HeadersMiddleware | RedirectRegexMiddleware

MIDDLEWARE_TYPES: dict[str, type[Middleware]] = {
    cls.KIND: cls
    for cls in (ErrorsMiddleware, RateLimitMiddleware, HeadersMiddleware, RedirectRegexMiddleware)
}


def middleware_from_dict(data: object, path: str = "middleware") -> Middleware:
    """Build the middleware variant named by the single key in *data*."""
    mapping = _as_mapping(data, path)
    unknown = sorted(set(mapping) - set(MIDDLEWARE_TYPES))
    if unknown:
        raise DocumentError(path, f"unsupported middleware type(s): {', '.join(unknown)}.")
    if len(mapping) != 1:
        expected = ", ".join(MIDDLEWARE_TYPES)
        raise DocumentError(path, f"exactly one of {expected} must be set.")
    kind, body = next(iter(mapping.items()))
    return MIDDLEWARE_TYPES[kind].from_body(_as_mapping(body, f"{path}.{kind}"), f"{path}.{kind}")


@dataclass(frozen=True)
class UnmodelledEntity:
    """An entry found on disk that none of the typed models accept.

    Weighted services, ``stripPrefix`` middlewares and the like end up here
    when a file is loaded. The body is re-emitted exactly as read, so saving
    a document never drops entries this package does not understand.
    """

    body: Any
    reason: str = field(default="", compare=False)

    def to_dict(self) -> Any:
        return copy.deepcopy(self.body)


# ----------------------------------------------------------------------
# Document
# ----------------------------------------------------------------------
@dataclass
class DynamicConfig:
    """Root document: the ``http`` section plus any other top-level sections.

    ``http_extras`` holds ``http`` keys other than the three entity sections
    and ``serversTransports``; ``extras`` holds top-level keys other than
    ``http`` (``tcp``, ``udp``, ``tls``...). Both are written back verbatim.
    """

    routers: dict[str, Router | UnmodelledEntity] = field(default_factory=dict)
    services: dict[str, Service | UnmodelledEntity] = field(default_factory=dict)
    middlewares: dict[str, Middleware | UnmodelledEntity] = field(default_factory=dict)
    servers_transports: dict[str, Any] | None = None
    http_extras: dict[str, Any] = field(default_factory=dict)
    extras: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def empty(cls) -> DynamicConfig:
        """Return a document with every primary section present and empty."""
        return cls()

    @classmethod
    def from_dict(
        cls,
        data: object,
        path: str = "document",
        *,
        strict: bool = True,
    ) -> DynamicConfig:
        """Parse a full ``{http: {...}}`` document; ``None`` yields an empty one.

        With ``strict=False`` entries that fail validation are kept as
        :class:`UnmodelledEntity` instead of raising.
        """
        if data is None:
            return cls.empty()
        mapping = _as_mapping(data, path)
        http = parse_http(mapping.get("http"), f"{path}.http")
        sections = {
            kind: parse_section(kind, http.get(kind), f"{path}.http.{kind}", strict=strict)
            for kind in KINDS
        }
        return cls(
            **sections,
            servers_transports=parse_transports(
                http.get("serversTransports"), f"{path}.http.serversTransports"
            ),
            http_extras=http_extras(http),
            extras={key: value for key, value in mapping.items() if key != "http"},
        )

    def to_dict(self) -> dict[str, Any]:
        http: dict[str, Any] = {
            "routers": section_to_dict(self.routers),
            "services": section_to_dict(self.services),
            "middlewares": section_to_dict(self.middlewares),
        }
        if self.servers_transports is not None:
            http["serversTransports"] = dict(self.servers_transports)
        http.update(self.http_extras)
        return {"http": http, **self.extras}

    def section(self, kind: str) -> dict[str, Any]:
        """Return the live mapping for *kind* (``routers``/``services``/``middlewares``)."""
        if kind not in KINDS:
            raise KeyError(kind)
        return getattr(self, kind)

    def unmodelled(self) -> list[tuple[str, str, UnmodelledEntity]]:
        """Return ``(kind, name, entity)`` for every entry kept verbatim."""
        return [
            (kind, name, entity)
            for kind in KINDS
            for name, entity in self.section(kind).items()
            if isinstance(entity, UnmodelledEntity)
        ]


_SECTION_PARSERS: dict[str, Callable[[object, str], Any]] = {
    "routers": Router.from_dict,
    "services": Service.from_dict,
    "middlewares": middleware_from_dict,
}


def parse_http(value: object, path: str = "http") -> dict[str, object]:
    """Validate the ``http`` envelope and return its mapping."""
    if value is None:
        return {}
    return _as_mapping(value, path)


def http_extras(http: Mapping[str, object]) -> dict[str, Any]:
    """Return the ``http`` keys that are neither entity sections nor transports."""
    return {key: value for key, value in http.items() if key not in HTTP_KEYS}


def parse_entity(kind: str, value: object, path: str | None = None) -> Any:
    """Build the entity type for *kind* from its wire mapping."""
    parser = _SECTION_PARSERS[kind]
    return parser(value, path or kind)


def parse_section(
    kind: str,
    value: object,
    path: str | None = None,
    *,
    strict: bool = True,
) -> dict[str, Any]:
    """Parse a name -> entity mapping; ``None`` yields an empty mapping.

    The section itself must be a mapping. With ``strict=False`` an entry
    that does not fit its model is wrapped in :class:`UnmodelledEntity`
    rather than rejected.
    """
    path = path or kind
    if value is None:
        return {}
    mapping = _as_mapping(value, path)
    entities: dict[str, Any] = {}
    for name, item in mapping.items():
        try:
            entities[name] = parse_entity(kind, item, f"{path}.{name}")
        except DocumentError as exc:
            if strict:
                raise
            entities[name] = UnmodelledEntity(body=item, reason=str(exc))
    return entities


def parse_transports(value: object, path: str = "serversTransports") -> dict[str, Any] | None:
    if value is None:
        return None
    return _as_mapping(value, path)


def section_to_dict(section: Mapping[str, Any]) -> dict[str, Any]:
    return {name: entity.to_dict() for name, entity in section.items()}


# ----------------------------------------------------------------------
# Coercion helpers
# ----------------------------------------------------------------------
def _as_mapping(value: object, path: str) -> dict[str, Any]:
    if not isinstance(value, Mapping):
        raise DocumentError(path, f"expected a mapping, got {type(value).__name__}.")
    result: dict[str, Any] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise DocumentError(path, f"keys must be strings, got {key!r}.")
        result[key] = item
    return result


def _require(mapping: Mapping[str, Any], keys: tuple[str, ...], path: str) -> None:
    missing = [key for key in keys if mapping.get(key) is None]
    if missing:
        raise DocumentError(path, f"missing required field(s): {', '.join(missing)}.")


def _extras(mapping: Mapping[str, Any], known: set[str]) -> dict[str, Any]:
    return {key: value for key, value in mapping.items() if key not in known}


def _expect_str(value: object, path: str) -> str:
    if not isinstance(value, str):
        raise DocumentError(path, f"expected a string, got {type(value).__name__}.")
    return value


def _expect_str_list(value: object, path: str, *, allow_empty: bool = False) -> tuple[str, ...]:
    if not isinstance(value, list):
        raise DocumentError(path, f"expected a list, got {type(value).__name__}.")
    if not value and not allow_empty:
        raise DocumentError(path, "must not be empty.")
    return tuple(_expect_str(item, f"{path}[{index}]") for index, item in enumerate(value))


def _expect_str_mapping(value: object, path: str) -> dict[str, str]:
    mapping = _as_mapping(value, path)
    return {key: _expect_str(item, f"{path}.{key}") for key, item in mapping.items()}


def _expect_positive_number(value: object, path: str) -> int | float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DocumentError(path, f"expected a number, got {type(value).__name__}.")
    if value <= 0:
        raise DocumentError(path, f"must be greater than zero, got {value}.")
    return value


__all__ = [
    "DocumentError",
    "DynamicConfig",
    "ErrorsMiddleware",
    "HeadersMiddleware",
    "HealthCheck",
    "KINDS",
    "LoadBalancer",
    "MIDDLEWARE_TYPES",
    "Middleware",
    "RateLimitMiddleware",
    "RedirectRegexMiddleware",
    "Router",
    "Server",
    "Service",
    "TLSOptions",
    "UnmodelledEntity",
    "http_extras",
    "middleware_from_dict",
    "parse_entity",
    "parse_http",
    "parse_section",
    "parse_transports",
    "section_to_dict",
]
