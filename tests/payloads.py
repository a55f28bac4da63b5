"""Sample entities and file helpers shared by the test modules."""
from __future__ import annotations

from pathlib import Path

import yaml

ROUTER_A = {
    "entryPoints": ["websecure"],
    "rule": "Host(`a.example.com`)",
    "service": "svc-a",
    "tls": {"certResolver": "letsencrypt"},
    "middlewares": ["rate"],
}

ROUTER_B = {
    "entryPoints": ["web"],
    "rule": "PathPrefix(`/b`)",
    "service": "svc-b",
}

SERVICE_A = {
    "loadBalancer": {
        "servers": [{"url": "http://a:80"}, {"url": "http://a2:80"}],
        "healthCheck": {"path": "/health", "interval": "10s", "timeout": "3s"},
        "serversTransport": "insecure",
    }
}

SERVICE_B = {"loadBalancer": {"servers": [{"url": "http://b:8080"}]}}

MIDDLEWARE_RATE = {"rateLimit": {"average": 100, "burst": 50}}

FULL_DOCUMENT = {
    "http": {
        "routers": {"router-a": ROUTER_A},
        "services": {"svc-a": SERVICE_A},
        "middlewares": {"rate": MIDDLEWARE_RATE},
        "serversTransports": {"insecure": {"insecureSkipVerify": True}},
    }
}


def write_yaml(path: Path, payload: object) -> None:
    """Write *payload* as YAML, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(payload, sort_keys=False), encoding="utf-8")


def read_yaml(path: Path) -> object:
    """Return the parsed YAML content of *path*."""
    return yaml.safe_load(path.read_text(encoding="utf-8"))
