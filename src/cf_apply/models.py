"""Config tree models for cf-apply.

A config tree describes the state of one space: its applications, its
managed service instances and the users holding the space developer role.
The same types describe both the desired state (read from a YAML document)
and the live state (fetched from the Cloud Controller).
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any


class HealthCheckType(str, Enum):
    """Health check performed by the platform on application instances."""

    PORT = "port"
    PROCESS = "process"
    HTTP = "http"
    NONE = "none"

    @classmethod
    def parse(cls, value: str | HealthCheckType | None) -> HealthCheckType | None:
        if value is None or isinstance(value, HealthCheckType):
            return value
        return cls(str(value).lower())


# Document key for every manifest field; the YAML layout uses camelCase
_MANIFEST_KEYS: dict[str, str] = {
    "buildpack": "buildpack",
    "command": "command",
    "disk": "disk",
    "docker_image": "dockerImage",
    "docker_username": "dockerUsername",
    "environment_variables": "environmentVariables",
    "health_check_http_endpoint": "healthCheckHttpEndpoint",
    "health_check_type": "healthCheckType",
    "instances": "instances",
    "memory": "memory",
    "no_route": "noRoute",
    "routes": "routes",
    "services": "services",
    "stack": "stack",
    "timeout": "timeout",
}

# Accepted on input only, folded into the routes
_ROUTE_PATH_KEY = "routePath"

_SIZE_PATTERN = re.compile(r"^\s*(\d+)\s*([MG])?B?\s*$", re.IGNORECASE)


def parse_megabytes(value: Any) -> int | None:
    """Convert a manifest size ("512M", "1G", 256) to megabytes."""
    if value is None:
        return None
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    match = _SIZE_PATTERN.match(str(value))
    if match is None:
        raise ValueError(f"Invalid size: {value!r}")
    amount = int(match.group(1))
    if (match.group(2) or "M").upper() == "G":
        amount *= 1024
    return amount


def _integer(value: Any, key: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer, got {value!r}")
    return value


def _flag(value: Any, key: str) -> bool | None:
    """Read a boolean setting; ``False`` is the platform default and reads as undeclared."""
    if value is None:
        return None
    if not isinstance(value, bool):
        raise ValueError(f"{key} must be true or false, got {value!r}")
    return True if value else None


def _join_route_path(routes: Iterable[str], route_path: Any) -> list[str]:
    routes = list(routes)
    if route_path is None:
        return routes
    if not routes:
        raise ValueError(f"{_ROUTE_PATH_KEY} needs at least one route")
    path = "/" + str(route_path).strip("/")
    return [route.rstrip("/") + path for route in routes]


def _unknown_keys(d: Mapping[str, Any], known: Iterable[str]) -> list[str]:
    return sorted(set(d) - set(known))


@dataclass(frozen=True)
class ApplicationManifest:
    """
    Manifest settings of an application.

    Every field is optional; ``None`` means the setting is not declared.
    ``disk`` and ``memory`` are in megabytes. Documents may give them with
    a unit ("512M", "1G").

    A ``routePath`` in a document is appended to every declared route, so
    ``routes`` always holds full ``host.domain/path`` routes as the platform
    reports them.
    """

    buildpack: str | None = None
    command: str | None = None
    disk: int | None = None
    docker_image: str | None = None
    docker_username: str | None = None
    environment_variables: dict[str, str] = field(default_factory=dict)
    health_check_http_endpoint: str | None = None
    health_check_type: HealthCheckType | None = None
    instances: int | None = None
    memory: int | None = None
    no_route: bool | None = None
    routes: list[str] = field(default_factory=list)
    services: list[str] = field(default_factory=list)
    stack: str | None = None
    timeout: int | None = None

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> ApplicationManifest:
        if "randomRoute" in d:
            raise ValueError(
                "randomRoute is not supported: the platform does not report it back. "
                "Declare the routes explicitly"
            )
        unknown = _unknown_keys(d, [*_MANIFEST_KEYS.values(), _ROUTE_PATH_KEY])
        if unknown:
            raise ValueError(f"Unknown manifest keys: {', '.join(unknown)}")
        values = {attr: d.get(key) for attr, key in _MANIFEST_KEYS.items()}
        values["environment_variables"] = {
            str(k): "" if v is None else str(v)
            for k, v in (values["environment_variables"] or {}).items()
        }
        values["health_check_type"] = HealthCheckType.parse(values["health_check_type"])
        values["memory"] = parse_megabytes(values["memory"])
        values["disk"] = parse_megabytes(values["disk"])
        values["instances"] = _integer(values["instances"], "instances")
        values["timeout"] = _integer(values["timeout"], "timeout")
        values["no_route"] = _flag(values["no_route"], "noRoute")
        values["routes"] = _join_route_path(values["routes"] or [], d.get(_ROUTE_PATH_KEY))
        values["services"] = list(values["services"] or [])
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for attr, key in _MANIFEST_KEYS.items():
            value = getattr(self, attr)
            if value is None or value == [] or value == {}:
                continue
            if isinstance(value, HealthCheckType):
                value = value.value
            result[key] = value
        return result


@dataclass(frozen=True)
class Application:
    """An application together with its manifest settings."""

    path: str | None = None
    meta: str | None = None
    manifest: ApplicationManifest = field(default_factory=ApplicationManifest)

    @classmethod
    def from_dict(cls, d: Mapping[str, Any] | None) -> Application:
        d = d or {}
        unknown = _unknown_keys(d, ("path", "meta", "manifest"))
        if unknown:
            raise ValueError(f"Unknown application keys: {', '.join(unknown)}")
        return cls(
            path=d.get("path"),
            meta=d.get("meta"),
            manifest=ApplicationManifest.from_dict(d.get("manifest") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.path is not None:
            result["path"] = self.path
        if self.meta is not None:
            result["meta"] = self.meta
        manifest = self.manifest.to_dict()
        if manifest:
            result["manifest"] = manifest
        return result


@dataclass(frozen=True)
class Service:
    """A managed service instance: offering, plan, tags and parameters."""

    service: str | None = None
    plan: str | None = None
    tags: list[str] = field(default_factory=list)
    parameters: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: Mapping[str, Any] | None) -> Service:
        d = d or {}
        unknown = _unknown_keys(d, ("service", "plan", "tags", "params"))
        if unknown:
            raise ValueError(f"Unknown service keys: {', '.join(unknown)}")
        return cls(
            service=d.get("service"),
            plan=d.get("plan"),
            tags=list(d.get("tags") or []),
            parameters=dict(d.get("params") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.service is not None:
            result["service"] = self.service
        if self.plan is not None:
            result["plan"] = self.plan
        if self.tags:
            result["tags"] = list(self.tags)
        if self.parameters:
            result["params"] = dict(self.parameters)
        return result


@dataclass(frozen=True)
class ConfigTree:
    """Root of a config tree."""

    applications: dict[str, Application] = field(default_factory=dict)
    services: dict[str, Service] = field(default_factory=dict)
    space_developers: list[str] = field(default_factory=list)

    @classmethod
    def for_applications(cls, applications: Mapping[str, Application]) -> ConfigTree:
        """Build a tree holding only applications."""
        return cls(applications=dict(applications))

    @classmethod
    def for_services(cls, services: Mapping[str, Service]) -> ConfigTree:
        """Build a tree holding only services."""
        return cls(services=dict(services))

    @classmethod
    def for_space_developers(cls, space_developers: Iterable[str]) -> ConfigTree:
        """Build a tree holding only the space developer list."""
        return cls(space_developers=list(space_developers))


def field_names(record: Any) -> list[str]:
    """Return the dataclass field names of a record in declaration order."""
    return [f.name for f in fields(record)]
