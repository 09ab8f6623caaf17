"""YAML configuration document parsing and rendering.

Document layout::

    apiVersion: "1.0"
    target:
      endpoint: https://api.example.com
      org: my-org
      space: development
    spec:
      spaceDevelopers:
        - alice
      services:
        db:
          service: postgres
          plan: small
          tags: [sql]
      apps:
        web:
          path: ./web
          manifest:
            buildpack: ruby_buildpack
            instances: 2
            memory: 512
            environmentVariables:
              RACK_ENV: production
            services: [db]
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ManifestError
from .models import Application, ConfigTree, Service

_TOP_LEVEL_KEYS = ("apiVersion", "target", "spec")
_SPEC_KEYS = ("spaceDevelopers", "services", "apps")
_TARGET_KEYS = ("endpoint", "org", "space")


@dataclass(frozen=True)
class TargetDecl:
    """Target block of a configuration document."""

    endpoint: str | None = None
    org: str | None = None
    space: str | None = None

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> TargetDecl:
        _reject_unknown(d, _TARGET_KEYS, "target")
        return cls(endpoint=d.get("endpoint"), org=d.get("org"), space=d.get("space"))

    def to_dict(self) -> dict[str, str]:
        result = {"endpoint": self.endpoint, "org": self.org, "space": self.space}
        return {k: v for k, v in result.items() if v is not None}


@dataclass(frozen=True)
class ConfigDocument:
    """Parsed configuration document: the desired config tree plus its target."""

    config: ConfigTree = field(default_factory=ConfigTree)
    target: TargetDecl = field(default_factory=TargetDecl)
    api_version: str | None = None

    @classmethod
    def from_dict(cls, d: dict[str, Any] | None) -> ConfigDocument:
        if d is None:
            return cls()
        if not isinstance(d, dict):
            raise ManifestError("Configuration document must be a mapping")
        _reject_unknown(d, _TOP_LEVEL_KEYS, "document")

        spec = d.get("spec") or {}
        _reject_unknown(spec, _SPEC_KEYS, "spec")

        try:
            applications = {
                str(name): Application.from_dict(value)
                for name, value in (spec.get("apps") or {}).items()
            }
            services = {
                str(name): Service.from_dict(value)
                for name, value in (spec.get("services") or {}).items()
            }
        except (AttributeError, TypeError, ValueError) as e:
            raise ManifestError(str(e)) from e

        space_developers = spec.get("spaceDevelopers") or []
        if not isinstance(space_developers, list):
            raise ManifestError("'spaceDevelopers' must be a list")

        api_version = d.get("apiVersion")
        return cls(
            config=ConfigTree(
                applications=applications,
                services=services,
                space_developers=[str(u) for u in space_developers],
            ),
            target=TargetDecl.from_dict(d.get("target") or {}),
            api_version=str(api_version) if api_version is not None else None,
        )

    @classmethod
    def from_yaml(cls, yaml_str: str) -> ConfigDocument:
        try:
            data = yaml.safe_load(yaml_str)
        except yaml.YAMLError as e:
            raise ManifestError(f"Invalid YAML: {e}") from e
        return cls.from_dict(data)

    @classmethod
    def from_file(cls, path: str | Path) -> ConfigDocument:
        return cls.from_yaml(Path(path).read_text(encoding="utf-8"))

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.api_version is not None:
            result["apiVersion"] = self.api_version
        target = self.target.to_dict()
        if target:
            result["target"] = target
        spec: dict[str, Any] = {}
        if self.config.space_developers:
            spec["spaceDevelopers"] = list(self.config.space_developers)
        if self.config.services:
            spec["services"] = {
                name: service.to_dict() for name, service in sorted(self.config.services.items())
            }
        if self.config.applications:
            spec["apps"] = {
                name: app.to_dict() for name, app in sorted(self.config.applications.items())
            }
        result["spec"] = spec
        return result

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False, default_flow_style=False)


def load_config(text: str) -> ConfigTree:
    """Parse a YAML configuration document into its desired config tree."""
    return ConfigDocument.from_yaml(text).config


def load_config_file(path: str | Path) -> ConfigTree:
    return ConfigDocument.from_file(path).config


def dump_config(tree: ConfigTree) -> str:
    """Render a config tree as a YAML configuration document."""
    return ConfigDocument(config=tree).to_yaml()


def _reject_unknown(d: Any, known: tuple[str, ...], where: str) -> None:
    if not isinstance(d, dict):
        raise ManifestError(f"'{where}' must be a mapping")
    unknown = sorted(set(d) - set(known))
    if unknown:
        raise ManifestError(f"Unknown keys in {where}: {', '.join(unknown)}")
