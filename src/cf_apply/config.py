"""Platform target configuration.

Settings come from CLI options, which fall back to environment variables,
which fall back to the ``target`` block of the configuration document.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace

from .exceptions import ConfigurationError

ENV_API = "CF_API"
ENV_ORG = "CF_ORG"
ENV_SPACE = "CF_SPACE"
ENV_TOKEN = "CF_OAUTH_TOKEN"
ENV_SKIP_SSL_VALIDATION = "CF_SKIP_SSL_VALIDATION"
ENV_DOCKER_PASSWORD = "CF_DOCKER_PASSWORD"

DEFAULT_TIMEOUT = 30.0


def _env_flag(value: str | None) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class PlatformTarget:
    """
    The Cloud Controller endpoint, organization and space to reconcile.

    Attributes:
        api_url: Cloud Controller base URL (e.g. https://api.example.com)
        organization: Organization name
        space: Space name
        token: OAuth bearer token, with or without the "bearer " prefix
        verify_ssl: Verify TLS certificates
        timeout: Per-request timeout in seconds
    """

    api_url: str | None = None
    organization: str | None = None
    space: str | None = None
    token: str | None = None
    verify_ssl: bool = True
    timeout: float = DEFAULT_TIMEOUT

    @classmethod
    def from_env(cls) -> PlatformTarget:
        """Create a target from environment variables."""
        return cls(
            api_url=os.environ.get(ENV_API),
            organization=os.environ.get(ENV_ORG),
            space=os.environ.get(ENV_SPACE),
            token=os.environ.get(ENV_TOKEN),
            verify_ssl=not _env_flag(os.environ.get(ENV_SKIP_SSL_VALIDATION)),
        )

    def with_defaults(
        self,
        api_url: str | None = None,
        organization: str | None = None,
        space: str | None = None,
    ) -> PlatformTarget:
        """Fill unset fields from the given fallbacks."""
        return replace(
            self,
            api_url=self.api_url or api_url,
            organization=self.organization or organization,
            space=self.space or space,
        )

    @property
    def authorization(self) -> str:
        token = (self.token or "").strip()
        if token.lower().startswith("bearer "):
            return token
        return f"bearer {token}"

    def validate(self) -> PlatformTarget:
        """Return self, or raise ConfigurationError naming what is missing."""
        missing = [
            name
            for name, value in (
                ("api", self.api_url),
                ("organization", self.organization),
                ("space", self.space),
                ("token", self.token),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(missing)
        return self
