"""Exceptions for cf-apply."""

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .change import EntityKind


# ---------------------------------------------------------------------------
# Base Exception
# ---------------------------------------------------------------------------


class CfApplyError(Exception):
    """
    Base exception for all cf-apply errors.

    All exceptions raised by this library inherit from this class,
    allowing callers to catch all library-specific errors with a single
    except clause.
    """

    pass


# ---------------------------------------------------------------------------
# Planning Exceptions
# ---------------------------------------------------------------------------


class PreconditionError(CfApplyError, ValueError):
    """
    Raised when a required argument is missing or invalid.

    Raised before any remote call is issued and never retried.
    """

    pass


class InvariantViolationError(CfApplyError):
    """
    Raised when a change list has a shape no planner recognizes.

    Examples are several removals of the same entity, a removal mixed with
    field-level changes, or an affected value of the wrong entity type.
    Planning for the entity stops before any remote call is issued.
    """

    pass


class UnsupportedChangeError(InvariantViolationError):
    """Raised when a planner has no remote operation for a change."""

    def __init__(self, message: str = "Change type is not supported.") -> None:
        super().__init__(message)


# ---------------------------------------------------------------------------
# Apply Exceptions
# ---------------------------------------------------------------------------


class ApplyError(CfApplyError):
    """
    Raised when a remote operation for one entity failed.

    Attributes:
        kind: Entity kind the operation targeted
        entity: Entity name (None for the space developer list)
        action: Short name of the operation (e.g. "create", "scale")
        cause: The underlying exception
    """

    def __init__(
        self,
        kind: "EntityKind",
        entity: str | None,
        action: str,
        cause: BaseException,
    ) -> None:
        self.kind = kind
        self.entity = entity
        self.action = action
        self.cause = cause
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        target = self.kind.value if self.entity is None else f"{self.kind.value}/{self.entity}"
        return f"Apply failed for {target} ({self.action}): {self.cause}"


# ---------------------------------------------------------------------------
# Platform Exceptions
# ---------------------------------------------------------------------------


class PlatformError(CfApplyError):
    """
    Raised when a Cloud Controller request fails.

    Attributes:
        status_code: HTTP status code (None for transport failures)
        errors: Error entries returned by the Cloud Controller
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        errors: list[dict[str, Any]] | None = None,
    ) -> None:
        self.status_code = status_code
        self.errors = errors or []
        super().__init__(self._format_message(message))

    def _format_message(self, message: str) -> str:
        details = "; ".join(str(e.get("detail", e)) for e in self.errors)
        if self.status_code is not None:
            message = f"{message} (HTTP {self.status_code})"
        if details:
            message = f"{message}: {details}"
        return message


class TargetNotFoundError(PlatformError):
    """Raised when an organization, space or named resource does not exist."""

    def __init__(self, resource_type: str, name: str) -> None:
        self.resource_type = resource_type
        self.name = name
        super().__init__(f"{resource_type} not found: {name}")


# ---------------------------------------------------------------------------
# Configuration Exceptions
# ---------------------------------------------------------------------------


class ManifestError(CfApplyError):
    """Raised when a configuration document cannot be interpreted."""

    pass


class ConfigurationError(CfApplyError):
    """Raised when the platform target is incomplete."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = missing
        super().__init__(f"Missing platform target settings: {', '.join(missing)}")
