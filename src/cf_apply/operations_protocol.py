"""Protocol for the remote operations a reconciliation run needs.

The protocol uses Python's typing.Protocol with @runtime_checkable,
enabling duck typing and isinstance() checks at runtime. The Cloud
Controller client in ``cloud_controller.py`` is the production
implementation; tests substitute mocks.
"""

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .models import Application, HealthCheckType, Service


@runtime_checkable
class PlatformOperations(Protocol):
    """
    Remote operations against one targeted space.

    The protocol is divided into:

    - **Lifecycle**: Connection management
    - **Live state**: Fetching applications, services and space developers
    - **Applications**: Create, delete and per-field updates
    - **Services**: Create and delete
    - **Space developers**: Role assignment and removal

    Every method is a suspension point. Implementations raise on failure;
    callers wrap failures per unit of work.
    """

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        """Release connections. Safe to call multiple times."""
        ...

    # -------------------------------------------------------------------------
    # Live state
    # -------------------------------------------------------------------------

    async def get_applications(self) -> "dict[str, Application]":
        """Fetch all applications of the space, keyed by name."""
        ...

    async def get_services(self) -> "dict[str, Service]":
        """Fetch all managed service instances of the space, keyed by name."""
        ...

    async def get_space_developers(self) -> list[str]:
        """Fetch the usernames holding the space developer role."""
        ...

    # -------------------------------------------------------------------------
    # Applications
    # -------------------------------------------------------------------------

    async def create_application(self, name: str, application: "Application") -> None:
        """
        Create an application from its full configuration.

        Args:
            name: Application name
            application: Desired configuration of the application
        """
        ...

    async def delete_application(self, name: str) -> None:
        """Delete an application."""
        ...

    async def rename_application(self, current_name: str, new_name: str) -> None:
        """Rename an application."""
        ...

    async def scale_application(
        self,
        name: str,
        *,
        instances: int | None = None,
        memory: int | None = None,
        disk: int | None = None,
    ) -> None:
        """
        Scale an application.

        Args:
            name: Application name
            instances: New instance count (None leaves it unchanged)
            memory: New memory limit in MB (None leaves it unchanged)
            disk: New disk limit in MB (None leaves it unchanged)
        """
        ...

    async def set_health_check(self, name: str, health_check_type: "HealthCheckType") -> None:
        """Set the health check type of an application."""
        ...

    async def set_environment_variable(self, name: str, variable: str, value: str) -> None:
        """Add or overwrite one environment variable of an application."""
        ...

    async def unset_environment_variable(self, name: str, variable: str) -> None:
        """Remove one environment variable of an application."""
        ...

    async def bind_service(self, application_name: str, service_name: str) -> None:
        """Bind an application to a service instance."""
        ...

    async def unbind_service(self, application_name: str, service_name: str) -> None:
        """Unbind an application from a service instance."""
        ...

    # -------------------------------------------------------------------------
    # Services
    # -------------------------------------------------------------------------

    async def create_service(self, name: str, service: "Service") -> None:
        """Create a managed service instance."""
        ...

    async def delete_service(self, name: str) -> None:
        """Delete a managed service instance."""
        ...

    # -------------------------------------------------------------------------
    # Space developers
    # -------------------------------------------------------------------------

    async def assign_space_developer(self, username: str) -> None:
        """Grant the space developer role to a user."""
        ...

    async def remove_space_developer(self, username: str) -> None:
        """Revoke the space developer role from a user."""
        ...
