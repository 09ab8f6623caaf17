"""Grouping of a flat change list by entity kind and entity name."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from .change import Change, CollectionChanged, EntityKind
from .exceptions import InvariantViolationError, PreconditionError


@dataclass(frozen=True)
class DiffResult:
    """
    Read-only view over the changes of one diff.

    Every change of the input belongs to exactly one group. Within a group
    the input order is preserved.

    Attributes:
        application_changes: Application name -> changes of that application
        service_changes: Service name -> changes of that service
        space_developers_change: The space developer list change, if any
    """

    application_changes: dict[str, list[Change]] = field(default_factory=dict)
    service_changes: dict[str, list[Change]] = field(default_factory=dict)
    space_developers_change: CollectionChanged | None = None

    @classmethod
    def build(cls, changes: Iterable[Change]) -> DiffResult:
        """Partition ``changes`` by the kind and entity of their paths.

        Raises:
            PreconditionError: If ``changes`` is None.
            InvariantViolationError: If a change cannot be assigned to a
                group, or the space developer list changed more than once.
        """
        if changes is None:
            raise PreconditionError("changes must not be None")

        applications: dict[str, list[Change]] = {}
        services: dict[str, list[Change]] = {}
        space_developers: CollectionChanged | None = None

        for change in changes:
            path = change.path
            if path.kind is EntityKind.SPACE_DEVELOPERS:
                if not isinstance(change, CollectionChanged):
                    raise InvariantViolationError(
                        f"Space developers can only change as a collection, got {type(change).__name__}"
                    )
                if space_developers is not None:
                    raise InvariantViolationError("More than one space developers change")
                space_developers = change
            elif path.entity is None:
                raise InvariantViolationError(f"Change at {path} does not name an entity")
            elif path.kind is EntityKind.APPLICATIONS:
                applications.setdefault(path.entity, []).append(change)
            else:
                services.setdefault(path.entity, []).append(change)

        return cls(
            application_changes=applications,
            service_changes=services,
            space_developers_change=space_developers,
        )

    @property
    def is_empty(self) -> bool:
        return (
            not self.application_changes
            and not self.service_changes
            and self.space_developers_change is None
        )

    def all_changes(self) -> list[Change]:
        """Flatten the groups back into one list."""
        result: list[Change] = []
        for changes in self.application_changes.values():
            result.extend(changes)
        for changes in self.service_changes.values():
            result.extend(changes)
        if self.space_developers_change is not None:
            result.append(self.space_developers_change)
        return result
