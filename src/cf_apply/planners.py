"""Request planners: translate the changes of one entity into units of work.

Planners are pure and synchronous. They validate the change list, decide
whether the entity is created, deleted or updated, and return one lazy
unit of work per remote call. Nothing is sent to the platform until a
unit is run.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from enum import Enum
from functools import partial
from typing import Any

from .change import (
    Change,
    CollectionChanged,
    EntityKind,
    MapChanged,
    ObjectAdded,
    ObjectRemoved,
    ValueChanged,
    describe,
)
from .exceptions import InvariantViolationError, PreconditionError, UnsupportedChangeError
from .models import Application, HealthCheckType, Service
from .operations_protocol import PlatformOperations
from .work import UnitOfWork

logger = logging.getLogger(__name__)

# Manifest fields changed together by a single scale request
SCALE_FIELDS = ("instances", "memory", "disk")


class PlanAction(str, Enum):
    """What happens to an entity as a whole."""

    CREATE = "create"
    DELETE = "delete"
    UPDATE = "update"


def classify_changes(changes: Sequence[Change], entity_type: type) -> PlanAction:
    """Decide whether a change list creates, deletes or updates its entity.

    Args:
        changes: All changes of one entity.
        entity_type: Record type the entity must have (Application, Service).

    Returns:
        CREATE for a lone ObjectAdded, DELETE for a lone ObjectRemoved,
        UPDATE otherwise.

    Raises:
        InvariantViolationError: If an entity is removed more than once,
            added or removed alongside other changes, added or removed
            below its root, or carries a value of the wrong type.
    """
    added = [c for c in changes if isinstance(c, ObjectAdded)]
    removed = [c for c in changes if isinstance(c, ObjectRemoved)]

    if len(removed) > 1:
        raise InvariantViolationError(f"Entity removed {len(removed)} times")
    if removed and len(changes) > 1:
        raise InvariantViolationError("Entity removal mixed with other changes")
    if len(added) > 1 or (added and len(changes) > 1):
        raise InvariantViolationError("Entity creation mixed with other changes")

    for change in added + removed:
        if not change.path.is_entity_root:
            raise InvariantViolationError(f"Entity added or removed below its root: {change.path}")
        if not isinstance(change.affected, entity_type):
            raise InvariantViolationError(
                f"Expected a {entity_type.__name__}, got {type(change.affected).__name__}"
            )

    if added:
        return PlanAction.CREATE
    if removed:
        return PlanAction.DELETE
    return PlanAction.UPDATE


def _is_undeclared(change: Change) -> bool:
    """True when the desired record does not declare the changed setting."""
    if isinstance(change, ValueChanged):
        return change.after is None
    if isinstance(change, CollectionChanged):
        return not change.added and not getattr(change.affected, change.property_name, None)
    return False


def _check_arguments(ops: Any, name: Any, changes: Any) -> None:
    if ops is None:
        raise PreconditionError("Platform operations must not be None")
    if name is None:
        raise PreconditionError("Entity name must not be None")
    if changes is None:
        raise PreconditionError("Changes must not be None")


# ---------------------------------------------------------------------------
# Applications
# ---------------------------------------------------------------------------


def plan_application(
    ops: PlatformOperations,
    name: str,
    changes: Sequence[Change],
) -> list[UnitOfWork]:
    """Plan the remote calls converging one application.

    Args:
        ops: Remote operations handle.
        name: Application name.
        changes: Changes of this application, as grouped by DiffResult.

    Returns:
        Independent units of work; empty when there is nothing to do.

    Raises:
        PreconditionError: If an argument is None.
        InvariantViolationError: If the change list is malformed.
        UnsupportedChangeError: If a field change has no remote operation.
    """
    _check_arguments(ops, name, changes)
    changes = list(changes)
    action = classify_changes(changes, Application)
    kind = EntityKind.APPLICATIONS

    if action is PlanAction.CREATE:
        application = changes[0].affected
        return [
            UnitOfWork(
                kind,
                name,
                "create",
                f"create application {name}",
                partial(ops.create_application, name, application),
            )
        ]
    if action is PlanAction.DELETE:
        return [
            UnitOfWork(
                kind,
                name,
                "delete",
                f"delete application {name}",
                partial(ops.delete_application, name),
            )
        ]
    return _plan_application_update(ops, name, changes)


def _plan_application_update(
    ops: PlatformOperations,
    name: str,
    changes: list[Change],
) -> list[UnitOfWork]:
    kind = EntityKind.APPLICATIONS
    units: list[UnitOfWork] = []
    scale: dict[str, int] = {}

    for change in changes:
        prop = change.property_name

        if isinstance(change, MapChanged) and prop == "environment_variables":
            for entry in change.entries:
                if entry.after is None:
                    units.append(
                        UnitOfWork(
                            kind,
                            name,
                            "unset-env",
                            f"unset environment variable {entry.key} of {name}",
                            partial(ops.unset_environment_variable, name, entry.key),
                        )
                    )
                else:
                    units.append(
                        UnitOfWork(
                            kind,
                            name,
                            "set-env",
                            f"set environment variable {entry.key} of {name}",
                            partial(ops.set_environment_variable, name, entry.key, entry.after),
                        )
                    )

        elif isinstance(change, ValueChanged) and prop in SCALE_FIELDS:
            if change.after is not None:
                scale[prop] = change.after

        elif isinstance(change, ValueChanged) and prop == "health_check_type":
            if change.after is not None:
                health_check = HealthCheckType.parse(change.after)
                units.append(
                    UnitOfWork(
                        kind,
                        name,
                        "health-check",
                        f"set health check of {name} to {health_check.value}",
                        partial(ops.set_health_check, name, health_check),
                    )
                )

        elif isinstance(change, CollectionChanged) and prop == "services":
            for service in change.added:
                units.append(
                    UnitOfWork(
                        kind,
                        name,
                        "bind",
                        f"bind {name} to service {service}",
                        partial(ops.bind_service, name, service),
                    )
                )
            for service in change.removed:
                units.append(
                    UnitOfWork(
                        kind,
                        name,
                        "unbind",
                        f"unbind {name} from service {service}",
                        partial(ops.unbind_service, name, service),
                    )
                )

        elif isinstance(change, ValueChanged) and prop == "name":
            # Config trees key apps by name, so compute_diff never emits this;
            # callers that build changes themselves can request a rename.
            units.append(
                UnitOfWork(
                    kind,
                    name,
                    "rename",
                    f"rename application {change.before} to {change.after}",
                    partial(ops.rename_application, change.before, change.after),
                )
            )

        elif _is_undeclared(change):
            # The platform value is kept
            logger.debug("Leaving undeclared %s unchanged", change.path)

        else:
            raise UnsupportedChangeError(f"Change type is not supported: {describe(change)}")

    if scale:
        settings = ", ".join(f"{k}={v}" for k, v in scale.items())
        units.append(
            UnitOfWork(
                kind,
                name,
                "scale",
                f"scale application {name} ({settings})",
                partial(ops.scale_application, name, **scale),
            )
        )

    return units


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


def plan_service(
    ops: PlatformOperations,
    name: str,
    changes: Sequence[Change],
) -> list[UnitOfWork]:
    """Plan the remote calls converging one service instance.

    Services are only created or deleted. Any field-level change of an
    existing service is rejected rather than dropped.

    Raises:
        PreconditionError: If an argument is None.
        InvariantViolationError: If the change list is malformed.
        UnsupportedChangeError: If the service exists on both sides but differs.
    """
    _check_arguments(ops, name, changes)
    changes = list(changes)
    action = classify_changes(changes, Service)
    kind = EntityKind.SERVICES

    if action is PlanAction.CREATE:
        service = changes[0].affected
        return [
            UnitOfWork(
                kind,
                name,
                "create",
                f"create service {name}",
                partial(ops.create_service, name, service),
            )
        ]
    if action is PlanAction.DELETE:
        return [
            UnitOfWork(
                kind,
                name,
                "delete",
                f"delete service {name}",
                partial(ops.delete_service, name),
            )
        ]
    if changes:
        raise UnsupportedChangeError()
    return []


# ---------------------------------------------------------------------------
# Space developers
# ---------------------------------------------------------------------------


def plan_space_developers(
    ops: PlatformOperations,
    change: CollectionChanged,
) -> list[UnitOfWork]:
    """Plan role assignments and removals for the space developer list.

    Raises:
        PreconditionError: If an argument is None.
        InvariantViolationError: If ``change`` is not a collection change.
    """
    if ops is None:
        raise PreconditionError("Platform operations must not be None")
    if change is None:
        raise PreconditionError("Change must not be None")
    if not isinstance(change, CollectionChanged):
        raise InvariantViolationError(
            f"Expected a CollectionChanged, got {type(change).__name__}"
        )

    kind = EntityKind.SPACE_DEVELOPERS
    units = [
        UnitOfWork(
            kind,
            None,
            "assign",
            f"assign space developer {username}",
            partial(ops.assign_space_developer, username),
        )
        for username in change.added
    ]
    units.extend(
        UnitOfWork(
            kind,
            None,
            "remove",
            f"remove space developer {username}",
            partial(ops.remove_space_developer, username),
        )
        for username in change.removed
    )
    return units
