"""Diff engine for config trees.

Compares a live config tree against a desired one and produces a flat
list of change records (see ``change.py``), each tagged with the path to
where it occurred. Comparison is explicit per record type; no reflection
over arbitrary objects is involved.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any, TypeVar

from .change import (
    Change,
    ChangePath,
    ChangeType,
    CollectionChanged,
    EntityKind,
    MapChanged,
    MapEntryChange,
    ObjectAdded,
    ObjectRemoved,
    ValueChanged,
)
from .exceptions import PreconditionError
from .models import Application, ApplicationManifest, ConfigTree, Service, field_names

logger = logging.getLogger(__name__)

T = TypeVar("T")


def compute_diff(live: ConfigTree, desired: ConfigTree) -> list[Change]:
    """Compute the changes that turn ``live`` into ``desired``.

    Args:
        live: Config tree fetched from the platform.
        desired: Config tree read from the configuration document.

    Returns:
        Flat list of changes; empty when both trees are equal. Entities
        are visited in name order, fields in declaration order.

    Raises:
        PreconditionError: If either tree is None.
    """
    if live is None or desired is None:
        raise PreconditionError("Both the live and the desired config tree are required")

    changes: list[Change] = []
    changes.extend(diff_applications(live.applications, desired.applications))
    changes.extend(diff_services(live.services, desired.services))
    changes.extend(diff_space_developers(live.space_developers, desired.space_developers))
    logger.debug("Diff produced %d change(s)", len(changes))
    return changes


def diff_applications(
    live: Mapping[str, Application],
    desired: Mapping[str, Application],
) -> list[Change]:
    """Diff the application sub-trees."""
    return _diff_entities(EntityKind.APPLICATIONS, live, desired, _diff_application)


def diff_services(
    live: Mapping[str, Service],
    desired: Mapping[str, Service],
) -> list[Change]:
    """Diff the service sub-trees."""
    return _diff_entities(EntityKind.SERVICES, live, desired, _diff_service)


def diff_space_developers(live: Iterable[str], desired: Iterable[str]) -> list[Change]:
    """Diff the space developer lists; at most one change results."""
    desired_list = list(desired)
    change = _diff_collection(
        ChangePath(EntityKind.SPACE_DEVELOPERS),
        ConfigTree.for_space_developers(desired_list),
        list(live),
        desired_list,
    )
    return [change] if change is not None else []


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


def _diff_entities(
    kind: EntityKind,
    live: Mapping[str, T],
    desired: Mapping[str, T],
    diff_entity: Callable[[ChangePath, T, T], list[Change]],
) -> list[Change]:
    changes: list[Change] = []
    for name in sorted(set(live) | set(desired)):
        path = ChangePath(kind, name)
        if name not in live:
            changes.append(ObjectAdded(affected=desired[name], path=path))
        elif name not in desired:
            changes.append(ObjectRemoved(affected=live[name], path=path))
        else:
            changes.extend(diff_entity(path, live[name], desired[name]))
    return changes


def _diff_application(path: ChangePath, live: Application, desired: Application) -> list[Change]:
    if live == desired:
        return []
    changes = _diff_fields(path, desired, live, desired, ("path", "meta"))
    changes.extend(_diff_manifest(path.child("manifest"), live.manifest, desired.manifest))
    return changes


def _diff_manifest(
    path: ChangePath,
    live: ApplicationManifest,
    desired: ApplicationManifest,
) -> list[Change]:
    if live == desired:
        return []
    return _diff_fields(path, desired, live, desired, field_names(desired))


def _diff_service(path: ChangePath, live: Service, desired: Service) -> list[Change]:
    if live == desired:
        return []
    return _diff_fields(path, desired, live, desired, field_names(desired))


# ---------------------------------------------------------------------------
# Fields
# ---------------------------------------------------------------------------


def _diff_fields(
    path: ChangePath,
    affected: Any,
    live: Any,
    desired: Any,
    names: Iterable[str],
) -> list[Change]:
    changes: list[Change] = []
    for name in names:
        before = getattr(live, name)
        after = getattr(desired, name)
        if before == after:
            continue
        field_path = path.child(name)
        if isinstance(before, dict) or isinstance(after, dict):
            change: Change | None = _diff_map(field_path, affected, before or {}, after or {})
        elif isinstance(before, list) or isinstance(after, list):
            change = _diff_collection(field_path, affected, before or [], after or [])
        else:
            change = ValueChanged(affected=affected, path=field_path, before=before, after=after)
        if change is not None:
            changes.append(change)
    return changes


def _diff_map(
    path: ChangePath,
    affected: Any,
    live: Mapping[str, Any],
    desired: Mapping[str, Any],
) -> MapChanged | None:
    entries: list[MapEntryChange] = []
    for key in sorted(set(live) | set(desired)):
        if key not in live:
            entries.append(MapEntryChange(key, None, desired[key], ChangeType.ADDED))
        elif key not in desired:
            entries.append(MapEntryChange(key, live[key], None, ChangeType.REMOVED))
        elif live[key] != desired[key]:
            entries.append(MapEntryChange(key, live[key], desired[key], ChangeType.CHANGED))
    if not entries:
        return None
    return MapChanged(affected=affected, path=path, entries=tuple(entries))


def _diff_collection(
    path: ChangePath,
    affected: Any,
    live: list[Any],
    desired: list[Any],
) -> CollectionChanged | None:
    added = _unique(v for v in desired if v not in live)
    removed = _unique(v for v in live if v not in desired)
    if not added and not removed:
        return None
    return CollectionChanged(affected=affected, path=path, added=added, removed=removed)


def _unique(values: Iterable[Any]) -> tuple[Any, ...]:
    seen: list[Any] = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return tuple(seen)
