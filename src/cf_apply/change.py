"""Change records produced by the tree differ.

Each record describes one structural difference between a live and a
desired config tree and carries the typed path to where it occurred.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EntityKind(str, Enum):
    """Top-level sub-trees of a config tree."""

    APPLICATIONS = "applications"
    SERVICES = "services"
    SPACE_DEVELOPERS = "space_developers"


class ChangeType(str, Enum):
    """How a single map entry changed."""

    ADDED = "added"
    REMOVED = "removed"
    CHANGED = "changed"


@dataclass(frozen=True)
class ChangePath:
    """
    Location of a change inside a config tree.

    Attributes:
        kind: Top-level sub-tree the change belongs to
        entity: Application or service name (None for the space developer list)
        fields: Field names below the entity, outermost first
    """

    kind: EntityKind
    entity: str | None = None
    fields: tuple[str, ...] = ()

    @property
    def segments(self) -> list[str]:
        """Flat path from the tree root, e.g. ``["applications", "app1", "manifest"]``."""
        head = [self.kind.value] if self.entity is None else [self.kind.value, self.entity]
        return head + list(self.fields)

    @property
    def is_entity_root(self) -> bool:
        return not self.fields

    @property
    def property_name(self) -> str:
        """Name of the node the change applies to."""
        if self.fields:
            return self.fields[-1]
        return self.entity if self.entity is not None else self.kind.value

    def child(self, name: str) -> ChangePath:
        return ChangePath(self.kind, self.entity, self.fields + (name,))

    def __str__(self) -> str:
        return "/".join(self.segments)


@dataclass(frozen=True)
class Change:
    """
    Base class of all change records.

    ``affected`` is the record the change was detected on: the entity
    itself for added/removed entities, otherwise the desired record
    owning the changed field. Config records are immutable, so the value
    is owned by the change and outlives the tree that produced it.
    """

    affected: Any
    path: ChangePath

    @property
    def property_name(self) -> str:
        return self.path.property_name


@dataclass(frozen=True)
class ObjectAdded(Change):
    """A whole entity exists in the desired tree only."""


@dataclass(frozen=True)
class ObjectRemoved(Change):
    """A whole entity exists in the live tree only."""


@dataclass(frozen=True)
class ValueChanged(Change):
    """A scalar property changed from ``before`` to ``after``."""

    before: Any = None
    after: Any = None


@dataclass(frozen=True)
class CollectionChanged(Change):
    """A list property gained and/or lost elements."""

    added: tuple[Any, ...] = ()
    removed: tuple[Any, ...] = ()


@dataclass(frozen=True)
class MapEntryChange:
    """One differing entry of a mapping property."""

    key: str
    before: Any
    after: Any
    change_type: ChangeType


@dataclass(frozen=True)
class MapChanged(Change):
    """A mapping property has added, removed or changed entries."""

    entries: tuple[MapEntryChange, ...] = field(default_factory=tuple)

    @property
    def added(self) -> list[MapEntryChange]:
        return [e for e in self.entries if e.change_type is ChangeType.ADDED]

    @property
    def removed(self) -> list[MapEntryChange]:
        return [e for e in self.entries if e.change_type is ChangeType.REMOVED]

    @property
    def changed(self) -> list[MapEntryChange]:
        return [e for e in self.entries if e.change_type is ChangeType.CHANGED]


def describe(change: Change) -> str:
    """One-line human readable description of a change."""
    if isinstance(change, ObjectAdded):
        return f"+ {change.path}"
    if isinstance(change, ObjectRemoved):
        return f"- {change.path}"
    if isinstance(change, ValueChanged):
        return f"~ {change.path}: {change.before!r} -> {change.after!r}"
    if isinstance(change, CollectionChanged):
        parts = [f"+{v}" for v in change.added] + [f"-{v}" for v in change.removed]
        return f"~ {change.path}: {', '.join(parts)}"
    if isinstance(change, MapChanged):
        symbols = {ChangeType.ADDED: "+", ChangeType.REMOVED: "-", ChangeType.CHANGED: "~"}
        parts = [f"{symbols[e.change_type]}{e.key}" for e in change.entries]
        return f"~ {change.path}: {', '.join(parts)}"
    return f"? {change.path}"
