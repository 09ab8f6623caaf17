"""Units of work and their outcomes.

A unit of work is one remote call that has been planned but not issued.
Running it never raises: failures are captured in the returned
``UnitResult`` so sibling units are unaffected.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from .change import EntityKind
from .exceptions import ApplyError, CfApplyError

logger = logging.getLogger(__name__)

# Plan symbols per action, as printed by the CLI
_SYMBOLS = {
    "create": "+",
    "assign": "+",
    "bind": "+",
    "delete": "-",
    "remove": "-",
    "unbind": "-",
    "unset-env": "-",
}


@dataclass(frozen=True)
class UnitOfWork:
    """
    One planned remote call.

    Attributes:
        kind: Entity kind the call targets
        entity: Entity name (None for the space developer list)
        action: Short operation name (e.g. "create", "scale", "bind")
        description: Human readable summary of the call
        call: Zero-argument factory returning the awaitable remote call
    """

    kind: EntityKind
    entity: str | None
    action: str
    description: str
    call: Callable[[], Awaitable[Any]] = field(repr=False, compare=False)

    @property
    def symbol(self) -> str:
        return _SYMBOLS.get(self.action, "~")

    def __str__(self) -> str:
        return f"{self.symbol} {self.description}"

    async def run(self) -> UnitResult:
        """Issue the remote call and capture its outcome."""
        logger.debug("Running %s", self.description)
        try:
            await self.call()
        except ApplyError as e:
            return UnitResult(unit=self, error=e)
        except Exception as e:
            error = ApplyError(self.kind, self.entity, self.action, e)
            error.__cause__ = e
            return UnitResult(unit=self, error=error)
        logger.info("%s: done", self.description)
        return UnitResult(unit=self)


@dataclass(frozen=True)
class UnitResult:
    """Outcome of one unit of work."""

    unit: UnitOfWork
    error: ApplyError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class PlanningFailure:
    """An entity whose change list could not be planned."""

    kind: EntityKind
    entity: str | None
    error: CfApplyError


@dataclass
class ApplyReport:
    """Result of applying one or more entity kinds."""

    planned: list[UnitOfWork] = field(default_factory=list)
    results: list[UnitResult] = field(default_factory=list)
    planning_failures: list[PlanningFailure] = field(default_factory=list)

    @property
    def succeeded(self) -> list[UnitResult]:
        return [r for r in self.results if r.ok]

    @property
    def failed(self) -> list[UnitResult]:
        return [r for r in self.results if not r.ok]

    @property
    def errors(self) -> list[str]:
        messages = [str(f.error) for f in self.planning_failures]
        messages.extend(str(r.error) for r in self.failed)
        return messages

    @property
    def has_errors(self) -> bool:
        return bool(self.planning_failures) or bool(self.failed)

    def merge(self, other: ApplyReport) -> ApplyReport:
        self.planned.extend(other.planned)
        self.results.extend(other.results)
        self.planning_failures.extend(other.planning_failures)
        return self


async def run_units(units: Iterable[UnitOfWork]) -> list[UnitResult]:
    """Run all units concurrently and wait for every one of them.

    Results are returned in the order the units were given.
    """
    units = list(units)
    if not units:
        return []
    return list(await asyncio.gather(*(unit.run() for unit in units)))
