"""Applies a desired configuration to the live state of a space.

One reconciliation run per entity kind: fetch the live state, diff it
against the desired state restricted to the same kind, plan every entity,
then run all units of work concurrently. A failing unit is logged and
reported without affecting its siblings; nothing is rolled back.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any

from .change import EntityKind
from .diff_result import DiffResult
from .differ import compute_diff
from .exceptions import CfApplyError, PreconditionError
from .models import Application, ConfigTree, Service
from .operations_protocol import PlatformOperations
from .planners import plan_application, plan_service, plan_space_developers
from .work import ApplyReport, PlanningFailure, UnitOfWork, run_units

logger = logging.getLogger(__name__)

# Order in which apply_all converges the kinds: services exist before
# applications bind to them
APPLY_ORDER = (EntityKind.SPACE_DEVELOPERS, EntityKind.SERVICES, EntityKind.APPLICATIONS)

_LABELS = {
    EntityKind.APPLICATIONS: "applications",
    EntityKind.SERVICES: "services",
    EntityKind.SPACE_DEVELOPERS: "space developers",
}


class Reconciler:
    """
    Converges the live state of a space towards a desired config tree.

    Example:
        async with CloudControllerClient(target) as client:
            reconciler = Reconciler(client)
            report = await reconciler.apply_all(desired_tree)
            for error in report.errors:
                print(error)

    Args:
        ops: Remote operations handle, shared by all units of a run
    """

    def __init__(self, ops: PlatformOperations) -> None:
        if ops is None:
            raise PreconditionError("Platform operations must not be None")
        self._ops = ops

    # -------------------------------------------------------------------------
    # Apply
    # -------------------------------------------------------------------------

    async def apply_applications(
        self,
        desired: Mapping[str, Application],
        *,
        dry_run: bool = False,
    ) -> ApplyReport:
        """Create, delete and update applications to match ``desired``."""
        if desired is None:
            raise PreconditionError("Desired applications must not be None")
        return await self._reconcile(
            EntityKind.APPLICATIONS,
            self._fetch_applications,
            ConfigTree.for_applications(desired),
            dry_run,
        )

    async def apply_services(
        self,
        desired: Mapping[str, Service],
        *,
        dry_run: bool = False,
    ) -> ApplyReport:
        """Create and delete service instances to match ``desired``."""
        if desired is None:
            raise PreconditionError("Desired services must not be None")
        return await self._reconcile(
            EntityKind.SERVICES,
            self._fetch_services,
            ConfigTree.for_services(desired),
            dry_run,
        )

    async def apply_space_developers(
        self,
        desired: Iterable[str],
        *,
        dry_run: bool = False,
    ) -> ApplyReport:
        """Assign and revoke space developer roles to match ``desired``."""
        if desired is None:
            raise PreconditionError("Desired space developers must not be None")
        return await self._reconcile(
            EntityKind.SPACE_DEVELOPERS,
            self._fetch_space_developers,
            ConfigTree.for_space_developers(desired),
            dry_run,
        )

    async def apply_all(
        self,
        desired: ConfigTree,
        kinds: Iterable[EntityKind] | None = None,
        *,
        dry_run: bool = False,
    ) -> ApplyReport:
        """Apply every requested kind of ``desired`` in ``APPLY_ORDER``.

        Args:
            desired: Full desired config tree.
            kinds: Kinds to converge (default: all).
            dry_run: Plan only; no unit of work is run.

        Returns:
            Merged report of all kinds.
        """
        if desired is None:
            raise PreconditionError("Desired config must not be None")
        selected = set(kinds) if kinds is not None else set(APPLY_ORDER)

        report = ApplyReport()
        for kind in APPLY_ORDER:
            if kind not in selected:
                continue
            if kind is EntityKind.SPACE_DEVELOPERS:
                part = await self.apply_space_developers(desired.space_developers, dry_run=dry_run)
            elif kind is EntityKind.SERVICES:
                part = await self.apply_services(desired.services, dry_run=dry_run)
            else:
                part = await self.apply_applications(desired.applications, dry_run=dry_run)
            report.merge(part)
        return report

    # -------------------------------------------------------------------------
    # Live state
    # -------------------------------------------------------------------------

    async def get_live_config(self) -> ConfigTree:
        """Fetch the complete live config tree of the space."""
        return ConfigTree(
            applications=await self._ops.get_applications(),
            services=await self._ops.get_services(),
            space_developers=await self._ops.get_space_developers(),
        )

    async def _fetch_applications(self) -> ConfigTree:
        return ConfigTree.for_applications(await self._ops.get_applications())

    async def _fetch_services(self) -> ConfigTree:
        return ConfigTree.for_services(await self._ops.get_services())

    async def _fetch_space_developers(self) -> ConfigTree:
        return ConfigTree.for_space_developers(await self._ops.get_space_developers())

    # -------------------------------------------------------------------------
    # Reconciliation run
    # -------------------------------------------------------------------------

    async def _reconcile(
        self,
        kind: EntityKind,
        fetch_live: Callable[[], Awaitable[ConfigTree]],
        desired: ConfigTree,
        dry_run: bool,
    ) -> ApplyReport:
        label = _LABELS[kind]

        logger.info("Fetching information about %s...", label)
        live = await fetch_live()
        logger.info("Information fetched.")

        logger.debug("Comparing the %s...", label)
        diff = DiffResult.build(compute_diff(live, desired))
        logger.debug("%s compared.", label.capitalize())

        report = ApplyReport()
        for entity, changes in self._groups(kind, diff):
            try:
                units = self._plan(kind, entity, changes)
            except CfApplyError as e:
                logger.warning("Skipping %s %s: %s", label, entity or "", e)
                report.planning_failures.append(PlanningFailure(kind, entity, e))
                continue
            report.planned.extend(units)

        if not report.planned:
            logger.info("There is nothing to apply for %s", label)
            return report
        if dry_run:
            return report

        logger.info("Applying %d change(s) to %s...", len(report.planned), label)
        report.results = await run_units(report.planned)
        for result in report.failed:
            logger.warning("%s", result.error)
        logger.info(
            "Applied changes to %s: %d succeeded, %d failed",
            label,
            len(report.succeeded),
            len(report.failed),
        )
        return report

    @staticmethod
    def _groups(kind: EntityKind, diff: DiffResult) -> list[tuple[str | None, Any]]:
        if kind is EntityKind.APPLICATIONS:
            return list(diff.application_changes.items())
        if kind is EntityKind.SERVICES:
            return list(diff.service_changes.items())
        if diff.space_developers_change is None:
            return []
        return [(None, diff.space_developers_change)]

    def _plan(self, kind: EntityKind, entity: str | None, changes: Any) -> list[UnitOfWork]:
        if kind is EntityKind.APPLICATIONS:
            return plan_application(self._ops, entity, changes)
        if kind is EntityKind.SERVICES:
            return plan_service(self._ops, entity, changes)
        return plan_space_developers(self._ops, changes)
