"""
cf-apply: Declarative configuration for Cloud Foundry spaces.

Compares the desired state of a space (applications, service instances
and space developers) with its live state and issues the remote calls
needed to converge the two.

Example:
    from cf_apply import CloudControllerClient, PlatformTarget, Reconciler, load_config_file

    desired = load_config_file("space.yml")
    async with CloudControllerClient(PlatformTarget.from_env()) as client:
        report = await Reconciler(client).apply_all(desired)
"""

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
from .cloud_controller import CloudControllerClient
from .config import PlatformTarget
from .diff_result import DiffResult
from .differ import compute_diff
from .exceptions import (
    ApplyError,
    CfApplyError,
    ConfigurationError,
    InvariantViolationError,
    ManifestError,
    PlatformError,
    PreconditionError,
    TargetNotFoundError,
    UnsupportedChangeError,
)
from .manifest import ConfigDocument, dump_config, load_config, load_config_file
from .models import Application, ApplicationManifest, ConfigTree, HealthCheckType, Service
from .operations_protocol import PlatformOperations
from .planners import plan_application, plan_service, plan_space_developers
from .reconciler import Reconciler
from .work import ApplyReport, UnitOfWork, UnitResult

__version__ = "0.1.0"

__all__ = [
    # Version
    "__version__",
    # Main classes
    "Reconciler",
    "CloudControllerClient",
    "PlatformOperations",
    "PlatformTarget",
    # Models
    "Application",
    "ApplicationManifest",
    "ConfigTree",
    "HealthCheckType",
    "Service",
    # Documents
    "ConfigDocument",
    "load_config",
    "load_config_file",
    "dump_config",
    # Changes
    "Change",
    "ChangePath",
    "ChangeType",
    "EntityKind",
    "ObjectAdded",
    "ObjectRemoved",
    "ValueChanged",
    "CollectionChanged",
    "MapChanged",
    "MapEntryChange",
    "DiffResult",
    "compute_diff",
    # Planning
    "plan_application",
    "plan_service",
    "plan_space_developers",
    "UnitOfWork",
    "UnitResult",
    "ApplyReport",
    # Exceptions
    "CfApplyError",
    "PreconditionError",
    "InvariantViolationError",
    "UnsupportedChangeError",
    "ApplyError",
    "PlatformError",
    "TargetNotFoundError",
    "ManifestError",
    "ConfigurationError",
]
