"""Permission manager: RBAC + ABAC over a polyhierarchical entity structure.

Provides:
- EntityGraph, Context, Product, Role: the statically declared structure
- PolicyCompiler: access policy declarations → dense decision matrix
- PermissionEvaluator: runtime checks against memberships
- PermissionManager: facade owning one of each
"""

from .adapters import MembershipAdapter, SubjectAdapter
from .config import EngineConfig, LogLevel, load_engine_config_from_env
from .engine import PermissionManager
from .evaluator import Decision, PermissionEvaluator, PolicyResolution
from .exceptions import (
    ConfigurationError,
    CycleError,
    DuplicateEntityError,
    DuplicateRoleError,
    PermissionManagerError,
    StructuralError,
    UnknownEntityError,
)
from .graph import Context, Entity, EntityGraph, Product, Role
from .hierarchy import HierarchyView, Leaf, Relationship
from .logging import (
    EngineLoggerAdapter,
    PermissionLogFormatter,
    get_engine_logger,
    safe_preview,
    setup_logging,
)
from .models import AccessPolicy, Membership, Subject
from .policies import (
    ANY_ROLE,
    CompiledPolicies,
    PolicyCompiler,
    PolicyConfiguration,
    PolicyKeys,
)

__version__ = "0.1.0"

__all__ = [
    "ANY_ROLE",
    "AccessPolicy",
    "CompiledPolicies",
    "ConfigurationError",
    "Context",
    "CycleError",
    "Decision",
    "DuplicateEntityError",
    "DuplicateRoleError",
    "EngineConfig",
    "EngineLoggerAdapter",
    "Entity",
    "EntityGraph",
    "HierarchyView",
    "Leaf",
    "LogLevel",
    "Membership",
    "MembershipAdapter",
    "PermissionEvaluator",
    "PermissionLogFormatter",
    "PermissionManager",
    "PermissionManagerError",
    "PolicyCompiler",
    "PolicyConfiguration",
    "PolicyKeys",
    "PolicyResolution",
    "Product",
    "Relationship",
    "Role",
    "StructuralError",
    "Subject",
    "SubjectAdapter",
    "UnknownEntityError",
    "get_engine_logger",
    "load_engine_config_from_env",
    "safe_preview",
    "setup_logging",
]
