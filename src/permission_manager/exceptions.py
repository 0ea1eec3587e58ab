"""Unified exception hierarchy for the permission manager.

All errors inherit from PermissionManagerError and carry a stable error code.

Setup-time failures are split in two families:
    StructuralError    — the entity graph cannot be built as requested
    ConfigurationError — access policies cannot be compiled as requested

Evaluation never raises; see ``permission_manager.evaluator``.

Usage:
    from permission_manager.exceptions import (
        ConfigurationError,
        DuplicateEntityError,
        StructuralError,
    )
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "PermissionManagerError",
    "StructuralError",
    "DuplicateEntityError",
    "DuplicateRoleError",
    "CycleError",
    "UnknownEntityError",
    "ConfigurationError",
]


# ---- Exception Hierarchy ----------------------------------------------------


class PermissionManagerError(Exception):
    """Base exception for the permission manager.

    Attributes:
        code: Stable error code string (e.g. "DUPLICATE_ENTITY").
        message: Human-readable error description.
        details: Additional context as keyword arguments.
    """

    code: str = "INTERNAL_ERROR"
    message: str = "An internal error occurred"

    def __init__(self, message: str | None = None, code: str | None = None, **kwargs: Any) -> None:
        self.message = message or self.message
        self.code = code or self.code
        self.details = kwargs
        super().__init__(self.message)


class StructuralError(PermissionManagerError):
    """The entity graph cannot be built as requested."""

    code: str = "STRUCTURAL_ERROR"
    message: str = "Invalid entity structure"


class DuplicateEntityError(StructuralError):
    """An entity with the same name is already registered in the graph."""

    code: str = "DUPLICATE_ENTITY"


class DuplicateRoleError(StructuralError):
    """A context declares the same role name twice."""

    code: str = "DUPLICATE_ROLE"


class CycleError(StructuralError):
    """The parent relation contains a cycle."""

    code: str = "CYCLE_DETECTED"


class UnknownEntityError(StructuralError):
    """An entity name or parent is not registered in the graph."""

    code: str = "UNKNOWN_ENTITY"


class ConfigurationError(PermissionManagerError):
    """Access policies cannot be declared or compiled."""

    code: str = "CONFIGURATION_ERROR"
    message: str = "Invalid access policy configuration"
