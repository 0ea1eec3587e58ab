"""Canonical data shapes exchanged with the permission manager.

These are Pydantic models. Field names are snake_case; the camelCase keys of
the canonical wire shape (``contextName``, ``contextKey``, ``roleName``) are
accepted as aliases so adapter output can be passed through unchanged.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Membership(BaseModel):
    """An actor holds ``role_name`` in the context instance ``context_key``.

    ``ancestors`` tells which instance of each ancestor context applies
    to this membership (context name → instance key).
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    context_name: str = Field(alias="contextName")
    context_key: str = Field(alias="contextKey")
    role_name: Optional[str] = Field(default=None, alias="roleName")
    ancestors: dict[str, Optional[str]] = Field(default_factory=dict)


class Subject(BaseModel):
    """The resource instance a permission is checked against."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str
    key: str
    ancestors: dict[str, Optional[str]] = Field(default_factory=dict)


class AccessPolicy(BaseModel):
    """One compiled cell of the decision matrix."""

    model_config = ConfigDict(frozen=True)

    context_name: str
    context_role_name: str
    subject_name: str
    subject_role_name: Optional[str] = None
    action_policies: dict[str, bool] = Field(default_factory=dict)


__all__ = [
    "AccessPolicy",
    "Membership",
    "Subject",
]
