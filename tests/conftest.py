"""Shared fixtures: the school structure used across evaluator and engine tests."""

from __future__ import annotations

import pytest

from permission_manager import PermissionManager, PolicyConfiguration

ROLES = ["admin", "staff", "student"]


def school_policies(cfg: PolicyConfiguration) -> None:
    organization = cfg.contexts["organization"]
    faculty = cfg.contexts["faculty"]
    course = cfg.contexts["course"]

    if cfg.subject.name == "organization":
        organization.admin({"create": 0, "read": 1, "update": 1, "delete": 0, "invite": 1, "list": 1})
        organization.staff({"create": 0, "read": 1, "update": 0, "delete": 0, "invite": 1, "list": 1})
        organization.student({"create": 0, "read": 1, "update": 0, "delete": 0, "invite": 0, "list": 1})
    elif cfg.subject.name == "faculty":
        organization.admin({"create": 1, "read": 1, "update": 1, "delete": 1, "invite": 1, "list": 1})
        faculty.admin({"create": 0, "read": 1, "update": 1, "delete": 0, "invite": 1, "list": 1})
        faculty.staff({"create": 0, "read": 1, "update": 0, "delete": 0, "invite": 1, "list": 1})
        faculty.student({"create": 0, "read": 1, "update": 0, "delete": 0, "invite": 0, "list": 1})
    elif cfg.subject.name == "course":
        organization.admin({"create": 1, "read": 1, "update": 1, "delete": 1, "invite": 1, "list": 1})
        course.staff({"create": 0, "read": 1, "update": 1, "delete": 0, "invite": 1, "list": 1})
        course.student({"create": 0, "read": 1, "update": 0, "delete": 0, "invite": 0, "list": 1})
    elif cfg.subject.name == "item":
        organization.admin({"create": 1, "read": 1, "update": 1, "delete": 1, "invite": 0, "list": 1})
        course.staff({"create": 1, "read": 1, "update": 0, "delete": 0, "invite": 0, "list": 1})
    elif cfg.subject.name == "comment":
        organization.admin({"create": 1, "read": 1, "update": 1, "delete": 1, "invite": 0, "list": 1})
        course.staff({"create": 1, "read": 1, "update": 0, "delete": 0, "invite": 0, "list": 1})


@pytest.fixture
def school() -> PermissionManager:
    """organization → faculty → course → item → comment, configured."""
    manager = PermissionManager("school")
    organization = manager.context("organization", ROLES)
    faculty = manager.context("faculty", ROLES, parents=[organization])
    course = manager.context("course", ROLES, parents=[faculty])
    item = manager.product("item", parents=[course])
    manager.product("comment", parents=[item])
    manager.configure(school_policies)
    return manager
