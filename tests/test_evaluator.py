"""Tests for runtime permission evaluation."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import pytest

from permission_manager import (
    EngineConfig,
    Membership,
    MembershipAdapter,
    PermissionManager,
    PolicyConfiguration,
    Subject,
    SubjectAdapter,
)

from factories import membership, subject


@pytest.fixture
def org_course() -> PermissionManager:
    """org(admin, staff) → course(staff, student)."""
    manager = PermissionManager("org-course")
    org = manager.context("org", ["admin", "staff"])
    manager.context("course", ["staff", "student"], parents=[org])

    def policies(cfg: PolicyConfiguration) -> None:
        if cfg.subject.name == "course":
            cfg.contexts["org"].admin({"read": True})
            cfg.contexts["course"].staff({"read": True})

    manager.configure(policies)
    return manager


class TestIsAllowed:
    """Tests for single-action checks."""

    def test_ancestor_membership_grants(self, org_course: PermissionManager) -> None:
        """An org admin may read a course of that org."""
        assert org_course.is_allowed(
            [membership("org", "o1", "admin")],
            "read",
            subject("course", "c1", org="o1"),
        )

    def test_undeclared_grant_is_denied(self, org_course: PermissionManager) -> None:
        """A course student was never granted delete."""
        assert not org_course.is_allowed(
            [membership("course", "c1", "student", org="o1")],
            "delete",
            subject("course", "c1", org="o1"),
        )

    def test_direct_membership_grants(self, org_course: PermissionManager) -> None:
        assert org_course.is_allowed(
            [membership("course", "c1", "staff", org="o1")],
            "read",
            subject("course", "c1", org="o1"),
        )

    def test_membership_on_other_instance(self, org_course: PermissionManager) -> None:
        """Staff of c2 may not read c1."""
        assert not org_course.is_allowed(
            [membership("course", "c2", "staff", org="o1")],
            "read",
            subject("course", "c1", org="o1"),
        )

    def test_missing_ancestor_key(self, org_course: PermissionManager) -> None:
        """Without the org key the org membership cannot be resolved."""
        assert not org_course.is_allowed(
            [membership("org", "o1", "admin")],
            "read",
            subject("course", "c1"),
        )
        assert not org_course.is_allowed(
            [membership("org", "o1", "admin")],
            "read",
            subject("course", "c1", org=None),
        )

    def test_ancestor_of_other_instance(self, org_course: PermissionManager) -> None:
        assert not org_course.is_allowed(
            [membership("org", "o2", "admin")],
            "read",
            subject("course", "c1", org="o1"),
        )

    def test_null_role_grants_nothing(self, org_course: PermissionManager) -> None:
        assert not org_course.is_allowed(
            [membership("org", "o1", None)],
            "read",
            subject("course", "c1", org="o1"),
        )

    @pytest.mark.parametrize(
        ("memberships", "action", "subject_"),
        [
            ([], "read", subject("course", "c1", org="o1")),
            ([membership("org", "o1", "admin")], "archive", subject("course", "c1", org="o1")),
            ([membership("org", "o1", "admin")], "read", subject("unknown", "x1", org="o1")),
            ([membership("org", "o1", "admin")], 42, subject("course", "c1", org="o1")),
        ],
        ids=["no-memberships", "undeclared-action", "unknown-subject", "non-string-action"],
    )
    def test_fails_closed(self, org_course: PermissionManager, memberships: list, action: Any, subject_: dict) -> None:
        assert org_course.is_allowed(memberships, action, subject_) is False

    @pytest.mark.parametrize(
        ("memberships", "subject_"),
        [
            ([membership("org", "o1", "admin")], {"name": "course"}),
            ([membership("org", "o1", "admin")], None),
            ([{"contextName": "org"}], subject("course", "c1", org="o1")),
            (42, subject("course", "c1", org="o1")),
        ],
        ids=["subject-without-key", "no-subject", "membership-without-key", "not-iterable"],
    )
    def test_malformed_input_fails_closed(
        self,
        org_course: PermissionManager,
        memberships: Any,
        subject_: Any,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Malformed input is logged and denied, never raised."""
        with caplog.at_level(logging.WARNING, logger="permission_manager"):
            assert org_course.is_allowed(memberships, "read", subject_) is False
            assert org_course.get_actor_policies(memberships, subject_) == {}
        assert any("malformed" in record.getMessage() for record in caplog.records)

    def test_accepts_models(self, org_course: PermissionManager) -> None:
        """Canonical models can be passed directly."""
        assert org_course.is_allowed(
            [Membership(context_name="org", context_key="o1", role_name="admin")],
            "read",
            Subject(name="course", key="c1", ancestors={"org": "o1"}),
        )


class TestAncestorResolution:
    """Tests for the nearest-first ancestor walk."""

    @pytest.fixture
    def manager(self) -> PermissionManager:
        """organization → division → team → project."""
        manager = PermissionManager("projects")
        organization = manager.context("organization", ["admin", "member"])
        division = manager.context("division", ["admin", "member"], parents=[organization])
        team = manager.context("team", ["admin", "member"], parents=[division])
        manager.context("project", ["admin", "member"], parents=[team])

        def policies(cfg: PolicyConfiguration) -> None:
            if cfg.subject.name == "project":
                cfg.contexts["organization"].admin(read=1, delete=1)
                cfg.contexts["division"].member(read=0)
                cfg.contexts["team"].member(read=0)
                cfg.contexts["project"].member(read=1)

        manager.configure(policies)
        return manager

    def test_key_discovered_through_nearer_membership(self, manager: PermissionManager) -> None:
        """The organization key comes from the team membership's ancestors."""
        memberships = [
            membership("team", "t1", "member", division="d1", organization="o1"),
            membership("organization", "o1", "admin"),
        ]
        assert manager.is_allowed(memberships, "delete", subject("project", "p1", team="t1"))

        resolution = manager.explain(memberships, "delete", subject("project", "p1", team="t1")).resolution
        assert resolution is not None
        assert [m.context_name for m in resolution.ancestor_memberships] == ["team", "organization"]

    def test_subject_keys_win_over_discovered_keys(self, manager: PermissionManager) -> None:
        memberships = [
            membership("team", "t1", "member", organization="o2"),
            membership("organization", "o1", "admin"),
        ]
        assert manager.is_allowed(memberships, "delete", subject("project", "p1", team="t1", organization="o1"))

    def test_nearest_membership_key_wins(self, manager: PermissionManager) -> None:
        """A farther membership never overwrites a key found by a nearer one."""
        memberships = [
            membership("team", "t1", "member", division="d1", organization="o1"),
            membership("division", "d1", "member", organization="o2"),
            membership("organization", "o2", "admin"),
        ]
        decision = manager.explain(memberships, "delete", subject("project", "p1", team="t1"))

        assert decision.allowed is False
        assert decision.resolution is not None
        assert [m.context_name for m in decision.resolution.ancestor_memberships] == ["team", "division"]

        memberships.append(membership("organization", "o1", "admin"))
        assert manager.is_allowed(memberships, "delete", subject("project", "p1", team="t1"))

    def test_access_keys_use_direct_role(self, manager: PermissionManager) -> None:
        """Ancestor keys carry the actor's role on the subject itself."""
        memberships = [
            membership("project", "p1", "member", team="t1"),
            membership("team", "t1", "member"),
        ]
        decision = manager.explain(memberships, "read", subject("project", "p1", team="t1"))

        assert decision.allowed
        assert decision.resolution is not None
        assert decision.resolution.direct_membership is not None
        assert decision.resolution.access_policy_keys == {
            "project-member-project-member",
            "team-member-project-member",
        }
        assert decision.granting_keys == {"project-member-project-member"}
        assert decision.action_policy_key == "project-read"

    def test_later_duplicate_membership_replaces_earlier(self, manager: PermissionManager) -> None:
        """Memberships are grouped by (context, key); the last one is kept."""
        memberships = [
            membership("organization", "o1", "admin"),
            membership("organization", "o1", "member"),
        ]
        assert not manager.is_allowed(memberships, "delete", subject("project", "p1", organization="o1"))


class TestGetActorPolicies:
    """Tests for the full action map of one subject."""

    def test_school_staff_on_course(self, school: PermissionManager) -> None:
        """Direct actions are dense; controller actions are sparse."""
        memberships = [
            membership("organization", "o1", "staff"),
            membership("faculty", "f1", "staff"),
            membership("course", "c1", "staff", organization="o1"),
        ]
        policies = school.get_actor_policies(memberships, subject("course", "c1", organization="o1"))

        assert policies == {
            "create": False,
            "read": True,
            "update": True,
            "delete": False,
            "invite": True,
            "list": True,
            "item.create": True,
            "item.read": True,
            "item.list": True,
            "comment.create": True,
            "comment.read": True,
            "comment.list": True,
        }
        assert school.is_allowed(memberships, "read", subject("course", "c1", organization="o1"))

    def test_controller_entries_need_a_grant(self, school: PermissionManager) -> None:
        """A student has no item grants, so no controller entries appear."""
        policies = school.get_actor_policies(
            [membership("course", "c1", "student", organization="o1")],
            subject("course", "c1", organization="o1"),
        )
        assert policies["read"] is True
        assert policies["update"] is False
        assert not any("." in key for key in policies)

    def test_organization_admin_on_faculty(self, school: PermissionManager) -> None:
        policies = school.get_actor_policies(
            [membership("organization", "o1", "admin")],
            subject("faculty", "f1", organization="o1"),
        )
        actions = ("create", "read", "update", "delete", "invite", "list")
        assert all(policies[action] for action in actions)
        # faculty gates course; item and comment are gated by course.
        assert all(policies[f"course.{action}"] for action in actions)
        assert not any(key.startswith(("item.", "comment.")) for key in policies)

    def test_unknown_subject(self, school: PermissionManager) -> None:
        """Unknown subjects get every declared action, all denied."""
        policies = school.get_actor_policies([membership("organization", "o1", "admin")], subject("unknown", "x"))
        assert set(policies) == {"create", "read", "update", "delete", "invite", "list"}
        assert not any(policies.values())

    def test_consistent_with_is_allowed(self, school: PermissionManager) -> None:
        memberships = [membership("course", "c1", "staff", faculty="f1", organization="o1")]
        course = subject("course", "c1", faculty="f1", organization="o1")
        policies = school.get_actor_policies(memberships, course)
        for action in ("create", "read", "update", "delete", "invite", "list"):
            assert policies[action] == school.is_allowed(memberships, action, course)


class TestAdapters:
    """Tests for application record adapters."""

    class RecordMembershipAdapter(MembershipAdapter):
        def adapt(self, raw: Any) -> Membership:
            return Membership(
                context_name=raw["type"],
                context_key=raw["id"],
                role_name=raw["role"],
                ancestors=raw.get("parents") or {},
            )

    class RecordSubjectAdapter(SubjectAdapter):
        def adapt(self, raw: Any) -> Subject:
            return Subject(name=raw["entity"], key=raw["id"], ancestors={"org": raw["org_id"]})

    def test_adapters_transform_input(self, org_course: PermissionManager) -> None:
        org_course.use_membership_adapter(self.RecordMembershipAdapter())
        org_course.use_subject_adapter(self.RecordSubjectAdapter())

        assert org_course.is_allowed(
            [{"type": "org", "id": "o1", "role": "admin"}],
            "read",
            {"entity": "course", "id": "c1", "org_id": "o1"},
        )
        assert org_course.get_actor_policies(
            [{"type": "org", "id": "o1", "role": "admin"}],
            {"entity": "course", "id": "c1", "org_id": "o1"},
        ) == {"read": True}

    def test_replacing_and_removing_adapters(self, org_course: PermissionManager) -> None:
        org_course.use_subject_adapter(self.RecordSubjectAdapter())
        org_course.use_subject_adapter(None)
        assert org_course.is_allowed(
            [membership("org", "o1", "admin")],
            "read",
            subject("course", "c1", org="o1"),
        )

    def test_adapter_failure_fails_closed(
        self, org_course: PermissionManager, caplog: pytest.LogCaptureFixture
    ) -> None:
        """An adapter raising on an unexpected record denies instead of raising."""
        org_course.use_membership_adapter(self.RecordMembershipAdapter())
        with caplog.at_level(logging.WARNING, logger="permission_manager"):
            assert not org_course.is_allowed(
                [membership("org", "o1", "admin")],
                "read",
                subject("course", "c1", org="o1"),
            )
        assert any("KeyError" in record.getMessage() for record in caplog.records)


class TestConcurrentEvaluation:
    """Tests for concurrent readers and snapshot publication."""

    def test_parallel_checks(self, school: PermissionManager) -> None:
        memberships = [membership("course", "c1", "staff", organization="o1")]
        course = subject("course", "c1", organization="o1")

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: school.is_allowed(memberships, "update", course), range(200)))

        assert all(results)

    def test_reconfigure_publishes_new_snapshot(self, org_course: PermissionManager) -> None:
        memberships = [membership("org", "o1", "admin")]
        course = subject("course", "c1", org="o1")
        assert org_course.is_allowed(memberships, "read", course)

        org_course.configure(lambda cfg: None)

        assert not org_course.is_allowed(memberships, "read", course)
        assert org_course.get_actor_policies(memberships, course) == {}


class TestDecisionLogging:
    """Tests for per-decision debug logging."""

    def test_decisions_logged_when_enabled(self, caplog: pytest.LogCaptureFixture) -> None:
        manager = PermissionManager(config=EngineConfig(name="audited", log_decisions=True))
        org = manager.context("org", ["admin"])
        manager.product("report", parents=[org])
        manager.configure(lambda cfg: cfg.contexts["org"].admin(read=1) if cfg.subject.name == "report" else None)

        with caplog.at_level(logging.DEBUG, logger="permission_manager"):
            assert manager.is_allowed([membership("org", "o1", "admin")], "read", subject("report", "r1", org="o1"))

        records = [record for record in caplog.records if record.getMessage().startswith("Allowed")]
        assert len(records) == 1
        assert records[0].engine == "audited"
        assert records[0].subject == "report"

    def test_decisions_not_logged_by_default(
        self, org_course: PermissionManager, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.DEBUG, logger="permission_manager"):
            org_course.is_allowed([membership("org", "o1", "admin")], "read", subject("course", "c1", org="o1"))
        assert not any(record.getMessage().startswith(("Allowed", "Denied")) for record in caplog.records)
