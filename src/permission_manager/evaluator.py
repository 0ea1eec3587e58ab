"""Runtime permission evaluation.

Given the memberships an actor holds and a subject (resource instance), the
evaluator resolves which memberships apply along the subject's ancestor path
and answers from the compiled allowance index:

- ``is_allowed()`` — may the actor perform one action on the subject?
- ``get_actor_policies()`` — every action the actor may perform on the subject,
  plus ``"{controller}.{action}"`` entries for entities the subject gates.

Evaluation is read-only and never raises: unknown subjects, missing
memberships, unresolvable ancestor keys, undeclared actions and malformed
input all fail closed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from .adapters import MembershipAdapter, SubjectAdapter
from .config import EngineConfig
from .graph import EntityGraph
from .logging import get_engine_logger, safe_preview
from .models import Membership, Subject
from .policies import CompiledPolicies, PolicyCompiler, PolicyKeys


@dataclass(frozen=True)
class PolicyResolution:
    """Memberships and policy keys that apply to one subject.

    Attributes:
        subject: The normalized subject.
        direct_membership: Membership held on the subject instance itself.
        ancestor_memberships: Memberships on ancestor instances, nearest first.
        access_policy_keys: Keys checked against ``{subject}-{action}`` allowance.
        controller_access_policy_keys: Keys checked against the allowance of
            entities the subject gates.
    """

    subject: Subject
    direct_membership: Optional[Membership] = None
    ancestor_memberships: tuple[Membership, ...] = ()
    access_policy_keys: frozenset[str] = field(default_factory=frozenset)
    controller_access_policy_keys: frozenset[str] = field(default_factory=frozenset)

    @property
    def memberships(self) -> tuple[Membership, ...]:
        if self.direct_membership is None:
            return self.ancestor_memberships
        return (self.direct_membership, *self.ancestor_memberships)


@dataclass(frozen=True)
class Decision:
    """Result of :meth:`PermissionEvaluator.explain`."""

    allowed: bool
    action: str
    action_policy_key: str
    resolution: Optional[PolicyResolution] = None
    granting_keys: frozenset[str] = field(default_factory=frozenset)


class PermissionEvaluator:
    """Answers permission queries from a compiled policy snapshot.

    Safe for concurrent use once setup is complete: every call reads the
    compiler's published snapshot exactly once and mutates nothing shared.
    """

    def __init__(
        self,
        graph: EntityGraph,
        compiler: PolicyCompiler,
        config: Optional[EngineConfig] = None,
    ) -> None:
        self.graph = graph
        self.compiler = compiler
        self.config = config or compiler.config
        self.logger = get_engine_logger(__name__, engine=self.config.name)
        self.membership_adapter: Optional[MembershipAdapter] = None
        self.subject_adapter: Optional[SubjectAdapter] = None

    # ── Adapters ────────────────────────────────────────

    def use_membership_adapter(self, adapter: Optional[MembershipAdapter]) -> None:
        """Install (or with ``None``, remove) the membership adapter."""
        self.membership_adapter = adapter

    def use_subject_adapter(self, adapter: Optional[SubjectAdapter]) -> None:
        """Install (or with ``None``, remove) the subject adapter."""
        self.subject_adapter = adapter

    # ── Queries ─────────────────────────────────────────

    def is_allowed(self, memberships: Iterable[Any], action: str, subject: Any) -> bool:
        """Check whether the memberships grant ``action`` on ``subject``.

        Example::

            evaluator.is_allowed(
                [{"contextName": "organization", "contextKey": "o1", "roleName": "admin", "ancestors": {}}],
                "read",
                {"name": "course", "key": "c1", "ancestors": {"organization": "o1"}},
            )  # True when organization.admin may read courses
        """
        return self.explain(memberships, action, subject).allowed

    def explain(self, memberships: Iterable[Any], action: str, subject: Any) -> Decision:
        """Like :meth:`is_allowed`, but return the resolution behind the answer."""
        compiled = self.compiler.compiled
        resolution = self.resolve(memberships, subject)
        if resolution is None or not isinstance(action, str):
            return Decision(allowed=False, action=str(action), action_policy_key="")

        action_policy_key = PolicyKeys.action(resolution.subject.name, action)
        granting = compiled.allowance.get(action_policy_key, frozenset()) & resolution.access_policy_keys
        decision = Decision(
            allowed=bool(granting),
            action=action,
            action_policy_key=action_policy_key,
            resolution=resolution,
            granting_keys=granting,
        )
        if self.config.log_decisions:
            self.logger.debug(
                "%s %s on %s (keys: %s)",
                "Allowed" if decision.allowed else "Denied",
                action,
                resolution.subject.key,
                sorted(resolution.access_policy_keys),
                subject=resolution.subject.name,
            )
        return decision

    def get_actor_policies(self, memberships: Iterable[Any], subject: Any) -> dict[str, bool]:
        """Map every declared action to whether the memberships grant it on ``subject``.

        Direct actions are always present (``True``/``False``). Actions on
        entities the subject gates appear as ``"{controller}.{action}": True``
        only when granted.
        """
        compiled = self.compiler.compiled
        resolution = self.resolve(memberships, subject)
        if resolution is None:
            return {}
        return self._actor_policies(compiled, resolution)

    def resolve(self, memberships: Iterable[Any], subject: Any) -> Optional[PolicyResolution]:
        """Normalize input and resolve the applicable memberships.

        Returns ``None`` if the input cannot be normalized.
        """
        normalized = self._normalize(memberships, subject)
        if normalized is None:
            return None
        adapted_memberships, adapted_subject = normalized

        grouped: dict[tuple[str, str], Membership] = {}
        direct: Optional[Membership] = None
        for membership in adapted_memberships:
            grouped[(membership.context_name, membership.context_key)] = membership
            if membership.context_name == adapted_subject.name and membership.context_key == adapted_subject.key:
                direct = membership

        entity = self.graph.get(adapted_subject.name)
        chain: list[Membership] = []
        known_keys: dict[str, str] = {}
        for ancestor in entity.desc_sorted_ancestors if entity else ():
            if not ancestor.is_context:
                continue
            ancestor_key = adapted_subject.ancestors.get(ancestor.name) or known_keys.get(ancestor.name)
            if not ancestor_key:
                continue
            membership = grouped.get((ancestor.name, ancestor_key))
            if membership is None:
                continue
            chain.append(membership)
            # Nearer memberships win: never overwrite a key already known.
            for name, key in membership.ancestors.items():
                if key and not known_keys.get(name):
                    known_keys[name] = key

        held = ([direct] if direct else []) + chain
        subject_role = direct.role_name if direct else None
        access_keys = frozenset(
            PolicyKeys.access(m.context_name, m.role_name, adapted_subject.name, subject_role) for m in held
        )
        controller_keys = frozenset(
            PolicyKeys.access(m.context_name, m.role_name, controller.name, None)
            for controller in (entity.controllers if entity else ())
            for m in held
        )
        return PolicyResolution(
            subject=adapted_subject,
            direct_membership=direct,
            ancestor_memberships=tuple(chain),
            access_policy_keys=access_keys,
            controller_access_policy_keys=controller_keys,
        )

    def _actor_policies(self, compiled: CompiledPolicies, resolution: PolicyResolution) -> dict[str, bool]:
        subject_name = resolution.subject.name
        policies: dict[str, bool] = {
            action: not compiled.allowance_for(subject_name, action).isdisjoint(resolution.access_policy_keys)
            for action in compiled.actions
        }

        entity = self.graph.get(subject_name)
        if entity is None or not resolution.controller_access_policy_keys:
            return policies
        for controller in sorted(entity.controllers, key=lambda c: c.name):
            for action in compiled.actions:
                allowance = compiled.allowance_for(controller.name, action)
                if not allowance.isdisjoint(resolution.controller_access_policy_keys):
                    policies[PolicyKeys.controller_action(controller.name, action)] = True
        return policies

    def _normalize(
        self,
        memberships: Iterable[Any],
        subject: Any,
    ) -> Optional[tuple[list[Membership], Subject]]:
        # Adapters are application code; any failure here fails closed.
        try:
            raw_subject = self.subject_adapter.adapt(subject) if self.subject_adapter else subject
            adapted_subject = (
                raw_subject if isinstance(raw_subject, Subject) else Subject.model_validate(raw_subject)
            )
            adapted_memberships = []
            for raw in memberships or ():
                item = self.membership_adapter.adapt(raw) if self.membership_adapter else raw
                adapted_memberships.append(
                    item if isinstance(item, Membership) else Membership.model_validate(item)
                )
        except Exception as e:
            self.logger.warning(
                "Rejected malformed evaluation input (%s: %s); subject=%s",
                type(e).__name__,
                safe_preview(str(e), limit=160),
                safe_preview(subject),
            )
            return None
        return adapted_memberships, adapted_subject


__all__ = [
    "Decision",
    "PermissionEvaluator",
    "PolicyResolution",
]
