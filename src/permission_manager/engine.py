"""PermissionManager — one graph, one compiler, one evaluator.

Example::

    manager = PermissionManager("cella")

    organization = manager.context("organization", ["admin", "staff", "student"])
    course = manager.context("course", ["admin", "staff", "student"], parents=[organization])
    manager.product("item", parents=[course])

    def policies(cfg):
        organization, course = cfg.contexts["organization"], cfg.contexts["course"]
        if cfg.subject.name == "course":
            organization.admin(create=1, read=1, update=1, delete=1)
            course.staff(read=1, update=1)
            course.student(read=1)
        elif cfg.subject.name == "item":
            organization.admin(create=1, read=1, update=1, delete=1)
            course.staff(create=1, read=1)

    manager.configure(policies)

    manager.is_allowed(memberships, "read", subject)
    manager.get_actor_policies(memberships, subject)
"""

from __future__ import annotations

from typing import Any, Callable, Iterable, Optional

from .adapters import MembershipAdapter, SubjectAdapter
from .config import EngineConfig
from .evaluator import Decision, PermissionEvaluator
from .graph import Context, EntityGraph, EntityRef, Product
from .hierarchy import HierarchyView
from .policies import CompiledPolicies, PolicyCompiler, PolicyConfiguration


class PermissionManager:
    """Facade over the setup and evaluation components of one engine.

    Setup (registering entities, configuring policies) is expected to happen
    before traffic. Evaluation methods are read-only and thread-safe.
    """

    def __init__(self, name: Optional[str] = None, config: Optional[EngineConfig] = None) -> None:
        if config is None:
            config = EngineConfig(name=name) if name else EngineConfig()
        elif name and name != config.name:
            config = config.model_copy(update={"name": name})
        self.config = config
        self.graph = EntityGraph()
        self.compiler = PolicyCompiler(self.graph, config)
        self.evaluator = PermissionEvaluator(self.graph, self.compiler, config)

    @property
    def name(self) -> str:
        return self.config.name

    # ── Setup ───────────────────────────────────────────

    def context(self, name: str, roles: Iterable[str], parents: Iterable[EntityRef] = ()) -> Context:
        return self.graph.add_context(name, roles, parents)

    def product(self, name: str, parents: Iterable[EntityRef] = ()) -> Product:
        return self.graph.add_product(name, parents)

    def configure(self, callback: Callable[[PolicyConfiguration], None]) -> CompiledPolicies:
        return self.compiler.configure(callback)

    def use_membership_adapter(self, adapter: Optional[MembershipAdapter]) -> None:
        self.evaluator.use_membership_adapter(adapter)

    def use_subject_adapter(self, adapter: Optional[SubjectAdapter]) -> None:
        self.evaluator.use_subject_adapter(adapter)

    # ── Evaluation ──────────────────────────────────────

    def is_allowed(self, memberships: Iterable[Any], action: str, subject: Any) -> bool:
        return self.evaluator.is_allowed(memberships, action, subject)

    def explain(self, memberships: Iterable[Any], action: str, subject: Any) -> Decision:
        return self.evaluator.explain(memberships, action, subject)

    def get_actor_policies(self, memberships: Iterable[Any], subject: Any) -> dict[str, bool]:
        return self.evaluator.get_actor_policies(memberships, subject)

    # ── Display ─────────────────────────────────────────

    def hierarchy(self) -> HierarchyView:
        """Build a display snapshot of the current graph."""
        return HierarchyView(self.graph)

    def __repr__(self) -> str:
        return f"PermissionManager(name={self.name!r}, entities={len(self.graph)})"


__all__ = ["PermissionManager"]
