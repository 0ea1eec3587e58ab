"""Access policy compiler.

Turns sparse, inheritance-aware policy declarations into a dense decision
matrix plus an inverted allowance index:

- ``PolicyCompiler`` — collects declarations and publishes compiled snapshots.
- ``PolicyConfiguration`` — per-subject view handed to ``configure()`` callbacks.
- ``CompiledPolicies`` — immutable result of one compilation.

Declarations are resolved in three precedence tiers. A lower tier only fills
slots that no higher tier has set, so the outcome does not depend on the order
in which declarations were made:

1. explicit cells — a context declaring its own policy for one of its roles
   (``course.staff`` on subject ``course``), or any declaration that names
   the subject role explicitly;
2. broad declarations — ``organization.admin`` on subject ``course`` fills
   every role of ``course`` and the no-role case;
3. self-policy defaults — ``course.staff`` on subject ``course`` fills the
   ``staff`` slot for every role of every ancestor context of ``course``,
   and the no-role slot of ``course.staff`` itself.

Redeclaring a slot keeps the first declaration and logs a warning. The one
exception is the explicit self cell (``[course][staff][course][staff]``),
where the later declaration replaces the earlier one; the self-policy
defaults derived from it still come from the first declaration.

Example::

    compiler = PolicyCompiler(graph)

    def policies(cfg: PolicyConfiguration) -> None:
        if cfg.subject.name == "course":
            cfg.contexts["organization"].admin(read=1, update=1)
            cfg.contexts["course"].staff({"read": True})

    compiler.configure(policies)
    compiler.compiled.allowance_for("course", "read")
    # frozenset({"organization-admin-course-null", "course-staff-course-staff", ...})
"""

from __future__ import annotations

import threading
from collections.abc import Iterator, Mapping
from types import MappingProxyType
from typing import Any, Callable, Optional

from ..config import EngineConfig
from ..exceptions import ConfigurationError, UnknownEntityError
from ..graph import Context, Entity, EntityGraph, EntityRef
from ..logging import get_engine_logger
from ..models import AccessPolicy
from .keys import PolicyKeys


class _AnyRole:
    """Sentinel: a declaration applies to every role of the subject."""

    def __repr__(self) -> str:
        return "ANY_ROLE"


ANY_ROLE: Any = _AnyRole()

ActionPolicies = dict[str, bool]
# context -> context role -> subject -> subject role (None = no role) -> actions
DefinedPolicies = dict[str, dict[str, dict[str, dict[Optional[str], ActionPolicies]]]]


def coerce_action_policies(actions: Mapping[str, Any]) -> ActionPolicies:
    """Validate an action map and coerce its values to ``bool``.

    ``0``/``1`` and ``False``/``True`` are accepted; any other value type
    raises :class:`ConfigurationError`.
    """
    if not isinstance(actions, Mapping):
        raise ConfigurationError(
            f"Action policies must be a mapping, got {type(actions).__name__}",
        )
    policies: ActionPolicies = {}
    for action, value in actions.items():
        if not isinstance(action, str) or not action:
            raise ConfigurationError("Action names must be non-empty strings", action=action)
        if not isinstance(value, (bool, int)):
            raise ConfigurationError(
                f"Action '{action}' must be set to a bool or 0/1, got {type(value).__name__}",
                action=action,
            )
        policies[action] = bool(value)
    return policies


class CompiledPolicies:
    """Immutable output of one compilation.

    Attributes:
        actions: Every action seen in any declaration, in first-seen order.
        access_policies: Every cell of the decision matrix.
        allowance: ``{subject}-{action}`` → access policy keys granting it.
        defined: Resolved declarations the matrix was built from.
    """

    __slots__ = ("actions", "access_policies", "allowance", "defined", "_index")

    def __init__(
        self,
        actions: tuple[str, ...] = (),
        access_policies: tuple[AccessPolicy, ...] = (),
        allowance: Optional[Mapping[str, frozenset[str]]] = None,
        defined: Optional[DefinedPolicies] = None,
    ) -> None:
        self.actions = actions
        self.access_policies = access_policies
        self.allowance: Mapping[str, frozenset[str]] = MappingProxyType(dict(allowance or {}))
        self.defined: DefinedPolicies = defined or {}
        self._index = {
            PolicyKeys.access(p.context_name, p.context_role_name, p.subject_name, p.subject_role_name): p
            for p in access_policies
        }

    def allowance_for(self, subject_name: str, action: str) -> frozenset[str]:
        return self.allowance.get(PolicyKeys.action(subject_name, action), frozenset())

    def policy(
        self,
        context_name: str,
        context_role_name: str,
        subject_name: str,
        subject_role_name: Optional[str] = None,
    ) -> Optional[AccessPolicy]:
        """Return the matrix cell for the given tuple, if it was compiled."""
        return self._index.get(PolicyKeys.access(context_name, context_role_name, subject_name, subject_role_name))

    def declared(
        self,
        context_name: str,
        context_role_name: str,
        subject_name: str,
        subject_role_name: Optional[str] = None,
    ) -> ActionPolicies:
        """Return the declared action map for a tuple, ``{}`` at any missing level."""
        return (
            self.defined.get(context_name, {})
            .get(context_role_name, {})
            .get(subject_name, {})
            .get(subject_role_name, {})
        )

    def __repr__(self) -> str:
        return (
            f"CompiledPolicies(actions={list(self.actions)!r}, "
            f"access_policies={len(self.access_policies)}, allowance={len(self.allowance)})"
        )


class _Declarations:
    """Declared policies of one configuration round, not yet resolved."""

    def __init__(self, logger) -> None:
        self._logger = logger
        self.actions: dict[str, None] = {}
        self.explicit: dict[tuple[str, str, str, Optional[str]], ActionPolicies] = {}
        self.broad: dict[tuple[str, str, Entity], ActionPolicies] = {}
        self.self_policies: dict[tuple[Entity, str], ActionPolicies] = {}

    def add(
        self,
        context: Context,
        role_name: str,
        subject: Entity,
        policies: ActionPolicies,
        subject_role: Any = ANY_ROLE,
    ) -> None:
        self.actions.update(dict.fromkeys(policies))

        if context is subject and subject_role is ANY_ROLE:
            self._put(self.explicit, (context.name, role_name, subject.name, role_name), policies, replace=True)
            self.self_policies.setdefault((subject, role_name), policies)
        elif subject_role is not ANY_ROLE:
            self._put(self.explicit, (context.name, role_name, subject.name, subject_role), policies)
        else:
            self._put(self.broad, (context.name, role_name, subject), policies)

    def _put(self, slots: dict, key: tuple, policies: ActionPolicies, replace: bool = False) -> None:
        """Record a declaration; an existing slot is kept unless ``replace`` is set."""
        if key in slots:
            self._logger.warning(
                "Access policy %s redeclared; %s",
                "-".join(str(part.name if isinstance(part, Entity) else part) for part in key),
                "the later declaration replaces the earlier one" if replace else "the later declaration is ignored",
            )
            if not replace:
                return
        slots[key] = policies

    def resolve(self) -> DefinedPolicies:
        """Apply the precedence tiers and return the nested declaration map."""
        defined: DefinedPolicies = {}

        def fill(context: str, role: str, subject: str, subject_role: Optional[str], policies: ActionPolicies) -> None:
            slots = defined.setdefault(context, {}).setdefault(role, {}).setdefault(subject, {})
            if subject_role not in slots:
                slots[subject_role] = dict(policies)

        for (context, role, subject, subject_role), policies in self.explicit.items():
            defined.setdefault(context, {}).setdefault(role, {}).setdefault(subject, {})[subject_role] = dict(policies)

        for (context, role, subject), policies in self.broad.items():
            for subject_role in (*subject.role_names, None):
                fill(context, role, subject.name, subject_role, policies)

        for (subject, role), policies in self.self_policies.items():
            for ancestor in subject.desc_sorted_ancestors:
                if not isinstance(ancestor, Context):
                    continue
                for ancestor_role in ancestor.roles:
                    fill(ancestor.name, ancestor_role.name, subject.name, role, policies)
            fill(subject.name, role, subject.name, None, policies)

        return defined


class ContextPolicySetters(Mapping[str, Callable[..., None]]):
    """Role name → setter for one context, as seen from one subject.

    Setters accept a mapping, keyword arguments, or both::

        cfg.contexts["course"]["staff"]({"read": 1})
        cfg.contexts["course"].staff(read=1, update=0)
    """

    def __init__(self, context: Context, setters: dict[str, Callable[..., None]]) -> None:
        self.context = context
        self._setters = setters

    def __getitem__(self, role_name: str) -> Callable[..., None]:
        return self._setters[role_name]

    def __getattr__(self, role_name: str) -> Callable[..., None]:
        try:
            return self.__dict__["_setters"][role_name]
        except KeyError:
            raise AttributeError(f"Context '{self.context.name}' has no role '{role_name}'") from None

    def __iter__(self) -> Iterator[str]:
        return iter(self._setters)

    def __len__(self) -> int:
        return len(self._setters)


class PolicyConfiguration:
    """What a ``configure()`` callback receives for one subject."""

    __slots__ = ("subject", "contexts")

    def __init__(self, subject: Entity, contexts: dict[str, ContextPolicySetters]) -> None:
        self.subject = subject
        self.contexts = contexts

    def __repr__(self) -> str:
        return f"PolicyConfiguration(subject={self.subject.name!r}, contexts={list(self.contexts)!r})"


class PolicyCompiler:
    """Collects access policy declarations and compiles them against a graph.

    The compiled snapshot is replaced by a single reference swap, so readers
    holding the previous snapshot never observe a partially rebuilt matrix.
    """

    def __init__(self, graph: EntityGraph, config: Optional[EngineConfig] = None) -> None:
        self.graph = graph
        self.config = config or EngineConfig()
        self.logger = get_engine_logger(__name__, engine=self.config.name)
        self._lock = threading.RLock()
        self._declarations = _Declarations(self.logger)
        self._compiled = CompiledPolicies()

    @property
    def compiled(self) -> CompiledPolicies:
        """Currently published snapshot."""
        return self._compiled

    @property
    def actions(self) -> tuple[str, ...]:
        return self._compiled.actions

    @property
    def allowance(self) -> Mapping[str, frozenset[str]]:
        return self._compiled.allowance

    @property
    def access_policies(self) -> tuple[AccessPolicy, ...]:
        return self._compiled.access_policies

    # ── Declaration ─────────────────────────────────────

    def declare(
        self,
        context: EntityRef,
        role: str,
        subject: EntityRef,
        actions: Mapping[str, Any],
        subject_role: Any = ANY_ROLE,
    ) -> None:
        """Record one declaration. Takes effect on the next :meth:`build`.

        Args:
            context: Context (or its name) whose role is granted the actions.
            role: Role name on ``context``.
            subject: Entity (or its name) the actions apply to.
            actions: Action → bool (or 0/1) map.
            subject_role: Role of the actor on ``subject`` this cell covers;
                ``None`` for the no-role case. Omit to cover every role.

        Raises:
            ConfigurationError: unknown names or invalid action values.
        """
        context_entity = self._resolve(context)
        subject_entity = self._resolve(subject)
        if not isinstance(context_entity, Context):
            raise ConfigurationError(f"'{context_entity.name}' is not a context", context=context_entity.name)
        if context_entity.role(role) is None:
            raise ConfigurationError(
                f"Context '{context_entity.name}' has no role '{role}'",
                context=context_entity.name,
                role=role,
            )
        if subject_role is not ANY_ROLE:
            if subject_role is not None and subject_role not in subject_entity.role_names:
                raise ConfigurationError(
                    f"Subject '{subject_entity.name}' has no role '{subject_role}'",
                    subject=subject_entity.name,
                    role=subject_role,
                )
            if context_entity is subject_entity and subject_role != role:
                raise ConfigurationError(
                    f"A policy of '{context_entity.name}' on itself can only target the same role",
                    context=context_entity.name,
                    role=role,
                    subject_role=subject_role,
                )

        with self._lock:
            self._declarations.add(
                context_entity, role, subject_entity, coerce_action_policies(actions), subject_role
            )

    def for_each_subject(self, fn: Callable[[PolicyConfiguration], None]) -> None:
        """Call ``fn`` once per entity with setters bound to the current declarations."""
        with self._lock:
            self._for_each_subject(fn, self._declarations)

    def clear(self) -> None:
        """Drop all declarations. The published snapshot stays until :meth:`build`."""
        with self._lock:
            self._declarations = _Declarations(self.logger)

    # ── Compilation ─────────────────────────────────────

    def configure(self, callback: Callable[[PolicyConfiguration], None]) -> CompiledPolicies:
        """Replace all declarations with those made by ``callback`` and compile them.

        ``callback`` runs once per entity of the graph. Declarations from earlier
        calls are discarded, never merged.

        Raises:
            ConfigurationError: the callback failed. The previous declarations
                and compiled snapshot remain in force.
        """
        with self._lock:
            staged = _Declarations(self.logger)
            self._for_each_subject(callback, staged)
            compiled = self._compile(staged)
            self._declarations = staged
            self._compiled = compiled
        self._log_compiled(compiled)
        return compiled

    def build(self) -> CompiledPolicies:
        """Compile the current declarations and publish the result."""
        with self._lock:
            compiled = self._compile(self._declarations)
            self._compiled = compiled
        self._log_compiled(compiled)
        return compiled

    def _for_each_subject(self, fn: Callable[[PolicyConfiguration], None], declarations: _Declarations) -> None:
        contexts = self.graph.contexts()
        for subject in self.graph:
            configuration = PolicyConfiguration(
                subject,
                {
                    context.name: ContextPolicySetters(
                        context,
                        {role.name: self._setter(declarations, context, role.name, subject) for role in context.roles},
                    )
                    for context in contexts
                },
            )
            try:
                fn(configuration)
            except ConfigurationError:
                raise
            except Exception as e:
                raise ConfigurationError(
                    f"Access policy configuration failed for subject '{subject.name}': {e}",
                    subject=subject.name,
                ) from e

    def _setter(
        self,
        declarations: _Declarations,
        context: Context,
        role_name: str,
        subject: Entity,
    ) -> Callable[..., None]:
        def set_policy(policy: Optional[Mapping[str, Any]] = None, /, **actions: Any) -> None:
            merged = dict(policy or {})
            merged.update(actions)
            declarations.add(context, role_name, subject, coerce_action_policies(merged))

        set_policy.__name__ = f"{context.name}.{role_name}"
        return set_policy

    def _compile(self, declarations: _Declarations) -> CompiledPolicies:
        defined = declarations.resolve()
        actions = tuple(declarations.actions)
        access_policies: list[AccessPolicy] = []
        allowance: dict[str, set[str]] = {}
        subjects = list(self.graph)

        for context in self.graph.contexts():
            for context_role in context.roles:
                for subject in subjects:
                    # A context never gains authority over its own container.
                    if context in subject.descendants:
                        continue
                    for subject_role in (*subject.role_names, None):
                        if context is subject and context_role.name != subject_role:
                            continue
                        declared = (
                            defined.get(context.name, {})
                            .get(context_role.name, {})
                            .get(subject.name, {})
                            .get(subject_role, {})
                        )
                        action_policies = {action: bool(declared.get(action, False)) for action in actions}
                        access_key = PolicyKeys.access(context.name, context_role.name, subject.name, subject_role)
                        for action, allowed in action_policies.items():
                            if allowed:
                                allowance.setdefault(PolicyKeys.action(subject.name, action), set()).add(access_key)
                        access_policies.append(
                            AccessPolicy(
                                context_name=context.name,
                                context_role_name=context_role.name,
                                subject_name=subject.name,
                                subject_role_name=subject_role,
                                action_policies=action_policies,
                            )
                        )

        return CompiledPolicies(
            actions=actions,
            access_policies=tuple(access_policies),
            allowance={key: frozenset(keys) for key, keys in allowance.items()},
            defined=defined,
        )

    def _resolve(self, ref: EntityRef) -> Entity:
        try:
            return self.graph.require(ref)
        except UnknownEntityError as e:
            raise ConfigurationError(e.message, **e.details) from e

    def _log_compiled(self, compiled: CompiledPolicies) -> None:
        self.logger.info(
            "Compiled %d access policies over %d actions into %d allowance keys",
            len(compiled.access_policies),
            len(compiled.actions),
            len(compiled.allowance),
        )


__all__ = [
    "ANY_ROLE",
    "CompiledPolicies",
    "ContextPolicySetters",
    "PolicyCompiler",
    "PolicyConfiguration",
    "coerce_action_policies",
]
