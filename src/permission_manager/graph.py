"""Entity graph: contexts, products and roles of a polyhierarchical structure.

Provides:
- ``EntityGraph`` — registry of named entities for one engine; derives
  ancestor, descendant and ownership relations on registration.
- ``Entity`` — common base of graph nodes.
- ``Context`` — entity that defines claimable roles.
- ``Product`` — role-less entity whose access is gated by ancestor contexts.
- ``Role`` — named permission scope bound to exactly one context.

Example::

    graph = EntityGraph()
    organization = graph.add_context("organization", ["admin", "staff"])
    course = graph.add_context("course", ["staff", "student"], parents=[organization])
    item = graph.add_product("item", parents=[course])

    course in organization.descendants   # True
    item.owners                          # {course}
    course.controllers                   # {item}
"""

from __future__ import annotations

import logging
import threading
from typing import Iterable, Iterator, Optional, Union
from uuid import uuid4

from .exceptions import (
    CycleError,
    DuplicateEntityError,
    DuplicateRoleError,
    StructuralError,
    UnknownEntityError,
)

logger = logging.getLogger(__name__)


class Role:
    """Named permission scope, unique by name within its context."""

    __slots__ = ("uid", "name", "context")

    def __init__(self, name: str, context: Context) -> None:
        self.uid = uuid4().hex
        self.name = name
        self.context = context

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Role):
            return NotImplemented
        return self.name == other.name and self.context is other.context

    def __hash__(self) -> int:
        return hash((self.name, id(self.context)))

    def __repr__(self) -> str:
        return f"Role(name={self.name!r}, context={self.context.name!r})"


class Entity:
    """A named node of the entity graph.

    Constructing an entity registers it in ``graph``. Registration is
    all-or-nothing: if validation fails nothing in the graph changes.

    Attributes:
        uid: Opaque identity.
        name: Unique name within the graph.
        parents: Direct parents, in declaration order.
        children: Direct children.
        ancestors: Transitive closure of ``parents``.
        descendants: Transitive closure of ``children``.
        required_ancestors: Ancestors reachable through every parent branch.
        owners: Contexts whose roles gate access to this entity.
        controllers: Entities this entity gates (only populated on contexts).
        lowest_hierarchy_level: 1 for roots, else 1 + max parent level.
        desc_sorted_ancestors: Ancestors nearest-first (descending level).
    """

    def __init__(
        self,
        name: str,
        parents: Iterable[EntityRef] = (),
        *,
        graph: EntityGraph,
    ) -> None:
        if not isinstance(name, str) or not name:
            raise StructuralError("Entity name must be a non-empty string", name=name)

        self.uid = uuid4().hex
        self.name = name
        self.graph = graph
        self.parents: tuple[Entity, ...] = tuple(parents)
        self.children: set[Entity] = set()
        self.ancestors: set[Entity] = set()
        self.descendants: set[Entity] = set()
        self.required_ancestors: set[Entity] = set()
        self.owners: set[Context] = set()
        self.controllers: set[Entity] = set()
        self.lowest_hierarchy_level = 1
        self.desc_sorted_ancestors: tuple[Entity, ...] = ()

        graph.register(self)

    @property
    def is_context(self) -> bool:
        return False

    @property
    def role_names(self) -> tuple[str, ...]:
        return ()

    def _validate(self) -> None:
        """Hook for subclasses to validate before the entity is registered."""

    def _add_controlled(self, entity: Entity) -> set[Context]:
        """Register ``entity`` as gated by this branch; return the gating contexts.

        A product has no roles of its own, so it forwards the registration to
        its parents until a context absorbs it.
        """
        owners: set[Context] = set()
        for parent in self.parents:
            owners |= parent._add_controlled(entity)
        return owners

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, level={self.lowest_hierarchy_level})"


class Context(Entity):
    """Entity that defines claimable roles.

    Example::

        faculty = Context("faculty", ["admin", "staff"], parents=[organization], graph=graph)
        faculty.role("admin")  # Role(name='admin', context='faculty')
    """

    def __init__(
        self,
        name: str,
        roles: Iterable[str],
        parents: Iterable[EntityRef] = (),
        *,
        graph: EntityGraph,
    ) -> None:
        self._role_names = list(roles)
        self.roles: tuple[Role, ...] = ()
        super().__init__(name, parents, graph=graph)

    @property
    def is_context(self) -> bool:
        return True

    @property
    def role_names(self) -> tuple[str, ...]:
        return tuple(role.name for role in self.roles)

    def role(self, name: str) -> Optional[Role]:
        for role in self.roles:
            if role.name == name:
                return role
        return None

    def _validate(self) -> None:
        seen: set[str] = set()
        for role_name in self._role_names:
            if not isinstance(role_name, str) or not role_name:
                raise StructuralError(
                    f"Role names on context '{self.name}' must be non-empty strings",
                    context=self.name,
                    role=role_name,
                )
            if role_name in seen:
                raise DuplicateRoleError(
                    f"Role instance with name '{role_name}' on context '{self.name}' already exists.",
                    context=self.name,
                    role=role_name,
                )
            seen.add(role_name)
        self.roles = tuple(Role(role_name, self) for role_name in self._role_names)
        del self._role_names

    def _add_controlled(self, entity: Entity) -> set[Context]:
        self.controllers.add(entity)
        return {self}


class Product(Entity):
    """Role-less resource entity; access always resolves through an ancestor context."""


EntityRef = Union[str, Entity]


class EntityGraph:
    """Registry of the entities and roles of one engine.

    Mutation (registration) is serialized by a re-entrant lock. After setup the
    graph is only read.
    """

    def __init__(self) -> None:
        self._entities: dict[str, Entity] = {}
        self._lock = threading.RLock()

    # ── Registration ────────────────────────────────────

    def add_context(self, name: str, roles: Iterable[str], parents: Iterable[EntityRef] = ()) -> Context:
        return Context(name, roles, parents, graph=self)

    def add_product(self, name: str, parents: Iterable[EntityRef] = ()) -> Product:
        return Product(name, parents, graph=self)

    def register(self, entity: Entity) -> Entity:
        """Validate ``entity`` and link it into the graph.

        Raises:
            DuplicateEntityError: name already registered.
            DuplicateRoleError: a context declares a role twice.
            UnknownEntityError: a parent is not registered in this graph.
            CycleError: the parents' ancestry contains a cycle.
        """
        with self._lock:
            if entity.name in self._entities:
                raise DuplicateEntityError(
                    f"Hierarchical instance with name '{entity.name}' already exists.",
                    name=entity.name,
                )
            parents = tuple(dict.fromkeys(self._resolve_parent(entity, parent) for parent in entity.parents))
            entity._validate()

            # Everything below is derived; compute it before touching shared state.
            entity.parents = parents
            ancestors = _ancestor_closure(entity.parents)
            level = 1 + max((parent.lowest_hierarchy_level for parent in entity.parents), default=0)
            required = {ancestor for ancestor in ancestors if _is_required_ancestor(entity, ancestor)}

            entity.ancestors = ancestors
            entity.required_ancestors = required
            entity.lowest_hierarchy_level = level
            entity.desc_sorted_ancestors = tuple(
                sorted(ancestors, key=lambda ancestor: (-ancestor.lowest_hierarchy_level, ancestor.name))
            )

            self._entities[entity.name] = entity
            for parent in entity.parents:
                parent.children.add(entity)
                parent.descendants.add(entity)
                for ancestor in parent.ancestors:
                    ancestor.descendants.add(entity)
                entity.owners |= parent._add_controlled(entity)

        logger.debug(
            "Registered %s '%s' at level %d with parents %s",
            type(entity).__name__,
            entity.name,
            entity.lowest_hierarchy_level,
            [parent.name for parent in entity.parents],
        )
        return entity

    def _resolve_parent(self, entity: Entity, parent: object) -> Entity:
        """Map a parent given by name or instance to this graph's entity."""
        if isinstance(parent, Entity):
            label = parent.name
            resolved = parent if self._entities.get(parent.name) is parent else None
        else:
            label = parent
            resolved = self._entities.get(parent) if isinstance(parent, str) else None
        if resolved is None:
            raise UnknownEntityError(
                f"Parent {label!r} of '{entity.name}' is not registered in this graph.",
                name=entity.name,
                parent=label,
            )
        return resolved

    # ── Queries ─────────────────────────────────────────

    def get(self, name: str) -> Optional[Entity]:
        return self._entities.get(name)

    def require(self, ref: EntityRef) -> Entity:
        """Resolve a name or entity to the registered entity.

        Raises:
            UnknownEntityError: not registered in this graph.
        """
        name = ref.name if isinstance(ref, Entity) else ref
        entity = self._entities.get(name)
        if entity is None or (isinstance(ref, Entity) and entity is not ref):
            raise UnknownEntityError(f"Entity '{name}' is not registered in this graph.", name=name)
        return entity

    def contexts(self) -> list[Context]:
        return [entity for entity in self._entities.values() if isinstance(entity, Context)]

    def products(self) -> list[Product]:
        return [entity for entity in self._entities.values() if isinstance(entity, Product)]

    def __contains__(self, ref: object) -> bool:
        if isinstance(ref, Entity):
            return self._entities.get(ref.name) is ref
        return ref in self._entities

    def __iter__(self) -> Iterator[Entity]:
        return iter(list(self._entities.values()))

    def __len__(self) -> int:
        return len(self._entities)

    def __repr__(self) -> str:
        return f"EntityGraph(entities={list(self._entities)!r})"


def _ancestor_closure(parents: Iterable[Entity]) -> set[Entity]:
    """Collect every entity reachable through ``parents`` links.

    Iterative depth-first walk; an entity met again while still on the
    current path means the parent relation is cyclic.
    """
    visited: set[Entity] = set()
    for root in parents:
        if root in visited:
            continue
        visited.add(root)
        on_path = {root}
        stack = [(root, iter(root.parents))]
        while stack:
            node, pending = stack[-1]
            parent = next(pending, None)
            if parent is None:
                stack.pop()
                on_path.discard(node)
                continue
            if parent in on_path:
                raise CycleError(
                    f"Cycle detected in the ancestry of '{parent.name}'.",
                    name=parent.name,
                    path=[entry.name for entry, _ in stack],
                )
            if parent not in visited:
                visited.add(parent)
                on_path.add(parent)
                stack.append((parent, iter(parent.parents)))
    return visited


def _is_required_ancestor(entity: Entity, ancestor: Entity) -> bool:
    for parent in entity.parents:
        if ancestor is not parent and ancestor not in parent.required_ancestors:
            return False
    return True


__all__ = [
    "Context",
    "Entity",
    "EntityGraph",
    "EntityRef",
    "Product",
    "Role",
]
