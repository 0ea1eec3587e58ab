"""Display hierarchy of an entity graph.

Builds UI-oriented views of the graph; evaluation does not use any of this.

- ``get_entity_ancestor_paths()`` — every root-ward path of an entity.
- ``get_entity_relationships()`` — per-entity ancestry, by name.
- ``get_hierarchy()`` — nested name dict, a polyhierarchical entity appears
  under each of its branches.
- ``get_hierarchical_tree()`` — flat, level-ordered list of leaves.
- ``HierarchyView`` — all of the above for one graph, plus controller names.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional
from uuid import uuid4

from .exceptions import CycleError
from .graph import Entity, EntityGraph

Hierarchy = dict[str, "Hierarchy"]


@dataclass
class Relationship:
    """Ancestry of one entity, by name.

    Attributes:
        inherits_from: The entity name.
        polyhierarchical_ancestors: One ancestor path per branch, nearest first.
        ancestors: Ancestors present on every branch, nearest first.
    """

    inherits_from: str
    polyhierarchical_ancestors: list[list[str]] = field(default_factory=list)
    ancestors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class Leaf:
    """One row of the display tree."""

    name: str
    uid: str
    level: int
    parent_uid: Optional[str] = None


def get_entity_ancestor_paths(entity: Entity) -> list[list[Entity]]:
    """Return every path from ``entity`` up to a root, nearest parent first.

    A root entity yields ``[[]]``.

    Raises:
        CycleError: an entity appears twice on one path.
    """
    paths: list[list[Entity]] = []
    stack: list[tuple[Entity, list[Entity]]] = [(entity, [])]
    while stack:
        current, path = stack.pop()
        if not current.parents:
            paths.append(path)
            continue
        # Reversed so that paths come out in parent declaration order.
        for parent in reversed(current.parents):
            if parent is entity or parent in path:
                raise CycleError(
                    f"Cycle detected in the ancestry of '{entity.name}'.",
                    name=entity.name,
                    path=[ancestor.name for ancestor in path],
                )
            stack.append((parent, [*path, parent]))
    return paths


def get_entity_relationships(entities: Iterable[Entity]) -> dict[str, Relationship]:
    """Collect the ancestry of every entity, keyed by entity name."""
    relationships: dict[str, Relationship] = {}
    for entity in entities:
        paths = get_entity_ancestor_paths(entity)
        relationships[entity.name] = Relationship(
            inherits_from=entity.name,
            polyhierarchical_ancestors=[
                [ancestor.name for ancestor in sorted(path, key=lambda a: -a.lowest_hierarchy_level)]
                for path in paths
            ],
            ancestors=[
                ancestor.name for ancestor in entity.desc_sorted_ancestors if ancestor in entity.required_ancestors
            ],
        )
    return relationships


def get_hierarchy(relationships: dict[str, Relationship]) -> Hierarchy:
    """Nest entity names under their ancestors, roots at the top level."""
    hierarchy: Hierarchy = {}
    for relationship in relationships.values():
        paths = relationship.polyhierarchical_ancestors or [relationship.ancestors]
        for path in paths:
            level = hierarchy
            for ancestor_name in reversed(path):
                level = level.setdefault(ancestor_name, {})
            level.setdefault(relationship.inherits_from, {})
    return hierarchy


def get_hierarchical_tree(hierarchy: Hierarchy, parent: Optional[Leaf] = None) -> list[Leaf]:
    """Flatten a hierarchy into leaves ordered by level.

    Every occurrence of a name gets its own uid, so a polyhierarchical entity
    shows up once per branch with a distinct parent.
    """
    tree: list[Leaf] = []
    level = (parent.level if parent else 0) + 1
    parent_uid = parent.uid if parent else None
    for name, children in hierarchy.items():
        leaf = Leaf(name=name, uid=uuid4().hex, level=level, parent_uid=parent_uid)
        if children:
            tree.extend(get_hierarchical_tree(children, leaf))
        tree.append(leaf)

    if parent is None:
        tree.sort(key=lambda leaf: leaf.level)
    return tree


class HierarchyView:
    """Snapshot of a graph's display structures.

    Attributes:
        controllers: Entity name → names of the entities it gates.
        entities: Entity name → entity.
        relationships: See :func:`get_entity_relationships`.
        hierarchy: See :func:`get_hierarchy`.
        tree: See :func:`get_hierarchical_tree`.
    """

    def __init__(self, graph: EntityGraph) -> None:
        entities = list(graph)
        self.controllers: dict[str, set[str]] = {
            entity.name: {controlled.name for controlled in entity.controllers} for entity in entities
        }
        self.entities: dict[str, Entity] = {entity.name: entity for entity in entities}
        self.relationships = get_entity_relationships(entities)
        self.hierarchy = get_hierarchy(self.relationships)
        self.tree = get_hierarchical_tree(self.hierarchy)

    def __repr__(self) -> str:
        return f"HierarchyView(entities={list(self.entities)!r}, leaves={len(self.tree)})"


__all__ = [
    "Hierarchy",
    "HierarchyView",
    "Leaf",
    "Relationship",
    "get_entity_ancestor_paths",
    "get_entity_relationships",
    "get_hierarchical_tree",
    "get_hierarchy",
]
