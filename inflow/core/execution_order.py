"""Execution order helpers for entity mappings.

An entity that belongs to another must run after it, so its foreign key
can point at a record that already exists.
"""

import logging
from collections import deque

from inflow.core.entity_store import EntityStore
from inflow.core.mapping import MappingDefinition
from inflow.core.models import RelationKind

logger = logging.getLogger(__name__)


def dependency_graph(entities: list[str], store: EntityStore) -> dict[str, list[str]]:
    """entity -> parents (belongs_to targets) that are part of the same import."""
    graph = {}
    for entity in entities:
        parents = []
        for rel in store.relations(entity):
            if rel.kind is RelationKind.BELONGS_TO and rel.related in entities and rel.related != entity:
                if rel.related not in parents:
                    parents.append(rel.related)
        graph[entity] = parents
    return graph


def find_cycles(graph: dict[str, list[str]]) -> list[str]:
    """Entities taking part in a dependency cycle."""
    visiting: set[str] = set()
    visited: set[str] = set()
    cyclic: list[str] = []

    def visit(node: str) -> None:
        visiting.add(node)
        for parent in graph.get(node, []):
            if parent in visiting:
                for n in (node, parent):
                    if n not in cyclic:
                        cyclic.append(n)
            elif parent not in visited:
                visit(parent)
        visiting.discard(node)
        visited.add(node)

    for node in graph:
        if node not in visited:
            visit(node)
    return cyclic


def suggest_execution_order(entities: list[str], store: EntityStore) -> dict[str, int]:
    """Topological order (1-based); entities caught in cycles go last."""
    graph = dependency_graph(entities, store)
    cycles = find_cycles(graph)
    if cycles:
        logger.warning(f"Circular entity dependencies: {cycles}")

    remaining = {entity: len(parents) for entity, parents in graph.items()}
    queue = deque(e for e, n in remaining.items() if n == 0)
    order: dict[str, int] = {}
    while queue:
        entity = queue.popleft()
        order[entity] = len(order) + 1
        for child, parents in graph.items():
            if entity in parents:
                remaining[child] -= 1
                if remaining[child] == 0:
                    queue.append(child)

    for entity in graph:
        if entity not in order:
            order[entity] = len(order) + 1
    return order


def validate_execution_order(mapping: MappingDefinition, store: EntityStore) -> list[str]:
    """Messages for entity mappings scheduled before an entity they depend on."""
    orders = {m.entity: m.execution_order for m in mapping.mappings if not m.is_pivot_sync}
    graph = dependency_graph(list(orders), store)
    errors = []
    for entity, parents in graph.items():
        for parent in parents:
            if orders[parent] >= orders[entity]:
                errors.append(
                    f"Entity {entity} (order: {orders[entity]}) depends on {parent} "
                    f"(order: {orders[parent]}). Dependencies must have lower execution_order."
                )
    return errors
