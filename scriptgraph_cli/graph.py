"""Dependency graph construction and cycle detection."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Set, Tuple

from .extractor import CompositeExtractor, DependencyExtractor
from .models import Cycle, DependencyGraph, ParsedUnit, ScriptNode, id_order, script_id_for

logger = logging.getLogger(__name__)


class DependencyGraphBuilder:
    """Build a ``DependencyGraph`` in two passes.

    Pass 1 creates every node with its resolved dependencies.  Pass 2 fills
    ``dependents`` as the transpose of the completed dependency sets; it is
    never touched during pass 1.
    """

    def __init__(self, extractor: Optional[DependencyExtractor] = None) -> None:
        self.extractor = extractor or CompositeExtractor()
        self.duplicates: List[str] = []

    def build(self, units: Iterable[ParsedUnit]) -> DependencyGraph:
        extracted = {unit.file_path: self.extractor.extract(unit) for unit in units}
        return self.build_from_extracted(extracted)

    def build_from_extracted(self, extracted: Mapping[str, Set[str]]) -> DependencyGraph:
        """Build from ``{file_path: raw dependency names}``."""
        self.duplicates = []
        ids: Dict[str, str] = {}
        paths: Dict[str, str] = {}
        for file_path in sorted(extracted):
            node_id = script_id_for(file_path)
            key = node_id.lower()
            if key in ids:
                logger.warning(
                    "Script id '%s' from %s already used by %s; excluded from the graph",
                    node_id, file_path, paths[ids[key]],
                )
                self.duplicates.append(file_path)
                continue
            ids[key] = node_id
            paths[node_id] = file_path

        graph = DependencyGraph()

        # Pass 1: nodes and forward edges.
        for node_id, file_path in paths.items():
            dependencies: Set[str] = set()
            dangling: Set[str] = set()
            for raw in extracted[file_path]:
                target = ids.get(raw.lower())
                if target is None:
                    dangling.add(raw)
                else:
                    dependencies.add(target)
            graph.nodes[node_id] = ScriptNode(id=node_id, file_path=file_path, dependencies=dependencies)
            if dangling:
                graph.dangling[node_id] = dangling
                logger.debug("%s: unresolved references %s", node_id, sorted(dangling))
            if node_id in dependencies:
                logger.info("%s references itself", node_id)

        # Pass 2: reverse edges.
        for node in graph.nodes.values():
            for dep in node.dependencies:
                graph.nodes[dep].dependents.add(node.id)

        return graph


class _Color(Enum):
    WHITE = 0
    GRAY = 1
    BLACK = 2


class CycleDetector:
    """Colour-marking depth-first search over a ``DependencyGraph``.

    Roots and each node's dependencies are visited in case-insensitive
    sorted id order, so results are deterministic.  Cycles are reported in
    the order their closing back edge is found, rotated to start at the
    smallest id, without repeating the first node at the end.
    """

    def find_cycles(self, graph: DependencyGraph) -> List[Cycle]:
        nodes = graph.nodes
        color = {node_id: _Color.WHITE for node_id in nodes}
        cycles: List[Cycle] = []
        seen: Set[Tuple[str, ...]] = set()

        for root in sorted(nodes, key=id_order):
            if not nodes[root].dependencies or color[root] is not _Color.WHITE:
                continue

            path: List[str] = [root]
            color[root] = _Color.GRAY
            stack: List[Tuple[str, Iterator[str]]] = [(root, self._successors(graph, root))]

            while stack:
                node_id, successors = stack[-1]
                child = next(successors, None)
                if child is None:
                    stack.pop()
                    path.pop()
                    color[node_id] = _Color.BLACK
                    continue

                if color[child] is _Color.GRAY:
                    cycle = normalize_cycle(path[path.index(child):])
                    if cycle is not None and cycle.nodes not in seen:
                        seen.add(cycle.nodes)
                        cycles.append(cycle)
                elif color[child] is _Color.WHITE:
                    color[child] = _Color.GRAY
                    path.append(child)
                    stack.append((child, self._successors(graph, child)))

        if cycles:
            logger.info("Found %d circular dependency chain(s)", len(cycles))
        return cycles

    @staticmethod
    def _successors(graph: DependencyGraph, node_id: str) -> Iterator[str]:
        return iter(sorted(graph.nodes[node_id].dependencies, key=id_order))


def normalize_cycle(chain: List[str]) -> Optional[Cycle]:
    """Rotate ``chain`` to start at its smallest id.

    Returns None for single-node chains (self references are flagged
    separately, not reported as cycles).
    """
    if len(set(chain)) < 2:
        return None
    start = min(range(len(chain)), key=lambda i: id_order(chain[i]))
    return Cycle(nodes=tuple(chain[start:] + chain[:start]))
