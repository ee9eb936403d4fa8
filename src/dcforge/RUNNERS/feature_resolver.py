"""
Feature resolution: expand requested features into a dependency-ordered,
conflict-free set.
"""
import heapq
import logging
from collections import deque
from typing import Dict, Iterable, List, Set

from ..CATALOG.catalog import SourceCatalog
from ..MODELS.feature import Conflict, ConflictSeverity, Feature
from ..MODELS.results import ErrorCode, ResolutionResult

logger = logging.getLogger(__name__)

UNVISITED, VISITING, VISITED = 0, 1, 2


class FeatureResolver:
    """
    Resolves requested feature references against a catalog.
    Holds no state between calls.
    """
    def __init__(self, catalog: SourceCatalog):
        self.catalog = catalog

    def resolve(self, requested: Iterable[str]) -> ResolutionResult:
        """
        Resolves a set of feature references.

        :param requested: Short names, qualified ids or repositories, in any order.
        :return: The resolution. resolved_features is empty unless success is True.
        """
        if requested is None:
            raise ValueError("requested features must not be None")

        roots: Dict[str, Feature] = {}
        missing: List[str] = []
        for reference in requested:
            feature = self.catalog.get_feature(reference)
            if feature is None:
                if reference not in missing:
                    missing.append(reference)
                continue
            roots[feature.id] = feature

        closure, edges, missing_deps = self._expand(roots)
        conflicts = self._find_cycles(edges) + self._find_conflicts(closure)
        conflicts.sort(key=lambda c: (-c.severity.rank, c.members))

        warnings = [
            f"Feature '{f.id}' is deprecated" + (f": {f.deprecation_message}" if f.deprecation_message else "")
            for f in sorted(closure.values(), key=lambda f: f.id)
            if f.deprecated
        ]
        warnings.extend(
            f"{' and '.join(c.members)}: {c.reason}"
            for c in conflicts
            if not c.severity.is_blocking
        )

        result = ResolutionResult(
            conflicts=conflicts,
            missing_features=sorted(missing),
            missing_dependencies=sorted(missing_deps),
            warnings=warnings,
        )

        if missing or missing_deps:
            names = sorted(missing) + sorted(missing_deps)
            result.error_message = f"Unknown features: {', '.join(names)}"
            result.error_code = ErrorCode.NOT_FOUND
            logger.debug(result.error_message)
            return result

        blocking = result.blocking_conflicts
        if blocking:
            first = blocking[0]
            result.error_message = f"Feature conflict between {', '.join(first.members)}: {first.reason}"
            result.error_code = ErrorCode.CONFLICT
            logger.debug("%d blocking conflicts", len(blocking))
            return result

        result.resolved_features = self._order(closure, edges)
        result.success = True
        return result

    def _expand(self, roots: Dict[str, Feature]):
        """
        Breadth-first expansion of dependencies.

        :return: (closure by id, adjacency list of dependency edges, missing dependency refs)
        """
        closure: Dict[str, Feature] = dict(roots)
        edges: Dict[str, List[str]] = {}
        missing: Set[str] = set()

        queue = deque(sorted(roots))
        while queue:
            feature_id = queue.popleft()
            feature = closure[feature_id]
            targets = []
            for reference in feature.dependencies:
                dependency = self.catalog.get_feature(reference)
                if dependency is None:
                    missing.add(reference)
                    continue
                if dependency.id not in targets:
                    targets.append(dependency.id)
                if dependency.id not in closure:
                    closure[dependency.id] = dependency
                    queue.append(dependency.id)
            edges[feature_id] = sorted(targets)
        return closure, edges, missing

    @staticmethod
    def _find_cycles(edges: Dict[str, List[str]]) -> List[Conflict]:
        """
        Iterative depth-first search with visit colouring. Every back edge
        yields the cycle along the current path.
        """
        state = {node: UNVISITED for node in edges}
        seen = set()
        conflicts = []

        for start in sorted(edges):
            if state[start] != UNVISITED:
                continue
            path: List[str] = [start]
            stack = [iter(edges[start])]
            state[start] = VISITING
            while stack:
                child = next(stack[-1], None)
                if child is None:
                    state[path.pop()] = VISITED
                    stack.pop()
                    continue
                if state.get(child, VISITED) == VISITING:
                    members = path[path.index(child):]
                    key = frozenset(members)
                    if key not in seen:
                        seen.add(key)
                        conflicts.append(Conflict(
                            members=members,
                            reason=f"Circular dependency: {' -> '.join(members + [child])}",
                            severity=ConflictSeverity.CRITICAL,
                            resolution="Remove one of the dependencies in the cycle",
                            cycle=True,
                        ))
                elif state.get(child) == UNVISITED:
                    state[child] = VISITING
                    path.append(child)
                    stack.append(iter(edges[child]))
        return conflicts

    @staticmethod
    def _find_conflicts(closure: Dict[str, Feature]) -> List[Conflict]:
        """Pairwise conflictsWith check. A declaration on either side counts for both."""
        conflicts = []
        ids = sorted(closure)
        for i, left_id in enumerate(ids):
            left = closure[left_id]
            for right_id in ids[i + 1:]:
                right = closure[right_id]
                severities = []
                if any(right.matches(ref) for ref in left.conflicts_with):
                    severities.append(left.severity_for(right.id))
                if any(left.matches(ref) for ref in right.conflicts_with):
                    severities.append(right.severity_for(left.id))
                if not severities:
                    continue
                conflicts.append(Conflict(
                    members=(left_id, right_id),
                    reason=f"'{left_id}' and '{right_id}' cannot be used together",
                    severity=max(severities, key=lambda s: s.rank),
                    resolution=f"Remove either '{left_id}' or '{right_id}'",
                ))
        return conflicts

    @staticmethod
    def _order(closure: Dict[str, Feature], edges: Dict[str, List[str]]) -> List[Feature]:
        """
        Kahn's algorithm; dependencies come first and ties go to the smaller id.
        """
        pending = {node: len(deps) for node, deps in edges.items()}
        dependents: Dict[str, List[str]] = {node: [] for node in edges}
        for node, deps in edges.items():
            for dep in deps:
                dependents[dep].append(node)

        ready = [node for node, count in pending.items() if count == 0]
        heapq.heapify(ready)
        ordered = []
        while ready:
            node = heapq.heappop(ready)
            ordered.append(closure[node])
            for dependent in dependents[node]:
                pending[dependent] -= 1
                if pending[dependent] == 0:
                    heapq.heappush(ready, dependent)
        return ordered
