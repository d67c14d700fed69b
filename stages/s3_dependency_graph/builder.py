"""Stage 3: Dependency Graph - which formula cells read which cells."""

from __future__ import annotations

from collections import deque
import logging
import time
from typing import Dict, Iterator, List, Optional, Set, Tuple

from config import settings
from core.interfaces import Stage
from core.models import DependencyGraph, DependencyNode, Grid
from formula.parser import FormulaParser
from utils.cells import expand_range, split_sheet, strip_absolute

logger = logging.getLogger(__name__)


class DependencyGraphBuilder(Stage[Grid, DependencyGraph]):
    """Build a dependency graph from the formulas of one grid snapshot."""

    def __init__(
        self,
        parser: Optional[FormulaParser] = None,
        max_range_expansion: Optional[int] = None,
    ):
        self.parser = parser or FormulaParser()
        self.max_range_expansion = max_range_expansion or settings.MAX_RANGE_EXPANSION

    @property
    def name(self) -> str:
        return "Dependency Graph"

    @property
    def stage_number(self) -> int:
        return 3

    def validate_input(self, input_data: Grid) -> bool:
        return isinstance(input_data, Grid)

    def execute(self, input_data: Grid) -> DependencyGraph:
        started = time.perf_counter()
        nodes: Dict[str, DependencyNode] = {}
        dependencies: Dict[str, List[str]] = {}

        for row, col, formula in input_data.iter_formulas():
            address = input_data.cell_address(row, col)
            nodes[address] = DependencyNode(address=address, formula=formula)
            dependencies[address] = self._resolve_references(formula, input_data.sheet_name)

        for address, deps in list(dependencies.items()):
            for dep in deps:
                if dep not in nodes:
                    nodes[dep] = DependencyNode(address=dep)
                    dependencies[dep] = []

        dependents: Dict[str, List[str]] = {address: [] for address in nodes}
        for address, deps in dependencies.items():
            for dep in deps:
                dependents[dep].append(address)

        levels = self._compute_levels(dependencies, dependents)
        cycles = self._find_cycles(dependencies)
        if cycles:
            logger.warning("Found %d circular reference chain(s) in %s", len(cycles), input_data.address)

        for address, node in nodes.items():
            node.dependencies = dependencies[address]
            node.dependents = dependents[address]
            node.level = levels.get(address, -1)

        graph = DependencyGraph(
            nodes=nodes,
            max_depth=max(levels.values(), default=0),
            circular_references=cycles,
            root_nodes=[address for address, deps in dependencies.items() if not deps],
            leaf_nodes=[address for address, users in dependents.items() if not users],
        )
        logger.debug(
            "Dependency graph for %s: %d nodes, depth %d, %.1f ms",
            input_data.address,
            len(nodes),
            graph.max_depth,
            (time.perf_counter() - started) * 1000,
        )
        return graph

    def _resolve_references(self, formula: str, local_sheet: Optional[str]) -> List[str]:
        resolved: List[str] = []
        seen: Set[str] = set()
        for ref in self.parser.extract_references(formula):
            sheet, address = split_sheet(ref)
            prefix = ""
            if sheet and sheet != local_sheet:
                prefix = f"{sheet}!"
            for cell in expand_range(strip_absolute(address).upper(), self.max_range_expansion):
                key = f"{prefix}{cell}"
                if key not in seen:
                    seen.add(key)
                    resolved.append(key)
        return resolved

    def _compute_levels(
        self,
        dependencies: Dict[str, List[str]],
        dependents: Dict[str, List[str]],
    ) -> Dict[str, int]:
        levels: Dict[str, int] = {}
        queue = deque()
        for address, deps in dependencies.items():
            if not deps:
                levels[address] = 0
                queue.append(address)

        while queue:
            node = queue.popleft()
            for user in dependents.get(node, []):
                if user not in levels:
                    levels[user] = levels[node] + 1
                    queue.append(user)

        return levels

    def _find_cycles(self, dependencies: Dict[str, List[str]]) -> List[List[str]]:
        cycles: List[List[str]] = []
        seen_cycles: Set[Tuple[str, ...]] = set()
        visited: Set[str] = set()

        for start in dependencies:
            if start in visited:
                continue
            visited.add(start)
            path = [start]
            on_stack = {start}
            stack: List[Tuple[str, Iterator[str]]] = [(start, iter(dependencies.get(start, [])))]

            while stack:
                node, remaining = stack[-1]
                advanced = False
                for dep in remaining:
                    if dep in on_stack:
                        cycle = path[path.index(dep):]
                        key = self._cycle_key(cycle)
                        if key not in seen_cycles:
                            seen_cycles.add(key)
                            cycles.append(cycle)
                    elif dep not in visited:
                        visited.add(dep)
                        on_stack.add(dep)
                        path.append(dep)
                        stack.append((dep, iter(dependencies.get(dep, []))))
                        advanced = True
                        break
                if not advanced:
                    stack.pop()
                    on_stack.discard(node)
                    path.pop()

        return cycles

    def _cycle_key(self, cycle: List[str]) -> Tuple[str, ...]:
        pivot = cycle.index(min(cycle))
        return tuple(cycle[pivot:] + cycle[:pivot])
