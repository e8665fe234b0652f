"""Build the dependency graph of a pipeline's stages."""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

from stageline.codes import StageType
from .bindings import TableBindings, check_rebound_names, joined_table_name
from .stage import Stage

logger = logging.getLogger(__name__)

# Stage types whose single input is named by ``data.table``
_SINGLE_INPUT_TYPES = {StageType.FILTER, StageType.GROUP, StageType.SELECT, StageType.SORT}


@dataclass
class StageNode:
    """A graph node: one stage, its resolved inputs, and its depth."""
    stage_id: str
    inputs: List[str] = field(default_factory=list)  # producer stage IDs, in reference order
    level: int = 0  # 0 without inputs, else 1 + max(level of inputs)


@dataclass(frozen=True)
class DisplayEdge:
    """An edge for rendering. Implicit edges chain stages that name no input."""
    source: str
    target: str
    implicit: bool = False


class DependencyGraph:
    """Dependency graph for a pipeline.

    Edges are inferred from table names: a stage depends on the stage that
    most recently produced each table it names. Names are bound while
    scanning the pipeline in order, so inputs always point backwards and
    the graph is acyclic by construction. Unresolvable names are dropped,
    never raised.
    """

    def __init__(self, stages: Iterable[Stage]):
        self.stages: List[Stage] = []
        self.nodes: Dict[str, StageNode] = {}  # insertion order == pipeline order
        self.reverse_edges: Dict[str, Set[str]] = defaultdict(set)  # producer -> stages consuming it
        self.unresolved_references: Dict[str, List[str]] = {}  # stage id -> names that did not resolve
        self.rebound_names: Dict[str, List[str]] = {}
        self._build(stages)

    def _build(self, stages: Iterable[Stage]) -> None:
        """Single ordered pass: create node, resolve inputs, level, then bind outputs."""
        bindings = TableBindings()

        for stage in stages:
            if stage.id in self.nodes:
                logger.debug(f"Skipping stage with duplicate id {stage.id}")
                continue
            self.stages.append(stage)
            node = StageNode(stage_id=stage.id)
            self.nodes[stage.id] = node

            for table_name in self._referenced_tables(stage):
                producer_id = bindings.resolve(table_name)
                if producer_id is None:
                    if table_name:
                        self.unresolved_references.setdefault(stage.id, []).append(table_name)
                        logger.debug(f"Stage {stage.id}: table '{table_name}' has no producer, dropped")
                    continue
                node.inputs.append(producer_id)
                self.reverse_edges[producer_id].add(stage.id)

            if node.inputs:
                node.level = 1 + max(self.nodes[input_id].level for input_id in node.inputs)

            # Outputs become visible only to stages scanned after this one
            data = stage.data
            if stage.type == StageType.LOAD and data.table_name:
                bindings.bind(data.table_name, stage.id)
            elif stage.type == StageType.JOIN and data.left_table and data.right_table:
                bindings.bind(joined_table_name(data.left_table, data.right_table), stage.id)
            if stage.produces_table:
                bindings.bind(stage.produces_table, stage.id)

        self.rebound_names = check_rebound_names(bindings)

    @staticmethod
    def _referenced_tables(stage: Stage) -> List[Optional[str]]:
        """Table names a stage reads from, in reference order."""
        data = stage.data
        if stage.type == StageType.JOIN:
            return [data.left_table, data.right_table]
        if stage.type == StageType.UNION:
            return list(data.tables or [])
        if stage.type in _SINGLE_INPUT_TYPES:
            return [data.table]
        return []

    def get_node(self, stage_id: str) -> Optional[StageNode]:
        return self.nodes.get(stage_id)

    def get_stage(self, stage_id: str) -> Optional[Stage]:
        """Get stage by ID."""
        for stage in self.stages:
            if stage.id == stage_id:
                return stage
        return None

    def get_inputs(self, stage_id: str) -> List[str]:
        """Get direct inputs of a stage (empty for unknown IDs)."""
        node = self.nodes.get(stage_id)
        return list(node.inputs) if node else []

    def get_dependents(self, stage_id: str) -> Set[str]:
        """Get stages that read this stage's output (reverse edges)."""
        return set(self.reverse_edges.get(stage_id, set()))

    def get_transitive_dependencies(self, stage_id: str) -> Set[str]:
        """Get all transitive inputs (recursive)."""
        visited = set()
        stack = [stage_id]

        while stack:
            current = stack.pop()
            if current in visited:
                continue
            visited.add(current)
            for dep in self.get_inputs(current):
                if dep not in visited:
                    stack.append(dep)

        visited.discard(stage_id)  # Don't include the node itself
        return visited

    def get_transitive_dependents(self, stage_id: str) -> Set[str]:
        """Get all transitive dependents (what depends on this stage, recursively)."""
        visited = set()
        stack = [stage_id]

        while stack:
            current = stack.pop()
            if current in visited:
                continue
            visited.add(current)
            for dependent in self.get_dependents(current):
                if dependent not in visited:
                    stack.append(dependent)

        visited.discard(stage_id)
        return visited

    def get_dependency_path(self, from_id: str, to_id: str) -> List[str] | None:
        """Get a shortest dependency path from from_id to to_id, or None if no path exists."""
        if from_id not in self.nodes or to_id not in self.nodes:
            return None
        if from_id == to_id:
            return [from_id]

        queue = [(from_id, [from_id])]
        visited = {from_id}

        while queue:
            current, path = queue.pop(0)

            for dependent in sorted(self.get_dependents(current)):  # Sort for deterministic order
                if dependent == to_id:
                    return path + [dependent]

                if dependent not in visited:
                    visited.add(dependent)
                    queue.append((dependent, path + [dependent]))

        return None

    def stages_by_level(self) -> List[Tuple[int, List[Stage]]]:
        """Group stages by level, ascending; pipeline order within a level."""
        levels: Dict[int, List[Stage]] = {}
        for stage in self.stages:
            levels.setdefault(self.nodes[stage.id].level, []).append(stage)
        return sorted(levels.items(), key=lambda item: item[0])

    def display_edges(self) -> List[DisplayEdge]:
        """
        Edges for rendering the pipeline.

        Stages with resolved inputs get one edge per input. A non-LOAD stage
        without inputs that is not first is chained to the nearest preceding
        non-LOAD stage. Chained edges are display-only: they are not inputs
        and do not affect levels. LOAD stages receive no edges.
        """
        edges: List[DisplayEdge] = []
        previous_non_load: Optional[str] = None

        for index, stage in enumerate(self.stages):
            if stage.type == StageType.LOAD:
                continue

            node = self.nodes[stage.id]
            if node.inputs:
                for input_id in node.inputs:
                    edges.append(DisplayEdge(source=input_id, target=stage.id))
            elif index > 0 and previous_non_load is not None:
                edges.append(DisplayEdge(source=previous_non_load, target=stage.id, implicit=True))

            previous_non_load = stage.id

        return edges
