"""Public API for the stageline package.

High-level functions that return complete, structured results.
Callers should use these functions instead of reaching into kernel modules.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from stageline._internal.io.pipeline import load_pipeline_from_path, parse_pipeline
from stageline.contracts import TransformResponse
from stageline.kernel.graph import DependencyGraph
from stageline.kernel.prompt import describe_pipeline
from stageline.kernel.sql_extract import extract_stages
from stageline.kernel.stage import ParsedStage, Stage

logger = logging.getLogger(__name__)

PipelineInput = Union[str, os.PathLike, Path, Dict[str, Any], List[Any]]


class GraphNodeResult(BaseModel):
    stage_id: str
    type: str
    inputs: List[str]
    level: int


class GraphEdgeResult(BaseModel):
    source: str
    target: str
    implicit: bool = False


class GraphResult(BaseModel):
    """Stable, JSON-friendly view of a pipeline's dependency graph."""
    nodes: List[GraphNodeResult]  # pipeline order
    edges: List[GraphEdgeResult]  # display edges, including implicit chaining
    levels: Dict[int, List[str]]  # level -> stage IDs in pipeline order
    unresolved_references: Dict[str, List[str]] = Field(default_factory=dict)  # stage id -> names with no producer
    rebound_names: Dict[str, List[str]] = Field(default_factory=dict)  # name -> producers, when bound more than once


def load_pipeline(pipeline: PipelineInput) -> List[Stage]:
    """
    Load a pipeline from a JSON file path, a ``{"stages": [...]}`` dict, or a list of stage dicts.

    Raises:
        FileNotFoundError: If a path does not exist
        pydantic.ValidationError: If a stage is structurally invalid
    """
    if isinstance(pipeline, (str, os.PathLike)):
        return load_pipeline_from_path(Path(pipeline))
    return parse_pipeline(pipeline)


def describe(stages: Iterable[Stage]) -> str:
    """Natural-language instruction for the complete stages of a pipeline."""
    return describe_pipeline(stages)


def build_graph(stages: Iterable[Stage]) -> DependencyGraph:
    """Build the dependency graph of a pipeline."""
    return DependencyGraph(stages)


def graph_result(stages: Iterable[Stage]) -> GraphResult:
    """Build the dependency graph and flatten it into a ``GraphResult``."""
    graph = DependencyGraph(stages)
    nodes = [
        GraphNodeResult(
            stage_id=stage.id,
            type=stage.type.value,
            inputs=list(graph.nodes[stage.id].inputs),
            level=graph.nodes[stage.id].level,
        )
        for stage in graph.stages
    ]
    edges = [
        GraphEdgeResult(source=edge.source, target=edge.target, implicit=edge.implicit)
        for edge in graph.display_edges()
    ]
    levels = {level: [stage.id for stage in level_stages] for level, level_stages in graph.stages_by_level()}
    return GraphResult(
        nodes=nodes,
        edges=edges,
        levels=levels,
        unresolved_references={k: list(v) for k, v in graph.unresolved_references.items()},
        rebound_names=dict(graph.rebound_names),
    )


def extract(sql: str, explanation: str = "") -> List[ParsedStage]:
    """Reconstruct stages from SQL text (never empty)."""
    return extract_stages(sql, explanation)


def _structured_stages(raw_stages: Optional[List[Any]]) -> Optional[List[ParsedStage]]:
    """Validate service-provided stages; None when absent, empty, or malformed."""
    if not raw_stages:
        return None
    try:
        return [ParsedStage.model_validate(raw) for raw in raw_stages]
    except ValidationError as e:
        logger.warning(f"Discarding malformed transformationStages ({e.error_count()} errors), extracting from SQL")
        return None


def stages_from_response(response: TransformResponse) -> List[ParsedStage]:
    """
    Stages for a reasoning-service response.

    The service's own structured stages win; SQL extraction runs only when
    they are absent or unusable.
    """
    structured = _structured_stages(response.transformation_stages)
    if structured is not None:
        return structured
    logger.info("Response carries no usable transformationStages, extracting from SQL")
    return extract_stages(response.sql, response.explanation or "")
