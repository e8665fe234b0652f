"""stageline: declarative table pipelines kept in sync with prompts, graphs and SQL."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("stageline")
except PackageNotFoundError:
    __version__ = "dev"

# Public API exports
from stageline.api import (
    GraphResult,
    build_graph,
    describe,
    extract,
    graph_result,
    load_pipeline,
    stages_from_response,
)
from stageline.codes import StageType
from stageline.contracts import TransformRequest, TransformResponse
from stageline.kernel.stage import ParsedStage, Stage, StageData

__all__ = [
    "__version__",
    "GraphResult",
    "build_graph",
    "describe",
    "extract",
    "graph_result",
    "load_pipeline",
    "stages_from_response",
    "StageType",
    "Stage",
    "StageData",
    "ParsedStage",
    "TransformRequest",
    "TransformResponse",
]
