"""Pipeline I/O helpers (internal)."""

import json
from pathlib import Path
from typing import Any, Iterable, List, Union

from stageline.kernel.stage import ParsedStage, Stage


def parse_pipeline(data: Union[dict, list]) -> List[Stage]:
    """Validate a ``{"stages": [...]}`` document or a bare list of stage dicts."""
    if isinstance(data, dict):
        data = data.get("stages", [])
    return [Stage.model_validate(item) for item in data]


def load_pipeline_from_path(path: Union[str, Path]) -> List[Stage]:
    """Load a pipeline from a JSON file path."""
    pipeline_path = Path(path)
    with open(pipeline_path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return parse_pipeline(data)


def dump_stages(stages: Iterable[Union[Stage, ParsedStage]]) -> List[dict]:
    """camelCase wire dicts, unset payload fields omitted."""
    return [stage.model_dump(mode="json", by_alias=True, exclude_none=True) for stage in stages]


def stable_dumps(obj: Any) -> str:
    """
    Stable JSON text for reports and CLI output.

    Keys sorted, two-space indent, UTF-8 kept as is.
    """
    return json.dumps(obj, sort_keys=True, indent=2, ensure_ascii=False)


def write_pipeline(path: Union[str, Path], stages: Iterable[Stage]) -> None:
    """Write a pipeline as a ``{"stages": [...]}`` JSON document."""
    Path(path).write_text(stable_dumps({"stages": dump_stages(stages)}) + "\n", encoding="utf-8")
