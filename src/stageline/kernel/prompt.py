"""Synthesize natural-language instructions from stages.

The phrasing here becomes part of the reasoning-service prompt, so the
templates are fixed and must not drift.
"""

from typing import Any, Iterable, Union

from stageline.codes import JoinType, StageType, UnionType
from .stage import ParsedStage, Stage
from .validate import is_complete


def _code(value: Any) -> str:
    return value.value if hasattr(value, "value") else str(value)


def format_value(value: Any) -> str:
    """Render a FILTER value the way it reads in a sentence."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join(format_value(v) for v in value)
    return str(value)


def describe_stage(stage: Union[Stage, ParsedStage]) -> str:
    """Describe one stage; empty string when the stage is incomplete."""
    if not is_complete(stage):
        return ""

    data = stage.data
    stage_type = stage.type

    if stage_type == StageType.JOIN:
        join_type = _code(data.join_type or JoinType.INNER)
        return (
            f"Perform a {join_type} JOIN between {data.left_table} and {data.right_table} "
            f"on {data.left_table}.{data.left_key} = {data.right_table}.{data.right_key}"
        )
    if stage_type == StageType.UNION:
        union_type = _code(data.union_type or UnionType.UNION)
        return f"Perform {union_type} on tables: {', '.join(data.tables)}"
    if stage_type == StageType.FILTER:
        return f"Filter {data.table} where {data.column} {_code(data.operator)} {format_value(data.value)}"
    if stage_type == StageType.GROUP:
        text = f"Group by {', '.join(data.group_by)}"
        if data.aggregations:
            text += " with " + ", ".join(
                f"{agg.function}({agg.column})" + (f" as {agg.alias}" if agg.alias else "")
                for agg in data.aggregations
            )
        return text
    if stage_type == StageType.SELECT:
        return f"Select columns: {', '.join(data.columns)}"
    if stage_type == StageType.SORT:
        return "Sort by " + ", ".join(f"{term.column} {_code(term.direction)}" for term in data.order_by)
    if stage_type == StageType.CUSTOM:
        return f"Execute custom SQL: {data.sql}"

    return stage.description or ""


def describe_pipeline(stages: Iterable[Union[Stage, ParsedStage]]) -> str:
    """Join the descriptions of the complete stages into one instruction.

    Sentences are joined with ". " and closed with a single period; an
    empty string is returned when no stage contributes text.
    """
    parts = [text for text in (describe_stage(stage) for stage in stages) if text]
    if not parts:
        return ""
    return ". ".join(parts) + "."
