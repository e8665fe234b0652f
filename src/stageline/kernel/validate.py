"""Stage completeness predicate.

A stage is complete when its payload carries every field needed to
describe it in a prompt. ``description`` is never required.
"""

from typing import Any, Union

from stageline.codes import StageType
from .stage import ParsedStage, Stage


def _filled(value: Any) -> bool:
    """Truthiness in the sense of a form field: None, "" and [] are empty."""
    return bool(value)


def is_complete(stage: Union[Stage, ParsedStage]) -> bool:
    """Return True when the stage's payload is complete for its type.

    Pure and total: never raises for any stage.
    """
    data = stage.data
    stage_type = stage.type

    if stage_type == StageType.LOAD:
        return _filled(data.table_name) or _filled(data.file_name)
    if stage_type == StageType.JOIN:
        return all(_filled(v) for v in (data.left_table, data.right_table, data.left_key, data.right_key))
    if stage_type == StageType.UNION:
        return _filled(data.tables)
    if stage_type == StageType.FILTER:
        return (
            _filled(data.table)
            and _filled(data.column)
            and data.operator is not None
            and data.value is not None
            and data.value != ""
        )
    if stage_type == StageType.GROUP:
        return _filled(data.group_by)
    if stage_type == StageType.SELECT:
        return _filled(data.columns)
    if stage_type == StageType.SORT:
        return _filled(data.order_by)
    if stage_type == StageType.CUSTOM:
        return bool(data.sql and data.sql.strip())
    # Other types (AGGREGATE) carry no required payload
    return True
