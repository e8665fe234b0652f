"""Pydantic models for pipeline stages.

Payload fields are all optional at the model level; whether a stage is
complete enough to describe or compile is decided by ``validate.is_complete``.
Python names are snake_case, wire names are camelCase, and both are
accepted on input.
"""

import secrets
import string
import time
from datetime import datetime, timezone
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from stageline.codes import (
    FilterLogic,
    FilterOperator,
    JoinType,
    SortDirection,
    StageType,
    UnionType,
    normalize_code,
)


_WIRE_CONFIG = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
    extra="ignore",
)

_ID_ALPHABET = string.digits + string.ascii_lowercase


def new_stage_id() -> str:
    """Generate a stage id of the form ``stage_<epoch millis>_<9 base-36 chars>``."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"stage_{int(time.time() * 1000)}_{suffix}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FilterCondition(BaseModel):
    """One condition of a multi-condition FILTER."""
    column: str
    operator: FilterOperator
    value: Any = None
    logic: Optional[FilterLogic] = None  # connective joining this condition to the previous one

    model_config = _WIRE_CONFIG

    @field_validator("operator", "logic", mode="before")
    @classmethod
    def normalize_codes(cls, v: Any) -> Any:
        return normalize_code(v)


class Aggregation(BaseModel):
    """An aggregate call of a GROUP stage, e.g. SUM(amount) AS total."""
    function: str
    column: str
    alias: Optional[str] = None

    model_config = _WIRE_CONFIG


class OrderTerm(BaseModel):
    column: str
    direction: SortDirection = SortDirection.ASC

    model_config = _WIRE_CONFIG

    @field_validator("direction", mode="before")
    @classmethod
    def normalize_direction(cls, v: Any) -> Any:
        return normalize_code(v)


class StageData(BaseModel):
    """Type-specific stage payload.

    Only the fields relevant to the stage's type are expected to be set:

    - LOAD: table_name, file_name
    - JOIN: join_type, left_table, right_table, left_key, right_key, condition
    - UNION: union_type, tables
    - FILTER: table, column, operator, value, conditions
    - GROUP: group_by, aggregations
    - SELECT: columns
    - SORT: order_by
    - CUSTOM: sql
    """
    # LOAD
    table_name: Optional[str] = None
    file_name: Optional[str] = None

    # JOIN
    join_type: Optional[JoinType] = None
    left_table: Optional[str] = None
    right_table: Optional[str] = None
    left_key: Optional[str] = None
    right_key: Optional[str] = None
    condition: Optional[str] = None

    # UNION
    union_type: Optional[UnionType] = None
    tables: Optional[List[str]] = None

    # FILTER (table is also the input of GROUP/SELECT/SORT)
    table: Optional[str] = None
    column: Optional[str] = None
    operator: Optional[FilterOperator] = None
    value: Any = None
    conditions: Optional[List[FilterCondition]] = None

    # GROUP
    group_by: Optional[List[str]] = None
    aggregations: Optional[List[Aggregation]] = None

    # SELECT
    columns: Optional[List[str]] = None

    # SORT
    order_by: Optional[List[OrderTerm]] = None

    # CUSTOM
    sql: Optional[str] = None

    model_config = _WIRE_CONFIG

    @field_validator("join_type", "union_type", "operator", mode="before")
    @classmethod
    def normalize_codes(cls, v: Any) -> Any:
        if v == "":
            return None
        return normalize_code(v)


def _coerce_data(v: Any) -> Any:
    return StageData() if v is None else v


class ParsedStage(BaseModel):
    """A stage reconstructed from text: no identity, no timestamp."""
    type: StageType
    description: str = ""
    data: StageData = Field(default_factory=StageData)

    model_config = _WIRE_CONFIG

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v: Any) -> Any:
        return normalize_code(v)

    @field_validator("description", mode="before")
    @classmethod
    def none_description(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("data", mode="before")
    @classmethod
    def none_data(cls, v: Any) -> Any:
        return _coerce_data(v)


class Stage(BaseModel):
    """One declarative operation of a pipeline."""
    id: str
    type: StageType
    description: str = ""
    created_at: datetime = Field(
        default_factory=_utcnow,
        alias="createdAt",
        validation_alias=AliasChoices("createdAt", "created_at", "timestamp"),
    )
    data: StageData = Field(default_factory=StageData)
    produces_table: Optional[str] = None  # explicit output name registered in the graph's bindings

    model_config = _WIRE_CONFIG

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v: Any) -> Any:
        return normalize_code(v)

    @field_validator("description", mode="before")
    @classmethod
    def none_description(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("data", mode="before")
    @classmethod
    def none_data(cls, v: Any) -> Any:
        return _coerce_data(v)

    @classmethod
    def create(
        cls,
        type: StageType | str,
        data: StageData | dict | None = None,
        description: str = "",
        produces_table: Optional[str] = None,
    ) -> "Stage":
        """Create a brand-new stage with a fresh id and capture-time timestamp."""
        return cls.model_validate({
            "id": new_stage_id(),
            "type": type,
            "description": description,
            "createdAt": _utcnow(),
            "data": data,
            "producesTable": produces_table,
        })

    @classmethod
    def from_parsed(cls, parsed: ParsedStage) -> "Stage":
        """Promote a parsed stage to a full stage."""
        return cls.create(parsed.type, parsed.data.model_copy(deep=True), parsed.description)
