"""Enumerated codes for stage types and stage payload fields.

These constants prevent stringly-typed stage kinds and operators and
ensure client code uses the exact spellings that appear in prompts and
on the wire.
"""

import re
from enum import Enum
from typing import Any


class StageType(str, Enum):
    """Kind of a pipeline stage."""

    LOAD = "LOAD"
    JOIN = "JOIN"
    UNION = "UNION"
    FILTER = "FILTER"
    GROUP = "GROUP"
    SELECT = "SELECT"
    SORT = "SORT"
    AGGREGATE = "AGGREGATE"
    CUSTOM = "CUSTOM"


class JoinType(str, Enum):
    INNER = "INNER"
    LEFT = "LEFT"
    RIGHT = "RIGHT"
    FULL_OUTER = "FULL OUTER"


class UnionType(str, Enum):
    UNION = "UNION"
    UNION_ALL = "UNION ALL"


class FilterOperator(str, Enum):
    EQ = "="
    NE = "!="
    GT = ">"
    LT = "<"
    GE = ">="
    LE = "<="
    LIKE = "LIKE"
    IN = "IN"
    NOT_IN = "NOT IN"


class FilterLogic(str, Enum):
    AND = "AND"
    OR = "OR"


class SortDirection(str, Enum):
    ASC = "ASC"
    DESC = "DESC"


# Spellings accepted on input that are not enum values themselves
_CODE_SYNONYMS = {
    "<>": "!=",
    "==": "=",
    "FULL": "FULL OUTER",
    "FULL OUTER JOIN": "FULL OUTER",
}


def normalize_code(value: Any) -> Any:
    """Normalize a raw code string: upper case, single spaces, known synonyms.

    Non-string values are returned untouched so that pydantic reports them.
    """
    if not isinstance(value, str):
        return value
    normalized = re.sub(r"\s+", " ", value.strip()).upper()
    return _CODE_SYNONYMS.get(normalized, normalized)
