"""Best-effort reconstruction of stages from SQL text.

Used only when the reasoning service answers with SQL but without
structured stages. This is not a SQL parser: it is a fixed sequence of
independent pattern detectors, each scanning the whole statement once
and contributing at most one stage. Detector order is the emission
order, whatever the clause order in the text:

    JOIN, GROUP BY, ORDER BY, WHERE, UNION, SELECT columns

When nothing is detected the statement is wrapped in a single CUSTOM
stage, so the result is never empty.
"""

import re
from typing import List, Optional, Tuple

from stageline.codes import FilterLogic, StageType, UnionType, normalize_code
from .stage import Aggregation, FilterCondition, OrderTerm, ParsedStage, StageData

_FLAGS = re.IGNORECASE | re.DOTALL

DEFAULT_CUSTOM_DESCRIPTION = "Custom SQL transformation"

_JOIN_RE = re.compile(
    r"(?:\b(INNER|LEFT(?:\s+OUTER)?|RIGHT(?:\s+OUTER)?|FULL(?:\s+OUTER)?)\s+)?"
    r"\bJOIN\s+(\w+)(?:\s+(?:AS\s+)?(\w+))?\s+ON\s+(\w+)\.(\w+)\s*=\s*(\w+)\.(\w+)",
    _FLAGS,
)
_FROM_RE = re.compile(r"\bFROM\s+(\w+)", _FLAGS)
_SELECT_RE = re.compile(r"\bSELECT\s+(.+?)\s+FROM\b", _FLAGS)
_SELECT_STAR_RE = re.compile(r"\bSELECT\s+\*", _FLAGS)
_GROUP_RE = re.compile(
    r"\bGROUP\s+BY\s+(.+?)(?=\s+HAVING\b|\s+ORDER\s+BY\b|\s+LIMIT\b|\s+UNION\b|\s*;|\s*$)",
    _FLAGS,
)
_AGGREGATE_RE = re.compile(r"\b(SUM|COUNT|AVG|MAX|MIN)\s*\(([^)]+)\)(?:\s+AS\s+(\w+))?", _FLAGS)
_ORDER_RE = re.compile(r"\bORDER\s+BY\s+([\w.]+)\s+(ASC|DESC)\b", _FLAGS)
_WHERE_RE = re.compile(
    r"\bWHERE\s+(.+?)"
    r"(?=\s+GROUP\s+BY\b|\s+ORDER\s+BY\b|\s+HAVING\b|\s+LIMIT\b|\s+UNION\b|\s*;|\s*$)",
    _FLAGS,
)
_CONDITION_RE = re.compile(
    r"^([\w.]+)\s*(NOT\s+IN\b|IN\b|LIKE\b|>=|<=|!=|<>|=|>|<)\s*(.+)$",
    _FLAGS,
)
_CONNECTIVE_RE = re.compile(r"\s+(AND|OR)\s+", re.IGNORECASE)
_AS_RE = re.compile(r"\s+AS\s+", re.IGNORECASE)
_DISTINCT_RE = re.compile(r"^DISTINCT\s+", re.IGNORECASE)
_UNION_ALL_RE = re.compile(r"\bUNION\s+ALL\b", re.IGNORECASE)


def _top_level_mask(text: str) -> List[bool]:
    """For each character: True when outside parentheses and quotes."""
    mask = []
    depth = 0
    quote: Optional[str] = None
    for ch in text:
        if quote:
            mask.append(False)
            if ch == quote:
                quote = None
            continue
        if ch in ("'", '"'):
            quote = ch
            mask.append(False)
            continue
        if ch == "(":
            depth += 1
        elif ch == ")" and depth > 0:
            depth -= 1
            mask.append(False)
            continue
        mask.append(depth == 0 and ch != "(")
    return mask


def split_top_level_commas(text: str) -> List[str]:
    """Split on commas that are not inside parentheses or quotes."""
    mask = _top_level_mask(text)
    parts = []
    start = 0
    for i, ch in enumerate(text):
        if ch == "," and mask[i]:
            parts.append(text[start:i])
            start = i + 1
    parts.append(text[start:])
    return [p.strip() for p in parts if p.strip()]


def _split_conditions(clause: str) -> List[Tuple[Optional[str], str]]:
    """Split a WHERE clause on top-level AND/OR into (connective, condition) pairs."""
    mask = _top_level_mask(clause)
    pieces: List[Tuple[Optional[str], str]] = []
    connective: Optional[str] = None
    start = 0
    for match in _CONNECTIVE_RE.finditer(clause):
        if not mask[match.start()]:
            continue
        pieces.append((connective, clause[start:match.start()]))
        connective = match.group(1).upper()
        start = match.end()
    pieces.append((connective, clause[start:]))
    return [(logic, text.strip()) for logic, text in pieces if text.strip()]


def _clean_value(raw: str) -> str:
    return re.sub(r"['\"]", "", raw.strip().rstrip(";")).strip()


def _detect_join(sql: str) -> Optional[ParsedStage]:
    match = _JOIN_RE.search(sql)
    if not match:
        return None

    kind, right_table, right_alias, on_left, on_left_col, on_right, on_right_col = match.groups()
    join_type = normalize_code(kind or "INNER")
    if join_type in ("LEFT OUTER", "RIGHT OUTER"):
        join_type = join_type.split(" ")[0]

    from_match = _FROM_RE.search(sql)
    left_table = from_match.group(1) if from_match else on_left

    # Keep leftKey on the left table even when ON names the joined table first
    right_names = {right_table.lower(), (right_alias or right_table).lower()}
    if on_left.lower() in right_names and on_right.lower() not in right_names:
        on_left_col, on_right_col = on_right_col, on_left_col

    return ParsedStage(
        type=StageType.JOIN,
        description=f"{join_type} join {left_table} with {right_table}",
        data=StageData(
            join_type=join_type,
            left_table=left_table,
            right_table=right_table,
            left_key=on_left_col,
            right_key=on_right_col,
        ),
    )


def _detect_group(sql: str) -> Optional[ParsedStage]:
    match = _GROUP_RE.search(sql)
    if not match:
        return None
    group_by = split_top_level_commas(match.group(1))
    if not group_by:
        return None

    aggregations = []
    select_match = _SELECT_RE.search(sql)
    if select_match:
        for agg in _AGGREGATE_RE.finditer(select_match.group(1)):
            aggregations.append(Aggregation(
                function=agg.group(1).upper(),
                column=agg.group(2).strip(),
                alias=agg.group(3),
            ))

    return ParsedStage(
        type=StageType.GROUP,
        description=f"Group by {', '.join(group_by)}",
        data=StageData(group_by=group_by, aggregations=aggregations or None),
    )


def _detect_order(sql: str) -> Optional[ParsedStage]:
    match = _ORDER_RE.search(sql)
    if not match:
        return None
    column, direction = match.group(1), match.group(2).upper()
    return ParsedStage(
        type=StageType.SORT,
        description=f"Sort by {column} {direction}",
        data=StageData(order_by=[OrderTerm(column=column, direction=direction)]),
    )


def _detect_where(sql: str) -> Optional[ParsedStage]:
    match = _WHERE_RE.search(sql)
    if not match:
        return None

    conditions: List[FilterCondition] = []
    for logic, text in _split_conditions(match.group(1)):
        cond = _CONDITION_RE.match(text)
        if not cond:
            continue
        conditions.append(FilterCondition(
            column=cond.group(1),
            operator=cond.group(2),
            value=_clean_value(cond.group(3)),
            logic=FilterLogic(logic) if logic and conditions else None,
        ))
    if not conditions:
        return None

    first = conditions[0]
    from_match = _FROM_RE.search(sql)
    operator = first.operator.value
    return ParsedStage(
        type=StageType.FILTER,
        description=f"Filter where {first.column} {operator} {first.value}",
        data=StageData(
            table=from_match.group(1) if from_match else "",
            column=first.column,
            operator=first.operator,
            value=first.value,
            conditions=conditions if len(conditions) > 1 else None,
        ),
    )


def _detect_union(sql: str) -> Optional[ParsedStage]:
    if "UNION" not in sql.upper():
        return None
    tables = _FROM_RE.findall(sql)
    union_type = UnionType.UNION_ALL if _UNION_ALL_RE.search(sql) else UnionType.UNION
    return ParsedStage(
        type=StageType.UNION,
        description=f"Union {' and '.join(tables)}",
        data=StageData(union_type=union_type, tables=tables),
    )


def _detect_select(sql: str, group_detected: bool) -> Optional[ParsedStage]:
    if group_detected or _SELECT_STAR_RE.search(sql):
        return None
    match = _SELECT_RE.search(sql)
    if not match:
        return None

    clause = _DISTINCT_RE.sub("", match.group(1).strip())
    columns = [_AS_RE.split(col, maxsplit=1)[0].strip() for col in split_top_level_commas(clause)]
    columns = [col for col in columns if col]
    if not columns:
        return None
    return ParsedStage(
        type=StageType.SELECT,
        description=f"Select columns: {', '.join(columns)}",
        data=StageData(columns=columns),
    )


def extract_stages(sql: str, explanation: str = "") -> List[ParsedStage]:
    """
    Reconstruct an approximate, ordered stage list from a SQL statement.

    Args:
        sql: SQL text returned by the reasoning service
        explanation: The service's explanation, used to describe the CUSTOM fallback

    Returns:
        Non-empty list of parsed stages, one per detector that fired, or a
        single CUSTOM stage wrapping ``sql`` when none fired.
    """
    sql = sql or ""
    stages: List[ParsedStage] = []

    join = _detect_join(sql)
    if join:
        stages.append(join)

    group = _detect_group(sql)
    if group:
        stages.append(group)

    for detector in (_detect_order, _detect_where, _detect_union):
        stage = detector(sql)
        if stage:
            stages.append(stage)

    select = _detect_select(sql, group_detected=group is not None)
    if select:
        stages.append(select)

    if not stages:
        stages.append(ParsedStage(
            type=StageType.CUSTOM,
            description=explanation or DEFAULT_CUSTOM_DESCRIPTION,
            data=StageData(sql=sql),
        ))

    return stages
