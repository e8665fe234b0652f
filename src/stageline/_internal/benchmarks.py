"""Performance sentinel workloads (graph construction and SQL extraction)."""

from __future__ import annotations

import os
from typing import List

from stageline.codes import StageType
from stageline.kernel.stage import Stage


def _budget_from_env(var_name: str, default_ms: float) -> float:
    raw = os.getenv(var_name)
    if not raw:
        return default_ms
    try:
        return float(raw)
    except ValueError:
        return default_ms


MAX_LINEAR_CHAIN_MS = _budget_from_env("STAGELINE_MAX_LINEAR_CHAIN_MS", 1000.0)
MAX_WIDE_FANOUT_MS = _budget_from_env("STAGELINE_MAX_WIDE_FANOUT_MS", 1000.0)
MAX_EXTRACT_MS = _budget_from_env("STAGELINE_MAX_EXTRACT_MS", 500.0)


def linear_chain(length: int) -> List[Stage]:
    """LOAD t0 followed by ``length`` FILTERs, each reading the previous one's named output."""
    stages = [Stage.create(StageType.LOAD, {"tableName": "t0"})]
    for i in range(length):
        stages.append(Stage.create(
            StageType.FILTER,
            {"table": f"t{i}", "column": "amount", "operator": ">", "value": i},
            produces_table=f"t{i + 1}",
        ))
    return stages


def wide_fanout(width: int) -> List[Stage]:
    """One LOAD read by ``width`` independent FILTERs."""
    stages = [Stage.create(StageType.LOAD, {"tableName": "orders"})]
    for i in range(width):
        stages.append(Stage.create(
            StageType.FILTER,
            {"table": "orders", "column": f"c{i}", "operator": "=", "value": i},
        ))
    return stages


def wide_select_sql(columns: int) -> str:
    cols = ", ".join(f"SUM(c{i}) AS s{i}" for i in range(columns))
    return (
        f"SELECT region, {cols} FROM orders o JOIN customers c ON o.cust_id = c.id "
        f"WHERE o.amount > 500 AND o.status = 'open' GROUP BY region ORDER BY region DESC"
    )

