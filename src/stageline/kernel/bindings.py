"""Binding layer: connects table names to the stages that produce them.

Pipelines reference their inputs by free-text table names, never by
stage id. ``TableBindings`` is the name -> producer map that the graph
builder grows while scanning a pipeline in order, so a name only
resolves to stages that were already scanned.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


def joined_table_name(left_table: str, right_table: str) -> str:
    """Conventional name under which later stages refer to a JOIN's output."""
    return f"joined_{left_table}_{right_table}"


@dataclass
class TableBindings:
    """Table name -> producing stage id, plus the full binding history."""
    bindings: Dict[str, str] = field(default_factory=dict)  # table name -> stage id (latest producer)
    history: Dict[str, List[str]] = field(default_factory=dict)  # table name -> every producer, in binding order

    def bind(self, table_name: str, stage_id: str) -> None:
        """Bind a name to a producer. Rebinding overwrites; names are never removed."""
        previous = self.bindings.get(table_name)
        if previous is not None and previous != stage_id:
            logger.debug(f"Table name '{table_name}' rebound from {previous} to {stage_id}")
        self.bindings[table_name] = stage_id
        self.history.setdefault(table_name, []).append(stage_id)

    def resolve(self, table_name: Optional[str]) -> Optional[str]:
        """Producer id for a name, or None when the name is unbound or empty."""
        if not table_name:
            return None
        return self.bindings.get(table_name)

    def get_bound_names(self) -> set[str]:
        """Get set of all bound table names."""
        return set(self.bindings.keys())

    def get_names_for_stage(self, stage_id: str) -> List[str]:
        """Names currently resolving to a stage, sorted."""
        return sorted(name for name, bound_id in self.bindings.items() if bound_id == stage_id)


def check_rebound_names(bindings: TableBindings) -> Dict[str, List[str]]:
    """
    Check for names bound by more than one stage.

    This is where the synthetic ``joined_<left>_<right>`` names collide when
    the same two tables are joined twice: references after the second join
    silently resolve to it.

    Returns:
        Dict mapping table name -> producer ids in binding order, for every
        name with two or more distinct producers. Keys are sorted for
        stable reporting.
    """
    rebound: Dict[str, List[str]] = {}
    for name in sorted(bindings.history.keys()):
        producers = bindings.history[name]
        if len(set(producers)) > 1:
            rebound[name] = list(producers)
    return rebound
