"""Pytest configuration for tests.

No sys.path hacks - tests should import from installed stageline package.
"""

import os
import pytest

from stageline.codes import StageType
from stageline.kernel.stage import Stage


def pytest_addoption(parser):
    """Add gated perf test option."""
    parser.addoption(
        "--run-perf",
        action="store_true",
        default=False,
        help="Run performance sentinel benchmarks (gated)."
    )


def pytest_collection_modifyitems(config, items):
    """Skip perf-marked tests unless --run-perf is set."""
    if config.getoption("--run-perf"):
        return
    skip_perf = pytest.mark.skip(reason="perf tests gated; pass --run-perf")
    for item in items:
        if "perf" in item.keywords:
            item.add_marker(skip_perf)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    """Keep tests away from a developer's STAGELINE_* variables and ./data."""
    for name in list(os.environ):
        if name.startswith("STAGELINE_"):
            monkeypatch.delenv(name, raising=False)
    from stageline.config import settings
    monkeypatch.setattr(settings, "DATA_DIR", tmp_path / "data")


def make_stage(stage_type, data=None, stage_id=None, **kwargs) -> Stage:
    """Build a Stage with a readable, fixed id."""
    stage = Stage.create(stage_type, data, **kwargs)
    if stage_id is not None:
        stage = stage.model_copy(update={"id": stage_id})
    return stage


@pytest.fixture
def orders_pipeline():
    """LOAD orders, LOAD customers, JOIN them, FILTER the join, SORT."""
    return [
        make_stage(StageType.LOAD, {"tableName": "orders"}, "load_orders"),
        make_stage(StageType.LOAD, {"tableName": "customers"}, "load_customers"),
        make_stage(StageType.JOIN, {
            "joinType": "LEFT",
            "leftTable": "orders",
            "rightTable": "customers",
            "leftKey": "cust_id",
            "rightKey": "id",
        }, "join"),
        make_stage(StageType.FILTER, {
            "table": "joined_orders_customers",
            "column": "amount",
            "operator": ">",
            "value": "500",
        }, "filter"),
        make_stage(StageType.SORT, {"orderBy": [{"column": "amount", "direction": "DESC"}]}, "sort"),
    ]

