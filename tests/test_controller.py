"""Tests for the pipeline controller: stage editing, submissions, generation guard."""

import asyncio
from datetime import datetime, timezone

from stageline.codes import StageType
from stageline.contracts import TransformResponse
from stageline.kernel.stage import Stage, StageData
from stageline.service.client import ReasoningServiceError, ReasoningServiceHTTPError
from stageline.service.controller import MISSING_API_KEY_MESSAGE, PipelineController
from stageline.service.keystore import ApiKeyStore


SCHEMA = [{"column_name": "amount", "column_type": "DOUBLE"}, {"name": "region", "type": "VARCHAR"}]


def _response(sql="SELECT region FROM orders ORDER BY region DESC", explanation="Regions", stages=None):
    return TransformResponse(
        sql=sql,
        chart_type="bar",
        x_axis="region",
        y_axis="amount",
        explanation=explanation,
        transformation_stages=stages,
    )


class FakeClient:
    """Records requests and answers from a queue (exceptions are raised)."""

    def __init__(self, *answers):
        self.answers = list(answers)
        self.requests = []

    def transform(self, request):
        self.requests.append(request)
        answer = self.answers.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return answer

    async def transform_async(self, request):
        return self.transform(request)


def _controller(client=None, tmp_path=None, **kwargs):
    key_store = ApiKeyStore(tmp_path) if tmp_path is not None else None
    return PipelineController(client=client, key_store=key_store, table_schema=SCHEMA, **kwargs)


def _load_and_filter(controller):
    controller.add_stage(StageType.LOAD, {"tableName": "orders"})
    controller.add_stage(StageType.FILTER, {"table": "orders", "column": "amount", "operator": ">", "value": 500})


# Stage list

def test_add_edit_delete():
    controller = _controller()
    load = controller.add_stage(StageType.LOAD, {"tableName": "orders"}, "Load orders")
    flt = controller.add_stage(StageType.FILTER, {"table": "orders", "column": "amount"})

    assert [s.id for s in controller.stages] == [load.id, flt.id]
    assert controller.get_stage(flt.id) == flt

    assert controller.delete_stage(load.id) is True
    assert controller.delete_stage(load.id) is False
    assert [s.id for s in controller.stages] == [flt.id]


def test_stages_property_is_a_copy():
    controller = _controller()
    controller.add_stage(StageType.LOAD, {"tableName": "orders"})
    controller.stages.clear()
    assert len(controller.stages) == 1


def test_edit_keeps_identity_and_timestamp():
    controller = _controller()
    original = controller.add_stage(StageType.FILTER, {"table": "orders", "column": "amount"})

    edited = original.model_copy(update={
        "data": StageData(table="orders", column="amount", operator=">", value="500"),
        "description": "Big orders",
        "created_at": datetime(2000, 1, 1, tzinfo=timezone.utc),
    })
    saved = controller.edit_stage(edited)

    assert saved.id == original.id
    assert saved.created_at == original.created_at
    assert saved.description == "Big orders"
    assert controller.stages == [saved]


def test_edit_unknown_id_appends():
    controller = _controller()
    controller.add_stage(StageType.LOAD, {"tableName": "orders"})
    newcomer = Stage.create(StageType.SELECT, {"columns": ["amount"]})
    controller.edit_stage(newcomer)
    assert [s.id for s in controller.stages][-1] == newcomer.id


def test_derived_views_follow_the_stage_list():
    controller = _controller()
    _load_and_filter(controller)
    controller.add_stage(StageType.SORT)

    assert [s.type for s in controller.describable_stages()] == [StageType.LOAD, StageType.FILTER]
    assert controller.prompt() == "Filter orders where amount > 500."
    graph = controller.graph()
    filter_id = controller.stages[1].id
    assert graph.nodes[filter_id].level == 1

    controller.delete_stage(controller.stages[0].id)
    assert controller.graph().nodes[filter_id].level == 0


def test_set_schema():
    controller = _controller()
    controller.set_schema([{"name": "id", "type": "INTEGER"}])
    assert [c.column_name for c in controller.table_schema] == ["id"]


# Submissions

def test_submit_applies_response(tmp_path):
    response = _response(stages=[
        {"type": "LOAD", "data": {"tableName": "orders"}},
        {"type": "LOAD", "data": {"tableName": "regions"}},
        {"type": "SELECT", "data": {"columns": ["region"]}},
    ])
    client = FakeClient(response)
    controller = _controller(client, tmp_path)
    _load_and_filter(controller)
    load_id = controller.stages[0].id

    outcome = controller.submit(api_key="sk-test")

    assert outcome.applied is True
    assert outcome.error is None
    request = client.requests[0]
    assert request.user_prompt == "Filter orders where amount > 500."
    assert request.api_key == "sk-test"
    assert [c.column_name for c in request.table_schema] == ["amount", "region"]

    # Existing LOAD kept, duplicate LOAD skipped, the rest replaced
    stages = controller.stages
    assert stages[0].id == load_id
    assert [(s.type, s.data.table_name) for s in stages[1:2]] == [(StageType.LOAD, "regions")]
    assert stages[2].type == StageType.SELECT
    assert len(stages) == 3

    assert controller.last_result.sql == response.sql
    assert controller.last_result.chart.type == "bar"
    assert controller.status == "Done: Regions"
    assert controller.error is None


def test_submit_extracts_stages_when_response_has_none(tmp_path):
    controller = _controller(FakeClient(_response()), tmp_path)
    _load_and_filter(controller)

    controller.submit(api_key="sk-test")
    assert [s.type for s in controller.stages] == [StageType.LOAD, StageType.SORT, StageType.SELECT]


def test_submit_uses_stored_key(tmp_path):
    ApiKeyStore(tmp_path).save("sk-stored")
    client = FakeClient(_response())
    controller = _controller(client, tmp_path)

    outcome = controller.submit(user_prompt="Show regions")
    assert outcome.applied
    assert client.requests[0].api_key == "sk-stored"
    assert client.requests[0].user_prompt == "Show regions"


def test_missing_key_is_reported_without_a_request(tmp_path):
    client = FakeClient()
    controller = _controller(client, tmp_path)
    _load_and_filter(controller)

    outcome = controller.submit()
    assert outcome.applied is False
    assert outcome.error == MISSING_API_KEY_MESSAGE
    assert controller.error == MISSING_API_KEY_MESSAGE
    assert client.requests == []


def test_empty_prompt_and_missing_client_are_reported(tmp_path):
    controller = _controller(FakeClient(), tmp_path)
    controller.add_stage(StageType.SORT)
    assert "Nothing to transform" in controller.submit(api_key="sk-test").error

    assert _controller().submit(user_prompt="x", api_key="sk-test").error == "No reasoning service client configured."


def test_failure_keeps_last_good_state(tmp_path):
    first = _response(stages=[{"type": "SELECT", "data": {"columns": ["region"]}}])
    client = FakeClient(first, ReasoningServiceHTTPError(500, "Failed to transform data"), ReasoningServiceError("offline"))
    controller = _controller(client, tmp_path)
    _load_and_filter(controller)

    assert controller.submit(api_key="sk-test").applied
    stages_before = controller.stages
    result_before = controller.last_result

    outcome = controller.submit(api_key="sk-test")
    assert outcome.applied is False
    assert "Failed to transform data" in outcome.error
    assert controller.status.startswith("Error: ")
    assert controller.stages == stages_before
    assert controller.last_result == result_before

    assert controller.submit(user_prompt="again", api_key="sk-test").error == "offline"


def test_stale_response_is_discarded():
    controller = _controller()
    _load_and_filter(controller)
    stages_before = controller.stages

    first = controller.begin_submission()
    second = controller.begin_submission()
    assert second > first
    assert not controller.is_current(first)

    assert controller.apply_response(first, _response(sql="SELECT 1")) is False
    assert controller.stages == stages_before
    assert controller.last_result is None

    assert controller.apply_response(second, _response(sql="SELECT 2")) is True
    assert controller.last_result.sql == "SELECT 2"


def test_overlapping_async_submissions_apply_only_the_latest(tmp_path):
    """The slower, older submission finishes last and is dropped."""
    older = _response(sql="SELECT 'older' FROM t ORDER BY a ASC")
    newer = _response(sql="SELECT 'newer' FROM t ORDER BY a DESC")

    class SlowFirstClient:
        def __init__(self):
            self.calls = 0

        async def transform_async(self, request):
            self.calls += 1
            if self.calls == 1:
                await asyncio.sleep(0.05)
                return older
            return newer

    controller = _controller(SlowFirstClient(), tmp_path)

    async def run():
        return await asyncio.gather(
            controller.submit_async(user_prompt="first", api_key="sk-test"),
            controller.submit_async(user_prompt="second", api_key="sk-test"),
        )

    first, second = asyncio.run(run())
    assert first.stale is True
    assert first.applied is False
    assert second.applied is True
    assert controller.last_result.sql == newer.sql


def test_failure_of_a_stale_submission_does_not_touch_state(tmp_path):
    controller = _controller(FakeClient(), tmp_path)
    token = controller.begin_submission()
    controller.begin_submission()
    outcome = controller._record_failure(token, "late failure")
    assert outcome.stale is True
    assert controller.error is None


def test_late_pending_mark_of_older_submission_keeps_latest_status():
    """An older submission reaching its request step after a newer one applied leaves status alone."""
    controller = _controller()
    older = controller.begin_submission()
    newer = controller.begin_submission()
    assert controller.apply_response(newer, _response(explanation="Newest"))

    controller._mark_pending(older)
    assert controller.status == "Done: Newest"

    controller._mark_pending(controller.begin_submission())
    assert controller.status == "Thinking..."


def test_older_submission_finishing_during_newer_one_keeps_status(tmp_path):
    """A failing older request does not overwrite the status of the current one."""
    controller = _controller(tmp_path=tmp_path)

    class NestedClient:
        def __init__(self):
            self.calls = 0

        def transform(self, request):
            self.calls += 1
            if self.calls == 1:
                # Newer submission completes while the first request is in flight
                controller.submit(user_prompt="second", api_key="sk-test")
                raise ReasoningServiceError("first request failed")
            return _response(explanation="Second")

    controller.client = NestedClient()
    outcome = controller.submit(user_prompt="first", api_key="sk-test")

    assert outcome.stale is True
    assert controller.status == "Done: Second"
    assert controller.error is None
