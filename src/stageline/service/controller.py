"""
Pipeline controller: the per-session owner of the stage list.

All mutations of the pipeline go through this object; derived views
(describable stages, prompt text, dependency graph) are recomputed from
the current stage list on every call. Submissions to the reasoning
service carry a generation token, and only the response to the latest
submission is applied.
"""
import logging
import threading
from dataclasses import dataclass
from typing import Iterable, List, Optional

from stageline.api import stages_from_response
from stageline.codes import StageType
from stageline.contracts import ChartConfig, ColumnInfo, TransformRequest, TransformResponse
from stageline.kernel.graph import DependencyGraph
from stageline.kernel.prompt import describe_pipeline
from stageline.kernel.stage import Stage, StageData
from stageline.kernel.validate import is_complete
from stageline.service.client import ReasoningClient, ReasoningServiceError
from stageline.service.keystore import ApiKeyStore

logger = logging.getLogger(__name__)

MISSING_API_KEY_MESSAGE = "API key is required. Please set your API key before transforming data."


@dataclass(frozen=True)
class TransformResult:
    """The last successfully applied transformation (what the user sees)."""
    sql: str
    explanation: str
    chart: ChartConfig


@dataclass(frozen=True)
class SubmissionOutcome:
    """What happened to one submission."""
    token: int
    applied: bool
    stale: bool = False
    error: Optional[str] = None


class PipelineController:
    """Owns the ordered stage list of one session."""

    def __init__(
        self,
        client: Optional[ReasoningClient] = None,
        key_store: Optional[ApiKeyStore] = None,
        stages: Iterable[Stage] = (),
        table_schema: Iterable[ColumnInfo | dict] = (),
    ):
        self.client = client
        self.key_store = key_store
        self._stages: List[Stage] = list(stages)
        self.table_schema: List[ColumnInfo] = [ColumnInfo.model_validate(c) for c in table_schema]
        self.last_result: Optional[TransformResult] = None
        self.error: Optional[str] = None
        self.status: str = "Ready."
        self._generation = 0
        self._lock = threading.Lock()

    # Stage list

    @property
    def stages(self) -> List[Stage]:
        """A copy of the current stage list, in pipeline order."""
        return list(self._stages)

    def get_stage(self, stage_id: str) -> Optional[Stage]:
        for stage in self._stages:
            if stage.id == stage_id:
                return stage
        return None

    def add_stage(
        self,
        stage_type: StageType | str,
        data: StageData | dict | None = None,
        description: str = "",
        produces_table: Optional[str] = None,
    ) -> Stage:
        """Append a brand-new stage."""
        stage = Stage.create(stage_type, data, description, produces_table)
        self._stages.append(stage)
        return stage

    def edit_stage(self, stage: Stage) -> Stage:
        """
        Save an edited stage.

        A stage whose id is already in the pipeline is replaced in place and
        keeps the original id and created_at; an unknown id is appended.
        """
        for index, existing in enumerate(self._stages):
            if existing.id == stage.id:
                updated = existing.model_copy(update={
                    "type": stage.type,
                    "description": stage.description,
                    "data": stage.data.model_copy(deep=True),
                    "produces_table": stage.produces_table,
                })
                self._stages[index] = updated
                return updated
        self._stages.append(stage)
        return stage

    def delete_stage(self, stage_id: str) -> bool:
        """Remove a stage; False when no stage has that id."""
        for index, existing in enumerate(self._stages):
            if existing.id == stage_id:
                del self._stages[index]
                return True
        return False

    def set_schema(self, columns: Iterable[ColumnInfo | dict]) -> None:
        self.table_schema = [ColumnInfo.model_validate(c) for c in columns]

    # Derived views

    def describable_stages(self) -> List[Stage]:
        return [stage for stage in self._stages if is_complete(stage)]

    def prompt(self) -> str:
        return describe_pipeline(self._stages)

    def graph(self) -> DependencyGraph:
        return DependencyGraph(self._stages)

    # Submissions

    def begin_submission(self) -> int:
        """Start a logical submission and return its generation token."""
        with self._lock:
            self._generation += 1
            return self._generation

    def is_current(self, token: int) -> bool:
        with self._lock:
            return token == self._generation

    def apply_response(self, token: int, response: TransformResponse) -> bool:
        """
        Apply a service response if it belongs to the latest submission.

        Returns False (and changes nothing) for a stale token.
        """
        with self._lock:
            if token != self._generation:
                logger.warning(f"Discarding stale response for submission {token} (latest is {self._generation})")
                return False

            loaded = [stage for stage in self._stages if stage.type == StageType.LOAD]
            loaded_tables = {stage.data.table_name for stage in loaded if stage.data.table_name}
            new_stages: List[Stage] = []
            for parsed in stages_from_response(response):
                if parsed.type == StageType.LOAD and parsed.data.table_name in loaded_tables:
                    continue
                new_stages.append(Stage.from_parsed(parsed))

            self._stages = loaded + new_stages
            explanation = response.explanation or ""
            self.last_result = TransformResult(sql=response.sql, explanation=explanation, chart=response.chart())
            self.error = None
            self.status = f"Done: {explanation}" if explanation else "Done."
            return True

    def _mark_pending(self, token: int) -> None:
        with self._lock:
            if token == self._generation:
                self.status = "Thinking..."

    def _record_failure(self, token: int, message: str) -> SubmissionOutcome:
        # Last good result and stage list stay as they are
        with self._lock:
            if token != self._generation:
                return SubmissionOutcome(token=token, applied=False, stale=True, error=message)
            self.error = message
            self.status = f"Error: {message}"
        return SubmissionOutcome(token=token, applied=False, error=message)

    def _prepare(self, user_prompt: Optional[str], api_key: Optional[str]) -> TransformRequest | str:
        """Build the request, or return the user-visible error message."""
        if self.client is None:
            return "No reasoning service client configured."
        key = api_key or (self.key_store.load() if self.key_store else None)
        if not key:
            return MISSING_API_KEY_MESSAGE
        request = TransformRequest.for_pipeline(self.table_schema, self._stages, key, user_prompt)
        if not request.user_prompt:
            return "Nothing to transform: add a complete stage or type an instruction."
        return request

    def _finish(self, token: int, response: TransformResponse) -> SubmissionOutcome:
        if self.apply_response(token, response):
            return SubmissionOutcome(token=token, applied=True)
        return SubmissionOutcome(token=token, applied=False, stale=True)

    def submit(self, user_prompt: Optional[str] = None, api_key: Optional[str] = None) -> SubmissionOutcome:
        """Send the pipeline (or an explicit instruction) to the reasoning service and apply the answer."""
        token = self.begin_submission()
        prepared = self._prepare(user_prompt, api_key)
        if isinstance(prepared, str):
            return self._record_failure(token, prepared)

        self._mark_pending(token)
        try:
            response = self.client.transform(prepared)
        except ReasoningServiceError as e:
            logger.error(f"Submission {token} failed: {e}")
            return self._record_failure(token, str(e))
        return self._finish(token, response)

    async def submit_async(self, user_prompt: Optional[str] = None, api_key: Optional[str] = None) -> SubmissionOutcome:
        """Async version of submit; overlapping calls apply only the latest answer."""
        token = self.begin_submission()
        prepared = self._prepare(user_prompt, api_key)
        if isinstance(prepared, str):
            return self._record_failure(token, prepared)

        self._mark_pending(token)
        try:
            response = await self.client.transform_async(prepared)
        except ReasoningServiceError as e:
            logger.error(f"Submission {token} failed: {e}")
            return self._record_failure(token, str(e))
        return self._finish(token, response)
