"""Public wire models for the reasoning service and the API-key store."""

from typing import Any, Iterable, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from stageline.kernel.prompt import describe_pipeline
from stageline.kernel.stage import Stage


class ColumnInfo(BaseModel):
    """One column of the current table schema, as reported by the analytic engine."""
    column_name: str = Field(validation_alias=AliasChoices("column_name", "name"))
    column_type: Optional[str] = Field(default=None, validation_alias=AliasChoices("column_type", "type"))

    model_config = ConfigDict(extra="allow", populate_by_name=True)  # engines report extra attributes (null, key, ...)


class TransformRequest(BaseModel):
    """Request body sent to the reasoning service."""
    table_schema: List[ColumnInfo] = Field(default_factory=list, alias="schema")
    user_prompt: str = Field(alias="userPrompt")
    api_key: str = Field(alias="apiKey")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def for_pipeline(
        cls,
        schema: Iterable[ColumnInfo | dict],
        stages: Iterable[Stage],
        api_key: str,
        user_prompt: Optional[str] = None,
    ) -> "TransformRequest":
        """Build a request whose prompt is the user's text or, failing that, the synthesized pipeline text."""
        prompt = user_prompt if user_prompt and user_prompt.strip() else describe_pipeline(stages)
        return cls(schema=list(schema), userPrompt=prompt, apiKey=api_key)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class ChartConfig(BaseModel):
    """Chart suggestion accompanying a transformation."""
    type: Optional[str] = None
    x_axis: Optional[str] = None
    y_axis: Optional[str] = None
    z_axis: Optional[str] = None


class TransformResponse(BaseModel):
    """Response body of the reasoning service.

    ``transformation_stages`` is kept as raw dicts: stages are validated
    when applied, so a malformed stage list degrades to SQL extraction
    instead of rejecting the whole response.
    """
    sql: str
    chart_type: Optional[str] = None
    x_axis: Optional[str] = None
    y_axis: Optional[str] = None
    z_axis: Optional[str] = None
    explanation: Optional[str] = ""
    transformation_stages: Optional[List[Any]] = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def chart(self) -> ChartConfig:
        return ChartConfig(type=self.chart_type, x_axis=self.x_axis, y_axis=self.y_axis, z_axis=self.z_axis)


class KeySaveResult(BaseModel):
    """Outcome of storing the API key."""
    ok: bool
    error: Optional[str] = None
