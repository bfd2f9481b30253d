from __future__ import annotations

from pydantic import AwareDatetime, BaseModel, Field, TypeAdapter

from pea.schemas.diff import DiffSegment


class PromptVersion(BaseModel):
    id: str
    base_prompt: str
    improved_prompt: str
    model: str
    version_number: int = Field(..., ge=1)
    timestamp: AwareDatetime


class PromptVersionGroup(BaseModel):
    id: str
    base_prompt: str = Field(..., description="Base prompt of the first version; similarity anchor")
    versions: list[PromptVersion] = Field(..., min_length=1)
    created_at: AwareDatetime
    updated_at: AwareDatetime


class ModelUsage(BaseModel):
    model: str
    count: int


class HistorySummary(BaseModel):
    total_groups: int = 0
    total_versions: int = 0
    model_usage: list[ModelUsage] = Field(default_factory=list)


class VersionComparison(BaseModel):
    """Diffs between two versions of the same group."""

    group_id: str
    first: PromptVersion
    second: PromptVersion
    base_prompt_diff: list[DiffSegment]
    improved_prompt_diff: list[DiffSegment]


GroupList = TypeAdapter(list[PromptVersionGroup])
