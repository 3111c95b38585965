"""
Generation Schemas

Shapes the model must produce for structured output. These are validated
once, at the generation boundary; the runtime plan model lives in
plan_parser.py.
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class PlanStepSchema(BaseModel):
    """A single step as emitted by the model."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: int = Field(..., description="Unique step id.")
    description: str = Field(..., description="What this step should accomplish.")
    agent: str = Field(
        ...,
        description="Worker role: search, memory, command, verification or userIntent.",
    )
    dependencies: list[int] = Field(default_factory=list, description="Ids of steps that must finish first.")
    completed: bool = Field(default=False, description="Ignored; execution state is reset.")
    result: Optional[Any] = Field(default=None, description="Ignored; execution state is reset.")


class MemoryUpdatePointSchema(BaseModel):
    """Where and when knowledge should be written to memory."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    after_step: int = Field(..., alias="afterStep")
    file_path: str = Field(..., alias="filePath")
    description: str = ""


class PlanSchema(BaseModel):
    """A complete plan emitted by the orchestrator model."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    task_category: str = Field(..., alias="taskCategory")
    severity: Optional[Literal["critical", "major", "minor", "none"]] = None
    steps: list[PlanStepSchema] = Field(default_factory=list)
    search_keywords: list[str] = Field(default_factory=list, alias="searchKeywords")
    memory_update_points: list[MemoryUpdatePointSchema] = Field(
        default_factory=list, alias="memoryUpdatePoints"
    )


class NewStepSchema(BaseModel):
    """Step content for `add` and `modify` edits."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    description: str
    agent: str
    dependencies: list[int] = Field(default_factory=list)


class PlanModificationSchema(BaseModel):
    """
    One edit to the remaining plan.

    `stepId` is the step to remove or modify, or for `add` the step after
    which the new step is inserted.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    action: Literal["add", "remove", "modify"]
    step_id: int = Field(..., alias="stepId")
    new_step: Optional[NewStepSchema] = Field(default=None, alias="newStep")


class PlanAdaptationSchema(BaseModel):
    """Verification verdict on whether the remaining plan should change."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    adaptation_needed: bool = Field(..., alias="adaptationNeeded")
    reason: str = ""
    modifications: list[PlanModificationSchema] = Field(default_factory=list)
