"""State and result models for reconciliation runs.

``ComponentState`` and ``DeploymentState`` are persisted in the cluster
between runs; ``ReconciliationResult`` and ``RunReport`` describe a single
run and are never persisted.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Outcome(str, Enum):
    """Outcome of reconciling one component or resource."""

    APPLIED = "applied"
    UNCHANGED = "unchanged"
    FAILED = "failed"
    SKIPPED = "skipped"


class RunStatus(str, Enum):
    """Overall status of a run."""

    SUCCEEDED = "succeeded"
    SUCCEEDED_WITH_WARNINGS = "succeeded_with_warnings"
    FAILED = "failed"


class StepStatus(str, Enum):
    """State of a post-deploy configuration step."""

    PENDING = "pending"
    ATTEMPTED = "attempted"
    SUCCEEDED = "succeeded"
    SKIPPED_FAILED = "skipped_failed"
    SKIPPED = "skipped"


class ComponentState(BaseModel):
    """Observed state of one component, persisted across runs."""

    model_config = ConfigDict(extra="forbid")

    spec_hash: str = Field(..., description="Hash of the rendered documents")
    resource_versions: dict[str, str] = Field(
        default_factory=dict,
        description="Resource versions returned by the last create/patch",
    )
    ready: bool | None = Field(default=None, description="Last readiness result")
    last_observed: str | None = Field(
        default=None, description="Last state reported by the readiness check"
    )
    last_error: str | None = Field(default=None, description="Last error message")
    completed_steps: dict[str, str] = Field(
        default_factory=dict,
        description="Succeeded post-deploy steps keyed by name, valued by command hash",
    )
    created_at: datetime | None = Field(default=None)
    updated_at: datetime | None = Field(default=None)

    def same_content(self, other: ComponentState | None) -> bool:
        """Whether two states are equal ignoring timestamps."""
        if other is None:
            return False
        exclude = {"created_at", "updated_at"}
        return self.model_dump(exclude=exclude) == other.model_dump(exclude=exclude)


class DeploymentState(BaseModel):
    """Top-level state document stored in the state ConfigMap."""

    model_config = ConfigDict(extra="forbid")

    version: str = Field(default="1.0", description="State format version")
    deployment: str = Field(..., description="Deployment identifier")
    components: dict[str, ComponentState] = Field(
        default_factory=dict, description="Component states keyed by name"
    )


class SecretRecord(BaseModel):
    """A credential set stored as a cluster secret.

    ``created`` is true only in the run that generated the values.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(..., description="Secret name")
    values: dict[str, str] = Field(default_factory=dict, repr=False)
    created_at: datetime | None = Field(default=None)
    created: bool = Field(default=False, description="Generated during this run")


class StepResult(BaseModel):
    """Result of one post-deploy configuration step."""

    model_config = ConfigDict(extra="forbid")

    step: str
    status: StepStatus = StepStatus.PENDING
    fatal: bool
    exit_code: int | None = None
    detail: str | None = None

    @property
    def is_warning(self) -> bool:
        """A failed step that did not halt the run."""
        return self.status == StepStatus.SKIPPED_FAILED and not self.fatal


class ReconciliationResult(BaseModel):
    """Per-run result for one component."""

    model_config = ConfigDict(extra="forbid")

    component: str
    outcome: Outcome
    detail: str | None = None
    error_type: str | None = None
    resources: dict[str, Outcome] = Field(default_factory=dict)
    steps: list[StepResult] = Field(default_factory=list)
    applied_at: datetime | None = None
    ready_at: datetime | None = None

    @property
    def warnings(self) -> list[StepResult]:
        """Non-fatal steps that failed."""
        return [step for step in self.steps if step.is_warning]


class RunReport(BaseModel):
    """Structured summary of a run."""

    model_config = ConfigDict(extra="forbid")

    deployment: str
    namespace: str
    status: RunStatus
    results: list[ReconciliationResult] = Field(default_factory=list)
    endpoints: dict[str, str] = Field(default_factory=dict)
    credentials: dict[str, dict[str, str]] = Field(default_factory=dict)
    started_at: datetime | None = None
    finished_at: datetime | None = None

    def count(self, outcome: Outcome) -> int:
        """Number of components with the given outcome."""
        return sum(1 for result in self.results if result.outcome == outcome)

    @property
    def warnings(self) -> list[tuple[str, StepResult]]:
        """Failed non-fatal steps as (component, step) pairs."""
        return [
            (result.component, step)
            for result in self.results
            for step in result.warnings
        ]
