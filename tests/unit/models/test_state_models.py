"""Tests for persisted state and run result models."""

from datetime import datetime, timezone

import pytest

from shipyard.models.deployment_state import (
    ComponentState,
    DeploymentState,
    Outcome,
    ReconciliationResult,
    SecretRecord,
    StepResult,
    StepStatus,
)


@pytest.mark.unit
class TestComponentState:
    """Tests for ComponentState."""

    def test_same_content_ignores_timestamps(self) -> None:
        """States differing only in timestamps have the same content."""
        first = ComponentState(
            spec_hash="sha256:a",
            ready=True,
            created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        )
        second = first.model_copy(
            update={"updated_at": datetime(2026, 2, 1, tzinfo=timezone.utc)}
        )

        assert first.same_content(second)
        assert not first.same_content(None)

    def test_content_change_detected(self) -> None:
        """A different step record is a content change."""
        first = ComponentState(spec_hash="sha256:a")
        second = ComponentState(
            spec_hash="sha256:a", completed_steps={"setup": "sha256:s"}
        )

        assert not first.same_content(second)

    def test_state_document_round_trip(self) -> None:
        """The persisted JSON document loads back to an equal state."""
        state = DeploymentState(
            deployment="cloud",
            components={"db": ComponentState(spec_hash="sha256:a", ready=True)},
        )

        loaded = DeploymentState.model_validate_json(state.model_dump_json())

        assert loaded == state
        assert loaded.version == "1.0"


@pytest.mark.unit
class TestResults:
    """Tests for step and component results."""

    @pytest.mark.parametrize(
        ("status", "fatal", "warning"),
        [
            (StepStatus.SKIPPED_FAILED, False, True),
            (StepStatus.SKIPPED_FAILED, True, False),
            (StepStatus.SUCCEEDED, False, False),
            (StepStatus.SKIPPED, False, False),
        ],
    )
    def test_step_warning(
        self, status: StepStatus, fatal: bool, warning: bool
    ) -> None:
        """Only failed non-fatal steps are warnings."""
        step = StepResult(step="s", status=status, fatal=fatal)

        assert step.is_warning is warning

    def test_result_warnings(self) -> None:
        """A component result lists its failed non-fatal steps."""
        result = ReconciliationResult(
            component="app",
            outcome=Outcome.APPLIED,
            steps=[
                StepResult(step="a", status=StepStatus.SUCCEEDED, fatal=True),
                StepResult(step="b", status=StepStatus.SKIPPED_FAILED, fatal=False),
            ],
        )

        assert [s.step for s in result.warnings] == ["b"]


@pytest.mark.unit
class TestSecretRecord:
    """Tests for SecretRecord."""

    def test_values_hidden_from_repr(self) -> None:
        """Credential values never appear in the repr."""
        record = SecretRecord(name="db", values={"password": "s3cret"})

        assert "s3cret" not in repr(record)
        assert record.created is False
