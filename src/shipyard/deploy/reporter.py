"""Reporter: structured summary of a reconciliation run.

The report lists every component with its outcome, even when the run
failed. Credential values appear only for secrets created during the run;
they cannot be shown again later.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from datetime import datetime

from shipyard.lib.ui import ANSIColors, colorize, colorize_outcome
from shipyard.models.deployment_state import (
    ComponentState,
    Outcome,
    ReconciliationResult,
    RunReport,
    RunStatus,
    SecretRecord,
)

MAX_DETAIL = 72


def _truncate(text: str, width: int = MAX_DETAIL) -> str:
    line = " ".join(text.split())
    return line if len(line) <= width else line[: width - 3] + "..."


class Reporter:
    """Build and render run reports."""

    def __init__(self, force_tty: bool | None = None) -> None:
        """Initialize the reporter.

        Args:
            force_tty: Force colours on or off (None: detect the terminal)
        """
        self._force_tty = force_tty

    def build(
        self,
        results: list[ReconciliationResult],
        endpoints: dict[str, str],
        secrets: Iterable[SecretRecord],
        *,
        deployment: str = "",
        namespace: str = "",
        started_at: datetime | None = None,
        finished_at: datetime | None = None,
    ) -> RunReport:
        """Assemble a report from per-component results."""
        return RunReport(
            deployment=deployment,
            namespace=namespace,
            status=self.overall_status(results),
            results=list(results),
            endpoints=dict(endpoints),
            credentials={
                record.name: dict(record.values)
                for record in secrets
                if record.created
            },
            started_at=started_at,
            finished_at=finished_at,
        )

    @staticmethod
    def overall_status(results: list[ReconciliationResult]) -> RunStatus:
        """Failed if any component failed or was skipped; warnings otherwise."""
        if any(r.outcome in (Outcome.FAILED, Outcome.SKIPPED) for r in results):
            return RunStatus.FAILED
        if any(r.warnings for r in results):
            return RunStatus.SUCCEEDED_WITH_WARNINGS
        return RunStatus.SUCCEEDED

    def render_text(self, report: RunReport) -> str:
        """Render a report as a human-readable table."""
        tty = self._force_tty
        lines: list[str] = []
        header = f"Deployment {report.deployment}"
        if report.namespace:
            header += f" in {report.namespace}"
        lines.append(f"{header}: {colorize_outcome(report.status.value, tty)}")
        lines.append("")

        width = max([len("COMPONENT"), *(len(r.component) for r in report.results)])
        lines.append(f"{'COMPONENT':<{width}}  {'OUTCOME':<9}  DETAIL")
        for result in report.results:
            outcome = colorize_outcome(result.outcome.value, tty)
            padding = " " * (9 - len(result.outcome.value))
            detail = _truncate(result.detail or "")
            lines.append(f"{result.component:<{width}}  {outcome}{padding}  {detail}")

        warnings = report.warnings
        if warnings:
            lines.append("")
            lines.append(colorize("Warnings:", ANSIColors.YELLOW, tty))
            for component, step in warnings:
                status = (
                    "not run" if step.exit_code is None else f"exit {step.exit_code}"
                )
                line = f"  - {component}: step '{step.step}' failed ({status})"
                if step.detail:
                    line += f": {_truncate(step.detail, 60)}"
                lines.append(line)

        if report.endpoints:
            lines.append("")
            lines.append("Endpoints:")
            for name, url in report.endpoints.items():
                lines.append(f"  {name}: {colorize(url, ANSIColors.CYAN, tty)}")

        if report.credentials:
            lines.append("")
            lines.append(
                colorize(
                    "Generated credentials (shown only once, store them now):",
                    ANSIColors.YELLOW,
                    tty,
                )
            )
            for secret, values in report.credentials.items():
                lines.append(f"  {secret}:")
                for key, value in values.items():
                    lines.append(f"    {key}: {value}")

        lines.append("")
        lines.append(
            "Summary: "
            + ", ".join(
                f"{report.count(outcome)} {outcome.value}" for outcome in Outcome
            )
        )
        return "\n".join(lines)

    def render_json(self, report: RunReport) -> str:
        """Render a report as JSON."""
        payload = report.model_dump(mode="json")
        payload["summary"] = {
            outcome.value: report.count(outcome) for outcome in Outcome
        }
        payload["warnings"] = [
            {"component": component, **step.model_dump(mode="json")}
            for component, step in report.warnings
        ]
        return json.dumps(payload, indent=2)

    def render_status(
        self, deployment: str, rows: list[tuple[str, str, ComponentState | None]]
    ) -> str:
        """Render stored component state for ``deploy status``."""
        width = max([len("COMPONENT"), *(len(name) for name, _, _ in rows)])
        lines = [
            f"Deployment {deployment}",
            "",
            f"{'COMPONENT':<{width}}  {'SYNC':<12}  {'READY':<5}  LAST OBSERVED",
        ]
        for name, sync, state in rows:
            if state is None:
                ready, observed = "-", ""
            else:
                ready = {True: "yes", False: "no", None: "-"}[state.ready]
                observed = state.last_error or state.last_observed or ""
            lines.append(
                f"{name:<{width}}  {sync:<12}  {ready:<5}  {_truncate(observed, 60)}"
            )
        return "\n".join(lines)
