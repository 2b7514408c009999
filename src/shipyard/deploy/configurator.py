"""Post-Deploy Configurator: ordered in-container configuration steps.

Each step moves through ``pending -> attempted -> succeeded | skipped_failed``
or is ``skipped`` when gated off or already completed with the same command.
Whether a failure halts the run is declared per step.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable

from shipyard.deploy.clusters.base import BaseCluster, ExecResult
from shipyard.deploy.retry import call_with_retry
from shipyard.deploy.state import compute_config_hash
from shipyard.deploy.waiter import ExecReadyPredicate, ReadinessWaiter
from shipyard.lib.errors import ClusterError, ConfigStepError, ReadinessTimeoutError
from shipyard.lib.logging_config import get_logger
from shipyard.models.config import RetryConfig
from shipyard.models.deployment import ComponentSpec, ConfigStep, DeployParameters
from shipyard.models.deployment_state import StepResult, StepStatus

logger = get_logger(__name__)

MAX_OUTPUT = 500


def step_hash(step: ConfigStep) -> str:
    """Hash identifying what a step runs."""
    return compute_config_hash(step.model_dump(include={"command", "container"}))


class PostDeployConfigurator:
    """Run a component's configuration steps strictly in order."""

    def __init__(
        self,
        cluster: BaseCluster,
        namespace: str,
        waiter: ReadinessWaiter,
        exec_ready_timeout: float = 300,
        retry: RetryConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the configurator.

        Args:
            cluster: Cluster backend used for exec
            namespace: Target namespace
            waiter: Waiter used for the exec-ready signal
            exec_ready_timeout: Bound on waiting for exec readiness
            retry: Policy for transient exec failures
            sleep: Sleep function used between retries
            clock: Monotonic clock that run deadlines refer to
        """
        self._cluster = cluster
        self._namespace = namespace
        self._waiter = waiter
        self._exec_ready_timeout = exec_ready_timeout
        self._retry = retry or RetryConfig()
        self._sleep = sleep
        self._clock = clock

    def plan(self, component: ComponentSpec) -> list[StepResult]:
        """Initial (pending) results for a component's steps."""
        return [
            StepResult(step=step.name, fatal=step.fatal)
            for step in component.post_deploy
        ]

    async def run(
        self,
        component: ComponentSpec,
        selector: str,
        params: DeployParameters,
        completed: dict[str, str] | None = None,
        deadline: float | None = None,
    ) -> list[StepResult]:
        """Plan and execute a component's steps."""
        return await self.execute(
            component,
            self.plan(component),
            selector,
            params,
            completed=completed,
            deadline=deadline,
        )

    async def execute(
        self,
        component: ComponentSpec,
        results: list[StepResult],
        selector: str,
        params: DeployParameters,
        completed: dict[str, str] | None = None,
        deadline: float | None = None,
    ) -> list[StepResult]:
        """Execute steps, updating ``results`` and ``completed`` in place.

        Args:
            component: Rendered component
            results: Results from :meth:`plan`, one per step
            selector: Label selector of the component's pods
            params: Run parameters (gates steps via ``when``)
            completed: Step name to command hash of steps done on earlier runs
            deadline: Absolute clock value bounding exec-ready waits, command
                timeouts and retries

        Returns:
            The updated results

        Raises:
            ConfigStepError: When a fatal step fails; later steps stay pending.
        """
        completed = completed if completed is not None else {}
        exec_ready: bool | None = None if component.exec_ready else True
        exec_ready_detail = ""
        done: set[str] = set()

        for step, result in zip(component.post_deploy, results):
            if step.when and not params.flag(step.when):
                result.status = StepStatus.SKIPPED
                result.detail = f"disabled (parameter '{step.when}' is not set)"
                logger.info(f"{component.name}: step '{step.name}' skipped, gated off")
                continue

            unmet = [name for name in step.requires if name not in done]
            if unmet:
                result.status = StepStatus.SKIPPED
                result.detail = f"requires {', '.join(unmet)}, which did not succeed"
                logger.warning(
                    f"{component.name}: step '{step.name}' skipped, "
                    f"{', '.join(unmet)} did not succeed"
                )
                continue

            digest = step_hash(step)
            if completed.get(step.name) == digest:
                result.status = StepStatus.SKIPPED
                result.detail = "already applied"
                done.add(step.name)
                logger.debug(f"{component.name}: step '{step.name}' already applied")
                continue

            if step.requires_exec_ready and exec_ready is None:
                exec_ready, exec_ready_detail = await self._wait_exec_ready(
                    component, selector, deadline
                )

            result.status = StepStatus.ATTEMPTED
            if step.requires_exec_ready and not exec_ready:
                outcome = ExecResult(exit_code=None, output=exec_ready_detail)
            else:
                logger.info(f"{component.name}: running step '{step.name}'")
                outcome = await asyncio.to_thread(
                    self._exec, component, step, selector, deadline
                )

            if outcome.succeeded:
                result.status = StepStatus.SUCCEEDED
                result.exit_code = 0
                completed[step.name] = digest
                done.add(step.name)
                logger.info(f"{component.name}: step '{step.name}' succeeded")
                continue

            result.status = StepStatus.SKIPPED_FAILED
            result.exit_code = outcome.exit_code
            result.detail = outcome.output.strip()[-MAX_OUTPUT:] or None
            completed.pop(step.name, None)
            if step.fatal:
                logger.error(
                    f"{component.name}: fatal step '{step.name}' failed "
                    f"(exit {outcome.exit_code})"
                )
                raise ConfigStepError(
                    component=component.name,
                    step=step.name,
                    exit_code=outcome.exit_code,
                    output=result.detail or "",
                )
            logger.warning(
                f"{component.name}: step '{step.name}' failed "
                f"(exit {outcome.exit_code}), continuing"
            )

        return results

    async def _wait_exec_ready(
        self, component: ComponentSpec, selector: str, deadline: float | None
    ) -> tuple[bool, str]:
        predicate = ExecReadyPredicate(
            self._cluster,
            self._namespace,
            selector,
            component.main_container,
            list(component.exec_ready or []),
        )
        try:
            await self._waiter.wait(
                f"{component.name} (exec)",
                predicate,
                timeout=self._exec_ready_timeout,
                deadline=deadline,
            )
        except ReadinessTimeoutError as exc:
            observed = exc.last_observed_state
            return False, f"container never accepted commands: {observed}"
        return True, ""

    def _exec(
        self,
        component: ComponentSpec,
        step: ConfigStep,
        selector: str,
        deadline: float | None = None,
    ) -> ExecResult:
        timeout = float(step.timeout)
        if deadline is not None:
            remaining = deadline - self._clock()
            if remaining <= 0:
                return ExecResult(
                    exit_code=None, output="run deadline reached before the step ran"
                )
            # The command must not outlive the run
            timeout = min(timeout, remaining)
        try:
            return call_with_retry(
                self._cluster.exec,
                self._namespace,
                selector,
                step.container or component.main_container,
                list(step.command),
                timeout,
                retry=self._retry,
                sleep=self._sleep,
                description=f"exec {component.name}/{step.name}",
                deadline=deadline,
                clock=self._clock,
            )
        except ClusterError as exc:
            return ExecResult(exit_code=None, output=exc.message)
