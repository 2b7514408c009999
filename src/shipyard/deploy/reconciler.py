"""Reconciler: the control loop that converges a deployment.

Each component runs as its own asyncio task: it waits until its
dependencies report ready, then ensures its secrets, applies its documents,
waits for readiness and runs its configuration steps. Independent
components therefore proceed concurrently. Blocking cluster calls run in
worker threads, and one overall deadline bounds the whole run.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from shipyard.deploy.applier import APPLY_ORDER, ApplyResult, ResourceApplier
from shipyard.deploy.clusters.base import BaseCluster, resource_ref
from shipyard.deploy.configurator import PostDeployConfigurator
from shipyard.deploy.renderer import (
    ManifestRenderer,
    RenderedComponent,
    selector_labels,
    selector_string,
)
from shipyard.deploy.reporter import Reporter
from shipyard.deploy.secrets import SecretStore
from shipyard.deploy.state import (
    delete_state,
    load_state,
    save_state,
    state_configmap_name,
    update_component_state,
)
from shipyard.deploy.waiter import (
    HttpPredicate,
    ReadinessPredicate,
    ReadinessWaiter,
    RolloutPredicate,
    TcpPredicate,
)
from shipyard.lib.errors import (
    ClusterError,
    ConfigStepError,
    DeploymentError,
    ShipyardError,
)
from shipyard.lib.logging_config import get_logger
from shipyard.models.config import RunSettings
from shipyard.models.deployment import (
    ComponentKind,
    ComponentSpec,
    DeploymentSpec,
    DeployParameters,
    HttpCheck,
    RolloutCheck,
    TcpCheck,
)
from shipyard.models.deployment_state import (
    ComponentState,
    DeploymentState,
    Outcome,
    ReconciliationResult,
    RunReport,
    SecretRecord,
    StepStatus,
)

logger = get_logger(__name__)

# API versions of the kinds a deployment may own
KIND_API_VERSIONS: dict[str, str] = {
    "Secret": "v1",
    "ConfigMap": "v1",
    "PersistentVolumeClaim": "v1",
    "StatefulSet": "apps/v1",
    "Deployment": "apps/v1",
    "Service": "v1",
    "Route": "route.openshift.io/v1",
}
DATA_KINDS = ("PersistentVolumeClaim", "Secret")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _Run:
    """Mutable bookkeeping shared by the component tasks of one run."""

    spec: DeploymentSpec
    params: DeployParameters
    state: DeploymentState
    deadline: float
    ready: dict[str, asyncio.Future[bool]] = field(default_factory=dict)
    results: dict[str, ReconciliationResult] = field(default_factory=dict)
    phases: dict[str, str] = field(default_factory=dict)
    secrets: dict[str, SecretRecord] = field(default_factory=dict)
    halted_by: str | None = None
    state_changed: bool = False

    def mark_ready(self, name: str, ready: bool) -> None:
        future = self.ready[name]
        if not future.done():
            future.set_result(ready)


class Reconciler:
    """Converge a namespace to a deployment description."""

    def __init__(
        self,
        cluster: BaseCluster,
        settings: RunSettings | None = None,
        renderer: ManifestRenderer | None = None,
        reporter: Reporter | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        retry_sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize the reconciler.

        Args:
            cluster: Cluster backend
            settings: Run settings (deadlines, poll and retry policies)
            renderer: Manifest renderer
            reporter: Reporter building the final summary
            clock: Monotonic clock used for deadlines
            sleep: Async sleep used between readiness polls
            retry_sleep: Blocking sleep used between transient retries
            now: Wall clock used for result timestamps
        """
        self.cluster = cluster
        self.settings = settings or RunSettings()
        self.renderer = renderer or ManifestRenderer()
        self.reporter = reporter or Reporter()
        self._clock = clock
        self._now = now
        self._retry_sleep = retry_sleep
        self.applier = ResourceApplier(
            cluster, retry=self.settings.retry_config, sleep=retry_sleep, clock=clock
        )
        self.waiter = ReadinessWaiter(
            self.settings.poll_policy, clock=clock, sleep=sleep
        )

    async def reconcile(
        self, spec: DeploymentSpec, params: DeployParameters
    ) -> RunReport:
        """Run one reconciliation pass.

        Rendering happens up front, so a TemplateError aborts the run before
        anything is applied. After that every component gets a result, even
        when the run deadline expires.

        Raises:
            TemplateError: If the description cannot be rendered.
            DeploymentError: If stored state cannot be read.
        """
        started_at = self._now()
        rendered = {rc.name: rc for rc in self.renderer.render(spec, params)}

        if self.settings.track_state:
            state = await asyncio.to_thread(
                load_state, self.cluster, params.namespace, spec.name
            )
        else:
            state = DeploymentState(deployment=spec.name)

        loop = asyncio.get_running_loop()
        run = _Run(
            spec=spec,
            params=params,
            state=state,
            deadline=self._clock() + self.settings.timeout,
        )
        run.ready = {name: loop.create_future() for name in rendered}

        secrets = SecretStore(
            self.cluster,
            params.namespace,
            retry=self.settings.retry_config,
            sleep=self._retry_sleep,
            clock=self._clock,
        )
        configurator = PostDeployConfigurator(
            self.cluster,
            params.namespace,
            self.waiter,
            exec_ready_timeout=self.settings.exec_ready_timeout,
            retry=self.settings.retry_config,
            sleep=self._retry_sleep,
            clock=self._clock,
        )

        logger.info(
            f"Reconciling {spec.name} ({len(rendered)} components) "
            f"in {params.namespace}"
        )
        tasks = [
            asyncio.create_task(
                self._reconcile_component(rc, run, secrets, configurator),
                name=f"reconcile-{rc.name}",
            )
            for rc in rendered.values()
        ]
        try:
            outcomes = await asyncio.wait_for(
                asyncio.gather(*tasks, return_exceptions=True),
                timeout=self.settings.timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"Run deadline of {self.settings.timeout}s exceeded")
            self._record_deadline(run)
        else:
            for rc, outcome in zip(rendered.values(), outcomes):
                if isinstance(outcome, BaseException) and rc.name not in run.results:
                    logger.error(
                        f"Unexpected error reconciling {rc.name}", exc_info=outcome
                    )
                    run.results[rc.name] = ReconciliationResult(
                        component=rc.name,
                        outcome=Outcome.FAILED,
                        detail=str(outcome),
                        error_type=type(outcome).__name__,
                    )

        if self.settings.track_state and run.state_changed:
            await self._save_state(run)

        endpoints = self._endpoints(run, rendered)
        return self.reporter.build(
            [run.results[c.name] for c in spec.components],
            endpoints,
            list(run.secrets.values()),
            deployment=spec.name,
            namespace=params.namespace,
            started_at=started_at,
            finished_at=self._now(),
        )

    async def _reconcile_component(
        self,
        rc: RenderedComponent,
        run: _Run,
        secrets: SecretStore,
        configurator: PostDeployConfigurator,
    ) -> None:
        component = rc.component
        name = component.name
        run.phases[name] = "waiting for dependencies"

        for dep in component.depends_on:
            if not await run.ready[dep]:
                self._skip(run, name, f"dependency '{dep}' is not ready")
                return
        if run.halted_by is not None:
            self._skip(run, name, f"run halted by fatal step in '{run.halted_by}'")
            return

        previous = run.state.components.get(name)
        completed = dict(previous.completed_steps) if previous else {}
        result = ReconciliationResult(component=name, outcome=Outcome.UNCHANGED)
        steps = configurator.plan(component)
        result.steps = steps
        apply_result: ApplyResult | None = None
        ready: bool | None = None
        observed: str | None = None
        error: str | None = None

        try:
            run.phases[name] = "ensuring secrets"
            created_secret = False
            for secret in component.secrets:
                record = await secrets.ensure_from_spec(
                    secret,
                    labels=selector_labels(run.spec.name, name),
                    deadline=run.deadline,
                )
                run.secrets[secret.name] = record
                created_secret = created_secret or record.created

            run.phases[name] = "applying"
            apply_result = await asyncio.to_thread(
                self.applier.apply, rc.documents, run.deadline
            )
            result.resources = {r.ref: r.outcome for r in apply_result.resources}
            result.applied_at = self._now()

            run.phases[name] = "waiting for readiness"
            observation = await self.waiter.wait(
                self._ref(component),
                self._predicate(component, run.params),
                timeout=self.settings.component_timeout,
                deadline=run.deadline,
            )
            ready, observed = True, observation.state
            result.ready_at = self._now()

            run.phases[name] = "configuring"
            try:
                await configurator.execute(
                    component,
                    steps,
                    selector_string(run.spec.name, name),
                    run.params,
                    completed=completed,
                    deadline=run.deadline,
                )
            except ConfigStepError:
                run.halted_by = name
                raise

            changed = (
                apply_result.outcome == Outcome.APPLIED
                or created_secret
                or any(s.status == StepStatus.SUCCEEDED for s in steps)
            )
            result.outcome = Outcome.APPLIED if changed else Outcome.UNCHANGED
            details = []
            if apply_result.drifted:
                reverted = ", ".join(apply_result.drifted)
                details.append(f"reverted outside changes to {reverted}")
            if result.warnings:
                failed = ", ".join(s.step for s in result.warnings)
                details.append(f"non-fatal step(s) failed: {failed}")
            result.detail = "; ".join(details) or observed
            run.mark_ready(name, True)
        except ShipyardError as exc:
            error = str(exc)
            if ready is None:
                ready, observed = False, getattr(exc, "last_observed_state", None)
            result.outcome = Outcome.FAILED
            result.detail = error
            result.error_type = type(exc).__name__
            logger.error(f"{name} failed: {error}")
            run.mark_ready(name, False)
        except Exception:
            run.mark_ready(name, False)
            raise

        run.results[name] = result
        run.phases[name] = "done"
        self._record_state(run, rc, apply_result, ready, observed, error, completed)

    def _skip(self, run: _Run, name: str, reason: str) -> None:
        logger.warning(f"Skipping {name}: {reason}")
        run.results[name] = ReconciliationResult(
            component=name, outcome=Outcome.SKIPPED, detail=reason
        )
        run.phases[name] = "done"
        run.mark_ready(name, False)

    def _record_deadline(self, run: _Run) -> None:
        for name, future in run.ready.items():
            phase = run.phases.get(name, "waiting for dependencies")
            if phase == "done" and name in run.results:
                continue
            if phase == "waiting for dependencies":
                run.results[name] = ReconciliationResult(
                    component=name,
                    outcome=Outcome.SKIPPED,
                    detail="run deadline exceeded while waiting for dependencies",
                )
            else:
                run.results[name] = ReconciliationResult(
                    component=name,
                    outcome=Outcome.FAILED,
                    detail=(
                        f"run deadline of {self.settings.timeout}s exceeded "
                        f"while {phase}"
                    ),
                    error_type="ReadinessTimeoutError",
                )
            if not future.done():
                future.set_result(False)

    def _record_state(
        self,
        run: _Run,
        rc: RenderedComponent,
        apply_result: ApplyResult | None,
        ready: bool | None,
        observed: str | None,
        error: str | None,
        completed: dict[str, str],
    ) -> None:
        previous = run.state.components.get(rc.name)
        refs = {f"{doc['kind']}/{doc['metadata']['name']}" for doc in rc.documents}
        versions = {
            ref: version
            for ref, version in (previous.resource_versions if previous else {}).items()
            if ref in refs
        }
        if apply_result is not None:
            versions.update(apply_result.mutated)
        record = ComponentState(
            spec_hash=rc.spec_hash,
            resource_versions=versions,
            ready=ready,
            last_observed=observed,
            last_error=error,
            completed_steps=completed,
            created_at=previous.created_at if previous else None,
        )
        if update_component_state(run.state, rc.name, record):
            run.state_changed = True

    async def _save_state(self, run: _Run) -> None:
        try:
            await asyncio.to_thread(
                save_state, self.cluster, run.params.namespace, run.state
            )
        except DeploymentError as exc:
            logger.error(f"Component state not saved: {exc}")

    @staticmethod
    def _ref(component: ComponentSpec) -> str:
        if component.kind == ComponentKind.ROUTE:
            return f"Route/{component.name}"
        return f"Deployment/{component.name}"

    def _predicate(
        self, component: ComponentSpec, params: DeployParameters
    ) -> ReadinessPredicate:
        """Readiness predicate for a rendered component."""
        check = component.effective_health_check

        if component.kind == ComponentKind.ROUTE:
            assert component.route is not None
            http = check if isinstance(check, HttpCheck) else HttpCheck()
            host = http.host or component.route.host
            port = f":{http.port}" if http.port else ""
            return HttpPredicate(
                f"{http.scheme}://{host}{port}{http.path}",
                expected_status=http.expected_status,
                host_header=http.host_header,
                verify=http.verify_tls,
            )

        if isinstance(check, TcpCheck):
            port = check.port or component.port
            assert port is not None
            return TcpPredicate(
                self.cluster, params.namespace, component.name, port, host=check.host
            )
        if isinstance(check, HttpCheck) and check.host:
            port = f":{check.port}" if check.port else ""
            return HttpPredicate(
                f"{check.scheme}://{check.host}{port}{check.path}",
                expected_status=check.expected_status,
                host_header=check.host_header,
                verify=check.verify_tls,
            )
        # HTTP checks without a host run as the pod's readiness probe
        min_available = check.min_available if isinstance(check, RolloutCheck) else None
        return RolloutPredicate(
            self.cluster, params.namespace, component.name, min_available
        )

    @staticmethod
    def _endpoints(
        run: _Run, rendered: dict[str, RenderedComponent]
    ) -> dict[str, str]:
        endpoints: dict[str, str] = {}
        for name, rc in rendered.items():
            result = run.results.get(name)
            if result is None or result.outcome not in (
                Outcome.APPLIED,
                Outcome.UNCHANGED,
            ):
                continue
            component = rc.component
            if component.route is not None:
                endpoints[name] = f"https://{component.route.host}"
            elif component.port is not None:
                endpoints[name] = (
                    f"{name}.{run.params.namespace}.svc:{component.port}"
                )
        return endpoints

    async def cleanup(
        self, deployment: str, namespace: str, keep_data: bool = False
    ) -> list[str]:
        """Delete every resource owned by a deployment.

        Resources labelled ``part-of=<deployment>`` are removed in reverse
        apply order, then the state ConfigMap. With ``keep_data``, volume
        claims and secrets are kept.

        Returns:
            References of deleted resources.
        """
        return await asyncio.to_thread(
            self._cleanup, deployment, namespace, keep_data
        )

    def _cleanup(self, deployment: str, namespace: str, keep_data: bool) -> list[str]:
        selector = f"app.kubernetes.io/part-of={deployment}"
        state_name = state_configmap_name(deployment)
        deleted: list[str] = []

        for kind in reversed(APPLY_ORDER):
            if keep_data and kind in DATA_KINDS:
                logger.info(f"Keeping {kind} resources")
                continue
            api_version = KIND_API_VERSIONS[kind]
            try:
                items = self.cluster.list(api_version, kind, namespace, selector)
            except ClusterError as exc:
                if kind == "Route" and not exc.transient and exc.status is None:
                    logger.debug(f"Routes not available: {exc}")
                    continue
                raise DeploymentError(
                    operation="destroy",
                    message=f"Cannot list {kind} resources: {exc}",
                ) from exc

            for item in items:
                name = item["metadata"]["name"]
                if kind == "ConfigMap" and name == state_name:
                    continue
                try:
                    if self.cluster.delete(api_version, kind, name, namespace):
                        deleted.append(f"{kind}/{name}")
                        logger.info(f"Deleted {kind}/{name}")
                except ClusterError as exc:
                    raise DeploymentError(
                        operation="destroy",
                        message=f"Cannot delete {kind}/{name}: {exc}",
                    ) from exc

        try:
            if delete_state(self.cluster, namespace, deployment):
                deleted.append(f"ConfigMap/{state_name}")
        except ClusterError as exc:
            raise DeploymentError(
                operation="destroy",
                message=f"Cannot delete state ConfigMap {state_name}: {exc}",
            ) from exc
        return deleted

    def status(
        self, spec: DeploymentSpec, params: DeployParameters
    ) -> list[tuple[str, str, ComponentState | None]]:
        """Compare the live resources with the current description.

        A component is ``in-sync`` when every rendered document exists and
        the live object still holds every field the document sets. It is
        ``drifted`` when its description changed since the last run, a
        resource is missing, or a live field was edited outside shipyard.

        Returns:
            ``(component, sync status, stored state)`` per component, where
            sync status is ``in-sync``, ``drifted`` or ``not-deployed``.
        """
        rendered = {rc.name: rc for rc in self.renderer.render(spec, params)}
        state = load_state(self.cluster, params.namespace, spec.name)
        rows: list[tuple[str, str, ComponentState | None]] = []
        for component in spec.components:
            rc = rendered[component.name]
            stored = state.components.get(component.name)
            live = {
                resource_ref(doc): self.applier.inspect(doc) for doc in rc.documents
            }
            missing = [ref for ref, drift in live.items() if drift is None]

            if stored is None and len(missing) == len(live):
                sync = "not-deployed"
            elif stored is not None and stored.spec_hash != rc.spec_hash:
                sync = "drifted"
            elif missing or any(live.values()):
                for ref, drift in live.items():
                    if drift is None:
                        logger.info(f"{ref} is missing")
                    elif drift:
                        logger.info(f"{ref} differs at {', '.join(drift)}")
                sync = "drifted"
            else:
                sync = "in-sync"
            rows.append((component.name, sync, stored))
        return rows
