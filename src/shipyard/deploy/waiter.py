"""Readiness Waiter: bounded polling of readiness predicates.

One reusable poll loop replaces per-resource retry loops. Predicates are
blocking checks run in a worker thread; the loop sleeps with linear
backoff and never past its deadline.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx

from shipyard.deploy.applier import parse_violations
from shipyard.deploy.clusters.base import BaseCluster
from shipyard.lib.errors import ApplyError, ClusterError, ReadinessTimeoutError
from shipyard.lib.logging_config import get_logger
from shipyard.models.config import PollPolicy

logger = get_logger(__name__)


@dataclass(frozen=True)
class Observation:
    """One evaluation of a readiness predicate."""

    ready: bool
    state: str


class ReadinessPredicate(ABC):
    """A blocking readiness check."""

    @abstractmethod
    def check(self) -> Observation:
        """Evaluate the predicate once."""


class RolloutPredicate(ReadinessPredicate):
    """Ready when a Deployment has rolled out and enough replicas are available.

    A ``ReplicaFailure`` condition (pods rejected at admission, e.g. by an
    SCC) raises ApplyError instead of waiting for the deadline.
    """

    def __init__(
        self,
        cluster: BaseCluster,
        namespace: str,
        name: str,
        min_available: int | None = None,
    ) -> None:
        self._cluster = cluster
        self._namespace = namespace
        self._name = name
        self._min_available = min_available

    def check(self) -> Observation:
        try:
            deployment = self._cluster.get(
                "apps/v1", "Deployment", self._name, self._namespace
            )
        except ClusterError as exc:
            if exc.transient:
                return Observation(False, f"status unavailable: {exc.message}")
            raise
        if deployment is None:
            return Observation(False, "deployment not found")

        spec = deployment.get("spec") or {}
        status = deployment.get("status") or {}
        for condition in status.get("conditions") or []:
            if condition.get("type") == "ReplicaFailure" and condition.get(
                "status"
            ) == "True":
                message = condition.get("message", "")
                violations = parse_violations(message)
                if violations:
                    raise ApplyError(
                        resource=f"Deployment/{self._name}",
                        cause=message,
                        violations=violations,
                    )

        desired = spec.get("replicas", 1)
        if desired == 0:
            return Observation(True, "scaled to zero")

        generation = deployment.get("metadata", {}).get("generation", 0)
        observed = status.get("observedGeneration", 0)
        updated = status.get("updatedReplicas") or 0
        available = status.get("availableReplicas") or 0
        required = self._min_available or desired
        state = f"{available}/{desired} replicas available"
        if observed < generation:
            return Observation(False, f"rollout pending ({state})")
        if updated < desired:
            return Observation(False, f"{updated}/{desired} replicas updated")
        return Observation(available >= required, state)


class TcpPredicate(ReadinessPredicate):
    """Ready when a service port accepts TCP connections."""

    def __init__(
        self,
        cluster: BaseCluster,
        namespace: str,
        service: str,
        port: int,
        host: str | None = None,
        timeout: float = 5.0,
    ) -> None:
        self._cluster = cluster
        self._namespace = namespace
        self._service = service
        self._port = port
        self._host = host
        self._timeout = timeout

    def check(self) -> Observation:
        try:
            result = self._cluster.probe_tcp(
                self._namespace,
                self._service,
                self._port,
                host=self._host,
                timeout=self._timeout,
            )
        except ClusterError as exc:
            if exc.transient:
                return Observation(False, f"probe failed: {exc.message}")
            raise
        return Observation(result.ok, result.observed)


class HttpPredicate(ReadinessPredicate):
    """Ready when a URL answers with one of the expected status codes."""

    def __init__(
        self,
        url: str,
        expected_status: list[int] | None = None,
        host_header: str | None = None,
        verify: bool = True,
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.url = url
        self._expected = expected_status or [200]
        self._headers = {"Host": host_header} if host_header else {}
        self._verify = verify
        self._timeout = timeout
        self._client = client

    def check(self) -> Observation:
        try:
            if self._client is not None:
                response = self._client.get(self.url, headers=self._headers)
            else:
                response = httpx.get(
                    self.url,
                    headers=self._headers,
                    verify=self._verify,
                    timeout=self._timeout,
                    follow_redirects=False,
                )
        except httpx.HTTPError as exc:
            return Observation(False, f"{type(exc).__name__}: {exc}")
        ready = response.status_code in self._expected
        return Observation(ready, f"HTTP {response.status_code}")


class ExecReadyPredicate(ReadinessPredicate):
    """Ready when a command succeeds inside the component's container.

    This is the "accepts commands" signal, distinct from network readiness.
    """

    def __init__(
        self,
        cluster: BaseCluster,
        namespace: str,
        selector: str,
        container: str,
        command: list[str],
        timeout: float = 30.0,
    ) -> None:
        self._cluster = cluster
        self._namespace = namespace
        self._selector = selector
        self._container = container
        self._command = command
        self._timeout = timeout

    def check(self) -> Observation:
        try:
            result = self._cluster.exec(
                self._namespace,
                self._selector,
                self._container,
                self._command,
                self._timeout,
            )
        except ClusterError as exc:
            return Observation(False, f"exec unavailable: {exc.message}")
        if result.succeeded:
            return Observation(True, "accepting commands")
        return Observation(False, f"probe command exited {result.exit_code}")


class ReadinessWaiter:
    """Poll a predicate until it holds or a deadline passes."""

    def __init__(
        self,
        policy: PollPolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize the waiter.

        Args:
            policy: Linear backoff policy
            clock: Monotonic clock (injectable for tests)
            sleep: Async sleep (injectable for tests)
        """
        self._policy = policy or PollPolicy()
        self._clock = clock
        self._sleep = sleep

    async def wait(
        self,
        ref: str,
        predicate: ReadinessPredicate,
        timeout: float,
        deadline: float | None = None,
    ) -> Observation:
        """Wait for ``predicate`` to hold.

        Args:
            ref: Resource reference used in logs and errors
            predicate: Readiness check
            timeout: Seconds allowed for this wait
            deadline: Absolute clock value that bounds the wait further

        Returns:
            The first ready observation

        Raises:
            ReadinessTimeoutError: When the predicate still fails at the
                deadline, carrying the last observed state.
        """
        start = self._clock()
        limit = start + timeout
        if deadline is not None:
            limit = min(limit, deadline)

        attempt = 0
        while True:
            observation = await asyncio.to_thread(predicate.check)
            if observation.ready:
                logger.info(f"{ref} ready: {observation.state}")
                return observation

            now = self._clock()
            remaining = limit - now
            if remaining <= 0:
                logger.warning(f"{ref} not ready by deadline: {observation.state}")
                raise ReadinessTimeoutError(
                    resource=ref,
                    last_observed_state=observation.state,
                    waited=now - start,
                )

            delay = min(self._policy.interval(attempt), remaining)
            logger.debug(
                f"{ref} not ready ({observation.state}), next check in {delay:.1f}s"
            )
            await self._sleep(delay)
            attempt += 1
