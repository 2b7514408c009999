"""Resource Applier: idempotent create-or-patch of rendered documents.

Each desired document is stamped with a hash annotation. A missing
resource is created. An existing one is left untouched only when it carries
the same hash and its live fields still match every field the document
sets; otherwise it is merge-patched, which also reverts edits made outside
shipyard. Documents are applied in a static kind order; a failure leaves
already-applied resources in place.
"""

from __future__ import annotations

import copy
import re
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from shipyard.config.defaults import SPEC_HASH_ANNOTATION
from shipyard.deploy.clusters.base import BaseCluster, resource_ref
from shipyard.deploy.retry import call_with_retry
from shipyard.deploy.state import compute_config_hash
from shipyard.lib.errors import ApplyError, ClusterError, ConflictError
from shipyard.lib.logging_config import get_logger
from shipyard.models.config import RetryConfig
from shipyard.models.deployment_state import Outcome

logger = get_logger(__name__)

# Storage and secrets, then stateful and stateless workloads, then routing
APPLY_ORDER: tuple[str, ...] = (
    "Secret",
    "ConfigMap",
    "PersistentVolumeClaim",
    "StatefulSet",
    "Deployment",
    "Service",
    "Route",
)

_SCC_PREFIX = re.compile(r"unable to validate against any security context constraint:")
_POD_SECURITY = re.compile(r'violates PodSecurity "[^"]+":\s*')


def apply_rank(kind: str) -> int:
    """Position of a kind in the apply order (unknown kinds go last)."""
    try:
        return APPLY_ORDER.index(kind)
    except ValueError:
        return len(APPLY_ORDER)


def _split_top_level(text: str) -> list[str]:
    """Split on commas that are not nested inside brackets or parentheses."""
    parts: list[str] = []
    depth = 0
    current: list[str] = []
    for char in text:
        if char in "([":
            depth += 1
        elif char in ")]":
            depth -= 1
        if char == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
        else:
            current.append(char)
    tail = "".join(current).strip()
    if tail:
        parts.append(tail)
    return [part for part in parts if part]


def parse_violations(message: str) -> list[str]:
    """Extract security constraint violations from an admission message.

    Understands OpenShift SCC rejections and Kubernetes pod security
    admission messages; returns an empty list for anything else.
    """
    scc = _SCC_PREFIX.search(message)
    if scc:
        body = message[scc.end() :].strip()
        if body.startswith("[") and body.endswith("]"):
            body = body[1:-1]
        return [
            item
            for item in _split_top_level(body)
            if "Invalid value" in item or "Forbidden" in item
            if "not usable by user or serviceaccount" not in item
        ]

    pod_security = _POD_SECURITY.search(message)
    if pod_security:
        return _split_top_level(message[pod_security.end() :])
    return []


def _is_empty(value: Any) -> bool:
    return value is None or value == [] or value == {}


def find_drift(desired: Any, live: Any, path: str = "") -> list[str]:
    """Paths where ``live`` no longer holds a value that ``desired`` sets.

    Fields only present on the live object (server defaults, status,
    bookkeeping metadata) are ignored. Lists must match element by element.

    >>> find_drift({"spec": {"replicas": 2}}, {"spec": {"replicas": 0}})
    ['spec.replicas']
    """
    if isinstance(desired, dict):
        if not isinstance(live, dict):
            return [path or "(root)"]
        drift: list[str] = []
        for key, value in desired.items():
            child = f"{path}.{key}" if path else str(key)
            if key not in live:
                if not _is_empty(value):
                    drift.append(child)
                continue
            drift.extend(find_drift(value, live[key], child))
        return drift
    if isinstance(desired, list):
        if not isinstance(live, list) or len(live) != len(desired):
            return [path or "(root)"]
        drift = []
        for index, (want, have) in enumerate(zip(desired, live)):
            drift.extend(find_drift(want, have, f"{path}[{index}]"))
        return drift
    return [] if desired == live else [path or "(root)"]


def _to_apply_error(ref: str, exc: ClusterError) -> ApplyError:
    return ApplyError(
        resource=ref,
        cause=exc.message,
        violations=parse_violations(exc.message),
        transient=exc.transient,
    )


@dataclass(frozen=True)
class AppliedResource:
    """Outcome of applying one document."""

    ref: str
    outcome: Outcome
    resource_version: str | None = None
    drift: tuple[str, ...] = ()


@dataclass
class ApplyResult:
    """Outcome of applying a list of documents."""

    resources: list[AppliedResource] = field(default_factory=list)

    @property
    def drifted(self) -> list[str]:
        """References of resources patched back after outside edits."""
        return [r.ref for r in self.resources if r.drift]

    @property
    def outcome(self) -> Outcome:
        """APPLIED if anything was created or patched, else UNCHANGED."""
        if any(r.outcome == Outcome.APPLIED for r in self.resources):
            return Outcome.APPLIED
        return Outcome.UNCHANGED

    @property
    def mutated(self) -> dict[str, str]:
        """Resource versions returned by create or patch calls."""
        return {
            r.ref: r.resource_version
            for r in self.resources
            if r.outcome == Outcome.APPLIED and r.resource_version
        }


class ResourceApplier:
    """Apply documents to the cluster with create-or-patch semantics."""

    def __init__(
        self,
        cluster: BaseCluster,
        retry: RetryConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the applier.

        Args:
            cluster: Cluster backend
            retry: Policy for transient API errors
            sleep: Sleep function used between retries
            clock: Monotonic clock that run deadlines refer to
        """
        self._cluster = cluster
        self._retry = retry or RetryConfig()
        self._sleep = sleep
        self._clock = clock

    def apply(
        self, documents: Iterable[dict[str, Any]], deadline: float | None = None
    ) -> ApplyResult:
        """Apply documents in kind order.

        Args:
            documents: Rendered documents
            deadline: Absolute clock value after which transient errors
                are no longer retried

        Raises:
            ApplyError: On the first rejected document; earlier documents
                stay applied.
        """
        ordered = sorted(documents, key=lambda doc: apply_rank(doc["kind"]))
        result = ApplyResult()
        for document in ordered:
            result.resources.append(self.apply_one(document, deadline=deadline))
        return result

    def apply_one(
        self, document: dict[str, Any], deadline: float | None = None
    ) -> AppliedResource:
        """Create, patch, or leave a single document as it is.

        Raises:
            ApplyError: If the server rejects the document.
        """
        ref = resource_ref(document)
        desired = stamp(document)
        drift: list[str] = []

        try:
            existing = self._get(desired, deadline)
            if existing is None:
                try:
                    created = self._call(self._cluster.create, desired, ref, deadline)
                except ConflictError:
                    # Created concurrently; compare against what is there now
                    existing = self._get(desired, deadline)
                else:
                    logger.info(f"Created {ref}")
                    return AppliedResource(ref, Outcome.APPLIED, _version(created))

            if existing is not None:
                if _hash_of(existing) == _hash_of(desired):
                    drift = find_drift(desired, existing)
                    if not drift:
                        logger.debug(f"{ref} unchanged")
                        return AppliedResource(
                            ref, Outcome.UNCHANGED, _version(existing)
                        )
                    logger.warning(
                        f"{ref} was changed outside shipyard "
                        f"({', '.join(drift)}), reverting"
                    )

            patched = self._call(self._cluster.patch, desired, ref, deadline)
        except ClusterError as exc:
            raise _to_apply_error(ref, exc) from exc

        logger.info(f"Patched {ref}")
        return AppliedResource(
            ref, Outcome.APPLIED, _version(patched), drift=tuple(drift)
        )

    def inspect(self, document: dict[str, Any]) -> list[str] | None:
        """Compare a document with its live resource without changing it.

        Returns:
            None if the resource does not exist, else the drifted paths
            (``metadata.annotations`` entries included when the document
            itself changed since it was applied)
        """
        desired = stamp(document)
        try:
            existing = self._get(desired, None)
        except ClusterError as exc:
            raise _to_apply_error(resource_ref(document), exc) from exc
        if existing is None:
            return None
        return find_drift(desired, existing)

    def _get(
        self, document: dict[str, Any], deadline: float | None
    ) -> dict[str, Any] | None:
        metadata = document["metadata"]
        return call_with_retry(
            self._cluster.get,
            document["apiVersion"],
            document["kind"],
            metadata["name"],
            metadata.get("namespace"),
            retry=self._retry,
            sleep=self._sleep,
            description=f"get {resource_ref(document)}",
            deadline=deadline,
            clock=self._clock,
        )

    def _call(
        self,
        func: Callable[[dict[str, Any]], dict[str, Any]],
        document: dict[str, Any],
        ref: str,
        deadline: float | None,
    ) -> dict[str, Any]:
        return call_with_retry(
            func,
            document,
            retry=self._retry,
            sleep=self._sleep,
            description=f"{getattr(func, '__name__', 'apply')} {ref}",
            deadline=deadline,
            clock=self._clock,
        )


def stamp(document: dict[str, Any]) -> dict[str, Any]:
    """Copy of ``document`` annotated with the hash of its content."""
    desired = copy.deepcopy(document)
    metadata = desired.setdefault("metadata", {})
    annotations = metadata.setdefault("annotations", {})
    annotations[SPEC_HASH_ANNOTATION] = compute_config_hash(document)
    return desired


def _hash_of(document: dict[str, Any]) -> str | None:
    annotations = document.get("metadata", {}).get("annotations") or {}
    return annotations.get(SPEC_HASH_ANNOTATION)


def _version(document: dict[str, Any] | None) -> str | None:
    if not document:
        return None
    version = document.get("metadata", {}).get("resourceVersion")
    return str(version) if version is not None else None
