"""In-memory cluster backend and clocks used by the deploy tests."""

from __future__ import annotations

import base64
import copy
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from shipyard.deploy.clusters.base import (
    BaseCluster,
    ExecResult,
    ProbeResult,
    resource_ref,
)
from shipyard.lib.errors import ClusterError, ConflictError

MUTATING = ("create", "patch", "delete")


def _merge(target: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]:
    """JSON merge-patch: dicts merge, None deletes, anything else replaces."""
    for key, value in patch.items():
        if value is None:
            target.pop(key, None)
        elif isinstance(value, dict) and isinstance(target.get(key), dict):
            _merge(target[key], value)
        else:
            target[key] = copy.deepcopy(value)
    return target


def _matches(labels: dict[str, str], selector: str | None) -> bool:
    if not selector:
        return True
    for term in selector.split(","):
        key, _, value = term.partition("=")
        if labels.get(key) != value:
            return False
    return True


class FakeCluster(BaseCluster):
    """In-memory cluster that records every call.

    Deployments report a completed rollout unless ``rollout_ready`` is
    False. Secrets created with ``stringData`` are stored base64-encoded in
    ``data``, like the API server does.
    """

    def __init__(
        self,
        namespace: str | None = "demo",
        apps_domain: str | None = "apps.example.com",
    ) -> None:
        self.objects: dict[tuple[str, str | None, str], dict[str, Any]] = {}
        self.calls: list[tuple[str, str]] = []
        self.exec_calls: list[tuple[str, str, list[str]]] = []
        self.exec_timeouts: list[float] = []
        self.probe_calls: list[tuple[str, int]] = []
        self.errors: dict[tuple[str, str], ClusterError] = {}
        self.rollout_ready = True
        self.tcp_ready: Callable[[str, int], bool] = lambda service, port: True
        self.exec_handler: Callable[[str, list[str]], ExecResult] = (
            lambda container, command: ExecResult(exit_code=0, output="ok")
        )
        self._namespace = namespace
        self._apps_domain = apps_domain
        self._version = 0

    # -- helpers used by tests ------------------------------------------------

    @property
    def mutations(self) -> list[tuple[str, str]]:
        """Create, patch and delete calls, in order."""
        return [call for call in self.calls if call[0] in MUTATING]

    def reset_calls(self) -> None:
        self.calls.clear()
        self.exec_calls.clear()
        self.exec_timeouts.clear()
        self.probe_calls.clear()

    def fail(self, verb: str, ref: str, error: ClusterError) -> None:
        """Make ``verb`` on ``ref`` (``Kind/name``) raise ``error``."""
        self.errors[(verb, ref)] = error

    def stored(self, kind: str, name: str, namespace: str = "demo") -> dict[str, Any]:
        return self.objects[(kind, namespace, name)]

    def has(self, kind: str, name: str, namespace: str = "demo") -> bool:
        return (kind, namespace, name) in self.objects

    def put(self, document: dict[str, Any]) -> None:
        """Store a document without recording a call."""
        metadata = document["metadata"]
        key = (document["kind"], metadata.get("namespace"), metadata["name"])
        self.objects[key] = self._normalise(copy.deepcopy(document))

    # -- BaseCluster ------------------------------------------------------------

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    def _raise_if_scripted(self, verb: str, ref: str) -> None:
        error = self.errors.get((verb, ref))
        if error is not None:
            raise error

    def _normalise(self, document: dict[str, Any]) -> dict[str, Any]:
        string_data = document.pop("stringData", None)
        if string_data:
            data = document.setdefault("data", {})
            for key, value in string_data.items():
                data[key] = base64.b64encode(value.encode("utf-8")).decode("ascii")
        metadata = document.setdefault("metadata", {})
        metadata["resourceVersion"] = self._next_version()
        metadata["generation"] = metadata.get("generation", 0) + 1
        return document

    def _with_status(self, document: dict[str, Any]) -> dict[str, Any]:
        result = copy.deepcopy(document)
        if result["kind"] == "Deployment" and self.rollout_ready:
            replicas = result.get("spec", {}).get("replicas", 1)
            result["status"] = {
                "observedGeneration": result["metadata"]["generation"],
                "updatedReplicas": replicas,
                "availableReplicas": replicas,
            }
        return result

    def get(
        self, api_version: str, kind: str, name: str, namespace: str | None
    ) -> dict[str, Any] | None:
        self.calls.append(("get", f"{kind}/{name}"))
        self._raise_if_scripted("get", f"{kind}/{name}")
        document = self.objects.get((kind, namespace, name))
        return self._with_status(document) if document is not None else None

    def create(self, document: dict[str, Any]) -> dict[str, Any]:
        ref = resource_ref(document)
        self.calls.append(("create", ref))
        self._raise_if_scripted("create", ref)
        metadata = document["metadata"]
        key = (document["kind"], metadata.get("namespace"), metadata["name"])
        if key in self.objects:
            raise ConflictError(ref)
        stored = self._normalise(copy.deepcopy(document))
        stored["metadata"]["creationTimestamp"] = "2026-01-01T00:00:00Z"
        self.objects[key] = stored
        return copy.deepcopy(stored)

    def patch(self, document: dict[str, Any]) -> dict[str, Any]:
        ref = resource_ref(document)
        self.calls.append(("patch", ref))
        self._raise_if_scripted("patch", ref)
        metadata = document["metadata"]
        key = (document["kind"], metadata.get("namespace"), metadata["name"])
        if key not in self.objects:
            raise ClusterError("patch", f"{ref} not found", status=404)
        stored = _merge(self.objects[key], copy.deepcopy(document))
        stored["metadata"]["resourceVersion"] = self._next_version()
        stored["metadata"]["generation"] += 1
        return copy.deepcopy(stored)

    def delete(self, api_version: str, kind: str, name: str, namespace: str) -> bool:
        self.calls.append(("delete", f"{kind}/{name}"))
        return self.objects.pop((kind, namespace, name), None) is not None

    def list(
        self,
        api_version: str,
        kind: str,
        namespace: str,
        label_selector: str | None = None,
    ) -> list[dict[str, Any]]:
        self.calls.append(("list", kind))
        return [
            copy.deepcopy(document)
            for (doc_kind, doc_ns, _), document in sorted(self.objects.items())
            if doc_kind == kind
            and doc_ns == namespace
            and _matches(document["metadata"].get("labels") or {}, label_selector)
        ]

    def exec(
        self,
        namespace: str,
        selector: str,
        container: str,
        command: list[str],
        timeout: float,
    ) -> ExecResult:
        self.calls.append(("exec", container))
        self.exec_calls.append((selector, container, list(command)))
        self.exec_timeouts.append(timeout)
        return self.exec_handler(container, command)

    def probe_tcp(
        self,
        namespace: str,
        service: str,
        port: int,
        host: str | None = None,
        timeout: float = 5.0,
    ) -> ProbeResult:
        self.probe_calls.append((service, port))
        ok = self.tcp_ready(service, port)
        observed = f"1 ready endpoint(s) on port {port}" if ok else "no endpoints"
        return ProbeResult(ok=ok, observed=observed)

    def current_namespace(self) -> str | None:
        return self._namespace

    def apps_domain(self) -> str | None:
        return self._apps_domain


class FakeClock:
    """Monotonic clock advanced only by its own async sleep."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class Ticker:
    """Wall clock returning strictly increasing timestamps."""

    def __init__(self) -> None:
        self._start = datetime(2026, 1, 1, tzinfo=timezone.utc)
        self._ticks = 0

    def __call__(self) -> datetime:
        self._ticks += 1
        return self._start + timedelta(seconds=self._ticks)
