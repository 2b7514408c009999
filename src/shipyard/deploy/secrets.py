"""Credential Generator/Store: random credentials created once, then reused.

``ensure_secret`` reads an existing secret and returns it unchanged, or
generates values and creates it. The create call's conflict semantics make
the test-and-create atomic across processes; a per-name lock serialises
callers inside one run.
"""

from __future__ import annotations

import asyncio
import base64
import secrets
import string
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from shipyard.config.defaults import DEFAULT_SECRET_LENGTH, MANAGED_BY
from shipyard.deploy.clusters.base import BaseCluster
from shipyard.deploy.retry import call_with_retry
from shipyard.lib.errors import ConflictError, DeploymentError
from shipyard.lib.logging_config import get_logger
from shipyard.models.config import RetryConfig
from shipyard.models.deployment import SecretSpec
from shipyard.models.deployment_state import SecretRecord

logger = get_logger(__name__)

# Letters and digits only
ALPHABET = string.ascii_letters + string.digits
CREATED_AT_ANNOTATION = "shipyard.io/created-at"


def generate_value(length: int = DEFAULT_SECRET_LENGTH) -> str:
    """Return a cryptographically random string."""
    return "".join(secrets.choice(ALPHABET) for _ in range(length))


def _decode(data: dict[str, str] | None) -> dict[str, str]:
    return {
        key: base64.b64decode(value).decode("utf-8")
        for key, value in (data or {}).items()
    }


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class SecretStore:
    """Read-or-create access to credential secrets in one namespace."""

    def __init__(
        self,
        cluster: BaseCluster,
        namespace: str,
        retry: RetryConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._cluster = cluster
        self._namespace = namespace
        self._retry = retry or RetryConfig()
        self._sleep = sleep
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, name: str) -> asyncio.Lock:
        lock = self._locks.get(name)
        if lock is None:
            lock = self._locks[name] = asyncio.Lock()
        return lock

    async def ensure_secret(
        self,
        name: str,
        fields: list[str],
        length: int = DEFAULT_SECRET_LENGTH,
        labels: dict[str, str] | None = None,
        static: dict[str, str] | None = None,
        deadline: float | None = None,
    ) -> SecretRecord:
        """Return the named secret, creating it with random values if missing.

        An existing secret is returned as stored and never modified.

        Args:
            name: Secret name
            fields: Keys that receive generated values
            length: Length of generated values
            labels: Labels for a newly created secret
            static: Fixed, non-random values for a newly created secret
            deadline: Absolute clock value after which transient errors
                are no longer retried

        Returns:
            The secret record; ``created`` is True only if this call created it
        """
        async with self._lock(name):
            return await asyncio.to_thread(
                self._ensure,
                name,
                fields,
                length,
                labels or {},
                static or {},
                deadline,
            )

    async def ensure_from_spec(
        self,
        spec: SecretSpec,
        labels: dict[str, str] | None = None,
        deadline: float | None = None,
    ) -> SecretRecord:
        """Ensure a secret declared in a deployment description."""
        return await self.ensure_secret(
            spec.name,
            spec.fields,
            length=spec.length,
            labels=labels,
            static=spec.static,
            deadline=deadline,
        )

    def get_secret(self, name: str) -> SecretRecord | None:
        """Read a secret without creating it."""
        existing = self._get(name)
        if existing is None:
            return None
        return self._record(existing)

    def _get(self, name: str, deadline: float | None = None) -> dict[str, Any] | None:
        return call_with_retry(
            self._cluster.get,
            "v1",
            "Secret",
            name,
            self._namespace,
            retry=self._retry,
            sleep=self._sleep,
            description=f"get Secret/{name}",
            deadline=deadline,
            clock=self._clock,
        )

    def _ensure(
        self,
        name: str,
        fields: list[str],
        length: int,
        labels: dict[str, str],
        static: dict[str, str],
        deadline: float | None,
    ) -> SecretRecord:
        existing = self._get(name, deadline)
        if existing is not None:
            record = self._record(existing)
            self._warn_missing(record, [*static, *fields])
            logger.info(f"Reusing existing secret {name}")
            return record

        values = dict(static)
        for key in fields:
            values[key] = generate_value(length)
        now = datetime.now(timezone.utc)
        document = {
            "apiVersion": "v1",
            "kind": "Secret",
            "type": "Opaque",
            "metadata": {
                "name": name,
                "namespace": self._namespace,
                "labels": {"app.kubernetes.io/managed-by": MANAGED_BY, **labels},
                "annotations": {CREATED_AT_ANNOTATION: now.isoformat()},
            },
            "stringData": values,
        }

        try:
            call_with_retry(
                self._cluster.create,
                document,
                retry=self._retry,
                sleep=self._sleep,
                description=f"create Secret/{name}",
                deadline=deadline,
                clock=self._clock,
            )
        except ConflictError:
            existing = self._get(name, deadline)
            if existing is None:
                raise DeploymentError(
                    operation="secret",
                    message=f"Secret {name} conflicted on create but cannot be read",
                ) from None
            record = self._record(existing)
            if record.values == values:
                # An earlier attempt of this call succeeded but its response
                # was lost; the values are the ones generated here
                logger.info(f"Created secret {name} with keys {', '.join(values)}")
                return record.model_copy(update={"created": True})
            # Another writer won the race; its values are authoritative
            logger.info(f"Secret {name} created concurrently, reusing it")
            return record

        logger.info(f"Created secret {name} with keys {', '.join(values)}")
        return SecretRecord(name=name, values=values, created_at=now, created=True)

    def _record(self, document: dict[str, Any]) -> SecretRecord:
        metadata = document.get("metadata") or {}
        annotations = metadata.get("annotations") or {}
        created_at = _parse_timestamp(
            annotations.get(CREATED_AT_ANNOTATION)
        ) or _parse_timestamp(metadata.get("creationTimestamp"))
        return SecretRecord(
            name=metadata.get("name", ""),
            values=_decode(document.get("data")),
            created_at=created_at,
            created=False,
        )

    @staticmethod
    def _warn_missing(record: SecretRecord, keys: list[str]) -> None:
        missing = [key for key in keys if key not in record.values]
        if missing:
            logger.warning(
                f"Existing secret {record.name} lacks keys {', '.join(missing)}; "
                "it is left unchanged"
            )
