# ABOUTME: Domain data model for the Argo CD session engine
# ABOUTME: Immutable snapshots of applications, resources, revisions, events and diffs

"""
Immutable domain values shared by the backend clients and the session engine.

Every value here is a frozen dataclass whose collections are tuples. The
session engine never patches these objects; a refresh always replaces the
whole snapshot, so an out-of-order completion can at worst be dropped, never
half-applied.

The ``from_api_response`` factories flatten Argo CD's nested JSON the same
way for list, detail and history payloads. Missing fields fall back to empty
strings because the list endpoint omits most of them depending on RBAC.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

SYNCED = "Synced"

# Argo CD keeps status.operationState after an operation completes.
OPERATION_IN_PROGRESS = frozenset({"Running", "Terminating"})


@dataclass(frozen=True)
class ResourceRef:
    """Identifies one live object managed by an application."""

    group: str = ""
    kind: str = ""
    name: str = ""
    namespace: str = ""
    version: str = ""

    def label(self) -> str:
        kind = f"{self.group}/{self.kind}" if self.group else self.kind
        return f"{kind}/{self.name}"


@dataclass(frozen=True)
class Resource:
    """A managed Kubernetes resource as reported in application status."""

    group: str = ""
    kind: str = ""
    version: str = ""
    name: str = ""
    namespace: str = ""
    status: str = ""
    health: str = ""
    hook: bool = False

    @property
    def ref(self) -> ResourceRef:
        return ResourceRef(
            group=self.group,
            kind=self.kind,
            name=self.name,
            namespace=self.namespace,
            version=self.version,
        )

    @property
    def is_pod(self) -> bool:
        return self.kind.lower() == "pod"

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> Resource:
        """Build from a status.resources entry or a resource-tree node."""
        health = data.get("health") or {}
        # Tree nodes report sync state as syncStatus, status.resources as status.
        status = data.get("status") or data.get("syncStatus") or ""
        return cls(
            group=data.get("group", ""),
            kind=data.get("kind", ""),
            version=data.get("version", ""),
            name=data.get("name", ""),
            namespace=data.get("namespace", ""),
            status=status,
            health=health.get("status", "") if isinstance(health, dict) else "",
            hook=bool(data.get("hook", False)),
        )


@dataclass(frozen=True)
class OperationState:
    """The current or last operation on an application."""

    phase: str = ""
    message: str = ""

    @property
    def in_progress(self) -> bool:
        return self.phase in OPERATION_IN_PROGRESS


@dataclass(frozen=True)
class SyncHistoryEntry:
    revision: str = ""
    deployed_at: str = ""
    status: str = ""
    message: str = ""
    source: str = ""

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> SyncHistoryEntry:
        source = data.get("source")
        return cls(
            revision=data.get("revision", ""),
            deployed_at=data.get("deployedAt") or data.get("deployStartedAt") or "",
            source=json.dumps(source, sort_keys=True) if source else "",
        )


@dataclass(frozen=True)
class Application:
    """
    Argo CD Application snapshot.

    ``resources`` and ``history`` are only populated by a detail load; list
    rows carry empty tuples. ``operation_state`` is None unless an operation
    is running (or the server still reports the last one).
    """

    name: str
    namespace: str = ""
    project: str = ""
    health: str = ""
    sync: str = ""
    repo_url: str = ""
    revision: str = ""
    path: str = ""
    cluster: str = ""
    resources: tuple[Resource, ...] = ()
    operation_state: OperationState | None = None
    sync_policy: str = ""
    history: tuple[SyncHistoryEntry, ...] = ()

    @property
    def drifted(self) -> bool:
        return self.sync != SYNCED

    @classmethod
    def from_api_response(
        cls,
        data: dict[str, Any],
        resources: tuple[Resource, ...] | None = None,
    ) -> Application:
        """
        Create Application from an Argo CD API payload.

        Args:
            data: A list item or a full application object.
            resources: Pre-built resources (e.g. from the resource tree) that
                take precedence over ``status.resources``.
        """
        metadata = data.get("metadata") or {}
        spec = data.get("spec") or {}
        status = data.get("status") or {}
        source = spec.get("source") or {}
        destination = spec.get("destination") or {}

        if resources is None:
            resources = tuple(
                Resource.from_api_response(r) for r in status.get("resources") or []
            )

        op = status.get("operationState")
        operation_state = None
        if op:
            operation_state = OperationState(
                phase=op.get("phase", ""),
                message=op.get("message", ""),
            )

        sync_policy = "auto" if (spec.get("syncPolicy") or {}).get("automated") is not None else "manual"
        if not spec:
            sync_policy = ""

        return cls(
            name=metadata.get("name", ""),
            namespace=destination.get("namespace", ""),
            project=spec.get("project", ""),
            health=(status.get("health") or {}).get("status", ""),
            sync=(status.get("sync") or {}).get("status", ""),
            repo_url=source.get("repoURL", ""),
            revision=source.get("targetRevision", ""),
            path=source.get("path", ""),
            cluster=destination.get("server", ""),
            resources=resources,
            operation_state=operation_state,
            sync_policy=sync_policy,
            history=tuple(
                SyncHistoryEntry.from_api_response(h) for h in status.get("history") or []
            ),
        )


@dataclass(frozen=True)
class Revision:
    """A deployment history entry that can be rolled back to."""

    id: int
    revision: str = ""
    author: str = ""
    date: str = ""
    message: str = ""


@dataclass(frozen=True)
class Event:
    type: str = ""
    reason: str = ""
    message: str = ""
    timestamp: str = ""
    involved_object: str = ""

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> Event:
        # Kubernetes event timestamps vary by API version.
        timestamp = ""
        for key in ("lastTimestamp", "eventTime", "creationTimestamp", "firstTimestamp"):
            value = (data.get(key) or "").strip()
            if value:
                timestamp = value
                break
        if not timestamp:
            timestamp = ((data.get("metadata") or {}).get("creationTimestamp") or "").strip()

        obj = data.get("involvedObject") or {}
        involved = (obj.get("kind") or "").strip()
        if obj.get("name"):
            involved += "/" + obj["name"]
        if obj.get("namespace"):
            involved += f" ({obj['namespace']})"

        return cls(
            type=data.get("type", ""),
            reason=data.get("reason", ""),
            message=data.get("message", ""),
            timestamp=timestamp,
            involved_object=involved,
        )


@dataclass(frozen=True)
class DiffResult:
    ref: ResourceRef
    diff: str = ""
    modified: bool = False


@dataclass(frozen=True)
class ApplicationSpec:
    """Payload for creating or updating an application."""

    name: str
    project: str = "default"
    repo_url: str = ""
    path: str = ""
    revision: str = "main"
    cluster: str = ""
    namespace: str = ""
    sync_policy: str = "manual"
    labels: dict[str, str] = field(default_factory=dict)

    def to_api_payload(self) -> dict[str, Any]:
        metadata: dict[str, Any] = {"name": self.name}
        if self.labels:
            metadata["labels"] = dict(self.labels)
        spec: dict[str, Any] = {
            "project": self.project,
            "source": {
                "repoURL": self.repo_url,
                "path": self.path,
                "targetRevision": self.revision,
            },
            "destination": {
                "server": self.cluster,
                "namespace": self.namespace,
            },
        }
        if self.sync_policy.lower() == "auto":
            spec["syncPolicy"] = {"automated": {}}
        return {"metadata": metadata, "spec": spec}
