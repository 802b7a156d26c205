# ABOUTME: Deterministic in-memory backend with a demo application fleet
# ABOUTME: Used for offline demos and as the scripted backend in tests

"""
In-memory implementation of BackendClient.

MockClient holds a small fleet of applications and mutates it the way a
real server would (sync marks resources Synced, delete removes the app, and
so on). Every call is recorded in ``calls`` and any call can be made to fail:

    mock = MockClient()
    mock.fail("sync_application", "web-frontend", ArgocdError(500, "boom"))
    await mock.sync_application("web-frontend", dry_run=True)  # raises
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from argocd_tui.models import (
    SYNCED,
    Application,
    ApplicationSpec,
    DiffResult,
    Event,
    OperationState,
    Resource,
    ResourceRef,
    Revision,
)
from argocd_tui.utils.client import ArgocdError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable

IN_CLUSTER = "https://kubernetes.default.svc"


def _res(group: str, kind: str, name: str, ns: str, status: str, health: str, **kw: Any) -> Resource:
    return Resource(group=group, kind=kind, version=kw.pop("version", "v1"), name=name,
                    namespace=ns, status=status, health=health, **kw)


def demo_applications() -> list[Application]:
    """The demo fleet: one application per interesting health/sync combination."""
    return [
        Application(
            name="payments-api",
            namespace="payments",
            project="default",
            health="Healthy",
            sync="Synced",
            repo_url="https://github.com/example/platform",
            path="apps/payments",
            revision="main",
            cluster=IN_CLUSTER,
            sync_policy="auto",
            resources=(
                _res("apps", "Deployment", "payments-api", "payments", "Synced", "Healthy"),
                _res("", "Service", "payments-api", "payments", "Synced", "Healthy"),
                _res("", "ConfigMap", "payments-config", "payments", "Synced", "Healthy"),
                _res("", "Pod", "payments-api-7c9f6d5b8-x2k4q", "payments", "", "Healthy"),
                _res("autoscaling", "HorizontalPodAutoscaler", "payments-api", "payments",
                     "Synced", "Healthy", version="v2"),
            ),
        ),
        Application(
            name="orders-worker",
            namespace="orders",
            project="default",
            health="Progressing",
            sync="Synced",
            repo_url="https://github.com/example/platform",
            path="apps/orders",
            revision="main",
            cluster=IN_CLUSTER,
            sync_policy="manual",
            operation_state=OperationState(phase="Running", message="syncing"),
            resources=(
                _res("apps", "Deployment", "orders-worker", "orders", "Synced", "Progressing"),
                _res("", "Pod", "orders-worker-5d8b9c7f4-m7p2w", "orders", "", "Progressing"),
                _res("batch", "CronJob", "orders-reconciler", "orders", "Synced", "Healthy"),
            ),
        ),
        Application(
            name="web-frontend",
            namespace="web",
            project="default",
            health="Healthy",
            sync="OutOfSync",
            repo_url="https://github.com/example/platform",
            path="apps/web",
            revision="main",
            cluster=IN_CLUSTER,
            sync_policy="manual",
            resources=(
                _res("apps", "Deployment", "web-frontend", "web", "OutOfSync", "Healthy"),
                _res("", "Service", "web-frontend", "web", "Synced", "Healthy"),
                _res("networking.k8s.io", "Ingress", "web", "web", "OutOfSync", "Healthy"),
                _res("", "Secret", "web-tls", "web", "OutOfSync", ""),
            ),
        ),
        Application(
            name="observability",
            namespace="ops",
            project="platform",
            health="Degraded",
            sync="Synced",
            repo_url="https://github.com/example/ops",
            path="apps/observability",
            revision="main",
            cluster=IN_CLUSTER,
            sync_policy="auto",
            resources=(
                _res("apps", "StatefulSet", "loki", "ops", "Synced", "Degraded"),
                _res("apps", "Deployment", "grafana", "ops", "Synced", "Healthy"),
                _res("", "Service", "grafana", "ops", "Synced", "Healthy"),
                _res("batch", "Job", "migrate-dashboards", "ops", "Synced", "Healthy", hook=True),
            ),
        ),
        Application(
            name="cluster-addons",
            namespace="kube-system",
            project="platform",
            health="Missing",
            sync="Unknown",
            repo_url="https://github.com/example/ops",
            path="clusters/dev/addons",
            revision="v1.2.3",
            cluster=IN_CLUSTER,
            sync_policy="manual",
            resources=(
                _res("apps", "DaemonSet", "node-exporter", "kube-system", "Unknown", "Missing"),
                _res("rbac.authorization.k8s.io", "ClusterRole", "addons-read", "", "Unknown", ""),
            ),
        ),
    ]


DEMO_REVISIONS = (
    Revision(id=3, revision="f00dbabe", author="alice", date="2026-02-01T12:34:56Z", message="bump image tag"),
    Revision(id=2, revision="deadbeef", author="bob", date="2026-01-28T09:15:00Z", message="fix values"),
    Revision(id=1, revision="c0ffee", author="ci", date="2026-01-20T18:00:00Z", message="initial deploy"),
)


def render_manifest(ref: ResourceRef) -> str:
    """A minimal YAML object for ``ref``."""
    api_version = ref.version or "v1"
    if ref.group:
        api_version = f"{ref.group}/{ref.version or 'v1'}"
    lines = [f"apiVersion: {api_version}", f"kind: {ref.kind}", "metadata:", f"  name: {ref.name}"]
    if ref.namespace:
        lines.append(f"  namespace: {ref.namespace}")
    lines += ["spec: {}", "status: {}"]
    return "\n".join(lines) + "\n"


class MockClient:
    """
    Scripted backend.

    Args:
        apps: Initial fleet; defaults to demo_applications().
        log_lines: Lines every pod_logs() stream yields before ending.
    """

    def __init__(
        self,
        apps: Iterable[Application] | None = None,
        log_lines: Iterable[str] | None = None,
    ) -> None:
        self._apps = list(demo_applications() if apps is None else apps)
        self._failures: dict[tuple[str, str | None], Exception] = {}
        self._log_lines = list(log_lines) if log_lines is not None else None
        self.calls: list[tuple[Any, ...]] = []
        self.open_streams = 0

    async def __aenter__(self) -> MockClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        return None

    # -------------------------------------------------------------------------
    # Scripting
    # -------------------------------------------------------------------------

    def fail(self, operation: str, name: str | None = None, error: Exception | None = None) -> None:
        """Make ``operation`` raise, for one application or (name=None) for all."""
        self._failures[(operation, name)] = error or ArgocdError(500, f"{operation} failed")

    def clear_failures(self) -> None:
        self._failures.clear()

    def _record(self, operation: str, *args: Any) -> None:
        self.calls.append((operation, *args))
        name = args[0] if args and isinstance(args[0], str) else None
        error = self._failures.get((operation, name)) or self._failures.get((operation, None))
        if error is not None:
            raise error

    def _index(self, name: str) -> int:
        for i, app in enumerate(self._apps):
            if app.name == name:
                return i
        raise ArgocdError(404, f"application not found: {name}")

    # -------------------------------------------------------------------------
    # Applications
    # -------------------------------------------------------------------------

    async def list_applications(self) -> list[Application]:
        self._record("list_applications")
        # List rows never carry resources or history, like the real endpoint.
        return [replace(a, resources=(), history=()) for a in self._apps]

    async def refresh_application(self, name: str, hard: bool = False) -> Application:
        self._record("refresh_application", name, hard)
        return self._apps[self._index(name)]

    async def sync_application(self, name: str, dry_run: bool) -> None:
        self._record("sync_application", name, dry_run)
        i = self._index(name)
        if dry_run:
            return
        app = self._apps[i]
        resources = tuple(
            replace(r, status=SYNCED) if r.status and r.status != SYNCED else r for r in app.resources
        )
        self._apps[i] = replace(app, sync=SYNCED, resources=resources)

    async def list_revisions(self, name: str) -> list[Revision]:
        self._record("list_revisions", name)
        self._index(name)
        return list(DEMO_REVISIONS)

    async def rollback_application(self, name: str, revision_id: int) -> None:
        self._record("rollback_application", name, revision_id)
        i = self._index(name)
        self._apps[i] = replace(self._apps[i], sync="OutOfSync")

    async def terminate_operation(self, name: str) -> None:
        self._record("terminate_operation", name)
        i = self._index(name)
        self._apps[i] = replace(self._apps[i], operation_state=None)

    async def delete_application(self, name: str, cascade: bool) -> None:
        self._record("delete_application", name, cascade)
        del self._apps[self._index(name)]

    async def create_application(self, spec: ApplicationSpec) -> None:
        self._record("create_application", spec.name, spec)
        if not spec.name:
            raise ArgocdError(400, "missing application name")
        if any(a.name == spec.name for a in self._apps):
            raise ArgocdError(409, f"application already exists: {spec.name}")
        self._apps.append(
            Application(
                name=spec.name,
                namespace=spec.namespace,
                project=spec.project or "default",
                health="Missing",
                sync="OutOfSync",
                repo_url=spec.repo_url,
                path=spec.path,
                revision=spec.revision,
                cluster=spec.cluster,
                sync_policy=spec.sync_policy,
            )
        )

    async def update_application(self, spec: ApplicationSpec) -> None:
        self._record("update_application", spec.name, spec)
        i = self._index(spec.name)
        self._apps[i] = replace(
            self._apps[i],
            project=spec.project or self._apps[i].project,
            repo_url=spec.repo_url,
            path=spec.path,
            revision=spec.revision,
            cluster=spec.cluster,
            namespace=spec.namespace,
            sync_policy=spec.sync_policy,
        )

    # -------------------------------------------------------------------------
    # Wizard choices
    # -------------------------------------------------------------------------

    async def list_projects(self) -> list[str]:
        self._record("list_projects")
        return ["default", "platform"]

    async def list_repositories(self) -> list[str]:
        self._record("list_repositories")
        return ["https://github.com/example/ops", "https://github.com/example/platform"]

    async def list_clusters(self) -> list[str]:
        self._record("list_clusters")
        return [IN_CLUSTER]

    # -------------------------------------------------------------------------
    # Resources, events, diff, logs
    # -------------------------------------------------------------------------

    async def get_resource(self, app_name: str, ref: ResourceRef) -> str:
        self._record("get_resource", app_name, ref)
        self._index(app_name)
        return render_manifest(ref)

    async def get_manifests(self, app_name: str) -> list[str]:
        self._record("get_manifests", app_name)
        app = self._apps[self._index(app_name)]
        return [render_manifest(r.ref) for r in app.resources]

    async def list_events(self, app_name: str) -> list[Event]:
        self._record("list_events", app_name)
        self._index(app_name)
        now = datetime.now(timezone.utc)
        return [
            Event(
                type="Normal",
                reason="Synced",
                message="application synced",
                timestamp=(now - timedelta(minutes=10)).strftime("%Y-%m-%dT%H:%M:%SZ"),
                involved_object=f"Application/{app_name}",
            ),
            Event(
                type="Warning",
                reason="Drift",
                message="resource out of sync detected",
                timestamp=(now - timedelta(minutes=2)).strftime("%Y-%m-%dT%H:%M:%SZ"),
                involved_object="Deployment/example",
            ),
        ]

    async def server_side_diff(self, app_name: str) -> list[DiffResult]:
        self._record("server_side_diff", app_name)
        app = self._apps[self._index(app_name)]
        return [
            DiffResult(
                ref=ResourceRef(group="apps", kind="Deployment", name=app_name,
                                namespace=app.namespace, version="v1"),
                modified=app.sync != SYNCED,
                diff="--- live\n+++ desired\n@@\n-  replicas: 1\n+  replicas: 2\n",
            )
        ]

    @asynccontextmanager
    async def pod_logs(
        self,
        app_name: str,
        pod_name: str,
        container: str = "",
        follow: bool = True,
    ) -> AsyncIterator[AsyncIterator[str]]:
        self._record("pod_logs", app_name, pod_name, container, follow)
        self._index(app_name)
        self.open_streams += 1
        try:
            yield self._stream(pod_name)
        finally:
            self.open_streams -= 1

    async def _stream(self, pod_name: str) -> AsyncIterator[str]:
        if self._log_lines is not None:
            lines = self._log_lines
        else:
            now = datetime.now(timezone.utc)
            stamps = [(now - timedelta(seconds=s)).strftime("%Y-%m-%dT%H:%M:%SZ") for s in (3, 2, 1)]
            lines = [
                f"{stamps[0]} {pod_name} starting...",
                f"{stamps[1]} {pod_name} listening on :8080",
                f"{stamps[2]} {pod_name} GET /healthz 200",
            ]
        for line in lines:
            yield line
