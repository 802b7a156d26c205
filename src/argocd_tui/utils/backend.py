# ABOUTME: Backend capability consumed by the session dispatcher
# ABOUTME: Structural interface satisfied by the HTTP client and the in-memory mock

"""Backend capability shared by ArgocdClient and MockClient."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from contextlib import AbstractAsyncContextManager

    from argocd_tui.models import (
        Application,
        ApplicationSpec,
        DiffResult,
        Event,
        ResourceRef,
        Revision,
    )


class BackendClient(Protocol):
    """
    Operations the session needs from an Argo CD server.

    Every coroutine raises ``ArgocdError`` (or an httpx transport error) on
    failure. Implementations must be safe to call from concurrent tasks.
    """

    async def list_applications(self) -> list[Application]: ...

    async def refresh_application(self, name: str, hard: bool = False) -> Application: ...

    async def sync_application(self, name: str, dry_run: bool) -> None: ...

    async def list_revisions(self, name: str) -> list[Revision]: ...

    async def rollback_application(self, name: str, revision_id: int) -> None: ...

    async def terminate_operation(self, name: str) -> None: ...

    async def delete_application(self, name: str, cascade: bool) -> None: ...

    async def create_application(self, spec: ApplicationSpec) -> None: ...

    async def update_application(self, spec: ApplicationSpec) -> None: ...

    async def list_projects(self) -> list[str]: ...

    async def list_repositories(self) -> list[str]: ...

    async def list_clusters(self) -> list[str]: ...

    async def get_resource(self, app_name: str, ref: ResourceRef) -> str: ...

    async def get_manifests(self, app_name: str) -> list[str]: ...

    async def list_events(self, app_name: str) -> list[Event]: ...

    def pod_logs(
        self,
        app_name: str,
        pod_name: str,
        container: str = "",
        follow: bool = True,
    ) -> AbstractAsyncContextManager[AsyncIterator[str]]:
        """Open a log stream; leaving the context closes the underlying connection."""
        ...

    async def server_side_diff(self, app_name: str) -> list[DiffResult]: ...
