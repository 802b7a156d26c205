# ABOUTME: Integration tests for the Argo CD API client against a live server
# ABOUTME: Read-only checks; skipped unless ARGOCD_SERVER and ARGOCD_AUTH_TOKEN are set

"""Integration tests for ArgocdClient against a live Argo CD.

These tests require:
- ARGOCD_SERVER pointing at a reachable Argo CD API server
- ARGOCD_AUTH_TOKEN with read access to applications, projects and clusters
- ARGOCD_INSECURE=true for self-signed certificates (optional)

Nothing here mutates the server.
"""

from __future__ import annotations

import asyncio

import pytest

from argocd_tui.commands import LoadApps
from argocd_tui.dispatcher import Dispatcher
from argocd_tui.messages import AppsLoaded
from argocd_tui.utils.client import ArgocdClient, ArgocdError

pytestmark = pytest.mark.integration


@pytest.fixture
def client(live_argocd_client: ArgocdClient | None) -> ArgocdClient:
    if live_argocd_client is None:
        pytest.skip("ARGOCD_SERVER and ARGOCD_AUTH_TOKEN not set")
    return live_argocd_client


class TestLiveReads:
    """Read-only calls against the configured server."""

    async def test_list_applications(self, client: ArgocdClient):
        apps = await client.list_applications()
        assert all(app.name for app in apps)

    async def test_refresh_first_application(self, client: ArgocdClient):
        apps = await client.list_applications()
        if not apps:
            pytest.skip("server has no applications")

        app = await client.refresh_application(apps[0].name)
        assert app.name == apps[0].name

    async def test_unknown_application(self, client: ArgocdClient):
        with pytest.raises(ArgocdError) as exc_info:
            await client.refresh_application("lazyargo-integration-does-not-exist")
        assert exc_info.value.code in (403, 404)

    async def test_wizard_choices(self, client: ArgocdClient):
        projects = await client.list_projects()
        assert "default" in projects
        assert isinstance(await client.list_clusters(), list)

    async def test_events(self, client: ArgocdClient):
        apps = await client.list_applications()
        if not apps:
            pytest.skip("server has no applications")

        events = await client.list_events(apps[0].name)
        assert isinstance(events, list)


class TestLiveDispatcher:
    async def test_load_apps_message(self, client: ArgocdClient):
        queue: asyncio.Queue = asyncio.Queue()
        dispatcher = Dispatcher(client, queue)

        dispatcher.submit(LoadApps(1))
        msg = await asyncio.wait_for(queue.get(), 30)

        assert isinstance(msg, AppsLoaded)
        assert msg.error == ""
