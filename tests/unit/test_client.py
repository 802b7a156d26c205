# ABOUTME: Unit tests for the Argo CD API client
# ABOUTME: Tests request handling, login, masking, endpoint mapping and log streaming with respx

import json

import httpx
import pytest
import respx
from pydantic import SecretStr

from argocd_tui.config import ArgocdInstance
from argocd_tui.models import ApplicationSpec, ResourceRef
from argocd_tui.utils.client import TLS_HINT, ArgocdClient, ArgocdError

BASE_URL = "https://argocd.example.com/api/v1"

APP_PAYLOAD = {
    "metadata": {"name": "web"},
    "spec": {
        "project": "default",
        "source": {"repoURL": "https://git/ops", "path": "apps/web", "targetRevision": "main"},
        "destination": {"server": "https://kubernetes.default.svc", "namespace": "web"},
    },
    "status": {
        "sync": {"status": "OutOfSync"},
        "health": {"status": "Healthy"},
        "resources": [{"kind": "Deployment", "name": "web", "status": "OutOfSync"}],
        "history": [{"id": 1, "revision": "aaa"}, {"id": 2, "revision": "bbb"}],
    },
}


@pytest.fixture
def instance() -> ArgocdInstance:
    """Create an Argo CD instance for respx-based tests."""
    return ArgocdInstance(
        url="https://argocd.example.com",
        token=SecretStr("test-token"),
        name="test",
        insecure=True,
    )


@pytest.fixture
def login_instance() -> ArgocdInstance:
    return ArgocdInstance(
        url="https://argocd.example.com",
        username="admin",
        password=SecretStr("hunter2"),
    )


@pytest.mark.unit
class TestArgocdError:
    """Tests for ArgocdError exception class."""

    def test_str(self):
        assert str(ArgocdError(404, "not found")) == "ArgoCD API error (404): not found"

    def test_str_with_details(self):
        error = ArgocdError(500, "boom", "stack")
        assert str(error) == "ArgoCD API error (500): boom - stack"
        assert error.code == 500
        assert error.details == "stack"


@pytest.mark.unit
class TestArgocdClientContextManager:
    """Tests for ArgocdClient async context manager."""

    async def test_context_manager_creates_and_closes_client(self, instance: ArgocdInstance):
        """Test async with creates httpx client and closes it on exit."""
        client = ArgocdClient(instance)
        assert client._client is None

        async with client as c:
            assert c is client
            assert isinstance(client._client, httpx.AsyncClient)
            assert client._client.headers["Authorization"] == "Bearer test-token"

        assert client._client is None

    async def test_outside_context_raises(self, instance: ArgocdInstance):
        with pytest.raises(RuntimeError, match="async with"):
            await ArgocdClient(instance).list_applications()


@pytest.mark.unit
class TestArgocdClientRequest:
    """Tests for error mapping and masking in ArgocdClient._send."""

    @respx.mock
    async def test_raises_argocd_error_with_details(self, instance: ArgocdInstance):
        respx.get(f"{BASE_URL}/applications/nonexistent").mock(
            return_value=httpx.Response(404, json={"message": "not found", "error": "applications \"x\""})
        )

        async with ArgocdClient(instance) as client:
            with pytest.raises(ArgocdError) as exc_info:
                await client._request("GET", "/applications/nonexistent")

        assert exc_info.value.code == 404
        assert exc_info.value.message == "not found"
        assert exc_info.value.details == 'applications "x"'

    @respx.mock
    async def test_non_json_error_body(self, instance: ArgocdInstance):
        respx.get(f"{BASE_URL}/applications").mock(return_value=httpx.Response(502, text="Bad Gateway"))

        async with ArgocdClient(instance) as client:
            with pytest.raises(ArgocdError) as exc_info:
                await client.list_applications()

        assert exc_info.value.message == "HTTP 502"
        assert exc_info.value.details == "Bad Gateway"

    @respx.mock
    async def test_empty_body(self, instance: ArgocdInstance):
        respx.delete(f"{BASE_URL}/applications/web/operation").mock(return_value=httpx.Response(200))

        async with ArgocdClient(instance) as client:
            assert await client._request("DELETE", "/applications/web/operation") == {}

    @respx.mock
    async def test_masks_sensitive_keys_and_text(self, instance: ArgocdInstance):
        respx.get(f"{BASE_URL}/applications/web/resource").mock(
            return_value=httpx.Response(200, json={"manifest": "data:\n  password: hunter2\n", "token": "abc"})
        )

        async with ArgocdClient(instance) as client:
            raw = await client._request("GET", "/applications/web/resource")

        assert raw["token"] == "***MASKED***"
        assert "hunter2" not in raw["manifest"]

    @respx.mock
    async def test_masking_disabled(self, instance: ArgocdInstance):
        respx.get(f"{BASE_URL}/applications/web/resource").mock(
            return_value=httpx.Response(200, json={"manifest": "password: hunter2"})
        )

        async with ArgocdClient(instance, mask_secrets=False) as client:
            manifest = await client.get_resource("web", ResourceRef(kind="Secret", name="s"))

        assert manifest == "password: hunter2"

    @respx.mock
    async def test_tls_error_hint(self, instance: ArgocdInstance):
        respx.get(f"{BASE_URL}/applications").mock(
            side_effect=httpx.ConnectError("[SSL: CERTIFICATE_VERIFY_FAILED] certificate verify failed")
        )

        async with ArgocdClient(instance) as client:
            with pytest.raises(ArgocdError) as exc_info:
                await client.list_applications()

        assert exc_info.value.code == 0
        assert exc_info.value.details.endswith(TLS_HINT)

    @respx.mock
    async def test_other_connect_errors_propagate(self, instance: ArgocdInstance):
        respx.get(f"{BASE_URL}/applications").mock(side_effect=httpx.ConnectError("connection refused"))

        async with ArgocdClient(instance) as client:
            with pytest.raises(httpx.ConnectError):
                await client.list_applications()

    @pytest.mark.usefixtures("no_retry_wait")
    @respx.mock
    async def test_timeout_reraised_after_retries(self, instance: ArgocdInstance):
        """Test the last timeout surfaces as itself once retries run out."""
        route = respx.get(f"{BASE_URL}/applications").mock(side_effect=httpx.ReadTimeout("timed out"))

        async with ArgocdClient(instance) as client:
            with pytest.raises(httpx.ReadTimeout):
                await client.list_applications()

        assert route.call_count == 3


@pytest.mark.unit
class TestLogin:
    """Tests for username/password session login."""

    @respx.mock
    async def test_login_then_bearer(self, login_instance: ArgocdInstance):
        session = respx.post(f"{BASE_URL}/session").mock(
            return_value=httpx.Response(200, json={"token": "session-token"})
        )
        apps = respx.get(f"{BASE_URL}/applications").mock(return_value=httpx.Response(200, json={"items": []}))

        async with ArgocdClient(login_instance) as client:
            await client.list_applications()
            await client.list_applications()

        assert session.call_count == 1
        assert json.loads(session.calls.last.request.content) == {"username": "admin", "password": "hunter2"}
        assert apps.calls.last.request.headers["Authorization"] == "Bearer session-token"

    async def test_missing_credentials(self):
        instance = ArgocdInstance(url="https://argocd.example.com")
        async with ArgocdClient(instance) as client:
            with pytest.raises(ArgocdError) as exc_info:
                await client.list_applications()
        assert exc_info.value.code == 401

    @respx.mock
    async def test_empty_token(self, login_instance: ArgocdInstance):
        respx.post(f"{BASE_URL}/session").mock(return_value=httpx.Response(200, json={}))

        async with ArgocdClient(login_instance) as client:
            with pytest.raises(ArgocdError, match="empty token"):
                await client.list_applications()


@pytest.mark.unit
class TestApplications:
    """Tests for application endpoints."""

    @respx.mock
    async def test_list_applications(self, instance: ArgocdInstance):
        respx.get(f"{BASE_URL}/applications").mock(
            return_value=httpx.Response(200, json={"items": [APP_PAYLOAD]})
        )

        async with ArgocdClient(instance) as client:
            apps = await client.list_applications()

        assert [a.name for a in apps] == ["web"]
        assert apps[0].sync == "OutOfSync"

    @respx.mock
    async def test_list_applications_null_items(self, instance: ArgocdInstance):
        respx.get(f"{BASE_URL}/applications").mock(return_value=httpx.Response(200, json={"items": None}))

        async with ArgocdClient(instance) as client:
            assert await client.list_applications() == []

    @respx.mock
    async def test_refresh_prefers_resource_tree(self, instance: ArgocdInstance):
        detail = respx.get(f"{BASE_URL}/applications/web").mock(return_value=httpx.Response(200, json=APP_PAYLOAD))
        respx.get(f"{BASE_URL}/applications/web/resource-tree").mock(
            return_value=httpx.Response(
                200,
                json={"nodes": [
                    {"kind": "Deployment", "name": "web"},
                    {"kind": "Pod", "version": "v1", "name": "web-1", "namespace": "web"},
                ]},
            )
        )

        async with ArgocdClient(instance) as client:
            app = await client.refresh_application("web", hard=True)

        assert detail.calls.last.request.url.params["refresh"] == "hard"
        assert [r.kind for r in app.resources] == ["Deployment", "Pod"]

    @respx.mock
    async def test_refresh_without_tree(self, instance: ArgocdInstance):
        detail = respx.get(f"{BASE_URL}/applications/web").mock(return_value=httpx.Response(200, json=APP_PAYLOAD))
        respx.get(f"{BASE_URL}/applications/web/resource-tree").mock(return_value=httpx.Response(403))

        async with ArgocdClient(instance) as client:
            app = await client.refresh_application("web")

        assert "refresh" not in detail.calls.last.request.url.params
        assert [r.kind for r in app.resources] == ["Deployment"]

    @pytest.mark.usefixtures("no_retry_wait")
    @respx.mock
    async def test_refresh_tree_timeout_falls_back(self, instance: ArgocdInstance):
        respx.get(f"{BASE_URL}/applications/web").mock(return_value=httpx.Response(200, json=APP_PAYLOAD))
        respx.get(f"{BASE_URL}/applications/web/resource-tree").mock(side_effect=httpx.ReadTimeout("timed out"))

        async with ArgocdClient(instance) as client:
            app = await client.refresh_application("web")

        assert [r.kind for r in app.resources] == ["Deployment"]

    @respx.mock
    async def test_sync_dry_run(self, instance: ArgocdInstance):
        route = respx.post(f"{BASE_URL}/applications/web/sync").mock(return_value=httpx.Response(200, json={}))

        async with ArgocdClient(instance) as client:
            await client.sync_application("web", dry_run=True)

        assert json.loads(route.calls.last.request.content) == {"dryRun": True}

    @respx.mock
    async def test_list_revisions(self, instance: ArgocdInstance):
        """Test revisions are newest first and tolerate missing metadata."""
        respx.get(f"{BASE_URL}/applications/web").mock(return_value=httpx.Response(200, json=APP_PAYLOAD))
        respx.get(f"{BASE_URL}/applications/web/revisions/aaa/metadata").mock(
            return_value=httpx.Response(200, json={"author": "alice", "date": "2026-01-01", "message": "init"})
        )
        respx.get(f"{BASE_URL}/applications/web/revisions/bbb/metadata").mock(
            return_value=httpx.Response(404, json={"message": "helm source"})
        )

        async with ArgocdClient(instance) as client:
            revisions = await client.list_revisions("web")

        assert [(r.id, r.revision, r.author) for r in revisions] == [(2, "bbb", ""), (1, "aaa", "alice")]

    @respx.mock
    async def test_rollback(self, instance: ArgocdInstance):
        route = respx.post(f"{BASE_URL}/applications/web/rollback").mock(return_value=httpx.Response(200, json={}))

        async with ArgocdClient(instance) as client:
            await client.rollback_application("web", 3)

        assert json.loads(route.calls.last.request.content) == {"id": 3}

    @respx.mock
    async def test_terminate(self, instance: ArgocdInstance):
        route = respx.delete(f"{BASE_URL}/applications/web/operation").mock(return_value=httpx.Response(200))

        async with ArgocdClient(instance) as client:
            await client.terminate_operation("web")

        assert route.called

    @respx.mock
    async def test_delete_cascade(self, instance: ArgocdInstance):
        route = respx.delete(f"{BASE_URL}/applications/web").mock(return_value=httpx.Response(200))

        async with ArgocdClient(instance) as client:
            await client.delete_application("web", cascade=True)
            await client.delete_application("web", cascade=False)

        first, second = route.calls
        assert first.request.url.params["cascade"] == "true"
        assert "cascade" not in second.request.url.params

    @respx.mock
    async def test_create(self, instance: ArgocdInstance):
        route = respx.post(f"{BASE_URL}/applications").mock(return_value=httpx.Response(200, json={}))
        spec = ApplicationSpec(name="demo", project="default", repo_url="https://git/ops", path="apps/demo")

        async with ArgocdClient(instance) as client:
            await client.create_application(spec)

        assert json.loads(route.calls.last.request.content) == spec.to_api_payload()

    @respx.mock
    async def test_update(self, instance: ArgocdInstance):
        route = respx.put(f"{BASE_URL}/applications/demo").mock(return_value=httpx.Response(200, json={}))

        async with ArgocdClient(instance) as client:
            await client.update_application(ApplicationSpec(name="demo", sync_policy="auto"))

        body = json.loads(route.calls.last.request.content)
        assert body["spec"]["syncPolicy"] == {"automated": {}}

    async def test_update_requires_name(self, instance: ArgocdInstance):
        async with ArgocdClient(instance) as client:
            with pytest.raises(ArgocdError) as exc_info:
                await client.update_application(ApplicationSpec(name="  "))
        assert exc_info.value.code == 400


@pytest.mark.unit
class TestChoices:
    """Tests for wizard pick-list endpoints."""

    @respx.mock
    async def test_projects_sorted(self, instance: ArgocdInstance):
        respx.get(f"{BASE_URL}/projects").mock(
            return_value=httpx.Response(200, json={"items": [{"metadata": {"name": "z"}}, {"metadata": {"name": "a"}}, {}]})
        )

        async with ArgocdClient(instance) as client:
            assert await client.list_projects() == ["a", "z"]

    @respx.mock
    async def test_repositories(self, instance: ArgocdInstance):
        respx.get(f"{BASE_URL}/repositories").mock(
            return_value=httpx.Response(200, json={"items": [{"repo": "https://git/b"}, {"repo": ""}, {"repo": "https://git/a"}]})
        )

        async with ArgocdClient(instance) as client:
            assert await client.list_repositories() == ["https://git/a", "https://git/b"]

    @respx.mock
    async def test_clusters_fall_back_to_name(self, instance: ArgocdInstance):
        respx.get(f"{BASE_URL}/clusters").mock(
            return_value=httpx.Response(200, json={"items": [{"server": "https://k8s"}, {"name": "in-cluster"}]})
        )

        async with ArgocdClient(instance) as client:
            assert await client.list_clusters() == ["https://k8s", "in-cluster"]


@pytest.mark.unit
class TestResources:
    """Tests for resource, manifest, event and diff endpoints."""

    @respx.mock
    async def test_get_resource_params(self, instance: ArgocdInstance):
        route = respx.get(f"{BASE_URL}/applications/web/resource").mock(
            return_value=httpx.Response(200, json={"manifest": "kind: Deployment"})
        )
        ref = ResourceRef(group="apps", kind="Deployment", name="web", namespace="prod", version="v1")

        async with ArgocdClient(instance) as client:
            manifest = await client.get_resource("web", ref)

        assert manifest == "kind: Deployment"
        params = route.calls.last.request.url.params
        assert params["resourceName"] == "web"
        assert params["group"] == "apps"
        assert params["namespace"] == "prod"

    @respx.mock
    async def test_get_manifests(self, instance: ArgocdInstance):
        respx.get(f"{BASE_URL}/applications/web/manifests").mock(
            return_value=httpx.Response(200, json={"manifests": ["kind: A", "kind: B"]})
        )

        async with ArgocdClient(instance) as client:
            assert await client.get_manifests("web") == ["kind: A", "kind: B"]

    @respx.mock
    async def test_events(self, instance: ArgocdInstance):
        respx.get(f"{BASE_URL}/applications/web/events").mock(
            return_value=httpx.Response(200, json={"items": [{"type": "Warning", "reason": "BackOff"}]})
        )

        async with ArgocdClient(instance) as client:
            events = await client.list_events("web")

        assert events[0].reason == "BackOff"

    @pytest.mark.parametrize("key", ["items", "diffs"])
    @respx.mock
    async def test_server_side_diff(self, instance: ArgocdInstance, key: str):
        respx.get(f"{BASE_URL}/applications/web/server-side-diff").mock(
            return_value=httpx.Response(
                200,
                json={key: [{"resource": {"kind": "Deployment", "name": "web"}, "diff": "-a\n+b", "modified": True}]},
            )
        )

        async with ArgocdClient(instance) as client:
            (diff,) = await client.server_side_diff("web")

        assert diff.ref.kind == "Deployment"
        assert diff.modified


@pytest.mark.unit
class TestPodLogs:
    """Tests for streamed pod logs."""

    @respx.mock
    async def test_decodes_envelopes(self, instance: ArgocdInstance):
        body = "\n".join([
            json.dumps({"result": {"content": "hello", "podName": "web-1"}}),
            "plain line",
            "",
            json.dumps({"result": {"content": "token: abc123"}}),
        ])
        route = respx.get(f"{BASE_URL}/applications/web/pods/web-1/logs").mock(
            return_value=httpx.Response(200, text=body)
        )

        async with ArgocdClient(instance) as client:
            async with client.pod_logs("web", "web-1", container="app") as lines:
                received = [line async for line in lines]

        assert received == ["hello", "plain line", "token: ***MASKED***"]
        params = route.calls.last.request.url.params
        assert params["follow"] == "true"
        assert params["container"] == "app"

    @respx.mock
    async def test_no_follow(self, instance: ArgocdInstance):
        route = respx.get(f"{BASE_URL}/applications/web/pods/web-1/logs").mock(
            return_value=httpx.Response(200, text="x\n")
        )

        async with ArgocdClient(instance) as client:
            async with client.pod_logs("web", "web-1", follow=False) as lines:
                assert [line async for line in lines] == ["x"]

        assert "follow" not in route.calls.last.request.url.params

    @respx.mock
    async def test_rejected_stream(self, instance: ArgocdInstance):
        respx.get(f"{BASE_URL}/applications/web/pods/gone/logs").mock(
            return_value=httpx.Response(404, json={"message": "pod not found"})
        )

        async with ArgocdClient(instance) as client:
            with pytest.raises(ArgocdError) as exc_info:
                async with client.pod_logs("web", "gone"):
                    pass

        assert exc_info.value.code == 404

    @respx.mock
    async def test_error_envelope(self, instance: ArgocdInstance):
        respx.get(f"{BASE_URL}/applications/web/pods/web-1/logs").mock(
            return_value=httpx.Response(200, text=json.dumps({"error": {"message": "container not found"}}))
        )

        async with ArgocdClient(instance) as client:
            async with client.pod_logs("web", "web-1") as lines:
                with pytest.raises(ArgocdError, match="container not found"):
                    async for _ in lines:
                        pass
