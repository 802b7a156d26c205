# ABOUTME: Pytest fixtures and configuration for the Argo CD session engine tests
# ABOUTME: Provides shared fixtures for unit and integration tests

import os
from typing import AsyncIterator
from unittest.mock import patch

import pytest
import structlog
from pydantic import SecretStr
from tenacity import wait_none

from argocd_tui.config import ArgocdInstance
from argocd_tui.messages import AppsLoaded, DetailLoaded
from argocd_tui.models import Application, OperationState, Resource
from argocd_tui.projection import Projection
from argocd_tui.session import State, start, update
from argocd_tui.utils.client import ArgocdClient
from argocd_tui.utils.mock import MockClient


def _make_app(name: str, sync: str = "Synced", health: str = "Healthy", **kw) -> Application:
    """Build an Application with sensible defaults."""
    kw.setdefault("namespace", "apps")
    kw.setdefault("project", "default")
    return Application(name=name, sync=sync, health=health, **kw)


def _make_pod(name: str, namespace: str = "apps") -> Resource:
    return Resource(kind="Pod", version="v1", name=name, namespace=namespace, status="Synced", health="Healthy")


def _loaded_state(apps: list[Application], detail: Application | None = None, **kw) -> State:
    """
    State after a successful list load (and optionally a detail load for
    the selected application).
    """
    state, _ = start(State(**kw))
    state, _ = update(state, AppsLoaded(state.list_seq, tuple(apps)))
    if detail is not None:
        state, _ = update(state, DetailLoaded(state.detail_seq, detail.name, detail))
    return state


@pytest.fixture(autouse=True)
def reset_structlog():
    """Undo configure_logging() calls made by a test."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def make_app():
    """Factory: make_app(name, sync="Synced", health="Healthy", **fields)."""
    return _make_app


@pytest.fixture
def make_pod():
    return _make_pod


@pytest.fixture
def loaded_state():
    """Factory: loaded_state(apps, detail=None, **state_fields) -> State."""
    return _loaded_state


@pytest.fixture
def mock_argocd_instance() -> ArgocdInstance:
    """Create a mock Argo CD instance configuration."""
    return ArgocdInstance(
        url="https://argocd.example.com",
        token=SecretStr("test-token"),
        name="test",
        insecure=True,
    )


@pytest.fixture
def sample_apps() -> list[Application]:
    """Three apps: one synced, one drifted, one unknown."""
    return [
        _make_app("web", sync="Synced", health="Healthy"),
        _make_app("api", sync="OutOfSync", health="Degraded"),
        _make_app("worker", sync="Unknown", health="Progressing"),
    ]


@pytest.fixture
def detailed_app() -> Application:
    """Selected-app detail with a Deployment and a Pod."""
    return _make_app(
        "api",
        sync="OutOfSync",
        health="Degraded",
        repo_url="https://github.com/example/ops",
        path="apps/api",
        revision="main",
        cluster="https://kubernetes.default.svc",
        sync_policy="Auto",
        resources=(
            Resource(group="apps", kind="Deployment", version="v1", name="api", namespace="apps",
                     status="OutOfSync", health="Degraded"),
            _make_pod("api-6f7d9c-abcde"),
        ),
        operation_state=OperationState(phase="Running", message="waiting for healthy state"),
    )


@pytest.fixture
def projection(sample_apps: list[Application]) -> Projection:
    return Projection().ingest_snapshot(sample_apps)


@pytest.fixture
def mock_client() -> MockClient:
    """In-memory backend with the demo fleet."""
    return MockClient()


@pytest.fixture
def no_retry_wait():
    """Retry timeouts immediately instead of backing off."""
    with patch.object(ArgocdClient._send.retry, "wait", wait_none()):
        yield


# Integration test fixtures


@pytest.fixture
def argocd_server() -> str | None:
    """Get Argo CD server URL from environment."""
    return os.environ.get("ARGOCD_SERVER")


@pytest.fixture
def argocd_token() -> str | None:
    """Get Argo CD token from environment."""
    return os.environ.get("ARGOCD_AUTH_TOKEN")


@pytest.fixture
def argocd_insecure() -> bool:
    """Get Argo CD insecure setting from environment."""
    return os.environ.get("ARGOCD_INSECURE", "false").lower() == "true"


@pytest.fixture
async def live_argocd_client(
    argocd_server: str | None,
    argocd_token: str | None,
    argocd_insecure: bool,
) -> AsyncIterator[ArgocdClient | None]:
    """Create a live Argo CD client for integration tests."""
    if not argocd_server or not argocd_token:
        yield None
        return

    instance = ArgocdInstance(
        url=argocd_server,
        token=SecretStr(argocd_token),
        name="integration-test",
        insecure=argocd_insecure,
    )
    async with ArgocdClient(instance) as client:
        yield client
