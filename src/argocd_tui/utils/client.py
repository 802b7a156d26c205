# ABOUTME: Argo CD REST API client with retry logic, login and log streaming
# ABOUTME: Async httpx implementation of the session's backend capability

"""
Argo CD API client with retry logic and structured error handling.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

This module is the network implementation of BackendClient. It handles:

1. HTTP COMMUNICATION: Requests to Argo CD's /api/v1 endpoints
2. AUTHENTICATION: Bearer token, or username/password exchanged for a
   session token on first use
3. ERROR HANDLING: Non-2xx responses become ArgocdError
4. RETRY LOGIC: Timeouts are retried with exponential backoff
5. SECRET MASKING: Tokens and passwords are hidden in JSON payloads and
   manifest text before they reach the session
6. LOG STREAMING: Pod logs are read line by line from a long-lived
   response that is closed when the caller leaves the stream context

=============================================================================
ENDPOINTS USED
=============================================================================

    POST   /session                                   login
    GET    /applications                              list
    GET    /applications/{name}[?refresh=hard]        detail / refresh
    GET    /applications/{name}/resource-tree         managed resources
    POST   /applications/{name}/sync                  sync (dryRun flag)
    GET    /applications/{name}/revisions/{rev}/metadata
    POST   /applications/{name}/rollback              rollback to history id
    DELETE /applications/{name}/operation             terminate
    DELETE /applications/{name}[?cascade=true]        delete
    POST   /applications                              create
    PUT    /applications/{name}                       update
    GET    /projects | /repositories | /clusters      wizard choices
    GET    /applications/{name}/resource              live manifest
    GET    /applications/{name}/manifests             desired manifests
    GET    /applications/{name}/events                Kubernetes events
    GET    /applications/{name}/pods/{pod}/logs       log stream
    GET    /applications/{name}/server-side-diff      diff

=============================================================================
STREAMING AND CANCELLATION
=============================================================================

pod_logs() is an async context manager:

    async with client.pod_logs("payments-api", "payments-api-7c9f") as lines:
        async for line in lines:
            ...

Leaving the block, normally or because the surrounding task was cancelled,
closes the HTTP response. A cancelled log stream therefore never leaves a
connection open.
"""

from __future__ import annotations

import json
import re
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from argocd_tui.models import (
    Application,
    DiffResult,
    Event,
    Resource,
    ResourceRef,
    Revision,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from argocd_tui.config import ArgocdInstance
    from argocd_tui.models import ApplicationSpec

logger = structlog.get_logger(__name__)

USER_AGENT = "argocd-tui/0.1.0"

TLS_HINT = " (TLS error: try --insecure or set ARGOCD_INSECURE=true)"

# Argo CD keeps at most this many history entries worth offering for rollback.
MAX_REVISIONS = 20


# =============================================================================
# SECRET MASKING PATTERNS
# =============================================================================

# (pattern, replacement) pairs applied to every string in a response.
# The first four also match YAML ("token: abc") since manifests are text.
SECRET_PATTERNS = [
    (re.compile(r"(token[\"']?\s*[:=]\s*[\"']?)[^\"'\s,}]+", re.I), r"\1***MASKED***"),
    (re.compile(r"(password[\"']?\s*[:=]\s*[\"']?)[^\"'\s,}]+", re.I), r"\1***MASKED***"),
    (re.compile(r"(secret[\"']?\s*[:=]\s*[\"']?)[^\"'\s,}]+", re.I), r"\1***MASKED***"),
    (re.compile(r"(api[_-]?key[\"']?\s*[:=]\s*[\"']?)[^\"'\s,}]+", re.I), r"\1***MASKED***"),
    (re.compile(r"(bearer\s+)[^\s\"']+", re.I), r"\1***MASKED***"),
]

# Dictionary keys whose values are replaced outright
SENSITIVE_KEYS = frozenset(
    [
        "token",
        "password",
        "secret",
        "api_key",
        "apikey",
        "api-key",
        "authorization",
        "auth",
        "credential",
        "credentials",
    ]
)


# =============================================================================
# ARGOCD ERROR CLASS
# =============================================================================


class ArgocdError(Exception):
    """
    Structured Argo CD API error.

    Raised for every non-2xx response, for a failed login and for TLS
    failures. ``code`` is the HTTP status, or 0 when no response was
    received at all.

    USAGE:
    ------
    try:
        await client.sync_application("payments-api", dry_run=True)
    except ArgocdError as e:
        status = f"sync failed: {e.message}"
    """

    def __init__(self, code: int, message: str, details: str | None = None) -> None:
        """
        Initialize Argo CD error.

        Args:
            code: HTTP status code (e.g., 404, 500), 0 for transport failures
            message: Primary error message from Argo CD
            details: Additional error details (optional)
        """
        self.code = code
        self.message = message
        self.details = details
        super().__init__(str(self))

    def __str__(self) -> str:
        """
        Format error for display in the status line.

        Example:
            "ArgoCD API error (404): application not found - applications.argoproj.io \"foo\" not found"
        """
        base = f"ArgoCD API error ({self.code}): {self.message}"
        if self.details:
            base += f" - {self.details}"
        return base


def _items(data: Any) -> list[Any]:
    """Argo CD returns either a bare list or {"items": [...]}; items may be null."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        items = data.get("items")
        return list(items) if isinstance(items, list) else []
    return []


# =============================================================================
# ARGOCD CLIENT
# =============================================================================


class ArgocdClient:
    """
    Async Argo CD API client with retry logic.

    LIFECYCLE:
    ----------
        async with ArgocdClient(settings.instance()) as client:
            apps = await client.list_applications()

    The connection pool only exists inside the ``async with`` block. Every
    method raises RuntimeError when called outside it.

    AUTHENTICATION:
    ---------------
    A configured token is sent as-is. Without a token, the first request
    logs in with username/password and the returned session token is
    attached to every later request, including log streams.
    """

    def __init__(
        self,
        instance: ArgocdInstance,
        timeout: float = 30.0,
        mask_secrets: bool = True,
    ) -> None:
        """
        Initialize Argo CD client.

        Args:
            instance: Server URL, credentials and TLS setting.
            timeout: Per-request timeout in seconds. Log streams only apply
                it to connecting; a followed stream may idle indefinitely.
            mask_secrets: Whether to mask sensitive data in responses.
        """
        self._instance = instance
        self._timeout = timeout
        self._mask_secrets = mask_secrets
        self._client: httpx.AsyncClient | None = None
        self._session_token = ""

    async def __aenter__(self) -> ArgocdClient:
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
        }
        token = self._instance.token.get_secret_value()
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._client = httpx.AsyncClient(
            base_url=f"{self._instance.url}/api/v1",
            headers=headers,
            timeout=self._timeout,
            verify=not self._instance.insecure,
        )
        return self

    async def __aexit__(self, *args: object) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def _require_client(self) -> httpx.AsyncClient:
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")
        return self._client

    def _mask_response(self, data: Any) -> Any:
        """
        Mask sensitive values in response data.

        Recurses through dicts and lists; strings are scrubbed with
        SECRET_PATTERNS and values under SENSITIVE_KEYS are replaced.
        """
        if not self._mask_secrets:
            return data

        if isinstance(data, str):
            masked_str = data
            for pattern, replacement in SECRET_PATTERNS:
                masked_str = pattern.sub(replacement, masked_str)
            return masked_str

        if isinstance(data, dict):
            masked_dict: dict[str, Any] = {}
            for k, v in data.items():
                if k.lower() in SENSITIVE_KEYS:
                    masked_dict[k] = "***MASKED***"
                else:
                    masked_dict[k] = self._mask_response(v)
            return masked_dict

        if isinstance(data, list):
            return [self._mask_response(item) for item in data]

        return data

    @staticmethod
    def _error_from_response(response: httpx.Response) -> ArgocdError:
        """Build ArgocdError from a non-2xx response whose body has been read."""
        error_body = response.text
        message = f"HTTP {response.status_code}"
        details = None
        try:
            error_json = response.json()
            message = error_json.get("message", message)
            details = error_json.get("error")
        except (ValueError, AttributeError):
            details = error_body[:200] if error_body else None
        return ArgocdError(code=response.status_code, message=message, details=details)

    @retry(
        retry=retry_if_exception_type(httpx.TimeoutException),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _send(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
        mask: bool = True,
    ) -> Any:
        """
        Make one HTTP request to the Argo CD API.

        Args:
            method: HTTP method ("GET", "POST", "PUT", "DELETE")
            path: API path relative to /api/v1
            params: URL query parameters (optional)
            json_data: JSON request body (optional)
            mask: Apply secret masking to the decoded body

        Returns:
            Decoded JSON body (dict or list), or {} for an empty body

        Raises:
            ArgocdError: On API error (4xx, 5xx) or certificate failure
            httpx.TimeoutException: On request timeout, re-raised after the last retry
            httpx.TransportError: On other connection failures
        """
        client = self._require_client()

        log = logger.bind(method=method, path=path, instance=self._instance.name)
        log.debug("Making ArgoCD API request")

        try:
            response = await client.request(method, path, params=params, json=json_data)
        except httpx.ConnectError as e:
            text = str(e)
            if "certificate" in text.lower() or "x509" in text.lower():
                log.error("ArgoCD TLS verification failed", error=text)
                raise ArgocdError(code=0, message="request failed", details=text + TLS_HINT) from e
            raise

        if response.status_code >= 400:
            log.warning("ArgoCD API error", status=response.status_code, body=response.text[:200])
            raise self._error_from_response(response)

        result = response.json() if response.content else {}
        return self._mask_response(result) if mask else result

    async def _ensure_login(self) -> None:
        """Exchange username/password for a session token when no token is configured."""
        if self._instance.token.get_secret_value() or self._session_token:
            return

        password = self._instance.password.get_secret_value()
        if not self._instance.username or not password:
            raise ArgocdError(
                code=401,
                message="missing Argo CD auth",
                details="set ARGOCD_AUTH_TOKEN or provide username/password",
            )

        data = await self._send(
            "POST",
            "/session",
            json_data={"username": self._instance.username, "password": password},
            mask=False,
        )
        token = data.get("token", "") if isinstance(data, dict) else ""
        if not token:
            raise ArgocdError(code=401, message="argocd login returned empty token")

        self._session_token = token
        self._require_client().headers["Authorization"] = f"Bearer {token}"
        logger.info("ArgoCD session login succeeded", username=self._instance.username)

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
    ) -> Any:
        await self._ensure_login()
        return await self._send(method, path, params=params, json_data=json_data)

    # =========================================================================
    # APPLICATIONS
    # =========================================================================

    async def list_applications(self) -> list[Application]:
        """
        List Argo CD applications.

        ArgoCD API: GET /api/v1/applications

        List rows carry no resources or history; those come from
        refresh_application().
        """
        data = await self._request("GET", "/applications")
        return [Application.from_api_response(item) for item in _items(data)]

    async def refresh_application(self, name: str, hard: bool = False) -> Application:
        """
        Load one application with its managed resources.

        ArgoCD API: GET /api/v1/applications/{name}[?refresh=hard]

        A hard refresh makes Argo CD invalidate its manifest cache before
        answering. The resource tree is preferred over status.resources when
        the server returns one, since it also lists Pods and ReplicaSets.
        """
        params = {"refresh": "hard"} if hard else None
        data = await self._request("GET", f"/applications/{name}", params=params)

        resources = None
        try:
            tree = await self._request("GET", f"/applications/{name}/resource-tree")
        except (ArgocdError, httpx.TimeoutException) as e:
            logger.debug("Resource tree unavailable", app=name, error=str(e))
        else:
            nodes = tree.get("nodes") if isinstance(tree, dict) else None
            if nodes:
                resources = tuple(Resource.from_api_response(n) for n in nodes)

        return Application.from_api_response(data, resources=resources)

    async def sync_application(self, name: str, dry_run: bool) -> None:
        """
        Trigger application sync.

        ArgoCD API: POST /api/v1/applications/{name}/sync

        Args:
            name: Application name
            dry_run: Preview changes without applying
        """
        await self._request("POST", f"/applications/{name}/sync", json_data={"dryRun": dry_run})

    async def list_revisions(self, name: str) -> list[Revision]:
        """
        List rollback targets, newest first, at most MAX_REVISIONS.

        History ids come from the application status; author, date and
        message are looked up per revision and left empty when the metadata
        endpoint fails (e.g. Helm sources have no commit metadata).
        """
        app = await self._request("GET", f"/applications/{name}")
        history = ((app.get("status") or {}).get("history") or []) if isinstance(app, dict) else []

        revisions = []
        for entry in history:
            rev = entry.get("revision", "")
            meta: dict[str, Any] = {}
            if rev:
                try:
                    meta = await self._request(
                        "GET", f"/applications/{name}/revisions/{rev}/metadata"
                    )
                except ArgocdError as e:
                    logger.debug("Revision metadata unavailable", app=name, revision=rev, error=str(e))
            revisions.append(
                Revision(
                    id=int(entry.get("id", 0)),
                    revision=rev,
                    author=meta.get("author", ""),
                    date=meta.get("date", ""),
                    message=meta.get("message", ""),
                )
            )

        revisions.sort(key=lambda r: r.id, reverse=True)
        return revisions[:MAX_REVISIONS]

    async def rollback_application(self, name: str, revision_id: int) -> None:
        """ArgoCD API: POST /api/v1/applications/{name}/rollback"""
        await self._request("POST", f"/applications/{name}/rollback", json_data={"id": revision_id})

    async def terminate_operation(self, name: str) -> None:
        """ArgoCD API: DELETE /api/v1/applications/{name}/operation"""
        await self._request("DELETE", f"/applications/{name}/operation")

    async def delete_application(self, name: str, cascade: bool) -> None:
        """
        Delete application.

        cascade=True also deletes every Kubernetes resource the application
        manages; cascade=False leaves them orphaned in the cluster.
        """
        params = {"cascade": "true"} if cascade else None
        await self._request("DELETE", f"/applications/{name}", params=params)

    async def create_application(self, spec: ApplicationSpec) -> None:
        """ArgoCD API: POST /api/v1/applications"""
        await self._request("POST", "/applications", json_data=spec.to_api_payload())

    async def update_application(self, spec: ApplicationSpec) -> None:
        """ArgoCD API: PUT /api/v1/applications/{name}"""
        if not spec.name.strip():
            raise ArgocdError(code=400, message="missing application name")
        await self._request("PUT", f"/applications/{spec.name}", json_data=spec.to_api_payload())

    # =========================================================================
    # WIZARD CHOICES
    # =========================================================================

    async def list_projects(self) -> list[str]:
        data = await self._request("GET", "/projects")
        names = [(item.get("metadata") or {}).get("name", "") for item in _items(data)]
        return sorted(n for n in names if n)

    async def list_repositories(self) -> list[str]:
        data = await self._request("GET", "/repositories")
        return sorted(item["repo"] for item in _items(data) if item.get("repo"))

    async def list_clusters(self) -> list[str]:
        """Cluster server URLs, falling back to the cluster name when unset."""
        data = await self._request("GET", "/clusters")
        out = [item.get("server") or item.get("name") or "" for item in _items(data)]
        return sorted(c for c in out if c)

    # =========================================================================
    # RESOURCES, EVENTS, DIFF
    # =========================================================================

    async def get_resource(self, app_name: str, ref: ResourceRef) -> str:
        """
        Live manifest of one managed resource.

        ArgoCD API: GET /api/v1/applications/{name}/resource
        """
        params = {
            "namespace": ref.namespace,
            "resourceName": ref.name,
            "version": ref.version,
            "kind": ref.kind,
            "group": ref.group,
        }
        data = await self._request("GET", f"/applications/{app_name}/resource", params=params)
        return str(data.get("manifest", "")) if isinstance(data, dict) else ""

    async def get_manifests(self, app_name: str) -> list[str]:
        """Rendered desired-state manifests, one document per entry."""
        data = await self._request("GET", f"/applications/{app_name}/manifests")
        manifests = data.get("manifests") if isinstance(data, dict) else None
        return [str(m) for m in manifests or []]

    async def list_events(self, app_name: str) -> list[Event]:
        data = await self._request("GET", f"/applications/{app_name}/events")
        return [Event.from_api_response(item) for item in _items(data)]

    async def server_side_diff(self, app_name: str) -> list[DiffResult]:
        """
        Per-resource diff between live and desired state.

        The response key differs across Argo CD versions: "items" on some,
        "diffs" on others.
        """
        data = await self._request("GET", f"/applications/{app_name}/server-side-diff")
        items: list[Any] = []
        if isinstance(data, dict):
            items = data.get("items") or data.get("diffs") or []

        results = []
        for item in items:
            res = item.get("resource") or {}
            results.append(
                DiffResult(
                    ref=ResourceRef(
                        group=res.get("group", ""),
                        kind=res.get("kind", ""),
                        name=res.get("name", ""),
                        namespace=res.get("namespace", ""),
                        version=res.get("version", ""),
                    ),
                    diff=item.get("diff", ""),
                    modified=bool(item.get("modified", False)),
                )
            )
        return results

    # =========================================================================
    # LOG STREAMING
    # =========================================================================

    @asynccontextmanager
    async def pod_logs(
        self,
        app_name: str,
        pod_name: str,
        container: str = "",
        follow: bool = True,
    ) -> AsyncIterator[AsyncIterator[str]]:
        """
        Stream a pod's log lines.

        ArgoCD API: GET /api/v1/applications/{name}/pods/{pod}/logs

        Yields an async iterator of lines. The response is closed when the
        ``async with`` block exits, including on task cancellation.

        Raises:
            ArgocdError: If the server rejects the stream (non-2xx)
        """
        client = self._require_client()
        await self._ensure_login()

        params: dict[str, str] = {}
        if container:
            params["container"] = container
        if follow:
            params["follow"] = "true"

        log = logger.bind(app=app_name, pod=pod_name, follow=follow)
        log.debug("Opening log stream")

        async with client.stream(
            "GET",
            f"/applications/{app_name}/pods/{pod_name}/logs",
            params=params or None,
            timeout=httpx.Timeout(self._timeout, read=None),
        ) as response:
            if response.status_code >= 400:
                await response.aread()
                log.warning("Log stream rejected", status=response.status_code)
                raise self._error_from_response(response)
            yield self._log_lines(response)
            log.debug("Log stream closed")

    async def _log_lines(self, response: httpx.Response) -> AsyncIterator[str]:
        """
        Decode streamed log lines.

        Argo CD wraps each line as {"result": {"content": "..."}}; anything
        that is not such an envelope is passed through unchanged.
        """
        async for raw in response.aiter_lines():
            if not raw:
                continue
            line = raw
            if raw.startswith("{"):
                try:
                    envelope = json.loads(raw)
                except ValueError:
                    envelope = None
                if isinstance(envelope, dict):
                    if "error" in envelope and "result" not in envelope:
                        err = envelope["error"]
                        message = err.get("message", str(err)) if isinstance(err, dict) else str(err)
                        raise ArgocdError(code=500, message="log stream failed", details=message)
                    result = envelope.get("result")
                    if isinstance(result, dict) and "content" in result:
                        line = str(result.get("content", ""))
            yield self._mask_response(line)
