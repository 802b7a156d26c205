# ABOUTME: Runs session commands as asyncio tasks and posts their results
# ABOUTME: Owns cancellable log streams with bounded delivery channels

"""
Async command dispatcher.

Every backend command becomes its own task. The task calls the backend,
converts the outcome (success or any failure) into exactly one message and
puts it on the session queue. Nothing raised by the backend reaches the
event loop.

Log streams are the exception to "one command, one message":

    StartLogStream ──► pump task ──► channel (bounded) ──► AwaitLogLine reader ──► queue

The pump owns the ``async with client.pod_logs(...)`` block, so cancelling
it closes the HTTP stream. Readers deliver one item each; the session asks
for the next item only after consuming the last, which keeps the pump
blocked on a full channel when the UI falls behind.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import httpx
import structlog

from argocd_tui.commands import (
    AwaitLogLine,
    CancelLogStream,
    CreateApplication,
    Delete,
    LoadApps,
    LoadChoices,
    LoadDesiredManifest,
    LoadDetail,
    LoadDiff,
    LoadEvents,
    LoadLiveManifest,
    LoadRevisions,
    Quit,
    Rollback,
    StartLogStream,
    SyncBatch,
    Terminate,
    UpdateApplication,
)
from argocd_tui.messages import (
    AppsLoaded,
    ChoicesLoaded,
    DesiredManifestLoaded,
    DetailLoaded,
    DiffLoaded,
    EventsLoaded,
    LiveManifestLoaded,
    LogEnded,
    LogError,
    LogLine,
    MutationDone,
    RevisionsLoaded,
    SyncBatchDone,
    SyncResult,
)
from argocd_tui.overlays import find_desired_manifest
from argocd_tui.utils.client import ArgocdError
from argocd_tui.utils.logging import AuditLogger, set_correlation_id

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from argocd_tui.commands import Command
    from argocd_tui.messages import Message
    from argocd_tui.utils.backend import BackendClient

logger = structlog.get_logger(__name__)


def describe_error(exc: BaseException) -> str:
    """Single-line text for a failure shown in the UI."""
    text = str(exc).strip()
    return text or type(exc).__name__


@dataclass
class _Stream:
    task: asyncio.Task[None]
    channel: asyncio.Queue[Message]
    readers: set[asyncio.Task[None]] = field(default_factory=set)


class Dispatcher:
    """
    Turns commands into background tasks.

    Args:
        client: Backend implementation (HTTP or mock)
        queue: Session queue receiving result messages
        audit: Audit logger for mutating commands
        channel_size: Capacity of each log stream's delivery channel
    """

    def __init__(
        self,
        client: BackendClient,
        queue: asyncio.Queue[Message],
        audit: AuditLogger | None = None,
        channel_size: int = 100,
    ) -> None:
        self._client = client
        self._queue = queue
        self._audit = audit or AuditLogger()
        self._channel_size = max(1, channel_size)
        self._tasks: set[asyncio.Task[None]] = set()
        self._streams: dict[int, _Stream] = {}
        self._handlers: dict[type, Callable[[Any], Awaitable[Message]]] = {
            LoadApps: self._load_apps,
            LoadDetail: self._load_detail,
            SyncBatch: self._sync_batch,
            LoadRevisions: self._load_revisions,
            Rollback: self._rollback,
            Terminate: self._terminate,
            Delete: self._delete,
            LoadChoices: self._load_choices,
            CreateApplication: self._create,
            UpdateApplication: self._update,
            LoadLiveManifest: self._load_live,
            LoadDesiredManifest: self._load_desired,
            LoadEvents: self._load_events,
            LoadDiff: self._load_diff,
        }

    @property
    def active_streams(self) -> int:
        return len(self._streams)

    def submit(self, command: Command) -> None:
        """Start background work for ``command``. Never blocks."""
        if isinstance(command, Quit):
            return
        if isinstance(command, StartLogStream):
            self._start_stream(command)
            return
        if isinstance(command, AwaitLogLine):
            self._await_line(command.stream_id)
            return
        if isinstance(command, CancelLogStream):
            self.cancel_stream(command.stream_id)
            return

        handler = self._handlers.get(type(command))
        if handler is None:
            logger.warning("No handler for command", command=type(command).__name__)
            return
        task = asyncio.create_task(self._run(command, handler))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def join(self) -> None:
        """Wait for every pending backend command (log streams excluded)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel all tasks and streams."""
        tasks = list(self._tasks)
        for stream_id, stream in list(self._streams.items()):
            tasks.extend([stream.task, *stream.readers])
            self.cancel_stream(stream_id)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.debug("Dispatcher stopped", cancelled=len(tasks))

    # -------------------------------------------------------------------------
    # Command tasks
    # -------------------------------------------------------------------------

    async def _run(self, command: Command, handler: Callable[[Any], Awaitable[Message]]) -> None:
        set_correlation_id(uuid.uuid4().hex[:8])
        name = type(command).__name__
        logger.debug("Command started", command=name)
        try:
            msg = await handler(command)
        except (ArgocdError, httpx.HTTPError) as e:
            logger.info("Command failed", command=name, error=str(e))
            msg = self._failure(command, describe_error(e))
        except Exception as e:
            logger.exception("Command crashed", command=name)
            msg = self._failure(command, describe_error(e))
        self._queue.put_nowait(msg)

    def _failure(self, command: Any, error: str) -> Message:
        if isinstance(command, LoadApps):
            return AppsLoaded(command.seq, error=error)
        if isinstance(command, LoadDetail):
            return DetailLoaded(command.seq, command.name, error=error)
        if isinstance(command, SyncBatch):
            return SyncBatchDone(
                command.modal_id,
                command.dry_run,
                tuple(SyncResult(t, error) for t in command.targets),
            )
        if isinstance(command, LoadRevisions):
            return RevisionsLoaded(command.modal_id, error=error)
        if isinstance(command, Rollback):
            return MutationDone(command.modal_id, "rollback_application", command.name, error)
        if isinstance(command, Terminate):
            return MutationDone(command.modal_id, "terminate_operation", command.name, error)
        if isinstance(command, Delete):
            return MutationDone(command.modal_id, "delete_application", command.name, error)
        if isinstance(command, CreateApplication):
            return MutationDone(command.modal_id, "create_application", command.spec.name, error)
        if isinstance(command, UpdateApplication):
            return MutationDone(command.modal_id, "update_application", command.spec.name, error)
        if isinstance(command, LoadChoices):
            return ChoicesLoaded(command.modal_id, command.kind, error=error)
        if isinstance(command, LoadLiveManifest):
            return LiveManifestLoaded(command.overlay_id, error=error)
        if isinstance(command, LoadDesiredManifest):
            return DesiredManifestLoaded(command.overlay_id, error=error)
        if isinstance(command, LoadEvents):
            return EventsLoaded(command.overlay_id, error=error)
        return DiffLoaded(command.overlay_id, error=error)

    async def _load_apps(self, cmd: LoadApps) -> Message:
        apps = await self._client.list_applications()
        return AppsLoaded(cmd.seq, tuple(apps), loaded_at=datetime.now(UTC))

    async def _load_detail(self, cmd: LoadDetail) -> Message:
        app = await self._client.refresh_application(cmd.name, hard=cmd.hard)
        return DetailLoaded(cmd.seq, cmd.name, app)

    async def _sync_batch(self, cmd: SyncBatch) -> Message:
        # Sequential so results (and server-side effects) follow target order.
        results = []
        for name in cmd.targets:
            try:
                await self._client.sync_application(name, dry_run=cmd.dry_run)
            except (ArgocdError, httpx.HTTPError) as e:
                self._audit.log_error("sync_application", name, str(e))
                results.append(SyncResult(name, describe_error(e)))
                continue
            self._audit.log_write(
                "sync_application",
                name,
                "dry_run" if cmd.dry_run else "success",
                {"dry_run": cmd.dry_run},
            )
            results.append(SyncResult(name))
        return SyncBatchDone(cmd.modal_id, cmd.dry_run, tuple(results))

    async def _load_revisions(self, cmd: LoadRevisions) -> Message:
        revisions = await self._client.list_revisions(cmd.name)
        return RevisionsLoaded(cmd.modal_id, tuple(revisions))

    async def _mutate(
        self,
        modal_id: int,
        operation: str,
        name: str,
        call: Awaitable[None],
        details: dict[str, Any] | None = None,
    ) -> Message:
        try:
            await call
        except (ArgocdError, httpx.HTTPError) as e:
            self._audit.log_error(operation, name, str(e))
            raise
        self._audit.log_write(operation, name, "success", details)
        return MutationDone(modal_id, operation, name)

    async def _rollback(self, cmd: Rollback) -> Message:
        return await self._mutate(
            cmd.modal_id,
            "rollback_application",
            cmd.name,
            self._client.rollback_application(cmd.name, cmd.revision_id),
            {"revision_id": cmd.revision_id},
        )

    async def _terminate(self, cmd: Terminate) -> Message:
        return await self._mutate(
            cmd.modal_id,
            "terminate_operation",
            cmd.name,
            self._client.terminate_operation(cmd.name),
        )

    async def _delete(self, cmd: Delete) -> Message:
        return await self._mutate(
            cmd.modal_id,
            "delete_application",
            cmd.name,
            self._client.delete_application(cmd.name, cascade=cmd.cascade),
            {"cascade": cmd.cascade},
        )

    async def _create(self, cmd: CreateApplication) -> Message:
        return await self._mutate(
            cmd.modal_id,
            "create_application",
            cmd.spec.name,
            self._client.create_application(cmd.spec),
            {"project": cmd.spec.project, "repo_url": cmd.spec.repo_url, "path": cmd.spec.path},
        )

    async def _update(self, cmd: UpdateApplication) -> Message:
        return await self._mutate(
            cmd.modal_id,
            "update_application",
            cmd.spec.name,
            self._client.update_application(cmd.spec),
            {"revision": cmd.spec.revision, "sync_policy": cmd.spec.sync_policy},
        )

    async def _load_choices(self, cmd: LoadChoices) -> Message:
        loaders = {
            "projects": self._client.list_projects,
            "repositories": self._client.list_repositories,
            "clusters": self._client.list_clusters,
        }
        loader = loaders.get(cmd.kind)
        if loader is None:
            return ChoicesLoaded(cmd.modal_id, cmd.kind, error=f"unknown choice list: {cmd.kind}")
        return ChoicesLoaded(cmd.modal_id, cmd.kind, tuple(await loader()))

    async def _load_live(self, cmd: LoadLiveManifest) -> Message:
        manifest = await self._client.get_resource(cmd.app, cmd.ref)
        return LiveManifestLoaded(cmd.overlay_id, manifest)

    async def _load_desired(self, cmd: LoadDesiredManifest) -> Message:
        manifests = await self._client.get_manifests(cmd.app)
        return DesiredManifestLoaded(cmd.overlay_id, find_desired_manifest(manifests, cmd.ref))

    async def _load_events(self, cmd: LoadEvents) -> Message:
        events = await self._client.list_events(cmd.app)
        return EventsLoaded(cmd.overlay_id, tuple(events))

    async def _load_diff(self, cmd: LoadDiff) -> Message:
        diffs = await self._client.server_side_diff(cmd.app)
        return DiffLoaded(cmd.overlay_id, tuple(diffs))

    # -------------------------------------------------------------------------
    # Log streams
    # -------------------------------------------------------------------------

    def _start_stream(self, cmd: StartLogStream) -> None:
        if cmd.stream_id in self._streams:
            logger.warning("Log stream already running", stream_id=cmd.stream_id)
            return
        channel: asyncio.Queue[Message] = asyncio.Queue(maxsize=self._channel_size)
        task = asyncio.create_task(self._pump(cmd, channel))
        self._streams[cmd.stream_id] = _Stream(task=task, channel=channel)
        logger.debug("Log stream started", stream_id=cmd.stream_id, pod=cmd.pod)

    async def _pump(self, cmd: StartLogStream, channel: asyncio.Queue[Message]) -> None:
        set_correlation_id(uuid.uuid4().hex[:8])
        try:
            async with self._client.pod_logs(cmd.app, cmd.pod, cmd.container, cmd.follow) as lines:
                async for line in lines:
                    await channel.put(LogLine(cmd.stream_id, line))
        except (ArgocdError, httpx.HTTPError) as e:
            logger.info("Log stream failed", stream_id=cmd.stream_id, error=str(e))
            await channel.put(LogError(cmd.stream_id, describe_error(e)))
        except Exception as e:
            logger.exception("Log stream crashed", stream_id=cmd.stream_id)
            await channel.put(LogError(cmd.stream_id, describe_error(e)))
        else:
            await channel.put(LogEnded(cmd.stream_id))

    def _await_line(self, stream_id: int) -> None:
        stream = self._streams.get(stream_id)
        if stream is None:
            return
        reader = asyncio.create_task(self._deliver(stream_id, stream))
        stream.readers.add(reader)
        reader.add_done_callback(stream.readers.discard)

    async def _deliver(self, stream_id: int, stream: _Stream) -> None:
        item = await stream.channel.get()
        self._queue.put_nowait(item)
        if isinstance(item, (LogError, LogEnded)):
            self._streams.pop(stream_id, None)

    def cancel_stream(self, stream_id: int) -> None:
        """Stop a stream and its pending readers. Unknown ids are ignored."""
        stream = self._streams.pop(stream_id, None)
        if stream is None:
            return
        stream.task.cancel()
        for reader in list(stream.readers):
            reader.cancel()
        logger.debug("Log stream cancelled", stream_id=stream_id)
