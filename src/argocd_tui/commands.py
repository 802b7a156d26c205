# ABOUTME: Commands emitted by the session transition function
# ABOUTME: Immutable requests for background work run by the dispatcher

"""
Commands are plain immutable values. The session never performs I/O; it
returns commands and the dispatcher turns each one into a background task.

Every backend command posts exactly one message back when it finishes,
success or failure. Stream control commands (StartLogStream,
CancelLogStream) and Quit post nothing themselves; the lines of a started
stream arrive through AwaitLogLine.

Owner ids (``seq``, ``modal_id``, ``overlay_id``, ``stream_id``) are
copied into the resulting message so the session can drop completions
whose owner is gone.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from argocd_tui.models import ApplicationSpec, ResourceRef


@dataclass(frozen=True)
class LoadApps:
    seq: int


@dataclass(frozen=True)
class LoadDetail:
    name: str
    seq: int
    hard: bool = False


@dataclass(frozen=True)
class SyncBatch:
    """Sync every target in order, one call at a time."""

    modal_id: int
    targets: tuple[str, ...]
    dry_run: bool


@dataclass(frozen=True)
class LoadRevisions:
    modal_id: int
    name: str


@dataclass(frozen=True)
class Rollback:
    modal_id: int
    name: str
    revision_id: int


@dataclass(frozen=True)
class Terminate:
    modal_id: int
    name: str


@dataclass(frozen=True)
class Delete:
    modal_id: int
    name: str
    cascade: bool


@dataclass(frozen=True)
class LoadChoices:
    """Load one wizard pick-list: "projects", "repositories" or "clusters"."""

    modal_id: int
    kind: str


@dataclass(frozen=True)
class CreateApplication:
    modal_id: int
    spec: ApplicationSpec


@dataclass(frozen=True)
class UpdateApplication:
    modal_id: int
    spec: ApplicationSpec


@dataclass(frozen=True)
class LoadLiveManifest:
    overlay_id: int
    app: str
    ref: ResourceRef


@dataclass(frozen=True)
class LoadDesiredManifest:
    overlay_id: int
    app: str
    ref: ResourceRef


@dataclass(frozen=True)
class LoadEvents:
    overlay_id: int
    app: str


@dataclass(frozen=True)
class LoadDiff:
    overlay_id: int
    app: str


@dataclass(frozen=True)
class StartLogStream:
    stream_id: int
    app: str
    pod: str
    container: str = ""
    follow: bool = True


@dataclass(frozen=True)
class AwaitLogLine:
    """Deliver the next item from a stream's channel."""

    stream_id: int


@dataclass(frozen=True)
class CancelLogStream:
    stream_id: int


@dataclass(frozen=True)
class Quit:
    pass


Command = Union[
    LoadApps,
    LoadDetail,
    SyncBatch,
    LoadRevisions,
    Rollback,
    Terminate,
    Delete,
    LoadChoices,
    CreateApplication,
    UpdateApplication,
    LoadLiveManifest,
    LoadDesiredManifest,
    LoadEvents,
    LoadDiff,
    StartLogStream,
    AwaitLogLine,
    CancelLogStream,
    Quit,
]
