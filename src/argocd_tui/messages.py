# ABOUTME: Messages consumed by the session transition function
# ABOUTME: Keystrokes, terminal resizes and background completions

"""
Messages are everything that can happen to the session: a key press, a
terminal resize, or the completion of a command.

Completions carry either a result or an ``error`` string (never both); an
empty ``error`` means success. Errors are stringified by the dispatcher so
that messages stay plain immutable data.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from datetime import datetime

    from argocd_tui.models import Application, DiffResult, Event, Revision


@dataclass(frozen=True)
class Key:
    """
    One key press, named the way terminals report them: "a", "A", "enter",
    "esc", "tab", "up", "down", "left", "backspace", "delete", "ctrl+c".
    """

    key: str


@dataclass(frozen=True)
class Resize:
    width: int
    height: int


@dataclass(frozen=True)
class AppsLoaded:
    seq: int
    apps: tuple[Application, ...] = ()
    loaded_at: datetime | None = None
    error: str = ""


@dataclass(frozen=True)
class DetailLoaded:
    seq: int
    name: str
    app: Application | None = None
    error: str = ""


@dataclass(frozen=True)
class SyncResult:
    name: str
    error: str = ""

    @property
    def ok(self) -> bool:
        return not self.error


@dataclass(frozen=True)
class SyncBatchDone:
    modal_id: int
    dry_run: bool
    results: tuple[SyncResult, ...]


@dataclass(frozen=True)
class RevisionsLoaded:
    modal_id: int
    revisions: tuple[Revision, ...] = ()
    error: str = ""


@dataclass(frozen=True)
class MutationDone:
    """Completion of a rollback, terminate, delete, create or update."""

    modal_id: int
    operation: str
    name: str
    error: str = ""


@dataclass(frozen=True)
class ChoicesLoaded:
    modal_id: int
    kind: str
    items: tuple[str, ...] = ()
    error: str = ""


@dataclass(frozen=True)
class LiveManifestLoaded:
    overlay_id: int
    manifest: str = ""
    error: str = ""


@dataclass(frozen=True)
class DesiredManifestLoaded:
    overlay_id: int
    manifest: str = ""
    error: str = ""


@dataclass(frozen=True)
class EventsLoaded:
    overlay_id: int
    events: tuple[Event, ...] = ()
    error: str = ""


@dataclass(frozen=True)
class DiffLoaded:
    overlay_id: int
    diffs: tuple[DiffResult, ...] = ()
    error: str = ""


@dataclass(frozen=True)
class LogLine:
    stream_id: int
    line: str


@dataclass(frozen=True)
class LogError:
    stream_id: int
    error: str


@dataclass(frozen=True)
class LogEnded:
    stream_id: int


Message = Union[
    Key,
    Resize,
    AppsLoaded,
    DetailLoaded,
    SyncBatchDone,
    RevisionsLoaded,
    MutationDone,
    ChoicesLoaded,
    LiveManifestLoaded,
    DesiredManifestLoaded,
    EventsLoaded,
    DiffLoaded,
    LogLine,
    LogError,
    LogEnded,
]

# Completions that belong to a modal (carry ``modal_id``).
MODAL_MESSAGES = (SyncBatchDone, RevisionsLoaded, MutationDone, ChoicesLoaded)

# Completions that belong to an overlay (carry ``overlay_id``).
OVERLAY_MESSAGES = (LiveManifestLoaded, DesiredManifestLoaded, EventsLoaded, DiffLoaded)

# Items delivered from a log stream (carry ``stream_id``).
STREAM_MESSAGES = (LogLine, LogError, LogEnded)
