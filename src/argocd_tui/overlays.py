# ABOUTME: Full-screen overlays: resource detail, events, logs, diff and history
# ABOUTME: Immutable view state plus key and completion handling per overlay

"""
Overlays sit on top of the main view; at most one is open at a time.

Like modals, each overlay is a frozen dataclass with ``handle_key`` and
``handle_message`` returning an OverlayTransition. ``esc`` and ``q`` close
any overlay; the session handles those keys itself so that closing a logs
overlay always cancels its stream.

The logs overlay is the only one backed by a long-lived task. It never
restarts its own stream: toggling follow back on sets ``restart`` and the
session allocates a fresh stream id.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Union

import structlog
import yaml

from argocd_tui.commands import AwaitLogLine, CancelLogStream
from argocd_tui.messages import (
    DesiredManifestLoaded,
    DiffLoaded,
    EventsLoaded,
    LiveManifestLoaded,
    LogEnded,
    LogError,
    LogLine,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from argocd_tui.commands import Command
    from argocd_tui.messages import Message
    from argocd_tui.models import Application, DiffResult, Event, ResourceRef

logger = structlog.get_logger(__name__)

SCROLL_KEYS = {"up": -1, "k": -1, "down": 1, "j": 1, "pgup": -10, "pgdown": 10}


@dataclass(frozen=True)
class OverlayTransition:
    overlay: Overlay | None
    commands: tuple[Command, ...] = ()
    status: str | None = None
    restart: bool = False


def _scrolled(overlay: Any, key: str) -> Any | None:
    delta = SCROLL_KEYS.get(key)
    if delta is None:
        return None
    return replace(overlay, scroll=max(0, overlay.scroll + delta))


# =============================================================================
# RESOURCE DETAIL
# =============================================================================


def _documents(text: str) -> list[Any]:
    try:
        return [d for d in yaml.safe_load_all(text) if d is not None]
    except yaml.YAMLError:
        return []


def find_desired_manifest(manifests: Iterable[str], ref: ResourceRef) -> str:
    """
    Best-effort match of ``ref`` among rendered desired manifests.

    Matches kind and name, and namespace only when ``ref`` has one (cluster
    scoped objects and manifests relying on the destination namespace omit
    it). Returns "" when nothing matches.
    """
    for text in manifests:
        for doc in _documents(text):
            if not isinstance(doc, dict):
                continue
            meta = doc.get("metadata") or {}
            if doc.get("kind") != ref.kind or meta.get("name") != ref.name:
                continue
            if ref.namespace and meta.get("namespace") not in (None, "", ref.namespace):
                continue
            return text
    return ""


def yaml_to_json(text: str) -> str:
    """Render a YAML (or JSON) manifest as indented JSON; unparseable text is returned as-is."""
    docs = _documents(text)
    if not docs:
        return text
    try:
        body = docs[0] if len(docs) == 1 else docs
        return json.dumps(body, indent=2, sort_keys=False, default=str)
    except (TypeError, ValueError):
        return text


@dataclass(frozen=True)
class ResourceDetailOverlay:
    id: int
    app: str
    ref: ResourceRef
    live: str = ""
    desired: str = ""
    live_error: str = ""
    desired_error: str = ""
    loading_live: bool = True
    loading_desired: bool = True
    show_desired: bool = False
    as_json: bool = False
    scroll: int = 0

    @property
    def content(self) -> str:
        """Text for the current tab and format."""
        if self.show_desired:
            if self.loading_desired:
                return "loading…"
            if self.desired_error:
                return f"error: {self.desired_error}"
            text = self.desired or "(no matching desired manifest)"
        else:
            if self.loading_live:
                return "loading…"
            if self.live_error:
                return f"error: {self.live_error}"
            text = self.live
        return yaml_to_json(text) if self.as_json else text

    def handle_key(self, key: str) -> OverlayTransition:
        if key == "tab":
            return OverlayTransition(replace(self, show_desired=not self.show_desired, scroll=0))
        if key == "t":
            return OverlayTransition(replace(self, as_json=not self.as_json, scroll=0))
        return OverlayTransition(_scrolled(self, key) or self)

    def handle_message(self, msg: Message) -> OverlayTransition:
        if isinstance(msg, LiveManifestLoaded):
            return OverlayTransition(
                replace(self, loading_live=False, live=msg.manifest, live_error=msg.error),
                status="failed to load resource" if msg.error else "loaded resource",
            )
        if isinstance(msg, DesiredManifestLoaded):
            return OverlayTransition(
                replace(self, loading_desired=False, desired=msg.manifest, desired_error=msg.error)
            )
        return OverlayTransition(self)


# =============================================================================
# EVENTS
# =============================================================================


@dataclass(frozen=True)
class EventsOverlay:
    id: int
    app: str
    events: tuple[Event, ...] = ()
    loading: bool = True
    error: str = ""
    scroll: int = 0

    def handle_key(self, key: str) -> OverlayTransition:
        return OverlayTransition(_scrolled(self, key) or self)

    def handle_message(self, msg: Message) -> OverlayTransition:
        if not isinstance(msg, EventsLoaded):
            return OverlayTransition(self)
        if msg.error:
            return OverlayTransition(
                replace(self, loading=False, error=msg.error), status="failed to load events"
            )
        return OverlayTransition(
            replace(self, loading=False, events=msg.events),
            status=f"loaded {len(msg.events)} events",
        )


# =============================================================================
# DIFF
# =============================================================================


def show_whitespace(text: str) -> str:
    """Make tabs and spaces visible: tab -> "→", space -> "·"."""
    return text.replace("\t", "→").replace(" ", "·")


def _matches(diff: DiffResult, ref: ResourceRef) -> bool:
    return (
        diff.ref.kind == ref.kind
        and diff.ref.name == ref.name
        and diff.ref.namespace == ref.namespace
        and diff.ref.group == ref.group
    )


@dataclass(frozen=True)
class DiffOverlay:
    id: int
    app: str
    focus: ResourceRef | None = None
    diffs: tuple[DiffResult, ...] = ()
    loading: bool = True
    error: str = ""
    whitespace: bool = False
    scroll: int = 0

    @property
    def visible_diffs(self) -> tuple[DiffResult, ...]:
        """Diffs for the focused resource, or all of them."""
        if self.focus is None:
            return self.diffs
        return tuple(d for d in self.diffs if _matches(d, self.focus))

    @property
    def content(self) -> str:
        parts = []
        for d in self.visible_diffs:
            header = f"# {d.ref.label()}" + (" (modified)" if d.modified else "")
            body = show_whitespace(d.diff) if self.whitespace else d.diff
            parts.append(f"{header}\n{body}")
        return "\n".join(parts) if parts else "(no differences)"

    def handle_key(self, key: str) -> OverlayTransition:
        if key == "W":
            return OverlayTransition(replace(self, whitespace=not self.whitespace))
        return OverlayTransition(_scrolled(self, key) or self)

    def handle_message(self, msg: Message) -> OverlayTransition:
        if not isinstance(msg, DiffLoaded):
            return OverlayTransition(self)
        if msg.error:
            return OverlayTransition(
                replace(self, loading=False, error=msg.error), status="failed to load diff"
            )
        return OverlayTransition(replace(self, loading=False, diffs=msg.diffs), status="loaded diff")


# =============================================================================
# HISTORY
# =============================================================================


@dataclass(frozen=True)
class HistoryOverlay:
    """Sync history and current operation of an application snapshot; nothing to load."""

    id: int
    app: Application
    scroll: int = 0

    def handle_key(self, key: str) -> OverlayTransition:
        if key == "enter":
            return OverlayTransition(self, status="press b to roll back to a revision")
        return OverlayTransition(_scrolled(self, key) or self)

    def handle_message(self, msg: Message) -> OverlayTransition:
        return OverlayTransition(self)


# =============================================================================
# LOGS
# =============================================================================


@dataclass(frozen=True)
class LogsOverlay:
    """
    Live pod logs.

    Keys: ``f`` follow on/off, ``w`` wrap, ``/`` search (typed until enter
    or esc), ``n`` jump to the next line containing the search text,
    ``up``/``down`` scroll.

    Each consumed line re-requests the next one (AwaitLogLine), so at most
    one delivery per stream is pending and a slow UI applies backpressure
    to the stream task.
    """

    id: int
    stream_id: int
    app: str
    pod: str
    container: str = ""
    lines: tuple[str, ...] = ()
    max_lines: int = 2000
    follow: bool = True
    wrap: bool = False
    search: str = ""
    searching: bool = False
    match: int = -1
    scroll: int = 0
    ended: bool = False
    error: str = ""

    def _next_match(self) -> int:
        needle = self.search.lower()
        if not needle or not self.lines:
            return -1
        count = len(self.lines)
        for step in range(1, count + 1):
            i = (self.match + step) % count
            if needle in self.lines[i].lower():
                return i
        return -1

    def handle_key(self, key: str) -> OverlayTransition:
        if self.searching:
            if key == "enter":
                found = replace(self, searching=False, match=-1)
                i = found._next_match()
                if i < 0:
                    return OverlayTransition(found, status=f"no match for {self.search!r}")
                return OverlayTransition(replace(found, match=i, scroll=i))
            if key == "esc":
                return OverlayTransition(replace(self, searching=False))
            if key == "backspace":
                return OverlayTransition(replace(self, search=self.search[:-1]))
            if len(key) == 1 and key.isprintable():
                return OverlayTransition(replace(self, search=self.search + key))
            return OverlayTransition(self)

        if key == "f":
            if self.follow:
                return OverlayTransition(
                    replace(self, follow=False),
                    (CancelLogStream(self.stream_id),),
                    status="follow off",
                )
            return OverlayTransition(self, status="follow on", restart=True)
        if key == "w":
            return OverlayTransition(replace(self, wrap=not self.wrap))
        if key == "/":
            return OverlayTransition(replace(self, searching=True, search=""))
        if key == "n":
            i = self._next_match()
            if i < 0:
                return OverlayTransition(self, status="no matches")
            return OverlayTransition(replace(self, match=i, scroll=i))
        return OverlayTransition(_scrolled(self, key) or self)

    def handle_message(self, msg: Message) -> OverlayTransition:
        if not self.follow:
            # Stream already cancelled; late deliveries are dropped.
            return OverlayTransition(self)
        if isinstance(msg, LogLine):
            lines = (*self.lines, msg.line)
            dropped = max(0, len(lines) - self.max_lines)
            if dropped:
                lines = lines[dropped:]
            match = self.match - dropped if self.match >= dropped else -1
            scroll = max(0, len(lines) - 1)
            return OverlayTransition(
                replace(self, lines=lines, match=match, scroll=scroll),
                (AwaitLogLine(self.stream_id),),
            )
        if isinstance(msg, LogError):
            logger.warning("Log stream failed", pod=self.pod, error=msg.error)
            return OverlayTransition(
                replace(self, ended=True, error=msg.error), status="log stream failed"
            )
        if isinstance(msg, LogEnded):
            return OverlayTransition(replace(self, ended=True), status="log stream ended")
        return OverlayTransition(self)


Overlay = Union[ResourceDetailOverlay, EventsOverlay, LogsOverlay, DiffOverlay, HistoryOverlay]
