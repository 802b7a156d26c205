# ABOUTME: Session state and the single transition function driving the UI
# ABOUTME: update(state, message) -> (new state, commands); performs no I/O

"""
Interactive session engine.

ARCHITECTURE:
-------------
    keys, resizes ─┐
                   ├──► update(state, msg) ──► (state', commands)
    completions ───┘                                   │
         ▲                                             ▼
         └──────────────────────────────────── Dispatcher (tasks)

``State`` is immutable. ``update`` is a pure function: it never awaits,
never touches the network and never raises for bad input. Everything slow
is returned as a command and comes back later as a message.

KEY ROUTING:
------------
The first match wins:

1. ``ctrl+c`` quits from anywhere.
2. A fatal error page accepts only ``r`` (retry) and ``q``.
3. An open overlay (``esc``/``q`` close it).
4. An open modal.
5. Filter mode (typing edits the query live).
6. The main view.

STALENESS:
----------
List and detail loads carry sequence numbers, modal and overlay results
their owner's id, log items their stream id. A completion that does not
match the live owner is dropped. Mutations finishing after their modal was
cancelled still trigger a list reload, since the server state changed.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING

import structlog

from argocd_tui.commands import (
    AwaitLogLine,
    CancelLogStream,
    LoadApps,
    LoadDesiredManifest,
    LoadDetail,
    LoadDiff,
    LoadEvents,
    LoadLiveManifest,
    Quit,
    StartLogStream,
)
from argocd_tui.messages import (
    MODAL_MESSAGES,
    OVERLAY_MESSAGES,
    STREAM_MESSAGES,
    AppsLoaded,
    DetailLoaded,
    Key,
    MutationDone,
    Resize,
    SyncBatchDone,
)
from argocd_tui.modals import (
    CreateWizard,
    DeleteModal,
    EditWizard,
    RollbackModal,
    SyncModal,
    TerminateModal,
    Transition,
    edit_text,
    sync_preview,
)
from argocd_tui.models import SYNCED
from argocd_tui.overlays import (
    DiffOverlay,
    EventsOverlay,
    HistoryOverlay,
    LogsOverlay,
    OverlayTransition,
    ResourceDetailOverlay,
)
from argocd_tui.projection import Projection, viewport_rows
from argocd_tui.utils.safety import check_write_operation

if TYPE_CHECKING:
    from datetime import datetime

    from argocd_tui.commands import Command
    from argocd_tui.messages import Message
    from argocd_tui.modals import Modal
    from argocd_tui.models import Application, Resource
    from argocd_tui.overlays import Overlay

logger = structlog.get_logger(__name__)

Commands = tuple["Command", ...]

REMEDIATION_HINTS = (
    "check that ARGOCD_SERVER points at the Argo CD API server (https://host:port)",
    "set ARGOCD_AUTH_TOKEN, or ARGOCD_USERNAME and ARGOCD_PASSWORD",
    "for self-signed certificates set ARGOCD_INSECURE=true",
    "set LAZYARGO_MOCK=true to explore the demo fleet without a server",
    "press r to retry or q to quit",
)

_CLOSED_STATUS = {
    ResourceDetailOverlay: "closed resource view",
    EventsOverlay: "closed events",
    LogsOverlay: "closed logs",
    DiffOverlay: "closed diff",
    HistoryOverlay: "closed history",
}


class Focus(Enum):
    APPS = "applications"
    RESOURCES = "resources"


@dataclass(frozen=True)
class State:
    """Everything the renderer needs; replaced on every message."""

    projection: Projection = Projection()
    detail: Application | None = None
    detail_error: str = ""
    detail_seq: int = 0
    list_seq: int = 0
    loading: bool = False
    status: str = ""
    fatal_error: str = ""
    has_loaded: bool = False
    focus: Focus = Focus.APPS
    resource_cursor: int = 0
    modal: Modal | None = None
    overlay: Overlay | None = None
    filter_mode: bool = False
    show_help: bool = False
    last_refresh: datetime | None = None
    next_id: int = 1
    read_only: bool = False
    log_buffer_lines: int = 2000
    server_label: str = ""
    quitting: bool = False

    @property
    def resources(self) -> tuple[Resource, ...]:
        return self.detail.resources if self.detail else ()

    @property
    def selected_resource(self) -> Resource | None:
        if self.focus is not Focus.RESOURCES or not self.resources:
            return None
        return self.resources[min(self.resource_cursor, len(self.resources) - 1)]

    @property
    def selected_app(self) -> Application | None:
        """The selected application, preferring the loaded detail over the list row."""
        row = self.projection.selected_app
        if row is None:
            return None
        if self.detail is not None and self.detail.name == row.name:
            return self.detail
        return row

    @property
    def total_apps(self) -> int:
        return len(self.projection.apps)

    @property
    def drifted_count(self) -> int:
        return self.projection.drifted_count


def start(state: State) -> tuple[State, Commands]:
    """Issue the first list load."""
    return _reload_list(replace(state, status="loading apps…"))


def update(state: State, msg: Message) -> tuple[State, Commands]:
    """Apply one message. Unknown or stale messages leave the state unchanged."""
    if isinstance(msg, Key):
        return _on_key(state, msg.key)
    if isinstance(msg, Resize):
        return replace(state, projection=state.projection.set_visible_rows(viewport_rows(msg.height))), ()
    if isinstance(msg, AppsLoaded):
        return _on_apps_loaded(state, msg)
    if isinstance(msg, DetailLoaded):
        return _on_detail_loaded(state, msg)
    if isinstance(msg, MODAL_MESSAGES):
        return _on_modal_message(state, msg)
    if isinstance(msg, OVERLAY_MESSAGES):
        if state.overlay is None or state.overlay.id != msg.overlay_id:
            logger.debug("Dropping stale overlay result", message=type(msg).__name__)
            return state, ()
        return _apply_overlay(state, state.overlay.handle_message(msg))
    if isinstance(msg, STREAM_MESSAGES):
        overlay = state.overlay
        if not isinstance(overlay, LogsOverlay) or overlay.stream_id != msg.stream_id:
            return state, ()
        return _apply_overlay(state, overlay.handle_message(msg))
    return state, ()


# =============================================================================
# Helpers
# =============================================================================


def _alloc_id(state: State) -> tuple[State, int]:
    return replace(state, next_id=state.next_id + 1), state.next_id


def _reload_list(state: State) -> tuple[State, Commands]:
    seq = state.list_seq + 1
    return replace(state, list_seq=seq, loading=True), (LoadApps(seq),)


def _load_detail(state: State, hard: bool = False, keep: bool = False) -> tuple[State, Commands]:
    """
    Load the selected application's detail.

    With ``keep``, the current detail stays visible until the reload lands
    when it belongs to the same application.
    """
    name = state.projection.selected_name
    if not name:
        return _clear_selection(state)
    seq = state.detail_seq + 1
    if keep and state.detail is not None and state.detail.name == name:
        return replace(state, detail_seq=seq), (LoadDetail(name, seq, hard),)
    state = replace(
        state,
        detail=None,
        detail_error="",
        detail_seq=seq,
        focus=Focus.APPS,
        resource_cursor=0,
    )
    return state, (LoadDetail(name, seq, hard),)


def _close_overlay(state: State) -> tuple[State, Commands]:
    overlay = state.overlay
    if overlay is None:
        return state, ()
    commands: Commands = ()
    if isinstance(overlay, LogsOverlay):
        commands = (CancelLogStream(overlay.stream_id),)
    return replace(state, overlay=None), commands


def _clear_selection(state: State) -> tuple[State, Commands]:
    state, commands = _close_overlay(state)
    state = replace(
        state,
        detail=None,
        detail_error="",
        detail_seq=state.detail_seq + 1,
        focus=Focus.APPS,
        resource_cursor=0,
    )
    return state, commands


def _with_projection(state: State, projection: Projection) -> tuple[State, Commands]:
    """Install a new projection; reload the detail if the selection moved."""
    before = state.projection.selected_name
    state = replace(state, projection=projection)
    if not projection.view:
        return _clear_selection(state)
    if projection.selected_name != before:
        return _load_detail(state)
    return state, ()


def _quit(state: State) -> tuple[State, Commands]:
    state, commands = _close_overlay(state)
    return replace(state, quitting=True, modal=None), (*commands, Quit())


def _blocked(state: State, operation: str) -> State | None:
    """Status-only state when ``operation`` is refused, else None."""
    blocked = check_write_operation(state.read_only, operation)
    if blocked is None:
        return None
    return replace(state, status=blocked.format_message())


def _apply_modal(state: State, t: Transition) -> tuple[State, Commands]:
    state = replace(state, modal=t.modal)
    if t.status is not None:
        state = replace(state, status=t.status)
    commands = t.commands
    if t.refresh:
        state, reload = _reload_list(state)
        commands = (*commands, *reload)
    return state, commands


def _apply_overlay(state: State, t: OverlayTransition) -> tuple[State, Commands]:
    overlay = t.overlay
    commands = t.commands
    if t.restart and isinstance(overlay, LogsOverlay):
        state, stream_id = _alloc_id(state)
        overlay = replace(
            overlay,
            stream_id=stream_id,
            lines=(),
            follow=True,
            ended=False,
            error="",
            match=-1,
            scroll=0,
        )
        commands = (
            *commands,
            StartLogStream(stream_id, overlay.app, overlay.pod, overlay.container, follow=True),
            AwaitLogLine(stream_id),
        )
    state = replace(state, overlay=overlay)
    if t.status is not None:
        state = replace(state, status=t.status)
    return state, commands


def _open_overlay(state: State, overlay: Overlay, commands: Commands, status: str) -> tuple[State, Commands]:
    state, closing = _close_overlay(state)
    return replace(state, overlay=overlay, status=status), (*closing, *commands)


# =============================================================================
# Completions
# =============================================================================


def _on_apps_loaded(state: State, msg: AppsLoaded) -> tuple[State, Commands]:
    if msg.seq != state.list_seq:
        logger.debug("Dropping stale list load", seq=msg.seq, current=state.list_seq)
        return state, ()
    state = replace(state, loading=False)

    if msg.error:
        if not state.has_loaded:
            return replace(state, fatal_error=msg.error, status="failed to load apps"), ()
        return replace(state, status=f"failed to load apps: {msg.error}"), ()

    before = state.projection.selected_name
    projection = state.projection.ingest_snapshot(msg.apps)
    state = replace(
        state,
        projection=projection,
        has_loaded=True,
        fatal_error="",
        last_refresh=msg.loaded_at or state.last_refresh,
        status=f"loaded {len(msg.apps)} apps",
    )
    if not projection.view:
        return _clear_selection(state)
    return _load_detail(state, keep=projection.selected_name == before)


def _on_detail_loaded(state: State, msg: DetailLoaded) -> tuple[State, Commands]:
    if msg.seq != state.detail_seq or msg.name != state.projection.selected_name:
        logger.debug("Dropping stale detail load", name=msg.name, seq=msg.seq)
        return state, ()

    if msg.error or msg.app is None:
        return replace(state, detail_error=msg.error, status="failed to load details"), ()

    resources = msg.app.resources
    cursor = min(state.resource_cursor, max(0, len(resources) - 1))
    focus = state.focus if resources else Focus.APPS
    return (
        replace(
            state,
            detail=msg.app,
            detail_error="",
            resource_cursor=cursor,
            focus=focus,
            status="loaded details",
        ),
        (),
    )


def _changed_server(msg: Message) -> bool:
    if isinstance(msg, MutationDone):
        return not msg.error
    if isinstance(msg, SyncBatchDone):
        return not msg.dry_run
    return False


def _on_modal_message(state: State, msg: Message) -> tuple[State, Commands]:
    modal = state.modal
    if modal is None or modal.id != msg.modal_id:
        if _changed_server(msg):
            return _reload_list(state)
        return state, ()
    return _apply_modal(state, modal.handle_message(msg))


# =============================================================================
# Keys
# =============================================================================


def _on_key(state: State, key: str) -> tuple[State, Commands]:
    if key == "ctrl+c":
        return _quit(state)

    if state.fatal_error:
        if key == "r":
            return _reload_list(replace(state, status="retrying…"))
        if key == "q":
            return _quit(state)
        return state, ()

    if state.overlay is not None:
        return _overlay_key(state, key)
    if state.modal is not None:
        return _apply_modal(state, state.modal.handle_key(key))
    if state.filter_mode:
        return _filter_key(state, key)
    return _main_key(state, key)


def _overlay_key(state: State, key: str) -> tuple[State, Commands]:
    overlay = state.overlay
    searching = isinstance(overlay, LogsOverlay) and overlay.searching
    if key in ("esc", "q") and not searching:
        status = _CLOSED_STATUS.get(type(overlay), "closed")
        state, commands = _close_overlay(state)
        return replace(state, status=status), commands
    return _apply_overlay(state, overlay.handle_key(key))


def _filter_key(state: State, key: str) -> tuple[State, Commands]:
    if key == "enter":
        return replace(state, filter_mode=False), ()
    if key == "esc":
        state = replace(state, filter_mode=False, status="filter cleared")
        return _with_projection(state, state.projection.set_filter_query(""))
    query = edit_text(state.projection.query, key)
    if query is None:
        return state, ()
    return _with_projection(state, state.projection.set_filter_query(query))


def _main_key(state: State, key: str) -> tuple[State, Commands]:
    handler = _MAIN_KEYS.get(key)
    if handler is None:
        return state, ()
    return handler(state)


# --- navigation --------------------------------------------------------------


def _move(state: State, delta: int) -> tuple[State, Commands]:
    if state.focus is Focus.RESOURCES:
        last = max(0, len(state.resources) - 1)
        cursor = min(max(state.resource_cursor + delta, 0), last)
        return replace(state, resource_cursor=cursor), ()
    return _with_projection(state, state.projection.move_selection(delta))


def _page(state: State, direction: int) -> tuple[State, Commands]:
    return _move(state, direction * state.projection.visible_rows)


def _toggle_focus(state: State) -> tuple[State, Commands]:
    if state.focus is Focus.RESOURCES:
        return replace(state, focus=Focus.APPS, status="focus: applications (tab to switch)"), ()
    if not state.resources:
        return replace(state, status="no resources to focus"), ()
    return replace(state, focus=Focus.RESOURCES, status="focus: resources (tab to switch)"), ()


def _escape(state: State) -> tuple[State, Commands]:
    if state.show_help:
        return replace(state, show_help=False), ()
    if state.focus is Focus.RESOURCES:
        return replace(state, focus=Focus.APPS, status="focus: applications (tab to switch)"), ()
    if state.projection.query:
        state = replace(state, status="filter cleared")
        return _with_projection(state, state.projection.set_filter_query(""))
    return state, ()


def _enter(state: State) -> tuple[State, Commands]:
    if state.focus is Focus.RESOURCES:
        return _open_resource(state)
    if state.resources:
        return _toggle_focus(state)
    return state, ()


def _start_filter(state: State) -> tuple[State, Commands]:
    return replace(state, filter_mode=True, status="filter: type to narrow, enter to keep, esc to clear"), ()


def _toggle_help(state: State) -> tuple[State, Commands]:
    return replace(state, show_help=not state.show_help), ()


def _toggle_drift(state: State) -> tuple[State, Commands]:
    drift_only = not state.projection.drift_only
    status = "showing drift only" if drift_only else "showing all apps"
    return _with_projection(replace(state, status=status), state.projection.set_drift_only(drift_only))


def _cycle_sort(state: State) -> tuple[State, Commands]:
    projection = state.projection.cycle_sort()
    state = replace(state, status=f"sorted by {projection.sort_mode.value}")
    return _with_projection(state, projection)


def _refresh_list(state: State) -> tuple[State, Commands]:
    return _reload_list(replace(state, status="refreshing apps…"))


def _refresh_detail(state: State, hard: bool) -> tuple[State, Commands]:
    if not state.projection.selected_name:
        return replace(state, status="no app selected"), ()
    status = "hard refreshing…" if hard else "refreshing details…"
    return _load_detail(replace(state, status=status), hard=hard, keep=True)


# --- modals ------------------------------------------------------------------


def _open_modal(state: State, operation: str, opener) -> tuple[State, Commands]:
    blocked = _blocked(state, operation)
    if blocked is not None:
        return blocked, ()
    state, modal_id = _alloc_id(state)
    return _apply_modal(state, opener(modal_id))


def _sync_drifted(state: State) -> tuple[State, Commands]:
    targets = [a.name for a in state.projection.apps if a.sync != SYNCED]
    if not targets:
        return replace(state, status="no drifted apps to sync"), ()
    preview = sync_preview(targets, state.projection.apps, state.detail)
    return _open_modal(state, "sync_application", lambda i: SyncModal.open(i, targets, preview))


def _sync_selected(state: State) -> tuple[State, Commands]:
    app = state.selected_app
    if app is None:
        return replace(state, status="no app selected"), ()
    preview = sync_preview([app.name], state.projection.apps, state.detail)
    return _open_modal(state, "sync_application", lambda i: SyncModal.open(i, [app.name], preview))


def _rollback(state: State) -> tuple[State, Commands]:
    name = state.projection.selected_name
    if not name:
        return replace(state, status="no app selected"), ()
    return _open_modal(state, "rollback_application", lambda i: RollbackModal.open(i, name))


def _terminate(state: State) -> tuple[State, Commands]:
    app = state.selected_app
    if app is None:
        return replace(state, status="no app selected"), ()
    op = app.operation_state
    if op is None or not op.in_progress:
        return replace(state, status="no operation in progress"), ()
    return _open_modal(
        state,
        "terminate_operation",
        lambda i: Transition(
            TerminateModal(id=i, name=app.name, phase=op.phase, message=op.message),
            status="terminate operation (enter to arm)",
        ),
    )


def _delete(state: State) -> tuple[State, Commands]:
    name = state.projection.selected_name
    if not name:
        return replace(state, status="no app selected"), ()
    return _open_modal(
        state,
        "delete_application",
        lambda i: Transition(DeleteModal(id=i, name=name), status="type the app name to delete"),
    )


def _create(state: State) -> tuple[State, Commands]:
    return _open_modal(state, "create_application", CreateWizard.open)


def _edit(state: State) -> tuple[State, Commands]:
    app = state.selected_app
    if app is None:
        return replace(state, status="no app selected"), ()
    return _open_modal(state, "update_application", lambda i: EditWizard.open(i, app))


# --- overlays ----------------------------------------------------------------


def _open_resource(state: State) -> tuple[State, Commands]:
    resource = state.selected_resource
    if resource is None:
        return replace(state, status="no resource selected"), ()
    app = state.projection.selected_name
    state, overlay_id = _alloc_id(state)
    overlay = ResourceDetailOverlay(id=overlay_id, app=app, ref=resource.ref)
    commands = (
        LoadLiveManifest(overlay_id, app, resource.ref),
        LoadDesiredManifest(overlay_id, app, resource.ref),
    )
    return _open_overlay(state, overlay, commands, f"loading {resource.ref.label()}…")


def _open_logs(state: State) -> tuple[State, Commands]:
    resource = state.selected_resource
    if resource is None or not resource.is_pod:
        return replace(state, status="select a Pod to view logs"), ()
    app = state.projection.selected_name
    state, overlay_id = _alloc_id(state)
    state, stream_id = _alloc_id(state)
    overlay = LogsOverlay(
        id=overlay_id,
        stream_id=stream_id,
        app=app,
        pod=resource.name,
        max_lines=state.log_buffer_lines,
    )
    commands = (StartLogStream(stream_id, app, resource.name, follow=True), AwaitLogLine(stream_id))
    return _open_overlay(state, overlay, commands, f"streaming logs for {resource.name}")


def _open_events(state: State) -> tuple[State, Commands]:
    app = state.projection.selected_name
    if not app:
        return replace(state, status="no app selected"), ()
    state, overlay_id = _alloc_id(state)
    return _open_overlay(
        state, EventsOverlay(id=overlay_id, app=app), (LoadEvents(overlay_id, app),), "loading events…"
    )


def _open_diff(state: State) -> tuple[State, Commands]:
    app = state.projection.selected_name
    if not app:
        return replace(state, status="no app selected"), ()
    resource = state.selected_resource
    state, overlay_id = _alloc_id(state)
    overlay = DiffOverlay(id=overlay_id, app=app, focus=resource.ref if resource else None)
    return _open_overlay(state, overlay, (LoadDiff(overlay_id, app),), "loading diff…")


def _open_history(state: State) -> tuple[State, Commands]:
    app = state.selected_app
    if app is None:
        return replace(state, status="no app selected"), ()
    state, overlay_id = _alloc_id(state)
    return _open_overlay(state, HistoryOverlay(id=overlay_id, app=app), (), f"history for {app.name}")


_MAIN_KEYS = {
    "q": _quit,
    "?": _toggle_help,
    "/": _start_filter,
    "esc": _escape,
    "tab": _toggle_focus,
    "enter": _enter,
    "up": lambda s: _move(s, -1),
    "k": lambda s: _move(s, -1),
    "down": lambda s: _move(s, 1),
    "j": lambda s: _move(s, 1),
    "pgup": lambda s: _page(s, -1),
    "pgdown": lambda s: _page(s, 1),
    "r": _refresh_list,
    "g": lambda s: _refresh_detail(s, hard=False),
    "R": lambda s: _refresh_detail(s, hard=True),
    "D": _toggle_drift,
    "S": _cycle_sort,
    "s": _sync_drifted,
    "y": _sync_selected,
    "b": _rollback,
    "x": _terminate,
    "delete": _delete,
    "ctrl+d": _delete,
    "c": _create,
    "e": _edit,
    "v": _open_resource,
    "l": _open_logs,
    "E": _open_events,
    "d": _open_diff,
    "h": _open_history,
}
