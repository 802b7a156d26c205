# ABOUTME: Filtered, sorted and scrolled view over the application snapshot
# ABOUTME: Pure functions of (snapshot, query, drift flag, sort mode, selection)

"""
Application list projection.

A Projection pairs the canonical application snapshot with everything the
list pane derives from it: the filtered and sorted view, the selected row
and the scroll offset. Every operation returns a new Projection; none of
them touch the network or the rest of the session.

Two rules hold after every operation:

- ``selected`` is a valid index into ``view``, or 0 when the view is empty.
- ``offset`` keeps the selected row inside a window of ``visible_rows``
  rows and never scrolls past the end of the view.

When an operation changes the view, the previously selected application is
kept selected if it is still in the view. Otherwise the selection is
clamped to the last row.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING

from argocd_tui.models import SYNCED

if TYPE_CHECKING:
    from collections.abc import Iterable

    from argocd_tui.models import Application

# Rank for statuses that are not in the table, and for a missing status.
OTHER_RANK = 50
EMPTY_RANK = 98

HEALTH_RANKS = {
    "degraded": 0,
    "missing": 1,
    "suspended": 2,
    "progressing": 3,
    "healthy": 4,
}

SYNC_RANKS = {
    "outofsync": 0,
    "out-of-sync": 0,
    "out_of_sync": 0,
    "unknown": 1,
    "synced": 2,
}


class SortMode(Enum):
    NAME = "name"
    HEALTH = "health"
    SYNC = "sync"

    def next(self) -> SortMode:
        modes = list(SortMode)
        return modes[(modes.index(self) + 1) % len(modes)]


def _rank(table: dict[str, int], status: str) -> int:
    s = status.strip().lower()
    if not s:
        return EMPTY_RANK
    return table.get(s, OTHER_RANK)


def health_rank(status: str) -> int:
    return _rank(HEALTH_RANKS, status)


def sync_rank(status: str) -> int:
    return _rank(SYNC_RANKS, status)


def filter_and_sort(
    apps: Iterable[Application],
    query: str = "",
    drift_only: bool = False,
    sort_mode: SortMode = SortMode.NAME,
) -> tuple[Application, ...]:
    """
    Filter ``apps`` by name substring and drift, then sort stably.

    The query is trimmed and matched case-insensitively. Drift-only keeps
    every application whose sync status is not exactly "Synced". Ties on
    the primary rank are broken by lowercase name.
    """
    q = query.strip().lower()
    matched = [
        a
        for a in apps
        if (not q or q in a.name.lower()) and not (drift_only and a.sync == SYNCED)
    ]

    if sort_mode is SortMode.HEALTH:
        matched.sort(key=lambda a: (health_rank(a.health), a.name.lower()))
    elif sort_mode is SortMode.SYNC:
        matched.sort(key=lambda a: (sync_rank(a.sync), a.name.lower()))
    else:
        matched.sort(key=lambda a: a.name.lower())
    return tuple(matched)


def viewport_rows(height: int) -> int:
    """List rows that fit a terminal of ``height`` lines (header, footer and title excluded)."""
    return max(1, max(0, height - 2) - 2)


@dataclass(frozen=True)
class Projection:
    apps: tuple[Application, ...] = ()
    view: tuple[Application, ...] = ()
    selected: int = 0
    offset: int = 0
    visible_rows: int = 20
    drift_only: bool = False
    query: str = ""
    sort_mode: SortMode = SortMode.NAME

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def selected_app(self) -> Application | None:
        if not self.view:
            return None
        return self.view[self.selected]

    @property
    def selected_name(self) -> str:
        app = self.selected_app
        return app.name if app else ""

    @property
    def visible(self) -> tuple[Application, ...]:
        """Rows currently inside the viewport."""
        return self.view[self.offset : self.offset + self.visible_rows]

    @property
    def drifted_count(self) -> int:
        return sum(1 for a in self.apps if a.sync != SYNCED)

    def find(self, name: str) -> Application | None:
        """Look up an application in the full snapshot, ignoring the filter."""
        for app in self.apps:
            if app.name == name:
                return app
        return None

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def ingest_snapshot(self, apps: Iterable[Application]) -> Projection:
        """Replace the canonical snapshot wholesale."""
        return replace(self, apps=tuple(apps))._reproject(self.selected_name)

    def set_filter_query(self, query: str) -> Projection:
        return replace(self, query=query)._reproject(self.selected_name)

    def set_drift_only(self, drift_only: bool) -> Projection:
        return replace(self, drift_only=drift_only)._reproject(self.selected_name)

    def cycle_sort(self) -> Projection:
        return replace(self, sort_mode=self.sort_mode.next())._reproject(self.selected_name)

    def set_visible_rows(self, rows: int) -> Projection:
        return replace(self, visible_rows=max(1, rows))._scrolled()

    def move_selection(self, delta: int) -> Projection:
        if not self.view:
            return replace(self, selected=0, offset=0)
        selected = min(max(self.selected + delta, 0), len(self.view) - 1)
        return replace(self, selected=selected)._scrolled()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _reproject(self, keep_name: str) -> Projection:
        view = filter_and_sort(self.apps, self.query, self.drift_only, self.sort_mode)
        if not view:
            return replace(self, view=view, selected=0, offset=0)

        selected = self.selected
        for i, app in enumerate(view):
            if keep_name and app.name == keep_name:
                selected = i
                break
        else:
            selected = min(selected, len(view) - 1)
        return replace(self, view=view, selected=selected)._scrolled()

    def _scrolled(self) -> Projection:
        if not self.view:
            return replace(self, offset=0)
        offset = self.offset
        if self.selected < offset:
            offset = self.selected
        if self.selected >= offset + self.visible_rows:
            offset = self.selected - self.visible_rows + 1
        max_offset = max(0, len(self.view) - self.visible_rows)
        offset = min(max(offset, 0), max_offset)
        return replace(self, offset=offset)
