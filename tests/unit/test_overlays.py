# ABOUTME: Unit tests for full-screen overlays
# ABOUTME: Tests manifest matching, JSON view, diff filtering and log buffer behaviour

import dataclasses
import json

import pytest

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
from argocd_tui.models import DiffResult, Event, ResourceRef
from argocd_tui.overlays import (
    DiffOverlay,
    EventsOverlay,
    HistoryOverlay,
    LogsOverlay,
    ResourceDetailOverlay,
    find_desired_manifest,
    show_whitespace,
    yaml_to_json,
)

DEPLOYMENT = """apiVersion: apps/v1
kind: Deployment
metadata:
  name: web
  namespace: prod
spec:
  replicas: 2
"""

SERVICE = """apiVersion: v1
kind: Service
metadata:
  name: web
"""

WEB_DEPLOYMENT = ResourceRef(group="apps", kind="Deployment", name="web", namespace="prod", version="v1")


def logs(**kw) -> LogsOverlay:
    kw.setdefault("id", 1)
    kw.setdefault("stream_id", 2)
    return LogsOverlay(app="web", pod="web-1", **kw)


def feed(overlay: LogsOverlay, *lines: str) -> LogsOverlay:
    for line in lines:
        overlay = overlay.handle_message(LogLine(overlay.stream_id, line)).overlay
    return overlay


@pytest.mark.unit
class TestFindDesiredManifest:
    """Tests for best-effort desired manifest matching."""

    def test_matches_kind_name_namespace(self):
        assert find_desired_manifest([SERVICE, DEPLOYMENT], WEB_DEPLOYMENT) == DEPLOYMENT

    def test_namespace_mismatch(self):
        ref = ResourceRef(kind="Deployment", name="web", namespace="staging")
        assert find_desired_manifest([DEPLOYMENT], ref) == ""

    def test_manifest_without_namespace_matches(self):
        """Test manifests relying on the destination namespace still match."""
        ref = ResourceRef(kind="Service", name="web", namespace="prod")
        assert find_desired_manifest([SERVICE], ref) == SERVICE

    def test_json_manifest(self):
        manifest = json.dumps({"kind": "Service", "metadata": {"name": "web"}})
        assert find_desired_manifest([manifest], ResourceRef(kind="Service", name="web")) == manifest

    def test_invalid_yaml_skipped(self):
        assert find_desired_manifest(["a: [b", SERVICE], ResourceRef(kind="Service", name="web")) == SERVICE

    def test_no_match(self):
        assert find_desired_manifest([], WEB_DEPLOYMENT) == ""


@pytest.mark.unit
class TestYamlToJson:
    def test_converts(self):
        result = json.loads(yaml_to_json(DEPLOYMENT))
        assert result["spec"]["replicas"] == 2

    def test_unparseable_passthrough(self):
        assert yaml_to_json("a: [b") == "a: [b"


@pytest.mark.unit
class TestResourceDetailOverlay:
    """Tests for the live/desired manifest view."""

    def test_loading_then_loaded(self):
        overlay = ResourceDetailOverlay(id=1, app="web", ref=WEB_DEPLOYMENT)
        assert overlay.content == "loading…"

        t = overlay.handle_message(LiveManifestLoaded(1, DEPLOYMENT))
        assert t.overlay.content == DEPLOYMENT
        assert t.status == "loaded resource"

    def test_tab_switches_to_desired(self):
        overlay = ResourceDetailOverlay(id=1, app="web", ref=WEB_DEPLOYMENT)
        overlay = overlay.handle_message(DesiredManifestLoaded(1, "")).overlay
        overlay = overlay.handle_key("tab").overlay
        assert overlay.show_desired
        assert overlay.content == "(no matching desired manifest)"

    def test_json_toggle(self):
        overlay = ResourceDetailOverlay(id=1, app="web", ref=WEB_DEPLOYMENT, live=DEPLOYMENT, loading_live=False)
        overlay = overlay.handle_key("t").overlay
        assert json.loads(overlay.content)["kind"] == "Deployment"

    def test_error(self):
        overlay = ResourceDetailOverlay(id=1, app="web", ref=WEB_DEPLOYMENT)
        t = overlay.handle_message(LiveManifestLoaded(1, error="not found"))
        assert t.overlay.content == "error: not found"
        assert t.status == "failed to load resource"

    def test_scroll(self):
        overlay = ResourceDetailOverlay(id=1, app="web", ref=WEB_DEPLOYMENT)
        assert overlay.handle_key("up").overlay.scroll == 0
        assert overlay.handle_key("down").overlay.scroll == 1


@pytest.mark.unit
class TestEventsOverlay:
    def test_loaded(self):
        t = EventsOverlay(id=1, app="web").handle_message(EventsLoaded(1, (Event(reason="x"),)))
        assert t.overlay.events[0].reason == "x"
        assert t.status == "loaded 1 events"

    def test_error(self):
        t = EventsOverlay(id=1, app="web").handle_message(EventsLoaded(1, error="denied"))
        assert t.overlay.error == "denied"


@pytest.mark.unit
class TestDiffOverlay:
    """Tests for diff filtering and whitespace markers."""

    DIFFS = (
        DiffResult(ref=WEB_DEPLOYMENT, diff="-\treplicas: 1\n+  replicas: 2", modified=True),
        DiffResult(ref=ResourceRef(kind="Service", name="web", namespace="prod"), diff="", modified=False),
    )

    def test_unfiltered(self):
        overlay = DiffOverlay(id=1, app="web").handle_message(DiffLoaded(1, self.DIFFS)).overlay
        assert len(overlay.visible_diffs) == 2

    def test_filtered_to_focused_resource(self):
        overlay = DiffOverlay(id=1, app="web", focus=WEB_DEPLOYMENT)
        overlay = overlay.handle_message(DiffLoaded(1, self.DIFFS)).overlay
        assert [d.ref.kind for d in overlay.visible_diffs] == ["Deployment"]
        assert "(modified)" in overlay.content

    def test_whitespace_toggle(self):
        overlay = DiffOverlay(id=1, app="web", diffs=self.DIFFS[:1], loading=False)
        overlay = overlay.handle_key("W").overlay
        assert "→replicas:·1" in overlay.content

    def test_show_whitespace(self):
        assert show_whitespace("a b\tc") == "a·b→c"

    def test_empty(self):
        assert DiffOverlay(id=1, app="web", loading=False).content == "(no differences)"


@pytest.mark.unit
class TestHistoryOverlay:
    def test_static(self, detailed_app):
        overlay = HistoryOverlay(id=1, app=detailed_app)
        assert overlay.handle_message(EventsLoaded(1)).overlay is overlay
        assert overlay.handle_key("down").overlay.scroll == 1


@pytest.mark.unit
class TestLogsOverlay:
    """Tests for log buffering, follow, search and wrap."""

    def test_line_requests_next(self):
        """Test each consumed line asks for the next one."""
        t = logs().handle_message(LogLine(2, "hello"))
        assert t.overlay.lines == ("hello",)
        assert t.commands == (AwaitLogLine(2),)

    def test_buffer_capped(self):
        overlay = feed(logs(max_lines=3), "1", "2", "3", "4", "5")
        assert overlay.lines == ("3", "4", "5")
        assert overlay.scroll == 2

    def test_follow_off_cancels(self):
        t = logs().handle_key("f")
        assert not t.overlay.follow
        assert t.commands == (CancelLogStream(2),)
        assert not t.restart

    def test_follow_on_restarts(self):
        t = logs(follow=False).handle_key("f")
        assert t.restart
        assert t.commands == ()

    def test_lines_ignored_after_follow_off(self):
        overlay = logs(follow=False)
        t = overlay.handle_message(LogLine(2, "late"))
        assert t.overlay.lines == ()
        assert t.commands == ()

    def test_wrap(self):
        assert logs().handle_key("w").overlay.wrap

    def test_search_and_next(self):
        """Test / types a query, enter jumps to the first match and n cycles."""
        overlay = feed(logs(), "GET /a 200", "GET /b 500", "POST /c 500", "GET /d 200")
        overlay = overlay.handle_key("/").overlay
        assert overlay.searching
        for ch in "500":
            overlay = overlay.handle_key(ch).overlay
        overlay = overlay.handle_key("enter").overlay
        assert not overlay.searching
        assert overlay.match == 1

        overlay = overlay.handle_key("n").overlay
        assert overlay.match == 2
        overlay = overlay.handle_key("n").overlay
        assert overlay.match == 1

    def test_search_is_case_insensitive(self):
        overlay = feed(logs(), "ERROR boom")
        overlay = dataclasses.replace(overlay, search="error")
        assert overlay.handle_key("n").overlay.match == 0

    def test_no_match(self):
        overlay = feed(logs(), "a", "b")
        overlay = overlay.handle_key("/").overlay.handle_key("z").overlay
        t = overlay.handle_key("enter")
        assert t.overlay.match == -1
        assert "no match" in t.status

    def test_search_esc_leaves_search_mode(self):
        overlay = logs().handle_key("/").overlay
        assert not overlay.handle_key("esc").overlay.searching

    def test_end_and_error(self):
        assert logs().handle_message(LogEnded(2)).overlay.ended
        t = logs().handle_message(LogError(2, "pod not found"))
        assert t.overlay.error == "pod not found"
        assert t.status == "log stream failed"
