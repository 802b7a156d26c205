# ABOUTME: Modal dialogs and wizards gating mutating Argo CD operations
# ABOUTME: Each modal is an immutable state machine over keys and completions

"""
Modal state machines.

Only one modal is open at a time. Each one is a frozen dataclass carrying
just its own fields, with two entry points:

    modal.handle_key(key)    -> Transition
    modal.handle_message(m)  -> Transition

A Transition names the modal that replaces the current one (None closes
it), the commands to run, an optional status line and whether the session
should reload the application list afterwards.

Destructive operations are never one keystroke away:

- sync runs a dry-run first and only accepts ``y`` once it has finished
- rollback and terminate need ``enter`` to arm, then ``y`` to confirm
- delete needs the application name typed exactly

``esc`` cancels every modal from every step without issuing a command.
``n`` cancels too wherever it cannot be part of typed text.

Any failed completion is shown in the modal's ``error`` and leaves the
modal open so the user can retry or cancel.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING, Union

from argocd_tui.commands import (
    CreateApplication,
    Delete,
    LoadChoices,
    LoadRevisions,
    Rollback,
    SyncBatch,
    Terminate,
    UpdateApplication,
)
from argocd_tui.messages import (
    ChoicesLoaded,
    MutationDone,
    RevisionsLoaded,
    SyncBatchDone,
)
from argocd_tui.models import SYNCED, ApplicationSpec
from argocd_tui.utils.safety import impact_description, names_match

if TYPE_CHECKING:
    from collections.abc import Iterable

    from argocd_tui.commands import Command
    from argocd_tui.messages import Message, SyncResult
    from argocd_tui.models import Application, Resource, Revision

SYNC_POLICIES = ("manual", "auto")


@dataclass(frozen=True)
class Transition:
    modal: Modal | None
    commands: tuple[Command, ...] = ()
    status: str | None = None
    refresh: bool = False


def edit_text(value: str, key: str) -> str | None:
    """Apply a key to a text field. Returns None if the key is not text input."""
    if key == "backspace":
        return value[:-1]
    if key == "space":
        return value + " "
    if len(key) == 1 and key.isprintable():
        return value + key
    return None


def _failed_names(results: Iterable[SyncResult]) -> list[str]:
    return [r.name for r in results if not r.ok]


def sync_preview(
    targets: Iterable[str],
    apps: Iterable[Application],
    detail: Application | None = None,
) -> tuple[tuple[str, tuple[Resource, ...]], ...]:
    """
    Resources each target would change: status set and not "Synced".

    The loaded detail is preferred for its application since list rows
    usually carry no resources. Targets with nothing to show are omitted.
    """
    by_name = {a.name: a for a in apps}
    if detail is not None:
        by_name[detail.name] = detail

    preview = []
    for name in targets:
        app = by_name.get(name)
        if app is None:
            continue
        drifted = tuple(r for r in app.resources if r.status.strip() and r.status != SYNCED)
        if drifted:
            preview.append((name, drifted))
    return tuple(preview)


# =============================================================================
# SYNC
# =============================================================================


@dataclass(frozen=True)
class SyncModal:
    id: int
    targets: tuple[str, ...]
    preview: tuple[tuple[str, tuple[Resource, ...]], ...] = ()
    dry_run_complete: bool = False
    in_flight: bool = False
    committed: bool = False
    results: tuple[SyncResult, ...] = ()
    error: str = ""

    @property
    def impact(self) -> str:
        return impact_description("sync_application")

    @classmethod
    def open(
        cls,
        modal_id: int,
        targets: Iterable[str],
        preview: tuple[tuple[str, tuple[Resource, ...]], ...] = (),
    ) -> Transition:
        modal = cls(id=modal_id, targets=tuple(targets), preview=preview, in_flight=True)
        return Transition(
            modal,
            (SyncBatch(modal_id, modal.targets, dry_run=True),),
            status="running dry-run…",
        )

    def handle_key(self, key: str) -> Transition:
        if key in ("esc", "n"):
            return Transition(None, status="sync cancelled")
        if key != "y":
            return Transition(self)

        if not self.dry_run_complete:
            return Transition(self, status="wait for the dry-run to finish")
        if self.in_flight:
            return Transition(self, status="sync already in progress")
        if self.committed:
            return Transition(self, status="sync finished; press esc to close")

        return Transition(
            replace(self, in_flight=True, results=(), error=""),
            (SyncBatch(self.id, self.targets, dry_run=False),),
            status=f"syncing {len(self.targets)} app(s)…",
        )

    def handle_message(self, msg: Message) -> Transition:
        if not isinstance(msg, SyncBatchDone):
            return Transition(self)

        failed = _failed_names(msg.results)
        if msg.dry_run:
            error = f"dry-run failed for {', '.join(failed)}" if failed else ""
            return Transition(
                replace(
                    self,
                    in_flight=False,
                    dry_run_complete=True,
                    results=msg.results,
                    error=error,
                ),
                status="dry-run complete (y=sync, n=cancel)",
            )

        if not failed:
            return Transition(None, status=f"synced {len(msg.results)} app(s)", refresh=True)

        # Some targets may have changed, so the list is reloaded either way.
        return Transition(
            replace(
                self,
                in_flight=False,
                committed=True,
                results=msg.results,
                error=f"sync failed for {', '.join(failed)}",
            ),
            status="sync finished with errors",
            refresh=True,
        )


# =============================================================================
# DELETE
# =============================================================================


@dataclass(frozen=True)
class DeleteModal:
    id: int
    name: str
    typed: str = ""
    cascade: bool = False
    in_flight: bool = False
    error: str = ""

    @property
    def impact(self) -> str:
        if self.cascade:
            return impact_description("delete_application")
        return impact_description("delete_application_orphan")

    def handle_key(self, key: str) -> Transition:
        if key == "esc":
            return Transition(None, status="delete cancelled")
        if key == "tab":
            return Transition(replace(self, cascade=not self.cascade))
        if key == "enter":
            if self.in_flight:
                return Transition(self, status="delete in progress")
            if not names_match(self.name, self.typed):
                return Transition(self, status="type the exact app name to confirm")
            return Transition(
                replace(self, in_flight=True, error=""),
                (Delete(self.id, self.name, self.cascade),),
                status="deleting…",
            )

        typed = edit_text(self.typed, key)
        if typed is None:
            return Transition(self)
        return Transition(replace(self, typed=typed))

    def handle_message(self, msg: Message) -> Transition:
        if not isinstance(msg, MutationDone):
            return Transition(self)
        if msg.error:
            return Transition(replace(self, in_flight=False, error=msg.error), status="delete failed")
        return Transition(None, status=f"application {self.name} deleted", refresh=True)


# =============================================================================
# ROLLBACK
# =============================================================================


@dataclass(frozen=True)
class RollbackModal:
    id: int
    name: str
    revisions: tuple[Revision, ...] = ()
    loading: bool = True
    cursor: int = 0
    armed: bool = False
    in_flight: bool = False
    error: str = ""

    @property
    def impact(self) -> str:
        return impact_description("rollback_application")

    @property
    def selected_revision(self) -> Revision | None:
        if not self.revisions:
            return None
        return self.revisions[self.cursor]

    @classmethod
    def open(cls, modal_id: int, name: str) -> Transition:
        return Transition(
            cls(id=modal_id, name=name),
            (LoadRevisions(modal_id, name),),
            status="loading revisions…",
        )

    def handle_key(self, key: str) -> Transition:
        if key in ("esc", "n"):
            return Transition(None, status="rollback cancelled")
        if key in ("up", "k"):
            if self.cursor > 0:
                return Transition(replace(self, cursor=self.cursor - 1, armed=False))
            return Transition(self)
        if key in ("down", "j"):
            if self.cursor < len(self.revisions) - 1:
                return Transition(replace(self, cursor=self.cursor + 1, armed=False))
            return Transition(self)
        if key == "enter":
            if not self.revisions or self.loading or self.in_flight:
                return Transition(self)
            return Transition(replace(self, armed=True), status="confirm rollback with y")
        if key == "y":
            rev = self.selected_revision
            if self.in_flight:
                return Transition(self, status="rollback in progress")
            if not self.armed or rev is None:
                return Transition(self, status="select a revision with enter first")
            return Transition(
                replace(self, in_flight=True, error=""),
                (Rollback(self.id, self.name, rev.id),),
                status=f"rolling back to {rev.id}…",
            )
        return Transition(self)

    def handle_message(self, msg: Message) -> Transition:
        if isinstance(msg, RevisionsLoaded):
            if msg.error:
                return Transition(
                    replace(self, loading=False, revisions=(), error=msg.error),
                    status="failed to load revisions",
                )
            return Transition(
                replace(self, loading=False, revisions=msg.revisions, cursor=0, armed=False, error=""),
                status=f"loaded {len(msg.revisions)} revisions",
            )
        if isinstance(msg, MutationDone):
            if msg.error:
                return Transition(
                    replace(self, in_flight=False, armed=False, error=msg.error),
                    status="rollback failed",
                )
            return Transition(None, status="rollback started", refresh=True)
        return Transition(self)


# =============================================================================
# TERMINATE
# =============================================================================


@dataclass(frozen=True)
class TerminateModal:
    id: int
    name: str
    phase: str = ""
    message: str = ""
    armed: bool = False
    in_flight: bool = False
    error: str = ""

    @property
    def impact(self) -> str:
        return impact_description("terminate_operation")

    def handle_key(self, key: str) -> Transition:
        if key in ("esc", "n"):
            return Transition(None, status="terminate cancelled")
        if key == "enter":
            if self.in_flight:
                return Transition(self)
            return Transition(replace(self, armed=True), status="confirm terminate with y")
        if key == "y":
            if self.in_flight:
                return Transition(self, status="terminate in progress")
            if not self.armed:
                return Transition(self, status="press enter to arm first")
            return Transition(
                replace(self, in_flight=True, error=""),
                (Terminate(self.id, self.name),),
                status="terminating operation…",
            )
        return Transition(self)

    def handle_message(self, msg: Message) -> Transition:
        if not isinstance(msg, MutationDone):
            return Transition(self)
        if msg.error:
            return Transition(
                replace(self, in_flight=False, armed=False, error=msg.error),
                status="terminate failed",
            )
        return Transition(None, status="operation terminated", refresh=True)


# =============================================================================
# CREATE WIZARD
# =============================================================================


class CreateStep(Enum):
    NAME = "name"
    PROJECT = "project"
    REPOSITORY = "repository"
    PATH = "path"
    REVISION = "revision"
    CLUSTER = "cluster"
    NAMESPACE = "namespace"
    SYNC_POLICY = "sync policy"
    CONFIRM = "confirm"


_CREATE_ORDER = list(CreateStep)

# step -> field holding its value
_CREATE_FIELDS = {
    CreateStep.NAME: "name",
    CreateStep.PROJECT: "project",
    CreateStep.REPOSITORY: "repo_url",
    CreateStep.PATH: "path",
    CreateStep.REVISION: "revision",
    CreateStep.CLUSTER: "cluster",
    CreateStep.NAMESPACE: "namespace",
    CreateStep.SYNC_POLICY: "sync_policy",
}

# ChoicesLoaded.kind -> (step, field holding the choices)
_CHOICE_KINDS = {
    "projects": (CreateStep.PROJECT, "projects"),
    "repositories": (CreateStep.REPOSITORY, "repositories"),
    "clusters": (CreateStep.CLUSTER, "clusters"),
}


@dataclass(frozen=True)
class CreateWizard:
    """
    Create-application wizard.

    List steps (project, repository, cluster, sync policy) pick from loaded
    choices with up/down and enter. When a list failed to load or came
    back empty, the step accepts typed text instead.
    """

    id: int
    step: CreateStep = CreateStep.NAME
    name: str = ""
    project: str = ""
    repo_url: str = ""
    path: str = ""
    revision: str = "main"
    cluster: str = ""
    namespace: str = ""
    sync_policy: str = "manual"
    projects: tuple[str, ...] = ()
    repositories: tuple[str, ...] = ()
    clusters: tuple[str, ...] = ()
    cursor: int = 0
    submitting: bool = False
    error: str = ""

    @classmethod
    def open(cls, modal_id: int) -> Transition:
        return Transition(
            cls(id=modal_id),
            tuple(LoadChoices(modal_id, kind) for kind in _CHOICE_KINDS),
            status="create app",
        )

    def choices(self, step: CreateStep | None = None) -> tuple[str, ...]:
        step = step or self.step
        if step is CreateStep.SYNC_POLICY:
            return SYNC_POLICIES
        for kind_step, attr in _CHOICE_KINDS.values():
            if kind_step is step:
                return getattr(self, attr)
        return ()

    def spec(self) -> ApplicationSpec:
        return ApplicationSpec(
            name=self.name.strip(),
            project=self.project.strip(),
            repo_url=self.repo_url.strip(),
            path=self.path.strip(),
            revision=self.revision.strip() or "main",
            cluster=self.cluster.strip(),
            namespace=self.namespace.strip(),
            sync_policy=self.sync_policy,
        )

    def _goto(self, step: CreateStep) -> CreateWizard:
        choices = self.choices(step)
        value = getattr(self, _CREATE_FIELDS[step]) if step in _CREATE_FIELDS else ""
        cursor = choices.index(value) if value in choices else 0
        return replace(self, step=step, cursor=cursor, error="")

    def handle_key(self, key: str) -> Transition:
        if key == "esc":
            return Transition(None, status="create cancelled")

        index = _CREATE_ORDER.index(self.step)
        if key == "left":
            if index == 0:
                return Transition(self)
            return Transition(self._goto(_CREATE_ORDER[index - 1]))

        if self.step is CreateStep.CONFIRM:
            if key == "n":
                return Transition(None, status="create cancelled")
            if key == "y":
                if self.submitting:
                    return Transition(self, status="create in progress")
                return Transition(
                    replace(self, submitting=True, error=""),
                    (CreateApplication(self.id, self.spec()),),
                    status="creating…",
                )
            return Transition(self)

        attr = _CREATE_FIELDS[self.step]
        choices = self.choices()
        if choices:
            if key in ("up", "k"):
                return Transition(replace(self, cursor=max(0, self.cursor - 1)))
            if key in ("down", "j"):
                return Transition(replace(self, cursor=min(len(choices) - 1, self.cursor + 1)))
            if key == "enter":
                picked = replace(self, **{attr: choices[self.cursor]})
                return Transition(picked._goto(_CREATE_ORDER[index + 1]))
            return Transition(self)

        value = getattr(self, attr)
        if key == "enter":
            if not value.strip():
                return Transition(self, status=f"{self.step.value} is required")
            return Transition(self._goto(_CREATE_ORDER[index + 1]))
        edited = edit_text(value, key)
        if edited is None:
            return Transition(self)
        return Transition(replace(self, **{attr: edited}))

    def handle_message(self, msg: Message) -> Transition:
        if isinstance(msg, ChoicesLoaded):
            if msg.kind not in _CHOICE_KINDS:
                return Transition(self)
            step, attr = _CHOICE_KINDS[msg.kind]
            if msg.error:
                return Transition(replace(self, error=f"failed to load {msg.kind}: {msg.error}"))
            updated = replace(self, **{attr: msg.items})
            if updated.step is step:
                updated = updated._goto(step)
            return Transition(updated)
        if isinstance(msg, MutationDone):
            if msg.error:
                return Transition(replace(self, submitting=False, error=msg.error), status="create failed")
            return Transition(None, status=f"application {msg.name} created", refresh=True)
        return Transition(self)


# =============================================================================
# EDIT WIZARD
# =============================================================================


class EditStep(Enum):
    REPOSITORY = "repository"
    PATH = "path"
    REVISION = "revision"
    CLUSTER = "cluster"
    NAMESPACE = "namespace"
    SYNC_POLICY = "sync policy"
    CONFIRM = "confirm"


_EDIT_ORDER = list(EditStep)

_EDIT_FIELDS = {
    EditStep.REPOSITORY: "repo_url",
    EditStep.PATH: "path",
    EditStep.REVISION: "revision",
    EditStep.CLUSTER: "cluster",
    EditStep.NAMESPACE: "namespace",
}


@dataclass(frozen=True)
class EditWizard:
    id: int
    name: str
    project: str = ""
    step: EditStep = EditStep.REPOSITORY
    repo_url: str = ""
    path: str = ""
    revision: str = "main"
    cluster: str = ""
    namespace: str = ""
    sync_policy: str = "manual"
    submitting: bool = False
    error: str = ""

    @classmethod
    def open(cls, modal_id: int, app: Application) -> Transition:
        modal = cls(
            id=modal_id,
            name=app.name,
            project=app.project,
            repo_url=app.repo_url,
            path=app.path,
            revision=app.revision or "main",
            cluster=app.cluster,
            namespace=app.namespace,
            sync_policy=app.sync_policy.lower() if app.sync_policy else "manual",
        )
        return Transition(modal, status="edit app")

    def spec(self) -> ApplicationSpec:
        return ApplicationSpec(
            name=self.name,
            project=self.project,
            repo_url=self.repo_url.strip(),
            path=self.path.strip(),
            revision=self.revision.strip() or "main",
            cluster=self.cluster.strip(),
            namespace=self.namespace.strip(),
            sync_policy=self.sync_policy,
        )

    def handle_key(self, key: str) -> Transition:
        if key == "esc":
            return Transition(None, status="edit cancelled")

        index = _EDIT_ORDER.index(self.step)
        if key == "left":
            if index == 0:
                return Transition(self)
            return Transition(replace(self, step=_EDIT_ORDER[index - 1], error=""))

        if self.step is EditStep.CONFIRM:
            if key == "n":
                return Transition(None, status="edit cancelled")
            if key == "y":
                if self.submitting:
                    return Transition(self, status="save in progress")
                return Transition(
                    replace(self, submitting=True, error=""),
                    (UpdateApplication(self.id, self.spec()),),
                    status="saving…",
                )
            return Transition(self)

        if self.step is EditStep.SYNC_POLICY:
            if key == "a":
                return Transition(replace(self, sync_policy="auto"))
            if key == "m":
                return Transition(replace(self, sync_policy="manual"))
            if key in ("up", "down", "k", "j"):
                other = "auto" if self.sync_policy == "manual" else "manual"
                return Transition(replace(self, sync_policy=other))
            if key == "enter":
                return Transition(replace(self, step=EditStep.CONFIRM))
            return Transition(self)

        attr = _EDIT_FIELDS[self.step]
        value = getattr(self, attr)
        if key == "enter":
            if not value.strip():
                return Transition(self, status=f"{self.step.value} is required")
            return Transition(replace(self, step=_EDIT_ORDER[index + 1], error=""))
        edited = edit_text(value, key)
        if edited is None:
            return Transition(self)
        return Transition(replace(self, **{attr: edited}))

    def handle_message(self, msg: Message) -> Transition:
        if not isinstance(msg, MutationDone):
            return Transition(self)
        if msg.error:
            return Transition(replace(self, submitting=False, error=msg.error), status="update failed")
        return Transition(None, status=f"application {self.name} updated", refresh=True)


Modal = Union[DeleteModal, CreateWizard, EditWizard, SyncModal, RollbackModal, TerminateModal]
