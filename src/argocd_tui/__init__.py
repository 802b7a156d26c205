# ABOUTME: Argo CD terminal session engine package initialization
# ABOUTME: Exposes version information

"""
argocd-tui - Keyboard-driven browsing and safe mutation of Argo CD Applications.

=============================================================================
WHAT IS THIS PACKAGE?
=============================================================================

The engine behind a terminal UI for Argo CD. It keeps the whole interactive
session in one immutable State and changes it only through one function:

    update(state, message) -> (new state, commands)

Keystrokes and background results are both messages. Everything slow
(HTTP calls, log streaming) is a command, run as an asyncio task by the
Dispatcher, whose result comes back as another message. Drawing the State
on a terminal is left to a renderer callback.

=============================================================================
WHAT IS ARGO CD?
=============================================================================

Argo CD is a GitOps continuous delivery tool for Kubernetes. It:

1. WATCHES Git repositories containing Kubernetes manifests
2. COMPARES the desired state (Git) with the live state (cluster)
3. SYNCHRONIZES the cluster to match Git when they drift apart

An Application is Argo CD's unit of deployment: one source (repo, path,
revision) rendered into one destination (cluster, namespace).

=============================================================================
PACKAGE STRUCTURE OVERVIEW
=============================================================================

argocd_tui/
├── __init__.py          <- YOU ARE HERE: Package entry point
├── config.py            <- Settings (env vars, YAML file, defaults)
├── models.py            <- Immutable Application/Resource/Revision/... values
├── projection.py        <- Filter, sort, selection and scrolling of the list
├── commands.py          <- Background work requested by the session
├── messages.py          <- Keys, resizes and background results
├── modals.py            <- Sync/delete/rollback/terminate/create/edit flows
├── overlays.py          <- Resource, events, logs, diff and history views
├── session.py           <- State and update()
├── dispatcher.py        <- Runs commands as asyncio tasks, owns log streams
├── runtime.py           <- The event loop tying it all together
└── utils/
    ├── backend.py       <- BackendClient protocol
    ├── client.py        <- HTTP client for the Argo CD REST API
    ├── mock.py          <- In-memory demo backend
    ├── logging.py       <- Structured logging with audit trails
    └── safety.py        <- Read-only guard and confirmation helpers
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
