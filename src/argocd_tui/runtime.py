# ABOUTME: Event loop wiring the session state, dispatcher and backend together
# ABOUTME: One queue, one message at a time; rendering is a pluggable callback

"""Session runtime: the single-threaded loop around ``update``."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

from argocd_tui.commands import Quit
from argocd_tui.dispatcher import Dispatcher
from argocd_tui.messages import Key, Resize
from argocd_tui.session import State, start, update
from argocd_tui.utils.client import ArgocdClient
from argocd_tui.utils.logging import AuditLogger, configure_logging
from argocd_tui.utils.mock import MockClient

if TYPE_CHECKING:
    from collections.abc import AsyncIterable, Callable

    from argocd_tui.config import Settings
    from argocd_tui.messages import Message
    from argocd_tui.utils.backend import BackendClient

logger = structlog.get_logger(__name__)


def build_client(settings: Settings) -> ArgocdClient | MockClient:
    """HTTP client for the configured server, or the demo backend in mock mode."""
    if settings.use_mock:
        return MockClient()
    return ArgocdClient(settings.instance(), mask_secrets=settings.ui.mask_secrets)


def initial_state(settings: Settings) -> State:
    return State(
        read_only=settings.ui.read_only,
        log_buffer_lines=settings.ui.log_buffer_lines,
        server_label=settings.server_label,
    )


class Session:
    """
    Owns the queue, the current State and the dispatcher.

    Keys and resizes are pushed with submit_key() and resize(); background
    results arrive on the same queue. run() processes messages one at a time
    until a Quit command is produced.
    """

    def __init__(
        self,
        client: BackendClient,
        state: State | None = None,
        render: Callable[[State], None] | None = None,
        audit: AuditLogger | None = None,
        channel_size: int = 100,
    ) -> None:
        self.queue: asyncio.Queue[Message] = asyncio.Queue()
        self.state = state or State()
        self.dispatcher = Dispatcher(client, self.queue, audit=audit, channel_size=channel_size)
        self._render = render
        self._stopped = False

    @property
    def stopped(self) -> bool:
        return self._stopped

    def submit_key(self, key: str) -> None:
        self.queue.put_nowait(Key(key))

    def resize(self, width: int, height: int) -> None:
        self.queue.put_nowait(Resize(width, height))

    def start(self) -> None:
        """Issue the initial list load."""
        self.state, commands = start(self.state)
        self._dispatch(commands)
        self._draw()

    def step(self, msg: Message) -> None:
        """Apply one message and launch the commands it produced."""
        self.state, commands = update(self.state, msg)
        self._dispatch(commands)
        self._draw()

    def _dispatch(self, commands) -> None:
        for command in commands:
            if isinstance(command, Quit):
                self._stopped = True
                continue
            self.dispatcher.submit(command)

    def _draw(self) -> None:
        if self._render is not None:
            self._render(self.state)

    async def run(self, keys: AsyncIterable[str] | None = None) -> State:
        """
        Run until quit. ``keys`` (optional) is drained into the queue by a
        background task, standing in for the terminal's input reader.
        """
        feeder = asyncio.create_task(self._feed(keys)) if keys is not None else None
        self.start()
        try:
            while not self._stopped:
                self.step(await self.queue.get())
        finally:
            if feeder is not None:
                feeder.cancel()
                await asyncio.gather(feeder, return_exceptions=True)
            await self.dispatcher.shutdown()
        logger.info("Session ended")
        return self.state

    async def _feed(self, keys: AsyncIterable[str]) -> None:
        async for key in keys:
            self.submit_key(key)


async def run_session(
    settings: Settings,
    keys: AsyncIterable[str] | None = None,
    render: Callable[[State], None] | None = None,
) -> State:
    """Configure logging, connect the backend and run one session to completion."""
    configure_logging(level=settings.log_level, log_file=settings.log_file)
    audit = AuditLogger(settings.audit_log)
    logger.info("Starting session", server=settings.server_label, read_only=settings.ui.read_only)

    async with build_client(settings) as client:
        session = Session(
            client,
            state=initial_state(settings),
            render=render,
            audit=audit,
            channel_size=settings.ui.log_channel_size,
        )
        return await session.run(keys)
