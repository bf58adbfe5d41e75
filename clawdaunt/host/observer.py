"""Gateway session observer.

Mirrors the gateway's live work sessions into a local roster and republishes
the whole roster on ``sessions-updated`` after every change.  The observer
is the sole owner of this state; nothing is persisted, and every (re)connect
or close starts from an empty roster.

The gateway-side event channel requires a handshake (challenge / device
identity) that the gateway protocol does not yet document, so the transport
is pluggable: pass a ``channel_factory`` returning a ``SessionChannel``.
Without one, ``connect`` only resets the roster.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Callable
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol

from loguru import logger

from clawdaunt.host.models.enums import SessionStatus, UIChannel
from clawdaunt.host.models.session import GatewaySession

if TYPE_CHECKING:
    from clawdaunt.host.events import EventBus
    from clawdaunt.host.settings import ClawSettings


class SessionChannel(Protocol):
    """Subscription to the gateway's session lifecycle events."""

    async def subscribe(self) -> None:
        """Open the channel (including any handshake)."""
        ...

    async def receive(self) -> dict[str, Any] | None:
        """Next decoded event, or ``None`` once the channel is closed."""
        ...

    async def close(self) -> None: ...


ChannelFactory = Callable[[int, str], SessionChannel]
"""``(gateway_port, token) -> SessionChannel``."""


class SessionEventKind(StrEnum):
    STATUS = "status"
    IDLE = "idle"
    ERROR = "error"
    TITLE_UPDATED = "title-updated"
    ENDED = "ended"


EVENT_KINDS: dict[str, SessionEventKind] = {
    "session.status": SessionEventKind.STATUS,
    "session.idle": SessionEventKind.IDLE,
    "session.error": SessionEventKind.ERROR,
    "message.updated": SessionEventKind.TITLE_UPDATED,
    "session.ended": SessionEventKind.ENDED,
}


class SessionObserver:
    """Live roster of gateway sessions."""

    def __init__(
        self,
        *,
        settings: ClawSettings,
        events: EventBus,
        shutdown: asyncio.Event,
        channel_factory: ChannelFactory | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings
        self._events = events
        self._shutdown = shutdown
        self._channel_factory = channel_factory
        self._clock = clock
        self._sessions: dict[str, GatewaySession] = {}
        self._task: asyncio.Task[None] | None = None

    @property
    def sessions(self) -> list[GatewaySession]:
        return list(self._sessions.values())

    @property
    def connected(self) -> bool:
        return self._task is not None and not self._task.done()

    # -- Lifecycle -------------------------------------------------------------

    def connect(self, port: int, token: str) -> None:
        self.close()
        if self._channel_factory is None:
            logger.debug("Session observer: no channel configured, roster stays empty")
            return
        self._task = asyncio.create_task(self._run(self._channel_factory, port, token), name="session-observer")

    def close(self) -> None:
        """Drop the subscription and clear the roster."""
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
        self._clear()

    # -- Events ----------------------------------------------------------------

    def apply_event(self, event: dict[str, Any]) -> bool:
        """Apply one decoded event.  Returns ``True`` if the roster changed."""
        kind = EVENT_KINDS.get(str(event.get("type", "")))
        session_id = event.get("session_id")
        if kind is None or not isinstance(session_id, str) or not session_id:
            return False

        existing = self._sessions.get(session_id)

        if kind == SessionEventKind.ENDED:
            if self._sessions.pop(session_id, None) is None:
                return False
        elif kind == SessionEventKind.TITLE_UPDATED:
            if existing is None or not event.get("title"):
                return False
            existing.title = str(event["title"])
        else:
            self._sessions[session_id] = self._upsert(kind, session_id, existing, event)

        self._publish()
        return True

    def _upsert(
        self,
        kind: SessionEventKind,
        session_id: str,
        existing: GatewaySession | None,
        event: dict[str, Any],
    ) -> GatewaySession:
        if kind == SessionEventKind.STATUS:
            status = SessionStatus.BUSY if event.get("status") == "busy" else SessionStatus.IDLE
        else:
            status = SessionStatus.IDLE

        title = existing.title if existing else str(event.get("title") or "New session")
        if kind == SessionEventKind.ERROR and event.get("error"):
            title = f"Error: {event['error']}"

        return GatewaySession(
            id=session_id,
            status=status,
            title=title,
            skill=event.get("skill") or (existing.skill if existing else None),
            started_at=existing.started_at if existing else self._clock() * 1000,
        )

    # -- Internals -------------------------------------------------------------

    async def _run(self, channel_factory: ChannelFactory, port: int, token: str) -> None:
        while not self._shutdown.is_set():
            channel = channel_factory(port, token)
            try:
                await channel.subscribe()
                logger.info("Session observer: subscribed to gateway on port {}", port)
                while (event := await channel.receive()) is not None:
                    self.apply_event(event)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("Session observer: channel failed: {!r}", exc)
            finally:
                with contextlib.suppress(Exception):
                    await channel.close()

            self._clear()
            if self._shutdown.is_set():
                return
            logger.info("Session observer: disconnected, retrying in {}s", self._settings.observer_reconnect_delay)
            await asyncio.sleep(self._settings.observer_reconnect_delay)

    def _clear(self) -> None:
        self._sessions.clear()
        self._publish()

    def _publish(self) -> None:
        self._events.emit(UIChannel.SESSIONS_UPDATED, [s.model_dump(mode="json", by_alias=True) for s in self._sessions.values()])
