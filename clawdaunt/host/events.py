"""In-process event bus: the host's boundary towards the UI.

Subsystems never talk to the UI directly -- they ``emit`` on a named
channel (see ``UIChannel``) and whatever front-end is attached (the desktop
shell, the CLI's log sink, a test recorder) subscribes.

The bus also remembers the last payload of every state-like channel so a
late subscriber can render current state without waiting for the next
transition.  ``gateway-log`` is append-only and therefore not remembered.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from loguru import logger

from clawdaunt.host.models.enums import UIChannel

GATEWAY_LOG_CLEAR = "\x1b[2J"
"""Control value on ``gateway-log``: reset the accumulated log instead of appending."""

Listener = Callable[[UIChannel, Any], None]


class EventBus:
    """Synchronous fan-out of UI events.

    Listeners run inline on the event loop, so they must be quick.  A
    failing listener is logged and skipped; it never breaks the emitter.
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []
        self._last: dict[UIChannel, Any] = {}

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def emit(self, channel: UIChannel, payload: Any = True) -> None:
        if channel != UIChannel.GATEWAY_LOG:
            self._last[channel] = payload
        for listener in list(self._listeners):
            try:
                listener(channel, payload)
            except Exception:
                logger.exception("EventBus: listener failed on channel {}", channel)

    def error(self, message: str) -> None:
        """Report a user-visible error."""
        logger.warning("Error event: {}", message)
        self.emit(UIChannel.ERROR, message)

    def last(self, channel: UIChannel, default: Any = None) -> Any:
        return self._last.get(channel, default)

    def snapshot(self) -> dict[str, Any]:
        """Current value of every state-like channel seen so far."""
        return {str(channel): value for channel, value in self._last.items()}
