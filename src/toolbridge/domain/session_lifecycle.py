"""Per-conversation session state machine.

Gates the validity window of a ToolRouter: every path that ends a session
rejects the router's pending entries before the session counts as inactive.
"""

from collections.abc import Callable
from enum import Enum

from toolbridge.domain.errors import SessionTeardownError
from toolbridge.domain.tool_router import ToolRouter

SessionEndListener = Callable[[], None]


class SessionPhase(Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"


class SessionLifecycle:
    """Tracks whether a conversation's upstream session is running.

    State:
        phase: INACTIVE (initial / terminal) or ACTIVE.
        errored: Orthogonal flag, set while active, cleared by cleanup().

    Session-end listeners are delivered at most once per activation cycle:
    the listener list is emptied before the listeners run, so a second
    teardown (e.g. cleanup() after mark_inactive()) does not fire them again.

    Example:
        >>> lifecycle = SessionLifecycle(ToolRouter(timeout_seconds=None))
        >>> ended = []
        >>> _ = lifecycle.on_session_end(lambda: ended.append(True))
        >>> lifecycle.mark_active()
        >>> lifecycle.cleanup()
        0
        >>> lifecycle.cleanup()
        0
        >>> ended
        [True]
    """

    def __init__(self, tool_router: ToolRouter) -> None:
        self._tool_router = tool_router
        self._phase = SessionPhase.INACTIVE
        self._errored = False
        self._listeners: list[SessionEndListener] = []

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def active(self) -> bool:
        return self._phase is SessionPhase.ACTIVE

    @property
    def errored(self) -> bool:
        return self._errored

    def on_session_end(self, listener: SessionEndListener) -> Callable[[], None]:
        """Subscribe to the next session end.

        Returns:
            Callable that removes the subscription if it has not fired yet.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def mark_active(self) -> None:
        self._phase = SessionPhase.ACTIVE

    def mark_errored(self) -> None:
        self._errored = True

    def mark_inactive(self) -> int:
        """End the session normally.

        Stale entries from tool calls that never went through the bridge
        (denied or handled by the client) would otherwise hang the next
        continuation, so they are rejected here.

        Returns:
            Number of pending tool calls that were rejected.
        """
        return self._teardown("Session ended")

    def cleanup(self) -> int:
        """Force the session inactive from any phase. Idempotent.

        Returns:
            Number of pending tool calls that were rejected.
        """
        try:
            return self._teardown("Session cleanup")
        finally:
            self._errored = False

    def _teardown(self, reason: str) -> int:
        self._phase = SessionPhase.INACTIVE
        rejected = self._tool_router.reject_all(reason)

        listeners, self._listeners = self._listeners, []
        failures: list[Exception] = []
        for listener in listeners:
            try:
                listener()
            except Exception as exc:  # noqa: BLE001
                failures.append(exc)

        if failures:
            raise SessionTeardownError(
                f"{len(failures)} session-end listener(s) failed: {failures[0]}",
                rejected=rejected,
            ) from failures[0]
        return rejected
