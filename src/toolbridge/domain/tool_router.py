"""Call-id correlation table for bridged tool calls.

The router pairs an opaque call id with the code path waiting for that
call's result. Entries are consumed exactly once: either resolved with the
client's output or rejected with a reason.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass

from toolbridge.domain.errors import (
    DuplicateCallIdError,
    NoExpectedToolCallError,
    ToolCallRejectedError,
)
from toolbridge.domain.value_objects import ResolveOutcome

DEFAULT_TOOL_TIMEOUT_SECONDS = 5 * 60


@dataclass
class PendingToolCall:
    """One outstanding request to the client to execute a tool.

    Attributes:
        call_id: Opaque identifier, unique while the entry is pending.
        future: Completion handle the waiting caller is suspended on.
        timer: Idle-timeout handle, None when timeouts are disabled.
    """

    call_id: str
    future: asyncio.Future[str]
    timer: asyncio.TimerHandle | None = None


class ToolRouter:
    """Correlation table: one pending entry per in-flight tool call id.

    Besides pending entries (a caller is suspended on them) the router keeps
    per-tool-name FIFO queues of *expected* call ids: calls already forwarded
    to the client that an external agent has not claimed yet.

    Thread Safety:
    - Not thread-safe. Designed for a single asyncio event loop; every
      mutation happens between suspension points, so resolve and reject_all
      can never complete the same entry twice.

    Example:
        >>> router = ToolRouter()
        >>> future = router.register("call_1")
        >>> router.resolve("call_1", "file contents")
        <ResolveOutcome.RESOLVED: 'resolved'>
        >>> future.result()
        'file contents'
    """

    def __init__(
        self,
        timeout_seconds: float | None = DEFAULT_TOOL_TIMEOUT_SECONDS,
        on_expire: Callable[[str], None] | None = None,
    ) -> None:
        """Initialize an empty table.

        Args:
            timeout_seconds: Idle timeout per pending entry, None disables it.
            on_expire: Hook called with the call id after an expiry has
                rejected every pending entry.
        """
        self._timeout_seconds = timeout_seconds
        self._on_expire = on_expire
        self._pending: dict[str, PendingToolCall] = {}
        self._expected: dict[str, list[str]] = {}

    def register(self, call_id: str) -> asyncio.Future[str]:
        """Create a pending entry and return the handle to await.

        Raises:
            DuplicateCallIdError: If call_id already has a pending entry.
            RuntimeError: If called outside a running event loop.
        """
        if call_id in self._pending:
            raise DuplicateCallIdError(call_id)

        loop = asyncio.get_running_loop()
        future: asyncio.Future[str] = loop.create_future()
        entry = PendingToolCall(call_id=call_id, future=future)
        if self._timeout_seconds is not None:
            entry.timer = loop.call_later(self._timeout_seconds, self._expire, call_id)
        self._pending[call_id] = entry

        # A waiter that gets cancelled takes its entry with it
        future.add_done_callback(lambda f: self._forget(call_id, f))
        return future

    def expect(self, call_id: str, tool_name: str) -> None:
        """Announce a call id that will later be claimed by tool name."""
        self._expected.setdefault(tool_name, []).append(call_id)

    def claim(self, tool_name: str) -> asyncio.Future[str]:
        """Register the oldest expected call id for tool_name.

        Raises:
            NoExpectedToolCallError: If nothing is expected for tool_name.
        """
        queue = self._expected.get(tool_name)
        if not queue:
            raise NoExpectedToolCallError(tool_name)
        call_id = queue.pop(0)
        if not queue:
            del self._expected[tool_name]
        return self.register(call_id)

    def resolve(self, call_id: str, output: str) -> ResolveOutcome:
        """Deliver output to the caller waiting on call_id.

        Never raises. An id that is unknown, already resolved or already
        rejected yields NOT_FOUND and leaves the table untouched.
        """
        entry = self._pending.pop(call_id, None)
        if entry is not None:
            self._cancel_timer(entry)
            if not entry.future.done():
                entry.future.set_result(output)
            return ResolveOutcome.RESOLVED

        # The client answered a call that never went through the bridge
        # (denied, or failed before any claim). Drop the stale expectation so
        # it cannot poison a later claim for the same tool name.
        for tool_name, queue in self._expected.items():
            if call_id in queue:
                queue.remove(call_id)
                if not queue:
                    del self._expected[tool_name]
                return ResolveOutcome.CLEARED

        return ResolveOutcome.NOT_FOUND

    def reject_all(self, reason: str) -> int:
        """Fail every pending entry with reason and clear the table.

        Returns:
            Number of pending entries that were rejected.
        """
        self._expected.clear()
        entries = list(self._pending.values())
        self._pending.clear()
        for entry in entries:
            self._cancel_timer(entry)
            if not entry.future.done():
                entry.future.set_exception(ToolCallRejectedError(reason))
                # Nobody may be awaiting this handle anymore
                entry.future.exception()
        return len(entries)

    def has_pending_call(self, call_id: str) -> bool:
        """Whether call_id is pending or still expected."""
        if call_id in self._pending:
            return True
        return any(call_id in queue for queue in self._expected.values())

    def has_expected_tool(self, tool_name: str) -> bool:
        return bool(self._expected.get(tool_name))

    @property
    def has_pending(self) -> bool:
        return bool(self._pending) or bool(self._expected)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def _expire(self, call_id: str) -> None:
        if call_id not in self._pending:
            return
        self.reject_all(f"Tool call {call_id} timed out")
        if self._on_expire is not None:
            self._on_expire(call_id)

    def _forget(self, call_id: str, future: asyncio.Future[str]) -> None:
        entry = self._pending.get(call_id)
        if entry is not None and entry.future is future:
            del self._pending[call_id]
            self._cancel_timer(entry)

    @staticmethod
    def _cancel_timer(entry: PendingToolCall) -> None:
        if entry.timer is not None:
            entry.timer.cancel()
            entry.timer = None
