"""
Request/response correlation for the binary monitor connection.

Runs entirely on the event loop that owns the connection, so the pending
table needs no locking. A pending call is resolved by whichever of response,
timeout or disconnect removes it from the table first.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from .errors import ConnectionError, ViceError, peer_error, response_timeout
from .framing import Frame

logger = logging.getLogger(__name__)

DEFAULT_RESPONSE_TIMEOUT = 10.0


@dataclass
class PendingCall:
    request_id: int
    future: asyncio.Future
    expected_kind: Optional[int] = None
    timer: Optional[asyncio.TimerHandle] = field(default=None, repr=False)


class RequestCorrelator:
    """
    Tracks outstanding requests and matches incoming frames to them.

    Frames carrying the async sentinel id cannot be matched by id; they are
    matched to the oldest pending call expecting that response kind.
    """

    def __init__(
        self,
        id_space: int,
        async_request_id: int,
        timeout: float = DEFAULT_RESPONSE_TIMEOUT,
    ):
        self._id_space = id_space
        self._async_request_id = async_request_id
        self._timeout = timeout
        self._last_id = 0
        self._pending: dict[int, PendingCall] = {}

    @property
    def timeout(self) -> float:
        return self._timeout

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: int) -> bool:
        return request_id in self._pending

    def _allocate_id(self) -> int:
        for _ in range(self._id_space):
            self._last_id = (self._last_id + 1) % self._id_space
            candidate = self._last_id
            if candidate != self._async_request_id and candidate not in self._pending:
                return candidate
        raise ConnectionError(
            "REQUEST_IDS_EXHAUSTED",
            f"All {len(self._pending)} request ids are in use by pending calls",
            "Wait for outstanding commands to complete before sending more.",
        )

    def register(self, expected_kind: Optional[int] = None) -> PendingCall:
        """
        Allocate a request id and register a pending call for it.

        Must be called before the request bytes are written so that a fast
        response always finds its waiter.
        """
        loop = asyncio.get_running_loop()
        request_id = self._allocate_id()
        call = PendingCall(request_id, loop.create_future(), expected_kind)
        call.timer = loop.call_later(self._timeout, self._expire, call)
        call.future.add_done_callback(lambda future: self._discard_cancelled(call, future))
        self._pending[request_id] = call
        return call

    def _remove(self, call: PendingCall) -> bool:
        if self._pending.get(call.request_id) is not call:
            return False
        del self._pending[call.request_id]
        if call.timer is not None:
            call.timer.cancel()
        return True

    def _expire(self, call: PendingCall) -> None:
        if self._remove(call):
            logger.warning("Request %d timed out after %gs", call.request_id, self._timeout)
            if not call.future.done():
                call.future.set_exception(response_timeout(self._timeout))

    def _discard_cancelled(self, call: PendingCall, future: asyncio.Future) -> None:
        if future.cancelled():
            self._remove(call)

    def _complete(self, call: PendingCall, frame: Frame) -> None:
        if call.future.done():
            return
        if frame.status != 0:
            call.future.set_exception(peer_error(frame.status))
        else:
            call.future.set_result(frame)

    def handle_frame(self, frame: Frame) -> bool:
        """
        Route an incoming frame to its pending call.

        Returns:
            True if the frame resolved or rejected a pending call
        """
        if frame.request_id == self._async_request_id:
            for call in list(self._pending.values()):
                if call.expected_kind is not None and call.expected_kind == frame.kind:
                    logger.debug(
                        "Matched async response type 0x%02x to request %d",
                        frame.kind,
                        call.request_id,
                    )
                    self._remove(call)
                    self._complete(call, frame)
                    return True
            return False

        call = self._pending.get(frame.request_id)
        if call is None:
            return False
        self._remove(call)
        self._complete(call, frame)
        return True

    def reject(self, request_id: int, error: ViceError) -> bool:
        """Reject a single pending call, if it is still registered."""
        call = self._pending.get(request_id)
        if call is None or not self._remove(call):
            return False
        if not call.future.done():
            call.future.set_exception(error)
        return True

    def fail_all(self, make_error: Callable[[], ViceError]) -> int:
        """Reject every pending call with a fresh error and clear the table."""
        calls = list(self._pending.values())
        self._pending.clear()
        for call in calls:
            if call.timer is not None:
                call.timer.cancel()
            if not call.future.done():
                call.future.set_exception(make_error())
        if calls:
            logger.info("Rejected %d pending request(s)", len(calls))
        return len(calls)
