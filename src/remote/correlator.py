"""
Request Correlator.

Matches asynchronous responses arriving on a shared duplex channel back to
the request that caused them. Correlation is purely id-based: responses may
arrive in any order, and stray or duplicate responses are dropped.
"""

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from src.errors import RemoteError, RequestTimeout, TransportClosed, TransportError

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"


@dataclass
class PendingRequest:
    """An outbound call waiting for its response."""
    id: int
    method: str
    future: asyncio.Future


class RequestCorrelator:
    """
    Owns the pending-request table for one channel.

    Outbound: send() allocates the next id, registers a continuation and only
    then hands the framed message to the writer.
    Inbound: feed() parses one framed message and settles the matching
    continuation.
    """

    def __init__(self, writer: Callable[[str], Awaitable[None]]):
        """
        Initialize correlator.

        Args:
            writer: Coroutine function that transmits one framed message
                (a JSON line including the trailing newline)
        """
        self._writer = writer
        self._ids = itertools.count(1)
        self._pending: Dict[int, PendingRequest] = {}
        # Answered requests whose result hasn't been collected by wait_for() yet
        self._settled: Dict[int, PendingRequest] = {}
        self._closed: Optional[TransportClosed] = None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def closed(self) -> bool:
        return self._closed is not None

    def is_pending(self, request_id: int) -> bool:
        return request_id in self._pending

    async def send(self, method: str, params: Any = None) -> int:
        """
        Register and transmit a request.

        Returns:
            The id allocated to the request

        Raises:
            TransportClosed: If the channel has already terminated
            TransportError: If the writer fails
        """
        pending = await self._transmit(method, params)
        return pending.id

    async def _transmit(self, method: str, params: Any) -> PendingRequest:
        if self._closed is not None:
            raise TransportClosed("Channel is closed", operation=method)

        request_id = next(self._ids)
        future = asyncio.get_running_loop().create_future()
        pending = PendingRequest(request_id, method, future)
        self._pending[request_id] = pending

        message = json.dumps({
            "jsonrpc": JSONRPC_VERSION,
            "method": method,
            "params": params if params is not None else {},
            "id": request_id
        })

        try:
            await self._writer(message + "\n")
        except Exception as e:
            self._pending.pop(request_id, None)
            raise TransportError(f"Failed to write request {request_id}: {e}", operation=method)

        logger.debug(f"Sent request {request_id}: {method}")
        return pending

    async def wait_for(self, request_id: int, timeout: Optional[float] = None) -> Any:
        """
        Wait for the response to a previously sent request.

        Args:
            request_id: Id returned by send()
            timeout: Seconds to wait before rejecting the request (None waits forever)

        Returns:
            The result payload of the response

        Raises:
            RemoteError: The response carried an error envelope
            RequestTimeout: No response within timeout
            TransportClosed: Channel terminated while waiting
        """
        pending = self._pending.get(request_id) or self._settled.get(request_id)
        if pending is None:
            if self._closed is not None:
                raise TransportClosed(f"Channel closed before request {request_id} was answered")
            raise TransportError(f"No pending request with id {request_id}")
        return await self._settle(pending, timeout)

    async def request(self, method: str, params: Any = None, timeout: Optional[float] = None) -> Any:
        """Send a request and wait for its result."""
        pending = await self._transmit(method, params)
        # The response may already have settled the future while the write drained
        return await self._settle(pending, timeout)

    async def _settle(self, pending: PendingRequest, timeout: Optional[float]) -> Any:
        try:
            # shield: a timeout must not cancel the future before reject() settles it
            return await asyncio.wait_for(asyncio.shield(pending.future), timeout)
        except asyncio.TimeoutError:
            error = RequestTimeout(
                f"No response to request {pending.id} within {timeout}s",
                operation=pending.method
            )
            self.reject(pending.id, error)
            raise error
        finally:
            self._settled.pop(pending.id, None)

    def resolve(self, request_id: int, result: Any) -> bool:
        """
        Complete a pending request with its result.

        Returns:
            True if a pending request was settled, False for unknown ids
        """
        pending = self._pending.pop(request_id, None)
        if pending is None:
            logger.debug(f"Dropping response for unknown request id {request_id}")
            return False
        if not pending.future.done():
            pending.future.set_result(result)
        self._settled[request_id] = pending
        return True

    def reject(self, request_id: int, error: BaseException) -> bool:
        """
        Fail a pending request.

        Returns:
            True if a pending request was settled, False for unknown ids
        """
        pending = self._pending.pop(request_id, None)
        if pending is None:
            logger.debug(f"Dropping rejection for unknown request id {request_id}")
            return False
        if not pending.future.done():
            pending.future.set_exception(error)
            # Mark retrieved so an abandoned request doesn't warn at teardown
            pending.future.exception()
        self._settled[request_id] = pending
        return True

    def feed(self, line: str) -> bool:
        """
        Handle one inbound framed message.

        Lines that are not valid response envelopes are discarded, so
        diagnostic output interleaved with responses never breaks correlation.

        Returns:
            True if the message settled a pending request
        """
        line = line.strip()
        if not line:
            return False

        try:
            message = json.loads(line)
        except json.JSONDecodeError:
            logger.debug(f"Discarding non-JSON line: {line[:200]}")
            return False

        if not isinstance(message, dict) or "id" not in message:
            logger.debug(f"Discarding message without id: {line[:200]}")
            return False
        if "result" not in message and "error" not in message:
            logger.debug(f"Discarding message that is not a response: {line[:200]}")
            return False

        request_id = message["id"]
        if not isinstance(request_id, int) or isinstance(request_id, bool):
            logger.debug(f"Discarding response with non-integer id: {request_id!r}")
            return False

        error = message.get("error")
        if error is not None:
            pending = self._pending.get(request_id)
            if isinstance(error, dict):
                code = error.get("code")
                text = error.get("message") or "Remote error"
                details = {"data": error["data"]} if "data" in error else None
            else:
                code, text, details = None, str(error), None
            return self.reject(
                request_id,
                RemoteError(
                    code,
                    text,
                    operation=pending.method if pending else None,
                    details=details
                )
            )

        return self.resolve(request_id, message.get("result"))

    def close(self, reason: str = "Channel closed") -> int:
        """
        Terminate the channel: reject every outstanding request.

        Returns:
            Number of requests that were rejected
        """
        if self._closed is None:
            self._closed = TransportClosed(reason)

        outstanding = list(self._pending.keys())
        for request_id in outstanding:
            pending = self._pending[request_id]
            self.reject(
                request_id,
                TransportClosed(
                    f"{reason} with request {request_id} outstanding",
                    operation=pending.method
                )
            )

        if outstanding:
            logger.warning(f"{reason}: rejected {len(outstanding)} pending requests")
        return len(outstanding)
