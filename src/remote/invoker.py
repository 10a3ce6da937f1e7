"""
Remote Operation Invoker.

Turns a semantic operation into one correlated round trip to the remote
content service and unwraps the service's result and error envelopes.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from src.errors import RemoteError
from src.remote.correlator import RequestCorrelator
from src.remote.operations import RemoteOperation, build_operation

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
CLIENT_INFO = {"name": "topicindex", "version": "1.0.0"}


class RemoteOperationInvoker:
    """
    Invokes remote operations over a correlated channel.

    Does not retry: retry and pacing are the caller's concern.
    """

    def __init__(
        self,
        correlator: RequestCorrelator,
        timeout_seconds: Optional[float] = 30.0,
        transport=None
    ):
        """
        Initialize invoker.

        Args:
            correlator: Correlator of the channel to the remote service
            timeout_seconds: Per-call timeout (None disables it)
            transport: Owning transport, closed by close() when given
        """
        self.correlator = correlator
        self.timeout_seconds = timeout_seconds
        self.transport = transport
        self.available_tools: Dict[str, dict] = {}

    @classmethod
    def over(cls, transport, timeout_seconds: Optional[float] = 30.0) -> "RemoteOperationInvoker":
        """Create an invoker bound to a transport's correlator."""
        return cls(transport.correlator, timeout_seconds=timeout_seconds, transport=transport)

    async def connect(self) -> List[str]:
        """
        Start the transport (if any), run the protocol handshake and
        discover the tools the remote service offers.

        Returns:
            Names of available tools
        """
        if self.transport is not None:
            await self.transport.start()

        await self.correlator.request(
            "initialize",
            {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {"tools": {}, "logging": {}},
                "clientInfo": CLIENT_INFO
            },
            timeout=self.timeout_seconds
        )

        listing = await self.correlator.request("tools/list", {}, timeout=self.timeout_seconds)
        self.available_tools = {
            tool["name"]: tool
            for tool in (listing or {}).get("tools", [])
            if isinstance(tool, dict) and "name" in tool
        }
        logger.info(f"Connected to remote service ({len(self.available_tools)} tools available)")
        return sorted(self.available_tools)

    async def invoke(self, operation: RemoteOperation) -> Any:
        """
        Run one operation.

        Returns:
            The unwrapped result payload

        Raises:
            RemoteError: The service answered with an error
            TransportError: The channel failed or the call timed out
        """
        logger.debug(f"Invoking {operation.name} -> {operation.tool}")
        try:
            result = await self.correlator.request(
                "tools/call",
                {"name": operation.tool, "arguments": operation.arguments()},
                timeout=self.timeout_seconds
            )
        except RemoteError as e:
            # Attach the semantic operation context to the envelope
            raise RemoteError(
                e.code,
                e.message,
                operation=operation.name,
                identity=operation.identity,
                details=e.details
            ) from e

        return self._unwrap(result, operation)

    async def call(self, operation_name: str, args: Optional[Dict[str, Any]] = None) -> Any:
        """Build the named operation from keyword arguments and invoke it."""
        return await self.invoke(build_operation(operation_name, args))

    async def close(self) -> None:
        if self.transport is not None:
            await self.transport.close()
        else:
            self.correlator.close("Invoker closed")

    def _unwrap(self, result: Any, operation: RemoteOperation) -> Any:
        """
        Unwrap a tool result given as content blocks.

        Results in any other shape are returned as they are.
        """
        if not isinstance(result, dict) or not isinstance(result.get("content"), list):
            return result

        texts = [
            block.get("text", "")
            for block in result["content"]
            if isinstance(block, dict) and block.get("type") == "text"
        ]
        text = "\n".join(texts)

        if result.get("isError"):
            raise RemoteError(
                result.get("code"),
                text or "Remote tool reported an error",
                operation=operation.name,
                identity=operation.identity
            )

        if not texts:
            return result

        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text
