"""
Stdio transport.

Boots the remote content service as a child process and exchanges
newline-framed JSON messages over its stdin/stdout. Inbound lines are fed to a
RequestCorrelator; when the stream ends, every outstanding request is rejected.
"""

import asyncio
import logging
import os
from typing import Dict, List, Optional

from src.errors import TransportClosed, TransportError
from src.remote.correlator import RequestCorrelator

logger = logging.getLogger(__name__)

# Large tool results arrive as single lines
STREAM_LIMIT = 16 * 1024 * 1024


class StdioTransport:
    """
    Duplex channel to an external process speaking line-delimited JSON.
    """

    def __init__(self, command: List[str], env: Optional[Dict[str, str]] = None):
        """
        Initialize transport (the process is not started yet).

        Args:
            command: Executable and arguments of the remote service
            env: Extra environment variables for the child process
        """
        if not command:
            raise TransportError("No server command configured")

        self.command = list(command)
        self.env = env or {}
        self.correlator = RequestCorrelator(self.write)
        self._process: Optional[asyncio.subprocess.Process] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._stderr_task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    async def start(self) -> None:
        """Spawn the remote service and start reading its output."""
        if self.running:
            return

        env = os.environ.copy()
        env.update(self.env)

        logger.info(f"Starting remote service: {self.command[0]}")
        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            raise TransportError(f"Failed to start remote service {self.command[0]}: {e}")

        self._reader_task = asyncio.create_task(self._read_stdout())
        self._stderr_task = asyncio.create_task(self._read_stderr())

    async def write(self, data: str) -> None:
        """Transmit one framed message."""
        if not self.running or self._process.stdin is None:
            raise TransportClosed("Remote service is not running")
        self._process.stdin.write(data.encode("utf-8"))
        await self._process.stdin.drain()

    async def _read_stdout(self) -> None:
        reason = "Remote service closed its output"
        try:
            while True:
                line = await self._process.stdout.readline()
                if not line:
                    break
                self.correlator.feed(line.decode("utf-8", errors="replace"))
        except (asyncio.LimitOverrunError, ValueError) as e:
            reason = f"Remote service output unreadable: {e}"
            logger.error(reason)
        finally:
            self.correlator.close(reason)

    async def _read_stderr(self) -> None:
        while True:
            line = await self._process.stderr.readline()
            if not line:
                break
            text = line.decode("utf-8", errors="replace").rstrip()
            if text:
                logger.warning(f"Remote service: {text}")

    async def close(self) -> None:
        """Terminate the remote service; pending requests are rejected."""
        if self._process is None:
            self.correlator.close("Transport closed")
            return

        if self._process.returncode is None:
            if self._process.stdin is not None:
                self._process.stdin.close()
            try:
                self._process.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(self._process.wait(), timeout=5)
            except asyncio.TimeoutError:
                logger.warning("Remote service did not exit, killing it")
                self._process.kill()
                await self._process.wait()

        for task in (self._reader_task, self._stderr_task):
            if task is not None:
                await asyncio.gather(task, return_exceptions=True)

        self.correlator.close("Transport closed")
        logger.info(f"Remote service stopped (rc={self._process.returncode})")
        self._process = None
