"""Handle around one provisioning tool process.

The child runs in its own session so that signals reach the provider plugins
terraform starts as well. Output is exposed as one async sequence merging
stdout and stderr in arrival order.
"""

from __future__ import annotations

import asyncio
import os
import signal
from pathlib import Path
from typing import AsyncIterator, Optional, Sequence

import structlog

from src.core.exceptions import InfrastructureError

logger = structlog.get_logger(__name__)

# terraform emits long single-line JSON diagnostics
STREAM_LIMIT = 4 * 1024 * 1024


class ProcessHandle:
    """A running (or finished) external process."""

    def __init__(self, process: asyncio.subprocess.Process, argv: Sequence[str]) -> None:
        self._process = process
        self.argv = list(argv)

    @classmethod
    async def spawn(
        cls,
        argv: Sequence[str],
        cwd: Path,
        env: Optional[dict[str, str]] = None,
    ) -> "ProcessHandle":
        """Start ``argv`` in ``cwd``.

        Raises:
            InfrastructureError: The executable is missing, not executable,
                or the OS refused to start it.
        """
        command = argv[0]
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(cwd),
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
                limit=STREAM_LIMIT,
            )
        except FileNotFoundError as e:
            raise InfrastructureError(command, f"executable not found: {e.filename or command}") from e
        except PermissionError as e:
            raise InfrastructureError(command, "permission denied") from e
        except OSError as e:
            raise InfrastructureError(command, f"failed to start: {e}") from e

        logger.debug("process_spawned", pid=process.pid, argv=list(argv), cwd=str(cwd))
        return cls(process, argv)

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode

    @property
    def is_running(self) -> bool:
        return self._process.returncode is None

    async def lines(self) -> AsyncIterator[tuple[str, str]]:
        """Yield ``(stream, text)`` pairs until both pipes reach EOF."""
        queue: asyncio.Queue[Optional[tuple[str, str]]] = asyncio.Queue()

        async def pump(reader: asyncio.StreamReader, name: str) -> None:
            split = False
            try:
                while True:
                    try:
                        raw = await reader.readuntil(b"\n")
                    except asyncio.IncompleteReadError as e:
                        raw = e.partial
                    except asyncio.LimitOverrunError as e:
                        # line longer than the stream limit, emit it in chunks
                        raw = await reader.read(e.consumed)
                        if raw:
                            if not split:
                                logger.debug("process_line_split", pid=self.pid, stream=name)
                            split = True
                            queue.put_nowait((name, raw.decode("utf-8", errors="replace")))
                            continue
                    if not raw:
                        break
                    if split and raw in (b"\n", b"\r\n"):
                        # terminator of a line already emitted in chunks
                        split = False
                        continue
                    split = False
                    text = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                    queue.put_nowait((name, text))
            finally:
                queue.put_nowait(None)

        pumps = [
            asyncio.create_task(pump(self._process.stdout, "stdout")),
            asyncio.create_task(pump(self._process.stderr, "stderr")),
        ]
        open_streams = len(pumps)
        try:
            while open_streams:
                item = await queue.get()
                if item is None:
                    open_streams -= 1
                    continue
                yield item
        finally:
            for task in pumps:
                task.cancel()
            await asyncio.gather(*pumps, return_exceptions=True)

    async def wait(self) -> int:
        return await self._process.wait()

    def _signal(self, sig: int) -> None:
        if self._process.returncode is not None:
            return
        try:
            os.killpg(self._process.pid, sig)
        except ProcessLookupError:
            logger.debug("process_already_exited", pid=self._process.pid)

    def terminate(self) -> None:
        """Ask the process group to stop (SIGTERM)."""
        logger.info("process_terminate", pid=self._process.pid)
        self._signal(signal.SIGTERM)

    def kill(self) -> None:
        """Force the process group to stop (SIGKILL)."""
        logger.warning("process_kill", pid=self._process.pid)
        self._signal(signal.SIGKILL)
