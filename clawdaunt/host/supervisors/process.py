"""Thin asyncio wrapper around one supervised child process.

Both supervisors use ``ManagedProcess`` to spawn their child, pump its
combined stdout/stderr into a callback as it arrives, and terminate it.
Decisions about *what to do* on exit live in the supervisors, never here.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable, Sequence

from loguru import logger

_CHUNK_SIZE = 64 * 1024

OutputCallback = Callable[[str], None]


class ManagedProcess:
    """A running child process plus the tasks reading its output."""

    def __init__(self, name: str, proc: asyncio.subprocess.Process, on_output: OutputCallback | None) -> None:
        self.name = name
        self._proc = proc
        self._on_output = on_output
        self._pumps = [
            asyncio.create_task(self._pump(stream), name=f"{name}-output")
            for stream in (proc.stdout, proc.stderr)
            if stream is not None
        ]

    @classmethod
    async def spawn(
        cls,
        name: str,
        argv: Sequence[str],
        *,
        env: dict[str, str] | None = None,
        cwd: str | None = None,
        on_output: OutputCallback | None = None,
    ) -> ManagedProcess:
        """Start *argv*.  Raises ``OSError`` if the executable cannot be spawned."""
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
            cwd=cwd,
        )
        logger.info("{}: spawned pid={}", name, proc.pid)
        return cls(name, proc, on_output)

    # -- State -----------------------------------------------------------------

    @property
    def pid(self) -> int:
        return self._proc.pid

    @property
    def returncode(self) -> int | None:
        return self._proc.returncode

    @property
    def running(self) -> bool:
        return self._proc.returncode is None

    # -- Control ---------------------------------------------------------------

    async def wait(self) -> int:
        """Wait for exit and for all buffered output to be delivered."""
        code = await self._proc.wait()
        if self._pumps:
            await asyncio.gather(*self._pumps, return_exceptions=True)
        return code

    def terminate(self) -> None:
        """Send SIGTERM.  No-op if the process already exited."""
        if self.running:
            with contextlib.suppress(ProcessLookupError):
                self._proc.terminate()

    def kill(self) -> None:
        if self.running:
            with contextlib.suppress(ProcessLookupError):
                self._proc.kill()

    async def stop(self, timeout: float) -> int:
        """Terminate, escalating to SIGKILL after *timeout* seconds."""
        self.terminate()
        try:
            return await asyncio.wait_for(self.wait(), timeout=timeout)
        except TimeoutError:
            logger.warning("{}: pid={} ignored SIGTERM for {}s, killing", self.name, self.pid, timeout)
            self.kill()
            return await self.wait()

    # -- Output ----------------------------------------------------------------

    async def _pump(self, stream: asyncio.StreamReader) -> None:
        while True:
            chunk = await stream.read(_CHUNK_SIZE)
            if not chunk:
                return
            if self._on_output is None:
                continue
            try:
                self._on_output(chunk.decode("utf-8", errors="replace"))
            except Exception:
                logger.exception("{}: output handler failed", self.name)


async def run_command(argv: Sequence[str], *, env: dict[str, str] | None = None, timeout: float) -> tuple[int, str, str]:
    """Run a one-shot command, returning ``(returncode, stdout, stderr)``.

    Raises ``TimeoutError`` (after killing the child) if it runs longer than
    *timeout* seconds, and ``OSError`` if it cannot be spawned.
    """
    proc = await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env=env,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except TimeoutError:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        await proc.wait()
        raise
    return proc.returncode or 0, stdout.decode("utf-8", errors="replace"), stderr.decode("utf-8", errors="replace")
