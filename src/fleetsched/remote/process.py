"""Subprocess helper shared by the shell-based executors."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Mapping, Sequence

from fleetsched.remote.base import (
    CommandResult,
    RemoteTimeoutError,
    RemoteUnreachableError,
)

logger = logging.getLogger(__name__)

DEFAULT_CAPTURE_BYTES = 1024 * 1024
_READ_CHUNK = 64 * 1024


class _Capture:
    """Accumulates a stream up to a byte cap, discarding the rest."""

    def __init__(self, limit: int) -> None:
        self._buf = bytearray()
        self._limit = limit
        self.dropped = 0

    def feed(self, chunk: bytes) -> None:
        room = self._limit - len(self._buf)
        if room > 0:
            self._buf.extend(chunk[:room])
        self.dropped += max(0, len(chunk) - max(room, 0))

    def text(self) -> str:
        return self._buf.decode("utf-8", errors="replace")


async def _pump(stream: asyncio.StreamReader | None, capture: _Capture) -> None:
    if stream is None:
        return
    while chunk := await stream.read(_READ_CHUNK):
        capture.feed(chunk)


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is not None:
        return
    with contextlib.suppress(ProcessLookupError):
        proc.kill()
    await proc.wait()


async def run_process(
    argv: Sequence[str],
    *,
    timeout: float,
    server_id: int | None = None,
    env: Mapping[str, str] | None = None,
    capture_bytes: int = DEFAULT_CAPTURE_BYTES,
) -> CommandResult:
    """Run ``argv`` and collect its output.

    The process is killed when ``timeout`` elapses (``RemoteTimeoutError``
    with the partial output) or when the caller is cancelled.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=dict(env) if env is not None else None,
        )
    except FileNotFoundError:
        raise RemoteUnreachableError(
            f"command not found: {argv[0]}", server_id=server_id
        ) from None

    stdout = _Capture(capture_bytes)
    stderr = _Capture(capture_bytes)
    pumps = asyncio.gather(_pump(proc.stdout, stdout), _pump(proc.stderr, stderr))
    try:
        await asyncio.wait_for(asyncio.shield(pumps), timeout=timeout)
        await proc.wait()
    except TimeoutError:
        logger.debug(
            "process_timed_out",
            extra={"process.pid": proc.pid, "remote.server_id": server_id},
        )
        await _kill(proc)
        raise RemoteTimeoutError(
            timeout, server_id=server_id, stdout=stdout.text(), stderr=stderr.text()
        ) from None
    except asyncio.CancelledError:
        await _kill(proc)
        raise
    finally:
        pumps.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await pumps

    if stdout.dropped or stderr.dropped:
        logger.debug(
            "process_output_capped",
            extra={
                "process.pid": proc.pid,
                "process.stdout_dropped": stdout.dropped,
                "process.stderr_dropped": stderr.dropped,
            },
        )

    assert proc.returncode is not None
    return CommandResult(
        exit_code=proc.returncode, stdout=stdout.text(), stderr=stderr.text()
    )
