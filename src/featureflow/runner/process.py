"""External command execution.

Runs a command as an async subprocess with its arguments passed as
discrete argv tokens (never through a shell), captures stdout and stderr
separately, and reports the exit status. Feature text typed by users ends
up inside agent prompts, so no argument is ever interpreted by a shell.

The child inherits the full environment so that the coding agent and the
gh CLI resolve their own credentials. No timeout is imposed; the command
runs until it exits.
"""

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional, Sequence

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 65536


class ProcessDispatchError(Exception):
    """Raised when a command cannot be launched at all.

    Covers a missing executable, a non-executable file, and an invalid
    working directory. No output exists in this case.

    Attributes:
        command: The command that failed to launch.
        original_error: The underlying OSError.
    """

    def __init__(self, command: str, original_error: OSError):
        self.command = command
        self.original_error = original_error
        super().__init__(f"Failed to start {command}: {original_error}")


@dataclass
class ProcessResult:
    """Result of a completed command.

    Attributes:
        command: The executed command.
        exit_code: Process exit code.
        stdout: Captured standard output.
        stderr: Captured standard error.
        duration_seconds: Wall-clock execution time.
    """

    command: str
    exit_code: int
    stdout: str
    stderr: str
    duration_seconds: float

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def combined_output(self) -> str:
        """stdout, a newline, then stderr; trimmed for parsing."""
        return f"{self.stdout}\n{self.stderr}".strip()


class ProcessRunner:
    """Runs external commands to completion."""

    async def run(
        self,
        command: str,
        args: Sequence[str],
        cwd: Optional[str] = None,
    ) -> ProcessResult:
        """Execute ``command`` with ``args`` in ``cwd``.

        Args:
            command: Executable name or path, resolved through PATH.
            args: Arguments, each passed as its own argv entry.
            cwd: Working directory; None keeps the service's own.

        Returns:
            ProcessResult with exit code and captured output.

        Raises:
            ProcessDispatchError: If the process could not be started.
        """
        start_time = time.monotonic()

        try:
            process = await self._start_process(command, args, cwd)
        except OSError as exc:
            logger.error(
                "Failed to start %s: %s",
                command,
                exc,
                extra={"command": command, "cwd": cwd},
            )
            raise ProcessDispatchError(command, exc) from exc

        stdout, stderr = await self._collect_output(command, process)
        exit_code = process.returncode if process.returncode is not None else 0
        duration = time.monotonic() - start_time

        return self._build_result(command, exit_code, stdout, stderr, duration)

    async def _start_process(
        self,
        command: str,
        args: Sequence[str],
        cwd: Optional[str],
    ) -> asyncio.subprocess.Process:
        logger.info(
            "Spawning %s",
            command,
            extra={"command": command, "cwd": cwd, "arg_count": len(args)},
        )
        return await asyncio.create_subprocess_exec(
            command,
            *args,
            cwd=cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

    async def _collect_output(
        self,
        command: str,
        process: asyncio.subprocess.Process,
    ) -> tuple:
        """Read stdout and stderr concurrently, then wait for exit.

        Streams are read in fixed-size chunks rather than by line, so a
        single very long line is captured whole. If reading fails or is
        cancelled the child is killed and reaped before the error
        propagates.

        Returns:
            Tuple of (stdout_text, stderr_text).
        """
        stdout_chunks: List[bytes] = []
        stderr_chunks: List[bytes] = []

        async def drain(stream, chunks: List[bytes], stream_name: str) -> None:
            async for chunk in self._read_stream(stream):
                chunks.append(chunk)
                logger.debug("%s %s: read %d bytes", command, stream_name, len(chunk))

        try:
            await asyncio.gather(
                drain(process.stdout, stdout_chunks, "stdout"),
                drain(process.stderr, stderr_chunks, "stderr"),
            )
            await process.wait()
        except BaseException:
            if process.returncode is None:
                logger.warning("Killing %s after output capture failed", command)
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()
            raise

        return self._decode(stdout_chunks), self._decode(stderr_chunks)

    async def _read_stream(
        self, stream: Optional[asyncio.StreamReader]
    ) -> AsyncIterator[bytes]:
        """Yield raw chunks from a subprocess stream until EOF."""
        if stream is None:
            return

        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            yield chunk

    @staticmethod
    def _decode(chunks: List[bytes]) -> str:
        # Decoded as a whole so multi-byte characters split across chunks survive
        text = b"".join(chunks).decode("utf-8", errors="replace")
        if text.endswith("\n"):
            text = text[:-1]
        return text

    def _build_result(
        self,
        command: str,
        exit_code: int,
        stdout: str,
        stderr: str,
        duration: float,
    ) -> ProcessResult:
        if exit_code == 0:
            logger.info("%s finished in %.1fs", command, duration)
        else:
            logger.warning(
                "%s exited with code %d in %.1fs",
                command,
                exit_code,
                duration,
            )

        return ProcessResult(
            command=command,
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            duration_seconds=duration,
        )
