"""Supabase CLI execution with the access token injected into the environment."""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import logging
import os
import shlex
import signal
from dataclasses import asdict, dataclass
from typing import Any, Callable, Literal, Protocol, Sequence

from .credentials import CredentialCache

logger = logging.getLogger(__name__)

ACCESS_TOKEN_ENV = "SUPABASE_ACCESS_TOKEN"
DEFAULT_EXECUTABLE = "supabase"
DEFAULT_TIMEOUT = 5 * 60.0
DEFAULT_MAX_OUTPUT_BYTES = 32 * 1024 * 1024
TIMEOUT_EXIT_CODE = 124
SPAWN_FAILURE_EXIT_CODE = 1
_VERSION_TIMEOUT = 30.0
_CHUNK_SIZE = 64 * 1024
_REAP_TIMEOUT = 5.0

StreamName = Literal["stdout", "stderr"]
OutputCallback = Callable[[str, StreamName], None]


@dataclass(frozen=True)
class CommandResult:
    success: bool
    stdout: str
    stderr: str
    exit_code: int
    command: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CliStatus:
    installed: bool
    version: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"installed": self.installed}
        if self.version is not None:
            data["version"] = self.version
        if self.error is not None:
            data["error"] = self.error
        return data


class OutputLimitExceeded(Exception):
    def __init__(self, stream: StreamName, limit: int) -> None:
        self.stream = stream
        self.limit = limit
        super().__init__(f"{stream} exceeded the {limit} byte output limit")


class OutputSink(Protocol):
    def feed(self, stream: StreamName, chunk: str) -> None: ...

    def text(self, stream: StreamName) -> str: ...


class BufferedOutput:
    """Accumulates both streams until the process exits, up to ``limit`` bytes each (``None`` = unbounded)."""

    def __init__(self, limit: int | None = DEFAULT_MAX_OUTPUT_BYTES) -> None:
        self._limit = limit
        self._chunks: dict[str, list[str]] = {"stdout": [], "stderr": []}
        self._sizes: dict[str, int] = {"stdout": 0, "stderr": 0}
        self._overflowed = False

    def feed(self, stream: StreamName, chunk: str) -> None:
        if self._overflowed:
            return
        self._sizes[stream] += len(chunk.encode("utf-8"))
        if self._limit is not None and self._sizes[stream] > self._limit:
            self._overflowed = True
            raise OutputLimitExceeded(stream, self._limit)
        self._chunks[stream].append(chunk)

    def text(self, stream: StreamName) -> str:
        return "".join(self._chunks[stream])


class StreamingOutput(BufferedOutput):
    """Hands every chunk to ``on_output`` as it arrives, then accumulates it."""

    def __init__(self, on_output: OutputCallback | None = None) -> None:
        super().__init__(limit=None)
        self._on_output = on_output

    def feed(self, stream: StreamName, chunk: str) -> None:
        if self._on_output is not None:
            self._on_output(chunk, stream)
        super().feed(stream, chunk)


class CommandRunner:
    """Runs the Supabase CLI in buffered or streaming mode.

    Both modes go through :meth:`_launch`, which owns environment injection,
    the optional deadline and process cleanup; they differ only in the output
    sink they pass in. Execution failures never raise: they come back as a
    :class:`CommandResult` with ``success=False``. A failure to obtain the
    access token does propagate, since it means the bridge is misconfigured.
    """

    def __init__(
        self,
        credentials: CredentialCache,
        executable: str = DEFAULT_EXECUTABLE,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
        default_timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._credentials = credentials
        self._executable = executable
        self._max_output_bytes = max_output_bytes
        self._default_timeout = default_timeout

    @property
    def executable(self) -> str:
        return self._executable

    def describe(self, args: Sequence[str]) -> str:
        return shlex.join([self._executable, *args])

    async def run(
        self,
        args: Sequence[str],
        cwd: str | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run to completion, capturing output; the process is killed after ``timeout`` seconds."""
        timeout = self._default_timeout if timeout is None else timeout
        env = await self._token_env()
        command = self.describe(args)
        logger.info(f"Running: {command}")
        logger.debug(f"Working directory: {cwd or os.getcwd()}")

        sink = BufferedOutput(self._max_output_bytes)
        try:
            exit_code = await self._launch(args, cwd, env, sink, timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Command timed out after {timeout}s: {command}")
            message = f"Command timed out after {timeout}s"
            stderr = sink.text("stderr").strip()
            return CommandResult(
                success=False,
                stdout=sink.text("stdout").strip(),
                stderr=f"{stderr}\n{message}" if stderr else message,
                exit_code=TIMEOUT_EXIT_CODE,
                command=command,
            )
        except OutputLimitExceeded as e:
            logger.warning(f"Command output too large, process killed: {command}")
            return CommandResult(
                success=False,
                stdout=sink.text("stdout").strip(),
                stderr=str(e),
                exit_code=SPAWN_FAILURE_EXIT_CODE,
                command=command,
            )
        except OSError as e:
            logger.warning(f"Failed to start {command}: {e}")
            return CommandResult(
                success=False,
                stdout="",
                stderr=str(e),
                exit_code=SPAWN_FAILURE_EXIT_CODE,
                command=command,
            )

        return self._normalize(command, exit_code, sink)

    async def run_streaming(
        self,
        args: Sequence[str],
        cwd: str | None = None,
        on_output: OutputCallback | None = None,
    ) -> CommandResult:
        """Run without a deadline, delivering output chunks to ``on_output`` as they arrive."""
        env = await self._token_env()
        command = self.describe(args)
        logger.info(f"Running (streaming): {command}")

        sink = StreamingOutput(on_output)
        try:
            exit_code = await self._launch(args, cwd, env, sink, None)
        except OSError as e:
            logger.warning(f"Failed to start {command}: {e}")
            return CommandResult(
                success=False,
                stdout="",
                stderr=str(e),
                exit_code=SPAWN_FAILURE_EXIT_CODE,
                command=command,
            )

        return self._normalize(command, exit_code, sink)

    async def check_installed(self) -> CliStatus:
        """Probe ``supabase --version``; no credentials are fetched or injected."""
        sink = BufferedOutput(self._max_output_bytes)
        try:
            exit_code = await self._launch(["--version"], None, dict(os.environ), sink, _VERSION_TIMEOUT)
        except asyncio.TimeoutError:
            return CliStatus(installed=False, error=f"Version check timed out after {_VERSION_TIMEOUT}s")
        except (OSError, OutputLimitExceeded) as e:
            return CliStatus(installed=False, error=str(e))

        if exit_code != 0:
            stderr = sink.text("stderr").strip()
            message = stderr or f"{self.describe(['--version'])} exited with code {exit_code}"
            return CliStatus(installed=False, error=message)
        return CliStatus(installed=True, version=sink.text("stdout").strip())

    async def _token_env(self) -> dict[str, str]:
        token = await self._credentials.get_access_token()
        return {**os.environ, ACCESS_TOKEN_ENV: token}

    def _normalize(self, command: str, exit_code: int, sink: OutputSink) -> CommandResult:
        stdout = sink.text("stdout").strip()
        stderr = sink.text("stderr").strip()
        if exit_code == 0:
            return CommandResult(success=True, stdout=stdout, stderr=stderr, exit_code=0, command=command)

        logger.info(f"Command exited with code {exit_code}: {command}")
        return CommandResult(
            success=False,
            stdout=stdout,
            stderr=stderr or f"Command failed with exit code {exit_code}: {command}",
            exit_code=exit_code,
            command=command,
        )

    async def _launch(
        self,
        args: Sequence[str],
        cwd: str | None,
        env: dict[str, str],
        sink: OutputSink,
        timeout: float | None,
    ) -> int:
        proc = await asyncio.create_subprocess_exec(
            self._executable,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            env=env,
            start_new_session=True,
        )

        async def pump(reader: asyncio.StreamReader, stream: StreamName) -> None:
            decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
            while True:
                data = await reader.read(_CHUNK_SIZE)
                text = decoder.decode(data, final=not data)
                if text:
                    sink.feed(stream, text)
                if not data:
                    return

        async def communicate() -> int:
            assert proc.stdout is not None and proc.stderr is not None
            pumps = [
                asyncio.ensure_future(pump(proc.stdout, "stdout")),
                asyncio.ensure_future(pump(proc.stderr, "stderr")),
            ]
            try:
                await asyncio.gather(*pumps)
            finally:
                # a failing pump must not leave its sibling reading
                for task in pumps:
                    task.cancel()
                await asyncio.gather(*pumps, return_exceptions=True)
            return await proc.wait()

        completed = False
        try:
            exit_code = await asyncio.wait_for(communicate(), timeout=timeout)
            completed = True
            return exit_code
        finally:
            if not completed:
                await _terminate(proc)


async def _terminate(proc: asyncio.subprocess.Process) -> None:
    """Kill the child's whole process group, then reap it within ``_REAP_TIMEOUT``.

    Descendants inherit the output pipes, and ``Process.wait`` does not return
    until those are closed, so killing only the direct child is not enough.
    """
    with contextlib.suppress(ProcessLookupError, PermissionError):
        if hasattr(os, "killpg"):
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    try:
        await asyncio.wait_for(proc.wait(), timeout=_REAP_TIMEOUT)
    except asyncio.TimeoutError:
        logger.warning(f"Process {proc.pid} still holds its pipes after kill; abandoning it")
