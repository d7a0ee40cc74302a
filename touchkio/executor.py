"""External command execution for TouchKio.

Every OS interaction (sysfs writes through sudo, desktop power commands,
pactl, dbus-send, apt) goes through this module. Failures are returned as
values on ``CommandResult`` rather than raised, and nothing is retried: the
caller decides whether a failure means "capability absent" or "try again on
the next tick".
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import re
import shutil
import subprocess  # nosec B404 - kiosk hardware control relies on CLI calls
from collections.abc import Callable, Sequence
from dataclasses import dataclass

_LOGGER = logging.getLogger("touchkio.executor")

_PROGRESS_RE = re.compile(r"(\d{1,3})%")
_CHUNK_SIZE = 4096

OutputCallback = Callable[[str | None, str | None], None]
ProgressCallback = Callable[[int | None, int | None], None]


@dataclass(slots=True)
class CommandResult:
    """Outcome of a finished command.

    ``ok`` is False when the process exited non-zero, wrote anything to
    stderr (unless the caller opted out), or could not be started at all.
    """

    ok: bool
    output: str = ""
    error: str = ""
    returncode: int | None = None

    @property
    def value(self) -> str | None:
        return self.output if self.ok else None


def _runtime_env() -> dict[str, str]:
    env = os.environ.copy()
    env.setdefault("XDG_RUNTIME_DIR", f"/run/user/{os.getuid()}")
    return env


def _clean(data: bytes | str | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        data = data.decode("utf-8", errors="ignore")
    return data.replace("\0", "").strip()


def _describe(cmd: str, args: Sequence[str]) -> str:
    return " ".join([cmd, *args])


def _finish(
    cmd: str,
    args: Sequence[str],
    returncode: int | None,
    stdout: bytes | str | None,
    stderr: bytes | str | None,
    stderr_fails: bool,
    mode: str,
) -> CommandResult:
    output = _clean(stdout)
    error = _clean(stderr)
    if returncode != 0 or (stderr_fails and error):
        _LOGGER.error("[exec] Execute %s: '%s' --> %s (%s)", mode, _describe(cmd, args), error, returncode)
        return CommandResult(ok=False, output=output, error=error or f"exit code {returncode}", returncode=returncode)
    return CommandResult(ok=True, output=output, error=error, returncode=returncode)


def run_sync(
    cmd: str,
    args: Sequence[str] = (),
    *,
    input_data: str | None = None,
    timeout: float | None = 30.0,
    stderr_fails: bool = True,
) -> CommandResult:
    """Run a command to completion and capture its output.

    Args:
        cmd: Executable name or path.
        args: Arguments passed verbatim (no shell interpretation).
        input_data: Optional text written to the process stdin.
        timeout: Seconds before the process is killed and reported as failed.
        stderr_fails: Treat any stderr output as failure even on exit code 0.

    Returns:
        CommandResult with NUL-free, trimmed stdout/stderr.
    """
    _LOGGER.debug("[exec] run_sync(%s)", _describe(cmd, args))
    try:
        completed = subprocess.run(  # nosec B603 - argument vector, no shell
            [cmd, *args],
            input=input_data,
            capture_output=True,
            text=True,
            check=False,
            timeout=timeout,
            env=_runtime_env(),
        )
    except (OSError, subprocess.SubprocessError) as exc:
        _LOGGER.error("[exec] Execute Sync: '%s' --> %s", _describe(cmd, args), exc)
        return CommandResult(ok=False, error=str(exc))
    return _finish(cmd, args, completed.returncode, completed.stdout, completed.stderr, stderr_fails, "Sync")


async def run_async(
    cmd: str,
    args: Sequence[str] = (),
    *,
    input_data: str | bytes | None = None,
    on_complete: Callable[[CommandResult], None] | None = None,
    stderr_fails: bool = True,
) -> CommandResult:
    """Run a command without blocking the event loop.

    ``input_data`` is piped to stdin and the pipe closed, which is how raw
    values are written through ``sudo tee``. ``on_complete`` receives the same
    result that is returned.
    """
    _LOGGER.debug("[exec] run_async(%s)", _describe(cmd, args))
    try:
        proc = await asyncio.create_subprocess_exec(
            cmd,
            *args,
            stdin=asyncio.subprocess.PIPE if input_data is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=_runtime_env(),
        )
    except OSError as exc:
        _LOGGER.error("[exec] Execute Async: '%s' --> %s", _describe(cmd, args), exc)
        result = CommandResult(ok=False, error=str(exc))
    else:
        payload = input_data.encode("utf-8") if isinstance(input_data, str) else input_data
        stdout, stderr = await proc.communicate(payload)
        result = _finish(cmd, args, proc.returncode, stdout, stderr, stderr_fails, "Async")
    if on_complete is not None:
        on_complete(result)
    return result


class CommandStream:
    """Long-lived process whose output is delivered chunk by chunk.

    The stream never finishes on its own; the owner calls ``stop()``.
    Stdout chunks arrive as ``callback(text, None)`` and stderr chunks as
    ``callback(None, text)``.
    """

    def __init__(
        self,
        cmd: str,
        args: Sequence[str],
        callback: OutputCallback,
        logger: logging.Logger | None = None,
    ) -> None:
        self.cmd = cmd
        self.args = list(args)
        self._callback = callback
        self._logger = logger or _LOGGER
        self._proc: asyncio.subprocess.Process | None = None
        self._readers: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    async def start(self) -> bool:
        if self.running:
            return True
        self._logger.debug("[exec] run_stream(%s)", _describe(self.cmd, self.args))
        try:
            self._proc = await asyncio.create_subprocess_exec(
                self.cmd,
                *self.args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=_runtime_env(),
            )
        except OSError as exc:
            self._logger.error("[exec] Failed to start '%s': %s", _describe(self.cmd, self.args), exc)
            return False
        assert self._proc.stdout is not None and self._proc.stderr is not None
        self._readers = [
            asyncio.create_task(self._pump(self._proc.stdout, is_error=False)),
            asyncio.create_task(self._pump(self._proc.stderr, is_error=True)),
        ]
        return True

    async def _pump(self, reader: asyncio.StreamReader, *, is_error: bool) -> None:
        while True:
            data = await reader.read(_CHUNK_SIZE)
            if not data:
                return
            text = _clean(data)
            if not text:
                continue
            try:
                if is_error:
                    self._callback(None, text)
                else:
                    self._callback(text, None)
            except Exception as exc:
                self._logger.error(
                    "[exec] Stream callback failed for '%s': %s", self.cmd, exc, exc_info=True
                )

    async def wait(self) -> int | None:
        if self._proc is None:
            return None
        return await self._proc.wait()

    async def stop(self) -> None:
        proc = self._proc
        if proc is not None and proc.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                proc.terminate()
            try:
                await asyncio.wait_for(proc.wait(), timeout=2)
            except asyncio.TimeoutError:
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                await proc.wait()
        for task in self._readers:
            task.cancel()
        for task in self._readers:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._readers = []
        self._proc = None


async def run_stream(cmd: str, args: Sequence[str], callback: OutputCallback) -> CommandStream:
    """Spawn a streaming command and return its handle (already started)."""
    stream = CommandStream(cmd, args, callback)
    await stream.start()
    return stream


def parse_progress(line: str, current: int) -> int | None:
    """Return the new progress floor (tens) if ``line`` advances it, else None."""
    matches = [int(value) for value in _PROGRESS_RE.findall(line)]
    if not matches:
        return None
    percent = (max(matches) // 10) * 10
    if percent > 10 and percent > current:
        return percent
    return None


async def run_script(cmd: str, args: Sequence[str], on_progress: ProgressCallback) -> int | None:
    """Run an install/update script and report its progress.

    Progress is scraped from ``NN%`` tokens on stderr, floored to tens and
    reported ten points behind until the script exits successfully, at which
    point 100 is reported. A failing script reports ``(None, returncode)``.
    """
    _LOGGER.debug("[exec] run_script(%s)", _describe(cmd, args))
    progress = 1
    on_progress(progress, None)
    try:
        proc = await asyncio.create_subprocess_exec(
            cmd,
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=_runtime_env(),
        )
    except OSError as exc:
        _LOGGER.error("[exec] Failed to start script '%s': %s", cmd, exc)
        on_progress(None, -1)
        return None
    assert proc.stdout is not None and proc.stderr is not None

    async def _stdout() -> None:
        async for raw in proc.stdout:  # type: ignore[union-attr]
            line = _clean(raw)
            if line:
                _LOGGER.info("[script] %s", line)

    async def _stderr() -> None:
        nonlocal progress
        async for raw in proc.stderr:  # type: ignore[union-attr]
            line = _clean(raw)
            if not line:
                continue
            advanced = parse_progress(line, progress)
            if advanced is not None:
                progress = advanced
                on_progress(progress - 10, None)

    await asyncio.gather(_stdout(), _stderr())
    returncode = await proc.wait()
    if returncode != 0:
        _LOGGER.error("[script] Script exited with error code (%s)", returncode)
        on_progress(None, returncode)
    else:
        _LOGGER.info("[script] Script exited successfully")
        on_progress(100, None)
    return returncode


def command_exists(name: str) -> bool:
    return shutil.which(name) is not None


def _quiet_success(argv: list[str]) -> bool:
    try:
        completed = subprocess.run(  # nosec B603 - argument vector, no shell
            argv,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=False,
            timeout=10,
            env=_runtime_env(),
        )
    except (OSError, subprocess.SubprocessError):
        return False
    return completed.returncode == 0


def sudo_rights() -> bool:
    """True when sudo works without a password prompt."""
    return _quiet_success(["sudo", "-n", "true"])


def service_runs(name: str) -> bool:
    """True when the systemd user service ``name`` is active."""
    return _quiet_success(["systemctl", "--user", "is-active", name])


def process_runs(name: str) -> bool:
    return _quiet_success(["pidof", name])
