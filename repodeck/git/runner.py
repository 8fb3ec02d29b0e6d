"""Deadline-bounded subprocess execution for git commands."""

from __future__ import annotations

import asyncio
import contextlib
import os
import signal
import time
from collections.abc import Mapping

import structlog

from repodeck.exceptions import CommandTimeoutError, SpawnError
from repodeck.git.commands import describe
from repodeck.git.models import CommandResult, CommandSpec

logger = structlog.get_logger()

_DEFAULT_POLL_INTERVAL = 0.05
_DEFAULT_FLUSH_GRACE = 0.25
_DEFAULT_LOCALE = "C"
_READ_CHUNK = 64 * 1024

# Applied after caller overrides so a credential prompt can never stall a command.
_NON_INTERACTIVE_ENV = {
    "GIT_TERMINAL_PROMPT": "0",
    "GCM_INTERACTIVE": "never",
    # An askpass helper that answers at once instead of opening a dialog.
    "GIT_ASKPASS": "echo",
}
_BATCH_SSH_COMMAND = "ssh -o BatchMode=yes"


async def _drain(stream: asyncio.StreamReader | None, buffer: bytearray) -> None:
    if stream is None:
        return
    while chunk := await stream.read(_READ_CHUNK):
        buffer.extend(chunk)


class ProcessRunner:
    """Runs one command per call; calls share no mutable state."""

    def __init__(
        self,
        *,
        poll_interval: float = _DEFAULT_POLL_INTERVAL,
        flush_grace: float = _DEFAULT_FLUSH_GRACE,
        locale: str = _DEFAULT_LOCALE,
    ) -> None:
        self._poll_interval = poll_interval
        self._flush_grace = flush_grace
        self._locale = locale

    def build_env(self, overrides: Mapping[str, str] | None = None) -> dict[str, str]:
        """Process environment + caller overrides + forced non-interactive flags."""
        env = dict(os.environ)
        if overrides:
            env.update(overrides)
        env.update(_NON_INTERACTIVE_ENV)
        env.setdefault("GIT_SSH_COMMAND", _BATCH_SSH_COMMAND)
        # Error classification matches English messages.
        env["LC_ALL"] = self._locale
        env["LANG"] = self._locale
        env["LANGUAGE"] = self._locale
        return env

    async def run(self, spec: CommandSpec) -> CommandResult:
        """Run *spec* to completion or until its deadline.

        A non-zero exit is returned as a normal ``CommandResult``. Only a
        spawn failure (``SpawnError``) or a deadline overrun
        (``CommandTimeoutError``) raise.
        """
        command = describe(spec)
        if not spec.cwd.is_dir():
            raise SpawnError(command, f"working directory does not exist: {spec.cwd}")

        logger.debug(
            "git_exec", command=command, cwd=str(spec.cwd), deadline=spec.deadline
        )
        try:
            proc = await asyncio.create_subprocess_exec(
                spec.executable,
                *spec.args,
                cwd=spec.cwd,
                env=self.build_env(spec.env),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            logger.error("git_spawn_failed", command=command, error=str(e))
            raise SpawnError(command, e.strerror or str(e)) from e

        stdout = bytearray()
        stderr = bytearray()
        readers = [
            asyncio.create_task(_drain(proc.stdout, stdout)),
            asyncio.create_task(_drain(proc.stderr, stderr)),
        ]
        started = time.monotonic()
        try:
            while proc.returncode is None:
                remaining = spec.deadline - (time.monotonic() - started)
                if remaining <= 0:
                    await self._terminate(proc)
                    await self._collect(readers)
                    logger.warning(
                        "git_exec_timeout",
                        command=command,
                        cwd=str(spec.cwd),
                        deadline=spec.deadline,
                        captured_stderr=stderr.decode("utf-8", errors="replace")[-500:],
                    )
                    raise CommandTimeoutError(command, spec.deadline, spec.cwd)
                await asyncio.sleep(min(self._poll_interval, remaining))

            await self._collect(readers)
        finally:
            if proc.returncode is None:
                self._kill_group(proc)
            for reader in readers:
                reader.cancel()

        result = CommandResult(
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            exit_code=proc.returncode,
        )
        logger.debug(
            "git_exec_done",
            command=command,
            exit_code=result.exit_code,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return result

    async def _collect(self, readers: list[asyncio.Task[None]]) -> None:
        """Give the readers one grace period to hit EOF, then stop them."""
        _done, pending = await asyncio.wait(readers, timeout=self._flush_grace)
        for task in pending:
            task.cancel()
        await asyncio.gather(*readers, return_exceptions=True)

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        self._kill_group(proc)
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(proc.wait(), timeout=self._flush_grace)

    @staticmethod
    def _kill_group(proc: asyncio.subprocess.Process) -> None:
        with contextlib.suppress(ProcessLookupError, PermissionError):
            if hasattr(os, "killpg"):
                os.killpg(proc.pid, signal.SIGKILL)
            else:
                proc.kill()
