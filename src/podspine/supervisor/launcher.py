"""Process launcher and output drains for runtime invocations.

Every runtime command runs through :meth:`ProcessLauncher.execute_logged`.
It spawns the executable and immediately starts two drain threads, one
per output stream, that read lines until end-of-stream and forward them
to the log (stdout at debug, stderr at error) and optionally to a
receiver for commands whose output is parsed, such as status queries.

Drains are daemon threads. They never keep the interpreter alive, they
swallow read errors after logging them, and the spawning call does not
wait for them. "The process exited" is therefore decoupled from "all of
its output was read": output is diagnostic, and callers that parse it
wait explicitly with :meth:`LoggedProcess.wait_for_output`.

Example::

    launcher = ProcessLauncher()
    lines: list[str] = []
    proc = launcher.execute_logged(
        "status",
        ["podman", "ps", "--filter", "name=x", "--format", "{{.Status}}"],
        receiver=lines.append,
    )
    proc.wait()
    proc.wait_for_output(timeout=1.0)
"""

from __future__ import annotations

import subprocess
import threading
from collections.abc import Callable, Sequence
from typing import IO, Any

from podspine.core.errors import NonZeroExitError, SpawnError, format_command
from podspine.core.logging import SUPERVISOR_CONTEXT, ProcessLogContext, get_logger

logger = get_logger(__name__)

LineReceiver = Callable[[str], None]


def _ignore(line: str) -> None:
    pass


class LoggedProcess:
    """A spawned runtime process and the state of its output drains."""

    def __init__(
        self,
        label: str,
        command: Sequence[str],
        popen: subprocess.Popen[str],
        context: ProcessLogContext,
    ) -> None:
        self.label = label
        self.command = list(command)
        self.context = context
        self._popen = popen
        self._stdout_done = threading.Event()
        self._stderr_done = threading.Event()

    @property
    def pid(self) -> int:
        return self._popen.pid

    @property
    def exit_code(self) -> int | None:
        return self._popen.poll()

    def is_alive(self) -> bool:
        return self._popen.poll() is None

    def wait(self, timeout: float | None = None) -> int | None:
        """Wait for exit. Returns the exit code, or None if ``timeout`` expired.

        Once the process has exited its stdin pipe, if any, is closed.
        """
        try:
            exit_code = self._popen.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None
        self.close_stdin()
        return exit_code

    def close_stdin(self) -> None:
        """Close the stdin pipe of an interactive process."""
        stdin = self._popen.stdin
        if stdin is not None and not stdin.closed:
            stdin.close()

    def wait_for_output(self, timeout: float | None = None) -> bool:
        """Wait until both drains reached end-of-stream."""
        if not self._stdout_done.wait(timeout):
            return False
        return self._stderr_done.wait(timeout)

    def kill(self) -> None:
        """Kill the local runtime process (not the container)."""
        if self.is_alive():
            self._popen.kill()

    def __repr__(self) -> str:
        return (
            f"LoggedProcess(label={self.label!r}, pid={self.pid}, "
            f"exit_code={self.exit_code!r})"
        )


class ProcessLauncher:
    """Spawns runtime commands and supervises their output."""

    def __init__(self, drain_thread_prefix: str = "podspine-drain") -> None:
        self._thread_prefix = drain_thread_prefix

    def execute_logged(
        self,
        label: str,
        command: Sequence[str],
        receiver: LineReceiver | None = None,
        context: ProcessLogContext = SUPERVISOR_CONTEXT,
        interactive: bool = False,
    ) -> LoggedProcess:
        """Spawn ``command`` and start draining its output.

        ``interactive`` keeps a pipe open on the process's stdin, which
        ``run --interactive`` needs to keep the container's main process
        alive; other commands get ``/dev/null``.

        Raises:
            SpawnError: The executable is missing or could not be started.
        """
        argv = [str(part) for part in command]
        context.bind(logger).debug("process.exec", label=label, command=format_command(argv))

        try:
            popen = subprocess.Popen(
                argv,
                stdin=subprocess.PIPE if interactive else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
        except (OSError, ValueError) as exc:
            raise SpawnError(f"Could not start {label}", command=argv, cause=exc) from exc

        process_context = context.with_pid(popen.pid)
        process = LoggedProcess(label, argv, popen, process_context)

        self._start_drain(
            process,
            popen.stdout,
            "stdout",
            process._stdout_done,
            receiver or _ignore,
        )
        self._start_drain(
            process,
            popen.stderr,
            "stderr",
            process._stderr_done,
            None,
        )
        return process

    def run(
        self,
        label: str,
        command: Sequence[str],
        timeout: float | None = None,
        context: ProcessLogContext = SUPERVISOR_CONTEXT,
        check: bool = False,
        receiver: LineReceiver | None = None,
    ) -> int | None:
        """Spawn ``command`` and wait up to ``timeout`` seconds for it.

        Returns the exit code, or None if the timeout expired (the process
        is left running). With ``check=True`` a non-zero exit raises
        :class:`NonZeroExitError`.
        """
        process = self.execute_logged(label, command, receiver=receiver, context=context)
        log = process.context.bind(logger)
        log.debug("process.waiting", label=label, timeout=timeout)
        exit_code = process.wait(timeout)
        log.debug("process.status", label=label, exit_code=exit_code)
        if check and exit_code is not None and exit_code != 0:
            raise NonZeroExitError(process.command, exit_code)
        return exit_code

    # ------------------------------------------------------------------
    # Drains
    # ------------------------------------------------------------------

    def _start_drain(
        self,
        process: LoggedProcess,
        stream: IO[str] | None,
        stream_name: str,
        done: threading.Event,
        receiver: LineReceiver | None,
    ) -> None:
        if stream is None:
            done.set()
            return
        context = process.context.with_source(f"{process.label}: {stream_name}")
        thread = threading.Thread(
            target=_drain,
            args=(stream, context, done, receiver),
            name=f"{self._thread_prefix}-{process.pid}-{stream_name}",
            daemon=True,
        )
        thread.start()


def _drain(
    stream: IO[str],
    context: ProcessLogContext,
    done: threading.Event,
    receiver: LineReceiver | None,
) -> None:
    """Read ``stream`` to the end; stdout lines go to ``receiver``."""
    log: Any = context.bind(logger)
    is_stderr = receiver is None
    try:
        with stream:
            for raw in stream:
                line = raw.rstrip("\r\n")
                if is_stderr:
                    log.error("process.output", line=line)
                else:
                    log.debug("process.output", line=line)
                    receiver(line)
    except Exception as exc:
        if is_stderr:
            log.error("process.drain_failed", error=str(exc))
        else:
            log.debug("process.drain_failed", error=str(exc))
    finally:
        done.set()
