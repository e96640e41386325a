"""Process launching for fbiview.

Starts the viewer as an argument vector (never through a shell), optionally
behind an elevation helper such as ``sudo``, and collects exit status and
stderr so callers can see why a launch or kill failed.
"""

import logging
import subprocess
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import IO

logger = logging.getLogger(__name__)

DEFAULT_ELEVATE = ("sudo",)
DEFAULT_KILL_TIMEOUT = 5.0
KILL = "kill"
KILLALL = "killall"


class FbiError(Exception):
    """Base exception for fbiview errors."""

    pass


class LaunchError(FbiError):
    """The viewer or the elevation helper could not be started."""

    pass


@dataclass
class CommandResult:
    """Outcome of a finished process.

    ``signaled`` is True when the process was stopped by us rather than
    exiting on its own; its (negative) return code is then not a failure.
    """

    args: list[str]
    returncode: int
    stderr: str = ""
    signaled: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 or self.signaled

    def check(self) -> "CommandResult":
        """Raise CommandFailedError if the process exited non-zero.

        Returns:
            self, so calls can be chained.
        """
        if not self.ok:
            raise CommandFailedError(self)
        return self


class CommandFailedError(FbiError):
    """A command exited with a non-zero status."""

    def __init__(self, result: CommandResult):
        self.result = result
        message = f"Command {' '.join(result.args)!r} exited with {result.returncode}"
        if result.stderr:
            message += f": {result.stderr.strip()}"
        super().__init__(message)


class ViewerProcess:
    """Handle on one launched viewer process.

    Wraps a ``subprocess.Popen`` so the builder can terminate exactly the
    process it started instead of every process with the same name.

    When the process runs behind an elevation helper it is owned by root,
    so signals are sent with ``<elevate> kill`` through ``launcher`` rather
    than from this process.
    """

    def __init__(
        self,
        popen: subprocess.Popen,
        args: list[str],
        kill_timeout: float,
        launcher: "ProcessLauncher | None" = None,
        stderr_file: IO[bytes] | None = None,
    ):
        self._popen = popen
        self.args = args
        self.kill_timeout = kill_timeout
        self.stderr = ""
        self._launcher = launcher
        self._stderr_file = stderr_file
        self._result: CommandResult | None = None

    @property
    def pid(self) -> int:
        return self._popen.pid

    @property
    def returncode(self) -> int | None:
        return self._popen.returncode

    def poll(self) -> int | None:
        return self._popen.poll()

    def wait(self, timeout: float | None = None) -> CommandResult:
        """Wait for the process to exit on its own and collect its status."""
        if self._result is not None:
            return self._result
        self._popen.wait(timeout=timeout)
        return self._collect(signaled=False)

    def terminate(self) -> CommandResult:
        """Stop the process and collect its exit status.

        Sends SIGTERM, waits up to ``kill_timeout`` seconds, then SIGKILL.
        Calling this on an already finished process only collects the status.

        Raises:
            LaunchError: If the process cannot be signalled.
        """
        if self._result is not None:
            return self._result

        signaled = self._popen.poll() is None
        if signaled:
            logger.debug("Terminating viewer pid %s", self.pid)
            self._signal("TERM")
            try:
                self._popen.wait(timeout=self.kill_timeout)
            except subprocess.TimeoutExpired:
                logger.warning(
                    "Viewer pid %s ignored SIGTERM for %ss, killing",
                    self.pid,
                    self.kill_timeout,
                )
                self._signal("KILL")
                self._popen.wait()
        else:
            self._popen.wait()

        return self._collect(signaled)

    def _signal(self, name: str) -> None:
        if self._launcher is not None and self._launcher.elevate:
            result = self._launcher.run([KILL, f"-{name}", str(self.pid)])
            # kill fails harmlessly if the process exited in the meantime
            if not result.ok and self._popen.poll() is None:
                raise LaunchError(
                    f"Cannot send SIG{name} to viewer pid {self.pid}: "
                    f"{' '.join(result.args)!r} exited with {result.returncode}"
                )
            return

        try:
            if name == "KILL":
                self._popen.kill()
            else:
                self._popen.terminate()
        except OSError as e:
            raise LaunchError(
                f"Cannot send SIG{name} to viewer pid {self.pid}: {e}"
            ) from e

    def _collect(self, signaled: bool) -> CommandResult:
        if self._stderr_file is not None:
            self._stderr_file.seek(0)
            self.stderr = _decode(self._stderr_file.read())
            self._stderr_file.close()
            self._stderr_file = None

        self._result = CommandResult(
            args=self.args,
            returncode=self._popen.returncode,
            stderr=self.stderr,
            signaled=signaled,
        )
        if not self._result.ok:
            logger.warning(
                "Viewer pid %s exited with %s", self.pid, self._result.returncode
            )
        return self._result


class ProcessLauncher(ABC):
    """Interface for starting and running commands.

    Subclasses decide how (and whether) processes are really executed.
    """

    elevate: tuple[str, ...] = ()

    @abstractmethod
    def start(self, args: list[str]) -> ViewerProcess:
        """Start ``args`` in the background and return a handle."""

    @abstractmethod
    def run(self, args: list[str]) -> CommandResult:
        """Run ``args`` to completion and return the result."""

    def _elevated(self, args: list[str]) -> list[str]:
        return [*self.elevate, *args]


class SubprocessLauncher(ProcessLauncher):
    """Launcher backed by the subprocess module.

    Args:
        elevate: Command prefix that grants access to the framebuffer device.
            Pass an empty sequence to run the viewer directly.
        quiet: Discard stdout and stderr, like ``> /dev/null 2>&1``. When
            False, stderr is captured and attached to results.
        kill_timeout: Seconds to wait after SIGTERM before SIGKILL.
    """

    def __init__(
        self,
        elevate: tuple[str, ...] | list[str] = DEFAULT_ELEVATE,
        quiet: bool = True,
        kill_timeout: float = DEFAULT_KILL_TIMEOUT,
    ):
        self.elevate = tuple(elevate)
        self.quiet = quiet
        self.kill_timeout = kill_timeout

    def start(self, args: list[str]) -> ViewerProcess:
        full_args = self._elevated(args)
        logger.info("Starting viewer: %s", " ".join(full_args))

        # A long-running viewer may never be waited on, so its stderr goes
        # to a file instead of a pipe that could fill up and block it.
        stderr_file = None if self.quiet else tempfile.TemporaryFile()
        try:
            popen = subprocess.Popen(
                full_args,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL if stderr_file is None else stderr_file,
            )
        except OSError as e:
            if stderr_file is not None:
                stderr_file.close()
            raise LaunchError(f"Cannot start {full_args[0]}: {e}") from e
        return ViewerProcess(
            popen,
            full_args,
            self.kill_timeout,
            launcher=self,
            stderr_file=stderr_file,
        )

    def run(self, args: list[str]) -> CommandResult:
        full_args = self._elevated(args)
        logger.debug("Running: %s", " ".join(full_args))
        try:
            completed = subprocess.run(
                full_args,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL if self.quiet else subprocess.PIPE,
                check=False,
            )
        except OSError as e:
            raise LaunchError(f"Cannot run {full_args[0]}: {e}") from e

        result = CommandResult(
            args=full_args,
            returncode=completed.returncode,
            stderr=_decode(completed.stderr),
        )
        if not result.ok:
            logger.warning(
                "%s exited with %s", " ".join(full_args), result.returncode
            )
        return result


@dataclass
class _RecordedPopen:
    """Stand-in for ``subprocess.Popen`` used by RecordingLauncher."""

    args: list[str]
    pid: int
    returncode: int | None = None
    signals: list[str] = field(default_factory=list)

    def poll(self) -> int | None:
        return self.returncode

    def wait(self, timeout: float | None = None) -> int | None:
        return self.returncode

    def terminate(self) -> None:
        self.signals.append("TERM")
        self.returncode = -15

    def kill(self) -> None:
        self.signals.append("KILL")
        self.returncode = -9


class RecordingLauncher(ProcessLauncher):
    """Launcher that records invocations instead of executing them.

    Useful as a test double: ``started`` holds every argv passed to
    :meth:`start` and ``ran`` every argv passed to :meth:`run`, both with the
    elevation prefix applied. A ``kill -SIG <pid>`` passed to :meth:`run`
    is delivered to the matching recorded process.

    Args:
        elevate: Prefix applied to every recorded argv.
        returncode: Exit status reported by :meth:`run`.
        exit_status: If set, started viewers behave as if they had already
            exited with this status.
    """

    def __init__(
        self,
        elevate: tuple[str, ...] | list[str] = DEFAULT_ELEVATE,
        returncode: int = 0,
        exit_status: int | None = None,
    ):
        self.elevate = tuple(elevate)
        self.returncode = returncode
        self.exit_status = exit_status
        self.started: list[list[str]] = []
        self.ran: list[list[str]] = []
        self.processes: list[ViewerProcess] = []

    def start(self, args: list[str]) -> ViewerProcess:
        full_args = self._elevated(args)
        self.started.append(full_args)
        popen = _RecordedPopen(
            args=full_args,
            pid=1000 + len(self.started),
            returncode=self.exit_status,
        )
        process = ViewerProcess(
            popen, full_args, DEFAULT_KILL_TIMEOUT, launcher=self  # type: ignore[arg-type]
        )
        self.processes.append(process)
        return process

    def run(self, args: list[str]) -> CommandResult:
        full_args = self._elevated(args)
        self.ran.append(full_args)
        if args[0] == KILL and self.returncode == 0:
            self._deliver(args[1], args[2])
        return CommandResult(args=full_args, returncode=self.returncode)

    def _deliver(self, signal_flag: str, pid: str) -> None:
        for process in self.processes:
            popen = process._popen
            if str(popen.pid) == pid and popen.poll() is None:
                if signal_flag == "-KILL":
                    popen.kill()
                else:
                    popen.terminate()


def kill_by_name(launcher: ProcessLauncher, binary: str) -> CommandResult:
    """Kill every process named ``binary`` on the host.

    This is the blunt compatibility behavior: it does not know which process
    a given builder started.
    """
    logger.info("Killing all %s processes", binary)
    return launcher.run([KILLALL, binary])


def _decode(stream: bytes | str | None) -> str:
    if stream is None:
        return ""
    if isinstance(stream, bytes):
        return stream.decode("utf-8", errors="replace")
    return stream
