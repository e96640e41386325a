"""Fluent builder for fbi, the Linux framebuffer image viewer.

Collects fbi's command-line options in an ordered mapping, compiles them
into an argument list and launches the viewer, optionally showing the image
for a fixed number of seconds before terminating it.

Example::

    Fbi().with_autozoom().display_for(5).image("photo.jpg").display()
"""

import logging
import os
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from .launcher import (
    CommandResult,
    FbiError,
    ProcessLauncher,
    SubprocessLauncher,
    ViewerProcess,
    kill_by_name,
)

if TYPE_CHECKING:
    from .config import FbiviewConfig

logger = logging.getLogger(__name__)

DEFAULT_BINARY = "fbi"
DEFAULT_FRAME_BUFFER = "1"
DEFAULT_DEVICE = "/dev/fb0"
DEFAULT_DISPLAY_FOR = 10

# Options that cannot be set together; setting one evicts the other.
EXCLUSIVE_OPTIONS = {
    "v": "noverbose",
    "noverbose": "v",
}


class Fbi:
    """Builder for one fbi invocation.

    Every option method mutates this instance and returns it, so calls can
    be chained. The builder owns its option mapping; :attr:`options` hands
    out a copy.

    Args:
        binary: Name or path of the viewer executable.
        launcher: Starts and stops processes. Defaults to a
            SubprocessLauncher that elevates with ``sudo``.
        kill_by_name: Make :meth:`terminate` kill every process named
            ``binary`` instead of only the one this builder started.
        sleep: Called with the display duration before terminating.
            Defaults to time.sleep.
    """

    def __init__(
        self,
        binary: str = DEFAULT_BINARY,
        launcher: ProcessLauncher | None = None,
        kill_by_name: bool = False,
        sleep: Callable[[float], None] | None = None,
    ):
        self._options: dict[str, str] = {}
        self._target: str | None = None
        self._duration = DEFAULT_DISPLAY_FOR
        self._binary = binary
        self._launcher = launcher if launcher is not None else SubprocessLauncher()
        self._kill_by_name = kill_by_name
        self._sleep = sleep
        self._process: ViewerProcess | None = None

        (
            self.with_frame_buffer(DEFAULT_FRAME_BUFFER)
            .for_device(DEFAULT_DEVICE)
            .without_status_bar()
        )

    @classmethod
    def from_config(
        cls,
        config: "FbiviewConfig",
        launcher: ProcessLauncher | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> "Fbi":
        """Create a builder from loaded configuration.

        Args:
            config: Configuration from :func:`fbiview.config.load_config`.
            launcher: Overrides the launcher the config would build.
            sleep: Passed through to the builder.
        """
        if launcher is None:
            launcher = SubprocessLauncher(
                elevate=config.elevate,
                quiet=config.quiet,
                kill_timeout=config.kill_timeout,
            )
        viewer = cls(
            binary=config.binary,
            launcher=launcher,
            kill_by_name=config.kill_by_name,
            sleep=sleep,
        )
        viewer.with_frame_buffer(config.frame_buffer).for_device(config.device)
        viewer._set_duration(config.display_for)
        return viewer

    def _set(self, name: str, value: object = "") -> "Fbi":
        opposite = EXCLUSIVE_OPTIONS.get(name)
        if opposite is not None:
            self._options.pop(opposite, None)
        self._options[name] = str(value)
        return self

    def _unset(self, name: str) -> "Fbi":
        self._options.pop(name, None)
        return self

    def _set_duration(self, seconds: int) -> "Fbi":
        self._duration = seconds
        return self

    def with_frame_buffer(self, frame_buffer: object = DEFAULT_FRAME_BUFFER) -> "Fbi":
        """Select the console/frame buffer (``-T``). 1 is the local machine."""
        return self._set("T", frame_buffer)

    def for_device(self, device: str = DEFAULT_DEVICE) -> "Fbi":
        """Framebuffer device to draw on (``-d``)."""
        return self._set("d", device)

    def video_mode(self, mode: str) -> "Fbi":
        """Video mode (``-m``); must be listed in /etc/fb.modes."""
        return self._set("m", mode)

    def show_status_bar(self) -> "Fbi":
        """Show the status bar with image information (``-v``)."""
        return self._set("v")

    def without_status_bar(self) -> "Fbi":
        return self._set("noverbose")

    def enable_text_threading(self) -> "Fbi":
        """Show large images without vertical offset (``-P``).

        Space first scrolls down and only moves to the next image at the
        bottom of the page, which suits images of text pages.
        """
        return self._set("P")

    def without_text_threading(self) -> "Fbi":
        return self._unset("P")

    def display_for(self, seconds: int) -> "Fbi":
        """Advance after ``seconds`` (``-t``) and stop :meth:`display` then.

        Zero shows the image until something else terminates the viewer.
        """
        return self._set_duration(seconds)._set("t", seconds)

    def with_gamma_correction(self) -> "Fbi":
        return self._set("g")

    def without_gamma_correction(self) -> "Fbi":
        return self._unset("g")

    def scroll_steps(self, steps: int) -> "Fbi":
        """Scroll step in pixels (``-s``). fbi's default is 50."""
        return self._set("s", steps)

    def with_autozoom(self) -> "Fbi":
        """Pick a reasonable zoom factor for each image (``-a``)."""
        return self._set("a")

    def disable_autozoom(self) -> "Fbi":
        return self._unset("a")

    def auto_up(self) -> "Fbi":
        """Like autozoom, but only scale up."""
        return self._set("autoup")

    def no_auto_up(self) -> "Fbi":
        return self._unset("autoup")

    def auto_down(self) -> "Fbi":
        """Like autozoom, but only scale down."""
        return self._set("autodown")

    def no_auto_down(self) -> "Fbi":
        return self._unset("autodown")

    def in_random_order(self) -> "Fbi":
        return self._set("u")

    def in_order(self) -> "Fbi":
        return self._unset("u")

    def with_comments(self) -> "Fbi":
        """Show comment tags, if present, instead of the filename."""
        return self._set("comments")

    def without_comments(self) -> "Fbi":
        return self._unset("comments")

    def image(self, path: str | os.PathLike) -> "Fbi":
        """Set the image to display. Existence is not checked."""
        self._target = os.fspath(path)
        return self

    @property
    def options(self) -> dict[str, str]:
        return dict(self._options)

    @property
    def target(self) -> str | None:
        return self._target

    @property
    def duration(self) -> int:
        return self._duration

    @property
    def binary(self) -> str:
        return self._binary

    @property
    def launcher(self) -> ProcessLauncher:
        return self._launcher

    @property
    def last_process(self) -> ViewerProcess | None:
        return self._process

    def compile_options(self) -> str:
        """Compile the options into fbi's legacy option string.

        Names longer than one character become ``--name value `` (note the
        trailing space); single characters become ``-nvalue`` with nothing
        after them. The default builder gives ``-T1-d/dev/fb0--noverbose  ``.
        """
        compiled = ""
        for name, value in self._options.items():
            if len(name) > 1:
                compiled += f"--{name} {value} "
            else:
                compiled += f"-{name}{value}"
        return compiled

    def build_arguments(self) -> list[str]:
        """Compile the options into an argument list.

        Each option becomes ``-n`` or ``--name`` by the same length rule as
        :meth:`compile_options`, followed by its value when it has one.
        """
        arguments = []
        for name, value in self._options.items():
            arguments.append(f"--{name}" if len(name) > 1 else f"-{name}")
            if value:
                arguments.append(value)
        return arguments

    def command(self) -> list[str]:
        """Full viewer argv, without the launcher's elevation prefix.

        Raises:
            FbiError: If no image has been set.
        """
        if self._target is None:
            raise FbiError("No image set; call image() before display()")
        return [self._binary, *self.build_arguments(), self._target]

    def command_line(self) -> str:
        """Human-readable command in the legacy single-string shape."""
        parts = [*self._launcher.elevate, self._binary, self.compile_options()]
        if self._target is not None:
            parts.append(self._target)
        return " ".join(parts)

    def display(self, check: bool = False) -> ViewerProcess:
        """Launch the viewer.

        With a positive duration, block for that many seconds and then call
        :meth:`terminate`. Otherwise return straight away and leave the
        viewer running.

        Args:
            check: Raise CommandFailedError if the viewer (or, in by-name
                mode, ``killall``) reports a failure when terminated.

        Returns:
            Handle on the launched process.

        Raises:
            FbiError: If no image is set, or the viewer this builder started
                earlier is still running.
        """
        if self._process is not None and self._process.poll() is None:
            raise FbiError(
                f"Viewer pid {self._process.pid} is still running; "
                "call terminate() before displaying again"
            )
        self._process = self._launcher.start(self.command())

        if self._duration > 0:
            logger.debug("Displaying %s for %ss", self._target, self._duration)
            (self._sleep or time.sleep)(self._duration)
            result = self.terminate()
            if check:
                result.check()
        return self._process

    def terminate(self) -> CommandResult:
        """Stop the viewer.

        Stops the process started by :meth:`display`. In ``kill_by_name``
        mode, or when this builder has launched nothing, kills every process
        named after the binary instead.
        """
        if self._kill_by_name or self._process is None:
            return kill_by_name(self._launcher, self._binary)
        return self._process.terminate()
