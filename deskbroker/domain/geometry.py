"""
Display geometry reconfiguration via cvt and xrandr.

A resize generates a timing mode for the requested size with ``cvt``,
registers it on the X display, attaches it to the display's output and
activates it. Any failing stage leaves the previous mode active.
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
import threading
import time
from dataclasses import dataclass

from deskbroker.config.models import BrokerSettings
from deskbroker.domain.errors import GeometryFailure

logger = logging.getLogger("desktop-broker")

MODELINE_PATTERN = re.compile(r'^\s*Modeline\s+"([^"]+)"\s+(.+)$', re.M)
CONNECTED_OUTPUT_PATTERN = re.compile(r'^(\S+)\s+connected', re.M)


@dataclass(frozen=True)
class ModeLine:
    """A named timing specification, as printed by cvt."""

    name: str
    timings: tuple[str, ...]


def parse_modeline(output: str) -> ModeLine:
    """
    Extract the modeline from cvt output.

    Raises:
        GeometryFailure: If no Modeline line is present
    """
    match = MODELINE_PATTERN.search(output)
    if not match:
        raise GeometryFailure("modeline", f"could not parse cvt output: {output.strip()!r}")
    return ModeLine(name=match.group(1), timings=tuple(match.group(2).split()))


def is_valid_size(width: object, height: object) -> bool:
    """True when both dimensions are positive integers."""
    for value in (width, height):
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            return False
    return True


class GeometryReconfigurer:
    """Applies arbitrary width/height to running X displays."""

    def __init__(
        self,
        cvt: str = "cvt",
        xrandr: str = "xrandr",
        output: str = "screen",
        refresh_rate: float = 60.0,
        command_timeout: float = 5.0,
    ) -> None:
        self.cvt = cvt
        self.xrandr = xrandr
        self.output = output
        self.refresh_rate = refresh_rate
        self.command_timeout = command_timeout

        self._lock = threading.Lock()
        # Per display: mode names created, and (output, mode) pairs attached
        self._registered: dict[int, set[str]] = {}
        self._attached: dict[int, set[tuple[str, str]]] = {}

    @classmethod
    def from_settings(cls, settings: BrokerSettings) -> GeometryReconfigurer:
        return cls(
            cvt=settings.programs.cvt,
            xrandr=settings.programs.xrandr,
            output=settings.geometry.output,
            refresh_rate=settings.geometry.refresh_rate,
            command_timeout=settings.geometry.command_timeout,
        )

    def generate_mode(self, width: int, height: int) -> ModeLine:
        """Compute a mode for width x height with cvt."""
        out = self._run("modeline", [self.cvt, str(width), str(height), f"{self.refresh_rate:g}"])
        return parse_modeline(out)

    def detect_output(self, display: int) -> str:
        """
        Name of the display's first connected output.

        Falls back to the configured output name when xrandr lists none.
        """
        try:
            out = self._run("query", [self.xrandr, "--query"], display)
        except GeometryFailure as e:
            logger.debug(f"Output detection failed on :{display}, using {self.output}: {e}")
            return self.output
        match = CONNECTED_OUTPUT_PATTERN.search(out)
        return match.group(1) if match else self.output

    def apply(self, display: int, width: object, height: object, grace: float = 0.0) -> bool:
        """
        Make width x height the active mode of a display.

        Args:
            display: X display number
            width: Requested width in pixels
            height: Requested height in pixels
            grace: Delay before the first attempt (display still starting)

        Returns:
            True on success or when the size is not a positive integer pair,
            False if any stage failed
        """
        if not is_valid_size(width, height):
            return True

        if grace > 0:
            time.sleep(grace)

        try:
            mode = self.generate_mode(width, height)
            output = self.detect_output(display)
            if not self._has(self._registered, display, mode.name):
                self._run("newmode", [self.xrandr, "--newmode", mode.name, *mode.timings], display)
                self._add(self._registered, display, mode.name)
            if not self._has(self._attached, display, (output, mode.name)):
                self._run("addmode", [self.xrandr, "--addmode", output, mode.name], display)
                self._add(self._attached, display, (output, mode.name))
            self._run("activate", [self.xrandr, "--output", output, "--mode", mode.name], display)
        except GeometryFailure as e:
            logger.error(f"Resize of :{display} to {width}x{height} failed: {e}")
            return False

        logger.info(f"Display :{display} resized to {width}x{height} ({mode.name})")
        return True

    def forget(self, display: int) -> None:
        """Drop mode tracking for a display that no longer exists."""
        with self._lock:
            self._registered.pop(display, None)
            self._attached.pop(display, None)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _has(self, table: dict, display: int, key: object) -> bool:
        with self._lock:
            return key in table.get(display, set())

    def _add(self, table: dict, display: int, key: object) -> None:
        with self._lock:
            table.setdefault(display, set()).add(key)

    def _run(self, stage: str, cmd: list[str], display: int | None = None) -> str:
        env = None
        if display is not None:
            env = {**os.environ, "DISPLAY": f":{display}"}
        try:
            result = subprocess.run(  # noqa: S603 - expected invocation of external binary
                cmd,
                env=env,
                capture_output=True,
                text=True,
                timeout=self.command_timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise GeometryFailure(stage, str(e)) from e
        if result.returncode != 0:
            raise GeometryFailure(stage, (result.stderr or "").strip() or f"exit code {result.returncode}")
        return result.stdout
