"""
System-wide CPU utilization probes.

A probe is any zero-argument callable returning the aggregate CPU usage in
percent, or raising ProbeError. Two implementations:

  - CommandUsageProbe: shells out to the platform's own monitor tool once per
    call and scrapes its text output (top on macOS/Linux, wmic on Windows).
  - PsutilUsageProbe: asks psutil directly, no external process.

Probes never retry and never sleep; retrying is the monitor's next tick.
"""
from __future__ import annotations

import subprocess
import sys
from dataclasses import dataclass

import psutil

# =================== PLATFORM COMMANDS ===================
PROBE_COMMANDS = {
    "darwin": ["top", "-l", "1", "-n", "0", "-stats", "cpu"],
    "linux": ["top", "-bn", "1"],
    "win32": ["wmic", "cpu", "get", "LoadPercentage"],
}
# =========================================================


class ProbeError(Exception):
    """Base class for a failed utilization query."""


class ProbeUnavailableError(ProbeError):
    """The external command is missing, could not run, or exited non-zero."""

    def __init__(self, detail):
        super().__init__(f"command failed: {detail}")


class ProbeParseError(ProbeError):
    """The command ran but its output did not have the expected layout."""

    def __init__(self, detail):
        super().__init__(f"parse failed: {detail}")


class UnsupportedPlatformError(ProbeError):
    def __init__(self, platform):
        super().__init__(f"unsupported operating system: {platform}")
        self.platform = platform


@dataclass(frozen=True)
class UtilizationSample:
    usage: float | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


# ---------- Parsers (pure, fixture-testable) ----------
def _percent(token: str) -> float:
    return float(token.rstrip("%"))


def parse_macos_top(text: str) -> float:
    """
    Sum user and sys from the "CPU usage" line of `top -l 1`:
      CPU usage: 12.3% user, 4.5% sys, 83.2% idle   ->  16.8
    """
    for line in text.splitlines():
        if "CPU usage" not in line:
            continue
        fields = line.split()
        if len(fields) < 5:
            raise ProbeParseError(f"unexpected top line: {line.strip()!r}")
        try:
            return _percent(fields[2]) + _percent(fields[4])
        except ValueError:
            raise ProbeParseError(f"unexpected top line: {line.strip()!r}") from None
    raise ProbeParseError("no 'CPU usage' line in top output")


def parse_linux_top(text: str) -> float:
    """
    Usage from the "%Cpu(s)" summary line of `top -bn 1`:
      %Cpu(s): 23.4 us,  1.2 sy, ...   ->  23.4
    """
    for line in text.splitlines():
        if "%Cpu(s)" not in line:
            continue
        # top glues the value to the label once it reaches 100.0
        fields = line.split("%Cpu(s)", 1)[1].lstrip(":").split()
        if not fields:
            continue
        try:
            return float(fields[0])
        except ValueError:
            continue
    raise ProbeParseError("no usable '%Cpu(s)' line in top output")


def parse_windows_wmic(text: str) -> float:
    """
    Value of `wmic cpu get LoadPercentage`: header line, then the value. wmic
    sometimes emits a blank line in between, so the value may sit one line lower.
    """
    lines = text.split("\n")
    if len(lines) < 2:
        raise ProbeParseError("unexpected wmic output format")

    value = lines[1].strip()
    if not value and len(lines) > 2:
        value = lines[2].strip()
    try:
        return float(value)
    except ValueError:
        raise ProbeParseError(f"bad LoadPercentage value {value!r}") from None


PARSERS = {
    "darwin": parse_macos_top,
    "linux": parse_linux_top,
    "win32": parse_windows_wmic,
}


def platform_key(platform: str) -> str | None:
    if platform.startswith("linux"):
        return "linux"
    if platform in PARSERS:
        return platform
    return None


# ---------- Probes ----------
def run_probe_command(argv) -> str:
    """Run one external query and return its stdout. Blocks as long as the command does."""
    try:
        result = subprocess.run(argv, capture_output=True, text=True, check=True)
    except subprocess.CalledProcessError as e:
        raise ProbeUnavailableError(f"{argv[0]} exited with status {e.returncode}") from e
    except OSError as e:
        raise ProbeUnavailableError(f"{argv[0]}: {e}") from e
    return result.stdout


class CommandUsageProbe:
    """Scrapes the platform monitor tool; one subprocess per call."""

    def __init__(self, platform: str | None = None):
        self.platform = platform or sys.platform
        self.key = platform_key(self.platform)

    def __call__(self) -> float:
        if self.key is None:
            raise UnsupportedPlatformError(self.platform)
        output = run_probe_command(PROBE_COMMANDS[self.key])
        return PARSERS[self.key](output)

    def __repr__(self):
        return f"CommandUsageProbe(platform={self.platform!r})"


class PsutilUsageProbe:
    """Native counters via psutil; usage since the previous call."""

    def __init__(self):
        # First call only establishes the baseline and always reports 0.0.
        psutil.cpu_percent(interval=None)

    def __call__(self) -> float:
        try:
            return float(psutil.cpu_percent(interval=None))
        except (OSError, psutil.Error) as e:
            raise ProbeUnavailableError(f"psutil: {e}") from e


PROBES = {
    "command": CommandUsageProbe,
    "psutil": PsutilUsageProbe,
}


def get_usage_probe(kind: str = "command"):
    try:
        return PROBES[kind]()
    except KeyError:
        raise ValueError(f"unknown probe {kind!r}; choose from {sorted(PROBES)}") from None


def sample_usage(probe) -> UtilizationSample:
    """Query once; a ProbeError becomes the sample's error instead of propagating."""
    try:
        return UtilizationSample(usage=probe())
    except ProbeError as e:
        return UtilizationSample(error=f"failed to get CPU usage: {e}")
