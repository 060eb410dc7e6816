"""Tests for the platform utilization probes and their parsers."""

import subprocess

import psutil
import pytest

import cpu_usage_probe
from cpu_usage_probe import (
    CommandUsageProbe,
    ProbeParseError,
    ProbeUnavailableError,
    PsutilUsageProbe,
    UnsupportedPlatformError,
    get_usage_probe,
    parse_linux_top,
    parse_macos_top,
    parse_windows_wmic,
    run_probe_command,
    sample_usage,
)

MACOS_TOP = """Processes: 512 total, 3 running, 509 sleeping, 2780 threads
2024/05/01 10:00:00
Load Avg: 2.10, 2.35, 2.40
CPU usage: 12.3% user, 4.5% sys, 83.2% idle
SharedLibs: 412M resident, 72M data, 31M linkedit.
"""

LINUX_TOP = """top - 10:00:00 up 3 days,  2:11,  1 user,  load average: 0.52, 0.58, 0.59
Tasks: 251 total,   1 running, 250 sleeping,   0 stopped,   0 zombie
%Cpu(s): 23.4 us,  2.1 sy,  0.0 ni, 74.1 id,  0.3 wa,  0.0 hi,  0.1 si,  0.0 st
MiB Mem :  15928.3 total,   2101.5 free,   6012.4 used,   7814.4 buff/cache
"""


class TestParsers:

    def test_macos_sums_user_and_sys(self):
        assert parse_macos_top(MACOS_TOP) == pytest.approx(16.8)

    def test_macos_fixture_line(self):
        assert parse_macos_top("CPU usage: 12.3% user, 4.5% sys, 83.2% idle") == pytest.approx(16.8)

    def test_macos_missing_line(self):
        with pytest.raises(ProbeParseError, match="parse failed"):
            parse_macos_top("Processes: 512 total\n")

    def test_macos_garbled_values(self):
        with pytest.raises(ProbeParseError):
            parse_macos_top("CPU usage: n/a user, n/a sys, 0% idle")

    def test_macos_short_line(self):
        with pytest.raises(ProbeParseError):
            parse_macos_top("CPU usage: 12.3%")

    def test_linux_first_value(self):
        assert parse_linux_top(LINUX_TOP) == pytest.approx(23.4)

    def test_linux_fixture_line(self):
        assert parse_linux_top("%Cpu(s): 23.4 us, ...") == pytest.approx(23.4)

    def test_linux_value_glued_to_label(self):
        assert parse_linux_top("%Cpu(s):100.0 us,  0.0 sy") == pytest.approx(100.0)

    def test_linux_missing_line(self):
        with pytest.raises(ProbeParseError, match="parse failed"):
            parse_linux_top("Tasks: 251 total\n")

    def test_linux_unparsable_value(self):
        with pytest.raises(ProbeParseError):
            parse_linux_top("%Cpu(s): us, sy")

    def test_windows_value_on_second_line(self):
        assert parse_windows_wmic("LoadPercentage\n42\n") == 42.0

    def test_windows_skips_blank_line(self):
        text = "\n".join(["LoadPercentage", "", "37", ""])
        assert parse_windows_wmic(text) == 37.0

    def test_windows_crlf_output(self):
        assert parse_windows_wmic("LoadPercentage  \r\r\n7  \r\r\n\r\r\n") == 7.0

    def test_windows_header_only(self):
        with pytest.raises(ProbeParseError, match="unexpected wmic output format"):
            parse_windows_wmic("LoadPercentage")

    def test_windows_non_numeric(self):
        with pytest.raises(ProbeParseError):
            parse_windows_wmic("LoadPercentage\nbusy\n")


class TestRunProbeCommand:

    def test_missing_binary(self):
        with pytest.raises(ProbeUnavailableError, match="command failed"):
            run_probe_command(["definitely-not-a-real-binary-xyz"])

    def test_non_zero_exit(self, monkeypatch):
        def fake_run(argv, **kwargs):
            raise subprocess.CalledProcessError(1, argv)

        monkeypatch.setattr(cpu_usage_probe.subprocess, "run", fake_run)
        with pytest.raises(ProbeUnavailableError, match="exited with status 1"):
            run_probe_command(["top", "-bn", "1"])

    def test_returns_stdout(self, monkeypatch):
        calls = []

        def fake_run(argv, **kwargs):
            calls.append((argv, kwargs))
            return subprocess.CompletedProcess(argv, 0, stdout=LINUX_TOP, stderr="")

        monkeypatch.setattr(cpu_usage_probe.subprocess, "run", fake_run)
        assert run_probe_command(["top", "-bn", "1"]) == LINUX_TOP
        assert len(calls) == 1
        assert calls[0][1]["check"] is True
        assert "timeout" not in calls[0][1]


class TestCommandUsageProbe:

    @pytest.mark.parametrize("platform,expected", [
        ("darwin", ["top", "-l", "1", "-n", "0", "-stats", "cpu"]),
        ("linux", ["top", "-bn", "1"]),
        ("win32", ["wmic", "cpu", "get", "LoadPercentage"]),
    ])
    def test_dispatches_platform_command(self, monkeypatch, platform, expected):
        seen = []
        outputs = {"darwin": MACOS_TOP, "linux": LINUX_TOP, "win32": "LoadPercentage\n5\n"}

        def fake_command(argv):
            seen.append(argv)
            return outputs[platform]

        monkeypatch.setattr(cpu_usage_probe, "run_probe_command", fake_command)
        CommandUsageProbe(platform)()
        assert seen == [expected]

    def test_linux_variants_map_to_linux(self):
        assert CommandUsageProbe("linux2").key == "linux"

    def test_unsupported_platform_runs_nothing(self, monkeypatch):
        def fake_command(argv):
            raise AssertionError("no command expected")

        monkeypatch.setattr(cpu_usage_probe, "run_probe_command", fake_command)
        with pytest.raises(UnsupportedPlatformError, match="unsupported operating system: sunos5"):
            CommandUsageProbe("sunos5")()

    def test_single_query_per_call(self, monkeypatch):
        calls = []

        def failing(argv):
            calls.append(argv)
            raise ProbeUnavailableError("boom")

        monkeypatch.setattr(cpu_usage_probe, "run_probe_command", failing)
        with pytest.raises(ProbeUnavailableError):
            CommandUsageProbe("linux")()
        assert len(calls) == 1


class TestPsutilUsageProbe:

    def test_reads_cpu_percent(self, monkeypatch):
        values = iter([0.0, 57.5])
        monkeypatch.setattr(psutil, "cpu_percent", lambda interval=None: next(values))
        probe = PsutilUsageProbe()
        assert probe() == 57.5

    def test_failure_is_unavailable(self, monkeypatch):
        probe = PsutilUsageProbe()

        def broken(interval=None):
            raise OSError("no /proc/stat")

        monkeypatch.setattr(psutil, "cpu_percent", broken)
        with pytest.raises(ProbeUnavailableError, match="psutil"):
            probe()


class TestFactoryAndSampling:

    def test_get_usage_probe(self):
        assert isinstance(get_usage_probe("command"), CommandUsageProbe)
        assert isinstance(get_usage_probe("psutil"), PsutilUsageProbe)

    def test_get_usage_probe_unknown(self):
        with pytest.raises(ValueError, match="unknown probe"):
            get_usage_probe("snmp")

    def test_sample_success(self):
        sample = sample_usage(lambda: 12.5)
        assert sample.ok
        assert sample.usage == 12.5

    @pytest.mark.parametrize("error", [
        ProbeUnavailableError("top: not found"),
        ProbeParseError("no line"),
        UnsupportedPlatformError("plan9"),
    ])
    def test_sample_contains_probe_errors(self, error):
        def probe():
            raise error

        sample = sample_usage(probe)
        assert not sample.ok
        assert sample.usage is None
        assert sample.error == f"failed to get CPU usage: {error}"

    def test_sample_does_not_hide_programming_errors(self):
        def probe():
            raise ZeroDivisionError()

        with pytest.raises(ZeroDivisionError):
            sample_usage(probe)
