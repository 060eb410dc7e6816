#!/usr/bin/env python3
"""
CPU Stress Runtime

Saturates the CPU with N worker processes while a monitor thread prints the
system-wide CPU usage every couple of seconds. Runs until the optional deadline
elapses or until Ctrl+C / SIGTERM.

Usage:
  python stress_runtime.py                 # one worker per logical core, until Ctrl+C
  python stress_runtime.py -w 4 -t 5       # 4 workers for 5 minutes
  python stress_runtime.py --probe psutil  # read usage via psutil instead of top/wmic
"""
from __future__ import annotations

import argparse
import contextlib
import enum
import multiprocessing
import signal
import sys
import threading
import time
from dataclasses import dataclass, field

import psutil

from cancellation import CancellationSignal
from cpu_intensive import BATCH_SIZE, WORKLOADS, worker_entry
from cpu_monitor import MONITOR_INTERVAL_SEC, UsageMonitor
from cpu_usage_probe import PROBES, get_usage_probe

# =================== CONFIGURATION & CONSTANTS ===================
DEFAULT_WORKERS = psutil.cpu_count(logical=True) or 1
DEFAULT_DURATION_MIN = 0
DEFAULT_WORKLOAD = "mixed"
DEFAULT_PROBE = "command"

# How often the coordinator re-checks worker liveness while waiting for the stop flag
LIVENESS_POLL_SEC = 0.5
# Best-effort wait for the monitor thread at shutdown
MONITOR_JOIN_SEC = 1.0

STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)
# =================================================================


@dataclass(frozen=True)
class RunConfig:
    workers: int = DEFAULT_WORKERS
    duration: float = DEFAULT_DURATION_MIN  # minutes, 0 = until interrupted
    interval: float = MONITOR_INTERVAL_SEC
    workload: str = DEFAULT_WORKLOAD
    probe: str = DEFAULT_PROBE
    batch_size: int = BATCH_SIZE

    def __post_init__(self):
        if self.workers < 0:
            raise ValueError("workers must be >= 0")
        if self.duration < 0:
            raise ValueError("duration must be >= 0")
        if self.interval <= 0:
            raise ValueError("interval must be positive")
        if self.batch_size <= 0:
            raise ValueError("batch_size must be positive")
        if self.workload not in WORKLOADS:
            raise ValueError(f"unknown workload {self.workload!r}")

    @property
    def duration_seconds(self) -> float:
        return self.duration * 60.0

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "RunConfig":
        return cls(
            workers=args.workers,
            duration=args.duration,
            interval=args.interval,
            workload=args.workload,
            probe=args.probe,
            batch_size=args.batch_size,
        )


class RunState(enum.Enum):
    INIT = "init"
    RUNNING = "running"
    DRAINING = "draining"
    DONE = "done"


@dataclass
class WorkerHandle:
    worker_id: int
    process: multiprocessing.process.BaseProcess

    @property
    def alive(self) -> bool:
        return self.process.is_alive()

    @property
    def exitcode(self):
        return self.process.exitcode

    @property
    def clean(self) -> bool:
        return self.process.exitcode == 0


@dataclass
class RunSummary:
    workers: int
    clean_exits: int
    cancel_reason: str | None
    elapsed: float
    exitcodes: list = field(default_factory=list)


# -----------------------------------------------------
# Coordinator
# -----------------------------------------------------
class StressCoordinator:
    """Owns the stop flag and every task of one run: INIT -> RUNNING -> DRAINING -> DONE."""

    def __init__(self, config: RunConfig, probe=None, stream=None):
        self.config = config
        self.stream = stream if stream is not None else sys.stdout
        self.probe = probe if probe is not None else get_usage_probe(config.probe)
        self.ctx = multiprocessing.get_context("spawn")

        self.state = RunState.INIT
        self.cancel_signal = CancellationSignal(self.ctx)
        self.handles: list[WorkerHandle] = []
        self.monitor: UsageMonitor | None = None
        self.monitor_thread: threading.Thread | None = None
        self.deadline_thread: threading.Thread | None = None
        self._previous_handlers = {}
        self._pending_signal = None

    # ---------- Triggers ----------
    def request_stop(self, reason="requested") -> bool:
        return self.cancel_signal.cancel(reason)

    def _handle_stop_signal(self, signum, frame):
        # Runs on the main thread, possibly inside cancel_signal.wait(); record only.
        if self._pending_signal is None:
            self._pending_signal = signum

    def _apply_pending_signal(self):
        signum = self._pending_signal
        if signum is None:
            return False
        if self.cancel_signal.cancel(signal.Signals(signum).name):
            print("\nReceived interrupt signal. Shutting down...", file=self.stream, flush=True)
        return True

    def _deadline_watch(self, seconds):
        # Returns early (without firing) as soon as anything else cancels the run.
        if not self.cancel_signal.wait(seconds):
            if self.cancel_signal.cancel("deadline"):
                print("\nTest duration completed", file=self.stream, flush=True)

    def _install_signal_handlers(self):
        if threading.current_thread() is not threading.main_thread():
            return
        for sig in STOP_SIGNALS:
            self._previous_handlers[sig] = signal.signal(sig, self._handle_stop_signal)

    def _restore_signal_handlers(self):
        for sig, handler in self._previous_handlers.items():
            signal.signal(sig, handler)
        self._previous_handlers.clear()

    @contextlib.contextmanager
    def _sigint_ignored(self):
        # A spawned interpreter keeps an inherited SIG_IGN, so Ctrl+C during its
        # startup (before worker_entry runs) cannot kill it with KeyboardInterrupt.
        if threading.current_thread() is not threading.main_thread():
            yield
            return
        previous = signal.signal(signal.SIGINT, signal.SIG_IGN)
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, previous)

    # ---------- Phases ----------
    def _init(self):
        if self.config.duration > 0:
            self.deadline_thread = threading.Thread(
                target=self._deadline_watch, args=(self.config.duration_seconds,),
                name="stress-deadline", daemon=True,
            )
            self.deadline_thread.start()

        self._install_signal_handlers()

        self.monitor = UsageMonitor(self.cancel_signal, self.probe,
                                    interval=self.config.interval, stream=self.stream)
        self.monitor_thread = self.monitor.start()

    def _spawn_workers(self):
        self.state = RunState.RUNNING
        for i in range(self.config.workers):
            proc = self.ctx.Process(
                target=worker_entry,
                args=(self.cancel_signal, i, self.config.workload, self.config.batch_size),
                name=f"stress-worker-{i}",
                daemon=True,
            )
            with self._sigint_ignored():
                proc.start()
            self.handles.append(WorkerHandle(i, proc))

    def _drain(self):
        # Workers only stop via the flag; the liveness check covers N=0 and crashed workers.
        while any(h.alive for h in self.handles):
            if self._apply_pending_signal():
                break
            if self.cancel_signal.wait(LIVENESS_POLL_SEC):
                break

        self.state = RunState.DRAINING
        for h in self.handles:
            h.process.join()

    def _finish(self):
        self._apply_pending_signal()
        self.cancel_signal.cancel("shutdown")
        if self.deadline_thread is not None:
            self.deadline_thread.join()
        if self.monitor_thread is not None:
            self.monitor_thread.join(MONITOR_JOIN_SEC)
        self._restore_signal_handlers()
        self.state = RunState.DONE
        print("\nCPU stress test completed", file=self.stream, flush=True)

    def run(self) -> RunSummary:
        start = time.monotonic()
        try:
            self._init()
            self._spawn_workers()
            self._drain()
        finally:
            self._finish()

        return RunSummary(
            workers=len(self.handles),
            clean_exits=sum(1 for h in self.handles if h.clean),
            cancel_reason=self.cancel_signal.reason,
            elapsed=time.monotonic() - start,
            exitcodes=[h.exitcode for h in self.handles],
        )


# -----------------------------------------------------
# Main Entry Point
# -----------------------------------------------------
def _non_negative_int(value):
    n = int(value)
    if n < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0, got {n}")
    return n


def _positive_int(value):
    n = int(value)
    if n <= 0:
        raise argparse.ArgumentTypeError(f"must be > 0, got {n}")
    return n


def _positive_float(value):
    x = float(value)
    if x <= 0:
        raise argparse.ArgumentTypeError(f"must be > 0, got {x}")
    return x


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Saturate CPU cores and print live CPU usage.")
    ap.add_argument("-w", "--workers", type=_non_negative_int, default=DEFAULT_WORKERS,
                    help=f"Number of worker processes (default: logical cores = {DEFAULT_WORKERS})")
    ap.add_argument("-t", "--duration", type=_non_negative_int, default=DEFAULT_DURATION_MIN,
                    help="Duration in minutes (0 means run until interrupted)")
    ap.add_argument("--interval", type=_positive_float, default=MONITOR_INTERVAL_SEC,
                    help="Seconds between CPU usage readings")
    ap.add_argument("--workload", choices=sorted(WORKLOADS), default=DEFAULT_WORKLOAD,
                    help="Arithmetic each worker burns")
    ap.add_argument("--probe", choices=sorted(PROBES), default=DEFAULT_PROBE,
                    help="'command' scrapes top/wmic, 'psutil' reads native counters")
    ap.add_argument("--batch-size", type=_positive_int, default=BATCH_SIZE,
                    help="Iterations between stop checks in each worker")
    return ap


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    config = RunConfig.from_args(args)

    print(f"Starting CPU stress test with {config.workers} workers", flush=True)
    if config.duration > 0:
        print(f"Test will run for {args.duration} minutes", flush=True)
    else:
        print("Test will run until interrupted (press Ctrl+C to stop)", flush=True)

    StressCoordinator(config).run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
