# cpu_monitor.py
import sys
import threading
import time

from cpu_usage_probe import sample_usage

MONITOR_INTERVAL_SEC = 2.0


class UsageMonitor:
    """Samples CPU usage on a fixed-rate tick and renders one status line per tick.

    Tick k fires at started_at + k * interval regardless of how long the probe
    took. If a probe overruns one or more boundaries those ticks are dropped,
    never queued. Works with any stop flag exposing is_set() and wait(timeout).
    """

    def __init__(self, stop_event, probe, interval=MONITOR_INTERVAL_SEC,
                 stream=None, overwrite=None, clock=time.monotonic):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.stop_event = stop_event
        self.probe = probe
        self.interval = interval
        self.stream = stream if stream is not None else sys.stdout
        if overwrite is None:
            isatty = getattr(self.stream, "isatty", None)
            overwrite = bool(isatty and isatty())
        self.overwrite = overwrite
        self.clock = clock

        self.started_at = None
        self.ticks = 0
        self.failures = 0
        self.dropped = 0
        self._last_width = 0

    def render(self, sample):
        if sample.ok:
            text = f"CPU Usage: {sample.usage:.1f}%"
        else:
            text = f"Error getting CPU info: {sample.error}"

        if self.overwrite:
            # blank out whatever is left of a longer previous line
            pad = " " * max(0, self._last_width - len(text))
            self.stream.write(f"\r{text}{pad}")
            self._last_width = len(text)
        else:
            self.stream.write(text + "\n")
        self.stream.flush()

    def run(self):
        self.started_at = self.clock()
        next_tick = self.started_at + self.interval

        while True:
            if self.stop_event.wait(max(0.0, next_tick - self.clock())):
                return

            sample = sample_usage(self.probe)
            self.ticks += 1
            if not sample.ok:
                self.failures += 1

            if self.stop_event.is_set():
                return
            self.render(sample)

            next_tick += self.interval
            now = self.clock()
            while next_tick <= now:
                next_tick += self.interval
                self.dropped += 1

    def start(self, name="cpu-monitor"):
        thread = threading.Thread(target=self.run, name=name, daemon=True)
        thread.start()
        return thread
