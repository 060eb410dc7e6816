import multiprocessing


class CancellationSignal:
    """One-way Active -> Cancelled flag shared by the coordinator, its threads
    and the worker processes.

    Backed by a multiprocessing Event so that spawned workers see the same flag.
    Only the first effective `cancel()` wins; every later (or concurrent) call
    is a no-op that returns False.
    """

    def __init__(self, ctx=None):
        ctx = ctx or multiprocessing.get_context("spawn")
        self._event = ctx.Event()
        self._lock = ctx.Lock()
        self._reason = None

    def cancel(self, reason=None) -> bool:
        # Non-blocking: whoever already holds the lock is firing the flag.
        if not self._lock.acquire(False):
            return False
        try:
            if self._event.is_set():
                return False
            self._reason = reason
            self._event.set()
            return True
        finally:
            self._lock.release()

    def is_set(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout=None) -> bool:
        return self._event.wait(timeout)

    @property
    def reason(self):
        return self._reason

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def __repr__(self):
        state = "Cancelled" if self.is_set() else "Active"
        return f"<CancellationSignal {state}>"
