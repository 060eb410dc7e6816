# cpu_intensive.py
import math
import random
import signal
import time

import numpy as np

# Iterations per uninterruptible batch; the stop flag is only checked between batches.
BATCH_SIZE = 1_000_000
VECTOR_CHUNK = 4096


def worker_seed(worker_id):
    """Seed from the clock plus the worker id so workers started together differ."""
    return time.time_ns() + worker_id


# ---------- Workload kernels ----------
def mixed_work(rng, iterations):
    # Float divide/multiply plus 64-bit style integer products on random operands.
    x = 0.0
    for _ in range(iterations):
        x = rng.random() * rng.random() / (rng.random() + 0.1)
        _ = rng.randrange(1000000) * rng.randrange(1000000)
    return x


def alu_work(rng, iterations):
    counter = rng.randrange(1000)
    for _ in range(iterations):
        counter += 1
        counter *= 1.001
        counter %= 1000
    return counter


def branch_work(rng, iterations):
    count = 0
    for _ in range(iterations):
        x = rng.randint(0, 1000)
        if x % 3 == 0:
            count += 1
        elif x % 3 == 1:
            count -= 1
        else:
            count *= -1
    return count


def fpu_work(rng, iterations):
    x = 0.5 + rng.random()
    for _ in range(iterations):
        x = math.sin(x) * math.cos(x) + math.sqrt(x + 1.2345)
    return x


def vector_work(rng, iterations):
    # Small fixed buffers reused in place; no per-chunk allocation.
    gen = np.random.default_rng(rng.getrandbits(64))
    a = gen.random(VECTOR_CHUNK)
    b = np.empty_like(a)
    for _ in range(max(1, iterations // VECTOR_CHUNK)):
        np.abs(a, out=b)
        b += 0.5
        np.sqrt(b, out=b)
        np.sin(a, out=a)
        np.multiply(a, b, out=a)
        np.cos(a, out=b)
        np.add(a, b, out=a)
        a[0] = b[-1]
    return float(a[0])


WORKLOADS = {
    "mixed": mixed_work,
    "alu": alu_work,
    "branch": branch_work,
    "fpu": fpu_work,
    "vector": vector_work,
}


# ---------- Worker loop ----------
def burn_cpu(stop_event, worker_id, workload="mixed", batch_size=BATCH_SIZE):
    """Run batches of `workload` until `stop_event` fires.

    The flag is checked before each batch, never inside one, so shutdown latency
    is bounded by a single batch. Returns the number of completed batches.
    """
    kernel = WORKLOADS[workload]
    rng = random.Random(worker_seed(worker_id))
    print(f"Worker {worker_id} started on CPU core", flush=True)

    batches = 0
    while not stop_event.is_set():
        kernel(rng, batch_size)
        batches += 1

    print(f"Worker {worker_id} shutting down", flush=True)
    return batches


def worker_entry(stop_event, worker_id, workload="mixed", batch_size=BATCH_SIZE):
    """Process target for a spawned worker."""
    # Ctrl+C reaches the whole process group; only the coordinator reacts to it.
    signal.signal(signal.SIGINT, signal.SIG_IGN)
    burn_cpu(stop_event, worker_id, workload, batch_size)


if __name__ == "__main__":
    import threading

    stop = threading.Event()
    threading.Timer(10, stop.set).start()
    burn_cpu(stop, 0)
