"""Worker pool selection and a generic parallel-for."""

import os
import sys
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor

# Environment variable to override executor selection.
EXECUTOR_ENV = "GRAPHBUILDER_EXECUTOR"

EXECUTOR_CHOICES = ("auto", "serial", "threads", "processes")

# Each process receives this many buckets per task.
PROCESS_POOL_CHUNKSIZE = 4


def is_gil_enabled() -> bool:
    """Check if GIL is enabled."""
    try:
        return sys._is_gil_enabled()
    except AttributeError:
        return True


def get_executor_class(policy=None):
    """Select the appropriate executor class.

    Priority:
    1. GRAPHBUILDER_EXECUTOR env var ("threads", "processes" or "serial")
    2. The ``policy`` argument, usually from the pipeline config
    3. Auto-select based on GIL status (disabled -> threads, enabled -> processes)

    ``None`` means serial: everything runs in the calling thread, which is
    what the tests use and what you want under a debugger.
    """
    override = os.environ.get(EXECUTOR_ENV, "").lower() or (policy or "auto").lower()

    if override == "threads":
        return ThreadPoolExecutor
    if override == "processes":
        return ProcessPoolExecutor
    if override == "serial":
        return None

    if is_gil_enabled():
        return ProcessPoolExecutor
    return ThreadPoolExecutor


def describe_executor(executor_class) -> str:
    """Convert an executor class into a readable policy name."""
    if executor_class is None:
        return "serial"
    if executor_class is ThreadPoolExecutor:
        return "threads"
    return "processes"


def run_tasks(fn, items, executor_class=None, workers=None):
    """Apply ``fn`` to every item, returning results in input order.

    ``fn`` and every item must be picklable when a process pool is used.
    """
    items = list(items)
    if executor_class is None or len(items) <= 1:
        return [fn(item) for item in items]
    with executor_class(max_workers=workers) as executor:
        if executor_class is ProcessPoolExecutor:
            return list(executor.map(fn, items, chunksize=PROCESS_POOL_CHUNKSIZE))
        return list(executor.map(fn, items))


def parallel_for(items, fn, workers=None):
    """Run ``fn`` over an in-memory list on a small thread pool.

    Only for independent, order-insensitive work; results come back in input
    order. The first exception raised by ``fn`` propagates.
    """
    items = list(items)
    if not items:
        return []
    if workers is None:
        workers = min(len(items), os.cpu_count() or 1)
    if workers <= 1:
        return [fn(item) for item in items]
    with ThreadPoolExecutor(max_workers=workers) as executor:
        return list(executor.map(fn, items))
