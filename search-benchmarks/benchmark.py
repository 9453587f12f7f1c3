"""
Run benchmark entries and turn their timing samples into statistics.
"""

import time
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple
from concurrent.futures import ThreadPoolExecutor

import numpy as np

from config import RUNS_PER_QUERY, WARMUP_RUNS
from errors import BenchmarkError, CorrectnessMismatch, QueryError

logger = logging.getLogger(__name__)

LATENCY = "latency"
CONCURRENT = "concurrent"


@dataclass
class BenchmarkEntry:
    """
    One named, independently runnable benchmark.

    `setup` runs once before any iteration and its result is handed to
    `operation`. When `iteration_setup` is given it runs, untimed, before
    every iteration and its result replaces the setup context for that
    iteration; `iteration_teardown` receives it afterwards.

    `resources` are the shared setups the entry uses. The driver releases
    each one after the last selected entry that needs it.
    """

    name: str
    group: str
    setup: Callable[[], Any]
    operation: Callable[[Any], Any]
    iterations: int = RUNS_PER_QUERY
    warmup: int = WARMUP_RUNS
    iteration_setup: Optional[Callable[[Any], Any]] = None
    iteration_teardown: Optional[Callable[[Any], None]] = None
    check: Optional[Callable[[Any], Optional[CorrectnessMismatch]]] = None
    ops_per_iteration: Optional[Callable[[Any], int]] = None
    unit: str = "queries"
    mode: str = LATENCY
    workers: Optional[int] = None
    corpora: Tuple[str, ...] = ()
    resources: Tuple = ()


def run_query(index, case) -> Dict:
    """Execute one query case. Engine failures surface as QueryError."""
    try:
        return index.search(case)
    except QueryError:
        raise
    except (BenchmarkError, ValueError, RuntimeError) as e:
        raise QueryError(f"{case.name}: {e}") from e


def check_expected_count(case, result: Dict) -> Optional[CorrectnessMismatch]:
    if case.expected_count is None or result["count"] == case.expected_count:
        return None
    return CorrectnessMismatch(case.name, case.expected_count, result["count"])


def round_robin(cases: List, total: int) -> List:
    """Deterministic sequence of `total` cases cycling through `cases`."""
    if not cases:
        return []
    return [cases[i % len(cases)] for i in range(total)]


def run_concurrent_batch(index, cases: List, workers: int, total: int) -> Dict:
    """
    Issue `total` queries round-robin from a fixed-size thread pool.

    The index is only read, so queries need no synchronization. Raises
    QueryError if any query failed.
    """
    batch = round_robin(cases, total)
    failures = []

    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [executor.submit(run_query, index, case) for case in batch]
        for future in futures:
            try:
                future.result()
            except QueryError as e:
                failures.append(str(e))

    if failures:
        raise QueryError(f"{len(failures)}/{len(batch)} concurrent queries failed: {failures[0]}")

    return {"completed": len(batch)}


def run_iterations(entry: BenchmarkEntry, context) -> Dict:
    """
    Warm up, then time `entry.iterations` executions.

    Warm-up timings are discarded. A QueryError costs only the iteration it
    happened in; any other harness error ends the entry.

    Returns:
        Dict with samples (seconds), errors, last_error, mismatches
    """
    samples = []
    errors = 0
    last_error = None
    mismatches = []
    total = entry.warmup + entry.iterations

    for i in range(total):
        timed = i >= entry.warmup
        state = entry.iteration_setup(context) if entry.iteration_setup else context
        try:
            start = time.perf_counter()
            result = entry.operation(state)
            elapsed = time.perf_counter() - start
        except QueryError as e:
            if timed:
                errors += 1
                last_error = str(e)
            logger.warning(f"{entry.name}: iteration {i + 1}/{total} failed: {e}")
            continue
        finally:
            if entry.iteration_teardown:
                entry.iteration_teardown(state)

        if not timed:
            continue

        samples.append(elapsed)
        if entry.check:
            mismatch = entry.check(result)
            if mismatch is not None:
                mismatches.append(mismatch)

    return {
        "samples": samples,
        "errors": errors,
        "last_error": last_error,
        "mismatches": mismatches
    }


def calculate_statistics(samples: List[float]) -> Dict:
    """min/max/mean/p50/p95/p99/std_dev in milliseconds."""
    if not samples:
        return {}

    latencies = np.array(samples) * 1000

    return {
        "mean_ms": float(np.mean(latencies)),
        "std_dev_ms": float(np.std(latencies)),
        "min_ms": float(np.min(latencies)),
        "max_ms": float(np.max(latencies)),
        "p50_ms": float(np.percentile(latencies, 50)),
        "p95_ms": float(np.percentile(latencies, 95)),
        "p99_ms": float(np.percentile(latencies, 99)),
    }


def calculate_throughput(total_ops: int, total_elapsed_time: float) -> float:
    """
    Operations per second: total_ops / total_elapsed_time
    NOT: 1000 / mean_ms
    """
    if total_elapsed_time <= 0:
        return 0.0
    return total_ops / total_elapsed_time


def _new_record(entry: BenchmarkEntry) -> Dict:
    return {
        "name": entry.name,
        "group": entry.group,
        "mode": entry.mode,
        "workers": entry.workers,
        "status": "ok",
        "stage": None,
        "error": None,
        "samples": 0,
        "errors": 0,
        "mismatches": 0,
        "mismatch_detail": None,
        "throughput": None,
        "unit": entry.unit,
    }


def run_entry(entry: BenchmarkEntry) -> Tuple[Dict, List[float]]:
    """
    Run one entry through setup, warm-up and timed execution.

    Per-entry failures never propagate: they are returned in the record with
    status "failed" and the stage that failed.

    Returns:
        Tuple of (report record, timed samples in seconds)
    """
    record = _new_record(entry)
    logger.info(f"Benchmark {entry.name}: {entry.warmup} warm-up + {entry.iterations} timed iterations")

    try:
        context = entry.setup()
    except (BenchmarkError, OSError) as e:
        logger.error(f"{entry.name}: setup failed: {e}")
        record.update(status="failed", stage="setup", error=str(e))
        return record, []

    try:
        outcome = run_iterations(entry, context)
    except BenchmarkError as e:
        logger.error(f"{entry.name}: failed: {e}")
        record.update(status="failed", stage="iteration", error=str(e))
        return record, []

    samples = outcome["samples"]
    record["samples"] = len(samples)
    record["errors"] = outcome["errors"]

    mismatches = outcome["mismatches"]
    if mismatches:
        record["mismatches"] = len(mismatches)
        record["mismatch_detail"] = str(mismatches[0])
        logger.warning(f"{entry.name}: correctness mismatch in {len(mismatches)} iteration(s): {mismatches[0]}")

    if not samples:
        if entry.iterations > 0:
            logger.error(f"{entry.name}: every timed iteration failed")
            record.update(status="failed", stage="query", error=outcome["last_error"])
        return record, samples

    record.update(calculate_statistics(samples))

    ops = entry.ops_per_iteration(context) if entry.ops_per_iteration else 1
    record["throughput"] = calculate_throughput(ops * len(samples), sum(samples))

    logger.info(
        f"{entry.name}: mean {record['mean_ms']:.3f} ms, "
        f"std {record['std_dev_ms']:.3f} ms, "
        f"{record['throughput']:.2f} {entry.unit}/s"
    )
    return record, samples
