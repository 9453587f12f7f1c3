"""
Orchestrator for running the search engine benchmark suite.

This script:
1. Declares the benchmark entries and applies the group/name selection
2. Fetches the corpora the selected entries need (fail-fast)
3. Runs each entry sequentially: setup, warm-up, timed iterations
4. Writes results/<run_id>/summary.csv and samples.csv
5. Appends the run to results/history.csv
"""

import sys
import logging
import argparse
from pathlib import Path
from datetime import datetime
from typing import Dict, List, Optional

import pandas as pd

from config import (
    BENCHMARK_GROUPS, DATASETS_PATH, DATASETS_URL, INDEX_PATH, RESULTS_DIR,
    HISTORY_FILE, RUNS_PER_QUERY, WARMUP_RUNS, INDEXING_RUNS,
    INDEXING_WARMUP_RUNS, INDEXING_BATCH_SIZE, ENABLE_CONCURRENCY_TEST,
    CONCURRENCY_WORKERS, CONCURRENCY_QUERIES_PER_ITERATION, FETCH_WORKERS
)
from benchmark import run_entry
from datasets import CORPORA, HttpCorpusProvider, fetch_corpora
from engine import TantivyEngine
from errors import FetchError
from suites import declare_entries, release_plan, required_corpora, select_entries

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='[%(levelname)s] %(asctime)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)

REPORT_COLUMNS = [
    "run_id", "timestamp", "label", "name", "group", "mode", "workers",
    "status", "stage", "samples", "mean_ms", "std_dev_ms", "min_ms",
    "max_ms", "p50_ms", "p95_ms", "p99_ms", "throughput", "unit", "errors",
    "mismatches", "mismatch_detail", "error"
]


def log_config(
    groups: Optional[List[str]],
    patterns: Optional[List[str]],
    iterations: int,
    warmup: int,
    indexing_iterations: int,
    indexing_warmup: int,
    batch_size: int,
    concurrency: bool,
    workers: int,
    datasets_dir: str,
    results_dir: str
) -> None:
    """Log all configuration parameters at start."""
    logger.info("=" * 60)
    logger.info("Benchmark Configuration")
    logger.info("=" * 60)
    logger.info(f"Groups: {groups or BENCHMARK_GROUPS}")
    logger.info(f"Name filters: {patterns or '-'}")
    logger.info(f"Search iterations: {iterations} (+{warmup} warm-up)")
    logger.info(f"Indexing iterations: {indexing_iterations} (+{indexing_warmup} warm-up)")
    logger.info(f"Indexing batch size: {batch_size}")
    logger.info(f"Concurrency test enabled: {concurrency} ({workers} workers)")
    logger.info(f"Datasets directory: {datasets_dir}")
    logger.info(f"Results directory: {results_dir}")
    logger.info("=" * 60)


def new_run_dir(results_dir: str = RESULTS_DIR) -> Path:
    """
    Create a directory for this run's files. An existing directory is never
    reused, so earlier reports are never touched.
    """
    base = datetime.now().strftime("%Y%m%d-%H%M%S")
    root = Path(results_dir)
    root.mkdir(parents=True, exist_ok=True)

    suffix = 0
    while True:
        run_id = base if suffix == 0 else f"{base}-{suffix}"
        run_dir = root / run_id
        try:
            run_dir.mkdir()
            return run_dir
        except FileExistsError:
            suffix += 1


def build_report(records: List[Dict], run_id: str, label: Optional[str] = None) -> pd.DataFrame:
    df = pd.DataFrame(records)
    df["run_id"] = run_id
    df["timestamp"] = datetime.now().isoformat()
    df["label"] = label
    return df.reindex(columns=REPORT_COLUMNS)


def save_report(
    report: pd.DataFrame,
    samples: List[Dict],
    run_dir: Path,
    results_dir: str = RESULTS_DIR
) -> Dict[str, str]:
    """
    Save the run's summary and raw samples, and append the summary to the
    history file.

    Returns:
        Dict of written file paths
    """
    summary_path = run_dir / "summary.csv"
    report.to_csv(summary_path, index=False)

    samples_path = run_dir / "samples.csv"
    pd.DataFrame(samples, columns=["name", "iteration", "elapsed_ms"]).to_csv(
        samples_path, index=False
    )

    history_path = Path(results_dir) / HISTORY_FILE
    report.to_csv(history_path, mode="a", header=not history_path.exists(), index=False)

    logger.info(f"Summary saved to {summary_path}")
    logger.info(f"Samples saved to {samples_path}")
    logger.info(f"History appended to {history_path}")

    return {
        "summary": str(summary_path),
        "samples": str(samples_path),
        "history": str(history_path)
    }


def print_summary_table(records: List[Dict]) -> None:
    """Print a formatted summary table to console."""
    logger.info("")
    logger.info("=" * 110)
    logger.info("BENCHMARK RESULTS SUMMARY")
    logger.info("=" * 110)

    header = (
        f"{'Benchmark':<40} | {'Mode':>10} | {'N':>4} | {'Mean(ms)':>9} | "
        f"{'Std(ms)':>8} | {'P95(ms)':>8} | {'Throughput':>16}"
    )
    logger.info(header)
    logger.info("-" * 110)

    for r in records:
        if r["status"] != "ok":
            logger.info(f"{r['name']:<40} | {r['mode']:>10} | FAILED at {r['stage']}: {r['error']}")
            continue
        if not r["samples"]:
            logger.info(f"{r['name']:<40} | {r['mode']:>10} | no samples")
            continue
        row = (
            f"{r['name']:<40} | "
            f"{r['mode']:>10} | "
            f"{r['samples']:>4} | "
            f"{r['mean_ms']:>9.3f} | "
            f"{r['std_dev_ms']:>8.3f} | "
            f"{r['p95_ms']:>8.3f} | "
            f"{r['throughput']:>10.2f} {r['unit'][:5]}/s"
        )
        if r["mismatches"]:
            row += f"  MISMATCH: {r['mismatch_detail']}"
        logger.info(row)

    logger.info("=" * 110)


def emit_records(report: pd.DataFrame, stream=None) -> None:
    """Write the report as a JSON-lines record stream."""
    stream = stream or sys.stdout
    if report.empty:
        return
    stream.write(report.to_json(orient="records", lines=True))
    stream.write("\n")


def run_full_benchmark(
    groups: Optional[List[str]] = None,
    patterns: Optional[List[str]] = None,
    engine=None,
    provider=None,
    datasets_dir: str = DATASETS_PATH,
    results_dir: str = RESULTS_DIR,
    iterations: int = RUNS_PER_QUERY,
    warmup: int = WARMUP_RUNS,
    indexing_iterations: int = INDEXING_RUNS,
    indexing_warmup: int = INDEXING_WARMUP_RUNS,
    batch_size: int = INDEXING_BATCH_SIZE,
    concurrency: bool = ENABLE_CONCURRENCY_TEST,
    workers: int = CONCURRENCY_WORKERS,
    concurrent_queries: int = CONCURRENCY_QUERIES_PER_ITERATION,
    fetch_workers: int = FETCH_WORKERS,
    output_format: str = "table",
    label: Optional[str] = None,
    stream=None
) -> Dict:
    """
    Run the selected benchmark entries and report them.

    Raises FetchError before any benchmark runs when a corpus cannot be
    acquired.

    Returns:
        Dict with run_id, records, paths, failed, mismatched
    """
    log_config(groups, patterns, iterations, warmup, indexing_iterations,
               indexing_warmup, batch_size, concurrency, workers,
               datasets_dir, results_dir)

    if engine is None:
        engine = TantivyEngine(index_dir=INDEX_PATH)

    entries = declare_entries(
        engine,
        cache_dir=datasets_dir,
        iterations=iterations,
        warmup=warmup,
        indexing_iterations=indexing_iterations,
        indexing_warmup=indexing_warmup,
        batch_size=batch_size,
        concurrency=concurrency,
        workers=workers,
        concurrent_queries=concurrent_queries
    )
    selected = select_entries(entries, groups, patterns)
    logger.info(f"Selected {len(selected)}/{len(entries)} benchmark entries")

    corpora = required_corpora(selected)
    if corpora:
        logger.info(f"Fetching corpora: {corpora}")
        fetch_corpora(
            [CORPORA[name] for name in corpora],
            cache_dir=datasets_dir,
            provider=provider,
            max_workers=fetch_workers
        )

    run_dir = new_run_dir(results_dir)
    run_id = run_dir.name

    records = []
    samples = []
    releases = release_plan(selected)
    for i, entry in enumerate(selected):
        logger.info("")
        logger.info("=" * 60)
        logger.info(f"BENCHMARK [{i + 1}/{len(selected)}]: {entry.name}")
        logger.info("=" * 60)

        record, entry_samples = run_entry(entry)
        records.append(record)
        samples.extend(
            {"name": entry.name, "iteration": n + 1, "elapsed_ms": s * 1000}
            for n, s in enumerate(entry_samples)
        )
        for resource in releases[i]:
            resource.release()

    report = build_report(records, run_id, label)
    paths = save_report(report, samples, run_dir, results_dir)

    if output_format == "jsonl":
        emit_records(report, stream)
    else:
        print_summary_table(records)

    failed = [r["name"] for r in records if r["status"] != "ok"]
    mismatched = [r["name"] for r in records if r["mismatches"]]

    if failed:
        logger.error(f"{len(failed)} benchmark(s) produced no statistics: {failed}")
    if mismatched:
        logger.warning(f"{len(mismatched)} benchmark(s) had correctness mismatches: {mismatched}")

    return {
        "run_id": run_id,
        "records": records,
        "paths": paths,
        "failed": failed,
        "mismatched": mismatched
    }


def exit_status(result: Dict, strict: bool = False) -> int:
    if result["failed"]:
        return 1
    if strict and result["mismatched"]:
        return 1
    return 0


def _split(value: Optional[str]) -> Optional[List[str]]:
    if not value:
        return None
    return [x.strip() for x in value.split(",") if x.strip()]


def main(argv=None):
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Run the search engine benchmark suite"
    )
    parser.add_argument(
        "--groups", type=str, default=None,
        help=f"Comma-separated benchmark groups ({','.join(BENCHMARK_GROUPS)})"
    )
    parser.add_argument(
        "--filter", type=str, action="append", default=None,
        help="Glob on benchmark names, e.g. 'songs/david*' (repeatable)"
    )
    parser.add_argument("--iterations", type=int, default=RUNS_PER_QUERY,
                        help="Timed iterations per search benchmark")
    parser.add_argument("--warmup", type=int, default=WARMUP_RUNS,
                        help="Warm-up iterations per search benchmark")
    parser.add_argument("--indexing-iterations", type=int, default=INDEXING_RUNS,
                        help="Timed iterations per indexing benchmark")
    parser.add_argument("--indexing-warmup", type=int, default=INDEXING_WARMUP_RUNS,
                        help="Warm-up iterations per indexing benchmark")
    parser.add_argument("--batch-size", type=int, default=INDEXING_BATCH_SIZE,
                        help="Documents per add call while indexing")
    parser.add_argument("--concurrency", action="store_true",
                        help="Add concurrent-throughput benchmarks")
    parser.add_argument("--workers", type=int, default=CONCURRENCY_WORKERS,
                        help="Worker pool size of concurrent benchmarks")
    parser.add_argument("--format", choices=["table", "jsonl"], default="table",
                        help="Report format on the console")
    parser.add_argument("--datasets-dir", type=str, default=DATASETS_PATH,
                        help="Corpus cache directory")
    parser.add_argument("--datasets-url", type=str, default=DATASETS_URL,
                        help="Base URL serving the compressed corpora")
    parser.add_argument("--index-dir", type=str, default=INDEX_PATH,
                        help="Directory for on-disk indexes")
    parser.add_argument("--in-memory", action="store_true",
                        help="Keep indexes in RAM instead of --index-dir")
    parser.add_argument("--results-dir", type=str, default=RESULTS_DIR,
                        help="Report directory")
    parser.add_argument("--label", type=str, default=None,
                        help="Free-form label stored with every record, e.g. a revision")
    parser.add_argument("--strict", action="store_true",
                        help="Exit non-zero on correctness mismatches")
    parser.add_argument("--list", action="store_true",
                        help="List the selected benchmarks and exit")
    parser.add_argument("--verbose", action="store_true",
                        help="Debug logging")

    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    groups = _split(args.groups)
    unknown = [g for g in groups or [] if g not in BENCHMARK_GROUPS]
    if unknown:
        parser.error(f"unknown benchmark groups: {', '.join(unknown)}")

    engine = TantivyEngine(index_dir=None if args.in_memory else args.index_dir)

    if args.list:
        entries = declare_entries(engine, concurrency=args.concurrency, workers=args.workers)
        for entry in select_entries(entries, groups, args.filter):
            print(entry.name)
        return 0

    try:
        result = run_full_benchmark(
            groups=groups,
            patterns=args.filter,
            engine=engine,
            provider=HttpCorpusProvider(base_url=args.datasets_url),
            datasets_dir=args.datasets_dir,
            results_dir=args.results_dir,
            iterations=args.iterations,
            warmup=args.warmup,
            indexing_iterations=args.indexing_iterations,
            indexing_warmup=args.indexing_warmup,
            batch_size=args.batch_size,
            concurrency=args.concurrency,
            workers=args.workers,
            output_format=args.format,
            label=args.label
        )
    except FetchError as e:
        logger.error(f"Dataset acquisition failed, aborting run: {e}")
        sys.exit(1)

    logger.info("")
    logger.info("Benchmark suite completed!")
    logger.info(f"Results saved in: {args.results_dir}/{result['run_id']}/")

    status = exit_status(result, args.strict)
    if status:
        sys.exit(status)
    return status


if __name__ == "__main__":
    main()
