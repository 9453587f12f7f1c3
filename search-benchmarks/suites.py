"""
Declaration of the benchmark entries: songs, wiki and geo search suites and
the indexing group.

Corpus loading and index building are shared per group, run lazily and at
most once, so unselected groups cost nothing.
"""

import logging
from fnmatch import fnmatch
from typing import Dict, List, Optional

from config import (
    DATASETS_PATH, RUNS_PER_QUERY, WARMUP_RUNS, INDEXING_RUNS,
    INDEXING_WARMUP_RUNS, INDEXING_BATCH_SIZE, ENABLE_CONCURRENCY_TEST,
    CONCURRENCY_WORKERS, CONCURRENCY_QUERIES_PER_ITERATION
)
from benchmark import (
    BenchmarkEntry, CONCURRENT, check_expected_count, run_concurrent_batch,
    run_query
)
from corpus import load_corpus
from datasets import CORPORA, cache_path
from errors import BenchmarkError, IndexBuildError
from indexing import build_index, open_and_build
from queries import INDEX_SETTINGS, SUITE_QUERIES

logger = logging.getLogger(__name__)

INDEXING_CORPORA = ["songs", "wiki", "movies", "geo"]


class LazySetup:
    """
    Runs `func` on first call and replays its result, or its failure.

    `release` drops the result, handing it to `close` first, so a finished
    group no longer holds its corpus or index.
    """

    def __init__(self, func, close=None):
        self.func = func
        self.close = close
        self.done = False
        self.value = None
        self.error = None

    def __call__(self):
        if not self.done:
            self.done = True
            try:
                self.value = self.func()
            except (BenchmarkError, OSError) as e:
                self.error = e
        if self.error is not None:
            raise self.error
        return self.value

    def release(self):
        value, self.value = self.value, None
        if self.error is None:
            self.done = False
        if value is None or self.close is None:
            return
        try:
            self.close(value)
        except (BenchmarkError, ValueError, RuntimeError, OSError) as e:
            logger.warning(f"Releasing a shared benchmark setup failed: {e}")


def _loader(name: str, cache_dir: str) -> LazySetup:
    descriptor = CORPORA[name]
    return LazySetup(lambda: load_corpus(descriptor, cache_path(descriptor, cache_dir)))


def _query_operation(case):
    return lambda index: run_query(index, case)


def _expected_count_check(case):
    if case.expected_count is None:
        return None
    return lambda result: check_expected_count(case, result)


def search_entries(
    group: str,
    engine,
    documents: LazySetup,
    iterations: int = RUNS_PER_QUERY,
    warmup: int = WARMUP_RUNS,
    batch_size: int = INDEXING_BATCH_SIZE,
    concurrency: bool = ENABLE_CONCURRENCY_TEST,
    workers: int = CONCURRENCY_WORKERS,
    concurrent_queries: int = CONCURRENCY_QUERIES_PER_ITERATION
) -> List[BenchmarkEntry]:
    """One entry per query case of the suite, sharing one built index."""
    cases = SUITE_QUERIES[group]
    settings = INDEX_SETTINGS[group]
    index = LazySetup(
        lambda: open_and_build(engine, f"search-{group}", settings, documents(), batch_size),
        close=lambda idx: idx.close()
    )

    entries = [
        BenchmarkEntry(
            name=f"{group}/{case.name}",
            group=group,
            setup=index,
            operation=_query_operation(case),
            iterations=iterations,
            warmup=warmup,
            check=_expected_count_check(case),
            corpora=(group,),
            resources=(index, documents),
        )
        for case in cases
    ]

    if concurrency:
        entries.append(BenchmarkEntry(
            name=f"{group}/concurrent-{workers}",
            group=group,
            setup=index,
            operation=lambda idx: run_concurrent_batch(idx, cases, workers, concurrent_queries),
            iterations=iterations,
            warmup=warmup,
            ops_per_iteration=lambda _: concurrent_queries,
            mode=CONCURRENT,
            workers=workers,
            corpora=(group,),
            resources=(index, documents),
        ))

    return entries


class _IndexingRun:
    """Per-iteration state of an indexing entry: a fresh index and its input."""

    def __init__(self, index, documents):
        self.index = index
        self.documents = documents


def indexing_entry(
    corpus: str,
    engine,
    documents: LazySetup,
    iterations: int = INDEXING_RUNS,
    warmup: int = INDEXING_WARMUP_RUNS,
    batch_size: int = INDEXING_BATCH_SIZE
) -> BenchmarkEntry:
    """Time "add all + commit" of a corpus into a freshly opened index."""
    settings = INDEX_SETTINGS[corpus]

    def fresh_index(docs):
        try:
            index = engine.open_index(f"indexing-{corpus}", settings)
        except (BenchmarkError, ValueError, OSError) as e:
            raise IndexBuildError(f"could not open index for {corpus!r}: {e}") from e
        return _IndexingRun(index, docs)

    return BenchmarkEntry(
        name=f"indexing/{corpus}",
        group="indexing",
        setup=documents,
        operation=lambda run: build_index(run.index, run.documents, batch_size),
        iterations=iterations,
        warmup=warmup,
        iteration_setup=fresh_index,
        iteration_teardown=lambda run: run.index.close(),
        ops_per_iteration=len,
        unit="documents",
        corpora=(corpus,),
        resources=(documents,),
    )


def declare_entries(
    engine,
    cache_dir: str = DATASETS_PATH,
    iterations: int = RUNS_PER_QUERY,
    warmup: int = WARMUP_RUNS,
    indexing_iterations: int = INDEXING_RUNS,
    indexing_warmup: int = INDEXING_WARMUP_RUNS,
    batch_size: int = INDEXING_BATCH_SIZE,
    concurrency: bool = ENABLE_CONCURRENCY_TEST,
    workers: int = CONCURRENCY_WORKERS,
    concurrent_queries: int = CONCURRENCY_QUERIES_PER_ITERATION
) -> List[BenchmarkEntry]:
    """All entries of the four groups, in execution order. Nothing runs yet."""
    loaders = {name: _loader(name, cache_dir) for name in CORPORA}

    entries = []
    for group in SUITE_QUERIES:
        entries.extend(search_entries(
            group, engine, loaders[group],
            iterations=iterations,
            warmup=warmup,
            batch_size=batch_size,
            concurrency=concurrency,
            workers=workers,
            concurrent_queries=concurrent_queries
        ))

    for corpus in INDEXING_CORPORA:
        entries.append(indexing_entry(
            corpus, engine, loaders[corpus],
            iterations=indexing_iterations,
            warmup=indexing_warmup,
            batch_size=batch_size
        ))

    return entries


def select_entries(
    entries: List[BenchmarkEntry],
    groups: Optional[List[str]] = None,
    patterns: Optional[List[str]] = None
) -> List[BenchmarkEntry]:
    """Keep entries of the given groups whose name matches any glob pattern."""
    selected = []
    for entry in entries:
        if groups and entry.group not in groups:
            continue
        if patterns and not any(fnmatch(entry.name, p) for p in patterns):
            continue
        selected.append(entry)
    return selected


def required_corpora(entries: List[BenchmarkEntry]) -> List[str]:
    names: Dict[str, None] = {}
    for entry in entries:
        for name in entry.corpora:
            names[name] = None
    return list(names)


def release_plan(entries: List[BenchmarkEntry]) -> List[List[LazySetup]]:
    """For each entry, the shared setups that no later entry uses."""
    last_use: Dict[LazySetup, int] = {}
    for i, entry in enumerate(entries):
        for resource in entry.resources:
            last_use[resource] = i

    plan: List[List[LazySetup]] = [[] for _ in entries]
    for resource, i in last_use.items():
        plan[i].append(resource)
    return plan
