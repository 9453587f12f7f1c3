"""
Configuration for search engine benchmarking
"""

import os

# Remote datasets
DATASETS_URL = os.environ.get(
    "MILLI_BENCH_DATASETS_URL",
    "https://milli-benchmarks.fra1.digitaloceanspaces.com/datasets"
)
DOWNLOAD_TIMEOUT = 120  # seconds
DOWNLOAD_CHUNK_SIZE = 1024 * 1024
FETCH_WORKERS = 4  # concurrent corpus downloads during the build step

# Paths
DATASETS_PATH = os.environ.get("MILLI_BENCH_DATASETS_PATH", "datasets")
# Pinned digests of the published archives, see `fetch-datasets --pin`
CHECKSUMS_FILE = os.environ.get(
    "MILLI_BENCH_CHECKSUMS",
    os.path.join(os.path.dirname(os.path.abspath(__file__)), "datasets.sha256")
)
INDEX_PATH = "indexes"  # None keeps indexes in RAM

# Benchmark parameters
RUNS_PER_QUERY = 20
WARMUP_RUNS = 2  # Discarded iterations before each search entry is timed
INDEXING_RUNS = 10
INDEXING_WARMUP_RUNS = 1
INDEXING_BATCH_SIZE = 10000

# Engine tuning
ENGINE_HEAP_SIZE = 256 * 1024 * 1024  # 256MB writer heap
ENGINE_NUM_THREADS = 0  # 0 lets the engine pick
SEARCH_LIMIT = 20

# Concurrency testing (optional, disabled by default)
ENABLE_CONCURRENCY_TEST = False
CONCURRENCY_WORKERS = 4
CONCURRENCY_QUERIES_PER_ITERATION = 100

# Benchmark groups, in execution order
BENCHMARK_GROUPS = ["songs", "wiki", "geo", "indexing"]

# Results directory
RESULTS_DIR = "results"
HISTORY_FILE = "history.csv"
