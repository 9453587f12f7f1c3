"""
Drive the engine's ingestion contract over a loaded corpus.
"""

import time
import logging
from typing import Dict, List

from config import INDEXING_BATCH_SIZE
from engine import IndexSettings
from errors import BenchmarkError, IndexBuildError

logger = logging.getLogger(__name__)


def iter_batches(documents: List[Dict], batch_size: int):
    for start in range(0, len(documents), batch_size):
        yield documents[start:start + batch_size]


def build_index(index, documents: List[Dict], batch_size: int = INDEXING_BATCH_SIZE) -> Dict:
    """
    Add all documents in batches, then commit once.

    The returned elapsed time covers "add all + commit". Any engine failure
    is raised as IndexBuildError; nothing is retried.

    Returns:
        Dict with documents, batches, elapsed_sec
    """
    if batch_size <= 0:
        raise ValueError(f"batch_size must be positive, got {batch_size}")

    batches = 0
    start = time.perf_counter()
    try:
        for batch in iter_batches(documents, batch_size):
            index.add_documents(batch)
            batches += 1
        index.commit()
    except IndexBuildError:
        raise
    except (BenchmarkError, ValueError, RuntimeError, OSError) as e:
        raise IndexBuildError(
            f"indexing failed after {batches} batch(es): {e}"
        ) from e
    elapsed = time.perf_counter() - start

    return {
        "documents": len(documents),
        "batches": batches,
        "elapsed_sec": elapsed
    }


def open_and_build(
    engine,
    name: str,
    settings: IndexSettings,
    documents: List[Dict],
    batch_size: int = INDEXING_BATCH_SIZE
):
    """Open a fresh index and fill it. Returns the committed index."""
    try:
        index = engine.open_index(name, settings)
    except (BenchmarkError, ValueError, OSError) as e:
        raise IndexBuildError(f"could not open index {name!r}: {e}") from e

    logger.info(f"Building index {name!r} from {len(documents):,} documents")
    stats = build_index(index, documents, batch_size)
    logger.info(
        f"Index {name!r} ready: {stats['documents']:,} documents in "
        f"{stats['batches']} batch(es), {stats['elapsed_sec']:.2f}s"
    )
    return index
