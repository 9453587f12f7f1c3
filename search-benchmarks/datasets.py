"""
Download and cache the reference corpora used by the benchmarks.

Each corpus is served gzip-compressed from a fixed remote location. The
decompressed file is cached under the datasets directory together with a
`.sha256` sidecar; a present file whose digest matches is reused without any
network I/O. Corpora pinned in `datasets.sha256` are verified against the
pinned digest and archive size instead of the sidecar.

Usage:
    python datasets.py                  # fetch all corpora
    python datasets.py songs geo        # fetch a subset
    python datasets.py --force wiki     # discard the cache and refetch
    python datasets.py --pin            # refetch and record the digests
"""

import os
import sys
import time
import zlib
import hashlib
import logging
import argparse
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple
from concurrent.futures import ThreadPoolExecutor, as_completed

import requests

from config import (
    CHECKSUMS_FILE, DATASETS_URL, DATASETS_PATH, DOWNLOAD_TIMEOUT,
    DOWNLOAD_CHUNK_SIZE, FETCH_WORKERS
)
from errors import FetchError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CorpusDescriptor:
    """One fixed reference dataset."""

    name: str
    locator: str  # archive name relative to the datasets URL
    file_name: str  # decompressed file name inside the cache directory
    format: str  # "csv" or "json"
    compressed_size: Optional[int] = None
    sha256: Optional[str] = None  # digest of the decompressed content


REFERENCE_CORPORA = [
    CorpusDescriptor("songs", "smol-songs.csv.gz", "smol-songs.csv", "csv"),
    CorpusDescriptor("wiki", "smol-wiki-articles.csv.gz", "smol-wiki-articles.csv", "csv"),
    CorpusDescriptor("movies", "movies.json.gz", "movies.json", "json"),
    CorpusDescriptor("geo", "smol-all-countries.jsonl.gz", "smol-all-countries.jsonl", "json"),
]


def load_checksums(path: str = CHECKSUMS_FILE) -> Dict[str, Tuple[str, int]]:
    """
    Read pinned digests, one `<sha256> <archive size> <corpus>` line per
    corpus. A missing file pins nothing.
    """
    path = Path(path)
    pins = {}
    if not path.is_file():
        return pins

    for n, line in enumerate(path.read_text(encoding="utf-8").splitlines(), 1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        parts = line.split()
        if len(parts) != 3 or not parts[1].isdigit():
            raise ValueError(f"{path}:{n}: expected '<sha256> <archive size> <corpus>'")
        digest, size, name = parts
        pins[name] = (digest.lower(), int(size))
    return pins


def write_checksums(pins: Dict[str, Tuple[str, int]], path: str = CHECKSUMS_FILE) -> None:
    lines = [
        "# Pinned reference corpora, one per line:",
        "#   <sha256 of the decompressed file> <archive size in bytes> <corpus>",
        "# Regenerate from a trusted download with: fetch-datasets --pin",
    ]
    lines += [f"{digest} {size} {name}" for name, (digest, size) in sorted(pins.items())]
    Path(path).write_text("\n".join(lines) + "\n", encoding="utf-8")


def pin_descriptors(
    descriptors: List[CorpusDescriptor],
    pins: Dict[str, Tuple[str, int]]
) -> Dict[str, CorpusDescriptor]:
    """Descriptors by name, with checksum and archive size taken from `pins`."""
    pinned = {}
    for descriptor in descriptors:
        if descriptor.name in pins:
            digest, size = pins[descriptor.name]
            descriptor = replace(descriptor, sha256=digest, compressed_size=size)
        pinned[descriptor.name] = descriptor
    return pinned


CORPORA: Dict[str, CorpusDescriptor] = pin_descriptors(REFERENCE_CORPORA, load_checksums())


class HttpCorpusProvider:
    """Streams compressed archives from an HTTP(S) endpoint."""

    def __init__(
        self,
        base_url: str = DATASETS_URL,
        timeout: int = DOWNLOAD_TIMEOUT,
        chunk_size: int = DOWNLOAD_CHUNK_SIZE
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.chunk_size = chunk_size

    def url_for(self, descriptor: CorpusDescriptor) -> str:
        return f"{self.base_url}/{descriptor.locator}"

    def fetch(self, descriptor: CorpusDescriptor) -> Iterator[bytes]:
        url = self.url_for(descriptor)
        logger.info(f"Downloading {url}")
        with requests.get(url, stream=True, timeout=self.timeout) as response:
            response.raise_for_status()
            for chunk in response.iter_content(chunk_size=self.chunk_size):
                if chunk:
                    yield chunk


def cache_path(descriptor: CorpusDescriptor, cache_dir: str = DATASETS_PATH) -> Path:
    return Path(cache_dir) / descriptor.file_name


def _sidecar_path(target: Path) -> Path:
    return target.with_name(target.name + ".sha256")


def read_sidecar(target: Path) -> Optional[Tuple[str, Optional[int]]]:
    """(digest, archive size) recorded when `target` was fetched."""
    sidecar = _sidecar_path(target)
    if not sidecar.is_file():
        return None
    parts = sidecar.read_text(encoding="utf-8").split()
    if not parts:
        return None
    size = int(parts[1]) if len(parts) > 1 and parts[1].isdigit() else None
    return parts[0], size


def file_digest(path: Path) -> str:
    """SHA-256 of a file's content, read in chunks."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(DOWNLOAD_CHUNK_SIZE), b""):
            digest.update(block)
    return digest.hexdigest()


def is_cached(descriptor: CorpusDescriptor, cache_dir: str = DATASETS_PATH) -> bool:
    """
    Check whether a valid decompressed copy is already cached.

    The file's digest is compared to the descriptor's checksum when it
    declares one, otherwise to the sidecar recorded at fetch time.
    """
    target = cache_path(descriptor, cache_dir)
    if not target.is_file():
        return False

    expected = descriptor.sha256
    if expected is None:
        recorded = read_sidecar(target)
        if recorded is None:
            return False
        expected = recorded[0]

    return file_digest(target) == expected


def _decompress_stream(
    descriptor: CorpusDescriptor,
    chunks: Iterable[bytes],
    out_path: Path
) -> Dict:
    """Gunzip `chunks` into `out_path`, returning byte counts and digest."""
    decompressor = zlib.decompressobj(16 + zlib.MAX_WBITS)
    digest = hashlib.sha256()
    compressed = 0
    decompressed = 0

    with open(out_path, "wb") as out:
        for chunk in chunks:
            compressed += len(chunk)
            data = decompressor.decompress(chunk)
            if data:
                digest.update(data)
                out.write(data)
                decompressed += len(data)
        tail = decompressor.flush()
        if tail:
            digest.update(tail)
            out.write(tail)
            decompressed += len(tail)

    if not decompressor.eof:
        raise FetchError(descriptor.name, "archive is truncated")

    return {
        "compressed_bytes": compressed,
        "decompressed_bytes": decompressed,
        "sha256": digest.hexdigest()
    }


def fetch_corpus(
    descriptor: CorpusDescriptor,
    cache_dir: str = DATASETS_PATH,
    provider=None,
    force: bool = False
) -> Path:
    """
    Return the path of a decompressed, locally cached corpus file.

    Downloads only when the cache is absent or stale. Any failure removes
    the partial file and raises FetchError; nothing is retried.
    """
    if provider is None:
        provider = HttpCorpusProvider()

    target = cache_path(descriptor, cache_dir)
    if not force and is_cached(descriptor, cache_dir):
        logger.info(f"Cache hit for {descriptor.name}: {target}")
        return target

    if descriptor.sha256 is None:
        logger.warning(f"{descriptor.name} has no pinned checksum, trusting the downloaded archive")

    partial = target.with_name(target.name + ".part")
    sidecar = _sidecar_path(target)

    start = time.perf_counter()
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        if sidecar.exists():
            sidecar.unlink()

        stats = _decompress_stream(descriptor, provider.fetch(descriptor), partial)

        if (descriptor.compressed_size is not None
                and stats["compressed_bytes"] != descriptor.compressed_size):
            raise FetchError(
                descriptor.name,
                f"expected {descriptor.compressed_size} compressed bytes, "
                f"got {stats['compressed_bytes']}"
            )
        if descriptor.sha256 is not None and stats["sha256"] != descriptor.sha256:
            raise FetchError(
                descriptor.name,
                f"checksum mismatch: expected {descriptor.sha256}, got {stats['sha256']}"
            )

        os.replace(partial, target)
        sidecar.write_text(f"{stats['sha256']} {stats['compressed_bytes']}\n", encoding="utf-8")
    except FetchError:
        _discard(partial)
        raise
    except requests.RequestException as e:
        _discard(partial)
        raise FetchError(descriptor.name, f"download failed: {e}") from e
    except zlib.error as e:
        _discard(partial)
        raise FetchError(descriptor.name, f"decompression failed: {e}") from e
    except OSError as e:
        _discard(partial)
        raise FetchError(descriptor.name, f"I/O error: {e}") from e

    elapsed = time.perf_counter() - start
    logger.info(
        f"Fetched {descriptor.name}: {stats['compressed_bytes']:,} bytes compressed, "
        f"{stats['decompressed_bytes']:,} bytes decompressed in {elapsed:.2f}s"
    )
    return target


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass


def fetch_corpora(
    descriptors: List[CorpusDescriptor],
    cache_dir: str = DATASETS_PATH,
    provider=None,
    max_workers: int = FETCH_WORKERS,
    force: bool = False
) -> Dict[str, Path]:
    """
    Fetch several corpora concurrently.

    Each fetch writes its own cache file. The first failure cancels the
    fetches that have not started yet and is re-raised.
    """
    if not descriptors:
        return {}
    if provider is None:
        provider = HttpCorpusProvider()

    paths = {}
    workers = max(1, min(max_workers, len(descriptors)))

    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = {
            executor.submit(fetch_corpus, d, cache_dir, provider, force): d
            for d in descriptors
        }
        try:
            for future in as_completed(futures):
                descriptor = futures[future]
                paths[descriptor.name] = future.result()
        except FetchError:
            for future in futures:
                future.cancel()
            raise

    return paths


def main(argv=None):
    """Build step: fetch the reference corpora into the local cache."""
    logging.basicConfig(
        level=logging.INFO,
        format='[%(levelname)s] %(asctime)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    parser = argparse.ArgumentParser(description="Fetch benchmark datasets")
    parser.add_argument("names", nargs="*",
                        help=f"Corpora to fetch: {', '.join(CORPORA)} (default: all)")
    parser.add_argument("--datasets-dir", type=str, default=DATASETS_PATH,
                        help="Cache directory for decompressed corpora")
    parser.add_argument("--url", type=str, default=DATASETS_URL,
                        help="Base URL serving the compressed corpora")
    parser.add_argument("--workers", type=int, default=FETCH_WORKERS,
                        help="Concurrent downloads")
    parser.add_argument("--force", action="store_true",
                        help="Refetch even when the cache is valid")
    parser.add_argument("--pin", action="store_true",
                        help="Refetch and record digests and archive sizes in the checksums file")
    parser.add_argument("--checksums", type=str, default=CHECKSUMS_FILE,
                        help="Pinned checksums file")

    args = parser.parse_args(argv)

    names = args.names or list(CORPORA)
    unknown = [name for name in names if name not in CORPORA]
    if unknown:
        parser.error(f"unknown corpora: {', '.join(unknown)}")
    if args.pin:
        reference = {d.name: d for d in REFERENCE_CORPORA}
        descriptors = [reference[name] for name in names]
    else:
        descriptors = [CORPORA[name] for name in names]

    try:
        paths = fetch_corpora(
            descriptors,
            cache_dir=args.datasets_dir,
            provider=HttpCorpusProvider(base_url=args.url),
            max_workers=args.workers,
            force=args.force or args.pin
        )
    except FetchError as e:
        logger.error(f"Fetch failed: {e}")
        sys.exit(1)

    for name in names:
        logger.info(f"{name}: {paths[name]}")

    if args.pin:
        pins = load_checksums(args.checksums)
        for name in names:
            pins[name] = read_sidecar(paths[name])
        write_checksums(pins, args.checksums)
        logger.info(f"Pinned {', '.join(names)} in {args.checksums}")

    return paths


if __name__ == "__main__":
    main()
