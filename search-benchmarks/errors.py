"""
Error taxonomy for the benchmark harness.

Acquisition failures abort a run, per-entry failures are recorded in the
report and sibling entries keep running.
"""

from dataclasses import dataclass
from typing import Optional


class BenchmarkError(Exception):
    """Base class for harness errors."""


class FetchError(BenchmarkError):
    """Downloading, decompressing or verifying a corpus failed."""

    def __init__(self, corpus: str, message: str):
        super().__init__(f"{corpus}: {message}")
        self.corpus = corpus


class ParseError(BenchmarkError):
    """A corpus file holds a malformed record."""

    def __init__(self, path: str, message: str, line: Optional[int] = None):
        location = f"{path}:{line}" if line is not None else path
        super().__init__(f"{location}: {message}")
        self.path = path
        self.line = line


class EngineError(BenchmarkError):
    """The search engine rejected a document or an operation."""


class IndexBuildError(BenchmarkError):
    """Adding documents to an index or committing it failed."""


class QueryError(BenchmarkError):
    """Executing a query against an index failed."""


@dataclass(frozen=True)
class CorrectnessMismatch:
    """A query returned a different result count than it declares."""

    case: str
    expected: int
    actual: int

    def __str__(self):
        return f"{self.case}: expected {self.expected} results, got {self.actual}"
