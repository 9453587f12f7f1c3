"""Shared fixtures: a fake corpus provider and an in-memory engine."""

import gzip
import operator
import threading
from typing import Dict, List

import pytest

from datasets import CORPORA, REFERENCE_CORPORA
from engine import IndexSettings, within_radius
from errors import EngineError


SONGS_CSV = (
    "id,title,album,artist,genre,released-timestamp:number,duration-float:number\n"
    "1,Space Oddity,David Bowie,David Bowie,rock,-16000000,5.15\n"
    "2,Heroes,Heroes,David Bowie,rock,244000000,6.1\n"
    "3,Billie Jean,Thriller,Michael Jackson,pop,410000000,4.9\n"
    "4,Goodbye Pork Pie Hat,Mingus Ah Um,Charles Mingus,jazz,-315000000,5.7\n"
    "5,Tutu,Tutu,Miles Davis,jazz,528000000,5.2\n"
)

WIKI_CSV = (
    "id,title,body\n"
    "1,Charles Mingus,American jazz double bassist\n"
    "2,Miles Davis,American jazz trumpeter\n"
    "3,Spain,Country in southwestern Europe\n"
)

MOVIES_JSON = (
    '[{"id": 1, "title": "Carol", "overview": "A love story", "release_date": 1448928000},'
    ' {"id": 2, "title": "Wild Tales", "overview": "Six stories", "release_date": 1408665600}]'
)

# Lille, Roubaix (~11km away) and Paris (~205km away).
GEO_JSONL = (
    '{"geonameid": 2998324, "name": "Lille", "_geo": {"lat": 50.633, "lng": 3.0586}, "population": 234475}\n'
    '{"geonameid": 2982652, "name": "Roubaix", "_geo": {"lat": 50.6942, "lng": 3.1746}, "population": 96990}\n'
    '{"geonameid": 2988507, "name": "Paris", "_geo": {"lat": 48.8534, "lng": 2.3488}, "population": 2138551}\n'
)

FIXTURES = {
    "songs": SONGS_CSV.encode("utf-8"),
    "wiki": WIKI_CSV.encode("utf-8"),
    "movies": MOVIES_JSON.encode("utf-8"),
    "geo": GEO_JSONL.encode("utf-8"),
}


class FakeCorpusProvider:
    """Serves gzip-compressed fixtures and records which corpora were requested."""

    def __init__(self, payloads: Dict[str, bytes] = None, failing=(), chunk_size: int = 7):
        self.payloads = dict(FIXTURES if payloads is None else payloads)
        self.failing = set(failing)
        self.chunk_size = chunk_size
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def fetch(self, descriptor):
        with self._lock:
            self.calls.append(descriptor.name)
        if descriptor.name in self.failing:
            raise ConnectionError(f"cannot reach {descriptor.locator}")
        archive = gzip.compress(self.payloads[descriptor.name])
        for start in range(0, len(archive), self.chunk_size):
            yield archive[start:start + self.chunk_size]


_OPS = {
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
    "=": operator.eq,
}


class InMemoryIndex:
    """Naive index implementing the engine contract for tests."""

    def __init__(self, name: str, settings: IndexSettings, fail_on_add=False, fail_on_search=False):
        self.name = name
        self.settings = settings
        self.pending: List[Dict] = []
        self.documents: List[Dict] = []
        self.add_calls: List[int] = []
        self.commits = 0
        self.closed = False
        self.fail_on_add = fail_on_add
        self.fail_on_search = fail_on_search

    def add_documents(self, documents):
        if self.fail_on_add:
            raise EngineError("disk full")
        self.add_calls.append(len(documents))
        self.pending.extend(documents)

    def commit(self):
        self.documents.extend(self.pending)
        self.pending = []
        self.commits += 1

    def num_docs(self):
        return len(self.documents)

    def _matches(self, document, case):
        if case.query:
            text = " ".join(
                str(document.get(f, "")) for f in self.settings.searchable_fields
            ).lower().split()
            terms = case.query.replace('"', " ").lower().split()
            if not all(term in text for term in terms):
                return False
        for field, op, value in case.filters:
            if field not in document or document[field] is None:
                return False
            if not _OPS[op](float(document[field]), value):
                return False
        if case.geo_radius is not None and not within_radius(document, *case.geo_radius):
            return False
        return True

    def search(self, case):
        if self.fail_on_search:
            raise EngineError("index is corrupted")
        matches = [d for d in self.documents if self._matches(d, case)]
        return {"count": len(matches), "hits": matches[:case.limit]}

    def close(self):
        self.closed = True


class InMemoryEngine:
    def __init__(self, fail_on_add=False, fail_on_search=False):
        self.opened: List[InMemoryIndex] = []
        self.fail_on_add = fail_on_add
        self.fail_on_search = fail_on_search

    def open_index(self, name, settings):
        index = InMemoryIndex(name, settings, self.fail_on_add, self.fail_on_search)
        self.opened.append(index)
        return index


@pytest.fixture(autouse=True)
def unpinned_corpora(monkeypatch):
    """Fixture payloads are not the published archives, so drop any pins."""
    for descriptor in REFERENCE_CORPORA:
        monkeypatch.setitem(CORPORA, descriptor.name, descriptor)


@pytest.fixture
def provider():
    return FakeCorpusProvider()


@pytest.fixture
def engine():
    return InMemoryEngine()


@pytest.fixture
def datasets_dir(tmp_path):
    return str(tmp_path / "datasets")


@pytest.fixture
def results_dir(tmp_path):
    return str(tmp_path / "results")
