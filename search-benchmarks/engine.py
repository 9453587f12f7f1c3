"""
Narrow contract to the search engine under benchmark, and its tantivy
implementation.

The harness only relies on: open an index with settings, add documents,
commit, and run a query case returning a result count and hits.
"""

import json
import math
import re
import shutil
import sys
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Tuple

import tantivy

from config import INDEX_PATH, ENGINE_HEAP_SIZE, ENGINE_NUM_THREADS
from errors import EngineError

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6_371_000.0
GEO_FIELD = "_geo"
RESERVED_KEYWORDS = ("_geo", "_geoDistance", "_geoPoint", "_geoRadius")
DOCUMENT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


@dataclass(frozen=True)
class IndexSettings:
    """Per-corpus index configuration."""

    primary_key: Optional[str] = None
    searchable_fields: Tuple[str, ...] = ()
    filterable_fields: Tuple[str, ...] = ()
    geo: bool = False


class SearchIndex(Protocol):
    def add_documents(self, documents: List[Dict]) -> None: ...

    def commit(self) -> None: ...

    def search(self, case) -> Dict: ...

    def num_docs(self) -> int: ...

    def close(self) -> None: ...


class SearchEngine(Protocol):
    def open_index(self, name: str, settings: IndexSettings) -> SearchIndex: ...


def haversine_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in meters."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = phi2 - phi1
    dlambda = math.radians(lng2 - lng1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))


def geo_point(document: Dict) -> Optional[Tuple[float, float]]:
    """
    Read the (lat, lng) pair of a document's `_geo` field.

    Returns None when the document has no `_geo` field, raises EngineError
    when the field is not an object with numeric `lat` and `lng`.
    """
    value = document.get(GEO_FIELD)
    if value is None:
        return None
    if not isinstance(value, dict) or "lat" not in value or "lng" not in value:
        raise EngineError(f"invalid {GEO_FIELD} field: {value!r}")
    try:
        return float(value["lat"]), float(value["lng"])
    except (TypeError, ValueError):
        raise EngineError(f"invalid {GEO_FIELD} field: {value!r}")


def within_radius(document: Dict, lat: float, lng: float, meters: float) -> bool:
    point = geo_point(document)
    if point is None:
        return False
    return haversine_distance(lat, lng, point[0], point[1]) <= meters


def geo_bounding_box(lat: float, lng: float, meters: float) -> Tuple:
    """
    Smallest lat/lng box containing the circle. Longitude bounds are None
    when the circle reaches a pole or crosses the antimeridian.
    """
    angular = meters / EARTH_RADIUS_M
    dlat = math.degrees(angular)
    min_lat = max(-90.0, lat - dlat)
    max_lat = min(90.0, lat + dlat)

    cos_lat = math.cos(math.radians(lat))
    if min_lat <= -90.0 or max_lat >= 90.0 or math.sin(angular) >= cos_lat:
        return min_lat, max_lat, None, None

    dlng = math.degrees(math.asin(math.sin(angular) / cos_lat))
    if lng - dlng < -180.0 or lng + dlng > 180.0:
        return min_lat, max_lat, None, None
    return min_lat, max_lat, lng - dlng, lng + dlng


def validate_document_id(settings: IndexSettings, document: Dict):
    if settings.primary_key is None:
        return None
    if settings.primary_key not in document:
        raise EngineError(f"document is missing primary key {settings.primary_key!r}")
    doc_id = document[settings.primary_key]
    if isinstance(doc_id, bool) or not isinstance(doc_id, (int, str)):
        raise EngineError(f"invalid document id: {doc_id!r}")
    if isinstance(doc_id, str) and not DOCUMENT_ID_PATTERN.match(doc_id):
        raise EngineError(f"invalid document id: {doc_id!r}")
    return str(doc_id)


def _text_values(value) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        values = []
        for item in value:
            values.extend(_text_values(item))
        return values
    if isinstance(value, dict):
        return [json.dumps(value)]
    return [str(value)]


def _number(value) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(number) else number


# op -> (lower, upper, include_lower, include_upper)
FILTER_BOUNDS = {
    ">": lambda v: (v, sys.float_info.max, False, True),
    ">=": lambda v: (v, sys.float_info.max, True, True),
    "<": lambda v: (-sys.float_info.max, v, True, False),
    "<=": lambda v: (-sys.float_info.max, v, True, True),
    "=": lambda v: (v, v, True, True),
}


class TantivyIndex:
    """A tantivy index holding one corpus."""

    SOURCE = "source"
    PRIMARY_KEY = "pk"
    GEO_LAT = "geo_lat"
    GEO_LNG = "geo_lng"

    def __init__(self, name: str, settings: IndexSettings, path: Optional[Path],
                 heap_size: int = ENGINE_HEAP_SIZE, num_threads: int = ENGINE_NUM_THREADS):
        self.name = name
        self.settings = settings
        self.path = path

        # Internal field names are positional; corpus field names can hold
        # characters the engine's schema rejects.
        self.text_fields = {f: f"text_{i}" for i, f in enumerate(settings.searchable_fields)}
        self.number_fields = {f: f"num_{i}" for i, f in enumerate(settings.filterable_fields)}

        builder = tantivy.SchemaBuilder()
        builder.add_bytes_field(self.SOURCE, stored=True)
        builder.add_text_field(self.PRIMARY_KEY, stored=True, tokenizer_name="raw")
        for internal in self.text_fields.values():
            builder.add_text_field(internal, stored=False)
        for internal in self.number_fields.values():
            builder.add_float_field(internal, stored=False, indexed=True, fast=True)
        if settings.geo:
            builder.add_float_field(self.GEO_LAT, stored=False, indexed=True, fast=True)
            builder.add_float_field(self.GEO_LNG, stored=False, indexed=True, fast=True)
        self.schema = builder.build()

        if path is None:
            self.index = tantivy.Index(self.schema)
        else:
            self.index = tantivy.Index(self.schema, path=str(path))
        self.writer = self.index.writer(heap_size=heap_size, num_threads=num_threads)

    def _to_document(self, document: Dict):
        doc = tantivy.Document()
        doc_id = validate_document_id(self.settings, document)
        if doc_id is not None:
            doc.add_text(self.PRIMARY_KEY, doc_id)

        for field, internal in self.text_fields.items():
            for text in _text_values(document.get(field)):
                doc.add_text(internal, text)
        for field, internal in self.number_fields.items():
            number = _number(document.get(field))
            if number is not None:
                doc.add_float(internal, number)

        point = geo_point(document)
        if point is not None and self.settings.geo:
            doc.add_float(self.GEO_LAT, point[0])
            doc.add_float(self.GEO_LNG, point[1])

        doc.add_bytes(self.SOURCE, json.dumps(document).encode("utf-8"))
        return doc

    def add_documents(self, documents: List[Dict]) -> None:
        for document in documents:
            self.writer.add_document(self._to_document(document))

    def commit(self) -> None:
        self.writer.commit()
        self.index.reload()

    def num_docs(self) -> int:
        return self.index.searcher().num_docs

    def _range(self, field: str, lower: float, upper: float,
               include_lower: bool = True, include_upper: bool = True):
        return tantivy.Query.range_query(
            self.schema, field, tantivy.FieldType.Float, lower, upper,
            include_lower=include_lower, include_upper=include_upper
        )

    def build_query(self, case):
        clauses = []
        if case.query:
            fields = list(self.text_fields.values())
            clauses.append(self.index.parse_query(case.query, fields))

        for field, op, value in case.filters:
            if field not in self.number_fields:
                raise EngineError(f"field {field!r} is not filterable")
            if op not in FILTER_BOUNDS:
                raise EngineError(f"unsupported filter operator {op!r}")
            lower, upper, include_lower, include_upper = FILTER_BOUNDS[op](float(value))
            clauses.append(self._range(self.number_fields[field], lower, upper,
                                       include_lower, include_upper))

        if case.geo_radius is not None:
            if not self.settings.geo:
                raise EngineError(f"index {self.name!r} has no geo field")
            min_lat, max_lat, min_lng, max_lng = geo_bounding_box(*case.geo_radius)
            clauses.append(self._range(self.GEO_LAT, min_lat, max_lat))
            if min_lng is not None:
                clauses.append(self._range(self.GEO_LNG, min_lng, max_lng))

        if not clauses:
            return tantivy.Query.all_query()
        if len(clauses) == 1:
            return clauses[0]
        return tantivy.Query.boolean_query([(tantivy.Occur.Must, c) for c in clauses])

    def _source(self, searcher, address) -> Dict:
        return json.loads(searcher.doc(address).get_first(self.SOURCE))

    def search(self, case) -> Dict:
        query = self.build_query(case)
        searcher = self.index.searcher()

        if case.geo_radius is None:
            result = searcher.search(query, limit=case.limit, count=True)
            hits = [self._source(searcher, address) for _, address in result.hits]
            return {"count": result.count, "hits": hits}

        # The box over-selects; refine every candidate by distance.
        lat, lng, meters = case.geo_radius
        result = searcher.search(query, limit=max(1, searcher.num_docs), count=False)
        matches = []
        for _, address in result.hits:
            document = self._source(searcher, address)
            if within_radius(document, lat, lng, meters):
                matches.append(document)
        return {"count": len(matches), "hits": matches[:case.limit]}

    def close(self) -> None:
        self.writer.wait_merging_threads()


class TantivyEngine:
    """Opens empty tantivy indexes, on disk under `index_dir` or in RAM."""

    def __init__(self, index_dir: Optional[str] = INDEX_PATH,
                 heap_size: int = ENGINE_HEAP_SIZE, num_threads: int = ENGINE_NUM_THREADS):
        self.index_dir = index_dir
        self.heap_size = heap_size
        self.num_threads = num_threads

    def open_index(self, name: str, settings: IndexSettings) -> TantivyIndex:
        for field in settings.searchable_fields + settings.filterable_fields:
            if field in RESERVED_KEYWORDS:
                raise EngineError(f"{field!r} is a reserved keyword")

        path = None
        if self.index_dir is not None:
            path = Path(self.index_dir) / name
            if path.exists():
                logger.debug(f"Removing previous index at {path}")
                shutil.rmtree(path)
            path.mkdir(parents=True)

        try:
            return TantivyIndex(name, settings, path, self.heap_size, self.num_threads)
        except ValueError as e:
            raise EngineError(f"could not open index {name!r}: {e}") from e
