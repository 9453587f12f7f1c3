"""
Fixed query workloads for the search benchmarks, and the index settings
each corpus is indexed with.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

from config import SEARCH_LIMIT
from engine import IndexSettings


@dataclass(frozen=True)
class QueryCase:
    name: str
    query: str = ""
    filters: Tuple[Tuple[str, str, float], ...] = ()
    geo_radius: Optional[Tuple[float, float, float]] = None  # lat, lng, meters
    limit: int = SEARCH_LIMIT
    expected_count: Optional[int] = None


INDEX_SETTINGS = {
    "songs": IndexSettings(
        primary_key="id",
        searchable_fields=("title", "album", "artist"),
        filterable_fields=("released-timestamp", "duration-float"),
    ),
    "wiki": IndexSettings(
        primary_key="id",
        searchable_fields=("title", "body"),
    ),
    "movies": IndexSettings(
        primary_key="id",
        searchable_fields=("title", "overview"),
        filterable_fields=("release_date",),
    ),
    "geo": IndexSettings(
        primary_key="geonameid",
        searchable_fields=("name", "alternatenames"),
        filterable_fields=("population", "elevation"),
        geo=True,
    ),
}

SONGS_QUERIES = [
    QueryCase("placeholder"),
    QueryCase("john", "john"),
    QueryCase("david", "david"),
    QueryCase("charles", "charles"),
    QueryCase("david bowie", "david bowie"),
    QueryCase("michael jackson", "michael jackson"),
    QueryCase("thelonious monk", "thelonious monk"),
    QueryCase("charles mingus", "charles mingus"),
    QueryCase("marcus miller", "marcus miller"),
    QueryCase("tamo", "tamo"),
    QueryCase("Notstandskomitee", "Notstandskomitee"),
    QueryCase("Teen Spirit", "Teen Spirit"),
    QueryCase("released after 2000", filters=(("released-timestamp", ">=", 946684800),)),
    QueryCase("short songs", filters=(("duration-float", "<", 2.0),)),
    QueryCase(
        "john released in the 90s",
        "john",
        filters=(
            ("released-timestamp", ">=", 631152000),
            ("released-timestamp", "<", 946684800),
        ),
    ),
]

WIKI_QUERIES = [
    QueryCase("placeholder"),
    QueryCase("mingus", "mingus"),
    QueryCase("miles davis", "miles davis"),
    QueryCase("rock and roll", "rock and roll"),
    QueryCase("machine", "machine"),
    QueryCase("spain", "spain"),
    QueryCase("japan", "japan"),
    QueryCase("france", "france"),
    QueryCase("film", "film"),
    QueryCase("\"the beatles\"", "\"the beatles\""),
]

LILLE = (50.63, 3.008)

GEO_QUERIES = [
    QueryCase("placeholder"),
    QueryCase("1km around lille", geo_radius=LILLE + (1_000,)),
    QueryCase("100km around lille", geo_radius=LILLE + (100_000,)),
    QueryCase("1000km around lille", geo_radius=LILLE + (1_000_000,)),
    QueryCase("lille in 100km", "lille", geo_radius=LILLE + (100_000,)),
    QueryCase(
        "populated places around lille",
        filters=(("population", ">", 10_000),),
        geo_radius=LILLE + (100_000,),
    ),
    QueryCase("around the north pole", geo_radius=(89.9, 0.0, 50_000)),
]

SUITE_QUERIES = {
    "songs": SONGS_QUERIES,
    "wiki": WIKI_QUERIES,
    "geo": GEO_QUERIES,
}
