"""Tests for the engine contract: geo helpers and the tantivy adapter."""

import json

import pytest

from conftest import GEO_JSONL, SONGS_CSV
from corpus import load_csv, load_json
from engine import (
    IndexSettings,
    TantivyEngine,
    geo_bounding_box,
    geo_point,
    haversine_distance,
    within_radius,
)
from errors import EngineError
from queries import INDEX_SETTINGS, QueryCase

LILLE = (50.633, 3.0586)
PARIS = (48.8534, 2.3488)


class TestGeoHelpers:
    def test_haversine_lille_paris(self):
        assert haversine_distance(*LILLE, *PARIS) == pytest.approx(204_000, rel=0.01)

    def test_haversine_same_point(self):
        assert haversine_distance(*LILLE, *LILLE) == 0

    def test_within_radius(self):
        document = {"_geo": {"lat": PARIS[0], "lng": PARIS[1]}}
        assert within_radius(document, *LILLE, 210_000)
        assert not within_radius(document, *LILLE, 200_000)

    def test_document_without_geo_is_never_within(self):
        assert not within_radius({"name": "nowhere"}, *LILLE, 1e9)

    def test_geo_point_accepts_numeric_strings(self):
        assert geo_point({"_geo": {"lat": "1.5", "lng": "-2"}}) == (1.5, -2.0)

    @pytest.mark.parametrize("value", [
        [50.6, 3.0],
        {"lat": 50.6},
        {"lat": "north", "lng": 3.0},
    ])
    def test_invalid_geo_field(self, value):
        with pytest.raises(EngineError, match="invalid _geo"):
            geo_point({"_geo": value})

    def test_bounding_box_contains_circle(self):
        min_lat, max_lat, min_lng, max_lng = geo_bounding_box(*LILLE, 100_000)
        assert min_lat < LILLE[0] < max_lat
        assert min_lng < LILLE[1] < max_lng
        # a point on the circle's eastern edge is inside the box
        assert haversine_distance(*LILLE, LILLE[0], max_lng) >= 99_000

    def test_bounding_box_at_pole_drops_longitude(self):
        assert geo_bounding_box(89.9, 0.0, 50_000)[2:] == (None, None)

    def test_bounding_box_across_antimeridian_drops_longitude(self):
        assert geo_bounding_box(0.0, 179.9, 50_000)[2:] == (None, None)


@pytest.fixture
def tantivy_engine():
    return TantivyEngine(index_dir=None, heap_size=50_000_000, num_threads=1)


@pytest.fixture
def songs(tmp_path):
    path = tmp_path / "songs.csv"
    path.write_text(SONGS_CSV, encoding="utf-8")
    return load_csv(path)


@pytest.fixture
def places(tmp_path):
    path = tmp_path / "geo.jsonl"
    path.write_text(GEO_JSONL, encoding="utf-8")
    return load_json(path)


def _build(engine, name, settings, documents):
    index = engine.open_index(name, settings)
    index.add_documents(documents)
    index.commit()
    return index


class TestTantivyIndex:
    def test_text_search(self, tantivy_engine, songs):
        index = _build(tantivy_engine, "songs", INDEX_SETTINGS["songs"], songs)

        assert index.num_docs() == 5
        result = index.search(QueryCase("mingus", "mingus"))
        assert result["count"] == 1
        assert result["hits"][0]["title"] == "Goodbye Pork Pie Hat"

    def test_hits_are_the_original_documents(self, tantivy_engine, songs):
        index = _build(tantivy_engine, "songs", INDEX_SETTINGS["songs"], songs)

        hits = index.search(QueryCase("tutu", "tutu"))["hits"]

        assert hits == [songs[4]]
        assert list(hits[0]) == list(songs[4])

    def test_placeholder_matches_everything(self, tantivy_engine, songs):
        index = _build(tantivy_engine, "songs", INDEX_SETTINGS["songs"], songs)
        result = index.search(QueryCase("placeholder", limit=2))
        assert result["count"] == 5
        assert len(result["hits"]) == 2

    def test_numeric_filter(self, tantivy_engine, songs):
        index = _build(tantivy_engine, "songs", INDEX_SETTINGS["songs"], songs)

        after_1970 = QueryCase("after 1970", filters=(("released-timestamp", ">=", 0),))
        short = QueryCase("short", filters=(("duration-float", "<", 5.0),))

        assert index.search(after_1970)["count"] == 3
        assert index.search(short)["count"] == 1

    def test_unknown_filter_field(self, tantivy_engine, songs):
        index = _build(tantivy_engine, "songs", INDEX_SETTINGS["songs"], songs)
        with pytest.raises(EngineError, match="not filterable"):
            index.search(QueryCase("bad", filters=(("genre", "=", 1),)))

    def test_geo_radius_counts_points_inside(self, tantivy_engine, places):
        index = _build(tantivy_engine, "geo", INDEX_SETTINGS["geo"], places)
        around_lille = QueryCase("50km around lille", geo_radius=LILLE + (50_000,))

        for _ in range(5):
            result = index.search(around_lille)
            assert result["count"] == 2
            assert sorted(hit["name"] for hit in result["hits"]) == ["Lille", "Roubaix"]

    def test_geo_radius_with_text(self, tantivy_engine, places):
        index = _build(tantivy_engine, "geo", INDEX_SETTINGS["geo"], places)
        result = index.search(QueryCase("paris near lille", "paris", geo_radius=LILLE + (50_000,)))
        assert result["count"] == 0

    def test_geo_radius_on_index_without_geo(self, tantivy_engine, songs):
        index = _build(tantivy_engine, "songs", INDEX_SETTINGS["songs"], songs)
        with pytest.raises(EngineError, match="no geo field"):
            index.search(QueryCase("geo", geo_radius=LILLE + (1_000,)))

    def test_empty_commit(self, tantivy_engine):
        index = _build(tantivy_engine, "empty", INDEX_SETTINGS["wiki"], [])
        assert index.num_docs() == 0
        assert index.search(QueryCase("anything", "anything"))["count"] == 0

    def test_missing_primary_key(self, tantivy_engine):
        index = tantivy_engine.open_index("wiki", INDEX_SETTINGS["wiki"])
        with pytest.raises(EngineError, match="missing primary key"):
            index.add_documents([{"title": "No id"}])

    def test_invalid_document_id(self, tantivy_engine):
        index = tantivy_engine.open_index("wiki", INDEX_SETTINGS["wiki"])
        with pytest.raises(EngineError, match="invalid document id"):
            index.add_documents([{"id": "a b", "title": "Spaces"}])

    def test_invalid_geo_field(self, tantivy_engine):
        index = tantivy_engine.open_index("geo", INDEX_SETTINGS["geo"])
        with pytest.raises(EngineError, match="invalid _geo"):
            index.add_documents([{"geonameid": 1, "_geo": {"lat": 1.0}}])


class TestTantivyEngine:
    def test_reserved_keyword_rejected(self, tantivy_engine):
        with pytest.raises(EngineError, match="reserved"):
            tantivy_engine.open_index("bad", IndexSettings(searchable_fields=("_geoPoint",)))

    def test_reopening_starts_empty(self, tmp_path, songs):
        engine = TantivyEngine(index_dir=str(tmp_path / "indexes"), heap_size=50_000_000, num_threads=1)

        first = _build(engine, "songs", INDEX_SETTINGS["songs"], songs)
        assert first.num_docs() == 5
        first.close()

        second = engine.open_index("songs", INDEX_SETTINGS["songs"])
        assert second.num_docs() == 0
        assert (tmp_path / "indexes" / "songs").is_dir()
        second.close()

    def test_documents_round_trip_through_json(self, tantivy_engine):
        document = {"id": 7, "title": "Nested", "body": {"sections": ["a", "b"]}, "score": None}
        index = _build(tantivy_engine, "wiki", INDEX_SETTINGS["wiki"], [document])
        assert json.dumps(index.search(QueryCase("nested", "nested"))["hits"][0]) == json.dumps(document)
