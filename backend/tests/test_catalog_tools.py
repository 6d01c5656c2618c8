"""
Tests for the music catalog collaborator and the read-only discovery tools.
"""

import random

import pytest

from tools.catalog import Collection, MusicCatalog, Track, get_catalog
from tools.discovery import (
    NO_MATCH_NOTE,
    RecommendationsInput,
    get_catalog_summary,
    get_recommendations,
    search_catalog,
)


@pytest.fixture
def big_catalog():
    """One collection with sixty numbered tracks."""
    return MusicCatalog(
        [Collection(id="big", title="Big Collection", description="d" * 400)],
        [Track(id=f"t{i}", title=f"Song {i}", collection="Big Collection", genres=["ambient"]) for i in range(60)],
    )


class TestMusicCatalog:
    """Lookup helpers."""

    def test_loads_bundled_catalog(self, catalog):
        assert len(catalog.collections) == 5
        assert len(catalog.tracks) == 15
        assert catalog.track_index["cr-001"].title == "Still Water"

    def test_get_catalog_returns_installed(self, catalog):
        assert get_catalog() is catalog

    def test_find_track_exact_then_substring(self, catalog):
        assert catalog.find_track_by_title("still water").id == "cr-001"
        assert catalog.find_track_by_title("orbit").id == "cr-002"
        assert catalog.find_track_by_title("   ") is None

    def test_find_collection(self, catalog):
        assert catalog.find_collection_by_name("Transformer").id == "transformer"
        assert catalog.find_collection_by_name("calm").id == "calm-reflections"
        assert catalog.find_collection_by_name("jazz") is None


class TestResolveTracks:
    """Ordered, de-duplicated resolution for proposals."""

    def test_ids_then_titles_then_collection(self, catalog):
        resolved = catalog.resolve_tracks_for_proposal(
            track_ids=["cr-002", "missing", "cr-002"],
            track_titles=["Still Water"],
            collection="calm reflections",
        )
        assert resolved.track_ids == ["cr-002", "cr-001", "cr-003"]
        assert resolved.track_titles == ["Quiet Orbit", "Still Water", "Morning Light"]
        assert resolved.collection_title == "Calm Reflections"

    def test_limit(self, catalog):
        resolved = catalog.resolve_tracks_for_proposal(collection="Majestic Ascent", limit=2)
        assert resolved.track_ids == ["ma-001", "ma-002"]

    def test_default_and_maximum_caps(self, big_catalog):
        assert len(big_catalog.resolve_tracks_for_proposal(collection="Big Collection").track_ids) == 20
        assert len(big_catalog.resolve_tracks_for_proposal(collection="Big Collection", limit=100).track_ids) == 50

    def test_collection_skipped_when_full(self, catalog):
        resolved = catalog.resolve_tracks_for_proposal(track_ids=["ma-001"], collection="Transformer", limit=1)
        assert resolved.track_ids == ["ma-001"]
        assert resolved.collection_title is None

    def test_nothing_resolves(self, catalog):
        resolved = catalog.resolve_tracks_for_proposal(track_titles=["Nonexistent Song"])
        assert resolved.track_ids == []
        assert resolved.collection_title is None


class TestSearchCatalog:
    """Fuzzy catalog search."""

    def test_exact_title_first(self, catalog):
        results = search_catalog("Transformer")
        assert results[0]["title"] == "Transformer"
        assert results[0]["kind"] == "collection"
        assert results[1]["title"] == "Transformer"
        assert results[1]["kind"] == "track"

    def test_exact_title_beats_partial(self):
        small = MusicCatalog([], [
            Track(id="a", title="Water Dance", collection="X"),
            Track(id="b", title="Water", collection="X"),
        ])
        assert [r["id"] for r in search_catalog("water", catalog=small)] == ["b", "a"]

    def test_type_filter_and_genre_match(self, catalog):
        results = search_catalog("ambient", type="track")
        assert all(r["kind"] == "track" for r in results)
        titles = {r["title"] for r in results}
        assert {"Still Water", "Quiet Orbit"} <= titles

    def test_typo_tolerance(self, catalog):
        results = search_catalog("calmn", type="collection")
        assert "Calm Reflections" in [r["title"] for r in results]

    def test_result_cap(self, big_catalog):
        assert len(search_catalog("song", type="track", catalog=big_catalog)) == 10


class TestCatalogSummary:
    """Collection overview."""

    def test_summary(self, catalog):
        summary = get_catalog_summary()
        assert summary["totalCollections"] == 5
        assert summary["totalTracks"] == 15
        calm = summary["collections"][4]
        assert calm["title"] == "Calm Reflections"
        assert calm["trackCount"] == 3
        assert calm["sampleTracks"] == ["Still Water", "Quiet Orbit", "Morning Light"]
        assert calm["primaryGenres"] == ["ambient", "drone", "atmospheric"]

    def test_max_collections(self, catalog):
        summary = get_catalog_summary(maxCollections=2)
        assert len(summary["collectionTitles"]) == 2
        assert summary["totalCollections"] == 5

    def test_description_truncation(self, big_catalog):
        entry = get_catalog_summary(catalog=big_catalog)["collections"][0]
        assert len(entry["description"]) == 300
        assert entry["description"].endswith("...")

    def test_without_descriptions(self, catalog):
        entry = get_catalog_summary(includeDescriptions=False)["collections"][0]
        assert "description" not in entry


class TestRecommendations:
    """Mood, energy and similarity scoring."""

    def test_mood_and_energy(self, catalog):
        recs = get_recommendations(mood="relaxation", energyLevel="low")["recommendations"]
        assert recs[0]["title"] == "Quiet Orbit"
        assert recs[0]["matchScore"] == 9

    def test_similar_to(self, catalog):
        recs = get_recommendations(similarTo="Still Water")["recommendations"]
        assert [(r["title"], r["matchScore"]) for r in recs] == [("Quiet Orbit", 4), ("Morning Light", 2)]

    def test_no_match_fallback(self, catalog):
        result = get_recommendations(energyLevel="high", collection="Calm", limit=5, rng=random.Random(1))
        assert result["note"] == NO_MATCH_NOTE
        assert len(result["recommendations"]) == 3
        assert all("matchScore" not in r for r in result["recommendations"])

    def test_limit(self, catalog):
        assert len(get_recommendations(mood="energy", limit=2)["recommendations"]) == 2

    def test_input_bounds(self):
        with pytest.raises(ValueError):
            RecommendationsInput(limit=11)
        with pytest.raises(ValueError):
            RecommendationsInput(mood="sad")
