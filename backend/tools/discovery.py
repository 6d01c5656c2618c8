"""
Read-only catalog discovery tools: searchCatalog, getCatalogSummary, getRecommendations.

Each executor returns a plain JSON-like structure; the registry applies
error isolation and output sanitization around it.
"""

import random
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from tools.catalog import MusicCatalog, Track, get_catalog
from tools.utils import MAX_RECOMMENDATIONS, MAX_SEARCH_RESULTS, fuzzy_match, top_counts

MOOD_GENRES = {
    "focus": ["ambient", "downtempo", "electronic"],
    "energy": ["electronic", "progressive", "high-energy"],
    "relaxation": ["ambient", "atmospheric", "chill"],
    "epic": ["orchestral", "cinematic", "epic"],
    "creative": ["electronic", "progressive", "experimental"],
    "ambient": ["ambient", "atmospheric", "drone"],
}

NO_MATCH_NOTE = "No exact matches found. Here are some suggestions to explore."

SUMMARY_DESCRIPTION_LIMIT = 300
MAX_SUMMARY_COLLECTIONS = 50


class SearchCatalogInput(BaseModel):
    query: str = Field(..., min_length=1, description="Search query (title, description or genre)")
    type: Literal["track", "collection", "all"] = Field("all", description="Restrict results to tracks or collections")


class CatalogSummaryInput(BaseModel):
    includeDescriptions: bool = Field(True, description="Include collection descriptions")
    maxCollections: int = Field(30, ge=1, le=MAX_SUMMARY_COLLECTIONS, description="Maximum collections to summarize")


class RecommendationsInput(BaseModel):
    mood: Optional[Literal["focus", "energy", "relaxation", "epic", "creative", "ambient"]] = Field(
        None, description="Desired mood"
    )
    energyLevel: Optional[Literal["low", "medium", "high"]] = Field(None, description="BPM energy band")
    similarTo: Optional[str] = Field(None, description="Title of a track to find similar music to")
    collection: Optional[str] = Field(None, description="Limit to a collection")
    limit: int = Field(5, ge=1, le=MAX_RECOMMENDATIONS, description="Number of recommendations")


def search_catalog(query: str, type: str = "all", catalog: Optional[MusicCatalog] = None) -> List[Dict[str, Any]]:
    """Fuzzy search over collection titles/descriptions and track titles/descriptions/genres."""
    catalog = catalog or get_catalog()
    q = query.lower()[:200]
    results: List[Dict[str, Any]] = []

    if type in ("all", "collection"):
        for collection in catalog.collections:
            if fuzzy_match(q, collection.title) or (collection.description and fuzzy_match(q, collection.description)):
                results.append({**collection.to_dict(), "kind": "collection"})

    if type in ("all", "track"):
        for track in catalog.tracks:
            if (
                fuzzy_match(q, track.title)
                or (track.description and fuzzy_match(q, track.description))
                or any(fuzzy_match(q, genre) for genre in track.genres)
            ):
                results.append({**track.to_dict(), "kind": "track"})

    # Stable sort keeps catalog order within each group
    results.sort(key=lambda item: 0 if item["title"].lower() == q else 1)
    return results[:MAX_SEARCH_RESULTS]


def get_catalog_summary(
    includeDescriptions: bool = True,
    maxCollections: int = 30,
    catalog: Optional[MusicCatalog] = None,
) -> Dict[str, Any]:
    catalog = catalog or get_catalog()
    capped = catalog.collections[: min(maxCollections, MAX_SUMMARY_COLLECTIONS)]

    collections = []
    for collection in capped:
        tracks = catalog.tracks_in_collection(collection.title)
        genres = [genre for track in tracks for genre in track.genres[:2] if genre]
        entry: Dict[str, Any] = {"id": collection.id, "title": collection.title}

        if includeDescriptions and collection.description:
            description = collection.description
            if len(description) > SUMMARY_DESCRIPTION_LIMIT:
                description = description[: SUMMARY_DESCRIPTION_LIMIT - 3] + "..."
            entry["description"] = description

        entry["trackCount"] = len(tracks)
        entry["sampleTracks"] = [track.title for track in tracks[:3]]
        entry["primaryGenres"] = top_counts(genres, 3)
        collections.append(entry)

    return {
        "totalCollections": len(catalog.collections),
        "totalTracks": len(catalog.tracks),
        "collectionTitles": [collection.title for collection in capped],
        "collections": collections,
    }


def _recommendation_view(track: Track) -> Dict[str, Any]:
    return {
        "id": track.id,
        "title": track.title,
        "collection": track.collection,
        "genres": track.genres,
        "bpm": track.bpm,
        "key": track.key,
    }


def _energy_score(energy_level: Optional[str], bpm: Optional[int]) -> int:
    if not energy_level or not bpm:
        return 0
    if energy_level == "low" and bpm < 100:
        return 3
    if energy_level == "medium" and 100 <= bpm <= 130:
        return 3
    if energy_level == "high" and bpm > 130:
        return 3
    return 0


def get_recommendations(
    mood: Optional[str] = None,
    energyLevel: Optional[str] = None,
    similarTo: Optional[str] = None,
    collection: Optional[str] = None,
    limit: int = 5,
    catalog: Optional[MusicCatalog] = None,
    rng: Optional[random.Random] = None,
) -> Dict[str, Any]:
    """Score tracks by mood genres, BPM band and similarity to a reference track."""
    catalog = catalog or get_catalog()
    effective_limit = min(limit, MAX_RECOMMENDATIONS)
    similar_to = similarTo[:200].lower() if similarTo else None
    collection_filter = collection[:100].lower() if collection else None

    candidates = list(catalog.tracks)
    if collection_filter:
        candidates = [t for t in candidates if collection_filter in (t.collection or "").lower()]

    reference = None
    if similar_to:
        reference = next((t for t in catalog.tracks if similar_to in t.title.lower()), None)

    scored = []
    for track in candidates:
        score = 0
        if mood in MOOD_GENRES:
            mood_genres = MOOD_GENRES[mood]
            score += 2 * sum(1 for g in track.genres if any(mg in g.lower() for mg in mood_genres))

        score += _energy_score(energyLevel, track.bpm)

        if reference and track.id != reference.id:
            if track.collection == reference.collection:
                score += 2
            score += sum(1 for g in track.genres if g in reference.genres)
            if track.bpm and reference.bpm and abs(track.bpm - reference.bpm) <= 10:
                score += 1

        if score > 0:
            scored.append((score, track))

    scored.sort(key=lambda item: item[0], reverse=True)

    if not scored:
        shuffled = list(candidates)
        (rng or random).shuffle(shuffled)
        return {
            "recommendations": [_recommendation_view(t) for t in shuffled[:effective_limit]],
            "note": NO_MATCH_NOTE,
        }

    return {
        "recommendations": [
            {**_recommendation_view(track), "matchScore": score} for score, track in scored[:effective_limit]
        ]
    }
