"""
Music catalog collaborator - read-only tracks and collections.

The catalog is static content loaded from a JSON file:

    {"collections": [{"id", "title", "description"}],
     "tracks": [{"id", "title", "artist", "collection", "description",
                 "genres", "bpm", "key", "duration"}]}

Tracks reference their collection by title. Lookup helpers here are shared
by the discovery tools and the proposal tools.
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from tools.utils import DEFAULT_ACTIVE_CONTROL_LIMIT, MAX_ACTIVE_CONTROL_TRACKS, normalize_catalog_text

logger = logging.getLogger(__name__)


@dataclass
class Track:
    id: str
    title: str
    collection: str
    artist: str = "MetaDJ"
    description: str = ""
    genres: List[str] = field(default_factory=list)
    bpm: Optional[int] = None
    key: Optional[str] = None
    duration: Optional[int] = None

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class Collection:
    id: str
    title: str
    description: str = ""

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class ResolvedTracks:
    track_ids: List[str]
    track_titles: List[str]
    collection_title: Optional[str] = None


class MusicCatalog:
    """In-memory catalog with an id index."""

    def __init__(self, collections: List[Collection], tracks: List[Track]):
        self.collections = collections
        self.tracks = tracks
        self.track_index: Dict[str, Track] = {track.id: track for track in tracks}

    @classmethod
    def from_dict(cls, data: Dict) -> "MusicCatalog":
        collections = [Collection(**c) for c in data.get("collections", [])]
        tracks = [Track(**t) for t in data.get("tracks", [])]
        return cls(collections, tracks)

    @classmethod
    def load(cls, path: Path) -> "MusicCatalog":
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        catalog = cls.from_dict(data)
        logger.info(f"Music catalog loaded: {len(catalog.collections)} collections, {len(catalog.tracks)} tracks")
        return catalog

    def tracks_in_collection(self, collection_title: str) -> List[Track]:
        return [track for track in self.tracks if track.collection == collection_title]

    def find_track_by_title(self, title: str) -> Optional[Track]:
        """Exact normalized title first, then substring."""
        normalized = normalize_catalog_text(title)
        if not normalized:
            return None
        for track in self.tracks:
            if normalize_catalog_text(track.title) == normalized:
                return track
        for track in self.tracks:
            if normalized in normalize_catalog_text(track.title):
                return track
        return None

    def find_collection_by_name(self, name: str) -> Optional[Collection]:
        """Exact normalized title first, then substring."""
        normalized = normalize_catalog_text(name)
        if not normalized:
            return None
        for collection in self.collections:
            if normalize_catalog_text(collection.title) == normalized:
                return collection
        for collection in self.collections:
            if normalized in normalize_catalog_text(collection.title):
                return collection
        return None

    def resolve_tracks_for_proposal(
        self,
        track_ids: Optional[List[str]] = None,
        track_titles: Optional[List[str]] = None,
        collection: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> ResolvedTracks:
        """Ordered, de-duplicated track list from ids, then titles, then a collection.

        Unresolved inputs are dropped silently. The list is capped at
        min(limit or 20, 50).
        """
        maximum = min(limit or DEFAULT_ACTIVE_CONTROL_LIMIT, MAX_ACTIVE_CONTROL_TRACKS)
        resolved = ResolvedTracks(track_ids=[], track_titles=[])
        seen = set()

        def add(track: Optional[Track]) -> None:
            if track is None or len(resolved.track_ids) >= maximum or track.id in seen:
                return
            seen.add(track.id)
            resolved.track_ids.append(track.id)
            resolved.track_titles.append(track.title)

        for track_id in track_ids or []:
            add(self.track_index.get(track_id))
            if len(resolved.track_ids) >= maximum:
                break

        for title in track_titles or []:
            add(self.find_track_by_title(title))
            if len(resolved.track_ids) >= maximum:
                break

        if collection and len(resolved.track_ids) < maximum:
            matched = self.find_collection_by_name(collection)
            if matched:
                resolved.collection_title = matched.title
                for track in self.tracks_in_collection(matched.title):
                    add(track)
                    if len(resolved.track_ids) >= maximum:
                        break

        return resolved


_catalog: Optional[MusicCatalog] = None


def get_catalog() -> MusicCatalog:
    global _catalog
    if _catalog is None:
        from config import runtime_config

        _catalog = MusicCatalog.load(Path(runtime_config.music_catalog_path))
    return _catalog


def set_catalog(catalog: Optional[MusicCatalog]) -> None:
    """Swap the process catalog (tests inject fixtures here)."""
    global _catalog
    _catalog = catalog
