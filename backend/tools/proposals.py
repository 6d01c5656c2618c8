"""
Active control proposal tools: proposePlayback, proposeQueueSet, proposePlaylist, proposeSurface.

A proposal is an inert description of a state-changing action. Creating one
never mutates playback, queue or playlist state; the UI renders it as a
confirmation card and the storage layer performs the change after the user
approves. Every proposal carries approvalRequired=True.

Resolution failures are not errors: the proposal explains what could not
be found in its context string.
"""

from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from tools.catalog import MusicCatalog, get_catalog
from tools.utils import MAX_ACTIVE_CONTROL_TRACKS, sanitize_input_query

MAX_PLAYLIST_NAME_LENGTH = 100


# =============================================================================
# PROPOSAL TYPES
# =============================================================================


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


@dataclass(frozen=True)
class Proposal:
    """Base proposal. Serializes to the camelCase payload the UI consumes."""

    type: str = ""
    action: str = ""
    context: Optional[str] = None
    approval_required: bool = field(default=True, init=False)

    def to_dict(self) -> Dict[str, Any]:
        payload = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            payload[_camel(f.name)] = list(value) if isinstance(value, tuple) else value
        return payload


@dataclass(frozen=True)
class PlaybackProposal(Proposal):
    type: str = "playback"
    track_id: Optional[str] = None
    track_title: Optional[str] = None
    track_artist: Optional[str] = None


@dataclass(frozen=True)
class QueueSetProposal(Proposal):
    type: str = "queue-set"
    action: str = "set"
    track_ids: tuple = ()
    track_titles: tuple = ()
    mode: Optional[str] = None
    autoplay: Optional[bool] = None


@dataclass(frozen=True)
class PlaylistProposal(Proposal):
    type: str = "playlist"
    action: str = "create"
    name: str = ""
    track_ids: tuple = ()
    track_titles: tuple = ()
    queue_mode: Optional[str] = None
    autoplay: Optional[bool] = None


@dataclass(frozen=True)
class SurfaceProposal(Proposal):
    type: str = "ui"
    tab: Optional[str] = None


PROPOSAL_TYPES = {"playback", "queue-set", "playlist", "ui"}


def is_proposal(payload: Any) -> bool:
    """True for a serialized proposal payload."""
    return isinstance(payload, dict) and payload.get("type") in PROPOSAL_TYPES and payload.get("approvalRequired") is True


# =============================================================================
# INPUT MODELS
# =============================================================================


class PlaybackInput(BaseModel):
    action: Literal["play", "pause", "next", "prev", "queue"]
    searchQuery: Optional[str] = Field(None, description="Search query to find a track to play or queue")
    context: Optional[str] = Field(None, description="Reasoning or context for the action")


class QueueSetInput(BaseModel):
    trackIds: Optional[List[str]] = Field(None, description="Ordered list of track IDs to queue")
    trackTitles: Optional[List[str]] = Field(None, description="Ordered list of track titles to queue")
    collection: Optional[str] = Field(None, description="Collection name to pull tracks from")
    limit: Optional[int] = Field(None, ge=1, le=MAX_ACTIVE_CONTROL_TRACKS, description="Maximum number of tracks to include")
    mode: Optional[Literal["replace", "append"]] = Field(None, description="Replace the queue or append to it")
    autoplay: Optional[bool] = Field(None, description="Start playback after queuing tracks")
    context: Optional[str] = Field(None, description="Reasoning or context for the action")


class PlaylistInput(BaseModel):
    name: str = Field(..., min_length=1, max_length=MAX_PLAYLIST_NAME_LENGTH, description="Playlist name")
    trackIds: Optional[List[str]] = Field(None, description="Ordered list of track IDs to include")
    trackTitles: Optional[List[str]] = Field(None, description="Ordered list of track titles to include")
    collection: Optional[str] = Field(None, description="Collection name to pull tracks from")
    limit: Optional[int] = Field(None, ge=1, le=MAX_ACTIVE_CONTROL_TRACKS, description="Maximum number of tracks to include")
    queueMode: Optional[Literal["replace", "append", "none"]] = Field(
        None, description="Queue these tracks after creating the playlist"
    )
    autoplay: Optional[bool] = Field(None, description="Start playback after queuing")
    context: Optional[str] = Field(None, description="Reasoning or context for the action")


class SurfaceInput(BaseModel):
    action: Literal["openWisdom", "openQueue", "focusSearch", "openMusicPanel"]
    tab: Optional[Literal["browse", "queue", "playlists"]] = Field(None, description="Optional music panel tab to open")
    context: Optional[str] = Field(None, description="Reasoning or context for the action")


# =============================================================================
# EXECUTORS
# =============================================================================


def propose_playback(
    action: str,
    searchQuery: Optional[str] = None,
    context: Optional[str] = None,
    catalog: Optional[MusicCatalog] = None,
) -> Dict[str, Any]:
    """Resolve a query to one track. Exact title beats substring, then collection's first track."""
    track_id = track_title = track_artist = None

    if searchQuery and action in ("play", "queue"):
        catalog = catalog or get_catalog()
        raw_query = sanitize_input_query(searchQuery)
        q = raw_query.lower()

        matches = [
            t for t in catalog.tracks
            if q in t.title.lower() or (t.description and q in t.description.lower())
        ]
        matches.sort(key=lambda t: 0 if t.title.lower() == q else 1)

        if matches:
            best = matches[0]
            track_id, track_title, track_artist = best.id, best.title, best.artist
        else:
            collection = next((c for c in catalog.collections if q in c.title.lower()), None)
            first = catalog.tracks_in_collection(collection.title)[:1] if collection else []
            if first:
                context = context or f"Playing from {collection.title}"
                track_id, track_title, track_artist = first[0].id, first[0].title, first[0].artist

        if not track_id and raw_query:
            not_found = f"I couldn't find \"{raw_query}\" in the catalog."
            track_title = raw_query
            context = f"{context} {not_found}" if context else not_found

    return PlaybackProposal(
        action=action,
        context=context,
        track_id=track_id,
        track_title=track_title,
        track_artist=track_artist,
    ).to_dict()


def propose_queue_set(
    trackIds: Optional[List[str]] = None,
    trackTitles: Optional[List[str]] = None,
    collection: Optional[str] = None,
    limit: Optional[int] = None,
    mode: Optional[str] = None,
    autoplay: Optional[bool] = None,
    context: Optional[str] = None,
    catalog: Optional[MusicCatalog] = None,
) -> Dict[str, Any]:
    catalog = catalog or get_catalog()
    resolved = catalog.resolve_tracks_for_proposal(trackIds, trackTitles, collection, limit)

    if not context and resolved.collection_title:
        suffix = " after the current queue" if mode == "append" else ""
        context = f"Queue {resolved.collection_title}{suffix}."
    if not context and not resolved.track_ids:
        context = "No matching tracks found in the catalog."

    return QueueSetProposal(
        context=context,
        track_ids=tuple(resolved.track_ids),
        track_titles=tuple(resolved.track_titles),
        mode=mode,
        autoplay=autoplay,
    ).to_dict()


def propose_playlist(
    name: str,
    trackIds: Optional[List[str]] = None,
    trackTitles: Optional[List[str]] = None,
    collection: Optional[str] = None,
    limit: Optional[int] = None,
    queueMode: Optional[str] = None,
    autoplay: Optional[bool] = None,
    context: Optional[str] = None,
    catalog: Optional[MusicCatalog] = None,
) -> Dict[str, Any]:
    catalog = catalog or get_catalog()
    safe_name = name.strip()[:MAX_PLAYLIST_NAME_LENGTH]
    resolved = catalog.resolve_tracks_for_proposal(trackIds, trackTitles, collection, limit)

    if not context and resolved.collection_title:
        context = f"Create \"{safe_name}\" from {resolved.collection_title}."
    if not context and not resolved.track_ids:
        context = f"Create \"{safe_name}\" (no matching tracks found)."

    return PlaylistProposal(
        context=context,
        name=safe_name,
        track_ids=tuple(resolved.track_ids),
        track_titles=tuple(resolved.track_titles),
        queue_mode=queueMode,
        autoplay=autoplay,
    ).to_dict()


def propose_surface(action: str, tab: Optional[str] = None, context: Optional[str] = None) -> Dict[str, Any]:
    return SurfaceProposal(action=action, tab=tab, context=context).to_dict()
