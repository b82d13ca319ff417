"""Trakt API entity models.

These mirror the JSON shapes returned by the Trakt API. Unknown fields are
ignored so that new API attributes do not break decoding.
"""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class TraktModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class ShowIDs(TraktModel):
    trakt: int = 0
    slug: Optional[str] = None
    tvdb: Optional[int] = None
    imdb: Optional[str] = None
    tmdb: Optional[int] = None


class MovieIDs(TraktModel):
    trakt: int = 0
    slug: Optional[str] = None
    imdb: Optional[str] = None
    tmdb: Optional[int] = None


class EpisodeIDs(TraktModel):
    trakt: int = 0
    tvdb: Optional[int] = None
    imdb: Optional[str] = None
    tmdb: Optional[int] = None


class Show(TraktModel):
    """A TV show."""
    title: str = ""
    year: Optional[int] = None
    ids: ShowIDs = Field(default_factory=ShowIDs)


class Movie(TraktModel):
    """A movie."""
    title: str = ""
    year: Optional[int] = None
    ids: MovieIDs = Field(default_factory=MovieIDs)


class Episode(TraktModel):
    """A single episode of a show."""
    season: int = 0
    number: int = 0
    title: Optional[str] = None
    ids: EpisodeIDs = Field(default_factory=EpisodeIDs)


class SearchResult(TraktModel):
    """One ranked hit from the search endpoint."""
    type: str = ""
    score: float = 0
    show: Optional[Show] = None
    movie: Optional[Movie] = None


class HistoryItem(TraktModel):
    """An entry in the user's watch history."""
    id: int = 0
    watched_at: Optional[datetime] = None
    action: str = ""
    type: str = ""
    episode: Optional[Episode] = None
    show: Optional[Show] = None
    movie: Optional[Movie] = None


class WatchedItem(TraktModel):
    """Batch of items to add to or remove from history.

    Serialize with ``exclude_unset=True`` so only the fields the caller set
    (typically just ``ids``) are sent.
    """
    watched_at: Optional[str] = None
    movies: List[Movie] = Field(default_factory=list)
    shows: List[Show] = Field(default_factory=list)
    episodes: List[Episode] = Field(default_factory=list)


class SyncStats(TraktModel):
    movies: int = 0
    episodes: int = 0


class NotFound(TraktModel):
    movies: List[Movie] = Field(default_factory=list)
    shows: List[Show] = Field(default_factory=list)
    episodes: List[Episode] = Field(default_factory=list)


class SyncResponse(TraktModel):
    """Counts reported by a history mutation."""
    added: SyncStats = Field(default_factory=SyncStats)
    deleted: SyncStats = Field(default_factory=SyncStats)
    existing: SyncStats = Field(default_factory=SyncStats)
    not_found: NotFound = Field(default_factory=NotFound)


class DeviceCode(TraktModel):
    """OAuth device code response."""
    device_code: str
    user_code: str
    verification_url: str
    expires_in: int = 600
    interval: int = 5


class Token(TraktModel):
    """OAuth token response."""
    access_token: str
    token_type: str = "bearer"
    expires_in: int = 0
    refresh_token: str = ""
    scope: str = ""
    created_at: int = 0
