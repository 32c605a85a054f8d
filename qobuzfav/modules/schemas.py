"""Request and response bodies of the web API (camelCase on the wire)."""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class LoginRequest(ApiModel):
    email: Optional[str] = None
    password: Optional[str] = None


class LoginResponse(ApiModel):
    user_id: str = ""
    session_id: str = ""
    success: bool
    error_message: Optional[str] = None


class ValidateResponse(ApiModel):
    user_id: str
    valid: bool = True


class ImportRequest(ApiModel):
    playlist_ids: List[str] = Field(default_factory=list)


class AcceptedResponse(ApiModel):
    message: str
    playlist_count: Optional[int] = None


class TrackSummary(ApiModel):
    id: str
    title: str
    artist: str
    album: Optional[str] = None
    duration: Optional[int] = None


class PlaylistSummary(ApiModel):
    id: str
    name: str
    tracks_count: int = 0
    description: Optional[str] = None
    image_url: Optional[str] = None


class FavoritesList(ApiModel):
    count: int
    tracks: List[TrackSummary]


class SearchResultModel(ApiModel):
    total_count: int
    tracks: List[TrackSummary]
    has_more: bool


class PreviewResultModel(ApiModel):
    total_count: int
    sample_tracks: List[TrackSummary]
