from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class Track:
    id: str
    title: str = "Unknown Title"
    artist: str = "Unknown Artist"
    album: Optional[str] = None
    duration: Optional[int] = None  # seconds


@dataclass(frozen=True)
class Playlist:
    id: str
    name: str = "Unknown Playlist"
    tracks_count: int = 0
    description: Optional[str] = None
    image_url: Optional[str] = None
    owner_id: Optional[str] = None


@dataclass(frozen=True)
class ProgressUpdate:
    total_tracks: int
    processed_tracks: int
    successful_tracks: int
    failed_tracks: int
    current_status: str
    is_completed: bool = False
    error_message: Optional[str] = None


@dataclass
class PreviewResult:
    total_count: int
    sample_tracks: List[Track] = field(default_factory=list)


@dataclass
class SearchResult:
    total_count: int
    tracks: List[Track] = field(default_factory=list)
    has_more: bool = False


@dataclass
class UserInputs:
    # Qobuz settings
    qobuz_app_id: Optional[str] = None
    qobuz_username: Optional[str] = None
    qobuz_password: Optional[str] = None
    qobuz_user_auth_token: Optional[str] = None
    qobuz_request_timeout_seconds: Optional[int] = 10
    qobuz_max_retries: Optional[int] = 3
    qobuz_retry_backoff_seconds: Optional[float] = 1.0

    # Paging, batching and rate limiting
    page_size: int = 50
    batch_size: int = 50
    page_delay_seconds: float = 0.5
    playlist_delay_seconds: float = 1.0
    batch_delay_seconds: float = 2.0
    item_delay_seconds: float = 0.5
    preview_sample_size: int = 5

    # Sessions
    session_ttl_seconds: int = 7200

    # Web app
    web_host: str = "0.0.0.0"
    web_port: int = 8080
    cors_origins: Optional[str] = None  # comma-separated
    static_dir: Optional[str] = None
