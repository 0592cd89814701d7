from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Dict, List, Optional

# Discord rejects activity strings longer than this
MAX_FIELD_LENGTH = 128


def _optional_text(v: Any) -> Optional[str]:
    # Server versions send season/episode as either numbers or strings
    if v is None:
        return None
    text = str(v).strip()
    return text or None


class Chapter(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    title: str = ""
    start: float = 0.0
    end: float = 0.0


class MediaMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    title: Optional[str] = None
    author: Optional[str] = None
    genres: List[str] = Field(default_factory=list)
    podcast_title: Optional[str] = Field(default=None, alias="podcastTitle")
    season: Optional[str] = None
    episode: Optional[str] = None

    @field_validator("genres", mode="before")
    @classmethod
    def _none_genres(cls, v):
        return v or []

    @field_validator("podcast_title", "season", "episode", mode="before")
    @classmethod
    def _text(cls, v):
        return _optional_text(v)


class Session(BaseModel):
    """A listening session as reported by /api/me/listening-sessions."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: Optional[str] = None
    library_item_id: str = Field(alias="libraryItemId")
    episode_id: Optional[str] = Field(default=None, alias="episodeId")
    media_type: str = Field(default="book", alias="mediaType")
    display_title: str = Field(default="", alias="displayTitle")
    display_author: str = Field(default="", alias="displayAuthor")
    current_time: float = Field(default=0.0, alias="currentTime")
    duration: float = 0.0
    media_metadata: MediaMetadata = Field(default_factory=MediaMetadata, alias="mediaMetadata")
    chapters: List[Chapter] = Field(default_factory=list)

    @field_validator("chapters", mode="before")
    @classmethod
    def _none_chapters(cls, v):
        return v or []

    @field_validator("display_title", "display_author", mode="before")
    @classmethod
    def _none_text(cls, v):
        return v or ""

    @property
    def podcast_title(self) -> Optional[str]:
        return self.media_metadata.podcast_title

    @property
    def is_podcast(self) -> bool:
        return (
            self.media_type == "podcast"
            or self.episode_id is not None
            or self.podcast_title is not None
        )

    @property
    def has_podcast_metadata(self) -> bool:
        md = self.media_metadata
        return any(v is not None for v in (md.podcast_title, md.season, md.episode))

    @property
    def primary_genre(self) -> Optional[str]:
        for genre in self.media_metadata.genres:
            if genre and genre.strip():
                return genre.strip()
        return None


class ListeningSessionsResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    sessions: List[Session] = Field(default_factory=list)

    @field_validator("sessions", mode="before")
    @classmethod
    def _none_sessions(cls, v):
        return v or []


class ItemMedia(BaseModel):
    model_config = ConfigDict(extra="ignore")

    chapters: List[Chapter] = Field(default_factory=list)

    @field_validator("chapters", mode="before")
    @classmethod
    def _none_chapters(cls, v):
        return v or []


class LibraryItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    media: ItemMedia = Field(default_factory=ItemMedia)


class CoverSearchResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    results: List[str] = Field(default_factory=list)

    @field_validator("results", mode="before")
    @classmethod
    def _none_results(cls, v):
        return v or []


class PresencePayload(BaseModel):
    details: str
    state: str
    start: Optional[int] = None
    end: Optional[int] = None
    large_image: Optional[str] = None
    large_text: Optional[str] = None

    @field_validator("details", "state", "large_text", mode="before")
    @classmethod
    def _truncate(cls, v):
        if isinstance(v, str):
            return v[:MAX_FIELD_LENGTH]
        return v

    def to_activity(self) -> Dict[str, Any]:
        """Keyword arguments for the sink, with unset fields dropped."""
        return {k: v for k, v in self.model_dump().items() if v is not None}
