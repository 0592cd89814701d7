import logging
import time
from typing import List, Optional
from .engine import TrackerOutput
from .models import Chapter, PresencePayload, Session

logger = logging.getLogger(__name__)

UNKNOWN_GENRE = "Unknown Genre"
UNKNOWN_AUTHOR = "Unknown Author"

# Titles starting with one of these already say they are a chapter
CHAPTER_WORDS = (
    "chapter",
    "kapitel",
    "chapitre",
    "capitolo",
    "capítulo",
    "capitulo",
    "hoofdstuk",
    "rozdział",
    "kapitola",
    "luku",
    "глава",
    "章",
)


def primary_line(session: Session) -> str:
    if session.is_podcast and session.podcast_title:
        return session.podcast_title
    return session.display_title or session.media_metadata.title or "Unknown Title"


def secondary_line(session: Session) -> str:
    author = session.display_author or session.media_metadata.author
    if author:
        return author
    # Podcast primary line is the show, so the episode title is still worth showing
    if session.is_podcast and session.podcast_title and session.display_title:
        return session.display_title
    return UNKNOWN_AUTHOR


def podcast_caption(session: Session) -> str:
    md = session.media_metadata
    name = md.podcast_title or "Podcast"
    if md.season and md.episode:
        return f"{name} - S{md.season}E{md.episode}"
    if md.episode:
        return f"{name} - Episode {md.episode}"
    return name


def current_chapter(chapters: List[Chapter], position: float) -> Optional[Chapter]:
    for chapter in chapters:
        if chapter.start <= position <= chapter.end:
            return chapter
    return None


def chapter_caption(chapter: Chapter) -> str:
    title = chapter.title.strip()
    if title.lower().startswith(CHAPTER_WORDS):
        return title
    return f"Chapter {title}"


def select_caption(session: Session, position: float, show_chapters: bool,
                   chapters: Optional[List[Chapter]] = None) -> str:
    """
    Podcast numbering first, then the current chapter (if enabled), then the genre.
    `chapters` overrides the session's own list when the caller fetched them separately.
    """
    if session.has_podcast_metadata:
        return podcast_caption(session)

    if show_chapters:
        chapter = current_chapter(chapters if chapters is not None else session.chapters, position)
        if chapter and chapter.title.strip():
            return chapter_caption(chapter)

    return session.primary_genre or UNKNOWN_GENRE


def build_presence(session: Optional[Session], output: Optional[TrackerOutput],
                   artwork: Optional[str], caption: Optional[str],
                   now: Optional[float] = None) -> Optional[PresencePayload]:
    """Returns None when the presence should be cleared."""
    if session is None or output is None:
        return None

    details = primary_line(session)
    state = secondary_line(session)

    if not output.is_playing:
        return PresencePayload(details=details, state=state)

    if now is None:
        now = time.time()
    start = int(now - output.position)
    payload = PresencePayload(
        details=details,
        state=state,
        start=start,
        end=start + int(session.duration) if session.duration > 0 else None,
        large_image=artwork,
        large_text=caption if artwork else None,
    )
    logger.debug(f"Built presence: {payload}")
    return payload
