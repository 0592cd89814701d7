import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union
from pydantic import RootModel, ValidationError
from .models import Chapter

logger = logging.getLogger(__name__)

CACHE_FILENAME = "cover_cache.json"


class CoverCacheData(RootModel[Dict[str, str]]):
    root: Dict[str, str] = {}


def cover_cache_paths(config_path: Union[str, Path]) -> Tuple[Path, Path]:
    """
    Returns (primary, legacy). The primary cache lives next to the config file;
    older releases kept it in the working directory.
    """
    primary = Path(config_path).expanduser().resolve().parent / CACHE_FILENAME
    legacy = Path.cwd() / CACHE_FILENAME
    return primary, legacy


class CoverCache:
    """Library item id -> artwork URL. Never evicted, rewritten in full on every insert."""

    def __init__(self, path: Union[str, Path], legacy_path: Optional[Union[str, Path]] = None):
        self.path = Path(path)
        self.legacy_path = Path(legacy_path) if legacy_path else None
        self.entries: Dict[str, str] = {}
        self._load()

    def _load(self):
        source = self.path
        if not source.exists():
            if self.legacy_path and self.legacy_path.exists():
                logger.info(f"Using legacy cover cache at {self.legacy_path}")
                source = self.legacy_path
            else:
                logger.info(f"No cover cache found at {self.path}, starting empty.")
                return

        try:
            with open(source, 'r', encoding='utf-8') as f:
                data = json.load(f)
            self.entries = dict(CoverCacheData.model_validate(data).root)
            logger.info(f"Loaded {len(self.entries)} cached covers from {source}")
        except (OSError, ValueError, ValidationError) as e:
            logger.error(f"Failed to load cover cache: {e}. Starting fresh.")
            self.entries = {}

    def get(self, item_id: str) -> Optional[str]:
        return self.entries.get(item_id)

    def set(self, item_id: str, url: str):
        self.entries[item_id] = url
        self.save()

    def __contains__(self, item_id: str) -> bool:
        return item_id in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def save(self):
        tmp_path = self.path.with_suffix('.tmp')
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(CoverCacheData(self.entries).model_dump(), f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error(f"Failed to save cover cache to {self.path}: {e}")


@dataclass(frozen=True)
class TrackedBook:
    title: str


@dataclass
class PlaybackState:
    last_change_at: Optional[float] = None  # wall clock of the last genuinely new offset
    anchor_position: Optional[float] = None  # raw offset seen at last_change_at
    position: Optional[float] = None  # last emitted position
    is_playing: bool = False


@dataclass
class TimingInfo:
    last_offset: Optional[float] = None
    last_fetch_at: Optional[float] = None

    @property
    def is_set(self) -> bool:
        return self.last_offset is not None and self.last_fetch_at is not None


@dataclass
class LoopContext:
    """Everything the poll loop carries from one tick to the next."""
    tracked_book: Optional[TrackedBook] = None
    playback: PlaybackState = field(default_factory=PlaybackState)
    timing: TimingInfo = field(default_factory=TimingInfo)
    chapters: Optional[List[Chapter]] = None  # fetched once per book when the session has none
    has_presence: bool = False
