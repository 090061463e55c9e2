import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, Sequence, TypeVar


@dataclass
class MovieCatalogEntry:
    """
    A row from the movies table. Owned by the content catalog; this worker
    only ever touches duration_seconds and has_flash_image.
    """
    movie_id: int
    movie_date_id: str
    site_id: int
    movie_seq: Optional[int] = None
    release_date: Optional[datetime] = None
    expire_date: Optional[datetime] = None
    production_status: Optional[str] = None
    duration_seconds: Optional[int] = None
    has_flash_image: bool = False
    updated: Optional[datetime] = None


@dataclass
class MediaFileInfo:
    """
    Represents a probed file (the result of ffprobe / Pillow plus stat).
    """
    file_path: Path
    codec_name: Optional[str] = None
    codec_type: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    avg_frame_rate: Optional[str] = None
    r_frame_rate: Optional[str] = None
    frame_rate: Optional[float] = None
    bit_rate: Optional[int] = None
    duration: Optional[float] = None

    # From stat(), not from the container
    file_size: Optional[int] = None
    mtime: Optional[float] = None
    birth_time: Optional[float] = None
    create_date: Optional[str] = None
    update_date: Optional[str] = None

    md5: Optional[str] = None

    # Filled in by the engine
    uri_path: str = ''
    file_type: Optional[str] = None


@dataclass
class MovieFileRecord:
    """A row of the movie_files table (member movies, samples and fake paths)."""
    movie_id: int
    path: str
    file_number: Optional[int] = None
    movie_seq: Optional[int] = None
    server_name: Optional[str] = None
    file_type: Optional[str] = None
    sample_flag: int = 0
    codec: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    bitrate: Optional[int] = None
    file_size: Optional[int] = None
    create_date: Optional[str] = None
    update_date: Optional[str] = None
    frame_rate: Optional[float] = None
    status: int = 0
    fake_flag: bool = False


@dataclass
class ThumbnailRecord:
    """A row of the thumbnails table."""
    movie_id: int
    path: str
    file_number: Optional[int] = None
    movie_seq: Optional[int] = None
    server_name: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    file_size: Optional[int] = None
    create_date: Optional[str] = None
    update_date: Optional[str] = None
    md5: Optional[str] = None
    primary_flag: int = 0
    flashimage_flag: int = 0
    imagerotation_flag: int = 0
    status: int = 0


R = TypeVar('R')


@dataclass(frozen=True)
class DiffField(Generic[R]):
    """One comparable column of a record kind."""
    name: str
    get: Callable[[R], Any]


MOVIE_FILE_DIFF_FIELDS: Sequence[DiffField[MovieFileRecord]] = (
    DiffField('file_size', lambda r: r.file_size),
    DiffField('status', lambda r: r.status),
    DiffField('width', lambda r: r.width),
    DiffField('height', lambda r: r.height),
    DiffField('codec', lambda r: r.codec),
    DiffField('bitrate', lambda r: r.bitrate),
    DiffField('frame_rate', lambda r: r.frame_rate),
)

THUMBNAIL_DIFF_FIELDS: Sequence[DiffField[ThumbnailRecord]] = (
    DiffField('file_size', lambda r: r.file_size),
    DiffField('md5', lambda r: r.md5),
    DiffField('status', lambda r: r.status),
    DiffField('width', lambda r: r.width),
    DiffField('height', lambda r: r.height),
    DiffField('primary_flag', lambda r: r.primary_flag),
)


def changed_fields(diff_fields: Sequence[DiffField[R]], old: R, new: R) -> List[str]:
    """Names of the diff fields whose values differ between two records."""
    return [f.name for f in diff_fields if f.get(old) != f.get(new)]


class Tally(Enum):
    """Names of the ReconcileCounts fields; the only accepted argument to bump()."""
    NEW_MOVIES = 'new_movies'
    NEW_SAMPLE_MOVIES = 'new_sample_movies'
    NEW_THUMBNAILS = 'new_thumbnails'
    UPDATED_MOVIES = 'updated_movies'
    UPDATED_SAMPLE_MOVIES = 'updated_sample_movies'
    UPDATED_THUMBNAILS = 'updated_thumbnails'
    DELETED_MOVIES = 'deleted_movies'
    DELETED_THUMBNAILS = 'deleted_thumbnails'
    SKIPPED_FILES = 'skipped_files'
    FAILED_RECORDS = 'failed_records'


@dataclass
class ReconcileCounts:
    """
    Per-run counters. Skips are counted separately and never decrement the
    success counters.
    """
    new_movies: int = 0
    new_sample_movies: int = 0
    new_thumbnails: int = 0
    updated_movies: int = 0
    updated_sample_movies: int = 0
    updated_thumbnails: int = 0
    deleted_movies: int = 0
    deleted_thumbnails: int = 0
    skipped_files: int = 0
    failed_records: int = 0

    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def bump(self, tally: Tally, amount: int = 1):
        if not isinstance(tally, Tally):
            raise TypeError(f"Expected a Tally, got {tally!r}")
        with self._lock:
            setattr(self, tally.value, getattr(self, tally.value) + amount)

    def as_dict(self) -> Dict[str, int]:
        return {t.value: getattr(self, t.value) for t in Tally}
