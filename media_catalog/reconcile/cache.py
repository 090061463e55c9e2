"""
Per-page caches of catalogued file paths.

A cache is loaded once per page of movies with a single bulk read, serves as
the lookup table while files are reconciled, and records which paths were seen
on disk so the audit pass can soft-delete the rest. It is cleared before the
next page is loaded.
"""
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Generic, List, Optional, Sequence, Tuple, TypeVar, Union

from .. import config
from ..database.ops import CatalogOperations
from ..models import MovieCatalogEntry, MovieFileRecord, ThumbnailRecord

R = TypeVar('R', MovieFileRecord, ThumbnailRecord)


@dataclass
class CachedPath(Generic[R]):
    record: R
    site_id: int
    movie_date_id: str
    found_on_fs: bool = False


class CatalogPathCache(Generic[R]):
    def __init__(self, site_id: int, kind: str, entries: Optional[Dict[str, CachedPath]] = None):
        self.site_id = site_id
        self.kind = kind
        self._entries: Dict[str, CachedPath] = entries or {}
        self._lock = threading.Lock()

    @classmethod
    def load(cls, ops: CatalogOperations, site_id: int,
             movies: Sequence[MovieCatalogEntry], kind: str) -> "CatalogPathCache":
        movie_ids = [m.movie_id for m in movies]
        rows: List[Tuple[Union[MovieFileRecord, ThumbnailRecord], int, str]]
        if kind == config.KIND_MOVIES:
            rows = ops.load_movie_file_paths(movie_ids)
        elif kind == config.KIND_THUMBNAILS:
            rows = ops.load_thumbnail_paths(movie_ids)
        else:
            raise ValueError(f"Unknown record kind: {kind}")

        entries = {}
        for record, row_site_id, movie_date_id in rows:
            entries[record.path] = CachedPath(record, row_site_id, movie_date_id)

        logging.debug(f"Loaded {len(entries)} {kind} paths for site {site_id}")
        return cls(site_id, kind, entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, uri_path: str) -> bool:
        return uri_path in self._entries

    def get(self, uri_path: str) -> Optional[CachedPath]:
        return self._entries.get(uri_path)

    def mark_found(self, uri_path: str) -> Optional[R]:
        """Flags uri_path as present on disk and returns its catalogued record."""
        with self._lock:
            entry = self._entries.get(uri_path)
            if entry is None:
                return None
            entry.found_on_fs = True
            return entry.record

    def missing(self, include: Optional[Callable[[CachedPath], bool]] = None) -> List[CachedPath]:
        """
        Entries never rediscovered this page that are not already deleted.
        include narrows the result to the entries a partial scan looked at.
        """
        with self._lock:
            return [
                e for e in self._entries.values()
                if not e.found_on_fs
                and e.record.status != config.STATUS_FILEDELETED
                and (include is None or include(e))
            ]


class PathCacheRegistry:
    """
    Caches by (site_id, kind) for the page being processed.
    Owned by the page loop; never shared between pages.
    """
    def __init__(self, ops: CatalogOperations):
        self.ops = ops
        self._caches: Dict[Tuple[int, str], CatalogPathCache] = {}

    def load(self, site_id: int, movies: Sequence[MovieCatalogEntry], kind: str) -> CatalogPathCache:
        cache = CatalogPathCache.load(self.ops, site_id, movies, kind)
        self._caches[(site_id, kind)] = cache
        return cache

    def get(self, site_id: int, kind: str) -> CatalogPathCache:
        key = (site_id, kind)
        if key not in self._caches:
            raise KeyError(f"No {kind} path cache loaded for site {site_id}")
        return self._caches[key]

    def clear(self, site_id: int, kind: str):
        self._caches.pop((site_id, kind), None)

    def __len__(self) -> int:
        return len(self._caches)
