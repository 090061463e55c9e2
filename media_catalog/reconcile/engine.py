import logging
import math
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional

from .. import config
from ..database.ops import CatalogOperations
from ..exceptions import ConfigError, ProbeError, ResolveError, ScanError, StoreError
from ..metadata.probe import MediaProbe
from ..models import (
    MOVIE_FILE_DIFF_FIELDS,
    THUMBNAIL_DIFF_FIELDS,
    MediaFileInfo,
    MovieCatalogEntry,
    MovieFileRecord,
    ReconcileCounts,
    Tally,
    ThumbnailRecord,
    changed_fields,
)
from ..scanning.filesystem import DirectoryScanner, classify, is_image
from ..sites import SiteConfig
from .cache import CachedPath, CatalogPathCache, PathCacheRegistry
from .status import derive_status

# dir_type filter values accepted by reconcile_movie()
DIR_TYPE_FILTERS = {
    'image': config.DIR_IMAGE,
    'thumbnails': config.DIR_IMAGE,
    'sample': config.DIR_SAMPLE,
    'member': config.DIR_MOVIES,
    'movies': config.DIR_MOVIES,
}


def record_kind(dir_type: str) -> str:
    """Which table/path cache a directory kind reconciles against."""
    return config.KIND_THUMBNAILS if dir_type == config.DIR_IMAGE else config.KIND_MOVIES


def audit_scope(kind: str, dir_type: Optional[str]) -> Optional[Callable[[CachedPath], bool]]:
    """Cache entries a run filtered to dir_type is allowed to soft-delete (None: all)."""
    if dir_type is None or kind != config.KIND_MOVIES:
        return None
    if dir_type not in DIR_TYPE_FILTERS:
        raise ConfigError(f"Unknown dir type filter: {dir_type}")

    sample_flag = 1 if DIR_TYPE_FILTERS[dir_type] == config.DIR_SAMPLE else 0
    return lambda entry: entry.record.sample_flag == sample_flag


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class ReconciliationEngine:
    """
    Brings the catalog rows of one site's movies in line with the files on disk.

    For every movie and directory kind ('image', 'sample', 'movies') it finds the
    configured directories, probes the files in them and inserts, updates or
    leaves alone the matching rows. Unchanged files never touch the store.
    After a page of movies, audit() soft-deletes rows whose file was not seen.

    Failures are contained at the smallest scope: a bad file or a failed write
    is logged and counted, and the rest of the page carries on.
    """
    def __init__(self,
                 ops: CatalogOperations,
                 site: SiteConfig,
                 registry: PathCacheRegistry,
                 probe: Optional[MediaProbe] = None,
                 scanner: Optional[DirectoryScanner] = None,
                 counts: Optional[ReconcileCounts] = None,
                 file_workers: int = config.DEFAULT_FILE_WORKERS,
                 clock: Optional[Callable[[], datetime]] = None):
        self.ops = ops
        self.site = site
        self.registry = registry
        self.probe = probe or MediaProbe()
        self.scanner = scanner or DirectoryScanner()
        self.counts = counts or ReconcileCounts()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._pool = ThreadPoolExecutor(max_workers=max(1, file_workers), thread_name_prefix="reconcile-file")
        self._movie_lock = threading.Lock()

    def close(self):
        self._pool.shutdown(wait=True)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # --- Per movie ---

    def reconcile_movie(self, movie: MovieCatalogEntry, dir_type: Optional[str] = None):
        """
        Imports images, resolves the flash image, then imports sample and
        member movies. With dir_type only that kind is imported.
        """
        if dir_type is None:
            self.import_files(movie, config.DIR_IMAGE)
            self.update_flash_image_flag(movie)
            self.import_files(movie, config.DIR_SAMPLE)
            self.import_files(movie, config.DIR_MOVIES)
            return

        if dir_type not in DIR_TYPE_FILTERS:
            raise ConfigError(f"Unknown dir type filter: {dir_type}")
        self.import_files(movie, DIR_TYPE_FILTERS[dir_type])

    def import_files(self, movie: MovieCatalogEntry, dir_type: str):
        """Scans, probes and reconciles every file of one directory kind."""
        try:
            directories = self.site.directories(dir_type, movie.movie_date_id)
        except ConfigError as e:
            logging.error(f"Movie {movie.movie_id}: {e}")
            return

        if not directories:
            return

        files = self.find_files(directories, dir_type)
        if not files:
            return

        cache = self.registry.get(self.site.site_id, record_kind(dir_type))
        futures = [self._pool.submit(self._process_file, movie, path, dir_type, cache) for path in files]
        # Every file settles before an unexpected error is raised to the page loop
        wait(futures)
        for fut in futures:
            fut.result()

    def find_files(self, directories: List[Path], dir_type: str) -> List[Path]:
        """
        Files under the movie's directories. The image kind keeps only image
        files; the others drop them and honour the site's ignore rules.
        """
        want_images = dir_type == config.DIR_IMAGE
        ignores = [] if want_images else self.site.ignore_files

        found: List[Path] = []
        for directory in directories:
            try:
                listing = self.scanner.scan(directory, ignores)
            except ScanError as e:
                logging.error(f"find_files: {e}")
                continue
            found.extend(p for p in listing if is_image(p) == want_images)
        return found

    def _process_file(self, movie: MovieCatalogEntry, path: Path, dir_type: str, cache: CatalogPathCache):
        info = self.probe_file(path, dir_type)
        if info is None:
            self.counts.bump(Tally.SKIPPED_FILES)
            return

        try:
            if dir_type == config.DIR_IMAGE:
                self.import_thumbnail(movie, info, cache)
            else:
                self.import_movie_file(movie, info, dir_type, cache)
        except (StoreError, ConfigError) as e:
            logging.error(f"Movie {movie.movie_id}: failed to save {path}: {e}")
            self.counts.bump(Tally.FAILED_RECORDS)

    def probe_file(self, path: Path, dir_type: str) -> Optional[MediaFileInfo]:
        """Probe result with uri_path/file_type filled in, or None if the file must be skipped."""
        try:
            if dir_type == config.DIR_IMAGE:
                info = self.probe.probe_image(path)
            else:
                info = self.probe.probe(path)

            info.uri_path = self.site.resolve_uri(path)
            if not info.uri_path:
                raise ResolveError(f"{path} is not under any docroot of site {self.site.site_id}")
        except (ProbeError, ResolveError) as e:
            logging.error(f"Skipping {path}: {e}")
            return None

        info.file_type = classify(path)
        return info

    # --- Movie files ---

    def import_movie_file(self, movie: MovieCatalogEntry, info: MediaFileInfo, dir_type: str, cache: CatalogPathCache):
        status = derive_status(movie, self.clock())
        is_member = dir_type == config.DIR_MOVIES

        frame_rate = info.frame_rate
        if frame_rate is not None and frame_rate > config.MAX_FRAME_RATE:
            frame_rate = None

        record = MovieFileRecord(
            movie_id=movie.movie_id,
            path=info.uri_path,
            movie_seq=movie.movie_seq,
            server_name=self.site.server_name(dir_type),
            file_type=info.file_type,
            sample_flag=0 if is_member else 1,
            codec=info.codec_name,
            width=info.width,
            height=info.height,
            bitrate=info.bit_rate,
            file_size=info.file_size,
            create_date=info.create_date,
            update_date=info.update_date,
            frame_rate=frame_rate,
            status=status,
            fake_flag=False,
        )

        fake = None
        if is_member and self.site.make_fake_filepaths:
            if self.site.allows_fake_path(info.uri_path):
                fake_path = self.site.fake_path(info.uri_path, movie.movie_date_id)
                fake = replace(record, path=fake_path, fake_flag=True)
            else:
                logging.info(f"Skip adding fake file path for file: {info.uri_path}")

        if is_member:
            self.update_movie_duration(movie, info)

        cached = cache.mark_found(info.uri_path)
        if cached is not None and not changed_fields(MOVIE_FILE_DIFF_FIELDS, cached, record):
            return

        inserted = False
        with self.ops.transaction():
            existing = self.ops.get_movie_file(cached.file_number) if cached is not None else None
            if existing is not None:
                logging.info(f"Updating movie file: (MovieID: {movie.movie_id}) - uri:{info.uri_path}, "
                             f"filePath: {info.file_path}, FileNumber: {existing.file_number}")
                self.ops.update_movie_file(existing.file_number, record)
            else:
                logging.info(f"Saving new movie file: ({movie.movie_id}) - uri:{info.uri_path}, filePath: {info.file_path}")
                self.ops.insert_movie_file(record)
                inserted = True

            if fake is not None:
                self._save_fake_path(fake, info)

        if inserted:
            self.counts.bump(Tally.NEW_MOVIES if is_member else Tally.NEW_SAMPLE_MOVIES)
        else:
            self.counts.bump(Tally.UPDATED_MOVIES if is_member else Tally.UPDATED_SAMPLE_MOVIES)

    def _save_fake_path(self, fake: MovieFileRecord, info: MediaFileInfo):
        """Inserts or refreshes the fake alias. Must run inside the real row's transaction."""
        current = self.ops.find_fake_movie_file(fake.movie_id, fake.path)
        if current is None:
            logging.info(f"Saving new fake movie file: ({fake.movie_id}) - fake-uri:{fake.path}, filePath: {info.file_path}")
            self.ops.insert_movie_file(fake)
        elif changed_fields(MOVIE_FILE_DIFF_FIELDS, current, fake):
            self.ops.update_movie_file(current.file_number, fake)

    def update_movie_duration(self, movie: MovieCatalogEntry, info: MediaFileInfo):
        """
        duration_seconds comes from the 1080p.mp4 file only, so webmasters
        have to upload that rendition for a movie to get a duration.
        """
        if info.duration is None or info.duration < config.MIN_DURATION_SECONDS:
            return
        if info.file_path.name != config.DURATION_REFERENCE_NAME:
            return

        seconds = round_half_up(info.duration)
        with self._movie_lock:
            if (movie.duration_seconds or 0) == seconds:
                return
            self.ops.update_movie_duration(movie.movie_id, seconds)
            movie.duration_seconds = seconds
        logging.info(f"Movie {movie.movie_id}: duration_seconds set to {seconds}")

    # --- Thumbnails ---

    def import_thumbnail(self, movie: MovieCatalogEntry, info: MediaFileInfo, cache: CatalogPathCache):
        record = ThumbnailRecord(
            movie_id=movie.movie_id,
            path=info.uri_path,
            movie_seq=movie.movie_seq,
            server_name=self.site.image_server_name,
            width=info.width,
            height=info.height,
            file_size=info.file_size,
            create_date=info.create_date,
            update_date=info.update_date,
            md5=info.md5,
            primary_flag=self.site.flag_priority('image_primary', info.uri_path, movie.movie_date_id),
            flashimage_flag=0,
            imagerotation_flag=0,
            status=derive_status(movie, self.clock()),
        )

        if self.site.flag_priority('flash_image', info.uri_path, movie.movie_date_id) > 0:
            self.update_movie_has_flash_image(movie)

        cached = cache.mark_found(info.uri_path)
        if cached is not None and not changed_fields(THUMBNAIL_DIFF_FIELDS, cached, record):
            return

        inserted = False
        with self.ops.transaction():
            existing = self.ops.get_thumbnail(cached.file_number) if cached is not None else None
            if existing is not None:
                logging.info(f"Updating image file: ({movie.movie_id}) - uri:{info.uri_path}, filePath: {info.file_path}")
                self.ops.update_thumbnail(existing.file_number, record)
            else:
                logging.info(f"Saving new image file: ({movie.movie_id}) - uri:{info.uri_path}, filePath: {info.file_path}")
                self.ops.insert_thumbnail(record)
                inserted = True

        self.counts.bump(Tally.NEW_THUMBNAILS if inserted else Tally.UPDATED_THUMBNAILS)

    def update_movie_has_flash_image(self, movie: MovieCatalogEntry):
        """Sets has_flash_image once; never clears it."""
        with self._movie_lock:
            if movie.has_flash_image:
                return
            self.ops.update_movie_has_flash_image(movie.movie_id)
            movie.has_flash_image = True

    def update_flash_image_flag(self, movie: MovieCatalogEntry):
        """
        Exactly one thumbnail per movie keeps flashimage_flag=1: the one whose
        path has the lowest configured flash priority. Runs as one transaction
        so concurrent passes cannot flag two rows.
        """
        try:
            with self.ops.transaction():
                candidates = []
                for thumb in self.ops.thumbnails_for_movie(movie.movie_id):
                    priority = self.site.flag_priority('flash_image', thumb.path, movie.movie_date_id)
                    if priority == 0:
                        continue
                    candidates.append((priority, thumb.file_number, thumb))

                if not candidates:
                    return

                candidates.sort(key=lambda c: (c[0], c[1]))
                first = candidates[0][2]
                if first.flashimage_flag != 1:
                    self.ops.set_thumbnail_flash_flag(first.file_number, 1)

                for _, _, thumb in candidates[1:]:
                    if thumb.flashimage_flag != 0:
                        self.ops.set_thumbnail_flash_flag(thumb.file_number, 0)
        except StoreError as e:
            logging.error(f"Movie {movie.movie_id}: flash image update failed: {e}")
            self.counts.bump(Tally.FAILED_RECORDS)

    # --- Audit ---

    def audit(self, cache: CatalogPathCache, dir_type: Optional[str] = None):
        """
        Marks every cached row whose file was not found on disk this page as
        FILEDELETED, along with the fake alias of a movie file.

        With a dir_type filter only rows of the scanned kind are audited:
        samples and member movies share one cache and are told apart by
        sample_flag.
        """
        for entry in cache.missing(audit_scope(cache.kind, dir_type)):
            try:
                self._soft_delete(cache.kind, entry)
            except (StoreError, ConfigError) as e:
                logging.error(f"Audit: failed to mark {entry.record.path} "
                              f"(file_number {entry.record.file_number}) deleted: {e}")
                self.counts.bump(Tally.FAILED_RECORDS)
                continue

            entry.record.status = config.STATUS_FILEDELETED
            if cache.kind == config.KIND_THUMBNAILS:
                self.counts.bump(Tally.DELETED_THUMBNAILS)
            else:
                self.counts.bump(Tally.DELETED_MOVIES)

    def _soft_delete(self, kind: str, entry: CachedPath):
        record = entry.record
        logging.info(f"File no longer on disk, marking deleted: ({record.movie_id}) - uri:{record.path}")
        with self.ops.transaction():
            if kind == config.KIND_THUMBNAILS:
                self.ops.set_thumbnail_status(record.file_number, config.STATUS_FILEDELETED)
                return

            self.ops.set_movie_file_status(record.file_number, config.STATUS_FILEDELETED)
            fake_path = self.site.fake_path(record.path, entry.movie_date_id)
            if fake_path is None:
                return
            fake = self.ops.find_fake_movie_file(record.movie_id, fake_path)
            if fake is not None:
                self.ops.set_movie_file_status(fake.file_number, config.STATUS_FILEDELETED)
