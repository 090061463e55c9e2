import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Union

from tqdm import tqdm

from . import config
from .database.db import DBManager
from .database.ops import CatalogOperations
from .exceptions import ConfigError, StoreError
from .metadata.probe import MediaProbe, set_probe_concurrency
from .models import MovieCatalogEntry, ReconcileCounts, Tally
from .reconcile.cache import PathCacheRegistry
from .reconcile.engine import DIR_TYPE_FILTERS, ReconciliationEngine, record_kind
from .sites import SiteConfig, get_site


def clamp_page_size(rows: Optional[int]) -> int:
    if rows is None:
        return config.DEFAULT_PAGE_SIZE
    return max(config.MIN_PAGE_SIZE, min(int(rows), config.MAX_PAGE_SIZE))


class MediaCatalogApp:
    def __init__(self,
                 db_path: Union[str, Path],
                 sites: Dict[int, SiteConfig],
                 probe: Optional[MediaProbe] = None,
                 movie_workers: int = config.DEFAULT_MOVIE_WORKERS,
                 file_workers: int = config.DEFAULT_FILE_WORKERS):
        self.db_manager = DBManager(db_path)
        self.sites = sites
        self.probe = probe
        self.movie_workers = movie_workers
        self.file_workers = file_workers

    def process_site(self,
                     site_id: int,
                     page_size: Optional[int] = None,
                     updated_within_hours: Optional[float] = 2,
                     released_days_ago: Optional[float] = None,
                     movie_id: Optional[int] = None,
                     dir_type: Optional[str] = None,
                     max_probes: Optional[int] = None) -> ReconcileCounts:
        """
        Reconciles the catalog of one site against its filesystem.
        1. Select movies (recently updated, recently released, or one movie)
        2. Page through them, reconciling each page's movies concurrently
        3. Audit each page for files that disappeared
        """
        site = get_site(self.sites, site_id)
        if dir_type is not None and dir_type not in DIR_TYPE_FILTERS:
            raise ConfigError(f"Unknown dir type: {dir_type}")
        if max_probes:
            set_probe_concurrency(max_probes)

        with self.db_manager as conn:
            ops = CatalogOperations(conn, self.db_manager.lock)

            if released_days_ago:
                logging.info(f"Processing 'approved' movies released in the last {released_days_ago} days")
            elif not updated_within_hours:
                logging.info(f"Getting all movies for site_id: {site_id}")
            else:
                logging.info(f"Getting movies updated in the last {updated_within_hours} hours for site_id: {site_id}")

            movies = ops.fetch_movies(
                site_id,
                updated_within_hours=updated_within_hours,
                released_days_ago=released_days_ago,
                movie_id=movie_id,
            )
            counts = process_movies(
                ops, site, movies,
                page_size=page_size,
                dir_type=dir_type,
                probe=self.probe,
                movie_workers=self.movie_workers,
                file_workers=self.file_workers,
            )
            logging.info(f"Catalog now holds {ops.count_rows('movie_files')} movie file rows "
                         f"and {ops.count_rows('thumbnails')} thumbnail rows")
            return counts


def process_movies(ops: CatalogOperations,
                   site: SiteConfig,
                   movies: Sequence[MovieCatalogEntry],
                   page_size: Optional[int] = None,
                   dir_type: Optional[str] = None,
                   probe: Optional[MediaProbe] = None,
                   movie_workers: int = config.DEFAULT_MOVIE_WORKERS,
                   file_workers: int = config.DEFAULT_FILE_WORKERS,
                   clock: Optional[Callable[[], datetime]] = None) -> ReconcileCounts:
    """
    Runs the movies through the engine one page at a time. A page is fully
    reconciled, audited and its caches cleared before the next one starts.
    """
    page_size = clamp_page_size(page_size)
    counts = ReconcileCounts()
    logging.info(f"Site {site.site_id}: {len(movies)} movies, {page_size} per page")

    registry = PathCacheRegistry(ops)
    with ReconciliationEngine(ops, site, registry, probe=probe, counts=counts,
                              file_workers=file_workers, clock=clock) as engine:
        for start in tqdm(range(0, len(movies), page_size), desc=f"Site {site.site_id}", unit="page"):
            page = list(movies[start:start + page_size])
            process_page(engine, registry, page, dir_type, movie_workers)

    return counts


def _kinds_for(dir_type: Optional[str]) -> List[str]:
    if dir_type is None:
        return [config.KIND_THUMBNAILS, config.KIND_MOVIES]
    return [record_kind(DIR_TYPE_FILTERS[dir_type])]


def process_page(engine: ReconciliationEngine,
                 registry: PathCacheRegistry,
                 movies: List[MovieCatalogEntry],
                 dir_type: Optional[str] = None,
                 movie_workers: int = config.DEFAULT_MOVIE_WORKERS):
    site_id = engine.site.site_id
    # A filtered run only loads and audits the kind it scans.
    kinds = _kinds_for(dir_type)

    caches = [registry.load(site_id, movies, kind) for kind in kinds]
    try:
        with ThreadPoolExecutor(max_workers=max(1, movie_workers), thread_name_prefix="reconcile-movie") as pool:
            futures = {pool.submit(engine.reconcile_movie, movie, dir_type): movie for movie in movies}
            for fut in as_completed(futures):
                movie = futures[fut]
                try:
                    fut.result()
                except Exception:
                    logging.exception(f"Movie {movie.movie_id}: reconciliation failed, continuing with the page")
                    engine.counts.bump(Tally.FAILED_RECORDS)

        for cache in caches:
            engine.audit(cache, dir_type)
    finally:
        for kind in kinds:
            registry.clear(site_id, kind)

    try:
        engine.ops.propagate_legacy_movie_seq()
    except StoreError as e:
        logging.error(f"propagate_legacy_movie_seq: {e}")
