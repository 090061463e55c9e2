import pytest

from media_catalog import config
from media_catalog.models import MovieFileRecord, ThumbnailRecord
from media_catalog.reconcile.cache import CatalogPathCache, PathCacheRegistry


def test_cache_load_and_missing(db_ops, movie):
    db_ops.insert_movie_file(MovieFileRecord(movie_id=1, path="/m/a.mp4", status=1))
    db_ops.insert_movie_file(MovieFileRecord(movie_id=1, path="/m/b.mp4", status=1))
    db_ops.insert_movie_file(MovieFileRecord(movie_id=1, path="/m/gone.mp4", status=config.STATUS_FILEDELETED))
    db_ops.insert_movie_file(MovieFileRecord(movie_id=1, path="/m/x_a.mp4", status=1, fake_flag=True))

    cache = CatalogPathCache.load(db_ops, 1001, [movie], config.KIND_MOVIES)

    assert len(cache) == 3
    assert "/m/x_a.mp4" not in cache
    assert cache.get("/m/a.mp4").movie_date_id == movie.movie_date_id

    record = cache.mark_found("/m/a.mp4")
    assert record.path == "/m/a.mp4"
    assert cache.mark_found("/m/new.mp4") is None

    # Already-deleted rows are not reported again
    assert [e.record.path for e in cache.missing()] == ["/m/b.mp4"]


def test_cache_load_thumbnails(db_ops, movie):
    db_ops.insert_thumbnail(ThumbnailRecord(movie_id=1, path="/i/str.jpg", status=config.STATUS_FILEDELETED))

    cache = CatalogPathCache.load(db_ops, 1001, [movie], config.KIND_THUMBNAILS)

    assert "/i/str.jpg" in cache
    assert cache.missing() == []


def test_cache_unknown_kind(db_ops, movie):
    with pytest.raises(ValueError):
        CatalogPathCache.load(db_ops, 1001, [movie], "posters")


def test_registry_lifecycle(db_ops, movie):
    registry = PathCacheRegistry(db_ops)
    movies_cache = registry.load(1001, [movie], config.KIND_MOVIES)
    registry.load(1001, [movie], config.KIND_THUMBNAILS)

    assert len(registry) == 2
    assert registry.get(1001, config.KIND_MOVIES) is movies_cache

    registry.clear(1001, config.KIND_MOVIES)
    with pytest.raises(KeyError):
        registry.get(1001, config.KIND_MOVIES)

    registry.clear(1001, config.KIND_THUMBNAILS)
    assert len(registry) == 0
