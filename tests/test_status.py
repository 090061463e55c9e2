from datetime import datetime, timedelta, timezone

from media_catalog import config
from media_catalog.models import MovieCatalogEntry
from media_catalog.reconcile.status import derive_status

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_movie(**kwargs):
    return MovieCatalogEntry(movie_id=1, movie_date_id="050120_1", site_id=1001, **kwargs)


def test_released_and_approved():
    movie = make_movie(release_date=NOW - timedelta(days=1), production_status="approved")
    assert derive_status(movie, NOW) == config.STATUS_RELEASED


def test_released_but_not_approved():
    movie = make_movie(release_date=NOW - timedelta(days=1), production_status="pending")
    assert derive_status(movie, NOW) == config.STATUS_NOTRELEASED


def test_future_release():
    movie = make_movie(release_date=NOW + timedelta(hours=1), production_status="approved")
    assert derive_status(movie, NOW) == config.STATUS_NOTRELEASED


def test_no_release_date():
    assert derive_status(make_movie(production_status="approved"), NOW) == config.STATUS_NOTRELEASED


def test_expired_beats_release():
    movie = make_movie(
        release_date=NOW - timedelta(days=30),
        expire_date=NOW - timedelta(days=1),
        production_status="approved",
    )
    assert derive_status(movie, NOW) == config.STATUS_NOTRELEASED


def test_naive_dates_are_utc():
    movie = make_movie(release_date=datetime(2024, 6, 1, 11, 59), production_status="approved")
    assert derive_status(movie, NOW) == config.STATUS_RELEASED

    # 12:30 in UTC+9 is 03:30 UTC, already past
    tokyo = timezone(timedelta(hours=9))
    movie = make_movie(release_date=datetime(2024, 6, 1, 12, 30, tzinfo=tokyo), production_status="approved")
    assert derive_status(movie, NOW) == config.STATUS_RELEASED
