from datetime import datetime, timezone
from typing import Optional

from .. import config
from ..models import MovieCatalogEntry


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def derive_status(movie: MovieCatalogEntry, now: Optional[datetime] = None) -> int:
    """
    Catalog status for every file of a movie.

    - expire_date in the past: NOTRELEASED (there is no separate 'expired' code)
    - release_date in the past: RELEASED if production_status is 'approved',
      NOTRELEASED otherwise
    - release_date in the future or unset: NOTRELEASED

    Naive datetimes are taken to be UTC.
    """
    now = _utc(now or datetime.now(timezone.utc))

    if movie.expire_date is not None and _utc(movie.expire_date) < now:
        return config.STATUS_NOTRELEASED

    if movie.release_date is not None and _utc(movie.release_date) < now:
        if movie.production_status == config.APPROVED:
            return config.STATUS_RELEASED
        return config.STATUS_NOTRELEASED

    return config.STATUS_NOTRELEASED
