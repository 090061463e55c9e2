"""
Mapping between filesystem paths and site-relative URI paths.
"""
import posixpath
from pathlib import Path
from typing import Iterable, List, Union

PathLike = Union[str, Path]


def _segments(value: PathLike) -> List[str]:
    """Normalized path split into segments, without leading/trailing slashes."""
    norm = posixpath.normpath(str(value).strip())
    norm = norm.strip('/')
    if not norm or norm == '.':
        return []
    return norm.split('/')


def resolve_uri(file_path: PathLike, docroots: Iterable[PathLike]) -> str:
    """
    Strips the first docroot that prefixes file_path and returns what is left
    as a URI path with a single leading slash.

        resolve_uri('/www/site/html/member/a.mp4', ['/www/site/html'])
        -> '/member/a.mp4'

    Returns '' when no docroot matches.
    """
    fp = _segments(file_path)

    for root in docroots:
        droot = _segments(root)
        if len(droot) > len(fp):
            continue
        if fp[:len(droot)] != droot:
            continue

        rest = fp[len(droot):]
        return '/' + '/'.join(rest) if rest else ''

    return ''
