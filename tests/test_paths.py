import pytest
from pathlib import Path

from media_catalog.paths import resolve_uri

DOCROOTS = ["/www/site/html", "/mnt/storage/site"]


@pytest.mark.parametrize("file_path, expected", [
    ("/www/site/html/member/movie/050120_1/1080p.mp4", "/member/movie/050120_1/1080p.mp4"),
    ("/mnt/storage/site/sample/050120_1/sample.mp4", "/sample/050120_1/sample.mp4"),
    ("/www/site/html//member/./movie/a.mp4", "/member/movie/a.mp4"),
    ("/www/site/htmlx/member/a.mp4", ""),     # prefix must end on a segment boundary
    ("/other/root/a.mp4", ""),
    ("/www/site/html", ""),                   # the docroot itself has no URI
])
def test_resolve_uri(file_path, expected):
    assert resolve_uri(file_path, DOCROOTS) == expected


def test_resolve_uri_trailing_slash_docroot():
    assert resolve_uri("/www/site/html/a.jpg", ["/www/site/html/"]) == "/a.jpg"


def test_resolve_uri_first_match_wins():
    roots = ["/www/site", "/www/site/html"]
    assert resolve_uri("/www/site/html/a.jpg", roots) == "/html/a.jpg"


def test_resolve_uri_accepts_path_objects(tmp_path):
    f = tmp_path / "member" / "a.mp4"
    assert resolve_uri(f, [tmp_path]) == "/member/a.mp4"


def test_uri_rejoined_to_docroot_gives_original_path():
    original = "/www/site/html/moviepages/050120_1/images/str.jpg"
    uri = resolve_uri(original, DOCROOTS)
    assert Path(DOCROOTS[0]) / uri.lstrip("/") == Path(original)
