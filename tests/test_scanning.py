import hashlib
import os

import pytest

from media_catalog import config
from media_catalog.exceptions import ScanError
from media_catalog.scanning.filesystem import DirectoryScanner, classify, file_info, is_image
from media_catalog.scanning.hasher import FileHasher


def test_compute_md5(tmp_path):
    p = tmp_path / "thumb.jpg"
    data = b"jpegdata" * 20000  # spans several read chunks
    p.write_bytes(data)

    assert FileHasher().md5(p) == hashlib.md5(data).hexdigest()


def test_classify_extension():
    assert classify("a/1080p.mp4") == 'streaming/ipod'
    assert classify("a/clip.WMV") == 'download'
    assert classify("a/pack.zip") == 'zip'
    assert classify("a/old.flv") == 'streaming'
    assert classify("a/str.JPG") == config.IMAGE_KIND
    assert classify("a/readme.txt") is None

    assert is_image("x/popu.png")
    assert not is_image("x/1080p.mp4")


def test_scanner_recurses_in_sorted_order(tmp_path):
    (tmp_path / "b").mkdir()
    (tmp_path / "a" / "deep").mkdir(parents=True)
    (tmp_path / "b" / "2.mp4").write_bytes(b"x")
    (tmp_path / "a" / "deep" / "1.mp4").write_bytes(b"x")
    (tmp_path / "0.jpg").write_bytes(b"x")

    files = DirectoryScanner().scan(tmp_path)

    assert files == [
        tmp_path / "0.jpg",
        tmp_path / "a" / "deep" / "1.mp4",
        tmp_path / "b" / "2.mp4",
    ]


def test_scanner_drops_unknown_extensions(tmp_path):
    (tmp_path / "1080p.mp4").write_bytes(b"x")
    (tmp_path / "notes.txt").write_text("x")

    scanner = DirectoryScanner()
    assert scanner.scan(tmp_path) == [tmp_path / "1080p.mp4"]
    assert set(scanner.scan(tmp_path, known_only=False)) == {tmp_path / "1080p.mp4", tmp_path / "notes.txt"}


def test_scanner_ignore_globs_and_predicates(tmp_path):
    (tmp_path / "index.html").write_text("x")
    (tmp_path / "1080p.mp4").write_bytes(b"x" * 10)
    (tmp_path / "empty.mp4").write_bytes(b"")
    hidden = tmp_path / "tmp"
    hidden.mkdir()
    (hidden / "partial.mp4").write_bytes(b"x")

    rules = [
        "*.html",
        str(hidden),                          # full path match prunes the whole directory
        lambda path, st: st.st_size == 0,     # skip empty uploads
    ]
    files = DirectoryScanner().scan(tmp_path, rules, known_only=False)

    assert files == [tmp_path / "1080p.mp4"]


def test_scanner_skips_broken_symlink(tmp_path, caplog):
    (tmp_path / "1080p.mp4").write_bytes(b"x")
    os.symlink(tmp_path / "gone.mp4", tmp_path / "dangling.mp4")

    files = DirectoryScanner().scan(tmp_path)

    assert files == [tmp_path / "1080p.mp4"]
    assert "File does not exist" in caplog.text


def test_scanner_stops_at_directory_loop(tmp_path, caplog):
    movie_dir = tmp_path / "050120_1"
    movie_dir.mkdir()
    (movie_dir / "1080p.mp4").write_bytes(b"x")
    os.symlink(tmp_path, movie_dir / "up")

    files = DirectoryScanner().scan(tmp_path)

    assert files == [movie_dir / "1080p.mp4"]
    assert "Directory loop" in caplog.text


def test_scanner_missing_root_raises(tmp_path):
    with pytest.raises(ScanError):
        DirectoryScanner().scan(tmp_path / "nope")


def test_file_info_formats_dates(tmp_path):
    p = tmp_path / "a.mp4"
    p.write_bytes(b"12345")
    os.utime(p, (1_600_000_000, 1_600_000_000))

    fi = file_info(p)

    assert fi.file_size == 5
    assert fi.mtime == 1_600_000_000
    assert len(fi.update_date) == len("2020-09-13 12:26:40")
    assert fi.create_date
