import copy
import struct
import zlib
from datetime import datetime, timedelta, timezone

import pytest
from PIL import Image

from media_catalog.database.db import open_connection
from media_catalog.database.schema import init_schema
from media_catalog.database.ops import CatalogOperations
from media_catalog.metadata.probe import MediaProbe, ProbeLimiter
from media_catalog.models import MovieCatalogEntry
from media_catalog.sites import SiteConfig

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)
MOVIE_DATE_ID = "050120_1"

# What ffprobe prints for the 1080p rendition in most tests
FFPROBE_1080P = {
    "streams": [
        {"codec_type": "audio", "codec_name": "aac", "bit_rate": "128000"},
        {
            "codec_type": "video",
            "codec_name": "h264",
            "width": 1920,
            "height": 1080,
            "avg_frame_rate": "30000/1001",
            "r_frame_rate": "30000/1001",
            "bit_rate": "4800000",
        },
    ],
    "format": {"bit_rate": "5000000", "duration": "125.3"},
}


class FakeProbe(MediaProbe):
    """MediaProbe with ffprobe replaced by canned output keyed by file name."""
    def __init__(self, outputs=None, **kwargs):
        kwargs.setdefault("limiter", ProbeLimiter(2))
        super().__init__(**kwargs)
        self.outputs = outputs or {}
        self.calls = []

    def _run_ffprobe(self, path):
        self.calls.append(path)
        out = self.outputs.get(path.name, FFPROBE_1080P)
        if isinstance(out, Exception):
            raise out
        return copy.deepcopy(out)


def write_image(path, size=(40, 30), color="red"):
    path.parent.mkdir(parents=True, exist_ok=True)
    fmt = "PNG" if path.suffix.lower() == ".png" else "JPEG"
    Image.new("RGB", size, color).save(path, fmt)
    return path


def write_video(path, payload=b"\x00" * 256):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(payload)
    return path


def write_oversized_png(path, width=30000, height=30000):
    """A tiny PNG whose header declares more pixels than Pillow will open."""
    def chunk(tag, data):
        return struct.pack(">I", len(data)) + tag + data + struct.pack(">I", zlib.crc32(tag + data))

    header = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"\x89PNG\r\n\x1a\n" + chunk(b"IHDR", header)
                     + chunk(b"IDAT", zlib.compress(b"")) + chunk(b"IEND", b""))
    return path


@pytest.fixture
def conn():
    """Returns an in-memory SQLite connection with the schema initialized."""
    c = open_connection(":memory:")
    init_schema(c)
    try:
        yield c
    finally:
        c.close()


@pytest.fixture
def db_ops(conn):
    """Returns a CatalogOperations instance attached to the in-memory DB."""
    return CatalogOperations(conn)


@pytest.fixture
def docroot(tmp_path):
    root = tmp_path / "www" / "site" / "html"
    root.mkdir(parents=True)
    return root


@pytest.fixture
def site(docroot):
    return SiteConfig(
        site_id=1001,
        docroots=[str(docroot)],
        dirs={
            "movies": ["member/movie/MOVIE_ID"],
            "sample": ["sample/MOVIE_ID"],
            "image": ["moviepages/MOVIE_ID/images"],
        },
        movie_server_name="www.example.com",
        sample_server_name="smovie.example.com",
        image_server_name="img.example.com",
        image_primary={"/moviepages/MOVIE_ID/images/l_thum.jpg": 1},
        flash_image={
            "/moviepages/MOVIE_ID/images/str.jpg": 1,
            "/moviepages/MOVIE_ID/images/popu.jpg": 2,
        },
        make_fake_filepaths=True,
        fake_path_format="{base}/{movie_date_id}_{filename}",
        allowed_fake_path_exts=[".mp4"],
        ignore_files=["*.html"],
    )


@pytest.fixture
def movie(db_ops):
    entry = MovieCatalogEntry(
        movie_id=1,
        movie_seq=None,
        movie_date_id=MOVIE_DATE_ID,
        site_id=1001,
        release_date=NOW - timedelta(days=10),
        production_status="approved",
        updated=NOW - timedelta(hours=1),
    )
    db_ops.insert_movie(entry)
    return entry
