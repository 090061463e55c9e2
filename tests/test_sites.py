import textwrap

import pytest

from media_catalog import config
from media_catalog.exceptions import ConfigError
from media_catalog.sites import SiteConfig, get_site, load_sites, substitute_movie_id


def test_substitute_movie_id():
    assert substitute_movie_id("member/movie/MOVIE_ID", "050120_1") == "member/movie/050120_1"
    assert substitute_movie_id("/moviepages/#MOVIE_ID#/str.jpg", "050120_1") == "/moviepages/050120_1/str.jpg"


def test_load_sites_from_yaml(tmp_path):
    cfg = tmp_path / "sites.yaml"
    cfg.write_text(textwrap.dedent("""
        sites:
          1001:
            docroots: [/www/site/html]
            dir:
              movies: [member/movie/MOVIE_ID]
              image: [moviepages/MOVIE_ID/images]
            movie_server_name: www.example.com
            image_server_name: img.example.com
            flash_image:
              /moviepages/MOVIE_ID/images/str.jpg: 1
            make_fake_filepaths: true
            fake_path_format: "{base}/{movie_date_id}_{filename}"
            allowed_fake_path_exts: [.mp4]
          2002:
            docroots: [/www/other]
    """))

    sites = load_sites(cfg)

    assert sorted(sites) == [1001, 2002]
    site = get_site(sites, 1001)
    assert site.docroots == ["/www/site/html"]
    assert site.dirs["movies"] == ["member/movie/MOVIE_ID"]
    assert site.flash_image == {"/moviepages/MOVIE_ID/images/str.jpg": 1}
    assert site.make_fake_filepaths is True
    assert not sites[2002].make_fake_filepaths


@pytest.mark.parametrize("content", [
    "sites: [1, 2]",
    "sites:\n  abc: {}",
    "sites:\n  1001: [not, a, mapping]",
    "sites: {1001: {dir: [movies]}}",
    "sites: {1001: [unclosed",
])
def test_load_sites_rejects_bad_config(tmp_path, content):
    cfg = tmp_path / "sites.yaml"
    cfg.write_text(content)

    with pytest.raises(ConfigError):
        load_sites(cfg)


def test_load_sites_missing_file(tmp_path):
    with pytest.raises(ConfigError):
        load_sites(tmp_path / "nope.yaml")


def test_get_site_unknown():
    with pytest.raises(ConfigError):
        get_site({}, 1001)


def test_directories_only_existing(site, docroot, tmp_path):
    (docroot / "member" / "movie" / "050120_1").mkdir(parents=True)

    assert site.directories(config.DIR_MOVIES, "050120_1") == [docroot / "member" / "movie" / "050120_1"]
    assert site.directories(config.DIR_SAMPLE, "050120_1") == []


def test_directories_absolute_template(tmp_path):
    absolute = tmp_path / "nas" / "050120_1"
    absolute.mkdir(parents=True)
    site = SiteConfig(site_id=1, docroots=[str(tmp_path / "a"), str(tmp_path / "b")],
                      dirs={"movies": [str(tmp_path / "nas" / "MOVIE_ID")]})

    assert site.directories(config.DIR_MOVIES, "050120_1") == [absolute]


def test_directories_every_docroot(tmp_path):
    for root in ("a", "b"):
        (tmp_path / root / "member" / "x").mkdir(parents=True)
    site = SiteConfig(site_id=1, docroots=[str(tmp_path / "a"), str(tmp_path / "b")],
                      dirs={"movies": ["member/MOVIE_ID"]})

    assert site.directories(config.DIR_MOVIES, "x") == [tmp_path / "a" / "member" / "x",
                                                        tmp_path / "b" / "member" / "x"]


def test_directories_unknown_kind(site):
    site.dirs.pop("sample")
    with pytest.raises(ConfigError):
        site.directories(config.DIR_SAMPLE, "050120_1")


def test_flag_priority(site):
    assert site.flag_priority("flash_image", "/moviepages/050120_1/images/str.jpg", "050120_1") == 1
    assert site.flag_priority("flash_image", "/moviepages/050120_1/images/popu.jpg", "050120_1") == 2
    assert site.flag_priority("flash_image", "/moviepages/999999_1/images/str.jpg", "050120_1") == 0
    assert site.flag_priority("image_primary", "/moviepages/050120_1/images/l_thum.jpg", "050120_1") == 1

    with pytest.raises(ConfigError):
        site.flag_priority("rotation", "/x.jpg", "050120_1")


def test_fake_path(site):
    assert site.fake_path("/member/movie/050120_1/1080p.mp4", "050120_1") == \
        "/member/movie/050120_1/050120_1_1080p.mp4"

    site.make_fake_filepaths = False
    assert site.fake_path("/member/movie/050120_1/1080p.mp4", "050120_1") is None

    site.make_fake_filepaths = True
    site.fake_path_format = None
    with pytest.raises(ConfigError):
        site.fake_path("/member/movie/050120_1/1080p.mp4", "050120_1")


def test_allows_fake_path(site):
    assert site.allows_fake_path("/member/movie/050120_1/1080p.mp4")
    assert site.allows_fake_path("/member/movie/050120_1/1080P.MP4")
    assert not site.allows_fake_path("/member/movie/050120_1/pack.zip")

    site.allowed_fake_path_exts = []
    assert site.allows_fake_path("/member/movie/050120_1/pack.zip")


def test_server_names(site):
    assert site.server_name(config.DIR_MOVIES) == "www.example.com"
    assert site.server_name(config.DIR_SAMPLE) == "smovie.example.com"
    assert site.server_name(config.DIR_IMAGE) == "img.example.com"
