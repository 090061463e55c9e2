"""
Per-site configuration: document roots, directory templates, image priority
maps and fake path settings.

A site file is YAML shaped like:

    sites:
      1001:
        docroots: [/www/site/html]
        dir:
          movies: [member/movie/MOVIE_ID]
          sample: [sample/MOVIE_ID]
          image: [moviepages/MOVIE_ID/images]
        movie_server_name: www.example.com
        sample_server_name: smovie.example.com
        image_server_name: www.example.com
        image_primary: {/moviepages/MOVIE_ID/images/l_thum.jpg: 1}
        flash_image: {/moviepages/MOVIE_ID/images/str.jpg: 1}
        make_fake_filepaths: true
        fake_path_format: "{base}/{movie_date_id}_{filename}"
        allowed_fake_path_exts: [.mp4]
        ignore_files: ["*.html", ".*"]
"""
import logging
import posixpath
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import yaml

from . import config
from .exceptions import ConfigError
from .paths import resolve_uri

IgnoreRule = Union[str, Callable[[Path, Any], bool]]


def substitute_movie_id(template: str, movie_date_id: str) -> str:
    return config.MOVIE_ID_PATTERN.sub(lambda _: movie_date_id, template)


@dataclass
class SiteConfig:
    site_id: int
    docroots: List[str] = field(default_factory=list)
    dirs: Dict[str, List[str]] = field(default_factory=dict)
    movie_server_name: Optional[str] = None
    sample_server_name: Optional[str] = None
    image_server_name: Optional[str] = None
    image_primary: Dict[str, int] = field(default_factory=dict)
    flash_image: Dict[str, int] = field(default_factory=dict)
    make_fake_filepaths: bool = False
    fake_path_format: Optional[str] = None
    allowed_fake_path_exts: List[str] = field(default_factory=list)
    ignore_files: List[IgnoreRule] = field(default_factory=list)

    @classmethod
    def from_dict(cls, site_id: int, data: Dict[str, Any]) -> "SiteConfig":
        if not isinstance(data, dict):
            raise ConfigError(f"Site {site_id}: configuration must be a mapping")

        dirs = data.get('dir') or {}
        if not isinstance(dirs, dict):
            raise ConfigError(f"Site {site_id}: 'dir' must map directory kinds to lists")

        return cls(
            site_id=int(site_id),
            docroots=[str(d) for d in data.get('docroots') or []],
            dirs={k: list(v or []) for k, v in dirs.items()},
            movie_server_name=data.get('movie_server_name'),
            sample_server_name=data.get('sample_server_name'),
            image_server_name=data.get('image_server_name'),
            image_primary={str(k): int(v) for k, v in (data.get('image_primary') or {}).items()},
            flash_image={str(k): int(v) for k, v in (data.get('flash_image') or {}).items()},
            make_fake_filepaths=bool(data.get('make_fake_filepaths', False)),
            fake_path_format=data.get('fake_path_format'),
            allowed_fake_path_exts=list(data.get('allowed_fake_path_exts') or []),
            ignore_files=list(data.get('ignore_files') or []),
        )

    def server_name(self, dir_type: str) -> Optional[str]:
        if dir_type == config.DIR_IMAGE:
            return self.image_server_name
        if dir_type == config.DIR_SAMPLE:
            return self.sample_server_name
        return self.movie_server_name

    def directories(self, dir_type: str, movie_date_id: str) -> List[Path]:
        """
        Directories configured for dir_type with the movie id filled in.
        Relative templates are looked up under every docroot. Only directories
        that exist are returned.
        """
        if dir_type not in self.dirs:
            raise ConfigError(f"'{dir_type}' does not exist in the 'dir' configuration for site {self.site_id}")

        found: List[Path] = []
        for template in self.dirs[dir_type]:
            rel = substitute_movie_id(str(template), movie_date_id)
            if rel.startswith('/'):
                candidates = [Path(posixpath.normpath(rel))]
            else:
                candidates = [Path(posixpath.normpath(posixpath.join(root, rel))) for root in self.docroots]

            for cand in candidates:
                if cand in found:
                    continue
                if cand.is_dir():
                    found.append(cand)
                else:
                    logging.debug(f"Directory does not exist: {cand}")
        return found

    def flag_priority(self, flag: str, uri_path: str, movie_date_id: str) -> int:
        """
        Looks up uri_path in the 'image_primary' or 'flash_image' map.
        Returns 0 when the path is not listed.
        """
        if flag == 'flash_image':
            options = self.flash_image
        elif flag == 'image_primary':
            options = self.image_primary
        else:
            raise ConfigError(f"Unknown image flag: {flag}")

        for key, value in options.items():
            if substitute_movie_id(key, movie_date_id) == uri_path:
                return int(value)
        return 0

    def allows_fake_path(self, uri_path: str) -> bool:
        """Extension check against allowed_fake_path_exts (empty list allows all)."""
        allowed = [a.lower() for a in self.allowed_fake_path_exts if a]
        if not allowed:
            return True
        ext = posixpath.splitext(uri_path)[1].lower()
        if not ext:
            return True
        return ext in allowed

    def fake_path(self, uri_path: str, movie_date_id: str) -> Optional[str]:
        """The fake alias for a member movie URI, or None if disabled for this site."""
        if not self.make_fake_filepaths:
            return None
        if not self.fake_path_format:
            raise ConfigError(f"Site {self.site_id}: make_fake_filepaths is set without fake_path_format")

        return self.fake_path_format.format(
            base=posixpath.dirname(uri_path),
            movie_date_id=movie_date_id,
            filename=posixpath.basename(uri_path),
        )

    def resolve_uri(self, file_path: Union[str, Path]) -> str:
        return resolve_uri(file_path, self.docroots)


def load_sites(config_path: Path) -> Dict[int, SiteConfig]:
    """Loads the YAML site file into SiteConfig objects keyed by site id."""
    if not config_path.exists():
        raise ConfigError(f"Site config file not found: {config_path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid site config {config_path}: {e}") from e

    if isinstance(data, dict) and 'sites' in data:
        data = data['sites'] or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Site config {config_path} must be a mapping of site ids")

    sites = {}
    for key, block in data.items():
        try:
            site_id = int(key)
        except (TypeError, ValueError):
            raise ConfigError(f"Site id must be an integer, got {key!r}")
        sites[site_id] = SiteConfig.from_dict(site_id, block)
    return sites


def get_site(sites: Dict[int, SiteConfig], site_id: int) -> SiteConfig:
    if site_id not in sites:
        raise ConfigError(f"{site_id} does not exist in the sites config")
    return sites[site_id]
