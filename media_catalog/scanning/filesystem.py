import fnmatch
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Union

from .. import config
from ..exceptions import ScanError
from ..sites import IgnoreRule


def classify(path: Union[str, Path]) -> Optional[str]:
    """File kind for an extension ('image', 'download', ...), None if unknown."""
    return config.EXT_TO_KIND.get(Path(path).suffix.lower())


def is_image(path: Union[str, Path]) -> bool:
    return classify(path) == config.IMAGE_KIND


@dataclass
class FileInfo:
    file_size: int
    create_date: str
    update_date: str
    mtime: float
    birth_time: float


def file_info(path: Path) -> FileInfo:
    """Size and formatted filesystem dates for a file."""
    st = path.stat()
    # st_birthtime is not available everywhere; ctime is the closest thing.
    birth = getattr(st, 'st_birthtime', st.st_ctime)
    return FileInfo(
        file_size=st.st_size,
        create_date=datetime.fromtimestamp(birth).strftime(config.DATE_FORMAT),
        update_date=datetime.fromtimestamp(st.st_mtime).strftime(config.DATE_FORMAT),
        mtime=st.st_mtime,
        birth_time=birth,
    )


class DirectoryScanner:
    def scan(self,
             root: Path,
             ignores: Iterable[IgnoreRule] = (),
             known_only: bool = True) -> List[Path]:
        """
        Lists every file under root.

        Args:
            ignores: glob patterns (matched against the file name and the full path)
                     or callables taking (path, stat_result) that return True to skip.
            known_only: drop files whose extension is not in the classification table.

        Raises:
            ScanError: root itself cannot be read.
        """
        rules = list(ignores)
        try:
            root_st = os.stat(root)
            with os.scandir(root) as it:
                entries = list(it)
        except OSError as e:
            raise ScanError(f"Cannot read directory {root}: {e}") from e

        files = []
        for path in self._iter_files(root, entries, rules, root_st):
            if known_only and classify(path) is None:
                continue
            files.append(path)
        return files

    def _iter_files(self,
                    root: Path,
                    root_entries: List[os.DirEntry],
                    rules: List[IgnoreRule],
                    root_st: os.stat_result) -> Iterator[Path]:
        """
        Depth-first walker using os.scandir for speed. Symlinked directories
        are followed once; a directory already visited is skipped.
        """
        visited = {(root_st.st_dev, root_st.st_ino)}
        stack = [(Path(root), root_entries)]
        while stack:
            current, entries = stack.pop()

            # Sort for stable traversal order
            entries.sort(key=lambda e: e.name.lower())

            dirs = []
            for e in entries:
                path = Path(e.path)
                try:
                    st = os.stat(e.path)
                except FileNotFoundError:
                    # broken symlink or removed during the scan
                    logging.warning(f"File does not exist: {path}")
                    continue
                except OSError as err:
                    logging.warning(f"Cannot stat {path}: {err}")
                    continue

                if self._is_ignored(path, st, rules):
                    continue

                if e.is_dir():
                    key = (st.st_dev, st.st_ino)
                    if key in visited:
                        logging.warning(f"Directory loop, skipping: {path}")
                        continue
                    visited.add(key)
                    dirs.append(path)
                elif e.is_file():
                    yield path

            # Push dirs to stack (reversed so we process A before Z)
            for d in reversed(dirs):
                try:
                    with os.scandir(d) as it:
                        sub_entries = list(it)
                except OSError as err:
                    logging.warning(f"Cannot read directory {d}: {err}")
                    continue
                stack.append((d, sub_entries))

    def _is_ignored(self, path: Path, st: os.stat_result, rules: List[IgnoreRule]) -> bool:
        for rule in rules:
            if callable(rule):
                if rule(path, st):
                    return True
            elif fnmatch.fnmatch(path.name, rule) or fnmatch.fnmatch(str(path), rule):
                return True
        return False
