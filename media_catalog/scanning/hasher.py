import hashlib
from pathlib import Path

from .. import config


class FileHasher:
    def md5(self, path: Path) -> str:
        """
        MD5 of the whole file. Thumbnails are small, so no sparse sampling;
        the digest is what the catalog compares between passes.
        """
        h = hashlib.md5()
        with open(path, 'rb') as f:
            while chunk := f.read(config.HASH_CHUNK_SIZE):
                h.update(chunk)
        return h.hexdigest()
