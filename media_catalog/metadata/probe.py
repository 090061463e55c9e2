import json
import logging
import os
import subprocess
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Optional, Union

from PIL import Image

from .. import config
from ..exceptions import ProbeError
from ..models import MediaFileInfo
from ..scanning.filesystem import file_info
from ..scanning.hasher import FileHasher


class ProbeLimiter:
    """
    Counting limiter for external probe processes. Unlike a plain semaphore the
    capacity can be changed while slots are held; slots already handed out stay
    valid and new acquires wait until usage drops below the new capacity.
    """
    def __init__(self, capacity: Optional[int] = None):
        self._cond = threading.Condition()
        self._capacity = capacity or os.cpu_count() or 1
        self._in_use = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def available(self) -> int:
        with self._cond:
            return max(self._capacity - self._in_use, 0)

    def acquire(self):
        with self._cond:
            while self._in_use >= self._capacity:
                self._cond.wait()
            self._in_use += 1

    def release(self):
        with self._cond:
            if self._in_use <= 0:
                raise RuntimeError("ProbeLimiter.release() called without a matching acquire()")
            self._in_use -= 1
            self._cond.notify()

    def resize(self, capacity: int):
        if capacity < 1:
            raise ValueError(f"Probe concurrency must be >= 1, got {capacity}")
        with self._cond:
            self._capacity = capacity
            self._cond.notify_all()

    @contextmanager
    def slot(self) -> Iterator[None]:
        self.acquire()
        try:
            yield
        finally:
            self.release()


# One limiter per process: every MediaProbe shares it unless given its own.
_probe_limiter = ProbeLimiter()


def get_probe_limiter() -> ProbeLimiter:
    return _probe_limiter


def set_probe_concurrency(value: Any) -> None:
    """Resizes the process-wide limiter. Invalid values keep the current size."""
    try:
        capacity = int(value)
        _probe_limiter.resize(capacity)
    except (TypeError, ValueError):
        logging.error(f"Probe concurrency {value!r} is not a positive number, keeping {_probe_limiter.capacity}")
        return
    logging.info(f"Probe concurrency set to {capacity}")


def _safe_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _safe_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def fraction_to_rate(text: Optional[str]) -> Optional[float]:
    """'30000/1001' -> 29.97. Returns None for '0/0' or anything unparsable."""
    if not text or text == '0/0':
        return None
    num, _, den = str(text).partition('/')
    n = _safe_float(num)
    d = _safe_float(den) if den else 1.0
    if n is None or not d:
        return None
    return round(n / d, 2)


class MediaProbe:
    """
    Extracts media info from files.

    Strategies:
      - Video: 'ffprobe' JSON output (requires system install).
      - Images: Pillow for dimensions, plus an md5 of the content.

    Every call holds one limiter slot for the whole probe + stat.
    """
    def __init__(self,
                 limiter: Optional[ProbeLimiter] = None,
                 ffprobe_bin: str = config.FFPROBE_BIN,
                 timeout: Optional[float] = None,
                 on_result: Optional[Callable[[MediaFileInfo], None]] = None,
                 hasher: Optional[FileHasher] = None):
        self.limiter = limiter or get_probe_limiter()
        self.ffprobe_bin = ffprobe_bin
        self.timeout = timeout
        self.on_result = on_result
        self.hasher = hasher or FileHasher()

    def probe(self, path: Union[str, Path], codec_type: str = 'video') -> MediaFileInfo:
        """
        Media info for the codec_type stream ('video' by default, pass 'audio'
        for audio streams).

        Raises:
            ProbeError: file unreadable, ffprobe failed or produced garbage.
        """
        path = Path(path)
        self._check_readable(path)

        with self.limiter.slot():
            raw = self._run_ffprobe(path)
            info = self._parse_ffprobe(path, raw, codec_type)
            self._apply_stat(info)

        self._notify(info)
        return info

    def probe_image(self, path: Union[str, Path]) -> MediaFileInfo:
        """
        Dimensions, size and md5 for a thumbnail. Zero-byte files are not
        decoded and get 0x0 dimensions.
        """
        path = Path(path)
        self._check_readable(path)

        with self.limiter.slot():
            info = MediaFileInfo(file_path=path)
            self._apply_stat(info)

            if info.file_size:
                try:
                    with Image.open(path) as im:
                        info.width, info.height = im.size
                        info.codec_name = im.format.lower() if im.format else None
                        info.codec_type = 'video'
                except (OSError, ValueError, Image.DecompressionBombError) as e:
                    raise ProbeError(f"Cannot read image {path}: {e}") from e
            else:
                info.width = 0
                info.height = 0

            try:
                info.md5 = self.hasher.md5(path)
            except OSError as e:
                raise ProbeError(f"Cannot hash {path}: {e}") from e

        self._notify(info)
        return info

    # --- Internal Helpers ---

    def _check_readable(self, path: Path):
        if not os.access(path, os.R_OK):
            raise ProbeError(f"{path} is not readable")

    def _run_ffprobe(self, path: Path) -> Dict[str, Any]:
        cmd = [
            self.ffprobe_bin,
            "-v", "error",
            "-print_format", "json",
            "-show_streams",
            "-show_format",
            str(path),
        ]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except subprocess.TimeoutExpired as e:
            raise ProbeError(f"ffprobe timed out after {self.timeout}s for {path}") from e
        except OSError as e:
            raise ProbeError(f"Cannot run {self.ffprobe_bin}: {e}") from e

        if result.returncode != 0:
            raise ProbeError(f"ffprobe failed for {path}: {result.stderr.strip()}")

        try:
            return json.loads(result.stdout or '{}')
        except ValueError as e:
            raise ProbeError(f"ffprobe returned invalid JSON for {path}: {e}") from e

    def _parse_ffprobe(self, path: Path, raw: Dict[str, Any], codec_type: str) -> MediaFileInfo:
        info = MediaFileInfo(file_path=path)

        streams = raw.get('streams')
        if isinstance(streams, list):
            for stream in streams:
                # Last stream of the requested type wins
                if stream.get('codec_type') != codec_type:
                    continue

                info.codec_name = stream.get('codec_name')
                info.codec_type = stream.get('codec_type')
                info.width = _safe_int(stream.get('width'))
                info.height = _safe_int(stream.get('height'))
                info.avg_frame_rate = stream.get('avg_frame_rate')
                info.r_frame_rate = stream.get('r_frame_rate')
                # Per-stream rate; replaced below by the container rate.
                info.bit_rate = _safe_int(stream.get('bit_rate'))

                rate = fraction_to_rate(info.avg_frame_rate)
                if rate is None:
                    rate = fraction_to_rate(info.r_frame_rate)
                if rate is None:
                    logging.warning(f"Can't get frame_rate for file: {path}")
                info.frame_rate = rate

        fmt = raw.get('format')
        if isinstance(fmt, dict):
            container_rate = _safe_int(fmt.get('bit_rate'))
            if container_rate is not None:
                info.bit_rate = (container_rate // 1000) * 1000
            info.duration = _safe_float(fmt.get('duration'))

        return info

    def _apply_stat(self, info: MediaFileInfo):
        try:
            fi = file_info(info.file_path)
        except OSError as e:
            raise ProbeError(f"Cannot stat {info.file_path}: {e}") from e
        info.file_size = fi.file_size
        info.mtime = fi.mtime
        info.birth_time = fi.birth_time
        info.create_date = fi.create_date
        info.update_date = fi.update_date

    def _notify(self, info: MediaFileInfo):
        if self.on_result is None:
            return
        try:
            self.on_result(info)
        except Exception:
            logging.exception(f"Probe result callback failed for {info.file_path}")
