"""
Configuration constants for the media catalog worker.
"""
import re

# --- File Type Definitions ---
# Extension lists inherited from the legacy import scripts.
DOWNLOAD_EXTS = {'.avi', '.asf', '.mpeg', '.mpg', '.mov', '.ram', '.rm', '.wmv'}
ZIP_EXTS = {'.zip'}
STREAMING_EXTS = {'.flv'}
IPOD_EXTS = {'.mp4'}
IMAGE_EXTS = {'.bmp', '.gif', '.jpeg', '.jpg', '.png'}

IMAGE_KIND = 'image'

# Extension to Kind Mapping
# Anything not listed here is an "unknown" kind and dropped by known-only scans.
EXT_TO_KIND = {}
for ext in DOWNLOAD_EXTS: EXT_TO_KIND[ext] = 'download'
for ext in ZIP_EXTS: EXT_TO_KIND[ext] = 'zip'
for ext in STREAMING_EXTS: EXT_TO_KIND[ext] = 'streaming'
for ext in IPOD_EXTS: EXT_TO_KIND[ext] = 'streaming/ipod'
for ext in IMAGE_EXTS: EXT_TO_KIND[ext] = IMAGE_KIND

# --- Catalog Status Codes ---
STATUS_FILEDELETED = 0   # file was catalogued but is gone from disk
STATUS_RELEASED = 1
STATUS_NOTRELEASED = 2

APPROVED = 'approved'

# --- Directory kinds (keys of a site's 'dir' config) ---
DIR_MOVIES = 'movies'
DIR_SAMPLE = 'sample'
DIR_IMAGE = 'image'

# Record kinds (which table a path cache is loaded from)
KIND_MOVIES = 'movies'
KIND_THUMBNAILS = 'thumbnails'

# Placeholder replaced with a movie's movie_date_id in templates and flag keys.
# Both the bare and the legacy '#MOVIE_ID#' spelling are accepted.
MOVIE_ID_PATTERN = re.compile(r'#?MOVIE_ID#?')

# --- Movie side effects ---
# duration_seconds is only taken from this file.
DURATION_REFERENCE_NAME = '1080p.mp4'
MIN_DURATION_SECONDS = 1
MAX_FRAME_RATE = 99.99

# --- Paging ---
DEFAULT_PAGE_SIZE = 100
MIN_PAGE_SIZE = 5
MAX_PAGE_SIZE = 500
DEFAULT_MOVIE_WORKERS = 4
DEFAULT_FILE_WORKERS = 8

# Movies whose release date falls inside this window are always rechecked.
RELEASE_RECHECK_HOURS = 2

# --- Probing ---
FFPROBE_BIN = 'ffprobe'
HASH_CHUNK_SIZE = 64 * 1024  # 64 KB chunks for reading
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
