import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from .core import MediaCatalogApp
from .exceptions import MediaCatalogError
from .metadata.probe import MediaProbe
from .sites import load_sites

def setup_logging(log_file: Optional[Path], verbose: bool):
    """Sets up logging to the console and, optionally, a file."""
    log_level = logging.DEBUG if verbose else logging.INFO

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.insert(0, logging.FileHandler(log_file, encoding='utf-8'))

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=handlers,
    )

    # Silence chatty libraries
    logging.getLogger("PIL").setLevel(logging.WARNING)

def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Media Catalog: sync movie/thumbnail rows with the filesystem")

    p.add_argument("-s", "--site-id", type=int, required=True, help="Site ID to process")
    p.add_argument("-c", "--config", type=Path, required=True, help="YAML file with the site configurations")
    p.add_argument("--db", type=Path, required=True, help="Path of the SQLite catalog")

    p.add_argument("-m", "--movie-id", type=int, default=None, help="Process only this movie_id (combine with -l 0)")
    p.add_argument("-l", "--last-updated", type=float, default=2,
                   help="Only movies updated this many hours ago. 0 processes all movies.")
    p.add_argument("-r", "--rows", type=int, default=None, help="Movies per page (5-500, default 100)")
    p.add_argument("-t", "--dir-type", choices=["image", "thumbnails", "sample", "member"], default=None,
                   help="Only import this kind of file (default: all)")
    p.add_argument("-x", "--max-probes", type=int, default=None,
                   help="Max concurrent ffprobe processes (default: number of CPUs)")
    p.add_argument("-d", "--released", type=float, default=None,
                   help="Process approved movies released in the last N days")
    p.add_argument("--probe-timeout", type=float, default=None, help="Kill ffprobe after this many seconds")
    p.add_argument("--log-file", type=Path, default=None, help="Also log to this file")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    return p.parse_args(argv)

def main(argv=None):
    args = parse_args(argv)
    setup_logging(args.log_file, args.verbose)

    logging.info("=== Media Catalog Started ===")
    logging.info(f"Site:   {args.site_id}")
    logging.info(f"Config: {args.config}")

    try:
        sites = load_sites(args.config)
        app = MediaCatalogApp(args.db, sites, probe=MediaProbe(timeout=args.probe_timeout))
        counts = app.process_site(
            args.site_id,
            page_size=args.rows,
            updated_within_hours=args.last_updated,
            released_days_ago=args.released,
            movie_id=args.movie_id,
            dir_type=args.dir_type,
            max_probes=args.max_probes,
        )
    except KeyboardInterrupt:
        logging.warning("Operation cancelled by user.")
        sys.exit(1)
    except MediaCatalogError as e:
        logging.error(str(e))
        sys.exit(1)
    except Exception:
        logging.exception("Fatal error during reconciliation.")
        sys.exit(1)

    for name, value in counts.as_dict().items():
        logging.info(f"{name.replace('_', ' ').capitalize()}: {value}")
    logging.info("Done.")

if __name__ == "__main__":
    main()
