#!/usr/bin/env python3
import argparse
import logging
import os
import signal
import sys
import threading

from completion.completion_store import DATABASE, CompletionStore
from completion.fetch_pipeline import WORKERS
from completion.http_client import make_session
from completion.scheduler import FETCH_INTERVAL, Fetcher, run_forever
from completion.tempus_api import TEMPUS_API_BASE, TempusClient

# ── Logging config (controlled by env LOG_LEVEL) ─────────────────────────────
LOG_LEVEL_NAME = os.environ.get("LOG_LEVEL", "INFO").upper()
LOG_LEVEL = getattr(logging, LOG_LEVEL_NAME, logging.INFO)

logger = logging.getLogger("fetcher")


def configure_logging():
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )
    # urllib3 is chatty at DEBUG about every pooled connection
    logging.getLogger("urllib3").setLevel(max(LOG_LEVEL, logging.INFO))


def parse_args(argv=None):
    ap = argparse.ArgumentParser(
        description="Keep Tempus zone completions and player progress stats up to date.")
    ap.add_argument("--db", default=os.environ.get("COMPLETION_DB", DATABASE),
                    help="Path to SQLite DB (default: $COMPLETION_DB or completion.db)")
    ap.add_argument("--api-base", default=os.environ.get("TEMPUS_API_BASE", TEMPUS_API_BASE),
                    help="Tempus API base URL")
    ap.add_argument("--interval", type=int,
                    default=int(os.environ.get("FETCH_INTERVAL_SECONDS", FETCH_INTERVAL)),
                    help="Seconds to sleep when idle (default: 60)")
    ap.add_argument("--initialize", action="store_true",
                    help="Create the schema before starting")
    ap.add_argument("--resync", action="store_true",
                    help="Rebuild the zone table from the catalog, dropping removed zones")
    ap.add_argument("--once", action="store_true",
                    help="Run a single iteration and exit")
    ap.add_argument("--player", type=int,
                    help="Fetch one player's status on every zone of --map, then exit")
    ap.add_argument("--map", dest="map_name", help="Map name for --player")
    args = ap.parse_args(argv)
    if args.player is not None and not args.map_name:
        ap.error("--player requires --map")
    return args


def main(argv=None):
    args = parse_args(argv)
    configure_logging()

    store = CompletionStore(args.db)
    if args.initialize:
        store.create_schema()
        logger.info("schema ready in %s", args.db)

    client = TempusClient(make_session(pool=WORKERS), base_url=args.api_base)
    fetcher = Fetcher(client, store, resync_zones=args.resync)

    try:
        if args.player is not None:
            fetcher.refresh_player_zones(args.player, args.map_name)
            return 0

        if args.once:
            state = fetcher.run_iteration()
            logger.info("iteration finished: %s", state.value)
            return 0

        stop = threading.Event()

        def _shutdown(signum, _frame):
            logger.info("received signal %s", signum)
            stop.set()

        signal.signal(signal.SIGINT, _shutdown)
        signal.signal(signal.SIGTERM, _shutdown)

        run_forever(fetcher, stop, interval=args.interval)
        return 0
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
