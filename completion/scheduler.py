# completion/scheduler.py
import enum
import logging
import sqlite3
from datetime import datetime, timedelta, timezone

from pydantic import ValidationError

from completion.aggregate_data import MapStatCalculator, aggregate_map_stats, map_stats_by_map
from completion.completion_store import STALE_ZONE_LIMIT
from completion.fetch_pipeline import (
    BATCH_DEADLINE, REQUEST_TIMEOUT, WORKERS, FetchError,
    fetch_player_zone_results, fetch_zone_results,
)
from completion.models import CLASSES, RANKED_ZONE_KINDS, ZONE_KINDS, PlayerZoneClass, Zone
from completion.tempus_api import MapList, TempusAPIError

logger = logging.getLogger(__name__)

MAPS_TTL = timedelta(hours=24)
ZONE_TTL = timedelta(hours=24)
FETCH_INTERVAL = 60  # seconds between checks when there is nothing to do

# Failures that are worth retrying on the next iteration: fetch errors, and
# store errors including a stored stats blob that no longer validates.
# InvalidTierError is not one of them.
RETRYABLE_ERRORS = (FetchError, TempusAPIError, sqlite3.Error, ValidationError)


class RefreshState(enum.Enum):
    REFRESHING_ZONES = "refreshing_zones"
    REFRESHING_PLAYERS = "refreshing_players"
    IDLE = "idle"


def zones_from_catalog(maps) -> set[Zone]:
    """Expand each map's zone counts into individual zones (indexes start at 1)."""
    zones = set()
    for m in maps:
        for kind in ZONE_KINDS:
            for i in range(getattr(m.zone_counts, kind)):
                zones.add(Zone(map_id=m.id, map_name=m.name, zone_type=kind, zone_index=i + 1))
    return zones


class Fetcher:
    """
    Decides what is due, fetches it and turns raw results into stats.
    One iteration does one unit of work: stale zones first, then stale
    player-maps, otherwise nothing.
    """

    def __init__(self, client, store, *, workers=WORKERS, deadline=BATCH_DEADLINE,
                 request_timeout=REQUEST_TIMEOUT, zone_batch_size=STALE_ZONE_LIMIT,
                 resync_zones=False):
        self.client = client
        self.store = store
        self.workers = workers
        self.deadline = deadline
        self.request_timeout = request_timeout
        self.zone_batch_size = zone_batch_size
        self.resync_zones = resync_zones

        self.maps = store.get_maps()
        self.map_class_stats = aggregate_map_stats(store.get_all_zone_class_info())

    def _refresh_population(self):
        self.map_class_stats = aggregate_map_stats(self.store.get_all_zone_class_info())
        self.store.insert_map_stats(map_stats_by_map(self.map_class_stats))

    def update_maps(self, now=None):
        now = now or datetime.now(timezone.utc)
        response = self.client.get_detailed_map_list()

        map_list = MapList(updated=now, maps=response)
        self.store.insert_maps(map_list)
        self.maps = map_list

        zones = zones_from_catalog(response)
        self.store.insert_zones(zones, resync=self.resync_zones, updated=now)
        # one full resync per run is enough
        self.resync_zones = False

        logger.info("[maps] inserted %d maps, %d zones", len(response), len(zones))
        self._refresh_population()

    def run_iteration(self, now=None) -> RefreshState:
        now = now or datetime.now(timezone.utc)

        if now - self.maps.updated > MAPS_TTL:
            logger.info("[maps] maps data out-of-date, updating")
            self.update_maps(now)

        if self.update_raw_zone_results(now):
            return RefreshState.REFRESHING_ZONES

        if self.transform_player_maps():
            return RefreshState.REFRESHING_PLAYERS

        return RefreshState.IDLE

    def update_raw_zone_results(self, now=None) -> bool:
        now = now or datetime.now(timezone.utc)
        zones = self.store.get_stale_zones(now - ZONE_TTL, limit=self.zone_batch_size)
        logger.info("[zones] found %d stale zones", len(zones))
        if not zones:
            return False

        batch = fetch_zone_results(self.client, zones, workers=self.workers,
                                   deadline=self.deadline,
                                   request_timeout=self.request_timeout, updated=now)
        if not batch.results:
            return False

        results, info, steam_ids, fetched = [], [], {}, []
        for zr in batch.results:
            results.extend(zr.player_results)
            info.extend((zr.demoman, zr.soldier))
            steam_ids.update(zr.steam_ids)
            fetched.append(zr.zone)

        self.store.insert_player_class_zone_results(results)
        self.store.insert_zone_class_info(info)
        self.store.insert_steam_ids(steam_ids)
        # abandoned zones stay stale for the next cycle
        self.store.set_zones_fetched(fetched, now)

        # TODO: recompute only the map-classes touched by this batch
        self._refresh_population()
        return True

    def transform_player_maps(self) -> bool:
        stale = self.store.get_stale_player_maps()
        logger.info("[players] found %d stale player maps", len(stale))
        if not stale:
            return False

        results = self.store.get_player_map_results([s.key for s in stale])
        stats = MapStatCalculator(results, self.map_class_stats).calculate()

        self.store.insert_player_map_stats(stats)
        self.store.set_player_maps_processed(stale)
        return True

    def refresh_player_zones(self, player_id: int, map_name: str, now=None):
        """Fetch one player's status on every zone of a map for both classes."""
        now = now or datetime.now(timezone.utc)
        map_id = self.store.get_map_id(map_name)
        if map_id is None:
            raise ValueError(f"unknown map {map_name!r}")

        units = [
            PlayerZoneClass(map_name=z.map_name, zone_type=z.zone_type, zone_index=z.zone_index,
                            player_id=player_id, class_id=class_id)
            for z in self.store.get_zones(map_id) if z.zone_type in RANKED_ZONE_KINDS
            for class_id in CLASSES
        ]
        batch = fetch_player_zone_results(self.client, units, workers=self.workers,
                                          deadline=self.deadline,
                                          request_timeout=self.request_timeout, updated=now)
        if batch.results:
            self.store.insert_player_class_zone_results(batch.results)
        logger.info("[players] player %s on %s: %d/%d zone statuses (%s)",
                    player_id, map_name, len(batch.results), len(units), batch.state)
        return batch


def next_delay(state: RefreshState, interval=FETCH_INTERVAL) -> float:
    """Drain backlog immediately, otherwise wait a full interval."""
    if state is RefreshState.IDLE:
        return interval
    return 0


def backoff_delay(retries: int, interval=FETCH_INTERVAL) -> float:
    """
    Delay after the `retries`-th consecutive failure (counted from 1), so a
    first failure waits two intervals and each further one waits one more.
    """
    return interval * (retries + 1)


def run_forever(fetcher, stop_event, interval=FETCH_INTERVAL):
    """
    Run iterations until stop_event is set. The event is only checked
    between iterations, so a batch in flight always finishes first.
    """
    retries = 0
    delay = 0
    i = 0

    while not stop_event.wait(delay):
        logger.info("running iteration %d", i)
        try:
            state = fetcher.run_iteration()
        except RETRYABLE_ERRORS as e:
            retries += 1
            delay = backoff_delay(retries, interval)
            logger.error("error during iteration %d: %s (retry %d in %ss)", i, e, retries, delay)
            i += 1
            continue

        retries = 0
        delay = next_delay(state, interval)
        logger.info("finished iteration %d: %s", i, state.value)
        i += 1

    logger.info("Received exit signal, shutting down")
