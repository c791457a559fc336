# completion/fetch_pipeline.py
import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FuturesTimeoutError
from datetime import datetime, timezone
from typing import Any, NamedTuple

from pydantic import BaseModel, Field

from completion.models import (
    CLASS_DEMOMAN, CLASS_NAMES, CLASS_SOLDIER, NEVER,
    PlayerClassZoneResult, Zone, ZoneClassInfo,
)

logger = logging.getLogger(__name__)

WORKERS = 8                 # sized to what the API tolerates, not to local CPUs
REQUEST_TIMEOUT = 10        # seconds per request
BATCH_DEADLINE = 5 * 60     # seconds for the whole batch

BATCH_COMPLETE = "complete"
BATCH_PARTIAL = "partially_complete"


class FetchError(Exception):
    """A work unit failed before the batch deadline; the batch is aborted."""


class BatchResult(NamedTuple):
    state: str
    results: list[Any]
    pending: list[Any]      # units with no result when the batch ended

    @property
    def partial(self) -> bool:
        return self.state == BATCH_PARTIAL


def run_batch(units, fetch_one, *, workers=WORKERS, deadline=BATCH_DEADLINE) -> BatchResult:
    """
    Run fetch_one over units on a fixed pool of worker threads.

    Results are collected in completion order until every unit is done or
    the deadline passes. On deadline the batch returns what has arrived and
    abandons the rest; in-flight requests are left to their own timeouts.
    A failing unit raises FetchError unless the deadline has already fired.
    """
    units = list(units)
    if not units:
        return BatchResult(BATCH_COMPLETE, [], [])

    start = time.monotonic()
    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fetch")
    futures = {executor.submit(fetch_one, unit): unit for unit in units}
    results = []
    finished = set()

    def _partial():
        pending = [u for f, u in futures.items() if f not in finished]
        logger.warning("[batch] deadline of %ss hit: %d/%d units done, %d abandoned",
                       deadline, len(results), len(units), len(pending))
        return BatchResult(BATCH_PARTIAL, results, pending)

    try:
        try:
            for fut in as_completed(futures, timeout=deadline):
                finished.add(fut)
                try:
                    results.append(fut.result())
                except Exception as e:
                    if time.monotonic() - start >= deadline:
                        return _partial()
                    raise FetchError(f"{futures[fut]!r}: {e}") from e
        except FuturesTimeoutError:
            return _partial()
    finally:
        # don't wait on stragglers; queued units never start
        executor.shutdown(wait=False, cancel_futures=True)

    return BatchResult(BATCH_COMPLETE, results, [])


# --- Zone leaderboards ---


class ZoneResults(BaseModel):
    zone: Zone
    soldier: ZoneClassInfo
    demoman: ZoneClassInfo
    player_results: list[PlayerClassZoneResult] = Field(default_factory=list)
    steam_ids: dict[str, int] = Field(default_factory=dict)


def _from_unix(ts: float) -> datetime:
    if not ts:
        return NEVER
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def zone_results_from_response(zone: Zone, response, updated: datetime) -> ZoneResults:
    """Convert one zone's leaderboard into raw results and population info."""
    info = response.zone_info
    zone_type = info.type
    custom_name = info.custom_name or ""

    counts = {}
    for class_id, records, reported in (
        (CLASS_SOLDIER, response.results.soldier, response.completion_info.soldier),
        (CLASS_DEMOMAN, response.results.demoman, response.completion_info.demoman),
    ):
        found = len(records)
        if found != reported:
            # the API count can cover records beyond what was returned
            logger.warning("[zones] %s %s/%d: response expects %d %s completions, found %d",
                           zone.map_name, zone_type, info.zoneindex, reported,
                           CLASS_NAMES[class_id], found)
        counts[class_id] = reported

    tiers = {CLASS_SOLDIER: response.tier_info.soldier, CLASS_DEMOMAN: response.tier_info.demoman}

    results = []
    steam_ids = {}
    for class_id, records in ((CLASS_SOLDIER, response.results.soldier),
                              (CLASS_DEMOMAN, response.results.demoman)):
        for r in records:
            player_id = r.player_info.id or r.user_id
            results.append(PlayerClassZoneResult(
                player_id=player_id,
                map_id=info.map_id,
                map_name=zone.map_name,
                zone_type=zone_type,
                zone_index=info.zoneindex,
                class_id=class_id,
                custom_name=custom_name,
                tier=tiers[class_id],
                rank=r.rank,
                duration=r.duration,
                date=_from_unix(r.date),
                completions=counts[class_id],
                updated=updated,
            ))
            steamid = r.steamid or r.player_info.steamid
            if steamid:
                steam_ids[steamid] = player_id

    def class_info(class_id):
        return ZoneClassInfo(
            map_id=info.map_id,
            map_name=zone.map_name,
            zone_type=zone_type,
            zone_index=info.zoneindex,
            class_id=class_id,
            custom_name=custom_name,
            tier=tiers[class_id],
            completions=counts[class_id],
        )

    return ZoneResults(
        zone=zone,
        soldier=class_info(CLASS_SOLDIER),
        demoman=class_info(CLASS_DEMOMAN),
        player_results=results,
        steam_ids=steam_ids,
    )


def fetch_zone_results(client, zones, *, workers=WORKERS, deadline=BATCH_DEADLINE,
                       request_timeout=REQUEST_TIMEOUT, updated=None) -> BatchResult:
    updated = updated or datetime.now(timezone.utc)

    def fetch_one(zone):
        response = client.get_zone_records(
            zone.map_id, zone.zone_type, zone.zone_index, limit=0, timeout=request_timeout)
        return zone_results_from_response(zone, response, updated)

    t0 = time.perf_counter()
    batch = run_batch(zones, fetch_one, workers=workers, deadline=deadline)
    logger.info("[zones] found %d results in %.2f seconds",
                len(batch.results), time.perf_counter() - t0)
    return batch


# --- Single player status per zone and class ---


def result_from_player_completion(unit, response, updated: datetime) -> PlayerClassZoneResult:
    info = response.zone_info
    if unit.class_id == CLASS_SOLDIER:
        tier, completions = response.tier_info.soldier, response.completion_info.soldier
    else:
        tier, completions = response.tier_info.demoman, response.completion_info.demoman

    r = response.result
    done = r is not None and bool(r.id) and r.duration > 0

    return PlayerClassZoneResult(
        player_id=unit.player_id,
        map_id=info.map_id,
        map_name=unit.map_name,
        zone_type=info.type,
        zone_index=info.zoneindex,
        class_id=unit.class_id,
        custom_name=info.custom_name or "",
        tier=tier,
        rank=r.rank if done else 0,
        duration=r.duration if done else 0.0,
        date=_from_unix(r.date) if done else NEVER,
        completions=completions,
        updated=updated,
    )


def fetch_player_zone_results(client, units, *, workers=WORKERS, deadline=BATCH_DEADLINE,
                              request_timeout=REQUEST_TIMEOUT, updated=None) -> BatchResult:
    updated = updated or datetime.now(timezone.utc)

    def fetch_one(unit):
        response = client.get_player_zone_class_completion(
            unit.map_name, unit.zone_type, unit.zone_index, unit.player_id, unit.class_id,
            timeout=request_timeout)
        return result_from_player_completion(unit, response, updated)

    t0 = time.perf_counter()
    batch = run_batch(units, fetch_one, workers=workers, deadline=deadline)
    logger.info("[players] fetched %d zone statuses in %.2f seconds",
                len(batch.results), time.perf_counter() - t0)
    return batch
