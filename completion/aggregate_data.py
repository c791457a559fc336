import logging
from collections import defaultdict

from completion.models import (
    CLASS_DEMOMAN, CLASS_SOLDIER, ZONE_KIND_TRICK,
    MapClass, MapClassStats, MapClassStatsInfo, MapStatsInfo,
    PlayerClassMapResultStats, PlayerClassMapStats, PlayerMapResultStats,
    PlayerMapStats, percentage,
)
from completion.point_values import TOP_PLACEMENTS, point_value, rank_bonus
from completion.tiers import set_tier, tier_mask

logger = logging.getLogger(__name__)


def _is_ranked(zone_type: str, tier: int) -> bool:
    return tier != 0 and zone_type != ZONE_KIND_TRICK


# Population baseline per (map, class) from the zone_class_info table


def aggregate_map_stats(zone_class_info) -> dict[MapClass, MapClassStatsInfo]:
    """
    Build the per map-class population stats (zone count, points, tier mask,
    points per tier) from every ranked zone. Starts from scratch on each call,
    so running it twice over the same rows gives the same answer.
    """
    stats: dict[MapClass, MapClassStatsInfo] = {}

    for info in zone_class_info:
        if not _is_ranked(info.zone_type, info.tier):
            continue

        key = MapClass(map_id=info.map_id, class_id=info.class_id)
        entry = stats.get(key)
        if entry is None:
            entry = MapClassStatsInfo(map_name=info.map_name)
            stats[key] = entry

        points = point_value(info.tier, info.zone_type)
        s = entry.stats
        s.zone_count += 1
        s.points_total += points
        s.tier_points_total[info.tier - 1] += points
        s.tiers = set_tier(s.tiers, info.tier)

    logger.debug("[map_stats] aggregated %d map-classes", len(stats))
    return stats


def map_stats_by_map(map_class_stats: dict[MapClass, MapClassStatsInfo]) -> dict[int, MapStatsInfo]:
    """Regroup map-class stats per map with a soldier/demoman split for storage."""
    by_map: dict[int, MapStatsInfo] = {}
    for mc, info in map_class_stats.items():
        entry = by_map.get(mc.map_id)
        if entry is None:
            entry = MapStatsInfo(map_name=info.map_name)
            by_map[mc.map_id] = entry

        if mc.class_id == CLASS_SOLDIER:
            entry.soldier = info.stats.model_copy(deep=True)
        elif mc.class_id == CLASS_DEMOMAN:
            entry.demoman = info.stats.model_copy(deep=True)
    return by_map


# Per player-map-class stats


def aggregate_player_class_map(results, population: MapClassStats | None) -> PlayerClassMapStats:
    """
    Turn one player's results on one map and class into completion stats.

    The population's points per tier are the starting "points remaining".
    Every finished ranked zone subtracts its value from its tier and adds it
    to the acquired total; a tier with points left over is incomplete.
    Unfinished results (duration 0) leave their points outstanding.
    """
    if population is None or population.points_total == 0:
        return PlayerClassMapStats()

    remaining = list(population.tier_points_total)
    acquired = 0
    finished = 0

    for r in results:
        if not _is_ranked(r.zone_type, r.tier):
            continue
        tier_mask(r.tier)  # out-of-range tiers are corrupt input

        if not r.completed:
            continue

        points = point_value(r.tier, r.zone_type)
        # a tier change upstream can leave the player ahead of the population
        remaining[r.tier - 1] = max(0, remaining[r.tier - 1] - points)
        acquired += points
        finished += 1

    incomplete = 0
    for i, left in enumerate(remaining):
        if left:
            incomplete |= 1 << i
    incomplete &= population.tiers

    return PlayerClassMapStats(
        total_completion_percentage=min(100, percentage(finished, population.zone_count)),
        point_completion_percentage=min(100, percentage(acquired, population.points_total)),
        tiers=population.tiers,
        incomplete_tiers=incomplete,
        total_points_available=population.points_total,
        points_available_by_tier=remaining,
    )


class MapStatCalculator:
    """Computes PlayerMapStats for a batch of player-maps against the population."""

    def __init__(self, player_map_results, map_class_stats):
        self.player_map_results = player_map_results
        self.map_class_stats = map_class_stats

    def _population(self, map_id, class_id):
        info = self.map_class_stats.get(MapClass(map_id=map_id, class_id=class_id))
        return info.stats if info else None

    def _map_name(self, map_id, results):
        for class_id in (CLASS_SOLDIER, CLASS_DEMOMAN):
            info = self.map_class_stats.get(MapClass(map_id=map_id, class_id=class_id))
            if info:
                return info.map_name
        return results[0].map_name if results else ""

    def calculate(self):
        stats = {}
        for pm, results in self.player_map_results.items():
            soldier = [r for r in results if r.class_id == CLASS_SOLDIER]
            demoman = [r for r in results if r.class_id == CLASS_DEMOMAN]

            stats[pm] = PlayerMapStats(
                map_id=pm.map_id,
                map_name=self._map_name(pm.map_id, results),
                soldier=aggregate_player_class_map(
                    soldier, self._population(pm.map_id, CLASS_SOLDIER)),
                demoman=aggregate_player_class_map(
                    demoman, self._population(pm.map_id, CLASS_DEMOMAN)),
            )
        return stats


# Completions report (per map, population-facing)


def aggregate_map_result_stats(results, hide_completed: bool = False) -> list[PlayerMapResultStats]:
    """
    Group a player's zone rows (finished or not) by map and class into the
    completions report. Completed zones count towards the totals either way;
    `hide_completed` only drops them from the listed results.
    """
    maps: dict[int, PlayerMapResultStats] = {}
    seen = set()  # (map_id, class_id) with a least-popular baseline

    for r in results:
        if not _is_ranked(r.zone_type, r.tier):
            continue
        if r.class_id not in (CLASS_SOLDIER, CLASS_DEMOMAN):
            continue

        entry = maps.get(r.map_id)
        if entry is None:
            entry = PlayerMapResultStats(map_id=r.map_id, map_name=r.map_name)
            maps[r.map_id] = entry

        s = entry.soldier if r.class_id == CLASS_SOLDIER else entry.demoman
        points = point_value(r.tier, r.zone_type)

        key = (r.map_id, r.class_id)
        if key not in seen:
            seen.add(key)
            s.least_popular_completions = r.completions
        else:
            s.least_popular_completions = min(s.least_popular_completions, r.completions)
        s.most_popular_completions = max(s.most_popular_completions, r.completions)

        s.zones_total += 1
        s.points_total += points
        s.completions_count += r.completions
        s.tiers = set_tier(s.tiers, r.tier)

        if r.completed:
            s.zones_finished += 1
            s.points_finished += points
            s.rank_points += rank_bonus(r.tier, r.zone_type, r.rank)
            if hide_completed:
                continue

        s.results.append(r)

    out = []
    for entry in maps.values():
        for s in (entry.soldier, entry.demoman):
            s.points_finished_percentage = percentage(s.points_finished, s.points_total)
            s.zones_finished_percentage = percentage(s.zones_finished, s.zones_total)

        if hide_completed and not entry.soldier.results and not entry.demoman.results:
            continue
        out.append(entry)

    out.sort(key=lambda e: e.map_name)
    return out


def filter_top_times(results):
    """Keep only placements inside the top 10."""
    return [r for r in results if 1 <= r.rank <= TOP_PLACEMENTS]


def _rank_percentile(r):
    if not r.completions:
        return None
    return r.rank / r.completions


RESULT_SORT_KEYS = {
    "map-name": lambda r: r.map_name,
    "completion-count": lambda r: r.completions,
    "tier": lambda r: r.tier,
    "duration": lambda r: r.duration,
    "date": lambda r: r.date,
    "rank": lambda r: r.rank,
    "rank-percentile": _rank_percentile,
}


def sort_results(results, sort_key: str):
    """
    Sort report rows by e.g. "tier-ascending" or "date-descending".
    Unknown keys leave the order untouched. Rows with no population
    completions always sort last by rank percentile.
    """
    field, _, order = sort_key.rpartition("-")
    keyfunc = RESULT_SORT_KEYS.get(field)
    if keyfunc is None or order not in ("ascending", "descending"):
        return list(results)

    reverse = order == "descending"
    if field == "rank-percentile":
        known = [r for r in results if r.completions]
        unknown = [r for r in results if not r.completions]
        return sorted(known, key=keyfunc, reverse=reverse) + unknown

    return sorted(results, key=keyfunc, reverse=reverse)


def group_by_player_map(results):
    grouped = defaultdict(list)
    for r in results:
        grouped[r.player_map].append(r)
    return dict(grouped)
