from datetime import timedelta

from completion.completion_store import CompletionStore, parse_ts, ts
from completion.models import (
    CLASS_DEMOMAN, CLASS_SOLDIER, NEVER, MapClassStats, MapStatsInfo, PlayerMap,
    PlayerClassMapStats, PlayerMapStats, Zone,
)
from completion.tempus_api import DetailedMap, MapList
from tests.helpers import NOW, make_info, make_result


def zone(zone_type="map", zone_index=1, map_id=1, map_name="jump_test"):
    return Zone(map_id=map_id, map_name=map_name, zone_type=zone_type, zone_index=zone_index)


def test_ts_is_fixed_width_and_round_trips():
    assert len(ts(NEVER)) == len(ts(NOW))
    assert ts(NEVER) < ts(NOW)
    assert parse_ts(ts(NOW)) == NOW
    assert parse_ts("garbage") == NEVER


def test_create_schema_twice(store):
    store.create_schema()
    names = {r[0] for r in store.conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    assert {"kv", "zones", "zone_class_info", "player_class_zone_results",
            "player_map_stats", "map_stats", "steam_ids"} <= names


def test_maps_round_trip(store):
    assert store.get_maps().updated == NEVER
    assert store.get_maps().maps == []

    m = DetailedMap.model_validate({"id": 1, "name": "jump_test", "tier_info": {"3": 5, "4": 2}})
    store.insert_maps(MapList(updated=NOW, maps=[m]))

    got = store.get_maps()
    assert got.updated == NOW
    assert got.maps[0].name == "jump_test"
    assert got.maps[0].tier_info.demoman == 2


def test_new_zones_are_stale(store):
    store.insert_zones([zone(), zone("bonus", 1), zone("bonus", 2)], updated=NOW)
    stale = store.get_stale_zones(NOW - timedelta(hours=24))
    assert len(stale) == 3
    assert len(store.get_stale_zones(NOW - timedelta(hours=24), limit=2)) == 2


def test_stale_zone_threshold(store):
    old, fresh = zone("bonus", 1), zone("bonus", 2)
    store.insert_zones([old, fresh], updated=NOW)
    store.set_zones_fetched([old], NOW - timedelta(hours=25))
    store.set_zones_fetched([fresh], NOW - timedelta(hours=1))

    assert store.get_stale_zones(NOW - timedelta(hours=24)) == [old]


def test_insert_zones_keeps_fetched_time(store):
    z = zone()
    store.insert_zones([z], updated=NOW)
    store.set_zones_fetched([z], NOW)

    store.insert_zones([z], updated=NOW + timedelta(hours=1))
    assert store.get_stale_zones(NOW - timedelta(hours=24)) == []


def test_resync_drops_removed_zones(store):
    kept, removed = zone("map", 1), zone("course", 1)
    store.insert_zones([kept, removed], updated=NOW)
    store.set_zones_fetched([kept, removed], NOW)

    store.insert_zones([kept], resync=True, updated=NOW)

    assert store.get_zones(1) == [kept]
    # rebuilt rows are due again
    assert store.get_stale_zones(NOW - timedelta(hours=24)) == [kept]


def test_zone_lookup(store):
    store.insert_zones([zone("map", 1), zone("bonus", 1), zone("map", 1, map_id=2, map_name="jump_b")])
    assert store.get_map_id("jump_b") == 2
    assert store.get_map_id("jump_missing") is None
    assert [z.zone_type for z in store.get_zones(1)] == ["bonus", "map"]


def test_zone_class_info_skips_unranked(store):
    store.insert_zone_class_info([
        make_info("map", 5),
        make_info("map", 0, class_id=CLASS_DEMOMAN),
    ])
    store.insert_zone_class_info([make_info("map", 5, completions=99)])

    infos = store.get_all_zone_class_info()
    assert len(infos) == 1
    assert infos[0].completions == 99


def test_map_stats_round_trip(store):
    info = MapStatsInfo(map_name="jump_test", soldier=MapClassStats(
        zone_count=1, points_total=100, tiers=1 << 4, tier_points_total=[0, 0, 0, 0, 100, 0]))
    store.insert_map_stats({1: info})
    assert store.get_map_stats(1) == info
    assert store.get_map_stats(2) is None


def test_results_mark_player_map_stale(store):
    store.insert_player_class_zone_results([
        make_result("map", 5, updated=NOW),
        make_result("bonus", 2, updated=NOW - timedelta(minutes=5)),
    ])
    stale = store.get_stale_player_maps()
    assert len(stale) == 1
    assert stale[0].key == PlayerMap(player_id=7, map_id=1)
    assert stale[0].latest_update == NOW


def test_processed_marker_uses_value_read(store):
    store.insert_player_class_zone_results([make_result(updated=NOW)])
    stale = store.get_stale_player_maps()

    # new raw data lands while the batch is being processed
    later = NOW + timedelta(minutes=1)
    store.insert_player_class_zone_results([make_result("bonus", 1, updated=later)])
    store.set_player_maps_processed(stale)

    again = store.get_stale_player_maps()
    assert [s.latest_update for s in again] == [later]

    store.set_player_maps_processed(again)
    assert store.get_stale_player_maps() == []


def test_player_map_results_grouped(store):
    store.insert_player_class_zone_results([
        make_result("map", 5),
        make_result("map", 5, class_id=CLASS_DEMOMAN),
        make_result("map", 3, map_id=2, map_name="jump_b"),
        make_result("map", 3, player_id=8),
    ])
    grouped = store.get_player_map_results([PlayerMap(player_id=7, map_id=1)])
    assert list(grouped) == [PlayerMap(player_id=7, map_id=1)]
    assert {r.class_id for r in grouped[PlayerMap(player_id=7, map_id=1)]} == {
        CLASS_SOLDIER, CLASS_DEMOMAN}


def test_player_map_stats_round_trip(store):
    store.insert_player_class_zone_results([make_result()])
    pm = PlayerMap(player_id=7, map_id=1)
    stats = PlayerMapStats(map_id=1, map_name="jump_test",
                           soldier=PlayerClassMapStats(point_completion_percentage=100))

    assert store.get_player_map_stats(7) == []
    store.insert_player_map_stats({pm: stats})
    assert store.get_player_map_stats(7) == [stats]


def test_steam_ids(store):
    store.insert_steam_ids({"STEAM_0:0:7": 7})
    store.insert_steam_ids({"STEAM_0:0:7": 99})
    assert store.get_player_by_steam_id("STEAM_0:0:7") == 7
    assert store.get_player_by_steam_id("STEAM_0:0:1") is None


def test_player_results_newest_first_without_tricks(store):
    store.insert_player_class_zone_results([
        make_result("map", 5).model_copy(update={"date": NOW - timedelta(days=2)}),
        make_result("bonus", 1),
        make_result("trick", 3),
    ])
    results = store.get_player_results(7)
    assert [r.zone_type for r in results] == ["bonus", "map"]


def test_zone_results_join_fills_unfinished(store):
    store.insert_zone_class_info([
        make_info("map", 5),
        make_info("bonus", 2, zone_index=1),
        make_info("bonus", 2, zone_index=1, class_id=CLASS_DEMOMAN),
    ])
    store.insert_player_class_zone_results([make_result("map", 5, rank=4)])

    rows = store.get_player_class_zone_results(7, ["map", "bonus"], [2, 5], [CLASS_SOLDIER])
    by_type = {r.zone_type: r for r in rows}

    assert len(rows) == 2
    assert by_type["map"].rank == 4
    assert by_type["map"].completed
    assert by_type["bonus"].rank == 0
    assert not by_type["bonus"].completed
    assert by_type["bonus"].player_id == 7

    assert store.get_player_class_zone_results(7, ["map"], [1], [CLASS_SOLDIER]) == []
    assert store.get_player_class_zone_results(7, [], [5], [CLASS_SOLDIER]) == []


def test_store_reopens_existing_file(tmp_path):
    path = str(tmp_path / "c.db")
    s = CompletionStore(path)
    s.create_schema()
    s.insert_steam_ids({"STEAM_0:0:1": 1})
    s.close()

    s = CompletionStore(path)
    try:
        assert s.get_player_by_steam_id("STEAM_0:0:1") == 1
    finally:
        s.close()
