# completion/completion_store.py
import json
import logging
import sqlite3
from datetime import datetime, timezone

from completion.aggregate_data import group_by_player_map
from completion.models import (
    NEVER, ZONE_KIND_TRICK,
    MapStatsInfo, PlayerClassZoneResult, PlayerMap, PlayerMapStats,
    StalePlayerMap, Zone, ZoneClassInfo,
)
from completion.tempus_api import MapList

logger = logging.getLogger(__name__)

DATABASE = "completion.db"
MAPS_KEY = "maps"
STALE_ZONE_LIMIT = 5
STALE_PLAYER_MAP_LIMIT = 10_000

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS kv (
    key          TEXT PRIMARY KEY,
    value        TEXT NOT NULL,
    updated      TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_kv_updated ON kv(updated);

CREATE TABLE IF NOT EXISTS steam_ids (
    steam_id     TEXT PRIMARY KEY,
    player_id    INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS zones (
    map_id       INTEGER NOT NULL,
    zone_type    TEXT    NOT NULL,
    zone_index   INTEGER NOT NULL,
    map_name     TEXT    NOT NULL,
    updated      TEXT    NOT NULL,
    fetched      TEXT    NOT NULL,      -- NEVER until the first leaderboard fetch
    PRIMARY KEY (map_id, zone_type, zone_index)
);
CREATE INDEX IF NOT EXISTS idx_zones_fetched ON zones(fetched);

CREATE TABLE IF NOT EXISTS map_stats (
    map_id       INTEGER PRIMARY KEY,
    map_name     TEXT NOT NULL,
    data         TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS zone_class_info (
    map_id       INTEGER NOT NULL,
    zone_type    TEXT    NOT NULL,
    zone_index   INTEGER NOT NULL,
    class        INTEGER NOT NULL,
    map_name     TEXT    NOT NULL,
    custom_name  TEXT    NOT NULL,
    tier         INTEGER NOT NULL,
    completions  INTEGER NOT NULL,
    PRIMARY KEY (map_id, zone_type, zone_index, class)
);

CREATE TABLE IF NOT EXISTS player_class_zone_results (
    player_id    INTEGER NOT NULL,
    map_id       INTEGER NOT NULL,
    zone_type    TEXT    NOT NULL,
    zone_index   INTEGER NOT NULL,
    class        INTEGER NOT NULL,
    custom_name  TEXT    NOT NULL,
    map_name     TEXT    NOT NULL,
    tier         INTEGER NOT NULL,
    updated      TEXT    NOT NULL,
    rank         INTEGER NOT NULL,
    duration     REAL    NOT NULL,
    date         TEXT    NOT NULL,
    completions  INTEGER NOT NULL,
    PRIMARY KEY (player_id, map_id, zone_type, zone_index, class)
);

CREATE TABLE IF NOT EXISTS player_map_stats (
    player_id                INTEGER NOT NULL,
    map_id                   INTEGER NOT NULL,
    latest_update            TEXT    NOT NULL,
    latest_processed_update  TEXT    NOT NULL,
    data                     TEXT    NOT NULL,
    PRIMARY KEY (player_id, map_id)
);
CREATE INDEX IF NOT EXISTS idx_player_map_stats_times
    ON player_map_stats(latest_update, latest_processed_update, player_id, map_id);
"""

RESULT_COLUMNS = """
    player_id, map_id, zone_type, zone_index, class, custom_name, map_name,
    tier, rank, duration, date, completions, updated
"""


def ts(dt: datetime) -> str:
    """Fixed-width UTC ISO string, so stored timestamps compare as text."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_ts(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return NEVER


def open_conn(path):
    conn = sqlite3.connect(path, timeout=30, check_same_thread=False)
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA busy_timeout=10000;")  # ms
    conn.row_factory = sqlite3.Row
    return conn


def _result_from_row(row) -> PlayerClassZoneResult:
    return PlayerClassZoneResult(
        player_id=row["player_id"],
        map_id=row["map_id"],
        map_name=row["map_name"],
        zone_type=row["zone_type"],
        zone_index=row["zone_index"],
        class_id=row["class"],
        custom_name=row["custom_name"] or "",
        tier=row["tier"],
        rank=row["rank"] or 0,
        duration=row["duration"] or 0.0,
        date=parse_ts(row["date"]) if row["date"] else NEVER,
        completions=row["completions"] or 0,
        updated=parse_ts(row["updated"]) if row["updated"] else NEVER,
    )


def _placeholders(values) -> str:
    return ",".join("?" * len(values))


class CompletionStore:
    """SQLite persistence for zones, raw results and derived stats."""

    def __init__(self, path=DATABASE):
        self.path = path
        self.conn = open_conn(path)

    def close(self):
        self.conn.close()

    def create_schema(self):
        self.conn.executescript(SCHEMA_SQL)
        self.conn.commit()

    def _write(self, statements):
        """Run (sql, rows) pairs in one transaction."""
        cur = self.conn.cursor()
        try:
            for sql, rows in statements:
                cur.executemany(sql, rows)
            self.conn.commit()
        except sqlite3.Error:
            self.conn.rollback()
            raise

    # --- Map catalog ---

    def get_maps(self) -> MapList:
        row = self.conn.execute(
            "SELECT value, updated FROM kv WHERE key = ?", (MAPS_KEY,)).fetchone()
        if not row:
            return MapList(updated=NEVER, maps=[])
        return MapList(updated=parse_ts(row["updated"]), maps=json.loads(row["value"]))

    def insert_maps(self, map_list: MapList):
        value = json.dumps([m.model_dump(by_alias=True) for m in map_list.maps])
        self._write([(
            """
            INSERT INTO kv (key, value, updated) VALUES (?, ?, ?)
            ON CONFLICT (key) DO UPDATE SET value = excluded.value, updated = excluded.updated
            """,
            [(MAPS_KEY, value, ts(map_list.updated))],
        )])

    # --- Zones ---

    def insert_zones(self, zones, *, resync=False, updated=None):
        """
        Upsert the zone universe. Existing rows keep their fetched time.
        With resync=True the table is emptied first, so zones that left the
        catalog are dropped and every zone becomes due again.
        """
        updated = ts(updated or datetime.now(timezone.utc))
        statements = []
        if resync:
            statements.append(("DELETE FROM zones", [()]))
        statements.append((
            """
            INSERT INTO zones (map_id, zone_type, zone_index, map_name, updated, fetched)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT (map_id, zone_type, zone_index)
            DO UPDATE SET map_name = excluded.map_name, updated = excluded.updated
            """,
            [(z.map_id, z.zone_type, z.zone_index, z.map_name, updated, ts(NEVER)) for z in zones],
        ))
        self._write(statements)

    def get_stale_zones(self, threshold: datetime, limit: int = STALE_ZONE_LIMIT) -> list[Zone]:
        rows = self.conn.execute(
            """
            SELECT map_id, zone_type, zone_index, map_name
            FROM zones
            WHERE fetched < ?
            ORDER BY fetched, map_id, zone_type, zone_index
            LIMIT ?
            """,
            (ts(threshold), limit),
        ).fetchall()
        return [Zone(map_id=r["map_id"], map_name=r["map_name"],
                     zone_type=r["zone_type"], zone_index=r["zone_index"]) for r in rows]

    def set_zones_fetched(self, zones, fetched: datetime):
        self._write([(
            "UPDATE zones SET fetched = ? WHERE map_id = ? AND zone_type = ? AND zone_index = ?",
            [(ts(fetched), z.map_id, z.zone_type, z.zone_index) for z in zones],
        )])

    def get_zones(self, map_id: int) -> list[Zone]:
        rows = self.conn.execute(
            "SELECT map_id, zone_type, zone_index, map_name FROM zones WHERE map_id = ? "
            "ORDER BY zone_type, zone_index", (map_id,)).fetchall()
        return [Zone(map_id=r["map_id"], map_name=r["map_name"],
                     zone_type=r["zone_type"], zone_index=r["zone_index"]) for r in rows]

    def get_map_id(self, map_name: str) -> int | None:
        row = self.conn.execute(
            "SELECT map_id FROM zones WHERE map_name = ? LIMIT 1", (map_name,)).fetchone()
        return row["map_id"] if row else None

    # --- Zone population info ---

    def insert_zone_class_info(self, infos):
        self._write([(
            """
            INSERT INTO zone_class_info
                (map_id, zone_type, zone_index, class, map_name, custom_name, tier, completions)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (map_id, zone_type, zone_index, class) DO UPDATE SET
                map_name = excluded.map_name,
                custom_name = excluded.custom_name,
                tier = excluded.tier,
                completions = excluded.completions
            """,
            [(i.map_id, i.zone_type, i.zone_index, i.class_id, i.map_name,
              i.custom_name, i.tier, i.completions) for i in infos],
        )])

    def get_all_zone_class_info(self) -> list[ZoneClassInfo]:
        rows = self.conn.execute(
            """
            SELECT map_id, zone_type, zone_index, class, map_name, custom_name, tier, completions
            FROM zone_class_info
            WHERE tier != 0
            """
        ).fetchall()
        return [ZoneClassInfo(map_id=r["map_id"], zone_type=r["zone_type"],
                              zone_index=r["zone_index"], class_id=r["class"],
                              map_name=r["map_name"], custom_name=r["custom_name"],
                              tier=r["tier"], completions=r["completions"]) for r in rows]

    def insert_map_stats(self, stats: dict[int, MapStatsInfo]):
        self._write([(
            """
            INSERT INTO map_stats (map_id, map_name, data) VALUES (?, ?, ?)
            ON CONFLICT (map_id) DO UPDATE SET map_name = excluded.map_name, data = excluded.data
            """,
            [(map_id, info.map_name, info.model_dump_json()) for map_id, info in stats.items()],
        )])

    def get_map_stats(self, map_id: int) -> MapStatsInfo | None:
        row = self.conn.execute("SELECT data FROM map_stats WHERE map_id = ?", (map_id,)).fetchone()
        if not row:
            return None
        return MapStatsInfo.model_validate_json(row["data"])

    # --- Raw player results ---

    def insert_player_class_zone_results(self, results):
        """
        Upsert raw results (latest fetch wins) and bump latest_update on each
        touched player-map so it shows up as stale.
        """
        latest: dict[PlayerMap, datetime] = {}
        for r in results:
            pm = r.player_map
            if pm not in latest or r.updated > latest[pm]:
                latest[pm] = r.updated

        self._write([
            (
                f"""
                INSERT INTO player_class_zone_results ({RESULT_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (player_id, map_id, zone_type, zone_index, class) DO UPDATE SET
                    custom_name = excluded.custom_name,
                    map_name = excluded.map_name,
                    tier = excluded.tier,
                    updated = excluded.updated,
                    rank = excluded.rank,
                    duration = excluded.duration,
                    date = excluded.date,
                    completions = excluded.completions
                """,
                [(r.player_id, r.map_id, r.zone_type, r.zone_index, r.class_id, r.custom_name,
                  r.map_name, r.tier, r.rank, r.duration, ts(r.date), r.completions,
                  ts(r.updated)) for r in results],
            ),
            (
                """
                INSERT INTO player_map_stats
                    (player_id, map_id, latest_update, latest_processed_update, data)
                VALUES (?, ?, ?, ?, '{}')
                ON CONFLICT (player_id, map_id) DO UPDATE SET latest_update = excluded.latest_update
                """,
                [(pm.player_id, pm.map_id, ts(t), ts(NEVER)) for pm, t in latest.items()],
            ),
        ])

    def insert_steam_ids(self, steam_ids: dict[str, int]):
        # a steam id never changes owner
        self._write([(
            "INSERT INTO steam_ids (steam_id, player_id) VALUES (?, ?) ON CONFLICT (steam_id) DO NOTHING",
            list(steam_ids.items()),
        )])

    def get_player_by_steam_id(self, steam_id: str) -> int | None:
        row = self.conn.execute(
            "SELECT player_id FROM steam_ids WHERE steam_id = ?", (steam_id,)).fetchone()
        return row["player_id"] if row else None

    # --- Derived player stats ---

    def get_stale_player_maps(self, limit: int = STALE_PLAYER_MAP_LIMIT) -> list[StalePlayerMap]:
        rows = self.conn.execute(
            """
            SELECT player_id, map_id, latest_update
            FROM player_map_stats
            WHERE latest_update != latest_processed_update
            LIMIT ?
            """,
            (limit,),
        ).fetchall()
        return [StalePlayerMap(player_id=r["player_id"], map_id=r["map_id"],
                               latest_update=parse_ts(r["latest_update"])) for r in rows]

    def get_player_map_results(self, player_maps) -> dict[PlayerMap, list[PlayerClassZoneResult]]:
        results = []
        for pm in player_maps:
            rows = self.conn.execute(
                f"SELECT {RESULT_COLUMNS} FROM player_class_zone_results WHERE player_id = ? AND map_id = ?",
                (pm.player_id, pm.map_id),
            ).fetchall()
            results.extend(_result_from_row(r) for r in rows)
        return group_by_player_map(results)

    def insert_player_map_stats(self, stats: dict[PlayerMap, PlayerMapStats]):
        self._write([(
            "UPDATE player_map_stats SET data = ? WHERE player_id = ? AND map_id = ?",
            [(s.model_dump_json(), pm.player_id, pm.map_id) for pm, s in stats.items()],
        )])

    def set_player_maps_processed(self, player_maps):
        """
        Mark player-maps processed up to the latest_update seen when they were
        read. Raw data that landed since then keeps the row stale.
        """
        self._write([(
            "UPDATE player_map_stats SET latest_processed_update = ? WHERE player_id = ? AND map_id = ?",
            [(ts(pm.latest_update), pm.player_id, pm.map_id) for pm in player_maps],
        )])

    def get_player_map_stats(self, player_id: int) -> list[PlayerMapStats]:
        rows = self.conn.execute(
            "SELECT data FROM player_map_stats WHERE player_id = ? AND data != '{}'",
            (player_id,),
        ).fetchall()
        stats = [PlayerMapStats.model_validate_json(r["data"]) for r in rows]
        stats.sort(key=lambda s: s.map_name)
        return stats

    # --- Report queries ---

    def get_player_results(self, player_id: int) -> list[PlayerClassZoneResult]:
        rows = self.conn.execute(
            f"""
            SELECT {RESULT_COLUMNS}
            FROM player_class_zone_results
            WHERE player_id = ? AND zone_type != ?
            ORDER BY date DESC
            """,
            (player_id, ZONE_KIND_TRICK),
        ).fetchall()
        return [_result_from_row(r) for r in rows]

    def get_player_class_zone_results(self, player_id: int, zone_types, tiers, classes) -> list[PlayerClassZoneResult]:
        """
        Every ranked zone matching the filters, joined with the player's
        result where one exists (rank/duration 0 where not).
        """
        if not zone_types or not tiers or not classes:
            return []

        sql = f"""
            SELECT
                ? AS player_id,
                zci.map_id, zci.zone_type, zci.zone_index, zci.class,
                zci.custom_name, zci.map_name, zci.tier, zci.completions,
                r.rank, r.duration, r.date, r.updated
            FROM zone_class_info AS zci
            LEFT JOIN player_class_zone_results AS r
            ON  zci.map_id = r.map_id
            AND zci.zone_type = r.zone_type
            AND zci.zone_index = r.zone_index
            AND zci.class = r.class
            AND r.player_id = ?
            WHERE zci.zone_type IN ({_placeholders(zone_types)})
              AND zci.tier IN ({_placeholders(tiers)})
              AND zci.class IN ({_placeholders(classes)})
        """
        args = [player_id, player_id, *zone_types, *tiers, *classes]
        rows = self.conn.execute(sql, args).fetchall()
        return [_result_from_row(r) for r in rows]
