# tests/helpers.py

import json
from datetime import datetime, timezone

from completion.models import (
    CLASS_SOLDIER, PlayerClassZoneResult, ZoneClassInfo,
)

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


class FakeResponse:
    def __init__(self, payload=None, status_code=200, body=None):
        self.status_code = status_code
        if body is None:
            body = json.dumps(payload)
        self.text = body
        self.content = body.encode("utf-8")


class FakeSession:
    """Answers GETs from a {path: FakeResponse} table; unknown paths 404."""

    def __init__(self, routes=None):
        self.routes = routes or {}
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, params, timeout))
        for path, resp in self.routes.items():
            if url.endswith(path):
                if isinstance(resp, Exception):
                    raise resp
                return resp
        return FakeResponse(status_code=404, body="not found")


def record(player_id, rank, duration=30.5, date=1_700_000_000, steamid=None):
    steamid = steamid or f"STEAM_0:0:{player_id}"
    return {
        "id": player_id * 100 + rank,
        "zone_id": 1,
        "class": CLASS_SOLDIER,
        "user_id": player_id,
        "steamid": steamid,
        "name": f"player{player_id}",
        "duration": duration,
        "date": date,
        "rank": rank,
        "demo_info": {"id": 5, "start_tick": 10, "end_tick": 20, "url": None,
                      "server_info": {"id": 1, "name": "jump server"}},
        "player_info": {"id": player_id, "steamid": steamid, "name": f"player{player_id}"},
    }


def zone_records_payload(map_id=1, zone_type="map", zone_index=1, soldier=(), demoman=(),
                         tiers=(5, 3), completions=None, custom_name=None):
    soldier, demoman = list(soldier), list(demoman)
    if completions is None:
        completions = (len(soldier), len(demoman))
    return {
        "zone_info": {"id": 77, "map_id": map_id, "zoneindex": zone_index,
                      "custom_name": custom_name, "type": zone_type},
        "tier_info": {"3": tiers[0], "4": tiers[1]},
        "completion_info": {"soldier": completions[0], "demoman": completions[1]},
        "results": {"soldier": soldier, "demoman": demoman},
    }


def make_result(zone_type="map", tier=5, duration=30.0, rank=1, map_id=1, zone_index=1,
                class_id=CLASS_SOLDIER, player_id=7, completions=10, map_name="jump_test",
                updated=NOW):
    return PlayerClassZoneResult(
        player_id=player_id, map_id=map_id, map_name=map_name, zone_type=zone_type,
        zone_index=zone_index, class_id=class_id, tier=tier, rank=rank,
        duration=duration, completions=completions, date=NOW, updated=updated,
    )


def make_info(zone_type="map", tier=5, map_id=1, zone_index=1, class_id=CLASS_SOLDIER,
              completions=10, map_name="jump_test"):
    return ZoneClassInfo(
        map_id=map_id, map_name=map_name, zone_type=zone_type, zone_index=zone_index,
        class_id=class_id, tier=tier, completions=completions,
    )


