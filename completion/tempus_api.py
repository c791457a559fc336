# completion/tempus_api.py
import logging
from datetime import datetime
from urllib.parse import quote

import requests
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator

from completion.http_client import make_session

logger = logging.getLogger(__name__)

TEMPUS_API_BASE = "https://tempus2.xyz/api/v0"
REQUEST_TIMEOUT = 10  # seconds, per request


class TempusAPIError(Exception):
    """Transport failure, non-200 status or a body that does not match the schema."""


# --- Response schema. Unknown fields are rejected so schema drift surfaces. ---


class _Strict(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def null_means_default(cls, data):
        # the API sends null for empty values; those decode to the field default
        if not isinstance(data, dict):
            return data
        optional = set()
        for name, field in cls.model_fields.items():
            if not field.is_required():
                optional.add(name)
                if field.alias:
                    optional.add(field.alias)
        return {k: v for k, v in data.items() if v is not None or k not in optional}


class ZoneCounts(_Strict):
    checkpoint: int = 0
    bonus_end: int = 0
    linear: int = 0
    bonus: int = 0
    map_end: int = 0
    map: int = 0
    trick: int = 0
    misc: int = 0
    special: int = 0
    course: int = 0
    course_end: int = 0


class MapAuthor(_Strict):
    map_id: int
    name: str
    id: int


class ClassTierInfo(_Strict):
    # keyed by TF2 class number
    soldier: int = Field(0, alias="3")
    demoman: int = Field(0, alias="4")


class MapVideos(_Strict):
    soldier: str | None = None
    demoman: str | None = None


class DetailedMap(_Strict):
    id: int
    name: str
    zone_counts: ZoneCounts = Field(default_factory=ZoneCounts)
    authors: list[MapAuthor] = Field(default_factory=list)
    tier_info: ClassTierInfo = Field(default_factory=ClassTierInfo)
    videos: MapVideos = Field(default_factory=MapVideos)


class ZoneInfo(_Strict):
    id: int
    map_id: int
    zoneindex: int
    custom_name: str | None = None
    type: str


class CompletionInfo(_Strict):
    soldier: int = 0
    demoman: int = 0


class ServerInfo(_Strict):
    id: int = 0
    name: str = ""


class DemoInfo(_Strict):
    id: int = 0
    start_tick: int | None = None
    end_tick: int | None = None
    url: str | None = None
    server_info: ServerInfo | None = None


class PlayerInfo(_Strict):
    id: int = 0
    steamid: str = ""
    name: str = ""


class ZoneRecord(_Strict):
    id: int = 0
    zone_id: int = 0
    class_id: int = Field(0, alias="class")
    user_id: int = 0
    steamid: str = ""
    name: str = ""
    duration: float = 0.0
    date: float = 0.0
    rank: int = 0
    demo_info: DemoInfo | None = None
    player_info: PlayerInfo = Field(default_factory=PlayerInfo)


class ZoneRecordResults(_Strict):
    soldier: list[ZoneRecord] = Field(default_factory=list)
    demoman: list[ZoneRecord] = Field(default_factory=list)


class ZoneRecordsResponse(_Strict):
    zone_info: ZoneInfo
    tier_info: ClassTierInfo = Field(default_factory=ClassTierInfo)
    completion_info: CompletionInfo = Field(default_factory=CompletionInfo)
    results: ZoneRecordResults = Field(default_factory=ZoneRecordResults)


class PlayerZoneClassCompletionResponse(_Strict):
    zone_info: ZoneInfo
    tier_info: ClassTierInfo = Field(default_factory=ClassTierInfo)
    completion_info: CompletionInfo = Field(default_factory=CompletionInfo)
    result: ZoneRecord | None = None      # null when the player has no time


class SearchPlayer(_Strict):
    steamid: str
    id: int
    name: str


class SearchMap(_Strict):
    id: int
    name: str


class PlayersAndMapsSearchResponse(_Strict):
    players: list[SearchPlayer] = Field(default_factory=list)
    maps: list[SearchMap] = Field(default_factory=list)


class MapList(BaseModel):
    """The stored map catalog and when it was fetched."""
    updated: datetime
    maps: list[DetailedMap] = Field(default_factory=list)


_DETAILED_MAP_LIST = TypeAdapter(list[DetailedMap])
_ZONE_RECORDS = TypeAdapter(ZoneRecordsResponse)
_PLAYER_COMPLETION = TypeAdapter(PlayerZoneClassCompletionResponse)
_SEARCH = TypeAdapter(PlayersAndMapsSearchResponse)


class TempusClient:
    def __init__(self, session=None, base_url=None, timeout=REQUEST_TIMEOUT):
        self.session = session if session is not None else make_session()
        self.base_url = (base_url or TEMPUS_API_BASE).rstrip("/")
        self.timeout = timeout

    def _get(self, path, adapter, *, params=None, timeout=None):
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.get(url, params=params, timeout=timeout or self.timeout)
        except requests.RequestException as e:
            raise TempusAPIError(f"GET {path}: {e}") from e

        if resp.status_code != 200:
            raise TempusAPIError(f"GET {path}: status {resp.status_code}: {resp.text[:200]}")

        try:
            return adapter.validate_json(resp.content)
        except ValidationError as e:
            raise TempusAPIError(f"GET {path}: decode response: {e}") from e

    def get_detailed_map_list(self) -> list[DetailedMap]:
        return self._get("/maps/detailedList", _DETAILED_MAP_LIST)

    def get_zone_records(self, map_id: int, zone_type: str, zone_index: int,
                         limit: int = 0, *, timeout=None) -> ZoneRecordsResponse:
        # limit=0 asks for every record on the zone
        path = f"/maps/id/{map_id}/zones/typeindex/{zone_type}/{zone_index}/records/list"
        return self._get(path, _ZONE_RECORDS, params={"limit": limit}, timeout=timeout)

    def get_player_zone_class_completion(self, map_name: str, zone_type: str, zone_index: int,
                                         player_id: int, class_id: int,
                                         *, timeout=None) -> PlayerZoneClassCompletionResponse:
        path = (f"/maps/name/{quote(map_name, safe='')}/zones/typeindex/{zone_type}/{zone_index}"
                f"/records/player/{player_id}/{class_id}")
        return self._get(path, _PLAYER_COMPLETION, timeout=timeout)

    def search_players_and_maps(self, name: str) -> PlayersAndMapsSearchResponse:
        return self._get(f"/search/playersAndMaps/{quote(name, safe='')}", _SEARCH)
