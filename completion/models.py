# completion/models.py
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

# Zone kinds as the Tempus API spells them
ZONE_KIND_MAP = "map"
ZONE_KIND_COURSE = "course"
ZONE_KIND_BONUS = "bonus"
ZONE_KIND_TRICK = "trick"
ZONE_KINDS = (ZONE_KIND_MAP, ZONE_KIND_COURSE, ZONE_KIND_BONUS, ZONE_KIND_TRICK)
RANKED_ZONE_KINDS = (ZONE_KIND_MAP, ZONE_KIND_COURSE, ZONE_KIND_BONUS)

# Class ids are the TF2 class numbers the API uses in tier_info / records
CLASS_SOLDIER = 3
CLASS_DEMOMAN = 4
CLASSES = (CLASS_SOLDIER, CLASS_DEMOMAN)
CLASS_NAMES = {CLASS_SOLDIER: "soldier", CLASS_DEMOMAN: "demoman"}

TIER_COUNT = 6

# Sentinel for "never fetched / never processed"
NEVER = datetime.min.replace(tzinfo=timezone.utc)


class Zone(BaseModel):
    model_config = ConfigDict(frozen=True)

    map_id: int
    map_name: str
    zone_type: str
    zone_index: int


class MapClass(BaseModel):
    model_config = ConfigDict(frozen=True)

    map_id: int
    class_id: int


class PlayerMap(BaseModel):
    model_config = ConfigDict(frozen=True)

    player_id: int
    map_id: int


class StalePlayerMap(BaseModel):
    """A player-map whose stored stats predate its latest raw update."""
    player_id: int
    map_id: int
    latest_update: datetime

    @property
    def key(self) -> PlayerMap:
        return PlayerMap(player_id=self.player_id, map_id=self.map_id)


class PlayerZoneClass(BaseModel):
    """Work unit for a single player's status on one zone and class."""
    model_config = ConfigDict(frozen=True)

    map_name: str
    zone_type: str
    zone_index: int
    player_id: int
    class_id: int


class ZoneClassInfo(BaseModel):
    map_id: int
    map_name: str
    zone_type: str
    zone_index: int
    class_id: int
    custom_name: str = ""
    tier: int = 0           # 0 = not ranked for this class
    completions: int = 0    # population count, trusted from the API


class PlayerClassZoneResult(BaseModel):
    player_id: int
    map_id: int
    map_name: str
    zone_type: str
    zone_index: int
    class_id: int
    custom_name: str = ""
    tier: int = 0
    rank: int = 0                   # 0 = incomplete
    duration: float = 0.0           # seconds, 0 when incomplete
    date: datetime = NEVER
    completions: int = 0
    updated: datetime = NEVER

    @property
    def completed(self) -> bool:
        return self.duration > 0

    @property
    def player_map(self) -> PlayerMap:
        return PlayerMap(player_id=self.player_id, map_id=self.map_id)


class MapClassStats(BaseModel):
    zone_count: int = 0
    points_total: int = 0
    tiers: int = 0
    tier_points_total: list[int] = Field(default_factory=lambda: [0] * TIER_COUNT)


class MapClassStatsInfo(BaseModel):
    map_name: str
    stats: MapClassStats = Field(default_factory=MapClassStats)


class MapStatsInfo(BaseModel):
    map_name: str
    soldier: MapClassStats = Field(default_factory=MapClassStats)
    demoman: MapClassStats = Field(default_factory=MapClassStats)


class PlayerClassMapStats(BaseModel):
    total_completion_percentage: int = 0
    point_completion_percentage: int = 0
    tiers: int = 0
    incomplete_tiers: int = 0
    total_points_available: int = 0
    points_available_by_tier: list[int] = Field(default_factory=lambda: [0] * TIER_COUNT)


class PlayerMapStats(BaseModel):
    map_id: int
    map_name: str
    soldier: PlayerClassMapStats = Field(default_factory=PlayerClassMapStats)
    demoman: PlayerClassMapStats = Field(default_factory=PlayerClassMapStats)


class PlayerClassMapResultStats(BaseModel):
    points_total: int = 0
    zones_total: int = 0
    points_finished: int = 0
    zones_finished: int = 0
    points_finished_percentage: int = 0
    zones_finished_percentage: int = 0
    most_popular_completions: int = 0
    least_popular_completions: int = 0
    completions_count: int = 0
    rank_points: int = 0
    tiers: int = 0
    results: list[PlayerClassZoneResult] = Field(default_factory=list)


class PlayerMapResultStats(BaseModel):
    map_id: int
    map_name: str
    soldier: PlayerClassMapResultStats = Field(default_factory=PlayerClassMapResultStats)
    demoman: PlayerClassMapResultStats = Field(default_factory=PlayerClassMapResultStats)


def percentage(part: int, whole: int) -> int:
    """Integer-truncated percentage; a zero denominator yields 0."""
    if not whole:
        return 0
    return (100 * part) // whole
