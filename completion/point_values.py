# completion/point_values.py
from types import MappingProxyType

from completion.models import (
    ZONE_KIND_BONUS, ZONE_KIND_COURSE, ZONE_KIND_MAP, ZONE_KIND_TRICK,
)
from completion.tiers import InvalidTierError

# (tier, zone kind) -> points for finishing the zone
POINT_VALUES = MappingProxyType({
    (1, ZONE_KIND_BONUS): 2,
    (2, ZONE_KIND_BONUS): 5,
    (3, ZONE_KIND_BONUS): 10,
    (4, ZONE_KIND_BONUS): 20,
    (5, ZONE_KIND_BONUS): 30,
    (6, ZONE_KIND_BONUS): 50,
    (1, ZONE_KIND_COURSE): 5,
    (2, ZONE_KIND_COURSE): 10,
    (3, ZONE_KIND_COURSE): 20,
    (4, ZONE_KIND_COURSE): 30,
    (5, ZONE_KIND_COURSE): 50,
    (6, ZONE_KIND_COURSE): 100,
    (1, ZONE_KIND_MAP): 10,
    (2, ZONE_KIND_MAP): 20,
    (3, ZONE_KIND_MAP): 30,
    (4, ZONE_KIND_MAP): 50,
    (5, ZONE_KIND_MAP): 100,
    (6, ZONE_KIND_MAP): 200,
})

TOP_PLACEMENTS = 10

# (tier, zone kind) -> bonus for placements 1..10, index 0 is first place.
# Derived from the point value (value * (11 - placement) // 2), not taken
# from upstream data: the service publishes no rank bonus figures.
RANK_BONUS = MappingProxyType({
    key: tuple(value * (TOP_PLACEMENTS + 1 - placement) // 2
               for placement in range(1, TOP_PLACEMENTS + 1))
    for key, value in POINT_VALUES.items()
})


def _check_tier(tier):
    if not isinstance(tier, int) or not 0 <= tier <= 6:
        raise InvalidTierError(f"{tier!r} is not a valid tier")


def point_value(tier: int, zone_type: str) -> int:
    """Points for finishing a zone. Trick zones and tier 0 are worth nothing."""
    _check_tier(tier)
    if tier == 0 or zone_type == ZONE_KIND_TRICK:
        return 0
    return POINT_VALUES.get((tier, zone_type), 0)


def rank_bonus(tier: int, zone_type: str, rank: int) -> int:
    _check_tier(tier)
    if tier == 0 or zone_type == ZONE_KIND_TRICK:
        return 0
    if rank < 1 or rank > TOP_PLACEMENTS:
        return 0
    schedule = RANK_BONUS.get((tier, zone_type))
    if schedule is None:
        return 0
    return schedule[rank - 1]
