# completion/tiers.py
# Six-bit tier sets: bit (tier - 1) is set when that tier is present.

T1 = 1 << 0
T2 = 1 << 1
T3 = 1 << 2
T4 = 1 << 3
T5 = 1 << 4
T6 = 1 << 5
ALL_TIERS = T1 | T2 | T3 | T4 | T5 | T6


class InvalidTierError(ValueError):
    """Raised when a tier outside 1..6 reaches code that needs a real tier."""


def tier_mask(tier: int) -> int:
    # tier 0 ("unranked") is valid elsewhere but never here
    if not isinstance(tier, int) or not 1 <= tier <= 6:
        raise InvalidTierError(f"{tier!r} is not a valid tier")
    return 1 << (tier - 1)


def set_tier(mask: int, tier: int) -> int:
    return mask | tier_mask(tier)


def has_tier(mask: int, tier: int) -> bool:
    return bool(mask & tier_mask(tier))


def tiers_in(mask: int) -> list[int]:
    return [t for t in range(1, 7) if mask & (1 << (t - 1))]


def is_subset(inner: int, outer: int) -> bool:
    return inner & outer == inner
