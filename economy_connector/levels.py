"""XP to level conversion."""

from dataclasses import dataclass

BASE_LEVEL_XP = 36
LEVEL_XP_STEP = 9
MAX_LEVEL = 1000


@dataclass(frozen=True)
class LevelInfo:
    level: int
    level_xp: int
    required_xp: int


def xp_for_next_level(level: int) -> int:
    """XP needed to advance from `level` to `level + 1`."""
    return BASE_LEVEL_XP + LEVEL_XP_STEP * level


def calc_level(xp: int) -> LevelInfo:
    """
    Convert a total XP amount into a level.

    Each level costs 9 XP more than the previous one, starting at 36 for
    level 0 -> 1. `level_xp` is the XP accumulated towards the next level and
    `required_xp` what that next level costs in total.
    """
    remaining = max(int(xp), 0)
    level = 0
    while level < MAX_LEVEL and remaining >= xp_for_next_level(level):
        remaining -= xp_for_next_level(level)
        level += 1
    return LevelInfo(level=level, level_xp=remaining, required_xp=xp_for_next_level(level))
