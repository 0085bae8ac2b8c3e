"""
Leveling math.

XP needed to leave a level grows as 20 * level^1.3. Advancing is single
step: crossing the threshold moves up exactly one level and zeroes XP.
"""

import math
from typing import Tuple

BASE_XP = 20
EXPONENT = 1.3


def xp_required_for_level(level: int) -> int:
    """XP required to advance from level to level + 1"""
    if level <= 0:
        return 0
    return math.floor(BASE_XP * level ** EXPONENT)


def apply_xp(level: int, xp: int, gain: int) -> Tuple[int, int, bool]:
    """
    Apply an XP gain to (level, xp).

    Returns: (new_level, new_xp, leveled_up)
    """
    new_xp = xp + gain
    if new_xp >= xp_required_for_level(level):
        return level + 1, 0, True
    return level, new_xp, False
