"""
LevelUp Gamification Math

RPG-style experience curve. Each level needs XP_MULTIPLIER times the XP of
the previous one, so higher levels take longer to reach. Everything here is
pure: the XP total itself lives on the user row and is owned by the ledger
(see rewards.py).
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import List, Tuple

# XP required for Level 1 -> Level 2
XP_PER_LEVEL_BASE = 1000
XP_MULTIPLIER = 1.2
MAX_LEVEL = 100


@dataclass(frozen=True)
class LevelInfo:
    level: int
    current_level_xp: int
    next_level_xp: int
    progress: float
    total_xp_for_current_level: int
    total_xp_for_next_level: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class LevelBadge:
    title: str
    emoji: str


def xp_for_level(level: int) -> int:
    """XP needed to advance from `level` to `level + 1`.

    >>> xp_for_level(1), xp_for_level(2), xp_for_level(3)
    (1000, 1200, 1440)
    """
    if level < 1:
        return XP_PER_LEVEL_BASE
    return math.floor(XP_PER_LEVEL_BASE * XP_MULTIPLIER ** (level - 1))


def cumulative_xp_for_level(level: int) -> int:
    """Total XP required to reach the start of `level` (level 1 -> 0)."""
    return sum(xp_for_level(i) for i in range(1, level))


def calculate_level(total_xp: float) -> LevelInfo:
    """Map a cumulative XP total onto the level curve.

    Negative totals are treated as 0. Past MAX_LEVEL the progress is pinned
    at 1 and there is no next threshold.
    """
    xp = max(0, total_xp)
    level = 1
    accumulated = 0

    while level < MAX_LEVEL:
        needed = xp_for_level(level)
        if accumulated + needed > xp:
            current = xp - accumulated
            progress = current / needed if needed > 0 else 0.0
            return LevelInfo(
                level=level,
                current_level_xp=current,
                next_level_xp=needed,
                progress=min(progress, 1.0),
                total_xp_for_current_level=accumulated,
                total_xp_for_next_level=accumulated + needed,
            )
        accumulated += needed
        level += 1

    return LevelInfo(
        level=MAX_LEVEL,
        current_level_xp=0,
        next_level_xp=0,
        progress=1.0,
        total_xp_for_current_level=accumulated,
        total_xp_for_next_level=accumulated,
    )


# (max level inclusive, title, emoji)
LEVEL_BADGES: List[Tuple[int, str, str]] = [
    (5, "Novice", "\U0001F331"),
    (10, "Apprentice", "⚡"),
    (15, "Journeyman", "\U0001F525"),
    (20, "Expert", "\U0001F48E"),
    (30, "Master", "\U0001F3C6"),
    (50, "Grandmaster", "\U0001F451"),
    (75, "Legend", "\U0001F31F"),
    (MAX_LEVEL, "Phoenix", "\U0001F52E"),
]


def get_level_badge(level: int) -> LevelBadge:
    for max_level, title, emoji in LEVEL_BADGES:
        if level <= max_level:
            return LevelBadge(title, emoji)
    _, title, emoji = LEVEL_BADGES[-1]
    return LevelBadge(title, emoji)


def format_xp(xp: float) -> str:
    """Compact XP label: 999, 2.5K, 12K, 1.5M."""
    if xp < 1000:
        return f"{xp}"
    if xp < 10_000:
        return f"{xp / 1000:.1f}K"
    if xp < 1_000_000:
        return f"{math.floor(xp / 1000)}K"
    return f"{xp / 1_000_000:.1f}M"


def format_coins(coins: int) -> str:
    return f"{coins:,}"


def level_summary(total_xp: int) -> dict:
    """Everything the profile header shows for an XP total."""
    info = calculate_level(total_xp)
    badge = get_level_badge(info.level)
    return {
        **info.to_dict(),
        "total_xp": max(0, total_xp),
        "badge": badge.title,
        "badge_emoji": badge.emoji,
        "xp_label": format_xp(max(0, total_xp)),
        "progress_percent": round(info.progress * 100),
    }
