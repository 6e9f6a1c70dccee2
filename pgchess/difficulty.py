"""Difficulty tiers and levels for the automated opponent.

Levels run 1 (easiest) to 10 (strongest). Named tiers map onto levels
with a short description; levels map onto a Stockfish target Elo.
"""

from __future__ import annotations

from pgchess.models import DifficultyProfile

MIN_LEVEL = 1
MAX_LEVEL = 10
HINT_LEVEL = MAX_LEVEL

_TIERS = {
    "beginner": DifficultyProfile(
        tier="Beginner",
        level=2,
        description=(
            "Plays quickly and loosely, often misses tactics and leaves "
            "pieces hanging. Good for learning the basics."
        ),
    ),
    "intermediate": DifficultyProfile(
        tier="Intermediate",
        level=5,
        description=(
            "Knows opening principles and punishes obvious blunders, but "
            "can be outplayed in long strategic games."
        ),
    ),
    "advanced": DifficultyProfile(
        tier="Advanced",
        level=8,
        description=(
            "Calculates deeply, converts advantages and rarely blunders. "
            "Expect a hard fight."
        ),
    ),
}

# Level -> target Elo for the Stockfish wrapper
_LEVEL_ELO = {
    1: 400,
    2: 600,
    3: 800,
    4: 1000,
    5: 1200,
    6: 1400,
    7: 1700,
    8: 2000,
    9: 2400,
    10: 3000,
}


def adjust_difficulty(tier: str) -> DifficultyProfile:
    """Map a named tier to a difficulty level and description.

    Args:
        tier: 'Beginner', 'Intermediate' or 'Advanced' (case-insensitive).

    Returns:
        DifficultyProfile for the tier.

    Raises:
        ValueError: If the tier is unknown.
    """
    profile = _TIERS.get(tier.strip().lower())
    if profile is None:
        raise ValueError(
            f"Unknown difficulty tier: {tier}. "
            f"Expected one of: Beginner, Intermediate, Advanced"
        )
    return profile


def clamp_level(level: int) -> int:
    """Clamp a numeric level into 1-10."""
    return max(MIN_LEVEL, min(MAX_LEVEL, int(level)))


def level_to_elo(level: int) -> int:
    """Target Stockfish Elo for a difficulty level (clamped to 1-10)."""
    return _LEVEL_ELO[clamp_level(level)]
