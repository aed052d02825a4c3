# evaluation-core - Reward Policy
# AGPL-3.0 License

"""
Reward Policy

Pure reward arithmetic for approved actions:
- Retry penalty lookup
- Tier-relative XP targets ("advance N tier levels")
- Rating derivation from rubric sub-scores
- Final reward scaling and flooring

No I/O. Tables come in as arguments (or from EvaluationConfig through
RewardPolicy), never from module state.
"""

import logging
import math
import re
from dataclasses import dataclass
from typing import Mapping, Optional

from .config import EvaluationConfig
from .errors import InvalidRating
from .models import RewardMode, RewardSpec

logger = logging.getLogger("evaluation.policy")

TIER_LEVELS = 5

_TIER_PATTERN = re.compile(r"^\s*([A-Za-z]{2})-?([1-5])\s*$")


@dataclass
class RewardBreakdown:
    """Factors that produced a final XP amount"""

    base_xp: int
    quality_score: float
    retry_penalty: float
    team_modifier: float
    xp: int


def retry_penalty(
    retry_count: int,
    penalties: tuple[float, ...] = (1.0, 0.8, 0.6),
    floor: float = 0.4,
) -> float:
    """Multiplier for an action that has been sent back retry_count times."""
    if retry_count is None or retry_count < 0:
        retry_count = 0
    if retry_count < len(penalties):
        return penalties[retry_count]
    return floor


def team_modifier(value: Optional[float]) -> float:
    """Externally supplied team modifier; missing or non-positive means 1.0."""
    if value is None or value <= 0:
        return 1.0
    return float(value)


def parse_tier(code: Optional[str]) -> Optional[tuple[str, int]]:
    """Split a tier code like 'EX-2' into ('EX', 2). None if unparseable."""
    if not code:
        return None
    match = _TIER_PATTERN.match(code)
    if not match:
        return None
    return match.group(1).upper(), int(match.group(2))


def tier_for_xp(xp: int, thresholds: tuple[int, ...]) -> int:
    """Level (1..5) a given XP total falls into on one track."""
    level = 1
    for index, minimum in enumerate(thresholds, start=1):
        if xp >= minimum:
            level = index
    return level


def next_tier_gap(xp: int, thresholds: tuple[int, ...]) -> int:
    """XP still needed to reach the next level; 0 at the top level."""
    level = tier_for_xp(xp, thresholds)
    if level >= len(thresholds):
        return 0
    return max(0, thresholds[level] - xp)


def base_reward_xp(
    spec: RewardSpec,
    current_xp: int,
    current_tier: Optional[str],
    tier_thresholds: Mapping[str, tuple[int, ...]],
    default_track: str = "EX",
) -> int:
    """
    Base XP for an approved action before quality and penalty scaling.

    Fixed mode returns the fixed amount. Tier-steps mode returns the gap
    between the submitter's current XP and the threshold of the level
    ``tier_steps`` above their current one. The target level is clamped to
    1..5, so oversized step counts pay out up to the top threshold.

    Args:
        spec: Challenge reward spec
        current_xp: Submitter's XP right now
        current_tier: Submitter's tier code ('EX-2')
        tier_thresholds: Track prefix -> five ascending thresholds
        default_track: Track used when the tier code is unusable

    Returns:
        Non-negative integer XP
    """
    if spec.mode != RewardMode.TIER_STEPS:
        return max(0, int(spec.xp or 0))

    # Missing steps means no advancement; the clamp below caps oversized requests
    steps = int(spec.tier_steps or 0)

    xp = max(0, int(current_xp or 0))
    parsed = parse_tier(current_tier)
    if parsed and parsed[0] in tier_thresholds:
        track, level = parsed
        thresholds = tier_thresholds[track]
    else:
        track = default_track
        thresholds = tier_thresholds[track]
        level = tier_for_xp(xp, thresholds)
        logger.warning(
            f"Unusable tier {current_tier!r}, using {track}-{level} derived from {xp} XP"
        )

    target_level = min(max(level + steps, 1), TIER_LEVELS)
    return max(0, math.floor(thresholds[target_level - 1] - xp))


def final_reward(
    base: int,
    quality_score: float,
    penalty: float,
    modifier: float,
) -> int:
    """floor(base * quality * penalty * modifier), never negative."""
    raw = base * quality_score * penalty * modifier
    # round off float noise (0.29 * 100 == 28.999...) before flooring
    return max(0, math.floor(round(raw, 6)))


def quality_score(rating: float) -> float:
    """Map a 0-10 rating onto 0-1."""
    return round(rating / 10, 4)


def validate_rating(rating) -> float:
    """Return the rating as float, or raise InvalidRating."""
    if isinstance(rating, bool) or not isinstance(rating, (int, float)):
        raise InvalidRating("Rating must be a number between 0 and 10")
    if math.isnan(rating) or rating < 0 or rating > 10:
        raise InvalidRating(f"Rating must be between 0 and 10, got {rating}")
    return float(rating)


def rating_from_rubric(
    scores: Optional[Mapping[str, float]],
    max_score: float = 5.0,
) -> float:
    """
    Derive a 0-10 rating from rubric sub-scores on a 0..max_score scale.

    Averages the sub-scores, rescales to 0-10 and rounds to one decimal.
    Out-of-range or non-numeric sub-scores are rejected rather than
    producing a rating outside 0-10.
    """
    if not scores:
        raise InvalidRating("A rating or rubric scores are required to approve")

    values = []
    for dimension, value in scores.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidRating(f"Rubric score for {dimension!r} must be a number")
        if math.isnan(value) or value < 0 or value > max_score:
            raise InvalidRating(
                f"Rubric score for {dimension!r} must be between 0 and {max_score:g}, got {value}"
            )
        values.append(float(value))

    average = sum(values) / len(values)
    return round(average * (10 / max_score), 1)


class RewardPolicy:
    """Reward arithmetic bound to one EvaluationConfig"""

    def __init__(self, config: Optional[EvaluationConfig] = None):
        self.config = config or EvaluationConfig()
        for track, thresholds in self.config.tier_thresholds.items():
            if len(thresholds) != TIER_LEVELS or list(thresholds) != sorted(thresholds):
                raise ValueError(
                    f"Tier track {track} needs {TIER_LEVELS} ascending thresholds"
                )
        if self.config.default_track not in self.config.tier_thresholds:
            raise ValueError(f"Unknown default track {self.config.default_track}")

    def retry_penalty(self, retry_count: int) -> float:
        return retry_penalty(
            retry_count,
            self.config.retry_penalties,
            self.config.retry_penalty_floor,
        )

    def base_reward_xp(
        self,
        spec: RewardSpec,
        current_xp: int,
        current_tier: Optional[str],
    ) -> int:
        return base_reward_xp(
            spec,
            current_xp,
            current_tier,
            self.config.tier_thresholds,
            self.config.default_track,
        )

    def next_tier_gap(self, current_xp: int, current_tier: Optional[str]) -> int:
        """XP the submitter still needs for the next level on their track."""
        parsed = parse_tier(current_tier)
        if parsed and parsed[0] in self.config.tier_thresholds:
            track = parsed[0]
        else:
            track = self.config.default_track
        return next_tier_gap(
            max(0, int(current_xp or 0)), self.config.tier_thresholds[track]
        )

    def resolve_rating(
        self,
        rating: Optional[float],
        scores: Optional[Mapping[str, float]],
    ) -> float:
        """Explicit rating wins; otherwise derive it from the rubric."""
        if rating is not None:
            return validate_rating(rating)
        return rating_from_rubric(scores, self.config.rubric_max_score)

    def compute(
        self,
        spec: RewardSpec,
        current_xp: int,
        current_tier: Optional[str],
        quality: float,
        retry_count: int,
        modifier: Optional[float],
    ) -> RewardBreakdown:
        """Full reward for an approval, with every factor kept for auditing."""
        base = self.base_reward_xp(spec, current_xp, current_tier)
        penalty = self.retry_penalty(retry_count)
        team = team_modifier(modifier)
        return RewardBreakdown(
            base_xp=base,
            quality_score=quality,
            retry_penalty=penalty,
            team_modifier=team,
            xp=final_reward(base, quality, penalty, team),
        )
