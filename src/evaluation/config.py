# evaluation-core - Evaluation Configuration
# AGPL-3.0 License

"""
Evaluation Engine Configuration

Tunable parameters for peer review and reward computation.
Values can be overridden via environment variables.
"""

import os
from dataclasses import dataclass, field
from typing import Optional


def _default_tier_thresholds() -> dict[str, tuple[int, ...]]:
    return {
        "EX": (0, 300, 700, 1200, 1800),
        "FO": (0, 400, 900, 1500, 2200),
        "GU": (0, 500, 1100, 1800, 2600),
    }


def _split_markers(raw: str) -> tuple[str, ...]:
    return tuple(m.strip().upper() for m in raw.split(",") if m.strip())


@dataclass
class EvaluationConfig:
    """Configuration for the evaluation engine."""

    # Feedback validation
    min_feedback_length: int = 10

    # Retry penalty steps, indexed by retry_count; anything past the end uses the floor
    retry_penalties: tuple[float, ...] = (1.0, 0.8, 0.6)
    retry_penalty_floor: float = 0.4

    # Tier tracks: prefix -> ascending XP thresholds for levels 1..5
    tier_thresholds: dict[str, tuple[int, ...]] = field(
        default_factory=_default_tier_thresholds
    )
    default_track: str = "EX"

    # Rubric sub-scores live on 0..rubric_max_score
    rubric_max_score: float = 5.0

    # Guest override
    guest_role: str = "invited"
    guest_unit_markers: tuple[str, ...] = ("CONVIDADOS", "EXTERNO")
    guest_reviewer_id: Optional[str] = None
    guest_reviewer_email: Optional[str] = None

    # Records
    default_reviewer_level: str = "leader"

    # Raw campaign evidence has no challenge, so it pays a flat amount
    campaign_evidence_xp: int = 10

    # Re-reads after losing an evaluation slot to a concurrent judgment
    max_slot_retries: int = 3

    # Platform API (ledger, notifications, assignment service)
    platform_api_url: str = "http://localhost:3000/api"
    platform_api_key: Optional[str] = None
    webhook_secret: Optional[str] = None

    @classmethod
    def from_env(cls) -> "EvaluationConfig":
        """Create config from environment variables with defaults."""
        return cls(
            min_feedback_length=int(os.getenv("EVAL_MIN_FEEDBACK_LENGTH", "10")),
            retry_penalty_floor=float(os.getenv("EVAL_RETRY_PENALTY_FLOOR", "0.4")),
            default_track=os.getenv("EVAL_DEFAULT_TRACK", "EX").upper(),
            rubric_max_score=float(os.getenv("EVAL_RUBRIC_MAX_SCORE", "5")),
            guest_role=os.getenv("EVAL_GUEST_ROLE", "invited"),
            guest_unit_markers=_split_markers(
                os.getenv("EVAL_GUEST_UNIT_MARKERS", "CONVIDADOS,EXTERNO")
            ),
            guest_reviewer_id=os.getenv("EVAL_GUEST_REVIEWER_ID") or None,
            guest_reviewer_email=os.getenv("EVAL_GUEST_REVIEWER_EMAIL") or None,
            default_reviewer_level=os.getenv("EVAL_DEFAULT_REVIEWER_LEVEL", "leader"),
            campaign_evidence_xp=int(os.getenv("EVAL_CAMPAIGN_EVIDENCE_XP", "10")),
            max_slot_retries=int(os.getenv("EVAL_MAX_SLOT_RETRIES", "3")),
            platform_api_url=os.getenv(
                "PLATFORM_API_URL", "http://localhost:3000/api"
            ),
            platform_api_key=os.getenv("PLATFORM_API_KEY"),
            webhook_secret=os.getenv("EVALUATION_WEBHOOK_SECRET"),
        )
