# evaluation-core - Evaluation Models
# AGPL-3.0 License

"""
Data types shared by the evaluation engine.

Actions, reviewers and challenges are read from the datastore; evaluation
records and queue entries are the rows this engine writes.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class ActionStatus(str, Enum):
    """Lifecycle of a submitted action."""

    SUBMITTED = "submitted"
    AWAITING_SECOND_EVALUATION = "awaiting_second_evaluation"
    APPROVED = "approved"
    REJECTED = "rejected"
    RETRY_PENDING = "retry_pending"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {ActionStatus.APPROVED, ActionStatus.REJECTED, ActionStatus.RETRY_PENDING}
)


class Decision(str, Enum):
    """A reviewer's judgment."""

    APPROVE = "approve"
    REJECT = "reject"
    RETRY = "retry"


class RewardMode(str, Enum):
    FIXED_XP = "fixed_xp"
    TIER_STEPS = "tier_steps"


class ReviewMode(str, Enum):
    """How many reviewers an action needs."""

    DUAL = "dual"
    SINGLE = "single"
    SINGLE_OVERRIDE = "single_override"


class NotificationType(str, Enum):
    PARTIAL = "evaluation_partial"
    COMPLETE = "evaluation_complete"
    REJECTED = "evaluation_rejected"
    RETRY = "evaluation_retry"


@dataclass
class RewardSpec:
    """Reward shape of a challenge"""

    mode: RewardMode = RewardMode.FIXED_XP
    xp: int = 0
    tier_steps: Optional[int] = None


@dataclass
class Challenge:
    """Challenge an action was submitted against (read-only)"""

    id: str
    title: str
    require_two_leader_eval: bool
    reward: RewardSpec


@dataclass
class Submitter:
    """Collaborator who submitted the action"""

    id: str
    name: Optional[str]
    current_xp: int
    tier: Optional[str]
    org_unit: Optional[str]
    roles: tuple[str, ...] = ()
    # team_id, sigla_area, operational_base, coord_id, division_id
    org_markers: tuple[str, ...] = ()


@dataclass
class Reviewer:
    """Leader acting as evaluator"""

    id: str
    name: Optional[str]
    email: Optional[str]
    org_unit: Optional[str]
    level: Optional[str] = None


@dataclass
class Action:
    """Submitted evidence awaiting or having undergone review"""

    id: str
    submitter: Submitter
    status: ActionStatus
    retry_count: int = 0
    team_modifier: float = 1.0
    challenge: Optional[Challenge] = None
    campaign_id: Optional[str] = None
    campaign_sponsored: bool = False
    first_evaluator_id: Optional[str] = None
    first_rating: Optional[float] = None
    second_evaluator_id: Optional[str] = None
    second_rating: Optional[float] = None
    quality_score: Optional[float] = None
    final_points: Optional[int] = None

    @property
    def title(self) -> str:
        if self.challenge:
            return self.challenge.title
        return "Campaign evidence"


@dataclass
class EvaluationRecord:
    """One reviewer's judgment of one action"""

    action_id: str
    reviewer_id: str
    reviewer_level: str
    evaluation_number: int
    rating: float
    final_rating: Optional[float] = None
    scores: dict[str, float] = field(default_factory=dict)
    feedback_positive: str = ""
    feedback_constructive: str = ""
    created_at: Optional[datetime] = None
    # retry_count of the action when the record was written
    review_round: int = 0


@dataclass
class QueueEntry:
    """Open grant allowing a reviewer to judge an action"""

    id: str
    action_id: str
    reviewer_id: str
    assigned_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


@dataclass
class ReviewPlan:
    """Outcome of guest-override resolution"""

    mode: ReviewMode
    designated_reviewer: Optional[Reviewer] = None

    @property
    def is_override(self) -> bool:
        return self.mode == ReviewMode.SINGLE_OVERRIDE


@dataclass
class JudgmentResult:
    """What a judgment did, returned to the request layer"""

    action_id: str
    decision: Decision
    status: ActionStatus
    message: str
    evaluation_number: Optional[int] = None
    rating: Optional[float] = None
    first_rating: Optional[float] = None
    second_rating: Optional[float] = None
    average_rating: Optional[float] = None
    quality_score: Optional[float] = None
    xp_awarded: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "success": True,
            "action_id": self.action_id,
            "decision": self.decision.value,
            "status": self.status.value,
            "message": self.message,
        }
        optional = {
            "evaluation_number": self.evaluation_number,
            "rating": self.rating,
            "first_rating": self.first_rating,
            "second_rating": self.second_rating,
            "average_rating": self.average_rating,
            "quality_score": self.quality_score,
            "final_xp": self.xp_awarded,
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        return data
