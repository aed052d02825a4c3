# evaluation-core - Peer Evaluation Engine
# AGPL-3.0 License

"""
Peer Evaluation Engine

Decides who may judge a submitted action, how many independent judgments
it needs, and how those judgments turn into an XP reward. It handles:

1. Eligibility - reviewers need an open assignment in the evaluation queue
2. Guest Override - guest campaign actions go to one designated reviewer
3. Evaluation - single and dual review with reviewer independence
4. Reward Policy - retry penalties, tier-relative targets, quality scaling

Integration:
- Reads actions, reviewers and assignments from PostgreSQL (asyncpg)
- Credits XP and sends notifications through the platform API (httpx)
"""

from .config import EvaluationConfig
from .engine import EvaluationEngine
from .errors import (
    ActionNotFound,
    AlreadyEvaluated,
    EvaluationError,
    IndependenceViolation,
    InvalidDecision,
    InvalidFeedback,
    InvalidRating,
    MisconfiguredOverride,
    NotAssigned,
    RewardLedgerError,
)
from .guard import ReviewerEligibilityGuard
from .models import ActionStatus, Decision, JudgmentResult, ReviewMode
from .override import GuestOverrideResolver
from .policy import RewardPolicy
from .api import PlatformAPIClient
from .store import EvaluationStore

__all__ = [
    "EvaluationConfig",
    "EvaluationEngine",
    "EvaluationStore",
    "PlatformAPIClient",
    "ReviewerEligibilityGuard",
    "GuestOverrideResolver",
    "RewardPolicy",
    "ActionStatus",
    "Decision",
    "JudgmentResult",
    "ReviewMode",
    "EvaluationError",
    "NotAssigned",
    "ActionNotFound",
    "AlreadyEvaluated",
    "IndependenceViolation",
    "InvalidFeedback",
    "InvalidRating",
    "InvalidDecision",
    "MisconfiguredOverride",
    "RewardLedgerError",
]

__version__ = "0.1.0"
