# evaluation-core - Evaluation Notifications
# AGPL-3.0 License

"""
Submitter-facing notification content for each evaluation outcome.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from .models import Action, NotificationType
from .policy import RewardBreakdown


@dataclass
class NotificationMessage:
    """Formatted notification"""

    type: NotificationType
    title: str
    message: str
    metadata: dict[str, Any] = field(default_factory=dict)


def format_rating(value: float) -> str:
    return f"{value:.1f}/10"


def partial_evaluation(
    action: Action,
    rating: float,
    reviewer_name: Optional[str],
) -> NotificationMessage:
    """First of two required evaluations is in."""
    return NotificationMessage(
        type=NotificationType.PARTIAL,
        title="First evaluation completed",
        message=(
            f'Your action "{action.title}" received its first evaluation: '
            f"{format_rating(rating)}. Waiting for the second evaluation..."
        ),
        metadata={
            "action_id": action.id,
            "rating": rating,
            "reviewer_name": reviewer_name,
        },
    )


def evaluation_complete(
    action: Action,
    reward: RewardBreakdown,
    rating: float,
    first_rating: Optional[float] = None,
    average: Optional[float] = None,
) -> NotificationMessage:
    """Action approved; dual-review messages list both ratings and the average."""
    lines = [f'Your action "{action.title}" was approved!', ""]

    if first_rating is not None and average is not None:
        lines.append("Evaluations:")
        lines.append(f"1st: {format_rating(first_rating)}")
        lines.append(f"2nd: {format_rating(rating)}")
        lines.append("")
        lines.append(f"Final average: {format_rating(average)}")
        metadata = {
            "action_id": action.id,
            "first_rating": first_rating,
            "second_rating": rating,
            "average_rating": average,
        }
    else:
        lines.append(f"Rating: {format_rating(rating)}")
        metadata = {"action_id": action.id, "rating": rating}

    lines.append(f"You earned {reward.xp} XP!")
    metadata.update(
        {
            "xp_earned": reward.xp,
            "retry_penalty": reward.retry_penalty,
            "quality_score": reward.quality_score,
        }
    )

    return NotificationMessage(
        type=NotificationType.COMPLETE,
        title="Action approved!",
        message="\n".join(lines),
        metadata=metadata,
    )


def evaluation_rejected(action: Action, feedback: str) -> NotificationMessage:
    return NotificationMessage(
        type=NotificationType.REJECTED,
        title="Action rejected",
        message=(
            f'Your action "{action.title}" was rejected. '
            "See the feedback for details."
        ),
        metadata={"action_id": action.id, "feedback": feedback},
    )


def evaluation_retry(action: Action, feedback: str) -> NotificationMessage:
    return NotificationMessage(
        type=NotificationType.RETRY,
        title="Retry requested",
        message=(
            f'Your action "{action.title}" needs adjustments. '
            "See the feedback and try again."
        ),
        metadata={
            "action_id": action.id,
            "feedback": feedback,
            "retry_count": action.retry_count,
        },
    )
