# evaluation-core - Evaluation Errors
# AGPL-3.0 License

"""
Exceptions raised by the evaluation engine.

Every error carries a human-readable message and a short ``code`` the
request layer can map to a status (not found, conflict, bad input).
"""


class EvaluationError(Exception):
    """Base exception for evaluation operations."""

    code = "evaluation_error"


class NotAssigned(EvaluationError):
    """Reviewer holds no open assignment for the action."""

    code = "not_assigned"


class ActionNotFound(EvaluationError):
    """The action does not exist."""

    code = "action_not_found"


class AlreadyEvaluated(EvaluationError):
    """The action is past the point where this judgment is valid."""

    code = "already_evaluated"


class IndependenceViolation(EvaluationError):
    """Second reviewer shares identity or unit with the first."""

    code = "independence_violation"


class InvalidFeedback(EvaluationError):
    """Feedback text is missing or too short."""

    code = "invalid_feedback"

    def __init__(self, field: str, minimum: int):
        self.field = field
        self.minimum = minimum
        super().__init__(
            f"{field} feedback must have at least {minimum} characters"
        )


class InvalidRating(EvaluationError):
    """Rating or rubric scores are missing or out of range."""

    code = "invalid_rating"


class InvalidDecision(EvaluationError):
    """Unknown judgment decision."""

    code = "invalid_decision"


class MisconfiguredOverride(EvaluationError):
    """The guest-override reviewer cannot be resolved."""

    code = "misconfigured_override"


class RewardLedgerError(EvaluationError):
    """XP could not be credited after the action was approved."""

    code = "reward_ledger_error"

    def __init__(self, action_id: str, amount: int, reason: str):
        self.action_id = action_id
        self.amount = amount
        super().__init__(
            f"Action {action_id} was approved but crediting {amount} XP failed: {reason}"
        )


class SlotTaken(Exception):
    """A concurrent judgment filled the slot first. Internal to the engine."""
