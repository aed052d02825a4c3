# evaluation-core - Reviewer Eligibility Guard
# AGPL-3.0 License

"""
Reviewer Eligibility Guard

A reviewer may judge an action only while holding an open assignment for
it in the evaluation queue. Completing a judgment closes the assignment
with a conditional update, so each assignment is usable once.
"""

import logging

from .errors import NotAssigned
from .models import QueueEntry
from .store import EvaluationStore

logger = logging.getLogger("evaluation.guard")


class ReviewerEligibilityGuard:
    """Authorizes reviewers against the assignment queue"""

    def __init__(self, store: EvaluationStore):
        self.store = store

    async def authorize(self, action_id: str, reviewer_id: str) -> QueueEntry:
        """
        Return the reviewer's open assignment for the action.

        Raises:
            NotAssigned: no open assignment exists for the pair
        """
        entry = await self.store.fetch_open_entry(action_id, reviewer_id)
        if entry is None:
            logger.info(f"Reviewer {reviewer_id} has no open assignment for {action_id}")
            raise NotAssigned(
                f"Reviewer {reviewer_id} is not assigned to evaluate action {action_id}"
            )
        return entry

    async def complete(self, entry: QueueEntry) -> bool:
        """
        Close an assignment after a committed judgment. Best-effort.

        Returns:
            True if this call closed it, False if it was already closed or
            the update failed
        """
        try:
            closed = await self.store.complete_queue_entry(entry.id)
        except Exception as e:
            logger.warning(f"Failed to close assignment {entry.id}: {e}", exc_info=True)
            return False

        if not closed:
            logger.warning(
                f"Assignment {entry.id} for action {entry.action_id} was already closed"
            )
        return closed
