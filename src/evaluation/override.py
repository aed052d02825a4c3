# evaluation-core - Guest Override Resolver
# AGPL-3.0 License

"""
Guest Override Resolver

Actions submitted by guests against a sponsored campaign are judged by a
single designated administrator instead of two independent leaders. The
administrator is resolved by a stable reference (account id, or an exact
email match) and resolution fails closed: an unresolvable reviewer is an
error, never a silent fallback to dual review.
"""

import logging
from typing import Optional

from .config import EvaluationConfig
from .errors import MisconfiguredOverride
from .models import Action, ReviewMode, ReviewPlan, Reviewer, Submitter
from .store import EvaluationStore

logger = logging.getLogger("evaluation.override")


def is_guest(
    submitter: Submitter,
    guest_role: str = "invited",
    guest_unit_markers: tuple[str, ...] = ("CONVIDADOS", "EXTERNO"),
) -> bool:
    """True if the submitter carries the guest role or a guest unit marker."""
    if guest_role in submitter.roles:
        return True
    markers = {m.upper() for m in guest_unit_markers}
    return any(str(m).strip().upper() in markers for m in submitter.org_markers)


class GuestOverrideResolver:
    """Decides how many reviewers an action needs and who they may be"""

    def __init__(self, store: EvaluationStore, config: Optional[EvaluationConfig] = None):
        self.store = store
        self.config = config or EvaluationConfig()

    def applies_to(self, action: Action) -> bool:
        return bool(action.campaign_id) and action.campaign_sponsored and is_guest(
            action.submitter,
            self.config.guest_role,
            self.config.guest_unit_markers,
        )

    async def resolve(self, action: Action) -> ReviewPlan:
        """
        Resolve the review plan for an action.

        Returns:
            SINGLE_OVERRIDE with the designated reviewer for guest campaign
            actions, otherwise DUAL or SINGLE per the challenge

        Raises:
            MisconfiguredOverride: the override applies but its reviewer
                cannot be resolved
        """
        if self.applies_to(action):
            reviewer = await self._designated_reviewer()
            return ReviewPlan(ReviewMode.SINGLE_OVERRIDE, designated_reviewer=reviewer)

        if action.challenge and action.challenge.require_two_leader_eval:
            return ReviewPlan(ReviewMode.DUAL)
        return ReviewPlan(ReviewMode.SINGLE)

    async def _designated_reviewer(self) -> Reviewer:
        reviewer_id = self.config.guest_reviewer_id
        email = self.config.guest_reviewer_email

        if reviewer_id:
            reviewer = await self.store.fetch_reviewer(reviewer_id)
            if reviewer is None:
                logger.error(f"Guest reviewer account {reviewer_id} not found")
                raise MisconfiguredOverride(
                    f"Guest reviewer account {reviewer_id} does not exist"
                )
            return reviewer

        if email:
            matches = await self.store.find_reviewers_by_email(email)
            if len(matches) == 1:
                return matches[0]
            logger.error(f"Guest reviewer email {email} matched {len(matches)} accounts")
            raise MisconfiguredOverride(
                f"Guest reviewer email must match exactly one account, matched {len(matches)}"
            )

        logger.error("Guest override applies but no guest reviewer is configured")
        raise MisconfiguredOverride(
            "No guest reviewer configured (set EVAL_GUEST_REVIEWER_ID)"
        )
