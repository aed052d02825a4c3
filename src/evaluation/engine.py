# evaluation-core - Evaluation Engine
# AGPL-3.0 License

"""
Evaluation Engine

Turns a reviewer's judgment (approve / reject / retry) into an action
state transition, evaluation records and, on approval, an XP reward.

Flow for one judgment:
1. The reviewer must hold an open assignment (ReviewerEligibilityGuard)
2. The payload is validated (feedback length, rating range)
3. The review plan is resolved (single, dual, or guest override)
4. The transition is committed with conditional writes; losing a race to
   a concurrent judgment re-reads the action and branches again.
   Evaluation records are scoped to the review round (the action's
   retry_count), so a resubmitted action starts a fresh review
5. After commit: the XP ledger is credited (failure surfaces to the
   caller), then the assignment is closed, the submitter notified and a
   second reviewer requested where needed (failures only logged)
"""

import logging
from dataclasses import dataclass
from typing import Mapping, Optional, Union

from . import messages
from .api import PlatformAPIClient
from .config import EvaluationConfig
from .errors import (
    ActionNotFound,
    AlreadyEvaluated,
    IndependenceViolation,
    InvalidDecision,
    InvalidFeedback,
    NotAssigned,
    SlotTaken,
)
from .guard import ReviewerEligibilityGuard
from .messages import NotificationMessage
from .models import (
    Action,
    ActionStatus,
    Decision,
    EvaluationRecord,
    JudgmentResult,
    ReviewMode,
    ReviewPlan,
    Reviewer,
    RewardSpec,
)
from .override import GuestOverrideResolver
from .policy import RewardBreakdown, RewardPolicy, quality_score
from .store import EvaluationStore

logger = logging.getLogger("evaluation.engine")


@dataclass
class _Judgment:
    """Validated judgment payload"""

    action_id: str
    reviewer_id: str
    decision: Decision
    rating: Optional[float]
    scores: dict[str, float]
    positive_feedback: str
    constructive_feedback: str


@dataclass
class _Committed:
    """A committed transition and the side effects it still owes"""

    result: JudgmentResult
    submitter_id: str
    notification: NotificationMessage
    reward: Optional[RewardBreakdown] = None
    request_second_reviewer: bool = False


def _normalize_unit(unit: Optional[str]) -> Optional[str]:
    if unit is None:
        return None
    unit = str(unit).strip().upper()
    return unit or None


class EvaluationEngine:
    """State machine for peer evaluation of submitted actions"""

    def __init__(
        self,
        store: EvaluationStore,
        api_client: PlatformAPIClient,
        config: Optional[EvaluationConfig] = None,
    ):
        self.store = store
        self.api = api_client
        self.config = config or EvaluationConfig()
        self.guard = ReviewerEligibilityGuard(store)
        self.resolver = GuestOverrideResolver(store, self.config)
        self.policy = RewardPolicy(self.config)

    async def judge(
        self,
        action_id: str,
        reviewer_id: str,
        decision: Union[Decision, str],
        rubric: Optional[Mapping[str, float]] = None,
        rating: Optional[float] = None,
        positive_feedback: Optional[str] = None,
        constructive_feedback: Optional[str] = None,
    ) -> JudgmentResult:
        """
        Apply one reviewer's judgment to an action.

        Args:
            action_id: Action being judged
            reviewer_id: Acting reviewer
            decision: 'approve', 'reject' or 'retry'
            rubric: Dimension -> sub-score (0-5), used when rating is absent
            rating: Explicit 0-10 rating
            positive_feedback: Required (10+ chars) to approve
            constructive_feedback: Required (10+ chars) for every decision

        Returns:
            JudgmentResult describing the committed transition

        Raises:
            NotAssigned, ActionNotFound, AlreadyEvaluated,
            IndependenceViolation, InvalidFeedback, InvalidRating,
            InvalidDecision, MisconfiguredOverride: nothing was written
            RewardLedgerError: the approval committed but XP was not credited
        """
        decision = self._parse_decision(decision)
        entry = await self.guard.authorize(action_id, reviewer_id)
        judgment = self._validate(
            action_id,
            reviewer_id,
            decision,
            rubric,
            rating,
            positive_feedback,
            constructive_feedback,
        )

        committed = await self._commit_with_retries(judgment)
        action_result = committed.result

        try:
            if committed.reward is not None:
                await self._credit(action_result, committed)
        finally:
            await self.guard.complete(entry)

        await self._notify(committed.submitter_id, committed.notification)
        if committed.request_second_reviewer:
            await self._request_second_reviewer(action_id)

        return action_result

    async def recredit_reward(self, action_id: str) -> int:
        """
        Re-send the ledger credit for an approved action.

        For recovery after a RewardLedgerError. The ledger de-duplicates on
        the action id, so this never credits the same action twice.

        Returns:
            The XP amount sent
        """
        action = await self.store.fetch_action(action_id)
        if action is None:
            raise ActionNotFound(f"Action {action_id} not found")
        if action.status != ActionStatus.APPROVED or action.final_points is None:
            raise AlreadyEvaluated(
                f"Action {action_id} is {action.status.value}, not approved with a reward"
            )
        await self.api.increment_xp(action.submitter.id, action.final_points, action.id)
        return action.final_points

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _parse_decision(self, decision: Union[Decision, str]) -> Decision:
        try:
            return Decision(decision)
        except ValueError:
            raise InvalidDecision(
                f"Unknown decision {decision!r}; expected approve, reject or retry"
            )

    def _require_feedback(self, text: Optional[str], field: str) -> str:
        text = (text or "").strip()
        if len(text) < self.config.min_feedback_length:
            raise InvalidFeedback(field, self.config.min_feedback_length)
        return text

    def _validate(
        self,
        action_id: str,
        reviewer_id: str,
        decision: Decision,
        rubric: Optional[Mapping[str, float]],
        rating: Optional[float],
        positive_feedback: Optional[str],
        constructive_feedback: Optional[str],
    ) -> _Judgment:
        constructive = self._require_feedback(constructive_feedback, "constructive")
        positive = (positive_feedback or "").strip()
        resolved_rating = None

        if decision == Decision.APPROVE:
            positive = self._require_feedback(positive_feedback, "positive")
            resolved_rating = self.policy.resolve_rating(rating, rubric)

        return _Judgment(
            action_id=action_id,
            reviewer_id=reviewer_id,
            decision=decision,
            rating=resolved_rating,
            scores=dict(rubric or {}),
            positive_feedback=positive,
            constructive_feedback=constructive,
        )

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    async def _commit_with_retries(self, judgment: _Judgment) -> _Committed:
        attempts = max(1, self.config.max_slot_retries)
        for attempt in range(1, attempts + 1):
            action = await self.store.fetch_action(judgment.action_id)
            if action is None:
                raise ActionNotFound(f"Action {judgment.action_id} not found")

            try:
                return await self._commit(action, judgment)
            except SlotTaken as e:
                logger.info(
                    f"Lost evaluation slot on {judgment.action_id} "
                    f"(attempt {attempt}/{attempts}): {e}"
                )

        raise AlreadyEvaluated(
            f"Action {judgment.action_id} was evaluated concurrently by another reviewer"
        )

    async def _commit(self, action: Action, judgment: _Judgment) -> _Committed:
        if action.status.is_terminal:
            raise AlreadyEvaluated(
                f"Action {action.id} is already {action.status.value}"
            )

        plan = await self.resolver.resolve(action)
        if plan.is_override and judgment.reviewer_id != plan.designated_reviewer.id:
            raise NotAssigned(
                "Guest campaign actions can only be evaluated by the designated reviewer"
            )

        reviewer = await self.store.fetch_reviewer(judgment.reviewer_id)
        if reviewer is None:
            raise NotAssigned(f"Reviewer {judgment.reviewer_id} not found")

        # Records of earlier rounds belong to judgments that sent the action back
        records = await self.store.list_records(action.id, action.retry_count)

        if judgment.decision == Decision.APPROVE:
            if plan.mode == ReviewMode.DUAL:
                return await self._approve_dual(action, judgment, reviewer, records)
            return await self._approve_single(action, judgment, reviewer, records, plan)

        if (
            plan.mode == ReviewMode.DUAL
            and action.status == ActionStatus.AWAITING_SECOND_EVALUATION
            and records
        ):
            await self._check_independence(records[0], reviewer)
        return await self._send_back(action, judgment)

    async def _send_back(self, action: Action, judgment: _Judgment) -> _Committed:
        """Reject or request a retry; no reward."""
        if judgment.decision == Decision.REJECT:
            new_status = ActionStatus.REJECTED
            notification = messages.evaluation_rejected(
                action, judgment.constructive_feedback
            )
            text = "Action rejected"
        else:
            new_status = ActionStatus.RETRY_PENDING
            notification = messages.evaluation_retry(
                action, judgment.constructive_feedback
            )
            text = "Retry requested"

        await self.store.transition(action.id, (action.status,), new_status)
        logger.info(f"Action {action.id} {new_status.value} by {judgment.reviewer_id}")

        return _Committed(
            submitter_id=action.submitter.id,
            result=JudgmentResult(
                action_id=action.id,
                decision=judgment.decision,
                status=new_status,
                message=text,
            ),
            notification=notification,
        )

    async def _approve_single(
        self,
        action: Action,
        judgment: _Judgment,
        reviewer: Reviewer,
        records: list[EvaluationRecord],
        plan: ReviewPlan,
    ) -> _Committed:
        if records:
            raise AlreadyEvaluated(
                f"Action {action.id} already has an evaluation in review round "
                f"{action.retry_count}"
            )

        rating = judgment.rating
        reward = self._reward(action, quality_score(rating))
        record = self._record(action, judgment, reviewer, 1, final_rating=rating)

        await self.store.transition(
            action.id,
            (action.status,),
            ActionStatus.APPROVED,
            fields={
                "first_evaluator_id": reviewer.id,
                "first_rating": rating,
                "second_evaluator_id": None,
                "second_rating": None,
                "quality_score": reward.quality_score,
                "final_points": reward.xp,
            },
            record=record,
        )
        logger.info(
            f"Action {action.id} approved ({plan.mode.value}) by {reviewer.id}: "
            f"rating={rating}, xp={reward.xp}"
        )

        return _Committed(
            submitter_id=action.submitter.id,
            result=JudgmentResult(
                action_id=action.id,
                decision=Decision.APPROVE,
                status=ActionStatus.APPROVED,
                message="Action approved",
                evaluation_number=1,
                rating=rating,
                quality_score=reward.quality_score,
                xp_awarded=reward.xp,
            ),
            notification=messages.evaluation_complete(action, reward, rating),
            reward=reward,
        )

    async def _approve_dual(
        self,
        action: Action,
        judgment: _Judgment,
        reviewer: Reviewer,
        records: list[EvaluationRecord],
    ) -> _Committed:
        rating = judgment.rating

        if action.status == ActionStatus.SUBMITTED:
            if records:
                raise AlreadyEvaluated(
                    f"Action {action.id} already has an evaluation in review round "
                    f"{action.retry_count}; a resubmission must increment retry_count"
                )

            record = self._record(action, judgment, reviewer, 1)
            await self.store.transition(
                action.id,
                (ActionStatus.SUBMITTED,),
                ActionStatus.AWAITING_SECOND_EVALUATION,
                fields={
                    "first_evaluator_id": reviewer.id,
                    "first_rating": rating,
                    "second_evaluator_id": None,
                    "second_rating": None,
                },
                record=record,
            )
            logger.info(f"First evaluation of {action.id} by {reviewer.id}: {rating}")

            return _Committed(
                submitter_id=action.submitter.id,
                result=JudgmentResult(
                    action_id=action.id,
                    decision=Decision.APPROVE,
                    status=ActionStatus.AWAITING_SECOND_EVALUATION,
                    message="First evaluation recorded. Waiting for the second evaluation.",
                    evaluation_number=1,
                    rating=rating,
                ),
                notification=messages.partial_evaluation(action, rating, reviewer.name),
                request_second_reviewer=True,
            )

        if not records:
            raise AlreadyEvaluated(
                f"Action {action.id} awaits a second evaluation but has no first "
                f"evaluation in review round {action.retry_count}"
            )
        if len(records) >= 2:
            raise AlreadyEvaluated(f"Action {action.id} already has two evaluations")

        first = records[0]
        await self._check_independence(first, reviewer)

        average = round((first.rating + rating) / 2, 2)
        reward = self._reward(action, quality_score(average))
        record = self._record(action, judgment, reviewer, 2, final_rating=average)

        await self.store.transition(
            action.id,
            (ActionStatus.AWAITING_SECOND_EVALUATION,),
            ActionStatus.APPROVED,
            fields={
                "first_evaluator_id": first.reviewer_id,
                "first_rating": first.rating,
                "second_evaluator_id": reviewer.id,
                "second_rating": rating,
                "quality_score": reward.quality_score,
                "final_points": reward.xp,
            },
            record=record,
        )
        logger.info(
            f"Second evaluation of {action.id} by {reviewer.id}: "
            f"average={average}, xp={reward.xp}"
        )

        return _Committed(
            submitter_id=action.submitter.id,
            result=JudgmentResult(
                action_id=action.id,
                decision=Decision.APPROVE,
                status=ActionStatus.APPROVED,
                message="Evaluation complete",
                evaluation_number=2,
                rating=rating,
                first_rating=first.rating,
                second_rating=rating,
                average_rating=average,
                quality_score=reward.quality_score,
                xp_awarded=reward.xp,
            ),
            notification=messages.evaluation_complete(
                action, reward, rating, first_rating=first.rating, average=average
            ),
            reward=reward,
        )

    async def _check_independence(
        self, first: EvaluationRecord, reviewer: Reviewer
    ) -> None:
        """Second reviewer must differ from the first in identity and unit."""
        if first.reviewer_id == reviewer.id:
            raise IndependenceViolation(
                "The second evaluation must come from a different reviewer"
            )

        first_reviewer = await self.store.fetch_reviewer(first.reviewer_id)
        first_unit = _normalize_unit(first_reviewer.org_unit if first_reviewer else None)
        unit = _normalize_unit(reviewer.org_unit)

        if first_unit is None or unit is None:
            raise IndependenceViolation(
                "Cannot verify reviewer independence: organizational unit unknown"
            )
        if first_unit == unit:
            raise IndependenceViolation(
                f"The second reviewer must belong to a different organizational "
                f"unit than the first ({unit})"
            )

    def _reward(self, action: Action, quality: float) -> RewardBreakdown:
        if action.challenge:
            spec = action.challenge.reward
        else:
            spec = RewardSpec(xp=self.config.campaign_evidence_xp)
        return self.policy.compute(
            spec,
            action.submitter.current_xp,
            action.submitter.tier,
            quality,
            action.retry_count,
            action.team_modifier,
        )

    def _record(
        self,
        action: Action,
        judgment: _Judgment,
        reviewer: Reviewer,
        number: int,
        final_rating: Optional[float] = None,
    ) -> EvaluationRecord:
        return EvaluationRecord(
            action_id=action.id,
            reviewer_id=reviewer.id,
            reviewer_level=reviewer.level or self.config.default_reviewer_level,
            evaluation_number=number,
            rating=judgment.rating,
            final_rating=final_rating,
            scores=judgment.scores,
            feedback_positive=judgment.positive_feedback,
            feedback_constructive=judgment.constructive_feedback,
            review_round=action.retry_count,
        )

    # ------------------------------------------------------------------
    # Post-commit side effects
    # ------------------------------------------------------------------

    async def _credit(self, result: JudgmentResult, committed: _Committed) -> None:
        reward = committed.reward
        if reward.xp <= 0:
            logger.info(f"Action {result.action_id} approved with 0 XP; ledger skipped")
            return
        await self.api.increment_xp(committed.submitter_id, reward.xp, result.action_id)

    async def _notify(self, user_id: str, notification: NotificationMessage) -> None:
        try:
            await self.api.notify(
                user_id,
                notification.type.value,
                notification.title,
                notification.message,
                notification.metadata,
            )
        except Exception as e:
            logger.warning(f"Notification {notification.type.value} failed: {e}", exc_info=True)

    async def _request_second_reviewer(self, action_id: str) -> None:
        try:
            await self.api.ensure_second_reviewer(action_id)
        except Exception as e:
            logger.warning(f"Second reviewer request for {action_id} failed: {e}", exc_info=True)
