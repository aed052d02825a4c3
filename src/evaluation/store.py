# evaluation-core - Evaluation Store
# AGPL-3.0 License

"""
Database operations for the evaluation engine.

Reads actions, reviewers and assignment queue entries; writes evaluation
records and action transitions. Every write that moves an action is
conditional on the status the caller last saw, and evaluation records are
unique per (action_id, review_round, evaluation_number), where the review
round is the action's retry_count. Losing either race raises SlotTaken so
the engine can re-read and re-branch.
"""

import json
import logging
from typing import Any, Iterable, Optional

import asyncpg

from .errors import SlotTaken
from .models import (
    Action,
    ActionStatus,
    Challenge,
    EvaluationRecord,
    QueueEntry,
    Reviewer,
    RewardMode,
    RewardSpec,
    Submitter,
)

logger = logging.getLogger("evaluation.store")

# Action columns a transition may set besides status
ACTION_UPDATE_COLUMNS = frozenset(
    {
        "first_evaluator_id",
        "first_rating",
        "second_evaluator_id",
        "second_rating",
        "quality_score",
        "final_points",
    }
)

ACTION_SELECT = """
    SELECT a.id, a.status, a.retry_count, a.team_modifier, a.campaign_id,
           a.first_evaluator_id, a.first_rating,
           a.second_evaluator_id, a.second_rating,
           a.quality_score, a.final_points,
           p.id AS submitter_id, p.name AS submitter_name,
           p.xp AS submitter_xp, p.tier AS submitter_tier,
           p.coord_id AS submitter_coord_id, p.team_id AS submitter_team_id,
           p.sigla_area AS submitter_sigla_area,
           p.operational_base AS submitter_operational_base,
           p.division_id AS submitter_division_id,
           COALESCE(
               (SELECT array_agg(r.role) FROM user_roles r WHERE r.user_id = p.id),
               ARRAY[]::text[]
           ) AS submitter_roles,
           c.id AS challenge_id, c.title AS challenge_title,
           c.require_two_leader_eval, c.reward_mode, c.xp_reward,
           c.reward_tier_steps,
           COALESCE(a.campaign_id, c.campaign_id) AS effective_campaign_id,
           COALESCE(cp.is_sponsored, FALSE) AS campaign_sponsored
    FROM actions a
    JOIN profiles p ON p.id = a.submitter_id
    LEFT JOIN challenges c ON c.id = a.challenge_id
    LEFT JOIN campaigns cp ON cp.id = COALESCE(a.campaign_id, c.campaign_id)
"""


def _str_or_none(value: Any) -> Optional[str]:
    return str(value) if value is not None else None


def _rows_affected(result: str) -> int:
    return int(result.split()[-1])


def row_to_action(row: asyncpg.Record) -> Action:
    """Build an Action (with submitter and challenge) from an ACTION_SELECT row."""
    markers = tuple(
        str(m)
        for m in (
            row["submitter_team_id"],
            row["submitter_sigla_area"],
            row["submitter_operational_base"],
            row["submitter_coord_id"],
            row["submitter_division_id"],
        )
        if m
    )
    submitter = Submitter(
        id=str(row["submitter_id"]),
        name=row["submitter_name"],
        current_xp=row["submitter_xp"] or 0,
        tier=row["submitter_tier"],
        org_unit=row["submitter_coord_id"],
        roles=tuple(row["submitter_roles"] or ()),
        org_markers=markers,
    )

    challenge = None
    if row["challenge_id"] is not None:
        challenge = Challenge(
            id=str(row["challenge_id"]),
            title=row["challenge_title"],
            require_two_leader_eval=bool(row["require_two_leader_eval"]),
            reward=RewardSpec(
                mode=RewardMode(row["reward_mode"] or RewardMode.FIXED_XP.value),
                xp=row["xp_reward"] or 0,
                tier_steps=row["reward_tier_steps"],
            ),
        )

    return Action(
        id=str(row["id"]),
        submitter=submitter,
        status=ActionStatus(row["status"]),
        retry_count=row["retry_count"] or 0,
        team_modifier=row["team_modifier"] or 1.0,
        challenge=challenge,
        campaign_id=_str_or_none(row["effective_campaign_id"]),
        campaign_sponsored=bool(row["campaign_sponsored"]),
        first_evaluator_id=_str_or_none(row["first_evaluator_id"]),
        first_rating=row["first_rating"],
        second_evaluator_id=_str_or_none(row["second_evaluator_id"]),
        second_rating=row["second_rating"],
        quality_score=row["quality_score"],
        final_points=row["final_points"],
    )


def row_to_reviewer(row: asyncpg.Record) -> Reviewer:
    return Reviewer(
        id=str(row["id"]),
        name=row["name"],
        email=row["email"],
        org_unit=row["coord_id"],
        level=row["reviewer_level"],
    )


def row_to_record(row: asyncpg.Record) -> EvaluationRecord:
    scores = row["scores"]
    if isinstance(scores, str):
        scores = json.loads(scores)
    return EvaluationRecord(
        action_id=str(row["action_id"]),
        reviewer_id=str(row["reviewer_id"]),
        reviewer_level=row["reviewer_level"],
        evaluation_number=row["evaluation_number"],
        rating=row["rating"],
        final_rating=row["final_rating"],
        scores=scores or {},
        feedback_positive=row["feedback_positive"],
        feedback_constructive=row["feedback_constructive"],
        created_at=row["created_at"],
        review_round=row["review_round"] or 0,
    )


def row_to_queue_entry(row: asyncpg.Record) -> QueueEntry:
    return QueueEntry(
        id=str(row["id"]),
        action_id=str(row["action_id"]),
        reviewer_id=str(row["reviewer_id"]),
        assigned_at=row["assigned_at"],
        completed_at=row["completed_at"],
    )


class EvaluationStore:
    """asyncpg-backed persistence for evaluations."""

    def __init__(self, db_pool: asyncpg.Pool):
        """
        Initialize the evaluation store.

        Args:
            db_pool: asyncpg connection pool
        """
        self.db = db_pool

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def fetch_action(self, action_id: str) -> Optional[Action]:
        row = await self.db.fetchrow(ACTION_SELECT + " WHERE a.id = $1", action_id)
        return row_to_action(row) if row else None

    async def fetch_reviewer(self, reviewer_id: str) -> Optional[Reviewer]:
        row = await self.db.fetchrow(
            """
            SELECT id, name, email, coord_id, reviewer_level
            FROM profiles
            WHERE id = $1
            """,
            reviewer_id,
        )
        return row_to_reviewer(row) if row else None

    async def find_reviewers_by_email(self, email: str) -> list[Reviewer]:
        """Exact, case-insensitive email match."""
        rows = await self.db.fetch(
            """
            SELECT id, name, email, coord_id, reviewer_level
            FROM profiles
            WHERE lower(email) = lower($1)
            """,
            email.strip(),
        )
        return [row_to_reviewer(row) for row in rows]

    async def fetch_open_entry(
        self, action_id: str, reviewer_id: str
    ) -> Optional[QueueEntry]:
        row = await self.db.fetchrow(
            """
            SELECT id, action_id, reviewer_id, assigned_at, completed_at
            FROM evaluation_queue
            WHERE action_id = $1 AND reviewer_id = $2 AND completed_at IS NULL
            ORDER BY assigned_at ASC
            LIMIT 1
            """,
            action_id,
            reviewer_id,
        )
        return row_to_queue_entry(row) if row else None

    async def list_queue(self, action_id: str) -> list[QueueEntry]:
        rows = await self.db.fetch(
            """
            SELECT id, action_id, reviewer_id, assigned_at, completed_at
            FROM evaluation_queue
            WHERE action_id = $1
            ORDER BY assigned_at ASC
            """,
            action_id,
        )
        return [row_to_queue_entry(row) for row in rows]

    async def list_records(
        self, action_id: str, review_round: Optional[int] = None
    ) -> list[EvaluationRecord]:
        """
        Evaluation records for an action.

        Args:
            action_id: Action to list
            review_round: Only records written at this retry_count (all rounds if None)
        """
        query = """
            SELECT action_id, reviewer_id, reviewer_level, evaluation_number,
                   rating, final_rating, scores, feedback_positive,
                   feedback_constructive, created_at, review_round
            FROM evaluation_records
            WHERE action_id = $1
        """
        args: list[Any] = [action_id]
        if review_round is not None:
            query += " AND review_round = $2"
            args.append(review_round)
        query += " ORDER BY review_round ASC, evaluation_number ASC"

        rows = await self.db.fetch(query, *args)
        return [row_to_record(row) for row in rows]

    async def count_pending(self, reviewer_id: str) -> int:
        """Open queue entries for a reviewer."""
        count = await self.db.fetchval(
            """
            SELECT COUNT(*) FROM evaluation_queue
            WHERE reviewer_id = $1 AND completed_at IS NULL
            """,
            reviewer_id,
        )
        return count or 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def transition(
        self,
        action_id: str,
        expected: Iterable[ActionStatus],
        new_status: ActionStatus,
        fields: Optional[dict[str, Any]] = None,
        record: Optional[EvaluationRecord] = None,
    ) -> None:
        """
        Move an action to new_status, optionally inserting an evaluation record.

        Runs in one transaction. The update only applies while the action is
        still in one of the expected statuses.

        Args:
            action_id: Action to move
            expected: Statuses the caller read before deciding
            new_status: Target status
            fields: Extra action columns to set (see ACTION_UPDATE_COLUMNS)
            record: Evaluation record to insert alongside the transition

        Raises:
            SlotTaken: the record slot is filled or the status moved underneath us
        """
        fields = fields or {}
        unknown = set(fields) - ACTION_UPDATE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update action columns: {sorted(unknown)}")

        columns = sorted(fields)
        assignments = ", ".join(
            f"{column} = ${index}" for index, column in enumerate(columns, start=4)
        )
        set_clause = "status = $3, updated_at = NOW()"
        if assignments:
            set_clause += ", " + assignments

        expected_values = [status.value for status in expected]

        async with self.db.acquire() as conn:
            async with conn.transaction():
                if record is not None:
                    await self._insert_record(conn, record)

                result = await conn.execute(
                    f"""
                    UPDATE actions
                    SET {set_clause}
                    WHERE id = $1 AND status = ANY($2::text[])
                    """,
                    action_id,
                    expected_values,
                    new_status.value,
                    *[fields[column] for column in columns],
                )

                if _rows_affected(result) == 0:
                    raise SlotTaken(
                        f"Action {action_id} is no longer in {expected_values}"
                    )

        logger.info(f"Action {action_id} -> {new_status.value}")

    async def _insert_record(
        self, conn: asyncpg.Connection, record: EvaluationRecord
    ) -> None:
        try:
            await conn.execute(
                """
                INSERT INTO evaluation_records (
                    action_id, reviewer_id, reviewer_level, evaluation_number,
                    rating, final_rating, scores, feedback_positive,
                    feedback_constructive, review_round
                ) VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, $8, $9, $10)
                """,
                record.action_id,
                record.reviewer_id,
                record.reviewer_level,
                record.evaluation_number,
                record.rating,
                record.final_rating,
                json.dumps(record.scores or {}),
                record.feedback_positive,
                record.feedback_constructive,
                record.review_round,
            )
        except asyncpg.UniqueViolationError as e:
            raise SlotTaken(
                f"Evaluation #{record.evaluation_number} for action "
                f"{record.action_id} (round {record.review_round}) already exists"
            ) from e

    async def complete_queue_entry(self, entry_id: str) -> bool:
        """
        Stamp completed_at on an assignment if it is still open.

        Returns:
            True if this call closed the entry
        """
        result = await self.db.execute(
            """
            UPDATE evaluation_queue
            SET completed_at = NOW()
            WHERE id = $1 AND completed_at IS NULL
            """,
            int(entry_id),
        )
        return _rows_affected(result) == 1
