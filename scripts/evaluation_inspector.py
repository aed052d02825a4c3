"""
Evaluation Inspector CLI

Operator tool for inspecting peer evaluations and previewing rewards.

Usage:
    # Show an action's status, ratings, evaluation records and queue
    python scripts/evaluation_inspector.py inspect <action-id>

    # Count open assignments for a reviewer
    python scripts/evaluation_inspector.py pending <reviewer-id>

    # Preview the reward for given inputs (no database needed)
    python scripts/evaluation_inspector.py reward --xp 100 --rating 9 --retry-count 2
    python scripts/evaluation_inspector.py reward --steps 2 --tier EX-2 --current-xp 650 --rating 10

    # Re-send the ledger credit for an approved action after a ledger failure
    python scripts/evaluation_inspector.py recredit <action-id>
"""

import argparse
import asyncio
import logging
import os
import sys
from datetime import datetime
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import asyncpg
from dotenv import load_dotenv

from evaluation import EvaluationConfig, EvaluationEngine, EvaluationStore, PlatformAPIClient
from evaluation.errors import EvaluationError
from evaluation.models import RewardMode, RewardSpec
from evaluation.policy import RewardPolicy, quality_score

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
)
logger = logging.getLogger(__name__)


def format_datetime(dt: datetime) -> str:
    """Format datetime for display."""
    if dt is None:
        return "Open"
    return dt.strftime("%Y-%m-%d %H:%M:%S")


async def inspect_action(store: EvaluationStore, action_id: str):
    """Show full evaluation state for one action."""
    action = await store.fetch_action(action_id)
    if action is None:
        logger.info(f"Action {action_id} not found")
        return

    records = await store.list_records(action_id)
    queue = await store.list_queue(action_id)

    logger.info("\n" + "=" * 60)
    logger.info(f"ACTION {action.id}")
    logger.info("=" * 60)
    logger.info(f"Title:        {action.title}")
    logger.info(f"Submitter:    {action.submitter.name} ({action.submitter.id})")
    logger.info(f"Tier / XP:    {action.submitter.tier} / {action.submitter.current_xp}")
    logger.info(f"Status:       {action.status.value}")
    logger.info(f"Retry count:  {action.retry_count}")
    logger.info(f"Team mod:     {action.team_modifier}")
    if action.challenge:
        reward = action.challenge.reward
        logger.info(
            f"Review:       {'dual' if action.challenge.require_two_leader_eval else 'single'}"
        )
        logger.info(f"Reward:       {reward.mode.value} xp={reward.xp} steps={reward.tier_steps}")
    logger.info(f"Campaign:     {action.campaign_id} (sponsored={action.campaign_sponsored})")
    logger.info(f"1st rating:   {action.first_rating} by {action.first_evaluator_id}")
    logger.info(f"2nd rating:   {action.second_rating} by {action.second_evaluator_id}")
    logger.info(f"Quality:      {action.quality_score}")
    logger.info(f"Final points: {action.final_points}")

    logger.info(f"\nEvaluation records ({len(records)}):")
    for record in records:
        logger.info(
            f"  round {record.review_round} #{record.evaluation_number} "
            f"{record.reviewer_id} [{record.reviewer_level}] "
            f"rating={record.rating} final={record.final_rating}"
        )

    logger.info(f"\nQueue ({len(queue)}):")
    for entry in queue:
        logger.info(
            f"  [{entry.id}] {entry.reviewer_id} assigned {format_datetime(entry.assigned_at)}"
            f" completed {format_datetime(entry.completed_at)}"
        )


async def show_pending(store: EvaluationStore, reviewer_id: str):
    """Show the open assignment count for a reviewer."""
    count = await store.count_pending(reviewer_id)
    logger.info(f"Reviewer {reviewer_id}: {count} pending evaluation(s)")


def preview_reward(args: argparse.Namespace):
    """Print the reward breakdown for the given inputs."""
    policy = RewardPolicy(EvaluationConfig.from_env())

    if args.steps:
        spec = RewardSpec(mode=RewardMode.TIER_STEPS, tier_steps=args.steps)
    else:
        spec = RewardSpec(mode=RewardMode.FIXED_XP, xp=args.xp)

    breakdown = policy.compute(
        spec,
        args.current_xp,
        args.tier,
        quality_score(args.rating),
        args.retry_count,
        args.team_modifier,
    )

    logger.info(f"Base XP:        {breakdown.base_xp}")
    logger.info(f"Quality score:  {breakdown.quality_score}")
    logger.info(f"Retry penalty:  {breakdown.retry_penalty}")
    logger.info(f"Team modifier:  {breakdown.team_modifier}")
    logger.info(f"Final XP:       {breakdown.xp}")
    logger.info(
        f"Next tier gap:  {policy.next_tier_gap(args.current_xp, args.tier)} XP"
    )


async def recredit(pool: asyncpg.Pool, action_id: str):
    """Re-send the XP credit for an approved action."""
    config = EvaluationConfig.from_env()
    api_client = PlatformAPIClient(config)
    engine = EvaluationEngine(EvaluationStore(pool), api_client, config)
    try:
        amount = await engine.recredit_reward(action_id)
        logger.info(f"Re-sent {amount} XP credit for action {action_id}")
    except EvaluationError as e:
        logger.info(f"Error: {e}")
    finally:
        await api_client.close()


async def main():
    parser = argparse.ArgumentParser(description="Peer evaluation inspector")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    inspect_parser = subparsers.add_parser("inspect", help="Inspect an action")
    inspect_parser.add_argument("action_id", help="Action ID")

    pending_parser = subparsers.add_parser("pending", help="Pending count for a reviewer")
    pending_parser.add_argument("reviewer_id", help="Reviewer ID")

    reward_parser = subparsers.add_parser("reward", help="Preview a reward")
    reward_parser.add_argument("--xp", type=int, default=0, help="Fixed XP reward")
    reward_parser.add_argument("--steps", type=int, default=None, help="Tier steps")
    reward_parser.add_argument("--tier", default=None, help="Submitter tier (EX-2)")
    reward_parser.add_argument("--current-xp", type=int, default=0, help="Submitter XP")
    reward_parser.add_argument("--rating", type=float, required=True, help="0-10 rating")
    reward_parser.add_argument("--retry-count", type=int, default=0)
    reward_parser.add_argument("--team-modifier", type=float, default=1.0)

    recredit_parser = subparsers.add_parser(
        "recredit", help="Re-send the XP credit for an approved action"
    )
    recredit_parser.add_argument("action_id", help="Action ID")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    if args.command == "reward":
        preview_reward(args)
        return

    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        print("Error: DATABASE_URL environment variable not set")
        sys.exit(1)

    pool = await asyncpg.create_pool(database_url, min_size=1, max_size=2)

    try:
        store = EvaluationStore(pool)
        if args.command == "inspect":
            await inspect_action(store, args.action_id)
        elif args.command == "pending":
            await show_pending(store, args.reviewer_id)
        elif args.command == "recredit":
            await recredit(pool, args.action_id)
    finally:
        await pool.close()


if __name__ == "__main__":
    asyncio.run(main())
