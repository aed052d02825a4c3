# evaluation-core - Peer evaluation engine
# SPDX-License-Identifier: AGPL-3.0-or-later
# Full license: https://www.gnu.org/licenses/agpl-3.0.html

"""Tests for guest override resolution."""

import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from evaluation.config import EvaluationConfig
from evaluation.errors import MisconfiguredOverride
from evaluation.models import (
    Action,
    ActionStatus,
    Challenge,
    ReviewMode,
    Reviewer,
    RewardSpec,
    Submitter,
)
from evaluation.override import GuestOverrideResolver, is_guest

ADMIN = Reviewer(id="admin-1", name="Admin", email="admin@example.com", org_unit="ADM")


def make_submitter(roles=(), markers=("DJTB-CUB",)):
    return Submitter(
        id="user-1",
        name="Collaborator",
        current_xp=0,
        tier="EX-1",
        org_unit="DJTB",
        roles=tuple(roles),
        org_markers=tuple(markers),
    )


def make_action(submitter, campaign_id="camp-1", sponsored=True, dual=True):
    return Action(
        id="action-1",
        submitter=submitter,
        status=ActionStatus.SUBMITTED,
        challenge=Challenge(
            id="ch-1",
            title="Field inspection",
            require_two_leader_eval=dual,
            reward=RewardSpec(xp=50),
        ),
        campaign_id=campaign_id,
        campaign_sponsored=sponsored,
    )


def make_store(reviewer=None, email_matches=None):
    store = MagicMock()
    store.fetch_reviewer = AsyncMock(return_value=reviewer)
    store.find_reviewers_by_email = AsyncMock(return_value=email_matches or [])
    return store


class TestIsGuest:
    """Guest detection by role and unit markers."""

    def test_guest_role(self):
        assert is_guest(make_submitter(roles=("invited",)))

    def test_guest_unit_marker(self):
        assert is_guest(make_submitter(markers=("CONVIDADOS",)))
        assert is_guest(make_submitter(markers=("DJTB", " externo ")))

    def test_regular_collaborator(self):
        assert not is_guest(make_submitter(roles=("colaborador",)))

    def test_custom_markers(self):
        submitter = make_submitter(markers=("PARCEIRO",))
        assert is_guest(submitter, guest_unit_markers=("parceiro",))


class TestGuestOverrideResolver:
    """Review plan resolution."""

    @pytest.mark.asyncio
    async def test_regular_dual_review(self):
        resolver = GuestOverrideResolver(make_store(), EvaluationConfig())
        plan = await resolver.resolve(make_action(make_submitter()))
        assert plan.mode == ReviewMode.DUAL
        assert plan.designated_reviewer is None

    @pytest.mark.asyncio
    async def test_regular_single_review(self):
        resolver = GuestOverrideResolver(make_store(), EvaluationConfig())
        plan = await resolver.resolve(make_action(make_submitter(), dual=False))
        assert plan.mode == ReviewMode.SINGLE

    @pytest.mark.asyncio
    async def test_guest_without_sponsored_campaign_uses_normal_rules(self):
        store = make_store(reviewer=ADMIN)
        resolver = GuestOverrideResolver(store, EvaluationConfig(guest_reviewer_id="admin-1"))
        guest = make_submitter(roles=("invited",))

        plan = await resolver.resolve(make_action(guest, sponsored=False))
        assert plan.mode == ReviewMode.DUAL

        plan = await resolver.resolve(make_action(guest, campaign_id=None))
        assert plan.mode == ReviewMode.DUAL
        store.fetch_reviewer.assert_not_called()

    @pytest.mark.asyncio
    async def test_guest_override_by_account_id(self):
        store = make_store(reviewer=ADMIN)
        resolver = GuestOverrideResolver(store, EvaluationConfig(guest_reviewer_id="admin-1"))

        plan = await resolver.resolve(make_action(make_submitter(roles=("invited",))))

        assert plan.mode == ReviewMode.SINGLE_OVERRIDE
        assert plan.is_override
        assert plan.designated_reviewer.id == "admin-1"
        store.fetch_reviewer.assert_awaited_once_with("admin-1")

    @pytest.mark.asyncio
    async def test_missing_account_fails_closed(self):
        resolver = GuestOverrideResolver(
            make_store(reviewer=None), EvaluationConfig(guest_reviewer_id="ghost")
        )
        with pytest.raises(MisconfiguredOverride, match="ghost"):
            await resolver.resolve(make_action(make_submitter(roles=("invited",))))

    @pytest.mark.asyncio
    async def test_override_by_unique_email(self):
        store = make_store(email_matches=[ADMIN])
        resolver = GuestOverrideResolver(
            store, EvaluationConfig(guest_reviewer_email="admin@example.com")
        )
        plan = await resolver.resolve(make_action(make_submitter(markers=("EXTERNO",))))
        assert plan.designated_reviewer is ADMIN

    @pytest.mark.asyncio
    async def test_ambiguous_email_fails_closed(self):
        other = Reviewer(id="admin-2", name="Admin 2", email="admin@example.com", org_unit="ADM")
        store = make_store(email_matches=[ADMIN, other])
        resolver = GuestOverrideResolver(
            store, EvaluationConfig(guest_reviewer_email="admin@example.com")
        )
        with pytest.raises(MisconfiguredOverride, match="exactly one"):
            await resolver.resolve(make_action(make_submitter(roles=("invited",))))

    @pytest.mark.asyncio
    async def test_unconfigured_fails_closed(self):
        resolver = GuestOverrideResolver(make_store(), EvaluationConfig())
        with pytest.raises(MisconfiguredOverride):
            await resolver.resolve(make_action(make_submitter(roles=("invited",))))
