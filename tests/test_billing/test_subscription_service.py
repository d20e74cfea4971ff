"""Tests for the subscription service: transactional reads and writes."""

from datetime import datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from finwise.billing.errors import SubscriptionNotFoundError
from finwise.services.subscription_service import (
    SubscriptionSyncData,
    apply_lifecycle_transition,
    ensure_stripe_customer,
    find_users_with_lapsed_periods,
    get_subscription,
    get_subscription_record,
    sync_subscription_from_stripe,
)
from finwise.subscriptions.states import utcnow
from finwise.subscriptions.transitions import Transition

pytestmark = pytest.mark.asyncio


def _sync_data(user_id, **overrides) -> SubscriptionSyncData:
    values = {
        "user_id": user_id,
        "stripe_customer_id": "cus_sync",
        "stripe_subscription_id": "sub_sync",
        "stripe_price_id": "price_test_pro",
        "plan_type": "pro",
        "status": "active",
        "current_period_start": datetime(2026, 3, 1),
        "current_period_end": datetime(2026, 4, 1),
        "cancel_at_period_end": False,
        "trial_end": None,
        "has_used_trial": False,
    }
    values.update(overrides)
    return SubscriptionSyncData(**values)


class TestGetSubscriptionRecord:
    async def test_none_when_user_never_subscribed(self, db_session: AsyncSession, make_user):
        user = await make_user()
        assert await get_subscription_record(db_session, user.id) is None

    async def test_returns_snapshot(self, db_session: AsyncSession, make_user, make_subscription):
        user = await make_user()
        await make_subscription(user, plan_type="pro", status="active", billing_status="past_due")
        record = await get_subscription_record(db_session, user.id)
        assert record.user_id == user.id
        assert record.plan_type == "pro"
        assert record.billing_status == "past_due"
        assert record.cancel_at_period_end is False


class TestApplyLifecycleTransition:
    async def test_trial_start_creates_row(self, db_session: AsyncSession, make_user):
        user = await make_user()
        record = await apply_lifecycle_transition(db_session, user.id, Transition.TRIAL_START)
        await db_session.commit()

        assert record.status == "trialing"
        stored = await get_subscription(db_session, user.id)
        assert stored.plan_type == "basic"
        assert stored.status == "trialing"
        assert stored.billing_status is None
        assert stored.has_used_trial is True
        assert stored.trial_end is not None

    async def test_missing_row_raises(self, db_session: AsyncSession, make_user):
        user = await make_user()
        with pytest.raises(SubscriptionNotFoundError):
            await apply_lifecycle_transition(db_session, user.id, Transition.PAYMENT_FAILED)

    async def test_payment_failed_then_succeeded(
        self, db_session: AsyncSession, make_user, make_subscription
    ):
        user = await make_user()
        await make_subscription(user, plan_type="pro", status="active")

        failed = await apply_lifecycle_transition(db_session, user.id, Transition.PAYMENT_FAILED)
        assert failed.billing_status == "past_due"

        recovered = await apply_lifecycle_transition(db_session, user.id, Transition.PAYMENT_SUCCEEDED)
        await db_session.commit()
        assert recovered.billing_status is None
        assert recovered.status == "active"

    async def test_repeat_is_unchanged(self, db_session: AsyncSession, make_user, make_subscription):
        user = await make_user()
        await make_subscription(user, plan_type="pro", status="past_due", billing_status="past_due")

        first = await apply_lifecycle_transition(db_session, user.id, Transition.PAYMENT_SUCCEEDED)
        await db_session.commit()
        second = await apply_lifecycle_transition(db_session, user.id, Transition.PAYMENT_SUCCEEDED)
        await db_session.commit()
        assert second == first

    async def test_recomputes_from_fresh_read(self, session_factory, make_user, make_subscription):
        """A transition never works from an object cached by an earlier read."""
        user = await make_user()
        await make_subscription(user, plan_type="pro", status="active", billing_status=None)

        async with session_factory() as stale_session:
            # Load the row into this session's identity map before it changes.
            cached = await get_subscription(stale_session, user.id)
            assert cached.billing_status is None

            async with session_factory() as other_session:
                await apply_lifecycle_transition(other_session, user.id, Transition.MANUAL_CANCEL)
                await other_session.commit()

            record = await apply_lifecycle_transition(stale_session, user.id, Transition.PERIOD_END)
            await stale_session.commit()

        # period_end only downgrades because the canceled state was re-read.
        assert record.plan_type == "free"
        assert record.billing_status == "unpaid"

    async def test_fresh_read_after_commit_elsewhere(self, session_factory, make_user, make_subscription):
        user = await make_user()
        await make_subscription(user, plan_type="basic", status="trialing")

        async with session_factory() as reader:
            before = await get_subscription_record(reader, user.id)

            async with session_factory() as writer:
                await apply_lifecycle_transition(writer, user.id, Transition.TRIAL_END_SUCCESS)
                await writer.commit()

            after = await get_subscription_record(reader, user.id)

        assert before.status == "trialing"
        assert after.status == "active"


class TestSyncSubscriptionFromStripe:
    async def test_creates_row(self, db_session: AsyncSession, make_user):
        user = await make_user()
        previous, synced = await sync_subscription_from_stripe(db_session, _sync_data(user.id))
        await db_session.commit()

        assert previous is None
        assert synced.plan_type == "pro"
        assert synced.billing_status is None
        stored = await get_subscription(db_session, user.id)
        assert stored.stripe_subscription_id == "sub_sync"
        assert stored.current_period_end == datetime(2026, 4, 1)

    @pytest.mark.parametrize(
        ("status", "billing_status"),
        [("past_due", "past_due"), ("unpaid", "unpaid"), ("canceled", "canceled"), ("trialing", None)],
    )
    async def test_billing_status_follows_stripe_status(
        self, db_session: AsyncSession, make_user, status, billing_status
    ):
        user = await make_user()
        _, synced = await sync_subscription_from_stripe(db_session, _sync_data(user.id, status=status))
        assert synced.billing_status == billing_status

    async def test_returns_previous_state(self, db_session: AsyncSession, make_user, make_subscription):
        user = await make_user()
        await make_subscription(user, plan_type="basic", status="trialing", has_used_trial=True)

        previous, synced = await sync_subscription_from_stripe(db_session, _sync_data(user.id))
        assert previous.status == "trialing"
        assert synced.status == "active"

    async def test_used_trial_is_sticky(self, db_session: AsyncSession, make_user, make_subscription):
        user = await make_user()
        await make_subscription(user, plan_type="basic", status="active", has_used_trial=True)

        _, synced = await sync_subscription_from_stripe(
            db_session, _sync_data(user.id, has_used_trial=False)
        )
        assert synced.has_used_trial is True


class TestEnsureStripeCustomer:
    async def test_returns_existing_customer(self, db_session: AsyncSession, make_user):
        user = await make_user(stripe_customer_id="cus_existing")
        with patch(
            "finwise.services.subscription_service.create_customer", new_callable=AsyncMock
        ) as mock_create:
            customer_id = await ensure_stripe_customer(db_session, MagicMock(), user)
        assert customer_id == "cus_existing"
        mock_create.assert_not_awaited()

    async def test_creates_and_links_customer(self, db_session: AsyncSession, make_user):
        user = await make_user()
        client = MagicMock()
        with patch(
            "finwise.services.subscription_service.create_customer",
            new_callable=AsyncMock,
            return_value=SimpleNamespace(id="cus_new"),
        ) as mock_create:
            customer_id = await ensure_stripe_customer(db_session, client, user)
        await db_session.commit()

        assert customer_id == "cus_new"
        assert user.stripe_customer_id == "cus_new"
        mock_create.assert_awaited_once_with(
            client, email=user.email, name=user.name, user_id=str(user.id)
        )


class TestFindUsersWithLapsedPeriods:
    async def test_selects_only_lapsed_problem_subscriptions(
        self, db_session: AsyncSession, make_user, make_subscription
    ):
        now = utcnow()
        past = now - timedelta(days=1)
        future = now + timedelta(days=10)

        lapsed_past_due = await make_user()
        await make_subscription(lapsed_past_due, billing_status="past_due", current_period_end=past)
        lapsed_canceled = await make_user()
        await make_subscription(lapsed_canceled, billing_status="canceled", current_period_end=past)
        still_running = await make_user()
        await make_subscription(still_running, billing_status="canceled", current_period_end=future)
        healthy = await make_user()
        await make_subscription(healthy, billing_status=None, current_period_end=past)
        already_downgraded = await make_user()
        await make_subscription(
            already_downgraded, plan_type="free", billing_status="unpaid", current_period_end=past
        )

        user_ids = await find_users_with_lapsed_periods(db_session, now)
        assert set(user_ids) == {lapsed_past_due.id, lapsed_canceled.id}
