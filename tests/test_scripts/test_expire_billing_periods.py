"""Tests for the scheduled period-end sweep."""

from datetime import timedelta

import pytest

from finwise.services.subscription_service import get_subscription_record
from finwise.subscriptions.states import utcnow
from scripts.expire_billing_periods import expire_lapsed_periods

pytestmark = pytest.mark.asyncio


class TestExpireLapsedPeriods:
    async def test_downgrades_lapsed_subscriptions(self, session_factory, make_user, make_subscription):
        past = utcnow() - timedelta(hours=1)
        past_due = await make_user()
        await make_subscription(past_due, plan_type="pro", billing_status="past_due", current_period_end=past)
        canceled = await make_user()
        await make_subscription(
            canceled, plan_type="basic", billing_status="canceled",
            cancel_at_period_end=True, current_period_end=past,
        )
        healthy = await make_user()
        await make_subscription(healthy, plan_type="pro", current_period_end=past)

        processed = await expire_lapsed_periods(session_factory)

        assert processed == 2
        async with session_factory() as session:
            for user in (past_due, canceled):
                record = await get_subscription_record(session, user.id)
                assert (record.plan_type, record.status, record.billing_status) == ("free", "active", "unpaid")
            untouched = await get_subscription_record(session, healthy.id)
        assert untouched.plan_type == "pro"
        assert untouched.billing_status is None

    async def test_second_run_is_noop(self, session_factory, make_user, make_subscription):
        user = await make_user()
        await make_subscription(
            user, plan_type="pro", billing_status="past_due", current_period_end=utcnow() - timedelta(days=1)
        )

        assert await expire_lapsed_periods(session_factory) == 1
        assert await expire_lapsed_periods(session_factory) == 0

    async def test_running_periods_untouched(self, session_factory, make_user, make_subscription):
        user = await make_user()
        await make_subscription(
            user, plan_type="pro", billing_status="canceled", current_period_end=utcnow() + timedelta(days=3)
        )
        assert await expire_lapsed_periods(session_factory) == 0
