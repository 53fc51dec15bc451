"""
Subscription lifecycle tests: tier changes, status transitions, history and audit.
"""
import pytest
from unittest.mock import AsyncMock, patch

from models import AuditAction, PlanTier, SubscriptionAction, SubscriptionStatusValue
from services.subscription_service import (
    SubscriptionChangeError,
    cancel_subscription,
    change_subscription,
    reactivate_subscription,
    suspend_subscription,
)

ADMIN = {"user_id": "admin-1", "role": "ROLE_ADMIN", "name": "Ops Admin"}


def _echo_update(existing):
    """update_subscription stand-in applying the patch and pushing the entry."""
    def _update(account_id, patch_doc, entry, expected=None):
        return {**existing, **patch_doc, "history": list(existing.get("history", [])) + [entry]}
    return _update


@pytest.fixture
def audit():
    with patch("services.subscription_service.create_audit_log", new_callable=AsyncMock) as mock:
        yield mock


@pytest.mark.asyncio
async def test_upgrade_writes_one_history_entry(store, account_doc, subscription_doc, audit):
    existing = subscription_doc(tier="STARTER", overrides={"max_units": 25})
    store.find_account_with_properties_and_units.return_value = account_doc(properties=2, units=4)
    store.find_subscription.return_value = existing
    store.update_subscription.side_effect = _echo_update(existing)

    result = await change_subscription("acct-1", ADMIN, tier="GROWTH", reason="Needs more units")

    store.update_subscription.assert_awaited_once()
    _, patch_doc, entry = store.update_subscription.call_args.args
    assert entry["action"] == "UPGRADED"
    assert entry["previous_tier"] == "STARTER"
    assert entry["new_tier"] == "GROWTH"
    assert entry["previous_price"] == 599
    assert entry["new_price"] == 1199
    assert entry["changed_by_name"] == "Ops Admin"
    assert entry["reason"] == "Needs more units"
    assert patch_doc["tier"] == "GROWTH"
    assert patch_doc["monthly_price"] == 1199
    # overrides granted on the old tier are dropped
    assert patch_doc["overrides"]["max_units"] is None

    assert result.tier == PlanTier.GROWTH
    assert len(result.history) == 1
    assert result.history[-1].action == SubscriptionAction.UPGRADED

    audit.assert_awaited_once()
    assert audit.call_args.kwargs["action"] == AuditAction.SUBSCRIPTION_CHANGED
    assert audit.call_args.kwargs["before_state"]["tier"] == "STARTER"
    assert audit.call_args.kwargs["after_state"]["tier"] == "GROWTH"


@pytest.mark.asyncio
async def test_downgrade_below_usage_is_refused(store, account_doc, subscription_doc, audit):
    store.find_account_with_properties_and_units.return_value = account_doc(properties=30, units=60)
    store.find_subscription.return_value = subscription_doc(tier="PRO")

    with pytest.raises(SubscriptionChangeError) as exc:
        await change_subscription("acct-1", ADMIN, tier="GROWTH")

    assert exc.value.status_code == 400
    assert exc.value.message == (
        "Cannot downgrade: Landlord has 30 properties, but Growth plan allows only 20"
    )
    assert exc.value.details == {"currentProperties": 30, "planLimit": 20}
    store.update_subscription.assert_not_awaited()
    audit.assert_not_awaited()


@pytest.mark.asyncio
async def test_downgrade_with_custom_limits_is_allowed(store, account_doc, subscription_doc, audit):
    existing = subscription_doc(tier="PRO")
    store.find_account_with_properties_and_units.return_value = account_doc(properties=30, units=60)
    store.find_subscription.return_value = existing
    store.update_subscription.side_effect = _echo_update(existing)

    result = await change_subscription(
        "acct-1", ADMIN, tier="GROWTH", custom_limits={"max_properties": 40, "max_units": 80}
    )

    assert result.tier == PlanTier.GROWTH
    assert result.overrides.max_properties == 40
    assert result.overrides.max_units == 80
    assert result.history[-1].action == SubscriptionAction.DOWNGRADED


@pytest.mark.asyncio
async def test_custom_limits_merge_without_tier_change(store, account_doc, subscription_doc, audit):
    existing = subscription_doc(tier="GROWTH", overrides={"max_properties": 30})
    store.find_account_with_properties_and_units.return_value = account_doc()
    store.find_subscription.return_value = existing
    store.update_subscription.side_effect = _echo_update(existing)

    result = await change_subscription("acct-1", ADMIN, custom_limits={"max_units": 75})

    assert result.overrides.max_properties == 30
    assert result.overrides.max_units == 75
    assert result.history[-1].action == SubscriptionAction.UPDATED


@pytest.mark.asyncio
async def test_invalid_tier(store, account_doc, audit):
    store.find_account_with_properties_and_units.return_value = account_doc()

    with pytest.raises(SubscriptionChangeError) as exc:
        await change_subscription("acct-1", ADMIN, tier="GOLD")

    assert exc.value.message == "Invalid plan"
    assert exc.value.status_code == 400


@pytest.mark.asyncio
async def test_cancel_twice_raises_on_second_call(store, account_doc, subscription_doc, audit):
    existing = subscription_doc(tier="GROWTH")
    store.find_account_with_properties_and_units.return_value = account_doc()
    store.find_subscription.return_value = existing
    store.update_subscription.side_effect = _echo_update(existing)

    cancelled = await cancel_subscription("acct-1", ADMIN)

    assert cancelled.status == SubscriptionStatusValue.CANCELLED
    assert cancelled.cancelled_at is not None
    assert cancelled.history[-1].action == SubscriptionAction.CANCELLED

    store.find_subscription.return_value = cancelled.model_dump(mode="json")
    with pytest.raises(SubscriptionChangeError) as exc:
        await cancel_subscription("acct-1", ADMIN)

    assert exc.value.status_code == 409
    assert store.update_subscription.await_count == 1


@pytest.mark.asyncio
async def test_suspend(store, account_doc, subscription_doc, audit):
    existing = subscription_doc(tier="PRO")
    store.find_account_with_properties_and_units.return_value = account_doc()
    store.find_subscription.return_value = existing
    store.update_subscription.side_effect = _echo_update(existing)

    result = await suspend_subscription("acct-1", ADMIN, reason="Chargeback")

    assert result.status == SubscriptionStatusValue.SUSPENDED
    assert result.history[-1].reason == "Chargeback"


@pytest.mark.asyncio
async def test_reactivate_cancelled(store, account_doc, subscription_doc, audit):
    existing = subscription_doc(status="CANCELLED", cancelled_at="2026-01-10T00:00:00+00:00")
    store.find_account_with_properties_and_units.return_value = account_doc()
    store.find_subscription.return_value = existing
    store.update_subscription.side_effect = _echo_update(existing)

    result = await reactivate_subscription("acct-1", ADMIN)

    assert result.status == SubscriptionStatusValue.ACTIVE
    assert result.cancelled_at is None
    assert result.history[-1].action == SubscriptionAction.REACTIVATED
    assert result.history[-1].reason == "REACTIVATED by admin"


@pytest.mark.asyncio
async def test_reactivate_active_raises(store, account_doc, subscription_doc, audit):
    store.find_account_with_properties_and_units.return_value = account_doc()
    store.find_subscription.return_value = subscription_doc()

    with pytest.raises(SubscriptionChangeError) as exc:
        await reactivate_subscription("acct-1", ADMIN)

    assert exc.value.status_code == 409
    store.update_subscription.assert_not_awaited()


@pytest.mark.asyncio
async def test_first_change_creates_the_subscription(store, account_doc, audit):
    store.find_account_with_properties_and_units.return_value = account_doc()

    result = await change_subscription("acct-1", ADMIN, tier="PRO", notes="Annual deal")

    store.create_subscription.assert_awaited_once()
    store.update_subscription.assert_not_awaited()
    data, entry = store.create_subscription.call_args.args
    assert data["account_id"] == "acct-1"
    assert data["tier"] == "PRO"
    assert data["monthly_price"] == 2999
    assert data["subscription_id"]
    assert entry["action"] == "CREATED"
    assert entry["reason"] == "Subscription created by admin"
    assert result.notes == "Annual deal"
    assert len(result.history) == 1
    assert audit.call_args.kwargs["before_state"] is None


def _guarded_store(existing):
    """update_subscription stand-in that only writes when `expected` still matches the stored doc."""
    stored = dict(existing)

    def _update(account_id, patch_doc, entry, expected=None):
        if any(stored.get(k) != v for k, v in (expected or {}).items()):
            return None
        stored.update(patch_doc)
        stored["history"] = list(stored.get("history", [])) + [entry]
        return dict(stored)
    return stored, _update


@pytest.mark.asyncio
async def test_update_is_conditioned_on_the_state_it_was_decided_on(store, account_doc, subscription_doc, audit):
    existing = subscription_doc(tier="GROWTH")
    store.find_account_with_properties_and_units.return_value = account_doc()
    store.find_subscription.return_value = existing
    store.update_subscription.side_effect = _echo_update(existing)

    await suspend_subscription("acct-1", ADMIN)

    assert store.update_subscription.call_args.kwargs["expected"] == {"tier": "GROWTH", "status": "ACTIVE"}


@pytest.mark.asyncio
async def test_concurrent_cancels_record_one_cancellation(store, account_doc, subscription_doc, audit):
    """Both requests read ACTIVE; only the first write matches and the second gets a 409."""
    existing = subscription_doc(tier="GROWTH")
    stored, update = _guarded_store(existing)
    store.find_account_with_properties_and_units.return_value = account_doc()
    store.find_subscription.return_value = existing
    store.update_subscription.side_effect = update

    first = await cancel_subscription("acct-1", ADMIN)
    with pytest.raises(SubscriptionChangeError) as exc:
        await cancel_subscription("acct-1", ADMIN)

    assert first.status == SubscriptionStatusValue.CANCELLED
    assert exc.value.status_code == 409
    assert [e["action"] for e in stored["history"]] == ["CANCELLED"]
    audit.assert_awaited_once()


@pytest.mark.asyncio
async def test_concurrent_first_change_answers_conflict(store, account_doc, audit):
    store.find_account_with_properties_and_units.return_value = account_doc()
    store.create_subscription.side_effect = None
    store.create_subscription.return_value = None

    with pytest.raises(SubscriptionChangeError) as exc:
        await change_subscription("acct-1", ADMIN, tier="PRO")

    assert exc.value.status_code == 409
    audit.assert_not_awaited()


@pytest.mark.asyncio
async def test_cancel_with_tier_change_records_the_cancellation(store, account_doc, subscription_doc, audit):
    existing = subscription_doc(tier="STARTER")
    store.find_account_with_properties_and_units.return_value = account_doc()
    store.find_subscription.return_value = existing
    store.update_subscription.side_effect = _echo_update(existing)

    result = await change_subscription("acct-1", ADMIN, tier="GROWTH", status="CANCELLED")

    assert result.tier == PlanTier.GROWTH
    assert result.status == SubscriptionStatusValue.CANCELLED
    entry = result.history[-1]
    assert entry.action == SubscriptionAction.CANCELLED
    assert entry.previous_tier == PlanTier.STARTER
    assert entry.new_tier == PlanTier.GROWTH
