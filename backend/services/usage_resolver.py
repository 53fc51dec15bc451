"""Usage Resolver - subscription (or implicit default) plus live usage counts.

An account with no subscription document is resolved to an explicit default
here and only here: STARTER, ACTIVE, no overrides, started at account creation.
Counts are recomputed on every call.
"""
from dataclasses import dataclass
from typing import Any, Dict
from models import Account, Subscription, SubscriptionStatusValue
from services.account_store import account_store
from services.plan_catalog import DEFAULT_TIER, plan_catalog
import logging

logger = logging.getLogger(__name__)


class AccountNotFoundError(LookupError):
    """Raised when the account id does not exist in the store."""

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}")


@dataclass
class ResolvedUsage:
    account: Account
    subscription: Subscription
    is_default: bool
    current_properties: int
    current_units: int
    current_users: int


def default_subscription(account: Account) -> Subscription:
    """Implicit subscription for accounts that were never provisioned."""
    return Subscription(
        subscription_id=None,
        account_id=account.account_id,
        tier=DEFAULT_TIER,
        status=SubscriptionStatusValue.ACTIVE,
        monthly_price=plan_catalog.get_plan(DEFAULT_TIER).monthly_price,
        start_date=account.created_at,
    )


def _count_usage(account_doc: Dict[str, Any]) -> Dict[str, int]:
    properties = account_doc.get("properties") or []
    return {
        "current_properties": len(properties),
        "current_units": sum(len(p.get("units") or []) for p in properties),
        # The landlord plus any invited team members
        "current_users": 1 + len(account_doc.get("team_member_ids") or []),
    }


async def resolve(account_id: str) -> ResolvedUsage:
    account_doc = await account_store.find_account_with_properties_and_units(account_id)
    if not account_doc:
        raise AccountNotFoundError(account_id)

    account = Account.model_validate(account_doc)
    subscription_doc = await account_store.find_subscription(account_id)

    if subscription_doc:
        subscription = Subscription.model_validate(subscription_doc)
        is_default = False
    else:
        subscription = default_subscription(account)
        is_default = True

    counts = _count_usage(account_doc)
    logger.debug(
        "Resolved usage account_id=%s tier=%s default=%s counts=%s",
        account_id, subscription.tier.value, is_default, counts
    )
    return ResolvedUsage(
        account=account,
        subscription=subscription,
        is_default=is_default,
        **counts,
    )
