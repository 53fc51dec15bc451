"""
Audit log tests: subscription snapshots are diffed into metadata.
"""
import pytest

from models import AuditAction
from utils.audit import calculate_diff, create_audit_log


def test_diff_lists_changed_fields_only():
    before = {"tier": "STARTER", "status": "ACTIVE", "monthly_price": 599, "notes": None}
    after = {"tier": "GROWTH", "status": "ACTIVE", "monthly_price": 1199, "notes": None}

    assert calculate_diff(before, after) == {
        "monthly_price": {"from": 599, "to": 1199},
        "tier": {"from": "STARTER", "to": "GROWTH"},
    }


@pytest.mark.asyncio
async def test_subscription_change_stores_diff(audit_db):
    audit_id = await create_audit_log(
        action=AuditAction.SUBSCRIPTION_CHANGED,
        account_id="acct-1",
        resource_type="subscription",
        before_state={"tier": "PRO", "status": "ACTIVE"},
        after_state={"tier": "PRO", "status": "SUSPENDED"},
        metadata={"action": "SUSPENDED"},
    )

    assert audit_id
    doc = audit_db.audit_logs.insert_one.call_args.args[0]
    assert doc["action"] == "SUBSCRIPTION_CHANGED"
    assert doc["metadata"]["diff"] == {"status": {"from": "ACTIVE", "to": "SUSPENDED"}}
    assert doc["metadata"]["changes_count"] == 1


@pytest.mark.asyncio
async def test_audit_failure_does_not_raise(audit_db):
    audit_db.audit_logs.insert_one.side_effect = RuntimeError("mongo down")

    assert await create_audit_log(action=AuditAction.PLAN_LIMIT_DENIED, account_id="acct-1") == ""
