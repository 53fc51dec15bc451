from database import database
from models import AuditLog, AuditAction, UserRole
from typing import Optional, Dict, Any, List
import logging

logger = logging.getLogger(__name__)

def calculate_diff(before: Dict[str, Any], after: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """Fields whose value differs between two snapshots: {field: {"from": ..., "to": ...}}."""
    return {
        key: {"from": before.get(key), "to": after.get(key)}
        for key in sorted(set(before) | set(after))
        if before.get(key) != after.get(key)
    }

async def create_audit_log(
    action: AuditAction,
    actor_role: Optional[UserRole] = None,
    actor_id: Optional[str] = None,
    account_id: Optional[str] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    before_state: Optional[Dict[str, Any]] = None,
    after_state: Optional[Dict[str, Any]] = None,
    metadata: Optional[Dict[str, Any]] = None,
    reason_code: Optional[str] = None,
) -> str:
    """Record an audit entry for a landlord account. Returns the audit_id, or "" if the write failed.

    When both snapshots are given, metadata gains `diff` (changed fields only)
    and `changes_count`. Audit failures are logged and never fail the caller.
    """
    try:
        enriched_metadata = dict(metadata or {})
        if before_state and after_state:
            diff = calculate_diff(before_state, after_state)
            enriched_metadata["diff"] = diff
            enriched_metadata["changes_count"] = len(diff)

        audit_log = AuditLog(
            action=action,
            actor_role=actor_role,
            actor_id=actor_id,
            account_id=account_id,
            resource_type=resource_type,
            resource_id=resource_id,
            before_state=before_state,
            after_state=after_state,
            metadata=enriched_metadata or None,
            reason_code=reason_code,
        )

        await database.get_db().audit_logs.insert_one(audit_log.model_dump(mode="json"))
        logger.info(
            "Audit log %s account_id=%s resource=%s/%s",
            action.value, account_id, resource_type, resource_id
        )
        return audit_log.audit_id
    except Exception as e:
        logger.error(f"Failed to create audit log {action.value} for account {account_id}: {e}")
        return ""

async def get_audit_logs_for_account(
    account_id: str,
    action: Optional[AuditAction] = None,
    limit: int = 50
) -> List[Dict[str, Any]]:
    """Get recent audit logs for a landlord account."""
    try:
        db = database.get_db()
        query: Dict[str, Any] = {"account_id": account_id}
        if action:
            query["action"] = action.value
        cursor = db.audit_logs.find(query, {"_id": 0}).sort("timestamp", -1).limit(limit)

        return await cursor.to_list(length=limit)
    except Exception as e:
        logger.error(f"Failed to get audit logs for account: {e}")
        return []
