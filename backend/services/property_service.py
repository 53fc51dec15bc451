"""Guarded creation of properties and units.

The route runs the plan gate first. The limit is then re-checked against a
fresh count inside the write transaction. Each transaction first bumps the
account document (claim_usage_slot), so two concurrent creations for one
account write the same document: MongoDB aborts the loser with a
TransientTransactionError and the retry counts again, now seeing the winner.
"""
from typing import Any, Awaitable, Callable, Dict
from pymongo.errors import PyMongoError
from database import database
from models import AuditAction, Property, Unit, UserRole
from services.account_store import account_store
from services.plan_gates import PlanLimitError, evaluate_capacity
from services.subscription_status import get_subscription_status
from services.usage_resolver import AccountNotFoundError
from utils.audit import create_audit_log
import logging

logger = logging.getLogger(__name__)

MAX_COMMIT_ATTEMPTS = 3


class PlanLimitReached(Exception):
    """Raised inside the transaction when the re-check fails; aborts the write."""

    def __init__(self, error: PlanLimitError):
        self.error = error
        super().__init__(error.message)


class PropertyNotFoundError(LookupError):
    def __init__(self, property_id: str):
        self.property_id = property_id
        super().__init__(f"Property not found: {property_id}")


class CreationConflictError(RuntimeError):
    """Concurrent creations for the account kept conflicting; the client should retry."""

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Concurrent changes for account {account_id}, please retry")


def _actor_role(actor: Dict[str, Any]):
    try:
        return UserRole(actor.get("role"))
    except ValueError:
        return None


async def _run_serialized(account_id: str, write: Callable[[Any], Awaitable[None]]):
    """Run `write(session)` in a transaction that first claims the account document.

    Write conflicts are retried up to MAX_COMMIT_ATTEMPTS times; any other
    store fault propagates.
    """
    for attempt in range(1, MAX_COMMIT_ATTEMPTS + 1):
        try:
            async with database.transaction() as session:
                claimed = await account_store.claim_usage_slot(account_id, session=session)
                if claimed is None:
                    raise AccountNotFoundError(account_id)
                await write(session)
            return
        except PyMongoError as e:
            if not e.has_error_label("TransientTransactionError"):
                raise
            logger.warning(
                "Write conflict creating for account_id=%s attempt=%s/%s",
                account_id, attempt, MAX_COMMIT_ATTEMPTS
            )
    raise CreationConflictError(account_id)


def _recheck(status, resource: str, account_id: str, current: int):
    result = evaluate_capacity(status, resource, used=current)
    if not result.allowed:
        logger.warning(
            "Creation refused at commit account_id=%s resource=%s count=%s code=%s",
            account_id, resource, current, result.error.kind.value
        )
        raise PlanLimitReached(result.error)


async def create_property(account_id: str, fields: Dict[str, Any], actor: Dict[str, Any]) -> Property:
    status = await get_subscription_status(account_id)
    property_obj = Property(account_id=account_id, **fields)
    doc = property_obj.model_dump(mode="json")

    async def write(session):
        current = await account_store.count_properties(account_id, session=session)
        _recheck(status, "properties", account_id, current)
        await account_store.insert_property(dict(doc), session=session)

    await _run_serialized(account_id, write)

    await create_audit_log(
        action=AuditAction.PROPERTY_CREATED,
        actor_role=_actor_role(actor),
        actor_id=actor.get("user_id"),
        account_id=account_id,
        resource_type="property",
        resource_id=property_obj.property_id,
        metadata={"name": property_obj.name, "city": property_obj.city},
    )
    logger.info(f"Property created for account {account_id}: {property_obj.property_id}")
    return property_obj


async def create_unit(
    account_id: str,
    property_id: str,
    fields: Dict[str, Any],
    actor: Dict[str, Any],
) -> Unit:
    """Create a unit under a property the account owns."""
    status = await get_subscription_status(account_id)
    unit_obj = Unit(account_id=account_id, property_id=property_id, **fields)
    doc = unit_obj.model_dump(mode="json")

    async def write(session):
        prop = await account_store.find_property(property_id, session=session)
        if not prop or prop.get("account_id") != account_id:
            raise PropertyNotFoundError(property_id)

        current = await account_store.count_units(account_id, session=session)
        _recheck(status, "units", account_id, current)
        await account_store.insert_unit(dict(doc), session=session)

    await _run_serialized(account_id, write)

    await create_audit_log(
        action=AuditAction.UNIT_CREATED,
        actor_role=_actor_role(actor),
        actor_id=actor.get("user_id"),
        account_id=account_id,
        resource_type="unit",
        resource_id=unit_obj.unit_id,
        metadata={"property_id": property_id, "unit_number": unit_obj.unit_number},
    )
    logger.info(f"Unit created for account {account_id}: {unit_obj.unit_id} (property {property_id})")
    return unit_obj
