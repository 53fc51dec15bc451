"""Account Store - MongoDB access for accounts, ownership and subscriptions.

The plan engine treats this module as its only persistence boundary:
- find_account_with_properties_and_units / find_subscription for reads
- create_subscription / update_subscription for lifecycle writes; each write
  appends exactly one history entry in the same single-document operation
- count_* / insert_* accept a session so creation can re-check limits inside
  the write transaction; claim_usage_slot serializes those transactions per
  account
"""
from collections import defaultdict
from typing import Any, Dict, List, Optional
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError
from database import database
import logging

logger = logging.getLogger(__name__)


class AccountStore:
    """Reads and writes used by the plan engine. Store faults propagate to the caller."""

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def find_account_with_properties_and_units(self, account_id: str) -> Optional[Dict[str, Any]]:
        """Account document with `properties`, each carrying its `units`. None if missing."""
        db = database.get_db()

        account = await db.accounts.find_one({"account_id": account_id}, {"_id": 0})
        if not account:
            return None

        properties = await db.properties.find(
            {"account_id": account_id},
            {"_id": 0}
        ).to_list(length=None)

        property_ids = [p["property_id"] for p in properties]
        units: List[Dict[str, Any]] = []
        if property_ids:
            units = await db.units.find(
                {"property_id": {"$in": property_ids}},
                {"_id": 0, "unit_id": 1, "property_id": 1}
            ).to_list(length=None)

        units_by_property = defaultdict(list)
        for unit in units:
            units_by_property[unit["property_id"]].append(unit)

        account["properties"] = [
            {**prop, "units": units_by_property.get(prop["property_id"], [])}
            for prop in properties
        ]
        return account

    async def find_subscription(self, account_id: str, session=None) -> Optional[Dict[str, Any]]:
        db = database.get_db()
        return await db.subscriptions.find_one(
            {"account_id": account_id},
            {"_id": 0},
            session=session
        )

    async def find_property(self, property_id: str, session=None) -> Optional[Dict[str, Any]]:
        db = database.get_db()
        return await db.properties.find_one(
            {"property_id": property_id},
            {"_id": 0},
            session=session
        )

    async def list_subscriptions(
        self,
        skip: int = 0,
        limit: int = 20,
        tier: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        db = database.get_db()
        query: Dict[str, Any] = {}
        if tier:
            query["tier"] = tier
        if status:
            query["status"] = status
        cursor = db.subscriptions.find(
            query,
            {"_id": 0, "history": 0}
        ).sort("changed_at", -1).skip(skip).limit(limit)
        return await cursor.to_list(length=limit)

    # -------------------------------------------------------------------------
    # Counting (authoritative re-checks)
    # -------------------------------------------------------------------------

    async def count_properties(self, account_id: str, session=None) -> int:
        db = database.get_db()
        return await db.properties.count_documents({"account_id": account_id}, session=session)

    async def count_units(self, account_id: str, session=None) -> int:
        """Units across every property the account owns."""
        db = database.get_db()
        property_ids = await db.properties.distinct(
            "property_id",
            {"account_id": account_id},
            session=session
        )
        if not property_ids:
            return 0
        return await db.units.count_documents(
            {"property_id": {"$in": property_ids}},
            session=session
        )

    async def claim_usage_slot(self, account_id: str, session=None) -> Optional[Dict[str, Any]]:
        """Bump the account's usage_version inside a creating transaction.

        Every property or unit creation writes this one document before counting,
        so two transactions for the same account conflict instead of both
        committing against the same snapshot count. None if the account is missing.
        """
        db = database.get_db()
        return await db.accounts.find_one_and_update(
            {"account_id": account_id},
            {"$inc": {"usage_version": 1}},
            projection={"_id": 0, "account_id": 1, "usage_version": 1},
            return_document=ReturnDocument.AFTER,
            session=session,
        )

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def insert_property(self, doc: Dict[str, Any], session=None) -> Dict[str, Any]:
        db = database.get_db()
        await db.properties.insert_one(doc, session=session)
        doc.pop("_id", None)
        return doc

    async def insert_unit(self, doc: Dict[str, Any], session=None) -> Dict[str, Any]:
        db = database.get_db()
        await db.units.insert_one(doc, session=session)
        doc.pop("_id", None)
        return doc

    async def create_subscription(
        self,
        data: Dict[str, Any],
        history_entry: Dict[str, Any],
    ) -> Optional[Dict[str, Any]]:
        """Insert the subscription with its first history entry.

        None when another request created the account's subscription first
        (unique account_id index).
        """
        db = database.get_db()
        doc = {**data, "history": [history_entry]}
        try:
            await db.subscriptions.insert_one(doc)
        except DuplicateKeyError:
            logger.warning("Subscription already exists account_id=%s", data.get("account_id"))
            return None
        doc.pop("_id", None)
        logger.info(
            "Subscription created account_id=%s tier=%s",
            data.get("account_id"), data.get("tier")
        )
        return doc

    async def update_subscription(
        self,
        account_id: str,
        patch: Dict[str, Any],
        history_entry: Dict[str, Any],
        expected: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        """Apply `patch` and push `history_entry` atomically. Returns the updated document.

        `expected` holds the field values the change was decided against. If the
        stored document no longer matches them nothing is written and None is returned.
        """
        db = database.get_db()
        query = {**(expected or {}), "account_id": account_id}
        updated = await db.subscriptions.find_one_and_update(
            query,
            {"$set": patch, "$push": {"history": history_entry}},
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            logger.warning(
                "Subscription update skipped account_id=%s action=%s expected=%s",
                account_id, history_entry.get("action"), expected
            )
            return None
        logger.info(
            "Subscription updated account_id=%s action=%s",
            account_id, history_entry.get("action")
        )
        return updated


# Singleton instance
account_store = AccountStore()
