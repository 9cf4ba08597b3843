"""Withdrawal Data Access Layer -- MongoDB operations for the withdrawals collection."""

import logging
from datetime import datetime
from typing import Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from squares.models.common import WithdrawalStatus
from squares.models.withdrawal import WithdrawalRequest

logger = logging.getLogger("squares.dal.withdrawals")

COLLECTION = "withdrawals"
LEASE_COLLECTION = "withdrawal_leases"


def _to_request(doc: dict) -> WithdrawalRequest:
    doc["_id"] = str(doc["_id"])
    return WithdrawalRequest(**doc)


class WithdrawalDAL:
    """Data access layer for the withdrawals collection."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db[COLLECTION]
        self._leases = db[LEASE_COLLECTION]

    # ------------------------------------------------------------------
    # Create / delete
    # ------------------------------------------------------------------

    async def create(self, request: WithdrawalRequest) -> WithdrawalRequest:
        """Insert a withdrawal request, keeping a pre-allocated id if set."""
        doc = request.to_mongo_dict()
        if "_id" in doc:
            doc["_id"] = ObjectId(doc["_id"])
        result = await self._collection.insert_one(doc)
        request.id = str(result.inserted_id)
        logger.info(
            "Created withdrawal %s for user=%s amount=%d",
            request.id,
            request.user_id,
            request.amount,
        )
        return request

    async def delete(self, request_id: str) -> bool:
        """Remove a request whose hold could not be written."""
        if not ObjectId.is_valid(request_id):
            return False
        result = await self._collection.delete_one({"_id": ObjectId(request_id)})
        return result.deleted_count > 0

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get_by_id(self, request_id: str) -> Optional[WithdrawalRequest]:
        if not ObjectId.is_valid(request_id):
            return None
        doc = await self._collection.find_one({"_id": ObjectId(request_id)})
        if doc is None:
            return None
        return _to_request(doc)

    async def get_by_user(self, user_id: str, limit: int = 100) -> list[WithdrawalRequest]:
        """A user's requests, newest first."""
        cursor = (
            self._collection.find({"user_id": user_id})
            .sort("created_at", -1)
            .limit(limit)
        )
        requests: list[WithdrawalRequest] = []
        async for doc in cursor:
            requests.append(_to_request(doc))
        return requests

    async def get_by_status(
        self, status: Optional[WithdrawalStatus] = None, limit: int = 100
    ) -> list[WithdrawalRequest]:
        """Requests filtered by status, oldest first (FIFO)."""
        query: dict = {}
        if status is not None:
            query["status"] = str(status)
        cursor = self._collection.find(query).sort("created_at", 1).limit(limit)
        requests: list[WithdrawalRequest] = []
        async for doc in cursor:
            requests.append(_to_request(doc))
        return requests

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def transition(
        self,
        request_id: str,
        from_status: WithdrawalStatus,
        to_status: WithdrawalStatus,
        fields: Optional[dict] = None,
    ) -> bool:
        """Move a request between states with an optimistic lock on ``from_status``.

        Returns:
            True if this call performed the transition.
        """
        if not ObjectId.is_valid(request_id):
            return False
        update_fields = {"status": str(to_status)}
        if fields:
            update_fields.update(fields)
        result = await self._collection.update_one(
            {"_id": ObjectId(request_id), "status": str(from_status)},
            {"$set": update_fields},
        )
        if result.modified_count > 0:
            logger.info("Withdrawal %s moved %s -> %s", request_id, from_status, to_status)
        return result.modified_count > 0

    async def created_since(self, user_id: str, since: datetime) -> list[WithdrawalRequest]:
        """A user's requests created at or after ``since``.

        Filtering happens client-side on normalised UTC timestamps.
        """
        recent: list[WithdrawalRequest] = []
        for request in await self.get_by_user(user_id, limit=1000):
            if request.created_at < since:
                break
            recent.append(request)
        return recent

    # ------------------------------------------------------------------
    # Per-user request lease
    # ------------------------------------------------------------------

    async def acquire_user_lease(
        self, user_id: str, token: str, now: float, ttl_seconds: float
    ) -> bool:
        """Take the user's withdrawal lease unless a live one is held.

        One document per user in the lease collection; an expired lease is
        taken over with a compare-and-set on ``expires_at``. Times are epoch
        seconds.

        Returns:
            True if ``token`` now holds the lease.
        """
        lease = {"token": token, "expires_at": now + ttl_seconds}
        try:
            await self._leases.insert_one({"_id": user_id, **lease})
            return True
        except DuplicateKeyError:
            result = await self._leases.update_one(
                {"_id": user_id, "expires_at": {"$lte": now}},
                {"$set": lease},
            )
            if result.modified_count > 0:
                logger.warning("Took over expired withdrawal lease of user=%s", user_id)
            return result.modified_count > 0

    async def release_user_lease(self, user_id: str, token: str) -> None:
        await self._leases.delete_one({"_id": user_id, "token": token})
