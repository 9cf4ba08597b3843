"""Ledger Data Access Layer -- MongoDB operations for the ledger_entries collection.

The collection is append-only. ``create`` is the only write that adds
value movements; ``update_status`` is the only mutation and is guarded
on ``status: pending``. A duplicate primary key on ``create`` surfaces as
``pymongo.errors.DuplicateKeyError`` so idempotent callers can detect a
replay.
"""

import logging
from datetime import datetime
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from squares.models.common import EntryKind, VerificationStatus
from squares.models.ledger import LedgerEntry

logger = logging.getLogger("squares.dal.ledger")

COLLECTION = "ledger_entries"


class LedgerDAL:
    """Data access layer for the ledger_entries collection."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db[COLLECTION]

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create(self, entry: LedgerEntry) -> LedgerEntry:
        """Append an entry.

        Raises:
            pymongo.errors.DuplicateKeyError: an entry with the same id exists.
        """
        await self._collection.insert_one(entry.to_mongo_dict())
        logger.info(
            "Ledger entry %s: user=%s kind=%s amount=%d status=%s",
            entry.id,
            entry.user_id,
            entry.kind,
            entry.amount,
            entry.status,
        )
        return entry

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get_by_id(self, entry_id: str) -> Optional[LedgerEntry]:
        doc = await self._collection.find_one({"_id": entry_id})
        if doc is None:
            return None
        return LedgerEntry(**doc)

    async def sum_approved(self, user_id: str) -> int:
        """Sum of the amounts of a user's approved entries.

        Uses the ``idx_user_status`` index.
        """
        cursor = self._collection.find(
            {"user_id": user_id, "status": str(VerificationStatus.APPROVED)},
            {"amount": 1},
        )
        total = 0
        async for doc in cursor:
            total += doc["amount"]
        return total

    async def get_by_user(
        self, user_id: str, limit: int = 100, skip: int = 0
    ) -> list[LedgerEntry]:
        """A user's entries, newest first."""
        cursor = (
            self._collection.find({"user_id": user_id})
            .sort("created_at", -1)
            .skip(skip)
            .limit(limit)
        )
        entries: list[LedgerEntry] = []
        async for doc in cursor:
            entries.append(LedgerEntry(**doc))
        return entries

    async def get_by_status(
        self, status: VerificationStatus, limit: int = 100
    ) -> list[LedgerEntry]:
        """Entries in a verification status, oldest first (FIFO)."""
        cursor = (
            self._collection.find({"status": str(status)})
            .sort("created_at", 1)
            .limit(limit)
        )
        entries: list[LedgerEntry] = []
        async for doc in cursor:
            entries.append(LedgerEntry(**doc))
        return entries

    async def find_latest(
        self,
        user_id: str,
        kind: EntryKind,
        game_id: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> Optional[LedgerEntry]:
        """Most recent entry of a kind for a user, optionally narrowed."""
        query: dict = {"user_id": user_id, "kind": str(kind)}
        if game_id is not None:
            query["game_id"] = game_id
        if reference is not None:
            query["reference"] = reference
        cursor = self._collection.find(query).sort("created_at", -1).limit(1)
        async for doc in cursor:
            return LedgerEntry(**doc)
        return None

    async def get_by_game(
        self, game_id: str, kind: Optional[EntryKind] = None
    ) -> list[LedgerEntry]:
        query: dict = {"game_id": game_id}
        if kind is not None:
            query["kind"] = str(kind)
        cursor = self._collection.find(query).sort("created_at", 1)
        entries: list[LedgerEntry] = []
        async for doc in cursor:
            entries.append(LedgerEntry(**doc))
        return entries

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def update_status(
        self,
        entry_id: str,
        new_status: VerificationStatus,
        resolved_by: str,
        resolved_at: datetime,
    ) -> bool:
        """Resolve a pending entry.

        Uses an optimistic lock on ``status: pending`` so an entry can be
        resolved exactly once.

        Returns:
            True if this call resolved the entry.
        """
        result = await self._collection.update_one(
            {"_id": entry_id, "status": str(VerificationStatus.PENDING)},
            {
                "$set": {
                    "status": str(new_status),
                    "resolved_by": resolved_by,
                    "resolved_at": resolved_at,
                }
            },
        )
        if result.modified_count > 0:
            logger.info("Ledger entry %s resolved to %s by %s", entry_id, new_status, resolved_by)
        return result.modified_count > 0
