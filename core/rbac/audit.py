"""
Append-only role audit log over the document store.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional

from adapters.db import DocumentStore

logger = logging.getLogger(__name__)

ROLE_AUDIT_TABLE = "role_audit_log"

ACTION_ROLE_CHANGED = "role_changed"
ACTION_ROLE_REMOVED = "role_removed"


@dataclass(frozen=True)
class RoleAuditEntry:
    target_user_id: str
    performed_by: str
    action: str
    timestamp: int
    previous_role: Optional[str] = None
    new_role: Optional[str] = None
    reason: Optional[str] = None
    id: Optional[str] = None

    def to_record(self) -> Dict[str, Any]:
        record = asdict(self)
        record.pop("id")
        return record

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "RoleAuditEntry":
        return cls(
            id=str(record["id"]) if record.get("id") is not None else None,
            target_user_id=record["target_user_id"],
            performed_by=record["performed_by"],
            action=record["action"],
            timestamp=int(record["timestamp"]),
            previous_role=record.get("previous_role"),
            new_role=record.get("new_role"),
            reason=record.get("reason"),
        )


class RoleAuditLog:
    """Writes and reads role audit entries. Entries are never updated or deleted."""

    def __init__(self, store: DocumentStore, table: str = ROLE_AUDIT_TABLE):
        self.store = store
        self.table = table

    async def append(self, entry: RoleAuditEntry) -> str:
        """
        Insert an entry and return its id.

        Raises:
            DocumentStoreError: if the store rejects the insert
        """
        return await self.store.insert(self.table, entry.to_record())

    async def for_target(self, target_user_id: str, limit: int = 100) -> List[RoleAuditEntry]:
        rows = await self.store.query(self.table, "target_user_id", target_user_id, limit=limit)
        return [RoleAuditEntry.from_record(r) for r in rows]

    async def recent(self, limit: int = 100) -> List[RoleAuditEntry]:
        rows = await self.store.list_recent(self.table, limit=limit)
        return [RoleAuditEntry.from_record(r) for r in rows]
