# adapters/identity.py: principal resolution and metadata writes over the identity oracle

import copy
import logging
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool, ValidationError, field_validator

from core.rbac.roles import DEFAULT_ROLE, normalize_role

logger = logging.getLogger(__name__)

METADATA_SCHEMA_VERSION = 1

UPDATE_NOT_FOUND = "not_found"
UPDATE_ORACLE_ERROR = "oracle_error"
UPDATE_INVALID_PATCH = "invalid_patch"


class IdentityOracleError(Exception):
    """Raised by oracle clients when the identity provider cannot answer."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status

    @property
    def is_not_found(self) -> bool:
        return self.status == 404


# ============================================================================
# Oracle Boundary
# ============================================================================

@dataclass
class OracleUser:
    """A user record as the identity provider returns it."""
    id: str
    email: Optional[str] = None
    public_metadata: Dict[str, Any] = field(default_factory=dict)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    created_at: Optional[int] = None
    updated_at: Optional[int] = None


class IdentityOracle(ABC):
    """
    External identity provider.

    Owns the canonical per-user metadata bag. Implementations must raise
    IdentityOracleError for provider failures and return None from get_user
    when the user does not exist.
    """

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[OracleUser]:
        ...

    @abstractmethod
    async def update_user_metadata(self, user_id: str, public_metadata: Dict[str, Any]) -> None:
        """Store `public_metadata` as the user's whole metadata bag."""

    @abstractmethod
    async def list_users(self, limit: int, offset: int = 0) -> List[OracleUser]:
        ...


class InMemoryIdentityOracle(IdentityOracle):
    """Process-local oracle for development and tests."""

    def __init__(self, users: Optional[List[OracleUser]] = None):
        self._users: Dict[str, OracleUser] = {}
        for user in users or []:
            self._users[user.id] = copy.deepcopy(user)

    def add_user(
        self,
        user_id: str,
        email: Optional[str] = None,
        public_metadata: Optional[Dict[str, Any]] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> OracleUser:
        now = int(time.time() * 1000)
        user = OracleUser(
            id=user_id,
            email=email,
            public_metadata=dict(public_metadata or {}),
            first_name=first_name,
            last_name=last_name,
            created_at=now,
            updated_at=now,
        )
        self._users[user_id] = user
        return copy.deepcopy(user)

    async def get_user(self, user_id: str) -> Optional[OracleUser]:
        user = self._users.get(user_id)
        return copy.deepcopy(user) if user else None

    async def update_user_metadata(self, user_id: str, public_metadata: Dict[str, Any]) -> None:
        user = self._users.get(user_id)
        if user is None:
            raise IdentityOracleError(f"User not found: {user_id}", status=404)
        user.public_metadata = copy.deepcopy(public_metadata)
        user.updated_at = int(time.time() * 1000)

    async def list_users(self, limit: int, offset: int = 0) -> List[OracleUser]:
        ordered = sorted(self._users.values(), key=lambda u: (u.created_at or 0, u.id))
        return [copy.deepcopy(u) for u in ordered[offset:offset + limit]]


# ============================================================================
# Typed Metadata
# ============================================================================

def _to_epoch_millis(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError("boolean is not a timestamp")
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            raise ValueError(f"non-finite timestamp: {value!r}")
        return int(value)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return int(parsed.timestamp() * 1000)
    raise ValueError(f"unsupported timestamp value: {value!r}")


class PrincipalMetadata(BaseModel):
    """
    Typed view of the oracle's metadata bag.

    Field aliases are the keys stored at the provider. Values that fail to
    parse are treated as absent (see from_bag); a role outside the catalog
    is read as no role at all.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    schema_version: int = Field(METADATA_SCHEMA_VERSION, alias="schemaVersion")
    role: Optional[str] = None
    has_2fa: StrictBool = Field(False, alias="has2FA")
    training_complete: StrictBool = Field(False, alias="trainingComplete")
    last_training_date: Optional[int] = Field(None, alias="lastTrainingDate")
    completed_training: List[str] = Field(default_factory=list, alias="completedTraining")
    role_assigned_at: Optional[int] = Field(None, alias="roleAssignedAt")
    role_assigned_by: Optional[str] = Field(None, alias="roleAssignedBy")
    two_factor_enabled_at: Optional[int] = Field(None, alias="twoFactorEnabledAt")
    department: Optional[str] = None
    employee_id: Optional[str] = Field(None, alias="employeeId")

    @field_validator("role", mode="before")
    @classmethod
    def _known_role(cls, v: Any) -> Optional[str]:
        return normalize_role(v)

    @field_validator(
        "last_training_date", "role_assigned_at", "two_factor_enabled_at", mode="before"
    )
    @classmethod
    def _timestamp(cls, v: Any) -> Optional[int]:
        return _to_epoch_millis(v)

    @classmethod
    def from_bag(cls, bag: Any) -> "PrincipalMetadata":
        """
        Parse a raw metadata bag, dropping every field that does not validate.

        Never raises: a non-mapping bag reads as empty metadata.
        """
        if not isinstance(bag, Mapping):
            if bag is not None:
                logger.warning(f"Ignoring non-mapping metadata bag of type {type(bag).__name__}")
            return cls()

        data = dict(bag)
        # Each pass removes at least one offending key, so this terminates
        for _ in range(len(data) + 1):
            try:
                parsed = cls.model_validate(data)
                break
            except ValidationError as e:
                bad_keys = {err["loc"][0] for err in e.errors() if err.get("loc")}
                bad_keys &= set(data)
                if not bad_keys:
                    logger.warning(f"Unparseable metadata bag, treating as empty: {e}")
                    return cls()
                logger.debug(f"Dropping invalid metadata fields: {sorted(bad_keys)}")
                for key in bad_keys:
                    data.pop(key, None)
        else:
            return cls()

        if parsed.schema_version > METADATA_SCHEMA_VERSION:
            logger.warning(
                f"Metadata schema version {parsed.schema_version} is newer than "
                f"supported version {METADATA_SCHEMA_VERSION}"
            )
        return parsed


@dataclass
class Principal:
    """The authenticated user as seen by the access-control layer."""
    id: str
    email: Optional[str]
    role: str
    metadata: PrincipalMetadata
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    created_at: Optional[int] = None
    updated_at: Optional[int] = None

    @property
    def display_name(self) -> str:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts) if parts else (self.email or self.id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "role": self.role,
            "department": self.metadata.department,
            "employee_id": self.metadata.employee_id,
            "has_2fa": self.metadata.has_2fa,
            "training_complete": self.metadata.training_complete,
            "last_training_date": self.metadata.last_training_date,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


def principal_from_oracle_user(user: OracleUser) -> Principal:
    metadata = PrincipalMetadata.from_bag(user.public_metadata)
    return Principal(
        id=user.id,
        email=user.email,
        role=metadata.role or DEFAULT_ROLE,
        metadata=metadata,
        first_name=user.first_name,
        last_name=user.last_name,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


@dataclass
class UpdateResult:
    """Outcome of a metadata write; failures carry a reason instead of raising."""
    ok: bool
    reason: Optional[str] = None
    error: Optional[str] = None
    previous: Optional[PrincipalMetadata] = None


PrincipalRef = Union[Principal, str, None]


# ============================================================================
# Adapter
# ============================================================================

class IdentityAdapter:
    """
    Reads principals and writes metadata through an IdentityOracle.

    One instance per request: `session_user_id` is the caller resolved by the
    route guard. The adapter holds no cache, so every call is a round trip.
    """

    def __init__(self, oracle: IdentityOracle, session_user_id: Optional[str] = None):
        self.oracle = oracle
        self.session_user_id = session_user_id

    async def current_principal(self) -> Optional[Principal]:
        """Principal of the current request, or None if unauthenticated."""
        if not self.session_user_id:
            return None
        return await self.principal_by_id(self.session_user_id)

    async def principal_by_id(self, principal_id: str) -> Optional[Principal]:
        if not principal_id:
            return None

        try:
            user = await self.oracle.get_user(principal_id)
            if user is None:
                logger.debug(f"Principal not found: {principal_id}")
                return None
            return principal_from_oracle_user(user)
        except Exception as e:
            logger.error(f"Error resolving principal {principal_id}: {e}", exc_info=True)
            return None

    async def resolve(self, principal_or_id: PrincipalRef = None) -> Optional[Principal]:
        """Accept a Principal, a principal id, or None for the current caller."""
        if isinstance(principal_or_id, Principal):
            return principal_or_id
        if principal_or_id is None:
            return await self.current_principal()
        return await self.principal_by_id(principal_or_id)

    async def role_of(self, principal_or_id: PrincipalRef = None) -> str:
        """
        Role of a principal. Missing, invalid or unreadable role data resolves
        to DEFAULT_ROLE rather than an error.
        """
        try:
            principal = await self.resolve(principal_or_id)
        except Exception as e:
            logger.error(f"Error getting role: {e}", exc_info=True)
            return DEFAULT_ROLE

        if principal is None:
            return DEFAULT_ROLE
        return principal.role

    async def update_metadata(self, principal_id: str, patch: Mapping[str, Any]) -> UpdateResult:
        """
        Merge `patch` into the principal's stored metadata.

        Reads the current bag and writes back the merged whole, so keys written
        by other subsystems survive. There is no transaction across the read and
        the write: a concurrent writer can still be overwritten.
        """
        if not principal_id or not isinstance(patch, Mapping):
            return UpdateResult(ok=False, reason=UPDATE_INVALID_PATCH)

        try:
            user = await self.oracle.get_user(principal_id)
            if user is None:
                return UpdateResult(ok=False, reason=UPDATE_NOT_FOUND)

            current = dict(user.public_metadata or {})
            merged = {**current, **patch}
            merged.setdefault("schemaVersion", METADATA_SCHEMA_VERSION)

            await self.oracle.update_user_metadata(principal_id, merged)
        except IdentityOracleError as e:
            if e.is_not_found:
                return UpdateResult(ok=False, reason=UPDATE_NOT_FOUND, error=str(e))
            logger.error(f"Error updating metadata for {principal_id}: {e}")
            return UpdateResult(ok=False, reason=UPDATE_ORACLE_ERROR, error=str(e))
        except Exception as e:
            logger.error(f"Error updating metadata for {principal_id}: {e}", exc_info=True)
            return UpdateResult(ok=False, reason=UPDATE_ORACLE_ERROR, error=str(e))

        logger.info(f"Updated metadata for {principal_id}: keys={sorted(patch)}")
        return UpdateResult(ok=True, previous=PrincipalMetadata.from_bag(current))

    async def list_principals(self, limit: int, offset: int = 0) -> List[Principal]:
        """
        One page of principals.

        Raises:
            IdentityOracleError: if the provider cannot be read
        """
        users = await self.oracle.list_users(limit=limit, offset=offset)
        return [principal_from_oracle_user(u) for u in users]

    async def mark_training_complete(
        self,
        principal_id: str,
        completed_training: List[str],
        now_ms: Optional[int] = None,
    ) -> UpdateResult:
        return await self.update_metadata(principal_id, {
            "trainingComplete": True,
            "lastTrainingDate": now_ms if now_ms is not None else int(time.time() * 1000),
            "completedTraining": list(completed_training),
        })

    async def update_2fa_status(self, principal_id: str, enabled: bool) -> UpdateResult:
        return await self.update_metadata(principal_id, {
            "has2FA": bool(enabled),
            "twoFactorEnabledAt": int(time.time() * 1000) if enabled else None,
        })
