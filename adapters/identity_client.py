# adapters/identity_client.py: Clerk backend API client implementing the identity oracle

import asyncio
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import aiohttp

from adapters.identity import IdentityOracle, IdentityOracleError, OracleUser

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.clerk.com"
MAX_PAGE_SIZE = 500


def _primary_email(payload: Dict[str, Any]) -> Optional[str]:
    addresses = payload.get("email_addresses") or []
    primary_id = payload.get("primary_email_address_id")
    for entry in addresses:
        if primary_id and entry.get("id") == primary_id:
            return entry.get("email_address")
    return addresses[0].get("email_address") if addresses else None


def user_from_payload(payload: Dict[str, Any]) -> OracleUser:
    """Map a backend API user object onto OracleUser."""
    metadata = payload.get("public_metadata")
    return OracleUser(
        id=payload["id"],
        email=_primary_email(payload),
        public_metadata=metadata if isinstance(metadata, dict) else {},
        first_name=payload.get("first_name"),
        last_name=payload.get("last_name"),
        created_at=payload.get("created_at"),
        updated_at=payload.get("updated_at"),
    )


class ClerkIdentityOracle(IdentityOracle):
    """Identity oracle backed by the Clerk backend REST API."""

    def __init__(
        self,
        secret_key: str,
        base_url: str = DEFAULT_API_URL,
        timeout_ms: int = 5000,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Initialize the client.

        Args:
            secret_key: Backend API secret key (sent as a bearer token)
            base_url: API root
            timeout_ms: Total per-request timeout in milliseconds
            session: Optional externally managed aiohttp session
        """
        if not secret_key:
            raise ValueError("secret_key is required for ClerkIdentityOracle")

        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout_ms = timeout_ms
        self.session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_ms / 1000.0),
                headers={"Authorization": f"Bearer {self.secret_key}"},
            )
            self._owns_session = True
        return self.session

    async def close(self):
        if self._owns_session and self.session is not None and not self.session.closed:
            await self.session.close()

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Perform one API call. Returns parsed JSON, or None on 404.

        Raises:
            IdentityOracleError: on timeouts, transport errors, and non-404 error statuses
        """
        session = await self._get_session()
        url = f"{self.base_url}{path}"

        try:
            async with session.request(method, url, params=params, json=json_body) as response:
                if response.status == 404:
                    return None
                if response.status >= 400:
                    body = await response.text()
                    raise IdentityOracleError(
                        f"{method} {path} failed with HTTP {response.status}: {body[:200]}",
                        status=response.status,
                    )
                return await response.json()
        except asyncio.TimeoutError as e:
            raise IdentityOracleError(f"{method} {path} timed out after {self.timeout_ms}ms") from e
        except aiohttp.ClientError as e:
            raise IdentityOracleError(f"{method} {path} failed: {e}") from e

    async def get_user(self, user_id: str) -> Optional[OracleUser]:
        payload = await self._request("GET", f"/v1/users/{quote(user_id, safe='')}")
        if payload is None:
            return None
        return user_from_payload(payload)

    async def update_user_metadata(self, user_id: str, public_metadata: Dict[str, Any]) -> None:
        payload = await self._request(
            "PATCH",
            f"/v1/users/{quote(user_id, safe='')}/metadata",
            json_body={"public_metadata": public_metadata},
        )
        if payload is None:
            raise IdentityOracleError(f"User not found: {user_id}", status=404)

    async def list_users(self, limit: int, offset: int = 0) -> List[OracleUser]:
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        payload = await self._request(
            "GET",
            "/v1/users",
            params={"limit": limit, "offset": offset, "order_by": "created_at"},
        )
        if payload is None:
            return []
        # Older API versions return a bare list, newer ones wrap it in "data"
        items = payload.get("data", []) if isinstance(payload, dict) else payload
        return [user_from_payload(item) for item in items]
