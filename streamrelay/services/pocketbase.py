import logging
from typing import Any, Optional

import httpx

from streamrelay.errors import StoreError

logger = logging.getLogger(__name__)


class PocketbaseError(StoreError):
    """Error returned by the Pocketbase REST API."""


class PocketbaseService:
    """Async client for Pocketbase REST API with admin authentication."""

    def __init__(
        self,
        base_url: str,
        admin_email: Optional[str] = None,
        admin_password: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self._admin_email = admin_email
        self._admin_password = admin_password
        self._admin_token: Optional[str] = None
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            transport=transport,
            timeout=timeout,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _ensure_admin_auth(self) -> Optional[str]:
        """
        Authenticate as admin and get token.

        Returns the admin token or None if authentication fails.
        """
        if self._admin_token:
            return self._admin_token

        if not self._admin_email or not self._admin_password:
            logger.debug("No admin credentials configured")
            return None

        try:
            # Pocketbase v0.20+ uses _superusers collection
            response = await self._client.post(
                "/api/collections/_superusers/auth-with-password",
                json={"identity": self._admin_email, "password": self._admin_password},
            )
        except httpx.RequestError as e:
            logger.warning("Failed to authenticate as admin: %s", e)
            return None

        if response.status_code == 200:
            self._admin_token = response.json().get("token")
            logger.info("Pocketbase admin authentication successful")
            return self._admin_token

        logger.warning("Pocketbase admin auth failed: %s", response.text)
        return None

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
    ) -> Any:
        """Make an HTTP request to Pocketbase."""
        headers = {}
        token = await self._ensure_admin_auth()
        if token:
            headers["Authorization"] = token

        try:
            response = await self._client.request(
                method=method,
                url=path,
                json=json,
                params=params,
                headers=headers,
            )
        except httpx.RequestError as e:
            raise PocketbaseError(f"Connection error: {str(e)}")

        if response.status_code >= 400:
            try:
                error_data = response.json() if response.text else {}
            except ValueError:
                error_data = {}
            error_msg = error_data.get("message", response.text or "Unknown error")
            raise PocketbaseError(error_msg, response.status_code)

        if response.text:
            return response.json()
        return None

    # ==================== Health ====================

    async def health_check(self) -> dict:
        """Check if Pocketbase is healthy."""
        return await self._request("GET", "/api/health")

    # ==================== Records ====================

    async def list_records(
        self,
        collection: str,
        filter: Optional[str] = None,
        sort: Optional[str] = None,
        page: int = 1,
        per_page: int = 50,
    ) -> dict:
        """Get list of records from a collection."""
        params = {"page": page, "perPage": per_page}
        if filter:
            params["filter"] = filter
        if sort:
            params["sort"] = sort

        return await self._request("GET", f"/api/collections/{collection}/records", params=params)

    async def list_all_records(
        self,
        collection: str,
        filter: Optional[str] = None,
        sort: Optional[str] = None,
        per_page: int = 200,
    ) -> list[dict]:
        """Walk every page of a record listing."""
        items: list[dict] = []
        page = 1
        while True:
            result = await self.list_records(
                collection, filter=filter, sort=sort, page=page, per_page=per_page
            )
            items.extend(result.get("items", []))
            if page >= result.get("totalPages", 1):
                return items
            page += 1

    async def get_record(self, collection: str, record_id: str) -> dict:
        """Get a single record by ID."""
        return await self._request("GET", f"/api/collections/{collection}/records/{record_id}")

    async def create_record(self, collection: str, data: dict) -> dict:
        """Create a new record in a collection."""
        return await self._request("POST", f"/api/collections/{collection}/records", json=data)

    async def update_record(self, collection: str, record_id: str, data: dict) -> dict:
        """Update an existing record."""
        return await self._request("PATCH", f"/api/collections/{collection}/records/{record_id}", json=data)

    async def delete_record(self, collection: str, record_id: str) -> None:
        """Delete a record."""
        await self._request("DELETE", f"/api/collections/{collection}/records/{record_id}")
