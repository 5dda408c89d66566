"""Remote event store: the shared per-account document holding all events.

The store is a generic document store. The sync engine only needs to read
the account's sync document, create it, append events to it, overwrite it,
and merge fields into the account's primary user record.
"""

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class RemoteStoreError(Exception):
    """Base error for remote store failures."""


class DocumentNotFoundError(RemoteStoreError):
    """The account's sync document does not exist yet."""


class DocumentExistsError(RemoteStoreError):
    """A create was attempted on an existing document."""


class RemoteEventStore(ABC):
    """Abstract remote store keyed by account id.

    Sync documents have the shape ``{"lastUpdated": int, "events": [...]}``
    with events in their wire dictionary form.
    """

    @abstractmethod
    async def get(self, account_id: str) -> dict[str, Any] | None:
        """Fetch the account's sync document, or None if it does not exist."""
        pass

    @abstractmethod
    async def create(self, account_id: str, document: dict[str, Any]) -> None:
        """Create the account's sync document.

        Raises:
            DocumentExistsError: If the document already exists.
        """
        pass

    @abstractmethod
    async def append_merge(
        self,
        account_id: str,
        events: list[dict[str, Any]],
        last_updated: int,
    ) -> None:
        """Union events into the document's event array.

        Events whose id is already present are not added again.

        Raises:
            DocumentNotFoundError: If the document does not exist yet.
        """
        pass

    @abstractmethod
    async def overwrite(self, account_id: str, document: dict[str, Any]) -> None:
        """Replace the account's sync document, creating it if absent."""
        pass

    @abstractmethod
    async def get_user_record(self, account_id: str) -> dict[str, Any] | None:
        """Fetch the account's primary user record, or None."""
        pass

    @abstractmethod
    async def update_user_record(self, account_id: str, fields: dict[str, Any]) -> None:
        """Merge fields into the account's primary user record."""
        pass

    async def close(self) -> None:
        """Release any held resources."""
        pass


def union_events(
    existing: list[dict[str, Any]], new: list[dict[str, Any]]
) -> list[dict[str, Any]]:
    """Append events from new whose id is not already in existing."""
    seen = {e.get("id") for e in existing}
    merged = list(existing)
    for event in new:
        if event.get("id") in seen:
            continue
        seen.add(event.get("id"))
        merged.append(event)
    return merged


class InMemoryRemoteStore(RemoteEventStore):
    """Process-local store, used by tests and the reference server."""

    def __init__(self):
        self.sync_documents: dict[str, dict[str, Any]] = {}
        self.user_records: dict[str, dict[str, Any]] = {}

    async def get(self, account_id: str) -> dict[str, Any] | None:
        document = self.sync_documents.get(account_id)
        return copy.deepcopy(document) if document is not None else None

    async def create(self, account_id: str, document: dict[str, Any]) -> None:
        if account_id in self.sync_documents:
            raise DocumentExistsError(f"Sync document for {account_id} already exists")
        self.sync_documents[account_id] = copy.deepcopy(document)

    async def append_merge(
        self,
        account_id: str,
        events: list[dict[str, Any]],
        last_updated: int,
    ) -> None:
        document = self.sync_documents.get(account_id)
        if document is None:
            raise DocumentNotFoundError(f"No sync document for {account_id}")
        document["events"] = union_events(
            document.get("events", []), copy.deepcopy(events)
        )
        document["lastUpdated"] = last_updated

    async def overwrite(self, account_id: str, document: dict[str, Any]) -> None:
        self.sync_documents[account_id] = copy.deepcopy(document)

    async def get_user_record(self, account_id: str) -> dict[str, Any] | None:
        record = self.user_records.get(account_id)
        return copy.deepcopy(record) if record is not None else None

    async def update_user_record(self, account_id: str, fields: dict[str, Any]) -> None:
        record = self.user_records.setdefault(account_id, {})
        record.update(copy.deepcopy(fields))


class HttpRemoteStore(RemoteEventStore):
    """Remote store reached over the habitsync REST API.

    Retries server errors, connection failures and timeouts with exponential
    backoff. Client errors are not retried.
    """

    def __init__(
        self,
        base_url: str,
        max_retries: int = 3,
        timeout: float = 30.0,
        backoff_seconds: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the HTTP store.

        Args:
            base_url: Base URL of the store server (e.g., "http://sync:8080").
            max_retries: Maximum attempts per request.
            timeout: Request timeout in seconds.
            backoff_seconds: Delay before the first retry; doubles each retry.
            transport: Optional httpx transport, used for testing.
        """
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.timeout = timeout
        self.backoff_seconds = backoff_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        json_data: Any = None,
    ) -> httpx.Response:
        """Make HTTP request with exponential backoff retry.

        Returns:
            The final response with a status below 500.

        Raises:
            RemoteStoreError: If all attempts fail.
        """
        client = await self._get_client()
        backoff = self.backoff_seconds
        last_error = "no attempts made"

        for attempt in range(self.max_retries):
            try:
                response = await client.request(method, path, json=json_data)
                if response.status_code < 500:
                    return response
                last_error = f"HTTP {response.status_code}"
                logger.warning(
                    f"Server error {response.status_code} on {method} {path}, "
                    f"attempt {attempt + 1}/{self.max_retries}"
                )
            except httpx.ConnectError as e:
                last_error = f"Connection failed: {e}"
                logger.warning(
                    f"Connection failed, attempt {attempt + 1}/{self.max_retries}"
                )
            except httpx.TimeoutException:
                last_error = "Request timeout"
                logger.warning(
                    f"Request timeout, attempt {attempt + 1}/{self.max_retries}"
                )

            if attempt < self.max_retries - 1:
                await asyncio.sleep(backoff)
                backoff *= 2

        raise RemoteStoreError(
            f"{method} {path} failed after {self.max_retries} attempts: {last_error}"
        )

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.status_code == 404:
            raise DocumentNotFoundError(response.text)
        if response.status_code == 409:
            raise DocumentExistsError(response.text)
        if response.status_code >= 400:
            raise RemoteStoreError(f"HTTP {response.status_code}: {response.text}")

    async def get(self, account_id: str) -> dict[str, Any] | None:
        response = await self._request("GET", f"/accounts/{account_id}/sync-events")
        if response.status_code == 404:
            return None
        self._raise_for_status(response)
        return response.json()

    async def create(self, account_id: str, document: dict[str, Any]) -> None:
        response = await self._request(
            "POST", f"/accounts/{account_id}/sync-events", document
        )
        self._raise_for_status(response)

    async def append_merge(
        self,
        account_id: str,
        events: list[dict[str, Any]],
        last_updated: int,
    ) -> None:
        response = await self._request(
            "POST",
            f"/accounts/{account_id}/sync-events/append",
            {"events": events, "lastUpdated": last_updated},
        )
        self._raise_for_status(response)

    async def overwrite(self, account_id: str, document: dict[str, Any]) -> None:
        response = await self._request(
            "PUT", f"/accounts/{account_id}/sync-events", document
        )
        self._raise_for_status(response)

    async def get_user_record(self, account_id: str) -> dict[str, Any] | None:
        response = await self._request("GET", f"/accounts/{account_id}/record")
        if response.status_code == 404:
            return None
        self._raise_for_status(response)
        return response.json()

    async def update_user_record(self, account_id: str, fields: dict[str, Any]) -> None:
        response = await self._request(
            "PATCH", f"/accounts/{account_id}/record", fields
        )
        self._raise_for_status(response)

    async def health_check(self) -> bool:
        """Check if the store server is reachable and healthy."""
        try:
            client = await self._get_client()
            response = await client.get("/health")
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.debug(f"Health check failed: {e}")
            return False
