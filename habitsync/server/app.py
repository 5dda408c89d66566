"""FastAPI reference server for the remote event store."""

import logging
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from ..sync.remote import (
    DocumentExistsError,
    DocumentNotFoundError,
    InMemoryRemoteStore,
    RemoteEventStore,
)

logger = logging.getLogger(__name__)


class SyncDocument(BaseModel):
    last_updated: int = Field(0, alias="lastUpdated")
    events: list[dict[str, Any]] = Field(default_factory=list)

    def to_document(self) -> dict[str, Any]:
        return {"lastUpdated": self.last_updated, "events": self.events}


class AppendRequest(BaseModel):
    last_updated: int = Field(alias="lastUpdated")
    events: list[dict[str, Any]]


def create_app(store: RemoteEventStore | None = None) -> FastAPI:
    """Create the remote event store application.

    Args:
        store: Backing store. Defaults to a fresh in-memory store.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="habitsync store",
        description="Shared per-account event log for habitsync devices",
        version="0.1.0",
    )

    store = store or InMemoryRemoteStore()
    app.state.store = store

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/accounts/{account_id}/sync-events")
    async def get_sync_events(account_id: str) -> dict[str, Any]:
        document = await store.get(account_id)
        if document is None:
            raise HTTPException(status_code=404, detail="not-found")
        return document

    @app.post("/accounts/{account_id}/sync-events", status_code=201)
    async def create_sync_events(account_id: str, body: SyncDocument) -> dict[str, Any]:
        try:
            await store.create(account_id, body.to_document())
        except DocumentExistsError:
            raise HTTPException(status_code=409, detail="already-exists")
        logger.info(f"Created sync document for {account_id} with {len(body.events)} events")
        return {"created": True}

    @app.put("/accounts/{account_id}/sync-events")
    async def overwrite_sync_events(account_id: str, body: SyncDocument) -> dict[str, Any]:
        await store.overwrite(account_id, body.to_document())
        logger.info(f"Overwrote sync document for {account_id}")
        return {"events": len(body.events)}

    @app.post("/accounts/{account_id}/sync-events/append")
    async def append_sync_events(account_id: str, body: AppendRequest) -> dict[str, Any]:
        try:
            await store.append_merge(account_id, body.events, body.last_updated)
        except DocumentNotFoundError:
            raise HTTPException(status_code=404, detail="not-found")
        logger.debug(f"Appended {len(body.events)} events for {account_id}")
        return {"appended": len(body.events)}

    @app.get("/accounts/{account_id}/record")
    async def get_record(account_id: str) -> dict[str, Any]:
        record = await store.get_user_record(account_id)
        if record is None:
            raise HTTPException(status_code=404, detail="not-found")
        return record

    @app.patch("/accounts/{account_id}/record")
    async def update_record(account_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        await store.update_user_record(account_id, fields)
        return {"updated": sorted(fields)}

    return app
