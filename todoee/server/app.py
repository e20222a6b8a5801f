"""FastAPI application serving the sync protocol."""

import logging
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from pydantic import BaseModel

from ..models import EntityType
from .remote_db import RemoteDB

logger = logging.getLogger(__name__)


class PushRequest(BaseModel):
    entities: list[dict[str, Any]]


class TombstoneIn(BaseModel):
    id: str
    deleted_at: str


class DeleteRequest(BaseModel):
    tombstones: list[TombstoneIn]


def create_app(db: RemoteDB, token: str | None = None) -> FastAPI:
    """Create the FastAPI sync server application.

    Args:
        db: Remote database holding the shared rows.
        token: If set, every sync route requires ``Authorization: Bearer <token>``.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="todoee sync server",
        description="Remote store for todoee sync",
        version="0.1.0",
    )

    app.state.db = db

    async def require_token(request: Request) -> None:
        if not token:
            return
        header = request.headers.get("authorization", "")
        scheme, _, value = header.partition(" ")
        if scheme.lower() != "bearer" or value != token:
            raise HTTPException(status_code=401, detail="Invalid or missing token")

    # ==================== Health ====================

    @app.get("/api/health")
    async def api_health() -> dict[str, Any]:
        """Health check endpoint."""
        return {"status": "ok", "revision": db.revision}

    # ==================== Sync Routes ====================

    @app.post("/api/sync/{entity_type}/push", dependencies=[Depends(require_token)])
    async def api_push(entity_type: EntityType, body: PushRequest) -> dict[str, Any]:
        try:
            accepted, rejected = db.upsert(entity_type, body.entities)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return {"accepted_ids": accepted, "rejected": rejected}

    @app.post("/api/sync/{entity_type}/delete", dependencies=[Depends(require_token)])
    async def api_delete(entity_type: EntityType, body: DeleteRequest) -> dict[str, Any]:
        try:
            confirmed = db.soft_delete(
                entity_type, [t.model_dump() for t in body.tombstones]
            )
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return {"confirmed_ids": confirmed}

    @app.get("/api/sync/{entity_type}/pull", dependencies=[Depends(require_token)])
    async def api_pull(
        entity_type: EntityType,
        since: int = Query(0, ge=0),
        limit: int = Query(100, ge=1, le=1000),
    ) -> dict[str, Any]:
        return db.changes_since(entity_type, since, limit)

    @app.get("/api/stats", dependencies=[Depends(require_token)])
    async def api_stats() -> dict[str, Any]:
        return db.get_stats()

    return app
