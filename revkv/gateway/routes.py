"""
API routes for the revkv HTTP gateway.

Provides REST endpoints that wrap the Backend protocol one-to-one.
"""

import base64
import binascii
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from ..backend import Backend, KeyValue

logger = logging.getLogger(__name__)

router = APIRouter(tags=["revkv"])


# --- Request/Response Models ---


class PutRequest(BaseModel):
    """Request to create or update a key."""

    key: str = Field(..., min_length=1, description="Key name")
    value: str = Field(..., description="Base64-encoded payload")


class KeyValueResponse(BaseModel):
    """Current state of a key."""

    key: str
    create_revision: int
    mod_revision: int
    value: Optional[str] = Field(None, description="Base64-encoded payload")
    lease: Optional[int] = None

    @classmethod
    def from_kv(cls, kv: KeyValue) -> "KeyValueResponse":
        return cls(
            key=kv.key,
            create_revision=kv.create_revision,
            mod_revision=kv.mod_revision,
            value=base64.b64encode(kv.value).decode("ascii") if kv.value is not None else None,
            lease=kv.lease,
        )


class RevisionResponse(BaseModel):
    """Revision produced or observed by an operation."""

    revision: int


class RangeResponse(BaseModel):
    """Current rows under a prefix."""

    kvs: list[KeyValueResponse]
    count: int
    revision: int = Field(..., description="Store revision observed before the rows were read")


class CountResponse(BaseModel):
    """Number of live keys under a prefix."""

    count: int


class StatusResponse(BaseModel):
    """Store status."""

    revision: int
    size: int


# --- Dependencies ---


def get_backend(request: Request) -> Backend:
    """Get backend from app state."""
    return request.app.state.backend


# --- Routes ---


@router.get("/status", response_model=StatusResponse)
async def get_status(backend: Backend = Depends(get_backend)):
    """Current revision and approximate store size."""
    return StatusResponse(
        revision=await backend.current_revision(),
        size=await backend.size(),
    )


@router.put("/kv", response_model=RevisionResponse)
async def put_key(body: PutRequest, backend: Backend = Depends(get_backend)):
    """Create or update a key."""
    try:
        value = base64.b64decode(body.value, validate=True)
    except binascii.Error:
        raise HTTPException(status_code=400, detail="value must be valid base64")

    revision = await backend.put(body.key, value)
    logger.debug("Key written", extra={"key": body.key, "revision": revision})
    return RevisionResponse(revision=revision)


@router.get("/kv", response_model=KeyValueResponse)
async def get_key(
    key: str = Query(..., description="Exact key name"),
    revision: Optional[int] = Query(None, description="Point-in-time revision (unsupported)"),
    backend: Backend = Depends(get_backend),
):
    """Get the current state of a key."""
    kv = await backend.get(key, revision)
    if kv is None:
        raise HTTPException(status_code=404, detail=f"Key not found: {key}")
    return KeyValueResponse.from_kv(kv)


@router.delete("/kv", response_model=RevisionResponse)
async def delete_key(
    key: str = Query(..., min_length=1, description="Exact key name"),
    backend: Backend = Depends(get_backend),
):
    """Delete a key; deleting an absent key returns the current revision."""
    revision = await backend.delete(key)
    return RevisionResponse(revision=revision)


@router.get("/range", response_model=RangeResponse)
async def list_range(
    request: Request,
    prefix: str = Query(..., description="Exact key, or scope ending in '/'"),
    limit: Optional[int] = Query(None, description="Maximum rows, <= 0 for unbounded"),
    include_deleted: bool = Query(
        False, description="Include keys whose current row is a tombstone"
    ),
    backend: Backend = Depends(get_backend),
):
    """List the current row of every key matching prefix."""
    if limit is None:
        limit = request.app.state.settings.default_list_limit

    # Read before listing so the rows reflect at least this revision
    revision = await backend.current_revision()
    kvs = await backend.list_current(prefix, limit, include_deleted)
    return RangeResponse(
        kvs=[KeyValueResponse.from_kv(kv) for kv in kvs],
        count=len(kvs),
        revision=revision,
    )


@router.get("/count", response_model=CountResponse)
async def count_keys(
    prefix: str = Query(..., description="Exact key, or scope ending in '/'"),
    backend: Backend = Depends(get_backend),
):
    """Count live keys matching prefix."""
    return CountResponse(count=await backend.count(prefix))
