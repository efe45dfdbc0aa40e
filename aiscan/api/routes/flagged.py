import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, Query

from aiscan.schemas import FlaggedResultOut, FlaggedResultsResponse
from aiscan.services.result_store import ResultStore
from ..deps import get_result_store

router = APIRouter()


@router.get("/flagged", response_model=FlaggedResultsResponse)
async def list_flagged(
    limit: int = Query(100, ge=1, le=1000),
    result_store: Optional[ResultStore] = Depends(get_result_store),
):
    if result_store is None:
        return FlaggedResultsResponse(message="Flagged-result storage is not configured", data=[])
    rows = await asyncio.to_thread(result_store.list_flagged, limit)
    return FlaggedResultsResponse(
        message=f"Found {len(rows)} flagged results",
        data=[FlaggedResultOut(**row) for row in rows],
    )
