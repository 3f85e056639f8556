from __future__ import annotations

from fastapi import APIRouter, Depends

from wgsync.api.deps import get_reconciler
from wgsync.schemas import ResyncRead, StatsCycleRead
from wgsync.services.reconciler import Reconciler

router = APIRouter(tags=["stats"])


@router.post("/stats/run", response_model=StatsCycleRead)
async def run_stats(reconciler: Reconciler = Depends(get_reconciler)) -> StatsCycleRead:
    result = await reconciler.run_stats_once()
    return StatsCycleRead(
        interface_available=result.interface_available,
        snapshots=result.snapshots,
        updated=result.updated,
        ghosts_removed=result.ghosts_removed,
        unknown_removed=result.unknown_removed,
    )


@router.post("/resync", response_model=ResyncRead)
async def resync(reconciler: Reconciler = Depends(get_reconciler)) -> ResyncRead:
    result = await reconciler.resync()
    return ResyncRead(pushed=result.pushed, removed=result.removed, warnings=result.warnings)
