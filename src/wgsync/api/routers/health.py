from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status

from wgsync.api.deps import get_reconciler
from wgsync.enums import StoreState
from wgsync.schemas import HealthResponse, InterfaceRead
from wgsync.services.reconciler import Reconciler

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health(response: Response, reconciler: Reconciler = Depends(get_reconciler)) -> HealthResponse:
    state = await reconciler.store.state()
    if state != StoreState.READY:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="degraded", store=state)
    return HealthResponse(status="ok", store=state)


@router.get("/interface", response_model=InterfaceRead)
async def interface(reconciler: Reconciler = Depends(get_reconciler)) -> InterfaceRead:
    info = await reconciler.interface_info()
    return InterfaceRead(
        interface=info.interface,
        public_key=info.public_key,
        available=info.available,
        details=info.details,
    )
