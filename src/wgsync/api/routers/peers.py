from fastapi import APIRouter, Depends, Query, status

from wgsync.api.deps import get_reconciler, http_error
from wgsync.models import Peer
from wgsync.schemas import (
    BulkDeleteRead,
    BulkDeleteRequest,
    DeletedPeerRead,
    FailedDeleteRead,
    PeerCreate,
    PeerOutcomeRead,
    PeerRead,
    PeerSecretOutcomeRead,
    PeerSecretRead,
    PeerUpdate,
)
from wgsync.services.errors import PeerDirectoryError
from wgsync.services.reconciler import PeerOutcome, Reconciler

router = APIRouter(prefix="/peers", tags=["peers"])


def _safe(peer: Peer) -> PeerRead:
    return PeerRead.model_validate(peer, from_attributes=True)


def _outcome(outcome: PeerOutcome) -> PeerOutcomeRead:
    return PeerOutcomeRead(peer=_safe(outcome.peer) if outcome.peer else None, warnings=outcome.warnings)


def _secret_outcome(outcome: PeerOutcome) -> PeerSecretOutcomeRead:
    return PeerSecretOutcomeRead(
        peer=PeerSecretRead.model_validate(outcome.peer, from_attributes=True),
        warnings=outcome.warnings,
    )


@router.get("", response_model=list[PeerRead])
async def list_peers(
    enabled: bool | None = Query(default=None),
    reconciler: Reconciler = Depends(get_reconciler),
) -> list[PeerRead]:
    return [_safe(peer) for peer in await reconciler.list_peers(enabled=enabled)]


@router.post("", response_model=PeerSecretOutcomeRead, status_code=status.HTTP_201_CREATED)
async def create_peer(payload: PeerCreate, reconciler: Reconciler = Depends(get_reconciler)) -> PeerSecretOutcomeRead:
    options = payload.model_dump(exclude={"name"})
    try:
        outcome = await reconciler.create(payload.name, **options)
    except PeerDirectoryError as exc:
        raise http_error(exc) from exc
    return _secret_outcome(outcome)


@router.post("/bulk-delete", response_model=BulkDeleteRead)
async def bulk_delete_peers(payload: BulkDeleteRequest, reconciler: Reconciler = Depends(get_reconciler)) -> BulkDeleteRead:
    result = await reconciler.bulk_delete(payload.names)
    return BulkDeleteRead(
        deleted_count=result.deleted_count,
        deleted=[
            DeletedPeerRead(name=row.name, address=row.address, public_key=row.public_key, warnings=row.warnings)
            for row in result.deleted
        ],
        failed=[FailedDeleteRead(name=row.name, error=row.error) for row in result.failed],
    )


@router.get("/{name}", response_model=PeerRead)
async def get_peer(name: str, reconciler: Reconciler = Depends(get_reconciler)) -> PeerRead:
    try:
        return _safe(await reconciler.get(name))
    except PeerDirectoryError as exc:
        raise http_error(exc) from exc


@router.get("/{name}/reveal", response_model=PeerSecretRead)
async def reveal_peer(name: str, reconciler: Reconciler = Depends(get_reconciler)) -> PeerSecretRead:
    try:
        peer = await reconciler.reveal(name)
    except PeerDirectoryError as exc:
        raise http_error(exc) from exc
    return PeerSecretRead.model_validate(peer, from_attributes=True)


@router.patch("/{name}", response_model=PeerOutcomeRead)
async def update_peer(name: str, payload: PeerUpdate, reconciler: Reconciler = Depends(get_reconciler)) -> PeerOutcomeRead:
    try:
        outcome = await reconciler.update(name, payload.model_dump(exclude_unset=True))
    except PeerDirectoryError as exc:
        raise http_error(exc) from exc
    return _outcome(outcome)


@router.post("/{name}/enable", response_model=PeerOutcomeRead)
async def enable_peer(name: str, reconciler: Reconciler = Depends(get_reconciler)) -> PeerOutcomeRead:
    try:
        return _outcome(await reconciler.enable(name))
    except PeerDirectoryError as exc:
        raise http_error(exc) from exc


@router.post("/{name}/disable", response_model=PeerOutcomeRead)
async def disable_peer(name: str, reconciler: Reconciler = Depends(get_reconciler)) -> PeerOutcomeRead:
    try:
        return _outcome(await reconciler.disable(name))
    except PeerDirectoryError as exc:
        raise http_error(exc) from exc


@router.post("/{name}/regenerate", response_model=PeerSecretOutcomeRead)
async def regenerate_peer(name: str, reconciler: Reconciler = Depends(get_reconciler)) -> PeerSecretOutcomeRead:
    try:
        outcome = await reconciler.regenerate(name)
    except PeerDirectoryError as exc:
        raise http_error(exc) from exc
    return _secret_outcome(outcome)


@router.delete("/{name}", response_model=PeerOutcomeRead)
async def delete_peer(name: str, reconciler: Reconciler = Depends(get_reconciler)) -> PeerOutcomeRead:
    try:
        return _outcome(await reconciler.delete(name))
    except PeerDirectoryError as exc:
        raise http_error(exc) from exc
