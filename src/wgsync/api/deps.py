from functools import lru_cache

from fastapi import HTTPException, status

from wgsync.db import get_store
from wgsync.services.errors import (
    Conflict,
    InterfaceUnavailable,
    NotFound,
    PeerDirectoryError,
    PoolExhausted,
    ProvisionError,
    ValidationError,
)
from wgsync.services.interface import WgInterfaceController
from wgsync.services.reconciler import Reconciler
from wgsync.settings import get_settings

_STATUS_BY_ERROR: list[tuple[type[PeerDirectoryError], int]] = [
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (Conflict, status.HTTP_409_CONFLICT),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (PoolExhausted, status.HTTP_409_CONFLICT),
    (ProvisionError, status.HTTP_502_BAD_GATEWAY),
    (InterfaceUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
]


@lru_cache(maxsize=1)
def get_reconciler() -> Reconciler:
    settings = get_settings()
    return Reconciler(get_store(), WgInterfaceController.from_settings(settings), settings)


def http_error(exc: PeerDirectoryError) -> HTTPException:
    for error_cls, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_cls):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
