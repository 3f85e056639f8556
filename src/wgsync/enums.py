from enum import Enum


class StoreState(str, Enum):
    READY = "ready"
    UNAVAILABLE = "unavailable"


class LifecycleOp(str, Enum):
    CREATE = "create"
    ENABLE = "enable"
    DISABLE = "disable"
    DELETE = "delete"
    REGENERATE = "regenerate"
    UPDATE = "update"
    RESYNC = "resync"


class InterfaceOp(str, Enum):
    UPSERT_PEER = "upsert_peer"
    REMOVE_PEER = "remove_peer"
