class PeerDirectoryError(RuntimeError):
    pass


class ValidationError(PeerDirectoryError):
    """Malformed caller input (name, address, patch field)."""


class Conflict(PeerDirectoryError):
    """Name, address or public key already taken by another record."""


class NotFound(PeerDirectoryError):
    pass


class PoolExhausted(PeerDirectoryError):
    pass


class InterfaceUnavailable(PeerDirectoryError):
    """The live interface could not be reached. Never fatal to directory writes."""


class ProvisionError(PeerDirectoryError):
    """Key generation failed; a peer cannot exist without keys."""
