from __future__ import annotations


class ElectionError(Exception):
    pass


class PreconditionError(ElectionError):
    """Lifecycle transition or mutation not allowed in the current state."""


class ElectionNotOpenError(PreconditionError):
    pass


class DuplicateBallotError(ElectionError):
    pass


class IneligibleUnitError(ElectionError):
    pass


class InvalidVotePayloadError(ElectionError):
    def __init__(self, message: str, item_id: int | None = None):
        super().__init__(message)
        self.item_id = item_id


class MissingProxyAuthorizationError(ElectionError):
    pass


class InvalidDefinitionError(ElectionError):
    """Election or ballot item fields are inconsistent or out of range."""


class NotFoundError(ElectionError):
    pass
