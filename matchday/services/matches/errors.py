"""Domain errors raised by the match use-cases.

Each error carries a stable code and the HTTP status the API layer renders
it with. All of them are raised before the first write of a transaction.
"""


class MatchDomainError(Exception):
    """Base class for all match domain errors."""

    code = "DOMAIN_ERROR"
    status_code = 400

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.code
        super().__init__(self.detail)


class MatchNotFound(MatchDomainError):
    code = "MATCH_NOT_FOUND"
    status_code = 404


class UserNotFound(MatchDomainError):
    code = "USER_NOT_FOUND"
    status_code = 404


class Forbidden(MatchDomainError):
    """Actor is not the creator (or not creator/match-admin) for this action."""

    code = "FORBIDDEN"
    status_code = 403


class RevisionConflict(MatchDomainError):
    """expectedRevision is stale. Re-read the match and resubmit."""

    code = "REVISION_CONFLICT"
    status_code = 409


class MatchLocked(MatchDomainError):
    code = "MATCH_LOCKED"
    status_code = 409


class MatchCancelled(MatchDomainError):
    code = "MATCH_CANCELLED"
    status_code = 409


class DomainConflict(MatchDomainError):
    """Semantically rejected request. Resubmitting alone will not help."""

    code = "DOMAIN_CONFLICT"
    status_code = 409


class AlreadyParticipant(DomainConflict):
    code = "ALREADY_PARTICIPANT"


class SelfInvite(DomainConflict):
    code = "SELF_INVITE"


class WithdrawRequired(DomainConflict):
    code = "WITHDRAW_REQUIRED"


class CreatorTransferRequired(DomainConflict):
    """The creator is leaving and no other match-admin can take over."""

    code = "CREATOR_TRANSFER_REQUIRED"
    status_code = 422


class CannotDemoteCreator(DomainConflict):
    code = "CANNOT_DEMOTE_CREATOR"
    status_code = 422


class NotAParticipant(DomainConflict):
    code = "NOT_A_PARTICIPANT"
    status_code = 422


class ValidationFailed(MatchDomainError):
    code = "VALIDATION_ERROR"
    status_code = 422


class IdempotencyKeyReuse(MatchDomainError):
    """Same idempotency key seen with a different request payload."""

    code = "IDEMPOTENCY_KEY_REUSE"
    status_code = 409


class IdempotencyKeyRequired(MatchDomainError):
    code = "IDEMPOTENCY_KEY_REQUIRED"
    status_code = 422


class Unauthenticated(MatchDomainError):
    """Missing or malformed X-User-Id header."""

    code = "UNAUTHENTICATED"
    status_code = 401
