"""Domain error taxonomy.

Services raise these; ``middleware.error_handler`` renders them as JSON with
the status code each class carries. Everything except ``UpstreamError`` is
deterministic and never retried.
"""

from __future__ import annotations

from typing import Any


class WasteWiseError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500
    code: str = "error"

    def __init__(self, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict[str, Any]:
        return {"detail": self.message, "code": self.code, **self.extra}


class ValidationError(WasteWiseError):
    """Malformed input, rejected before any state is touched."""

    status_code = 400
    code = "validation_error"


class NotFoundError(WasteWiseError):
    status_code = 404
    code = "not_found"


class StateConflictError(WasteWiseError):
    """A state-machine guard was violated."""

    status_code = 409
    code = "state_conflict"


class UpstreamError(WasteWiseError):
    """Scoring oracle, chain adapter or content store failed."""

    status_code = 502
    code = "upstream_error"


class InvariantViolation(WasteWiseError):
    status_code = 500
    code = "invariant_violation"


# --- Achievement guards ---


class NotCompleted(StateConflictError):
    code = "not_completed"


class AlreadyClaimed(StateConflictError):
    code = "already_claimed"


class ClaimCapReached(StateConflictError):
    code = "claim_cap_reached"


class OutsideValidityWindow(StateConflictError):
    code = "outside_validity_window"


class AchievementInactive(StateConflictError):
    code = "achievement_inactive"


class DuplicateCode(StateConflictError):
    code = "duplicate_code"


# --- NFT guards ---


class NotAvailable(StateConflictError):
    code = "not_available"


class NotEligible(StateConflictError):
    code = "not_eligible"

    def __init__(self, message: str, missing: list[str]) -> None:
        super().__init__(message, missing=missing)
        self.missing = missing


class ReservationExpired(StateConflictError):
    code = "reservation_expired"


class ReservationMismatch(StateConflictError):
    code = "reservation_mismatch"


class ItemNotMinted(StateConflictError):
    code = "item_not_minted"


class ClaimInProgress(StateConflictError):
    code = "claim_in_progress"


class VoidNotAllowed(StateConflictError):
    code = "void_not_allowed"


class Forbidden(WasteWiseError):
    status_code = 403
    code = "forbidden"
