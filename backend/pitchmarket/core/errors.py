"""
Pitch Market - Engine Errors
============================

Failure taxonomy shared by every engine component.

Each error carries the HTTP status and machine code used when it is
rendered by the API layer. `Conflict` and `Rejected` messages are safe to
show to the caller verbatim; `Internal` never exposes its cause.
"""

from typing import Optional

from fastapi import status


class EngineError(Exception):
    """Base class for all engine failures."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "ENGINE_ERROR"
    title: str = "Engine Error"

    def __init__(self, detail: str, *, reason: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        self.reason = reason


class UnauthenticatedError(EngineError):
    """No caller identity."""

    status_code = status.HTTP_401_UNAUTHORIZED
    code = "UNAUTHENTICATED"
    title = "Unauthenticated"


class ForbiddenError(EngineError):
    """Wrong role, or not the owning team."""

    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"
    title = "Forbidden"


class NotFoundError(EngineError):
    """Unknown cluster, team, schedule or investment."""

    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"
    title = "Not Found"


class ConflictError(EngineError):
    """Illegal transition, double commit, pitch already running, draft locked."""

    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"
    title = "Conflict"


class RejectedError(EngineError):
    """Business-rule violation such as over-budget or self-investment."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "REJECTED"
    title = "Rejected"


class InternalError(EngineError):
    """Storage or transaction failure. State has been rolled back."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "INTERNAL"
    title = "Internal Error"

    def __init__(self, detail: str = "The operation could not be completed, please retry"):
        super().__init__(detail)


# Rejection reasons
REASON_OVER_BUDGET = "over_budget"
REASON_SELF_INVESTMENT = "self_investment"
REASON_WRONG_TARGET = "wrong_target"
REASON_WRONG_STAGE = "wrong_stage"
REASON_INVALID_AMOUNT = "invalid_amount"
REASON_EMPTY_PORTFOLIO = "empty_portfolio"
REASON_DUPLICATE_TARGET = "duplicate_target"
REASON_INVALID_DEADLINE = "invalid_deadline"
REASON_WRONG_TEAM = "wrong_team"
REASON_CLUSTER_FULL = "cluster_full"
REASON_EMPTY_ROSTER = "empty_roster"
