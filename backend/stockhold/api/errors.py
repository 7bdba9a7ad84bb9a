from typing import Optional

from fastapi import HTTPException

from stockhold.outcomes import USER_MESSAGES, Outcome

STATUS_CODES = {
    Outcome.NOT_FOUND: 404,
    Outcome.INACTIVE: 409,
    Outcome.INSUFFICIENT_STOCK: 409,
    Outcome.NOT_ACTIVE: 409,
    Outcome.ALREADY_TERMINAL: 409,
    Outcome.EXPIRED: 409,
    Outcome.INVARIANT_VIOLATION: 500,
    Outcome.CONFLICT: 409,
}


def outcome_error(
    outcome: Outcome, message: Optional[str] = None, **extra
) -> HTTPException:
    detail = {"error": outcome.value, "message": message or USER_MESSAGES[outcome]}
    detail.update({k: v for k, v in extra.items() if v is not None})
    return HTTPException(status_code=STATUS_CODES[outcome], detail=detail)


def not_found(message: str) -> HTTPException:
    return outcome_error(Outcome.NOT_FOUND, message)
