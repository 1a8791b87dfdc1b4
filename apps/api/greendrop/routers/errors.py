from fastapi import HTTPException, status
from pydantic import ValidationError

from greendrop.services.order_lifecycle import SideEffectError
from greendrop.services.state_machine import InvalidTransitionError, TerminalStateError
from greendrop.services.store import StoreError


def transition_conflict(err: InvalidTransitionError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={
            "code": "TERMINAL_STATE" if isinstance(err, TerminalStateError) else "INVALID_TRANSITION",
            "from": err.current.value,
            "to": err.next_status.value,
            "message": str(err),
        },
    )


def retryable_failure(err: StoreError | SideEffectError) -> HTTPException:
    detail: dict = {"code": "RETRYABLE", "message": str(err)}
    if isinstance(err, SideEffectError):
        detail["failed_steps"] = err.failed_steps
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail)


def malformed_document(err: ValidationError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail={"code": "MALFORMED_DOCUMENT", "errors": err.errors(include_url=False)},
    )
