from dataclasses import asdict

from fastapi import APIRouter, Depends
from pydantic import ValidationError

from greendrop.dependencies import get_change_feed_dispatcher
from greendrop.observability import log_event
from greendrop.routers.errors import malformed_document, retryable_failure, transition_conflict
from greendrop.schemas.events import ChangeEventRequest, ChangeEventResponse
from greendrop.services.change_feed import ChangeEvent, ChangeFeedDispatcher
from greendrop.services.order_lifecycle import SideEffectError
from greendrop.services.state_machine import InvalidTransitionError
from greendrop.services.store import StoreError

router = APIRouter(prefix="/api/v1/events", tags=["events"])


@router.post("", response_model=ChangeEventResponse, summary="Ingest a store change event")
def ingest_change_event(
    payload: ChangeEventRequest,
    dispatcher: ChangeFeedDispatcher = Depends(get_change_feed_dispatcher),
) -> ChangeEventResponse:
    """
    Delivery is at least once: a 503 asks the change feed to redeliver, a 409 or 422
    means redelivering the same event will never succeed.
    """
    event = ChangeEvent(
        collection=payload.collection,
        document_id=payload.document_id,
        before=payload.before,
        after=payload.after,
    )
    try:
        result = dispatcher.dispatch(event)
    except InvalidTransitionError as err:
        raise transition_conflict(err) from err
    except (StoreError, SideEffectError) as err:
        raise retryable_failure(err) from err
    except ValidationError as err:
        log_event(f"change_event_malformed:{event.collection}/{event.document_id}", error=str(err))
        raise malformed_document(err) from err

    return ChangeEventResponse.model_validate(asdict(result))
