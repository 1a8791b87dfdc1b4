from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import ValidationError

from greendrop.config import settings
from greendrop.dependencies import get_driver_matcher, get_store
from greendrop.models.domain import ORDERS, normalize_order
from greendrop.observability import metrics_store, observe_timing
from greendrop.routers.errors import malformed_document, retryable_failure
from greendrop.schemas.dispatch import MatchCandidateItem, MatchCandidatesResponse, MatchResponse
from greendrop.services.driver_matching import DriverMatcher
from greendrop.services.store import DocumentStore, StoreError

router = APIRouter(prefix="/api/v1/dispatch", tags=["dispatch"])


@router.get(
    "/candidates",
    response_model=MatchCandidatesResponse,
    summary="Rank drivers around a pickup point",
)
def list_candidates(
    lat: float = Query(ge=-90, le=90),
    lng: float = Query(ge=-180, le=180),
    max_results: int = Query(default=settings.matching_max_results, ge=1, le=50),
    matcher: DriverMatcher = Depends(get_driver_matcher),
) -> MatchCandidatesResponse:
    try:
        candidates = matcher.find_best_drivers(lat, lng, max_results)
    except StoreError as err:
        raise retryable_failure(err) from err

    return MatchCandidatesResponse(
        candidates=[
            MatchCandidateItem(
                driver_id=candidate.driver.id,
                name=candidate.driver.name,
                distance_km=round(candidate.distance_km, 3),
                score=round(candidate.score, 4),
            )
            for candidate in candidates
        ]
    )


@router.post(
    "/orders/{order_id}/match",
    response_model=MatchResponse,
    summary="Re-run driver matching for an unassigned order",
)
def rematch_order(
    order_id: str,
    store: DocumentStore = Depends(get_store),
    matcher: DriverMatcher = Depends(get_driver_matcher),
) -> MatchResponse:
    try:
        data = store.get(ORDERS, order_id)
    except StoreError as err:
        raise retryable_failure(err) from err
    if data is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")

    try:
        order = normalize_order(order_id, data)
    except ValidationError as err:
        raise malformed_document(err) from err
    if order.driver_id:
        return MatchResponse(
            order_id=order_id,
            assigned=True,
            already_assigned=True,
            driver_id=order.driver_id,
            driver_name=order.driver_name,
        )
    if order.is_terminal:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Order is {order.status.value}",
        )
    if order.pickup_location is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Order has no pickup location",
        )

    with observe_timing("dispatch_rematch_seconds"):
        try:
            driver = matcher.auto_assign_driver(
                order_id, order.pickup_location.lat, order.pickup_location.lng
            )
        except StoreError as err:
            raise retryable_failure(err) from err
    metrics_store.increment("dispatch_rematch_total")

    if driver is None:
        return MatchResponse(order_id=order_id, assigned=False)
    return MatchResponse(
        order_id=order_id,
        assigned=True,
        driver_id=driver.id,
        driver_name=driver.name,
    )
