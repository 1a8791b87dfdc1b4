import logging
from collections.abc import Callable
from datetime import datetime

from greendrop.models.domain import (
    DRIVERS,
    ORDERS,
    Driver,
    DriverStatus,
    GeoPoint,
    MatchCandidate,
    normalize_driver,
    normalize_many,
    now_utc,
)
from greendrop.observability import log_event, metrics_store, observe_timing
from greendrop.services.geo_scoring import (
    ScoringWeights,
    distance_km,
    score_candidate,
    weights_from_settings,
)
from greendrop.services.store import (
    DocumentNotFoundError,
    DocumentStore,
    Filter,
    PreconditionFailedError,
    StoreError,
)


class DriverMatcher:
    def __init__(
        self,
        store: DocumentStore,
        clock: Callable[[], datetime] = now_utc,
        weights: ScoringWeights | None = None,
        default_max_results: int = 5,
    ) -> None:
        self.store = store
        self.clock = clock
        self.weights = weights or weights_from_settings()
        self.default_max_results = default_max_results

    def find_best_drivers(
        self,
        pickup_lat: float,
        pickup_lng: float,
        max_results: int | None = None,
    ) -> list[MatchCandidate]:
        limit = self.default_max_results if max_results is None else max_results
        if limit < 1:
            raise ValueError("max_results must be >= 1")

        pickup = GeoPoint(lat=pickup_lat, lng=pickup_lng)
        snapshots = self.store.query(DRIVERS, Filter("status", "==", DriverStatus.ONLINE.value))
        drivers = normalize_many(snapshots, normalize_driver, "driver")
        now = self.clock()

        candidates: list[MatchCandidate] = []
        for driver in drivers:
            if driver.location is None:
                continue
            distance = distance_km(pickup, driver.location)
            if distance > self.weights.radius_km:
                continue
            # Status filter should already exclude claimed drivers; re-check the claim itself.
            if driver.current_order_id is not None:
                continue
            score = score_candidate(
                distance,
                driver.rating,
                driver.completed_deliveries,
                driver.last_seen_at,
                now,
                self.weights,
            )
            candidates.append(MatchCandidate(driver=driver, distance_km=distance, score=score))

        # list.sort is stable, so equal scores keep store order.
        candidates.sort(key=lambda candidate: candidate.score, reverse=True)
        return candidates[:limit]

    def auto_assign_driver(
        self,
        order_id: str,
        pickup_lat: float,
        pickup_lng: float,
    ) -> Driver | None:
        metrics_store.increment("driver_match_total")
        with observe_timing("driver_matching_seconds"):
            candidates = self.find_best_drivers(pickup_lat, pickup_lng)

        if not candidates:
            metrics_store.increment("driver_match_empty_total")
            log_event("driver_match_no_candidates", order_id=order_id)
            return None

        for candidate in candidates:
            driver = candidate.driver
            if not self._claim_driver(order_id, driver):
                continue

            try:
                self._attach_driver_to_order(order_id, driver)
            except PreconditionFailedError:
                self._release_claim(order_id, driver)
                log_event("order_already_assigned", order_id=order_id, driver_id=driver.id)
                return None
            except StoreError:
                self._release_claim(order_id, driver)
                raise

            metrics_store.increment("driver_assigned_total")
            log_event("driver_assigned", order_id=order_id, driver_id=driver.id)
            return driver.model_copy(
                update={
                    "current_order_id": order_id,
                    "status": DriverStatus.BUSY,
                    "is_available": False,
                }
            )

        log_event("driver_match_all_candidates_claimed", level=logging.WARNING, order_id=order_id)
        return None

    def _claim_driver(self, order_id: str, driver: Driver) -> bool:
        try:
            self.store.update(
                DRIVERS,
                driver.id,
                {
                    "currentOrderId": order_id,
                    "isAvailable": False,
                    "status": DriverStatus.BUSY.value,
                    "updatedAt": self.clock().isoformat(),
                },
                expected={"currentOrderId": None, "status": DriverStatus.ONLINE.value},
            )
        except (PreconditionFailedError, DocumentNotFoundError) as exc:
            metrics_store.increment("driver_claim_conflict_total")
            log_event(
                "driver_claim_conflict",
                order_id=order_id,
                driver_id=driver.id,
                error=str(exc),
            )
            return False
        return True

    def _attach_driver_to_order(self, order_id: str, driver: Driver) -> None:
        self.store.update(
            ORDERS,
            order_id,
            {
                "driverId": driver.id,
                "driverName": driver.name,
                "driverPhone": driver.phone,
                "updatedAt": self.clock().isoformat(),
            },
            expected={"driverId": None},
        )

    def _release_claim(self, order_id: str, driver: Driver) -> None:
        try:
            self.store.update(
                DRIVERS,
                driver.id,
                {
                    "currentOrderId": None,
                    "isAvailable": True,
                    "status": DriverStatus.ONLINE.value,
                    "updatedAt": self.clock().isoformat(),
                },
                expected={"currentOrderId": order_id},
            )
        except StoreError as exc:
            metrics_store.increment("driver_claim_compensation_failed_total")
            log_event(
                "driver_claim_compensation_failed",
                level=logging.ERROR,
                order_id=order_id,
                driver_id=driver.id,
                error=str(exc),
            )
            return
        log_event("driver_claim_released", order_id=order_id, driver_id=driver.id)
