"""
Core ride lifecycle operations.

Every status change goes through one transition table, so each endpoint
(accept, arrive, start, complete, cancel) shares the same role, ownership
and state checks. Mutations are applied with a single conditional
find-and-modify on the ride document; a lost race surfaces as a
ConflictError instead of a double write.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from bson import ObjectId
from pydantic import ValidationError as PydanticValidationError

from models.events import RideStatusEvent
from models.location_model import LocationInput
from models.ride_model import (
    ACTIVE_STATUSES,
    PAYMENT_METHODS,
    FareBreakdown,
    Ride,
    RideLocation,
    RideStatus,
)
from models.user_model import User
from utils.fare_calculator import calculate_fare
from utils.helpers import calculate_distance, calculate_eta, minutes_between
from .exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

Notifier = Callable[[str, dict], Any]


# ===================== State Machine =====================


class RideAction(str, Enum):
    ACCEPT = "accept"
    ARRIVE = "arrive"
    START = "start"
    COMPLETE = "complete"
    CANCEL = "cancel"


class ActorRule(str, Enum):
    """Who may perform an action."""

    ANY_DRIVER = "any_driver"
    ASSIGNED_DRIVER = "assigned_driver"
    PARTICIPANT = "participant"  # the passenger or the assigned driver


@dataclass(frozen=True)
class ActionPolicy:
    actor_rule: ActorRule
    timestamp_field: str
    # cancel reports a terminal ride as a conflict even to outsiders
    check_actor_first: bool = True


TRANSITION_TABLE: Dict[Tuple[RideStatus, RideAction], RideStatus] = {
    (RideStatus.PENDING, RideAction.ACCEPT): RideStatus.ACCEPTED,
    (RideStatus.ACCEPTED, RideAction.ARRIVE): RideStatus.ARRIVED,
    (RideStatus.ARRIVED, RideAction.START): RideStatus.IN_PROGRESS,
    (RideStatus.IN_PROGRESS, RideAction.COMPLETE): RideStatus.COMPLETED,
    (RideStatus.PENDING, RideAction.CANCEL): RideStatus.CANCELLED,
    (RideStatus.ACCEPTED, RideAction.CANCEL): RideStatus.CANCELLED,
    (RideStatus.ARRIVED, RideAction.CANCEL): RideStatus.CANCELLED,
}

ACTION_POLICIES: Dict[RideAction, ActionPolicy] = {
    # driver_status is not a precondition: offline drivers may accept too.
    # Online/offline only feeds surge supply and the nearby-driver search.
    RideAction.ACCEPT: ActionPolicy(ActorRule.ANY_DRIVER, "accepted_at"),
    RideAction.ARRIVE: ActionPolicy(ActorRule.ASSIGNED_DRIVER, "arrived_at"),
    RideAction.START: ActionPolicy(ActorRule.ASSIGNED_DRIVER, "started_at"),
    RideAction.COMPLETE: ActionPolicy(ActorRule.ASSIGNED_DRIVER, "completed_at"),
    RideAction.CANCEL: ActionPolicy(
        ActorRule.PARTICIPANT, "cancelled_at", check_actor_first=False
    ),
}


@dataclass(frozen=True)
class Actor:
    """Authenticated principal as seen by the lifecycle."""

    id: str
    role: str

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(id=str(user.id), role=user.role)


@dataclass(frozen=True)
class RideSnapshot:
    status: RideStatus
    passenger_id: str
    driver_id: Optional[str] = None

    @classmethod
    def from_ride(cls, ride: Ride) -> "RideSnapshot":
        return cls(
            status=RideStatus(ride.status),
            passenger_id=str(ride.passenger.id),
            driver_id=str(ride.driver.id) if ride.driver else None,
        )


def source_states(action: RideAction) -> List[RideStatus]:
    """States from which `action` is allowed."""
    return [state for (state, act) in TRANSITION_TABLE if act is action]


def _check_actor(rule: ActorRule, snapshot: RideSnapshot, actor: Actor, action: RideAction):
    if rule is ActorRule.ANY_DRIVER:
        if actor.role != "driver":
            raise AuthorizationError(f"Only drivers can {action.value} rides")
    elif rule is ActorRule.ASSIGNED_DRIVER:
        if snapshot.driver_id is None or snapshot.driver_id != actor.id:
            raise AuthorizationError(
                f"Only the assigned driver can {action.value} this ride"
            )
    elif rule is ActorRule.PARTICIPANT:
        if actor.id not in (snapshot.passenger_id, snapshot.driver_id):
            raise AuthorizationError(f"Not authorized to {action.value} this ride")


def _check_state(snapshot: RideSnapshot, action: RideAction) -> RideStatus:
    target = TRANSITION_TABLE.get((snapshot.status, action))
    if target is None:
        raise ConflictError(
            f"Cannot {action.value} ride with status: {snapshot.status.value}"
        )
    return target


def resolve_transition(
    snapshot: RideSnapshot, action: RideAction, actor: Actor
) -> RideStatus:
    """
    Look up (state, action, actor) in the transition table.

    Returns:
        The status the ride moves to

    Raises:
        AuthorizationError: The actor may not perform this action on this ride
        ConflictError: The action is not valid from the current status
    """
    policy = ACTION_POLICIES[action]
    if policy.check_actor_first:
        _check_actor(policy.actor_rule, snapshot, actor, action)
        return _check_state(snapshot, action)

    target = _check_state(snapshot, action)
    _check_actor(policy.actor_rule, snapshot, actor, action)
    return target


def parse_location(value: Union[LocationInput, dict, None], name: str) -> LocationInput:
    """Validate a pickup/dropoff payload into a LocationInput."""
    if isinstance(value, LocationInput):
        return value
    if not value:
        raise ValidationError(
            f"{name} is required",
            errors=[{"field": name, "message": f"{name} is required"}],
        )
    try:
        return LocationInput.model_validate(value)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid {name}",
            errors=[
                {
                    "field": ".".join([name] + [str(p) for p in err["loc"]]),
                    "message": err["msg"],
                }
                for err in e.errors()
            ],
        )


def _number_or_error(value, name: str) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise ValidationError(
            f"{name} must be a non-negative number",
            errors=[{"field": name, "message": "Must be a non-negative number"}],
        )
    return float(value)


# ===================== Lifecycle Controller =====================


class RideLifecycleController:
    """Applies ride requests and status transitions against the ride store."""

    def __init__(
        self,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._notifier = notifier
        self._clock = clock

    # ----- Passenger operations -----

    def request(
        self,
        passenger: User,
        pickup: Union[LocationInput, dict, None],
        dropoff: Union[LocationInput, dict, None],
        distance: Optional[float] = None,
        estimated_duration: Optional[float] = None,
        payment_method: Optional[str] = None,
        surge_multiplier: float = 1.0,
    ) -> Ride:
        """
        Create a new ride request in `pending`.

        Args:
            passenger: Requesting user, must have the passenger role
            pickup: {"coordinates": [lng, lat], "address": str}
            dropoff: {"coordinates": [lng, lat], "address": str}
            distance: Trip distance in km; haversine estimate when omitted
            estimated_duration: Trip duration in minutes; derived when omitted
            payment_method: cash, card or wallet (default cash)
            surge_multiplier: Applied to the fare estimate

        Raises:
            ValidationError: Missing or malformed locations / numbers
            AuthorizationError: The actor is not a passenger
        """
        pickup_location = parse_location(pickup, "pickupLocation")
        dropoff_location = parse_location(dropoff, "dropoffLocation")
        distance = _number_or_error(distance, "distance")
        estimated_duration = _number_or_error(estimated_duration, "estimatedDuration")

        payment_method = payment_method or "cash"
        if payment_method not in PAYMENT_METHODS:
            raise ValidationError(
                "Invalid payment method",
                errors=[{"field": "paymentMethod", "message": "Must be cash, card or wallet"}],
            )

        if passenger.role != "passenger":
            raise AuthorizationError("Only passengers can request rides")

        if distance is None:
            distance = calculate_distance(
                pickup_location.latitude,
                pickup_location.longitude,
                dropoff_location.latitude,
                dropoff_location.longitude,
            )
        if estimated_duration is None:
            estimated_duration = calculate_eta(distance)

        fare = calculate_fare(distance, estimated_duration, surge_multiplier)

        now = self._clock()
        ride = Ride(
            passenger=passenger,
            status=RideStatus.PENDING.value,
            pickup_location=RideLocation(
                coordinates=list(pickup_location.coordinates),
                address=pickup_location.address,
            ),
            dropoff_location=RideLocation(
                coordinates=list(dropoff_location.coordinates),
                address=dropoff_location.address,
            ),
            distance=round(distance, 2),
            estimated_duration=int(round(estimated_duration)),
            fare=fare["totalFare"],
            fare_breakdown=FareBreakdown.from_dict(fare),
            payment_method=payment_method,
            created_at=now,
            updated_at=now,
        )
        ride.save()

        logger.info(
            f"New ride request created: {ride.id} by {passenger.email}, "
            f"distance: {ride.distance}km, fare: {ride.fare}"
        )
        return ride

    # ----- Transitions -----

    def accept(self, driver: User, ride_id: str) -> Ride:
        return self._transition(RideAction.ACCEPT, driver, ride_id)

    def arrive(self, driver: User, ride_id: str) -> Ride:
        return self._transition(RideAction.ARRIVE, driver, ride_id)

    def start(self, driver: User, ride_id: str) -> Ride:
        return self._transition(RideAction.START, driver, ride_id)

    def complete(self, driver: User, ride_id: str) -> Ride:
        return self._transition(RideAction.COMPLETE, driver, ride_id)

    def cancel(self, user: User, ride_id: str, reason: Optional[str] = None) -> Ride:
        return self._transition(RideAction.CANCEL, user, ride_id, reason=reason)

    def _transition(
        self,
        action: RideAction,
        user: User,
        ride_id: str,
        reason: Optional[str] = None,
    ) -> Ride:
        actor = Actor.from_user(user)
        ride = self._load(ride_id)
        snapshot = RideSnapshot.from_ride(ride)

        try:
            target = resolve_transition(snapshot, action, actor)
        except (AuthorizationError, ConflictError) as e:
            logger.warning(
                f"Rejected {action.value} on ride {ride_id} by {actor.id}: {e.message}"
            )
            raise

        now = self._clock()
        policy = ACTION_POLICIES[action]
        updates = {
            "set__status": target.value,
            f"set__{policy.timestamp_field}": now,
            "set__updated_at": now,
        }
        conditions = {"id": ride.id, "status": snapshot.status.value}

        if action is RideAction.ACCEPT:
            conditions["driver"] = None
            updates["set__driver"] = user
        elif policy.actor_rule is ActorRule.ASSIGNED_DRIVER:
            conditions["driver"] = ride.driver

        if action is RideAction.COMPLETE:
            actual_duration = minutes_between(ride.started_at, now)
            surge = ride.fare_breakdown.surge_multiplier if ride.fare_breakdown else 1.0
            fare = calculate_fare(ride.distance, actual_duration, surge)
            updates["set__actual_duration"] = actual_duration
            updates["set__fare"] = fare["totalFare"]
            updates["set__fare_breakdown"] = FareBreakdown.from_dict(fare)
        elif action is RideAction.CANCEL:
            updates["set__cancelled_by"] = (
                "passenger" if actor.id == snapshot.passenger_id else "driver"
            )
            updates["set__cancellation_reason"] = reason or "No reason provided"

        # Single atomic check-and-set; None means someone else moved the ride
        updated = Ride.objects(**conditions).modify(new=True, **updates)
        if updated is None:
            current = self._load(ride_id)
            logger.warning(
                f"Lost {action.value} race on ride {ride_id}: now {current.status}"
            )
            resolve_transition(RideSnapshot.from_ride(current), action, actor)
            raise ConflictError("Ride was updated by another request, please retry")

        logger.info(
            f"Ride {ride_id} {snapshot.status.value} → {target.value} by {actor.id}"
        )
        self._notify(updated, actor)
        return updated

    def _notify(self, ride: Ride, actor: Actor) -> None:
        if self._notifier is None:
            return

        event = RideStatusEvent(
            rideId=str(ride.id), newStatus=ride.status, actorId=actor.id
        )
        try:
            self._notifier(str(ride.id), event.to_message())
        except Exception as e:
            # Channel delivery is best effort; the transition is already stored
            logger.error(
                f"Failed to publish status for ride {ride.id}: {type(e).__name__}: {e}"
            )

    # ----- Rating -----

    def rate(
        self, passenger: User, ride_id: str, rating: int, review: Optional[str] = None
    ) -> Ride:
        """Store the passenger's 1-5 rating of a completed ride."""
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationError(
                "Rating must be between 1 and 5",
                errors=[{"field": "rating", "message": "Must be an integer 1-5"}],
            )

        ride = self._load(ride_id)
        if not ride.is_passenger(passenger.id):
            raise AuthorizationError("Only the passenger can rate the ride")
        if ride.status != RideStatus.COMPLETED.value:
            raise ConflictError("Can only rate completed rides")

        now = self._clock()
        updated = Ride.objects(
            id=ride.id, status=RideStatus.COMPLETED.value, passenger_rating=None
        ).modify(
            new=True,
            set__passenger_rating=rating,
            set__passenger_review=review,
            set__rated_at=now,
            set__updated_at=now,
        )
        if updated is None:
            raise ConflictError("Ride has already been rated")

        logger.info(f"Ride {ride_id} rated {rating} stars by {passenger.email}")
        return updated

    # ----- Queries -----

    def get(self, user: User, ride_id: str) -> Ride:
        ride = self._load(ride_id)
        if not ride.is_participant(user.id):
            raise AuthorizationError("Not authorized to view this ride")
        return ride

    def history(
        self,
        user: User,
        page: int = 1,
        limit: int = 10,
        status: Optional[str] = None,
    ) -> Tuple[List[Ride], int]:
        """Rides the user took part in, newest first, with the total count."""
        query = {"driver": user} if user.role == "driver" else {"passenger": user}
        if status:
            if status not in {s.value for s in RideStatus}:
                raise ValidationError(
                    f"Invalid status filter: {status}",
                    errors=[{"field": "status", "message": "Unknown ride status"}],
                )
            query["status"] = status

        rides = Ride.objects(**query).order_by("-created_at")
        total = rides.count()
        page_items = list(rides.skip((page - 1) * limit).limit(limit))
        return page_items, total

    def active(self, user: User) -> List[Ride]:
        query = {"driver": user} if user.role == "driver" else {"passenger": user}
        return list(
            Ride.objects(status__in=list(ACTIVE_STATUSES), **query).order_by(
                "-created_at"
            )
        )

    def available(self, driver: User) -> List[Ride]:
        if driver.role != "driver":
            raise AuthorizationError("Only drivers can view available rides")
        return list(
            Ride.objects(status=RideStatus.PENDING.value).order_by("-created_at")
        )

    @staticmethod
    def _load(ride_id: str) -> Ride:
        if not ride_id or not ObjectId.is_valid(str(ride_id)):
            raise NotFoundError("Ride not found")
        ride = Ride.objects(id=ride_id).first()
        if ride is None:
            raise NotFoundError("Ride not found")
        return ride
