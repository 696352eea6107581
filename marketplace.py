"""Registration, ride posting, booking and the request lifecycle.

Every command validates against the current store contents and raises a
MarketplaceError subclass before writing anything it cannot finish.
Multi-document changes use compare-and-swap on document versions.
"""
import logging
from decimal import Decimal
from typing import List, Optional

import wallet
from chat import contact_thread_id, ensure_thread, ride_thread_id
from db import PROFILES, RIDE_REQUESTS, RIDES, DocumentStore
from errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from matching import build_route
from models import (
    ChatThread,
    OpenRequestDraft,
    RegistrationForm,
    Ride,
    RideDraft,
    RideRequest,
    UserProfile,
    build,
    can_transition,
)

logger = logging.getLogger(__name__)


def _blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _require_role(actor: UserProfile, role: str, action: str):
    if actor.role != role:
        raise PermissionDeniedError(f"Only {role}s can {action}.")


# ===========================
# PROFILES
# ===========================
def load_profile(store: DocumentStore, user_id: str) -> Optional[UserProfile]:
    doc = store.get(PROFILES, user_id)
    return UserProfile.from_document(doc) if doc else None


def register(store: DocumentStore, user_id: str, form: RegistrationForm) -> UserProfile:
    missing = [f for f in ("name", "email", "phone", "role") if _blank(getattr(form, f))]
    if missing:
        raise ValidationError("Please fill in all required fields.", missing)
    if form.role not in ("driver", "rider"):
        raise ValidationError("Role must be 'driver' or 'rider'.", ["role"])

    if form.role == "driver":
        missing = [f"vehicle.{f}" for f in ("type", "color", "plate") if _blank(getattr(form.vehicle, f))]
        if not form.license_uploaded:
            missing.append("license_uploaded")
        if missing:
            raise ValidationError("Please provide all vehicle details and upload your driver's license.", missing)
    elif not form.id_uploaded:
        raise ValidationError("Please upload a valid ID.", ["id_uploaded"])

    profile = build(UserProfile, {
        "id": user_id,
        "name": form.name.strip(),
        "email": form.email.strip(),
        "phone": form.phone.strip(),
        "role": form.role,
        "vehicle": form.vehicle.model_dump() if form.role == "driver" else None,
        "verification_status": "pending",
    })
    try:
        store.create(PROFILES, user_id, profile.to_document())
    except ConflictError:
        raise ConflictError("You are already registered.") from None
    logger.info("Registered %s as %s", user_id, profile.role)
    return profile


# ===========================
# RIDES (driver)
# ===========================
def post_ride(store: DocumentStore, actor: UserProfile, draft: RideDraft) -> Ride:
    _require_role(actor, "driver", "post rides")
    missing = [f for f in ("origin", "destination", "start_time") if _blank(getattr(draft, f))]
    if not draft.available_seats or draft.available_seats < 1:
        missing.append("available_seats")
    if draft.price_per_seat is None or draft.price_per_seat <= 0:
        missing.append("price_per_seat")
    if missing:
        raise ValidationError("Please fill in all required ride details.", missing)

    origin, destination = draft.origin.strip(), draft.destination.strip()
    ride = build(Ride, {
        "driver_id": actor.id,
        "driver_name": actor.name,
        "origin": origin,
        "destination": destination,
        "route": build_route(origin, draft.stops, destination),
        "start_time": draft.start_time,
        "available_seats": draft.available_seats,
        "price_per_seat": draft.price_per_seat,
        "status": "active",
        "vehicle": (actor.vehicle.model_dump() if actor.vehicle
                    else {"type": "Unknown", "color": "Unknown", "plate": "N/A"}),
    })
    doc = store.add(RIDES, ride.to_document())
    logger.info("Ride %s posted by %s", doc.id, actor.id)
    return Ride.from_document(doc)


# ===========================
# REQUESTS (rider)
# ===========================
def request_ride(store: DocumentStore, actor: UserProfile, ride_id: str) -> RideRequest:
    _require_role(actor, "rider", "request rides")
    ride = Ride.from_document(store.require(RIDES, ride_id, "Ride"))
    if ride.status != "active":
        raise ConflictError("This ride is no longer active.")
    if ride.available_seats <= 0:
        raise ConflictError("No seats available for this ride.")
    existing = [
        r for r in store.query(RIDE_REQUESTS, ride_id=ride_id, rider_id=actor.id)
        if r.data.get("status") in ("pending", "accepted")
    ]
    if existing:
        raise ConflictError("You already have a pending or accepted request for this ride.")

    req = build(RideRequest, {
        "ride_id": ride.id,
        "rider_id": actor.id,
        "rider_name": actor.name,
        "driver_id": ride.driver_id,
        "driver_name": ride.driver_name,
        "origin": ride.origin,
        "destination": ride.destination,
        "route": ride.route,
        "ride_start_time": ride.start_time,
        "price": ride.price_per_seat,
        "status": "pending",
    })
    doc = store.add(RIDE_REQUESTS, req.to_document())
    logger.info("Rider %s requested ride %s", actor.id, ride.id)
    return RideRequest.from_document(doc)


def post_open_request(store: DocumentStore, actor: UserProfile, draft: OpenRequestDraft) -> RideRequest:
    _require_role(actor, "rider", "post ride requests")
    missing = [f for f in ("origin", "destination", "preferred_time") if _blank(getattr(draft, f))]
    if draft.max_price is None or draft.max_price <= 0:
        missing.append("max_price")
    if missing:
        raise ValidationError("Please fill in all required request details.", missing)

    origin, destination = draft.origin.strip(), draft.destination.strip()
    req = build(RideRequest, {
        "ride_id": None,
        "rider_id": actor.id,
        "rider_name": actor.name,
        "origin": origin,
        "destination": destination,
        "route": build_route(origin, draft.stops, destination),
        "preferred_time": draft.preferred_time,
        "max_price": draft.max_price,
        "status": "searching",
    })
    doc = store.add(RIDE_REQUESTS, req.to_document())
    return RideRequest.from_document(doc)


def cancel_request(store: DocumentStore, actor: UserProfile, request_id: str) -> RideRequest:
    doc = store.require(RIDE_REQUESTS, request_id, "Ride request")
    req = RideRequest.from_document(doc)
    if req.rider_id != actor.id:
        raise PermissionDeniedError("You can only cancel your own requests.")
    if not can_transition(req.status, "cancelled"):
        raise ConflictError(f"Only pending requests can be cancelled (this one is {req.status}).")
    doc = store.update(RIDE_REQUESTS, request_id, {"status": "cancelled"}, expected_version=doc.version)
    return RideRequest.from_document(doc)


def start_chat(store: DocumentStore, actor: UserProfile, ride_id: str) -> ChatThread:
    """Open (or reuse) the rider's conversation with a ride's driver."""
    _require_role(actor, "rider", "message drivers about a ride")
    ride = Ride.from_document(store.require(RIDES, ride_id, "Ride"))
    return ensure_thread(store, ride_thread_id(ride.id, actor.id), [actor.id, ride.driver_id])


# ===========================
# REQUEST LIFECYCLE (driver)
# ===========================
def _driver_request(store: DocumentStore, actor: UserProfile, request_id: str, new_status: str):
    _require_role(actor, "driver", "manage ride requests")
    doc = store.require(RIDE_REQUESTS, request_id, "Ride request")
    req = RideRequest.from_document(doc)
    if req.driver_id != actor.id:
        raise PermissionDeniedError("This request is not for one of your rides.")
    if not can_transition(req.status, new_status):
        raise ConflictError(f"Request is already {req.status}.")
    return doc, req


def accept_request(store: DocumentStore, actor: UserProfile, request_id: str) -> RideRequest:
    req_doc, req = _driver_request(store, actor, request_id, "accepted")
    ride_doc = store.require(RIDES, req.ride_id, "Ride")
    ride = Ride.from_document(ride_doc)
    if ride.status != "active":
        raise ConflictError("This ride is no longer active.")
    if ride.available_seats <= 0:
        raise ConflictError("No seats left on this ride.")

    ride_doc = store.update(RIDES, ride.id, {"available_seats": ride.available_seats - 1},
                            expected_version=ride_doc.version)
    try:
        req_doc = store.update(RIDE_REQUESTS, request_id, {"status": "accepted"},
                               expected_version=req_doc.version)
    except (ConflictError, NotFoundError):
        # give the seat back; the request moved on without us
        restored = Ride.from_document(store.require(RIDES, ride.id, "Ride"))
        store.update(RIDES, ride.id, {"available_seats": restored.available_seats + 1})
        raise
    logger.info("Request %s accepted; ride %s has %d seats left",
                request_id, ride.id, ride_doc.data["available_seats"])
    return RideRequest.from_document(req_doc)


def reject_request(store: DocumentStore, actor: UserProfile, request_id: str) -> RideRequest:
    doc, _ = _driver_request(store, actor, request_id, "rejected")
    doc = store.update(RIDE_REQUESTS, request_id, {"status": "rejected"}, expected_version=doc.version)
    return RideRequest.from_document(doc)


def complete_ride(store: DocumentStore, actor: UserProfile, ride_id: str, rider_id: str,
                  price=None) -> List[RideRequest]:
    _require_role(actor, "driver", "complete rides")
    ride = Ride.from_document(store.require(RIDES, ride_id, "Ride"))
    if ride.driver_id != actor.id:
        raise PermissionDeniedError("You can only complete your own rides.")
    accepted = store.query(RIDE_REQUESTS, ride_id=ride_id, rider_id=rider_id, status="accepted")
    if not accepted:
        raise ConflictError("This rider has no accepted request on this ride.")
    amount = Decimal(str(price)) if price is not None else RideRequest.from_document(accepted[0]).price

    # settle first so a retry after a partial failure still finds the accepted request
    wallet.settle_ride(store, ride_id, rider_id, actor.id, amount)
    if ride.status != "completed":
        store.update(RIDES, ride_id, {"status": "completed"})
    completed = [
        RideRequest.from_document(
            store.update(RIDE_REQUESTS, doc.id, {"status": "completed"}, expected_version=doc.version)
        )
        for doc in accepted
    ]
    return completed


def contact_rider(store: DocumentStore, actor: UserProfile, request_id: str) -> ChatThread:
    """Driver reaches out about an open request."""
    _require_role(actor, "driver", "contact riders")
    doc = store.require(RIDE_REQUESTS, request_id, "Ride request")
    req = RideRequest.from_document(doc)
    if req.status != "searching":
        raise ConflictError("This request is no longer open.")
    if req.contact_initiated_by != actor.id:
        store.update(RIDE_REQUESTS, request_id, {"contact_initiated_by": actor.id})
    return ensure_thread(store, contact_thread_id(actor.id, req.rider_id), [actor.id, req.rider_id])
