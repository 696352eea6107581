from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, ValidationError as PydanticValidationError, model_validator

from errors import ValidationError
from utils import now_iso

Role = Literal["driver", "rider"]
VerificationStatus = Literal["pending", "verified", "rejected"]
RideStatus = Literal["active", "completed"]
RequestStatus = Literal["searching", "pending", "accepted", "rejected", "completed", "cancelled"]
# a settlement leg is claimed on the record before its wallet write runs
LegState = Literal["todo", "claimed", "done"]

ACTIVE_REQUEST_STATUSES = frozenset({"searching", "pending", "accepted"})

# searching requests never change state; they are not bound to a ride
REQUEST_TRANSITIONS = {
    "pending": frozenset({"accepted", "rejected", "cancelled"}),
    "accepted": frozenset({"completed"}),
}


def can_transition(current: str, new: str) -> bool:
    return new in REQUEST_TRANSITIONS.get(current, ())


def build(model_cls, data: dict):
    """Validate `data` into `model_cls`, raising the domain ValidationError."""
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as exc:
        fields = [".".join(str(p) for p in err["loc"]) or "value" for err in exc.errors()]
        raise ValidationError("Invalid or missing fields.", missing=fields) from exc


# ===========================
# STORED ENTITIES
# ===========================
class StoredModel(BaseModel):
    id: str = ""

    @classmethod
    def from_document(cls, doc):
        return cls.model_validate({**doc.data, "id": doc.id})

    def to_document(self) -> dict:
        return self.model_dump(mode="json", exclude={"id"})


class Vehicle(BaseModel):
    type: str = ""
    color: str = ""
    plate: str = ""


class UserProfile(StoredModel):
    name: str
    email: EmailStr
    phone: str
    role: Role
    vehicle: Optional[Vehicle] = None
    verification_status: VerificationStatus = "pending"
    created_at: str = Field(default_factory=now_iso)

    @model_validator(mode="after")
    def _vehicle_iff_driver(self):
        if (self.role == "driver") != (self.vehicle is not None):
            raise ValueError("vehicle is required for drivers and only for drivers")
        return self

    @property
    def is_driver(self) -> bool:
        return self.role == "driver"


class Ride(StoredModel):
    driver_id: str
    driver_name: str = ""
    origin: str
    destination: str
    route: List[str] = Field(min_length=2)
    start_time: str
    available_seats: int = Field(ge=0)
    price_per_seat: Decimal = Field(gt=0)
    status: RideStatus = "active"
    vehicle: Vehicle = Field(default_factory=Vehicle)
    created_at: str = Field(default_factory=now_iso)

    @model_validator(mode="after")
    def _route_endpoints(self):
        if self.route[0] != self.origin or self.route[-1] != self.destination:
            raise ValueError("route must start at origin and end at destination")
        return self


class RideRequest(StoredModel):
    ride_id: Optional[str] = None
    rider_id: str
    rider_name: str = ""
    driver_id: Optional[str] = None
    driver_name: Optional[str] = None
    origin: str
    destination: str
    route: List[str] = Field(default_factory=list)
    status: RequestStatus = "pending"
    price: Optional[Decimal] = None
    ride_start_time: Optional[str] = None
    preferred_time: Optional[str] = None
    max_price: Optional[Decimal] = None
    contact_initiated_by: Optional[str] = None
    created_at: str = Field(default_factory=now_iso)

    @model_validator(mode="after")
    def _one_shape(self):
        if self.is_open != (self.status == "searching"):
            raise ValueError("open requests have no ride and stay 'searching'")
        return self

    @property
    def is_open(self) -> bool:
        return self.ride_id is None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_REQUEST_STATUSES


class WalletBalance(StoredModel):
    """Keyed by the owner's user id."""
    balance: Decimal = Decimal("0")

    @property
    def owner_id(self) -> str:
        return self.id


class Settlement(StoredModel):
    ride_id: str
    rider_id: str
    driver_id: str
    amount: Decimal = Field(gt=0)
    driver_leg: LegState = "todo"
    rider_leg: LegState = "todo"
    status: Literal["pending", "posted"] = "pending"
    created_at: str = Field(default_factory=now_iso)


class ChatMessage(BaseModel):
    sender_id: str
    sender_name: str = ""
    text: str
    timestamp: str = Field(default_factory=now_iso)


class ChatThread(StoredModel):
    participants: List[str] = Field(min_length=2, max_length=2)
    messages: List[ChatMessage] = Field(default_factory=list)
    created_at: str = Field(default_factory=now_iso)


# ===========================
# FORM INPUT / DERIVED VIEWS
# ===========================
class RegistrationForm(BaseModel):
    name: str = ""
    email: str = ""
    phone: str = ""
    role: str = ""
    vehicle: Vehicle = Field(default_factory=Vehicle)
    license_uploaded: bool = False
    id_uploaded: bool = False


class RideDraft(BaseModel):
    origin: str = ""
    destination: str = ""
    start_time: str = ""
    available_seats: Optional[int] = None
    price_per_seat: Optional[Decimal] = None
    stops: List[str] = Field(default_factory=list)


class OpenRequestDraft(BaseModel):
    origin: str = ""
    destination: str = ""
    preferred_time: str = ""
    max_price: Optional[Decimal] = None
    stops: List[str] = Field(default_factory=list)


class SearchCriteria(BaseModel):
    origin: str = ""
    destination: str = ""
    stops: List[str] = Field(default_factory=list)


class ChatListEntry(BaseModel):
    thread_id: str
    name: str
    ride_info: str
    last_message: str
    partner_id: str
