"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime, time
from typing import Any, Optional

from pydantic import BaseModel, Field

from rideshare.domain.entities import Location, Pickup
from rideshare.domain.enums import (
    InitiatedBy,
    ListingStatus,
    PairingStatus,
    PaymentPolicy,
    Privacy,
    TimeType,
    TripDirection,
    TripType,
)
from rideshare.services.registry import OfferSpec, RequestSpec


# ── Requests ──────────────────────────────────────────────────────────


class LocationIn(BaseModel):
    address: str = Field(..., min_length=1, max_length=500)
    trip_direction: TripDirection
    time_type: TimeType = TimeType.FLEXIBLE
    specific_time: Optional[time] = None
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)

    def to_domain(self) -> Location:
        return Location(
            address=self.address,
            trip_direction=self.trip_direction,
            time_type=self.time_type,
            specific_time=self.specific_time,
            lat=self.lat,
            lng=self.lng,
        )


class PickupIn(BaseModel):
    address: Optional[str] = Field(None, max_length=500)
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)

    def to_domain(self) -> Pickup:
        return Pickup(address=self.address, lat=self.lat, lng=self.lng)


class OfferCreate(BaseModel):
    event_id: str = Field(..., min_length=1, max_length=64)
    total_seats: int = Field(..., ge=1)
    trip_type: TripType
    locations: list[LocationIn]
    privacy: Privacy = Privacy.PUBLIC
    payment_policy: PaymentPolicy = PaymentPolicy.NOT_REQUIRED
    payment_amount: Optional[float] = Field(None, ge=0)
    payment_method: Optional[str] = Field(None, max_length=50)
    notes: Optional[str] = None

    def to_spec(self) -> OfferSpec:
        return OfferSpec(
            total_seats=self.total_seats,
            trip_type=self.trip_type,
            locations=[loc.to_domain() for loc in self.locations],
            privacy=self.privacy,
            payment_policy=self.payment_policy,
            payment_amount=self.payment_amount,
            payment_method=self.payment_method,
            notes=self.notes,
        )


class OfferUpdate(BaseModel):
    """Only the fields sent are changed."""

    locations: Optional[list[LocationIn]] = None
    notes: Optional[str] = None
    privacy: Optional[Privacy] = None
    payment_policy: Optional[PaymentPolicy] = None
    payment_amount: Optional[float] = Field(None, ge=0)
    payment_method: Optional[str] = Field(None, max_length=50)

    def changes(self) -> dict[str, Any]:
        changes = self.model_dump(exclude_unset=True, exclude={"locations"})
        if "locations" in self.model_fields_set:
            changes["locations"] = [loc.to_domain() for loc in self.locations or []]
        return changes


class RequestCreate(BaseModel):
    event_id: str = Field(..., min_length=1, max_length=64)
    trip_type: TripType
    locations: list[LocationIn]
    passenger_count: int = 1
    privacy: Privacy = Privacy.PUBLIC
    notes: Optional[str] = None

    def to_spec(self) -> RequestSpec:
        return RequestSpec(
            trip_type=self.trip_type,
            locations=[loc.to_domain() for loc in self.locations],
            passenger_count=self.passenger_count,
            privacy=self.privacy,
            notes=self.notes,
        )


class RequestUpdate(BaseModel):
    locations: Optional[list[LocationIn]] = None
    notes: Optional[str] = None
    privacy: Optional[Privacy] = None

    def changes(self) -> dict[str, Any]:
        changes = self.model_dump(exclude_unset=True, exclude={"locations"})
        if "locations" in self.model_fields_set:
            changes["locations"] = [loc.to_domain() for loc in self.locations or []]
        return changes


class JoinRequestCreate(BaseModel):
    passenger_count: int = 1
    pickup: Optional[PickupIn] = None
    message: Optional[str] = Field(None, max_length=500)
    request_id: Optional[str] = None


class InvitationCreate(BaseModel):
    request_id: str
    message: Optional[str] = Field(None, max_length=500)


class PairingCancel(BaseModel):
    message: Optional[str] = Field(None, max_length=500)


class Point(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class PriceEstimateRequest(BaseModel):
    origin: Point
    destination: Point
    amount: Optional[float] = Field(
        None, ge=0, description="Asking price to compare against the cap."
    )


# ── Responses ─────────────────────────────────────────────────────────


class LocationResponse(BaseModel):
    address: str
    trip_direction: TripDirection
    time_type: TimeType
    specific_time: Optional[time] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    sort_order: int

    model_config = {"from_attributes": True}


class OfferResponse(BaseModel):
    id: str
    event_id: str
    owner_account_id: str
    total_seats: int
    available_seats: int
    trip_type: TripType
    privacy: Privacy
    payment_policy: PaymentPolicy
    payment_amount: Optional[float] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None
    status: ListingStatus
    locations: list[LocationResponse] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class RequestResponse(BaseModel):
    id: str
    event_id: str
    owner_account_id: str
    passenger_count: int
    trip_type: TripType
    privacy: Privacy
    notes: Optional[str] = None
    status: ListingStatus
    locations: list[LocationResponse] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class PickupResponse(BaseModel):
    address: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None

    model_config = {"from_attributes": True}


class PairingResponse(BaseModel):
    id: str
    offer_id: str
    request_id: Optional[str] = None
    driver_account_id: str
    passenger_account_id: str
    initiated_by: InitiatedBy
    passenger_count: int
    pickup: PickupResponse
    status: PairingStatus
    message: Optional[str] = None
    close_message: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class OfferPairingsResponse(BaseModel):
    confirmed: list[PairingResponse] = []
    pending: list[PairingResponse] = []

    model_config = {"from_attributes": True}


class OfferViewResponse(BaseModel):
    offer: OfferResponse
    confirmed: list[PairingResponse] = []
    pending: list[PairingResponse] = []
    ledger_error: bool = False

    model_config = {"from_attributes": True}


class JoinedRideResponse(BaseModel):
    pairing: PairingResponse
    offer: OfferResponse
    event: Optional[dict[str, Any]] = None

    model_config = {"from_attributes": True}


class RequestViewResponse(BaseModel):
    request: RequestResponse
    confirmed_pairing: Optional[PairingResponse] = None
    ledger_error: bool = False

    model_config = {"from_attributes": True}


class CapacityAuditResponse(BaseModel):
    offer_id: str
    total_seats: int
    available_seats: int
    confirmed_seats: int
    expected_available: int
    consistent: bool

    model_config = {"from_attributes": True}


class PriceEstimateResponse(BaseModel):
    distance_km: float
    source: str
    max_payment: int
    exceeds_cap: Optional[bool] = None


class EventSummaryResponse(BaseModel):
    event_id: str
    total_offers: int
    total_requests: int
    available_seats: int
    total_seats: int
    confirmed_pairings: int
    pending_pairings: int
    unmatched_requests: int

    model_config = {"from_attributes": True}


class DeletedResponse(BaseModel):
    id: str
    deleted: bool = True


class HealthResponse(BaseModel):
    status: str = "ok"
    store: str


class ErrorResponse(BaseModel):
    detail: Any
    error: str
