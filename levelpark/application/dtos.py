# File: levelpark/application/dtos.py
"""
Data Transfer Objects (DTOs) for the LevelPark rule engine

This module defines DTOs for data transfer between layers:
1. Input DTOs - Requests received from clients (commands, CLI, API)
2. Output DTOs - Serialisable views of domain results

DTO Principles:
- Validation at creation (pydantic)
- Clear separation between internal and external representations
- No business logic, only data
- Serialization/deserialization support
"""

from typing import Dict, List, Optional, Any
from datetime import datetime
from decimal import Decimal
from enum import Enum
import json

from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator

from ..domain.models import Fine, ParkingSpot, Payment, Reservation, LicensePlate, SpotId


# ============================================================================
# BASE DTO CLASSES
# ============================================================================

class BaseDTO(BaseModel):
    """Base DTO with common functionality"""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        arbitrary_types_allowed=True,
        use_enum_values=True,
    )

    def to_dict(self, exclude_none: bool = False, **kwargs) -> Dict[str, Any]:
        """Convert DTO to dictionary"""
        data = self.model_dump(**kwargs)
        if exclude_none:
            data = {k: v for k, v in data.items() if v is not None}
        return data

    def to_json(self, **kwargs) -> str:
        """Convert DTO to JSON string"""
        return self.model_dump_json(**kwargs)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BaseDTO':
        """Create DTO from dictionary"""
        return cls(**data)

    @classmethod
    def from_json(cls, json_str: str) -> 'BaseDTO':
        """Create DTO from JSON string"""
        return cls(**json.loads(json_str))


def _normalize_plate(value: str) -> str:
    try:
        return LicensePlate(value).value
    except ValueError as e:
        raise ValueError(str(e)) from None


# ============================================================================
# ENUM DTOs
# ============================================================================

class VehicleTypeDTO(str, Enum):
    """Vehicle type DTO"""
    MOTORCYCLE = "motorcycle"
    CAR = "car"
    SUV_TRUCK = "suv_truck"
    HANDICAPPED = "handicapped"


class SpotTypeDTO(str, Enum):
    """Parking spot type DTO"""
    COMPACT = "compact"
    REGULAR = "regular"
    HANDICAPPED = "handicapped"
    RESERVED = "reserved"


class PaymentMethodDTO(str, Enum):
    """Payment method DTO"""
    CASH = "cash"
    CARD = "card"


class FineTypeDTO(str, Enum):
    """Fine type DTO"""
    OVERSTAY = "overstay"
    UNAUTHORIZED_RESERVED = "unauthorized_reserved"
    UNPAID_BALANCE = "unpaid_balance"


class FinePolicyTypeDTO(str, Enum):
    """Fine policy DTO"""
    FIXED = "FIXED"
    HOURLY = "HOURLY"
    PROGRESSIVE = "PROGRESSIVE"


# ============================================================================
# INPUT DTOs
# ============================================================================

class VehicleEntryRequestDTO(BaseDTO):
    """Request to admit a vehicle into a spot"""
    license_plate: str = Field(..., min_length=1, description="License plate")
    vehicle_type: VehicleTypeDTO = Field(..., description="Vehicle category")
    is_handicapped: bool = Field(default=False, description="Handicapped card presented")
    spot_id: str = Field(..., description="Spot identifier F<floor>-R<row>-S<index>")

    @field_validator('license_plate')
    @classmethod
    def normalize_plate(cls, v: str) -> str:
        return _normalize_plate(v)

    @field_validator('vehicle_type', mode='before')
    @classmethod
    def normalize_vehicle_type(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator('spot_id')
    @classmethod
    def validate_spot_id(cls, v: str) -> str:
        v = v.strip()
        if not SpotId.is_valid(v):
            raise ValueError(f"Invalid spot ID format: {v!r}")
        return v


class VehicleExitRequestDTO(BaseDTO):
    """Request to settle and release a parked vehicle"""
    license_plate: str = Field(..., min_length=1)
    amount_paid: Decimal = Field(..., ge=0, description="Amount tendered")
    payment_method: PaymentMethodDTO = Field(default=PaymentMethodDTO.CASH, validate_default=True)
    include_unpaid_fines: bool = Field(
        default=True, description="Settle the plate's unpaid fines with this payment"
    )

    @field_validator('license_plate')
    @classmethod
    def normalize_plate(cls, v: str) -> str:
        return _normalize_plate(v)

    @field_validator('payment_method', mode='before')
    @classmethod
    def normalize_method(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v


class AvailableSpotsQueryDTO(BaseDTO):
    """Query for spots a vehicle could use"""
    vehicle_type: VehicleTypeDTO
    is_handicapped: bool = False

    @field_validator('vehicle_type', mode='before')
    @classmethod
    def normalize_vehicle_type(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v


class FinePolicyChangeRequestDTO(BaseDTO):
    """Request to switch the active fine policy"""
    policy: FinePolicyTypeDTO

    @field_validator('policy', mode='before')
    @classmethod
    def normalize_policy(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().upper()
        return v


class FineIssueRequestDTO(BaseDTO):
    """Request to record a fine explicitly"""
    license_plate: str = Field(..., min_length=1)
    fine_type: FineTypeDTO
    amount: Decimal = Field(..., ge=0)

    @field_validator('license_plate')
    @classmethod
    def normalize_plate(cls, v: str) -> str:
        return _normalize_plate(v)


class ReservationRequestDTO(BaseDTO):
    """Request to book a reserved spot"""
    license_plate: str = Field(..., min_length=1)
    spot_id: str
    start_time: datetime
    end_time: datetime
    prepaid_amount: Decimal = Field(default=Decimal('0'), ge=0)

    @field_validator('license_plate')
    @classmethod
    def normalize_plate(cls, v: str) -> str:
        return _normalize_plate(v)

    @model_validator(mode='after')
    def validate_window(self) -> 'ReservationRequestDTO':
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


# ============================================================================
# OUTPUT DTOs
# ============================================================================

class SpotDTO(BaseDTO):
    """View of a parking spot"""
    spot_id: str
    floor: int
    row: int
    index: int
    spot_type: SpotTypeDTO
    status: str
    hourly_rate: float
    license_plate: Optional[str] = None

    @classmethod
    def from_domain(cls, spot: ParkingSpot) -> 'SpotDTO':
        return cls(**spot.to_dict())


class FineDTO(BaseDTO):
    """View of a fine"""
    id: str
    license_plate: str
    fine_type: FineTypeDTO
    amount: float
    issued_at: datetime
    is_paid: bool

    @classmethod
    def from_domain(cls, fine: Fine) -> 'FineDTO':
        return cls(
            id=fine.id,
            license_plate=fine.license_plate,
            fine_type=fine.fine_type.value,
            amount=float(fine.amount),
            issued_at=fine.issued_at,
            is_paid=fine.is_paid
        )


class EntryResultDTO(BaseDTO):
    """View of a successful entry"""
    ticket_number: str
    license_plate: str
    vehicle_type: VehicleTypeDTO
    is_handicapped: bool
    spot_id: str
    spot_type: SpotTypeDTO
    hourly_rate: float
    entry_time: datetime
    unauthorized_fine: Optional[FineDTO] = None
    ticket_text: str = ""

    @classmethod
    def from_result(cls, result) -> 'EntryResultDTO':
        fine = result.unauthorized_fine
        return cls(
            ticket_number=result.ticket_number,
            license_plate=result.vehicle.plate,
            vehicle_type=result.vehicle.vehicle_type.value,
            is_handicapped=result.vehicle.is_handicapped,
            spot_id=result.spot.spot_id,
            spot_type=result.spot.spot_type.value,
            hourly_rate=float(result.spot.hourly_rate),
            entry_time=result.vehicle.entry_time,
            unauthorized_fine=FineDTO.from_domain(fine) if fine else None,
            ticket_text=result.ticket_display()
        )


class PaymentDTO(BaseDTO):
    """View of a payment record"""
    payment_id: str
    license_plate: str
    parking_fee: float
    fine_amount: float
    total_amount: float
    amount_paid: float
    remaining_balance: float
    payment_method: PaymentMethodDTO
    payment_date: datetime
    spot_id: Optional[str] = None
    ticket_number: Optional[str] = None

    @classmethod
    def from_domain(cls, payment: Payment) -> 'PaymentDTO':
        return cls(**payment.to_dict())


class ExitResultDTO(BaseDTO):
    """View of a settlement"""
    license_plate: str
    spot_id: str
    duration_hours: int
    payment: PaymentDTO
    payment_sufficient: bool
    remaining_balance: float
    unpaid_balance_fine: Optional[FineDTO] = None
    settled_fines: List[FineDTO] = Field(default_factory=list)
    receipt_text: str = ""

    @classmethod
    def from_result(cls, result) -> 'ExitResultDTO':
        shortfall = result.unpaid_balance_fine
        return cls(
            license_plate=result.summary.license_plate,
            spot_id=result.summary.spot.spot_id,
            duration_hours=result.summary.duration_hours,
            payment=PaymentDTO.from_domain(result.payment),
            payment_sufficient=result.payment_sufficient,
            remaining_balance=float(result.remaining_balance),
            unpaid_balance_fine=FineDTO.from_domain(shortfall) if shortfall else None,
            settled_fines=[FineDTO.from_domain(f) for f in result.settled_fines],
            receipt_text=result.receipt.format_text()
        )


class ReservationDTO(BaseDTO):
    """View of a reservation"""
    id: str
    license_plate: str
    spot_id: str
    start_time: datetime
    end_time: datetime
    is_active: bool
    created_at: datetime
    prepaid_amount: float

    @classmethod
    def from_domain(cls, reservation: Reservation) -> 'ReservationDTO':
        return cls(**reservation.to_dict())
